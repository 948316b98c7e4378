"""
Registration of tools with the backend's management API.

Temporary tools are sent inline with every session-open request. Durable
tools are created (or updated in place) once at startup, and the returned
tool ids are referenced from session-open requests instead.
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from speech_relay.config.constants import API_KEY_HEADER, HTTP_TIMEOUT, LOGGER_NAME
from speech_relay.config.settings import Settings
from speech_relay.tools.registry import ToolRegistry

logger = logging.getLogger(LOGGER_NAME)


def temporary_tool_selection(registry: ToolRegistry) -> List[Dict[str, Any]]:
    """Render the inline tool selection for a session-open request."""
    return [{"temporaryTool": tool.to_definition()} for tool in registry.temporary_tools()]


def durable_tool_selection(tool_ids: List[str]) -> List[Dict[str, Any]]:
    return [{"toolId": tool_id} for tool_id in tool_ids]


class ToolManagementClient:
    """
    Client for the backend's ``/tools`` management endpoints.
    """

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self._session = session

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            API_KEY_HEADER: self.settings.ultravox_api_key or "",
        }

    async def _request(self, session: aiohttp.ClientSession, method: str, url: str,
                       payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with session.request(
            method,
            url,
            json=payload,
            headers=self.headers,
            timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT),
        ) as response:
            if response.status >= 400:
                error_text = await response.text()
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=error_text,
                )
            return await response.json()

    async def list_existing(self, session: aiohttp.ClientSession) -> Dict[str, str]:
        """Return a map of existing tool name to tool id."""
        data = await self._request(session, "GET", self.settings.tools_url)
        return {tool["name"]: tool["toolId"] for tool in data.get("results", [])}

    async def register_durable_tools(self, registry: ToolRegistry) -> List[str]:
        """
        Create or update every durable tool in the registry.

        Returns:
            Tool ids of the registered tools, or an empty list on failure
        """
        tools = registry.durable_tools()
        if not tools:
            return []

        session = self._session or aiohttp.ClientSession()
        try:
            existing = await self.list_existing(session)
            tool_ids = []
            for tool in tools:
                tool_id = existing.get(tool.name)
                if tool_id:
                    method, url = "PUT", f"{self.settings.tools_url}/{tool_id}"
                else:
                    method, url = "POST", self.settings.tools_url

                data = await self._request(
                    session,
                    method,
                    url,
                    {"name": tool.name, "definition": tool.to_definition()},
                )
                tool_ids.append(data.get("toolId", tool_id))
                logger.info(f"Registered durable tool {tool.name} ({method})")

            tool_ids = [tool_id for tool_id in tool_ids if tool_id]
            if self.settings.debug:
                logger.debug(f"{len(tool_ids)} durable tools loaded: {[t.name for t in tools]}")
            return tool_ids
        except (aiohttp.ClientError, KeyError) as e:
            logger.error(f"Durable tool registration failed: {e}", exc_info=True)
            return []
        finally:
            if self._session is None:
                await session.close()
