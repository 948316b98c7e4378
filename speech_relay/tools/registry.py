"""
Tool registry - read-only map from tool name to handler.

The registry is built once at startup and shared by every call's dispatcher.
It cannot be modified after construction, so calls never observe each other
through it.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from speech_relay.config.constants import LOGGER_NAME
from speech_relay.errors import ToolResolutionError

logger = logging.getLogger(LOGGER_NAME)

# handler(caller_id, parameters) -> str | mapping, sync or async
ToolHandler = Callable[[str, Dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ToolRegistration:
    """
    A named tool exposed to the backend.

    Attributes:
        name: Model-facing tool name, unique within a registry
        handler: Callable invoked with (caller_id, parameters)
        parameters: Backend ``dynamicParameters`` schema entries
        description: Human-readable description sent to the backend
        durable: Whether the tool is registered with the management API
            instead of being attached to each call as a temporary tool
    """

    name: str
    handler: ToolHandler
    parameters: List[Dict[str, Any]] = field(default_factory=list)
    description: str = ""
    durable: bool = False

    def to_definition(self) -> Dict[str, Any]:
        """Render the backend tool definition for this registration."""
        return {
            "modelToolName": self.name,
            "description": self.description,
            "dynamicParameters": list(self.parameters),
            "client": {},
        }


class ToolRegistry:
    """
    Immutable collection of tool registrations.

    Example:
        registry = ToolRegistry([ToolRegistration("avrHangup", hangup_handler)])
        handler = registry.resolve("avrHangup")
    """

    def __init__(self, registrations: Iterable[ToolRegistration] = ()):
        tools: Dict[str, ToolRegistration] = {}
        for registration in registrations:
            if registration.name in tools:
                raise ValueError(f"Tool {registration.name} is already registered")
            tools[registration.name] = registration
        self._tools = MappingProxyType(tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self):
        return iter(self._tools.values())

    def get(self, name: str) -> Optional[ToolRegistration]:
        return self._tools.get(name)

    def resolve(self, name: str) -> Optional[ToolHandler]:
        """
        Look up the handler for a tool.

        Args:
            name: Tool name from the invocation

        Returns:
            The registered handler, or None if no tool has that name
        """
        registration = self._tools.get(name)
        return registration.handler if registration else None

    def require(self, name: str) -> ToolHandler:
        """
        Look up the handler for a tool that must exist.

        Raises:
            ToolResolutionError: If no tool has that name
        """
        handler = self.resolve(name)
        if handler is None:
            raise ToolResolutionError(name)
        return handler

    def list_tools(self) -> List[str]:
        return list(self._tools.keys())

    def temporary_tools(self) -> List[ToolRegistration]:
        return [tool for tool in self._tools.values() if not tool.durable]

    def durable_tools(self) -> List[ToolRegistration]:
        return [tool for tool in self._tools.values() if tool.durable]
