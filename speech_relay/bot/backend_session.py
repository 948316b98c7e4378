"""
Backend session establishment and the per-call duplex channel.

Opening a session is a two-step exchange: an HTTP request creates the call on
the speech-to-speech backend and returns a join URL, then a WebSocket is
opened on that URL. The resulting ``BackendChannel`` carries raw audio as
binary frames and JSON control messages as text frames.

A channel is single-use. Nothing here reconnects or resumes: any failure to
open is raised to the caller-facing layer, and any failure once open ends
the call.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import aiohttp
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK

from speech_relay.config.constants import API_KEY_HEADER, HTTP_TIMEOUT, LOGGER_NAME
from speech_relay.config.settings import Settings
from speech_relay.errors import BackendConnectionError, TransportError
from speech_relay.models.control_messages import ClientToolResultMessage
from speech_relay.models.session import CallSession
from speech_relay.utils.datetime_context import resolve_template_context

logger = logging.getLogger(LOGGER_NAME)

CONNECTION_TIMEOUT = 30  # seconds

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_PING_INTERVAL = 20
WS_PING_TIMEOUT = 20
WS_CLOSE_TIMEOUT = 5

Frame = Union[bytes, str]


class BackendChannel:
    """
    Open duplex channel to the backend for one call.

    Audio sent while the channel is not open is dropped rather than queued.
    """

    def __init__(self, ws, session: CallSession):
        self.ws = ws
        self.session = session
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self.session.is_open

    async def send_audio(self, chunk: bytes) -> bool:
        """
        Forward caller audio if the channel is open.

        Returns:
            bool: True if the chunk was sent, False if it was dropped

        Raises:
            TransportError: If the connection fails while sending
        """
        if not self.is_open:
            return False
        try:
            await self.ws.send(chunk)
        except ConnectionClosed as e:
            self.session.mark_closed()
            raise TransportError(f"Backend closed while sending audio: {e}") from e
        return True

    async def send_text(self, text: str) -> None:
        """
        Send a control message frame.

        Raises:
            TransportError: If the channel is closed or fails while sending
        """
        if not self.is_open:
            raise TransportError(f"Backend channel is {self.session.state.value}")
        try:
            await self.ws.send(text)
        except ConnectionClosed as e:
            self.session.mark_closed()
            raise TransportError(f"Backend closed while sending control message: {e}") from e

    async def send_message(self, message: ClientToolResultMessage) -> None:
        await self.send_text(message.to_wire())

    async def frames(self) -> AsyncIterator[Frame]:
        """
        Yield frames from the backend until the connection closes.

        Raises:
            TransportError: If the connection closes abnormally
        """
        try:
            async for message in self.ws:
                yield message
        except ConnectionClosedOK:
            logger.info(f"Backend connection closed normally for caller: {self.session.caller_id}")
        except ConnectionClosedError as e:
            raise TransportError(f"Backend connection closed unexpectedly: {e}") from e
        finally:
            self.session.mark_closed()

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.session.mark_closing()
        try:
            await self.ws.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Error closing backend WebSocket: {e}")
        finally:
            self.session.mark_closed()
        logger.info(f"Backend channel closed for caller: {self.session.caller_id}")


class BackendSession:
    """
    Opens backend sessions for calls.

    One instance is shared by the application; every ``open`` call creates an
    independent ``BackendChannel`` owned by a single call.
    """

    def __init__(self, settings: Settings, selected_tools: Optional[List[Dict[str, Any]]] = None,
                 http_session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.selected_tools = list(selected_tools or [])
        self._http_session = http_session

    def build_call_request(self, caller_id: str, template_context: Dict[str, Any]) -> Dict[str, Any]:
        """Build the JSON body of the call-creation request."""
        body: Dict[str, Any] = {
            "templateContext": template_context,
            "metadata": {"uuid": caller_id},
            "medium": {
                "serverWebSocket": {
                    "inputSampleRate": self.settings.backend_sample_rate,
                    "outputSampleRate": self.settings.backend_sample_rate,
                    "clientBufferSizeMs": self.settings.client_buffer_size_ms,
                },
            },
        }
        if self.selected_tools:
            body["selectedTools"] = self.selected_tools
        return body

    async def create_call(self, caller_id: str, template_context: Dict[str, Any]) -> str:
        """
        Create the backend call and return its join URL.

        Raises:
            BackendConnectionError: If the request fails or no join URL is returned
        """
        url = self.settings.agent_calls_url
        headers = {
            "Content-Type": "application/json",
            API_KEY_HEADER: self.settings.ultravox_api_key or "",
        }
        logger.info(f"[{caller_id}] Creating backend call at {url}")

        session = self._http_session or aiohttp.ClientSession()
        try:
            async with session.post(
                url,
                json=self.build_call_request(caller_id, template_context),
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT),
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error(f"[{caller_id}] Call creation failed: {response.status} - {error_text}")
                    raise BackendConnectionError(f"Call creation failed: {response.status}")
                data = await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"[{caller_id}] HTTP error creating call: {e}")
            raise BackendConnectionError(f"HTTP error: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"[{caller_id}] Timeout creating call (after {HTTP_TIMEOUT}s)")
            raise BackendConnectionError("Call creation timeout") from e
        except ValueError as e:
            logger.error(f"[{caller_id}] Invalid call creation response: {e}")
            raise BackendConnectionError(f"Invalid call creation response: {e}") from e
        finally:
            if self._http_session is None:
                await session.close()

        join_url = data.get("joinUrl") if isinstance(data, dict) else None
        if not join_url:
            raise BackendConnectionError("Missing joinUrl in call creation response")
        return join_url

    async def open(self, caller_id: str, template_context: Optional[Dict[str, Any]] = None) -> BackendChannel:
        """
        Open a duplex channel for one call.

        Args:
            caller_id: Caller identifier from the inbound request
            template_context: Per-call template variables, merged over the
                configured context before the datetime variable is resolved

        Returns:
            BackendChannel: The open channel

        Raises:
            BackendConnectionError: If the call cannot be created or joined
        """
        context = resolve_template_context(
            base=self.settings.template_context,
            overrides=template_context,
            datetime_variable=self.settings.datetime_variable,
            locale=self.settings.datetime_locale,
            timezone=self.settings.datetime_timezone,
        )
        session = CallSession(caller_id, context)

        join_url = await self.create_call(caller_id, context)

        try:
            connection_start = time.time()
            ws = await asyncio.wait_for(
                websockets.connect(
                    join_url,
                    max_size=WS_MAX_SIZE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=WS_PING_TIMEOUT,
                    close_timeout=WS_CLOSE_TIMEOUT,
                    compression=None,  # Disable compression for lower latency
                ),
                timeout=CONNECTION_TIMEOUT,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"[{caller_id}] Timeout joining backend call (after {CONNECTION_TIMEOUT}s)")
            raise BackendConnectionError("Backend connection timeout") from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.error(f"[{caller_id}] Failed to join backend call: {e}")
            raise BackendConnectionError(f"Failed to join backend call: {e}") from e

        logger.debug(f"[{caller_id}] WebSocket connected in {time.time() - connection_start:.2f} seconds")
        session.mark_open()
        logger.info(f"[{caller_id}] WebSocket connected to backend")
        return BackendChannel(ws, session)
