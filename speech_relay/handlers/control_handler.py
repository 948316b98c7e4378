"""
Handling of the backend's JSON control protocol.

Every non-binary frame is parsed into a control message and routed by its
``type`` to a transition function that updates the call session, forwards
tool invocations to the dispatcher or asks the relay to drop buffered audio.
Frames that cannot be parsed are logged and discarded; they never end the call.
A malformed tool invocation that still carries its id is answered with an
implementation error so the backend is not left waiting.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from speech_relay.config.constants import (
    LOGGER_NAME,
    MESSAGE_TYPE_CALL_STARTED,
    MESSAGE_TYPE_CLIENT_TOOL_INVOCATION,
    MESSAGE_TYPE_ERROR,
    MESSAGE_TYPE_PLAYBACK_CLEAR_BUFFER,
    MESSAGE_TYPE_STATE,
    MESSAGE_TYPE_TRANSCRIPT,
)
from speech_relay.errors import InvalidInvocationError, ProtocolError
from speech_relay.handlers.tool_dispatcher import ToolDispatcher
from speech_relay.models.control_messages import (
    CallStartedMessage,
    ClientToolInvocationMessage,
    ControlMessage,
    ErrorMessage,
    PlaybackClearBufferMessage,
    StateMessage,
    TranscriptMessage,
    parse_control_frame,
)
from speech_relay.models.session import CallSession
from speech_relay.models.tool_results import ToolInvocation

logger = logging.getLogger(LOGGER_NAME)

# Type hint for transition functions
HandlerFunc = Callable[[Any], Awaitable[None]]


class ControlProtocolHandler:
    """Routes control messages for one call to the appropriate transition function.

    Each message type is handled by a method registered in ``handlers``;
    unknown types are logged and ignored so newer backend messages do not
    break older relays.
    """

    def __init__(self, session: CallSession, dispatcher: ToolDispatcher,
                 on_clear_buffer: Optional[Callable[[], Any]] = None):
        self.session = session
        self.dispatcher = dispatcher
        self.on_clear_buffer = on_clear_buffer
        self.pending_invocations: Set[asyncio.Task] = set()
        self.protocol_errors = 0

        self.handlers: Dict[str, HandlerFunc] = {
            MESSAGE_TYPE_CALL_STARTED: self.handle_call_started,
            MESSAGE_TYPE_STATE: self.handle_state,
            MESSAGE_TYPE_TRANSCRIPT: self.handle_transcript,
            MESSAGE_TYPE_CLIENT_TOOL_INVOCATION: self.handle_client_tool_invocation,
            MESSAGE_TYPE_PLAYBACK_CLEAR_BUFFER: self.handle_playback_clear_buffer,
            MESSAGE_TYPE_ERROR: self.handle_error,
        }

    async def handle_frame(self, frame: Union[str, bytes]) -> Optional[ControlMessage]:
        """
        Parse and route one control frame.

        Args:
            frame: Raw text frame from the backend

        Returns:
            The parsed message, or None if the frame was discarded
        """
        try:
            message = parse_control_frame(frame)
        except InvalidInvocationError as e:
            self.protocol_errors += 1
            logger.warning(f"[{self.session.caller_id}] Rejecting tool invocation: {e}")
            self._track(self.dispatcher.reject(self.session.caller_id, e.invocation_id, e.detail))
            return None
        except ProtocolError as e:
            self.protocol_errors += 1
            logger.warning(f"[{self.session.caller_id}] Discarding control frame: {e}")
            return None

        handler = self.handlers.get(message.type)
        if handler is None:
            logger.info(f"[{self.session.caller_id}] Received message type: {message.type}")
            return message

        await handler(message)
        return message

    async def handle_call_started(self, message: CallStartedMessage) -> None:
        self.session.call_id = message.callId
        logger.info(f"[{self.session.caller_id}] Call started: {message.callId}")

    async def handle_state(self, message: StateMessage) -> None:
        self.session.agent_state = message.state
        logger.info(f"[{self.session.caller_id}] State: {message.state}")

    async def handle_transcript(self, message: TranscriptMessage) -> None:
        if not message.final:
            return
        role = (message.role or "unknown").upper()
        logger.info(f"[{self.session.caller_id}] {role} ({message.medium}): {message.text}")

    async def handle_client_tool_invocation(self, message: ClientToolInvocationMessage) -> None:
        """
        Hand the invocation to the dispatcher without waiting for it.

        The handler may perform slow network I/O, so it runs as its own task
        and audio keeps flowing meanwhile.
        """
        invocation = ToolInvocation.from_message(message)
        logger.info(
            f"[{self.session.caller_id}] Tool invocation {invocation.invocation_id}: {invocation.tool_name}"
        )
        self._track(self.dispatcher.dispatch(self.session.caller_id, invocation))

    def _track(self, coro) -> None:
        task = asyncio.create_task(coro)
        self.pending_invocations.add(task)
        task.add_done_callback(self._invocation_done)

    def _invocation_done(self, task: asyncio.Task) -> None:
        self.pending_invocations.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"[{self.session.caller_id}] Tool dispatch crashed: {task.exception()}",
                exc_info=task.exception(),
            )

    async def handle_playback_clear_buffer(self, message: PlaybackClearBufferMessage) -> None:
        logger.info(f"[{self.session.caller_id}] Playback clear buffer")
        if self.on_clear_buffer is None:
            return
        result = self.on_clear_buffer()
        if inspect.isawaitable(result):
            await result

    async def handle_error(self, message: ErrorMessage) -> None:
        logger.error(
            f"[{self.session.caller_id}] Backend error: "
            f"{message.model_dump(exclude_none=True)}"
        )
