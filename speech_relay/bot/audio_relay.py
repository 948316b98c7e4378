"""
Per-call relay between the caller's HTTP audio stream and the backend channel.

This module provides the ``AudioRelay`` class, which:
- Opens the backend session for one caller
- Forwards caller audio to the backend as it arrives, dropping it while the
  channel is not open
- Coalesces backend audio into time windows before writing it to the caller
- Routes control frames to the control protocol handler
- Tears the whole call down when either leg ends or fails
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, Optional

from starlette.requests import ClientDisconnect

from speech_relay.bot.audio_buffer import OutboundAudioBuffer
from speech_relay.bot.backend_session import BackendChannel, BackendSession
from speech_relay.bot.resampler import PcmResampler
from speech_relay.config.constants import LOGGER_NAME
from speech_relay.config.settings import Settings
from speech_relay.errors import TransportError
from speech_relay.handlers.control_handler import ControlProtocolHandler
from speech_relay.handlers.tool_dispatcher import ToolDispatcher
from speech_relay.tools.registry import ToolRegistry

logger = logging.getLogger(LOGGER_NAME)


class AudioRelay:
    """
    Duplex audio/control relay for a single call.

    All state (buffer, resamplers, session) belongs to this instance and is
    only touched by the task serving this call.
    """

    def __init__(
        self,
        caller_id: str,
        backend: BackendSession,
        registry: ToolRegistry,
        settings: Settings,
        template_context: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.caller_id = caller_id
        self.backend = backend
        self.registry = registry
        self.settings = settings
        self.template_context = dict(template_context or {})
        self.buffer = OutboundAudioBuffer(settings.flush_window_ms, clock)
        self.upsampler = PcmResampler(settings.caller_sample_rate, settings.backend_sample_rate)
        self.downsampler = PcmResampler(settings.backend_sample_rate, settings.caller_sample_rate)
        self.channel: Optional[BackendChannel] = None
        self.dispatcher: Optional[ToolDispatcher] = None
        self.control: Optional[ControlProtocolHandler] = None
        self.inbound_bytes = 0
        self.dropped_bytes = 0

    @property
    def session(self):
        return self.channel.session if self.channel else None

    async def open(self) -> None:
        """
        Open the backend session for this call.

        Raises:
            BackendConnectionError: If the backend session cannot be opened
        """
        self.channel = await self.backend.open(self.caller_id, self.template_context)
        self.dispatcher = ToolDispatcher(self.registry, self.channel)
        self.control = ControlProtocolHandler(
            self.channel.session,
            self.dispatcher,
            on_clear_buffer=self.clear_playback,
        )
        logger.info(f"[{self.caller_id}] Relay opened")

    def clear_playback(self) -> int:
        """
        Drop buffered backend audio after an interruption.

        Returns:
            Number of bytes discarded
        """
        dropped = self.buffer.discard() + self.downsampler.reset()
        if dropped:
            logger.info(f"[{self.caller_id}] Discarded {dropped} bytes of pending playback")
        return dropped

    async def _pump_inbound(self, caller_chunks: AsyncIterator[bytes]) -> None:
        """Forward caller audio to the backend, then close the backend when the caller is done."""
        try:
            async for chunk in caller_chunks:
                if not chunk:
                    continue
                self.inbound_bytes += len(chunk)
                if not self.channel.is_open:
                    self.dropped_bytes += len(chunk)
                    continue
                audio = self.upsampler.process(chunk)
                if audio:
                    await self.channel.send_audio(audio)
            logger.info(f"[{self.caller_id}] Request stream ended")
        except TransportError as e:
            logger.warning(f"[{self.caller_id}] {e}")
        except (ClientDisconnect, OSError) as e:
            logger.error(f"[{self.caller_id}] Request error: {e!r}")
        finally:
            await self.channel.close()

    async def stream(self, caller_chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """
        Run the relay, yielding audio for the caller's response stream.

        Args:
            caller_chunks: Raw audio chunks from the caller's request body

        Yields:
            Coalesced backend audio, one item per write to the caller
        """
        if self.channel is None:
            raise RuntimeError("AudioRelay.open() must be called before stream()")

        inbound = asyncio.create_task(self._pump_inbound(caller_chunks))
        try:
            async for frame in self.channel.frames():
                if self.session.is_closed:
                    break
                if isinstance(frame, (bytes, bytearray)):
                    audio = self.downsampler.process(bytes(frame))
                    if not audio:
                        continue
                    data = self.buffer.append(audio)
                    if data:
                        yield data
                else:
                    await self.control.handle_frame(frame)

            tail = self.downsampler.flush()
            if tail:
                data = self.buffer.append(tail)
                if data:
                    yield data
            remainder = self.buffer.drain()
            if remainder:
                yield remainder
        except TransportError as e:
            logger.warning(f"[{self.caller_id}] {e}")
        finally:
            if not inbound.done():
                inbound.cancel()
            try:
                await inbound
            except asyncio.CancelledError:
                pass
            await self.close()

    async def close(self) -> None:
        if self.channel is not None:
            await self.channel.close()
        pending = len(self.control.pending_invocations) if self.control is not None else 0
        if pending:
            logger.warning(
                f"[{self.caller_id}] Closing with {pending} tool invocation(s) still running; "
                f"their results will not be delivered"
            )
        logger.info(
            f"[{self.caller_id}] Relay closed: {self.inbound_bytes} bytes in "
            f"({self.dropped_bytes} dropped), {self.buffer.bytes_flushed} bytes out "
            f"in {self.buffer.flush_count} writes"
        )
