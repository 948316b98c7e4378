import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from speech_relay.bot.audio_relay import AudioRelay
from speech_relay.bot.backend_session import BackendChannel
from speech_relay.models.session import CallSession, ConnectionState
from speech_relay.tools.registry import ToolRegistration, ToolRegistry


async def idle_caller(stop: asyncio.Event):
    """Caller stream that stays open until told to stop, sending nothing"""
    await stop.wait()
    if False:
        yield b""


async def caller_chunks(chunks):
    for chunk in chunks:
        yield chunk


class TickingWebSocket:
    """Wraps a fake WebSocket and advances the clock before every binary frame after the first"""

    def __init__(self, ws, clock, step_ms):
        self.ws = ws
        self.clock = clock
        self.step_ms = step_ms
        self.seen_binary = False

    def __getattr__(self, name):
        return getattr(self.ws, name)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.ws.__anext__()
        if isinstance(frame, bytes):
            if self.seen_binary:
                self.clock.advance(self.step_ms)
            self.seen_binary = True
        return frame


def make_relay(settings, ws, session, clock):
    backend = MagicMock()
    backend.open = AsyncMock(return_value=BackendChannel(ws, session))
    return AudioRelay("abc", backend, ToolRegistry(), settings, clock=clock)


async def collect(relay, chunks):
    return [data async for data in relay.stream(chunks)]


class TestAudioRelay:
    """Tests for the per-call audio relay"""

    @pytest.mark.asyncio
    async def test_window_flush_end_to_end(self, settings, fake_ws, fake_clock, open_session):
        """call_started, one frame, then a second frame 100 ms later gives exactly one write"""
        ws = TickingWebSocket(fake_ws, fake_clock, step_ms=100)
        fake_ws.feed(json.dumps({"type": "call_started", "callId": "call-1"}))
        fake_ws.feed(b"\x01\x02\x03\x04")
        fake_ws.feed(b"\x05\x06\x07\x08")
        fake_ws.end()

        relay = make_relay(settings, ws, open_session, fake_clock)
        await relay.open()
        stop = asyncio.Event()
        out = await collect(relay, idle_caller(stop))

        assert out == [b"\x01\x02\x03\x04\x05\x06\x07\x08"]
        assert open_session.call_id == "call-1"
        relay.backend.open.assert_awaited_once_with("abc", {})

    @pytest.mark.asyncio
    async def test_remaining_audio_delivered_on_backend_close(self, settings, fake_ws, fake_clock, open_session):
        """Audio still inside the window is written when the backend ends the call"""
        ws = TickingWebSocket(fake_ws, fake_clock, step_ms=10)
        for frame in (b"aa", b"bb", b"cc"):
            fake_ws.feed(frame)
        fake_ws.end()

        relay = make_relay(settings, ws, open_session, fake_clock)
        await relay.open()
        out = await collect(relay, idle_caller(asyncio.Event()))

        assert out == [b"aabbcc"]
        assert open_session.state is ConnectionState.CLOSED
        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_caller_eof_closes_backend(self, settings, fake_ws, fake_clock, open_session):
        """Caller stream end closes the backend channel and ends the response"""
        relay = make_relay(settings, fake_ws, open_session, fake_clock)
        await relay.open()
        out = await collect(relay, caller_chunks([b"\x00\x01", b"\x02\x03"]))

        assert out == []
        assert fake_ws.sent == [b"\x00\x01", b"\x02\x03"]
        assert fake_ws.closed
        assert open_session.state is ConnectionState.CLOSED

        # Frames arriving after the close are never read
        fake_ws.feed(b"late")
        assert relay.buffer.bytes_received == 0

    @pytest.mark.asyncio
    async def test_inbound_dropped_until_open(self, settings, fake_ws, fake_clock):
        """Audio that arrives while the channel is not open is dropped, not queued"""
        session = CallSession("abc")
        relay = make_relay(settings, fake_ws, session, fake_clock)
        await relay.open()
        await collect(relay, caller_chunks([b"\x00\x01\x02\x03"]))

        assert fake_ws.sent == []
        assert relay.dropped_bytes == 4
        assert relay.inbound_bytes == 4

    @pytest.mark.asyncio
    async def test_playback_clear_buffer_discards_pending_audio(self, settings, fake_ws, fake_clock, open_session):
        """Audio buffered before an interruption is never delivered"""
        fake_ws.feed(b"stale")
        fake_ws.feed(json.dumps({"type": "playback_clear_buffer"}))
        fake_ws.feed(b"fresh")
        fake_ws.end()

        relay = make_relay(settings, fake_ws, open_session, fake_clock)
        await relay.open()
        out = await collect(relay, idle_caller(asyncio.Event()))

        assert out == [b"fresh"]
        assert relay.buffer.bytes_discarded == 5

    @pytest.mark.asyncio
    async def test_invalid_control_frame_does_not_end_call(self, settings, fake_ws, fake_clock, open_session):
        fake_ws.feed("{not json")
        fake_ws.feed(b"audio")
        fake_ws.end()

        relay = make_relay(settings, fake_ws, open_session, fake_clock)
        await relay.open()
        out = await collect(relay, idle_caller(asyncio.Event()))

        assert out == [b"audio"]
        assert relay.control.protocol_errors == 1

    @pytest.mark.asyncio
    async def test_audio_is_resampled_both_ways(self, settings, fake_ws, fake_clock, open_session):
        """Caller audio is upsampled before sending, backend audio downsampled before buffering"""
        settings = settings.model_copy(update={"backend_sample_rate": 16000})
        fake_ws.feed(b"\x10\x00" * 4)

        relay = make_relay(settings, fake_ws, open_session, fake_clock)
        await relay.open()
        stop = asyncio.Event()

        async def one_chunk_then_wait():
            yield b"\x10\x00" * 2
            fake_ws.end()
            await stop.wait()

        out = await collect(relay, one_chunk_then_wait())

        assert fake_ws.sent == [b"\x10\x00" * 4]
        assert out == [b"\x10\x00" * 2]

    @pytest.mark.asyncio
    async def test_stream_requires_open(self, settings, fake_ws, fake_clock, open_session):
        relay = make_relay(settings, fake_ws, open_session, fake_clock)
        with pytest.raises(RuntimeError):
            await collect(relay, caller_chunks([]))

    @pytest.mark.asyncio
    async def test_close_reports_running_invocations(self, settings, fake_ws, fake_clock, open_session):
        """Teardown does not wait for slow tools; it logs them and their late result is dropped"""
        release = asyncio.Event()

        async def slow_tool(caller_id, parameters):
            await release.wait()
            return "done"

        fake_ws.feed(json.dumps({
            "type": "client_tool_invocation",
            "toolName": "slow",
            "invocationId": "inv-1",
        }))
        fake_ws.end()

        backend = MagicMock()
        backend.open = AsyncMock(return_value=BackendChannel(fake_ws, open_session))
        registry = ToolRegistry([ToolRegistration("slow", slow_tool)])
        relay = AudioRelay("abc", backend, registry, settings, clock=fake_clock)
        await relay.open()

        with patch("speech_relay.bot.audio_relay.logger") as mock_logger:
            await collect(relay, idle_caller(asyncio.Event()))
            mock_logger.warning.assert_called_once_with(
                "[abc] Closing with 1 tool invocation(s) still running; "
                "their results will not be delivered"
            )

        release.set()
        await asyncio.gather(*list(relay.control.pending_invocations))
        assert not [frame for frame in fake_ws.sent if isinstance(frame, str)]
