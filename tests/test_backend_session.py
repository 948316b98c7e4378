import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from websockets.exceptions import ConnectionClosedError

from speech_relay.bot.backend_session import BackendChannel, BackendSession
from speech_relay.errors import BackendConnectionError, TransportError
from speech_relay.models.control_messages import ClientToolResultMessage
from speech_relay.models.session import CallSession, ConnectionState


def http_session(async_cm, status=200, payload=None):
    """Mock aiohttp session whose post() answers with the given status and JSON"""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload if payload is not None else {})
    response.text = AsyncMock(return_value="server error")
    session = MagicMock()
    session.post = MagicMock(return_value=async_cm(response))
    session.close = AsyncMock()
    return session


class TestBackendSession:
    """Tests for opening backend sessions"""

    @pytest.mark.asyncio
    async def test_open_success(self, settings, async_cm, fake_ws):
        session = http_session(async_cm, payload={"joinUrl": "wss://backend/join/1"})
        backend = BackendSession(settings, http_session=session)

        with patch(
            "speech_relay.bot.backend_session.websockets.connect",
            new=AsyncMock(return_value=fake_ws),
        ) as mock_connect:
            channel = await backend.open("abc", {"name": "Ana"})

        assert isinstance(channel, BackendChannel)
        assert channel.is_open
        assert channel.session.caller_id == "abc"
        assert channel.session.template_context == {"name": "Ana"}
        mock_connect.assert_called_once()
        assert mock_connect.call_args.args[0] == "wss://backend/join/1"
        assert mock_connect.call_args.kwargs["compression"] is None

        kwargs = session.post.call_args.kwargs
        assert session.post.call_args.args[0] == "https://api.ultravox.ai/api/agents/agent-123/calls"
        assert kwargs["headers"]["X-API-Key"] == "test-key"
        assert kwargs["json"] == {
            "templateContext": {"name": "Ana"},
            "metadata": {"uuid": "abc"},
            "medium": {
                "serverWebSocket": {
                    "inputSampleRate": 8000,
                    "outputSampleRate": 8000,
                    "clientBufferSizeMs": 60,
                },
            },
        }
        session.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_join_url(self, settings, async_cm):
        backend = BackendSession(settings, http_session=http_session(async_cm, payload={"callId": "c"}))
        with pytest.raises(ConnectionError):
            await backend.open("abc")

    @pytest.mark.asyncio
    async def test_error_status(self, settings, async_cm):
        backend = BackendSession(settings, http_session=http_session(async_cm, status=503))
        with pytest.raises(BackendConnectionError, match="503"):
            await backend.open("abc")

    @pytest.mark.asyncio
    async def test_http_client_error(self, settings):
        session = MagicMock()
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        backend = BackendSession(settings, http_session=session)
        with pytest.raises(BackendConnectionError):
            await backend.open("abc")

    @pytest.mark.asyncio
    async def test_call_creation_timeout(self, settings):
        """A request that exceeds the HTTP timeout is a connection failure, not a crash"""
        session = MagicMock()
        session.post = MagicMock(side_effect=asyncio.TimeoutError())
        backend = BackendSession(settings, http_session=session)
        with pytest.raises(BackendConnectionError, match="timeout"):
            await backend.open("abc", {})

    @pytest.mark.asyncio
    async def test_call_creation_invalid_json(self, settings, async_cm):
        session = http_session(async_cm)
        session.post.return_value.return_value.json = AsyncMock(
            side_effect=json.JSONDecodeError("Expecting property name", "{oops", 1)
        )
        backend = BackendSession(settings, http_session=session)
        with pytest.raises(BackendConnectionError, match="Invalid call creation response"):
            await backend.open("abc", {})

    @pytest.mark.asyncio
    async def test_websocket_failure(self, settings, async_cm):
        backend = BackendSession(
            settings, http_session=http_session(async_cm, payload={"joinUrl": "wss://backend/join/1"})
        )
        with patch(
            "speech_relay.bot.backend_session.websockets.connect",
            new=AsyncMock(side_effect=asyncio.TimeoutError()),
        ):
            with pytest.raises(BackendConnectionError, match="timeout"):
                await backend.open("abc")

        with patch(
            "speech_relay.bot.backend_session.websockets.connect",
            new=AsyncMock(side_effect=OSError("unreachable")),
        ):
            with pytest.raises(BackendConnectionError):
                await backend.open("abc")

    @pytest.mark.asyncio
    async def test_owns_http_session_when_not_given(self, settings, async_cm):
        session = http_session(async_cm, payload={})
        with patch("speech_relay.bot.backend_session.aiohttp.ClientSession", return_value=session):
            with pytest.raises(BackendConnectionError):
                await BackendSession(settings).create_call("abc", {})
        session.close.assert_awaited_once()

    def test_selected_tools_attached(self, settings):
        tools = [{"toolId": "t1"}, {"temporaryTool": {"modelToolName": "x"}}]
        body = BackendSession(settings, selected_tools=tools).build_call_request("abc", {})
        assert body["selectedTools"] == tools
        assert "selectedTools" not in BackendSession(settings).build_call_request("abc", {})

    @pytest.mark.asyncio
    async def test_datetime_variable_resolved(self, settings, async_cm, fake_ws):
        settings = settings.model_copy(update={"template_context": {"current_datetime": "", "company": "ACME"}})
        session = http_session(async_cm, payload={"joinUrl": "wss://backend/join/1"})
        backend = BackendSession(settings, http_session=session)

        with patch(
            "speech_relay.bot.backend_session.websockets.connect",
            new=AsyncMock(return_value=fake_ws),
        ):
            channel = await backend.open("abc")

        context = session.post.call_args.kwargs["json"]["templateContext"]
        assert context["company"] == "ACME"
        assert context["current_datetime"]
        assert channel.session.template_context == context


class TestBackendChannel:
    """Tests for the per-call duplex channel"""

    @pytest.mark.asyncio
    async def test_send_audio_only_when_open(self, fake_ws):
        session = CallSession("abc")
        channel = BackendChannel(fake_ws, session)

        assert await channel.send_audio(b"\x00\x00") is False
        session.mark_open()
        assert await channel.send_audio(b"\x01\x00") is True
        assert fake_ws.sent == [b"\x01\x00"]

    @pytest.mark.asyncio
    async def test_send_after_remote_close(self, open_session):
        ws = MagicMock()
        ws.send = AsyncMock(side_effect=ConnectionClosedError(None, None))
        channel = BackendChannel(ws, open_session)

        with pytest.raises(TransportError):
            await channel.send_audio(b"\x00\x00")
        assert open_session.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_send_message(self, fake_ws, open_session):
        channel = BackendChannel(fake_ws, open_session)
        await channel.send_message(ClientToolResultMessage(invocationId="inv-1", result="ok"))
        assert fake_ws.sent == ['{"type":"client_tool_result","invocationId":"inv-1","result":"ok"}']

    @pytest.mark.asyncio
    async def test_send_text_when_closed(self, fake_ws, open_session):
        channel = BackendChannel(fake_ws, open_session)
        await channel.close()
        with pytest.raises(TransportError):
            await channel.send_text("{}")

    @pytest.mark.asyncio
    async def test_frames_until_close(self, fake_ws, open_session):
        fake_ws.feed(b"audio")
        fake_ws.feed('{"type": "state"}')
        fake_ws.end()
        channel = BackendChannel(fake_ws, open_session)

        frames = [frame async for frame in channel.frames()]

        assert frames == [b"audio", '{"type": "state"}']
        assert open_session.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_frames_abnormal_close(self, open_session):
        class BrokenWebSocket:
            def __aiter__(self):
                return self

            async def __anext__(self):
                raise ConnectionClosedError(None, None)

        channel = BackendChannel(BrokenWebSocket(), open_session)
        with pytest.raises(TransportError):
            async for _ in channel.frames():
                pass
        assert open_session.is_closed

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_ws, open_session):
        channel = BackendChannel(fake_ws, open_session)
        await channel.close()
        await channel.close()
        assert fake_ws.close_calls == 1
        assert open_session.state is ConnectionState.CLOSED
