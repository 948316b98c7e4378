import asyncio
import logging

import pytest

from speech_relay.config.settings import Settings
from speech_relay.models.session import CallSession


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class AsyncContextManagerMock:
    """Stands in for the object returned by ``session.post(...)`` and friends."""

    def __init__(self, return_value):
        self.return_value = return_value

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


class FakeWebSocket:
    """
    Scripted backend WebSocket.

    Frames queued with ``feed`` are yielded by async iteration; ``end`` (or
    ``close``) finishes the iteration the way a normal close does.
    """

    def __init__(self, frames=()):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.close_calls = 0
        for frame in frames:
            self.feed(frame)

    def feed(self, frame):
        self.incoming.put_nowait(frame)

    def end(self):
        self.incoming.put_nowait(None)

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self.end()

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms / 1000


@pytest.fixture
def async_cm():
    return AsyncContextManagerMock


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with equal sample rates so audio passes through unchanged"""
    return Settings(
        ultravox_api_key="test-key",
        ultravox_agent_id="agent-123",
        backend_sample_rate=8000,
        caller_sample_rate=8000,
        datetime_locale="en_US",
        datetime_timezone="UTC",
    )


@pytest.fixture
def open_session():
    session = CallSession("abc")
    session.mark_open()
    return session
