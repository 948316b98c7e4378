"""
Time-windowed coalescing of backend audio.

Backend audio arrives in many small binary frames. Writing each one to the
caller's chunked response costs a transport write per frame, so frames are
accumulated and written in windows of roughly ``window_ms``.
"""

import time
from typing import Callable, Optional

from speech_relay.config.constants import DEFAULT_FLUSH_WINDOW_MS


class OutboundAudioBuffer:
    """
    Byte accumulator for one call's backend-to-caller audio.

    The first frame after a flush (or after creation) records the window start.
    Each later frame checks the elapsed time and, once ``window_ms`` has passed,
    the whole accumulated buffer is returned as a single write and cleared.
    There is no timer: the check only happens when a frame arrives.

    Example:
        buffer = OutboundAudioBuffer(window_ms=100)
        data = buffer.append(frame)
        if data:
            yield data
    """

    def __init__(self, window_ms: int = DEFAULT_FLUSH_WINDOW_MS,
                 clock: Callable[[], float] = time.monotonic):
        self.window_ms = window_ms
        self._clock = clock
        self._data = bytearray()
        self._first_chunk = True
        self._window_start = 0.0
        self.bytes_received = 0
        self.bytes_flushed = 0
        self.bytes_discarded = 0
        self.flush_count = 0

    def __len__(self) -> int:
        return len(self._data)

    def elapsed_ms(self) -> float:
        return (self._clock() - self._window_start) * 1000

    def append(self, chunk: bytes) -> Optional[bytes]:
        """
        Add a frame and return the coalesced audio if the window has elapsed.

        Args:
            chunk: Audio bytes received from the backend

        Returns:
            The bytes to write to the caller, or None if the window is still open
        """
        self._data.extend(chunk)
        self.bytes_received += len(chunk)

        if self._first_chunk:
            self._first_chunk = False
            self._window_start = self._clock()
            return None

        if self.elapsed_ms() >= self.window_ms:
            return self.flush()
        return None

    def flush(self) -> bytes:
        """Return everything buffered and start over with the next frame."""
        data = bytes(self._data)
        self._data.clear()
        self._first_chunk = True
        self.bytes_flushed += len(data)
        if data:
            self.flush_count += 1
        return data

    def drain(self) -> Optional[bytes]:
        """Flush whatever is left regardless of the window, e.g. at end of call."""
        if not self._data:
            return None
        return self.flush()

    def discard(self) -> int:
        """Drop buffered audio without delivering it. Returns the bytes dropped."""
        dropped = len(self._data)
        self._data.clear()
        self._first_chunk = True
        self.bytes_discarded += dropped
        return dropped
