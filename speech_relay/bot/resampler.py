"""
PCM16 mono sample-rate conversion for streamed audio.

Chunks are converted in blocks that map a whole number of input samples onto
a whole number of output samples, so chunk boundaries never shift the output
timing. Samples that do not yet fill a block are held back until the next
chunk or until ``flush`` is called.
"""

from math import gcd

import numpy as np

from speech_relay.config.constants import PCM16_SAMPLE_WIDTH

SAMPLE_DTYPE = "<i2"


class PcmResampler:
    """Stateful linear-interpolation resampler for little-endian PCM16 mono audio."""

    def __init__(self, input_rate: int, output_rate: int):
        if input_rate <= 0 or output_rate <= 0:
            raise ValueError("Sample rates must be positive")
        self.input_rate = input_rate
        self.output_rate = output_rate
        divisor = gcd(input_rate, output_rate)
        self._in_step = input_rate // divisor
        self._out_step = output_rate // divisor
        self._pending = b""

    @property
    def passthrough(self) -> bool:
        return self.input_rate == self.output_rate

    @property
    def pending_bytes(self) -> int:
        return len(self._pending)

    def _convert(self, data: bytes) -> bytes:
        samples = np.frombuffer(data, dtype=SAMPLE_DTYPE).astype(np.float64)
        n_out = len(samples) * self._out_step // self._in_step
        if n_out == 0:
            return b""
        positions = np.arange(n_out) * (self.input_rate / self.output_rate)
        out = np.interp(positions, np.arange(len(samples)), samples)
        return np.clip(np.round(out), -32768, 32767).astype(SAMPLE_DTYPE).tobytes()

    def process(self, chunk: bytes) -> bytes:
        """
        Convert a chunk, holding back samples that do not complete a block.

        Returns:
            Converted audio, possibly empty
        """
        if self.passthrough:
            return chunk

        data = self._pending + chunk
        block_bytes = self._in_step * PCM16_SAMPLE_WIDTH
        usable = (len(data) // block_bytes) * block_bytes
        self._pending = data[usable:]
        if not usable:
            return b""
        return self._convert(data[:usable])

    def flush(self) -> bytes:
        """Convert and return whatever is held back."""
        usable = (len(self._pending) // PCM16_SAMPLE_WIDTH) * PCM16_SAMPLE_WIDTH
        data = self._pending[:usable]
        self._pending = b""
        if not data:
            return b""
        return self._convert(data)

    def reset(self) -> int:
        """Drop held-back samples. Returns the number of bytes dropped."""
        dropped = len(self._pending)
        self._pending = b""
        return dropped
