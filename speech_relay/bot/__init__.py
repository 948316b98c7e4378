"""
Core per-call audio relay.

Key components:
- backend_session: ``BackendSession`` opens a backend call and returns a ``BackendChannel``
- audio_relay: ``AudioRelay`` pumps audio both ways and routes control frames
- audio_buffer: ``OutboundAudioBuffer`` coalesces backend audio into time windows
- resampler: ``PcmResampler`` converts PCM16 between caller and backend sample rates

Usage example:
```python
relay = AudioRelay(caller_id, backend, registry, settings)
await relay.open()
async for chunk in relay.stream(request.stream()):
    ...  # write chunk to the caller
```
"""

from speech_relay.bot.audio_buffer import OutboundAudioBuffer
from speech_relay.bot.audio_relay import AudioRelay
from speech_relay.bot.backend_session import BackendChannel, BackendSession
from speech_relay.bot.resampler import PcmResampler
