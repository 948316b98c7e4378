"""
Handlers for the backend side of a call.

Key components:
- control_handler: ``ControlProtocolHandler`` routes JSON control messages by type
  (call_started, state, transcript, client_tool_invocation, playback_clear_buffer, error).
- tool_dispatcher: ``ToolDispatcher`` runs tool handlers and answers each invocation
  with exactly one ``client_tool_result`` message.

Usage example:
```python
from speech_relay.handlers import ControlProtocolHandler, ToolDispatcher

dispatcher = ToolDispatcher(registry, channel)
control = ControlProtocolHandler(channel.session, dispatcher, on_clear_buffer=relay.clear_playback)
await control.handle_frame('{"type": "call_started", "callId": "c-1"}')
```
"""

from speech_relay.handlers.control_handler import ControlProtocolHandler
from speech_relay.handlers.tool_dispatcher import ToolDispatcher
