"""
Models module for data structures and state management in the speech relay.

Key components:
- control_messages: Pydantic models for the JSON control frames exchanged with the
  speech-to-speech backend, plus the ``parse_control_frame`` entry point.
- tool_results: The ``ToolInvocation`` record and the ``ToolSuccess`` /
  ``ToolFailure`` result union with its normalization function.
- session: ``CallSession``, the state owned by one call's relay.

Usage examples:
```python
from speech_relay.models.control_messages import parse_control_frame
from speech_relay.models.tool_results import ToolInvocation, normalize_tool_result

message = parse_control_frame(
    '{"type": "client_tool_invocation", "toolName": "avrHangup", '
    '"invocationId": "inv-1", "parameters": {}}'
)
invocation = ToolInvocation.from_message(message)

outcome = normalize_tool_result("Call ended")
await channel.send_text(outcome.to_message(invocation.invocation_id).to_wire())
```
"""

from speech_relay.models.control_messages import (
    CallStartedMessage,
    ClientToolInvocationMessage,
    ClientToolResultMessage,
    ControlMessage,
    ErrorMessage,
    IncomingControlMessage,
    PlaybackClearBufferMessage,
    StateMessage,
    TranscriptMessage,
    parse_control_frame,
)
from speech_relay.models.session import CallSession, ConnectionState
from speech_relay.models.tool_results import (
    ToolFailure,
    ToolInvocation,
    ToolOutcome,
    ToolSuccess,
    normalize_tool_result,
)
