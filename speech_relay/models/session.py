"""
Per-call session state.

A ``CallSession`` is created when a caller stream begins and is owned by the
``AudioRelay`` serving that caller. It is never shared between calls and is
discarded when either side of the relay closes.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ConnectionState(str, Enum):
    """Lifecycle of the backend leg of a call."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class CallSession:
    """
    State of one caller's pairing with one backend session.

    Attributes:
        caller_id: Caller identifier taken from the inbound request header
        call_id: Backend call identifier, known once call_started arrives
        state: Connection state of the backend leg
        template_context: Resolved template variables sent at session creation
    """

    def __init__(self, caller_id: str, template_context: Optional[Dict[str, Any]] = None):
        self.caller_id = caller_id
        self.call_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING
        self.template_context: Dict[str, Any] = dict(template_context or {})
        self.agent_state: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED)

    def mark_open(self) -> None:
        if self.state is ConnectionState.CONNECTING:
            self.state = ConnectionState.OPEN

    def mark_closing(self) -> None:
        if self.state is not ConnectionState.CLOSED:
            self.state = ConnectionState.CLOSING

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    def __repr__(self) -> str:
        return (
            f"CallSession(caller_id={self.caller_id!r}, call_id={self.call_id!r}, "
            f"state={self.state.value})"
        )
