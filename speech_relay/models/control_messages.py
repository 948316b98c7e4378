"""
Pydantic models for the backend control protocol.

Binary frames on the duplex channel carry raw audio; text frames carry JSON
objects discriminated by their ``type`` field. This module defines structured
models for every control message the relay reacts to and for the single
message type it sends back (``client_tool_result``).
"""

import json
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from speech_relay.config.constants import (
    ERROR_TYPE_IMPLEMENTATION,
    ERROR_TYPE_UNDEFINED,
    MESSAGE_TYPE_CLIENT_TOOL_RESULT,
)
from speech_relay.errors import InvalidInvocationError, ProtocolError


class ControlMessage(BaseModel):
    """Base model for all control messages received from the backend."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., description="Message type identifier")


class CallStartedMessage(ControlMessage):
    """Model for the call_started message."""

    type: Literal["call_started"]
    callId: Optional[str] = Field(None, description="Backend call identifier")


class StateMessage(ControlMessage):
    """Model for the state message."""

    type: Literal["state"]
    state: Optional[str] = Field(None, description="Agent state, e.g. listening or speaking")


class TranscriptMessage(ControlMessage):
    """Model for the transcript message."""

    type: Literal["transcript"]
    role: Optional[str] = Field(None, description="Speaker role (user or agent)")
    medium: Optional[str] = Field(None, description="Medium of the utterance (voice or text)")
    text: Optional[str] = Field(None, description="Full text of the utterance")
    delta: Optional[str] = Field(None, description="Incremental text for partial transcripts")
    final: bool = Field(False, description="Whether the transcript is final")


class ClientToolInvocationMessage(ControlMessage):
    """Model for the client_tool_invocation message."""

    type: Literal["client_tool_invocation"]
    toolName: str = Field(..., description="Name of the tool to run")
    invocationId: str = Field(..., description="Backend-assigned invocation identifier")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Tool parameters")

    @field_validator("parameters", mode="before")
    def default_parameters(cls, v):
        """Treat a null parameter map as empty."""
        return {} if v is None else v


class PlaybackClearBufferMessage(ControlMessage):
    """Model for the playback_clear_buffer message."""

    type: Literal["playback_clear_buffer"]


class ErrorMessage(ControlMessage):
    """Model for the error message."""

    type: Literal["error"]
    error: Optional[Any] = Field(None, description="Backend-provided error detail")
    message: Optional[str] = Field(None, description="Backend-provided error text")


class ClientToolResultMessage(BaseModel):
    """Model for the client_tool_result message sent to the backend."""

    type: Literal["client_tool_result"] = MESSAGE_TYPE_CLIENT_TOOL_RESULT
    invocationId: str = Field(..., description="Identifier of the answered invocation")
    result: Optional[str] = Field(None, description="Tool output on success")
    responseType: Optional[str] = Field(None, description="How the backend should treat the result")
    errorType: Optional[Literal["undefined", "implementation-error"]] = Field(
        None, description="Failure category"
    )
    errorMessage: Optional[str] = Field(None, description="Failure detail")

    @field_validator("errorMessage")
    def error_message_requires_type(cls, v, values):
        """An error message only makes sense together with an error type."""
        if v is not None and values.data.get("errorType") not in (
            ERROR_TYPE_UNDEFINED,
            ERROR_TYPE_IMPLEMENTATION,
        ):
            raise ValueError("errorMessage requires errorType")
        return v

    def to_wire(self) -> str:
        """Serialize to the JSON text frame sent over the channel."""
        return self.model_dump_json(exclude_none=True)


# Union type for all recognized incoming control messages
IncomingControlMessage = Union[
    CallStartedMessage,
    StateMessage,
    TranscriptMessage,
    ClientToolInvocationMessage,
    PlaybackClearBufferMessage,
    ErrorMessage,
]

MESSAGE_MODELS = {
    "call_started": CallStartedMessage,
    "state": StateMessage,
    "transcript": TranscriptMessage,
    "client_tool_invocation": ClientToolInvocationMessage,
    "playback_clear_buffer": PlaybackClearBufferMessage,
    "error": ErrorMessage,
}


def parse_control_frame(frame: Union[str, bytes]) -> ControlMessage:
    """
    Parse a non-binary frame into its control message model.

    Unknown types come back as a plain ``ControlMessage`` so callers can log
    them without failing.

    Args:
        frame: The raw text frame

    Returns:
        The typed control message

    Raises:
        ProtocolError: If the frame is not a JSON object with a string ``type``
            or a recognized message does not match its schema
        InvalidInvocationError: If a tool invocation with a string
            ``invocationId`` does not match its schema
    """
    try:
        data = json.loads(frame)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON control frame: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise ProtocolError("Control frame is not an object with a string type")

    model = MESSAGE_MODELS.get(data["type"], ControlMessage)
    try:
        return model(**data)
    except ValidationError as e:
        invocation_id = data.get("invocationId")
        if model is ClientToolInvocationMessage and isinstance(invocation_id, str):
            detail = "; ".join(
                f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()
            )
            raise InvalidInvocationError(invocation_id, detail) from e
        raise ProtocolError(f"Invalid {data['type']} message: {e}") from e
