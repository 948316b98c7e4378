"""
Tool invocation and result types.

A handler may return a plain string or a mapping with a textual ``result``
(or ``responseText``) and a ``responseType``. ``normalize_tool_result`` turns
whatever the handler produced into exactly one of ``ToolSuccess`` or
``ToolFailure``; both know how to render themselves as a
``client_tool_result`` message for a given invocation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel

from speech_relay.config.constants import (
    ERROR_TYPE_IMPLEMENTATION,
    ERROR_TYPE_UNDEFINED,
    RESPONSE_TYPE_TOOL_RESPONSE,
    TOOL_CONTRACT_MESSAGE,
)
from speech_relay.models.control_messages import (
    ClientToolInvocationMessage,
    ClientToolResultMessage,
)

TEXT_FIELDS = ("result", "responseText")


@dataclass(frozen=True)
class ToolInvocation:
    """A backend request to run one named tool, consumed once by the dispatcher."""

    invocation_id: str
    tool_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: ClientToolInvocationMessage) -> "ToolInvocation":
        return cls(
            invocation_id=message.invocationId,
            tool_name=message.toolName,
            parameters=dict(message.parameters),
        )


@dataclass(frozen=True)
class ToolSuccess:
    text: str
    response_type: str = RESPONSE_TYPE_TOOL_RESPONSE

    def to_message(self, invocation_id: str) -> ClientToolResultMessage:
        return ClientToolResultMessage(
            invocationId=invocation_id,
            result=self.text,
            responseType=self.response_type,
        )


@dataclass(frozen=True)
class ToolFailure:
    kind: str
    message: str
    response_type: Optional[str] = None

    @classmethod
    def undefined(cls, message: str) -> "ToolFailure":
        return cls(kind=ERROR_TYPE_UNDEFINED, message=message)

    @classmethod
    def implementation(cls, message: str) -> "ToolFailure":
        return cls(
            kind=ERROR_TYPE_IMPLEMENTATION,
            message=message,
            response_type=RESPONSE_TYPE_TOOL_RESPONSE,
        )

    @classmethod
    def contract_violation(cls) -> "ToolFailure":
        return cls.implementation(TOOL_CONTRACT_MESSAGE)

    def to_message(self, invocation_id: str) -> ClientToolResultMessage:
        return ClientToolResultMessage(
            invocationId=invocation_id,
            responseType=self.response_type,
            errorType=self.kind,
            errorMessage=self.message,
        )


ToolOutcome = Union[ToolSuccess, ToolFailure]


def normalize_tool_result(value: Any) -> ToolOutcome:
    """
    Map a handler's return value onto the result union.

    Args:
        value: Whatever the handler returned

    Returns:
        ToolSuccess for a string or a well-formed mapping, otherwise the
        contract-violation ToolFailure
    """
    if isinstance(value, str):
        return ToolSuccess(text=value)

    if isinstance(value, BaseModel):
        value = value.model_dump()

    if isinstance(value, Mapping):
        text = next(
            (value[name] for name in TEXT_FIELDS if isinstance(value.get(name), str)),
            None,
        )
        response_type = value.get("responseType")
        if text is not None and isinstance(response_type, str):
            return ToolSuccess(text=text, response_type=response_type)

    return ToolFailure.contract_violation()
