"""
Error types raised inside the speech relay.

Only ``BackendConnectionError`` and ``TransportError`` end a call. The tool
errors are caught by the dispatcher and reported to the backend as
``client_tool_result`` messages, and ``ProtocolError`` only discards the
offending frame.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class BackendConnectionError(RelayError, ConnectionError):
    """The backend session could not be created or joined."""


class ProtocolError(RelayError):
    """A control frame from the backend could not be parsed."""


class InvalidInvocationError(ProtocolError):
    """A tool invocation carried an id but did not match its schema."""

    def __init__(self, invocation_id: str, detail: str):
        self.invocation_id = invocation_id
        self.detail = detail
        super().__init__(f"Invalid client_tool_invocation {invocation_id}: {detail}")


class ToolResolutionError(RelayError, LookupError):
    """An invocation named a tool that is not registered."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f'Tool "{tool_name}" not found in any available directory')


class ToolExecutionError(RelayError):
    """A tool handler raised while executing an invocation."""

    def __init__(self, tool_name: str, cause: BaseException):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(describe_failure(cause))


class TransportError(RelayError):
    """One leg of the duplex relay failed or was closed."""


def describe_failure(exc: BaseException) -> str:
    """
    Render a handler failure for the backend.

    HTTP client errors carrying a response body report that body, everything
    else reports the exception message (or its type when the message is empty).
    """
    body = getattr(exc, "body", None)
    if body:
        return body if isinstance(body, str) else str(body)
    message = str(exc)
    return message or type(exc).__name__
