"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for wire-protocol names and audio defaults so the
relay, the control handler and the tool dispatcher agree on them.
"""

# Logger name used throughout the application
LOGGER_NAME = "speech_relay"

# Inbound HTTP
CALLER_ID_HEADER = "x-uuid"
AUDIO_MEDIA_TYPE = "application/octet-stream"

# Audio defaults
DEFAULT_BACKEND_SAMPLE_RATE = 48000
DEFAULT_CALLER_SAMPLE_RATE = 8000
DEFAULT_CLIENT_BUFFER_SIZE_MS = 60
DEFAULT_FLUSH_WINDOW_MS = 100
PCM16_SAMPLE_WIDTH = 2

# Backend API
DEFAULT_API_BASE_URL = "https://api.ultravox.ai/api"
API_KEY_HEADER = "X-API-Key"
HTTP_TIMEOUT = 10  # seconds

# Control message types received from the backend
MESSAGE_TYPE_CALL_STARTED = "call_started"
MESSAGE_TYPE_STATE = "state"
MESSAGE_TYPE_TRANSCRIPT = "transcript"
MESSAGE_TYPE_CLIENT_TOOL_INVOCATION = "client_tool_invocation"
MESSAGE_TYPE_PLAYBACK_CLEAR_BUFFER = "playback_clear_buffer"
MESSAGE_TYPE_ERROR = "error"

# Control message types sent to the backend
MESSAGE_TYPE_CLIENT_TOOL_RESULT = "client_tool_result"

# Tool result wire values
RESPONSE_TYPE_TOOL_RESPONSE = "tool-response"
ERROR_TYPE_UNDEFINED = "undefined"
ERROR_TYPE_IMPLEMENTATION = "implementation-error"
TOOL_CONTRACT_MESSAGE = (
    "tool result must be a string or an object with string result and "
    "responseType properties."
)

# AMI bridge
DEFAULT_AMI_URL = "http://127.0.0.1:6006"

# Template context
DEFAULT_DATETIME_LOCALE = "es_ES"
DEFAULT_DATETIME_TIMEZONE = "Europe/Madrid"
DEFAULT_DATETIME_VARIABLE = "current_datetime"
