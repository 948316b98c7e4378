"""
Environment-driven settings for the speech relay.

Values are read once from the process environment (after an optional ``.env``
file has been loaded) into a validated ``Settings`` model that is passed
explicitly to the components that need it.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import dotenv
from pydantic import BaseModel, Field, field_validator

from speech_relay.config.constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_BACKEND_SAMPLE_RATE,
    DEFAULT_CALLER_SAMPLE_RATE,
    DEFAULT_CLIENT_BUFFER_SIZE_MS,
    DEFAULT_DATETIME_LOCALE,
    DEFAULT_DATETIME_TIMEZONE,
    DEFAULT_DATETIME_VARIABLE,
    DEFAULT_FLUSH_WINDOW_MS,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)

TRUE_VALUES = {"1", "true", "yes", "on"}


def load_env_file(path: Path = Path(".") / ".env") -> bool:
    """Load environment variables from a .env file if it exists."""
    if path.exists():
        dotenv.load_dotenv(path)
        return True
    return False


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


def _bool_env(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUE_VALUES


class Settings(BaseModel):
    """Runtime configuration for the relay, the backend client and the tools."""

    ultravox_api_key: Optional[str] = None
    ultravox_agent_id: Optional[str] = None
    ultravox_api_base_url: str = DEFAULT_API_BASE_URL
    backend_sample_rate: int = Field(DEFAULT_BACKEND_SAMPLE_RATE, gt=0)
    caller_sample_rate: int = Field(DEFAULT_CALLER_SAMPLE_RATE, gt=0)
    client_buffer_size_ms: int = Field(DEFAULT_CLIENT_BUFFER_SIZE_MS, ge=0)
    flush_window_ms: int = Field(DEFAULT_FLUSH_WINDOW_MS, ge=0)
    tools_dir: Optional[Path] = None
    register_durable_tools: bool = False
    datetime_locale: str = DEFAULT_DATETIME_LOCALE
    datetime_timezone: str = DEFAULT_DATETIME_TIMEZONE
    datetime_variable: str = DEFAULT_DATETIME_VARIABLE
    template_context: Dict[str, Any] = Field(default_factory=dict)
    host: str = "0.0.0.0"
    port: int = 6031
    log_level: str = "INFO"
    debug: bool = False

    @field_validator("ultravox_api_base_url")
    def strip_trailing_slash(cls, v):
        """Normalize the base URL so paths can be appended with a single slash."""
        return v.rstrip("/")

    @property
    def agent_calls_url(self) -> str:
        return f"{self.ultravox_api_base_url}/agents/{self.ultravox_agent_id}/calls"

    @property
    def tools_url(self) -> str:
        return f"{self.ultravox_api_base_url}/tools"

    def require_backend(self) -> None:
        """
        Ensure the settings needed to open backend sessions are present.

        Raises:
            ValueError: If the agent identifier is not configured
        """
        if not self.ultravox_agent_id:
            raise ValueError("ULTRAVOX_AGENT_ID is not set")
        if not self.ultravox_api_key:
            logger.warning("ULTRAVOX_API_KEY is not set, backend requests will be rejected")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from, defaults to ``os.environ``

        Returns:
            Settings: The parsed settings

        Raises:
            ValueError: If TEMPLATE_CONTEXT is not a JSON object
        """
        env = os.environ if env is None else env

        raw_context = env.get("TEMPLATE_CONTEXT") or "{}"
        try:
            template_context = json.loads(raw_context)
        except json.JSONDecodeError as e:
            raise ValueError(f"TEMPLATE_CONTEXT is not valid JSON: {e}") from e
        if not isinstance(template_context, dict):
            raise ValueError("TEMPLATE_CONTEXT must be a JSON object")

        tools_dir = env.get("TOOLS_DIR")

        return cls(
            ultravox_api_key=env.get("ULTRAVOX_API_KEY"),
            ultravox_agent_id=env.get("ULTRAVOX_AGENT_ID"),
            ultravox_api_base_url=env.get("ULTRAVOX_API_BASE_URL") or DEFAULT_API_BASE_URL,
            backend_sample_rate=_int_env(env, "ULTRAVOX_SAMPLE_RATE", DEFAULT_BACKEND_SAMPLE_RATE),
            caller_sample_rate=_int_env(env, "CALLER_SAMPLE_RATE", DEFAULT_CALLER_SAMPLE_RATE),
            client_buffer_size_ms=_int_env(
                env, "ULTRAVOX_CLIENT_BUFFER_SIZE_MS", DEFAULT_CLIENT_BUFFER_SIZE_MS
            ),
            flush_window_ms=_int_env(env, "AUDIO_FLUSH_WINDOW_MS", DEFAULT_FLUSH_WINDOW_MS),
            tools_dir=Path(tools_dir) if tools_dir else None,
            register_durable_tools=_bool_env(env, "REGISTER_DURABLE_TOOLS"),
            datetime_locale=env.get("DATETIME_LOCALE") or DEFAULT_DATETIME_LOCALE,
            datetime_timezone=env.get("DATETIME_TIMEZONE") or DEFAULT_DATETIME_TIMEZONE,
            datetime_variable=env.get("DATETIME_VARIABLE") or DEFAULT_DATETIME_VARIABLE,
            template_context=template_context,
            host=env.get("HOST") or "0.0.0.0",
            port=_int_env(env, "PORT", 6031),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            debug=_bool_env(env, "DEBUG"),
        )
