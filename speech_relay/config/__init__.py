"""
Configuration module for the speech relay.

This module provides centralized configuration management for the entire application,
including constants, logging setup, and environment-based settings.

Key components:
- constants: Wire-protocol message types, tool result values and audio defaults
  shared by the relay, the control handler and the tool dispatcher.
- logging_config: Console and rotating-file logging for the application logger.
- settings: The ``Settings`` model populated from environment variables (and an
  optional ``.env`` file).

Usage examples:
```python
from speech_relay.config.logging_config import configure_logging
from speech_relay.config.settings import Settings, load_env_file

load_env_file()
settings = Settings.from_env()
logger = configure_logging(settings.log_level)
logger.info("Relay window: %sms", settings.flush_window_ms)
```
"""
