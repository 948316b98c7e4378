import os
from pathlib import Path

import pytest

from speech_relay.config.settings import Settings, load_env_file


class TestSettings:
    """Tests for environment-driven settings"""

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.ultravox_api_base_url == "https://api.ultravox.ai/api"
        assert settings.backend_sample_rate == 48000
        assert settings.caller_sample_rate == 8000
        assert settings.client_buffer_size_ms == 60
        assert settings.flush_window_ms == 100
        assert settings.tools_dir is None
        assert settings.register_durable_tools is False
        assert settings.datetime_locale == "es_ES"
        assert settings.datetime_timezone == "Europe/Madrid"
        assert settings.datetime_variable == "current_datetime"
        assert settings.template_context == {}
        assert settings.port == 6031
        assert settings.log_level == "INFO"

    def test_from_env(self):
        settings = Settings.from_env({
            "ULTRAVOX_API_KEY": "key",
            "ULTRAVOX_AGENT_ID": "agent",
            "ULTRAVOX_API_BASE_URL": "https://example.test/api/",
            "AUDIO_FLUSH_WINDOW_MS": "40",
            "TOOLS_DIR": "/opt/tools",
            "REGISTER_DURABLE_TOOLS": "true",
            "TEMPLATE_CONTEXT": '{"company": "ACME"}',
            "LOG_LEVEL": "debug",
            "DEBUG": "1",
        })
        assert settings.agent_calls_url == "https://example.test/api/agents/agent/calls"
        assert settings.tools_url == "https://example.test/api/tools"
        assert settings.flush_window_ms == 40
        assert settings.tools_dir == Path("/opt/tools")
        assert settings.register_durable_tools is True
        assert settings.template_context == {"company": "ACME"}
        assert settings.log_level == "DEBUG"
        assert settings.debug is True

    def test_malformed_number_falls_back(self):
        settings = Settings.from_env({"ULTRAVOX_SAMPLE_RATE": "fast", "PORT": ""})
        assert settings.backend_sample_rate == 48000
        assert settings.port == 6031

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
    def test_bad_template_context(self, raw):
        with pytest.raises(ValueError, match="TEMPLATE_CONTEXT"):
            Settings.from_env({"TEMPLATE_CONTEXT": raw})

    def test_require_backend(self):
        with pytest.raises(ValueError, match="ULTRAVOX_AGENT_ID"):
            Settings.from_env({}).require_backend()
        Settings.from_env({"ULTRAVOX_AGENT_ID": "agent"}).require_backend()

    def test_load_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SPEECH_RELAY_TEST_VALUE", raising=False)
        assert load_env_file(tmp_path / ".env") is False

        env_file = tmp_path / ".env"
        env_file.write_text("SPEECH_RELAY_TEST_VALUE=42\n")
        assert load_env_file(env_file) is True
        assert os.environ["SPEECH_RELAY_TEST_VALUE"] == "42"
        monkeypatch.delenv("SPEECH_RELAY_TEST_VALUE")


def test_run_defaults_come_from_settings():
    from run import parse_args

    args = parse_args(Settings.from_env({"PORT": "7000", "LOG_LEVEL": "warning"}), [])
    assert args.port == 7000
    assert args.host == "0.0.0.0"
    assert args.log_level == "WARNING"

    args = parse_args(Settings.from_env({}), ["--port", "9000", "--log-level", "DEBUG"])
    assert args.port == 9000
    assert args.log_level == "DEBUG"
