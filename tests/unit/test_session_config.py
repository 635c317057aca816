# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig
from constants import (
    CONVERSATION_MAX_OUTPUT_TOKENS,
    CONVERSATION_TEMPERATURE,
    READING_MAX_OUTPUT_TOKENS,
    READING_TEMPERATURE,
)
from session.session_config import (
    TOOL_SCHEMAS,
    initial_session_config,
    reading_mode_update,
)


def test_initial_config_declares_every_tool_once():
    config = initial_session_config(voice="shimmer", instructions="  Be kind.  ")

    names = [tool["name"] for tool in config["tools"]]
    assert names == ["bookSearchTool", "display_book_page", "getEyesTool"]
    assert config["voice"] == "shimmer"
    assert config["instructions"] == "Be kind."
    assert config["tool_choice"] == "auto"
    assert config["turn_detection"]["type"] == "server_vad"
    assert config["temperature"] == CONVERSATION_TEMPERATURE


def test_initial_config_copies_schemas():
    config = initial_session_config()
    config["tools"][0]["name"] = "mutated"

    assert TOOL_SCHEMAS[0]["name"] == "bookSearchTool"


def test_reading_mode_toggles_response_limits():
    assert reading_mode_update(True) == {
        "temperature": READING_TEMPERATURE,
        "max_response_output_tokens": READING_MAX_OUTPUT_TOKENS,
    }
    assert reading_mode_update(False) == {
        "temperature": CONVERSATION_TEMPERATURE,
        "max_response_output_tokens": CONVERSATION_MAX_OUTPUT_TOKENS,
    }
    assert READING_MAX_OUTPUT_TOKENS < CONVERSATION_MAX_OUTPUT_TOKENS


# ---------------------------------------------------------------------
# AppConfig
# ---------------------------------------------------------------------

def test_load_from_env_defaults(monkeypatch: pytest.MonkeyPatch):
    for name in ("PORT", "CORS_ORIGINS", "REALTIME_TRANSPORT", "SESSION_PROVIDER", "AUTO_IDLE_MS"):
        monkeypatch.delenv(name, raising=False)

    config = AppConfig.load_from_env()

    assert config.port == 8000
    assert config.cors_origins == ("*",)
    assert config.realtime_transport == "webrtc"
    assert config.session_provider == "openai"


def test_load_from_env_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PORT", "9001")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
    monkeypatch.setenv("REALTIME_TRANSPORT", "WebSocket")
    monkeypatch.setenv("BOOK_API_BASE_URL", "http://books.test/api/")
    monkeypatch.setenv("AUTO_IDLE_MS", "0")

    config = AppConfig.load_from_env()

    assert config.port == 9001
    assert config.cors_origins == ("http://a.test", "http://b.test")
    assert config.realtime_transport == "websocket"
    assert config.book_api_base_url == "http://books.test/api"
    assert config.auto_idle_ms == 0


@pytest.mark.parametrize("name, value", [
    ("PORT", "eighty"),
    ("AUTO_IDLE_MS", "-5"),
    ("REALTIME_TRANSPORT", "carrier-pigeon"),
    ("SESSION_PROVIDER", "mystery"),
])
def test_load_from_env_rejects_malformed_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        AppConfig.load_from_env()
