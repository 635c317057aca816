"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    AUTO_IDLE_TIMEOUT_MS,
    PAGE_COMPLETE_DELAY_MS,
    SESSION_VOICE_DEFAULT,
)

_TRANSPORTS = ("webrtc", "websocket")
_SESSION_PROVIDERS = ("openai", "backend")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = os.environ.get(name, default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {choices}, got {value!r}")
    return value


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the server and SessionGateway.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: tuple[str, ...] = ("*",)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Realtime session
    # ------------------------------------------------------------------

    openai_api_key: str | None = None
    realtime_model: str = "gpt-4o-realtime-preview"
    realtime_voice: str = SESSION_VOICE_DEFAULT
    realtime_transport: str = "webrtc"
    realtime_sdp_url: str = "https://api.openai.com/v1/realtime"
    realtime_ws_url: str = "wss://api.openai.com/v1/realtime"
    session_provider: str = "openai"
    child_id: str = "1"

    # ------------------------------------------------------------------
    # Collaborator services
    # ------------------------------------------------------------------

    book_api_base_url: str = "http://localhost:5000/api"
    vision_model: str = "gpt-4o-mini"
    http_timeout_s: float = 10.0

    # ------------------------------------------------------------------
    # Local media devices (aiortc MediaPlayer)
    # ------------------------------------------------------------------

    audio_input_device: str = "default"
    audio_input_format: str = "pulse"
    video_input_device: str = "/dev/video0"
    video_input_format: str = "v4l2"

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    auto_idle_ms: int = AUTO_IDLE_TIMEOUT_MS
    page_complete_delay_ms: int = PAGE_COMPLETE_DELAY_MS

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric or enumerated variable is malformed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8000),
            cors_origins=tuple(
                origin.strip()
                for origin in os.environ.get("CORS_ORIGINS", "*").split(",")
                if origin.strip()
            ) or ("*",),
            enable_json_logs=_env_bool("ENABLE_JSON_LOGS", True),

            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            realtime_model=os.environ.get("REALTIME_MODEL", "gpt-4o-realtime-preview"),
            realtime_voice=os.environ.get("REALTIME_VOICE", SESSION_VOICE_DEFAULT),
            realtime_transport=_env_choice("REALTIME_TRANSPORT", "webrtc", _TRANSPORTS),
            realtime_sdp_url=os.environ.get(
                "REALTIME_SDP_URL", "https://api.openai.com/v1/realtime"
            ),
            realtime_ws_url=os.environ.get(
                "REALTIME_WS_URL", "wss://api.openai.com/v1/realtime"
            ),
            session_provider=_env_choice("SESSION_PROVIDER", "openai", _SESSION_PROVIDERS),
            child_id=os.environ.get("CHILD_ID", "1"),

            book_api_base_url=os.environ.get(
                "BOOK_API_BASE_URL", "http://localhost:5000/api"
            ).rstrip("/"),
            vision_model=os.environ.get("VISION_MODEL", "gpt-4o-mini"),
            http_timeout_s=float(_env_int("HTTP_TIMEOUT_S", 10)),

            audio_input_device=os.environ.get("AUDIO_INPUT_DEVICE", "default"),
            audio_input_format=os.environ.get("AUDIO_INPUT_FORMAT", "pulse"),
            video_input_device=os.environ.get("VIDEO_INPUT_DEVICE", "/dev/video0"),
            video_input_format=os.environ.get("VIDEO_INPUT_FORMAT", "v4l2"),

            auto_idle_ms=_env_int("AUTO_IDLE_MS", AUTO_IDLE_TIMEOUT_MS),
            page_complete_delay_ms=_env_int(
                "PAGE_COMPLETE_DELAY_MS", PAGE_COMPLETE_DELAY_MS
            ),
        )
