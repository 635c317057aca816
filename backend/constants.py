"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for the behavioral constants of the turn-taking core.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- Deployment knobs (keys, URLs, devices) live in config.py instead.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Turn-taking watchdog
# =============================================================================

AUTO_IDLE_TIMEOUT_MS: Final[int] = 3_000

# =============================================================================
# Reading session
# =============================================================================

# Natural pause between narration end and "page completed"
PAGE_COMPLETE_DELAY_MS: Final[int] = 3_000

# =============================================================================
# Connection retry policy
# =============================================================================

CONNECT_MAX_RETRIES: Final[int] = 3
CONNECT_RETRY_DELAY_MS: Final[int] = 2_000

# =============================================================================
# Tool calls
# =============================================================================

TOOL_CALL_TIMEOUT_S: Final[float] = 30.0

VISION_CAPTURE_ATTEMPTS: Final[int] = 3
VISION_CAPTURE_SPACING_MS: Final[int] = 500
VISION_MAX_OUTPUT_TOKENS: Final[int] = 300

# =============================================================================
# Channel / logging
# =============================================================================

DATA_CHANNEL_LABEL: Final[str] = "oai-events"
PAYLOAD_PREVIEW_CHARS: Final[int] = 200

# =============================================================================
# Realtime audio (pcm16 @ 24kHz mono)
# =============================================================================

REALTIME_SAMPLE_RATE_HZ: Final[int] = 24_000
REALTIME_CHANNELS: Final[int] = 1
REALTIME_AUDIO_FORMAT: Final[str] = "pcm16"

# =============================================================================
# Session configuration defaults
# =============================================================================

SESSION_MODALITIES: Final[tuple[str, ...]] = ("text", "audio")
SESSION_VOICE_DEFAULT: Final[str] = "alloy"
SESSION_TRANSCRIPTION_MODEL: Final[str] = "whisper-1"

VAD_THRESHOLD: Final[float] = 0.5
VAD_PREFIX_PADDING_MS: Final[int] = 300
VAD_SILENCE_DURATION_MS: Final[int] = 200

CONVERSATION_TEMPERATURE: Final[float] = 0.8
CONVERSATION_MAX_OUTPUT_TOKENS: Final[int] = 300

# Reading mode keeps the agent brief while narration is the main content
READING_TEMPERATURE: Final[float] = 0.6
READING_MAX_OUTPUT_TOKENS: Final[int] = 250
