"""
JSONL event logger.

Rules:
- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable

from constants import PAYLOAD_PREVIEW_CHARS


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_min_level: int = _LEVELS["DEBUG"]
_json_lines: bool = True


def configure(*, level: str = "INFO", json_lines: bool = True) -> None:
    """
    Set the minimum level and output style.

    Called once by the app factory from AppConfig.
    Unknown level names fall back to INFO.
    """
    global _min_level, _json_lines  # pylint: disable=global-statement
    _min_level = _LEVELS.get(level.upper(), _LEVELS["INFO"])
    _json_lines = json_lines


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller is responsible for:
    - Supplying event_type
    - Including session_id, state, etc. where known

    This function:
    - Fills ts_ms when absent, upper-cases level (default INFO)
    - Drops events below the configured level
    - Writes exactly one line
    - Never raises on unserializable payloads
    """
    level = str(event.get("level", "INFO")).upper()
    if _LEVELS.get(level, _LEVELS["INFO"]) < _min_level:
        return

    record: dict[str, Any] = {
        "ts_ms": time.time_ns() // 1_000_000,
        **event,
        "level": level,
    }

    try:
        if _json_lines:
            line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
        else:
            line = _human_line(record)
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": record.get("ts_ms"),
            "level": "ERROR",
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def preview(payload: Any, limit: int = PAYLOAD_PREVIEW_CHARS) -> str:
    """
    Single-line, truncated preview of an untrusted payload.

    Used when logging malformed inbound messages.
    """
    if isinstance(payload, (bytes, bytearray)):
        text = bytes(payload).decode("utf-8", errors="replace")
    else:
        text = str(payload)
    text = text.replace("\n", "\\n").replace("\r", "\\r")
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def _human_line(record: Mapping[str, Any]) -> str:
    head = f"{record['ts_ms']} {record['level']:<7} {record.get('event_type', '-')}"
    rest = {
        k: v for k, v in record.items()
        if k not in ("ts_ms", "level", "event_type")
    }
    if not rest:
        return head
    return head + " " + json.dumps(rest, ensure_ascii=False, separators=(",", ":"))
