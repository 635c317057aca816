"""
Realtime session configuration payloads.

Responsibilities:
- Appu's instructions (persona + tool guidance)
- Tool schemas advertised to the realtime agent
- The initial `session` object and the reading-mode overrides

Non-responsibilities:
- NO sending (ConnectionOrchestrator wraps these in session.update)
- NO tool behavior (handlers in reading/ and toolcalls/)
"""

from __future__ import annotations

from typing import Any

from constants import (
    CONVERSATION_MAX_OUTPUT_TOKENS,
    CONVERSATION_TEMPERATURE,
    READING_MAX_OUTPUT_TOKENS,
    READING_TEMPERATURE,
    REALTIME_AUDIO_FORMAT,
    SESSION_MODALITIES,
    SESSION_TRANSCRIPTION_MODEL,
    SESSION_VOICE_DEFAULT,
    VAD_PREFIX_PADDING_MS,
    VAD_SILENCE_DURATION_MS,
    VAD_THRESHOLD,
)


TOOL_BOOK_SEARCH = "bookSearchTool"
TOOL_DISPLAY_PAGE = "display_book_page"
TOOL_GET_EYES = "getEyesTool"


APPU_INSTRUCTIONS_V1: str = """
You are Appu, a magical, friendly helper who talks to young children aged 3 to 5.

You are warm, playful and kind, like a talking animal buddy. Your responses are short, simple and full of wonder. Use fun words, sound effects and imaginative comparisons.

Voice Rules

- Make very short sentences. Always speak in Hindi or Hinglish.
- Never mention tools, JSON, APIs, or internal logic.
- Output plain conversational speech only.

Important rules:
- Never pretend to be human. Say things like "I'm your helper, not a person."
- Never say "I feel" or "I remember."
- Avoid anything scary, unsafe, sad, or adult-themed.
- If you don't know something, say "Hmm, let's ask a grown-up!"
- If you hear the child crying, be extra soft. Offer a soft song or a happy story.
- At bedtime, speak calmly and suggest a short story or a gentle lullaby.

First of all, greet the child warmly and ask how they're feeling today.

Seeing (getEyesTool)

You can see what the child shows you through their camera. Call getEyesTool when:
- the child says they want to show you something, or asks "can you see this?"
- they talk about drawings, toys, books, food, pets or clothes. Say "Show me!" and look
- you are playing a learning game about colors, shapes or counting
Always be enthusiastic about what you see and use it to keep the conversation going.

Reading books (bookSearchTool, display_book_page)

- When the child wants a story, call bookSearchTool with what they asked for.
- After a book is found, tell the child its title, then call display_book_page with pageNumber 1.
- The page narration plays by itself. While it plays, stay quiet.
- Pages turn automatically when the narration finishes. Only call display_book_page
  yourself when the child asks for a specific page, the next page or the previous page.
- Never call display_book_page before bookSearchTool has found a book.
- If a tool tells you something went wrong, explain it gently and suggest something else.
"""


# ---------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------

BOOK_SEARCH_SCHEMA: dict[str, Any] = {
    "type": "function",
    "name": TOOL_BOOK_SEARCH,
    "description": (
        "Search the book library for a story to read with the child. "
        "Returns the best matching book's title, summary, id and page count."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "What the child wants to read: a title, topic, animal or theme.",
            },
        },
        "required": ["query"],
    },
}

DISPLAY_PAGE_SCHEMA: dict[str, Any] = {
    "type": "function",
    "name": TOOL_DISPLAY_PAGE,
    "description": (
        "Show one page of the selected book on screen. The page narration "
        "plays automatically when it is the child's turn to listen."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "bookId": {
                "type": "string",
                "description": "Book id returned by bookSearchTool. Defaults to the selected book.",
            },
            "pageNumber": {
                "type": "integer",
                "minimum": 1,
                "description": "Page to show. Defaults to the page after the current one.",
            },
        },
        "required": [],
    },
}

GET_EYES_SCHEMA: dict[str, Any] = {
    "type": "function",
    "name": TOOL_GET_EYES,
    "description": (
        "Look through the child's camera and describe what they are showing."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "reason": {
                "type": "string",
                "description": "Why you want to look.",
            },
            "lookingFor": {
                "type": "string",
                "description": "What you expect to see, if anything.",
            },
            "context": {
                "type": "string",
                "description": "What the conversation is about right now.",
            },
        },
        "required": ["reason"],
    },
}

TOOL_SCHEMAS: tuple[dict[str, Any], ...] = (
    BOOK_SEARCH_SCHEMA,
    DISPLAY_PAGE_SCHEMA,
    GET_EYES_SCHEMA,
)


# ---------------------------------------------------------------------
# Session payloads
# ---------------------------------------------------------------------

def initial_session_config(
    *,
    voice: str = SESSION_VOICE_DEFAULT,
    instructions: str = APPU_INSTRUCTIONS_V1,
) -> dict[str, Any]:
    """`session` object sent once the control channel opens."""
    return {
        "modalities": list(SESSION_MODALITIES),
        "instructions": instructions.strip(),
        "voice": voice,
        "input_audio_format": REALTIME_AUDIO_FORMAT,
        "output_audio_format": REALTIME_AUDIO_FORMAT,
        "input_audio_transcription": {"model": SESSION_TRANSCRIPTION_MODEL},
        "turn_detection": {
            "type": "server_vad",
            "threshold": VAD_THRESHOLD,
            "prefix_padding_ms": VAD_PREFIX_PADDING_MS,
            "silence_duration_ms": VAD_SILENCE_DURATION_MS,
        },
        "temperature": CONVERSATION_TEMPERATURE,
        "max_response_output_tokens": CONVERSATION_MAX_OUTPUT_TOKENS,
        "tools": [dict(schema) for schema in TOOL_SCHEMAS],
        "tool_choice": "auto",
    }


def reading_mode_update(active: bool) -> dict[str, Any]:
    """Shorter, calmer replies while a book is open."""
    if active:
        return {
            "temperature": READING_TEMPERATURE,
            "max_response_output_tokens": READING_MAX_OUTPUT_TOKENS,
        }
    return {
        "temperature": CONVERSATION_TEMPERATURE,
        "max_response_output_tokens": CONVERSATION_MAX_OUTPUT_TOKENS,
    }
