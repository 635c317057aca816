"""
Realtime channel envelopes.

Inbound:
    Every channel message is a JSON object with a string `type` tag.
    parse_envelope() validates it at the boundary and returns exactly one
    variant of a closed union:

        LifecycleEnvelope      -> Event Translator
        ToolCallEnvelope       -> Tool-Call Dispatcher
        InformationalEnvelope  -> logged (transcripts, rate limits, items)
        IgnoredEnvelope        -> logged and dropped (unknown tags)

Outbound:
    build_session_update(), build_function_call_output(),
    build_response_create() return ready-to-send dicts.

Usage example:

    try:
        envelope = parse_envelope(raw)
    except ChannelError as exc:
        log_event({"event_type": "channel_message_dropped", "error": str(exc)})
        return

    if isinstance(envelope, ToolCallEnvelope):
        dispatcher.dispatch(envelope)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from errors import ChannelError, InvalidToolCallError


# -------------------------
# Tag vocabulary
# -------------------------

LIFECYCLE_TYPES: frozenset[str] = frozenset({
    "session.created",
    "session.updated",
    "output_audio_buffer.started",
    "output_audio_buffer.stopped",
    "response.audio.delta",
    "response.output_audio.delta",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
    "response.created",
    "response.function_call_arguments.delta",
    "response.done",
    "response.cancelled",
    "error",
})

TOOL_CALL_TYPE = "response.function_call_arguments.done"

USER_TRANSCRIPT_TYPES: frozenset[str] = frozenset({
    "conversation.item.input_audio_transcription.completed",
})

AGENT_TRANSCRIPT_TYPES: frozenset[str] = frozenset({
    "response.audio_transcript.done",
    "response.output_audio_transcript.done",
})

INFORMATIONAL_TYPES: frozenset[str] = frozenset({
    "rate_limits.updated",
    "response.output_item.added",
    "response.output_item.done",
    "response.content_part.added",
    "response.content_part.done",
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
    "response.audio.done",
    "response.output_audio.done",
    "conversation.item.created",
    "conversation.item.added",
    "conversation.item.done",
    "input_audio_buffer.committed",
    "output_audio_buffer.cleared",
}) | USER_TRANSCRIPT_TYPES | AGENT_TRANSCRIPT_TYPES


# -------------------------
# Inbound variants
# -------------------------

@dataclass(frozen=True)
class LifecycleEnvelope:
    """Session / audio / speech / response / error lifecycle event."""
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def error_message(self) -> str | None:
        """Provider error text for `error` envelopes."""
        error = self.payload.get("error")
        if isinstance(error, Mapping):
            message = error.get("message")
            if message:
                return str(message)
        if isinstance(error, str) and error:
            return error
        return None


@dataclass(frozen=True)
class ToolCallEnvelope:
    """Completed function-call arguments; ready for dispatch."""
    call_id: str
    name: str
    arguments: str
    item_id: str | None = None
    response_id: str | None = None


@dataclass(frozen=True)
class InformationalEnvelope:
    """Recognized but non-lifecycle message (transcripts, rate limits)."""
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def transcript(self) -> tuple[str, str] | None:
        """(role, text) for transcript messages, else None."""
        text = self.payload.get("transcript")
        if not isinstance(text, str) or not text:
            return None
        if self.type in USER_TRANSCRIPT_TYPES:
            return ("child", text)
        if self.type in AGENT_TRANSCRIPT_TYPES:
            return ("appu", text)
        return None


@dataclass(frozen=True)
class IgnoredEnvelope:
    """Unrecognized tag. Logged, never routed."""
    type: str


InboundEnvelope = Union[
    LifecycleEnvelope,
    ToolCallEnvelope,
    InformationalEnvelope,
    IgnoredEnvelope,
]


# -------------------------
# Parsing
# -------------------------

def parse_envelope(raw: str | bytes | Mapping[str, Any]) -> InboundEnvelope:
    """
    Validate one inbound channel message.

    Raises:
        ChannelError: not JSON, not an object, or no string `type`.
        InvalidToolCallError: tool-call message without call_id or name.
    """
    if isinstance(raw, Mapping):
        data: Any = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError, UnicodeDecodeError) as exc:
            raise ChannelError(f"invalid JSON: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ChannelError(f"envelope must be an object, got {type(data).__name__}")

    msg_type = data.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise ChannelError("envelope has no type tag")

    if msg_type == TOOL_CALL_TYPE:
        return _parse_tool_call(data)

    if msg_type in LIFECYCLE_TYPES:
        return LifecycleEnvelope(type=msg_type, payload=data)

    if msg_type in INFORMATIONAL_TYPES:
        return InformationalEnvelope(type=msg_type, payload=data)

    return IgnoredEnvelope(type=msg_type)


def _parse_tool_call(data: Mapping[str, Any]) -> ToolCallEnvelope:
    call_id = data.get("call_id")
    name = data.get("name")
    if not isinstance(call_id, str) or not call_id:
        raise InvalidToolCallError("tool call is missing call_id")
    if not isinstance(name, str) or not name:
        raise InvalidToolCallError(f"tool call {call_id} is missing name")

    arguments = data.get("arguments")
    if arguments is None:
        arguments = "{}"
    elif not isinstance(arguments, str):
        arguments = json.dumps(arguments)

    return ToolCallEnvelope(
        call_id=call_id,
        name=name,
        arguments=arguments,
        item_id=data.get("item_id"),
        response_id=data.get("response_id"),
    )


# -------------------------
# Outbound builders
# -------------------------

def build_session_update(session: Mapping[str, Any]) -> dict[str, Any]:
    return {"type": "session.update", "session": dict(session)}


def build_function_call_output(call_id: str, output: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": output,
        },
    }


def build_response_create() -> dict[str, Any]:
    return {"type": "response.create"}


def build_audio_append(audio_b64: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": audio_b64}
