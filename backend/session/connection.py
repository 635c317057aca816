"""
Connection orchestrator.

Responsibilities:
- Own the realtime transport, its control channel and local media while connected
- connect(): credential -> transport + channel -> microphone -> offer/answer,
  retrying transient failures per orchestrator.retry
- Push the session configuration when the channel opens, and reading-mode
  updates when the reading session starts or ends
- Demultiplex every inbound message into exactly one of:
    Event Translator -> TurnTakingMachine
    ToolCallDispatcher
    transcript callback / log
- Resolve tool calls over the channel (function_call_output + response.create)
- disconnect(): the single cancellation point; idempotent, never raises

Non-responsibilities:
- NO turn-taking transition logic (reducer)
- NO tool behavior (handlers registered by the host)
- NO book narration (ReadingSession)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Mapping
from uuid import uuid4

from adapters.credentials import SessionProvider
from adapters.media import MediaCapture
from adapters.transport.base import RealtimeTransport
from errors import (
    ChannelError,
    FatalSessionError,
    InvalidToolCallError,
    MediaAccessError,
    SessionConnectionError,
)
from observability.logger import log_event, preview
from observability.metrics import timed
from orchestrator.cancellation import CancellationToken, OperationCancelled
from orchestrator.machine import TurnTakingMachine
from orchestrator.retry import (
    FailureType,
    RetryAttempt,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from orchestrator.translator import EventTranslator
from orchestrator.triggers import Fault, TriggerType
from protocol.envelopes import (
    IgnoredEnvelope,
    InformationalEnvelope,
    LifecycleEnvelope,
    ToolCallEnvelope,
    build_function_call_output,
    build_response_create,
    build_session_update,
    parse_envelope,
)
from session.connection_status import ConnectionStatus
from session.conversation_session import ConversationSession
from session.session_config import (
    APPU_INSTRUCTIONS_V1,
    initial_session_config,
    reading_mode_update,
)
from toolcalls.dispatcher import ToolCallDispatcher, ToolHandler
from constants import SESSION_VOICE_DEFAULT, TOOL_CALL_TIMEOUT_S


ErrorCallback = Callable[[str | None, str], None]
ResultCallback = Callable[[str, str], None]
TranscriptCallback = Callable[[str, str], None]
StatusCallback = Callable[[ConnectionStatus], None]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


class ConnectionOrchestrator:
    """
    One orchestrator per host conversation; at most one live session at a time.

    Constructed once by the host and handed by reference to collaborators
    (the vision tool borrows frames through capture_frame).
    """

    def __init__(
        self,
        *,
        session_provider: SessionProvider,
        transport_factory: Callable[[], RealtimeTransport],
        media: MediaCapture,
        turn_machine: TurnTakingMachine,
        translator: EventTranslator | None = None,
        child_id: str = "1",
        voice: str = SESSION_VOICE_DEFAULT,
        instructions: str = APPU_INSTRUCTIONS_V1,
        retry_delay_ms: int | None = None,
        tool_timeout_s: float = TOOL_CALL_TIMEOUT_S,
        on_error: ErrorCallback | None = None,
        on_function_result: ResultCallback | None = None,
        on_transcript: TranscriptCallback | None = None,
        on_status_change: StatusCallback | None = None,
    ) -> None:
        self._provider = session_provider
        self._transport_factory = transport_factory
        self._media = media
        self._turn = turn_machine
        self._translator = translator or EventTranslator()
        self._child_id = child_id
        self._voice = voice
        self._instructions = instructions
        # None -> policy delay (orchestrator.retry)
        self._retry_delay_ms = retry_delay_ms

        self.on_error = on_error
        self.on_transcript = on_transcript
        self.on_status_change = on_status_change

        self._dispatcher = ToolCallDispatcher(
            channel=self,
            timeout_s=tool_timeout_s,
            on_function_result=on_function_result,
            on_error=on_error,
        )

        self._session: ConversationSession | None = None
        self._cancel: CancellationToken | None = None
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def session(self) -> ConversationSession | None:
        return self._session

    @property
    def status(self) -> ConnectionStatus:
        if self._session is None:
            return ConnectionStatus.DOWN
        return self._session.connection_status

    @property
    def dispatcher(self) -> ToolCallDispatcher:
        return self._dispatcher

    def register_tool(self, name: str, handler: ToolHandler) -> None:
        self._dispatcher.register(name, handler)

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def connect(self, child_id: str | None = None) -> ConversationSession | None:
        """
        Establish the realtime session.

        Returns the live session, or None when disconnect() cancelled it.

        Raises:
            FatalSessionError: authentication rejected, retries exhausted, or
                an unexpected error from the transport or media layer.
                on_error(None, message) is invoked first.
        """
        if self._session is not None:
            log_event({
                "level": "WARNING",
                "event_type": "connect_already_active",
                **self._session.log_context(),
            })
            return self._session

        token = CancellationToken()
        session = ConversationSession(
            session_id=_new_session_id(),
            child_id=child_id or self._child_id,
            turn_machine=self._turn,
        )
        self._session = session
        self._cancel = token
        self._dispatcher.session_id = session.session_id
        self._turn.session_id = session.session_id
        self._turn.reset("connect")
        self._set_status(session, ConnectionStatus.CONNECTING)

        attempt = reset_attempt()
        while True:
            if token.cancelled:
                return self._connect_cancelled(session, token)

            log_event({
                "event_type": "connect_attempt",
                "session_id": session.session_id,
                "attempt": attempt.attempt,
            })

            try:
                with timed(
                    "connect_attempt",
                    session_id=session.session_id,
                    details={"attempt": attempt.attempt},
                ):
                    await self._attempt(session, token)
            except OperationCancelled:
                await self._release(session)
                return self._connect_cancelled(session, token)
            except SessionConnectionError as exc:
                await self._release(session)
                if token.cancelled:
                    return self._connect_cancelled(session, token)
                attempt = await self._after_failure(session, token, exc, attempt)
                continue
            except Exception as exc:  # pylint: disable=broad-exception-caught
                await self._release(session)
                if token.cancelled:
                    return self._connect_cancelled(session, token)
                message = f"Unexpected connect failure: {type(exc).__name__}: {exc}"
                session.last_error = message
                self._fail(session, message)
                raise FatalSessionError(message) from exc

            if token.cancelled:
                await self._release(session)
                return self._connect_cancelled(session, token)

            self._set_status(session, ConnectionStatus.UP)
            log_event({
                "event_type": "connect_succeeded",
                "retries": attempt.attempt,
                **session.log_context(),
            })
            return session

    async def _attempt(self, session: ConversationSession, token: CancellationToken) -> None:
        secret = await self._provider.create_session(session.child_id)
        token.raise_if_cancelled()

        transport = self._transport_factory()
        session.transport = transport
        transport.set_handlers(
            on_open=lambda: self._on_open(transport),
            on_message=lambda raw: self._on_message(transport, raw),
            on_close=lambda reason: self._on_close(transport, reason),
            on_error=lambda exc: self._on_transport_error(transport, exc),
        )
        await transport.open_channel()
        token.raise_if_cancelled()

        track = await self._media.acquire_audio()
        token.raise_if_cancelled()
        transport.attach_audio(track)

        await transport.negotiate(secret)
        token.raise_if_cancelled()

    async def _after_failure(
        self,
        session: ConversationSession,
        token: CancellationToken,
        exc: SessionConnectionError,
        attempt: RetryAttempt,
    ) -> RetryAttempt:
        """Schedule the next attempt or fail the session (raises)."""
        failure = exc.failure_type
        session.last_error = str(exc)
        log_event({
            "level": "WARNING",
            "event_type": "connect_attempt_failed",
            "session_id": session.session_id,
            "attempt": attempt.attempt,
            "failure_type": failure.value,
            "error": str(exc),
        })

        if not should_retry(failure=failure, attempt=attempt):
            if failure is FailureType.AUTHENTICATION:
                message = f"Authentication failed: {exc}"
            else:
                message = f"Failed to connect after {attempt.attempt} retries: {exc}"
            self._fail(session, message)
            raise FatalSessionError(message) from exc

        delay_ms = (
            self._retry_delay_ms
            if self._retry_delay_ms is not None
            else get_retry_delay_ms(failure=failure, attempt=attempt)
        )
        attempt = next_attempt(attempt)
        session.retry_count = attempt.attempt
        log_event({
            "event_type": "connect_retry_scheduled",
            "session_id": session.session_id,
            "retry": attempt.attempt,
            "delay_ms": delay_ms,
            "failure_type": failure.value,
        })

        await token.sleep(delay_ms)
        return attempt

    def _fail(self, session: ConversationSession, message: str) -> None:
        self._set_status(session, ConnectionStatus.FAILED)
        log_event({
            "level": "ERROR",
            "event_type": "connect_failed",
            "session_id": session.session_id,
            "retries": session.retry_count,
            "error": message,
        })
        if self._session is session:
            self._session = None
            self._cancel = None
        self._emit_error(None, message)

    def _connect_cancelled(
        self, session: ConversationSession, token: CancellationToken
    ) -> None:
        log_event({
            "event_type": "connect_cancelled",
            "session_id": session.session_id,
            "retries": session.retry_count,
            "reason": token.reason,
        })
        return None

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    async def disconnect(self, reason: str = "user") -> None:
        """
        Tear down everything. Safe to call at any time, any number of times.

        Local flags are reset before the first suspension point.
        """
        session = self._session
        token = self._cancel
        self._session = None
        self._cancel = None

        if token is not None:
            token.cancel(reason)
        self._turn.shutdown()

        if session is None:
            log_event({"event_type": "disconnect_without_session", "reason": reason})
            return

        session.channel_open = False
        session.reading_mode = False
        transport = session.transport
        self._set_status(session, ConnectionStatus.DOWN)

        try:
            for task in list(self._background):
                task.cancel()
            await self._dispatcher.aclose()
            await self._release(session, transport)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "disconnect_failed",
                "session_id": session.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        log_event({
            "event_type": "disconnected",
            "session_id": session.session_id,
            "reason": reason,
        })

    async def _release(
        self,
        session: ConversationSession,
        transport: RealtimeTransport | None = None,
    ) -> None:
        """Release transport and media acquired for session. Never raises."""
        transport = transport or session.transport
        session.transport = None
        session.channel_open = False

        if transport is not None:
            try:
                await transport.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "WARNING",
                    "event_type": "transport_close_failed",
                    "session_id": session.session_id,
                    "error": str(exc),
                })

        # media is shared across sessions; never release it under a newer one
        if self._session is not None and self._session is not session:
            return
        try:
            await self._media.release()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "WARNING",
                "event_type": "media_release_failed",
                "session_id": session.session_id,
                "error": str(exc),
            })

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def _is_current(self, transport: RealtimeTransport) -> bool:
        session = self._session
        return session is not None and session.transport is transport

    def _on_open(self, transport: RealtimeTransport) -> None:
        if not self._is_current(transport):
            return
        session = self._session
        if session is None:
            return
        session.channel_open = True
        log_event({"event_type": "channel_open", **session.log_context()})

        config = initial_session_config(voice=self._voice, instructions=self._instructions)
        self._spawn(self.send(build_session_update(config)))

    def _on_message(self, transport: RealtimeTransport, raw: str) -> None:
        """Inbound demultiplexer. Never raises."""
        if not self._is_current(transport):
            return
        try:
            self._route(raw)
        except (InvalidToolCallError, ChannelError) as exc:
            log_event({
                "level": "WARNING",
                "event_type": "channel_message_dropped",
                "session_id": self._session_id(),
                "error_class": type(exc).__name__,
                "error": str(exc),
                "payload_preview": preview(raw),
            })
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "channel_handler_failed",
                "session_id": self._session_id(),
                "exception": type(exc).__name__,
                "message": str(exc),
                "payload_preview": preview(raw),
            })

    def _route(self, raw: str | bytes | Mapping[str, Any]) -> None:
        envelope = parse_envelope(raw)

        if isinstance(envelope, LifecycleEnvelope):
            trigger = self._translator.translate(envelope, ts_ms=_now_ms())
            if trigger is not None:
                self._turn.apply_trigger(trigger, {"provider_event": envelope.type})
            if envelope.type == "error":
                log_event({
                    "level": "ERROR",
                    "event_type": "provider_error",
                    "session_id": self._session_id(),
                    "message": envelope.error_message,
                })

        elif isinstance(envelope, ToolCallEnvelope):
            self._dispatcher.dispatch(envelope)

        elif isinstance(envelope, InformationalEnvelope):
            transcript = envelope.transcript
            if transcript is not None and self.on_transcript is not None:
                role, text = transcript
                self.on_transcript(role, text)
            log_event({
                "level": "DEBUG",
                "event_type": "channel_informational",
                "session_id": self._session_id(),
                "type": envelope.type,
            })

        elif isinstance(envelope, IgnoredEnvelope):
            log_event({
                "level": "DEBUG",
                "event_type": "channel_message_ignored",
                "session_id": self._session_id(),
                "type": envelope.type,
            })

    def _on_close(self, transport: RealtimeTransport, reason: str) -> None:
        if not self._is_current(transport):
            return
        session = self._session
        if session is None:
            return
        session.channel_open = False
        log_event({
            "level": "WARNING",
            "event_type": "channel_closed",
            "reason": reason,
            **session.log_context(),
        })

        if session.connection_status is ConnectionStatus.UP:
            self._turn.apply_trigger(
                Fault(
                    trigger_type=TriggerType.FAULT,
                    ts_ms=_now_ms(),
                    reason="channel closed",
                ),
                {"close_reason": reason},
            )
            self._set_status(session, ConnectionStatus.DOWN)

    def _on_transport_error(self, transport: RealtimeTransport, exc: Exception) -> None:
        if not self._is_current(transport):
            return
        log_event({
            "level": "ERROR",
            "event_type": "transport_error",
            "session_id": self._session_id(),
            "exception": type(exc).__name__,
            "message": str(exc),
        })

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, envelope: Mapping[str, Any]) -> bool:
        """Send one envelope. Returns False (logged) if it could not be sent."""
        session = self._session
        transport = session.transport if session is not None else None
        if session is None or transport is None or not session.channel_open:
            log_event({
                "level": "WARNING",
                "event_type": "send_without_channel",
                "session_id": self._session_id(),
                "type": envelope.get("type"),
            })
            return False

        try:
            await transport.send(envelope)
        except ChannelError as exc:
            log_event({
                "level": "ERROR",
                "event_type": "channel_send_failed",
                "session_id": session.session_id,
                "type": envelope.get("type"),
                "error": str(exc),
            })
            return False

        log_event({
            "level": "DEBUG",
            "event_type": "channel_message_sent",
            "session_id": session.session_id,
            "type": envelope.get("type"),
        })
        return True

    async def send_tool_output(self, call_id: str, output: str) -> bool:
        return await self.send(build_function_call_output(call_id, output))

    async def request_continuation(self) -> bool:
        return await self.send(build_response_create())

    async def update_reading_mode(self, active: bool) -> bool:
        """Tighten/relax response settings. Sent only when the mode changes."""
        session = self._session
        if session is None or session.reading_mode == active:
            return False
        sent = await self.send(build_session_update(reading_mode_update(active)))
        if sent:
            session.reading_mode = active
            log_event({
                "event_type": "reading_mode_changed",
                "session_id": session.session_id,
                "active": active,
            })
        return sent

    async def capture_frame(self) -> str | None:
        """
        Borrow one camera frame for the vision tool.

        Raises:
            MediaAccessError: not connected, or camera unavailable.
        """
        if self._session is None:
            raise MediaAccessError("not connected")
        return await self._media.capture_frame()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _session_id(self) -> str | None:
        return self._session.session_id if self._session is not None else None

    def _set_status(self, session: ConversationSession, status: ConnectionStatus) -> None:
        if session.connection_status is status:
            return
        previous = session.connection_status
        session.connection_status = status
        log_event({
            "event_type": "connection_status_changed",
            "session_id": session.session_id,
            "from_status": previous.value,
            "to_status": status.value,
        })
        callback = self.on_status_change
        if callback is not None:
            try:
                callback(status)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "ERROR",
                    "event_type": "status_callback_failed",
                    "session_id": session.session_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

    def _emit_error(self, call_id: str | None, message: str) -> None:
        callback = self.on_error
        if callback is None:
            return
        try:
            callback(call_id, message)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "error_callback_failed",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
