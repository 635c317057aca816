"""
Realtime transport contract.

Purpose:
- One bidirectional JSON control channel to the realtime service
- Local microphone audio going up, agent audio coming down
- Lifecycle callbacks: on_open / on_message / on_close / on_error

Rules:
- This file contains NO protocol logic, only handler plumbing.
- No retries (ConnectionOrchestrator owns retry policy).
- No parsing of inbound messages; on_message gets the raw text.
- A transport instance is single-use: one open_channel() ... close() cycle.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping

from observability.logger import log_event


OpenHandler = Callable[[], None]
MessageHandler = Callable[[str], None]
CloseHandler = Callable[[str], None]
ErrorHandler = Callable[[Exception], None]
AgentAudioHandler = Callable[[bytes], None]


class RealtimeTransport(ABC):
    """
    Abstract base class for realtime transports (WebRTC, WebSocket).

    Call order used by ConnectionOrchestrator.connect():
        set_handlers() -> open_channel() -> attach_audio() -> negotiate(token)

    on_open fires once the control channel can carry messages, which may be
    during or after negotiate().
    """

    def __init__(self, *, on_agent_audio: AgentAudioHandler | None = None) -> None:
        # Agent speech as realtime PCM16 (see adapters.transport.pcm)
        self._on_agent_audio = on_agent_audio
        self._on_open: OpenHandler | None = None
        self._on_message: MessageHandler | None = None
        self._on_close: CloseHandler | None = None
        self._on_error: ErrorHandler | None = None

    def set_handlers(
        self,
        *,
        on_open: OpenHandler,
        on_message: MessageHandler,
        on_close: CloseHandler,
        on_error: ErrorHandler,
    ) -> None:
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error

    # ------------------------------------------------------------------
    # Handler plumbing for subclasses
    # ------------------------------------------------------------------

    def _fire(self, handler: Callable[..., None] | None, *args: Any) -> None:
        """Invoke a handler; a failing handler never breaks the transport."""
        if handler is None:
            return
        try:
            handler(*args)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "transport_handler_failed",
                "transport": type(self).__name__,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while send() can deliver messages."""
        raise NotImplementedError

    @abstractmethod
    async def open_channel(self) -> None:
        """
        Create the peer/socket objects and the control channel.

        Raises:
            NegotiationError: transport objects could not be created.
        """
        raise NotImplementedError

    @abstractmethod
    def attach_audio(self, track: Any) -> None:
        """Attach the local microphone track before negotiation."""
        raise NotImplementedError

    @abstractmethod
    async def negotiate(self, token: str) -> None:
        """
        Connect to the realtime service using the ephemeral token.

        Raises:
            AuthenticationFailedError: token rejected (401/403).
            NegotiationError: any other offer/answer or handshake failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def send(self, envelope: Mapping[str, Any]) -> None:
        """
        Send one JSON envelope over the control channel.

        Raises:
            ChannelError: channel not open or send failed.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Tear down channel and peer/socket.

        Contract:
        - Idempotent, never raises.
        - Does NOT fire on_close (the caller initiated it).
        """
        raise NotImplementedError
