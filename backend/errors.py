"""
Error taxonomy for the turn-taking core.

Rules:
- Connection-establishment errors carry a FailureType for the retry policy.
- Tool-level errors never reach the host; handlers convert them to text.
- Only FatalSessionError propagates to the host as a user-visible failure.
"""

from __future__ import annotations

from orchestrator.retry import FailureType


class AppuError(Exception):
    """Base class for all errors raised by this package."""


# -------------------------
# Connection establishment
# -------------------------

class SessionConnectionError(AppuError):
    """
    Transient failure while establishing the realtime session.

    Retried up to the connect policy limit.
    """

    failure_type: FailureType = FailureType.NEGOTIATION


class SessionCreationError(SessionConnectionError):
    """Credential/session provider could not mint a session token."""

    failure_type = FailureType.CREDENTIAL


class MediaAccessError(SessionConnectionError):
    """Local microphone or camera could not be opened."""

    failure_type = FailureType.MEDIA_ACCESS


class NegotiationError(SessionConnectionError):
    """Offer/answer exchange or channel setup failed."""

    failure_type = FailureType.NEGOTIATION


class AuthenticationFailedError(SessionConnectionError):
    """Credentials rejected by the remote service. Never retried."""

    failure_type = FailureType.AUTHENTICATION


# -------------------------
# Channel
# -------------------------

class ChannelError(AppuError):
    """Inbound channel message could not be parsed or routed."""


class InvalidToolCallError(ChannelError):
    """Tool-call envelope is missing its call id or tool name."""


# -------------------------
# Tool execution
# -------------------------

class ToolExecutionError(AppuError):
    """External service failure during a tool call."""


class CatalogError(ToolExecutionError):
    """Book catalog request failed."""


class VisionError(ToolExecutionError):
    """Frame analysis request failed."""


class StateConflictError(AppuError):
    """
    Request conflicts with current state.

    Examples: duplicate call id, no selected book, page out of range.
    """


# -------------------------
# Fatal
# -------------------------

class FatalSessionError(AppuError):
    """Authentication failure or exhausted retries. Session is torn down."""
