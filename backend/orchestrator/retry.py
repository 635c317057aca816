"""
Retry policy helpers for session establishment.

Purpose:
- Centralize connect retry rules
- Keep the connection orchestrator's loop free of policy decisions
- Allow deterministic retry decisions in tests

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from constants import CONNECT_MAX_RETRIES, CONNECT_RETRY_DELAY_MS


# =============================================================================
# Failure Types
# =============================================================================

class FailureType(str, Enum):
    """
    Failure classification used by retry policy.

    CREDENTIAL:
        Session provider failed to mint a token (network, 5xx).
        Retried.

    MEDIA_ACCESS:
        Microphone could not be opened.
        Retried (device may be momentarily busy).

    NEGOTIATION:
        Offer/answer exchange or transport setup failed.
        Retried.

    AUTHENTICATION:
        Remote service rejected our credentials.
        Never retried.

    Notes:
    - Cancellation is NOT a failure type and must never trigger retries.
    """

    CREDENTIAL = "credential"
    MEDIA_ACCESS = "media_access"
    NEGOTIATION = "negotiation"
    AUTHENTICATION = "authentication"


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 represents the initial attempt (no retry yet).
    - attempt >= 1 represents the Nth retry attempt.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def max_attempts(failure: FailureType) -> int:
    """Maximum retry attempts (excluding the initial attempt)."""
    if failure is FailureType.AUTHENTICATION:
        return 0
    return CONNECT_MAX_RETRIES


def should_retry(*, failure: FailureType, attempt: RetryAttempt) -> bool:
    """
    Returns True if a retry is allowed.

    attempt = number of retries already performed
    """
    return attempt.attempt < max_attempts(failure)


def get_retry_delay_ms(*, failure: FailureType, attempt: RetryAttempt) -> int:
    """Fixed delay before every retry."""
    del attempt
    if failure is FailureType.AUTHENTICATION:
        return 0
    return CONNECT_RETRY_DELAY_MS
