"""
Credential / session providers.

A provider mints the short-lived token used to negotiate one realtime
session. Two implementations:

- OpenAISessionProvider: mints an ephemeral client secret directly with the
  server API key (openai AsyncOpenAI).
- BackendSessionProvider: asks the app backend (POST {base}/session), which
  keeps the API key and builds child-specific instructions.

Rules:
- No retries here (ConnectionOrchestrator owns retry policy).
- Rejected credentials raise AuthenticationFailedError (never retried);
  every other failure raises SessionCreationError (retried).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import openai

from errors import AuthenticationFailedError, SessionCreationError
from observability.logger import log_event


class SessionProvider(ABC):
    """Abstract credential provider."""

    @abstractmethod
    async def create_session(self, child_id: str) -> str:
        """
        Return an ephemeral token for one realtime session.

        Raises:
            AuthenticationFailedError: credentials rejected.
            SessionCreationError: any other failure.
        """
        raise NotImplementedError


class OpenAISessionProvider(SessionProvider):
    """Mint ephemeral realtime client secrets with the server API key."""

    def __init__(
        self,
        *,
        client: Any,  # Type: openai.AsyncOpenAI
        model: str,
        voice: str,
    ) -> None:
        self._client = client
        self._model = model
        self._voice = voice

    async def create_session(self, child_id: str) -> str:
        try:
            session = await self._client.beta.realtime.sessions.create(
                model=self._model,
                voice=self._voice,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise AuthenticationFailedError(f"realtime session rejected: {exc}") from exc
        except openai.OpenAIError as exc:
            raise SessionCreationError(f"realtime session request failed: {exc}") from exc

        secret = getattr(getattr(session, "client_secret", None), "value", None)
        if not secret:
            raise SessionCreationError("realtime session response had no client secret")

        log_event({
            "event_type": "session_token_created",
            "provider": "openai",
            "child_id": child_id,
            "model": self._model,
        })
        return str(secret)


class BackendSessionProvider(SessionProvider):
    """Ask the app backend for a session token."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        model_type: str = "openai",
    ) -> None:
        self._client = client
        self._url = f"{base_url.rstrip('/')}/session"
        self._model_type = model_type

    async def create_session(self, child_id: str) -> str:
        try:
            response = await self._client.post(
                self._url,
                json={"childId": child_id, "modelType": self._model_type},
            )
        except httpx.HTTPError as exc:
            raise SessionCreationError(f"session request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationFailedError(
                f"session request rejected: {response.status_code}"
            )
        if response.is_error:
            raise SessionCreationError(
                f"Failed to create session: {response.status_code} - {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SessionCreationError("session response was not JSON") from exc

        secret = _extract_secret(data)
        if not secret:
            raise SessionCreationError("No client secret received from server")

        log_event({
            "event_type": "session_token_created",
            "provider": "backend",
            "child_id": child_id,
        })
        return secret


def _extract_secret(data: Any) -> str | None:
    """client_secret is either a string or {"value": ...}."""
    if not isinstance(data, dict):
        return None
    secret = data.get("client_secret")
    if isinstance(secret, dict):
        secret = secret.get("value")
    if isinstance(secret, str) and secret:
        return secret
    return None
