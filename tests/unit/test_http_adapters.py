# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Callable

import httpx
import openai
import pytest

from adapters.catalog import HttpBookCatalog
from adapters.credentials import BackendSessionProvider, OpenAISessionProvider
from errors import AuthenticationFailedError, CatalogError, SessionCreationError
from reading.models import BookSummary


Handler = Callable[[httpx.Request], httpx.Response]


def _run(handler: Handler, body: Callable[[httpx.AsyncClient], Any]) -> Any:
    async def scenario() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await body(client)

    return asyncio.run(scenario())


# ---------------------------------------------------------------------
# HttpBookCatalog
# ---------------------------------------------------------------------

def test_search_posts_query_and_parses_books():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"books": [
            {"id": 12, "title": "Moon Bunny", "totalPages": 8, "summary": "A bunny."},
            {"id": "b2", "pages": [{}, {}, {}], "description": "Trains!"},
            {"title": "no id"},
            "junk",
        ]})

    books = _run(
        handler,
        lambda c: HttpBookCatalog(client=c, base_url="http://api.test/").search("bunny"),
    )

    assert books == [
        BookSummary(id="12", title="Moon Bunny", page_count=8, summary="A bunny."),
        BookSummary(id="b2", title="Untitled", page_count=3, summary="Trains!"),
    ]
    assert seen[0].method == "POST"
    assert str(seen[0].url) == "http://api.test/books/search"
    assert json.loads(seen[0].content) == {"query": "bunny", "context": "bunny"}


def test_fetch_page_maps_backend_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/books/b1/page/2"
        return httpx.Response(200, json={"success": True, "page": {
            "pageNumber": 2,
            "totalPages": 5,
            "bookTitle": "Moon Bunny",
            "pageImageUrl": "http://img/2.png",
            "pageText": "Hop hop.",
            "audioUrl": "",
        }})

    page = _run(
        handler,
        lambda c: HttpBookCatalog(client=c, base_url="http://api.test").fetch_page("b1", 2),
    )

    assert page.to_display() == {
        "bookId": "b1",
        "bookTitle": "Moon Bunny",
        "pageNumber": 2,
        "totalPages": 5,
        "pageImageUrl": "http://img/2.png",
        "pageText": "Hop hop.",
        "audioUrl": None,
    }


@pytest.mark.parametrize("response", [
    httpx.Response(503, text="down"),
    httpx.Response(200, text="<html>"),
    httpx.Response(200, json={"success": False}),
    httpx.Response(200, json={"success": True}),
])
def test_fetch_page_failures_raise_catalog_error(response: httpx.Response):
    async def fetch(client: httpx.AsyncClient) -> Any:
        return await HttpBookCatalog(client=client, base_url="http://api.test").fetch_page("b1", 1)

    with pytest.raises(CatalogError):
        _run(lambda request: response, fetch)


def test_search_network_error_raises_catalog_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CatalogError):
        _run(handler, lambda c: HttpBookCatalog(client=c, base_url="http://x").search("q"))


def test_search_without_books_list_raises():
    with pytest.raises(CatalogError):
        _run(
            lambda request: httpx.Response(200, json={"results": []}),
            lambda c: HttpBookCatalog(client=c, base_url="http://x").search("q"),
        )


# ---------------------------------------------------------------------
# BackendSessionProvider
# ---------------------------------------------------------------------

@pytest.mark.parametrize("payload", [
    {"client_secret": "ek_plain"},
    {"client_secret": {"value": "ek_plain", "expires_at": 1}},
])
def test_backend_provider_accepts_both_secret_shapes(payload: dict[str, Any]):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=payload)

    token = _run(
        handler,
        lambda c: BackendSessionProvider(client=c, base_url="http://api.test/")
        .create_session("7"),
    )

    assert token == "ek_plain"
    assert str(seen[0].url) == "http://api.test/session"
    assert json.loads(seen[0].content) == {"childId": "7", "modelType": "openai"}


@pytest.mark.parametrize("status", [401, 403])
def test_backend_provider_rejection_is_authentication_failure(status: int):
    with pytest.raises(AuthenticationFailedError):
        _run(
            lambda request: httpx.Response(status),
            lambda c: BackendSessionProvider(client=c, base_url="http://x")
            .create_session("1"),
        )


@pytest.mark.parametrize("response", [
    httpx.Response(500, text="oops"),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json={"client_secret": {}}),
    httpx.Response(200, json=["ek"]),
])
def test_backend_provider_other_failures_are_retryable(response: httpx.Response):
    with pytest.raises(SessionCreationError):
        _run(
            lambda request: response,
            lambda c: BackendSessionProvider(client=c, base_url="http://x")
            .create_session("1"),
        )


# ---------------------------------------------------------------------
# OpenAISessionProvider
# ---------------------------------------------------------------------

class FakeSessions:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.kwargs: dict[str, Any] = {}

    async def create(self, **kwargs: Any) -> Any:
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


def _openai_client(sessions: FakeSessions) -> Any:
    return SimpleNamespace(beta=SimpleNamespace(realtime=SimpleNamespace(sessions=sessions)))


def _provider(sessions: FakeSessions) -> OpenAISessionProvider:
    return OpenAISessionProvider(
        client=_openai_client(sessions),
        model="gpt-4o-realtime-preview",
        voice="alloy",
    )


def test_openai_provider_returns_client_secret():
    sessions = FakeSessions(
        result=SimpleNamespace(client_secret=SimpleNamespace(value="ek_live"))
    )

    token = asyncio.run(_provider(sessions).create_session("1"))

    assert token == "ek_live"
    assert sessions.kwargs == {"model": "gpt-4o-realtime-preview", "voice": "alloy"}


def test_openai_provider_maps_errors():
    request = httpx.Request("POST", "https://api.openai.com/v1/realtime/sessions")
    denied = openai.AuthenticationError(
        "bad key", response=httpx.Response(401, request=request), body=None
    )
    offline = openai.APIConnectionError(request=request)

    with pytest.raises(AuthenticationFailedError):
        asyncio.run(_provider(FakeSessions(error=denied)).create_session("1"))
    with pytest.raises(SessionCreationError):
        asyncio.run(_provider(FakeSessions(error=offline)).create_session("1"))
    with pytest.raises(SessionCreationError):
        asyncio.run(_provider(FakeSessions(result=SimpleNamespace())).create_session("1"))
