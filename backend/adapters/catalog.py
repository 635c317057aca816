"""
Book catalog HTTP client.

Endpoints (app backend):
    POST {base}/books/search              -> {"books": [...]}
    GET  {base}/books/{id}/page/{n}       -> {"success": true, "page": {...}}

Rules:
- Every failure (network, status, shape) raises CatalogError.
- Parsing of backend payloads into reading.models lives here.
"""

from __future__ import annotations

from typing import Any

import httpx

from errors import CatalogError
from observability.logger import log_event
from reading.models import BookSummary, PageData


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _book_summary(raw: Any) -> BookSummary | None:
    if not isinstance(raw, dict) or raw.get("id") in (None, ""):
        return None
    pages = raw.get("pages")
    page_count = _as_int(
        raw.get("totalPages", raw.get("pageCount")),
        default=len(pages) if isinstance(pages, list) else 0,
    )
    return BookSummary(
        id=str(raw["id"]),
        title=str(raw.get("title") or "Untitled"),
        page_count=page_count,
        summary=str(raw.get("summary") or raw.get("description") or ""),
        author=raw.get("author"),
    )


def _page_data(book_id: str, page_number: int, raw: Any) -> PageData:
    if not isinstance(raw, dict):
        raise CatalogError(f"page {page_number} of {book_id}: missing page object")
    return PageData(
        book_id=book_id,
        page_number=_as_int(raw.get("pageNumber"), default=page_number),
        total_pages=_as_int(raw.get("totalPages")),
        book_title=str(raw.get("bookTitle") or ""),
        image_url=raw.get("pageImageUrl") or raw.get("imageUrl"),
        text=str(raw.get("pageText") or raw.get("text") or ""),
        audio_url=raw.get("audioUrl") or None,
    )


class HttpBookCatalog:
    """BookCatalog backed by the app backend's REST API."""

    def __init__(self, *, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def search(self, query: str) -> list[BookSummary]:
        data = await self._request(
            "POST",
            f"{self._base_url}/books/search",
            json={"query": query, "context": query},
        )
        books_raw = data.get("books") if isinstance(data, dict) else None
        if not isinstance(books_raw, list):
            raise CatalogError("search response has no books list")

        books = [book for book in map(_book_summary, books_raw) if book is not None]
        log_event({
            "event_type": "catalog_search_done",
            "query": query,
            "results": len(books),
        })
        return books

    async def fetch_page(self, book_id: str, page_number: int) -> PageData:
        data = await self._request(
            "GET", f"{self._base_url}/books/{book_id}/page/{page_number}"
        )
        if not isinstance(data, dict) or data.get("success") is False:
            raise CatalogError(f"page {page_number} of {book_id} not available")
        return _page_data(book_id, page_number, data.get("page"))

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise CatalogError(
                f"{method} {url} failed: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise CatalogError(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise CatalogError(f"{method} {url} returned invalid JSON") from exc
