"""
Reading-session data models.

Rules:
- Pure data, frozen.
- Parsing from catalog payloads lives in adapters.catalog.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class BookSummary:
    """One catalog search hit."""
    id: str
    title: str
    page_count: int
    summary: str = ""
    author: str | None = None


@dataclass(frozen=True)
class PageData:
    """One fetched page, as handed to the page-display callback."""
    book_id: str
    page_number: int
    total_pages: int
    book_title: str
    image_url: str | None = None
    text: str = ""
    audio_url: str | None = None

    def to_display(self) -> dict[str, Any]:
        """Payload for the host UI's page-display callback."""
        return {
            "bookId": self.book_id,
            "bookTitle": self.book_title,
            "pageNumber": self.page_number,
            "totalPages": self.total_pages,
            "pageImageUrl": self.image_url,
            "pageText": self.text,
            "audioUrl": self.audio_url,
        }


@dataclass(frozen=True)
class SelectedBook:
    """
    The book being read.

    current_page == 0 means selected but no page displayed yet.
    """
    id: str
    title: str
    total_pages: int
    current_page: int = 0
    audio_url: str | None = None
