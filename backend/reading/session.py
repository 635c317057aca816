"""
Reading session state machine.

Responsibilities:
- Own BookState, SelectedBook and the narration player
- Handle the bookSearchTool / display_book_page tool calls
- Page navigation (next / previous, hands-free auto-advance)
- Keep narration from ever talking over the child or the agent:
  the monitor re-evaluates whenever TurnState or BookState changes

Non-responsibilities:
- NO channel I/O (the dispatcher replies; host callbacks do the rest)
- NO turn-taking decisions (we only observe TurnState, and report
  narration ownership through TurnTakingMachine.notify_narration)

Monitor rules (TurnState x BookState):
- TurnState not IDLE and AUDIO_PLAYING           -> pause, AUDIO_PAUSED
- IDLE and AUDIO_READY_TO_PLAY / AUDIO_PAUSED     -> play / resume
- IDLE and PAGE_COMPLETED (or AUDIO_COMPLETED with
  no page-complete timer pending), pages remain   -> next_page()
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Callable, Protocol

from errors import StateConflictError, ToolExecutionError
from observability.logger import log_event, preview
from orchestrator.enums.turn_state import TurnState
from orchestrator.machine import TurnTakingMachine
from orchestrator.timers import TimerRegistry
from reading.enums.book_state import BookState
from reading.models import BookSummary, PageData, SelectedBook
from reading.narration import NarrationEvent, NarrationPlayer
from toolcalls.dispatcher import ToolOutcome
from constants import PAGE_COMPLETE_DELAY_MS


# ---------------------------------------------------------------------
# Collaborator contract
# ---------------------------------------------------------------------

class BookCatalog(Protocol):
    """Book search + page fetch. Failures raise ToolExecutionError."""

    async def search(self, query: str) -> list[BookSummary]: ...

    async def fetch_page(self, book_id: str, page_number: int) -> PageData: ...


# ---------------------------------------------------------------------
# Replies read by the remote agent
# ---------------------------------------------------------------------

SEARCH_NOT_FOUND: dict[str, str] = {
    "title": "No Books Found",
    "summary": "No books found matching your search. Let me suggest something else!",
}
SEARCH_FAILED_REPLY = (
    "I'm having trouble searching for books right now. Please try again later."
)
SEARCH_NO_QUERY_REPLY = (
    "I need to know what kind of book to look for. Ask for a title or a topic."
)
NO_BOOK_SELECTED_REPLY = (
    "No book is currently selected. You must use bookSearchTool first to find "
    "and select a book before you can display its pages."
)
INVALID_PAGE_REPLY = "Invalid page number. Please specify a valid page to display."
DISPLAY_FAILED_REPLY = (
    "I'm having trouble displaying that book page right now. Please try again."
)
NARRATION_FAILED_MESSAGE = "The story audio could not be played."

TIMER_PAGE_COMPLETE = "page_complete"

_SEARCH_ARG_KEYS = ("bookTitle", "keywords", "context", "ageRange")

_PAGE_NUMBER_RE = re.compile(r"-?\d+")


PageDisplayCallback = Callable[[PageData], None]
BookStateCallback = Callable[[BookState], None]
ReadingModeCallback = Callable[[bool], None]
ErrorCallback = Callable[[str | None, str], None]


# ---------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------

def _parse_arguments(arguments: str | dict[str, Any] | None) -> dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except ValueError:
        log_event({
            "level": "WARNING",
            "event_type": "tool_arguments_unparseable",
            "component": "reading",
            "arguments_preview": preview(arguments),
        })
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _coerce_page(value: Any) -> int | None:
    """Page number from a tool argument; None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise StateConflictError(INVALID_PAGE_REPLY)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _PAGE_NUMBER_RE.fullmatch(value.strip()):
        return int(value.strip())
    raise StateConflictError(INVALID_PAGE_REPLY)


def _search_query(args: dict[str, Any]) -> str:
    query = args.get("query")
    if isinstance(query, str) and query.strip():
        return query.strip()
    # older tool schema spread the query over several fields
    parts = [
        str(args[key]).strip()
        for key in _SEARCH_ARG_KEYS
        if args.get(key) not in (None, "")
    ]
    return " ".join(p for p in parts if p)


# ---------------------------------------------------------------------
# Reading session
# ---------------------------------------------------------------------

class ReadingSession:
    """
    One reading session: one selected book, one narration player.

    Construct once per conversation. Subscribes to the turn-taking machine
    on construction; call close() to detach.
    """

    def __init__(
        self,
        *,
        catalog: BookCatalog,
        player: NarrationPlayer,
        turn_machine: TurnTakingMachine,
        page_complete_delay_ms: int = PAGE_COMPLETE_DELAY_MS,
        on_page_display: PageDisplayCallback | None = None,
        on_book_state_change: BookStateCallback | None = None,
        on_reading_mode_change: ReadingModeCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._catalog = catalog
        self._player = player
        self._turn = turn_machine
        self._page_complete_delay_ms = page_complete_delay_ms

        self.on_page_display = on_page_display
        self.on_book_state_change = on_book_state_change
        self.on_reading_mode_change = on_reading_mode_change
        self.on_error = on_error

        self._book_state = BookState.IDLE
        self._selected: SelectedBook | None = None
        self._reading_active = False
        self._narrating = False
        self._load_seq = 0

        self._timers = TimerRegistry(owner="reading")
        self._navigation: asyncio.Task[bool] | None = None
        self._evaluating = False
        self._reevaluate = False

        self._player.bind(self.on_narration_event)
        self._unsubscribe = turn_machine.subscribe(self._on_turn_state)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def book_state(self) -> BookState:
        return self._book_state

    @property
    def selected_book(self) -> SelectedBook | None:
        return self._selected

    @property
    def reading_active(self) -> bool:
        return self._reading_active

    @property
    def session_id(self) -> str | None:
        return self._turn.session_id

    # ==================================================================
    # Tool handlers
    # ==================================================================

    async def handle_search(self, call_id: str, arguments: str) -> ToolOutcome:
        """bookSearchTool: adopt the first hit as SelectedBook."""
        args = _parse_arguments(arguments)
        query = _search_query(args)
        if not query:
            return ToolOutcome.error(SEARCH_NO_QUERY_REPLY)

        try:
            books = await self._catalog.search(query)
        except ToolExecutionError as exc:
            self._log("book_search_failed", level="ERROR", call_id=call_id, error=str(exc))
            return ToolOutcome.error(SEARCH_FAILED_REPLY)

        if not books:
            self._log("book_search_empty", call_id=call_id, query=query)
            return ToolOutcome.ok(json.dumps(SEARCH_NOT_FOUND))

        book = books[0]
        if self._selected is None or self._selected.id != book.id:
            self._stop_narration("book_changed")
            if self._book_state is not BookState.IDLE:
                self._transition(BookState.IDLE, "book_changed")
        self._selected = SelectedBook(
            id=book.id,
            title=book.title,
            total_pages=book.page_count,
            current_page=0,
        )
        self._log(
            "book_selected",
            call_id=call_id,
            book_id=book.id,
            title=book.title,
            total_pages=book.page_count,
        )
        return ToolOutcome.ok(json.dumps({
            "title": book.title,
            "summary": book.summary,
            "id": book.id,
            "totalPages": book.page_count,
        }))

    async def handle_display_page(self, call_id: str, arguments: str) -> ToolOutcome:
        """
        display_book_page: show one page and queue its narration.

        Book id / page come from the arguments or, when absent, from the
        selected book and its cursor. Never invents a book.
        """
        args = _parse_arguments(arguments)
        try:
            book_id, page_number = self._resolve_page_request(args)
        except StateConflictError as exc:
            self._log(
                "display_page_rejected",
                level="WARNING",
                call_id=call_id,
                reason=str(exc),
            )
            return ToolOutcome.error(str(exc))

        try:
            page = await self._show_page(book_id, page_number, source="tool")
        except ToolExecutionError:
            return ToolOutcome.error(DISPLAY_FAILED_REPLY)

        if page.audio_url:
            return ToolOutcome.ok(
                f"Page {page.page_number} ready. Audio will play automatically."
            )
        return ToolOutcome.ok(
            f"Page {page.page_number} displayed. No audio available for this page."
        )

    # ==================================================================
    # Navigation
    # ==================================================================

    async def next_page(self) -> bool:
        """Advance one page. False at the last page or on failure."""
        book = self._selected
        if book is None:
            self._report_error(NO_BOOK_SELECTED_REPLY)
            return False

        if book.current_page >= book.total_pages:
            self._stop_narration("book_finished")
            self._transition(BookState.PAGE_COMPLETED, "book_finished")
            self._log("book_finished", book_id=book.id, total_pages=book.total_pages)
            return False

        return await self._navigate(book.id, book.current_page + 1, "next_page")

    async def previous_page(self) -> bool:
        """Go back one page. False before page 1 or on failure."""
        book = self._selected
        if book is None:
            self._report_error(NO_BOOK_SELECTED_REPLY)
            return False

        if book.current_page - 1 < 1:
            self._log("previous_page_at_start", book_id=book.id)
            return False

        return await self._navigate(book.id, book.current_page - 1, "previous_page")

    def exit_reading_session(self) -> None:
        """Stop narration, forget the book, relax the session again."""
        # supersede any page fetch still in flight
        self._load_seq += 1
        self._cancel_navigation()
        self._stop_narration("exit_reading")
        self._selected = None
        self._transition(BookState.IDLE, "exit_reading")
        if self._reading_active:
            self._reading_active = False
            self._log("reading_mode_changed", active=False)
            self._safe_host_call(self.on_reading_mode_change, False)

    def close(self) -> None:
        """Detach from the turn machine and release the player."""
        self._unsubscribe()
        self._load_seq += 1
        self._cancel_navigation()
        self._stop_narration("close")
        self._timers.cancel_all()

    # ==================================================================
    # Narration events (reported by the player)
    # ==================================================================

    def on_narration_event(self, event: NarrationEvent | str) -> None:
        try:
            kind = NarrationEvent(event)
        except ValueError:
            self._log("narration_event_unknown", level="WARNING", narration_event=str(event))
            return

        if kind is NarrationEvent.PLAY:
            if self._turn.state is not TurnState.IDLE:
                # late report from the UI; the floor is already taken
                self._player.pause()
                self._log(
                    "narration_play_refused",
                    level="WARNING",
                    turn_state=self._turn.state.value,
                )
                return
            if self._book_state in (BookState.AUDIO_READY_TO_PLAY, BookState.AUDIO_PAUSED):
                self._transition(BookState.AUDIO_PLAYING, "player_play")
            if self._book_state is BookState.AUDIO_PLAYING:
                self._set_narrating(True, "book-page-audio-start")

        elif kind is NarrationEvent.PAUSE:
            if self._book_state is BookState.AUDIO_PLAYING:
                self._transition(BookState.AUDIO_PAUSED, "player_pause")
            self._set_narrating(False, "book-page-audio-pause")

        elif kind is NarrationEvent.ENDED:
            self._set_narrating(False, "book-page-audio-end")
            if self._book_state in (BookState.AUDIO_PLAYING, BookState.AUDIO_PAUSED):
                self._transition(BookState.AUDIO_COMPLETED, "player_ended")
                self._arm_page_complete()

        elif kind is NarrationEvent.ERROR:
            self._set_narrating(False, "book-page-audio-error")
            self._transition(BookState.ERROR, "player_error")
            self._report_error(NARRATION_FAILED_MESSAGE)

        self._evaluate("narration_event")

    # ==================================================================
    # Monitor
    # ==================================================================

    def evaluate(self) -> None:
        """One monitor tick."""
        self._evaluate("tick")

    def _on_turn_state(self, turn_state: TurnState) -> None:
        del turn_state
        self._evaluate("turn_state")

    def _evaluate(self, reason: str) -> None:
        if self._evaluating:
            self._reevaluate = True
            return
        self._evaluating = True
        try:
            self._reevaluate = True
            while self._reevaluate:
                self._reevaluate = False
                self._apply_rules(reason)
        finally:
            self._evaluating = False

    def _apply_rules(self, reason: str) -> None:
        turn_state = self._turn.state
        book_state = self._book_state

        if turn_state is not TurnState.IDLE:
            if book_state is BookState.AUDIO_PLAYING:
                self._player.pause()
                self._transition(BookState.AUDIO_PAUSED, f"turn_{turn_state.value.lower()}")
                self._set_narrating(False, "book-page-audio-pause")
            return

        if book_state in (BookState.AUDIO_READY_TO_PLAY, BookState.AUDIO_PAUSED):
            self._player.play()
            self._transition(BookState.AUDIO_PLAYING, f"monitor_{reason}")
            return

        completed = book_state is BookState.PAGE_COMPLETED or (
            book_state is BookState.AUDIO_COMPLETED
            and not self._timers.is_pending(TIMER_PAGE_COMPLETE)
        )
        if completed and self._has_more_pages():
            self._schedule_advance()

    # ==================================================================
    # Internal: pages
    # ==================================================================

    def _resolve_page_request(self, args: dict[str, Any]) -> tuple[str, int]:
        selected = self._selected
        raw_book = args.get("bookId")
        book_id = str(raw_book).strip() if raw_book not in (None, "") else ""
        if not book_id:
            if selected is None:
                raise StateConflictError(NO_BOOK_SELECTED_REPLY)
            book_id = selected.id

        same_book = selected is not None and selected.id == book_id
        cursor = selected.current_page if (selected is not None and same_book) else 0
        total = selected.total_pages if (selected is not None and same_book) else None

        page_number = _coerce_page(args.get("pageNumber"))
        if page_number is None:
            request = args.get("pageRequest")
            keyword = str(request).strip().lower() if request is not None else ""
            if not keyword or keyword == "next":
                page_number = cursor + 1
            elif keyword == "first":
                page_number = 1
            elif keyword == "previous":
                page_number = cursor - 1
            else:
                page_number = _coerce_page(request)

        if page_number is None or page_number < 1 or (total and page_number > total):
            raise StateConflictError(INVALID_PAGE_REPLY)
        return book_id, page_number

    async def _navigate(self, book_id: str, page_number: int, source: str) -> bool:
        try:
            await self._show_page(book_id, page_number, source=source)
        except ToolExecutionError:
            self._report_error(DISPLAY_FAILED_REPLY)
            return False
        return True

    async def _show_page(self, book_id: str, page_number: int, *, source: str) -> PageData:
        """
        Fetch and display one page.

        Raises ToolExecutionError (after entering ERROR) when the fetch fails.
        """
        self._load_seq += 1
        seq = self._load_seq

        self._stop_narration(source)
        self._transition(BookState.PAGE_LOADING, source)

        try:
            page = await self._catalog.fetch_page(book_id, page_number)
        except ToolExecutionError as exc:
            if seq == self._load_seq:
                self._transition(BookState.ERROR, "page_fetch_failed")
            self._log(
                "page_fetch_failed",
                level="ERROR",
                book_id=book_id,
                page_number=page_number,
                error=str(exc),
            )
            raise

        if seq != self._load_seq:
            # A newer page request superseded this one while we were fetching
            self._log("page_fetch_superseded", book_id=book_id, page_number=page_number)
            return page

        previous = self._selected
        title = page.book_title or (previous.title if previous is not None else "")
        self._selected = SelectedBook(
            id=book_id,
            title=title,
            total_pages=page.total_pages,
            current_page=page.page_number,
            audio_url=page.audio_url,
        )
        self._enter_reading_mode()
        self._transition(BookState.PAGE_LOADED, source)
        self._safe_host_call(self.on_page_display, page)

        if page.audio_url:
            self._player.load(page.audio_url)
            self._transition(BookState.AUDIO_READY_TO_PLAY, source)
        else:
            self._transition(BookState.IDLE, "no_audio")

        self._evaluate("page_loaded")
        return page

    def _has_more_pages(self) -> bool:
        book = self._selected
        return book is not None and book.current_page < book.total_pages

    def _schedule_advance(self) -> None:
        if self._navigation is not None and not self._navigation.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log("auto_advance_skipped_no_loop", level="WARNING")
            return
        self._log("auto_advance", from_page=self._selected.current_page if self._selected else None)
        self._navigation = loop.create_task(self.next_page())

    def _cancel_navigation(self) -> None:
        task = self._navigation
        self._navigation = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _enter_reading_mode(self) -> None:
        if self._reading_active:
            return
        self._reading_active = True
        self._log("reading_mode_changed", active=True)
        self._safe_host_call(self.on_reading_mode_change, True)

    # ==================================================================
    # Internal: narration
    # ==================================================================

    def _stop_narration(self, reason: str) -> None:
        self._timers.cancel(TIMER_PAGE_COMPLETE)
        if self._book_state in (
            BookState.AUDIO_READY_TO_PLAY,
            BookState.AUDIO_PLAYING,
            BookState.AUDIO_PAUSED,
        ):
            self._player.stop()
        self._set_narrating(False, reason)

    def _set_narrating(self, active: bool, source: str) -> None:
        if self._narrating == active:
            return
        self._narrating = active
        self._turn.notify_narration(active, source)

    def _arm_page_complete(self) -> None:
        if self._page_complete_delay_ms <= 0:
            self._page_completed()
            return
        if not self._timers.start(
            TIMER_PAGE_COMPLETE, self._page_complete_delay_ms, self._page_completed
        ):
            self._page_completed()

    def _page_completed(self) -> None:
        if self._book_state is not BookState.AUDIO_COMPLETED:
            return
        self._transition(BookState.PAGE_COMPLETED, "page_complete_delay")
        if not self._has_more_pages() and self._selected is not None:
            self._log(
                "book_finished",
                book_id=self._selected.id,
                total_pages=self._selected.total_pages,
            )
        self._evaluate("page_completed")

    # ==================================================================
    # Internal: state + reporting
    # ==================================================================

    def _transition(self, new_state: BookState, reason: str) -> None:
        previous = self._book_state
        if new_state is previous:
            return
        self._book_state = new_state
        if previous is BookState.AUDIO_COMPLETED:
            self._timers.cancel(TIMER_PAGE_COMPLETE)

        self._log(
            "book_state_changed",
            from_state=previous.value,
            to_state=new_state.value,
            reason=reason,
            turn_state=self._turn.state.value,
            page=self._selected.current_page if self._selected else None,
        )
        self._safe_host_call(self.on_book_state_change, new_state)
        self._reevaluate = True

    def _report_error(self, message: str) -> None:
        self._log("reading_error", level="WARNING", message=message)
        callback = self.on_error
        if callback is None:
            return
        try:
            callback(None, message)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("reading_host_callback_failed", level="ERROR", exception=type(exc).__name__)

    def _safe_host_call(self, callback: Callable[[Any], None] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log(
                "reading_host_callback_failed",
                level="ERROR",
                exception=type(exc).__name__,
                message=str(exc),
            )

    def _log(self, event_type: str, *, level: str = "INFO", **fields: Any) -> None:
        log_event({
            "level": level,
            "event_type": event_type,
            "component": "reading",
            "session_id": self.session_id,
            "book_state": self._book_state.value,
            **fields,
        })
