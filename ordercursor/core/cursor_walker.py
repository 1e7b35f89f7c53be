"""
Forward-only navigation over the cursor-paginated order sequence.

Positions are zero-based ranks counted from the newest order. The walker keeps
every page start cursor and every page it fetched during one run, so later
walks resume from the closest known point instead of position 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from ..config import WALK_MAX_CALLS
from .events import EventHook, null_hook
from .models import OrderPage
from .order_api_client import OrderApiClient

logger = logging.getLogger(__name__)


@dataclass
class WalkResult:
    """Outcome of advancing the walker towards a target position."""

    page: Optional[OrderPage]
    calls_used: int
    reached: bool
    end_of_sequence: bool = False
    error: Optional[str] = None


class CursorWalker:
    """Walks one store's order sequence page by page, caching what it sees."""

    def __init__(
        self,
        client: OrderApiClient,
        max_calls: int = WALK_MAX_CALLS,
        on_event: Optional[EventHook] = None,
    ):
        self.client = client
        self.max_calls = max_calls
        self.on_event = on_event or null_hook
        self.calls_made = 0
        self.sequence_length: Optional[int] = None
        self._cursors: Dict[int, Optional[str]] = {0: None}
        self._pages: Dict[int, OrderPage] = {}

    @property
    def store_identifier(self) -> str:
        return self.client.store.identifier

    def cached_page_at(self, position: int) -> Optional[OrderPage]:
        """Cached page containing `position`, if any."""
        start = self._nearest_start(position)
        page = self._pages.get(start)
        if page is not None and page.contains_position(position):
            return page
        return None

    def _nearest_start(self, position: int) -> int:
        candidates = [start for start in self._cursors if start <= position]
        return max(candidates) if candidates else 0

    def _step(self, position: int) -> Tuple[Optional[OrderPage], bool, Optional[str], int]:
        """
        Produce the page starting at `position`, from cache or with one fetch.

        Returns:
            (page, is_last, error, calls) where page is None when the sequence
            ended exactly at `position` or the fetch failed.
        """
        if self.sequence_length is not None and position >= self.sequence_length:
            return None, True, None, 0

        cached = self._pages.get(position)
        if cached is not None:
            return cached, self._is_last(cached), None, 0

        if position not in self._cursors:
            raise ValueError(f"No cursor known for position {position}")

        cursor = self._cursors[position]
        fetch = self.client.fetch_page(cursor)
        self.calls_made += 1

        if not fetch.success:
            self.on_event("walk_failed", {
                "store": self.store_identifier,
                "position": position,
                "error": fetch.error,
            })
            return None, False, fetch.error or "fetch failed", 1

        if not fetch.records:
            self.sequence_length = position
            return None, True, None, 1

        page = OrderPage(
            start=position,
            records=fetch.records,
            cursor=cursor,
            next_cursor=fetch.next_cursor,
        )
        self._pages[position] = page
        if fetch.next_cursor:
            self._cursors.setdefault(page.end, fetch.next_cursor)
        else:
            self.sequence_length = page.end
        return page, self._is_last(page), None, 1

    def _is_last(self, page: OrderPage) -> bool:
        return not page.next_cursor or (
            self.sequence_length is not None and page.end >= self.sequence_length
        )

    def advance_to(
        self,
        target_position: int,
        start_cursor: Optional[str] = None,
        start_position: int = 0,
        max_calls: Optional[int] = None,
    ) -> WalkResult:
        """
        Walk forward until the fetched page contains `target_position`.

        Args:
            target_position: Zero-based position to reach
            start_cursor: Cursor that fetches the page starting at `start_position`.
                Without it the walk resumes from the nearest known page start.
            start_position: Position served by `start_cursor`
            max_calls: Fetch budget for this walk (defaults to the walker's budget)

        Returns:
            WalkResult; `page` is the page containing the target when reached,
            otherwise the last page seen.
        """
        if target_position < 0:
            raise ValueError("target_position must be non-negative")
        budget = self.max_calls if max_calls is None else max_calls

        if start_cursor is not None:
            if start_position > target_position:
                raise ValueError("The walker only moves forward")
            self._cursors.setdefault(start_position, start_cursor)
            position = start_position
        elif start_position:
            raise ValueError("start_position requires a start_cursor")
        else:
            position = self._nearest_start(target_position)

        calls = 0
        last_page: Optional[OrderPage] = None
        while True:
            if position not in self._pages and calls >= budget and not (
                self.sequence_length is not None and position >= self.sequence_length
            ):
                return WalkResult(page=last_page, calls_used=calls, reached=False)

            page, is_last, error, used = self._step(position)
            calls += used
            if error is not None:
                return WalkResult(page=last_page, calls_used=calls, reached=False, error=error)
            if page is None:
                return WalkResult(page=last_page, calls_used=calls, reached=False, end_of_sequence=True)

            last_page = page
            if page.contains_position(target_position):
                return WalkResult(page=page, calls_used=calls, reached=True, end_of_sequence=is_last)
            if is_last:
                return WalkResult(page=page, calls_used=calls, reached=False, end_of_sequence=True)
            position = page.end

    def iter_pages(self, start_position: int = 0, max_calls: Optional[int] = None) -> "PageScan":
        """Consecutive pages from a known page start, for linear scans."""
        return PageScan(self, start_position, self.max_calls if max_calls is None else max_calls)


class PageScan:
    """
    Iterable over consecutive pages. After iteration, `end_of_sequence`,
    `budget_exhausted` and `error` tell why it stopped.
    """

    def __init__(self, walker: CursorWalker, start_position: int, max_calls: int):
        self.walker = walker
        self.start_position = start_position
        self.max_calls = max_calls
        self.calls_used = 0
        self.end_of_sequence = False
        self.budget_exhausted = False
        self.error: Optional[str] = None

    def __iter__(self) -> Iterator[OrderPage]:
        position = self.start_position
        while True:
            if (
                position not in self.walker._pages
                and self.calls_used >= self.max_calls
                and not (
                    self.walker.sequence_length is not None
                    and position >= self.walker.sequence_length
                )
            ):
                self.budget_exhausted = True
                return

            page, is_last, error, used = self.walker._step(position)
            self.calls_used += used
            if error is not None:
                self.error = error
                return
            if page is None:
                self.end_of_sequence = True
                return

            yield page
            if is_last:
                self.end_of_sequence = True
                return
            position = page.end
