"""
Search strategies that locate an order ID in the descending sequence.

All strategies share one CursorWalker, so pages fetched by an earlier phase
are free for the later ones.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..config import (
    BINARY_MAX_ITERATIONS,
    EXHAUSTIVE_MAX_CALLS,
    WINDOW_MAX_CALLS,
    WINDOW_RADIUS,
)
from .cursor_walker import CursorWalker
from .events import EventHook, null_hook
from .models import SearchMethod, SearchOutcome

logger = logging.getLogger(__name__)


class WindowedPreciseSearch:
    """Scans every record within `radius` positions of a center position."""

    def __init__(
        self,
        walker: CursorWalker,
        max_calls: int = WINDOW_MAX_CALLS,
        radius: int = WINDOW_RADIUS,
        method: SearchMethod = SearchMethod.BINARY,
    ):
        self.walker = walker
        self.max_calls = max_calls
        self.radius = radius
        self.method = method

    def search_around(self, center: int, target_id: int, radius: Optional[int] = None) -> SearchOutcome:
        """
        Look for `target_id` between center - radius and center + radius.

        Navigation to the window start and the scan itself share `max_calls`.
        """
        radius = self.radius if radius is None else radius
        start = max(0, center - radius)
        stop = center + radius
        calls_before = self.walker.calls_made

        walk = self.walker.advance_to(start, max_calls=self.max_calls)
        if not walk.reached:
            return SearchOutcome(
                found=False,
                total_api_calls=self.walker.calls_made - calls_before,
                error=walk.error,
            )

        scan = self.walker.iter_pages(walk.page.start, max_calls=self.max_calls - walk.calls_used)
        for page in scan:
            index = page.index_of(target_id)
            if index is not None:
                return SearchOutcome.hit(page, index, self.method, self.walker.calls_made - calls_before)
            if page.end > stop:
                break

        return SearchOutcome(
            found=False,
            total_api_calls=self.walker.calls_made - calls_before,
            error=scan.error,
        )


class BinarySearchNavigator:
    """
    Binary search over positions, comparing the target with each probed page.

    IDs decrease with position, so a target larger than a page's max ID lies
    before that page and a smaller one lies after it.
    """

    def __init__(
        self,
        walker: CursorWalker,
        max_iterations: int = BINARY_MAX_ITERATIONS,
        window: Optional[WindowedPreciseSearch] = None,
        on_event: Optional[EventHook] = None,
    ):
        self.walker = walker
        self.max_iterations = max_iterations
        self.window = window or WindowedPreciseSearch(walker)
        self.on_event = on_event or null_hook

    def search(
        self,
        lower: int,
        upper: int,
        target_id: int,
        first_probe: Optional[int] = None,
        lower_pinned: bool = False,
        upper_pinned: bool = False,
    ) -> SearchOutcome:
        """
        Narrow [lower, upper] down to the position of `target_id`.

        Args:
            lower: First candidate position
            upper: Last candidate position (inclusive)
            target_id: Order ID to locate
            first_probe: Position to probe first, usually the estimate
            lower_pinned: Every position before `lower` is known to hold a larger ID
            upper_pinned: Every position after `upper` is known to hold a smaller ID

        Returns:
            SearchOutcome. When the target is absent but two probed pages (or a
            probed page and an edge of the sequence) enclose its place,
            `best_position` holds that insertion point.
        """
        calls_before = self.walker.calls_made
        probes = 0
        best_position: Optional[int] = None
        error: Optional[str] = None
        lower_pinned = lower_pinned or lower == 0

        while lower <= upper and probes < self.max_iterations:
            if probes == 0 and first_probe is not None:
                mid = min(max(first_probe, lower), upper)
            else:
                mid = (lower + upper) // 2
            probes += 1

            walk = self.walker.advance_to(mid)
            if walk.error is not None:
                error = walk.error
                break
            if not walk.reached:
                if walk.end_of_sequence and self.walker.sequence_length is not None:
                    upper = min(upper, self.walker.sequence_length - 1)
                    upper_pinned = True
                    continue
                logger.warning("Walk budget spent before position %d on %s", mid, self.walker.store_identifier)
                break

            page = walk.page
            self.on_event("binary_probe", {
                "store": self.walker.store_identifier,
                "probe": probes,
                "position": mid,
                "page_start": page.start,
                "min_id": page.min_id,
                "max_id": page.max_id,
            })

            index = page.index_of(target_id)
            if index is not None:
                return SearchOutcome.hit(
                    page, index, SearchMethod.BINARY, self.walker.calls_made - calls_before, probes
                )

            if target_id > page.max_id:
                upper = min(mid - 1, page.start - 1)
                upper_pinned = True
            elif target_id < page.min_id:
                lower = max(mid + 1, page.end)
                lower_pinned = True
            else:
                # Target falls inside this page's ID range without being on it
                best_position = page.start + page.insertion_index(target_id)
                window = self.window.search_around(mid, target_id)
                if window.found:
                    return window.model_copy(update={
                        "total_api_calls": self.walker.calls_made - calls_before,
                        "probes": probes,
                    })
                break
        else:
            if lower > upper and lower_pinned and upper_pinned:
                best_position = lower

        logger.info(
            "Binary search for %s on %s unresolved after %d probes",
            target_id,
            self.walker.store_identifier,
            probes,
        )
        return SearchOutcome(
            found=False,
            total_api_calls=self.walker.calls_made - calls_before,
            best_position=best_position,
            probes=probes,
            error=error,
        )


class ExhaustiveSweep:
    """
    Linear scan from the newest order. Reaching the end of the sequence within
    budget proves the target is absent.
    """

    def __init__(
        self,
        walker: CursorWalker,
        max_calls: int = EXHAUSTIVE_MAX_CALLS,
        method: SearchMethod = SearchMethod.EXHAUSTIVE,
    ):
        self.walker = walker
        self.max_calls = max_calls
        self.method = method

    def sweep(self, target_id: int, max_calls: Optional[int] = None) -> SearchOutcome:
        budget = self.max_calls if max_calls is None else max_calls
        calls_before = self.walker.calls_made
        newer_records = 0

        scan = self.walker.iter_pages(0, max_calls=budget)
        for page in scan:
            index = page.index_of(target_id)
            if index is not None:
                return SearchOutcome.hit(page, index, self.method, self.walker.calls_made - calls_before)
            newer_records += page.insertion_index(target_id)

        calls = self.walker.calls_made - calls_before
        if scan.end_of_sequence:
            logger.info(
                "Order %s absent from %s after scanning %d orders",
                target_id,
                self.walker.store_identifier,
                newer_records,
            )
            return SearchOutcome(
                found=False,
                total_api_calls=calls,
                method=SearchMethod.NOT_FOUND,
                best_position=newer_records,
                proven_absent=True,
            )

        return SearchOutcome(found=False, total_api_calls=calls, error=scan.error)
