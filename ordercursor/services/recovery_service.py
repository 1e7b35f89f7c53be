"""
Recovery orchestration: locate each store's newest local order in the remote
sequence and persist the result as a bookmark.

Phases escalate SAMPLING -> BINARY_SEARCH -> CURSOR_SWEEP -> EXHAUSTIVE_SEARCH
until one of them finds the order; all phases share one walker per store.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from datetime import datetime
from typing import Callable, Dict, List, Optional

import requests

from ..core.cursor_walker import CursorWalker
from ..core.estimator import estimate, search_bracket
from ..core.events import EventHook, null_hook
from ..core.exceptions import NoActiveStoresError
from ..core.models import (
    Bookmark,
    Confidence,
    EstimateBasis,
    RecoverySettings,
    SearchMethod,
    SearchOutcome,
    StoreConfig,
    StoreReport,
)
from ..core.order_api_client import OrderApiClient, RetryPolicy
from ..core.sampler import DistributionSampler
from ..core.search import BinarySearchNavigator, ExhaustiveSweep, WindowedPreciseSearch
from ..database.bookmark_store import BookmarkManager, Clock, utc_now
from ..database.supabase_client import LocalOrderStore, StoreConfigSource

logger = logging.getLogger(__name__)


class RecoveryState(str, Enum):
    SAMPLING = "SAMPLING"
    BINARY_SEARCH = "BINARY_SEARCH"
    CURSOR_SWEEP = "CURSOR_SWEEP"
    EXHAUSTIVE_SEARCH = "EXHAUSTIVE_SEARCH"
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"


_MEDIUM_BASES = {EstimateBasis.INTERPOLATED, EstimateBasis.WITHIN_SAMPLE}


class RecoverySearch:
    """Runs the escalating search for one target ID over one store's walker."""

    def __init__(
        self,
        walker: CursorWalker,
        settings: RecoverySettings,
        on_event: Optional[EventHook] = None,
    ):
        self.walker = walker
        self.settings = settings
        self.on_event = on_event or null_hook
        self.state: Optional[RecoveryState] = None

    def _enter(self, state: RecoveryState) -> None:
        self.state = state
        self.on_event("state_changed", {
            "store": self.walker.store_identifier,
            "state": state.value,
            "api_calls": self.walker.calls_made,
        })

    def _finish(self, outcome: SearchOutcome) -> SearchOutcome:
        outcome = outcome.model_copy(update={"total_api_calls": self.walker.calls_made})
        self._enter(RecoveryState.FOUND if outcome.found else RecoveryState.NOT_FOUND)
        return outcome

    def run(self, target_id: int) -> SearchOutcome:
        settings = self.settings
        walker = self.walker
        errors = []

        self._enter(RecoveryState.SAMPLING)
        sampler = DistributionSampler(walker, max_calls=settings.sample_max_calls, on_event=self.on_event)
        run = sampler.sample(settings.sample_checkpoints)
        guess = estimate(run.samples, target_id, newer_margin=settings.newer_than_first_margin)
        bracket = search_bracket(
            run.samples,
            target_id,
            sequence_length=walker.sequence_length,
            span=settings.binary_extrapolation_span,
            estimated=guess.position,
            radius=settings.window_radius,
        )
        self.on_event("position_estimated", {
            "store": walker.store_identifier,
            "target_id": target_id,
            "position": guess.position,
            "basis": guess.basis.value,
            "lower": bracket.lower,
            "upper": bracket.upper,
        })

        self._enter(RecoveryState.BINARY_SEARCH)
        window = WindowedPreciseSearch(
            walker,
            max_calls=settings.window_max_calls,
            radius=settings.window_radius,
        )
        navigator = BinarySearchNavigator(
            walker,
            max_iterations=settings.binary_max_iterations,
            window=window,
            on_event=self.on_event,
        )
        binary = navigator.search(
            bracket.lower,
            bracket.upper,
            target_id,
            first_probe=guess.position,
            lower_pinned=bracket.lower_pinned,
            upper_pinned=bracket.upper_pinned,
        )
        if binary.found:
            return self._finish(binary)
        if binary.error:
            errors.append(binary.error)

        outcome = None
        for state, method, budget in (
            (RecoveryState.CURSOR_SWEEP, SearchMethod.SWEEP, settings.sweep_max_calls),
            (RecoveryState.EXHAUSTIVE_SEARCH, SearchMethod.EXHAUSTIVE, settings.exhaustive_max_calls),
        ):
            self._enter(state)
            outcome = ExhaustiveSweep(walker, max_calls=budget, method=method).sweep(target_id)
            if outcome.found:
                return self._finish(outcome)
            if outcome.error:
                errors.append(outcome.error)

        if outcome is not None and outcome.proven_absent:
            position = outcome.best_position
            confidence = Confidence.NOT_FOUND
        elif binary.best_position is not None:
            position = binary.best_position
            confidence = Confidence.HIGH
        else:
            position = max(0, guess.position)
            if walker.sequence_length:
                position = min(position, walker.sequence_length - 1)
            confidence = Confidence.MEDIUM if guess.basis in _MEDIUM_BASES else Confidence.LOW

        method = SearchMethod.NOT_FOUND
        error = "; ".join(errors) or None
        if error and confidence != Confidence.NOT_FOUND:
            # A failed fetch cut the search short; best_position is only diagnostic
            method = SearchMethod.ERROR

        page = walker.cached_page_at(position)
        return self._finish(SearchOutcome(
            found=False,
            method=method,
            best_position=position,
            confidence=confidence,
            proven_absent=confidence == Confidence.NOT_FOUND,
            probes=binary.probes,
            page_first_id=page.records[0].id if page else None,
            page_last_id=page.records[-1].id if page else None,
            error=error,
        ))


def recover_bookmark(
    store: StoreConfig,
    target_id: int,
    settings: Optional[RecoverySettings] = None,
    retry_policy: Optional[RetryPolicy] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    on_event: Optional[EventHook] = None,
) -> SearchOutcome:
    """
    Locate `target_id` in a store's remote order sequence.

    Args:
        store: Store whose remote API is searched
        target_id: Order ID to locate
        settings: Page size, budgets and checkpoints
        retry_policy: Backoff for HTTP 429 responses
        session: HTTP session (a fresh one is created when omitted)
        sleep: Blocking sleep used for backoff
        on_event: Structured event hook

    Returns:
        SearchOutcome with `found`, `exact_position`, `total_api_calls` and `method`
    """
    settings = settings or RecoverySettings()
    client = OrderApiClient(
        store,
        page_size=settings.page_size,
        retry_policy=retry_policy,
        session=session,
        sleep=sleep,
        on_event=on_event,
    )
    walker = CursorWalker(client, max_calls=settings.walk_max_calls, on_event=on_event)
    return RecoverySearch(walker, settings, on_event=on_event).run(target_id)


def build_bookmark(
    store: StoreConfig,
    target_id: int,
    outcome: SearchOutcome,
    settings: RecoverySettings,
    now: datetime,
) -> Bookmark:
    """Bookmark for a finished search; page IDs fall back to a window ending at the target."""
    position = outcome.exact_position if outcome.found else (outcome.best_position or 0)
    first_id = outcome.page_first_id
    last_id = outcome.page_last_id
    if first_id is None or last_id is None:
        first_id = max(1, target_id - (settings.page_size - 1))
        last_id = target_id

    return Bookmark(
        store_identifier=store.identifier,
        store_name=store.store_name,
        last_page=settings.page_for(position),
        first_id=first_id,
        last_id=last_id,
        position=position,
        confidence=outcome.confidence or Confidence.LOW,
        method=outcome.method,
        timestamp=now,
        ttl_seconds=settings.bookmark_ttl_seconds,
        last_order_id=target_id,
        found=outcome.found,
        total_api_calls=outcome.total_api_calls,
    )


class RecoveryOrchestrator:
    """Runs bookmark recovery for a batch of stores, one after another."""

    def __init__(
        self,
        local_store: LocalOrderStore,
        bookmarks: Optional[BookmarkManager] = None,
        config_source: Optional[StoreConfigSource] = None,
        settings: Optional[RecoverySettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Clock = utc_now,
        on_event: Optional[EventHook] = None,
        force: bool = False,
        dry_run: bool = False,
    ):
        """
        Args:
            local_store: Source of the newest locally known order ID per store
            bookmarks: Where bookmarks are read and written (None disables both)
            config_source: Source of active store configurations for run_batch()
            settings: Search tunables shared by every store
            retry_policy: Backoff for HTTP 429 responses
            session: HTTP session shared by every store's client
            sleep: Blocking sleep used for backoff
            clock: Returns the timestamp written into bookmarks
            on_event: Structured event hook
            force: Search even when a valid bookmark for the same order exists
            dry_run: Search and report without writing bookmarks
        """
        self.local_store = local_store
        self.bookmarks = bookmarks
        self.config_source = config_source
        self.settings = settings or RecoverySettings()
        self.retry_policy = retry_policy
        self.session = session
        self.sleep = sleep
        self.clock = clock
        self.on_event = on_event or null_hook
        self.force = force
        self.dry_run = dry_run
        self.recovered: Dict[str, Bookmark] = {}

    def _cached_report(self, store: StoreConfig, target_id: int) -> Optional[StoreReport]:
        if self.force or self.bookmarks is None:
            return None
        existing = self.bookmarks.load(store.identifier)
        if existing is None:
            return None
        if (
            existing.last_order_id != target_id
            or existing.confidence != Confidence.EXACT
            or existing.is_expired(self.clock())
        ):
            return None

        logger.info(f"Reusing bookmark for {store.display_name}: page {existing.last_page}")
        self.on_event("bookmark_reused", {"store": store.identifier, "page": existing.last_page})
        return StoreReport(
            store_identifier=store.identifier,
            store_name=store.store_name,
            last_order_id=target_id,
            resolved_page=existing.last_page,
            position=existing.position,
            total_api_calls=0,
            found=True,
            confidence=Confidence.EXACT,
            method=SearchMethod.CACHED,
        )

    def run_store(self, store: StoreConfig) -> StoreReport:
        """Recover and persist the bookmark of one store."""
        logger.info(f"Processing store: {store.display_name} ({store.identifier})")
        target_id = self.local_store.get_max_order_id(store.identifier)
        if target_id is None:
            logger.warning(f"No local orders for {store.display_name}, skipping")
            self.on_event("store_skipped", {"store": store.identifier, "reason": "no local orders"})
            return StoreReport(
                store_identifier=store.identifier,
                store_name=store.store_name,
                error="no local orders",
            )

        cached = self._cached_report(store, target_id)
        if cached is not None:
            return cached

        outcome = recover_bookmark(
            store,
            target_id,
            settings=self.settings,
            retry_policy=self.retry_policy,
            session=self.session,
            sleep=self.sleep,
            on_event=self.on_event,
        )

        if outcome.method == SearchMethod.ERROR:
            logger.error(f"Search for {store.display_name} failed, keeping previous bookmark: {outcome.error}")
            return StoreReport(
                store_identifier=store.identifier,
                store_name=store.store_name,
                last_order_id=target_id,
                position=outcome.best_position,
                total_api_calls=outcome.total_api_calls,
                confidence=outcome.confidence,
                method=SearchMethod.ERROR,
                error=outcome.error,
            )

        bookmark = build_bookmark(store, target_id, outcome, self.settings, self.clock())
        if self.bookmarks is not None and not self.dry_run:
            self.bookmarks.save(bookmark)
        self.recovered[store.identifier] = bookmark

        logger.info(
            "%s: order %s -> page %s (position %s, %s, %s, %d API calls)",
            store.display_name,
            target_id,
            bookmark.last_page,
            bookmark.position,
            bookmark.confidence.value,
            bookmark.method.value,
            outcome.total_api_calls,
        )
        return StoreReport(
            store_identifier=store.identifier,
            store_name=store.store_name,
            last_order_id=target_id,
            resolved_page=bookmark.last_page,
            position=bookmark.position,
            total_api_calls=outcome.total_api_calls,
            found=outcome.found,
            confidence=bookmark.confidence,
            method=outcome.method,
            error=outcome.error,
        )

    def run_batch(self, stores: Optional[List[StoreConfig]] = None) -> List[StoreReport]:
        """
        Run every store sequentially. A failing store is reported as ERROR and
        keeps its previous bookmark; the batch carries on.

        Raises:
            NoActiveStoresError: when there is no active store to process
        """
        if stores is None:
            if self.config_source is None:
                raise NoActiveStoresError("No store configuration source provided")
            stores = self.config_source.get_active_store_configs()
        stores = [store for store in stores if store.is_active]
        if not stores:
            raise NoActiveStoresError("No active API configurations found")

        reports = []
        for store in stores:
            try:
                reports.append(self.run_store(store))
            except Exception as e:
                logger.exception(f"Recovery failed for {store.display_name}: {e}")
                self.on_event("store_failed", {"store": store.identifier, "error": str(e)})
                reports.append(StoreReport(
                    store_identifier=store.identifier,
                    store_name=store.store_name,
                    method=SearchMethod.ERROR,
                    error=str(e),
                ))
        return reports
