"""Batch task: recover bookmarks for every active store and report the results."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd
import requests

from ..config import REPORT_FILE
from ..core.events import EventHook, logging_hook
from ..core.exceptions import NoActiveStoresError
from ..core.models import Bookmark, BookmarkStatus, RecoverySettings, SearchMethod, StoreConfig, StoreReport
from ..core.order_api_client import OrderApiClient, RetryPolicy
from ..database.bookmark_store import (
    BookmarkManager,
    Clock,
    JsonFileBookmarkStore,
    RedisBookmarkStore,
    utc_now,
)
from ..database.supabase_client import LocalOrderStore, StoreConfigSource, SupabaseClient
from ..services.recovery_service import RecoveryOrchestrator

logger = logging.getLogger(__name__)

REPORT_METHOD = "ESCALATING_CURSOR_SEARCH"

REPORT_COLUMNS = {
    "store_identifier": "Store",
    "store_name": "Name",
    "last_order_id": "Last Order ID",
    "resolved_page": "Page",
    "position": "Position",
    "total_api_calls": "API Calls",
    "found": "Found",
    "confidence": "Confidence",
    "method": "Method",
}


@dataclass
class BatchSummary:
    reports: List[StoreReport]
    document: Dict[str, Any]
    table: str
    report_path: Optional[Path] = None
    bookmarks: Dict[str, Bookmark] = field(default_factory=dict)

    @property
    def found_exact(self) -> int:
        return sum(1 for report in self.reports if report.found)

    @property
    def failed(self) -> List[StoreReport]:
        return [report for report in self.reports if report.method == SearchMethod.ERROR]


def reports_to_frame(reports: Sequence[StoreReport]) -> pd.DataFrame:
    """One row per store, columns in report order with display headers."""
    rows = []
    for report in reports:
        row = report.model_dump(mode="json")
        rows.append({column: row.get(column) for column in REPORT_COLUMNS})
    frame = pd.DataFrame(rows, columns=list(REPORT_COLUMNS))
    return frame.rename(columns=REPORT_COLUMNS)


def render_report_table(reports: Sequence[StoreReport]) -> str:
    if not reports:
        return "No stores processed"
    frame = reports_to_frame(reports).astype(object).where(lambda df: df.notna(), "-")
    return frame.to_string(index=False)


def build_report_document(
    reports: Sequence[StoreReport],
    created_at: datetime,
    bookmarks: Optional[Dict[str, Bookmark]] = None,
) -> Dict[str, Any]:
    """JSON backup of a batch run, keyed by store identifier."""
    bookmarks = bookmarks or {}
    document: Dict[str, Any] = {
        "metadata": {
            "createdAt": created_at.isoformat(),
            "method": REPORT_METHOD,
            "totalStores": len(reports),
            "foundExact": sum(1 for report in reports if report.found),
            "totalApiCalls": sum(report.total_api_calls for report in reports),
        },
        "stores": {},
    }

    for report in reports:
        entry: Dict[str, Any] = {
            "storeName": report.store_name,
            "lastOrderId": report.last_order_id,
            "lastPage": report.resolved_page,
            "position": report.position,
            "found": report.found,
            "confidence": report.confidence.value if report.confidence else None,
            "method": report.method.value,
            "totalApiCalls": report.total_api_calls,
            "timestamp": created_at.isoformat(),
        }
        bookmark = bookmarks.get(report.store_identifier)
        if bookmark is not None:
            entry["firstId"] = bookmark.first_id
            entry["lastId"] = bookmark.last_id
            entry["timestamp"] = bookmark.timestamp.isoformat()
        if report.error:
            entry["error"] = report.error
        document["stores"][report.store_identifier] = entry
    return document


def write_report_backup(document: Dict[str, Any], path: Path = REPORT_FILE) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    logger.info("Recovery results saved: %s", path)
    return path


def default_bookmark_manager(
    settings: RecoverySettings,
    on_event: Optional[EventHook] = None,
) -> BookmarkManager:
    """Redis as primary store with the JSON file as backup."""
    return BookmarkManager(
        primary=RedisBookmarkStore(),
        backup=JsonFileBookmarkStore(),
        key_prefix=settings.bookmark_key_prefix,
        ttl_seconds=settings.bookmark_ttl_seconds,
        on_event=on_event,
    )


def _select_stores(
    config_source: StoreConfigSource,
    store_identifiers: Optional[Sequence[str]],
) -> List[StoreConfig]:
    stores = [store for store in config_source.get_active_store_configs() if store.is_active]
    if not stores:
        raise NoActiveStoresError("No active API configurations found")
    if store_identifiers:
        wanted = set(store_identifiers)
        stores = [store for store in stores if store.identifier in wanted]
        if not stores:
            raise NoActiveStoresError(
                f"None of the requested stores are active: {', '.join(sorted(wanted))}"
            )
    return stores


def check_connections(
    *,
    store_identifiers: Optional[Sequence[str]] = None,
    config_source: Optional[StoreConfigSource] = None,
    retry_policy: Optional[RetryPolicy] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, bool]:
    """Fetch the newest page of every selected active store; True where it worked."""
    config_source = config_source or SupabaseClient()
    results = {}
    for store in _select_stores(config_source, store_identifiers):
        client = OrderApiClient(store, retry_policy=retry_policy, session=session, sleep=sleep)
        results[store.identifier] = client.test_connection()
    logger.info("Connection check: %d of %d store(s) reachable", sum(results.values()), len(results))
    return results


def bookmark_health(
    *,
    store_identifiers: Optional[Sequence[str]] = None,
    config_source: Optional[StoreConfigSource] = None,
    bookmarks: Optional[BookmarkManager] = None,
    settings: Optional[RecoverySettings] = None,
) -> Dict[str, BookmarkStatus]:
    """Bookmark status of every selected active store."""
    config_source = config_source or SupabaseClient()
    bookmarks = bookmarks or default_bookmark_manager(settings or RecoverySettings())
    stores = _select_stores(config_source, store_identifiers)
    statuses = bookmarks.status(store.identifier for store in stores)
    problems = [identifier for identifier, status in statuses.items() if status != BookmarkStatus.HEALTHY]
    if problems:
        logger.warning("Bookmarks needing attention: %s", ", ".join(problems))
    return statuses


def run_recovery_batch(
    *,
    store_identifiers: Optional[Sequence[str]] = None,
    force: bool = False,
    dry_run: bool = False,
    settings: Optional[RecoverySettings] = None,
    retry_policy: Optional[RetryPolicy] = None,
    report_path: Optional[Path] = REPORT_FILE,
    local_store: Optional[LocalOrderStore] = None,
    config_source: Optional[StoreConfigSource] = None,
    bookmarks: Optional[BookmarkManager] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Clock = utc_now,
    on_event: Optional[EventHook] = None,
    logger: Optional[logging.Logger] = None,
) -> BatchSummary:
    """
    Recover the bookmark of every active store and write the batch report.

    Store configurations and local order IDs come from Supabase unless
    `config_source`/`local_store` are given; bookmarks go to Redis with a JSON
    file backup unless `bookmarks` is given. With `dry_run` nothing is
    written, neither bookmarks nor the report file.

    Raises:
        NoActiveStoresError: when no (matching) active store exists
    """
    log = logger or logging.getLogger(f"{__name__}.run_recovery_batch")
    settings = settings or RecoverySettings()
    on_event = on_event or logging_hook(log)

    if local_store is None or config_source is None:
        supabase = SupabaseClient()
        local_store = local_store or supabase
        config_source = config_source or supabase
    if bookmarks is None and not dry_run:
        bookmarks = default_bookmark_manager(settings, on_event)

    stores = _select_stores(config_source, store_identifiers)
    log.info("Found %d active store(s) to process", len(stores))

    orchestrator = RecoveryOrchestrator(
        local_store,
        bookmarks=bookmarks,
        settings=settings,
        retry_policy=retry_policy,
        session=session,
        sleep=sleep,
        clock=clock,
        on_event=on_event,
        force=force,
        dry_run=dry_run,
    )
    reports = orchestrator.run_batch(stores)

    document = build_report_document(reports, clock(), orchestrator.recovered)
    written_path = None
    if report_path is not None and not dry_run:
        written_path = write_report_backup(document, report_path)

    summary = BatchSummary(
        reports=reports,
        document=document,
        table=render_report_table(reports),
        report_path=written_path,
        bookmarks=dict(orchestrator.recovered),
    )
    log.info(
        "Recovery complete | stores=%d found=%d failed=%d api_calls=%d",
        len(reports),
        summary.found_exact,
        len(summary.failed),
        document["metadata"]["totalApiCalls"],
    )
    return summary
