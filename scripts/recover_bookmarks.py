# scripts/recover_bookmarks.py
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from ordercursor.config import REPORT_FILE, missing_env_vars  # noqa: E402
from ordercursor.core.exceptions import RecoveryError  # noqa: E402
from ordercursor.core.models import RecoverySettings  # noqa: E402
from ordercursor.tasks.recovery_batch import (  # noqa: E402
    bookmark_health,
    check_connections,
    default_bookmark_manager,
    run_recovery_batch,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("scripts.recover_bookmarks")


def _show_bookmarks(settings: RecoverySettings) -> int:
    manager = default_bookmark_manager(settings)
    bookmarks = manager.list_bookmarks()
    if not bookmarks:
        print("No bookmarks stored")
        return 0

    rows = [bookmark.to_payload() for bookmark in bookmarks.values()]
    frame = pd.DataFrame(rows, columns=[
        "storeIdentifier",
        "storeName",
        "lastOrderId",
        "lastPage",
        "position",
        "firstId",
        "lastId",
        "confidence",
        "method",
        "timestamp",
    ])
    print(frame.to_string(index=False))
    return 0


def _show_status(stores: Optional[List[str]], settings: RecoverySettings) -> int:
    statuses = bookmark_health(store_identifiers=stores, settings=settings)
    frame = pd.DataFrame(
        [{"Store": identifier, "Status": status.value} for identifier, status in statuses.items()],
        columns=["Store", "Status"],
    )
    print(frame.to_string(index=False))
    return 0


def _restore_from_backup(stores: Optional[List[str]], settings: RecoverySettings) -> int:
    results = default_bookmark_manager(settings).restore_all(stores)
    failed = sorted(identifier for identifier, ok in results.items() if not ok)
    print(f"Restored {len(results) - len(failed)} bookmark(s) from backup, {len(failed)} failed")
    for identifier in failed:
        print(f"  failed: {identifier}")
    return 1 if failed else 0


def _check_connections(stores: Optional[List[str]]) -> int:
    results = check_connections(store_identifiers=stores)
    for identifier, ok in results.items():
        print(f"{identifier}: {'OK' if ok else 'UNREACHABLE'}")
    return 0 if all(results.values()) else 1


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recover the remote page of each store's newest local order and store it as a bookmark.",
    )
    parser.add_argument(
        "--store",
        action="append",
        dest="stores",
        help="Store identifier to process (may be passed multiple times). Defaults to every active store.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Search again even when a valid exact bookmark exists for the same order.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Search and print the report without writing bookmarks or the JSON backup.",
    )
    parser.add_argument(
        "--json-out",
        type=Path,
        default=REPORT_FILE,
        help=f"Where to write the JSON report (default: {REPORT_FILE}).",
    )
    parser.add_argument("--page-size", type=int, help="Orders per page requested from the remote API.")
    parser.add_argument("--exhaustive-max-calls", type=int, help="Call budget of the exhaustive sweep.")
    parser.add_argument(
        "--show",
        action="store_true",
        help="Print the bookmarks currently stored and exit.",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print each active store's bookmark status (healthy, reset, backup only, missing) and exit.",
    )
    parser.add_argument(
        "--restore",
        action="store_true",
        help="Copy bookmarks from the JSON backup into Redis where Redis lost or reset them, then exit.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Fetch the newest page of each active store to verify its API credentials, then exit.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    overrides = {}
    if args.page_size is not None:
        overrides["page_size"] = args.page_size
    if args.exhaustive_max_calls is not None:
        overrides["exhaustive_max_calls"] = args.exhaustive_max_calls
    settings = RecoverySettings(**overrides)

    if args.show:
        return _show_bookmarks(settings)
    if args.restore:
        return _restore_from_backup(args.stores, settings)

    missing = missing_env_vars()
    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        return 1

    try:
        if args.check:
            return _check_connections(args.stores)
        if args.status:
            return _show_status(args.stores, settings)
        summary = run_recovery_batch(
            store_identifiers=args.stores,
            force=args.force,
            dry_run=args.dry_run,
            settings=settings,
            report_path=args.json_out,
            logger=logger,
        )
    except RecoveryError as e:
        logger.error("Recovery aborted: %s", e)
        return 1

    print()
    print("=" * 100)
    print("BOOKMARK RECOVERY RESULTS")
    print("=" * 100)
    print(summary.table)
    print("-" * 100)
    print(f"Stores: {len(summary.reports)} | found exactly: {summary.found_exact} | failed: {len(summary.failed)}")
    if summary.report_path:
        print(f"Report saved to {summary.report_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
