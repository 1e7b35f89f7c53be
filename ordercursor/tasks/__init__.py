"""Reusable task helpers for the bookmark recovery batch."""

from .recovery_batch import (  # noqa: F401
    BatchSummary,
    bookmark_health,
    build_report_document,
    check_connections,
    render_report_table,
    run_recovery_batch,
    write_report_backup,
)

__all__ = [
    "BatchSummary",
    "run_recovery_batch",
    "check_connections",
    "bookmark_health",
    "build_report_document",
    "render_report_table",
    "write_report_backup",
]
