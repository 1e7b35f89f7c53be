"""
Structured event hooks for recovery progress.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

EventHook = Callable[[str, Dict[str, Any]], None]

logger = logging.getLogger(__name__)


def log_event(
    target_logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    payload = {"event": event, **fields}
    target_logger.log(level, json.dumps(payload, default=str, sort_keys=True))


_WARNING_EVENTS = {
    "rate_limited",
    "fetch_failed",
    "malformed_page",
    "walk_failed",
    "store_failed",
    "bookmark_write_failed",
}


def logging_hook(target_logger: Optional[logging.Logger] = None) -> EventHook:
    """
    Build an event hook that writes every event to a logger.

    Events that signal degraded behaviour are logged at WARNING, the rest at INFO.
    """

    target = target_logger or logger

    def _hook(event: str, fields: Dict[str, Any]) -> None:
        level = logging.WARNING if event in _WARNING_EVENTS else logging.INFO
        log_event(target, level, event, **fields)

    return _hook


def null_hook(event: str, fields: Dict[str, Any]) -> None:
    return None


class EventRecorder:
    """Hook that keeps every event in memory; handy for diagnostics and tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Dict[str, Any]]] = []

    def __call__(self, event: str, fields: Dict[str, Any]) -> None:
        self.events.append((event, dict(fields)))

    def named(self, event: str) -> list[Dict[str, Any]]:
        return [fields for name, fields in self.events if name == event]
