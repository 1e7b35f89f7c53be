"""
Bookmark persistence: a TTL key-value interface with Redis, JSON file and
in-memory backends, plus a manager that keeps a primary and a backup in step.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import redis
from pydantic import ValidationError

from ..config import (
    BOOKMARK_BACKUP_FILE,
    BOOKMARK_KEY_PREFIX,
    BOOKMARK_TTL_SECONDS,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    REDIS_URL,
)
from ..core.events import EventHook, null_hook
from ..core.exceptions import BookmarkStoreError
from ..core.models import Bookmark, BookmarkStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookmarkStore(ABC):
    """Key-value store with per-key expiry."""

    name = "store"

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Stored value, or None when missing or expired."""

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        """Overwrite `key` with `value`, expiring after `ttl_seconds`."""

    def keys(self, prefix: str = "") -> List[str]:
        return []


class RedisBookmarkStore(BookmarkStore):
    """Bookmarks as JSON strings under `SET key value EX ttl`."""

    name = "redis"

    def __init__(self, client: Optional[redis.Redis] = None):
        if client is None:
            if REDIS_URL:
                client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
            else:
                client = redis.Redis(
                    host=REDIS_HOST,
                    port=REDIS_PORT,
                    password=REDIS_PASSWORD,
                    decode_responses=True,
                )
        self.client = client

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        self.client.set(key, json.dumps(value), ex=ttl_seconds)

    def keys(self, prefix: str = "") -> List[str]:
        found = []
        for key in self.client.scan_iter(match=f"{prefix}*"):
            found.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        return sorted(found)


class JsonFileBookmarkStore(BookmarkStore):
    """
    Bookmarks in one JSON document on disk:

        {"lastUpdated": "...", "positions": {key: {"value": {...}, "expiresAt": "..."}}}
    """

    name = "json"

    def __init__(self, path: Path = BOOKMARK_BACKUP_FILE, clock: Clock = utc_now):
        self.path = Path(path)
        self.clock = clock

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"lastUpdated": None, "positions": {}}
        with open(self.path, "r", encoding="utf-8") as f:
            document = json.load(f)
        document.setdefault("positions", {})
        return document

    def _write(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".bookmarks-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._load()["positions"].get(key)
        if not entry:
            return None
        expires_at = entry.get("expiresAt")
        if expires_at and datetime.fromisoformat(expires_at) <= self.clock():
            return None
        return entry.get("value")

    def remaining_ttl(self, key: str) -> Optional[int]:
        """Seconds until `key` expires, None when missing or without expiry."""
        entry = self._load()["positions"].get(key)
        if not entry or not entry.get("expiresAt"):
            return None
        remaining = (datetime.fromisoformat(entry["expiresAt"]) - self.clock()).total_seconds()
        return max(0, int(remaining))

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        now = self.clock()
        document = self._load()
        document["positions"][key] = {
            "value": value,
            "expiresAt": (now + timedelta(seconds=ttl_seconds)).isoformat(),
        }
        document["lastUpdated"] = now.isoformat()
        self._write(document)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(key for key in self._load()["positions"] if key.startswith(prefix))


class InMemoryBookmarkStore(BookmarkStore):
    name = "memory"

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.data: Dict[str, Tuple[Dict[str, Any], datetime]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self.data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            del self.data[key]
            return None
        return json.loads(json.dumps(value))

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        self.data[key] = (json.loads(json.dumps(value)), self.clock() + timedelta(seconds=ttl_seconds))

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(key for key in self.data if key.startswith(prefix))


class BookmarkManager:
    """
    Reads and writes bookmarks through a primary store and an optional backup.

    Reads try the primary first; a bookmark found only in the backup is
    copied back into the primary. Writes go to both, and only fail when
    neither store accepted the bookmark.
    """

    def __init__(
        self,
        primary: BookmarkStore,
        backup: Optional[BookmarkStore] = None,
        key_prefix: str = BOOKMARK_KEY_PREFIX,
        ttl_seconds: int = BOOKMARK_TTL_SECONDS,
        on_event: Optional[EventHook] = None,
    ):
        self.primary = primary
        self.backup = backup
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self.on_event = on_event or null_hook

    def key_for(self, store_identifier: str) -> str:
        return f"{self.key_prefix}{store_identifier}"

    def _read(self, store: BookmarkStore, key: str) -> Optional[Bookmark]:
        try:
            payload = store.get(key)
        except Exception as e:
            logger.warning(f"Could not read {key} from {store.name}: {e}")
            return None
        if payload is None:
            return None
        try:
            return Bookmark.from_payload(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid bookmark {key} in {store.name}: {e.error_count()} errors")
            return None

    def load(self, store_identifier: str) -> Optional[Bookmark]:
        key = self.key_for(store_identifier)
        bookmark = self._read(self.primary, key)
        if bookmark is not None or self.backup is None:
            return bookmark

        bookmark = self._read(self.backup, key)
        if bookmark is not None:
            self._restore(store_identifier, bookmark)
        return bookmark

    def _restore(self, store_identifier: str, bookmark: Bookmark) -> bool:
        """Copy a backup bookmark into the primary, keeping its remaining TTL."""
        key = self.key_for(store_identifier)
        ttl = self.ttl_seconds
        if isinstance(self.backup, JsonFileBookmarkStore):
            ttl = self.backup.remaining_ttl(key) or ttl
        try:
            self.primary.set(key, bookmark.to_payload(), ttl)
        except Exception as e:
            logger.warning(f"Could not restore {key} to {self.primary.name}: {e}")
            return False
        logger.info(f"Restored bookmark {key} from {self.backup.name} to {self.primary.name}")
        self.on_event("bookmark_restored", {"store": store_identifier, "source": self.backup.name})
        return True

    def save(self, bookmark: Bookmark) -> List[str]:
        """
        Write a bookmark to every configured store.

        Returns:
            Names of the stores that accepted the write

        Raises:
            BookmarkStoreError: when no store accepted it
        """
        key = self.key_for(bookmark.store_identifier)
        payload = bookmark.to_payload()
        ttl = bookmark.ttl_seconds or self.ttl_seconds
        written = []
        errors = []

        for store in (self.primary, self.backup):
            if store is None:
                continue
            try:
                store.set(key, payload, ttl)
                written.append(store.name)
            except Exception as e:
                errors.append(f"{store.name}: {e}")
                logger.warning(f"Failed to write bookmark {key} to {store.name}: {e}")
                self.on_event("bookmark_write_failed", {
                    "store": bookmark.store_identifier,
                    "backend": store.name,
                    "error": str(e),
                })

        if not written:
            raise BookmarkStoreError(f"Bookmark {key} not written: {'; '.join(errors)}")

        self.on_event("bookmark_written", {
            "store": bookmark.store_identifier,
            "page": bookmark.last_page,
            "position": bookmark.position,
            "confidence": bookmark.confidence.value,
            "backends": written,
        })
        return written

    def list_bookmarks(self) -> Dict[str, Bookmark]:
        """Every readable bookmark under the key prefix, keyed by store identifier."""
        keys = set()
        for store in (self.primary, self.backup):
            if store is None:
                continue
            try:
                keys.update(store.keys(self.key_prefix))
            except Exception as e:
                logger.warning(f"Could not list keys in {store.name}: {e}")

        bookmarks = {}
        for key in sorted(keys):
            store_identifier = key[len(self.key_prefix):]
            bookmark = self.load(store_identifier)
            if bookmark is not None:
                bookmarks[store_identifier] = bookmark
        return bookmarks

    def status(self, store_identifiers: Iterable[str]) -> Dict[str, BookmarkStatus]:
        """
        Health of each store's bookmark, judged on the primary store.

        BACKUP_ONLY means the primary lost the bookmark but the backup still
        has it; RESET means the bookmark points at page 1 with no known order.
        Reading status never restores anything.
        """
        statuses = {}
        for store_identifier in store_identifiers:
            key = self.key_for(store_identifier)
            bookmark = self._read(self.primary, key)
            if bookmark is None:
                in_backup = self.backup is not None and self._read(self.backup, key) is not None
                statuses[store_identifier] = BookmarkStatus.BACKUP_ONLY if in_backup else BookmarkStatus.MISSING
            elif bookmark.is_reset:
                statuses[store_identifier] = BookmarkStatus.RESET
            else:
                statuses[store_identifier] = BookmarkStatus.HEALTHY
        return statuses

    def restore_all(self, store_identifiers: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """
        Copy backup bookmarks into the primary wherever the primary copy is
        missing or reset.

        Args:
            store_identifiers: Stores to restore; defaults to every bookmark in the backup

        Returns:
            Store identifier -> True when restored, False when the write failed.
            Stores with a usable primary copy, or nothing usable in the backup,
            are left out.
        """
        if self.backup is None:
            return {}
        if store_identifiers is None:
            try:
                keys = self.backup.keys(self.key_prefix)
            except Exception as e:
                logger.warning(f"Could not list keys in {self.backup.name}: {e}")
                keys = []
            store_identifiers = [key[len(self.key_prefix):] for key in keys]

        results = {}
        for store_identifier in store_identifiers:
            key = self.key_for(store_identifier)
            current = self._read(self.primary, key)
            if current is not None and not current.is_reset:
                continue
            bookmark = self._read(self.backup, key)
            if bookmark is None or bookmark.is_reset:
                continue
            results[store_identifier] = self._restore(store_identifier, bookmark)

        restored = sum(1 for ok in results.values() if ok)
        logger.info(f"Restored {restored} bookmark(s) from {self.backup.name}, {len(results) - restored} failed")
        return results
