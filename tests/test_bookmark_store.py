from datetime import datetime, timedelta, timezone
import json
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ordercursor.core.events import EventRecorder
from ordercursor.core.exceptions import BookmarkStoreError
from ordercursor.core.models import Bookmark, BookmarkStatus, Confidence, SearchMethod
from ordercursor.database.bookmark_store import (
    BookmarkManager,
    InMemoryBookmarkStore,
    JsonFileBookmarkStore,
    RedisBookmarkStore,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
KEY = "ecomanager:pageinfo:S1"


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class FakeRedis:
    """Records SET ... EX calls and serves values back as bytes."""

    def __init__(self):
        self.values = {}
        self.expiries = {}

    def get(self, key):
        value = self.values.get(key)
        return value.encode("utf-8") if value is not None else None

    def set(self, key, value, ex=None):
        self.values[key] = value
        self.expiries[key] = ex
        return True

    def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        return iter([key.encode("utf-8") for key in self.values if key.startswith(prefix)])


class BrokenStore(InMemoryBookmarkStore):
    name = "broken"

    def get(self, key):
        raise ConnectionError("store offline")

    def set(self, key, value, ttl_seconds):
        raise ConnectionError("store offline")


def _bookmark(**overrides):
    values = dict(
        store_identifier="S1",
        store_name="Store S1",
        last_page=8,
        first_id=5060,
        last_id=5041,
        position=150,
        confidence=Confidence.EXACT,
        method=SearchMethod.BINARY,
        timestamp=NOW,
        last_order_id=5050,
        found=True,
        total_api_calls=13,
    )
    values.update(overrides)
    return Bookmark(**values)


def test_payload_uses_camel_case_keys():
    payload = _bookmark().to_payload()

    assert payload["lastPage"] == 8
    assert payload["firstId"] == 5060
    assert payload["lastId"] == 5041
    assert payload["confidence"] == "EXACT"
    assert payload["method"] == "BINARY"
    assert payload["ttlSeconds"] == 604800
    assert Bookmark.from_payload(payload) == _bookmark()


def test_in_memory_store_expires_entries():
    clock = Clock()
    store = InMemoryBookmarkStore(clock=clock)
    store.set(KEY, {"lastPage": 3}, ttl_seconds=60)

    assert store.get(KEY) == {"lastPage": 3}
    clock.now = NOW + timedelta(seconds=61)
    assert store.get(KEY) is None


def test_json_store_round_trip_and_expiry(tmp_path):
    clock = Clock()
    path = tmp_path / "sync-positions.json"
    store = JsonFileBookmarkStore(path, clock=clock)

    store.set(KEY, {"lastPage": 3}, ttl_seconds=3600)

    assert store.get(KEY) == {"lastPage": 3}
    document = json.loads(path.read_text())
    assert document["positions"][KEY]["value"] == {"lastPage": 3}
    assert document["lastUpdated"] == NOW.isoformat()
    assert store.remaining_ttl(KEY) == 3600
    assert store.keys("ecomanager:") == [KEY]

    clock.now = NOW + timedelta(hours=2)
    assert store.get(KEY) is None


def test_json_store_missing_file_reads_nothing(tmp_path):
    store = JsonFileBookmarkStore(tmp_path / "absent.json")
    assert store.get(KEY) is None
    assert store.keys() == []


def test_redis_store_sets_expiry():
    client = FakeRedis()
    store = RedisBookmarkStore(client)

    store.set(KEY, {"lastPage": 3}, ttl_seconds=604800)

    assert client.expiries[KEY] == 604800
    assert store.get(KEY) == {"lastPage": 3}
    assert store.keys("ecomanager:pageinfo:") == [KEY]


def test_manager_writes_primary_and_backup(tmp_path):
    primary = RedisBookmarkStore(FakeRedis())
    backup = JsonFileBookmarkStore(tmp_path / "positions.json", clock=Clock())
    events = EventRecorder()
    manager = BookmarkManager(primary, backup, on_event=events)

    written = manager.save(_bookmark())

    assert written == ["redis", "json"]
    assert primary.get(KEY)["lastPage"] == 8
    assert backup.get(KEY)["lastPage"] == 8
    assert events.named("bookmark_written")[0]["backends"] == ["redis", "json"]


def test_manager_survives_primary_write_failure():
    backup = InMemoryBookmarkStore(clock=Clock())
    events = EventRecorder()
    manager = BookmarkManager(BrokenStore(), backup, on_event=events)

    assert manager.save(_bookmark()) == ["memory"]
    assert events.named("bookmark_write_failed")[0]["backend"] == "broken"


def test_manager_raises_when_nothing_accepts_the_write():
    manager = BookmarkManager(BrokenStore(), BrokenStore())

    with pytest.raises(BookmarkStoreError):
        manager.save(_bookmark())


def test_manager_restores_primary_from_backup():
    clock = Clock()
    primary = InMemoryBookmarkStore(clock=clock)
    backup = InMemoryBookmarkStore(clock=clock)
    backup.set(KEY, _bookmark().to_payload(), ttl_seconds=600)
    manager = BookmarkManager(primary, backup)

    loaded = manager.load("S1")

    assert loaded == _bookmark()
    assert primary.get(KEY) is not None, "backup hit should be copied back to the primary"


def test_manager_falls_back_when_primary_is_down():
    backup = InMemoryBookmarkStore(clock=Clock())
    backup.set(KEY, _bookmark().to_payload(), ttl_seconds=600)
    manager = BookmarkManager(BrokenStore(), backup)

    assert manager.load("S1").last_page == 8


def test_manager_ignores_invalid_payloads():
    primary = InMemoryBookmarkStore(clock=Clock())
    primary.set(KEY, {"lastPage": "not a page"}, ttl_seconds=600)

    assert BookmarkManager(primary).load("S1") is None


def test_list_bookmarks_merges_stores():
    clock = Clock()
    primary = InMemoryBookmarkStore(clock=clock)
    backup = InMemoryBookmarkStore(clock=clock)
    manager = BookmarkManager(primary, backup)
    manager.save(_bookmark())
    backup.set("ecomanager:pageinfo:S2", _bookmark(store_identifier="S2").to_payload(), ttl_seconds=600)

    bookmarks = manager.list_bookmarks()

    assert sorted(bookmarks) == ["S1", "S2"]
    assert bookmarks["S2"].store_identifier == "S2"


def test_bookmark_expiry():
    bookmark = _bookmark(ttl_seconds=60)
    assert not bookmark.is_expired(NOW + timedelta(seconds=59))
    assert bookmark.is_expired(NOW + timedelta(seconds=60))


def _reset_bookmark(store_identifier):
    return _bookmark(store_identifier=store_identifier, last_page=1, position=0, last_order_id=0, found=False)


def test_status_reports_cache_loss_without_restoring():
    clock = Clock()
    primary = InMemoryBookmarkStore(clock=clock)
    backup = InMemoryBookmarkStore(clock=clock)
    manager = BookmarkManager(primary, backup)
    manager.save(_bookmark())
    manager.save(_reset_bookmark("S2"))
    backup.set("ecomanager:pageinfo:S3", _bookmark(store_identifier="S3").to_payload(), ttl_seconds=600)

    statuses = manager.status(["S1", "S2", "S3", "S4"])

    assert statuses == {
        "S1": BookmarkStatus.HEALTHY,
        "S2": BookmarkStatus.RESET,
        "S3": BookmarkStatus.BACKUP_ONLY,
        "S4": BookmarkStatus.MISSING,
    }
    assert primary.get("ecomanager:pageinfo:S3") is None


def test_restore_all_fills_missing_and_reset_primary_entries():
    clock = Clock()
    primary = InMemoryBookmarkStore(clock=clock)
    backup = InMemoryBookmarkStore(clock=clock)
    events = EventRecorder()
    manager = BookmarkManager(primary, backup, on_event=events)
    manager.save(_bookmark())
    backup.set("ecomanager:pageinfo:S2", _bookmark(store_identifier="S2", last_page=4).to_payload(), ttl_seconds=600)
    primary.set("ecomanager:pageinfo:S2", _reset_bookmark("S2").to_payload(), ttl_seconds=600)
    backup.set("ecomanager:pageinfo:S3", _bookmark(store_identifier="S3").to_payload(), ttl_seconds=600)
    backup.set("ecomanager:pageinfo:S4", _reset_bookmark("S4").to_payload(), ttl_seconds=600)

    results = manager.restore_all()

    assert results == {"S2": True, "S3": True}
    assert manager.status(["S1", "S2", "S3"]) == {
        "S1": BookmarkStatus.HEALTHY,
        "S2": BookmarkStatus.HEALTHY,
        "S3": BookmarkStatus.HEALTHY,
    }
    assert primary.get("ecomanager:pageinfo:S2")["lastPage"] == 4
    assert primary.get("ecomanager:pageinfo:S4") is None
    assert sorted(e["store"] for e in events.named("bookmark_restored")) == ["S2", "S3"]


def test_restore_all_reports_failed_writes():
    backup = InMemoryBookmarkStore(clock=Clock())
    backup.set(KEY, _bookmark().to_payload(), ttl_seconds=600)

    assert BookmarkManager(BrokenStore(), backup).restore_all(["S1"]) == {"S1": False}
    assert BookmarkManager(InMemoryBookmarkStore()).restore_all() == {}
