from pathlib import Path
import sys
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ordercursor.core.exceptions import LocalStoreError
from ordercursor.database.supabase_client import SupabaseClient


class FakeQuery:
    """Chainable stand-in for a postgrest request builder."""

    def __init__(self, rows, log):
        self.rows = rows
        self.log = log
        self.filters = []
        self.window = None
        self.not_ = self

    def select(self, *columns):
        self.log.append(("select", columns))
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def is_(self, column, value):
        self.filters.append((column, f"not {value}"))
        return self

    def range(self, start, end):
        self.window = (start, end)
        return self

    def execute(self):
        self.log.append(("execute", tuple(self.filters), self.window))
        rows = [row for row in self.rows if all(row.get(c) == v for c, v in self.filters if not str(v).startswith("not"))]
        if self.window is not None:
            start, end = self.window
            rows = rows[start:end + 1]
        return SimpleNamespace(data=rows)


class FakeSupabase:
    def __init__(self, tables):
        self.tables = tables
        self.log = []

    def table(self, name):
        if name not in self.tables:
            raise RuntimeError(f"unknown table {name}")
        return FakeQuery(self.tables[name], self.log)


def test_max_order_id_compares_numerically_across_pages():
    orders = [
        {"ecoManagerId": "999", "storeIdentifier": "S1", "source": "ECOMANAGER"},
        {"ecoManagerId": "1000", "storeIdentifier": "S1", "source": "ECOMANAGER"},
        {"ecoManagerId": "abc", "storeIdentifier": "S1", "source": "ECOMANAGER"},
        {"ecoManagerId": "5000", "storeIdentifier": "S2", "source": "ECOMANAGER"},
        {"ecoManagerId": "7000", "storeIdentifier": "S1", "source": "MANUAL"},
    ]
    fake = FakeSupabase({"orders": orders})
    client = SupabaseClient(client=fake, page_size=2)

    assert client.get_max_order_id("S1") == 1000
    executes = [entry for entry in fake.log if entry[0] == "execute"]
    assert executes[0][2] == (0, 1)
    assert executes[1][2] == (2, 3)


def test_max_order_id_none_without_orders():
    client = SupabaseClient(client=FakeSupabase({"orders": []}))
    assert client.get_max_order_id("S1") is None


def test_query_failure_raises_local_store_error():
    client = SupabaseClient(client=FakeSupabase({}))
    with pytest.raises(LocalStoreError):
        client.get_max_order_id("S1")
    with pytest.raises(LocalStoreError):
        client.get_active_store_configs()


def test_active_store_configs_are_mapped():
    rows = [
        {"id": 1, "storeIdentifier": "NATU", "storeName": "Natural", "apiToken": "t1", "baseUrl": "https://a.test/api/", "isActive": True},
        {"id": 2, "storeIdentifier": "NOTOK", "storeName": "Missing token", "apiToken": None, "isActive": True},
        {"id": 3, "storeIdentifier": "OLD", "storeName": "Old", "apiToken": "t3", "isActive": False},
    ]
    client = SupabaseClient(client=FakeSupabase({"api_configurations": rows}))

    configs = client.get_active_store_configs()

    assert [c.identifier for c in configs] == ["NATU"]
    assert configs[0].base_url == "https://a.test/api"
    assert configs[0].display_name == "Natural"
