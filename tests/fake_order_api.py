"""In-memory stand-in for the remote /orders endpoint, shared by the test modules."""

import base64
from collections import deque
from typing import Dict, Iterable, List, Optional

import requests

from ordercursor.core.models import StoreConfig
from ordercursor.core.order_api_client import OrderApiClient, RetryPolicy


def descending_ids(newest: int = 5200, count: int = 250, step: int = 1) -> List[int]:
    return [newest - step * i for i in range(count)]


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(f"offset:{offset}".encode()).decode()


def decode_cursor(cursor: str) -> int:
    return int(base64.urlsafe_b64decode(cursor.encode()).decode().split(":", 1)[1])


def make_store(identifier: str = "S1", base_url: str = "https://shop.example.test/api/shop/v2") -> StoreConfig:
    return StoreConfig(
        identifier=identifier,
        store_name=f"Store {identifier}",
        base_url=base_url,
        api_token=f"token-{identifier}",
    )


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, headers: Optional[Dict[str, str]] = None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self.text is not None:
            raise ValueError("Expecting value")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeOrderApi:
    """
    Serves a fixed descending ID sequence page by page.

    Responses queued with `queue()` are returned before any page is served,
    which is how tests script 429s and server errors.
    """

    def __init__(self, ids: Iterable[int], fail_from_request: Optional[int] = None):
        self.ids = list(ids)
        self.requests: List[Dict] = []
        self.scripted = deque()
        self.fail_from_request = fail_from_request

    def queue(self, *responses: FakeResponse) -> "FakeOrderApi":
        self.scripted.extend(responses)
        return self

    @property
    def request_count(self) -> int:
        return len(self.requests)

    def get(self, url, headers=None, params=None, timeout=None):
        params = dict(params or {})
        self.requests.append({"url": url, "headers": dict(headers or {}), "params": params, "timeout": timeout})

        if self.scripted:
            return self.scripted.popleft()
        if self.fail_from_request is not None and len(self.requests) >= self.fail_from_request:
            return FakeResponse(500)

        offset = decode_cursor(params["cursor"]) if params.get("cursor") else 0
        per_page = int(params["per_page"])
        chunk = self.ids[offset:offset + per_page]
        next_offset = offset + per_page
        meta = {"next_cursor": encode_cursor(next_offset)} if next_offset < len(self.ids) else {}
        data = [
            {"id": order_id, "reference": f"ORD-{order_id}", "state": {"name": "new"}}
            for order_id in chunk
        ]
        return FakeResponse(200, {"data": data, "meta": meta})


class RoutingSession:
    """Dispatches requests to one FakeOrderApi per store base URL."""

    def __init__(self, apis: Dict[str, FakeOrderApi]):
        self.apis = apis

    def get(self, url, **kwargs):
        for base_url, api in self.apis.items():
            if url.startswith(base_url):
                return api.get(url, **kwargs)
        raise requests.ConnectionError(f"No route to {url}")


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_client(api, store: Optional[StoreConfig] = None, page_size: int = 20, retry_policy: Optional[RetryPolicy] = None, sleep=None) -> OrderApiClient:
    return OrderApiClient(
        store or make_store(),
        page_size=page_size,
        retry_policy=retry_policy,
        session=api,
        sleep=sleep or SleepRecorder(),
    )
