"""
Remote order API client: one paginated /orders call with 429 backoff.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import (
    CONNECT_RETRIES,
    MIN_REQUEST_INTERVAL,
    ORDER_API_TIMEOUT,
    PAGE_SIZE,
    RATE_LIMIT_DELAYS,
    RATE_LIMIT_MAX_ATTEMPTS,
    RATE_LIMIT_MAX_DELAY,
)
from .events import EventHook, null_hook
from .models import RemoteOrderRecord, StoreConfig

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff schedule applied to HTTP 429 responses.

    Attributes:
        max_attempts: Total attempts per fetch, the first one included
        delays: Seconds to wait after the 1st, 2nd, ... rate-limited attempt.
            The last entry repeats when there are more retries than entries.
        max_delay: Upper bound for any single wait, including Retry-After
        respect_retry_after: Use the server's Retry-After header when present
    """

    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS
    delays: Sequence[float] = field(default_factory=lambda: tuple(RATE_LIMIT_DELAYS))
    max_delay: float = RATE_LIMIT_MAX_DELAY
    respect_retry_after: bool = True

    @classmethod
    def flat(cls, delay: float, attempts: int = 2) -> "RetryPolicy":
        """Single fixed wait between attempts (wait once, retry once by default)."""
        return cls(max_attempts=attempts, delays=(delay,))

    def delay_for(self, retry_number: int, retry_after: Optional[str] = None) -> float:
        """
        Seconds to sleep before retry number `retry_number` (1-based).
        """
        if self.respect_retry_after and retry_after:
            try:
                return min(max(0.0, float(retry_after)), self.max_delay)
            except ValueError:
                pass
        if not self.delays:
            return 0.0
        index = min(retry_number - 1, len(self.delays) - 1)
        return min(max(0.0, float(self.delays[index])), self.max_delay)


@dataclass
class PageFetch:
    """Outcome of one logical page fetch (retries included)."""

    success: bool
    records: List[RemoteOrderRecord] = field(default_factory=list)
    next_cursor: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0
    malformed: bool = False
    error: Optional[str] = None

    @property
    def end_of_sequence(self) -> bool:
        return self.success and (not self.records or not self.next_cursor)


class OrderApiClient:
    """Client for the cursor-paginated /orders endpoint of one store."""

    def __init__(
        self,
        store: StoreConfig,
        page_size: int = PAGE_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = ORDER_API_TIMEOUT,
        min_request_interval: float = MIN_REQUEST_INTERVAL,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        on_event: Optional[EventHook] = None,
    ):
        """
        Initialize the order API client.

        Args:
            store: Store credentials and base URL
            page_size: Records requested per page (per_page)
            retry_policy: Backoff applied to HTTP 429 responses
            timeout: Seconds before a request is abandoned
            min_request_interval: Minimum seconds between two requests
            session: Optional pre-built requests session (tests inject fakes)
            sleep: Blocking sleep function used for backoff and pacing
            on_event: Structured event hook
        """
        if not store.api_token:
            raise ValueError(f"API token is required for store {store.identifier}")
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        self.store = store
        self.page_size = page_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.min_request_interval = max(0.0, min_request_interval)
        self.sleep = sleep
        self.on_event = on_event or null_hook
        self.calls_made = 0
        self._last_request_at: Optional[float] = None

        self.orders_url = f"{store.base_url}/orders"
        self.headers = {
            "Authorization": f"Bearer {store.api_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        if session is None:
            # Status codes are handled by RetryPolicy; urllib3 only retries connection setup
            session = requests.Session()
            retry_strategy = Retry(
                total=CONNECT_RETRIES,
                connect=CONNECT_RETRIES,
                read=0,
                status=0,
                backoff_factor=1,
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session

    def _params(self, cursor: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "per_page": self.page_size,
            "sort_direction": "desc",
        }
        if cursor:
            params["cursor"] = cursor
        return params

    def _pace(self) -> None:
        if not self.min_request_interval or self._last_request_at is None:
            return
        elapsed = time.monotonic() - self._last_request_at
        wait_seconds = self.min_request_interval - elapsed
        if wait_seconds > 0:
            self.sleep(wait_seconds)

    def fetch_page(self, cursor: Optional[str] = None) -> PageFetch:
        """
        Fetch one page of orders, newest first.

        Args:
            cursor: Opaque cursor from a previous page (None for the first page)

        Returns:
            PageFetch with success flag, parsed records and the next cursor.
            A rate limit that outlasts the retry policy, any other HTTP error
            and any transport error all come back as success=False.
        """
        self.calls_made += 1
        params = self._params(cursor)
        max_attempts = max(1, self.retry_policy.max_attempts)

        for attempt in range(1, max_attempts + 1):
            self._pace()
            try:
                response = self.session.get(
                    self.orders_url,
                    headers=self.headers,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                logger.error(f"Order API request failed for {self.store.identifier}: {e}")
                self.on_event("fetch_failed", {
                    "store": self.store.identifier,
                    "attempt": attempt,
                    "error": str(e),
                })
                return PageFetch(success=False, attempts=attempt, error=str(e))
            finally:
                self._last_request_at = time.monotonic()

            if response.status_code == RATE_LIMIT_STATUS:
                if attempt >= max_attempts:
                    break
                wait = self.retry_policy.delay_for(attempt, response.headers.get("Retry-After"))
                logger.warning(
                    "Rate limited on %s, waiting %.0fs (retry %d/%d)",
                    self.store.identifier,
                    wait,
                    attempt,
                    max_attempts - 1,
                )
                self.on_event("rate_limited", {
                    "store": self.store.identifier,
                    "attempt": attempt,
                    "wait_seconds": wait,
                })
                if wait > 0:
                    self.sleep(wait)
                continue

            try:
                response.raise_for_status()
            except requests.HTTPError as e:
                logger.error(f"Order API error for {self.store.identifier}: {e}")
                self.on_event("fetch_failed", {
                    "store": self.store.identifier,
                    "attempt": attempt,
                    "status_code": response.status_code,
                    "error": str(e),
                })
                return PageFetch(
                    success=False,
                    status_code=response.status_code,
                    attempts=attempt,
                    error=str(e),
                )

            return self._parse(response, attempt)

        message = f"Rate limit persisted after {max_attempts} attempts"
        logger.error(f"{message} for {self.store.identifier}")
        self.on_event("fetch_failed", {
            "store": self.store.identifier,
            "attempt": max_attempts,
            "status_code": RATE_LIMIT_STATUS,
            "error": message,
        })
        return PageFetch(
            success=False,
            status_code=RATE_LIMIT_STATUS,
            attempts=max_attempts,
            error=message,
        )

    def _parse(self, response: requests.Response, attempt: int) -> PageFetch:
        """Turn a 2xx response into records; anything unreadable ends the sequence."""
        try:
            payload = response.json()
        except ValueError:
            return self._malformed(response.status_code, attempt, "response body is not JSON")

        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            return self._malformed(response.status_code, attempt, "missing data list")

        try:
            records = [RemoteOrderRecord.model_validate(row) for row in rows]
        except ValidationError as e:
            return self._malformed(response.status_code, attempt, f"invalid order row: {e.error_count()} errors")

        meta = payload.get("meta") or {}
        next_cursor = meta.get("next_cursor") if isinstance(meta, dict) else None

        return PageFetch(
            success=True,
            records=records,
            next_cursor=next_cursor or None,
            status_code=response.status_code,
            attempts=attempt,
        )

    def _malformed(self, status_code: int, attempt: int, reason: str) -> PageFetch:
        logger.warning(f"Malformed page from {self.store.identifier}: {reason}")
        self.on_event("malformed_page", {"store": self.store.identifier, "reason": reason})
        return PageFetch(
            success=True,
            status_code=status_code,
            attempts=attempt,
            malformed=True,
        )

    def test_connection(self) -> bool:
        """
        Test the API connection by fetching the newest page.

        Returns:
            True if the first page could be fetched, False otherwise
        """
        result = self.fetch_page()
        if result.success:
            logger.info(f"Successfully connected to {self.store.display_name} ({len(result.records)} orders on first page)")
        else:
            logger.error(f"Connection test failed for {self.store.display_name}: {result.error}")
        return result.success
