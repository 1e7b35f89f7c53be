"""
Pydantic models for data validation and type safety.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from pydantic import ConfigDict
from pydantic import field_validator, model_validator

from ..config import (
    BINARY_EXTRAPOLATION_SPAN,
    BINARY_MAX_ITERATIONS,
    BOOKMARK_KEY_PREFIX,
    BOOKMARK_TTL_SECONDS,
    EXHAUSTIVE_MAX_CALLS,
    NEWER_THAN_FIRST_MARGIN,
    PAGE_SIZE,
    SAMPLE_CHECKPOINTS,
    SAMPLE_MAX_CALLS,
    SWEEP_MAX_CALLS,
    WALK_MAX_CALLS,
    WINDOW_MAX_CALLS,
    WINDOW_RADIUS,
)


class SearchMethod(str, Enum):
    """How a store's position was (or was not) resolved"""
    BINARY = "BINARY"
    SWEEP = "SWEEP"
    EXHAUSTIVE = "EXHAUSTIVE"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"
    CACHED = "CACHED"


class Confidence(str, Enum):
    """Qualitative label for a recovered position"""
    EXACT = "EXACT"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NOT_FOUND = "NOT_FOUND"


class EstimateBasis(str, Enum):
    """Which branch of the position estimator produced a guess"""
    NO_SAMPLES = "NO_SAMPLES"
    WITHIN_SAMPLE = "WITHIN_SAMPLE"
    INTERPOLATED = "INTERPOLATED"
    NEWER_THAN_FIRST = "NEWER_THAN_FIRST"
    EXTRAPOLATED = "EXTRAPOLATED"
    FALLBACK = "FALLBACK"


class BookmarkStatus(str, Enum):
    """Health of a store's bookmark in the primary store"""
    HEALTHY = "HEALTHY"
    RESET = "RESET"
    BACKUP_ONLY = "BACKUP_ONLY"
    MISSING = "MISSING"


class StoreConfig(BaseModel):
    """Remote order API credentials for one store"""
    model_config = ConfigDict(frozen=True)

    identifier: str
    store_name: Optional[str] = None
    base_url: str
    api_token: str
    is_active: bool = True

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def display_name(self) -> str:
        return self.store_name or self.identifier


class RemoteOrderRecord(BaseModel):
    """One order row as returned by the remote /orders endpoint"""
    model_config = ConfigDict(extra="allow", frozen=True)

    id: int
    reference: Optional[str] = None
    state_name: Optional[str] = None
    created_at: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def lift_nested_state(cls, data: Any) -> Any:
        if isinstance(data, dict) and "state_name" not in data:
            state = data.get("state")
            if isinstance(state, dict) and state.get("name") is not None:
                data = {**data, "state_name": state.get("name")}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def parse_id(cls, value: Any) -> int:
        if isinstance(value, bool) or value is None:
            raise ValueError("order id must be an integer")
        if isinstance(value, str):
            return int(value.strip())
        return value


class OrderPage(BaseModel):
    """A fetched page together with its absolute start position"""
    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    records: List[RemoteOrderRecord] = Field(default_factory=list)
    cursor: Optional[str] = None
    next_cursor: Optional[str] = None

    @property
    def end(self) -> int:
        """Position just past the last record on this page."""
        return self.start + len(self.records)

    @property
    def ids(self) -> List[int]:
        return [record.id for record in self.records]

    @property
    def min_id(self) -> int:
        return min(self.ids)

    @property
    def max_id(self) -> int:
        return max(self.ids)

    def contains_position(self, position: int) -> bool:
        return self.start <= position < self.end

    def index_of(self, order_id: int) -> Optional[int]:
        for index, record in enumerate(self.records):
            if record.id == order_id:
                return index
        return None

    def insertion_index(self, order_id: int) -> int:
        """Number of records on this page with an ID larger than order_id."""
        return sum(1 for record in self.records if record.id > order_id)


class SamplePoint(BaseModel):
    """ID range observed at a sampled checkpoint"""
    model_config = ConfigDict(frozen=True)

    position: int = Field(ge=0)
    min_id: int
    max_id: int
    cursor: Optional[str] = None
    page_start: int = Field(default=0, ge=0)
    page_end: int = Field(default=0, ge=0)


class PositionEstimate(BaseModel):
    position: int
    basis: EstimateBasis


class SearchOutcome(BaseModel):
    """Result of one search strategy or of a full recovery run"""
    found: bool = False
    exact_position: int = 0
    total_api_calls: int = Field(default=0, ge=0)
    method: SearchMethod = SearchMethod.NOT_FOUND

    best_position: Optional[int] = None
    confidence: Optional[Confidence] = None
    proven_absent: bool = False
    probes: int = 0
    page_first_id: Optional[int] = None
    page_last_id: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def hit(cls, page: OrderPage, index: int, method: SearchMethod, calls: int, probes: int = 0) -> "SearchOutcome":
        position = page.start + index
        return cls(
            found=True,
            exact_position=position,
            best_position=position,
            total_api_calls=calls,
            method=method,
            confidence=Confidence.EXACT,
            probes=probes,
            page_first_id=page.records[0].id,
            page_last_id=page.records[-1].id,
        )


class Bookmark(BaseModel):
    """Persisted resume point for the incremental order sync"""
    model_config = ConfigDict(populate_by_name=True)

    store_identifier: str = Field(alias="storeIdentifier")
    store_name: Optional[str] = Field(default=None, alias="storeName")
    last_page: int = Field(ge=1, alias="lastPage")
    first_id: int = Field(alias="firstId")
    last_id: int = Field(alias="lastId")
    position: int = Field(ge=0)
    confidence: Confidence
    method: SearchMethod
    timestamp: datetime
    ttl_seconds: int = Field(default=BOOKMARK_TTL_SECONDS, gt=0, alias="ttlSeconds")
    last_order_id: Optional[int] = Field(default=None, alias="lastOrderId")
    found: bool = False
    total_api_calls: int = Field(default=0, alias="totalApiCalls")

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serializable dict with camelCase keys, as stored in the KV."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Bookmark":
        return cls.model_validate(payload)

    def is_expired(self, now: datetime) -> bool:
        return (now - self.timestamp).total_seconds() >= self.ttl_seconds

    @property
    def is_reset(self) -> bool:
        """First page with no known order: what a wiped sync position looks like."""
        return self.last_page <= 1 and not self.last_order_id


class StoreReport(BaseModel):
    """One row of the batch diagnostic report"""
    store_identifier: str
    store_name: Optional[str] = None
    last_order_id: Optional[int] = None
    resolved_page: Optional[int] = None
    position: Optional[int] = None
    total_api_calls: int = 0
    found: bool = False
    confidence: Optional[Confidence] = None
    method: SearchMethod = SearchMethod.NOT_FOUND
    error: Optional[str] = None


class RecoverySettings(BaseModel):
    """Tunables for one recovery run; defaults come from config.py"""
    page_size: int = Field(default=PAGE_SIZE, ge=1)
    sample_checkpoints: List[int] = Field(default_factory=lambda: list(SAMPLE_CHECKPOINTS))
    sample_max_calls: int = Field(default=SAMPLE_MAX_CALLS, ge=0)
    walk_max_calls: int = Field(default=WALK_MAX_CALLS, ge=1)
    binary_max_iterations: int = Field(default=BINARY_MAX_ITERATIONS, ge=0)
    binary_extrapolation_span: int = Field(default=BINARY_EXTRAPOLATION_SPAN, ge=0)
    window_radius: int = Field(default=WINDOW_RADIUS, ge=0)
    window_max_calls: int = Field(default=WINDOW_MAX_CALLS, ge=0)
    sweep_max_calls: int = Field(default=SWEEP_MAX_CALLS, ge=0)
    exhaustive_max_calls: int = Field(default=EXHAUSTIVE_MAX_CALLS, ge=0)
    newer_than_first_margin: int = Field(default=NEWER_THAN_FIRST_MARGIN, ge=0)
    bookmark_ttl_seconds: int = Field(default=BOOKMARK_TTL_SECONDS, gt=0)
    bookmark_key_prefix: str = BOOKMARK_KEY_PREFIX

    @field_validator("sample_checkpoints")
    @classmethod
    def sort_checkpoints(cls, value: List[int]) -> List[int]:
        if any(checkpoint < 0 for checkpoint in value):
            raise ValueError("sample checkpoints must be non-negative")
        return sorted(set(value))

    def page_for(self, position: int) -> int:
        return position // self.page_size + 1

    def bookmark_key(self, store_identifier: str) -> str:
        return f"{self.bookmark_key_prefix}{store_identifier}"
