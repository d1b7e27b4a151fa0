"""
Reconciliation Domain Types

Plain dataclasses shared by every pipeline stage. Provider responses are
mapped into these at the provider boundary, so nothing downstream depends
on a provider's JSON schema.

Author: Khalil_Bannouri
Version: 1.0.0
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from reconciler.core.config import RetryBackoff, Settings


# =============================================================================
# PROVIDER RECORDS
# =============================================================================

@dataclass(frozen=True)
class GeoPoint:
    """GPS coordinates of a venue."""
    lat: float
    lng: float


@dataclass(frozen=True)
class CandidateRecord:
    """
    A venue as returned by a provider search or catalog listing.

    Attributes:
        external_id: Opaque provider-scoped identifier (place id, slug)
        display_name: Name as the provider presents it
        address: Formatted address, if the provider returned one
        rating: Average rating
        review_count: Number of ratings behind `rating`
        phone: Formatted phone number
        photo_refs: Ordered opaque photo tokens
        geo: Coordinates
    """
    external_id: str
    display_name: str
    address: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    phone: Optional[str] = None
    photo_refs: tuple[str, ...] = ()
    geo: Optional[GeoPoint] = None


@dataclass(frozen=True)
class PhotoReference:
    """A photo entry of a place-details response."""
    reference: str
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class PlaceDetails:
    """Candidate record plus the extras only a details call returns."""
    record: CandidateRecord
    photos: tuple[PhotoReference, ...] = ()


# =============================================================================
# RESOLUTION
# =============================================================================

class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of resolving one input name against a candidate set.

    EXACT carries score 1.0, NOT_FOUND carries no record and score 0.
    """
    input_name: str
    matched_record: Optional[CandidateRecord]
    score: float
    match_type: MatchType

    @classmethod
    def not_found(cls, input_name: str) -> "MatchResult":
        return cls(input_name=input_name, matched_record=None, score=0.0,
                   match_type=MatchType.NOT_FOUND)

    @property
    def is_match(self) -> bool:
        return self.match_type != MatchType.NOT_FOUND


# =============================================================================
# EXTRACTED ITEMS
# =============================================================================

@dataclass(frozen=True)
class MenuLine:
    """One priced menu entry. `price` is a decimal in `currency` units."""
    name: str
    price: Decimal
    currency: str = "EUR"
    description: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None

    def __post_init__(self):
        if self.price < 0:
            raise ValueError(f"Menu price must be non-negative, got {self.price}")


@dataclass(frozen=True)
class PhotoItem:
    """One venue photo."""
    source_url: str
    width: Optional[int] = None
    height: Optional[int] = None
    is_enhanced: bool = False
    reference: Optional[str] = None


ExtractedItem = Union[MenuLine, PhotoItem]


# =============================================================================
# STORED STATE
# =============================================================================

@dataclass(frozen=True)
class StoredEstablishment:
    """An establishment as persisted, independent of provider schema."""
    id: int
    name: str
    external_id: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: Optional[datetime] = None


@dataclass
class DuplicateGroup:
    """
    A canonical establishment and the records confirmed as its duplicates.

    `member_ids` never contains the canonical id; `reason` is the reason of
    the first confirmed member and `member_reasons` keeps every one.
    """
    canonical_id: int
    member_ids: list[int] = field(default_factory=list)
    reason: str = ""
    member_reasons: dict[int, str] = field(default_factory=dict)

    @property
    def all_ids(self) -> set[int]:
        return {self.canonical_id, *self.member_ids}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "canonical_id": self.canonical_id,
            "member_ids": list(self.member_ids),
            "reason": self.reason,
            "member_reasons": {str(k): v for k, v in self.member_reasons.items()},
        }


# =============================================================================
# RUN STATE
# =============================================================================

class ItemState(str, Enum):
    """Per-input lifecycle inside a run."""
    PENDING = "pending"
    RESOLVING = "resolving"
    EXTRACTING = "extracting"
    NOT_FOUND = "not_found"
    PERSISTING = "persisting"
    SKIPPED = "skipped"
    DONE = "done"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    MATCHED = "matched"
    NOT_FOUND = "not_found"
    EXTRACTION_EMPTY = "extraction_empty"
    PERSIST_ERROR = "persist_error"
    FAILED = "failed"

    @property
    def is_done(self) -> bool:
        """Whether a resumed run may skip an input with this outcome."""
        return self in (OutcomeStatus.MATCHED, OutcomeStatus.NOT_FOUND,
                        OutcomeStatus.EXTRACTION_EMPTY)


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED_QUOTA = "aborted_quota"
    CANCELLED = "cancelled"


QUOTA_ABORT_REASON = "quota exceeded, run aborted"
CANCELLED_REASON = "cancelled"


@dataclass(frozen=True)
class RunOutcome:
    """Final, immutable record of what happened to one input name."""
    input: str
    status: OutcomeStatus
    items_written: int = 0
    error: Optional[str] = None
    external_id: Optional[str] = None
    match_type: Optional[MatchType] = None
    score: Optional[float] = None
    establishment_id: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "input": self.input,
            "status": self.status.value,
            "items_written": self.items_written,
            "error": self.error,
            "external_id": self.external_id,
            "match_type": self.match_type.value if self.match_type else None,
            "score": self.score,
            "establishment_id": self.establishment_id,
        }


@dataclass
class RunSummary:
    """Counts reported at the end of a run."""
    total: int = 0
    matched: int = 0
    not_found: int = 0
    extraction_empty: int = 0
    persist_errors: int = 0
    failed: int = 0
    items_written: int = 0
    skipped: int = 0
    status: RunStatus = RunStatus.RUNNING

    def record(self, outcome: RunOutcome) -> None:
        self.total += 1
        self.items_written += outcome.items_written
        if outcome.status == OutcomeStatus.MATCHED:
            self.matched += 1
        elif outcome.status == OutcomeStatus.NOT_FOUND:
            self.not_found += 1
        elif outcome.status == OutcomeStatus.EXTRACTION_EMPTY:
            self.extraction_empty += 1
        elif outcome.status == OutcomeStatus.PERSIST_ERROR:
            self.persist_errors += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "total": self.total,
            "matched": self.matched,
            "not_found": self.not_found,
            "extraction_empty": self.extraction_empty,
            "persist_errors": self.persist_errors,
            "failed": self.failed,
            "items_written": self.items_written,
            "skipped": self.skipped,
            "status": self.status.value,
        }


@dataclass
class RunReport:
    """Everything a run produced: its id, the summary and every outcome."""
    run_id: str
    summary: RunSummary
    outcomes: list[RunOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "summary": self.summary.to_dict(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# =============================================================================
# RUN CONFIGURATION
# =============================================================================

class RunMode(str, Enum):
    """Which provider pair a run uses."""
    PHOTOS = "photos"   # place search + place photos
    MENUS = "menus"     # menu catalog + menu lines


@dataclass(frozen=True)
class RunConfig:
    """
    Externally supplied knobs for one run.

    Built from Settings with per-run overrides; see `from_settings`.
    """
    mode: RunMode = RunMode.PHOTOS
    batch_size: int = 10
    batch_pause_seconds: float = 2.0
    similarity_threshold: float = 0.85
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    retry_backoff: RetryBackoff = RetryBackoff.FIXED
    max_retry_delay_seconds: float = 60.0
    inter_request_delay_seconds: float = 0.2
    max_items_per_record: int = 5
    resume: bool = False
    search_suffix: str = ""

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within [0, 1]")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.inter_request_delay_seconds < 0.15:
            raise ValueError("inter_request_delay_seconds must be at least 0.15")
        if self.max_items_per_record < 1:
            raise ValueError("max_items_per_record must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "RunConfig":
        """
        Build a run configuration from application settings.

        Args:
            settings: Loaded application settings
            **overrides: Per-run values; None values are ignored

        Returns:
            RunConfig: Immutable configuration for a single run
        """
        mode = RunMode(overrides.get("mode") or RunMode.PHOTOS)
        max_items = (
            settings.max_photos_per_record
            if mode == RunMode.PHOTOS
            else settings.max_menu_items_per_record
        )
        values = {
            "mode": mode,
            "batch_size": settings.batch_size,
            "batch_pause_seconds": settings.batch_pause_seconds,
            "similarity_threshold": settings.similarity_threshold,
            "max_retries": settings.max_retries,
            "retry_delay_seconds": settings.retry_delay_seconds,
            "retry_backoff": settings.retry_backoff,
            "max_retry_delay_seconds": settings.max_retry_delay_seconds,
            "inter_request_delay_seconds": settings.inter_request_delay_seconds,
            "max_items_per_record": max_items,
            "resume": False,
            "search_suffix": settings.search_suffix,
        }
        for key, value in overrides.items():
            if key == "mode" or value is None:
                continue
            if key not in values:
                raise ValueError(f"Unknown run option: {key}")
            values[key] = value
        if not isinstance(values["retry_backoff"], RetryBackoff):
            values["retry_backoff"] = RetryBackoff(str(values["retry_backoff"]).lower())
        return cls(**values)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "batch_size": self.batch_size,
            "batch_pause_seconds": self.batch_pause_seconds,
            "similarity_threshold": self.similarity_threshold,
            "max_retries": self.max_retries,
            "retry_delay_seconds": self.retry_delay_seconds,
            "retry_backoff": self.retry_backoff.value,
            "max_retry_delay_seconds": self.max_retry_delay_seconds,
            "inter_request_delay_seconds": self.inter_request_delay_seconds,
            "max_items_per_record": self.max_items_per_record,
            "resume": self.resume,
            "search_suffix": self.search_suffix,
        }
