"""
Pydantic Schemas for Request/Response Validation

Author: Khalil_Bannouri
Version: 1.0.0
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from reconciler.core.config import RetryBackoff
from reconciler.pipeline.types import RunMode


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class RunCreate(BaseModel):
    """Request schema for enqueueing a reconciliation run."""

    names: List[str] = Field(..., min_length=1, examples=[["Trabuxu Bistro", "Tortuga"]])
    mode: RunMode = Field(default=RunMode.PHOTOS, examples=["photos"])

    # Per-run overrides; unset values fall back to the settings
    batch_size: Optional[int] = Field(None, ge=1)
    batch_pause_seconds: Optional[float] = Field(None, ge=0)
    similarity_threshold: Optional[float] = Field(None, ge=0, le=1)
    max_retries: Optional[int] = Field(None, ge=1)
    retry_delay_seconds: Optional[float] = Field(None, ge=0)
    retry_backoff: Optional[RetryBackoff] = None
    inter_request_delay_seconds: Optional[float] = Field(None, ge=0.15)
    max_items_per_record: Optional[int] = Field(None, ge=1)
    search_suffix: Optional[str] = Field(None, max_length=100)
    resume: bool = False

    export_report: bool = False

    @field_validator("names")
    @classmethod
    def strip_names(cls, v: List[str]) -> List[str]:
        """Drop blank names; at least one must remain."""
        cleaned = [name.strip() for name in v if name and name.strip()]
        if not cleaned:
            raise ValueError("At least one non-blank name is required")
        return cleaned

    def overrides(self) -> dict[str, Any]:
        """RunConfig overrides carried by this request."""
        return self.model_dump(
            mode="json",
            exclude={"names", "mode", "export_report"},
            exclude_none=True,
        )


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class RunAcceptedResponse(BaseModel):
    """Response after a run has been queued."""
    success: bool
    message: str
    run_id: str
    task_id: Optional[str] = None


class RunOutcomeResponse(BaseModel):
    input: str
    status: str
    items_written: int = 0
    error: Optional[str] = None
    external_id: Optional[str] = None
    match_type: Optional[str] = None
    score: Optional[float] = None
    establishment_id: Optional[int] = None


class RunResponse(BaseModel):
    """A run header, optionally with its outcomes."""
    run_id: str
    mode: str
    status: str
    total_inputs: int
    config: Optional[dict[str, Any]] = None
    summary: Optional[dict[str, Any]] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    outcomes: List[RunOutcomeResponse] = []


class RunListResponse(BaseModel):
    total: int
    runs: List[RunResponse]


class DuplicateGroupResponse(BaseModel):
    canonical_id: int
    member_ids: List[int]
    reason: str
    member_reasons: dict[str, str]


class DuplicateScanResponse(BaseModel):
    """Result of a read-only duplicate scan."""
    establishments: int
    groups: List[DuplicateGroupResponse]
    duplicates: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    place_provider: str
    menu_source: str
    timestamp: datetime
