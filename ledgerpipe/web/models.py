"""Pydantic request/response models for the ledgerpipe API."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ledgerpipe.models import ImportStatus, RowError, RunSummary


# ============================================================================
# Imports
# ============================================================================


class ImportCreateRequest(BaseModel):
    """Statement payload: raw CSV text or already-decoded rows."""

    account_ref: str = Field(min_length=1)
    csv_data: str | None = None
    records: list[dict[str, Any]] | None = None
    filename: str | None = None
    model: str | None = Field(default=None, description="Model variant override")
    initiated_by: str | None = None


class ImportCreateResponse(BaseModel):
    session_id: int
    imported: int
    skipped: int
    errors: list[RowError] = Field(default_factory=list)


class SessionResponse(BaseModel):
    """Full import session, intended to be polled."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    account_ref: str
    filename: str | None = None
    initiated_by: str | None = None
    model_variant: str | None = None
    status: ImportStatus
    cancel_requested: bool = False
    error: str | None = None

    phase: str | None = None
    phase_current: int = 0
    phase_total: int = 0

    imported_count: int = 0
    skipped_count: int = 0
    tagged_by_learned: int = 0
    tagged_by_rule: int = 0
    tagged_by_pattern: int = 0
    tagged_by_model: int = 0
    tagged_by_bank_category: int = 0
    tagged_fallback: int = 0
    tag_failures: int = 0
    names_normalized: int = 0
    name_failures: int = 0
    records_matched: int = 0
    records_checked: int = 0
    subscriptions_found: int = 0
    zombies_detected: int = 0
    price_increases_detected: int = 0
    duplicates_detected: int = 0

    tag_duration_ms: int | None = None
    normalize_duration_ms: int | None = None
    match_duration_ms: int | None = None
    detect_duration_ms: int | None = None
    total_duration_ms: int | None = None

    created_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int


class SkippedRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: dt.date
    description: str
    amount: Decimal
    reference: str | None = None
    existing_record_id: int | None = None


class RecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_ref: str
    date: dt.date
    description: str
    amount: Decimal
    reference: str | None = None
    bank_category: str | None = None
    tags: list[str] | None = None
    tag_source: str | None = None
    normalized_name: str | None = None


class RecordListResponse(BaseModel):
    records: list[RecordResponse]
    total: int


class CancelResponse(BaseModel):
    cancelled: bool
    message: str


# ============================================================================
# Reprocess
# ============================================================================


class ReprocessRequest(BaseModel):
    model: str | None = None
    reason: str | None = None
    initiated_by: str | None = None


class ReprocessResponse(BaseModel):
    session_id: int
    run_id: int
    run_number: int
    message: str


class RunListResponse(BaseModel):
    runs: list[RunSummary]
