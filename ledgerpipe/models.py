"""ledgerpipe Pydantic models for type-safe data validation.

Statement rows are validated here before they reach the store; snapshot and
comparison models are the serialized shapes returned to callers.
"""

from __future__ import annotations

import datetime as dt
import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImportStatus(str, Enum):
    """Lifecycle of an import session."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.CANCELLED}
)


class RunStatus(str, Enum):
    """Lifecycle of a reprocess run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SnapshotType(str, Enum):
    BEFORE = "before"
    AFTER = "after"


# Accepted non-ISO date layouts, tried in order (US layout first)
_DATE_FORMATS = ("%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d", "%d.%m.%Y", "%m/%d/%y")
_AMOUNT_JUNK = re.compile(r"[\s$€£,]")
# Largest magnitude a Numeric(12, 2) amount column holds
MAX_AMOUNT = Decimal("9999999999.99")


class StatementRecord(BaseModel):
    """One validated bank statement line."""

    date: dt.date
    description: str = Field(min_length=1)
    amount: Decimal
    reference: str | None = None
    bank_category: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        if isinstance(value, (dt.date, dt.datetime)) or not isinstance(value, str):
            return value
        text = value.strip()
        try:
            return dt.date.fromisoformat(text[:10])
        except ValueError:
            pass
        for fmt in _DATE_FORMATS:
            try:
                return dt.datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"unrecognised date {value!r}")

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        text = _AMOUNT_JUNK.sub("", value)
        negative = text.startswith("(") and text.endswith(")")
        if negative:
            text = text[1:-1]
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"invalid amount {value!r}")
        return -amount if negative else amount

    @field_validator("amount")
    @classmethod
    def check_amount_range(cls, value: Decimal) -> Decimal:
        # Rejects anything that rounds past MAX_AMOUNT at cent precision
        if not value.is_finite() or abs(value) >= MAX_AMOUNT + Decimal("0.005"):
            raise ValueError(f"amount {value} is out of range (max {MAX_AMOUNT})")
        return value

    @field_validator("reference", "bank_category", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class RowError(BaseModel):
    """Validation failure for a single payload row (1-based)."""

    row: int
    message: str


# ============================================================================
# Snapshots & comparisons
# ============================================================================


class SampleRecord(BaseModel):
    """Enriched record as captured in a snapshot sample."""

    id: int
    description: str
    normalized_name: str | None = None
    tags: list[str] = Field(default_factory=list)


class SnapshotView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    import_session_id: int
    reprocess_run_id: int | None = None
    snapshot_type: SnapshotType
    counters: dict[str, int]
    sample: list[SampleRecord]
    created_at: dt.datetime | None = None


class RecordChange(BaseModel):
    """A sampled record whose derived value differs between two snapshots."""

    id: int
    description: str
    before: Any = None
    after: Any = None


class SnapshotComparison(BaseModel):
    """Diff between two stored snapshots; never re-reads live records."""

    before: SnapshotView
    after: SnapshotView
    deltas: dict[str, int]
    tag_changes: list[RecordChange] = Field(default_factory=list)
    name_changes: list[RecordChange] = Field(default_factory=list)

    @property
    def changed_counters(self) -> dict[str, int]:
        return {name: delta for name, delta in self.deltas.items() if delta != 0}


class RunView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    import_session_id: int
    run_number: int
    status: RunStatus
    initiated_by: str | None = None
    reason: str | None = None
    model_variant: str | None = None
    parameters: dict[str, Any] | None = None
    started_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    error: str | None = None


class RunSummary(RunView):
    """Run plus change counts from its own before/after snapshots."""

    counters_changed: int | None = None
    tag_changes: int | None = None
    name_changes: int | None = None


class ReprocessComparison(BaseModel):
    """Comparison payload returned for a reprocess run (or pair of runs)."""

    session_id: int
    run: RunView
    baseline_run: RunView | None = None
    comparison: SnapshotComparison
