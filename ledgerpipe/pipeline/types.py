"""Type definitions for pipeline operations."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional


class Phase(str, Enum):
    """Enrichment phases, in execution order."""

    TAG = "tagging"
    NORMALIZE = "normalizing"
    MATCH = "matching"
    DETECT = "detecting"


PHASE_SEQUENCE: tuple[Phase, ...] = (Phase.TAG, Phase.NORMALIZE, Phase.MATCH, Phase.DETECT)

# Progress phase shown while a reprocess clears derived fields
CLEARING_PHASE = "clearing"
# Set once the last phase is done; cancellation is closed from then on
FINISHING_PHASE = "finishing"


class PipelineStatus(str, Enum):
    """How a pipeline run ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class LedgerRecord:
    """Detached copy of a stored record handed to collaborators.

    Collaborators write ``tags``/``tag_source``/``normalized_name``; the
    orchestrator persists them after the phase. No database session is held
    while collaborators run.
    """

    id: int
    account_ref: str
    date: date
    description: str
    amount: Decimal
    reference: Optional[str] = None
    bank_category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    tag_source: Optional[str] = None
    normalized_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.normalized_name or self.description


@dataclass
class TaggingBreakdown:
    """Which classifier tier tagged each record."""

    learned: int = 0
    rule: int = 0
    pattern: int = 0
    model: int = 0
    bank_category: int = 0
    fallback: int = 0
    failures: int = 0

    @property
    def total(self) -> int:
        return (
            self.learned
            + self.rule
            + self.pattern
            + self.model
            + self.bank_category
            + self.fallback
        )

    def count(self, tier: str) -> None:
        setattr(self, tier, getattr(self, tier) + 1)

    def as_columns(self) -> dict[str, int]:
        return {
            "tagged_by_learned": self.learned,
            "tagged_by_rule": self.rule,
            "tagged_by_pattern": self.pattern,
            "tagged_by_model": self.model,
            "tagged_by_bank_category": self.bank_category,
            "tagged_fallback": self.fallback,
            "tag_failures": self.failures,
        }


@dataclass
class DetectionCounters:
    subscriptions_found: int = 0
    zombies_detected: int = 0
    price_increases_detected: int = 0
    duplicates_detected: int = 0

    def as_columns(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class OutcomeCounters:
    """Everything the four phases produce, flattened onto session columns."""

    tagging: TaggingBreakdown = field(default_factory=TaggingBreakdown)
    names_normalized: int = 0
    name_failures: int = 0
    records_matched: int = 0
    records_checked: int = 0
    detection: DetectionCounters = field(default_factory=DetectionCounters)

    def as_columns(self) -> dict[str, int]:
        columns = self.tagging.as_columns()
        columns.update(
            names_normalized=self.names_normalized,
            name_failures=self.name_failures,
            records_matched=self.records_matched,
            records_checked=self.records_checked,
        )
        columns.update(self.detection.as_columns())
        return columns


# Session columns captured in snapshots and compared between runs
COUNTER_COLUMNS: tuple[str, ...] = (
    "imported_count",
    "skipped_count",
    *OutcomeCounters().as_columns().keys(),
)

# Per-phase duration column on import_sessions
DURATION_COLUMNS: dict[Phase, str] = {
    Phase.TAG: "tag_duration_ms",
    Phase.NORMALIZE: "normalize_duration_ms",
    Phase.MATCH: "match_duration_ms",
    Phase.DETECT: "detect_duration_ms",
}


@dataclass(frozen=True)
class ProgressEvent:
    """Progress message posted by a collaborator for one phase."""

    phase: Phase
    current: int
    total: int


@dataclass
class PipelineResult:
    """Result of one orchestrator run."""

    session_id: int
    status: PipelineStatus
    counters: OutcomeCounters = field(default_factory=OutcomeCounters)
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        """Check if every phase ran to completion."""
        return self.status is PipelineStatus.COMPLETED
