"""SQLAlchemy async database models for ledgerpipe.

Works on SQLite (aiosqlite) and PostgreSQL (asyncpg); JSON columns hold tag
lists, run parameters and snapshot payloads.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class RecordModel(Base):
    """One imported statement line, unique by content hash."""

    __tablename__ = "records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_ref: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    import_session_id: Mapped[int | None] = mapped_column(
        ForeignKey("import_sessions.id", ondelete="SET NULL"), index=True
    )

    # Business fields (immutable after insert)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reference: Mapped[str | None] = mapped_column(Text)
    bank_category: Mapped[str | None] = mapped_column(Text)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Pipeline-owned, cleared by reprocess
    tags: Mapped[list[str] | None] = mapped_column(JSON(none_as_null=True))
    tag_source: Mapped[str | None] = mapped_column(String(32))
    normalized_name: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_records_session_date", "import_session_id", "date"),)


class ImportSessionModel(Base):
    """One ingestion batch and its background enrichment state."""

    __tablename__ = "import_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_ref: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    filename: Mapped[str | None] = mapped_column(Text)
    payload_bytes: Mapped[int | None] = mapped_column(Integer)
    initiated_by: Mapped[str | None] = mapped_column(Text)
    model_variant: Mapped[str | None] = mapped_column(Text)

    # State machine
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[str | None] = mapped_column(Text)

    # Progress
    phase: Mapped[str | None] = mapped_column(String(32))
    phase_current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    phase_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Ingest counters
    imported_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Tagging breakdown
    tagged_by_learned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tagged_by_rule: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tagged_by_pattern: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tagged_by_model: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tagged_by_bank_category: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tagged_fallback: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tag_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Normalize / match
    names_normalized: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_matched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_checked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Detection
    subscriptions_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    zombies_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_increases_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicates_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timing (written when the phase / session finishes)
    tag_duration_ms: Mapped[int | None] = mapped_column(Integer)
    normalize_duration_ms: Mapped[int | None] = mapped_column(Integer)
    match_duration_ms: Mapped[int | None] = mapped_column(Integer)
    detect_duration_ms: Mapped[int | None] = mapped_column(Integer)
    total_duration_ms: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))


class SkippedRecordModel(Base):
    """Incoming line that collided with an already stored record."""

    __tablename__ = "skipped_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    import_session_id: Mapped[int] = mapped_column(
        ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reference: Mapped[str | None] = mapped_column(Text)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    existing_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("records.id", ondelete="SET NULL")
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ReprocessRunModel(Base):
    """Versioned re-execution of the pipeline against one session."""

    __tablename__ = "reprocess_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    import_session_id: Mapped[int] = mapped_column(
        ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running", index=True)
    initiated_by: Mapped[str | None] = mapped_column(Text)
    reason: Mapped[str | None] = mapped_column(Text)
    model_variant: Mapped[str | None] = mapped_column(Text)
    parameters: Mapped[dict | None] = mapped_column(JSON(none_as_null=True))
    error: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("import_session_id", "run_number", name="uq_reprocess_run_number"),
    )


class SnapshotModel(Base):
    """Write-once capture of a session's derived state."""

    __tablename__ = "reprocess_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    import_session_id: Mapped[int] = mapped_column(
        ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reprocess_run_id: Mapped[int | None] = mapped_column(
        ForeignKey("reprocess_runs.id", ondelete="CASCADE"), index=True
    )
    snapshot_type: Mapped[str] = mapped_column(String(10), nullable=False)
    counters: Mapped[dict] = mapped_column(JSON, nullable=False)
    sample: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("reprocess_run_id", "snapshot_type", name="uq_snapshot_run_type"),
    )
