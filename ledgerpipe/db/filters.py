"""Typed query builders for session and record listings.

Each filter is a dataclass of optional predicates that compiles to a
parameterized SQLAlchemy ``Select``; user input only ever reaches the
database as bound parameters.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import String, Select, cast, func, or_, select

from ledgerpipe.db.models import ImportSessionModel, RecordModel
from ledgerpipe.errors import ValidationError
from ledgerpipe.models import ImportStatus

MAX_PAGE_SIZE = 500


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset must not be negative")


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` matches literally (escape char ``\\``)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class SessionFilter:
    """Predicates for listing import sessions (newest first)."""

    account_ref: str | None = None
    status: ImportStatus | None = None
    initiated_by: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int = 50
    offset: int = 0

    def conditions(self) -> list[Any]:
        conditions: list[Any] = []
        if self.account_ref is not None:
            conditions.append(ImportSessionModel.account_ref == self.account_ref)
        if self.status is not None:
            conditions.append(ImportSessionModel.status == ImportStatus(self.status).value)
        if self.initiated_by is not None:
            conditions.append(ImportSessionModel.initiated_by == self.initiated_by)
        if self.created_from is not None:
            conditions.append(ImportSessionModel.created_at >= self.created_from)
        if self.created_to is not None:
            conditions.append(ImportSessionModel.created_at < self.created_to)
        return conditions

    def compile(self) -> Select:
        _check_page(self.limit, self.offset)
        return (
            select(ImportSessionModel)
            .where(*self.conditions())
            .order_by(ImportSessionModel.created_at.desc(), ImportSessionModel.id.desc())
            .limit(self.limit)
            .offset(self.offset)
        )

    def count(self) -> Select:
        return select(func.count(ImportSessionModel.id)).where(*self.conditions())


class RecordSort(str, Enum):
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"
    AMOUNT_DESC = "amount_desc"
    AMOUNT_ASC = "amount_asc"


_RECORD_ORDER = {
    RecordSort.DATE_DESC: (RecordModel.date.desc(), RecordModel.id.desc()),
    RecordSort.DATE_ASC: (RecordModel.date.asc(), RecordModel.id.asc()),
    RecordSort.AMOUNT_DESC: (RecordModel.amount.desc(), RecordModel.id.desc()),
    RecordSort.AMOUNT_ASC: (RecordModel.amount.asc(), RecordModel.id.asc()),
}


@dataclass
class RecordFilter:
    """Predicates for listing stored records."""

    import_session_id: int | None = None
    account_ref: str | None = None
    search: str | None = None
    tag: str | None = None
    untagged: bool | None = None
    date_from: date | None = None
    date_to: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    sort: RecordSort = RecordSort.DATE_DESC
    limit: int = 100
    offset: int = 0

    def conditions(self) -> list[Any]:
        conditions: list[Any] = []
        if self.import_session_id is not None:
            conditions.append(RecordModel.import_session_id == self.import_session_id)
        if self.account_ref is not None:
            conditions.append(RecordModel.account_ref == self.account_ref)
        if self.search:
            pattern = f"%{self.search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(RecordModel.description).like(pattern),
                    func.lower(RecordModel.normalized_name).like(pattern),
                )
            )
        if self.tag:
            # Matches the tag as the JSON column serializes it, \u escapes included
            encoded = _escape_like(json.dumps(self.tag))
            conditions.append(
                cast(RecordModel.tags, String).like(f"%{encoded}%", escape="\\")
            )
        if self.untagged is True:
            conditions.append(RecordModel.tag_source.is_(None))
        elif self.untagged is False:
            conditions.append(RecordModel.tag_source.is_not(None))
        if self.date_from is not None:
            conditions.append(RecordModel.date >= self.date_from)
        if self.date_to is not None:
            conditions.append(RecordModel.date <= self.date_to)
        if self.min_amount is not None:
            conditions.append(RecordModel.amount >= self.min_amount)
        if self.max_amount is not None:
            conditions.append(RecordModel.amount <= self.max_amount)
        return conditions

    def compile(self) -> Select:
        _check_page(self.limit, self.offset)
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("date_from must not be after date_to")
        return (
            select(RecordModel)
            .where(*self.conditions())
            .order_by(*_RECORD_ORDER[RecordSort(self.sort)])
            .limit(self.limit)
            .offset(self.offset)
        )

    def count(self) -> Select:
        return select(func.count(RecordModel.id)).where(*self.conditions())
