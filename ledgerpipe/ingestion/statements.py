"""Statement payload reader for ledgerpipe.

Turns a raw CSV payload (or an already-decoded list of row dicts) into
validated ``StatementRecord``s. Bad rows are reported and skipped; a payload
that cannot be read at all raises ``PayloadError`` so no session is created.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from ledgerpipe.errors import PayloadError
from ledgerpipe.models import RowError, StatementRecord

# Header spellings seen in bank exports -> canonical column
COLUMN_ALIASES = {
    "date": "date",
    "transaction_date": "date",
    "posted_date": "date",
    "posting_date": "date",
    "booking_date": "date",
    "description": "description",
    "memo": "description",
    "details": "description",
    "payee": "description",
    "narrative": "description",
    "amount": "amount",
    "value": "amount",
    "debit": "debit",
    "withdrawal": "debit",
    "credit": "credit",
    "deposit": "credit",
    "reference": "reference",
    "ref": "reference",
    "transaction_id": "reference",
    "fitid": "reference",
    "category": "bank_category",
    "bank_category": "bank_category",
}

REQUIRED_COLUMNS = ("date", "description")


@dataclass
class ParsedStatement:
    """Valid records plus per-row errors from one payload."""

    records: list[StatementRecord] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.records) + len(self.errors)


def _canonical(column: str) -> str:
    key = str(column).strip().lower().replace(" ", "_").replace("-", "_")
    return COLUMN_ALIASES.get(key, key)


def _to_decimal(value: Any) -> Decimal:
    text = str(value or "").replace(",", "").replace("$", "").strip()
    if not text:
        return Decimal("0")
    try:
        return Decimal(text)
    except InvalidOperation:
        raise ValueError(f"invalid amount {value!r}")


def _frame_to_statement(df: pd.DataFrame, max_rows: int | None) -> ParsedStatement:
    df = df.rename(columns=_canonical)
    if df.columns.duplicated().any():
        raise PayloadError("Payload has duplicate columns after header normalization")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    has_amount = "amount" in df.columns or {"debit", "credit"} & set(df.columns)
    if missing or not has_amount:
        if not has_amount:
            missing.append("amount")
        raise PayloadError(f"Missing required columns: {', '.join(missing)}")

    if max_rows is not None and len(df) > max_rows:
        raise PayloadError(f"Too many rows ({len(df)}). Maximum allowed: {max_rows}")

    parsed = ParsedStatement()
    for idx, row in enumerate(df.to_dict("records"), start=1):
        data = {k: (None if v == "" else v) for k, v in row.items()}
        try:
            if data.get("amount") is None and ("debit" in data or "credit" in data):
                data["amount"] = _to_decimal(data.get("credit")) - _to_decimal(data.get("debit"))
            record = StatementRecord.model_validate(
                {
                    "date": data.get("date"),
                    "description": data.get("description"),
                    "amount": data.get("amount"),
                    "reference": data.get("reference"),
                    "bank_category": data.get("bank_category"),
                }
            )
        except PydanticValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())) or "row"
            parsed.errors.append(RowError(row=idx, message=f"{location}: {first['msg']}"))
            continue
        except ValueError as e:
            parsed.errors.append(RowError(row=idx, message=str(e)))
            continue
        parsed.records.append(record)

    if parsed.errors and not parsed.records:
        raise PayloadError(
            f"No valid rows in payload ({len(parsed.errors)} rejected); "
            f"first error: row {parsed.errors[0].row}: {parsed.errors[0].message}"
        )
    return parsed


def parse_csv(
    payload: str | bytes,
    max_bytes: int | None = None,
    max_rows: int | None = None,
) -> ParsedStatement:
    """Parse a CSV statement export.

    Expected columns (case-insensitive, common aliases accepted):
    - Date (required)
    - Description (required)
    - Amount, or Debit/Credit (required)
    - Reference (optional, provider transaction id)
    - Category (optional, bank-assigned category)

    Raises:
        PayloadError: If the payload is empty, too large or not a CSV table
    """
    if isinstance(payload, bytes):
        if max_bytes is not None and len(payload) > max_bytes:
            raise PayloadError(f"Payload too large ({len(payload)} bytes). Maximum allowed: {max_bytes}")
        try:
            payload = payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise PayloadError(f"Payload is not UTF-8 text: {e}") from e
    elif max_bytes is not None and len(payload.encode("utf-8")) > max_bytes:
        raise PayloadError(f"Payload too large. Maximum allowed: {max_bytes} bytes")

    if not payload.strip():
        raise PayloadError("Payload is empty")

    try:
        df = pd.read_csv(
            io.StringIO(payload),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise PayloadError(f"Unreadable CSV payload: {e}") from e

    return _frame_to_statement(df, max_rows)


def parse_rows(rows: list[dict[str, Any]], max_rows: int | None = None) -> ParsedStatement:
    """Validate rows that arrived already decoded (JSON body)."""
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise PayloadError("records must be a list of objects")
    if not rows:
        return ParsedStatement()
    df = pd.DataFrame(rows, dtype=object)
    df = df.where(df.notna(), "")
    return _frame_to_statement(df, max_rows)
