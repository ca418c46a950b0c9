"""Unit tests for statement payload parsing."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledgerpipe.errors import PayloadError
from ledgerpipe.ingestion.statements import parse_csv, parse_rows


class TestParseCsv:
    def test_parses_all_rows(self, statement_csv):
        parsed = parse_csv(statement_csv)

        assert len(parsed.records) == 10
        assert parsed.errors == []
        first = parsed.records[0]
        assert first.date == date(2024, 1, 3)
        assert first.description == "NETFLIX.COM"
        assert first.amount == Decimal("-15.49")
        assert first.reference is None

    def test_header_aliases_and_bytes_payload(self):
        payload = (
            "Transaction Date,Memo,Value,Ref,Category\n"
            "01/15/2024,Kroger #221,\"$1,204.50\",TX-1,Groceries\n"
        ).encode("utf-8-sig")

        record = parse_csv(payload).records[0]

        assert record.date == date(2024, 1, 15)
        assert record.description == "Kroger #221"
        assert record.amount == Decimal("1204.50")
        assert record.reference == "TX-1"
        assert record.bank_category == "Groceries"

    def test_debit_credit_columns_combined(self):
        payload = "Date,Description,Debit,Credit\n2024-02-01,Rent,1200.00,\n2024-02-02,Refund,,19.99\n"

        records = parse_csv(payload).records

        assert [r.amount for r in records] == [Decimal("-1200.00"), Decimal("19.99")]

    def test_parenthesised_amount_is_negative(self):
        parsed = parse_csv("Date,Description,Amount\n2024-03-01,Fee,(12.00)\n")

        assert parsed.records[0].amount == Decimal("-12.00")

    def test_bad_rows_reported_and_skipped(self):
        payload = (
            "Date,Description,Amount\n"
            "2024-01-01,Coffee,-3.00\n"
            "not a date,Tea,-2.00\n"
            "2024-01-03,,-1.00\n"
            "2024-01-04,Cake,abc\n"
        )

        parsed = parse_csv(payload)

        assert len(parsed.records) == 1
        assert [e.row for e in parsed.errors] == [2, 3, 4]
        assert "date" in parsed.errors[0].message

    def test_out_of_range_amount_is_a_row_error(self):
        payload = (
            "Date,Description,Amount\n"
            "2024-01-01,Coffee,-3.00\n"
            "2024-01-02,Wire,100000000000000000000000000000\n"
            "2024-01-03,Bonus,\"10,000,000,000.00\"\n"
        )

        parsed = parse_csv(payload)

        assert [r.description for r in parsed.records] == ["Coffee"]
        assert [e.row for e in parsed.errors] == [2, 3]
        assert all("out of range" in e.message for e in parsed.errors)

    def test_largest_storable_amount_accepted(self):
        parsed = parse_csv("Date,Description,Amount\n2024-01-01,House,-9999999999.99\n")

        assert parsed.records[0].amount == Decimal("-9999999999.99")

    def test_all_rows_invalid_raises(self):
        with pytest.raises(PayloadError, match="No valid rows"):
            parse_csv("Date,Description,Amount\nnope,Coffee,-3.00\n")

    def test_missing_columns_raises(self):
        with pytest.raises(PayloadError, match="amount"):
            parse_csv("Date,Description\n2024-01-01,Coffee\n")

    def test_empty_payload_raises(self):
        with pytest.raises(PayloadError, match="empty"):
            parse_csv("   \n")

    def test_payload_too_large_raises(self, statement_csv):
        with pytest.raises(PayloadError, match="too large"):
            parse_csv(statement_csv.encode(), max_bytes=64)

    def test_too_many_rows_raises(self, statement_csv):
        with pytest.raises(PayloadError, match="Too many rows"):
            parse_csv(statement_csv, max_rows=5)

    def test_non_utf8_bytes_raise(self):
        with pytest.raises(PayloadError, match="UTF-8"):
            parse_csv(b"Date,Description,Amount\n2024-01-01,Caf\xe9,-3\n")


class TestParseRows:
    def test_decoded_rows(self):
        parsed = parse_rows(
            [
                {"date": "2024-05-01", "description": "Lyft", "amount": -18},
                {"date": "2024-05-02", "description": "Lyft", "amount": "-9.10", "reference": ""},
            ]
        )

        assert [r.amount for r in parsed.records] == [Decimal("-18"), Decimal("-9.10")]
        assert parsed.records[1].reference is None

    def test_empty_list_yields_nothing(self):
        parsed = parse_rows([])

        assert parsed.records == [] and parsed.errors == []

    def test_non_object_rows_raise(self):
        with pytest.raises(PayloadError):
            parse_rows(["2024-01-01,Coffee,-3"])

    def test_oversized_json_amount_is_a_row_error(self):
        parsed = parse_rows(
            [
                {"date": "2024-05-01", "description": "Lyft", "amount": -18},
                {"date": "2024-05-02", "description": "Wire", "amount": 10**29},
            ]
        )

        assert len(parsed.records) == 1
        assert parsed.errors[0].row == 2
