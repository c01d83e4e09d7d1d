"""Statement rows → ``ParsedTransaction`` values plus per-row errors.

The parser is resilient by construction: each row is handled on its own and
a malformed row only ever produces a ``ParseError`` for that row.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from pathlib import Path
from typing import Any

from .date_formats import parse_date
from .ingest.columns import ColumnMapper, split_tables
from .ingest.readers import read_statement_rows
from .logging_setup import get_logger
from .models import (
    INVALID_AMOUNT,
    INVALID_DATE,
    MISSING_MERCHANT,
    ColumnMapping,
    DateFormat,
    ImportType,
    ParsedTransaction,
    ParseError,
    TransactionKind,
)
from .normalizers import display_merchant, quantize_amount, to_amount

_logger = get_logger("statement_import.parser")


def _cell(cells: Sequence[Any], index: int) -> Any:
    if index < 0 or index >= len(cells):
        return None
    value = cells[index]
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class StatementParser:
    """Parse statement rows under a confirmed date format and import type.

    ``income_is_negative`` describes the sign convention of ``roundTrip``
    statements: by default money leaving the account is positive (a charge)
    and incoming money is negative, matching debit-column exports.
    ``column_mapper`` maps tables whose header keywords do not name every
    column.
    """

    def __init__(
        self,
        import_type: ImportType,
        date_format: DateFormat,
        *,
        is_excel_serial: bool = False,
        income_is_negative: bool = True,
        column_mapper: ColumnMapper | None = None,
    ) -> None:
        if date_format is DateFormat.AUTO and not is_excel_serial:
            raise ValueError(
                "StatementParser needs a concrete date format unless dates are serials"
            )
        self.import_type = ImportType(import_type)
        self.date_format = date_format
        self.is_excel_serial = is_excel_serial
        self.income_is_negative = income_is_negative
        self.column_mapper = column_mapper
        self.header_row: int | None = None
        self.column_mapping: ColumnMapping | None = None

    def parse_file(self, path: str | Path) -> tuple[list[ParsedTransaction], list[ParseError]]:
        return self.parse(read_statement_rows(path))

    def parse(
        self, rows: Sequence[Sequence[Any]]
    ) -> tuple[list[ParsedTransaction], list[ParseError]]:
        parsed: list[ParsedTransaction] = []
        errors: list[ParseError] = []
        tables = split_tables(rows, column_mapper=self.column_mapper)
        if tables:
            # Report the first table's header (1-based) for diagnostics
            self.header_row = tables[0].header_index + 1
            self.column_mapping = tables[0].columns
        for table in tables:
            for row_number, cells in table.rows:
                outcome = self.parse_row(row_number, cells, table.columns)
                if outcome is None:
                    continue
                if isinstance(outcome, ParseError):
                    errors.append(outcome)
                else:
                    parsed.append(outcome)
        _logger.info(
            "parse:done tables=%d parsed=%d errors=%d import_type=%s",
            len(tables),
            len(parsed),
            len(errors),
            self.import_type,
        )
        return parsed, errors

    def parse_row(
        self, row_number: int, cells: Sequence[Any], columns: ColumnMapping
    ) -> ParsedTransaction | ParseError | None:
        """Parse one data row; ``None`` means a blank row that is skipped."""

        raw_merchant = _cell(cells, columns.merchant)
        raw_amount = _cell(cells, columns.amount)
        raw_date = _cell(cells, columns.date)
        if raw_merchant is None and raw_amount is None and raw_date is None:
            return None

        merchant = display_merchant(raw_merchant)
        if not merchant:
            return ParseError(row_number=row_number, reason=MISSING_MERCHANT)

        amount = self._amount(raw_amount)
        if amount is None:
            return ParseError(row_number=row_number, reason=INVALID_AMOUNT)

        occurred_on = parse_date(raw_date, self.date_format, is_excel_serial=self.is_excel_serial)
        if occurred_on is None:
            return ParseError(row_number=row_number, reason=INVALID_DATE)

        if self.import_type is ImportType.EXPENSES:
            kind = TransactionKind.EXPENSE
        elif (amount < 0) == self.income_is_negative:
            kind = TransactionKind.INCOME
        else:
            kind = TransactionKind.EXPENSE

        return ParsedTransaction(
            row_number=row_number,
            merchant_name=merchant,
            amount=abs(amount),
            occurred_on=occurred_on,
            kind=kind,
        )

    def _amount(self, raw: Any) -> Decimal | None:
        try:
            amount = to_amount(raw)
        except ValueError:
            return None
        # Stored amounts are whole cents; a charge that rounds to zero is not one
        if quantize_amount(amount) == 0:
            return None
        if self.import_type is ImportType.EXPENSES and amount < 0:
            return None
        return amount


__all__ = ["StatementParser"]
