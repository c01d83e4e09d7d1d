"""Header-row detection and column mapping for statement tables.

Statements exported by banks and card issuers carry a preamble (account
holder, period, disclaimers) above the real table, and some exports hold
several tables one after another (one per card). A row is taken as a table
header when at least three of its cells name a known column keyword as whole
words, none of its cells looks like a date or an amount, it is short, and it
is followed by a non-empty row.

Keyword matching can leave columns unresolved; an optional ``ColumnMapper``
(see :mod:`statement_import.column_mapping`) is then asked to map the table
from its header and first data row.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any, Protocol

from ..logging_setup import get_logger
from ..models import ColumnMapping, StatementTable
from ..normalizers import to_amount

HEADER_KEYWORDS: tuple[str, ...] = (
    "תאריך",
    "date",
    "סכום",
    "amount",
    "שם",
    "עסק",
    "בית עסק",
    "פרטים",
    "merchant",
    "description",
    "חיוב",
    "זיכוי",
    "תיאור",
    "פעולה",
    "אסמכתא",
    "יתרה",
    "כרטיס",
    "מספר",
    "קטגוריה",
)

_MIN_KEYWORD_CELLS = 3
_MAX_HEADER_TEXT = 200
_MIN_HEADER_CELLS = 2
_FALLBACK_SCAN_ROWS = 30
_MAX_SAMPLE_CELL = 30

_DATE_HINTS = ("תאריך", "date")
_AMOUNT_PRIMARY = ("סכום חיוב",)
_AMOUNT_HINTS = ("סכום", "חיוב", "זיכוי", "amount", "debit", "charge")
_MERCHANT_HINTS = ("עסק", "שם", "תיאור", "פרטים", "merchant", "description", "payee")

_WORD_RE = re.compile(r"\w+")
_DATE_CELL_RE = re.compile(r"\d{1,4}[./-]\d{1,2}(?:[./-]\d{2,4})?")
_KEYWORD_WORDS: tuple[tuple[str, ...], ...] = tuple(
    tuple(_WORD_RE.findall(kw)) for kw in HEADER_KEYWORDS
)

_logger = get_logger("statement_import.ingest.columns")


class ColumnMapper(Protocol):
    def map_columns(
        self, header: Sequence[Any], sample: Sequence[Any]
    ) -> ColumnMapping | None: ...


def _cell_text(cell: Any) -> str:
    return "" if cell is None else str(cell).strip()


def _filled(row: Sequence[Any] | None) -> int:
    if not row:
        return 0
    return sum(1 for c in row if _cell_text(c))


def _has_words(words: list[str], phrase: tuple[str, ...]) -> bool:
    n = len(phrase)
    return any(tuple(words[i : i + n]) == phrase for i in range(len(words) - n + 1))


def _keyword_cells(row: Sequence[Any]) -> int:
    """Count cells naming at least one header keyword as whole words."""

    hits = 0
    for cell in row:
        words = _WORD_RE.findall(_cell_text(cell).lower())
        if words and any(_has_words(words, phrase) for phrase in _KEYWORD_WORDS):
            hits += 1
    return hits


def _looks_like_data(cell: Any) -> bool:
    if isinstance(cell, bool) or cell is None:
        return False
    if isinstance(cell, date | int | float | Decimal):
        return True
    text = _cell_text(cell)
    if not text:
        return False
    if _DATE_CELL_RE.fullmatch(text):
        return True
    try:
        to_amount(text)
    except ValueError:
        return False
    return True


def _header_candidate(row: Sequence[Any]) -> bool:
    if _filled(row) < _MIN_HEADER_CELLS or _row_text_len(row) > _MAX_HEADER_TEXT:
        return False
    return not any(_looks_like_data(c) for c in row)


def _row_text_len(row: Sequence[Any]) -> int:
    return len(" ".join(_cell_text(c) for c in row if _cell_text(c)))


def find_header_rows(rows: Sequence[Sequence[Any]]) -> list[int]:
    """Return the 0-based indices of every table header in ``rows``.

    Falls back to the best-scoring row among the first rows, and to ``[0]``
    when nothing looks like a header at all.
    """

    headers: list[int] = []
    for i, row in enumerate(rows):
        if not _header_candidate(row) or _keyword_cells(row) < _MIN_KEYWORD_CELLS:
            continue
        if i + 1 < len(rows) and _filled(rows[i + 1]) > 0:
            headers.append(i)
    if headers:
        return headers

    best_index, best_hits = 0, 0
    for i, row in enumerate(rows[:_FALLBACK_SCAN_ROWS]):
        if not _header_candidate(row):
            continue
        hits = _keyword_cells(row)
        if hits > best_hits and i + 1 < len(rows) and _filled(rows[i + 1]) > 0:
            best_index, best_hits = i, hits
    return [best_index]


def match_columns(header: Sequence[Any]) -> tuple[ColumnMapping, bool]:
    """Keyword-map ``header``; the flag is ``True`` when all three columns matched.

    The actual-charge column ("סכום חיוב") wins over the transaction-total
    column when both are present. Columns that cannot be found take the
    lowest unused index.
    """

    date_idx = amount_idx = merchant_idx = -1
    amount_primary = False
    for i, cell in enumerate(header):
        h = _cell_text(cell).lower()
        if not h:
            continue
        if date_idx == -1 and any(k in h for k in _DATE_HINTS):
            date_idx = i
            continue
        if not amount_primary and (any(k in h for k in _AMOUNT_PRIMARY) or h == "חיוב"):
            amount_idx, amount_primary = i, True
            continue
        if amount_idx == -1 and any(k in h for k in _AMOUNT_HINTS):
            amount_idx = i
            continue
        if merchant_idx == -1 and any(k in h for k in _MERCHANT_HINTS):
            merchant_idx = i

    found = [date_idx, amount_idx, merchant_idx]
    taken = {i for i in found if i != -1}
    spare = (i for i in range(max(len(header), 3) + 3) if i not in taken)
    resolved = [i if i != -1 else next(spare) for i in found]
    mapping = ColumnMapping(date=resolved[0], amount=resolved[1], merchant=resolved[2])
    return mapping, -1 not in found


def map_columns(header: Sequence[Any]) -> ColumnMapping:
    """Locate the date, amount and merchant columns in a header row."""

    return match_columns(header)[0]


def _table_columns(
    header: Sequence[Any],
    body: Sequence[tuple[int, tuple[Any, ...]]],
    column_mapper: ColumnMapper | None,
) -> ColumnMapping:
    mapping, complete = match_columns(header)
    if complete or column_mapper is None:
        return mapping
    sample = next((cells for _n, cells in body if _filled(cells)), None)
    if sample is None:
        return mapping
    suggested = column_mapper.map_columns(header, sample)
    if suggested is None:
        _logger.info("columns:keyword_fallback mapping=%s", mapping.as_dict())
        return mapping
    _logger.info("columns:mapper_used mapping=%s", suggested.as_dict())
    return suggested


def split_tables(
    rows: Sequence[Sequence[Any]], *, column_mapper: ColumnMapper | None = None
) -> list[StatementTable]:
    """Split ``rows`` into tables, numbering data rows 1-based by file line.

    ``column_mapper`` is consulted only for tables whose header does not name
    all three columns.
    """

    if not rows:
        return []
    headers = find_header_rows(rows)
    tables: list[StatementTable] = []
    for k, h in enumerate(headers):
        end = headers[k + 1] if k + 1 < len(headers) else len(rows)
        body = tuple((i + 1, tuple(rows[i])) for i in range(h + 1, end))
        columns = _table_columns(rows[h], body, column_mapper)
        tables.append(StatementTable(header_index=h, columns=columns, rows=body))
    return tables


def extract_date_samples(rows: Sequence[Sequence[Any]], *, limit: int = 15) -> list[Any]:
    """Collect up to ``limit`` date cells from the first table's data rows.

    Text cells of 30 characters or more are ignored (footer notes that happen
    to sit in the date column).
    """

    if not rows:
        return []
    table = split_tables(rows)[0]
    col = table.columns.date
    samples: list[Any] = []
    for _row_number, cells in table.rows:
        if len(samples) >= limit:
            break
        if col >= len(cells):
            continue
        value = cells[col]
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value or len(value) >= _MAX_SAMPLE_CELL:
                continue
        samples.append(value)
    return samples


__all__ = [
    "HEADER_KEYWORDS",
    "ColumnMapper",
    "extract_date_samples",
    "find_header_rows",
    "map_columns",
    "match_columns",
    "split_tables",
]
