"""Date layout detection and strict date parsing.

:func:`detect_date_format` inspects a handful of raw date cells and reports
which of the supported layouts fits them, with a confidence level. It is a
pure function: no I/O, no randomness, and it never raises. A missing or
low-confidence answer is a normal outcome that callers resolve by asking the
user to choose a layout.

:func:`parse_date` is the single strict parser used both by detection and by
the statement parser, so a layout accepted here is guaranteed to parse the
rows later.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta
from typing import Any

from .ingest.columns import extract_date_samples
from .models import Confidence, DateFormat, DateFormatDetection

# Spreadsheet day serials: 1899-12-30 is day 0. The accepted window covers
# roughly 1982..2173 and keeps small integers (amounts, ids) out.
_EXCEL_EPOCH = date(1899, 12, 30)
_SERIAL_MIN = 30000
_SERIAL_MAX = 100000

_ISO_RE = re.compile(r"^(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})$")
_DMY_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})$")
_SERIAL_RE = re.compile(r"^\d{4,5}(\.0+)?$")

_TEXT_FORMATS: tuple[DateFormat, ...] = (
    DateFormat.YYYY_MM_DD,
    DateFormat.DD_MM_YYYY,
    DateFormat.MM_DD_YYYY,
)


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        return year + (1900 if year > 50 else 2000)
    return year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _date_token(text: str) -> str:
    # Drop a trailing time part: "15/03/2024 10:22" or "2024-03-15T10:22:00".
    first = text.split()[0] if text.split() else ""
    return first.split("T", 1)[0]


def serial_to_date(value: Any) -> date | None:
    """Convert a spreadsheet day serial (number or digit string) to a date."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        n = float(value)
    elif isinstance(value, str) and _SERIAL_RE.match(value.strip()):
        n = float(value.strip())
    else:
        return None
    if not (_SERIAL_MIN < n < _SERIAL_MAX) or n != int(n):
        return None
    return _EXCEL_EPOCH + timedelta(days=int(n))


def parse_date(value: Any, fmt: DateFormat, *, is_excel_serial: bool = False) -> date | None:
    """Parse one date cell under ``fmt``; return ``None`` when it does not fit.

    Native ``date``/``datetime`` cells (as produced by spreadsheet readers) are
    accepted under any layout. With ``is_excel_serial`` (or ``fmt`` AUTO)
    numeric serials are converted; AUTO also accepts ISO text.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if is_excel_serial or fmt is DateFormat.AUTO:
        converted = serial_to_date(value)
        if converted is not None:
            return converted
        if fmt is DateFormat.AUTO:
            return parse_date(value, DateFormat.YYYY_MM_DD)

    text = str(value).strip()
    if not text:
        return None
    token = _date_token(text)

    if fmt is DateFormat.YYYY_MM_DD:
        m = _ISO_RE.match(token)
        if m is None:
            return None
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DMY_RE.match(token)
    if m is None:
        return None
    first, second, year = int(m.group(1)), int(m.group(2)), _expand_year(m.group(3))
    if fmt is DateFormat.DD_MM_YYYY:
        return _safe_date(year, second, first)
    return _safe_date(year, first, second)


def _is_native_date(value: Any) -> bool:
    return isinstance(value, date)


def _clean_samples(samples: Iterable[Any]) -> list[Any]:
    out: list[Any] = []
    for s in samples:
        if s is None:
            continue
        if isinstance(s, str):
            s = s.strip()
            if not s:
                continue
        out.append(s)
    return out


def _iso_or_none(d: date | None) -> str | None:
    return d.isoformat() if d is not None else None


def detect_date_format(
    samples: Iterable[Any],
    *,
    is_excel_serial: bool | None = None,
    locale_default: DateFormat = DateFormat.DD_MM_YYYY,
) -> DateFormatDetection:
    """Infer the date layout of ``samples``.

    Rules, in order:

    - every sample is a spreadsheet serial (or a native date cell), or the
      caller says the column is numeric: ``is_excel_serial=True``, format
      ``AUTO``, high confidence;
    - exactly one textual layout parses every sample: high confidence;
    - several layouts parse every sample (no day above 12 anywhere): dotted
      separators point at day-first (medium), otherwise the locale default is
      suggested with low confidence;
    - nothing fits: no format, low confidence.
    """

    values = _clean_samples(samples)
    shown = tuple(v.isoformat() if _is_native_date(v) else str(v) for v in values)
    if not values:
        return DateFormatDetection(
            format=None, confidence=Confidence.LOW, is_excel_serial=False, samples=shown
        )

    serial_dates = [
        v.date() if isinstance(v, datetime) else v if _is_native_date(v) else serial_to_date(v)
        for v in values
    ]
    if is_excel_serial or (is_excel_serial is None and all(d is not None for d in serial_dates)):
        return DateFormatDetection(
            format=DateFormat.AUTO,
            confidence=Confidence.HIGH,
            is_excel_serial=True,
            samples=shown,
            parsed_samples=tuple(_iso_or_none(d) for d in serial_dates),
        )

    viable = [
        fmt for fmt in _TEXT_FORMATS if all(parse_date(v, fmt) is not None for v in values)
    ]

    if len(viable) == 1:
        chosen: DateFormat | None = viable[0]
        confidence = Confidence.HIGH
    elif len(viable) > 1:
        dotted = all(isinstance(v, str) and "." in _date_token(v) for v in values)
        if dotted and DateFormat.DD_MM_YYYY in viable:
            chosen, confidence = DateFormat.DD_MM_YYYY, Confidence.MEDIUM
        else:
            chosen = locale_default if locale_default in viable else viable[0]
            confidence = Confidence.LOW
    else:
        chosen, confidence = None, Confidence.LOW

    parsed = (
        tuple(_iso_or_none(parse_date(v, chosen)) for v in values)
        if chosen is not None
        else tuple(None for _ in values)
    )
    return DateFormatDetection(
        format=chosen,
        confidence=confidence,
        is_excel_serial=False,
        samples=shown,
        parsed_samples=parsed,
    )


def detect_date_format_from_rows(
    rows: Sequence[Sequence[Any]],
    *,
    sample_size: int = 15,
    locale_default: DateFormat = DateFormat.DD_MM_YYYY,
) -> DateFormatDetection:
    """Sample the date column of raw statement rows and detect its layout."""

    return detect_date_format(
        extract_date_samples(rows, limit=sample_size), locale_default=locale_default
    )


__all__ = [
    "detect_date_format",
    "detect_date_format_from_rows",
    "parse_date",
    "serial_to_date",
]
