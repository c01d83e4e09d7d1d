"""Raw row access for statement files.

Returns every row of the file as a tuple of cell values, in file order, so
that list position + 1 is the user-facing row number. No header handling
happens here (see :mod:`statement_import.ingest.columns`).

Supported inputs:
- ``.csv`` / ``.txt``: UTF-8 (BOM tolerated), falling back to Windows-1255
  which Israeli banks still export; delimiter sniffed among ``, ; \\t |``.
- ``.xlsx`` / ``.xlsm``: first worksheet via openpyxl, cached values only.

Files are checked before parsing: at most ``MAX_FILE_BYTES`` and not empty,
spreadsheets must carry the ZIP signature and text files must not. Every cell
then goes through :func:`sanitize_cell`.

Any failure to open, check or decode the file raises ``StatementReadError``.
"""

from __future__ import annotations

import csv
import io
import math
import re
import zipfile
from pathlib import Path
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import StatementReadError
from ..logging_setup import get_logger
from ..normalizers import to_amount

_CSV_SUFFIXES = frozenset({".csv", ".txt"})
_XLSX_SUFFIXES = frozenset({".xlsx", ".xlsm"})
_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1255")
_SNIFF_BYTES = 8192

MAX_FILE_BYTES = 10 * 1024 * 1024
MAX_CELL_CHARS = 500

_ZIP_SIGNATURE = b"PK\x03\x04"
_BINARY_SIGNATURES: tuple[bytes, ...] = (
    _ZIP_SIGNATURE,
    b"\xd0\xcf\x11\xe0",  # OLE compound document (legacy .xls/.doc)
    b"%PDF",
)
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
_HTML_TAG_RE = re.compile(r"<[^>]*>")
_SPACES_RE = re.compile(r"\s+")

_logger = get_logger("statement_import.ingest.readers")

type Row = tuple[Any, ...]


def sanitize_cell(value: Any) -> Any:
    """Clean one cell value; blank text becomes ``None``.

    Text loses HTML tags and a leading formula trigger (``= + - @``, tab or
    carriage return), unless the whole cell reads as a signed amount such as
    ``-120.50``. It is then capped at ``MAX_CELL_CHARS`` characters and its
    whitespace collapsed. Non-finite floats become ``None``; other non-text
    values pass through.
    """

    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if not isinstance(value, str):
        return value

    text = _HTML_TAG_RE.sub("", value.strip())
    if text.startswith(_FORMULA_PREFIXES) and not _is_amount(text):
        text = text[1:]
    if len(text) > MAX_CELL_CHARS:
        _logger.warning("ingest:cell_truncated chars=%d", len(text))
        text = text[:MAX_CELL_CHARS]
    text = _SPACES_RE.sub(" ", text).strip()
    return text or None


def _is_amount(text: str) -> bool:
    try:
        to_amount(text)
    except ValueError:
        return False
    return True


def _read_checked(path: Path, max_bytes: int) -> bytes:
    try:
        size = path.stat().st_size
        if size > max_bytes:
            raise StatementReadError(
                f"{path.name} is {size} bytes; statements are limited to {max_bytes} bytes"
            )
        if size == 0:
            raise StatementReadError(f"{path.name} is empty")
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise StatementReadError(f"file not found: {path}") from exc
    except OSError as exc:
        raise StatementReadError(f"cannot read {path}: {exc}") from exc


def _decode(data: bytes, path: Path) -> str:
    for encoding in _ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise StatementReadError(f"cannot decode {path.name}: unsupported text encoding")


def _csv_rows(text: str) -> list[Row]:
    sample = text[:_SNIFF_BYTES]
    try:
        dialect: type[csv.Dialect] | csv.Dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        dialect = csv.excel
    rows: list[Row] = []
    with io.StringIO(text, newline="") as f:
        for raw in csv.reader(f, dialect):
            rows.append(tuple(sanitize_cell(cell) for cell in raw))
    return rows


def read_csv_rows(path: Path, *, max_bytes: int = MAX_FILE_BYTES) -> list[Row]:
    data = _read_checked(path, max_bytes)
    if data.startswith(_BINARY_SIGNATURES):
        raise StatementReadError(f"{path.name} is a binary file, not delimited text")
    try:
        return _csv_rows(_decode(data, path))
    except csv.Error as exc:
        raise StatementReadError(f"malformed CSV in {path.name}: {exc}") from exc


def read_xlsx_rows(path: Path, *, max_bytes: int = MAX_FILE_BYTES) -> list[Row]:
    data = _read_checked(path, max_bytes)
    if not data.startswith(_ZIP_SIGNATURE):
        raise StatementReadError(f"{path.name} is not an Excel workbook")
    try:
        wb = load_workbook(filename=io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise StatementReadError(f"cannot open spreadsheet {path.name}: {exc}") from exc
    try:
        ws = wb.worksheets[0] if wb.worksheets else None
        if ws is None:
            raise StatementReadError(f"spreadsheet {path.name} has no worksheets")
        rows: list[Row] = []
        for values in ws.iter_rows(values_only=True):
            rows.append(tuple(sanitize_cell(v) for v in values))
        return rows
    finally:
        wb.close()


def read_statement_rows(path: str | Path, *, max_bytes: int = MAX_FILE_BYTES) -> list[Row]:
    """Read all rows of a statement file, dispatching on the file suffix."""

    p = Path(path)
    suffix = p.suffix.lower()
    if suffix in _CSV_SUFFIXES:
        rows = read_csv_rows(p, max_bytes=max_bytes)
    elif suffix in _XLSX_SUFFIXES:
        rows = read_xlsx_rows(p, max_bytes=max_bytes)
    else:
        raise StatementReadError(
            f"unsupported statement file type {suffix or '(none)'!r}; expected CSV or XLSX"
        )
    _logger.debug("ingest:read file=%s rows=%d", p.name, len(rows))
    return rows


__all__ = [
    "MAX_CELL_CHARS",
    "MAX_FILE_BYTES",
    "Row",
    "read_csv_rows",
    "read_statement_rows",
    "read_xlsx_rows",
    "sanitize_cell",
]
