"""Public, stateless entry points of the import pipeline.

These are the three operations a front end needs when it manages the
wizard state itself; :class:`~statement_import.session.ImportSession` wires
the same steps into a state machine.

- :func:`detect_date_format`: inspect a file's date column.
- :func:`classify`: parse and classify a file with a confirmed date format.
- :func:`check_and_save`: commit records with duplicate detection (re-export
  of :func:`statement_import.commit.check_and_save`).
"""

from __future__ import annotations

from pathlib import Path

from . import date_formats
from .classifier import CategoryCache, ClassificationService, Classifier
from .commit import check_and_save
from .errors import ValidationError
from .ingest.columns import ColumnMapper
from .ingest.readers import read_statement_rows
from .logging_setup import get_logger
from .models import ClassifyOutcome, DateFormat, DateFormatDetection, ImportType
from .parser import StatementParser
from .settings import ImportSettings

_logger = get_logger("statement_import.api")


def detect_date_format(
    path: str | Path, *, settings: ImportSettings | None = None
) -> DateFormatDetection:
    """Detect the date layout used by the statement at ``path``.

    Raises ``StatementReadError`` when the file cannot be read; an
    undetectable layout is reported in the result, not raised.
    """

    cfg = settings or ImportSettings.from_env()
    rows = read_statement_rows(path)
    return date_formats.detect_date_format_from_rows(
        rows, sample_size=cfg.sample_size, locale_default=cfg.default_date_format
    )


def classify(
    path: str | Path,
    import_type: ImportType | str,
    date_format: DateFormat | str = DateFormat.AUTO,
    *,
    cache: CategoryCache,
    service: ClassificationService | None,
    is_excel_serial: bool | None = None,
    settings: ImportSettings | None = None,
    column_mapper: ColumnMapper | None = None,
) -> ClassifyOutcome:
    """Parse ``path`` and classify every valid row.

    ``date_format=AUTO`` runs detection first and requires a confident (high
    or medium) answer or serial dates; otherwise ``ValidationError`` asks for
    an explicit format. ``column_mapper`` maps tables whose headers the
    keyword rules cannot fully read.
    """

    cfg = settings or ImportSettings.from_env()
    try:
        kind = ImportType(import_type)
    except ValueError as e:
        raise ValidationError(f"unknown import type {import_type!r}") from e
    try:
        fmt = DateFormat(date_format)
    except ValueError as e:
        raise ValidationError(f"unknown date format {date_format!r}") from e

    rows = read_statement_rows(path)
    serial = bool(is_excel_serial)
    if fmt is DateFormat.AUTO and not serial:
        detection = date_formats.detect_date_format_from_rows(
            rows, sample_size=cfg.sample_size, locale_default=cfg.default_date_format
        )
        if detection.needs_manual_choice or detection.format is None:
            raise ValidationError(
                "could not determine the date format with confidence; pass it explicitly"
            )
        fmt, serial = detection.format, detection.is_excel_serial

    parser = StatementParser(kind, fmt, is_excel_serial=serial, column_mapper=column_mapper)
    parsed, errors = parser.parse(rows)

    classifier = Classifier(
        cache,
        service,
        confidence_threshold=cfg.confidence_threshold,
        chunk_size=cfg.chunk_size,
        concurrency=cfg.concurrency,
    )
    outcome = classifier.classify(parsed, parse_error_count=len(errors))
    _logger.info(
        "api:classified file=%s parsed=%d needs_review=%d errors=%d",
        Path(path).name,
        len(outcome.classified),
        len(outcome.needs_review),
        len(errors),
    )
    return ClassifyOutcome(
        parsed=outcome.classified,
        needs_review=outcome.needs_review,
        stats=outcome.stats,
        errors=tuple(errors),
        header_row=parser.header_row,
        column_mapping=parser.column_mapping,
        results=outcome.results,
    )


__all__ = ["check_and_save", "classify", "detect_date_format"]
