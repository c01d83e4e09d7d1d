# ruff: noqa: I001
"""CLI for the ``statement_import`` package.

Command handlers (``cmd_*``) return process exit codes and print errors to
stderr; the Typer commands below are thin wrappers around them. Environment
variables (``OPENAI_API_KEY``, ``DATABASE_URL``, ``STATEMENT_IMPORT_*``) are
loaded from a local ``.env`` by the root callback before any command runs.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .errors import StatementImportError, StatementReadError, ValidationError
from .logging_setup import configure_logging
from .models import DateFormat, ImportType
from .settings import ImportSettings


def _err(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def _settings() -> ImportSettings | None:
    try:
        return ImportSettings.from_env()
    except ValueError as e:
        _err(str(e))
        return None


def _make_service(settings: ImportSettings, *, offline: bool) -> Any:
    if offline:
        return None
    if not os.getenv("OPENAI_API_KEY"):
        raise ValidationError("OPENAI_API_KEY is not set; use --offline to skip classification")
    from .categorize import OpenAIClassificationService

    return OpenAIClassificationService(model=settings.model)


def _make_column_mapper(settings: ImportSettings, *, offline: bool) -> Any:
    if offline or not settings.ai_column_mapping:
        return None
    from .column_mapping import OpenAIColumnMapper

    return OpenAIColumnMapper(model=settings.model)


def cmd_detect_date_format(file: str) -> int:
    from .api import detect_date_format

    settings = _settings()
    if settings is None:
        return 1
    try:
        detection = detect_date_format(file, settings=settings)
    except StatementReadError as e:
        _err(str(e))
        return 1
    print(
        json.dumps(
            {
                "format": detection.format,
                "confidence": detection.confidence,
                "is_excel_serial": detection.is_excel_serial,
                "samples": list(detection.samples),
                "parsed_samples": list(detection.parsed_samples),
                "needs_manual_choice": detection.needs_manual_choice,
            },
            ensure_ascii=False,
            indent=2,
        )
    )
    return 0


def cmd_classify(
    file: str,
    import_type: str,
    *,
    date_format: str = DateFormat.AUTO.value,
    user_id: str | None = None,
    database_url: str | None = None,
    offline: bool = False,
) -> int:
    from .api import classify
    from .cache import InMemoryCategoryCache
    from .models import describe_parse_error

    settings = _settings()
    if settings is None:
        return 1
    try:
        service = _make_service(settings, offline=offline)
        if user_id and (database_url or os.getenv("DATABASE_URL")):
            from .persistence import SqlMerchantCategoryCache

            cache: Any = SqlMerchantCategoryCache(user_id, database_url=database_url)
        else:
            cache = InMemoryCategoryCache()
        outcome = classify(
            file,
            import_type,
            date_format,
            cache=cache,
            service=service,
            settings=settings,
            column_mapper=_make_column_mapper(settings, offline=offline),
        )
    except StatementImportError as e:
        _err(str(e))
        return 1

    print(
        json.dumps(
            {
                "phase": "classified",
                "stats": outcome.stats.as_dict(),
                "header_row": outcome.header_row,
                "column_mapping": (
                    outcome.column_mapping.as_dict() if outcome.column_mapping else None
                ),
                "transactions": [
                    {
                        "row_number": r.transaction.row_number,
                        "merchant_name": r.transaction.merchant_name,
                        "amount": str(r.transaction.amount),
                        "date": r.transaction.occurred_on.isoformat(),
                        "kind": r.transaction.kind,
                        "category": r.transaction.category,
                        "source": r.source,
                        "confidence": r.confidence,
                    }
                    for r in outcome.results
                ],
                "errors": [describe_parse_error(e) for e in outcome.errors],
            },
            ensure_ascii=False,
            indent=2,
        )
    )
    return 0


def cmd_import(
    file: str,
    import_type: str,
    *,
    user_id: str,
    database_url: str | None = None,
    date_format: str | None = None,
    assume_yes: bool = False,
    offline: bool = False,
) -> int:
    from .classifier import Classifier
    from .models import Phase
    from .persistence import SqlMerchantCategoryCache, SqlTransactionRepository
    from .session import ImportSession
    from .workflows.import_flow import run_import_flow

    settings = _settings()
    if settings is None:
        return 1
    if not (database_url or os.getenv("DATABASE_URL")):
        _err("DATABASE_URL is not set; pass --database-url")
        return 1
    try:
        service = _make_service(settings, offline=offline)
    except ValidationError as e:
        _err(str(e))
        return 1

    cache = SqlMerchantCategoryCache(user_id, database_url=database_url)
    session = ImportSession(
        classifier=Classifier(
            cache,
            service,
            confidence_threshold=settings.confidence_threshold,
            chunk_size=settings.chunk_size,
            concurrency=settings.concurrency,
        ),
        repository=SqlTransactionRepository(user_id, database_url=database_url),
        cache=cache,
        settings=settings,
        column_mapper=_make_column_mapper(settings, offline=offline),
    )
    try:
        phase = run_import_flow(
            session,
            file,
            import_type,
            date_format=date_format,
            assume_yes=assume_yes,
            on_progress=print,
        )
    except StatementImportError as e:
        _err(str(e))
        return 1
    except (KeyboardInterrupt, EOFError):
        session.reset()
        _err("import cancelled; nothing was saved")
        return 130
    if phase is Phase.ERROR:
        for message in session.errors:
            _err(message)
        return 1
    return 0 if phase is Phase.DONE else 1


def cmd_init_db(database_url: str | None = None) -> int:
    """Create the tables directly (local SQLite setups; use Alembic elsewhere)."""

    from db import metadata
    from db.client import get_engine
    from sqlalchemy.exc import SQLAlchemyError

    try:
        metadata.create_all(bind=get_engine(database_url=database_url))
    except (RuntimeError, SQLAlchemyError) as e:
        _err(f"failed to create tables: {e}")
        return 1
    return 0


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank and credit-card statements: detect the date format, classify "
        "transactions, review uncertain merchants and save without duplicates."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
FILE_OPTION: OptionInfo = typer.Option(
    ...,
    "--file",
    help="Statement file (CSV or XLSX)",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)
TYPE_OPTION: OptionInfo = typer.Option(
    ...,
    "--type",
    help="expenses (credit card detail) or roundTrip (bank statement with income)",
)


def _check_type(value: str) -> str:
    try:
        return ImportType(value).value
    except ValueError as e:
        raise typer.BadParameter("expected 'expenses' or 'roundTrip'") from e


@app.command("detect-date-format")
def detect_date_format_cmd(file: Annotated[Path, FILE_OPTION]) -> None:
    """Report the detected date format of a statement file."""

    raise typer.Exit(cmd_detect_date_format(str(file)))


@app.command("classify")
def classify_cmd(
    file: Annotated[Path, FILE_OPTION],
    import_type: Annotated[str, TYPE_OPTION],
    date_format: str | None = typer.Option(
        None,
        "--date-format",
        help="DD/MM/YYYY, MM/DD/YYYY, YYYY-MM-DD or AUTO (detect; serial dates)",
    ),
    user_id: str | None = typer.Option(
        None, "--user-id", help="Use this user's merchant memory (needs a database)."
    ),
    database_url: str | None = typer.Option(
        None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
    ),
    offline: bool = typer.Option(
        False, "--offline", help="Skip the classification service; unknown merchants go to review."
    ),
) -> None:
    """Parse and classify a statement; print the result as JSON."""

    raise typer.Exit(
        cmd_classify(
            str(file),
            _check_type(import_type),
            date_format=date_format or DateFormat.AUTO.value,
            user_id=user_id,
            database_url=database_url,
            offline=offline,
        )
    )


@app.command("import")
def import_cmd(
    file: Annotated[Path, FILE_OPTION],
    import_type: Annotated[str, TYPE_OPTION],
    user_id: str = typer.Option(..., "--user-id", help="Owner of the imported transactions."),
    database_url: str | None = typer.Option(
        None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
    ),
    date_format: str | None = typer.Option(
        None,
        "--date-format",
        help="Skip detection: DD/MM/YYYY, MM/DD/YYYY, YYYY-MM-DD or AUTO (serial dates)",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer every prompt with its default."),
    offline: bool = typer.Option(
        False, "--offline", help="Skip the classification service; unknown merchants go to review."
    ),
) -> None:
    """Interactive import: review uncertain merchants, resolve duplicates, save."""

    raise typer.Exit(
        cmd_import(
            str(file),
            _check_type(import_type),
            user_id=user_id,
            database_url=database_url,
            date_format=date_format,
            assume_yes=yes,
            offline=offline,
        )
    )


@app.command("init-db")
def init_db_cmd(
    database_url: str | None = typer.Option(
        None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Create the import tables in the configured database."""

    raise typer.Exit(cmd_init_db(database_url))


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
