"""Import session: the state machine driving one statement from upload to commit.

Phases::

    idle → type_selected → format_detecting → format_confirmed → parsing
         → classifying → (reviewing) → duplicate_check → saving → done

``error`` is reachable from any non-terminal phase and ``reset()`` returns to
``idle`` from anywhere.

Each transition is one public method. Phase and data are exposed as
read-only properties, so the only way to move the session is through a
transition that checks its preconditions. Precondition failures raise
``ValidationError`` (or ``PhaseError``) and leave the session unchanged.
Infrastructure failures (unreadable file, unreachable repository) move the
session to ``error`` and keep the messages in ``errors``.

Detection, parsing, classification and repository calls run outside the
session lock. ``reset()`` bumps a generation counter; work that started under
an older generation is discarded when it finishes and never touches the
reset session.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

from .categories import categories_for, normalize_category
from .classifier import CategoryCache, Classifier, ClassificationOutcome
from .commit import TransactionRepository, check_and_save
from .date_formats import detect_date_format_from_rows
from .errors import (
    InfrastructureError,
    PhaseError,
    StaleResultError,
    ValidationError,
)
from .ingest.columns import ColumnMapper
from .ingest.readers import Row, read_statement_rows
from .logging_setup import get_logger
from .models import (
    ClassificationStats,
    CommitRecord,
    Confidence,
    DateFormat,
    DateFormatDetection,
    DuplicateCandidate,
    ImportType,
    MerchantGroup,
    ParsedTransaction,
    ParseError,
    Phase,
    describe_parse_error,
)
from .parser import StatementParser
from .review import ReviewGrouper
from .settings import ImportSettings

_logger = get_logger("statement_import.session")

_TERMINAL = frozenset({Phase.DONE, Phase.ERROR})


class ImportSession:
    """Single-use, single-user aggregate tracking one file's import."""

    def __init__(
        self,
        *,
        classifier: Classifier,
        repository: TransactionRepository,
        cache: CategoryCache | None = None,
        settings: ImportSettings | None = None,
        reader: Callable[[Path], Sequence[Row]] = read_statement_rows,
        column_mapper: ColumnMapper | None = None,
    ) -> None:
        self._classifier = classifier
        self._repository = repository
        self._cache = cache
        self._settings = settings or ImportSettings()
        self._reader = reader
        self._column_mapper = column_mapper
        self._lock = threading.RLock()
        self._generation = 0
        self._clear()

    def _clear(self) -> None:
        self._phase = Phase.IDLE
        self._import_id = uuid.uuid4().hex
        self._import_type: ImportType | None = None
        self._path: Path | None = None
        self._rows: Sequence[Row] = ()
        self._detection: DateFormatDetection | None = None
        self._date_format: DateFormat | None = None
        self._is_excel_serial = False
        self._classified: tuple[ParsedTransaction, ...] = ()
        self._review: ReviewGrouper = ReviewGrouper(())
        self._parse_errors: tuple[ParseError, ...] = ()
        self._stats = ClassificationStats()
        self._duplicates: tuple[DuplicateCandidate, ...] = ()
        self._selected_duplicate_rows: set[int] = set()
        self._duplicates_checked = False
        self._saved_count: int | None = None
        self._committed = False
        self._errors: list[str] = []

    # ---- read-only view --------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def import_id(self) -> str:
        return self._import_id

    @property
    def import_type(self) -> ImportType | None:
        return self._import_type

    @property
    def detection(self) -> DateFormatDetection | None:
        return self._detection

    @property
    def date_format(self) -> DateFormat | None:
        return self._date_format

    @property
    def is_excel_serial(self) -> bool:
        return self._is_excel_serial

    @property
    def parsed(self) -> tuple[ParsedTransaction, ...]:
        """Transactions classified without review (cache or service)."""

        return self._classified

    @property
    def needs_review(self) -> tuple[ParsedTransaction, ...]:
        return self._review.needs_review

    @property
    def review_categories(self) -> dict[int, str]:
        return self._review.review_categories

    @property
    def parse_errors(self) -> tuple[ParseError, ...]:
        return self._parse_errors

    @property
    def stats(self) -> ClassificationStats:
        return self._stats

    @property
    def duplicates(self) -> tuple[DuplicateCandidate, ...]:
        return self._duplicates

    @property
    def selected_duplicate_rows(self) -> frozenset[int]:
        return frozenset(self._selected_duplicate_rows)

    @property
    def saved_count(self) -> int | None:
        return self._saved_count

    @property
    def errors(self) -> tuple[str, ...]:
        return tuple(self._errors)

    @property
    def awaiting_format_choice(self) -> bool:
        return self._phase is Phase.FORMAT_DETECTING and self._detection is not None

    @property
    def awaiting_duplicate_decision(self) -> bool:
        return self._phase is Phase.DUPLICATE_CHECK and self._duplicates_checked

    # ---- internals ---------------------------------------------------------

    def _require(self, operation: str, *phases: Phase) -> None:
        if self._phase not in phases:
            raise PhaseError(operation, str(self._phase), tuple(str(p) for p in phases))

    def _move(self, phase: Phase) -> None:
        _logger.info(
            "session:transition import_id=%s from=%s to=%s", self._import_id, self._phase, phase
        )
        self._phase = phase

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise StaleResultError(f"generation {generation} superseded by {self._generation}")

    def _fail(self, generation: int, exc: InfrastructureError) -> Phase:
        with self._lock:
            if generation != self._generation:
                return self._phase
            self._errors.append(str(exc))
            _logger.error(
                "session:failed import_id=%s phase=%s error=%s",
                self._import_id,
                self._phase,
                exc.__class__.__name__,
            )
            self._move(Phase.ERROR)
            return self._phase

    def _discard(self, generation: int) -> Phase:
        _logger.info(
            "session:stale_result_discarded import_id=%s generation=%d", self._import_id, generation
        )
        return self._phase

    # ---- transitions -----------------------------------------------------

    def select_type(self, import_type: ImportType | str | None, path: str | Path) -> Phase:
        """Pick the import type for ``path`` and run date-format detection.

        Ends in ``format_confirmed`` when detection is confident, otherwise
        waits in ``format_detecting`` for :meth:`confirm_format`.
        """

        with self._lock:
            self._require(
                "select_type",
                Phase.IDLE,
                Phase.TYPE_SELECTED,
                Phase.FORMAT_DETECTING,
                Phase.FORMAT_CONFIRMED,
            )
            if import_type is None or (isinstance(import_type, str) and not import_type.strip()):
                raise ValidationError("choose an import type: expenses or roundTrip")
            try:
                chosen = ImportType(import_type)
            except ValueError as e:
                raise ValidationError(
                    f"unknown import type {import_type!r}; expected expenses or roundTrip"
                ) from e
            if not path:
                raise ValidationError("a statement file is required")
            self._import_type = chosen
            self._path = Path(path)
            self._detection = None
            self._date_format = None
            self._move(Phase.TYPE_SELECTED)
            self._move(Phase.FORMAT_DETECTING)
            generation = self._generation
            file_path = self._path

        try:
            rows = self._reader(file_path)
            detection = detect_date_format_from_rows(
                rows,
                sample_size=self._settings.sample_size,
                locale_default=self._settings.default_date_format,
            )
        except InfrastructureError as e:
            return self._fail(generation, e)

        with self._lock:
            try:
                self._ensure_current(generation)
            except StaleResultError:
                return self._discard(generation)
            self._rows = rows
            self._detection = detection
            _logger.info(
                "session:format_detected import_id=%s format=%s confidence=%s excel_serial=%s",
                self._import_id,
                detection.format,
                detection.confidence,
                detection.is_excel_serial,
            )
            if detection.format is not None and detection.confidence in (
                Confidence.HIGH,
                Confidence.MEDIUM,
            ):
                self._date_format = detection.format
                self._is_excel_serial = detection.is_excel_serial
                self._move(Phase.FORMAT_CONFIRMED)
            return self._phase

    def confirm_format(self, date_format: DateFormat | str) -> Phase:
        """Manually choose (or override) the date format."""

        with self._lock:
            self._require("confirm_format", Phase.FORMAT_DETECTING, Phase.FORMAT_CONFIRMED)
            if self._detection is None:
                raise ValidationError("date format detection has not finished yet")
            try:
                fmt = DateFormat(date_format)
            except ValueError as e:
                raise ValidationError(f"unknown date format {date_format!r}") from e
            if fmt is DateFormat.AUTO and not self._detection.is_excel_serial:
                raise ValidationError("choose a concrete date format; AUTO needs serial dates")
            self._date_format = fmt
            self._is_excel_serial = self._detection.is_excel_serial
            if self._phase is not Phase.FORMAT_CONFIRMED:
                self._move(Phase.FORMAT_CONFIRMED)
            return self._phase

    def run_import(self) -> Phase:
        """Parse and classify; ends in ``reviewing`` or ``duplicate_check``.

        A file without a single valid row is rejected with ``ValidationError``
        and the session stays in ``format_confirmed`` so another date format
        can be tried; the row errors are kept in ``parse_errors``.
        """

        with self._lock:
            self._require("run_import", Phase.FORMAT_CONFIRMED)
            if self._import_type is None or self._date_format is None:
                raise ValidationError("choose an import type and a date format first")
            generation = self._generation
            parser = StatementParser(
                self._import_type,
                self._date_format,
                is_excel_serial=self._is_excel_serial,
                column_mapper=self._column_mapper,
            )
            rows = self._rows
            self._move(Phase.PARSING)

        parsed, parse_errors = parser.parse(rows)

        with self._lock:
            try:
                self._ensure_current(generation)
            except StaleResultError:
                return self._discard(generation)
            self._parse_errors = tuple(parse_errors)
            self._errors = [describe_parse_error(e) for e in parse_errors]
            if not parsed:
                self._phase = Phase.FORMAT_CONFIRMED
                raise ValidationError(
                    f"no valid transactions found ({len(parse_errors)} rows could not be read)"
                )
            self._move(Phase.CLASSIFYING)

        try:
            outcome: ClassificationOutcome = self._classifier.classify(
                parsed,
                parse_error_count=len(parse_errors),
                should_stop=lambda: self._generation != generation,
            )
        except StaleResultError:
            return self._discard(generation)
        except InfrastructureError as e:
            return self._fail(generation, e)

        with self._lock:
            try:
                self._ensure_current(generation)
            except StaleResultError:
                return self._discard(generation)
            self._classified = outcome.classified
            self._review = ReviewGrouper(outcome.needs_review)
            self._stats = outcome.stats
            self._move(Phase.REVIEWING if outcome.needs_review else Phase.DUPLICATE_CHECK)
            return self._phase

    # ---- review ------------------------------------------------------------

    def groups(self) -> list[MerchantGroup]:
        return self._review.groups()

    def next_uncategorized(self) -> int | None:
        return self._review.next_uncategorized()

    def is_group_fully_categorized(self, key: str) -> bool:
        return self._review.is_group_fully_categorized(key)

    def _checked_category(self, rows: Iterable[int], category: str) -> str:
        normalized = normalize_category(category)
        if normalized is None:
            raise ValidationError("category must be a non-empty string")
        by_row = {t.row_number: t for t in self._review.needs_review}
        for r in rows:
            tx = by_row.get(r)
            if tx is not None and normalized not in categories_for(tx.kind, include_manual=True):
                raise ValidationError(
                    f"category {normalized!r} is not valid for {tx.kind} transactions (row {r})"
                )
        return normalized

    def toggle_group_selection(self, key: str) -> bool:
        with self._lock:
            self._require("toggle_group_selection", Phase.REVIEWING)
            return self._review.toggle_group_selection(key)

    def _rows_of_matching_kind(self, rows: Iterable[int], category: str) -> tuple[str, list[int]]:
        """Keep the rows whose kind accepts ``category``; at least one must."""

        normalized = normalize_category(category)
        if normalized is None:
            raise ValidationError("category must be a non-empty string")
        by_row = {t.row_number: t for t in self._review.needs_review}
        rows = list(rows)
        accepted = [
            r
            for r in rows
            if r not in by_row
            or normalized in categories_for(by_row[r].kind, include_manual=True)
        ]
        if rows and not accepted:
            kinds = sorted({str(by_row[r].kind) for r in rows})
            raise ValidationError(
                f"category {normalized!r} is not valid for {'/'.join(kinds)} transactions"
            )
        return normalized, accepted

    def apply_category_to_group(self, key: str, category: str) -> int:
        """Categorize the group's rows whose kind accepts ``category``.

        A merchant can appear as both expense and income; rows of the other
        kind stay pending so they can get a category from their own list.
        Returns the number of rows updated.
        """

        with self._lock:
            self._require("apply_category_to_group", Phase.REVIEWING)
            group = self._review.group(key)
            normalized, rows = self._rows_of_matching_kind(group.row_numbers, category)
            return self._review.apply_category_to_selection(rows, normalized)

    def apply_category_to_selection(self, row_numbers: Iterable[int], category: str) -> int:
        with self._lock:
            self._require("apply_category_to_selection", Phase.REVIEWING)
            rows = list(row_numbers)
            return self._review.apply_category_to_selection(
                rows, self._checked_category(rows, category)
            )

    def apply_category_to_selected_groups(self, category: str) -> int:
        with self._lock:
            self._require("apply_category_to_selected_groups", Phase.REVIEWING)
            normalized, rows = self._rows_of_matching_kind(self._review.selected_rows(), category)
            updated = self._review.apply_category_to_selection(rows, normalized)
            self._review.clear_selection()
            return updated

    def finish_review(self) -> Phase:
        """Advance to ``duplicate_check`` once every review item has a category."""

        with self._lock:
            self._require("finish_review", Phase.REVIEWING)
            missing = self._review.uncategorized_rows()
            if missing:
                raise ValidationError(
                    f"{len(missing)} transactions still need a category (first: row {missing[0]})"
                )
            self._move(Phase.DUPLICATE_CHECK)
            return self._phase

    # ---- duplicates and commit ---------------------------------------------

    def commit_candidates(self) -> list[CommitRecord]:
        """Classified rows plus reviewed rows, in row order."""

        records = [
            CommitRecord.from_transaction(t, category=t.category or "", is_manual_category=False)
            for t in self._classified
        ]
        records.extend(
            CommitRecord.from_transaction(t, category=t.category or "", is_manual_category=True)
            for t in self._review.reviewed_transactions()
        )
        records.sort(key=lambda r: r.row_number or 0)
        return records

    def check_duplicates(self) -> Phase:
        """Run the duplicate check; commits straight away when there are none."""

        with self._lock:
            self._require("check_duplicates", Phase.DUPLICATE_CHECK)
            if self._duplicates_checked:
                raise ValidationError("duplicates were already checked; confirm the selection")
            generation = self._generation
            records = self.commit_candidates()

        try:
            outcome = check_and_save(
                self._repository,
                records,
                skip_duplicate_check=False,
                cache=self._cache,
                import_id=self._import_id,
            )
        except InfrastructureError as e:
            return self._fail(generation, e)

        with self._lock:
            try:
                self._ensure_current(generation)
            except StaleResultError:
                return self._discard(generation)
            if outcome.has_duplicates:
                self._duplicates = outcome.duplicates
                self._selected_duplicate_rows = {d.incoming.row_number for d in outcome.duplicates}
                self._duplicates_checked = True
                _logger.info(
                    "session:duplicates_found import_id=%s count=%d",
                    self._import_id,
                    len(outcome.duplicates),
                )
                return self._phase
            self._duplicates_checked = True
            self._move(Phase.SAVING)
            self._finish_commit(outcome.saved)
            return self._phase

    def toggle_duplicate(self, row_number: int) -> bool:
        """Flip whether a duplicate row is imported; returns the new state."""

        with self._lock:
            self._require_duplicate_decision("toggle_duplicate", row_number)
            if row_number in self._selected_duplicate_rows:
                self._selected_duplicate_rows.discard(row_number)
                return False
            self._selected_duplicate_rows.add(row_number)
            return True

    def deselect_duplicate(self, row_number: int) -> None:
        with self._lock:
            self._require_duplicate_decision("deselect_duplicate", row_number)
            self._selected_duplicate_rows.discard(row_number)

    def _require_duplicate_decision(self, operation: str, row_number: int) -> None:
        self._require(operation, Phase.DUPLICATE_CHECK)
        if not self._duplicates_checked:
            raise ValidationError("run the duplicate check first")
        if row_number not in {d.incoming.row_number for d in self._duplicates}:
            raise ValidationError(f"row {row_number} is not a duplicate candidate")

    def confirm_save(self) -> Phase:
        """Commit the candidate set minus deselected duplicates."""

        with self._lock:
            self._require("confirm_save", Phase.DUPLICATE_CHECK)
            if not self._duplicates_checked:
                raise ValidationError("run the duplicate check first")
            if self._committed:
                raise ValidationError("this import was already saved")
            excluded = {
                d.incoming.row_number for d in self._duplicates
            } - self._selected_duplicate_rows
            records = [r for r in self.commit_candidates() if r.row_number not in excluded]
            if not records:
                raise ValidationError("no transactions selected for import")
            generation = self._generation
            self._move(Phase.SAVING)

        try:
            outcome = check_and_save(
                self._repository,
                records,
                skip_duplicate_check=True,
                cache=self._cache,
                import_id=self._import_id,
            )
        except InfrastructureError as e:
            return self._fail(generation, e)

        with self._lock:
            try:
                self._ensure_current(generation)
            except StaleResultError:
                return self._discard(generation)
            self._finish_commit(outcome.saved)
            return self._phase

    def _finish_commit(self, saved: int) -> None:
        self._committed = True
        self._saved_count = saved
        self._move(Phase.DONE)

    def reset(self) -> Phase:
        """Abandon everything and return to ``idle``; in-flight work is discarded."""

        with self._lock:
            self._generation += 1
            previous = self._phase
            self._clear()
            _logger.info("session:reset from=%s generation=%d", previous, self._generation)
            return self._phase

    def snapshot(self) -> dict[str, Any]:
        """Plain-data view of the session for display or logging."""

        with self._lock:
            return {
                "phase": str(self._phase),
                "import_type": str(self._import_type) if self._import_type else None,
                "date_format": str(self._date_format) if self._date_format else None,
                "parsed": len(self._classified),
                "needs_review": len(self._review.needs_review),
                "reviewed": len(self._review.review_categories),
                "duplicates": len(self._duplicates),
                "selected_duplicates": len(self._selected_duplicate_rows),
                "saved": self._saved_count,
                "errors": list(self._errors),
                "terminal": self._phase in _TERMINAL,
            }


__all__ = ["ImportSession"]
