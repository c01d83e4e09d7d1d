"""Data models for the statement import pipeline.

Everything produced by a pipeline stage is an immutable value. Stages never
mutate their inputs; the :class:`~statement_import.session.ImportSession`
replaces whole collections when a stage completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DateFormat(StrEnum):
    AUTO = "AUTO"
    DD_MM_YYYY = "DD/MM/YYYY"
    MM_DD_YYYY = "MM/DD/YYYY"
    YYYY_MM_DD = "YYYY-MM-DD"


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ImportType(StrEnum):
    """``expenses``: credit-card detail, all rows are spending.

    ``roundTrip``: bank statement carrying both income and expense rows.
    """

    EXPENSES = "expenses"
    ROUND_TRIP = "roundTrip"


class TransactionKind(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


class ClassificationSource(StrEnum):
    CACHE = "cache"
    AI_SERVICE = "ai_service"
    MANUAL_PENDING = "manual_pending"


class Phase(StrEnum):
    IDLE = "idle"
    TYPE_SELECTED = "type_selected"
    FORMAT_DETECTING = "format_detecting"
    FORMAT_CONFIRMED = "format_confirmed"
    PARSING = "parsing"
    CLASSIFYING = "classifying"
    REVIEWING = "reviewing"
    DUPLICATE_CHECK = "duplicate_check"
    SAVING = "saving"
    DONE = "done"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParsedTransaction:
    """One statement row after normalization.

    ``row_number`` is the 1-based line of the original file so error messages
    and review screens can point the user back at their statement. ``amount``
    is always positive; direction lives in ``kind``.
    """

    row_number: int
    merchant_name: str
    amount: Decimal
    occurred_on: date
    kind: TransactionKind
    category: str | None = None

    def with_category(self, category: str | None) -> ParsedTransaction:
        return replace(self, category=category)


@dataclass(frozen=True, slots=True)
class ParseError:
    row_number: int
    reason: str


MISSING_MERCHANT = "missing merchant"
INVALID_AMOUNT = "invalid amount"
INVALID_DATE = "invalid date"

_REASON_MESSAGES: dict[str, str] = {
    MISSING_MERCHANT: "the business name / description cell is empty",
    INVALID_AMOUNT: "the amount is missing, zero or not a number",
    INVALID_DATE: "the date does not match the selected date format",
}


def describe_parse_error(error: ParseError) -> str:
    """Return a user-facing sentence for a row error."""

    detail = _REASON_MESSAGES.get(error.reason, error.reason)
    return f"Row {error.row_number}: {detail}"


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    date: int
    amount: int
    merchant: int

    def as_dict(self) -> dict[str, int]:
        return {"date": self.date, "amount": self.amount, "merchant": self.merchant}


@dataclass(frozen=True, slots=True)
class DateFormatDetection:
    format: DateFormat | None
    confidence: Confidence
    is_excel_serial: bool
    samples: tuple[str, ...] = ()
    parsed_samples: tuple[str | None, ...] = ()

    @property
    def needs_manual_choice(self) -> bool:
        return self.format is None or self.confidence is Confidence.LOW


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CachedCategory:
    """Merchant memory entry returned by a category cache lookup."""

    category: str
    is_manual: bool = False
    always_ask: bool = False


@dataclass(frozen=True, slots=True)
class MerchantQuery:
    """One distinct merchant sent to the classification service."""

    merchant_name: str
    kind: TransactionKind
    sample_amount: Decimal | None = None


@dataclass(frozen=True, slots=True)
class ServiceDecision:
    """A classification service answer for one merchant.

    ``category`` is ``None`` when the service declined to classify.
    """

    category: str | None
    confidence: float = 0.0


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    transaction: ParsedTransaction
    source: ClassificationSource
    confidence: float | None = None

    @property
    def needs_review(self) -> bool:
        return self.source is ClassificationSource.MANUAL_PENDING


@dataclass(frozen=True, slots=True)
class ClassificationStats:
    cached_count: int = 0
    ai_classified_count: int = 0
    needs_review_count: int = 0
    parse_error_count: int = 0

    @property
    def total(self) -> int:
        return self.cached_count + self.ai_classified_count + self.needs_review_count

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "cached": self.cached_count,
            "ai_classified": self.ai_classified_count,
            "needs_review": self.needs_review_count,
            "parse_errors": self.parse_error_count,
        }


# ---------------------------------------------------------------------------
# Review and duplicates
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MerchantGroup:
    normalized_key: str
    display_name: str
    members: tuple[ParsedTransaction, ...]
    dominant_kind: TransactionKind

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def row_numbers(self) -> tuple[int, ...]:
        return tuple(m.row_number for m in self.members)


@dataclass(frozen=True, slots=True)
class ExistingTransaction:
    """A transaction already held by the repository."""

    id: int | str
    occurred_on: date
    amount: Decimal
    description: str
    kind: TransactionKind


@dataclass(frozen=True, slots=True)
class DuplicateCandidate:
    incoming: ParsedTransaction
    existing_match: ExistingTransaction

    def as_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.incoming.row_number,
            "merchant_name": self.incoming.merchant_name,
            "amount": str(self.incoming.amount),
            "date": self.incoming.occurred_on.isoformat(),
            "existing": {
                "id": self.existing_match.id,
                "date": self.existing_match.occurred_on.isoformat(),
                "amount": str(self.existing_match.amount),
                "description": self.existing_match.description,
            },
        }


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CommitRecord:
    """Plain record handed to the repository at commit time.

    ``date`` is an ISO-8601 ``YYYY-MM-DD`` string. ``row_number`` is carried so
    the repository can make repeated writes of the same import idempotent.
    """

    merchant_name: str
    amount: Decimal
    date: str
    kind: TransactionKind
    category: str
    is_manual_category: bool = False
    row_number: int | None = None

    @classmethod
    def from_transaction(
        cls, tx: ParsedTransaction, *, category: str, is_manual_category: bool
    ) -> CommitRecord:
        return cls(
            merchant_name=tx.merchant_name,
            amount=tx.amount,
            date=tx.occurred_on.isoformat(),
            kind=tx.kind,
            category=category,
            is_manual_category=is_manual_category,
            row_number=tx.row_number,
        )

    def to_transaction(self) -> ParsedTransaction:
        return ParsedTransaction(
            row_number=self.row_number or 0,
            merchant_name=self.merchant_name,
            amount=self.amount,
            occurred_on=date.fromisoformat(self.date),
            kind=self.kind,
            category=self.category,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "merchant_name": self.merchant_name,
            "amount": str(self.amount),
            "date": self.date,
            "kind": str(self.kind),
            "category": self.category,
            "is_manual_category": self.is_manual_category,
        }


@dataclass(frozen=True, slots=True)
class ClassifyOutcome:
    """Return value of :func:`statement_import.api.classify`."""

    parsed: tuple[ParsedTransaction, ...]
    needs_review: tuple[ParsedTransaction, ...]
    stats: ClassificationStats
    errors: tuple[ParseError, ...]
    header_row: int | None = None
    column_mapping: ColumnMapping | None = None
    results: tuple[ClassificationResult, ...] = ()


@dataclass(frozen=True, slots=True)
class SaveOutcome:
    saved: int
    has_duplicates: bool
    duplicates: tuple[DuplicateCandidate, ...] = ()
    learned_merchants: int = 0


@dataclass(frozen=True, slots=True)
class StatementTable:
    """One table found in a statement file (a file may hold several)."""

    header_index: int
    columns: ColumnMapping
    # (row_number, cells) pairs for the data rows of this table
    rows: tuple[tuple[int, tuple[Any, ...]], ...] = field(default_factory=tuple)


__all__ = [
    "INVALID_AMOUNT",
    "INVALID_DATE",
    "MISSING_MERCHANT",
    "CachedCategory",
    "ClassificationResult",
    "ClassificationSource",
    "ClassificationStats",
    "ClassifyOutcome",
    "ColumnMapping",
    "CommitRecord",
    "Confidence",
    "DateFormat",
    "DateFormatDetection",
    "DuplicateCandidate",
    "ExistingTransaction",
    "ImportType",
    "MerchantGroup",
    "MerchantQuery",
    "ParseError",
    "ParsedTransaction",
    "Phase",
    "SaveOutcome",
    "ServiceDecision",
    "StatementTable",
    "TransactionKind",
    "describe_parse_error",
]
