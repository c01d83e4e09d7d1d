"""Commit protocol: duplicate check, then write, then learn merchants.

``check_and_save`` is called twice in the usual flow: first with
``skip_duplicate_check=False``, which writes nothing when duplicates exist and
returns them instead, then with ``skip_duplicate_check=True`` once the user
has decided which duplicates to keep.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Protocol

from .categories import resolve_commit_category
from .classifier import CategoryCache
from .duplicates import DuplicateDetector, StoredTransactionReader
from .errors import ValidationError
from .logging_setup import get_logger
from .models import CommitRecord, SaveOutcome
from .normalizers import quantize_amount
from .persistence import learn_merchants

_logger = get_logger("statement_import.commit")


class TransactionRepository(StoredTransactionReader, Protocol):
    def save(self, records: Sequence[CommitRecord], *, import_id: str) -> int: ...


def _validated(records: Sequence[CommitRecord]) -> list[CommitRecord]:
    out: list[CommitRecord] = []
    for pos, rec in enumerate(records, start=1):
        where = f"record {pos}" if rec.row_number is None else f"row {rec.row_number}"
        if not rec.merchant_name or not rec.merchant_name.strip():
            raise ValidationError(f"{where}: merchant name is required")
        if not isinstance(rec.amount, Decimal) or not rec.amount.is_finite() or rec.amount <= 0:
            raise ValidationError(f"{where}: amount must be a positive decimal")
        if quantize_amount(rec.amount) == 0:
            raise ValidationError(f"{where}: amount rounds to zero")
        try:
            date.fromisoformat(rec.date)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{where}: date must be ISO-8601 (YYYY-MM-DD)") from e
        category = resolve_commit_category(rec.category, rec.kind)
        if category != rec.category:
            rec = replace(rec, category=category)
        out.append(rec)
    return out


def check_and_save(
    repository: TransactionRepository,
    records: Sequence[CommitRecord],
    *,
    skip_duplicate_check: bool,
    cache: CategoryCache | None = None,
    import_id: str | None = None,
) -> SaveOutcome:
    """Persist ``records`` unless unresolved duplicates exist.

    Unknown categories are stored as ``other``. Raises ``ValidationError`` for
    malformed records and lets ``RepositoryError`` propagate.
    """

    if not records:
        raise ValidationError("no transactions to save")
    checked = _validated(records)

    if not skip_duplicate_check:
        duplicates, _unique = DuplicateDetector(repository).detect(
            [r.to_transaction() for r in checked]
        )
        if duplicates:
            return SaveOutcome(saved=0, has_duplicates=True, duplicates=tuple(duplicates))

    saved = repository.save(checked, import_id=import_id or uuid.uuid4().hex)
    learned = learn_merchants(cache, checked) if cache is not None else 0
    _logger.info(
        "commit:saved records=%d saved=%d learned_merchants=%d skip_duplicate_check=%s",
        len(checked),
        saved,
        learned,
        skip_duplicate_check,
    )
    return SaveOutcome(saved=saved, has_duplicates=False, learned_merchants=learned)


__all__ = ["TransactionRepository", "check_and_save"]
