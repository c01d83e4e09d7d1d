"""In-memory stand-ins for the classification service and the repository.

Both record what they were asked so tests can assert on call patterns, and
both can be told to fail to exercise degradation paths.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Collection, Mapping, Sequence
from datetime import date
from decimal import Decimal

from statement_import.errors import ClassificationServiceError, RepositoryError
from statement_import.models import (
    CommitRecord,
    ExistingTransaction,
    MerchantQuery,
    ParsedTransaction,
    ServiceDecision,
    TransactionKind,
)
from statement_import.persistence import compute_fingerprint


def make_tx(
    row_number: int,
    merchant: str,
    amount: str | int = "10.00",
    *,
    occurred_on: date = date(2024, 3, 15),
    kind: TransactionKind = TransactionKind.EXPENSE,
    category: str | None = None,
) -> ParsedTransaction:
    return ParsedTransaction(
        row_number=row_number,
        merchant_name=merchant,
        amount=Decimal(str(amount)),
        occurred_on=occurred_on,
        kind=kind,
        category=category,
    )


class FakeService:
    """Answers from a ``merchant name -> (category, confidence)`` table.

    Unknown merchants get ``(None, 0.0)``. ``fail_when`` makes a whole page
    raise when it returns True for the page's merchant names.
    """

    def __init__(
        self,
        answers: Mapping[str, tuple[str | None, float]] | None = None,
        *,
        fail_when: Callable[[list[str]], bool] | None = None,
        before_return: Callable[[], None] | None = None,
    ) -> None:
        self.answers = dict(answers or {})
        self.fail_when = fail_when
        self.before_return = before_return
        self.calls: list[list[MerchantQuery]] = []
        self._lock = threading.Lock()

    @property
    def asked(self) -> list[str]:
        return [q.merchant_name for page in self.calls for q in page]

    def classify(self, items: Sequence[MerchantQuery]) -> list[ServiceDecision]:
        with self._lock:
            self.calls.append(list(items))
        names = [q.merchant_name for q in items]
        if self.fail_when is not None and self.fail_when(names):
            raise ClassificationServiceError("service unavailable")
        if self.before_return is not None:
            self.before_return()
        out: list[ServiceDecision] = []
        for q in items:
            category, confidence = self.answers.get(q.merchant_name, (None, 0.0))
            out.append(ServiceDecision(category=category, confidence=confidence))
        return out


class FakeRepository:
    """Keeps committed rows in a list; idempotent per ``(import_id, row_number)``."""

    def __init__(self, *, fail_on_save: bool = False, fail_on_lookup: bool = False) -> None:
        self.rows: list[tuple[str, CommitRecord]] = []
        self.fail_on_save = fail_on_save
        self.fail_on_lookup = fail_on_lookup
        self.save_calls = 0

    def add_existing(self, record: CommitRecord) -> None:
        self.rows.append(("existing", record))

    def _fingerprint(self, rec: CommitRecord) -> str:
        return compute_fingerprint(
            merchant_name=rec.merchant_name,
            amount=rec.amount,
            occurred_on=date.fromisoformat(rec.date),
            kind=rec.kind,
        )

    def find_by_fingerprints(
        self, fingerprints: Collection[str]
    ) -> dict[str, ExistingTransaction]:
        if self.fail_on_lookup:
            raise RepositoryError("database unavailable")
        found: dict[str, ExistingTransaction] = {}
        for i, (_import_id, rec) in enumerate(self.rows, start=1):
            fp = self._fingerprint(rec)
            if fp in fingerprints and fp not in found:
                found[fp] = ExistingTransaction(
                    id=i,
                    occurred_on=date.fromisoformat(rec.date),
                    amount=rec.amount,
                    description=rec.merchant_name,
                    kind=rec.kind,
                )
        return found

    def save(self, records: Sequence[CommitRecord], *, import_id: str) -> int:
        self.save_calls += 1
        if self.fail_on_save:
            raise RepositoryError("database unavailable")
        seen = {(i, r.row_number) for i, r in self.rows}
        inserted = 0
        for rec in records:
            if (import_id, rec.row_number) in seen:
                continue
            self.rows.append((import_id, rec))
            seen.add((import_id, rec.row_number))
            inserted += 1
        return inserted

    def saved(self, import_id: str) -> list[CommitRecord]:
        return [r for i, r in self.rows if i == import_id]
