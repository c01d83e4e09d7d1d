# ruff: noqa: I001
"""Persistence for committed transactions and the merchant category memory.

Both stores live in the shared database owned by ``libs/db`` and use the
SQLAlchemy ORM models in ``db.models.ledger`` with sessions from
``db.client``. Each store instance is bound to one user.

Scope:
- ``SqlTransactionRepository``: duplicate lookups by fingerprint and
  insert-or-ignore commits keyed by ``(user_id, import_id, source_row)``.
- ``SqlMerchantCategoryCache``: merchant → category memory, where a manual
  choice is never overwritten by a model suggestion.
- ``learn_merchants``: teach the cache from a committed batch.

Writes use dialect-specific ``INSERT .. ON CONFLICT`` (PostgreSQL, SQLite).
Every ``SQLAlchemyError`` surfaces as ``RepositoryError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Collection, Iterable, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, not_, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import SiMerchantCategory, SiTransaction
from .errors import RepositoryError
from .logging_setup import get_logger
from .models import (
    CachedCategory,
    CommitRecord,
    ExistingTransaction,
    ParsedTransaction,
    TransactionKind,
)
from .normalizers import merchant_key, quantize_amount

_INSERT_BATCH = 500

_logger = get_logger("statement_import.persistence")


def compute_fingerprint(
    *, merchant_name: str, amount: Decimal, occurred_on: date, kind: TransactionKind | str
) -> str:
    """Return the duplicate-matching fingerprint.

    sha256 over canonical JSON of the merchant key, the amount at two decimals,
    the ISO date and the kind. Equal inputs always give equal fingerprints.
    """

    payload = {
        "merchant_key": merchant_key(merchant_name),
        "amount": f"{quantize_amount(Decimal(amount)):.2f}",
        "date": occurred_on.isoformat(),
        "kind": str(kind),
    }
    s = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def fingerprint_transaction(tx: ParsedTransaction) -> str:
    return compute_fingerprint(
        merchant_name=tx.merchant_name,
        amount=tx.amount,
        occurred_on=tx.occurred_on,
        kind=tx.kind,
    )


def _dialect_insert(session: Session) -> Any:
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return pg_insert
    if name == "sqlite":
        return sqlite_insert
    raise RepositoryError(f"unsupported database dialect: {name}")


class SqlTransactionRepository:
    def __init__(self, user_id: str, *, database_url: str | None = None) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self.user_id = user_id
        self.database_url = database_url

    def find_by_fingerprints(
        self, fingerprints: Collection[str]
    ) -> dict[str, ExistingTransaction]:
        """Map each matched fingerprint to its earliest stored transaction."""

        if not fingerprints:
            return {}
        found: dict[str, ExistingTransaction] = {}
        wanted = sorted(set(fingerprints))
        try:
            with session_scope(database_url=self.database_url) as session:
                for base in range(0, len(wanted), _INSERT_BATCH):
                    chunk = wanted[base : base + _INSERT_BATCH]
                    rows = session.execute(
                        select(SiTransaction)
                        .where(
                            SiTransaction.user_id == self.user_id,
                            SiTransaction.fingerprint.in_(chunk),
                        )
                        .order_by(SiTransaction.id)
                    ).scalars()
                    for row in rows:
                        if row.fingerprint in found:
                            continue
                        found[row.fingerprint] = ExistingTransaction(
                            id=row.id,
                            occurred_on=row.occurred_on,
                            amount=Decimal(row.amount),
                            description=row.merchant,
                            kind=TransactionKind(row.kind),
                        )
        except SQLAlchemyError as e:
            raise RepositoryError(f"duplicate lookup failed: {e}") from e
        return found

    def save(self, records: Sequence[CommitRecord], *, import_id: str) -> int:
        """Insert ``records``; rows already written for this import are skipped.

        Returns the number of newly inserted rows.
        """

        if not records:
            return 0
        values: list[dict[str, Any]] = []
        for pos, rec in enumerate(records, start=1):
            occurred_on = date.fromisoformat(rec.date)
            values.append(
                {
                    "user_id": self.user_id,
                    "import_id": import_id,
                    "source_row": rec.row_number if rec.row_number is not None else pos,
                    "merchant": rec.merchant_name,
                    "merchant_key": merchant_key(rec.merchant_name),
                    "amount": quantize_amount(rec.amount),
                    "occurred_on": occurred_on,
                    "kind": str(rec.kind),
                    "category": rec.category,
                    "is_manual_category": rec.is_manual_category,
                    "fingerprint": compute_fingerprint(
                        merchant_name=rec.merchant_name,
                        amount=rec.amount,
                        occurred_on=occurred_on,
                        kind=rec.kind,
                    ),
                }
            )

        inserted = 0
        try:
            with session_scope(database_url=self.database_url) as session:
                insert = _dialect_insert(session)
                for base in range(0, len(values), _INSERT_BATCH):
                    stmt = (
                        insert(SiTransaction)
                        .values(values[base : base + _INSERT_BATCH])
                        .on_conflict_do_nothing(
                            index_elements=[
                                SiTransaction.user_id,
                                SiTransaction.import_id,
                                SiTransaction.source_row,
                            ]
                        )
                    )
                    result = session.execute(stmt)
                    inserted += max(result.rowcount or 0, 0)
        except SQLAlchemyError as e:
            raise RepositoryError(f"saving transactions failed: {e}") from e

        _logger.info(
            "persistence:saved import_id=%s records=%d inserted=%d",
            import_id,
            len(records),
            inserted,
        )
        return inserted


class SqlMerchantCategoryCache:
    def __init__(self, user_id: str, *, database_url: str | None = None) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self.user_id = user_id
        self.database_url = database_url

    def lookup(self, merchant_key: str, kind: TransactionKind) -> CachedCategory | None:
        try:
            with session_scope(database_url=self.database_url) as session:
                row = session.execute(
                    select(SiMerchantCategory).where(
                        SiMerchantCategory.user_id == self.user_id,
                        SiMerchantCategory.merchant_key == merchant_key,
                        SiMerchantCategory.kind == str(kind),
                    )
                ).scalar_one_or_none()
                if row is None:
                    return None
                return CachedCategory(
                    category=row.category, is_manual=row.is_manual, always_ask=row.always_ask
                )
        except SQLAlchemyError as e:
            raise RepositoryError(f"merchant cache lookup failed: {e}") from e

    def remember(
        self, merchant_key: str, kind: TransactionKind, category: str, *, is_manual: bool
    ) -> None:
        """Upsert the merchant's category.

        ``is_manual`` is only ever raised, and a manual category is left alone
        when the new value comes from the model.
        """

        if not merchant_key:
            return
        table = SiMerchantCategory.__table__
        try:
            with session_scope(database_url=self.database_url) as session:
                insert = _dialect_insert(session)
                stmt = insert(SiMerchantCategory).values(
                    user_id=self.user_id,
                    merchant_key=merchant_key,
                    kind=str(kind),
                    category=category,
                    is_manual=is_manual,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.user_id, table.c.merchant_key, table.c.kind],
                    set_={
                        "category": stmt.excluded.category,
                        "is_manual": or_(table.c.is_manual, stmt.excluded.is_manual),
                        "updated_at": func.now(),
                    },
                    where=not_(and_(table.c.is_manual, not_(stmt.excluded.is_manual))),
                )
                session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryError(f"merchant cache update failed: {e}") from e

    def set_always_ask(self, merchant_key: str, kind: TransactionKind, always_ask: bool) -> bool:
        """Flag a remembered merchant for review on every import.

        Returns False when the merchant is not remembered yet.
        """

        try:
            with session_scope(database_url=self.database_url) as session:
                row = session.execute(
                    select(SiMerchantCategory).where(
                        SiMerchantCategory.user_id == self.user_id,
                        SiMerchantCategory.merchant_key == merchant_key,
                        SiMerchantCategory.kind == str(kind),
                    )
                ).scalar_one_or_none()
                if row is None:
                    return False
                row.always_ask = always_ask
                return True
        except SQLAlchemyError as e:
            raise RepositoryError(f"merchant cache update failed: {e}") from e


def learn_merchants(cache: Any, records: Iterable[CommitRecord]) -> int:
    """Teach ``cache`` the category of every merchant in ``records``.

    Per ``(merchant_key, kind)`` a manual choice wins over a model one; among
    equals the last record wins. Returns the number of merchants learned.
    """

    learned: dict[tuple[str, TransactionKind], tuple[str, bool]] = {}
    for rec in records:
        key = merchant_key(rec.merchant_name)
        if not key:
            continue
        slot = (key, rec.kind)
        prev = learned.get(slot)
        if prev is not None and prev[1] and not rec.is_manual_category:
            continue
        learned[slot] = (rec.category, rec.is_manual_category)
    for (key, kind), (category, is_manual) in learned.items():
        cache.remember(key, kind, category, is_manual=is_manual)
    return len(learned)


__all__ = [
    "SqlMerchantCategoryCache",
    "SqlTransactionRepository",
    "compute_fingerprint",
    "fingerprint_transaction",
    "learn_merchants",
]
