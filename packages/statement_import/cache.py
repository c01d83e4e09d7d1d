"""In-process merchant category memory.

Same contract as :class:`~statement_import.persistence.SqlMerchantCategoryCache`
without a database: used by the CLI when no database is configured and as the cache in
tests. A manual category is never replaced by a model suggestion and
``is_manual`` is only ever raised.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

from .models import CachedCategory, TransactionKind


class InMemoryCategoryCache:
    def __init__(
        self, entries: Iterable[tuple[str, TransactionKind, CachedCategory]] = ()
    ) -> None:
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, TransactionKind], CachedCategory] = {
            (key, kind): entry for key, kind, entry in entries
        }
        self.lookups: list[tuple[str, TransactionKind]] = []

    def lookup(self, merchant_key: str, kind: TransactionKind) -> CachedCategory | None:
        with self._lock:
            self.lookups.append((merchant_key, kind))
            return self._entries.get((merchant_key, kind))

    def remember(
        self, merchant_key: str, kind: TransactionKind, category: str, *, is_manual: bool
    ) -> None:
        if not merchant_key:
            return
        with self._lock:
            prev = self._entries.get((merchant_key, kind))
            if prev is not None and prev.is_manual and not is_manual:
                return
            self._entries[(merchant_key, kind)] = CachedCategory(
                category=category,
                is_manual=is_manual or (prev.is_manual if prev else False),
                always_ask=prev.always_ask if prev else False,
            )

    def set_always_ask(self, merchant_key: str, kind: TransactionKind, always_ask: bool) -> bool:
        with self._lock:
            prev = self._entries.get((merchant_key, kind))
            if prev is None:
                return False
            self._entries[(merchant_key, kind)] = CachedCategory(
                category=prev.category, is_manual=prev.is_manual, always_ask=always_ask
            )
            return True

    def snapshot(self) -> dict[tuple[str, TransactionKind], CachedCategory]:
        with self._lock:
            return dict(self._entries)


__all__ = ["InMemoryCategoryCache"]
