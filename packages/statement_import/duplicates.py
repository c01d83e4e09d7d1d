"""Pre-commit duplicate detection against stored transactions.

A candidate duplicates a stored transaction when merchant key, amount (to the
cent), calendar day and kind all match. Identical purchases on the same day
are legitimately possible, so the detector only reports matches; dropping a
duplicate is always an explicit caller decision.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from typing import Protocol

from .logging_setup import get_logger
from .models import DuplicateCandidate, ExistingTransaction, ParsedTransaction
from .persistence import fingerprint_transaction

_logger = get_logger("statement_import.duplicates")


class StoredTransactionReader(Protocol):
    def find_by_fingerprints(
        self, fingerprints: Collection[str]
    ) -> Mapping[str, ExistingTransaction]: ...


class DuplicateDetector:
    def __init__(self, reader: StoredTransactionReader) -> None:
        self.reader = reader

    def detect(
        self, candidates: Sequence[ParsedTransaction]
    ) -> tuple[list[DuplicateCandidate], int]:
        """Return ``(duplicates, unique_count)`` for ``candidates``.

        ``len(duplicates) + unique_count == len(candidates)`` always holds.
        """

        fingerprints = [fingerprint_transaction(tx) for tx in candidates]
        existing = self.reader.find_by_fingerprints(set(fingerprints)) if candidates else {}
        duplicates = [
            DuplicateCandidate(incoming=tx, existing_match=existing[fp])
            for tx, fp in zip(candidates, fingerprints, strict=True)
            if fp in existing
        ]
        unique_count = len(candidates) - len(duplicates)
        _logger.info(
            "duplicates:checked candidates=%d duplicates=%d unique=%d",
            len(candidates),
            len(duplicates),
            unique_count,
        )
        return duplicates, unique_count


__all__ = ["DuplicateDetector", "StoredTransactionReader"]
