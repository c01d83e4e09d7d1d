"""Cache-first transaction classification with a service fallback.

Order of resolution for each parsed transaction:

1. The merchant category cache, keyed by ``(merchant_key, kind)``. A hit
   flagged ``always_ask`` is sent to review instead.
2. The classification service, once per distinct ``(merchant_key, kind)``
   among cache misses. Pages of merchants run concurrently; a failed page
   degrades its merchants to review and never fails the import.
3. Anything the service declines, or answers below the confidence
   threshold, goes to review.

Results are merged by row number, so the output does not depend on which
page finished first.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .errors import StaleResultError
from .logging_setup import get_logger
from .models import (
    CachedCategory,
    ClassificationResult,
    ClassificationSource,
    ClassificationStats,
    MerchantQuery,
    ParsedTransaction,
    ServiceDecision,
    TransactionKind,
)
from .normalizers import merchant_key
from .pmap import p_map

_logger = get_logger("statement_import.classifier")

type MerchantSlot = tuple[str, TransactionKind]


class CategoryCache(Protocol):
    def lookup(self, merchant_key: str, kind: TransactionKind) -> CachedCategory | None: ...

    def remember(
        self, merchant_key: str, kind: TransactionKind, category: str, *, is_manual: bool
    ) -> None: ...


class ClassificationService(Protocol):
    def classify(self, items: Sequence[MerchantQuery]) -> Sequence[ServiceDecision]: ...


@dataclass(frozen=True, slots=True)
class ClassificationOutcome:
    results: tuple[ClassificationResult, ...]
    stats: ClassificationStats

    @property
    def classified(self) -> tuple[ParsedTransaction, ...]:
        """Transactions that already carry a category."""

        return tuple(r.transaction for r in self.results if not r.needs_review)

    @property
    def needs_review(self) -> tuple[ParsedTransaction, ...]:
        return tuple(r.transaction for r in self.results if r.needs_review)


class Classifier:
    def __init__(
        self,
        cache: CategoryCache,
        service: ClassificationService | None,
        *,
        confidence_threshold: float = 0.7,
        chunk_size: int = 25,
        concurrency: int = 4,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.cache = cache
        self.service = service
        self.confidence_threshold = confidence_threshold
        self.chunk_size = chunk_size
        self.concurrency = concurrency

    def classify(
        self,
        parsed: Sequence[ParsedTransaction],
        *,
        parse_error_count: int = 0,
        should_stop: Callable[[], bool] | None = None,
    ) -> ClassificationOutcome:
        ordered = sorted(parsed, key=lambda t: t.row_number)

        cached: dict[MerchantSlot, CachedCategory | None] = {}
        misses: dict[MerchantSlot, MerchantQuery] = {}
        for tx in ordered:
            slot = (merchant_key(tx.merchant_name), tx.kind)
            if slot not in cached:
                cached[slot] = self.cache.lookup(slot[0], slot[1])
            if cached[slot] is None and slot not in misses:
                misses[slot] = MerchantQuery(tx.merchant_name, tx.kind, tx.amount)

        decisions = self._ask_service(list(misses.items()), should_stop=should_stop)
        if should_stop is not None and should_stop():
            raise StaleResultError("classification finished after the session moved on")

        results: list[ClassificationResult] = []
        cached_n = ai_n = review_n = 0
        for tx in ordered:
            slot = (merchant_key(tx.merchant_name), tx.kind)
            hit = cached[slot]
            if hit is not None and not hit.always_ask:
                results.append(
                    ClassificationResult(
                        tx.with_category(hit.category), ClassificationSource.CACHE, 1.0
                    )
                )
                cached_n += 1
                continue
            decision = decisions.get(slot) if hit is None else None
            category = self._confident_category(decision)
            if decision is not None and category is not None:
                results.append(
                    ClassificationResult(
                        tx.with_category(category),
                        ClassificationSource.AI_SERVICE,
                        decision.confidence,
                    )
                )
                ai_n += 1
            else:
                results.append(
                    ClassificationResult(
                        tx.with_category(None),
                        ClassificationSource.MANUAL_PENDING,
                        decision.confidence if decision is not None else None,
                    )
                )
                review_n += 1

        for slot, decision in decisions.items():
            category = self._confident_category(decision)
            if category is not None:
                self.cache.remember(slot[0], slot[1], category, is_manual=False)

        stats = ClassificationStats(
            cached_count=cached_n,
            ai_classified_count=ai_n,
            needs_review_count=review_n,
            parse_error_count=parse_error_count,
        )
        _logger.info(
            "classify:done total=%d cached=%d ai=%d needs_review=%d parse_errors=%d",
            len(ordered),
            cached_n,
            ai_n,
            review_n,
            parse_error_count,
        )
        return ClassificationOutcome(results=tuple(results), stats=stats)

    def _confident_category(self, decision: ServiceDecision | None) -> str | None:
        """The decided category when it clears the threshold, else ``None``."""

        if decision is None or decision.confidence < self.confidence_threshold:
            return None
        return decision.category

    def _ask_service(
        self,
        misses: list[tuple[MerchantSlot, MerchantQuery]],
        *,
        should_stop: Callable[[], bool] | None,
    ) -> dict[MerchantSlot, ServiceDecision | None]:
        if not misses:
            return {}
        if self.service is None:
            _logger.warning("classify:no_service merchants=%d", len(misses))
            return {slot: None for slot, _ in misses}

        service = self.service
        chunks = [
            misses[base : base + self.chunk_size] for base in range(0, len(misses), self.chunk_size)
        ]

        def _run_chunk(
            indexed: tuple[int, list[tuple[MerchantSlot, MerchantQuery]]],
        ) -> list[tuple[MerchantSlot, ServiceDecision | None]]:
            chunk_index, chunk = indexed
            queries = [q for _, q in chunk]
            try:
                decisions = list(service.classify(queries))
                if len(decisions) != len(queries):
                    raise ValueError(
                        f"service returned {len(decisions)} decisions for {len(queries)} merchants"
                    )
            except Exception as e:  # noqa: BLE001 - degrade the page to review
                _logger.warning(
                    "classify:chunk_failed chunk_index=%d merchants=%d error=%s",
                    chunk_index,
                    len(queries),
                    e.__class__.__name__,
                )
                return [(slot, None) for slot, _ in chunk]
            return [(slot, d) for (slot, _), d in zip(chunk, decisions, strict=True)]

        pages = p_map(
            list(enumerate(chunks)),
            _run_chunk,
            concurrency=max(1, min(self.concurrency, len(chunks))),
            should_stop=should_stop,
        )
        merged: dict[MerchantSlot, ServiceDecision | None] = {slot: None for slot, _ in misses}
        for page in pages:
            merged.update(page)
        return merged


__all__ = ["CategoryCache", "ClassificationOutcome", "ClassificationService", "Classifier"]
