import threading
import time

import pytest

from statement_import.cache import InMemoryCategoryCache
from statement_import.classifier import Classifier
from statement_import.errors import StaleResultError
from statement_import.models import (
    CachedCategory,
    ClassificationSource,
    ServiceDecision,
    TransactionKind,
)
from tests.helpers.fakes import FakeService, make_tx

EXPENSE = TransactionKind.EXPENSE
INCOME = TransactionKind.INCOME


def _cache(**entries: str) -> InMemoryCategoryCache:
    return InMemoryCategoryCache(
        (key.replace("_", " "), EXPENSE, CachedCategory(category))
        for key, category in entries.items()
    )


def test_cache_first_then_service_then_review():
    cache = _cache(shufersal="food", super_pharm="health")
    service = FakeService({"Netflix": ("subscriptions", 0.95), "Cafe Aroma": (None, 0.0)})
    parsed = [
        make_tx(2, "Shufersal"),
        make_tx(4, "Cafe Aroma"),
        make_tx(5, "Netflix"),
        make_tx(6, "SUPER  PHARM"),
    ]

    outcome = Classifier(cache, service).classify(parsed, parse_error_count=1)

    sources = {r.transaction.merchant_name: r.source for r in outcome.results}
    assert sources == {
        "Shufersal": ClassificationSource.CACHE,
        "Cafe Aroma": ClassificationSource.MANUAL_PENDING,
        "Netflix": ClassificationSource.AI_SERVICE,
        "SUPER  PHARM": ClassificationSource.CACHE,
    }
    assert sorted(service.asked) == ["Cafe Aroma", "Netflix"]
    assert [t.merchant_name for t in outcome.needs_review] == ["Cafe Aroma"]
    assert outcome.needs_review[0].category is None
    assert {t.category for t in outcome.classified} == {"food", "health", "subscriptions"}
    stats = outcome.stats
    assert (stats.cached_count, stats.ai_classified_count, stats.needs_review_count) == (2, 1, 1)
    assert stats.parse_error_count == 1
    assert stats.total == 4


def test_each_distinct_merchant_is_asked_once_per_kind():
    service = FakeService({"Netflix": ("subscriptions", 0.9), "netflix": ("salary", 0.9)})
    parsed = [
        make_tx(2, "Netflix"),
        make_tx(3, "NETFLIX "),
        make_tx(4, "netflix", kind=INCOME),
    ]
    outcome = Classifier(InMemoryCategoryCache(), service).classify(parsed)

    asked = [(q.merchant_name, q.kind) for page in service.calls for q in page]
    assert asked == [("Netflix", EXPENSE), ("netflix", INCOME)]
    assert outcome.stats.ai_classified_count == 3
    categories = [t.category for t in outcome.classified]
    assert categories == ["subscriptions", "subscriptions", "salary"]


def test_low_confidence_goes_to_review_and_is_not_remembered():
    cache = InMemoryCategoryCache()
    service = FakeService({"Wolt": ("food", 0.5), "Netflix": ("subscriptions", 0.7)})
    outcome = Classifier(cache, service, confidence_threshold=0.7).classify(
        [make_tx(2, "Wolt"), make_tx(3, "Netflix")]
    )

    by_name = {r.transaction.merchant_name: r for r in outcome.results}
    assert by_name["Wolt"].source is ClassificationSource.MANUAL_PENDING
    assert by_name["Wolt"].confidence == 0.5
    assert by_name["Netflix"].source is ClassificationSource.AI_SERVICE
    assert cache.snapshot() == {("netflix", EXPENSE): CachedCategory("subscriptions")}


def test_service_outage_degrades_to_review():
    service = FakeService(fail_when=lambda names: True)
    cache = _cache(shufersal="food")
    outcome = Classifier(cache, service).classify([make_tx(2, "Shufersal"), make_tx(3, "Wolt")])

    assert outcome.stats.cached_count == 1
    assert outcome.stats.needs_review_count == 1
    assert outcome.stats.ai_classified_count == 0


def test_failed_page_only_affects_its_merchants():
    service = FakeService(
        {"A": ("food", 0.9), "B": ("food", 0.9), "C": ("food", 0.9)},
        fail_when=lambda names: "B" in names,
    )
    outcome = Classifier(InMemoryCategoryCache(), service, chunk_size=1).classify(
        [make_tx(1, "A"), make_tx(2, "B"), make_tx(3, "C")]
    )
    assert [t.merchant_name for t in outcome.needs_review] == ["B"]
    assert len(service.calls) == 3


def test_always_ask_overrides_cache_hit():
    cache = InMemoryCategoryCache(
        [("cafe aroma", EXPENSE, CachedCategory("food", is_manual=True, always_ask=True))]
    )
    service = FakeService()
    outcome = Classifier(cache, service).classify([make_tx(2, "Cafe Aroma")])

    assert outcome.results[0].source is ClassificationSource.MANUAL_PENDING
    assert service.calls == []


def test_no_service_sends_misses_to_review():
    outcome = Classifier(InMemoryCategoryCache(), None).classify(
        [make_tx(1, "A"), make_tx(2, "B")]
    )
    assert outcome.stats.needs_review_count == 2


def test_results_are_merged_by_row_number_regardless_of_completion_order():
    delays = {"M0": 0.05, "M1": 0.0, "M2": 0.03, "M3": 0.01}
    answered: list[str] = []
    lock = threading.Lock()

    class SlowService:
        def classify(self, items):
            time.sleep(delays[items[0].merchant_name])
            with lock:
                answered.append(items[0].merchant_name)
            return [ServiceDecision("food", 0.9) for _ in items]

    parsed = [make_tx(r, f"M{(r - 10) % 4}") for r in (13, 11, 10, 12)]
    outcome = Classifier(
        InMemoryCategoryCache(), SlowService(), chunk_size=1, concurrency=4
    ).classify(parsed)

    assert [r.transaction.row_number for r in outcome.results] == [10, 11, 12, 13]
    assert [r.transaction.merchant_name for r in outcome.results] == ["M0", "M1", "M2", "M3"]
    assert sorted(answered) == ["M0", "M1", "M2", "M3"]


def test_stop_request_discards_the_batch():
    service = FakeService({"A": ("food", 0.9)})
    with pytest.raises(StaleResultError):
        Classifier(InMemoryCategoryCache(), service).classify(
            [make_tx(1, "A")], should_stop=lambda: True
        )
    assert service.calls == []


def test_chunking_respects_chunk_size():
    service = FakeService()
    parsed = [make_tx(i, f"Shop {i}") for i in range(1, 8)]
    Classifier(InMemoryCategoryCache(), service, chunk_size=3).classify(parsed)
    assert sorted(len(page) for page in service.calls) == [1, 3, 3]
