from decimal import Decimal
from typing import Any

import pytest

import statement_import.categorize as categorize_mod
from statement_import.categorization import parse_and_align_decisions
from statement_import.categorize import OpenAIClassificationService
from statement_import.errors import ClassificationServiceError
from statement_import.models import MerchantQuery, ServiceDecision, TransactionKind
from tests.helpers.openai_stub import (
    OpenAIStub,
    StatusError,
    StubResponse,
    extract_merchants_from_user_content,
)

EXPENSE = TransactionKind.EXPENSE
INCOME = TransactionKind.INCOME


def _decide(item: dict[str, Any]) -> tuple[str | None, float]:
    merchant = item["merchant"].upper()
    if "NETFLIX" in merchant:
        return "subscriptions", 0.95
    if "ACME" in merchant:
        return "salary", 0.9
    if "WOLT" in merchant:
        # Income category for an expense merchant: must not be accepted.
        return "salary", 0.99
    return None, 0.2


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(categorize_mod, "_sleep_backoff", lambda attempt_no: None)


def _queries() -> list[MerchantQuery]:
    return [
        MerchantQuery("NETFLIX.COM", EXPENSE, Decimal("49.90")),
        MerchantQuery("Salary ACME Ltd", INCOME, Decimal("12000")),
        MerchantQuery("Wolt", EXPENSE, None),
        MerchantQuery("Mystery Shop", EXPENSE, Decimal("5")),
    ]


def test_classify_returns_one_decision_per_merchant_in_order():
    stub = OpenAIStub(_decide)
    service = OpenAIClassificationService(model="gpt-test", client_factory=lambda: stub)

    decisions = service.classify(_queries())

    assert decisions == [
        ServiceDecision("subscriptions", 0.95),
        ServiceDecision("salary", 0.9),
        ServiceDecision(None, 0.0),
        ServiceDecision(None, 0.0),
    ]
    assert len(stub.calls) == 1
    call = stub.calls[0]
    assert call["model"] == "gpt-test"
    assert call["text"]["format"]["name"] == "merchant_categories"
    assert call["text"]["format"]["strict"] is True
    assert "BEGIN_MERCHANTS_JSON" in call["input"]


def test_payload_carries_kind_and_sample_amount():
    stub = OpenAIStub(_decide)
    OpenAIClassificationService(client_factory=lambda: stub).classify(_queries()[:3])

    items = extract_merchants_from_user_content(stub.calls[0]["input"])
    assert items[0] == {
        "idx": 0,
        "merchant": "NETFLIX.COM",
        "kind": "expense",
        "sample_amount": "49.90",
    }
    assert items[2]["sample_amount"] is None


def test_default_client_is_openai(monkeypatch: pytest.MonkeyPatch):
    stub = OpenAIStub(_decide)
    monkeypatch.setattr(categorize_mod, "OpenAI", lambda: stub)
    decisions = OpenAIClassificationService().classify(_queries()[:1])
    assert decisions == [ServiceDecision("subscriptions", 0.95)]
    assert stub.calls[0]["model"] == "gpt-5-mini"


def test_empty_input_makes_no_call():
    stub = OpenAIStub(_decide)
    assert OpenAIClassificationService(client_factory=lambda: stub).classify([]) == []
    assert stub.calls == []


@pytest.mark.parametrize("status", [429, 500, 503])
def test_transient_errors_are_retried(status: int):
    stub = OpenAIStub(_decide, failures=[StatusError(status)])
    service = OpenAIClassificationService(client_factory=lambda: stub)
    assert service.classify(_queries()[:1]) == [ServiceDecision("subscriptions", 0.95)]
    assert len(stub.calls) == 2


def test_retries_are_bounded():
    stub = OpenAIStub(_decide, failures=[StatusError(500)] * 5)
    service = OpenAIClassificationService(client_factory=lambda: stub)
    with pytest.raises(ClassificationServiceError):
        service.classify(_queries()[:1])
    assert len(stub.calls) == 3


def test_client_errors_are_not_retried():
    stub = OpenAIStub(_decide, failures=[StatusError(400)])
    service = OpenAIClassificationService(client_factory=lambda: stub)
    with pytest.raises(ClassificationServiceError):
        service.classify(_queries()[:1])
    assert len(stub.calls) == 1


def test_malformed_output_fails_without_retry():
    calls: list[dict[str, Any]] = []

    class _Responses:
        def create(self, **kwargs):
            calls.append(kwargs)
            return StubResponse("not json")

    class _Client:
        responses = _Responses()

    service = OpenAIClassificationService(client_factory=_Client)
    with pytest.raises(ClassificationServiceError):
        service.classify(_queries()[:1])
    assert len(calls) == 1


def test_alignment_follows_idx_not_position():
    body = {
        "results": [
            {"idx": 1, "category": "Salary", "confidence": 0.8},
            {"idx": 0, "category": "food", "confidence": 0.9},
        ]
    }
    assert parse_and_align_decisions(body, kinds=[EXPENSE, INCOME]) == [
        ServiceDecision("food", 0.9),
        ServiceDecision("salary", 0.8),
    ]


@pytest.mark.parametrize(
    "results",
    [
        [{"idx": 0, "category": "food", "confidence": 0.9}],
        [
            {"idx": 0, "category": "food", "confidence": 0.9},
            {"idx": 0, "category": "food", "confidence": 0.9},
        ],
        [
            {"idx": 0, "category": "food", "confidence": 0.9},
            {"idx": 5, "category": "food", "confidence": 0.9},
        ],
        [
            {"idx": 0, "category": "food", "confidence": 1.5},
            {"idx": 1, "category": "food", "confidence": 0.9},
        ],
    ],
)
def test_alignment_rejects_malformed_pages(results):
    with pytest.raises(ValueError):
        parse_and_align_decisions({"results": results}, kinds=[EXPENSE, EXPENSE])


def test_alignment_rejects_unexpected_top_level_keys():
    with pytest.raises(ValueError):
        parse_and_align_decisions({"results": [], "extra": 1}, kinds=[])
