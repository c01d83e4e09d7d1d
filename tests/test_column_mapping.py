import json
from typing import Any

import pytest

from statement_import.column_mapping import OpenAIColumnMapper, parse_column_answer
from statement_import.models import ColumnMapping
from tests.helpers.openai_stub import StatusError, StubResponse

HEADER = ("Posted", "Payee", "Value")
SAMPLE = ("15/03/2024", "Cafe Aroma", "32.00")


class _ColumnsClient:
    def __init__(self, answer: dict[str, Any] | None = None, error: Exception | None = None):
        self.calls: list[dict[str, Any]] = []
        outer = self

        class _Responses:
            def create(self, **kwargs):
                outer.calls.append(kwargs)
                if error is not None:
                    raise error
                return StubResponse(json.dumps(answer))

        self.responses = _Responses()


def _mapper(client: _ColumnsClient) -> OpenAIColumnMapper:
    return OpenAIColumnMapper(model="gpt-test", client_factory=lambda: client)


def test_maps_columns_from_the_model_answer():
    client = _ColumnsClient({"date_index": 0, "amount_index": 2, "merchant_index": 1})
    assert _mapper(client).map_columns(HEADER, SAMPLE) == ColumnMapping(
        date=0, amount=2, merchant=1
    )

    (call,) = client.calls
    assert call["model"] == "gpt-test"
    assert call["text"]["format"]["name"] == "statement_columns"
    assert "[0] Posted, [1] Payee, [2] Value" in call["input"]
    assert "[1] Cafe Aroma" in call["input"]


@pytest.mark.parametrize(
    "answer",
    [
        {"date_index": 0, "amount_index": 2, "merchant_index": -1},
        {"date_index": 0, "amount_index": 3, "merchant_index": 1},
        {"date_index": 0, "amount_index": 0, "merchant_index": 1},
        {"date_index": 0, "amount_index": 2},
        {"date_index": 0, "amount_index": 2, "merchant_index": 1, "balance_index": 3},
    ],
)
def test_unusable_answers_are_ignored(answer):
    assert parse_column_answer(answer, width=3) is None
    assert _mapper(_ColumnsClient(answer)).map_columns(HEADER, SAMPLE) is None


def test_service_failure_is_not_fatal():
    client = _ColumnsClient(error=StatusError(503))
    assert _mapper(client).map_columns(HEADER, SAMPLE) is None
    assert len(client.calls) == 1


def test_nothing_is_sent_for_an_empty_sample_or_oversized_header():
    client = _ColumnsClient({"date_index": 0, "amount_index": 2, "merchant_index": 1})
    mapper = _mapper(client)
    assert mapper.map_columns(HEADER, (None, "  ", None)) is None
    assert mapper.map_columns(("x" * 300, "y" * 300), ("a", "b")) is None
    assert client.calls == []
