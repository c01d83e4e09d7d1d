"""OpenAI fallback for locating statement columns.

Public API:
    - :class:`OpenAIColumnMapper`

Header keywords cover the common Israeli bank and card exports; for anything
else the mapper shows the model the header row and the first data row and
asks for the date, amount and merchant column indices. The answer is advisory:
any failure (HTTP error, malformed JSON, an index outside the row or the same
column twice) returns ``None`` and the caller keeps its keyword mapping.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from typing import Any

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from . import prompting
from .categorize import extract_response_json
from .logging_setup import get_logger
from .models import ColumnMapping

_DEFAULT_MODEL: str = "gpt-5-mini"
_MAX_HEADER_TEXT: int = 500

_logger = get_logger("statement_import.column_mapping")


class _ColumnAnswer(BaseModel):
    """Model answer; ``ValidationInfo.context`` carries the row ``width``."""

    model_config = ConfigDict(extra="forbid")

    date_index: int
    amount_index: int
    merchant_index: int

    @field_validator("date_index", "amount_index", "merchant_index")
    @classmethod
    def _inside_row(cls, v: int, info: ValidationInfo) -> int:
        width = (info.context or {}).get("width", 0)
        if not 0 <= v < width:
            raise ValueError(f"column index {v} is outside a row of {width} cells")
        return v


def parse_column_answer(body: Any, *, width: int) -> ColumnMapping | None:
    """Return the mapping in ``body`` or ``None`` when it is unusable."""

    try:
        answer = _ColumnAnswer.model_validate(body, context={"width": width})
    except PydanticValidationError:
        return None
    indices = (answer.date_index, answer.amount_index, answer.merchant_index)
    if len(set(indices)) != len(indices):
        return None
    return ColumnMapping(
        date=answer.date_index, amount=answer.amount_index, merchant=answer.merchant_index
    )


class OpenAIColumnMapper:
    """Map statement columns with the OpenAI Responses API.

    ``client_factory`` defaults to ``OpenAI`` (which reads ``OPENAI_API_KEY``).
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.model = model or _DEFAULT_MODEL
        self._client_factory = client_factory

    def _create_client(self) -> Any:
        if self._client_factory is not None:
            return self._client_factory()
        return OpenAI()

    def map_columns(self, header: Sequence[Any], sample: Sequence[Any]) -> ColumnMapping | None:
        if not any(c is not None and str(c).strip() for c in sample):
            return None
        header_text = " ".join("" if c is None else str(c) for c in header)
        if len(header_text) > _MAX_HEADER_TEXT:
            _logger.info("columns:mapper_skipped reason=long_header chars=%d", len(header_text))
            return None

        t0 = time.perf_counter()
        try:
            resp = self._create_client().responses.create(
                model=self.model,
                instructions=prompting.build_column_mapping_instructions(),
                input=prompting.build_column_mapping_content(header, sample),
                text={"format": prompting.build_column_mapping_format()},
            )
            body = extract_response_json(resp)
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "columns:mapper_failed latency_ms=%.2f error=%s",
                (time.perf_counter() - t0) * 1000.0,
                e.__class__.__name__,
            )
            return None

        mapping = parse_column_answer(body, width=max(len(header), len(sample)))
        _logger.info(
            "columns:mapper_done latency_ms=%.2f usable=%s",
            (time.perf_counter() - t0) * 1000.0,
            mapping is not None,
        )
        return mapping


__all__ = ["OpenAIColumnMapper", "parse_column_answer"]
