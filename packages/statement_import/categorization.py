"""Validation and alignment of classification service responses.

The model answers one item per merchant, keyed by the page-relative ``idx``
it was given. Parsing here is strict about shape (every ``idx`` exactly once)
and lenient about content: a category that is not valid for the merchant's
kind becomes ``None`` so the row goes to human review instead of failing the
page.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from .categories import validate_category
from .models import ServiceDecision, TransactionKind


class _DecisionItem(BaseModel):
    """One result item.

    ``ValidationInfo.context`` carries ``kinds``: the ``TransactionKind`` per
    ``idx`` used to check the category against the right allow-list.
    """

    model_config = ConfigDict(extra="ignore")

    idx: int
    category: str | None = None
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_in_range(cls, v: Any) -> float:
        if v is None:
            return 0.0
        f = float(v)
        if not 0.0 <= f <= 1.0:
            raise ValueError("confidence must be in [0,1]")
        return f

    @field_validator("category")
    @classmethod
    def _category_for_kind(cls, v: str | None, info: ValidationInfo) -> str | None:
        kinds: Sequence[TransactionKind] = (info.context or {}).get("kinds", ())
        idx = info.data.get("idx")
        if not isinstance(idx, int) or not 0 <= idx < len(kinds):
            # Range errors are reported by the alignment pass.
            return v
        return validate_category(v, kinds[idx])


class _DecisionBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    results: list[_DecisionItem]


def parse_and_align_decisions(
    body: Mapping[str, Any],
    *,
    kinds: Sequence[TransactionKind],
) -> list[ServiceDecision]:
    """Validate ``body`` and return one ``ServiceDecision`` per input item.

    Raises ``ValueError`` when the payload shape is wrong, an ``idx`` is out
    of range or duplicated, or items are missing.
    """

    try:
        parsed = _DecisionBody.model_validate(body, context={"kinds": list(kinds)})
    except PydanticValidationError as e:
        raise ValueError(f"Invalid response: {e.errors()[0].get('msg', 'validation error')}") from e

    num_items = len(kinds)
    if len(parsed.results) != num_items:
        raise ValueError(
            f"Invalid response: expected {num_items} results, got {len(parsed.results)}"
        )

    aligned: list[ServiceDecision | None] = [None] * num_items
    for item in parsed.results:
        if item.idx < 0 or item.idx >= num_items:
            raise ValueError(f"Invalid response: 'idx' out of range: {item.idx}")
        if aligned[item.idx] is not None:
            raise ValueError(f"Invalid response: duplicate idx {item.idx}")
        confidence = item.confidence if item.category is not None else 0.0
        aligned[item.idx] = ServiceDecision(category=item.category, confidence=confidence)

    missing = [i for i, v in enumerate(aligned) if v is None]
    if missing:
        raise ValueError(f"Invalid response: missing indices {missing}")
    return [d for d in aligned if d is not None]


__all__ = ["parse_and_align_decisions"]
