"""Prompt construction for merchant classification.

This module builds:
- A deterministic JSON serialization of the merchants to classify, with a
  fixed field order and page-relative ``idx`` values.
- The system instructions and user content for the Responses API call.
- The strict ``text.format`` JSON Schema constraining the model output.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .categories import EXPENSE_CATEGORIES, INCOME_CATEGORIES

MERCHANT_FIELD_ORDER: tuple[str, ...] = ("idx", "merchant", "kind", "sample_amount")

BEGIN_MARKER = "BEGIN_MERCHANTS_JSON"
END_MARKER = "END_MERCHANTS_JSON"


def serialize_merchants_to_json(items: Sequence[Mapping[str, Any]]) -> str:
    """Serialize merchant items as a JSON array with a fixed key order."""

    arr = [{key: item.get(key) for key in MERCHANT_FIELD_ORDER} for item in items]
    return json.dumps(arr, ensure_ascii=False)


def build_system_instructions() -> str:
    return (
        "You classify bank and credit-card statement merchants into budget categories. "
        "Each merchant has a kind: 'expense' merchants use the expense categories and "
        "'income' merchants use the income categories. Merchant names may be in Hebrew "
        "or English. Return category null when you cannot tell what the merchant is; "
        "never guess. Output JSON only, conforming to the specified schema."
    )


def build_user_content(merchants_json: str) -> str:
    return (
        "Classify each merchant below.\n\n"
        f"Expense categories: {', '.join(EXPENSE_CATEGORIES)}\n"
        f"Income categories: {', '.join(INCOME_CATEGORIES)}\n\n"
        "For every item return its idx, the category code (or null when unsure) and a "
        "confidence between 0 and 1.\n\n"
        f"{BEGIN_MARKER}\n{merchants_json}\n{END_MARKER}"
    )


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema response format.

    Schema shape::

        {"results": [{"idx": int, "category": str | null, "confidence": number}]}
    """

    codes: list[str] = list(dict.fromkeys(EXPENSE_CATEGORIES + INCOME_CATEGORIES))
    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "merchant_categories",
        "schema": {
            "type": "object",
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "idx": {"type": "integer"},
                            "category": {"type": ["string", "null"], "enum": codes + [None]},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                        },
                        "required": ["idx", "category", "confidence"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["results"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


# ---- column mapping ---------------------------------------------------------


def _indexed_cells(cells: Sequence[Any]) -> str:
    return ", ".join(f"[{i}] {'' if c is None else str(c).strip()}" for i, c in enumerate(cells))


def build_column_mapping_instructions() -> str:
    return (
        "You locate columns in bank and credit-card statement tables. Headers may be "
        "in Hebrew or English. Given a header row and one data row, each cell prefixed "
        "with its [index], return the index of the transaction date column, the charged "
        "amount column and the merchant or description column. When a statement has both "
        "a transaction total and an actual charge, choose the actual charge. Use -1 for a "
        "column you cannot find. Output JSON only, conforming to the specified schema."
    )


def build_column_mapping_content(header: Sequence[Any], sample: Sequence[Any]) -> str:
    return f"Header row: {_indexed_cells(header)}\n\nData row: {_indexed_cells(sample)}"


def build_column_mapping_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Schema shape: ``{"date_index": int, "amount_index": int, "merchant_index": int}``."""

    fields = ("date_index", "amount_index", "merchant_index")
    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "statement_columns",
        "schema": {
            "type": "object",
            "properties": {name: {"type": "integer"} for name in fields},
            "required": list(fields),
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "BEGIN_MARKER",
    "END_MARKER",
    "build_column_mapping_content",
    "build_column_mapping_format",
    "build_column_mapping_instructions",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
    "serialize_merchants_to_json",
]
