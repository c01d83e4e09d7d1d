"""Cell-level normalization shared by the parser, grouping and persistence.

- :func:`merchant_key` is the single definition of the grouping/fingerprint
  key: NFKC-normalized, whitespace-collapsed, trimmed, case-folded.
- :func:`to_amount` turns a statement amount cell into a signed ``Decimal``.
"""

from __future__ import annotations

import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_CURRENCY_TOKENS: tuple[str, ...] = (
    'ש"ח', "ש״ח", "NIS", "ILS", "USD", "EUR", "₪", "$", "€", "£"
)
_SPACES_RE = re.compile(r"\s+")
_PLAIN_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def merchant_key(name: Any) -> str:
    """Return the normalized merchant key, ``""`` when nothing usable remains."""

    if name is None:
        return ""
    s = unicodedata.normalize("NFKC", str(name)).strip()
    if not s:
        return ""
    return " ".join(s.split()).casefold()


def display_merchant(name: Any) -> str:
    """Trim and collapse whitespace, keeping the original casing."""

    if name is None:
        return ""
    return " ".join(str(name).split())


def quantize_amount(d: Decimal) -> Decimal:
    return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_amount(raw: Any) -> Decimal:
    """Parse a statement amount cell.

    Accepts numbers from spreadsheets and strings such as ``"1,234.50"``,
    ``"₪ 99"``, ``"(12.00)"`` or ``"12.00-"``. Parentheses and a leading or
    trailing minus mean negative. Raises ``ValueError`` for anything else.
    """

    if raw is None or isinstance(raw, bool):
        raise ValueError("amount is required")
    if isinstance(raw, int | float | Decimal):
        try:
            d = Decimal(str(raw))
        except InvalidOperation as exc:  # pragma: no cover - float edge cases
            raise ValueError(f"invalid amount: {raw!r}") from exc
        if not d.is_finite():
            raise ValueError(f"invalid amount: {raw!r}")
        return d

    s = str(raw).strip()
    for token in _CURRENCY_TOKENS:
        s = s.replace(token, "")
    s = _SPACES_RE.sub("", s).replace(",", "")
    if not s:
        raise ValueError("amount is empty")

    negative = False
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:]
            changed = True
        if s.startswith("-"):
            negative = True
            s = s[1:]
            changed = True
        if s.endswith("-"):
            negative = True
            s = s[:-1]
            changed = True
        if len(s) >= 2 and s.startswith("(") and s.endswith(")"):
            negative = True
            s = s[1:-1]
            changed = True
        if not changed:
            break

    # Decimal() would also take "1_000", "1e3" and "NaN"
    if not _PLAIN_NUMBER_RE.fullmatch(s):
        raise ValueError(f"invalid amount: {raw!r}")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


__all__ = ["display_merchant", "merchant_key", "quantize_amount", "to_amount"]
