"""Category taxonomy for imported transactions.

Categories are stable lowercase codes. Expense and income transactions have
separate allow-lists; ``other`` exists in both and is the fallback when a
commit record carries an unknown code.
"""

from __future__ import annotations

from .models import TransactionKind

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "housing",
    "food",
    "transport",
    "entertainment",
    "bills",
    "health",
    "shopping",
    "education",
    "subscriptions",
    "pets",
    "gifts",
    "savings",
    "personal_care",
    "communication",
    "other",
)

INCOME_CATEGORIES: tuple[str, ...] = (
    "salary",
    "bonus",
    "investment",
    "rental",
    "freelance",
    "pension",
    "child_allowance",
    "other",
)

# Allowed at commit time for manual choices only; never suggested by the
# classification service.
MANUAL_ONLY_EXPENSE_CATEGORIES: tuple[str, ...] = ("maaser", "donation")

FALLBACK_CATEGORY = "other"

# Singular/plural slips the classification service makes.
_ALIASES: dict[str, str] = {
    "subscription": "subscriptions",
    "bill": "bills",
    "saving": "savings",
    "gift": "gifts",
    "pet": "pets",
}


def categories_for(kind: TransactionKind, *, include_manual: bool = False) -> tuple[str, ...]:
    if kind is TransactionKind.INCOME:
        return INCOME_CATEGORIES
    if include_manual:
        return EXPENSE_CATEGORIES + MANUAL_ONLY_EXPENSE_CATEGORIES
    return EXPENSE_CATEGORIES


def normalize_category(raw: str | None) -> str | None:
    """Lower-case, trim, map known aliases; ``None`` for blank input."""

    if raw is None:
        return None
    s = raw.strip().lower().replace(" ", "_")
    if not s:
        return None
    return _ALIASES.get(s, s)


def validate_category(raw: str | None, kind: TransactionKind) -> str | None:
    """Return the normalized category when it is valid for ``kind``."""

    s = normalize_category(raw)
    if s is None or s not in categories_for(kind):
        return None
    return s


def resolve_commit_category(raw: str | None, kind: TransactionKind) -> str:
    """Normalize a category for storage, falling back to ``other``."""

    s = normalize_category(raw)
    if s is None or s not in categories_for(kind, include_manual=True):
        return FALLBACK_CATEGORY
    return s


__all__ = [
    "EXPENSE_CATEGORIES",
    "FALLBACK_CATEGORY",
    "INCOME_CATEGORIES",
    "MANUAL_ONLY_EXPENSE_CATEGORIES",
    "categories_for",
    "normalize_category",
    "resolve_commit_category",
    "validate_category",
]
