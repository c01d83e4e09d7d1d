"""Merchant grouping and category assignment for the review stage.

Transactions waiting for review are grouped by merchant key so one decision
can categorize every charge from the same business. Groups are a pure
function of the review list: the largest groups come first and ties keep the
order in which merchants first appear, so regrouping an unchanged list always
yields the same result.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .errors import ValidationError
from .models import MerchantGroup, ParsedTransaction, TransactionKind
from .normalizers import merchant_key


class ReviewError(ValidationError):
    pass


def build_groups(needs_review: Sequence[ParsedTransaction]) -> list[MerchantGroup]:
    """Partition ``needs_review`` into merchant groups, biggest first."""

    ordered = sorted(needs_review, key=lambda t: t.row_number)
    by_key: dict[str, list[ParsedTransaction]] = {}
    for tx in ordered:
        key = merchant_key(tx.merchant_name) or f"#row-{tx.row_number}"
        by_key.setdefault(key, []).append(tx)

    groups: list[MerchantGroup] = []
    for key, members in by_key.items():
        expenses = sum(1 for m in members if m.kind is TransactionKind.EXPENSE)
        dominant = (
            TransactionKind.EXPENSE if expenses * 2 >= len(members) else TransactionKind.INCOME
        )
        groups.append(
            MerchantGroup(
                normalized_key=key,
                display_name=members[0].merchant_name,
                members=tuple(members),
                dominant_kind=dominant,
            )
        )
    # dict preserves first-seen order, so the stable sort breaks ties by it
    groups.sort(key=lambda g: -g.count)
    return groups


def next_uncategorized(
    needs_review: Sequence[ParsedTransaction], review_categories: Mapping[int, str]
) -> int | None:
    """Row number of the first review item, in group order, without a category."""

    for group in build_groups(needs_review):
        for member in group.members:
            if not review_categories.get(member.row_number):
                return member.row_number
    return None


class ReviewGrouper:
    """Holds the review list, the category assignments and a group selection.

    ``review_categories`` only ever contains row numbers of the review list.
    """

    def __init__(
        self,
        needs_review: Sequence[ParsedTransaction],
        review_categories: Mapping[int, str] | None = None,
    ) -> None:
        self._items: tuple[ParsedTransaction, ...] = tuple(
            sorted(needs_review, key=lambda t: t.row_number)
        )
        self._rows: frozenset[int] = frozenset(t.row_number for t in self._items)
        if len(self._rows) != len(self._items):
            raise ValueError("review items must have unique row numbers")
        self._categories: dict[int, str] = {}
        self._selected_keys: set[str] = set()
        self._groups: list[MerchantGroup] | None = None
        for row, category in (review_categories or {}).items():
            self._assign([row], category)

    @property
    def needs_review(self) -> tuple[ParsedTransaction, ...]:
        return self._items

    @property
    def review_categories(self) -> dict[int, str]:
        return dict(self._categories)

    def groups(self) -> list[MerchantGroup]:
        if self._groups is None:
            self._groups = build_groups(self._items)
        return list(self._groups)

    def group(self, key: str) -> MerchantGroup:
        for g in self.groups():
            if g.normalized_key == key:
                return g
        raise ReviewError(f"unknown merchant group: {key!r}")

    # ---- selection -------------------------------------------------------

    def toggle_group_selection(self, key: str) -> bool:
        """Flip selection of a group; returns the new selected state."""

        self.group(key)
        if key in self._selected_keys:
            self._selected_keys.discard(key)
            return False
        self._selected_keys.add(key)
        return True

    def selected_keys(self) -> list[str]:
        return [g.normalized_key for g in self.groups() if g.normalized_key in self._selected_keys]

    def selected_rows(self) -> list[int]:
        rows: list[int] = []
        for g in self.groups():
            if g.normalized_key in self._selected_keys:
                rows.extend(g.row_numbers)
        return rows

    def clear_selection(self) -> None:
        self._selected_keys.clear()

    # ---- assignment ------------------------------------------------------

    def _assign(self, rows: Iterable[int], category: str) -> None:
        cleaned = (category or "").strip()
        if not cleaned:
            raise ReviewError("category must be a non-empty string")
        rows = list(rows)
        unknown = [r for r in rows if r not in self._rows]
        if unknown:
            raise ReviewError(f"rows are not awaiting review: {unknown}")
        for r in rows:
            self._categories[r] = cleaned

    def apply_category_to_group(self, key: str, category: str) -> int:
        group = self.group(key)
        self._assign(group.row_numbers, category)
        return group.count

    def apply_category_to_selection(self, row_numbers: Iterable[int], category: str) -> int:
        rows = list(dict.fromkeys(row_numbers))
        self._assign(rows, category)
        return len(rows)

    def apply_category_to_selected_groups(self, category: str) -> int:
        n = self.apply_category_to_selection(self.selected_rows(), category)
        self.clear_selection()
        return n

    # ---- progress --------------------------------------------------------

    def is_group_fully_categorized(self, key: str) -> bool:
        return all(self._categories.get(r) for r in self.group(key).row_numbers)

    def uncategorized_rows(self) -> list[int]:
        return [t.row_number for t in self._items if not self._categories.get(t.row_number)]

    def is_complete(self) -> bool:
        return not self.uncategorized_rows()

    def next_uncategorized(self) -> int | None:
        return next_uncategorized(self._items, self._categories)

    def reviewed_transactions(self) -> list[ParsedTransaction]:
        """Review items with their assigned categories (``None`` where missing)."""

        return [t.with_category(self._categories.get(t.row_number)) for t in self._items]


__all__ = ["ReviewError", "ReviewGrouper", "build_groups", "next_uncategorized"]
