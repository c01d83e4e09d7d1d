from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import pytest

import statement_import.categorize as categorize_mod
from statement_import.categorize import OpenAIClassificationService
from statement_import.classifier import Classifier
from statement_import.models import Phase
from statement_import.persistence import SqlMerchantCategoryCache, SqlTransactionRepository
from statement_import.session import ImportSession
from statement_import.workflows.import_flow import run_import_flow
from tests.helpers.db import (
    bootstrap_sqlite_db,
    insert_stored_transaction,
    stored_merchants,
    stored_transactions,
)
from tests.helpers.openai_stub import OpenAIStub


def _decide_category(item: dict[str, Any]) -> tuple[str | None, float]:
    """Deterministic answers for the merchants in ``card_statement_he.csv``.

    Confidence above the 0.7 threshold is accepted as-is; the café is left
    for review.
    """

    merchant = item["merchant"]
    if "NETFLIX" in merchant.upper():
        return "subscriptions", 0.95
    if "שופרסל" in merchant:
        return "food", 0.9
    if "סופר-פארם" in merchant:
        return "health", 0.85
    return None, 0.1


def _session(db_url: str) -> ImportSession:
    cache = SqlMerchantCategoryCache("u1", database_url=db_url)
    return ImportSession(
        classifier=Classifier(cache, OpenAIClassificationService()),
        repository=SqlTransactionRepository("u1", database_url=db_url),
        cache=cache,
    )


def test_e2e_card_statement_import_persists_and_learns(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
):
    # -------------------------
    # Input (fixture file path)
    # -------------------------
    csv_path = Path(__file__).resolve().parents[1] / "data/card_statement_he.csv"

    # -------------------------
    # DB bootstrap + one stored charge that the statement repeats
    # -------------------------
    db_url = bootstrap_sqlite_db(tmp_path / "si-e2e.db")
    insert_stored_transaction(
        db_url, user_id="u1", merchant="קפה ארומה", amount="32.00", occurred_on=date(2024, 3, 17)
    )

    stub = OpenAIStub(_decide_category)
    monkeypatch.setattr(categorize_mod, "OpenAI", lambda: stub)

    # -------------------------
    # First import: classify, default review, keep the duplicate
    # -------------------------
    session = _session(db_url)
    lines: list[str] = []
    phase = run_import_flow(
        session, csv_path, "expenses", assume_yes=True, on_progress=lines.append
    )

    assert phase is Phase.DONE
    assert session.saved_count == 4
    assert len(stub.calls) == 1
    assert (session.stats.ai_classified_count, session.stats.needs_review_count) == (3, 1)
    assert [d.incoming.row_number for d in session.duplicates] == [6]

    rows = stored_transactions(db_url, user_id="u1")
    imported = [(r.source_row, r.category, r.is_manual_category) for r in rows[1:]]
    assert imported == [
        (4, "food", False),
        (6, "other", True),
        (7, "subscriptions", False),
        (8, "health", False),
    ]
    assert {r.import_id for r in rows[1:]} == {session.import_id}

    merchants = stored_merchants(db_url, user_id="u1")
    assert merchants[("netflix.com", "expense")] == ("subscriptions", False)
    assert merchants[("קפה ארומה", "expense")] == ("other", True)

    # -------------------------
    # Second import of the same file: everything comes from memory and every
    # row is reported as a duplicate
    # -------------------------
    again = _session(db_url)
    again.select_type("expenses", csv_path)
    assert again.run_import() is Phase.DUPLICATE_CHECK
    assert again.stats.cached_count == 4
    assert len(stub.calls) == 1

    assert again.check_duplicates() is Phase.DUPLICATE_CHECK
    assert sorted(d.incoming.row_number for d in again.duplicates) == [4, 6, 7, 8]
    assert len(stored_transactions(db_url, user_id="u1")) == 5
