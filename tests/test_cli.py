import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from statement_import.cli import app
from tests.helpers.db import stored_merchants, stored_transactions

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # The root callback loads ``.env`` from the working directory.
    monkeypatch.chdir(tmp_path)


def test_detect_date_format_prints_json(data_dir: Path):
    result = runner.invoke(
        app, ["detect-date-format", "--file", str(data_dir / "card_statement_he.csv")]
    )
    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert body["format"] == "DD/MM/YYYY"
    assert body["confidence"] == "high"
    assert body["needs_manual_choice"] is False
    assert body["parsed_samples"][:2] == ["2024-03-15", "2024-03-16"]


def test_detect_date_format_reports_missing_file(tmp_path: Path):
    result = runner.invoke(app, ["detect-date-format", "--file", str(tmp_path / "nope.csv")])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_classify_offline_sends_everything_to_review(data_dir: Path):
    result = runner.invoke(
        app,
        [
            "classify",
            "--file",
            str(data_dir / "card_statement_he.csv"),
            "--type",
            "expenses",
            "--offline",
        ],
    )
    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert body["stats"]["needs_review"] == 4
    assert body["stats"]["parse_errors"] == 1
    assert body["header_row"] == 3
    assert [t["row_number"] for t in body["transactions"]] == [4, 6, 7, 8]
    assert {t["source"] for t in body["transactions"]} == {"manual_pending"}
    assert body["errors"][0].startswith("Row 5: ")


def test_classify_without_api_key_fails(data_dir: Path):
    result = runner.invoke(
        app,
        ["classify", "--file", str(data_dir / "bank_statement.csv"), "--type", "roundTrip"],
    )
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_unknown_type_is_a_usage_error(data_dir: Path):
    result = runner.invoke(
        app,
        ["classify", "--file", str(data_dir / "bank_statement.csv"), "--type", "savings"],
    )
    assert result.exit_code == 2


def test_invalid_settings_fail_fast(data_dir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STATEMENT_IMPORT_CHUNK_SIZE", "0")
    result = runner.invoke(
        app, ["detect-date-format", "--file", str(data_dir / "bank_statement.csv")]
    )
    assert result.exit_code == 1
    assert "STATEMENT_IMPORT_CHUNK_SIZE" in result.output


def test_init_db_then_import_with_defaults(data_dir: Path, tmp_path: Path):
    url = f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"
    result = runner.invoke(app, ["init-db", "--database-url", url])
    assert result.exit_code == 0, result.output

    result = runner.invoke(
        app,
        [
            "import",
            "--file",
            str(data_dir / "bank_statement.csv"),
            "--type",
            "roundTrip",
            "--user-id",
            "u1",
            "--database-url",
            url,
            "--yes",
            "--offline",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Saved 3 transactions." in result.stdout

    rows = stored_transactions(url, user_id="u1")
    assert [(r.merchant, r.kind, r.category) for r in rows] == [
        ("Salary ACME Ltd", "income", "other"),
        ("Electric Company", "expense", "other"),
        ("Rent transfer", "expense", "other"),
    ]
    assert stored_merchants(url, user_id="u1")[("salary acme ltd", "income")] == ("other", True)


def test_import_requires_a_database(data_dir: Path):
    result = runner.invoke(
        app,
        [
            "import",
            "--file",
            str(data_dir / "bank_statement.csv"),
            "--type",
            "roundTrip",
            "--user-id",
            "u1",
            "--offline",
        ],
    )
    assert result.exit_code == 1
    assert "DATABASE_URL" in result.output
