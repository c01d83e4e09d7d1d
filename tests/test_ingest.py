from datetime import datetime
from pathlib import Path

import pytest
from openpyxl import Workbook

from statement_import.errors import StatementReadError
from statement_import.ingest.columns import (
    extract_date_samples,
    find_header_rows,
    map_columns,
    split_tables,
)
from statement_import.ingest.readers import read_statement_rows, sanitize_cell
from statement_import.models import ColumnMapping


def _write_xlsx(path: Path, rows: list[list[object]]) -> Path:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def test_reads_csv_with_preamble_and_blank_cells(data_dir: Path):
    rows = read_statement_rows(data_dir / "card_statement_he.csv")
    assert len(rows) == 8
    assert rows[0] == ("פירוט עסקאות לכרטיס 1234", None, None, None)
    assert rows[2][0] == "תאריך עסקה"
    assert rows[3] == ("15/03/2024", "שופרסל דיל", "120.50", "120.50")


def test_reads_windows_1255_csv(tmp_path: Path):
    p = tmp_path / "legacy.csv"
    p.write_bytes("תאריך;שם בית עסק;סכום\n15/03/2024;קפה;10\n".encode("cp1255"))
    rows = read_statement_rows(p)
    assert rows == [("תאריך", "שם בית עסק", "סכום"), ("15/03/2024", "קפה", "10")]


def test_reads_first_sheet_of_xlsx(tmp_path: Path):
    p = _write_xlsx(
        tmp_path / "card.xlsx",
        [
            ["Card 1234", None, None],
            ["Date", "Merchant", "Amount"],
            [datetime(2024, 3, 15), "Cafe Aroma", 32.5],
            [datetime(2024, 3, 16), "  ", 10],
        ],
    )
    rows = read_statement_rows(p)
    assert rows[1] == ("Date", "Merchant", "Amount")
    assert rows[2] == (datetime(2024, 3, 15), "Cafe Aroma", 32.5)
    assert rows[3][1] is None


@pytest.mark.parametrize("name", ["statement.pdf", "statement"])
def test_unsupported_file_type(tmp_path: Path, name: str):
    p = tmp_path / name
    p.write_text("x", encoding="utf-8")
    with pytest.raises(StatementReadError):
        read_statement_rows(p)


def test_missing_and_corrupt_files(tmp_path: Path):
    with pytest.raises(StatementReadError, match="not found"):
        read_statement_rows(tmp_path / "missing.csv")
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"not a zip archive")
    with pytest.raises(StatementReadError):
        read_statement_rows(broken)


def test_header_row_found_after_preamble(data_dir: Path):
    rows = read_statement_rows(data_dir / "card_statement_he.csv")
    assert find_header_rows(rows) == [2]


def test_header_falls_back_to_first_row():
    rows = [("a", "b", "c"), ("1", "2", "3")]
    assert find_header_rows(rows) == [0]


def test_rows_holding_dates_or_amounts_are_never_headers():
    rows = [
        ("תאריך", "תיאור", "סכום"),
        ("15/03/2024", "שופרסל דיל", "120"),
        ("16/03/2024", "חיוב כרטיס מספר 4580", "1500"),
        ("17/03/2024", "משכורת", "-9000"),
    ]
    assert find_header_rows(rows) == [0]


def test_keywords_match_whole_words_only():
    # "שמן" contains "שם", "מספרה" contains "מספר", "עסקית" contains "עסק"
    rows = [
        ("Date", "Merchant", "Amount"),
        ("שמן", "מספרה", "עסקית"),
        ("15/03/2024", "Wolt", "55"),
    ]
    assert find_header_rows(rows) == [0]


def test_actual_charge_column_wins_over_transaction_total():
    header = ("תאריך עסקה", "שם בית העסק", "סכום עסקה", "סכום חיוב")
    assert map_columns(header) == ColumnMapping(date=0, amount=3, merchant=1)


def test_english_header_mapping():
    assert map_columns(("Description", "Amount", "Date")) == ColumnMapping(
        date=2, amount=1, merchant=0
    )


def test_unknown_columns_take_lowest_unused_index():
    assert map_columns(("Date", "Foo", "Bar")) == ColumnMapping(date=0, amount=1, merchant=2)


def test_split_tables_numbers_rows_by_file_line():
    rows = [
        ("Date", "Merchant", "Amount"),
        ("15/03/2024", "A", "1"),
        (None, None, None),
        ("Date", "Merchant", "Amount"),
        ("16/03/2024", "B", "2"),
    ]
    tables = split_tables(rows)
    assert [t.header_index for t in tables] == [0, 3]
    assert [n for n, _ in tables[0].rows] == [2, 3]
    assert [n for n, _ in tables[1].rows] == [5]
    assert split_tables([]) == []


def test_date_samples_skip_blank_and_long_cells():
    rows = [
        ("Date", "Merchant", "Amount"),
        ("15/03/2024", "A", "1"),
        (None, "B", "2"),
        ("Totals are shown in shekels for this period", None, None),
        ("16/03/2024", "C", "3"),
    ]
    assert extract_date_samples(rows) == ["15/03/2024", "16/03/2024"]
    assert extract_date_samples(rows, limit=1) == ["15/03/2024"]
    assert extract_date_samples([]) == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("=HYPERLINK(\"http://x\")", 'HYPERLINK("http://x")'),
        ("@SUM(A1)", "SUM(A1)"),
        ("+972501234567", "+972501234567"),
        ("+Wolt", "Wolt"),
        ("-120.50", "-120.50"),
        ("- 1,234.50", "- 1,234.50"),
        ("-Refund", "Refund"),
        ("<b>Cafe</b>  Aroma", "Cafe Aroma"),
        ("<script>x</script>", "x"),
        ("  ", None),
        ("=", None),
        (12.5, 12.5),
        (float("inf"), None),
        (None, None),
    ],
)
def test_sanitize_cell(raw, expected):
    assert sanitize_cell(raw) == expected


def test_long_cells_are_capped():
    assert sanitize_cell("x" * 800) == "x" * 500


def test_csv_cells_are_sanitized_on_read(tmp_path: Path):
    p = tmp_path / "card.csv"
    p.write_text("Date,Merchant,Amount\n15/03/2024,@SUM(A1),-12.00\n", encoding="utf-8")
    rows = read_statement_rows(p)
    assert rows[1] == ("15/03/2024", "SUM(A1)", "-12.00")


def test_oversized_and_empty_files_are_refused(tmp_path: Path):
    big = tmp_path / "big.csv"
    big.write_text("Date,Merchant,Amount\n" + "15/03/2024,Wolt,55\n" * 10, encoding="utf-8")
    with pytest.raises(StatementReadError, match="limited to 64 bytes"):
        read_statement_rows(big, max_bytes=64)
    assert len(read_statement_rows(big)) == 11

    empty = tmp_path / "empty.csv"
    empty.write_bytes(b"")
    with pytest.raises(StatementReadError, match="empty"):
        read_statement_rows(empty)


def test_spreadsheet_without_zip_signature_is_refused(tmp_path: Path):
    fake = tmp_path / "statement.xlsx"
    fake.write_text("Date,Merchant,Amount\n15/03/2024,Wolt,55\n", encoding="utf-8")
    with pytest.raises(StatementReadError, match="not an Excel workbook"):
        read_statement_rows(fake)


def test_workbook_renamed_to_csv_is_refused(tmp_path: Path):
    real = _write_xlsx(tmp_path / "card.xlsx", [["Date", "Merchant", "Amount"]])
    renamed = tmp_path / "card.csv"
    renamed.write_bytes(real.read_bytes())
    with pytest.raises(StatementReadError, match="binary file"):
        read_statement_rows(renamed)
