import contextlib
from datetime import date
from decimal import Decimal

import pytest
from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from statement_import.categories import EXPENSE_CATEGORIES
from statement_import.models import (
    Confidence,
    DateFormat,
    DateFormatDetection,
    DuplicateCandidate,
    ExistingTransaction,
    TransactionKind,
)
from statement_import.term_ui import (
    choose_duplicates_to_skip,
    confirm,
    parse_row_list,
    select_category,
    select_date_format,
)
from tests.helpers.fakes import make_tx


@contextlib.contextmanager
def pipe_session():
    with create_pipe_input() as pipe:
        sess = PromptSession(input=pipe, output=DummyOutput())
        yield pipe, sess


def test_enter_on_empty_input_accepts_default():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert select_category(list(EXPENSE_CATEGORIES), default="other", session=sess) == "other"


def test_exact_category_is_returned():
    with pipe_session() as (pipe, sess):
        pipe.send_text("health\r")
        assert select_category(list(EXPENSE_CATEGORIES), default="other", session=sess) == "health"


def test_enter_completes_a_typed_prefix():
    with pipe_session() as (pipe, sess):
        pipe.send_text("tra\r")
        result = select_category(list(EXPENSE_CATEGORIES), default="other", session=sess)
        assert result == "transport"


def test_date_format_prompt_suggests_detected_format():
    detection = DateFormatDetection(
        format=DateFormat.MM_DD_YYYY, confidence=Confidence.LOW, is_excel_serial=False
    )
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert select_date_format(detection, session=sess) is DateFormat.MM_DD_YYYY

    with pipe_session() as (pipe, sess):
        pipe.send_text("YYYY\r")
        assert select_date_format(None, session=sess) is DateFormat.YYYY_MM_DD


@pytest.mark.parametrize(("typed", "expected"), [("y\r", True), ("no\r", False), ("\r", True)])
def test_confirm(typed: str, expected: bool):
    with pipe_session() as (pipe, sess):
        pipe.send_text(typed)
        assert confirm("Save?", session=sess) is expected


def _duplicates(*rows: int) -> list[DuplicateCandidate]:
    existing = ExistingTransaction(
        id=1,
        occurred_on=date(2024, 3, 15),
        amount=Decimal("10.00"),
        description="Cafe Aroma",
        kind=TransactionKind.EXPENSE,
    )
    return [DuplicateCandidate(make_tx(r, "Cafe Aroma"), existing) for r in rows]


def test_choose_duplicates_to_skip():
    with pipe_session() as (pipe, sess):
        pipe.send_text("5, 3\r")
        assert choose_duplicates_to_skip(_duplicates(3, 5, 9), session=sess) == [5, 3]

    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert choose_duplicates_to_skip(_duplicates(3), session=sess) == []


def test_parse_row_list():
    assert parse_row_list("3, 7 9,3", {3, 7, 9}) == [3, 7, 9]
    assert parse_row_list("", {3}) == []
    with pytest.raises(ValueError, match="not a row number"):
        parse_row_list("3-4", {3, 4})
    with pytest.raises(ValueError, match="row 8"):
        parse_row_list("8", {3})
