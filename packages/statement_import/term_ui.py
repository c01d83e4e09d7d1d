"""Small prompt_toolkit helpers for the interactive import wizard.

Kept apart from the session logic so each prompt can be driven in tests with
a pipe input and ``DummyOutput``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.validation import ValidationError, Validator

from .models import DateFormat, DateFormatDetection, DuplicateCandidate

_DATE_FORMAT_CHOICES: tuple[str, ...] = (
    DateFormat.DD_MM_YYYY.value,
    DateFormat.MM_DD_YYYY.value,
    DateFormat.YYYY_MM_DD.value,
)


def _session_with(session: PromptSession | None, kb: KeyBindings) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def _best_prefix_match(words: Sequence[str], text: str) -> str | None:
    if not text:
        return None
    lower = text.lower()
    for w in words:
        if w.lower().startswith(lower):
            return w
    return None


def select_option(
    options: Iterable[str],
    *,
    default: str = "",
    message: str = "Choose (Enter to accept): ",
    session: PromptSession | None = None,
) -> str:
    """Prompt for one of ``options`` with completion; returns the canonical option.

    Enter accepts the highlighted completion, else completes a typed prefix to
    the first matching option. Empty input returns ``default``. Anything that
    is not an option is refused inline.
    """

    words = list(dict.fromkeys(options))
    if not words:
        raise ValueError("select_option needs at least one option")
    canonical = {w.lower(): w for w in words}
    completer = WordCompleter(words, ignore_case=True, match_middle=True, sentence=False)

    kb = KeyBindings()

    @kb.add("enter", eager=True)
    def _(event) -> None:  # pragma: no cover - integration path
        b = event.app.current_buffer
        cs = b.complete_state
        if cs is not None and cs.current_completion is not None:
            b.apply_completion(cs.current_completion)
        else:
            typed = b.document.text
            cand = _best_prefix_match(words, typed.strip())
            if cand and typed.strip().lower() not in canonical:
                b.delete_before_cursor(len(b.document.text_before_cursor))
                b.delete(len(b.document.text_after_cursor))
                b.insert_text(cand)
        b.validate_and_handle()

    def _valid(text: str) -> bool:
        t = text.strip().lower()
        return (not t and bool(default)) or t in canonical

    validator = Validator.from_callable(
        _valid, error_message="Pick one of the listed options.", move_cursor_to_end=True
    )
    sess = _session_with(session, kb)
    result = sess.prompt(
        message,
        completer=completer,
        validator=validator,
        validate_while_typing=False,
        key_bindings=kb,
    )
    text = (result or "").strip()
    if not text:
        return default
    return canonical[text.lower()]


def select_category(
    categories: Sequence[str],
    *,
    default: str = "",
    message: str = "Category (Tab to browse, Enter to accept): ",
    session: PromptSession | None = None,
) -> str:
    return select_option(categories, default=default, message=message, session=session)


def select_date_format(
    detection: DateFormatDetection | None,
    *,
    fallback: DateFormat = DateFormat.DD_MM_YYYY,
    session: PromptSession | None = None,
) -> DateFormat:
    """Ask the user to confirm or choose the statement's date format."""

    suggested = fallback
    if detection is not None and detection.format not in (None, DateFormat.AUTO):
        suggested = detection.format  # type: ignore[assignment]
    choice = select_option(
        _DATE_FORMAT_CHOICES,
        default=suggested.value,
        message=f"Date format [{suggested.value}]: ",
        session=session,
    )
    return DateFormat(choice)


def confirm(
    message: str,
    *,
    default: bool = True,
    session: PromptSession | None = None,
) -> bool:
    kb = KeyBindings()
    hint = "[Y/n]" if default else "[y/N]"

    def _valid(text: str) -> bool:
        return text.strip().lower() in {"", "y", "yes", "n", "no"}

    validator = Validator.from_callable(_valid, error_message="Answer y or n.")
    sess = _session_with(session, kb)
    answer = sess.prompt(
        f"{message} {hint} ", validator=validator, validate_while_typing=False
    ).strip().lower()
    if not answer:
        return default
    return answer in {"y", "yes"}


class _RowListValidator(Validator):
    def __init__(self, allowed: set[int]) -> None:
        self._allowed = allowed

    def validate(self, document) -> None:
        try:
            parse_row_list(document.text, self._allowed)
        except ValueError as e:
            raise ValidationError(message=str(e)) from e


def parse_row_list(text: str, allowed: set[int]) -> list[int]:
    """Parse ``"3, 7 9"`` into ``[3, 7, 9]``, checking every row is allowed."""

    rows: list[int] = []
    for token in text.replace(",", " ").split():
        if not token.isdigit():
            raise ValueError(f"not a row number: {token!r}")
        n = int(token)
        if n not in allowed:
            raise ValueError(f"row {n} is not a duplicate candidate")
        if n not in rows:
            rows.append(n)
    return rows


def choose_duplicates_to_skip(
    duplicates: Sequence[DuplicateCandidate],
    *,
    session: PromptSession | None = None,
) -> list[int]:
    """Return the row numbers the user does NOT want imported (default: none)."""

    allowed = {d.incoming.row_number for d in duplicates}
    kb = KeyBindings()
    sess = _session_with(session, kb)
    answer = sess.prompt(
        "Rows to skip (comma separated, Enter to import all): ",
        validator=_RowListValidator(allowed),
        validate_while_typing=False,
    )
    return parse_row_list(answer, allowed)


__all__ = [
    "choose_duplicates_to_skip",
    "confirm",
    "parse_row_list",
    "select_category",
    "select_date_format",
    "select_option",
]
