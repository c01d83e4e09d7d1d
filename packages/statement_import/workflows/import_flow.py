"""End-to-end interactive import: file → format → classify → review → commit.

Composes :class:`~statement_import.session.ImportSession` with the prompts in
:mod:`statement_import.term_ui`. With ``assume_yes`` no prompt is shown:
duplicates are all imported and review items fall back to ``other``, but an
uncertain date format still has to be passed explicitly.
"""

from __future__ import annotations

from collections.abc import Callable
from os import PathLike

from prompt_toolkit import PromptSession

from .. import term_ui
from ..categories import FALLBACK_CATEGORY, categories_for
from ..errors import ValidationError
from ..models import DateFormat, ImportType, Phase, TransactionKind
from ..session import ImportSession


def _emit(on_progress: Callable[[str], None] | None, line: str) -> None:
    if on_progress is not None:
        on_progress(line)


def _review(
    session: ImportSession,
    *,
    assume_yes: bool,
    prompt_session: PromptSession | None,
    on_progress: Callable[[str], None] | None,
) -> None:
    groups = session.groups()
    _emit(
        on_progress,
        f"{len(session.needs_review)} transactions in {len(groups)} merchant groups "
        "need a category.",
    )
    for group in groups:
        if session.is_group_fully_categorized(group.normalized_key):
            continue
        by_kind: dict[TransactionKind, list[int]] = {}
        for m in group.members:
            by_kind.setdefault(m.kind, []).append(m.row_number)
        for kind, rows in by_kind.items():
            if assume_yes:
                category = FALLBACK_CATEGORY
            else:
                total = sum(m.amount for m in group.members if m.kind is kind)
                _emit(
                    on_progress,
                    f"{group.display_name}: {len(rows)} {kind} transaction(s), total {total}",
                )
                category = term_ui.select_category(
                    categories_for(kind, include_manual=True),
                    default=FALLBACK_CATEGORY,
                    session=prompt_session,
                )
            session.apply_category_to_selection(rows, category)
    session.finish_review()


def _resolve_duplicates(
    session: ImportSession,
    *,
    assume_yes: bool,
    prompt_session: PromptSession | None,
    on_progress: Callable[[str], None] | None,
) -> None:
    _emit(on_progress, f"{len(session.duplicates)} possible duplicates of stored transactions:")
    for d in session.duplicates:
        _emit(
            on_progress,
            (
                f"  row {d.incoming.row_number}: {d.incoming.occurred_on} "
                f"{d.incoming.merchant_name} {d.incoming.amount} "
                f"(matches #{d.existing_match.id} on {d.existing_match.occurred_on})"
            ),
        )
    skip: list[int] = []
    if not assume_yes:
        skip = term_ui.choose_duplicates_to_skip(session.duplicates, session=prompt_session)
    for row in skip:
        session.deselect_duplicate(row)
    session.confirm_save()


def run_import_flow(
    session: ImportSession,
    path: str | PathLike[str],
    import_type: ImportType | str,
    *,
    date_format: DateFormat | str | None = None,
    assume_yes: bool = False,
    prompt_session: PromptSession | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> Phase:
    """Drive ``session`` through a full import and return the final phase.

    Returns early with ``Phase.ERROR`` on infrastructure failures; the
    messages are in ``session.errors``. ``ValidationError`` propagates.
    """

    if session.select_type(import_type, path) is Phase.ERROR:
        return session.phase

    detection = session.detection
    if date_format is not None:
        session.confirm_format(date_format)
    elif session.awaiting_format_choice:
        if assume_yes:
            raise ValidationError(
                "the date format could not be detected with confidence; pass --date-format"
            )
        session.confirm_format(term_ui.select_date_format(detection, session=prompt_session))
    elif detection is not None:
        _emit(on_progress, f"Detected date format {detection.format} ({detection.confidence}).")

    if session.run_import() is Phase.ERROR:
        return session.phase
    stats = session.stats
    _emit(
        on_progress,
        (
            f"Parsed {stats.total} transactions: {stats.cached_count} from memory, "
            f"{stats.ai_classified_count} auto-classified, {stats.needs_review_count} to review, "
            f"{stats.parse_error_count} rows skipped."
        ),
    )
    for message in session.errors:
        _emit(on_progress, f"  {message}")

    if session.phase is Phase.REVIEWING:
        _review(
            session, assume_yes=assume_yes, prompt_session=prompt_session, on_progress=on_progress
        )

    if session.check_duplicates() is Phase.ERROR:
        return session.phase
    if session.awaiting_duplicate_decision:
        _resolve_duplicates(
            session, assume_yes=assume_yes, prompt_session=prompt_session, on_progress=on_progress
        )

    if session.phase is Phase.DONE:
        _emit(on_progress, f"Saved {session.saved_count} transactions.")
    return session.phase


__all__ = ["run_import_flow"]
