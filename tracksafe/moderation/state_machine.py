"""Moderation status transition table and visibility rules."""

from __future__ import annotations

from typing import Optional

from tracksafe.moderation.errors import TransitionConflict
from tracksafe.moderation.models import ModerationStatus

S = ModerationStatus

TRANSITIONS: dict[ModerationStatus, frozenset[ModerationStatus]] = {
    S.pending_check: frozenset({S.checking}),
    S.checking: frozenset({S.clean, S.flagged, S.pending_check}),
    S.clean: frozenset(),
    S.flagged: frozenset({S.approved, S.rejected}),
    S.rejected: frozenset({S.appealed}),
    S.appealed: frozenset({S.approved, S.rejected}),
    S.approved: frozenset(),
}

PUBLIC_STATUSES = frozenset({S.pending_check, S.checking, S.clean, S.approved})

# States an admin decision may be taken from
REVIEWABLE_STATUSES = frozenset({S.flagged, S.appealed})


def can_transition(current: Optional[ModerationStatus], new: ModerationStatus) -> bool:
    """Return True if *current* -> *new* is an edge of the table.

    ``None`` stands for "no item yet"; the only valid creation state is
    ``pending_check``.
    """
    if current is None:
        return new == S.pending_check
    return new in TRANSITIONS[S(current)]


def require_transition(
    item_id: str, current: Optional[ModerationStatus], new: ModerationStatus
) -> None:
    if not can_transition(current, new):
        raise TransitionConflict(
            item_id, current.value if current is not None else None, S(new).value
        )


def is_public(status: ModerationStatus) -> bool:
    return S(status) in PUBLIC_STATUSES


def is_terminal(status: ModerationStatus, appealed_before: bool = False) -> bool:
    """``clean`` and ``approved`` are always terminal; ``rejected`` is terminal
    once the single appeal has been used."""
    status = S(status)
    if status in (S.clean, S.approved):
        return True
    return status == S.rejected and appealed_before
