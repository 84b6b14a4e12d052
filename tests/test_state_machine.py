"""Tests for the moderation status transition table and visibility rule."""

import pytest

from tracksafe.moderation.errors import TransitionConflict
from tracksafe.moderation.models import BADGE_LABELS, ModerationStatus as S
from tracksafe.moderation.state_machine import (
    PUBLIC_STATUSES,
    TRANSITIONS,
    can_transition,
    is_public,
    is_terminal,
    require_transition,
)


def test_every_status_has_an_entry():
    assert set(TRANSITIONS) == set(S)
    assert set(BADGE_LABELS) == set(S)


def test_allowed_edges():
    assert can_transition(None, S.pending_check)
    assert can_transition(S.pending_check, S.checking)
    assert can_transition(S.checking, S.clean)
    assert can_transition(S.checking, S.flagged)
    assert can_transition(S.checking, S.pending_check)
    assert can_transition(S.flagged, S.approved)
    assert can_transition(S.flagged, S.rejected)
    assert can_transition(S.rejected, S.appealed)
    assert can_transition(S.appealed, S.approved)
    assert can_transition(S.appealed, S.rejected)


def test_forbidden_edges():
    assert not can_transition(None, S.checking)
    assert not can_transition(S.clean, S.flagged)
    assert not can_transition(S.approved, S.pending_check)
    assert not can_transition(S.pending_check, S.clean)
    assert not can_transition(S.rejected, S.approved)
    assert not can_transition(S.flagged, S.appealed)


def test_require_transition_raises_conflict():
    with pytest.raises(TransitionConflict) as info:
        require_transition("item-1", S.clean, S.flagged)
    assert info.value.current == "clean"
    assert info.value.attempted == "flagged"


def test_visibility_rule():
    for status in S:
        expected = status in (S.pending_check, S.checking, S.clean, S.approved)
        assert is_public(status) is expected
    assert S.flagged not in PUBLIC_STATUSES


def test_terminal_states():
    assert is_terminal(S.clean)
    assert is_terminal(S.approved)
    assert not is_terminal(S.rejected)
    assert is_terminal(S.rejected, appealed_before=True)
    assert not is_terminal(S.flagged)
