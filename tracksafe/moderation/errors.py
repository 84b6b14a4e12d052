"""Exception types raised by the moderation pipeline.

Only ``IntakeRejected``, ``AppealError`` and (for admins)
``TransitionConflict`` are meant to reach a caller.  Everything raised inside
the asynchronous stages is handled by the scheduler.
"""

from __future__ import annotations

from typing import Optional


class ModerationError(Exception):
    """Base class for moderation errors."""


class IntakeRejected(ModerationError):
    """Structural rejection at upload time.  The item is never created."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class TransientServiceError(ModerationError):
    """Network, timeout or availability failure of an external capability."""


class NonRetryableProcessingError(ModerationError):
    """The input cannot be processed; retrying will not help."""


class AudioUnreadableError(NonRetryableProcessingError):
    """The audio is missing, empty or not decodable."""


class ItemNotFound(ModerationError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id


class TransitionConflict(ModerationError):
    """A status change was attempted from a state that does not allow it."""

    def __init__(self, item_id: str, current: Optional[str], attempted: str) -> None:
        super().__init__(
            f"Item {item_id} cannot move from {current or 'nothing'} to {attempted}"
        )
        self.item_id = item_id
        self.current = current
        self.attempted = attempted


class AppealError(ModerationError):
    """An appeal precondition failed."""

    MESSAGES = {
        "not_found": "Track not found.",
        "not_owner": "Only the owner of this track can appeal.",
        "wrong_status": "Only rejected tracks can be appealed.",
        "already_appealed": "An appeal has already been submitted for this track.",
        "too_short": "Appeal is too short.",
        "too_long": "Appeal is too long.",
    }

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or self.MESSAGES.get(code, code))
        self.code = code
