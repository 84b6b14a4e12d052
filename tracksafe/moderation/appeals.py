"""Owner appeals against a rejection.  One appeal per item, ever."""

from __future__ import annotations

import logging
from typing import Optional

from tracksafe.moderation.errors import AppealError
from tracksafe.moderation.models import ModeratableItem, ModerationStatus, isoformat, utcnow
from tracksafe.moderation.store import ModerationStore
from tracksafe.notifications import NotificationDispatcher, build_notification

logger = logging.getLogger(__name__)

MIN_APPEAL_CHARS = 20
MAX_APPEAL_CHARS = 500


class AppealHandler:
    def __init__(
        self,
        store: ModerationStore,
        notifier: Optional[NotificationDispatcher] = None,
        min_chars: int = MIN_APPEAL_CHARS,
        max_chars: int = MAX_APPEAL_CHARS,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.min_chars = min_chars
        self.max_chars = max_chars

    def submit(self, item_id: str, caller_id: str, text: str) -> ModeratableItem:
        """Record the appeal and move the item from ``rejected`` to ``appealed``.

        Raises ``AppealError`` with one of: ``not_found``, ``not_owner``,
        ``already_appealed``, ``wrong_status``, ``too_short``, ``too_long``.
        """
        item = self.store.get(item_id)
        if item is None or item.deleted_at is not None:
            raise AppealError("not_found")
        if item.owner_id != caller_id:
            raise AppealError("not_owner")
        if item.appeal_text is not None:
            raise AppealError("already_appealed")
        if item.status != ModerationStatus.rejected:
            raise AppealError("wrong_status")

        text = (text or "").strip()
        if len(text) < self.min_chars:
            raise AppealError(
                "too_short", f"Appeal must be at least {self.min_chars} characters."
            )
        if len(text) > self.max_chars:
            raise AppealError(
                "too_long", f"Appeal must be at most {self.max_chars} characters."
            )

        updated = self.store.transition(
            item_id,
            ModerationStatus.rejected,
            ModerationStatus.appealed,
            actor=f"owner:{caller_id}",
            appeal_text=text,
            appealed_at=isoformat(utcnow()),
        )
        if updated is None:
            # Lost a race with a concurrent appeal or review.
            latest = self.store.require(item_id)
            if latest.appeal_text is not None:
                raise AppealError("already_appealed")
            raise AppealError("wrong_status")

        logger.info("Appeal received for item %s", item_id)
        if self.notifier is not None:
            for recipient in ("admins", "owner"):
                try:
                    self.notifier.dispatch(
                        build_notification(updated, "appeal_received", recipient)
                    )
                except Exception:
                    logger.exception("Could not queue appeal notification for %s", item_id)
        return updated
