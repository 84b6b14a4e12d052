"""Admin review queue over flagged and appealed items."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from tracksafe.moderation.errors import TransitionConflict
from tracksafe.moderation.models import ModeratableItem, ModerationStatus, isoformat, utcnow
from tracksafe.moderation.state_machine import REVIEWABLE_STATUSES
from tracksafe.moderation.store import ModerationStore
from tracksafe.notifications import NotificationDispatcher, build_notification

logger = logging.getLogger(__name__)

# Returns display information for an owner id (name, handle, ...)
OwnerLookup = Callable[[str], dict]


def _default_owner(owner_id: str) -> dict:
    return {"id": owner_id}


@dataclass
class ReviewEntry:
    """Everything an admin needs to decide without fetching the audio."""

    item: ModeratableItem
    owner: dict = field(default_factory=dict)


class ReviewQueue:
    """Read surface and approve/reject actions for moderators."""

    def __init__(
        self,
        store: ModerationStore,
        notifier: Optional[NotificationDispatcher] = None,
        owner_lookup: Optional[OwnerLookup] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.owner_lookup = owner_lookup or _default_owner

    def _entry(self, item: ModeratableItem) -> ReviewEntry:
        try:
            owner = self.owner_lookup(item.owner_id)
        except Exception:
            logger.exception("Owner lookup failed for %s", item.owner_id)
            owner = _default_owner(item.owner_id)
        return ReviewEntry(item=item, owner=owner)

    def list_flagged(self) -> list[ReviewEntry]:
        """Items awaiting a first review, newest first."""
        items = self.store.list_items(status=ModerationStatus.flagged)
        items.sort(key=lambda i: i.checked_at or i.updated_at, reverse=True)
        return [self._entry(i) for i in items]

    def list_appeals(self) -> list[ReviewEntry]:
        """Appealed items awaiting re-review, oldest appeal first."""
        items = self.store.list_items(status=ModerationStatus.appealed)
        items.sort(key=lambda i: i.appealed_at or i.updated_at)
        return [self._entry(i) for i in items]

    def stats(self) -> dict[str, int]:
        return self.store.counts()

    def _resolve(
        self, item_id: str, admin_id: str, new_status: ModerationStatus, note: str
    ) -> ModeratableItem:
        if not admin_id:
            raise ValueError("An admin identity is required to resolve an item")
        current = self.store.require(item_id)
        if current.status not in REVIEWABLE_STATUSES:
            raise TransitionConflict(item_id, current.status.value, new_status.value)

        was_appeal = current.status == ModerationStatus.appealed
        updated = self.store.transition(
            item_id,
            current.status,
            new_status,
            actor=f"admin:{admin_id}",
            details={"note": note} if note else None,
            reviewed_by=admin_id,
            reviewed_at=isoformat(utcnow()),
            review_note=note,
        )
        if updated is None:
            # Status changed between the read and the write.
            latest = self.store.require(item_id)
            raise TransitionConflict(item_id, latest.status.value, new_status.value)

        logger.info("Admin %s %s item %s", admin_id, new_status.value, item_id)
        if self.notifier is not None:
            outcome = "appeal_resolved" if was_appeal else new_status.value
            try:
                self.notifier.dispatch(build_notification(updated, outcome, "owner"))
            except Exception:
                logger.exception("Could not queue review notification for %s", item_id)
        return updated

    def approve(self, item_id: str, admin_id: str, note: str = "") -> ModeratableItem:
        return self._resolve(item_id, admin_id, ModerationStatus.approved, note.strip())

    def reject(self, item_id: str, admin_id: str, reason: str) -> ModeratableItem:
        """Reject with a human-readable reason, kept apart from ``flag_reasons``."""
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("A rejection reason is required")
        return self._resolve(item_id, admin_id, ModerationStatus.rejected, reason)
