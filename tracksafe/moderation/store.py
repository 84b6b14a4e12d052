"""File-based JSON storage for moderatable items.

Storage path: ``~/.tracksafe/moderation/`` with:
- ``items.json`` -- list of item dicts
- ``items.lock`` -- lock file guarding read-modify-write cycles

Every mutation is a single-item compare-and-transition on ``status`` executed
while holding both an in-process lock and an exclusive ``flock`` on the lock
file, so overlapping scheduler runs (threads or processes) can never both
claim the same item.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Union

from tracksafe.moderation.audit import TransitionAuditLog
from tracksafe.moderation.errors import IntakeRejected, ItemNotFound
from tracksafe.moderation.models import (
    ModeratableItem,
    ModerationStatus,
    isoformat,
    parse_timestamp,
    utcnow,
)
from tracksafe.moderation.state_machine import is_public, require_transition

logger = logging.getLogger(__name__)

# Fields that may be set once and never changed afterwards
WRITE_ONCE_FIELDS = ("confidence", "transcript", "appeal_text", "checked_at")
IMMUTABLE_FIELDS = ("id", "owner_id", "content_hash", "audio_ref", "created_at")

StatusSpec = Union[ModerationStatus, Iterable[ModerationStatus]]


class ModerationStore:
    """Persisted per-item moderation state."""

    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = None,
        audit: Optional[TransitionAuditLog] = None,
    ) -> None:
        if base_dir is None:
            self._base = Path.home() / ".tracksafe" / "moderation"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._items_path = self._base / "items.json"
        self._lock_path = self._base / "items.lock"
        self._mutex = threading.RLock()
        self.audit = audit or TransitionAuditLog(self._base / "audit")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._mutex:
            with open(self._lock_path, "a") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read(self) -> list[dict]:
        if not self._items_path.exists():
            return []
        try:
            data = json.loads(self._items_path.read_text())
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Moderation store is corrupt: {self._items_path}") from exc
        return data if isinstance(data, list) else []

    def _write(self, data: list[dict]) -> None:
        fd, tmp = tempfile.mkstemp(dir=self._base, prefix=".items-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump(data, fh, indent=2, default=str)
            os.replace(tmp, self._items_path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    @staticmethod
    def _statuses(spec: StatusSpec) -> set[ModerationStatus]:
        if isinstance(spec, (ModerationStatus, str)):
            return {ModerationStatus(spec)}
        return {ModerationStatus(s) for s in spec}

    @staticmethod
    def _apply_updates(item: ModeratableItem, updates: dict[str, Any]) -> None:
        for key, value in updates.items():
            if key not in ModeratableItem.__dataclass_fields__:
                raise ValueError(f"Unknown item field: {key}")
            if key in IMMUTABLE_FIELDS or key == "status":
                raise ValueError(f"Field '{key}' cannot be updated")
            current = getattr(item, key)
            if key in WRITE_ONCE_FIELDS and current is not None and current != value:
                raise ValueError(f"Field '{key}' is write-once")
            if key == "flagged" and current and not value:
                raise ValueError("Field 'flagged' cannot be cleared")
            if key == "flag_reasons":
                if list(value[: len(current)]) != list(current):
                    raise ValueError("Field 'flag_reasons' is append-only")
            if key == "confidence" and value is not None and not 0.0 <= value <= 1.0:
                raise ValueError("confidence must be within [0, 1]")
            setattr(item, key, value)

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create_item(self, item: ModeratableItem, actor: str = "system") -> ModeratableItem:
        """Persist a new item in ``pending_check``.

        Raises ``IntakeRejected`` when the owner already has a non-deleted
        item with the same content hash.
        """
        require_transition(item.id, None, item.status)
        with self._locked():
            rows = self._read()
            for row in rows:
                if row["content_hash"] != item.content_hash or row.get("deleted_at"):
                    continue
                if row["owner_id"] == item.owner_id:
                    raise IntakeRejected(
                        "duplicate_upload", "You have already uploaded this audio file."
                    )
                logger.info(
                    "Cross-owner duplicate upload: item %s (owner %s) matches item %s (owner %s)",
                    item.id, item.owner_id, row["id"], row["owner_id"],
                )
            rows.append(item.to_dict())
            self._write(rows)
            self.audit.record_transition(item.id, None, item.status.value, actor)
        return item

    def get(self, item_id: str) -> Optional[ModeratableItem]:
        for row in self._read():
            if row["id"] == item_id:
                return ModeratableItem.from_dict(row)
        return None

    def require(self, item_id: str) -> ModeratableItem:
        item = self.get(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    def list_items(
        self,
        status: Optional[StatusSpec] = None,
        owner_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[ModeratableItem]:
        items = [ModeratableItem.from_dict(r) for r in self._read()]
        if not include_deleted:
            items = [i for i in items if i.deleted_at is None]
        if status is not None:
            wanted = self._statuses(status)
            items = [i for i in items if i.status in wanted]
        if owner_id is not None:
            items = [i for i in items if i.owner_id == owner_id]
        return items

    def list_public(self) -> list[ModeratableItem]:
        """Items eligible for public listings, newest first."""
        items = [i for i in self.list_items() if is_public(i.status)]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items

    def list_for_owner(self, owner_id: str) -> list[ModeratableItem]:
        """Every status, unfiltered, for the owner's own view."""
        items = self.list_items(owner_id=owner_id)
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items

    def find_by_hash(
        self, content_hash: str, owner_id: Optional[str] = None
    ) -> list[ModeratableItem]:
        return [
            i
            for i in self.list_items()
            if i.content_hash == content_hash and (owner_id is None or i.owner_id == owner_id)
        ]

    def counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in ModerationStatus}
        for item in self.list_items():
            counts[item.status.value] += 1
        return counts

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        item_id: str,
        expected: StatusSpec,
        new_status: ModerationStatus,
        actor: str = "system",
        *,
        claim_token: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        **updates: Any,
    ) -> Optional[ModeratableItem]:
        """Compare-and-transition a single item.

        Moves the item to *new_status* only if its current status is in
        *expected* (and, when *claim_token* is given, the item is still held
        by that claim).  Returns the updated item, or ``None`` when no row
        matched.  Raises ``ItemNotFound`` for an unknown id and
        ``TransitionConflict`` if the edge is not in the transition table.
        """
        expected_set = self._statuses(expected)
        new_status = ModerationStatus(new_status)
        with self._locked():
            rows = self._read()
            for index, row in enumerate(rows):
                if row["id"] == item_id:
                    break
            else:
                raise ItemNotFound(item_id)

            item = ModeratableItem.from_dict(row)
            if item.status not in expected_set:
                return None
            if claim_token is not None and item.claim_token != claim_token:
                return None
            require_transition(item.id, item.status, new_status)

            prior = item.status
            self._apply_updates(item, updates)
            if prior == ModerationStatus.checking:
                item.claimed_at = None
                item.claim_token = None
            item.status = new_status
            item.updated_at = isoformat(utcnow())
            if item.flagged and not item.flag_reasons:
                raise ValueError(f"Item {item.id} is flagged without a reason")

            rows[index] = item.to_dict()
            self._write(rows)
            self.audit.record_transition(
                item.id, prior.value, new_status.value, actor, item.flag_reasons, details
            )
        return item

    def claim_pending(
        self, limit: int, run_id: str, now: Optional[datetime] = None
    ) -> list[ModeratableItem]:
        """Atomically move up to *limit* oldest ``pending_check`` items to
        ``checking`` and return them."""
        now = now or utcnow()
        stamp = isoformat(now)
        claimed: list[ModeratableItem] = []
        with self._locked():
            rows = self._read()
            pending = [
                (i, ModeratableItem.from_dict(r))
                for i, r in enumerate(rows)
                if r["status"] == ModerationStatus.pending_check.value and not r.get("deleted_at")
            ]
            pending.sort(key=lambda p: p[1].created_at)
            for index, item in pending[:limit]:
                item.status = ModerationStatus.checking
                item.claimed_at = stamp
                item.claim_token = run_id
                item.updated_at = stamp
                rows[index] = item.to_dict()
                claimed.append(item)
            if claimed:
                self._write(rows)
                for item in claimed:
                    self.audit.record_transition(
                        item.id,
                        ModerationStatus.pending_check.value,
                        ModerationStatus.checking.value,
                        "system",
                        details={"run_id": run_id},
                    )
        return claimed

    def touch_claim(
        self, item_id: str, claim_token: str, now: Optional[datetime] = None
    ) -> bool:
        """Re-stamp ``claimed_at`` on an item still held by *claim_token*.

        Returns ``False`` when the claim has been recovered or taken over.
        """
        stamp = isoformat(now or utcnow())
        with self._locked():
            rows = self._read()
            for index, row in enumerate(rows):
                if row["id"] != item_id:
                    continue
                if (
                    row["status"] != ModerationStatus.checking.value
                    or row.get("claim_token") != claim_token
                ):
                    return False
                rows[index] = dict(row, claimed_at=stamp)
                self._write(rows)
                return True
        raise ItemNotFound(item_id)

    def recover_stale(
        self, timeout_seconds: float, now: Optional[datetime] = None
    ) -> list[str]:
        """Return ``checking`` items claimed more than *timeout_seconds* ago
        to ``pending_check``.  Returns the recovered ids."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=timeout_seconds)
        recovered: list[tuple[str, Optional[str]]] = []
        with self._locked():
            rows = self._read()
            for index, row in enumerate(rows):
                if row["status"] != ModerationStatus.checking.value:
                    continue
                claimed_at = row.get("claimed_at")
                if claimed_at and parse_timestamp(claimed_at) > cutoff:
                    continue
                item = ModeratableItem.from_dict(row)
                recovered.append((item.id, item.claim_token))
                item.status = ModerationStatus.pending_check
                item.claimed_at = None
                item.claim_token = None
                item.updated_at = isoformat(now)
                rows[index] = item.to_dict()
            if recovered:
                self._write(rows)
                for item_id, token in recovered:
                    self.audit.record_transition(
                        item_id,
                        ModerationStatus.checking.value,
                        ModerationStatus.pending_check.value,
                        "system",
                        details={"stale_claim": token},
                    )
        for item_id, token in recovered:
            logger.warning("Recovered stale claim on item %s (run %s)", item_id, token)
        return [item_id for item_id, _ in recovered]

    def soft_delete(self, item_id: str) -> ModeratableItem:
        """Mark an item deleted on behalf of the content-ownership system."""
        with self._locked():
            rows = self._read()
            for index, row in enumerate(rows):
                if row["id"] == item_id:
                    item = ModeratableItem.from_dict(row)
                    if item.deleted_at is None:
                        item.deleted_at = isoformat(utcnow())
                        item.updated_at = item.deleted_at
                        rows[index] = item.to_dict()
                        self._write(rows)
                    return item
        raise ItemNotFound(item_id)
