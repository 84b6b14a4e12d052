"""Append-only audit trail of moderation status transitions.

Entries are stored as newline-delimited JSON in daily files under
``~/.tracksafe/audit/``.  Nothing in this module updates or deletes an entry.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from tracksafe.moderation.models import TransitionAuditEntry, isoformat, utcnow

logger = logging.getLogger(__name__)


class TransitionAuditLog:
    """File-based JSONL log of status transitions."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".tracksafe" / "audit"
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _read_all_entries(self) -> list[TransitionAuditEntry]:
        entries: list[TransitionAuditEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
                if not line.strip():
                    continue
                try:
                    entries.append(TransitionAuditEntry(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    logger.warning("Skipping malformed audit line %s:%d", path.name, lineno)
        return entries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record_transition(
        self,
        item_id: str,
        prior_status: Optional[str],
        new_status: str,
        actor: str,
        reason_snapshot: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> TransitionAuditEntry:
        """Append one transition and return the stored entry."""
        now = utcnow()
        entry = TransitionAuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=isoformat(now),
            item_id=item_id,
            prior_status=prior_status,
            new_status=new_status,
            actor=actor,
            reason_snapshot=list(reason_snapshot or []),
            details=details or {},
        )
        with self._lock:
            with self._log_file_for_date(now).open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(asdict(entry)) + "\n")
        return entry

    def entries_for_item(self, item_id: str) -> list[TransitionAuditEntry]:
        """All transitions of one item, oldest first."""
        result = [e for e in self._read_all_entries() if e.item_id == item_id]
        result.sort(key=lambda e: e.timestamp)
        return result

    def get_entries(
        self,
        *,
        actor: Optional[str] = None,
        new_status: Optional[str] = None,
        limit: int = 200,
    ) -> list[TransitionAuditEntry]:
        """Return filtered entries, newest first."""
        entries = self._read_all_entries()
        if actor:
            entries = [e for e in entries if e.actor == actor]
        if new_status:
            entries = [e for e in entries if e.new_status == new_status]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def export(self, fmt: str = "json", **filters: Any) -> str:
        """Export entries as ``json`` or ``csv``."""
        entries = self.get_entries(limit=filters.pop("limit", 10000), **filters)
        if fmt == "csv":
            lines = ["id,timestamp,item_id,prior_status,new_status,actor,reasons"]
            for e in entries:
                reasons = ";".join(e.reason_snapshot).replace(",", " ")
                lines.append(
                    f"{e.id},{e.timestamp},{e.item_id},{e.prior_status or ''},"
                    f"{e.new_status},{e.actor},{reasons}"
                )
            return "\n".join(lines)
        return json.dumps([asdict(e) for e in entries], indent=2)
