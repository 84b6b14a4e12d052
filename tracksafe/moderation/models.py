"""Data models for the moderation pipeline."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class ModerationStatus(str, Enum):
    """Moderation state of an item.  Values are stored verbatim."""

    pending_check = "pending_check"
    checking = "checking"
    clean = "clean"
    flagged = "flagged"
    approved = "approved"
    rejected = "rejected"
    appealed = "appealed"


class ContentCategory(str, Enum):
    """Declared content category of an upload."""

    music = "music"
    spoken_word = "spoken_word"


# Owner-facing badge text per status
BADGE_LABELS: dict[ModerationStatus, str] = {
    ModerationStatus.pending_check: "Pending Check",
    ModerationStatus.checking: "Checking",
    ModerationStatus.clean: "Verified",
    ModerationStatus.flagged: "Under Review",
    ModerationStatus.approved: "Approved",
    ModerationStatus.rejected: "Not Approved",
    ModerationStatus.appealed: "Appeal Pending",
}


@dataclass
class ModeratableItem:
    """One uploaded audio asset subject to moderation."""

    id: str
    owner_id: str
    audio_ref: str
    content_hash: str
    content_category: ContentCategory = ContentCategory.music
    audio_format: str = ""
    size_bytes: int = 0
    duration_seconds: float = 0.0
    bitrate_kbps: int = 0
    title: str = ""
    status: ModerationStatus = ModerationStatus.pending_check
    flagged: bool = False
    flag_reasons: list[str] = field(default_factory=list)
    confidence: Optional[float] = None
    transcript: Optional[str] = None
    transcript_sampled: bool = False
    checked_at: Optional[str] = None
    claimed_at: Optional[str] = None
    claim_token: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    review_note: str = ""
    appeal_text: Optional[str] = None
    appealed_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = ModerationStatus(self.status)
        if isinstance(self.content_category, str):
            self.content_category = ContentCategory(self.content_category)
        if not self.created_at:
            self.created_at = isoformat(utcnow())
        if not self.updated_at:
            self.updated_at = self.created_at

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    @property
    def is_public(self) -> bool:
        """Whether the item may appear in public listings."""
        from tracksafe.moderation.state_machine import is_public

        return self.deleted_at is None and is_public(self.status)

    @property
    def badge_label(self) -> str:
        return BADGE_LABELS[self.status]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["content_category"] = self.content_category.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModeratableItem":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class TransitionAuditEntry:
    """Append-only record of a single status transition."""

    id: str
    timestamp: str
    item_id: str
    prior_status: Optional[str]
    new_status: str
    actor: str  # "system" | "admin:<id>" | "owner:<id>"
    reason_snapshot: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class AudioDescriptor:
    """Structural description of an upload, as handed to intake.

    Either ``raw_bytes`` or ``content_hash`` must be supplied.  ``size_bytes``
    defaults to ``len(raw_bytes)`` when bytes are given.
    """

    audio_ref: str
    audio_format: str
    duration_seconds: float
    bitrate_kbps: int
    content_category: str = ContentCategory.music.value
    size_bytes: Optional[int] = None
    content_hash: Optional[str] = None
    raw_bytes: Optional[bytes] = None
    title: str = ""


@dataclass
class Transcript:
    """Text produced by a transcription capability."""

    text: str
    sampled: bool = False
    model: str = ""


@dataclass
class ClassificationResult:
    """Per-category probability scores from the harmful-content classifier."""

    flagged: bool = False
    category_scores: dict[str, float] = field(default_factory=dict)
    model: str = ""

    @property
    def top_category(self) -> Optional[str]:
        if not self.category_scores:
            return None
        return max(self.category_scores, key=lambda c: self.category_scores[c])

    @property
    def top_score(self) -> float:
        if not self.category_scores:
            return 0.0
        return max(self.category_scores.values())


@dataclass
class HeuristicSignal:
    """A local, deterministic signal raised by the heuristic scanner."""

    label: str
    score: float
    detail: str = ""


@dataclass
class Decision:
    """Combined automated verdict for one item."""

    confidence: float
    flagged: bool
    reasons: list[str] = field(default_factory=list)
    top_source: str = ""


@dataclass
class BatchSummary:
    """Outcome counts for one scheduler run."""

    run_id: str
    processed: int = 0
    flagged: int = 0
    clean: int = 0
    errors: int = 0
    recovered: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0

    def to_response(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "flagged": self.flagged,
            "clean": self.clean,
            "errors": self.errors,
            "durationSeconds": round(self.duration_seconds, 3),
        }
