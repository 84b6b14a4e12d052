"""Pydantic models for API request/response serialization.

These models mirror the tracksafe dataclasses and provide camelCase JSON
for the client-facing endpoints.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Batch trigger
# ---------------------------------------------------------------------------


class BatchRunResponse(CamelModel):
    processed: int = 0
    flagged: int = 0
    clean: int = 0
    errors: int = 0
    duration_seconds: float = Field(0.0, alias="durationSeconds")


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class IntakeRequest(CamelModel):
    """Metadata for an upload whose bytes already live in object storage."""

    audio_ref: str = Field(..., alias="audioRef")
    audio_format: str = Field(..., alias="format")
    size_bytes: int = Field(..., alias="sizeBytes")
    duration_seconds: float = Field(..., alias="durationSeconds")
    bitrate_kbps: int = Field(..., alias="bitrateKbps")
    content_hash: str = Field(..., alias="contentHash")
    content_category: str = Field("music", alias="contentCategory")
    title: str = ""


class IntakeErrorResponse(BaseModel):
    code: str
    message: str


class ItemResponse(CamelModel):
    """Mirrors tracksafe.moderation.models.ModeratableItem."""

    id: str
    owner_id: str = Field(..., alias="ownerId")
    title: str = ""
    audio_ref: str = Field(..., alias="audioRef")
    audio_format: str = Field("", alias="format")
    duration_seconds: float = Field(0.0, alias="durationSeconds")
    content_category: str = Field("music", alias="contentCategory")
    status: str
    badge: str = ""
    flagged: bool = False
    flag_reasons: list[str] = Field(default_factory=list, alias="flagReasons")
    confidence: Optional[float] = None
    checked_at: Optional[str] = Field(None, alias="checkedAt")
    review_note: str = Field("", alias="reviewNote")
    appeal_text: Optional[str] = Field(None, alias="appealText")
    created_at: str = Field("", alias="createdAt")


class PublicTrackResponse(CamelModel):
    """What anonymous listeners see; moderation detail stays private."""

    id: str
    owner_id: str = Field(..., alias="ownerId")
    title: str = ""
    audio_ref: str = Field(..., alias="audioRef")
    duration_seconds: float = Field(0.0, alias="durationSeconds")
    badge: str = ""


class ReviewEntryResponse(CamelModel):
    item: ItemResponse
    owner: dict[str, Any] = Field(default_factory=dict)
    transcript: Optional[str] = None


class ReviewActionRequest(BaseModel):
    note: str = ""


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class AuditEntryResponse(CamelModel):
    """Mirrors tracksafe.moderation.models.TransitionAuditEntry."""

    id: str
    timestamp: str
    item_id: str = Field(..., alias="itemId")
    prior_status: Optional[str] = Field(None, alias="priorStatus")
    new_status: str = Field(..., alias="newStatus")
    actor: str
    reason_snapshot: list[str] = Field(default_factory=list, alias="reasonSnapshot")
    details: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Appeals
# ---------------------------------------------------------------------------


class AppealRequest(CamelModel):
    # Length is checked by the handler so errors carry a stable code.
    appeal_text: str = Field("", alias="appealText")


class AppealResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
