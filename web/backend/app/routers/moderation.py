"""Moderation API router: batch trigger, intake and the admin review surface.

Prefix: ``/api/moderation``
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from tracksafe.moderation.errors import IntakeRejected, ItemNotFound, TransitionConflict
from tracksafe.moderation.models import AudioDescriptor, ModeratableItem
from tracksafe.service import ModerationService
from web.backend.app.middleware.auth import (
    Principal,
    get_current_user,
    get_service,
    require_admin,
    require_cron_secret,
)
from web.backend.app.models.api import (
    AuditEntryResponse,
    BatchRunResponse,
    IntakeErrorResponse,
    IntakeRequest,
    ItemResponse,
    RejectRequest,
    ReviewActionRequest,
    ReviewEntryResponse,
)

router = APIRouter(prefix="/api/moderation", tags=["moderation"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def item_to_response(item: ModeratableItem) -> ItemResponse:
    return ItemResponse(
        id=item.id,
        owner_id=item.owner_id,
        title=item.title,
        audio_ref=item.audio_ref,
        audio_format=item.audio_format,
        duration_seconds=item.duration_seconds,
        content_category=item.content_category.value,
        status=item.status.value,
        badge=item.badge_label,
        flagged=item.flagged,
        flag_reasons=list(item.flag_reasons),
        confidence=item.confidence,
        checked_at=item.checked_at,
        review_note=item.review_note,
        appeal_text=item.appeal_text,
        created_at=item.created_at,
    )


def _review_entries(entries) -> list[ReviewEntryResponse]:
    return [
        ReviewEntryResponse(
            item=item_to_response(e.item), owner=e.owner, transcript=e.item.transcript
        )
        for e in entries
    ]


# =========================================================================
# Batch trigger
# =========================================================================


@router.post(
    "/run",
    response_model=BatchRunResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_cron_secret)],
)
def run_batch(service: ModerationService = Depends(get_service)):
    """Process one batch of pending items.  Called by the periodic trigger."""
    summary = service.scheduler.run_once()
    return BatchRunResponse(**summary.to_response())


# =========================================================================
# Intake
# =========================================================================


@router.post(
    "/items",
    response_model=ItemResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": IntakeErrorResponse, "description": "Upload rejected"}},
)
def submit_item(
    body: IntakeRequest,
    user: Principal = Depends(get_current_user),
    service: ModerationService = Depends(get_service),
):
    """Validate an upload and queue it as ``pending_check``."""
    descriptor = AudioDescriptor(
        audio_ref=body.audio_ref,
        audio_format=body.audio_format,
        duration_seconds=body.duration_seconds,
        bitrate_kbps=body.bitrate_kbps,
        content_category=body.content_category,
        size_bytes=body.size_bytes,
        content_hash=body.content_hash,
        title=body.title,
    )
    try:
        item = service.intake.submit(user.user_id, descriptor)
    except IntakeRejected as exc:
        return JSONResponse(
            status_code=422,
            content=IntakeErrorResponse(code=exc.code, message=exc.message).model_dump(),
        )
    return item_to_response(item)


# =========================================================================
# Admin review
# =========================================================================


@router.get("/queue", response_model=list[ReviewEntryResponse], response_model_by_alias=True)
def list_flagged(
    _: Principal = Depends(require_admin),
    service: ModerationService = Depends(get_service),
):
    """Flagged items awaiting first review, newest first."""
    return _review_entries(service.review.list_flagged())


@router.get("/appeals", response_model=list[ReviewEntryResponse], response_model_by_alias=True)
def list_appeals(
    _: Principal = Depends(require_admin),
    service: ModerationService = Depends(get_service),
):
    """Appealed items awaiting re-review, oldest appeal first."""
    return _review_entries(service.review.list_appeals())


@router.get("/stats")
def stats(
    _: Principal = Depends(require_admin),
    service: ModerationService = Depends(get_service),
):
    return service.review.stats()


@router.post(
    "/items/{item_id}/approve", response_model=ItemResponse, response_model_by_alias=True
)
def approve_item(
    item_id: str,
    body: Optional[ReviewActionRequest] = None,
    admin: Principal = Depends(require_admin),
    service: ModerationService = Depends(get_service),
):
    try:
        item = service.review.approve(item_id, admin.user_id, body.note if body else "")
    except ItemNotFound:
        raise HTTPException(status_code=404, detail=f"Item '{item_id}' not found")
    except TransitionConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return item_to_response(item)


@router.post(
    "/items/{item_id}/reject", response_model=ItemResponse, response_model_by_alias=True
)
def reject_item(
    item_id: str,
    body: RejectRequest,
    admin: Principal = Depends(require_admin),
    service: ModerationService = Depends(get_service),
):
    try:
        item = service.review.reject(item_id, admin.user_id, body.reason)
    except ItemNotFound:
        raise HTTPException(status_code=404, detail=f"Item '{item_id}' not found")
    except TransitionConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return item_to_response(item)


@router.get(
    "/items/{item_id}/audit",
    response_model=list[AuditEntryResponse],
    response_model_by_alias=True,
)
def item_audit(
    item_id: str,
    limit: int = Query(200, ge=1, le=10000),
    _: Principal = Depends(require_admin),
    service: ModerationService = Depends(get_service),
):
    """Transition history of one item, oldest first."""
    if service.store.get(item_id) is None:
        raise HTTPException(status_code=404, detail=f"Item '{item_id}' not found")
    entries = service.audit.entries_for_item(item_id)[:limit]
    return [AuditEntryResponse(**asdict(e)) for e in entries]
