"""Listener- and owner-facing track endpoints.

Prefix: ``/api/tracks``
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tracksafe.moderation.errors import AppealError
from tracksafe.service import ModerationService
from web.backend.app.middleware.auth import Principal, get_current_user, get_service
from web.backend.app.models.api import (
    AppealRequest,
    AppealResponse,
    ItemResponse,
    PublicTrackResponse,
)
from web.backend.app.routers.moderation import item_to_response

router = APIRouter(prefix="/api/tracks", tags=["tracks"])

_APPEAL_STATUS = {
    "not_found": 404,
    "not_owner": 403,
    "wrong_status": 409,
    "already_appealed": 409,
    "too_short": 422,
    "too_long": 422,
}


@router.get("/public", response_model=list[PublicTrackResponse], response_model_by_alias=True)
def list_public(service: ModerationService = Depends(get_service)):
    """Tracks anyone may see: pending, checking, clean and approved."""
    return [
        PublicTrackResponse(
            id=i.id,
            owner_id=i.owner_id,
            title=i.title,
            audio_ref=i.audio_ref,
            duration_seconds=i.duration_seconds,
            badge=i.badge_label,
        )
        for i in service.store.list_public()
    ]


@router.get("/mine", response_model=list[ItemResponse], response_model_by_alias=True)
def list_mine(
    user: Principal = Depends(get_current_user),
    service: ModerationService = Depends(get_service),
):
    """Every track of the caller, including hidden ones, with status badges."""
    return [item_to_response(i) for i in service.store.list_for_owner(user.user_id)]


@router.post("/{item_id}/appeal", response_model=AppealResponse, response_model_exclude_none=True)
def submit_appeal(
    item_id: str,
    body: AppealRequest,
    user: Principal = Depends(get_current_user),
    service: ModerationService = Depends(get_service),
):
    try:
        service.appeals.submit(item_id, user.user_id, body.appeal_text)
    except AppealError as exc:
        return JSONResponse(
            status_code=_APPEAL_STATUS.get(exc.code, 400),
            content={"success": False, "error": exc.code.replace("_", "-"), "message": str(exc)},
        )
    return AppealResponse(
        success=True,
        message="Appeal submitted. A moderator will review it shortly.",
    )
