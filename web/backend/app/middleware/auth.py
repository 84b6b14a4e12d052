"""Auth middleware -- FastAPI dependencies for extracting the current caller.

Supports two authentication methods for people:
1. ``Authorization: Bearer <token>`` header
2. ``X-API-Key: <token>`` header (programmatic access)

Both are resolved through the ``api.tokens`` table of the loaded config.
The batch trigger is protected separately by the shared cron secret.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from tracksafe.config import load_config
from tracksafe.service import ModerationService

logger = logging.getLogger(__name__)

# Shared service instance
_service: Optional[ModerationService] = None


def get_service() -> ModerationService:
    """Return the singleton ModerationService instance."""
    global _service
    if _service is None:
        _service = ModerationService.from_config(load_config())
    return _service


def set_service(service: Optional[ModerationService]) -> None:
    """Replace the process-wide service (``None`` resets it)."""
    global _service
    _service = service


@dataclass
class Principal:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None


def _lookup(service: ModerationService, token: str) -> Optional[Principal]:
    for known, entry in service.config.api.tokens.items():
        if hmac.compare_digest(known.encode(), token.encode()):
            return Principal(user_id=entry["user_id"], role=entry.get("role", "user"))
    return None


async def get_current_user(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    service: ModerationService = Depends(get_service),
) -> Principal:
    """FastAPI dependency that extracts and validates the current caller.

    Raises ``401 Unauthorized`` if no valid credentials are provided.
    """
    for token in (_bearer(authorization), x_api_key):
        if token:
            principal = _lookup(service, token)
            if principal is not None:
                return principal

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_admin(user: Principal = Depends(get_current_user)) -> Principal:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


async def require_cron_secret(
    authorization: Optional[str] = Header(None),
    service: ModerationService = Depends(get_service),
) -> None:
    """Accept only ``Authorization: Bearer <cron_secret>``.

    An unset secret rejects every request.
    """
    secret = service.config.api.cron_secret
    token = _bearer(authorization)
    if not secret or not token or not hmac.compare_digest(secret.encode(), token.encode()):
        logger.warning("Rejected batch trigger with missing or invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
