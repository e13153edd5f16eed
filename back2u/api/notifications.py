"""
Back2U — Notifications API

The notification sink used by the match notifier (and any other service
holding the service key), plus the recipient's inbox endpoints.
"""

from __future__ import annotations

import secrets
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from back2u.config import get_settings
from back2u.database import get_db
from back2u.schemas.match import ErrorResponse
from back2u.schemas.notification import (
    NotificationRequest,
    NotificationResponse,
    NotificationSendResponse,
)
from back2u.services.errors import NotificationNotFoundError
from back2u.services.notification_service import NotificationService

logger = structlog.get_logger("back2u.api.notifications")

router = APIRouter()

_notification_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service


def require_service_key(authorization: Optional[str] = Header(None)) -> None:
    """Reject sink calls without the service bearer key, when one is set."""
    expected = get_settings().SERVICE_API_KEY
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service credentials.",
        )


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Notification sink
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=NotificationSendResponse,
    responses={500: {"model": ErrorResponse}},
    dependencies=[Depends(require_service_key)],
    summary="Create an in-app notification and optionally email it",
)
async def send_notification(
    payload: NotificationRequest,
    db: AsyncSession = Depends(get_db),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationSendResponse:
    result = await service.send(payload, db)
    return NotificationSendResponse(**result)


# ──────────────────────────────────────────────────────────────────────────────
# GET / — List a user's notifications
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "",
    response_model=list[NotificationResponse],
    summary="List notifications for a user, newest first",
)
async def list_notifications(
    user_id: uuid.UUID = Query(..., description="Recipient profile id"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    service: NotificationService = Depends(get_notification_service),
) -> list[NotificationResponse]:
    notifications = await service.list_for_user(user_id, db, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


# ──────────────────────────────────────────────────────────────────────────────
# POST /{notification_id}/read — Mark one notification read
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{notification_id}/read",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Mark a notification as read",
)
async def mark_notification_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: NotificationService = Depends(get_notification_service),
) -> None:
    if not await service.mark_read(notification_id, db):
        raise NotificationNotFoundError(notification_id)
    logger.info("notification_marked_read", notification_id=str(notification_id))
