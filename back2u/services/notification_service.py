"""
Back2U — Notification sink and match-notification dispatch

``NotificationService`` is the sink: it persists the in-app notification
row and, when the recipient has email notifications enabled, sends a
templated email.  Email failures never fail the notification.

Dispatchers deliver notification payloads to the sink:

- ``HttpNotificationDispatcher`` POSTs to a remote sink endpoint.
- ``LocalNotificationDispatcher`` calls ``NotificationService`` in-process,
  each notification in its own session so that it commits independently
  of the caller's transaction.
"""

from __future__ import annotations

import uuid
from typing import Any, Protocol

import httpx
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from back2u.config import get_settings
from back2u.models.notification import Notification
from back2u.models.profile import Profile
from back2u.schemas.notification import NotificationRequest
from back2u.services.email_service import EmailService
from back2u.services.errors import NotificationError, PersistenceError

logger = structlog.get_logger("back2u.notification_service")


class NotificationService:
    """Persist in-app notifications and send optional emails."""

    def __init__(self, email_service: EmailService | None = None) -> None:
        self.email_service = email_service or EmailService()

    async def send(self, request: NotificationRequest, db_session: AsyncSession) -> dict:
        """Create the notification row, then email the recipient if they
        opted in.

        Raises
        ------
        PersistenceError
            The notification row could not be written.
        """
        log = logger.bind(user_id=str(request.user_id), type=request.type)
        log.info("notification_send_start")

        notification = Notification(
            user_id=request.user_id,
            type=request.type,
            title=request.title,
            message=request.message,
            item_id=request.item_id,
            related_item_id=request.related_item_id,
        )
        try:
            db_session.add(notification)
            await db_session.flush()
        except SQLAlchemyError as exc:
            log.error("notification_insert_failed", error=str(exc))
            raise PersistenceError(f"Error creating notification: {exc}") from exc

        profile: Profile | None = None
        try:
            result = await db_session.execute(
                select(Profile).where(Profile.id == request.user_id)
            )
            profile = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            log.error("notification_profile_lookup_failed", error=str(exc))

        if profile is not None and profile.email_notifications and request.send_email is not False:
            try:
                await self.email_service.send(
                    to_address=profile.email,
                    notification_type=request.type,
                    title=request.title,
                    message=request.message,
                    recipient_name=profile.name,
                )
            except Exception as exc:
                log.error("notification_email_failed", error=str(exc))

        log.info("notification_send_complete", notification_id=str(notification.id))
        return {"success": True}

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        limit: int = 50,
    ) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        result = await db_session.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, notification_id: uuid.UUID, db_session: AsyncSession) -> bool:
        """Mark one notification read.  Returns ``False`` if it does not exist."""
        result = await db_session.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .values(is_read=True)
        )
        return result.rowcount > 0


# ══════════════════════════════════════════════════════════════════════════════
# Dispatchers
# ══════════════════════════════════════════════════════════════════════════════


class NotificationDispatcher(Protocol):
    async def dispatch(self, request: NotificationRequest) -> None:
        ...


class HttpNotificationDispatcher:
    """POST notification payloads to a remote sink."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self._api_key = api_key
        self._http_client = http_client
        self._timeout = timeout

    async def dispatch(self, request: NotificationRequest) -> None:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        body = request.to_wire()
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self.url, json=body, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise NotificationError(f"Notification sink unreachable: {exc}") from exc

        if not response.is_success:
            raise NotificationError(
                f"Notification sink returned {response.status_code}"
            )


class LocalNotificationDispatcher:
    """Deliver notifications through an in-process ``NotificationService``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notification_service: NotificationService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.notification_service = notification_service or NotificationService()

    async def dispatch(self, request: NotificationRequest) -> None:
        try:
            async with self._session_factory() as session:
                await self.notification_service.send(request, session)
                await session.commit()
        except (PersistenceError, SQLAlchemyError) as exc:
            raise NotificationError(str(exc)) from exc


def build_dispatcher(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Any:
    """Return the dispatcher selected by ``NOTIFICATION_SINK_URL``."""
    settings = get_settings()
    if settings.NOTIFICATION_SINK_URL:
        return HttpNotificationDispatcher(
            url=settings.NOTIFICATION_SINK_URL,
            api_key=settings.SERVICE_API_KEY,
            http_client=http_client,
        )

    if session_factory is None:
        from back2u.database import async_session_factory as session_factory

    return LocalNotificationDispatcher(session_factory)
