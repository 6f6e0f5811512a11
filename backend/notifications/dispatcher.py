"""
Notification Dispatcher - render templates into persisted in-app notifications.

Every other component reports state changes through here. Senders treat
dispatch failures as non-fatal; only the direct API operations surface
errors to the caller.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import Forbidden, NotFound
from core.security import Caller, require_caller
from db.models import Member, Notification
from notifications.templates import render

logger = structlog.get_logger()

MAX_LIST_LIMIT = 100


class NotificationDispatcher:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def send(
        self,
        recipient_id: uuid.UUID,
        category: str,
        template_key: str,
        data: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> Notification:
        """Render a template and store it for the recipient (flushes, no commit)."""
        title, message = render(category, template_key, data)

        recipient = await self.db.get(Member, recipient_id)
        if recipient is None:
            raise NotFound(f"Recipient {recipient_id} not found")

        if expires_at is None:
            ttl_days = get_settings().notification_ttl_days
            if ttl_days > 0:
                expires_at = datetime.utcnow() + timedelta(days=ttl_days)

        notification = Notification(
            recipient_id=recipient.member_id,
            category=category,
            template_key=template_key,
            title=title,
            message=message,
            data={k: str(v) for k, v in (data or {}).items()},
            is_read=False,
            expires_at=expires_at,
        )
        self.db.add(notification)
        await self.db.flush()

        logger.info(
            "notification.sent",
            recipient_id=str(recipient_id),
            category=category,
            template_key=template_key,
        )
        return notification

    async def send_bulk(
        self,
        recipient_ids: list[uuid.UUID],
        category: str,
        template_key: str,
        data: dict[str, Any] | None = None,
    ) -> list[Notification]:
        """Send to each recipient independently; failures are logged and skipped."""
        sent: list[Notification] = []
        for recipient_id in recipient_ids:
            try:
                async with self.db.begin_nested():
                    sent.append(await self.send(recipient_id, category, template_key, data))
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "notification.bulk_failed",
                    recipient_id=str(recipient_id),
                    category=category,
                    template_key=template_key,
                    error=str(exc),
                )
        await self.db.commit()
        logger.info("notification.bulk_complete", requested=len(recipient_ids), sent=len(sent))
        return sent

    async def mark_read(self, caller: Caller, notification_id: uuid.UUID) -> Notification:
        caller = require_caller(caller)
        notification = await self.db.get(Notification, notification_id)
        # Foreign notifications look missing so ids are not disclosed
        if notification is None or not caller.is_user(notification.recipient_id):
            raise NotFound(f"Notification {notification_id} not found")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
            await self.db.commit()
        return notification

    async def list_for_recipient(
        self,
        caller: Caller,
        recipient_id: uuid.UUID,
        category: str | None = None,
        is_read: bool | None = None,
        limit: int | None = None,
    ) -> list[Notification]:
        caller = require_caller(caller)
        if not (caller.is_admin or caller.is_user(recipient_id)):
            raise Forbidden("Cannot read another member's notifications")

        if limit is None:
            limit = get_settings().notification_list_limit
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        query = select(Notification).where(Notification.recipient_id == recipient_id)
        if category:
            query = query.where(Notification.category == category)
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        query = query.order_by(Notification.created_at.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def unread_count(self, caller: Caller, recipient_id: uuid.UUID) -> int:
        caller = require_caller(caller)
        if not (caller.is_admin or caller.is_user(recipient_id)):
            raise Forbidden("Cannot read another member's notifications")

        result = await self.db.execute(
            select(func.count(Notification.notification_id)).where(
                Notification.recipient_id == recipient_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar() or 0

    async def mark_all_read(self, caller: Caller, recipient_id: uuid.UUID) -> int:
        caller = require_caller(caller)
        if not caller.is_user(recipient_id):
            raise Forbidden("Cannot update another member's notifications")

        result = await self.db.execute(
            update(Notification)
            .where(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def purge_expired(self, caller: Caller, now: datetime | None = None) -> int:
        """Delete notifications whose expires_at has passed. Admin or scheduler only."""
        caller = require_caller(caller)
        if not caller.is_admin:
            raise Forbidden("Only administrators can purge notifications")

        now = now or datetime.utcnow()
        result = await self.db.execute(
            delete(Notification)
            .where(Notification.expires_at.is_not(None), Notification.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        deleted = result.rowcount or 0
        logger.info("notification.purged", deleted=deleted)
        return deleted
