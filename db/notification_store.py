"""Floor Monitor — SQLAlchemy notification store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Alert, AlertChannel, NotificationLog, User
from schemas.notification import (
    AlertChannelPreference,
    AlertRequest,
    NotificationLogEntry,
    Priority,
    StoredAlert,
    UserContact,
)


def _to_stored(row: Alert) -> StoredAlert:
    return StoredAlert(
        id=row.id,
        machine_id=row.machine_id,
        type=row.type,
        priority=Priority.parse(row.priority),
        title=row.title,
        message=row.message,
        metadata=dict(row.alert_metadata or {}),
        status=row.status,
        created_at=row.created_at,
    )


class SqlNotificationStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_recent_alert(
        self,
        machine_id: Optional[int],
        alert_type: str,
        since: datetime,
        priority: Optional[Priority] = None,
        message_prefix: Optional[str] = None,
    ) -> Optional[int]:
        stmt = select(Alert.id).where(Alert.type == alert_type, Alert.created_at >= since)
        if machine_id is None:
            stmt = stmt.where(Alert.machine_id.is_(None))
        else:
            stmt = stmt.where(Alert.machine_id == machine_id)
        if priority is not None:
            stmt = stmt.where(Alert.priority == priority.value)
        if message_prefix is not None:
            stmt = stmt.where(Alert.message.startswith(message_prefix, autoescape=True))
        result = await self.db.execute(stmt.order_by(Alert.created_at.desc()).limit(1))
        return result.scalar_one_or_none()

    async def insert_alert(self, request: AlertRequest, created_at: datetime) -> StoredAlert:
        row = Alert(
            machine_id=request.machine_id,
            type=request.type,
            priority=request.priority.value,
            title=request.title,
            message=request.message,
            alert_metadata=request.metadata,
            status="active",
            created_at=created_at,
        )
        self.db.add(row)
        await self.db.flush()
        return _to_stored(row)

    async def users_by_roles(self, roles: list[str]) -> list[UserContact]:
        result = await self.db.execute(
            select(User).where(User.role.in_([r.upper() for r in roles]), User.is_active.is_(True))
        )
        return [UserContact.model_validate(u) for u in result.scalars().all()]

    async def users_by_ids(self, user_ids: list[int]) -> list[UserContact]:
        result = await self.db.execute(select(User).where(User.id.in_(user_ids)))
        return [UserContact.model_validate(u) for u in result.scalars().all()]

    async def active_users(self) -> list[UserContact]:
        result = await self.db.execute(select(User).where(User.is_active.is_(True)))
        return [UserContact.model_validate(u) for u in result.scalars().all()]

    async def get_preference(self, user_id: int) -> Optional[AlertChannelPreference]:
        row = await self.db.get(AlertChannel, user_id)
        return AlertChannelPreference.model_validate(row) if row else None

    async def save_preference(self, preference: AlertChannelPreference) -> AlertChannelPreference:
        row = await self.db.get(AlertChannel, preference.user_id)
        if row is None:
            row = AlertChannel(user_id=preference.user_id)
            self.db.add(row)
        row.email = preference.email
        row.sms = preference.sms
        row.whatsapp = preference.whatsapp
        row.sound = preference.sound
        row.min_priority = preference.min_priority.value
        await self.db.flush()
        return AlertChannelPreference.model_validate(row)

    async def append_log(self, entry: NotificationLogEntry) -> None:
        self.db.add(NotificationLog(
            alert_id=entry.alert_id,
            user_id=entry.user_id,
            channels=entry.channels,
            status=entry.status.value,
            error_message=entry.error_message,
            sent_at=entry.sent_at,
        ))
        await self.db.flush()
