"""
Floor Monitor — Notification Dispatcher.

Creates an alert once, then fans it out to the targeted users over their
enabled channels. Repeats of the same alert inside the duplicate window are
suppressed before anything is stored or sent.

Duplicate windows:
    - types containing ``specific_case``: same machine, type and first 50
      characters of the message within 2 hours
    - everything else: same machine, type and priority within 24 hours
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from logger import get_logger
from schemas.notification import (
    AlertChannelPreference,
    AlertRequest,
    Channel,
    ChannelPreferenceUpdate,
    DispatchResult,
    NotificationLogEntry,
    NotificationStatus,
    Priority,
    SendResult,
    StoredAlert,
    UserContact,
)
from schemas.production import MachineInfo, ProductionAlert
from services.channel_senders import ChannelSender
from services.stores import NotificationStore

logger = get_logger(__name__)

SPECIFIC_CASE_WINDOW = timedelta(hours=2)
DEFAULT_DUPLICATE_WINDOW = timedelta(hours=24)
MESSAGE_PREFIX_LENGTH = 50

PRODUCTION_ALERT_TYPE = "production_threshold_exceeded"


def is_specific_case(alert_type: str) -> bool:
    return "specific_case" in alert_type.lower()


class NotificationDispatcher:
    def __init__(
        self,
        store: NotificationStore,
        senders: dict[Channel, ChannelSender],
        duplicate_check_timeout: float = 5.0,
        send_timeout: float = 15.0,
    ) -> None:
        self._store = store
        self._senders = senders
        self._dup_timeout = duplicate_check_timeout
        self._send_timeout = send_timeout
        self.logger = logger.bind(service="NotificationDispatcher")

    # =========================================================================
    # Alert creation
    # =========================================================================

    async def find_duplicate(self, request: AlertRequest, now: datetime) -> Optional[int]:
        if is_specific_case(request.type):
            return await self._store.find_recent_alert(
                request.machine_id, request.type, now - SPECIFIC_CASE_WINDOW,
                message_prefix=request.message[:MESSAGE_PREFIX_LENGTH],
            )
        return await self._store.find_recent_alert(
            request.machine_id, request.type, now - DEFAULT_DUPLICATE_WINDOW,
            priority=request.priority,
        )

    async def create_alert(self, request: AlertRequest, now: Optional[datetime] = None) -> DispatchResult:
        """Store and deliver an alert unless an equivalent one is still fresh."""
        now = now or datetime.now()
        try:
            existing_id = await asyncio.wait_for(self.find_duplicate(request, now), timeout=self._dup_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Duplicate check timed out, dispatching anyway",
                                machine_id=request.machine_id, alert_type=request.type)
            existing_id = None

        if existing_id is not None:
            self.logger.info("Duplicate alert suppressed", machine_id=request.machine_id,
                             alert_type=request.type, existing_alert_id=existing_id)
            return DispatchResult(success=False, reason="duplicate", existing_alert_id=existing_id)

        alert = await self._store.insert_alert(request, now)
        users = await self._resolve_users(request)
        notified = skipped = failed = 0
        for user in users:
            try:
                entry = await self.notify_user(alert, user, now)
            except Exception as e:
                self.logger.warning("Notifying user failed: %s", e, alert_id=alert.id, user_id=user.id)
                await self._log_user_failure(alert, user, now, e)
                failed += 1
                continue
            if entry is None:
                skipped += 1
            else:
                notified += 1

        self.logger.info("Alert dispatched", alert_id=alert.id, machine_id=request.machine_id,
                         priority=request.priority.value, notified=notified, skipped=skipped, failed=failed)
        return DispatchResult(success=True, alert_id=alert.id, notified_users=notified,
                              skipped_users=skipped, failed_users=failed)

    async def _resolve_users(self, request: AlertRequest) -> list[UserContact]:
        if not request.target_roles and not request.user_ids:
            return await self._store.active_users()
        users: dict[int, UserContact] = {}
        if request.target_roles:
            for user in await self._store.users_by_roles(request.target_roles):
                users[user.id] = user
        if request.user_ids:
            for user in await self._store.users_by_ids(request.user_ids):
                users[user.id] = user
        return [u for u in users.values() if u.is_active]

    # =========================================================================
    # Per-user delivery
    # =========================================================================

    def _channels_for(self, user: UserContact, pref: AlertChannelPreference) -> list[Channel]:
        channels = []
        if pref.email and user.email:
            channels.append(Channel.EMAIL)
        if pref.sms and user.phone:
            channels.append(Channel.SMS)
        if pref.whatsapp and user.phone:
            channels.append(Channel.WHATSAPP)
        channels.append(Channel.PUSH)
        return [c for c in channels if c in self._senders]

    async def _send(self, channel: Channel, user: UserContact, alert: StoredAlert) -> SendResult:
        try:
            return await asyncio.wait_for(
                self._senders[channel].send(user, alert.title, alert.message, alert.priority),
                timeout=self._send_timeout,
            )
        except asyncio.TimeoutError:
            return SendResult(success=False, error="timeout")
        except Exception as e:
            self.logger.warning("Channel send raised: %s", e, channel=channel.value, user_id=user.id)
            return SendResult(success=False, error=str(e))

    async def notify_user(self, alert: StoredAlert, user: UserContact, now: datetime) -> Optional[NotificationLogEntry]:
        """Deliver one alert to one user. Returns None when the user is skipped."""
        pref = await self._store.get_preference(user.id)
        if pref is None:
            self.logger.debug("User has no channel preferences", user_id=user.id)
            return None
        if alert.priority.rank < pref.min_priority.rank:
            self.logger.debug("Below user minimum priority", user_id=user.id,
                              priority=alert.priority.value, min_priority=pref.min_priority.value)
            return None

        channels = self._channels_for(user, pref)
        results = [(c, await self._send(c, user, alert)) for c in channels]
        failures = [f"{c.value}: {r.error}" for c, r in results if not r.success]
        all_failed = bool(results) and len(failures) == len(results)

        entry = NotificationLogEntry(
            alert_id=alert.id,
            user_id=user.id,
            channels=[c.value for c in channels],
            status=NotificationStatus.FAILED if all_failed else NotificationStatus.SENT,
            error_message="; ".join(failures) or None,
            sent_at=now,
        )
        await self._store.append_log(entry)
        return entry

    async def _log_user_failure(self, alert: StoredAlert, user: UserContact, now: datetime, error: Exception) -> None:
        entry = NotificationLogEntry(alert_id=alert.id, user_id=user.id, channels=[],
                                     status=NotificationStatus.FAILED, error_message=str(error), sent_at=now)
        try:
            await self._store.append_log(entry)
        except Exception as e:
            self.logger.error("Could not record failed notification: %s", e, alert_id=alert.id, user_id=user.id)

    # =========================================================================
    # Production alerts
    # =========================================================================

    async def dispatch_production_alert(self, machine: MachineInfo, alert: ProductionAlert) -> DispatchResult:
        request = AlertRequest(
            machine_id=machine.id,
            type=PRODUCTION_ALERT_TYPE,
            priority=Priority.HIGH,
            title=f"Production limit exceeded on {machine.name}",
            message=alert.message,
            metadata={**alert.metadata, "production_alert_id": alert.id},
            target_roles=list(alert.target_roles),
        )
        return await self.create_alert(request)

    # =========================================================================
    # Channel preferences
    # =========================================================================

    async def get_channel_preference(self, user_id: int) -> Optional[AlertChannelPreference]:
        return await self._store.get_preference(user_id)

    async def ensure_channel_preference(self, user_id: int) -> AlertChannelPreference:
        """Create the default preference row for a user if missing."""
        pref = await self._store.get_preference(user_id)
        if pref is not None:
            return pref
        pref = await self._store.save_preference(AlertChannelPreference(user_id=user_id))
        self.logger.info("Default channel preferences created", user_id=user_id)
        return pref

    async def update_channel_preference(self, user_id: int, update: ChannelPreferenceUpdate) -> AlertChannelPreference:
        pref = await self.ensure_channel_preference(user_id)
        changes = update.model_dump(exclude_none=True)
        if "min_priority" in changes:
            changes["min_priority"] = Priority.parse(changes["min_priority"])
        pref = await self._store.save_preference(pref.model_copy(update=changes))
        self.logger.info("Channel preferences updated", user_id=user_id, fields=sorted(changes))
        return pref
