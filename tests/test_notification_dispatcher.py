"""Alert dispatcher tests: duplicates, targeting, priority filter, channel isolation."""

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import RecordingSender
from schemas.notification import (
    AlertChannelPreference,
    AlertRequest,
    Channel,
    ChannelPreferenceUpdate,
    NotificationStatus,
    Priority,
    UserContact,
)
from schemas.production import MachineInfo, ProductionAlert
from services.notification_dispatcher import (
    PRODUCTION_ALERT_TYPE,
    NotificationDispatcher,
    is_specific_case,
)

NOW = datetime(2026, 3, 10, 10, 0)


def request(type_="teflon_change", priority="MEDIUM", message="Change the teflon on line 2", **kw):
    return AlertRequest(machine_id=1, type=type_, priority=priority, title="Line 2", message=message, **kw)


@pytest.fixture
def senders():
    return {
        Channel.EMAIL: RecordingSender(),
        Channel.SMS: RecordingSender(),
        Channel.WHATSAPP: RecordingSender(),
        Channel.PUSH: RecordingSender(),
    }


@pytest.fixture
def dispatcher(notification_store, senders):
    return NotificationDispatcher(notification_store, senders)


@pytest.fixture
def manager(notification_store):
    return notification_store.add_user(
        UserContact(id=10, name="Mara", email="mara@plant.example", phone="+15550001111", role="MANAGER"),
        AlertChannelPreference(user_id=10, email=True, sms=True, min_priority=Priority.HIGH),
    )


@pytest.fixture
def operator(notification_store):
    return notification_store.add_user(
        UserContact(id=20, name="Otto", email="otto@plant.example", role="OPERATOR"),
        AlertChannelPreference(user_id=20),
    )


class TestPriority:
    def test_order(self):
        assert Priority.LOW.rank < Priority.MEDIUM.rank < Priority.HIGH.rank < Priority.URGENT.rank

    @pytest.mark.parametrize("raw,expected", [
        ("info", Priority.LOW),
        ("warning", Priority.MEDIUM),
        ("CRITICAL", Priority.URGENT),
        ("high", Priority.HIGH),
        ("bogus", Priority.LOW),
        (None, Priority.LOW),
    ])
    def test_parse_accepts_legacy_names(self, raw, expected):
        assert Priority.parse(raw) == expected

    def test_specific_case_detection(self):
        assert is_specific_case("quality_specific_case")
        assert not is_specific_case(PRODUCTION_ALERT_TYPE)


class TestMinimumPriority:
    @pytest.mark.asyncio
    async def test_medium_is_skipped_for_high_minimum(self, dispatcher, manager, senders):
        result = await dispatcher.create_alert(request(priority="MEDIUM", target_roles=["MANAGER"]), NOW)
        assert result.success
        assert result.notified_users == 0
        assert result.skipped_users == 1
        assert senders[Channel.EMAIL].calls == []

    @pytest.mark.asyncio
    async def test_urgent_reaches_every_enabled_channel(self, dispatcher, manager, senders, notification_store):
        result = await dispatcher.create_alert(request(priority="URGENT", target_roles=["MANAGER"]), NOW)
        assert result.notified_users == 1
        assert len(senders[Channel.EMAIL].calls) == 1
        assert len(senders[Channel.SMS].calls) == 1
        assert len(senders[Channel.PUSH].calls) == 1
        assert senders[Channel.WHATSAPP].calls == []
        log = notification_store.logs[0]
        assert log.channels == ["email", "sms", "push"]
        assert log.status == NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_user_without_preferences_is_skipped(self, dispatcher, notification_store, senders):
        notification_store.add_user(UserContact(id=30, name="Nia", email="nia@plant.example"))
        result = await dispatcher.create_alert(request(), NOW)
        assert result.skipped_users == 1
        assert senders[Channel.PUSH].calls == []


class TestDuplicates:
    @pytest.mark.asyncio
    async def test_same_alert_within_day_is_suppressed(self, dispatcher, operator, notification_store):
        first = await dispatcher.create_alert(request(), NOW)
        second = await dispatcher.create_alert(request(), NOW + timedelta(hours=3))
        assert first.success
        assert not second.success
        assert second.reason == "duplicate"
        assert second.existing_alert_id == first.alert_id
        assert len(notification_store.alerts) == 1
        assert len(notification_store.logs) == 1

    @pytest.mark.asyncio
    async def test_window_expires_after_a_day(self, dispatcher, operator):
        await dispatcher.create_alert(request(), NOW)
        again = await dispatcher.create_alert(request(), NOW + timedelta(hours=25))
        assert again.success

    @pytest.mark.asyncio
    async def test_different_priority_is_not_duplicate(self, dispatcher, operator):
        await dispatcher.create_alert(request(priority="MEDIUM"), NOW)
        assert (await dispatcher.create_alert(request(priority="HIGH"), NOW)).success

    @pytest.mark.asyncio
    async def test_specific_case_uses_message_prefix_and_two_hours(self, dispatcher, operator):
        base = "Quality hold: dimension out of tolerance on part 4471, batch A"
        await dispatcher.create_alert(request(type_="specific_case", message=base + "1"), NOW)
        same_prefix = await dispatcher.create_alert(
            request(type_="specific_case", message=base + "2"), NOW + timedelta(hours=1))
        other = await dispatcher.create_alert(
            request(type_="specific_case", message="Different issue"), NOW + timedelta(hours=1))
        later = await dispatcher.create_alert(
            request(type_="specific_case", message=base + "3"), NOW + timedelta(hours=3))
        assert same_prefix.reason == "duplicate"
        assert other.success
        assert later.success

    @pytest.mark.asyncio
    async def test_slow_duplicate_check_dispatches_anyway(self, notification_store, senders, operator):
        class SlowStore(type(notification_store)):
            async def find_recent_alert(self, *args, **kwargs):
                await asyncio.sleep(1)

        slow = SlowStore()
        slow.add_user(operator, AlertChannelPreference(user_id=operator.id))
        dispatcher = NotificationDispatcher(slow, senders, duplicate_check_timeout=0.01)
        result = await dispatcher.create_alert(request(), NOW)
        assert result.success
        assert result.notified_users == 1


class TestTargeting:
    @pytest.mark.asyncio
    async def test_roles_and_explicit_ids_are_merged(self, dispatcher, manager, operator, senders):
        result = await dispatcher.create_alert(
            request(priority="URGENT", target_roles=["manager"], user_ids=[20]), NOW)
        assert result.notified_users == 2
        assert {c["user_id"] for c in senders[Channel.PUSH].calls} == {10, 20}

    @pytest.mark.asyncio
    async def test_no_targets_means_all_active_users(self, dispatcher, manager, operator, notification_store):
        notification_store.add_user(UserContact(id=40, name="Ivo", is_active=False),
                                    AlertChannelPreference(user_id=40))
        result = await dispatcher.create_alert(request(priority="URGENT"), NOW)
        assert result.notified_users == 2

    @pytest.mark.asyncio
    async def test_production_alert_targets_managers_and_leaders(self, dispatcher, manager, operator,
                                                                 notification_store):
        notification_store.add_user(UserContact(id=50, name="Lea", role="LEADER"),
                                    AlertChannelPreference(user_id=50))
        machine = MachineInfo(id=1, name="Press 1")
        alert = ProductionAlert(id=7, machine_id=1, day=NOW.date(), production_count=320, threshold=300,
                                message="ALERT", target_roles=["MANAGER", "LEADER"])
        result = await dispatcher.dispatch_production_alert(machine, alert)
        assert result.notified_users == 2
        stored = notification_store.alerts[0]
        assert stored.type == PRODUCTION_ALERT_TYPE
        assert stored.priority == Priority.HIGH
        assert stored.metadata["production_alert_id"] == 7


class TestChannelIsolation:
    @pytest.mark.asyncio
    async def test_one_failing_channel_does_not_block_others(self, notification_store, manager):
        senders = {
            Channel.EMAIL: RecordingSender(raises=ConnectionError("smtp down")),
            Channel.SMS: RecordingSender(success=False, error="gateway 500"),
            Channel.PUSH: RecordingSender(),
        }
        dispatcher = NotificationDispatcher(notification_store, senders)
        await dispatcher.create_alert(request(priority="URGENT"), NOW)
        assert len(senders[Channel.PUSH].calls) == 1
        log = notification_store.logs[0]
        assert log.status == NotificationStatus.SENT
        assert "email: smtp down" in log.error_message
        assert "sms: gateway 500" in log.error_message

    @pytest.mark.asyncio
    async def test_all_channels_failing_is_logged_failed(self, notification_store, operator):
        senders = {
            Channel.EMAIL: RecordingSender(success=False, error="rejected"),
            Channel.PUSH: RecordingSender(success=False, error="offline"),
        }
        dispatcher = NotificationDispatcher(notification_store, senders)
        result = await dispatcher.create_alert(request(), NOW)
        assert result.success
        assert notification_store.logs[0].status == NotificationStatus.FAILED

    @pytest.mark.asyncio
    async def test_one_user_failing_does_not_abort_batch(self, notification_store, senders):
        for user_id in (1, 2):
            notification_store.add_user(UserContact(id=user_id, name=f"M{user_id}", role="MANAGER"),
                                        AlertChannelPreference(user_id=user_id))
        lookup = notification_store.get_preference

        async def flaky_preference(user_id):
            if user_id == 1:
                raise ConnectionError("db hiccup")
            return await lookup(user_id)

        notification_store.get_preference = flaky_preference
        dispatcher = NotificationDispatcher(notification_store, senders)
        result = await dispatcher.create_alert(request(target_roles=["MANAGER"]), NOW)

        assert result.success
        assert (result.notified_users, result.failed_users) == (1, 1)
        assert [c["user_id"] for c in senders[Channel.PUSH].calls] == [2]
        failed = next(log for log in notification_store.logs if log.user_id == 1)
        assert failed.status == NotificationStatus.FAILED
        assert failed.channels == []
        assert failed.error_message == "db hiccup"


class TestChannelPreferences:
    @pytest.mark.asyncio
    async def test_defaults_are_created_once(self, dispatcher, notification_store):
        pref = await dispatcher.ensure_channel_preference(99)
        assert pref.email and pref.sound
        assert not pref.sms and not pref.whatsapp
        assert pref.min_priority == Priority.LOW
        assert await dispatcher.ensure_channel_preference(99) == pref

    @pytest.mark.asyncio
    async def test_partial_update_with_legacy_priority(self, dispatcher):
        pref = await dispatcher.update_channel_preference(
            99, ChannelPreferenceUpdate(whatsapp=True, min_priority="warning"))
        assert pref.whatsapp
        assert pref.email
        assert pref.min_priority == Priority.MEDIUM
        assert (await dispatcher.get_channel_preference(99)).whatsapp
