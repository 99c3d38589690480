"""booking / notification / outbox 存储测试

测试内容：
1. booking 同步按 tracking_seq 单调推进
2. 通知按 (source_event_id, recipient_type) 去重
3. outbox 到期查询、状态统计与 dead 条目重置
4. 幂等键按任务隔离
"""

from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest
from logitrack.core.models import (
    ActorType,
    DispatchPayload,
    Event,
    EventCausality,
    EventType,
    Notification,
    NotificationData,
    OutboxEntry,
    OutboxStatus,
    ProviderTask,
    RecipientType,
    ServiceType,
    TaskStatus,
)


class TestBookingStore:
    async def test_apply_newer_seq(self, store_group, make_booking):
        await make_booking()
        applied = await store_group.booking_store.apply_task_status(
            "booking-001", "accepted", "accepted", 2, datetime.now(UTC)
        )
        await store_group.conn.commit()

        assert applied is True
        booking = await store_group.booking_store.get_booking("booking-001")
        assert booking.tracking_status == "accepted"
        assert booking.status == "accepted"
        assert booking.tracking_seq == 2

    async def test_stale_seq_does_not_roll_back(self, store_group, make_booking):
        await make_booking()
        store = store_group.booking_store
        await store.apply_task_status("booking-001", "picked_up", "picked_up", 4, datetime.now(UTC))
        applied = await store.apply_task_status(
            "booking-001", "accepted", "accepted", 2, datetime.now(UTC)
        )
        assert applied is False
        applied_again = await store.apply_task_status(
            "booking-001", "picked_up", "picked_up", 4, datetime.now(UTC)
        )
        assert applied_again is False
        booking = await store.get_booking("booking-001")
        assert booking.tracking_status == "picked_up"

    async def test_missing_booking(self, store_group):
        assert await store_group.booking_store.get_booking("nope") is None


def _notification(notification_id: str, recipient_type: RecipientType) -> Notification:
    return Notification(
        notification_id=notification_id,
        recipient_id="client-001",
        recipient_type=recipient_type,
        title="Task Status Update",
        message="Your moving task status has been updated to accepted",
        data=NotificationData(
            booking_id="booking-001", task_id="task-001", status="accepted"
        ),
        created_at=datetime.now(UTC),
        source_event_id="evt-001",
    )


class TestNotificationStore:
    async def test_duplicate_source_returns_existing_id(self, store_group):
        store = store_group.notification_store
        first = await store.add_notification(_notification("n-1", RecipientType.CLIENT))
        second = await store.add_notification(_notification("n-2", RecipientType.CLIENT))
        await store_group.conn.commit()

        assert first == "n-1"
        assert second == "n-1"
        assert len(await store.list_for_event("evt-001")) == 1

    async def test_client_and_partner_are_distinct(self, store_group):
        store = store_group.notification_store
        await store.add_notification(_notification("n-1", RecipientType.CLIENT))
        await store.add_notification(_notification("n-2", RecipientType.PARTNER))
        notifications = await store.list_for_event("evt-001")

        assert {n.recipient_type for n in notifications} == {
            RecipientType.CLIENT,
            RecipientType.PARTNER,
        }
        assert all(n.read is False for n in notifications)
        assert all(n.type == "task_status_update" for n in notifications)


async def _seed_task_with_event(store_group, event_id: str, key: str | None = None) -> None:
    now = datetime.now(UTC)
    task = ProviderTask(
        task_id="task-001",
        provider_id="provider-001",
        booking_id="booking-001",
        service_type=ServiceType.DELIVERY,
        created_at=now,
        updated_at=now,
    )
    if await store_group.task_store.get_task("task-001") is None:
        await store_group.task_store.create_task(task)
    seq = await store_group.event_store.get_next_task_seq("task-001")
    await store_group.event_store.append_event(
        Event(
            event_id=event_id,
            task_id="task-001",
            task_seq=seq,
            ts=now,
            type=EventType.STATE_TRANSITION,
            actor=ActorType.PROVIDER,
            payload={},
            trace_id="trace-task-001",
            causality=EventCausality(idempotency_key=key),
        )
    )
    await store_group.conn.commit()


def _entry(entry_id: str, next_attempt_at: datetime) -> OutboxEntry:
    now = datetime.now(UTC)
    return OutboxEntry(
        entry_id=entry_id,
        task_id="task-001",
        booking_id="booking-001",
        payload=DispatchPayload(
            task_id="task-001",
            booking_id="booking-001",
            to_status=TaskStatus.ACCEPTED,
            task_seq=1,
            service_type=ServiceType.DELIVERY,
        ),
        next_attempt_at=next_attempt_at,
        created_at=now,
        updated_at=now,
    )


class TestOutboxStore:
    async def test_list_due_respects_next_attempt_at(self, store_group):
        now = datetime.now(UTC)
        await _seed_task_with_event(store_group, "evt-due")
        await _seed_task_with_event(store_group, "evt-later")
        store = store_group.outbox_store
        await store.add_entry(_entry("evt-due", now - timedelta(seconds=1)))
        await store.add_entry(_entry("evt-later", now + timedelta(minutes=5)))
        await store_group.conn.commit()

        due = await store.list_due(now, limit=10)
        assert [e.entry_id for e in due] == ["evt-due"]

    async def test_mark_failed_then_dead(self, store_group):
        now = datetime.now(UTC)
        await _seed_task_with_event(store_group, "evt-1")
        store = store_group.outbox_store
        await store.add_entry(_entry("evt-1", now))
        await store.mark_failed("evt-1", 1, "boom", now + timedelta(seconds=1), False, now)
        entry = await store.get_entry("evt-1")
        assert entry.status == OutboxStatus.PENDING
        assert entry.attempts == 1
        assert entry.last_error == "boom"

        await store.mark_failed("evt-1", 2, "boom again", now, True, now)
        await store_group.conn.commit()
        assert (await store.get_entry("evt-1")).status == OutboxStatus.DEAD
        assert await store.list_due(now + timedelta(hours=1), limit=10) == []
        assert await store.count_by_status() == {"pending": 0, "delivered": 0, "dead": 1}

    async def test_mark_delivered_clears_error(self, store_group):
        now = datetime.now(UTC)
        await _seed_task_with_event(store_group, "evt-2")
        store = store_group.outbox_store
        await store.add_entry(_entry("evt-2", now))
        await store.mark_failed("evt-2", 1, "boom", now, False, now)
        await store.mark_delivered("evt-2", 2, now)
        entry = await store.get_entry("evt-2")
        assert entry.status == OutboxStatus.DELIVERED
        assert entry.last_error == ""

    async def test_requeue_dead_resets_attempts(self, store_group):
        now = datetime.now(UTC)
        await _seed_task_with_event(store_group, "evt-dead")
        await _seed_task_with_event(store_group, "evt-pending")
        store = store_group.outbox_store
        await store.add_entry(_entry("evt-dead", now))
        await store.add_entry(_entry("evt-pending", now + timedelta(minutes=5)))
        await store.mark_failed("evt-dead", 3, "boom", now, True, now)

        later = now + timedelta(seconds=1)
        assert await store.requeue_dead(later) == 1
        await store_group.conn.commit()

        entry = await store.get_entry("evt-dead")
        assert entry.status == OutboxStatus.PENDING
        assert entry.attempts == 0
        assert [e.entry_id for e in await store.list_due(later, limit=10)] == ["evt-dead"]
        assert await store.requeue_dead(later) == 0

    async def test_requeue_dead_command(self, store_group, tmp_db_path, monkeypatch, capsys):
        from logitrack.core.__main__ import requeue_dead

        now = datetime.now(UTC)
        await _seed_task_with_event(store_group, "evt-cli")
        await store_group.outbox_store.add_entry(_entry("evt-cli", now))
        await store_group.outbox_store.mark_failed("evt-cli", 3, "boom", now, True, now)
        await store_group.conn.commit()
        monkeypatch.setenv("LOGITRACK_DB_PATH", str(tmp_db_path))

        await requeue_dead()

        assert "1" in capsys.readouterr().out
        entry = await store_group.outbox_store.get_entry("evt-cli")
        assert entry.status == OutboxStatus.PENDING

    async def test_entry_requires_event(self, store_group):
        """outbox 条目必须引用已存在的事件"""
        with pytest.raises(aiosqlite.IntegrityError):
            await store_group.outbox_store.add_entry(_entry("no-such-event", datetime.now(UTC)))
        await store_group.conn.rollback()


class TestIdempotencyKey:
    async def test_key_lookup_is_scoped_to_task(self, store_group):
        await _seed_task_with_event(store_group, "evt-k1", key="tap-1")

        assert await store_group.event_store.check_idempotency_key("task-001", "tap-1") == "evt-k1"
        assert await store_group.event_store.check_idempotency_key("task-002", "tap-1") is None
        assert await store_group.event_store.check_idempotency_key("task-001", "tap-2") is None

    async def test_duplicate_key_rejected_by_database(self, store_group):
        await _seed_task_with_event(store_group, "evt-k2", key="tap-dup")
        with pytest.raises(aiosqlite.IntegrityError):
            await _seed_task_with_event(store_group, "evt-k3", key="tap-dup")
        await store_group.conn.rollback()


class TestEventsAfter:
    async def test_resume_from_known_event(self, store_group):
        await _seed_task_with_event(store_group, "evt-a")
        await _seed_task_with_event(store_group, "evt-b")

        events = await store_group.event_store.get_events_after("task-001", "evt-a")
        assert [e.event_id for e in events] == ["evt-b"]

    async def test_unknown_event_returns_full_history(self, store_group):
        await _seed_task_with_event(store_group, "evt-a")
        await _seed_task_with_event(store_group, "evt-b")

        events = await store_group.event_store.get_events_after("task-001", "evt-unknown")
        assert [e.event_id for e in events] == ["evt-a", "evt-b"]
