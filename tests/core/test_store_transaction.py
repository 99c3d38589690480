"""事务一致性单元测试

测试内容：
1. 分配：task + TASK_ASSIGNED 事件同事务写入
2. 流转：事件 + task CAS 更新 + outbox 条目原子提交
3. CAS 失败或任一步出错时整体回滚
"""

from datetime import UTC, datetime

import aiosqlite
import pytest
from logitrack.core.exceptions import TaskStatusConflictError
from logitrack.core.models import (
    ActorType,
    DispatchPayload,
    Event,
    EventType,
    OutboxEntry,
    ProviderTask,
    ServiceType,
    StateTransitionPayload,
    StatusHistoryEntry,
    TaskAssignedPayload,
    TaskStatus,
)
from logitrack.core.store.transaction import (
    append_transition,
    create_task_with_initial_event,
)

TASK_ID = "01JTASKTX00000000000000001"


def _assigned_task() -> ProviderTask:
    now = datetime.now(UTC)
    return ProviderTask(
        task_id=TASK_ID,
        provider_id="provider-001",
        provider_name="Acme Movers",
        booking_id="booking-001",
        service_type=ServiceType.TRANSPORT,
        status_history=[
            StatusHistoryEntry(status=TaskStatus.ASSIGNED, timestamp=now, note="Task assigned")
        ],
        created_at=now,
        updated_at=now,
    )


def _assigned_event(task: ProviderTask) -> Event:
    return Event(
        event_id="01JEVTTX000000000000000001",
        task_id=task.task_id,
        task_seq=1,
        ts=task.created_at,
        type=EventType.TASK_ASSIGNED,
        actor=ActorType.SYSTEM,
        payload=TaskAssignedPayload(task=task.model_dump(mode="json")).model_dump(),
        trace_id=f"trace-{task.task_id}",
    )


def _transition(task: ProviderTask, event_id: str, seq: int):
    """构建 assigned -> accepted 的 (task, event, outbox entry)"""
    now = datetime.now(UTC)
    entry = StatusHistoryEntry(status=TaskStatus.ACCEPTED, timestamp=now, note="ok")
    updated = task.model_copy(
        update={
            "status": TaskStatus.ACCEPTED,
            "status_history": [*task.status_history, entry],
            "updated_at": now,
            "version": task.version + 1,
        }
    )
    event = Event(
        event_id=event_id,
        task_id=task.task_id,
        task_seq=seq,
        ts=now,
        type=EventType.STATE_TRANSITION,
        actor=ActorType.PROVIDER,
        payload=StateTransitionPayload(
            from_status=task.status,
            to_status=TaskStatus.ACCEPTED,
            actor_id=task.provider_id,
            version=updated.version,
            entry=entry,
        ).model_dump(mode="json"),
        trace_id=f"trace-{task.task_id}",
    )
    outbox = OutboxEntry(
        entry_id=event_id,
        task_id=task.task_id,
        booking_id=task.booking_id,
        payload=DispatchPayload(
            task_id=task.task_id,
            booking_id=task.booking_id,
            to_status=TaskStatus.ACCEPTED,
            task_seq=seq,
            service_type=task.service_type,
        ),
        next_attempt_at=now,
        created_at=now,
        updated_at=now,
    )
    return updated, event, outbox


@pytest.fixture
def stores(store_group):
    return store_group


class TestCreateTask:
    async def test_task_and_initial_event_committed(self, stores):
        task = _assigned_task()
        await create_task_with_initial_event(
            stores.conn, stores.task_store, stores.event_store, task, _assigned_event(task)
        )

        stored = await stores.task_store.get_task(TASK_ID)
        assert stored is not None
        assert stored.status == TaskStatus.ASSIGNED
        assert len(stored.status_history) == 1
        assert stored.version == 1
        events = await stores.event_store.get_events_for_task(TASK_ID)
        assert [e.type for e in events] == [EventType.TASK_ASSIGNED]

    async def test_duplicate_task_rolls_back_event(self, stores):
        task = _assigned_task()
        await create_task_with_initial_event(
            stores.conn, stores.task_store, stores.event_store, task, _assigned_event(task)
        )
        second_event = _assigned_event(task).model_copy(
            update={"event_id": "01JEVTTX000000000000000099"}
        )
        with pytest.raises(aiosqlite.IntegrityError):
            await create_task_with_initial_event(
                stores.conn, stores.task_store, stores.event_store, task, second_event
            )
        events = await stores.event_store.get_events_for_task(TASK_ID)
        assert len(events) == 1


class TestAppendTransition:
    async def _seed(self, stores) -> ProviderTask:
        task = _assigned_task()
        await create_task_with_initial_event(
            stores.conn, stores.task_store, stores.event_store, task, _assigned_event(task)
        )
        return task

    async def test_all_three_writes_committed(self, stores):
        task = await self._seed(stores)
        updated, event, outbox = _transition(task, "01JEVTTX000000000000000002", 2)

        await append_transition(
            stores.conn,
            stores.task_store,
            stores.event_store,
            stores.outbox_store,
            updated,
            task.version,
            event,
            outbox,
        )

        stored = await stores.task_store.get_task(TASK_ID)
        assert stored.status == TaskStatus.ACCEPTED
        assert stored.version == 2
        assert [h.status for h in stored.status_history] == [
            TaskStatus.ASSIGNED,
            TaskStatus.ACCEPTED,
        ]
        assert len(await stores.event_store.get_events_for_task(TASK_ID)) == 2
        entry = await stores.outbox_store.get_entry(event.event_id)
        assert entry is not None
        assert entry.payload.task_seq == 2

    async def test_stale_version_rolls_back_everything(self, stores):
        """CAS 失败：事件与 outbox 条目都不落盘"""
        task = await self._seed(stores)
        updated, event, outbox = _transition(task, "01JEVTTX000000000000000003", 2)

        with pytest.raises(TaskStatusConflictError):
            await append_transition(
                stores.conn,
                stores.task_store,
                stores.event_store,
                stores.outbox_store,
                updated,
                expected_version=7,
                event=event,
                entry=outbox,
            )

        stored = await stores.task_store.get_task(TASK_ID)
        assert stored.status == TaskStatus.ASSIGNED
        assert stored.version == 1
        assert len(await stores.event_store.get_events_for_task(TASK_ID)) == 1
        assert await stores.outbox_store.get_entry(event.event_id) is None

    async def test_duplicate_task_seq_rolls_back(self, stores):
        task = await self._seed(stores)
        updated, event, outbox = _transition(task, "01JEVTTX000000000000000004", 1)

        with pytest.raises(aiosqlite.IntegrityError):
            await append_transition(
                stores.conn,
                stores.task_store,
                stores.event_store,
                stores.outbox_store,
                updated,
                task.version,
                event,
                outbox,
            )

        stored = await stores.task_store.get_task(TASK_ID)
        assert stored.status == TaskStatus.ASSIGNED
        assert await stores.outbox_store.list_for_task(TASK_ID) == []

    async def test_second_writer_with_same_version_loses(self, stores):
        """两个请求基于同一 version 写入，只有一个成功"""
        task = await self._seed(stores)
        first = _transition(task, "01JEVTTX000000000000000005", 2)
        second = _transition(task, "01JEVTTX000000000000000006", 3)

        await append_transition(
            stores.conn,
            stores.task_store,
            stores.event_store,
            stores.outbox_store,
            first[0],
            task.version,
            first[1],
            first[2],
        )
        with pytest.raises(TaskStatusConflictError):
            await append_transition(
                stores.conn,
                stores.task_store,
                stores.event_store,
                stores.outbox_store,
                second[0],
                task.version,
                second[1],
                second[2],
            )

        stored = await stores.task_store.get_task(TASK_ID)
        assert len(stored.status_history) == 2
        assert len(await stores.outbox_store.list_for_task(TASK_ID)) == 1


class TestTaskQueries:
    async def test_list_filters_and_orders(self, stores):
        base = _assigned_task()
        for i, provider in enumerate(["p-a", "p-b", "p-a"]):
            task = base.model_copy(
                update={
                    "task_id": f"01JTASKLS0000000000000000{i}",
                    "provider_id": provider,
                    "booking_id": f"booking-{i}",
                    "created_at": datetime(2026, 1, 1 + i, tzinfo=UTC),
                }
            )
            await stores.task_store.create_task(task)
        await stores.conn.commit()

        tasks = await stores.task_store.list_tasks(provider_id="p-a")
        assert [t.task_id for t in tasks] == [
            "01JTASKLS00000000000000002",
            "01JTASKLS00000000000000000",
        ]
        assert await stores.task_store.list_tasks(status="accepted") == []
        assert len(await stores.task_store.list_tasks()) == 3

    async def test_get_missing_task_returns_none(self, stores):
        assert await stores.task_store.get_task("missing") is None
