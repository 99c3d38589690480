"""TaskService -- 任务分配/状态流转/查询业务逻辑

状态流转流程：
1. 读取任务，校验被分配人与流转合法性，确认 booking 存在（均在写入前）
2. 构建历史条目与流转后的任务（version + 1）
3. 单事务写入 task（CAS）+ STATE_TRANSITION 事件 + outbox 条目
4. 立即投递 outbox 条目（booking 同步 + 通知扇出），失败由 OutboxWorker 重试
"""

import asyncio
from datetime import UTC, datetime

import aiosqlite
import structlog
from logitrack.core.config import DEFAULT_ASSIGNMENT_NOTE, MAX_TRANSITION_ATTEMPTS
from logitrack.core.exceptions import (
    BookingNotFoundError,
    IllegalTransitionError,
    PersistenceFailureError,
    TaskAlreadyAssignedError,
    TaskNotFoundError,
    TaskStatusConflictError,
    UnauthorizedActorError,
)
from logitrack.core.history import append_history, build_history_entry
from logitrack.core.models import (
    TERMINAL_STATES,
    ActorType,
    DispatchPayload,
    Event,
    EventCausality,
    EventType,
    GeoLocation,
    OutboxEntry,
    OutboxStatus,
    ProviderTask,
    StateTransitionPayload,
    StatusHistoryEntry,
    TaskAssignedPayload,
    TaskAssignment,
    TaskPointers,
    TaskStatus,
    legal_next_states,
    validate_transition,
)
from logitrack.core.store import StoreGroup
from logitrack.core.store.transaction import (
    append_transition,
    create_task_with_initial_event,
)
from pydantic import BaseModel
from ulid import ULID

log = structlog.get_logger()


class TransitionResult(BaseModel):
    """状态流转结果"""

    task: ProviderTask
    event_id: str
    dispatch_status: OutboxStatus
    replayed: bool = False


class TaskService:
    """任务业务服务"""

    _task_locks: dict[str, asyncio.Lock] = {}
    _task_locks_guard = asyncio.Lock()

    def __init__(self, store_group: StoreGroup, sse_hub=None, dispatcher=None) -> None:
        self._stores = store_group
        self._sse_hub = sse_hub
        self._dispatcher = dispatcher

    async def assign_task(self, assignment: TaskAssignment) -> ProviderTask:
        """创建处于 assigned 状态的任务

        任务、初始历史条目与 TASK_ASSIGNED 事件单事务提交。

        Raises:
            BookingNotFoundError: booking 不存在
            TaskAlreadyAssignedError: booking 已有任务
        """
        booking = await self._stores.booking_store.get_booking(assignment.booking_id)
        if booking is None:
            raise BookingNotFoundError(assignment.booking_id)

        now = datetime.now(UTC)
        task_id = str(ULID())
        event_id = str(ULID())
        task = ProviderTask(
            task_id=task_id,
            status=TaskStatus.ASSIGNED,
            status_history=[
                StatusHistoryEntry(
                    status=TaskStatus.ASSIGNED,
                    timestamp=now,
                    note=assignment.assignment_note or DEFAULT_ASSIGNMENT_NOTE,
                )
            ],
            created_at=now,
            updated_at=now,
            version=1,
            pointers=TaskPointers(latest_event_id=event_id),
            **assignment.model_dump(),
        )
        event = Event(
            event_id=event_id,
            task_id=task_id,
            task_seq=1,
            ts=now,
            type=EventType.TASK_ASSIGNED,
            actor=ActorType.SYSTEM,
            payload=TaskAssignedPayload(task=task.model_dump(mode="json")).model_dump(),
            trace_id=f"trace-{task_id}",
        )

        try:
            async with self._stores.write_lock:
                await create_task_with_initial_event(
                    self._stores.conn,
                    self._stores.task_store,
                    self._stores.event_store,
                    task,
                    event,
                )
        except aiosqlite.IntegrityError as e:
            if self._is_booking_conflict(e):
                raise TaskAlreadyAssignedError(assignment.booking_id) from e
            raise PersistenceFailureError(task_id, e) from e
        except aiosqlite.Error as e:
            raise PersistenceFailureError(task_id, e) from e

        await log.ainfo(
            "task_assigned",
            task_id=task_id,
            provider_id=task.provider_id,
            booking_id=task.booking_id,
        )
        if self._sse_hub:
            await self._sse_hub.broadcast(task_id, event)
        return task

    async def update_task_status(
        self,
        task_id: str,
        actor_id: str,
        new_status: TaskStatus | str,
        note: str | None = None,
        location: GeoLocation | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """执行一次状态流转

        Raises:
            TaskNotFoundError / BookingNotFoundError: 任务或 booking 不存在
            UnauthorizedActorError: actor 不是任务的被分配人
            IllegalTransitionError: 目标状态不可达（含终态任务上的任何请求）
            PersistenceFailureError: 任务写入失败，已回滚
        """
        lock = await self._get_task_lock(task_id)
        async with lock:
            for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
                task = await self._stores.task_store.get_task(task_id)
                if task is None:
                    raise TaskNotFoundError(task_id)
                if actor_id != task.provider_id:
                    raise UnauthorizedActorError(task_id, actor_id)

                if idempotency_key:
                    replay = await self._replay(task, idempotency_key)
                    if replay is not None:
                        return replay

                target = self._coerce_status(task.status, new_status)
                if not validate_transition(task.status, target):
                    raise IllegalTransitionError(task.status.value, target.value)

                booking = await self._stores.booking_store.get_booking(task.booking_id)
                if booking is None:
                    raise BookingNotFoundError(task.booking_id)

                try:
                    updated, event, entry = await self._commit_transition(
                        task, target, actor_id, note, location, idempotency_key
                    )
                    break
                except TaskStatusConflictError:
                    # 读取后任务已被修改：重新读取并校验
                    log.warning(
                        "task_transition_conflict_retry",
                        task_id=task_id,
                        attempt=attempt,
                    )
                    continue
                except aiosqlite.IntegrityError as e:
                    if self._is_task_seq_conflict(e):
                        log.warning(
                            "task_seq_conflict_retry",
                            task_id=task_id,
                            attempt=attempt,
                        )
                        continue
                    if idempotency_key and self._is_idempotency_conflict(e):
                        continue
                    raise PersistenceFailureError(task_id, e) from e
                except aiosqlite.Error as e:
                    log.error(
                        "task_transition_persist_failed",
                        task_id=task_id,
                        error_type=type(e).__name__,
                    )
                    raise PersistenceFailureError(task_id, e) from e
            else:
                raise PersistenceFailureError(
                    task_id,
                    RuntimeError(f"gave up after {MAX_TRANSITION_ATTEMPTS} conflicting attempts"),
                )

        await log.ainfo(
            "task_transition_committed",
            task_id=task_id,
            from_status=task.status.value,
            to_status=updated.status.value,
            version=updated.version,
            event_id=event.event_id,
        )
        if updated.status in TERMINAL_STATES:
            await self._cleanup_task_lock(task_id)
        if self._sse_hub:
            await self._sse_hub.broadcast(task_id, event)

        dispatch_status = OutboxStatus.PENDING
        if self._dispatcher is not None:
            # 流转已提交，投递状态写入失败只影响 dispatch_status
            try:
                dispatch_status = await self._dispatcher.dispatch(entry)
            except aiosqlite.Error as e:
                log.error(
                    "outbox_dispatch_error",
                    task_id=task_id,
                    entry_id=entry.entry_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )

        return TransitionResult(
            task=updated,
            event_id=event.event_id,
            dispatch_status=dispatch_status,
        )

    async def _commit_transition(
        self,
        task: ProviderTask,
        target: TaskStatus,
        actor_id: str,
        note: str | None,
        location: GeoLocation | None,
        idempotency_key: str | None,
    ) -> tuple[ProviderTask, Event, OutboxEntry]:
        """构建并原子提交流转（task + 事件 + outbox 条目）"""
        entry = build_history_entry(task, target, note=note, location=location)
        event_id = str(ULID())
        version = task.version + 1
        updated = task.model_copy(
            update={
                "status": target,
                "status_history": append_history(task, entry),
                "updated_at": entry.timestamp,
                "version": version,
                "pointers": TaskPointers(latest_event_id=event_id),
            }
        )

        async with self._stores.write_lock:
            seq = await self._stores.event_store.get_next_task_seq(task.task_id)
            event = Event(
                event_id=event_id,
                task_id=task.task_id,
                task_seq=seq,
                ts=entry.timestamp,
                type=EventType.STATE_TRANSITION,
                actor=ActorType.PROVIDER,
                payload=StateTransitionPayload(
                    from_status=task.status,
                    to_status=target,
                    actor_id=actor_id,
                    version=version,
                    entry=entry,
                ).model_dump(mode="json"),
                trace_id=f"trace-{task.task_id}",
                causality=EventCausality(
                    parent_event_id=task.pointers.latest_event_id,
                    idempotency_key=idempotency_key,
                ),
            )
            outbox_entry = OutboxEntry(
                entry_id=event_id,
                task_id=task.task_id,
                booking_id=task.booking_id,
                payload=DispatchPayload(
                    task_id=task.task_id,
                    booking_id=task.booking_id,
                    to_status=target,
                    task_seq=seq,
                    service_type=task.service_type,
                    provider_name=task.provider_name,
                ),
                next_attempt_at=entry.timestamp,
                created_at=entry.timestamp,
                updated_at=entry.timestamp,
            )
            await append_transition(
                self._stores.conn,
                self._stores.task_store,
                self._stores.event_store,
                self._stores.outbox_store,
                updated,
                task.version,
                event,
                outbox_entry,
            )
        return updated, event, outbox_entry

    async def _replay(self, task: ProviderTask, idempotency_key: str) -> TransitionResult | None:
        """幂等键已使用时返回当前任务，不再写入"""
        event_id = await self._stores.event_store.check_idempotency_key(
            task.task_id, idempotency_key
        )
        if event_id is None:
            return None
        entry = await self._stores.outbox_store.get_entry(event_id)
        log.info(
            "task_transition_replayed",
            task_id=task.task_id,
            event_id=event_id,
        )
        return TransitionResult(
            task=task,
            event_id=event_id,
            dispatch_status=entry.status if entry else OutboxStatus.PENDING,
            replayed=True,
        )

    @staticmethod
    def _coerce_status(current: TaskStatus, requested: TaskStatus | str) -> TaskStatus:
        """未知状态字符串视为非法流转"""
        try:
            return TaskStatus(requested)
        except ValueError:
            raise IllegalTransitionError(current.value, str(requested)) from None

    async def get_task(self, task_id: str) -> ProviderTask | None:
        """查询任务详情"""
        return await self._stores.task_store.get_task(task_id)

    async def list_tasks(
        self,
        provider_id: str | None = None,
        status: str | None = None,
    ) -> list[ProviderTask]:
        """查询任务列表，按创建时间倒序"""
        return await self._stores.task_store.list_tasks(provider_id=provider_id, status=status)

    async def next_states(self, task_id: str) -> list[TaskStatus]:
        """任务当前状态下的合法目标状态，按状态机顺序排列"""
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        allowed = legal_next_states(task.status)
        return [s for s in TaskStatus if s in allowed]

    @classmethod
    async def _get_task_lock(cls, task_id: str) -> asyncio.Lock:
        """获取 task 级别锁，序列化同一任务的状态流转。"""
        async with cls._task_locks_guard:
            lock = cls._task_locks.get(task_id)
            if lock is None:
                lock = asyncio.Lock()
                cls._task_locks[task_id] = lock
            return lock

    @classmethod
    async def _cleanup_task_lock(cls, task_id: str) -> None:
        """任务终态后清理 lock，避免全局字典无限增长。"""
        async with cls._task_locks_guard:
            lock = cls._task_locks.get(task_id)
            if lock is not None and not lock.locked():
                cls._task_locks.pop(task_id, None)

    @staticmethod
    def _is_task_seq_conflict(error: Exception) -> bool:
        if not isinstance(error, aiosqlite.IntegrityError):
            return False
        text = str(error)
        return "idx_events_task_seq" in text or "events.task_id, events.task_seq" in text

    @staticmethod
    def _is_idempotency_conflict(error: Exception) -> bool:
        if not isinstance(error, aiosqlite.IntegrityError):
            return False
        text = str(error)
        return (
            "idx_events_idempotency_key" in text
            or "events.task_id, events.idempotency_key" in text
        )

    @staticmethod
    def _is_booking_conflict(error: Exception) -> bool:
        if not isinstance(error, aiosqlite.IntegrityError):
            return False
        text = str(error)
        return "idx_tasks_booking_id" in text or "tasks.booking_id" in text
