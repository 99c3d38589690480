"""OutboxDispatcher -- 流转副作用的至少一次投递

每个 outbox 条目对应一次已提交的状态流转，投递内容为：
1. booking 同步（tracking_status / status）
2. client 与 partner 通知扇出

两步写入互不相交的记录，并发执行；各自在独立事务中提交，
均以源事件 ID 去重，可安全重投。任一步失败则条目保持 pending，
按指数退避由 OutboxWorker 重试，超过 max_attempts 后标记 dead。
dead 条目在故障排除后经 requeue_dead 重新投递（worker 启动时、
CLI requeue-dead 命令）。
"""

import asyncio
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog
from logitrack.core.config import DispatchConfig
from logitrack.core.models import OutboxEntry, OutboxStatus
from logitrack.core.store import StoreGroup, atomic

from .booking_sync import sync_booking
from .notification_fanout import notify

log = structlog.get_logger()


class OutboxDispatcher:
    """投递单个 outbox 条目，并维护其重试状态"""

    def __init__(self, store_group: StoreGroup, config: DispatchConfig | None = None) -> None:
        self._stores = store_group
        self._config = config or DispatchConfig()
        # 正在进行的投递，后到的调用方等待同一投递的结果
        self._in_flight: dict[str, asyncio.Task[OutboxStatus]] = {}

    @property
    def config(self) -> DispatchConfig:
        return self._config

    def backoff_for(self, attempts: int) -> timedelta:
        """第 attempts 次失败后的等待时间"""
        delay = self._config.backoff_base_s * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(delay, self._config.backoff_max_s))

    async def dispatch(self, entry: OutboxEntry) -> OutboxStatus:
        """投递一个条目

        Returns:
            投递后的条目状态（delivered / pending / dead）
        """
        if entry.status != OutboxStatus.PENDING:
            return entry.status
        running = self._in_flight.get(entry.entry_id)
        if running is not None:
            return await asyncio.shield(running)

        running = asyncio.create_task(self._dispatch(entry))
        self._in_flight[entry.entry_id] = running
        try:
            return await running
        finally:
            self._in_flight.pop(entry.entry_id, None)

    async def requeue_dead(self, task_id: str | None = None) -> int:
        """将 dead 条目重新放回投递队列

        故障排除后调用，条目按 pending 从头计数重试。

        Returns:
            被重置的条目数
        """
        async with self._stores.write_lock, atomic(self._stores.conn):
            count = await self._stores.outbox_store.requeue_dead(
                datetime.now(UTC), task_id=task_id
            )
        if count:
            await log.ainfo("outbox_dead_requeued", count=count, task_id=task_id)
        return count

    async def _dispatch(self, entry: OutboxEntry) -> OutboxStatus:
        attempts = entry.attempts + 1
        results = await asyncio.gather(
            self._run_booking_sync(entry),
            self._run_notify(entry),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        for r in errors:
            if not isinstance(r, Exception):
                raise r

        now = datetime.now(UTC)
        if not errors:
            async with self._stores.write_lock, atomic(self._stores.conn):
                await self._stores.outbox_store.mark_delivered(entry.entry_id, attempts, now)
            await log.ainfo(
                "outbox_entry_delivered",
                entry_id=entry.entry_id,
                task_id=entry.task_id,
                attempts=attempts,
            )
            return OutboxStatus.DELIVERED

        error_text = "; ".join(f"{type(e).__name__}: {e}" for e in errors)
        dead = attempts >= self._config.max_attempts
        next_attempt_at = now + self.backoff_for(attempts)
        async with self._stores.write_lock, atomic(self._stores.conn):
            await self._stores.outbox_store.mark_failed(
                entry.entry_id,
                attempts=attempts,
                error=error_text,
                next_attempt_at=next_attempt_at,
                dead=dead,
                now=now,
            )

        if dead:
            log.error(
                "outbox_entry_dead",
                entry_id=entry.entry_id,
                task_id=entry.task_id,
                attempts=attempts,
                error=error_text,
            )
            return OutboxStatus.DEAD

        log.warning(
            "outbox_dispatch_failed",
            entry_id=entry.entry_id,
            task_id=entry.task_id,
            attempts=attempts,
            next_attempt_at=next_attempt_at.isoformat(),
            error=error_text,
        )
        return OutboxStatus.PENDING

    async def _run_booking_sync(self, entry: OutboxEntry) -> None:
        payload = entry.payload
        async with self._stores.write_lock, atomic(self._stores.conn):
            await sync_booking(
                self._stores.booking_store,
                payload.booking_id,
                payload.to_status,
                payload.task_seq,
            )

    async def _run_notify(self, entry: OutboxEntry) -> None:
        async with self._stores.write_lock, atomic(self._stores.conn):
            await notify(
                self._stores.booking_store,
                self._stores.notification_store,
                entry,
            )

    async def drain_due(self, limit: int | None = None) -> dict[str, int]:
        """投递所有到期的 pending 条目

        Returns:
            本轮各结果状态的条目数
        """
        # 持锁读取，避免读到其他协程尚未提交的条目
        async with self._stores.write_lock:
            due = await self._stores.outbox_store.list_due(
                datetime.now(UTC),
                limit or self._config.batch_size,
            )

        counts = {status.value: 0 for status in OutboxStatus}
        for entry in due:
            status = await self.dispatch(entry)
            counts[status.value] += 1
        return counts


class OutboxWorker:
    """后台轮询 outbox 并重投失败条目"""

    def __init__(self, dispatcher: OutboxDispatcher) -> None:
        self._dispatcher = dispatcher
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="outbox-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        interval = self._dispatcher.config.poll_interval_s
        await log.ainfo("outbox_worker_started", poll_interval_s=interval)
        # 上次运行遗留的 dead 条目在启动时重新投递
        try:
            await self._dispatcher.requeue_dead()
        except aiosqlite.Error as e:
            log.error(
                "outbox_requeue_failed",
                error_type=type(e).__name__,
                error=str(e),
            )
        while not self._stopping.is_set():
            try:
                counts = await self._dispatcher.drain_due()
                if any(counts.values()):
                    await log.ainfo("outbox_drain_completed", **counts)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(
                    "outbox_drain_failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                pass
        await log.ainfo("outbox_worker_stopped")
