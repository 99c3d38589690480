"""事件 + Projection + Outbox 原子事务封装

流转的三处写入（STATE_TRANSITION 事件、task projection、outbox 条目）
在同一 SQLite 事务内提交；任一步失败则整体回滚。

共享连接上的事务是连接级的，调用方需持有 StoreGroup.write_lock，
避免其他协程的 commit/rollback 穿插进来。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

from ..models.event import Event
from ..models.outbox import OutboxEntry
from ..models.task import ProviderTask
from .event_store import SqliteEventStore
from .outbox_store import SqliteOutboxStore
from .task_store import SqliteTaskStore


@asynccontextmanager
async def atomic(conn: aiosqlite.Connection) -> AsyncIterator[None]:
    """正常退出时提交，异常时回滚并重新抛出"""
    try:
        yield
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise


async def create_task_with_initial_event(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    event_store: SqliteEventStore,
    task: ProviderTask,
    event: Event,
) -> None:
    """单事务写入新任务与 TASK_ASSIGNED 事件"""
    async with atomic(conn):
        await task_store.create_task(task)
        await event_store.append_event(event)


async def append_transition(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    event_store: SqliteEventStore,
    outbox_store: SqliteOutboxStore,
    task: ProviderTask,
    expected_version: int,
    event: Event,
    entry: OutboxEntry,
) -> None:
    """在同一事务内原子提交流转事件、task projection 更新和 outbox 条目

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        task_store: TaskStore 实例
        event_store: EventStore 实例
        outbox_store: OutboxStore 实例
        task: 流转后的任务（status / history / version 已更新）
        expected_version: 读取时的 version，作为 CAS 条件
        event: STATE_TRANSITION 事件
        entry: 待投递的 outbox 条目

    Raises:
        TaskStatusConflictError: CAS 失败（已回滚）
        aiosqlite.Error: 存储错误（已回滚）
    """
    async with atomic(conn):
        await event_store.append_event(event)
        await task_store.update_task_transition(task, expected_version)
        await outbox_store.add_entry(entry)
