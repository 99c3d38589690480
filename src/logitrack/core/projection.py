"""Projection 重建模块

从 events 表重建 tasks 表（物化视图），确保事件溯源的一致性。
支持单事件应用和全量重建两种模式。
"""

import time

import aiosqlite
import structlog

from .models.enums import EventType
from .models.event import Event
from .models.payloads import StateTransitionPayload, TaskAssignedPayload
from .models.task import ProviderTask, TaskPointers
from .store.event_store import SqliteEventStore
from .store.task_store import SqliteTaskStore

log = structlog.get_logger()


def apply_event(tasks: dict[str, ProviderTask], event: Event) -> None:
    """将单个事件应用到 Task 状态（内存中操作）

    Args:
        tasks: task_id -> ProviderTask 的映射表（会被就地修改）
        event: 要应用的事件
    """
    task_id = event.task_id

    if event.type == EventType.TASK_ASSIGNED:
        payload = TaskAssignedPayload(**event.payload)
        task = ProviderTask(**payload.task)
        tasks[task_id] = task.model_copy(
            update={"pointers": TaskPointers(latest_event_id=event.event_id)}
        )
    elif event.type == EventType.STATE_TRANSITION:
        if task_id not in tasks:
            log.warning("projection_orphan_event", task_id=task_id, event_id=event.event_id)
            return
        task = tasks[task_id]
        payload = StateTransitionPayload(**event.payload)
        tasks[task_id] = task.model_copy(
            update={
                "status": payload.to_status,
                "status_history": [*task.status_history, payload.entry],
                "updated_at": payload.entry.timestamp,
                "version": payload.version,
                "pointers": TaskPointers(latest_event_id=event.event_id),
            }
        )


async def rebuild_all(
    conn: aiosqlite.Connection,
    event_store: SqliteEventStore,
    task_store: SqliteTaskStore,
) -> int:
    """从 events 表重建 tasks 表

    流程：
    1. 读取所有事件（按 task_id, task_seq 排序）
    2. 在内存中应用所有事件，构建 Task 状态
    3. 清空 tasks 表
    4. 写入重建后的所有 Task

    Returns:
        处理的事件总数
    """
    start_time = time.monotonic()

    events = await event_store.get_all_events()
    event_count = len(events)

    await log.ainfo(
        "projection_rebuild_started",
        event_count=event_count,
    )

    tasks: dict[str, ProviderTask] = {}
    for event in events:
        apply_event(tasks, event)

    # 临时禁用外键约束，清空 tasks 表后重建
    await conn.execute("PRAGMA foreign_keys = OFF")
    try:
        await conn.execute("DELETE FROM tasks")
        for task in tasks.values():
            await task_store.create_task(task)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    finally:
        await conn.execute("PRAGMA foreign_keys = ON")

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "projection_rebuild_completed",
        event_count=event_count,
        task_count=len(tasks),
        elapsed_ms=elapsed_ms,
    )

    return event_count
