"""LogiTrack Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from pathlib import Path

import aiosqlite

from .booking_store import SqliteBookingStore
from .event_store import SqliteEventStore
from .notification_store import SqliteNotificationStore
from .outbox_store import SqliteOutboxStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import append_transition, atomic, create_task_with_initial_event


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接

    write_lock 串行化共享连接上的写事务。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.write_lock = asyncio.Lock()
        self.task_store = SqliteTaskStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.booking_store = SqliteBookingStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.outbox_store = SqliteOutboxStore(conn)


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteEventStore",
    "SqliteBookingStore",
    "SqliteNotificationStore",
    "SqliteOutboxStore",
    "init_db",
    "atomic",
    "append_transition",
    "create_task_with_initial_event",
]
