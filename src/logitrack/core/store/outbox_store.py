"""OutboxStore SQLite 实现

条目与 STATE_TRANSITION 事件同事务插入（add_entry 不提交），
所有写方法均不提交事务，由调用方管理。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import OutboxStatus
from ..models.outbox import OutboxEntry
from ..models.payloads import DispatchPayload

_SELECT = """
SELECT entry_id, task_id, booking_id, status, payload, attempts, last_error,
       next_attempt_at, created_at, updated_at
FROM outbox
"""


class SqliteOutboxStore:
    """OutboxStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def add_entry(self, entry: OutboxEntry) -> None:
        """插入 outbox 条目

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO outbox (entry_id, task_id, booking_id, status, payload,
                                attempts, last_error, next_attempt_at,
                                created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.task_id,
                entry.booking_id,
                entry.status.value,
                entry.payload.model_dump_json(),
                entry.attempts,
                entry.last_error,
                entry.next_attempt_at.isoformat(),
                entry.created_at.isoformat(),
                entry.updated_at.isoformat(),
            ),
        )

    async def get_entry(self, entry_id: str) -> OutboxEntry | None:
        """根据 entry_id 查询条目"""
        cursor = await self._conn.execute(
            f"{_SELECT} WHERE entry_id = ?",
            (entry_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    async def list_due(self, now: datetime, limit: int) -> list[OutboxEntry]:
        """查询到期待投递的条目，按创建顺序"""
        cursor = await self._conn.execute(
            f"""{_SELECT}
            WHERE status = ? AND next_attempt_at <= ?
            ORDER BY created_at ASC, entry_id ASC
            LIMIT ?
            """,
            (OutboxStatus.PENDING.value, now.isoformat(), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def list_for_task(self, task_id: str) -> list[OutboxEntry]:
        """查询任务的所有 outbox 条目"""
        cursor = await self._conn.execute(
            f"{_SELECT} WHERE task_id = ? ORDER BY created_at ASC, entry_id ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        """按状态统计条目数（用于 /ready）"""
        cursor = await self._conn.execute(
            "SELECT status, COUNT(*) FROM outbox GROUP BY status"
        )
        rows = await cursor.fetchall()
        counts = {status.value: 0 for status in OutboxStatus}
        for row in rows:
            counts[row[0]] = row[1]
        return counts

    async def mark_delivered(self, entry_id: str, attempts: int, now: datetime) -> None:
        """标记投递成功"""
        await self._conn.execute(
            """
            UPDATE outbox
            SET status = ?, attempts = ?, last_error = '', updated_at = ?
            WHERE entry_id = ?
            """,
            (OutboxStatus.DELIVERED.value, attempts, now.isoformat(), entry_id),
        )

    async def mark_failed(
        self,
        entry_id: str,
        attempts: int,
        error: str,
        next_attempt_at: datetime,
        dead: bool,
        now: datetime,
    ) -> None:
        """记录投递失败；dead=True 时不再重试"""
        status = OutboxStatus.DEAD if dead else OutboxStatus.PENDING
        await self._conn.execute(
            """
            UPDATE outbox
            SET status = ?, attempts = ?, last_error = ?, next_attempt_at = ?,
                updated_at = ?
            WHERE entry_id = ?
            """,
            (
                status.value,
                attempts,
                error,
                next_attempt_at.isoformat(),
                now.isoformat(),
                entry_id,
            ),
        )

    async def requeue_dead(self, now: datetime, task_id: str | None = None) -> int:
        """将 dead 条目重置为 pending 并清零重试次数

        Returns:
            被重置的条目数
        """
        sql = """
            UPDATE outbox
            SET status = ?, attempts = 0, next_attempt_at = ?, updated_at = ?
            WHERE status = ?
        """
        params: list = [
            OutboxStatus.PENDING.value,
            now.isoformat(),
            now.isoformat(),
            OutboxStatus.DEAD.value,
        ]
        if task_id is not None:
            sql += " AND task_id = ?"
            params.append(task_id)
        cursor = await self._conn.execute(sql, params)
        return cursor.rowcount

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> OutboxEntry:
        """将数据库行转换为 OutboxEntry 模型"""
        return OutboxEntry(
            entry_id=row[0],
            task_id=row[1],
            booking_id=row[2],
            status=OutboxStatus(row[3]),
            payload=DispatchPayload(**json.loads(row[4])),
            attempts=row[5],
            last_error=row[6],
            next_attempt_at=datetime.fromisoformat(row[7]),
            created_at=datetime.fromisoformat(row[8]),
            updated_at=datetime.fromisoformat(row[9]),
        )
