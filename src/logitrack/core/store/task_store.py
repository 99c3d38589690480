"""TaskStore SQLite 实现

tasks 表是 events 的物化视图（projection）。
状态更新使用 version 做 compare-and-swap，此处仅提供数据库操作，
事务由调用方（transaction.py）管理。
"""

import json
from datetime import datetime

import aiosqlite

from ..exceptions import TaskStatusConflictError
from ..models.task import (
    AdditionalStop,
    ProviderTask,
    SpecialRequests,
    StatusHistoryEntry,
    TaskPointers,
)

_COLUMNS = (
    "task_id",
    "provider_id",
    "provider_name",
    "booking_id",
    "task_type",
    "service_type",
    "status",
    "status_history",
    "pickup_address",
    "delivery_address",
    "client_name",
    "client_phone",
    "client_email",
    "special_requests",
    "additional_stops",
    "notes",
    "estimated_duration",
    "priority",
    "price",
    "provider_earnings",
    "assignment_note",
    "created_at",
    "updated_at",
    "version",
    "pointers",
)

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM tasks"


def _dump_history(history: list[StatusHistoryEntry]) -> str:
    return json.dumps(
        [entry.model_dump(mode="json") for entry in history],
        ensure_ascii=False,
    )


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: ProviderTask) -> None:
        """创建任务记录"""
        placeholders = ", ".join("?" for _ in _COLUMNS)
        await self._conn.execute(
            f"INSERT INTO tasks ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            (
                task.task_id,
                task.provider_id,
                task.provider_name,
                task.booking_id,
                task.task_type,
                task.service_type.value,
                task.status.value,
                _dump_history(task.status_history),
                task.pickup_address,
                task.delivery_address,
                task.client_name,
                task.client_phone,
                task.client_email,
                task.special_requests.model_dump_json(),
                json.dumps(
                    [stop.model_dump(mode="json") for stop in task.additional_stops],
                    ensure_ascii=False,
                ),
                task.notes,
                task.estimated_duration,
                task.priority.value,
                task.price,
                task.provider_earnings,
                task.assignment_note,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                task.version,
                task.pointers.model_dump_json(),
            ),
        )

    async def get_task(self, task_id: str) -> ProviderTask | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"{_SELECT} WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        provider_id: str | None = None,
        status: str | None = None,
    ) -> list[ProviderTask]:
        """查询任务列表，支持按被分配人和状态筛选，按 created_at 倒序"""
        clauses: list[str] = []
        params: list[str] = []
        if provider_id:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        if status:
            clauses.append("status = ?")
            params.append(status)

        sql = _SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, task_id DESC"

        cursor = await self._conn.execute(sql, tuple(params))
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_task_transition(
        self,
        task: ProviderTask,
        expected_version: int,
    ) -> None:
        """以 CAS 方式写入流转后的任务（status / history / updated_at / version）

        Raises:
            TaskStatusConflictError: 存储中的 version 已不是 expected_version
        """
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET status = ?, status_history = ?, updated_at = ?, version = ?,
                pointers = json_set(pointers, '$.latest_event_id', ?)
            WHERE task_id = ? AND version = ?
            """,
            (
                task.status.value,
                _dump_history(task.status_history),
                task.updated_at.isoformat(),
                task.version,
                task.pointers.latest_event_id,
                task.task_id,
                expected_version,
            ),
        )
        if cursor.rowcount != 1:
            raise TaskStatusConflictError(task.task_id, expected_version)

    @staticmethod
    def _row_to_task(row) -> ProviderTask:
        """将数据库行转换为 ProviderTask 模型"""
        data = dict(zip(_COLUMNS, tuple(row), strict=True))
        return ProviderTask(
            task_id=data["task_id"],
            provider_id=data["provider_id"],
            provider_name=data["provider_name"],
            booking_id=data["booking_id"],
            task_type=data["task_type"],
            service_type=data["service_type"],
            status=data["status"],
            status_history=[
                StatusHistoryEntry(**entry)
                for entry in json.loads(data["status_history"])
            ],
            pickup_address=data["pickup_address"],
            delivery_address=data["delivery_address"],
            client_name=data["client_name"],
            client_phone=data["client_phone"],
            client_email=data["client_email"],
            special_requests=SpecialRequests(**json.loads(data["special_requests"])),
            additional_stops=[
                AdditionalStop(**stop) for stop in json.loads(data["additional_stops"])
            ],
            notes=data["notes"],
            estimated_duration=data["estimated_duration"],
            priority=data["priority"],
            price=data["price"],
            provider_earnings=data["provider_earnings"],
            assignment_note=data["assignment_note"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            version=data["version"],
            pointers=TaskPointers(**json.loads(data["pointers"])),
        )
