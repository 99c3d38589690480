"""NotificationStore SQLite 实现

(source_event_id, recipient_type) 唯一：同一流转重复投递时返回已存在的通知 ID。
写方法不提交事务，由调用方管理。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import RecipientType
from ..models.notification import Notification, NotificationData


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def add_notification(self, notification: Notification) -> str:
        """写入通知（幂等）

        Returns:
            实际落盘的 notification_id（重复投递时为首次写入的 ID）
        """
        cursor = await self._conn.execute(
            """
            INSERT INTO notifications (notification_id, type, recipient_id,
                                       recipient_type, title, message, data,
                                       read, created_at, source_event_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(source_event_id, recipient_type) DO NOTHING
            """,
            (
                notification.notification_id,
                notification.type,
                notification.recipient_id,
                notification.recipient_type.value,
                notification.title,
                notification.message,
                notification.data.model_dump_json(),
                int(notification.read),
                notification.created_at.isoformat(),
                notification.source_event_id,
            ),
        )
        if cursor.rowcount == 1:
            return notification.notification_id

        cursor = await self._conn.execute(
            """
            SELECT notification_id FROM notifications
            WHERE source_event_id = ? AND recipient_type = ?
            """,
            (notification.source_event_id, notification.recipient_type.value),
        )
        row = await cursor.fetchone()
        return row[0]

    async def list_for_recipient(self, recipient_id: str) -> list[Notification]:
        """查询接收方的通知，按 created_at 倒序"""
        cursor = await self._conn.execute(
            f"{_SELECT} WHERE recipient_id = ? ORDER BY created_at DESC",
            (recipient_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def list_for_event(self, source_event_id: str) -> list[Notification]:
        """查询某次流转产生的通知"""
        cursor = await self._conn.execute(
            f"{_SELECT} WHERE source_event_id = ? ORDER BY recipient_type ASC",
            (source_event_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    @staticmethod
    def _row_to_notification(row: aiosqlite.Row) -> Notification:
        """将数据库行转换为 Notification 模型"""
        return Notification(
            notification_id=row[0],
            type=row[1],
            recipient_id=row[2],
            recipient_type=RecipientType(row[3]),
            title=row[4],
            message=row[5],
            data=NotificationData(**json.loads(row[6])),
            read=bool(row[7]),
            created_at=datetime.fromisoformat(row[8]),
            source_event_id=row[9],
        )


_SELECT = """
SELECT notification_id, type, recipient_id, recipient_type, title, message,
       data, read, created_at, source_event_id
FROM notifications
"""
