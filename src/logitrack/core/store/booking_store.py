"""BookingStore SQLite 实现

booking 由下单流程创建；本服务只同步 status / tracking_status。
写方法不提交事务，由调用方管理。
同步按 tracking_seq 单调推进，重复或乱序投递不会回退 booking 状态。
"""

from datetime import datetime

import aiosqlite

from ..models.booking import Booking


class SqliteBookingStore:
    """BookingStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_booking(self, booking: Booking) -> None:
        """创建 booking 记录（用于导入与测试）"""
        await self._conn.execute(
            """
            INSERT INTO bookings (booking_id, client_id, partner_id, status,
                                  tracking_status, tracking_seq, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                booking.booking_id,
                booking.client_id,
                booking.partner_id,
                booking.status,
                booking.tracking_status,
                booking.tracking_seq,
                booking.created_at.isoformat(),
                booking.updated_at.isoformat(),
            ),
        )

    async def get_booking(self, booking_id: str) -> Booking | None:
        """根据 booking_id 查询 booking"""
        cursor = await self._conn.execute(
            """
            SELECT booking_id, client_id, partner_id, status, tracking_status,
                   tracking_seq, created_at, updated_at
            FROM bookings WHERE booking_id = ?
            """,
            (booking_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Booking(
            booking_id=row[0],
            client_id=row[1],
            partner_id=row[2],
            status=row[3],
            tracking_status=row[4],
            tracking_seq=row[5],
            created_at=datetime.fromisoformat(row[6]),
            updated_at=datetime.fromisoformat(row[7]),
        )

    async def apply_task_status(
        self,
        booking_id: str,
        tracking_status: str,
        status: str,
        task_seq: int,
        updated_at: datetime,
    ) -> bool:
        """写入任务状态镜像，仅当 task_seq 比已应用的更新时生效

        Returns:
            True 如果本次写入生效，False 如果已应用过同一或更新的流转
        """
        cursor = await self._conn.execute(
            """
            UPDATE bookings
            SET tracking_status = ?, status = ?, tracking_seq = ?, updated_at = ?
            WHERE booking_id = ? AND tracking_seq < ?
            """,
            (
                tracking_status,
                status,
                task_seq,
                updated_at.isoformat(),
                booking_id,
                task_seq,
            ),
        )
        return cursor.rowcount == 1
