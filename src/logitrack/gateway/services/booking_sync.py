"""Booking Sync -- 将任务状态投影到 booking

tracking_status 逐字镜像任务状态；booking.status 在 completed 时写入
"completed"，其余状态同样直接写入任务状态标签。
按 task_seq 幂等：重复或乱序投递不会回退 booking。
"""

from datetime import UTC, datetime

import structlog
from logitrack.core.exceptions import BookingNotFoundError
from logitrack.core.models import Booking, TaskStatus
from logitrack.core.store.protocols import BookingStore

log = structlog.get_logger()


def booking_status_for(new_status: TaskStatus) -> str:
    """booking.status 的取值"""
    if new_status == TaskStatus.COMPLETED:
        return "completed"
    return new_status.value


async def sync_booking(
    booking_store: BookingStore,
    booking_id: str,
    new_status: TaskStatus,
    task_seq: int,
) -> Booking:
    """同步 booking 的 tracking_status / status

    注意：此函数不提交事务，需由调用方管理事务。

    Args:
        booking_store: BookingStore 实例
        booking_id: 任务关联的 booking
        new_status: 任务流转后的状态
        task_seq: 源 STATE_TRANSITION 事件的 task_seq

    Returns:
        同步后的 Booking

    Raises:
        BookingNotFoundError: booking 不存在
    """
    booking = await booking_store.get_booking(booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)

    now = datetime.now(UTC)
    status = booking_status_for(new_status)
    applied = await booking_store.apply_task_status(
        booking_id=booking_id,
        tracking_status=new_status.value,
        status=status,
        task_seq=task_seq,
        updated_at=now,
    )
    if not applied:
        log.info(
            "booking_sync_skipped_stale",
            booking_id=booking_id,
            task_seq=task_seq,
            applied_seq=booking.tracking_seq,
        )
        return booking

    return booking.model_copy(
        update={
            "tracking_status": new_status.value,
            "status": status,
            "tracking_seq": task_seq,
            "updated_at": now,
        }
    )
