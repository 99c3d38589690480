"""状态历史记录器

构建追加到 status_history 的下一个条目。时间戳始终由服务端生成，
并且不早于上一条目，保证历史按时间非递减排列。
"""

from datetime import UTC, datetime

from .config import DEFAULT_NOTE_TEMPLATE
from .models.enums import TaskStatus
from .models.task import GeoLocation, ProviderTask, StatusHistoryEntry


def build_history_entry(
    task: ProviderTask,
    new_status: TaskStatus,
    note: str | None = None,
    location: GeoLocation | None = None,
    now: datetime | None = None,
) -> StatusHistoryEntry:
    """构建下一条历史记录

    Args:
        task: 刚从存储读取的任务（history 以此为基准）
        new_status: 流转目标状态
        note: 备注，为空时使用默认模板
        location: 可选的上报位置
        now: 服务端当前时间（测试可注入）

    Returns:
        新的 StatusHistoryEntry
    """
    timestamp = now or datetime.now(UTC)
    if task.status_history:
        last_ts = task.status_history[-1].timestamp
        if timestamp < last_ts:
            # 时钟回拨时钳制到上一条目
            timestamp = last_ts

    return StatusHistoryEntry(
        status=new_status,
        timestamp=timestamp,
        note=note or DEFAULT_NOTE_TEMPLATE.format(status=new_status.value),
        location=location,
    )


def append_history(
    task: ProviderTask, entry: StatusHistoryEntry
) -> list[StatusHistoryEntry]:
    """返回追加了 entry 的新 history 列表（不修改原任务）"""
    return [*task.status_history, entry]
