"""Store Protocol 接口定义

定义 TaskStore、EventStore、BookingStore、NotificationStore、OutboxStore
的抽象接口，使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Protocol

from ..models.booking import Booking
from ..models.event import Event
from ..models.notification import Notification
from ..models.outbox import OutboxEntry
from ..models.task import ProviderTask


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: ProviderTask) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> ProviderTask | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(
        self,
        provider_id: str | None = None,
        status: str | None = None,
    ) -> list[ProviderTask]:
        """按被分配人/状态查询任务，按创建时间倒序"""
        ...

    async def update_task_transition(
        self,
        task: ProviderTask,
        expected_version: int,
    ) -> None:
        """CAS 写入流转后的任务"""
        ...


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_event(self, event: Event) -> None:
        """追加事件（append-only）"""
        ...

    async def get_events_for_task(self, task_id: str) -> list[Event]:
        """查询指定任务的所有事件"""
        ...

    async def get_events_after(
        self,
        task_id: str,
        after_event_id: str,
    ) -> list[Event]:
        """查询指定事件之后的增量事件（用于 SSE 断线重连）"""
        ...

    async def get_next_task_seq(self, task_id: str) -> int:
        """获取指定任务的下一个 task_seq（MAX+1）"""
        ...

    async def check_idempotency_key(self, task_id: str, key: str) -> str | None:
        """检查任务内幂等键是否已存在，返回关联的 event_id 或 None"""
        ...


class BookingStore(Protocol):
    """Booking 存储接口"""

    async def get_booking(self, booking_id: str) -> Booking | None:
        """根据 booking_id 查询 booking"""
        ...

    async def apply_task_status(
        self,
        booking_id: str,
        tracking_status: str,
        status: str,
        task_seq: int,
        updated_at: datetime,
    ) -> bool:
        """写入任务状态镜像，返回是否生效"""
        ...


class NotificationStore(Protocol):
    """Notification 存储接口（只写）"""

    async def add_notification(self, notification: Notification) -> str:
        """幂等写入通知，返回落盘的 notification_id"""
        ...


class OutboxStore(Protocol):
    """Outbox 存储接口"""

    async def add_entry(self, entry: OutboxEntry) -> None:
        """插入条目（随流转事务提交）"""
        ...

    async def get_entry(self, entry_id: str) -> OutboxEntry | None:
        """根据 entry_id 查询条目"""
        ...

    async def list_due(self, now: datetime, limit: int) -> list[OutboxEntry]:
        """查询到期待投递的条目"""
        ...

    async def mark_delivered(self, entry_id: str, attempts: int, now: datetime) -> None:
        """标记投递成功"""
        ...

    async def mark_failed(
        self,
        entry_id: str,
        attempts: int,
        error: str,
        next_attempt_at: datetime,
        dead: bool,
        now: datetime,
    ) -> None:
        """记录投递失败"""
        ...

    async def requeue_dead(self, now: datetime, task_id: str | None = None) -> int:
        """将 dead 条目重置为 pending，返回重置条数"""
        ...
