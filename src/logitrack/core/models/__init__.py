"""LogiTrack Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .booking import Booking
from .enums import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActorType,
    EventType,
    OutboxStatus,
    RecipientType,
    ServiceType,
    StopType,
    TaskPriority,
    TaskStatus,
    legal_next_states,
    validate_transition,
)
from .event import Event, EventCausality
from .notification import TASK_STATUS_UPDATE, Notification, NotificationData
from .outbox import OutboxEntry
from .payloads import DispatchPayload, StateTransitionPayload, TaskAssignedPayload
from .task import (
    AdditionalStop,
    GeoLocation,
    ProviderTask,
    SpecialRequests,
    StatusHistoryEntry,
    TaskAssignment,
    TaskPointers,
)

__all__ = [
    # 枚举
    "TaskStatus",
    "ServiceType",
    "TaskPriority",
    "StopType",
    "EventType",
    "ActorType",
    "RecipientType",
    "OutboxStatus",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "legal_next_states",
    "validate_transition",
    # Task
    "ProviderTask",
    "StatusHistoryEntry",
    "GeoLocation",
    "SpecialRequests",
    "AdditionalStop",
    "TaskPointers",
    "TaskAssignment",
    # Booking / Notification
    "Booking",
    "Notification",
    "NotificationData",
    "TASK_STATUS_UPDATE",
    # Event
    "Event",
    "EventCausality",
    # Outbox
    "OutboxEntry",
    # Payloads
    "TaskAssignedPayload",
    "StateTransitionPayload",
    "DispatchPayload",
]
