"""枚举定义 -- 配送任务状态机与相关类型

包含 TaskStatus 状态机、ServiceType、EventType、ActorType、RecipientType、
OutboxStatus 枚举，以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """ProviderTask 状态机（按履约顺序排列，第一个为初始状态）"""

    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    EN_ROUTE_PICKUP = "en_route_pickup"
    PICKED_UP = "picked_up"
    EN_ROUTE_DELIVERY = "en_route_delivery"
    DELIVERED = "delivered"

    # 终态
    COMPLETED = "completed"
    FAILED = "failed"


# 合法状态流转 -- 新增或审计一条流转只需修改这一张表
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.ASSIGNED: {TaskStatus.ACCEPTED, TaskStatus.FAILED},
    TaskStatus.ACCEPTED: {TaskStatus.EN_ROUTE_PICKUP, TaskStatus.FAILED},
    TaskStatus.EN_ROUTE_PICKUP: {TaskStatus.PICKED_UP, TaskStatus.FAILED},
    TaskStatus.PICKED_UP: {TaskStatus.EN_ROUTE_DELIVERY, TaskStatus.FAILED},
    TaskStatus.EN_ROUTE_DELIVERY: {TaskStatus.DELIVERED, TaskStatus.FAILED},
    TaskStatus.DELIVERED: {TaskStatus.COMPLETED},
    # 终态不可再流转
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
}


class ServiceType(StrEnum):
    """物流服务类型，创建后不可变"""

    TRANSPORT = "transport"
    DELIVERY = "delivery"
    MOVING = "moving"


class TaskPriority(StrEnum):
    """任务优先级"""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class StopType(StrEnum):
    """附加站点类型"""

    PICKUP = "pickup"
    DELIVERY = "delivery"


class EventType(StrEnum):
    """事件类型"""

    TASK_ASSIGNED = "TASK_ASSIGNED"
    STATE_TRANSITION = "STATE_TRANSITION"


class ActorType(StrEnum):
    """操作者类型"""

    PROVIDER = "provider"
    SYSTEM = "system"


class RecipientType(StrEnum):
    """通知接收方类型"""

    CLIENT = "client"
    PARTNER = "partner"


class OutboxStatus(StrEnum):
    """Outbox 条目投递状态"""

    PENDING = "pending"
    DELIVERED = "delivered"
    DEAD = "dead"


def legal_next_states(current: TaskStatus) -> frozenset[TaskStatus]:
    """返回当前状态下所有合法的下一状态（纯函数，无副作用）"""
    return frozenset(VALID_TRANSITIONS.get(current, set()))


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    return to_status in legal_next_states(from_status)
