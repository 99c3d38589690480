"""Event / Outbox Payload 子类型

所有事件与 outbox 条目的结构化 payload 定义。
"""

from pydantic import BaseModel, Field

from .enums import ServiceType, TaskStatus
from .task import StatusHistoryEntry


class TaskAssignedPayload(BaseModel):
    """TASK_ASSIGNED 事件 payload -- 创建时的完整任务快照"""

    task: dict = Field(description="ProviderTask.model_dump(mode='json')")


class StateTransitionPayload(BaseModel):
    """STATE_TRANSITION 事件 payload"""

    from_status: TaskStatus
    to_status: TaskStatus
    actor_id: str
    version: int = Field(description="流转后的 task.version")
    entry: StatusHistoryEntry = Field(description="本次追加的历史条目")


class DispatchPayload(BaseModel):
    """Outbox 条目 payload -- booking 同步与通知扇出所需的全部输入

    与 STATE_TRANSITION 事件同事务写入，投递时无需再读取 task。
    """

    task_id: str
    booking_id: str
    to_status: TaskStatus
    task_seq: int
    service_type: ServiceType
    provider_name: str = Field(default="")
