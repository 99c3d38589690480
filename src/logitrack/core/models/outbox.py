"""Outbox Domain Model

STATE_TRANSITION 事件与 outbox 条目同事务写入；
dispatcher 以至少一次语义投递，按 entry_id（即事件 ID）去重。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import OutboxStatus
from .payloads import DispatchPayload


class OutboxEntry(BaseModel):
    """待投递的流转副作用（booking 同步 + 通知扇出）"""

    entry_id: str = Field(description="等于源 STATE_TRANSITION 事件 ID")
    task_id: str
    booking_id: str
    status: OutboxStatus = Field(default=OutboxStatus.PENDING)
    payload: DispatchPayload
    attempts: int = Field(default=0, ge=0)
    last_error: str = Field(default="")
    next_attempt_at: datetime
    created_at: datetime
    updated_at: datetime
