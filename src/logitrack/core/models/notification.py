"""Notification Domain Model -- 本服务只写不读"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import RecipientType

TASK_STATUS_UPDATE = "task_status_update"


class NotificationData(BaseModel):
    """通知引用的任务上下文"""

    booking_id: str
    task_id: str
    status: str
    provider_name: str = ""


class Notification(BaseModel):
    """每次流转、每个接收方一条通知记录"""

    notification_id: str = Field(description="ULID")
    type: str = Field(default=TASK_STATUS_UPDATE)
    recipient_id: str
    recipient_type: RecipientType
    title: str
    message: str
    data: NotificationData
    read: bool = Field(default=False)
    created_at: datetime
    source_event_id: str = Field(description="触发该通知的 STATE_TRANSITION 事件 ID")
