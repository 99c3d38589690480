"""Booking Domain Model（外部记录，部分拥有）

本服务只负责维护 tracking_status 与 status 两个字段与任务状态对齐，
其余 booking 字段由营销/下单流程维护。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Booking(BaseModel):
    """任务所履约的商业记录"""

    booking_id: str
    client_id: str = Field(description="下单客户 ID")
    partner_id: str = Field(description="创建 booking 的合作方 ID")
    status: str = Field(default="upcoming")
    tracking_status: str = Field(default="")
    tracking_seq: int = Field(
        default=0,
        description="最近一次已应用流转的 task_seq，用于丢弃乱序重投",
    )
    created_at: datetime
    updated_at: datetime
