"""ProviderTask Domain Model

tasks 表是 events 的物化视图（projection），
状态与 status_history 只能通过状态机流转写入。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ServiceType, StopType, TaskPriority, TaskStatus


class GeoLocation(BaseModel):
    """上报位置"""

    lat: float
    lng: float
    address: str = Field(default="")


class StatusHistoryEntry(BaseModel):
    """状态历史条目，写入后不可修改"""

    status: TaskStatus
    timestamp: datetime = Field(description="服务端时间戳")
    note: str = Field(default="")
    location: GeoLocation | None = Field(default=None)


class SpecialRequests(BaseModel):
    """特殊服务要求"""

    fragile_handling: bool = False
    multiple_dropoffs: bool = False
    helper_required: bool = False
    insurance_required: bool = False
    white_glove_service: bool = False
    assembly_required: bool = False


class AdditionalStop(BaseModel):
    """附加站点"""

    address: str
    type: StopType
    contact_name: str | None = None
    contact_phone: str | None = None
    items: str | None = None


class TaskPointers(BaseModel):
    """Task 指针信息"""

    latest_event_id: str | None = Field(default=None, description="最新事件 ID")


class ProviderTask(BaseModel):
    """分配给履约方（司机/搬运）的物流任务

    service_type 与描述性字段（地址、联系人、价格）在创建后只读；
    status / status_history / updated_at / version 仅由状态机更新。
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    provider_id: str = Field(description="被分配的履约方 ID")
    provider_name: str = Field(default="", description="履约方显示名称")
    booking_id: str = Field(description="对应的 booking ID")
    task_type: str = Field(default="logistics")
    service_type: ServiceType
    status: TaskStatus = Field(default=TaskStatus.ASSIGNED, description="当前状态")
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)

    pickup_address: str = Field(default="")
    delivery_address: str = Field(default="")
    client_name: str = Field(default="")
    client_phone: str = Field(default="")
    client_email: str = Field(default="")
    special_requests: SpecialRequests = Field(default_factory=SpecialRequests)
    additional_stops: list[AdditionalStop] = Field(default_factory=list)
    notes: str = Field(default="")
    estimated_duration: int = Field(default=0, ge=0, description="预计时长（分钟）")
    priority: TaskPriority = Field(default=TaskPriority.NORMAL)
    price: float = Field(default=0.0, ge=0)
    provider_earnings: float = Field(default=0.0, ge=0)
    assignment_note: str = Field(default="")

    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    version: int = Field(default=1, ge=1, description="乐观并发版本号，每次流转 +1")
    pointers: TaskPointers = Field(default_factory=TaskPointers, description="指针信息")


class TaskAssignment(BaseModel):
    """分配请求 -- 匹配流程为某个 booking 选定履约方后提交"""

    provider_id: str = Field(min_length=1)
    provider_name: str = Field(default="")
    booking_id: str = Field(min_length=1)
    service_type: ServiceType
    pickup_address: str = Field(default="")
    delivery_address: str = Field(default="")
    client_name: str = Field(default="")
    client_phone: str = Field(default="")
    client_email: str = Field(default="")
    special_requests: SpecialRequests = Field(default_factory=SpecialRequests)
    additional_stops: list[AdditionalStop] = Field(default_factory=list)
    notes: str = Field(default="")
    estimated_duration: int = Field(default=0, ge=0)
    priority: TaskPriority = Field(default=TaskPriority.NORMAL)
    price: float = Field(default=0.0, ge=0)
    provider_earnings: float = Field(default=0.0, ge=0)
    assignment_note: str = Field(default="")
