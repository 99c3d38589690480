"""任务分配与查询路由

POST /api/tasks: 为 booking 分配任务（匹配流程调用）。
GET /api/tasks: 任务列表，支持 provider_id / status 筛选，按创建时间倒序。
GET /api/tasks/{task_id}: 任务详情，含事件与 outbox 投递状态。
GET /api/tasks/{task_id}/next-states: 当前状态下的合法目标状态。
"""

from fastapi import APIRouter, Depends, Query
from logitrack.core.exceptions import TaskNotFoundError, TransitionError
from logitrack.core.models import ProviderTask, TaskAssignment, TaskStatus
from pydantic import BaseModel
from starlette.responses import JSONResponse

from ..deps import get_store_group, get_task_service
from ..errors import transition_error_response
from ..services.task_service import TaskService

router = APIRouter()


class TaskSummary(BaseModel):
    """任务摘要（列表项）"""

    task_id: str
    provider_id: str
    booking_id: str
    service_type: str
    status: str
    priority: str
    pickup_address: str
    delivery_address: str
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: ProviderTask) -> "TaskSummary":
        return cls(
            task_id=task.task_id,
            provider_id=task.provider_id,
            booking_id=task.booking_id,
            service_type=task.service_type.value,
            status=task.status.value,
            priority=task.priority.value,
            pickup_address=task.pickup_address,
            delivery_address=task.delivery_address,
            created_at=task.created_at.isoformat(),
            updated_at=task.updated_at.isoformat(),
        )


class TaskListResponse(BaseModel):
    tasks: list[TaskSummary]


class NextStatesResponse(BaseModel):
    task_id: str
    status: TaskStatus
    next_states: list[TaskStatus]


@router.post("/api/tasks", status_code=201)
async def assign_task(
    body: TaskAssignment,
    service: TaskService = Depends(get_task_service),
):
    try:
        task = await service.assign_task(body)
    except TransitionError as e:
        return transition_error_response(e)
    return JSONResponse(status_code=201, content=task.model_dump(mode="json"))


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(
    provider_id: str | None = Query(default=None, description="按被分配人筛选"),
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    service: TaskService = Depends(get_task_service),
):
    tasks = await service.list_tasks(
        provider_id=provider_id,
        status=status.value if status else None,
    )
    return TaskListResponse(tasks=[TaskSummary.from_task(t) for t in tasks])


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    service: TaskService = Depends(get_task_service),
    store_group=Depends(get_store_group),
):
    """任务详情，包含完整 status_history、事件列表与 outbox 投递状态"""
    task = await service.get_task(task_id)
    if task is None:
        return transition_error_response(TaskNotFoundError(task_id))

    events = await store_group.event_store.get_events_for_task(task_id)
    outbox = await store_group.outbox_store.list_for_task(task_id)

    return {
        "task": task.model_dump(mode="json"),
        "events": [
            {
                "event_id": e.event_id,
                "task_seq": e.task_seq,
                "ts": e.ts.isoformat(),
                "type": e.type.value,
                "actor": e.actor.value,
                "payload": e.payload,
            }
            for e in events
        ],
        "dispatch": [
            {
                "entry_id": o.entry_id,
                "status": o.status.value,
                "attempts": o.attempts,
                "last_error": o.last_error,
            }
            for o in outbox
        ],
    }


@router.get("/api/tasks/{task_id}/next-states", response_model=NextStatesResponse)
async def get_next_states(
    task_id: str,
    service: TaskService = Depends(get_task_service),
):
    task = await service.get_task(task_id)
    if task is None:
        return transition_error_response(TaskNotFoundError(task_id))
    return NextStatesResponse(
        task_id=task_id,
        status=task.status,
        next_states=await service.next_states(task_id),
    )
