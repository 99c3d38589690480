"""状态流转路由

POST /api/tasks/{task_id}/status: 被分配人推进任务状态。
- 200: 流转已提交，booking 同步与通知已投递
- 202: 流转已提交，副作用投递待重试（dispatch_status = pending / dead）
- 401: 缺少 X-Actor-Id
- 403: actor 不是任务的被分配人
- 404: 任务或 booking 不存在
- 409: 非法流转（含终态任务）
- 503: 任务写入失败，已回滚
"""

import structlog
from fastapi import APIRouter, Depends, Header
from logitrack.core.exceptions import TransitionError
from logitrack.core.models import GeoLocation, OutboxStatus, TaskStatus
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_task_service
from ..errors import error_response, transition_error_response
from ..services.task_service import TaskService

log = structlog.get_logger()

router = APIRouter()


class StatusUpdateRequest(BaseModel):
    """状态流转请求体"""

    status: TaskStatus = Field(description="目标状态")
    note: str | None = Field(default=None, max_length=1000)
    location: GeoLocation | None = None
    idempotency_key: str | None = Field(default=None, max_length=128)


@router.post("/api/tasks/{task_id}/status")
async def update_task_status(
    task_id: str,
    body: StatusUpdateRequest,
    x_actor_id: str | None = Header(default=None),
    service: TaskService = Depends(get_task_service),
):
    if not x_actor_id:
        return error_response(401, "UNAUTHENTICATED", "Missing X-Actor-Id header")

    try:
        result = await service.update_task_status(
            task_id=task_id,
            actor_id=x_actor_id,
            new_status=body.status,
            note=body.note,
            location=body.location,
            idempotency_key=body.idempotency_key,
        )
    except TransitionError as e:
        log.info(
            "task_transition_rejected",
            task_id=task_id,
            code=e.code,
            requested=body.status.value,
        )
        return transition_error_response(e)

    status_code = 200 if result.dispatch_status == OutboxStatus.DELIVERED else 202
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json"),
    )
