"""依赖注入模块 -- 通过 FastAPI Depends 注入 lifespan 中初始化的组件"""

from fastapi import Depends, Request
from logitrack.core.store import StoreGroup

from .services.outbox_dispatcher import OutboxDispatcher
from .services.sse_hub import SSEHub
from .services.task_service import TaskService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_sse_hub(request: Request) -> SSEHub:
    """从 app.state 获取 SSEHub 实例"""
    return request.app.state.sse_hub


def get_dispatcher(request: Request) -> OutboxDispatcher:
    """从 app.state 获取 OutboxDispatcher 实例"""
    return request.app.state.dispatcher


def get_task_service(
    store_group: StoreGroup = Depends(get_store_group),
    sse_hub: SSEHub = Depends(get_sse_hub),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
) -> TaskService:
    return TaskService(store_group, sse_hub=sse_hub, dispatcher=dispatcher)
