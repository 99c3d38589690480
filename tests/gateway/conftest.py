"""gateway 测试配置 -- TaskService / OutboxDispatcher / FastAPI app fixture"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from logitrack.core.config import DispatchConfig
from logitrack.core.models import TaskStatus
from logitrack.core.store import create_store_group
from logitrack.gateway.services.outbox_dispatcher import OutboxDispatcher
from logitrack.gateway.services.sse_hub import SSEHub
from logitrack.gateway.services.task_service import TaskService

FAST_RETRY = DispatchConfig(
    worker_enabled=False,
    poll_interval_s=0.01,
    max_attempts=3,
    backoff_base_s=0.001,
    backoff_max_s=0.01,
)


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return FAST_RETRY


@pytest_asyncio.fixture
async def dispatcher(store_group, dispatch_config) -> OutboxDispatcher:
    return OutboxDispatcher(store_group, dispatch_config)


@pytest_asyncio.fixture
async def sse_hub() -> SSEHub:
    return SSEHub()


@pytest_asyncio.fixture
async def service(store_group, sse_hub, dispatcher) -> TaskService:
    return TaskService(store_group, sse_hub=sse_hub, dispatcher=dispatcher)


@pytest_asyncio.fixture
async def assigned_task(service, make_booking, assignment_factory):
    """booking-001 上处于 assigned 的任务"""
    await make_booking()
    return await service.assign_task(assignment_factory())


@pytest.fixture
def advance():
    """按顺序推进任务状态，返回最后一次流转结果"""

    async def _advance(service: TaskService, task, *statuses: TaskStatus):
        result = None
        for status in statuses:
            result = await service.update_task_status(task.task_id, task.provider_id, status)
        return result

    return _advance


@pytest_asyncio.fixture
async def app(tmp_path: Path):
    """测试用 FastAPI app（手动初始化 state，绕过 lifespan）"""
    os.environ["LOGITRACK_DB_PATH"] = str(tmp_path / "gateway.db")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from logitrack.gateway.main import create_app

    application = create_app()
    store_group = await create_store_group(str(tmp_path / "gateway.db"))
    application.state.store_group = store_group
    application.state.sse_hub = SSEHub()
    application.state.dispatcher = OutboxDispatcher(store_group, FAST_RETRY)
    application.state.outbox_worker = None

    yield application

    await store_group.conn.close()
    os.environ.pop("LOGITRACK_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
