"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、SSEHub、OutboxDispatcher 与
后台 OutboxWorker 的启动/停止、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from logitrack.core.config import get_db_path, load_dispatch_config
from logitrack.core.store import create_store_group

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, status, stream, tasks
from .services.outbox_dispatcher import OutboxDispatcher, OutboxWorker
from .services.sse_hub import SSEHub

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """启动时初始化存储与投递组件，关闭时停止 worker 并关闭连接"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    app.state.store_group = store_group
    app.state.sse_hub = SSEHub()

    dispatch_config = load_dispatch_config()
    dispatcher = OutboxDispatcher(store_group, dispatch_config)
    app.state.dispatcher = dispatcher

    app.state.outbox_worker = None
    if dispatch_config.worker_enabled:
        worker = OutboxWorker(dispatcher)
        worker.start()
        app.state.outbox_worker = worker

    log.info(
        "gateway_started",
        db_path=db_path,
        outbox_worker=dispatch_config.worker_enabled,
        max_attempts=dispatch_config.max_attempts,
    )

    yield

    if app.state.outbox_worker is not None:
        await app.state.outbox_worker.stop()
    await store_group.conn.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="LogiTrack Gateway",
        version="0.1.0",
        description="配送任务状态流转、booking 同步与通知扇出 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging，Logging 在最外层）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire(app)

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(status.router, tags=["status"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
