"""TraceMiddleware -- 任务级追踪

从 /api/tasks/{task_id}/... 或 /api/stream/task/{task_id} 中提取 task_id，
绑定 trace_id = trace-{task_id}，与事件表的 trace_id 一致。
"""

import re

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_TASK_PATH = re.compile(r"^/api/(?:tasks|stream/task)/(?P<task_id>[^/]+)")


def trace_id_for_path(path: str) -> str | None:
    """从请求路径推导 trace_id，非任务路由返回 None"""
    match = _TASK_PATH.match(path)
    if match is None:
        return None
    return f"trace-{match.group('task_id')}"


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = trace_id_for_path(request.url.path)
        if trace_id:
            structlog.contextvars.bind_contextvars(trace_id=trace_id)
        return await call_next(request)
