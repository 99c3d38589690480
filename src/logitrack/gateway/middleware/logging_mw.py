"""LoggingMiddleware -- 请求级日志

为每个 HTTP 请求生成 request_id（ULID），绑定到 structlog contextvars，
并在响应头 X-Request-ID 中返回。携带 X-Actor-Id 的请求同时绑定 actor_id。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(ULID())

        structlog.contextvars.clear_contextvars()
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
        if actor_id := request.headers.get("x-actor-id"):
            context["actor_id"] = actor_id
        structlog.contextvars.bind_contextvars(**context)

        log = structlog.get_logger()
        started = time.monotonic()
        await log.ainfo("request_started")

        response = await call_next(request)

        await log.ainfo(
            "request_completed",
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        response.headers["X-Request-ID"] = request_id
        return response
