"""流转异常 -> HTTP 错误响应

错误响应体统一为 {"error": {"code": ..., "message": ...}}。
"""

from logitrack.core.exceptions import (
    BookingNotFoundError,
    IllegalTransitionError,
    NotFoundError,
    PersistenceFailureError,
    TaskAlreadyAssignedError,
    TaskNotFoundError,
    TransitionError,
    UnauthorizedActorError,
)
from starlette.responses import JSONResponse

_HTTP_STATUS: dict[type[TransitionError], int] = {
    TaskNotFoundError: 404,
    BookingNotFoundError: 404,
    NotFoundError: 404,
    UnauthorizedActorError: 403,
    IllegalTransitionError: 409,
    TaskAlreadyAssignedError: 409,
    PersistenceFailureError: 503,
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def transition_error_response(error: TransitionError) -> JSONResponse:
    """按异常类型映射状态码，未登记的类型按 500 处理"""
    status_code = next(
        (code for cls, code in _HTTP_STATUS.items() if isinstance(error, cls)),
        500,
    )
    return error_response(status_code, error.code, str(error))
