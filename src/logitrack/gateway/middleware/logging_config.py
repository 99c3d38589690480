"""structlog 配置模块

dev 模式：ConsoleRenderer 可读输出
json 模式：结构化 JSON 输出（便于日志平台检索 task_id / event_id）
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，未启用时仅输出本地日志。
"""

import logging
import os

import structlog


def setup_logging() -> None:
    """初始化 structlog 配置

    环境变量:
        LOGITRACK_LOG_FORMAT: "json" 或 "dev"（默认）
        LOGITRACK_LOG_LEVEL: 标准库日志级别名，默认 INFO
    """
    log_format = os.environ.get("LOGITRACK_LOG_FORMAT", "dev")
    log_level = os.environ.get("LOGITRACK_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # 标准库 logging（uvicorn / aiosqlite）走同一渲染器
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def setup_logfire(app=None) -> bool:
    """按需启用 Logfire

    Returns:
        是否已启用
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False
    try:
        import logfire

        logfire.configure()
        if app is not None:
            logfire.instrument_fastapi(app)
        return True
    except Exception as e:
        # Logfire 不可用时降级为本地日志
        structlog.get_logger().warning(
            "logfire_init_failed",
            error_type=type(e).__name__,
        )
        return False
