"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、SSE 心跳间隔以及 outbox 投递参数（DispatchConfig）。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("LOGITRACK_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "LOGITRACK_DB_PATH",
        str(_get_base_dir() / "sqlite" / "logitrack.db"),
    )


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("LOGITRACK_SSE_HEARTBEAT_INTERVAL", "15")
)

# 同一任务 CAS 冲突后的最大重读次数
MAX_TRANSITION_ATTEMPTS: int = 3

# 默认历史备注模板
DEFAULT_NOTE_TEMPLATE: str = "Status updated to {status}"

# 分配时初始历史条目的默认备注
DEFAULT_ASSIGNMENT_NOTE: str = "Task assigned"


class DispatchConfig(BaseModel):
    """Outbox 投递配置 -- 从环境变量加载

    环境变量:
        LOGITRACK_OUTBOX_ENABLED: 是否启动后台 OutboxWorker
        LOGITRACK_OUTBOX_POLL_INTERVAL_S: 轮询间隔（秒）
        LOGITRACK_OUTBOX_MAX_ATTEMPTS: 最大投递次数，超过后标记 dead
        LOGITRACK_OUTBOX_BATCH_SIZE: 每轮最多处理的条目数
        LOGITRACK_OUTBOX_BACKOFF_BASE_S: 指数退避基数（秒）
    """

    worker_enabled: bool = Field(default=True, description="是否启动后台 worker")
    poll_interval_s: float = Field(default=2.0, gt=0, description="轮询间隔（秒）")
    max_attempts: int = Field(default=8, ge=1, description="最大投递次数")
    batch_size: int = Field(default=50, ge=1, description="每轮处理条目数")
    backoff_base_s: float = Field(default=1.0, gt=0, description="指数退避基数（秒）")
    backoff_max_s: float = Field(default=300.0, gt=0, description="退避上限（秒）")


def _read_number(env_var: str, cast, fallback):
    """读取数值型环境变量，无效值回退默认值并告警，不阻塞启动"""
    val = os.environ.get(env_var)
    if val is None or val == "":
        return None
    try:
        return cast(val)
    except ValueError:
        log.warning(
            "invalid_dispatch_config",
            env_var=env_var,
            value=val,
            fallback=fallback,
        )
        return None


def load_dispatch_config() -> DispatchConfig:
    """从环境变量加载 Outbox 投递配置

    Returns:
        DispatchConfig 实例
    """
    defaults = DispatchConfig()
    kwargs: dict = {}

    if val := os.environ.get("LOGITRACK_OUTBOX_ENABLED"):
        kwargs["worker_enabled"] = val.lower() in ("1", "true", "yes", "on")

    numeric = [
        ("LOGITRACK_OUTBOX_POLL_INTERVAL_S", "poll_interval_s", float),
        ("LOGITRACK_OUTBOX_MAX_ATTEMPTS", "max_attempts", int),
        ("LOGITRACK_OUTBOX_BATCH_SIZE", "batch_size", int),
        ("LOGITRACK_OUTBOX_BACKOFF_BASE_S", "backoff_base_s", float),
    ]
    for env_var, field, cast in numeric:
        parsed = _read_number(env_var, cast, getattr(defaults, field))
        if parsed is not None:
            kwargs[field] = parsed

    return DispatchConfig(**kwargs)
