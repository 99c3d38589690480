"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查 -- SQLite 连通性、WAL 模式、outbox 积压情况。
"""

import structlog
from fastapi import APIRouter, Request
from logitrack.core.store.sqlite_init import verify_wal_mode
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查

    检查项：
    1. sqlite: 数据库连通性
    2. wal_mode: journal_mode 是否为 WAL
    3. outbox: 各状态条目数（dead > 0 不影响就绪，仅供告警）
    4. outbox_worker: 后台重投 worker 是否在运行
    """
    checks: dict = {}
    all_ok = True
    store_group = request.app.state.store_group

    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    if all_ok:
        checks["wal_mode"] = "ok" if await verify_wal_mode(store_group.conn) else "disabled"
        checks["outbox"] = await store_group.outbox_store.count_by_status()

    worker = getattr(request.app.state, "outbox_worker", None)
    if worker is None:
        checks["outbox_worker"] = "disabled"
    else:
        checks["outbox_worker"] = "running" if worker.running else "stopped"

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
