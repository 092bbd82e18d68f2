"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性与 Job worker 运行状态。
"""

import structlog
from fastapi import APIRouter, Request
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
    2. job_worker: 调度器 worker 是否在运行
    3. reminder_scheduler: 周期调度是否在运行（未启用时为 disabled，不影响就绪）
    """
    checks = {}
    all_ok = True

    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = "unavailable"
        all_ok = False

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is not None and dispatcher.is_running:
        checks["job_worker"] = "ok"
    else:
        checks["job_worker"] = "stopped"
        all_ok = False

    scheduler = getattr(request.app.state, "reminder_scheduler", None)
    if scheduler is None:
        checks["reminder_scheduler"] = "disabled"
    else:
        checks["reminder_scheduler"] = "ok" if scheduler.is_running else "stopped"

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
