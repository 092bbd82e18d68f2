"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、调度器与提醒调度的启动/停止、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI

from cadence import __version__
from cadence.core.config import (
    WEBHOOK_TIMEOUT_S,
    get_db_path,
    is_reminder_scheduler_enabled,
    load_dispatcher_config,
)
from cadence.core.store import create_store_group
from cadence.queue import JobDispatcher, ProcessorRegistry
from cadence.queue.processors import register_builtin_processors
from cadence.reminders import LoggingDeliverer, ReminderEngine, ReminderScheduler

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import health, jobs, reminders

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 Store 与后台组件，关闭时按相反顺序清理"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    app.state.store_group = store_group

    registry = ProcessorRegistry()
    dispatcher = JobDispatcher(store_group.job_store, registry, load_dispatcher_config())
    engine = ReminderEngine(store_group, dispatcher)
    http_client = httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_S)
    register_builtin_processors(
        registry,
        store_group,
        engine,
        LoggingDeliverer(),
        http_client=http_client,
    )

    app.state.dispatcher = dispatcher
    app.state.reminder_engine = engine
    app.state.reminder_scheduler = None

    dispatcher.start_worker()
    if is_reminder_scheduler_enabled():
        scheduler = ReminderScheduler(store_group, engine)
        scheduler.start()
        app.state.reminder_scheduler = scheduler

    log.info(
        "gateway_started",
        db_path=db_path,
        processors=registry.registered_types(),
    )

    yield

    if app.state.reminder_scheduler is not None:
        await app.state.reminder_scheduler.stop()
    await dispatcher.stop_worker()
    await http_client.aclose()
    await store_group.conn.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="cadence Gateway",
        version=__version__,
        description="Job 队列与义务事项提醒 API",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    setup_logging()

    app.include_router(jobs.router, tags=["jobs"])
    app.include_router(reminders.router, tags=["reminders"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
