"""依赖注入模块 -- 通过 FastAPI Depends 注入运行时组件

组件实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request

from cadence.core.store import StoreGroup
from cadence.queue import JobDispatcher
from cadence.reminders import ReminderEngine


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_dispatcher(request: Request) -> JobDispatcher:
    """从 app.state 获取 JobDispatcher 实例"""
    return request.app.state.dispatcher


def get_reminder_engine(request: Request) -> ReminderEngine:
    """从 app.state 获取 ReminderEngine 实例"""
    return request.app.state.reminder_engine
