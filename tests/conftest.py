"""全局 pytest 配置 -- 临时 SQLite 数据库、可控时钟、调度器 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from cadence.core.config import DispatcherConfig
from cadence.core.store import StoreGroup, create_store_group
from cadence.queue import JobDispatcher, ProcessorRegistry
from cadence.queue.processors import BuiltinProcessors, register_builtin_processors
from cadence.reminders import LoggingDeliverer, ReminderEngine

# 2026-03-04 是周三
BASE_TIME = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的时钟，注入调度器 / 提醒引擎"""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from cadence.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "raw.db"))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供共享临时数据库的 StoreGroup"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.conn.close()


@pytest.fixture
def registry() -> ProcessorRegistry:
    return ProcessorRegistry()


@pytest.fixture
def dispatcher_config() -> DispatcherConfig:
    return DispatcherConfig(poll_interval_ms=50)


@pytest_asyncio.fixture
async def dispatcher(
    store_group: StoreGroup,
    registry: ProcessorRegistry,
    dispatcher_config: DispatcherConfig,
    clock: FakeClock,
) -> AsyncGenerator[JobDispatcher, None]:
    """使用可控时钟的调度器（worker 默认不启动）"""
    d = JobDispatcher(store_group.job_store, registry, dispatcher_config, clock=clock)
    yield d
    await d.stop_worker()


@pytest.fixture
def deliverer() -> LoggingDeliverer:
    return LoggingDeliverer()


@pytest.fixture
def engine(store_group: StoreGroup, dispatcher: JobDispatcher, clock: FakeClock) -> ReminderEngine:
    """共享调度器与时钟的提醒引擎"""
    return ReminderEngine(store_group, dispatcher, clock=clock)


@pytest.fixture
def builtin_processors(
    registry: ProcessorRegistry,
    store_group: StoreGroup,
    engine: ReminderEngine,
    deliverer: LoggingDeliverer,
    clock: FakeClock,
) -> BuiltinProcessors:
    """注册内置处理器（webhook 使用每次新建的 httpx 客户端）"""
    return register_builtin_processors(registry, store_group, engine, deliverer, clock=clock)
