"""gateway 测试配置 -- 手动装配 app.state（绕过 lifespan）+ httpx AsyncClient"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def test_app(
    tmp_db_path: Path,
    store_group,
    dispatcher,
    engine,
    builtin_processors,
    monkeypatch,
):
    """测试 app：共享全局 fixture 的 StoreGroup / 调度器 / 提醒引擎"""
    monkeypatch.setenv("CADENCE_DB_PATH", str(tmp_db_path))
    monkeypatch.setenv("CADENCE_REMINDER_SCHEDULER", "false")

    from cadence.gateway.main import create_app

    app = create_app()

    # 手动初始化（绕过 lifespan）
    app.state.store_group = store_group
    app.state.dispatcher = dispatcher
    app.state.reminder_engine = engine
    app.state.reminder_scheduler = None

    yield app


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
