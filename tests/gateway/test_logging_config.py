"""setup_logging 测试

测试内容：
1. json 模式输出可解析的结构化日志
2. 重复调用不会叠加 handler
3. 第三方嘈杂 logger 压到 WARNING
"""

import json
import logging

import pytest
import structlog
from cadence.gateway.middleware.logging_config import setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestSetupLogging:
    def test_json_output(self, restore_logging, capsys):
        setup_logging(log_format="json", log_level="debug")

        structlog.get_logger("cadence.test").info("job_completed", job_id=7)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "job_completed"
        assert record["job_id"] == 7
        assert record["level"] == "info"
        assert record["logger"] == "cadence.test"

    def test_idempotent_and_levels(self, restore_logging, monkeypatch):
        monkeypatch.setenv("CADENCE_LOG_LEVEL", "nonsense")

        setup_logging()
        setup_logging()

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.INFO
        for name in ("aiosqlite", "httpx", "httpcore"):
            assert logging.getLogger(name).level == logging.WARNING
