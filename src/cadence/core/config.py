"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、调度器参数、提醒引擎匹配容差等可配置项。
非法环境变量值一律记录 warning 并回退默认值，不阻塞导入与启动。
"""

import os
from pathlib import Path
from typing import Annotated, Any

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("CADENCE_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "CADENCE_DB_PATH",
        str(_get_base_dir() / "sqlite" / "cadence.db"),
    )


def read_env_setting(env_var: str, default: Any, annotation: Any) -> Any:
    """读取并校验单个环境变量

    未设置或为空时返回 default；无法通过 annotation 校验时记录 warning 并返回 default。
    """
    raw = os.environ.get(env_var)
    if not raw:
        return default
    try:
        return TypeAdapter(annotation).validate_python(raw)
    except ValidationError as e:
        log.warning(
            "invalid_config_value",
            env_var=env_var,
            value=raw,
            fallback=default,
            error=e.errors(include_url=False)[0]["msg"],
        )
        return default


# 提醒规则 before_due 匹配容差（小时），目标时刻 ±此值内视为命中。
# 提醒编排的运行间隔必须不大于 2 倍容差，否则会漏发提醒。
REMINDER_MATCH_TOLERANCE_HOURS: float = read_env_setting(
    "CADENCE_REMINDER_MATCH_TOLERANCE_HOURS", 0.5, Annotated[float, Field(gt=0)]
)

# 提醒编排的前瞻窗口（天）
REMINDER_LOOKAHEAD_DAYS: int = read_env_setting(
    "CADENCE_REMINDER_LOOKAHEAD_DAYS", 30, Annotated[int, Field(ge=1)]
)

# 提醒编排最大运行间隔（秒）
REMINDER_MAX_INTERVAL_SECONDS: int = 3600

# Webhook 投递超时（秒）
WEBHOOK_TIMEOUT_S: float = read_env_setting(
    "CADENCE_WEBHOOK_TIMEOUT_S", 10.0, Annotated[float, Field(gt=0)]
)


class DispatcherConfig(BaseModel):
    """Job 调度器配置 -- 从环境变量加载

    环境变量:
        CADENCE_WORKER_POLL_INTERVAL_MS: 兜底轮询间隔（默认 5000）
        CADENCE_WORKER_CONCURRENCY: worker 协程数（默认 1）
        CADENCE_JOB_MAX_ATTEMPTS: 默认最大尝试次数（默认 3）
        CADENCE_JOB_BACKOFF_BASE_S: 退避基数（秒，默认 1）
        CADENCE_JOB_BACKOFF_MAX_S: 退避上限（秒，默认 3600）
        CADENCE_JOB_STALE_AFTER_S: processing 超时回收阈值（秒，默认 600）
    """

    poll_interval_ms: int = Field(default=5000, ge=10, description="兜底轮询间隔（毫秒）")
    concurrency: int = Field(default=1, ge=1, le=64, description="worker 协程数")
    default_max_attempts: int = Field(default=3, ge=1, description="默认最大尝试次数")
    backoff_base_s: float = Field(default=1.0, gt=0, description="退避基数（秒）")
    backoff_max_s: float = Field(default=3600.0, gt=0, description="退避上限（秒）")
    stale_after_s: float = Field(
        default=600.0,
        gt=0,
        description="processing 状态超过此时长视为遗留 Job，由 worker 定期回收",
    )


_DISPATCHER_ENV: dict[str, str] = {
    "CADENCE_WORKER_POLL_INTERVAL_MS": "poll_interval_ms",
    "CADENCE_WORKER_CONCURRENCY": "concurrency",
    "CADENCE_JOB_MAX_ATTEMPTS": "default_max_attempts",
    "CADENCE_JOB_BACKOFF_BASE_S": "backoff_base_s",
    "CADENCE_JOB_BACKOFF_MAX_S": "backoff_max_s",
    "CADENCE_JOB_STALE_AFTER_S": "stale_after_s",
}


def load_dispatcher_config() -> DispatcherConfig:
    """从环境变量加载调度器配置

    每个字段单独按 DispatcherConfig 的约束校验（类型与取值范围），
    非法值记录 warning 并回退默认值，不阻塞启动。

    Returns:
        DispatcherConfig 实例
    """
    kwargs: dict[str, Any] = {}
    for env_var, field_name in _DISPATCHER_ENV.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            DispatcherConfig.model_validate({field_name: raw})
        except ValidationError as e:
            log.warning(
                "invalid_config_value",
                env_var=env_var,
                value=raw,
                fallback=DispatcherConfig.model_fields[field_name].default,
                error=e.errors(include_url=False)[0]["msg"],
            )
            continue
        kwargs[field_name] = raw

    return DispatcherConfig(**kwargs)


def clamp_reminder_interval(interval: int) -> int:
    """将提醒编排间隔限制在 (0, REMINDER_MAX_INTERVAL_SECONDS]

    before_due 的 ±0.5 小时匹配窗口要求至少每小时运行一次。
    """
    if interval <= 0 or interval > REMINDER_MAX_INTERVAL_SECONDS:
        log.warning(
            "reminder_interval_clamped",
            value=interval,
            clamped_to=REMINDER_MAX_INTERVAL_SECONDS,
        )
        return REMINDER_MAX_INTERVAL_SECONDS
    return interval


def get_reminder_interval_seconds() -> int:
    """获取提醒编排运行间隔（秒），超出范围时截断并告警"""
    raw = os.environ.get("CADENCE_REMINDER_INTERVAL_S", str(REMINDER_MAX_INTERVAL_SECONDS))
    try:
        interval = int(raw)
    except ValueError:
        log.warning(
            "invalid_reminder_interval",
            value=raw,
            fallback=REMINDER_MAX_INTERVAL_SECONDS,
        )
        return REMINDER_MAX_INTERVAL_SECONDS
    return clamp_reminder_interval(interval)


def is_reminder_scheduler_enabled() -> bool:
    """网关是否随应用启动周期性提醒调度（CADENCE_REMINDER_SCHEDULER，默认开启）"""
    value = os.environ.get("CADENCE_REMINDER_SCHEDULER", "true").strip().lower()
    return value not in ("0", "false", "no", "off")
