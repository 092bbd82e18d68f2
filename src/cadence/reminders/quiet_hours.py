"""免打扰时段判定

按策略配置的时区解析当前本地时间：
- exclude_weekends 且本地为周六 / 周日 -> 免打扰
- start > end 表示跨零点窗口（如 22:00-08:00）：now >= start 或 now < end
- 否则 start <= now < end

配置损坏（时区不存在、"HH:MM" 格式错误、非对象）时按"非免打扰"处理并告警。
"""

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import ValidationError

from cadence.core.models import QuietHours
from cadence.core.timeutil import ensure_utc

log = structlog.get_logger()

_SATURDAY = 5


def parse_minutes_of_day(value: str) -> int:
    """"HH:MM" -> 当日分钟数

    Raises:
        ValueError: 格式或取值非法
    """
    hour_text, sep, minute_text = value.strip().partition(":")
    if not sep:
        raise ValueError(f"invalid HH:MM value: {value!r}")
    hour, minute = int(hour_text), int(minute_text)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"invalid HH:MM value: {value!r}")
    return hour * 60 + minute


def is_quiet_hours(
    quiet_hours: QuietHours | dict[str, Any] | None,
    now: datetime,
) -> bool:
    """判断 now 是否处于免打扰时段"""
    if quiet_hours is None:
        return False

    try:
        config = (
            quiet_hours
            if isinstance(quiet_hours, QuietHours)
            else QuietHours.model_validate(quiet_hours)
        )
        if not config.enabled:
            return False

        local = ensure_utc(now).astimezone(ZoneInfo(config.timezone or "UTC"))
        if config.exclude_weekends and local.weekday() >= _SATURDAY:
            return True

        start = parse_minutes_of_day(config.start)
        end = parse_minutes_of_day(config.end)
    except (ValidationError, ValueError, ZoneInfoNotFoundError) as e:
        log.warning(
            "quiet_hours_config_invalid",
            error_type=type(e).__name__,
            error=str(e),
        )
        return False

    current = local.hour * 60 + local.minute
    if start > end:
        return current >= start or current < end
    return start <= current < end
