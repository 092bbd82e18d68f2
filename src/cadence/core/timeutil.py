"""时间工具 -- 数据库时间戳统一使用 UTC ISO-8601（微秒精度）

固定精度保证字符串字典序与时间先后一致，认领查询可直接比较 TEXT 列。
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """无时区的时间按 UTC 处理"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_db_ts(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_db_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
