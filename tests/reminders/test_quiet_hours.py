"""免打扰时段判定测试"""

from datetime import UTC, datetime

import pytest
from cadence.core.models import QuietHours
from cadence.reminders.quiet_hours import is_quiet_hours, parse_minutes_of_day

# 2026-03-04 周三，2026-03-07 周六
WEDNESDAY = datetime(2026, 3, 4, tzinfo=UTC)
SATURDAY = datetime(2026, 3, 7, tzinfo=UTC)

OVERNIGHT = QuietHours(enabled=True, start="22:00", end="08:00", timezone="UTC")


def _at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute)


class TestParseMinutes:
    def test_valid(self):
        assert parse_minutes_of_day("08:30") == 510
        assert parse_minutes_of_day("00:00") == 0
        assert parse_minutes_of_day("23:59") == 1439

    @pytest.mark.parametrize("value", ["25:00", "12:60", "noon", "12", ""])
    def test_invalid(self, value: str):
        with pytest.raises(ValueError):
            parse_minutes_of_day(value)


class TestIsQuietHours:
    @pytest.mark.parametrize(
        "hour,minute,expected",
        [
            (23, 0, True),
            (22, 0, True),
            (2, 0, True),
            (7, 59, True),
            (8, 0, False),
            (9, 0, False),
            (21, 59, False),
        ],
    )
    def test_overnight_window(self, hour: int, minute: int, expected: bool):
        assert is_quiet_hours(OVERNIGHT, _at(WEDNESDAY, hour, minute)) is expected

    def test_same_day_window(self):
        lunch = QuietHours(enabled=True, start="12:00", end="13:00")
        assert is_quiet_hours(lunch, _at(WEDNESDAY, 12, 0)) is True
        assert is_quiet_hours(lunch, _at(WEDNESDAY, 12, 59)) is True
        assert is_quiet_hours(lunch, _at(WEDNESDAY, 13, 0)) is False
        assert is_quiet_hours(lunch, _at(WEDNESDAY, 11, 59)) is False

    def test_evaluated_in_configured_timezone(self):
        # 2026-03-04 纽约为 EST（UTC-5）
        new_york = OVERNIGHT.model_copy(update={"timezone": "America/New_York"})
        assert is_quiet_hours(new_york, _at(WEDNESDAY, 3, 0)) is True
        assert is_quiet_hours(new_york, _at(WEDNESDAY, 14, 0)) is False
        assert is_quiet_hours(new_york, _at(WEDNESDAY, 12, 30)) is True

    def test_weekends_excluded(self):
        config = QuietHours(enabled=True, start="22:00", end="08:00", exclude_weekends=True)
        assert is_quiet_hours(config, _at(SATURDAY, 12, 0)) is True
        assert is_quiet_hours(config, _at(WEDNESDAY, 12, 0)) is False

    def test_weekend_uses_local_day(self):
        config = QuietHours(
            enabled=True,
            start="22:00",
            end="08:00",
            timezone="Asia/Tokyo",
            exclude_weekends=True,
        )
        # 周五 UTC 16:00 = 周六东京 01:00
        friday_utc = datetime(2026, 3, 6, 16, 0, tzinfo=UTC)
        assert is_quiet_hours(config, friday_utc) is True

    def test_disabled(self):
        config = QuietHours(enabled=False, exclude_weekends=True)
        assert is_quiet_hours(config, _at(SATURDAY, 23, 0)) is False

    def test_none(self):
        assert is_quiet_hours(None, _at(WEDNESDAY, 23, 0)) is False

    def test_accepts_dict(self):
        raw = {"enabled": True, "start": "22:00", "end": "08:00", "timezone": "UTC"}
        assert is_quiet_hours(raw, _at(WEDNESDAY, 23, 0)) is True

    @pytest.mark.parametrize(
        "raw",
        [
            {"enabled": True, "start": "25:00", "end": "08:00"},
            {"enabled": True, "start": "late", "end": "08:00"},
            {"enabled": True, "timezone": "Mars/Olympus_Mons"},
            {"enabled": "sometimes"},
        ],
    )
    def test_malformed_config_is_not_quiet(self, raw):
        assert is_quiet_hours(raw, _at(WEDNESDAY, 23, 0)) is False
