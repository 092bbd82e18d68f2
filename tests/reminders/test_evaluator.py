"""提醒 / 升级判定测试（纯函数）"""

from datetime import UTC, datetime, timedelta

import pytest
from cadence.core.models import (
    EscalationPolicy,
    EscalationRules,
    EscalationTrigger,
    NotificationEventType,
    Obligation,
    ReminderRules,
)
from cadence.reminders.evaluator import (
    days_overdue,
    find_escalation_trigger,
    hours_until_due,
    should_send_reminder,
)

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


def _obligation(due_in: timedelta | None) -> Obligation:
    return Obligation(
        id=1,
        organization_id=1,
        title="Annual filing",
        due_at=NOW + due_in if due_in is not None else None,
    )


class TestHelpers:
    def test_hours_until_due(self):
        assert hours_until_due(NOW + timedelta(hours=36), NOW) == 36
        assert hours_until_due(NOW - timedelta(hours=6), NOW) == -6

    @pytest.mark.parametrize(
        "due_in,expected",
        [
            (-timedelta(days=3), 3),
            (-timedelta(days=3, hours=23), 3),
            (-timedelta(hours=1), 0),
            (timedelta(hours=1), -1),
        ],
    )
    def test_days_overdue_floors(self, due_in: timedelta, expected: int):
        assert days_overdue(NOW + due_in, NOW) == expected

    def test_naive_datetimes_are_utc(self):
        naive_due = datetime(2026, 3, 5, 12, 0)
        assert hours_until_due(naive_due, NOW) == 24


class TestShouldSendReminder:
    def test_on_due_within_a_day(self):
        rules = ReminderRules(on_due=True)
        for hours in (0, 12, 24):
            decision = should_send_reminder(_obligation(timedelta(hours=hours)), rules, NOW)
            assert decision.should_send is True
            assert decision.event_type == NotificationEventType.DUE_TODAY

    def test_on_due_outside_window(self):
        rules = ReminderRules(on_due=True)
        assert not should_send_reminder(_obligation(timedelta(hours=25)), rules, NOW).should_send
        assert not should_send_reminder(_obligation(-timedelta(hours=1)), rules, NOW).should_send

    def test_before_due_tolerance(self):
        rules = ReminderRules(before_due=[{"days": 7}])
        hit = should_send_reminder(_obligation(timedelta(hours=168)), rules, NOW)
        assert hit.should_send is True
        assert hit.event_type == NotificationEventType.REMINDER

        edge = should_send_reminder(_obligation(timedelta(hours=168, minutes=30)), rules, NOW)
        assert edge.should_send is True

        miss = should_send_reminder(_obligation(timedelta(hours=169)), rules, NOW)
        assert miss.should_send is False

    def test_before_due_hours_offset(self):
        rules = ReminderRules(before_due=[{"days": 1, "hours": 12}])
        assert should_send_reminder(_obligation(timedelta(hours=36)), rules, NOW).should_send

    def test_custom_tolerance(self):
        rules = ReminderRules(before_due=[{"days": 7}])
        obligation = _obligation(timedelta(hours=170))
        assert not should_send_reminder(obligation, rules, NOW).should_send
        assert should_send_reminder(obligation, rules, NOW, tolerance_hours=2).should_send

    def test_on_due_takes_precedence(self):
        rules = ReminderRules(on_due=True, before_due=[{"hours": 12}])
        decision = should_send_reminder(_obligation(timedelta(hours=12)), rules, NOW)
        assert decision.event_type == NotificationEventType.DUE_TODAY

    def test_after_due_exact_day(self):
        rules = ReminderRules(after_due=[{"days": 1}, {"days": 5}])
        hit = should_send_reminder(_obligation(-timedelta(days=1, hours=3)), rules, NOW)
        assert hit.should_send is True
        assert hit.event_type == NotificationEventType.OVERDUE

        assert should_send_reminder(_obligation(-timedelta(days=5)), rules, NOW).should_send
        assert not should_send_reminder(_obligation(-timedelta(days=2)), rules, NOW).should_send

    def test_after_due_ignores_future(self):
        rules = ReminderRules(after_due=[{"days": 0}])
        assert not should_send_reminder(_obligation(timedelta(hours=2)), rules, NOW).should_send

    def test_no_due_date(self):
        rules = ReminderRules(on_due=True, before_due=[{"days": 1}], after_due=[{"days": 1}])
        assert should_send_reminder(_obligation(None), rules, NOW).should_send is False

    def test_empty_rules(self):
        assert not should_send_reminder(
            _obligation(timedelta(hours=1)), ReminderRules(), NOW
        ).should_send


class TestFindEscalationTrigger:
    @pytest.fixture
    def policy(self) -> EscalationPolicy:
        return EscalationPolicy(
            organization_id=1,
            rules=EscalationRules(
                triggers=[
                    EscalationTrigger(days_overdue=3, notify_user_ids=[42]),
                    EscalationTrigger(days_overdue=7, notify_user_ids=[1], escalation_level=2),
                ],
                max_escalation_level=2,
            ),
        )

    def test_exact_match(self, policy: EscalationPolicy):
        decision = find_escalation_trigger(_obligation(-timedelta(days=3)), policy, NOW)
        assert decision is not None
        assert decision.days_overdue == 3
        assert decision.trigger.notify_user_ids == [42]

        later = find_escalation_trigger(_obligation(-timedelta(days=7, hours=5)), policy, NOW)
        assert later.trigger.escalation_level == 2

    def test_no_range_matching(self, policy: EscalationPolicy):
        assert find_escalation_trigger(_obligation(-timedelta(days=4)), policy, NOW) is None
        assert find_escalation_trigger(_obligation(-timedelta(days=2)), policy, NOW) is None

    def test_not_overdue_enough(self, policy: EscalationPolicy):
        assert find_escalation_trigger(_obligation(-timedelta(hours=20)), policy, NOW) is None
        assert find_escalation_trigger(_obligation(timedelta(days=3)), policy, NOW) is None
        assert find_escalation_trigger(_obligation(None), policy, NOW) is None
