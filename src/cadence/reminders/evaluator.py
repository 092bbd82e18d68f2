"""提醒 / 升级判定 -- 纯函数，不访问存储

提醒规则按优先级匹配，每次评估最多产生一种事件：
1. on_due: 0 <= hours_until_due <= 24 -> DUE_TODAY
2. before_due: |hours_until_due - (days*24 + hours)| <= 容差 -> REMINDER
3. after_due: 已逾期且 days_overdue 精确等于规则天数 -> OVERDUE

升级触发器只做 days_overdue 精确匹配，不做区间匹配。
"""

from datetime import datetime, timedelta

from pydantic import BaseModel

from cadence.core.config import REMINDER_MATCH_TOLERANCE_HOURS
from cadence.core.models import (
    EscalationPolicy,
    EscalationTrigger,
    NotificationEventType,
    Obligation,
    ReminderRules,
)
from cadence.core.timeutil import ensure_utc

_ONE_DAY = timedelta(days=1)


class ReminderDecision(BaseModel):
    """提醒判定结果"""

    should_send: bool
    event_type: NotificationEventType = NotificationEventType.REMINDER


class EscalationDecision(BaseModel):
    """升级判定结果：命中的触发器与当前逾期天数"""

    trigger: EscalationTrigger
    days_overdue: int


_NO_REMINDER = ReminderDecision(should_send=False)


def hours_until_due(due_at: datetime, now: datetime) -> float:
    return (ensure_utc(due_at) - ensure_utc(now)).total_seconds() / 3600


def days_overdue(due_at: datetime, now: datetime) -> int:
    """逾期整天数，向下取整（未到期时为负数）"""
    return (ensure_utc(now) - ensure_utc(due_at)) // _ONE_DAY


def should_send_reminder(
    obligation: Obligation,
    rules: ReminderRules,
    now: datetime,
    tolerance_hours: float = REMINDER_MATCH_TOLERANCE_HOURS,
) -> ReminderDecision:
    """根据提醒规则判定本轮是否发送提醒"""
    if obligation.due_at is None:
        return _NO_REMINDER

    hours = hours_until_due(obligation.due_at, now)

    if rules.on_due and 0 <= hours <= 24:
        return ReminderDecision(should_send=True, event_type=NotificationEventType.DUE_TODAY)

    for offset in rules.before_due:
        target = offset.days * 24 + offset.hours
        if abs(hours - target) <= tolerance_hours:
            return ReminderDecision(should_send=True, event_type=NotificationEventType.REMINDER)

    if rules.after_due and hours < 0:
        overdue = days_overdue(obligation.due_at, now)
        if any(offset.days == overdue for offset in rules.after_due):
            return ReminderDecision(should_send=True, event_type=NotificationEventType.OVERDUE)

    return _NO_REMINDER


def find_escalation_trigger(
    obligation: Obligation,
    policy: EscalationPolicy,
    now: datetime,
) -> EscalationDecision | None:
    """查找与当前逾期天数精确匹配的升级触发器

    未到期、逾期不足一天或没有匹配触发器时返回 None。
    """
    if obligation.due_at is None:
        return None

    overdue = days_overdue(obligation.due_at, now)
    if overdue <= 0:
        return None

    for trigger in policy.rules.triggers:
        if trigger.days_overdue == overdue:
            return EscalationDecision(trigger=trigger, days_overdue=overdue)
    return None
