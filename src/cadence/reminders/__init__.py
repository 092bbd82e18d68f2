"""cadence Reminders -- 义务事项提醒与逾期升级"""

from .delivery import DeliveryMessage, LoggingDeliverer, NotificationDeliverer
from .engine import ReminderEngine, ReminderRunSummary
from .evaluator import (
    EscalationDecision,
    ReminderDecision,
    find_escalation_trigger,
    should_send_reminder,
)
from .quiet_hours import is_quiet_hours
from .scheduler import ReminderScheduler

__all__ = [
    "DeliveryMessage",
    "EscalationDecision",
    "LoggingDeliverer",
    "NotificationDeliverer",
    "ReminderDecision",
    "ReminderEngine",
    "ReminderRunSummary",
    "ReminderScheduler",
    "find_escalation_trigger",
    "is_quiet_hours",
    "should_send_reminder",
]
