"""cadence Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    OBLIGATION_TERMINAL_STATES,
    PRIORITY_RANK,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    AssigneeType,
    JobLogLevel,
    JobPriority,
    JobStatus,
    JobType,
    NotificationChannel,
    NotificationEventType,
    NotificationStatus,
    ObligationAction,
    ObligationStatus,
    validate_transition,
)
from .job import EnqueueResult, Job, JobLogEntry, JobOptions
from .notification import NotificationEvent, NotificationTemplateData
from .obligation import Obligation, ObligationActionLog, ObligationAssignment, User
from .policy import (
    AfterDueOffset,
    BeforeDueOffset,
    EscalationPolicy,
    EscalationRules,
    EscalationTrigger,
    QuietHours,
    ReminderChannels,
    ReminderPolicy,
    ReminderRules,
)

__all__ = [
    # 枚举
    "JobStatus",
    "JobPriority",
    "JobType",
    "JobLogLevel",
    "ObligationStatus",
    "AssigneeType",
    "NotificationEventType",
    "NotificationChannel",
    "NotificationStatus",
    "ObligationAction",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "OBLIGATION_TERMINAL_STATES",
    "PRIORITY_RANK",
    "validate_transition",
    # Job
    "Job",
    "JobLogEntry",
    "JobOptions",
    "EnqueueResult",
    # Obligation
    "Obligation",
    "ObligationAssignment",
    "ObligationActionLog",
    "User",
    # Policy
    "ReminderPolicy",
    "ReminderRules",
    "ReminderChannels",
    "BeforeDueOffset",
    "AfterDueOffset",
    "QuietHours",
    "EscalationPolicy",
    "EscalationRules",
    "EscalationTrigger",
    # Notification
    "NotificationEvent",
    "NotificationTemplateData",
]
