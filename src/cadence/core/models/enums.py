"""枚举定义

包含 JobStatus 状态机、JobPriority、JobType、义务事项/通知相关枚举，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """Job 状态机"""

    # 活跃状态
    QUEUED = "queued"
    PROCESSING = "processing"

    # 终态
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# 合法状态流转
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {
        JobStatus.COMPLETED,
        # 重试：回到队列等待 next_eligible_at
        JobStatus.QUEUED,
        JobStatus.FAILED,
    },
    # 终态不可再流转
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
    JobStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[JobStatus] = {
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
}


class JobPriority(StrEnum):
    """Job 优先级"""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# 认领顺序：数值越小越先被认领
PRIORITY_RANK: dict[JobPriority, int] = {
    JobPriority.HIGH: 0,
    JobPriority.NORMAL: 1,
    JobPriority.LOW: 2,
}


class JobType(StrEnum):
    """已知的内置 Job 类型（注册表本身是开放的，任意字符串均可注册）"""

    # 文档处理
    DOCUMENT_INGESTION = "document_ingestion"
    AI_EXTRACTION = "ai_extraction"
    FILE_PROCESSING = "file_processing"

    # 通信
    EMAIL_SEND = "email_send"
    NOTIFICATION_SEND = "notification_send"
    WEBHOOK_DELIVERY = "webhook_delivery"

    # 报表与导出
    REPORT_GENERATION = "report_generation"
    DATA_EXPORT = "data_export"

    # 提醒引擎
    REMINDER_PROCESSING = "reminder_processing"


class JobLogLevel(StrEnum):
    """Job 日志级别"""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ObligationStatus(StrEnum):
    """义务事项状态"""

    PENDING = "PENDING"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


OBLIGATION_TERMINAL_STATES: set[ObligationStatus] = {
    ObligationStatus.COMPLETED,
    ObligationStatus.CANCELLED,
}


class AssigneeType(StrEnum):
    """指派对象类型"""

    USER = "USER"
    TEAM = "TEAM"


class NotificationEventType(StrEnum):
    """通知事件类型"""

    REMINDER = "REMINDER"
    ESCALATION = "ESCALATION"
    DUE_TODAY = "DUE_TODAY"
    OVERDUE = "OVERDUE"


class NotificationChannel(StrEnum):
    """通知渠道"""

    IN_APP = "in_app"
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    SMS = "sms"


class NotificationStatus(StrEnum):
    """通知投递状态"""

    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class ObligationAction(StrEnum):
    """义务事项操作日志动作"""

    REMINDER_SENT = "REMINDER_SENT"
    ESCALATED = "ESCALATED"
    STATUS_CHANGED = "STATUS_CHANGED"


def validate_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """验证 Job 状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
