"""提醒策略 / 升级策略 Domain Model

ReminderPolicy 每个组织最多一个 is_default=True，作为义务事项未指定策略时的兜底。
EscalationPolicy 没有组织级默认值，只按义务事项显式引用生效。
"""

from datetime import datetime

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

log = structlog.get_logger()


class BeforeDueOffset(BaseModel):
    """截止前提醒偏移"""

    days: int = 0
    hours: int = 0


class AfterDueOffset(BaseModel):
    """逾期后提醒偏移（整天）"""

    days: int


class ReminderRules(BaseModel):
    """提醒规则：按 on_due > before_due > after_due 的优先级匹配"""

    before_due: list[BeforeDueOffset] = Field(default_factory=list)
    on_due: bool = False
    after_due: list[AfterDueOffset] = Field(default_factory=list)


class ReminderChannels(BaseModel):
    """启用的通知渠道"""

    in_app: bool = True
    email: bool = False
    whatsapp: bool = False
    sms: bool = False


class QuietHours(BaseModel):
    """免打扰时段

    start/end 保持为原始 "HH:MM" 字符串，在评估时解析；
    格式错误时评估方按"非免打扰"处理，不在加载阶段拒绝整条策略。
    """

    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "UTC"
    exclude_weekends: bool = False


class ReminderPolicy(BaseModel):
    """组织级提醒策略"""

    id: int | None = None
    organization_id: int
    name: str = ""
    rules: ReminderRules = Field(default_factory=ReminderRules)
    channels: ReminderChannels = Field(default_factory=ReminderChannels)
    quiet_hours: QuietHours | None = None
    is_active: bool = True
    is_default: bool = False
    created_at: datetime | None = None

    @field_validator("quiet_hours", mode="wrap")
    @classmethod
    def _lenient_quiet_hours(cls, value, handler):
        """quiet_hours 配置损坏时降级为 None（即不启用免打扰），而不是整条策略加载失败"""
        try:
            return handler(value)
        except ValidationError as e:
            log.warning(
                "quiet_hours_config_invalid",
                error_count=e.error_count(),
            )
            return None


class EscalationTrigger(BaseModel):
    """升级触发器：逾期天数精确匹配"""

    days_overdue: int
    notify_user_ids: list[int] = Field(default_factory=list)
    # 仅作为数据保留，当前不解析为接收人
    notify_roles: list[str] = Field(default_factory=list)
    notify_team_ids: list[int] = Field(default_factory=list)
    escalation_level: int = 1


class EscalationRules(BaseModel):
    triggers: list[EscalationTrigger] = Field(default_factory=list)
    max_escalation_level: int = 1


class EscalationPolicy(BaseModel):
    """升级策略"""

    id: int | None = None
    organization_id: int
    name: str = ""
    rules: EscalationRules = Field(default_factory=EscalationRules)
    is_active: bool = True
    created_at: datetime | None = None
