"""NotificationEvent Domain Model

通知事件既是审计记录也是投递记录；每条事件都会配对一个 notification_send Job。
content_snapshot 保存生成时的模板数据，用于重放与排查。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import NotificationChannel, NotificationEventType, NotificationStatus


class NotificationTemplateData(BaseModel):
    """通知模板数据"""

    obligation_title: str
    due_at: datetime | None = None
    days_until_due: int | None = None
    days_overdue: int | None = None
    escalation_level: int | None = None
    recipient_name: str | None = None


class NotificationEvent(BaseModel):
    """通知事件"""

    id: int | None = None
    organization_id: int
    obligation_id: int
    event_type: NotificationEventType
    recipient_user_id: int
    channel: NotificationChannel
    status: NotificationStatus = NotificationStatus.QUEUED
    content_snapshot: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    created_at: datetime | None = None
    sent_at: datetime | None = None
