"""通知投递协作方

实际投递（邮件 / 短信 / WhatsApp / 站内推送）由外部服务完成，这里只定义
NotificationDeliverer 接口、通知文案渲染，以及只记录日志的 LoggingDeliverer
（未接入真实渠道时的默认实现）。
"""

from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from cadence.core.exceptions import DeliveryError
from cadence.core.models import (
    NotificationChannel,
    NotificationEvent,
    NotificationEventType,
    NotificationTemplateData,
    User,
)

log = structlog.get_logger()


class DeliveryMessage(BaseModel):
    """待投递的渲染后消息"""

    channel: NotificationChannel = Field(description="投递渠道")
    address: str = Field(description="渠道地址：邮箱 / 手机号 / 站内用户 ID")
    subject: str = Field(description="标题")
    body: str = Field(description="正文（纯文本）")
    recipient_user_id: int | None = Field(default=None, description="接收用户")
    metadata: dict[str, Any] = Field(default_factory=dict, description="附加信息")


class NotificationDeliverer(Protocol):
    """投递协作方接口

    投递失败时抛出 DeliveryError；recoverable=False 表示重试无意义。
    """

    async def deliver(self, message: DeliveryMessage) -> None: ...


class LoggingDeliverer:
    """只记录日志的投递实现（dry-run）"""

    def __init__(self) -> None:
        self.delivered: list[DeliveryMessage] = []

    async def deliver(self, message: DeliveryMessage) -> None:
        self.delivered.append(message)
        log.info(
            "notification_delivered_dry_run",
            channel=message.channel.value,
            address=message.address,
            subject=message.subject,
        )


def resolve_address(channel: NotificationChannel, user: User) -> str:
    """按渠道取接收地址

    Raises:
        DeliveryError: 用户缺少该渠道所需的联系方式（不可重试）
    """
    if channel == NotificationChannel.IN_APP:
        return str(user.id)
    if channel == NotificationChannel.EMAIL:
        address = user.email
    else:
        address = user.phone
    if not address:
        raise DeliveryError(
            channel.value,
            f"user {user.id} has no address for this channel",
            recoverable=False,
        )
    return address


def render_notification(
    event_type: NotificationEventType,
    data: NotificationTemplateData,
) -> tuple[str, str]:
    """渲染纯文本标题与正文

    Returns:
        (subject, body)
    """
    title = data.obligation_title
    greeting = f"Hi {data.recipient_name},\n\n" if data.recipient_name else ""
    due = f" (due {data.due_at:%Y-%m-%d %H:%M} UTC)" if data.due_at else ""

    if event_type == NotificationEventType.DUE_TODAY:
        subject = f"Due today: {title}"
        line = f'"{title}" is due within the next 24 hours{due}.'
    elif event_type == NotificationEventType.OVERDUE:
        subject = f"Overdue: {title}"
        line = f'"{title}" is past its due date{due}.'
    elif event_type == NotificationEventType.ESCALATION:
        level = data.escalation_level or 1
        subject = f"Escalation (level {level}): {title}"
        line = f'"{title}" is {data.days_overdue or 0} day(s) overdue{due} and has been escalated.'
    else:
        subject = f"Reminder: {title}"
        line = f'"{title}" is due in {data.days_until_due or 0} day(s){due}.'

    return subject, greeting + line


def build_delivery_message(event: NotificationEvent, user: User) -> DeliveryMessage:
    """由通知事件与接收人构造投递消息"""
    data = NotificationTemplateData.model_validate(
        event.content_snapshot.get("template_data", {})
    )
    subject, body = render_notification(event.event_type, data)
    return DeliveryMessage(
        channel=event.channel,
        address=resolve_address(event.channel, user),
        subject=subject,
        body=body,
        recipient_user_id=user.id,
        metadata={
            "notification_event_id": event.id,
            "obligation_id": event.obligation_id,
            "organization_id": event.organization_id,
            "event_type": event.event_type.value,
        },
    )
