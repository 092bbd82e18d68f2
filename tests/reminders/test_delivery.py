"""通知渲染与地址解析测试"""

from datetime import UTC, datetime

import pytest
from cadence.core.exceptions import DeliveryError
from cadence.core.models import (
    NotificationChannel,
    NotificationEvent,
    NotificationEventType,
    NotificationTemplateData,
    User,
)
from cadence.reminders.delivery import (
    build_delivery_message,
    render_notification,
    resolve_address,
)

DUE = datetime(2026, 3, 11, 12, 0, tzinfo=UTC)
USER = User(id=5, name="Ada", email="ada@example.com", phone="+15550100")


class TestRender:
    def test_reminder(self):
        subject, body = render_notification(
            NotificationEventType.REMINDER,
            NotificationTemplateData(obligation_title="VAT return", due_at=DUE, days_until_due=7),
        )
        assert subject == "Reminder: VAT return"
        assert body == '"VAT return" is due in 7 day(s) (due 2026-03-11 12:00 UTC).'

    def test_due_today_with_greeting(self):
        subject, body = render_notification(
            NotificationEventType.DUE_TODAY,
            NotificationTemplateData(obligation_title="Payroll", recipient_name="Ada"),
        )
        assert subject == "Due today: Payroll"
        assert body.startswith("Hi Ada,\n\n")

    def test_overdue(self):
        subject, _ = render_notification(
            NotificationEventType.OVERDUE,
            NotificationTemplateData(obligation_title="Payroll"),
        )
        assert subject == "Overdue: Payroll"

    def test_escalation(self):
        subject, body = render_notification(
            NotificationEventType.ESCALATION,
            NotificationTemplateData(
                obligation_title="Audit", days_overdue=3, escalation_level=2
            ),
        )
        assert subject == "Escalation (level 2): Audit"
        assert "3 day(s) overdue" in body


class TestResolveAddress:
    @pytest.mark.parametrize(
        "channel,address",
        [
            (NotificationChannel.IN_APP, "5"),
            (NotificationChannel.EMAIL, "ada@example.com"),
            (NotificationChannel.SMS, "+15550100"),
            (NotificationChannel.WHATSAPP, "+15550100"),
        ],
    )
    def test_channel_addresses(self, channel: NotificationChannel, address: str):
        assert resolve_address(channel, USER) == address

    def test_missing_address_is_unrecoverable(self):
        with pytest.raises(DeliveryError) as exc_info:
            resolve_address(NotificationChannel.EMAIL, User(id=6, name="NoMail"))
        assert exc_info.value.recoverable is False


def test_build_delivery_message():
    event = NotificationEvent(
        id=11,
        organization_id=1,
        obligation_id=3,
        event_type=NotificationEventType.ESCALATION,
        recipient_user_id=USER.id,
        channel=NotificationChannel.EMAIL,
        content_snapshot={
            "template_data": {
                "obligation_title": "Audit",
                "days_overdue": 3,
                "escalation_level": 1,
            }
        },
    )
    message = build_delivery_message(event, USER)
    assert message.address == "ada@example.com"
    assert message.subject == "Escalation (level 1): Audit"
    assert message.recipient_user_id == 5
    assert message.metadata["notification_event_id"] == 11
    assert message.metadata["event_type"] == "ESCALATION"
