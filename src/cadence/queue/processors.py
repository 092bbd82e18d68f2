"""内置 Job 处理器

- notification_send: 投递一条 NotificationEvent，成功标记 sent，失败标记 failed 后抛出以触发重试
- email_send: 直接发送一封邮件
- webhook_delivery: 通过 httpx 发起 HTTP 回调，非 2xx 视为失败
- reminder_processing: 运行一个组织的提醒编排

其余已知类型（document_ingestion 等）属于其他子系统，不在这里注册。
payload 结构不合法属于调用方错误，返回不可重试的失败。
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from cadence.core.config import WEBHOOK_TIMEOUT_S
from cadence.core.exceptions import DeliveryError
from cadence.core.models import JobType, NotificationChannel, NotificationStatus
from cadence.core.store import StoreGroup
from cadence.core.timeutil import utc_now
from cadence.reminders.delivery import (
    DeliveryMessage,
    NotificationDeliverer,
    build_delivery_message,
)
from cadence.reminders.engine import ReminderEngine

from .registry import ProcessorOutcome, ProcessorRegistry

log = structlog.get_logger()

_P = TypeVar("_P", bound=BaseModel)


class NotificationSendPayload(BaseModel):
    notification_event_id: int
    organization_id: int | None = None


class EmailSendPayload(BaseModel):
    to: str
    subject: str
    body: str = ""
    template_id: str | None = None


class WebhookDeliveryPayload(BaseModel):
    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None


class ReminderProcessingPayload(BaseModel):
    organization_id: int


def _parse_payload(model: type[_P], payload: dict[str, Any]) -> _P | ProcessorOutcome:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        return ProcessorOutcome.failure(
            f"invalid payload: {e.error_count()} validation error(s)",
            retryable=False,
        )


class BuiltinProcessors:
    """内置处理器集合，持有各处理器共享的协作方"""

    def __init__(
        self,
        store_group: StoreGroup,
        engine: ReminderEngine,
        deliverer: NotificationDeliverer,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._stores = store_group
        self._engine = engine
        self._deliverer = deliverer
        self._http_client = http_client
        self._clock = clock

    async def notification_send(self, payload: dict[str, Any]) -> dict[str, Any] | ProcessorOutcome:
        parsed = _parse_payload(NotificationSendPayload, payload)
        if isinstance(parsed, ProcessorOutcome):
            return parsed

        store = self._stores.notification_store
        event = await store.get_notification_event(
            parsed.notification_event_id,
            parsed.organization_id,
        )
        if event is None:
            return ProcessorOutcome.failure(
                f"notification event {parsed.notification_event_id} not found",
                retryable=False,
            )
        if event.status == NotificationStatus.SENT:
            # 至少一次投递：重复执行时不再发送
            return {"notification_event_id": event.id, "skipped": True}

        user = await self._stores.user_store.get_user(event.recipient_user_id)
        if user is None:
            error = f"recipient user {event.recipient_user_id} not found"
            await store.update_notification_event_status(
                event.id, event.organization_id, NotificationStatus.FAILED, error=error
            )
            return ProcessorOutcome.failure(error, retryable=False)

        try:
            await self._deliverer.deliver(build_delivery_message(event, user))
        except DeliveryError as e:
            await store.update_notification_event_status(
                event.id, event.organization_id, NotificationStatus.FAILED, error=str(e)
            )
            raise

        await store.update_notification_event_status(
            event.id, event.organization_id, NotificationStatus.SENT, sent_at=self._clock()
        )
        log.info(
            "notification_sent",
            notification_event_id=event.id,
            channel=event.channel.value,
            recipient_user_id=event.recipient_user_id,
        )
        return {
            "notification_event_id": event.id,
            "channel": event.channel.value,
            "recipient_user_id": event.recipient_user_id,
        }

    async def email_send(self, payload: dict[str, Any]) -> dict[str, Any] | ProcessorOutcome:
        parsed = _parse_payload(EmailSendPayload, payload)
        if isinstance(parsed, ProcessorOutcome):
            return parsed

        await self._deliverer.deliver(
            DeliveryMessage(
                channel=NotificationChannel.EMAIL,
                address=parsed.to,
                subject=parsed.subject,
                body=parsed.body,
                metadata={"template_id": parsed.template_id} if parsed.template_id else {},
            )
        )
        return {"sent": True, "to": parsed.to, "subject": parsed.subject}

    async def webhook_delivery(self, payload: dict[str, Any]) -> dict[str, Any] | ProcessorOutcome:
        parsed = _parse_payload(WebhookDeliveryPayload, payload)
        if isinstance(parsed, ProcessorOutcome):
            return parsed

        if self._http_client is not None:
            response = await self._send_webhook(self._http_client, parsed)
        else:
            async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_S) as client:
                response = await self._send_webhook(client, parsed)

        if not response.is_success:
            raise DeliveryError("webhook", f"{parsed.url} responded {response.status_code}")

        log.info("webhook_delivered", url=parsed.url, status_code=response.status_code)
        return {
            "delivered": True,
            "url": parsed.url,
            "method": parsed.method.upper(),
            "status_code": response.status_code,
        }

    async def reminder_processing(
        self,
        payload: dict[str, Any],
    ) -> dict[str, Any] | ProcessorOutcome:
        parsed = _parse_payload(ReminderProcessingPayload, payload)
        if isinstance(parsed, ProcessorOutcome):
            return parsed

        summary = await self._engine.process_reminders(parsed.organization_id)
        return summary.model_dump()

    @staticmethod
    async def _send_webhook(
        client: httpx.AsyncClient,
        payload: WebhookDeliveryPayload,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {"headers": payload.headers, "timeout": WEBHOOK_TIMEOUT_S}
        if isinstance(payload.body, (str, bytes)):
            kwargs["content"] = payload.body
        elif payload.body is not None:
            kwargs["json"] = payload.body

        try:
            return await client.request(payload.method.upper(), payload.url, **kwargs)
        except httpx.RequestError as e:
            raise DeliveryError("webhook", f"{type(e).__name__}: {e}") from e


def register_builtin_processors(
    registry: ProcessorRegistry,
    store_group: StoreGroup,
    engine: ReminderEngine,
    deliverer: NotificationDeliverer,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> BuiltinProcessors:
    """注册内置处理器

    Returns:
        处理器集合实例
    """
    processors = BuiltinProcessors(store_group, engine, deliverer, http_client, clock)
    registry.register(JobType.NOTIFICATION_SEND, processors.notification_send)
    registry.register(JobType.EMAIL_SEND, processors.email_send)
    registry.register(JobType.WEBHOOK_DELIVERY, processors.webhook_delivery)
    registry.register(JobType.REMINDER_PROCESSING, processors.reminder_processing)
    return processors
