"""ReminderEngine -- 提醒与升级编排

process_reminders(organization_id) 单次处理一个组织：
1. 取前瞻窗口内到期与已逾期的义务事项（按 ID 去重，终态已由查询排除）
2. 逐条解析提醒策略（显式 ID，否则组织默认策略），策略启用时评估提醒
3. 已逾期且显式引用了启用中的升级策略时评估升级
4. 单条义务事项出错只记录日志，不影响同批次其余事项

每条通知先写 NotificationEvent，再入队一个 notification_send Job 负责实际投递。
所有读写都带 organization_id 作用域。
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel
from structlog.contextvars import bound_contextvars

from cadence.core.config import REMINDER_LOOKAHEAD_DAYS, REMINDER_MATCH_TOLERANCE_HOURS
from cadence.core.models import (
    OBLIGATION_TERMINAL_STATES,
    AssigneeType,
    EnqueueResult,
    EscalationPolicy,
    JobOptions,
    JobPriority,
    JobType,
    NotificationChannel,
    NotificationEvent,
    NotificationEventType,
    NotificationStatus,
    NotificationTemplateData,
    Obligation,
    ObligationAction,
    ObligationActionLog,
    ObligationAssignment,
    ObligationStatus,
    ReminderChannels,
    ReminderPolicy,
    User,
)
from cadence.core.store import StoreGroup
from cadence.core.timeutil import ensure_utc, utc_now
from cadence.queue.dispatcher import JobDispatcher

from .evaluator import find_escalation_trigger, hours_until_due, should_send_reminder
from .quiet_hours import is_quiet_hours

log = structlog.get_logger()


class ReminderRunSummary(BaseModel):
    """一次编排的统计结果"""

    processed: int = 0
    reminders_sent: int = 0
    escalations_sent: int = 0


def enabled_channels(channels: ReminderChannels) -> list[NotificationChannel]:
    """按固定顺序列出启用的渠道"""
    flags = [
        (NotificationChannel.IN_APP, channels.in_app),
        (NotificationChannel.EMAIL, channels.email),
        (NotificationChannel.WHATSAPP, channels.whatsapp),
        (NotificationChannel.SMS, channels.sms),
    ]
    return [channel for channel, enabled in flags if enabled]


class ReminderEngine:
    """提醒与升级编排服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        dispatcher: JobDispatcher,
        clock: Callable[[], datetime] = utc_now,
        lookahead_days: int = REMINDER_LOOKAHEAD_DAYS,
        tolerance_hours: float = REMINDER_MATCH_TOLERANCE_HOURS,
    ) -> None:
        self._stores = store_group
        self._dispatcher = dispatcher
        self._clock = clock
        self._lookahead_days = lookahead_days
        self._tolerance_hours = tolerance_hours

    async def process_reminders(self, organization_id: int) -> ReminderRunSummary:
        """处理一个组织的全部候选义务事项"""
        now = self._clock()
        obligation_store = self._stores.obligation_store

        due_soon = await obligation_store.get_obligations_due_soon(
            organization_id, now, self._lookahead_days
        )
        overdue = await obligation_store.get_overdue_obligations(organization_id, now)

        candidates: dict[int, Obligation] = {}
        for obligation in [*due_soon, *overdue]:
            if obligation.organization_id != organization_id:
                log.error(
                    "obligation_scope_mismatch",
                    organization_id=organization_id,
                    obligation_id=obligation.id,
                )
                continue
            candidates[obligation.id] = obligation

        summary = ReminderRunSummary()
        for obligation in candidates.values():
            summary.processed += 1
            with bound_contextvars(
                organization_id=organization_id,
                obligation_id=obligation.id,
            ):
                try:
                    reminders, escalations = await self._process_obligation(obligation, now)
                except Exception as e:
                    log.error(
                        "reminder_evaluation_failed",
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    continue
            summary.reminders_sent += reminders
            summary.escalations_sent += escalations

        log.info(
            "reminders_processed",
            organization_id=organization_id,
            processed=summary.processed,
            reminders_sent=summary.reminders_sent,
            escalations_sent=summary.escalations_sent,
        )
        return summary

    async def schedule_reminder_processing(
        self,
        organization_id: int,
        correlation_id: str | None = None,
    ) -> EnqueueResult:
        """入队一个 reminder_processing Job"""
        return await self._dispatcher.enqueue_job(
            JobType.REMINDER_PROCESSING,
            {"organization_id": organization_id},
            JobOptions(
                organization_id=organization_id,
                priority=JobPriority.NORMAL,
                correlation_id=correlation_id,
            ),
        )

    async def _process_obligation(self, obligation: Obligation, now: datetime) -> tuple[int, int]:
        org_id = obligation.organization_id
        assignments = await self._stores.obligation_store.list_assignments(obligation.id, org_id)

        reminders = 0
        reminder_policy = await self._resolve_reminder_policy(obligation)
        if reminder_policy is not None and reminder_policy.is_active:
            reminders = await self._send_reminders(obligation, assignments, reminder_policy, now)

        escalations = 0
        if obligation.due_at is not None and now > ensure_utc(obligation.due_at):
            # 升级策略没有组织默认值，只认显式引用
            escalation_policy = None
            if obligation.escalation_policy_id is not None:
                escalation_policy = await self._stores.policy_store.get_escalation_policy(
                    obligation.escalation_policy_id, org_id
                )
            if escalation_policy is not None and escalation_policy.is_active:
                escalations = await self._escalate(obligation, escalation_policy, now)

        return reminders, escalations

    async def _resolve_reminder_policy(self, obligation: Obligation) -> ReminderPolicy | None:
        policy_store = self._stores.policy_store
        org_id = obligation.organization_id
        policy = None
        if obligation.reminder_policy_id is not None:
            policy = await policy_store.get_reminder_policy(obligation.reminder_policy_id, org_id)
        if policy is None:
            policy = await policy_store.get_default_reminder_policy(org_id)
        return policy

    async def _send_reminders(
        self,
        obligation: Obligation,
        assignments: list[ObligationAssignment],
        policy: ReminderPolicy,
        now: datetime,
    ) -> int:
        # 免打扰只推迟到下一轮，不丢弃
        if is_quiet_hours(policy.quiet_hours, now):
            log.info("reminder_suppressed_quiet_hours", policy_id=policy.id)
            return 0

        decision = should_send_reminder(obligation, policy.rules, now, self._tolerance_hours)
        if not decision.should_send:
            return 0

        channels = enabled_channels(policy.channels)
        days_until_due = None
        if obligation.due_at is not None:
            days_until_due = max(0, int(hours_until_due(obligation.due_at, now) // 24))

        sent = 0
        for assignment in assignments:
            if assignment.assignee_type != AssigneeType.USER:
                continue
            user = await self._stores.user_store.get_user(assignment.assignee_id)
            if user is None:
                log.warning("assignee_user_not_found", user_id=assignment.assignee_id)
                continue

            data = NotificationTemplateData(
                obligation_title=obligation.title,
                due_at=obligation.due_at,
                days_until_due=days_until_due,
                recipient_name=user.name or None,
            )
            for channel in channels:
                if await self._queue_notification(
                    obligation, user, channel, decision.event_type, data, now
                ):
                    sent += 1

        if sent > 0:
            await self._log_action(
                obligation,
                ObligationAction.REMINDER_SENT,
                {"event_type": decision.event_type.value, "assignee_count": len(assignments)},
                now,
            )
            log.info(
                "reminders_queued",
                event_type=decision.event_type.value,
                notifications=sent,
            )
        return sent

    async def _escalate(
        self,
        obligation: Obligation,
        policy: EscalationPolicy,
        now: datetime,
    ) -> int:
        decision = find_escalation_trigger(obligation, policy, now)
        if decision is None:
            return 0

        trigger = decision.trigger
        if trigger.notify_roles or trigger.notify_team_ids:
            log.warning(
                "escalation_recipients_unresolved",
                notify_roles=trigger.notify_roles,
                notify_team_ids=trigger.notify_team_ids,
            )

        org_id = obligation.organization_id
        if obligation.status != ObligationStatus.OVERDUE:
            if obligation.status in OBLIGATION_TERMINAL_STATES:
                return 0
            updated = await self._stores.obligation_store.update_obligation_status(
                obligation.id,
                org_id,
                ObligationStatus.OVERDUE,
                exclude=OBLIGATION_TERMINAL_STATES | {ObligationStatus.OVERDUE},
            )
            if updated:
                await self._log_action(
                    obligation,
                    ObligationAction.STATUS_CHANGED,
                    {"from": obligation.status.value, "to": ObligationStatus.OVERDUE.value},
                    now,
                )
            else:
                # 本轮读取之后状态已被其他写入修改
                current = await self._stores.obligation_store.get_obligation(
                    obligation.id, org_id
                )
                if current is None or current.status in OBLIGATION_TERMINAL_STATES:
                    log.info(
                        "escalation_skipped_terminal",
                        status=current.status.value if current else None,
                    )
                    return 0

        sent = 0
        for user_id in trigger.notify_user_ids:
            user = await self._stores.user_store.get_user(user_id)
            if user is None:
                log.warning("escalation_user_not_found", user_id=user_id)
                continue
            data = NotificationTemplateData(
                obligation_title=obligation.title,
                due_at=obligation.due_at,
                days_overdue=decision.days_overdue,
                escalation_level=trigger.escalation_level,
                recipient_name=user.name or None,
            )
            if await self._queue_notification(
                obligation,
                user,
                NotificationChannel.EMAIL,
                NotificationEventType.ESCALATION,
                data,
                now,
            ):
                sent += 1

        await self._log_action(
            obligation,
            ObligationAction.ESCALATED,
            {"escalation_level": trigger.escalation_level, "days_overdue": decision.days_overdue},
            now,
        )
        log.info(
            "obligation_escalated",
            escalation_level=trigger.escalation_level,
            days_overdue=decision.days_overdue,
            notifications=sent,
        )
        return sent

    async def _queue_notification(
        self,
        obligation: Obligation,
        user: User,
        channel: NotificationChannel,
        event_type: NotificationEventType,
        data: NotificationTemplateData,
        now: datetime,
    ) -> bool:
        """写入通知事件并入队投递 Job

        Returns:
            投递 Job 是否入队成功
        """
        template_data = data.model_dump(mode="json")
        event = await self._stores.notification_store.create_notification_event(
            NotificationEvent(
                organization_id=obligation.organization_id,
                obligation_id=obligation.id,
                event_type=event_type,
                recipient_user_id=user.id,
                channel=channel,
                status=NotificationStatus.QUEUED,
                content_snapshot={"template_data": template_data},
                created_at=now,
            )
        )

        priority = JobPriority.NORMAL
        if event_type == NotificationEventType.ESCALATION:
            priority = JobPriority.HIGH
        result = await self._dispatcher.enqueue_job(
            JobType.NOTIFICATION_SEND,
            {
                "notification_event_id": event.id,
                "organization_id": obligation.organization_id,
                "channel": channel.value,
                "recipient_user_id": user.id,
                "template_data": template_data,
            },
            JobOptions(organization_id=obligation.organization_id, priority=priority),
        )
        if result.job_id is None:
            await self._stores.notification_store.update_notification_event_status(
                event.id,
                obligation.organization_id,
                NotificationStatus.FAILED,
                error="delivery job could not be enqueued",
            )
            return False
        return True

    async def _log_action(
        self,
        obligation: Obligation,
        action: ObligationAction,
        new_value: dict,
        now: datetime,
    ) -> None:
        await self._stores.obligation_store.log_obligation_action(
            ObligationActionLog(
                organization_id=obligation.organization_id,
                obligation_id=obligation.id,
                action=action,
                new_value=new_value,
                system_generated=True,
                created_at=now,
            )
        )
