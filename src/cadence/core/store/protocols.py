"""Store Protocol 接口定义

持久化层是外部协作方：调度器与提醒引擎只依赖这里的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
SQLite 实现见同目录的 *_store.py。
"""

from collections.abc import Collection
from datetime import datetime
from typing import Any, Protocol

from ..models.enums import NotificationStatus, ObligationStatus
from ..models.job import Job, JobLogEntry
from ..models.notification import NotificationEvent
from ..models.obligation import Obligation, ObligationActionLog, ObligationAssignment, User
from ..models.policy import EscalationPolicy, ReminderPolicy


class JobStore(Protocol):
    """Job 存储接口"""

    async def create_job(self, job: Job) -> Job:
        """写入新 Job，返回带 ID 的副本"""
        ...

    async def get_job(self, job_id: int) -> Job | None: ...

    async def get_job_by_correlation_id(self, correlation_id: str) -> Job | None: ...

    async def list_queued_jobs(
        self,
        limit: int = 10,
        eligible_before: datetime | None = None,
    ) -> list[Job]: ...

    async def claim_next_job(self, now: datetime) -> Job | None:
        """原子认领下一个可执行 Job（queued -> processing）"""
        ...

    async def complete_job(self, job_id: int, result: dict[str, Any], now: datetime) -> None: ...

    async def requeue_job(self, job_id: int, error: str, next_eligible_at: datetime) -> None: ...

    async def fail_job(self, job_id: int, error: str, now: datetime) -> None: ...

    async def cancel_job(self, job_id: int, now: datetime) -> None: ...

    async def recover_stale_jobs(
        self,
        started_before: datetime,
        now: datetime,
        exclude_ids: Collection[int] = (),
    ) -> int: ...

    async def get_next_eligible_at(self) -> datetime | None: ...

    async def append_job_log(self, entry: JobLogEntry) -> None:
        """追加 Job 日志（append-only）"""
        ...

    async def list_job_logs(self, job_id: int) -> list[JobLogEntry]: ...


class ObligationStore(Protocol):
    """义务事项存储接口 -- 所有方法均按 organization_id 隔离"""

    async def get_obligations_due_soon(
        self,
        organization_id: int,
        now: datetime,
        days: int,
    ) -> list[Obligation]: ...

    async def get_overdue_obligations(
        self,
        organization_id: int,
        now: datetime,
    ) -> list[Obligation]: ...

    async def update_obligation_status(
        self,
        obligation_id: int,
        organization_id: int,
        status: ObligationStatus,
        exclude: Collection[ObligationStatus] = (),
    ) -> bool: ...

    async def list_assignments(
        self,
        obligation_id: int,
        organization_id: int,
    ) -> list[ObligationAssignment]: ...

    async def log_obligation_action(self, entry: ObligationActionLog) -> None: ...

    async def list_organization_ids(self) -> list[int]: ...


class PolicyStore(Protocol):
    """提醒 / 升级策略存储接口"""

    async def get_reminder_policy(
        self,
        policy_id: int,
        organization_id: int,
    ) -> ReminderPolicy | None: ...

    async def get_default_reminder_policy(self, organization_id: int) -> ReminderPolicy | None: ...

    async def get_escalation_policy(
        self,
        policy_id: int,
        organization_id: int,
    ) -> EscalationPolicy | None: ...


class NotificationStore(Protocol):
    """通知事件存储接口"""

    async def create_notification_event(self, event: NotificationEvent) -> NotificationEvent: ...

    async def get_notification_event(
        self,
        event_id: int,
        organization_id: int | None = None,
    ) -> NotificationEvent | None: ...

    async def update_notification_event_status(
        self,
        event_id: int,
        organization_id: int,
        status: NotificationStatus,
        error: str | None = None,
        sent_at: datetime | None = None,
    ) -> bool: ...


class UserStore(Protocol):
    """用户查询接口"""

    async def get_user(self, user_id: int) -> User | None: ...
