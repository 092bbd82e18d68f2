"""ReminderScheduler -- 周期性为每个组织入队 reminder_processing Job

按运行间隔把时间切成桶（bucket = epoch 秒 // 间隔），关联 ID 为
``reminders:{organization_id}:{bucket}``，同一桶只会入队一次，
进程重启或多实例部署也不会重复调度。
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from cadence.core.config import clamp_reminder_interval, get_reminder_interval_seconds
from cadence.core.models import EnqueueResult
from cadence.core.store import StoreGroup
from cadence.core.timeutil import ensure_utc, utc_now

from .engine import ReminderEngine

log = structlog.get_logger()


def reminder_correlation_id(organization_id: int, bucket: int) -> str:
    return f"reminders:{organization_id}:{bucket}"


class ReminderScheduler:
    """提醒编排调度器"""

    def __init__(
        self,
        store_group: StoreGroup,
        engine: ReminderEngine,
        interval_s: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._stores = store_group
        self._engine = engine
        if interval_s is None:
            self._interval_s = get_reminder_interval_seconds()
        else:
            self._interval_s = clamp_reminder_interval(interval_s)
        self._clock = clock
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def interval_s(self) -> int:
        return self._interval_s

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def current_bucket(self) -> int:
        return int(ensure_utc(self._clock()).timestamp()) // self._interval_s

    async def run_once(self) -> list[EnqueueResult]:
        """为当前桶调度所有有待处理义务事项的组织"""
        bucket = self.current_bucket()
        scheduled: list[EnqueueResult] = []
        for organization_id in await self._stores.obligation_store.list_organization_ids():
            correlation_id = reminder_correlation_id(organization_id, bucket)
            existing = await self._stores.job_store.get_job_by_correlation_id(correlation_id)
            if existing is not None:
                continue
            result = await self._engine.schedule_reminder_processing(
                organization_id,
                correlation_id=correlation_id,
            )
            scheduled.append(result)

        if scheduled:
            log.info("reminder_processing_scheduled", bucket=bucket, organizations=len(scheduled))
        return scheduled

    def start(self) -> bool:
        """启动周期调度（幂等）"""
        if self.is_running:
            return False
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="cadence-reminder-scheduler")
        log.info("reminder_scheduler_started", interval_s=self._interval_s)
        return True

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        task = self._task
        self._task = None
        await task
        log.info("reminder_scheduler_stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                log.error(
                    "reminder_scheduling_failed",
                    error_type=type(e).__name__,
                    error=str(e),
                )
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval_s)
            except TimeoutError:
                pass
