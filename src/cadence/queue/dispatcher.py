"""JobDispatcher -- 持久化 Job 队列的入队、认领与执行

调度器是显式持有的对象：由应用 lifespan 创建，start_worker / stop_worker
控制 worker 协程池的生命周期。

执行循环：
1. 原子认领（queued -> processing，attempts + 1）
2. 通过 ProcessorRegistry 执行处理器，得到 ProcessorOutcome
3. 成功 -> completed；可重试失败且 attempts < max_attempts -> 按指数退避设置
   next_eligible_at 后退回 queued；否则 -> failed

入队后通过 asyncio.Event 立即唤醒空闲 worker；空闲时的休眠时长取轮询间隔与
最早 next_eligible_at 之间的较小值。空闲时还会按 stale_after_s 周期回收停滞的
processing Job。
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars
from ulid import ULID

from cadence.core.config import DispatcherConfig, load_dispatcher_config
from cadence.core.exceptions import JobNotFoundError, JobStatusConflictError
from cadence.core.models import (
    EnqueueResult,
    Job,
    JobLogEntry,
    JobLogLevel,
    JobOptions,
    JobStatus,
)
from cadence.core.store.protocols import JobStore
from cadence.core.timeutil import ensure_utc, utc_now

from .registry import ProcessorHandler, ProcessorOutcome, ProcessorRegistry
from .status import JobStatusService, JobStatusSnapshot, to_snapshot

log = structlog.get_logger()

# 空闲休眠下限（秒），多个 worker 竞争同一 Job 时避免忙等
_MIN_IDLE_S = 0.01


def generate_correlation_id() -> str:
    """生成全局唯一的关联 ID"""
    return f"job_{ULID()}"


def compute_backoff(attempt: int, base_s: float = 1.0, max_s: float = 3600.0) -> float:
    """第 attempt 次失败后的重试延迟（秒）：base * 2^(attempt-1)，不超过 max_s

    默认参数下依次为 1s、2s、4s ...
    """
    exponent = max(attempt - 1, 0)
    # 大指数直接取上限，避免浮点溢出
    if exponent >= 64:
        return max_s
    return min(base_s * (2**exponent), max_s)


class JobDispatcher:
    """Job 调度器"""

    def __init__(
        self,
        job_store: JobStore,
        registry: ProcessorRegistry,
        config: DispatcherConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = job_store
        self._registry = registry
        self._config = config or load_dispatcher_config()
        self._clock = clock
        self._status = JobStatusService(job_store)

        self._wake = asyncio.Event()
        self._stopping = asyncio.Event()
        self._pool_task: asyncio.Task | None = None
        # 本进程正在执行的 Job，过期回收时跳过
        self._active_job_ids: set[int] = set()
        self._last_recovery_at: datetime | None = None

    @property
    def registry(self) -> ProcessorRegistry:
        return self._registry

    @property
    def config(self) -> DispatcherConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._pool_task is not None and not self._pool_task.done()

    def register_processor(self, job_type: str, handler: ProcessorHandler) -> None:
        """注册处理器（同类型覆盖）并唤醒 worker"""
        self._registry.register(job_type, handler)
        self._wake.set()

    # ---- 入队 ----

    async def enqueue_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        options: JobOptions | None = None,
    ) -> EnqueueResult:
        """持久化一个 queued Job 并立即返回（fast-ack）

        存储写入失败时不抛出异常：job_id 为 None，correlation_id 照常返回，
        调用方可以据此判断入队失败。
        """
        options = options or JobOptions()
        correlation_id = options.correlation_id or generate_correlation_id()
        now = self._clock()
        next_eligible_at = ensure_utc(options.scheduled_for) if options.scheduled_for else now

        job = Job(
            type=str(job_type),
            payload=payload or {},
            priority=options.priority,
            max_attempts=options.max_attempts or self._config.default_max_attempts,
            correlation_id=correlation_id,
            organization_id=options.organization_id,
            user_id=options.user_id,
            created_at=now,
            next_eligible_at=next_eligible_at,
        )

        try:
            created = await self._store.create_job(job)
        except Exception as e:
            log.error(
                "job_enqueue_failed",
                job_type=job.type,
                correlation_id=correlation_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return EnqueueResult(job_id=None, correlation_id=correlation_id)

        log.info(
            "job_enqueued",
            job_id=created.id,
            job_type=created.type,
            priority=created.priority.value,
            correlation_id=correlation_id,
        )
        self._wake.set()
        return EnqueueResult(job_id=created.id, correlation_id=correlation_id)

    # ---- 查询 / 管理 ----

    async def get_job_status(self, job_id: int) -> JobStatusSnapshot | None:
        return await self._status.get_job_status(job_id)

    async def get_job_status_by_correlation_id(
        self,
        correlation_id: str,
    ) -> JobStatusSnapshot | None:
        return await self._status.get_job_status_by_correlation_id(correlation_id)

    async def get_job_logs(self, job_id: int) -> list[JobLogEntry]:
        job = await self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return await self._store.list_job_logs(job_id)

    async def cancel_job(self, job_id: int) -> JobStatusSnapshot:
        """取消仍在排队的 Job

        Raises:
            JobNotFoundError: Job 不存在
            JobStatusConflictError: Job 已被认领或已结束
        """
        job = await self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.QUEUED:
            raise JobStatusConflictError(job_id, job.status.value, JobStatus.CANCELLED.value)

        await self._store.cancel_job(job_id, self._clock())
        await self._job_log(job_id, JobLogLevel.INFO, "Job cancelled")
        log.info("job_cancelled", job_id=job_id, correlation_id=job.correlation_id)

        cancelled = await self._store.get_job(job_id)
        return to_snapshot(cancelled)

    # ---- 执行 ----

    async def process_next_job(self) -> Job | None:
        """认领并执行一个 Job

        认领之后的存储写入失败（例如 database is locked）时，尽力把 Job 退回队列
        或标记失败，避免其停留在 processing。

        Returns:
            执行后的 Job 最新状态；没有可执行 Job 时返回 None
        """
        job = await self._store.claim_next_job(self._clock())
        if job is None:
            return None

        self._active_job_ids.add(job.id)
        try:
            with bound_contextvars(
                job_id=job.id,
                correlation_id=job.correlation_id,
                job_type=job.type,
            ):
                try:
                    await self._execute(job)
                except JobStatusConflictError as e:
                    # 执行期间 Job 被其他实例回收或取消，放弃本次结果
                    log.warning(
                        "job_transition_conflict",
                        expected=e.expected,
                        target=e.target,
                    )
                except Exception as e:
                    log.error(
                        "job_execution_interrupted",
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    await self._release(job, f"{type(e).__name__}: {e}")
        finally:
            self._active_job_ids.discard(job.id)
        return await self._store.get_job(job.id)

    async def drain(self, max_jobs: int | None = None) -> int:
        """在当前协程中连续执行 Job，直到没有可执行 Job 或达到 max_jobs

        Returns:
            执行的 Job 数量
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = await self.process_next_job()
            if job is None:
                break
            processed += 1
        return processed

    async def _execute(self, job: Job) -> None:
        log.info(
            "job_started",
            attempt=job.attempts,
            max_attempts=job.max_attempts,
        )
        await self._job_log(
            job.id,
            JobLogLevel.INFO,
            f"Job starting (attempt {job.attempts}/{job.max_attempts})",
            {"attempt": job.attempts},
        )

        if job.type not in self._registry:
            log.error("job_processor_missing")

        outcome = await self._registry.run(job.type, job.payload)

        if outcome.ok:
            await self._complete(job, outcome)
        elif outcome.retryable and job.attempts < job.max_attempts:
            await self._retry(job, outcome)
        else:
            await self._fail(job, outcome)

    async def _complete(self, job: Job, outcome: ProcessorOutcome) -> None:
        await self._store.complete_job(job.id, outcome.result, self._clock())
        await self._job_log(job.id, JobLogLevel.INFO, "Job completed")
        log.info("job_completed", attempt=job.attempts)

    async def _retry(self, job: Job, outcome: ProcessorOutcome) -> None:
        delay_s = compute_backoff(
            job.attempts,
            self._config.backoff_base_s,
            self._config.backoff_max_s,
        )
        next_eligible_at = self._clock() + timedelta(seconds=delay_s)
        await self._store.requeue_job(job.id, outcome.error or "", next_eligible_at)
        await self._job_log(
            job.id,
            JobLogLevel.WARN,
            f"Job failed, will be retried in {delay_s:g}s",
            {"error": outcome.error, "attempt": job.attempts, "delay_s": delay_s},
        )
        log.warning(
            "job_retry_scheduled",
            attempt=job.attempts,
            delay_s=delay_s,
            error=outcome.error,
        )

    async def _fail(self, job: Job, outcome: ProcessorOutcome) -> None:
        await self._store.fail_job(job.id, outcome.error or "", self._clock())
        await self._job_log(
            job.id,
            JobLogLevel.ERROR,
            "Job failed",
            {"error": outcome.error, "attempt": job.attempts, "retryable": outcome.retryable},
        )
        log.error(
            "job_failed",
            attempt=job.attempts,
            error=outcome.error,
        )

    async def _release(self, job: Job, error: str) -> None:
        """执行链路上的存储故障后释放认领：按重试规则退回 queued 或标记 failed"""
        try:
            if job.attempts < job.max_attempts:
                delay_s = compute_backoff(
                    job.attempts,
                    self._config.backoff_base_s,
                    self._config.backoff_max_s,
                )
                await self._store.requeue_job(
                    job.id, error, self._clock() + timedelta(seconds=delay_s)
                )
                log.warning("job_released", attempt=job.attempts, delay_s=delay_s)
            else:
                await self._store.fail_job(job.id, error, self._clock())
                log.error("job_failed", attempt=job.attempts, error=error)
        except JobStatusConflictError as e:
            # 状态已推进（例如结果已写入，仅日志写入失败）
            log.info("job_release_skipped", expected=e.expected, target=e.target)
        except Exception as e:
            log.error(
                "job_release_failed",
                error_type=type(e).__name__,
                error=str(e),
            )

    async def _job_log(
        self,
        job_id: int,
        level: JobLogLevel,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        await self._store.append_job_log(
            JobLogEntry(
                job_id=job_id,
                level=level,
                message=message,
                context=context or {},
                created_at=self._clock(),
            )
        )

    # ---- worker 生命周期 ----

    def start_worker(self, interval_ms: int | None = None) -> bool:
        """启动 worker 协程池（幂等）

        Args:
            interval_ms: 兜底轮询间隔，缺省取配置值

        Returns:
            本次调用是否真正启动了 worker
        """
        if self.is_running:
            return False

        poll_s = (interval_ms or self._config.poll_interval_ms) / 1000
        self._stopping.clear()
        self._pool_task = asyncio.create_task(
            self._run_pool(poll_s),
            name="cadence-job-dispatcher",
        )
        log.info(
            "job_worker_started",
            concurrency=self._config.concurrency,
            poll_interval_s=poll_s,
        )
        return True

    async def stop_worker(self, timeout_s: float = 10.0) -> None:
        """停止 worker：不再认领新 Job，等待执行中的 Job 结束

        超过 timeout_s 仍未结束时取消 worker 协程；被中断的 Job 保持 processing，
        由过期回收退回队列。
        """
        if self._pool_task is None:
            return

        self._stopping.set()
        self._wake.set()
        task = self._pool_task
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout_s)
        except TimeoutError:
            log.warning("job_worker_stop_timeout", timeout_s=timeout_s)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        finally:
            self._pool_task = None
        log.info("job_worker_stopped")

    async def _run_pool(self, poll_s: float) -> None:
        await self._recover_stale_jobs()
        await asyncio.gather(
            *(self._worker_loop(i, poll_s) for i in range(self._config.concurrency))
        )

    async def _recover_stale_jobs(self) -> None:
        """回收超时的 processing Job（跳过本进程正在执行的）"""
        now = self._clock()
        self._last_recovery_at = now
        started_before = now - timedelta(seconds=self._config.stale_after_s)
        try:
            recovered = await self._store.recover_stale_jobs(
                started_before, now, exclude_ids=self._active_job_ids
            )
        except Exception as e:
            log.error("job_recovery_failed", error_type=type(e).__name__, error=str(e))
            return
        if recovered:
            log.warning("stale_jobs_recovered", count=recovered)

    async def _maybe_recover_stale_jobs(self) -> None:
        # 启动后每隔 stale_after_s 再回收一次
        if self._last_recovery_at is not None:
            elapsed = (self._clock() - self._last_recovery_at).total_seconds()
            if elapsed < self._config.stale_after_s:
                return
        await self._recover_stale_jobs()

    async def _worker_loop(self, worker_id: int, poll_s: float) -> None:
        with bound_contextvars(worker_id=worker_id):
            while not self._stopping.is_set():
                self._wake.clear()
                try:
                    job = await self.process_next_job()
                except Exception as e:
                    # 存储故障等：记录后按轮询间隔休眠，避免忙等
                    log.error(
                        "job_worker_iteration_failed",
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    job = None

                if job is not None:
                    continue
                await self._idle(poll_s)

    async def _idle(self, poll_s: float) -> None:
        await self._maybe_recover_stale_jobs()

        timeout = poll_s
        try:
            next_eligible_at = await self._store.get_next_eligible_at()
        except Exception as e:
            log.warning("next_eligible_lookup_failed", error_type=type(e).__name__, error=str(e))
            next_eligible_at = None
        if next_eligible_at is not None:
            until_eligible = (next_eligible_at - self._clock()).total_seconds()
            timeout = min(poll_s, max(until_eligible, _MIN_IDLE_S))

        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except TimeoutError:
            pass
