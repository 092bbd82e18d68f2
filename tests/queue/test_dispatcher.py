"""JobDispatcher 测试

测试内容：
1. fast-ack 入队、存储失败时 job_id 为 None
2. 优先级认领顺序、scheduled_for 延迟
3. 指数退避重试与重试耗尽
4. 不可重试失败、处理器缺失
5. 取消与 Job 日志
6. worker 启停、唤醒、过期回收
"""

import asyncio
from datetime import timedelta

import pytest
from cadence.core.exceptions import DeliveryError, JobNotFoundError, JobStatusConflictError
from cadence.core.models import Job, JobOptions, JobPriority, JobStatus
from cadence.queue import JobDispatcher, ProcessorOutcome, compute_backoff


async def _wait_for_status(dispatcher: JobDispatcher, job_id: int, status: JobStatus) -> None:
    for _ in range(200):
        snapshot = await dispatcher.get_job_status(job_id)
        if snapshot.status == status:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"job {job_id} did not reach {status}")


class TestComputeBackoff:
    @pytest.mark.parametrize("attempt,delay", [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0)])
    def test_doubles(self, attempt: int, delay: float):
        assert compute_backoff(attempt) == delay

    def test_capped(self):
        assert compute_backoff(20, base_s=1.0, max_s=60.0) == 60.0
        assert compute_backoff(500) == 3600.0

    def test_custom_base(self):
        assert compute_backoff(3, base_s=0.5) == 2.0


class TestEnqueue:
    async def test_fast_ack(self, dispatcher: JobDispatcher, clock):
        result = await dispatcher.enqueue_job("email_send", {"to": "a@b.c"})

        assert result.job_id is not None
        assert result.correlation_id.startswith("job_")
        snapshot = await dispatcher.get_job_status(result.job_id)
        assert snapshot.status == JobStatus.QUEUED
        assert snapshot.attempts == 0
        assert snapshot.max_attempts == 3
        assert snapshot.next_eligible_at == clock()

    async def test_caller_correlation_id_and_options(self, dispatcher: JobDispatcher):
        result = await dispatcher.enqueue_job(
            "webhook_delivery",
            {"url": "https://example.com"},
            JobOptions(
                correlation_id="order-42",
                priority=JobPriority.HIGH,
                organization_id=7,
                max_attempts=5,
            ),
        )
        assert result.correlation_id == "order-42"
        snapshot = await dispatcher.get_job_status_by_correlation_id("order-42")
        assert snapshot.priority == JobPriority.HIGH
        assert snapshot.max_attempts == 5

    async def test_store_failure_returns_no_job_id(
        self, dispatcher: JobDispatcher, store_group, monkeypatch
    ):
        async def broken_create(job):
            raise OSError("disk full")

        monkeypatch.setattr(store_group.job_store, "create_job", broken_create)
        result = await dispatcher.enqueue_job("email_send", {}, JobOptions(correlation_id="c-1"))

        assert result.job_id is None
        assert result.correlation_id == "c-1"

    async def test_duplicate_correlation_id_is_rejected(self, dispatcher: JobDispatcher):
        first = await dispatcher.enqueue_job("email_send", {}, JobOptions(correlation_id="same"))
        second = await dispatcher.enqueue_job("email_send", {}, JobOptions(correlation_id="same"))
        assert first.job_id is not None
        assert second.job_id is None

    async def test_scheduled_for_delays_claim(self, dispatcher: JobDispatcher, registry, clock):
        async def handler(payload):
            return {}

        registry.register("report_generation", handler)
        result = await dispatcher.enqueue_job(
            "report_generation",
            {},
            JobOptions(scheduled_for=clock() + timedelta(minutes=10)),
        )

        assert await dispatcher.process_next_job() is None
        clock.advance(minutes=10)
        job = await dispatcher.process_next_job()
        assert job.id == result.job_id
        assert job.status == JobStatus.COMPLETED


class TestExecution:
    async def test_success_records_result(self, dispatcher: JobDispatcher, registry):
        async def handler(payload):
            return {"sent": payload["to"]}

        registry.register("email_send", handler)
        result = await dispatcher.enqueue_job("email_send", {"to": "a@b.c"})

        job = await dispatcher.process_next_job()
        assert job.id == result.job_id
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"sent": "a@b.c"}
        assert job.attempts == 1

        snapshot = await dispatcher.get_job_status(result.job_id)
        assert snapshot.progress == 100

    async def test_register_processor_via_dispatcher(self, dispatcher: JobDispatcher, registry):
        async def handler(payload):
            return {"rows": 3}

        dispatcher.register_processor("data_export", handler)
        assert registry.get("data_export") is handler

        await dispatcher.enqueue_job("data_export", {})
        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"rows": 3}

    async def test_priority_order(self, dispatcher: JobDispatcher, registry):
        seen: list[str] = []

        async def handler(payload):
            seen.append(payload["name"])
            return {}

        registry.register("t", handler)
        await dispatcher.enqueue_job("t", {"name": "low"}, JobOptions(priority=JobPriority.LOW))
        await dispatcher.enqueue_job("t", {"name": "normal"})
        await dispatcher.enqueue_job("t", {"name": "high"}, JobOptions(priority=JobPriority.HIGH))

        assert await dispatcher.drain() == 3
        assert seen == ["high", "normal", "low"]

    async def test_retry_with_backoff_until_exhausted(
        self, dispatcher: JobDispatcher, registry, clock
    ):
        calls = 0

        async def handler(payload):
            nonlocal calls
            calls += 1
            raise RuntimeError("smtp timeout")

        registry.register("email_send", handler)
        result = await dispatcher.enqueue_job("email_send", {})
        start = clock()

        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 1
        assert job.next_eligible_at == start + timedelta(seconds=1)

        # 退避期间不可认领
        assert await dispatcher.process_next_job() is None

        clock.advance(seconds=1)
        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 2
        assert job.next_eligible_at == clock() + timedelta(seconds=2)

        clock.advance(seconds=2)
        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.error == "smtp timeout"
        assert calls == 3

        clock.advance(hours=1)
        assert await dispatcher.process_next_job() is None
        snapshot = await dispatcher.get_job_status(result.job_id)
        assert snapshot.progress == -1
        assert snapshot.failed_at is not None

    async def test_non_retryable_failure(self, dispatcher: JobDispatcher, registry):
        async def handler(payload):
            raise DeliveryError("email", "no address", recoverable=False)

        registry.register("email_send", handler)
        await dispatcher.enqueue_job("email_send", {})

        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1

    async def test_outcome_failure_retries(self, dispatcher: JobDispatcher, registry):
        async def handler(payload):
            return ProcessorOutcome.failure("upstream 503")

        registry.register("webhook_delivery", handler)
        await dispatcher.enqueue_job("webhook_delivery", {})

        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.QUEUED
        assert job.error == "upstream 503"

    async def test_missing_processor_fails_immediately(self, dispatcher: JobDispatcher):
        result = await dispatcher.enqueue_job("data_export", {})

        job = await dispatcher.process_next_job()
        assert job.id == result.job_id
        assert job.status == JobStatus.FAILED
        assert job.error == "no processor for type data_export"
        assert job.attempts == 1

    async def test_success_after_retry(self, dispatcher: JobDispatcher, registry, clock):
        attempts = 0

        async def handler(payload):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("transient")
            return {"ok": True}

        registry.register("t", handler)
        result = await dispatcher.enqueue_job("t", {})
        await dispatcher.process_next_job()
        clock.advance(seconds=1)
        job = await dispatcher.process_next_job()

        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 2
        logs = await dispatcher.get_job_logs(result.job_id)
        assert [entry.message for entry in logs] == [
            "Job starting (attempt 1/3)",
            "Job failed, will be retried in 1s",
            "Job starting (attempt 2/3)",
            "Job completed",
        ]


class TestStoreFailureAfterClaim:
    @staticmethod
    def _fail_once(monkeypatch, store, method: str) -> None:
        original = getattr(store, method)
        state = {"failed": False}

        async def flaky(*args, **kwargs):
            if not state["failed"]:
                state["failed"] = True
                raise RuntimeError("database is locked")
            return await original(*args, **kwargs)

        monkeypatch.setattr(store, method, flaky)

    async def test_complete_failure_requeues_job(
        self, dispatcher: JobDispatcher, registry, store_group, clock, monkeypatch
    ):
        calls: list[int] = []

        async def handler(payload):
            calls.append(1)
            return {"ok": True}

        registry.register("t", handler)
        self._fail_once(monkeypatch, store_group.job_store, "complete_job")
        result = await dispatcher.enqueue_job("t", {})

        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.QUEUED
        assert job.error == "RuntimeError: database is locked"
        assert job.next_eligible_at == clock() + timedelta(seconds=1)

        # 退避期内不可认领
        assert await dispatcher.drain() == 0
        clock.advance(seconds=1)
        assert await dispatcher.drain() == 1

        snapshot = await dispatcher.get_job_status(result.job_id)
        assert snapshot.status == JobStatus.COMPLETED
        assert snapshot.attempts == 2
        assert len(calls) == 2

    async def test_store_failure_on_last_attempt_fails_job(
        self, dispatcher: JobDispatcher, registry, store_group, monkeypatch
    ):
        async def handler(payload):
            return {}

        registry.register("t", handler)
        self._fail_once(monkeypatch, store_group.job_store, "complete_job")
        await dispatcher.enqueue_job("t", {}, JobOptions(max_attempts=1))

        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.FAILED
        assert job.error == "RuntimeError: database is locked"

    async def test_log_failure_after_completion_keeps_result(
        self, dispatcher: JobDispatcher, registry, store_group, monkeypatch
    ):
        async def handler(payload):
            return {"n": 1}

        registry.register("t", handler)
        await dispatcher.enqueue_job("t", {})

        job_store = store_group.job_store
        original = job_store.append_job_log

        async def flaky_log(entry):
            if entry.message == "Job completed":
                raise RuntimeError("database is locked")
            return await original(entry)

        monkeypatch.setattr(job_store, "append_job_log", flaky_log)

        job = await dispatcher.process_next_job()
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"n": 1}

    async def test_worker_periodically_recovers_stuck_job(
        self, dispatcher: JobDispatcher, registry, store_group, clock
    ):
        async def handler(payload):
            return {}

        registry.register("t", handler)
        stuck = await store_group.job_store.create_job(
            Job(type="t", correlation_id="stuck-1", created_at=clock(), next_eligible_at=clock())
        )
        # 认领后停滞在 processing，启动时尚未超时
        await store_group.job_store.claim_next_job(clock())

        dispatcher.start_worker()
        await asyncio.sleep(0.1)
        assert (await dispatcher.get_job_status(stuck.id)).status == JobStatus.PROCESSING

        clock.advance(seconds=dispatcher.config.stale_after_s + 1)
        await _wait_for_status(dispatcher, stuck.id, JobStatus.COMPLETED)


class TestCancelAndLogs:
    async def test_cancel_queued_job(self, dispatcher: JobDispatcher, registry):
        async def handler(payload):
            return {}

        registry.register("t", handler)
        result = await dispatcher.enqueue_job("t", {})

        snapshot = await dispatcher.cancel_job(result.job_id)
        assert snapshot.status == JobStatus.CANCELLED
        assert snapshot.progress == -1
        assert await dispatcher.process_next_job() is None

        logs = await dispatcher.get_job_logs(result.job_id)
        assert [entry.message for entry in logs] == ["Job cancelled"]

    async def test_cancel_finished_job_conflicts(self, dispatcher: JobDispatcher, registry):
        async def handler(payload):
            return {}

        registry.register("t", handler)
        result = await dispatcher.enqueue_job("t", {})
        await dispatcher.process_next_job()

        with pytest.raises(JobStatusConflictError):
            await dispatcher.cancel_job(result.job_id)

    async def test_cancel_missing_job(self, dispatcher: JobDispatcher):
        with pytest.raises(JobNotFoundError):
            await dispatcher.cancel_job(999)

    async def test_logs_for_missing_job(self, dispatcher: JobDispatcher):
        with pytest.raises(JobNotFoundError):
            await dispatcher.get_job_logs(999)


class TestWorker:
    async def test_start_is_idempotent(self, dispatcher: JobDispatcher):
        assert dispatcher.start_worker() is True
        assert dispatcher.start_worker() is False
        assert dispatcher.is_running is True

        await dispatcher.stop_worker()
        assert dispatcher.is_running is False

    async def test_stop_without_start(self, dispatcher: JobDispatcher):
        await dispatcher.stop_worker()
        assert dispatcher.is_running is False

    async def test_worker_processes_enqueued_job(self, dispatcher: JobDispatcher, registry):
        done = asyncio.Event()

        async def handler(payload):
            done.set()
            return {"handled": True}

        registry.register("t", handler)
        dispatcher.start_worker()
        result = await dispatcher.enqueue_job("t", {})

        await asyncio.wait_for(done.wait(), timeout=2)
        await _wait_for_status(dispatcher, result.job_id, JobStatus.COMPLETED)

    async def test_worker_recovers_stale_jobs(
        self, dispatcher: JobDispatcher, registry, store_group, clock
    ):
        async def handler(payload):
            return {}

        registry.register("t", handler)
        long_ago = clock() - timedelta(minutes=30)
        stale = await store_group.job_store.create_job(
            Job(
                type="t",
                correlation_id="stale-1",
                created_at=long_ago,
                next_eligible_at=long_ago,
            )
        )
        # 模拟进程崩溃前已认领的 Job
        await store_group.job_store.claim_next_job(long_ago)

        dispatcher.start_worker()
        await _wait_for_status(dispatcher, stale.id, JobStatus.COMPLETED)
        snapshot = await dispatcher.get_job_status(stale.id)
        assert snapshot.attempts == 2

    async def test_stop_waits_for_running_job(self, dispatcher: JobDispatcher, registry):
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(payload):
            started.set()
            await release.wait()
            return {}

        registry.register("slow", handler)
        result = await dispatcher.enqueue_job("slow", {})
        dispatcher.start_worker()
        await asyncio.wait_for(started.wait(), timeout=2)

        stopper = asyncio.create_task(dispatcher.stop_worker())
        await asyncio.sleep(0.05)
        assert not stopper.done()

        release.set()
        await asyncio.wait_for(stopper, timeout=2)
        snapshot = await dispatcher.get_job_status(result.job_id)
        assert snapshot.status == JobStatus.COMPLETED
