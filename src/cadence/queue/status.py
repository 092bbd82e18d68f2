"""Job 状态查询 -- 供轮询客户端使用的只读投影

progress 由状态推导，不落库：queued=0, processing=50, completed=100, failed/cancelled=-1。
快照只依赖 Job 行本身，无中间写入时连续两次查询结果完全一致。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from cadence.core.models import Job, JobPriority, JobStatus
from cadence.core.store.protocols import JobStore

_PROGRESS: dict[JobStatus, int] = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 50,
    JobStatus.COMPLETED: 100,
    JobStatus.FAILED: -1,
    JobStatus.CANCELLED: -1,
}


class JobStatusSnapshot(BaseModel):
    """Job 状态快照"""

    id: int
    correlation_id: str
    type: str
    status: JobStatus
    priority: JobPriority
    progress: int
    result: dict[str, Any] | None
    error: str | None
    attempts: int
    max_attempts: int
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    next_eligible_at: datetime


def calculate_progress(status: JobStatus) -> int:
    return _PROGRESS.get(status, 0)


def to_snapshot(job: Job) -> JobStatusSnapshot:
    return JobStatusSnapshot(
        id=job.id,
        correlation_id=job.correlation_id,
        type=job.type,
        status=job.status,
        priority=job.priority,
        progress=calculate_progress(job.status),
        result=job.result,
        error=job.error,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        failed_at=job.failed_at,
        next_eligible_at=job.next_eligible_at,
    )


class JobStatusService:
    """Job 状态查询服务"""

    def __init__(self, job_store: JobStore) -> None:
        self._store = job_store

    async def get_job_status(self, job_id: int) -> JobStatusSnapshot | None:
        job = await self._store.get_job(job_id)
        if job is None:
            return None
        return to_snapshot(job)

    async def get_job_status_by_correlation_id(
        self,
        correlation_id: str,
    ) -> JobStatusSnapshot | None:
        job = await self._store.get_job_by_correlation_id(correlation_id)
        if job is None:
            return None
        return to_snapshot(job)
