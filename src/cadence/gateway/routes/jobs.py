"""Job 路由

POST /api/jobs: 入队（fast-ack，202）
GET /api/jobs/{job_id}: 按 ID 查询状态快照
GET /api/jobs/correlation/{correlation_id}: 按关联 ID 查询状态快照
GET /api/jobs/{job_id}/logs: Job 追踪日志
POST /api/jobs/{job_id}/cancel: 取消排队中的 Job
- 200: 取消成功
- 404: Job 不存在
- 409: Job 已被认领或已结束
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from cadence.core.exceptions import JobNotFoundError, JobStatusConflictError
from cadence.core.models import JobOptions, JobPriority
from cadence.queue import JobDispatcher

from ..deps import get_dispatcher

router = APIRouter()


class EnqueueJobRequest(BaseModel):
    """入队请求体"""

    type: str = Field(min_length=1, description="Job 类型标签")
    payload: dict[str, Any] = Field(default_factory=dict, description="处理器输入")
    priority: JobPriority = Field(default=JobPriority.NORMAL, description="优先级")
    correlation_id: str | None = Field(default=None, description="调用方关联 ID")
    organization_id: int | None = Field(default=None, description="所属组织")
    user_id: int | None = Field(default=None, description="发起用户")
    scheduled_for: datetime | None = Field(default=None, description="最早执行时间")
    max_attempts: int | None = Field(default=None, ge=1, description="最大尝试次数")


class JobLogItem(BaseModel):
    level: str
    message: str
    context: dict[str, Any]
    created_at: str


class JobLogsResponse(BaseModel):
    job_id: int
    logs: list[JobLogItem]


def _job_not_found(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "error": {
                "code": "JOB_NOT_FOUND",
                "message": f"Job {detail} does not exist",
            }
        },
    )


@router.post("/api/jobs", status_code=202)
async def enqueue_job(
    body: EnqueueJobRequest,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """入队 Job 并立即返回 {job_id, correlation_id}

    存储写入失败时 job_id 为 null，correlation_id 照常返回。
    """
    result = await dispatcher.enqueue_job(
        body.type,
        body.payload,
        JobOptions(
            priority=body.priority,
            correlation_id=body.correlation_id,
            organization_id=body.organization_id,
            user_id=body.user_id,
            scheduled_for=body.scheduled_for,
            max_attempts=body.max_attempts,
        ),
    )
    return result.model_dump()


@router.get("/api/jobs/correlation/{correlation_id}")
async def get_job_by_correlation_id(
    correlation_id: str,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    snapshot = await dispatcher.get_job_status_by_correlation_id(correlation_id)
    if snapshot is None:
        return _job_not_found(f"with correlation id {correlation_id}")
    return snapshot.model_dump(mode="json")


@router.get("/api/jobs/{job_id}")
async def get_job(
    job_id: int,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    snapshot = await dispatcher.get_job_status(job_id)
    if snapshot is None:
        return _job_not_found(f"with id {job_id}")
    return snapshot.model_dump(mode="json")


@router.get("/api/jobs/{job_id}/logs", response_model=JobLogsResponse)
async def get_job_logs(
    job_id: int,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    try:
        entries = await dispatcher.get_job_logs(job_id)
    except JobNotFoundError:
        return _job_not_found(f"with id {job_id}")

    return JobLogsResponse(
        job_id=job_id,
        logs=[
            JobLogItem(
                level=entry.level.value,
                message=entry.message,
                context=entry.context,
                created_at=entry.created_at.isoformat(),
            )
            for entry in entries
        ],
    )


@router.post("/api/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: int,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    try:
        snapshot = await dispatcher.cancel_job(job_id)
    except JobNotFoundError:
        return _job_not_found(f"with id {job_id}")
    except JobStatusConflictError as e:
        return JSONResponse(
            status_code=409,
            content={
                "error": {
                    "code": "JOB_NOT_CANCELLABLE",
                    "message": str(e),
                }
            },
        )

    return snapshot.model_dump(mode="json")
