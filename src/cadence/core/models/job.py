"""Job Domain Model

jobs 表记录每个延迟执行的工作单元，状态流转只能由调度器（或管理员取消）推进。
job_logs 表 append-only，只追加不修改。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import JobLogLevel, JobPriority, JobStatus


class JobOptions(BaseModel):
    """入队选项"""

    priority: JobPriority = Field(default=JobPriority.NORMAL, description="优先级")
    user_id: int | None = Field(default=None, description="发起用户")
    organization_id: int | None = Field(default=None, description="所属组织")
    correlation_id: str | None = Field(
        default=None,
        description="调用方提供的关联 ID，缺省时自动生成",
    )
    scheduled_for: datetime | None = Field(
        default=None,
        description="最早可执行时间，缺省为立即执行",
    )
    max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="最大尝试次数，缺省取配置值",
    )


class Job(BaseModel):
    """Job 数据模型

    attempts 在每次被认领（queued -> processing）时加一。
    next_eligible_at 是持久化的可执行时间，重试退避通过它实现，而不是进程内定时器。
    """

    id: int | None = Field(default=None, description="存储分配的自增 ID")
    type: str = Field(description="Job 类型标签（开放字符串）")
    payload: dict[str, Any] = Field(default_factory=dict, description="处理器输入")
    status: JobStatus = Field(default=JobStatus.QUEUED, description="当前状态")
    priority: JobPriority = Field(default=JobPriority.NORMAL, description="优先级")
    attempts: int = Field(default=0, description="已尝试次数")
    max_attempts: int = Field(default=3, ge=1, description="最大尝试次数")
    correlation_id: str = Field(description="全局唯一关联 ID")
    organization_id: int | None = Field(default=None, description="所属组织")
    user_id: int | None = Field(default=None, description="发起用户")
    result: dict[str, Any] | None = Field(default=None, description="处理器输出")
    error: str | None = Field(default=None, description="最近一次错误信息")
    created_at: datetime = Field(description="创建时间")
    started_at: datetime | None = Field(default=None, description="最近一次开始时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    failed_at: datetime | None = Field(default=None, description="永久失败时间")
    next_eligible_at: datetime = Field(description="最早可被认领的时间")


class JobLogEntry(BaseModel):
    """Job 追踪日志（append-only）"""

    id: int | None = Field(default=None, description="日志 ID")
    job_id: int = Field(description="关联的 Job ID")
    level: JobLogLevel = Field(default=JobLogLevel.INFO, description="日志级别")
    message: str = Field(description="日志内容")
    context: dict[str, Any] = Field(default_factory=dict, description="结构化上下文")
    created_at: datetime = Field(description="写入时间")


class EnqueueResult(BaseModel):
    """入队结果：存储分配失败时 job_id 为 None，但 correlation_id 始终可用"""

    job_id: int | None
    correlation_id: str
