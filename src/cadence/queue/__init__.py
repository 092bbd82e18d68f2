"""cadence Queue -- 持久化 Job 队列：处理器注册表、调度器、状态查询

内置处理器在 cadence.queue.processors，由应用启动时显式注册。
"""

from .dispatcher import JobDispatcher, compute_backoff, generate_correlation_id
from .registry import ProcessorHandler, ProcessorOutcome, ProcessorRegistry
from .status import JobStatusService, JobStatusSnapshot, calculate_progress

__all__ = [
    "JobDispatcher",
    "JobStatusService",
    "JobStatusSnapshot",
    "ProcessorHandler",
    "ProcessorOutcome",
    "ProcessorRegistry",
    "calculate_progress",
    "compute_backoff",
    "generate_correlation_id",
]
