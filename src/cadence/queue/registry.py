"""处理器注册表 -- Job 类型标签到处理函数的映射

处理函数签名：``async (payload) -> dict | ProcessorOutcome | None``。
处理函数抛出的异常在注册表边界被转换为失败结果，调度器只根据
ProcessorOutcome 的数据决定完成 / 重试 / 永久失败。
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


class ProcessorOutcome(BaseModel):
    """处理器执行结果"""

    ok: bool = Field(description="是否成功")
    result: dict[str, Any] = Field(default_factory=dict, description="成功时的输出")
    error: str | None = Field(default=None, description="失败原因")
    retryable: bool = Field(default=True, description="失败后是否允许按退避策略重试")

    @classmethod
    def success(cls, result: dict[str, Any] | None = None) -> "ProcessorOutcome":
        return cls(ok=True, result=result or {})

    @classmethod
    def failure(cls, error: str, retryable: bool = True) -> "ProcessorOutcome":
        return cls(ok=False, error=error, retryable=retryable)


ProcessorHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | ProcessorOutcome | None]]


def missing_processor_error(job_type: str) -> str:
    return f"no processor for type {job_type}"


class ProcessorRegistry:
    """开放的处理器注册表，同一类型重复注册时覆盖旧处理器"""

    def __init__(self) -> None:
        self._processors: dict[str, ProcessorHandler] = {}

    def register(self, job_type: str, handler: ProcessorHandler) -> None:
        """注册处理器

        Args:
            job_type: Job 类型标签（JobType 成员或任意字符串）
            handler: 异步处理函数
        """
        key = str(job_type)
        if key in self._processors:
            log.info("processor_replaced", job_type=key)
        self._processors[key] = handler

    def processor(self, job_type: str) -> Callable[[ProcessorHandler], ProcessorHandler]:
        """装饰器形式的注册"""

        def decorator(handler: ProcessorHandler) -> ProcessorHandler:
            self.register(job_type, handler)
            return handler

        return decorator

    def unregister(self, job_type: str) -> None:
        self._processors.pop(str(job_type), None)

    def get(self, job_type: str) -> ProcessorHandler | None:
        return self._processors.get(str(job_type))

    def registered_types(self) -> list[str]:
        return sorted(self._processors)

    def __contains__(self, job_type: object) -> bool:
        return str(job_type) in self._processors

    async def run(self, job_type: str, payload: dict[str, Any]) -> ProcessorOutcome:
        """执行处理器并归一化为 ProcessorOutcome

        - 未注册：不可重试的失败（配置错误，不是瞬时故障）
        - 抛出异常：默认可重试；异常带 recoverable=False 时不重试
        """
        handler = self.get(job_type)
        if handler is None:
            return ProcessorOutcome.failure(missing_processor_error(job_type), retryable=False)

        try:
            value = await handler(payload)
        except Exception as e:
            return ProcessorOutcome.failure(
                str(e) or type(e).__name__,
                retryable=getattr(e, "recoverable", True),
            )

        if isinstance(value, ProcessorOutcome):
            return value
        return ProcessorOutcome.success(value)
