"""cadence 异常体系"""


class CadenceError(Exception):
    """cadence 基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class JobNotFoundError(CadenceError):
    """Job 不存在"""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} 不存在", recoverable=False)
        self.job_id = job_id


class JobStatusConflictError(CadenceError):
    """条件状态更新未命中：Job 已不在预期状态（并发竞争或非法流转）"""

    def __init__(self, job_id: int, expected: str, target: str) -> None:
        super().__init__(
            f"Job {job_id} 无法从 {expected} 流转到 {target}",
            recoverable=False,
        )
        self.job_id = job_id
        self.expected = expected
        self.target = target


class DeliveryError(CadenceError):
    """通知投递失败（邮件 / 短信 / WhatsApp / 站内 / Webhook）

    recoverable=True 时由调度器按退避策略重试。
    """

    def __init__(self, channel: str, message: str, recoverable: bool = True) -> None:
        super().__init__(f"{channel} 投递失败: {message}", recoverable=recoverable)
        self.channel = channel
