"""Obligation Domain Model

义务事项（合规截止、工作期限等）及其指派、操作日志。
所有记录都归属一个 organization_id，读写必须带组织作用域。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import AssigneeType, ObligationAction, ObligationStatus


class Obligation(BaseModel):
    """可跟踪截止时间的义务事项"""

    id: int | None = Field(default=None, description="存储分配的 ID")
    organization_id: int = Field(description="所属组织")
    title: str = Field(description="标题")
    description: str = Field(default="", description="描述")
    due_at: datetime | None = Field(default=None, description="截止时间，可为空")
    status: ObligationStatus = Field(default=ObligationStatus.PENDING, description="当前状态")
    reminder_policy_id: int | None = Field(default=None, description="显式提醒策略")
    escalation_policy_id: int | None = Field(default=None, description="显式升级策略")
    created_at: datetime | None = Field(default=None, description="创建时间")
    updated_at: datetime | None = Field(default=None, description="更新时间")


class ObligationAssignment(BaseModel):
    """义务事项指派（目前只有 USER 类型会收到提醒）"""

    id: int | None = None
    obligation_id: int
    organization_id: int
    assignee_type: AssigneeType = AssigneeType.USER
    assignee_id: int


class ObligationActionLog(BaseModel):
    """义务事项操作日志（append-only）"""

    id: int | None = None
    organization_id: int
    obligation_id: int
    action: ObligationAction
    new_value: dict[str, Any] = Field(default_factory=dict)
    system_generated: bool = True
    created_at: datetime | None = None


class User(BaseModel):
    """通知接收人"""

    id: int | None = None
    name: str = ""
    email: str | None = None
    phone: str | None = None
