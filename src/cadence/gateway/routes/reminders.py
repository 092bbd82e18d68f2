"""提醒路由

POST /api/organizations/{organization_id}/reminders/run:
立即为该组织入队一个 reminder_processing Job（不等待执行），返回 Job 句柄。
"""

from fastapi import APIRouter, Depends

from cadence.reminders import ReminderEngine

from ..deps import get_reminder_engine

router = APIRouter()


@router.post("/api/organizations/{organization_id}/reminders/run", status_code=202)
async def run_reminders(
    organization_id: int,
    engine: ReminderEngine = Depends(get_reminder_engine),
):
    result = await engine.schedule_reminder_processing(organization_id)
    return result.model_dump()
