"""Auto-sync control routes: scheduler lifecycle and per-configuration tasks."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from racesync.api.deps import get_manager, get_scheduler
from racesync.scheduler.sync_scheduler import SyncScheduler
from racesync.sync.manager import SyncManager

router = APIRouter()


class EnableAutoSyncRequest(BaseModel):
    configuration_id: int
    cron_expression: Optional[str] = None
    auto_sync_enabled: bool = True


class ScheduleRequest(BaseModel):
    configuration_id: int
    cron_expression: str


@router.post("/initialize")
async def initialize(scheduler: SyncScheduler = Depends(get_scheduler)):
    await scheduler.initialize()
    return {"initialized": scheduler.initialized}


@router.get("/status")
async def status(scheduler: SyncScheduler = Depends(get_scheduler)):
    return await scheduler.get_status()


@router.post("/enable")
async def enable_auto_sync(
    request: EnableAutoSyncRequest,
    scheduler: SyncScheduler = Depends(get_scheduler),
    manager: SyncManager = Depends(get_manager),
):
    """Turn auto-sync on or off for a configuration and apply it to the live jobs."""
    await manager.set_auto_sync(
        request.configuration_id, request.auto_sync_enabled, request.cron_expression
    )
    await scheduler.reload_configurations()
    return {
        "configuration_id": request.configuration_id,
        "auto_sync_enabled": request.auto_sync_enabled,
        "cron_expression": request.cron_expression,
    }


@router.post("/reload")
async def reload_configurations(scheduler: SyncScheduler = Depends(get_scheduler)):
    await scheduler.reload_configurations()
    return scheduler.get_scheduled_tasks_status()


@router.post("/stop")
async def stop_all(scheduler: SyncScheduler = Depends(get_scheduler)):
    await scheduler.stop_all()
    return {"stopped": True}


@router.post("/schedule")
async def schedule_task(
    request: ScheduleRequest, scheduler: SyncScheduler = Depends(get_scheduler)
):
    await scheduler.schedule_task(request.configuration_id, request.cron_expression)
    return {
        "configuration_id": request.configuration_id,
        "cron_expression": request.cron_expression,
        "scheduled": True,
    }


@router.delete("/schedule/{configuration_id}")
async def cancel_task(configuration_id: int, scheduler: SyncScheduler = Depends(get_scheduler)):
    cancelled = await scheduler.cancel_task(configuration_id)
    return {"configuration_id": configuration_id, "cancelled": cancelled}


@router.post("/test/{configuration_id}")
async def test_run(configuration_id: int, scheduler: SyncScheduler = Depends(get_scheduler)):
    """Run a configuration once now, logged with trigger_type="test"."""
    return await scheduler.test_run(configuration_id)
