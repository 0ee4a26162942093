"""Manual sync, statistics, logs and configuration routes."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from racesync.api.deps import get_manager
from racesync.sync.manager import SyncManager
from racesync.sync.types import SyncType, TriggerType

router = APIRouter()


class ExecuteSyncRequest(BaseModel):
    sync_type: SyncType = SyncType.ALL
    triggered_by: Optional[int] = None


class SyncStatusResponse(BaseModel):
    status: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    events_synced: Optional[int]
    news_synced: Optional[int]
    total_errors: Optional[int]


class ConfigurationRequest(BaseModel):
    name: str
    description: Optional[str] = None
    sync_frequency: Optional[str] = None
    sync_time: Optional[str] = None
    sync_events: Optional[bool] = None
    sync_news: Optional[bool] = None
    sync_usabmx: Optional[bool] = None
    sync_uci: Optional[bool] = None
    auto_sync_enabled: Optional[bool] = None
    notifications_enabled: Optional[bool] = None
    notification_email: Optional[str] = None
    max_retries: Optional[int] = None
    timeout_minutes: Optional[int] = None
    cron_expression: Optional[str] = None
    created_by: Optional[int] = None


class ToggleRequest(BaseModel):
    is_active: bool


@router.post("/execute")
async def execute_sync(
    request: ExecuteSyncRequest, manager: SyncManager = Depends(get_manager)
):
    """Run a manual sync now and return its logged outcome."""
    return await manager.execute_sync_with_logging(
        request.sync_type.value, TriggerType.MANUAL.value, request.triggered_by
    )


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(manager: SyncManager = Depends(get_manager)):
    """Return the status of the most recent sync."""
    page = await manager.get_sync_logs(page=1, limit=1)
    if not page["logs"]:
        return SyncStatusResponse(
            status="never_run",
            started_at=None,
            completed_at=None,
            events_synced=None,
            news_synced=None,
            total_errors=None,
        )
    log = page["logs"][0]
    return SyncStatusResponse(
        status=log.status,
        started_at=log.started_at,
        completed_at=log.completed_at,
        events_synced=log.events_synced,
        news_synced=log.news_synced,
        total_errors=log.total_errors,
    )


@router.get("/statistics")
async def statistics(days: int = 30, manager: SyncManager = Depends(get_manager)):
    return await manager.get_sync_statistics(days)


@router.get("/logs")
async def logs(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    manager: SyncManager = Depends(get_manager),
):
    return await manager.get_sync_logs(page, limit, status)


@router.get("/configurations")
async def list_configurations(manager: SyncManager = Depends(get_manager)):
    return await manager.get_configurations()


@router.post("/configurations")
async def upsert_configuration(
    request: ConfigurationRequest, manager: SyncManager = Depends(get_manager)
):
    return await manager.upsert_configuration(request.model_dump(exclude_none=True))


@router.patch("/configurations/{configuration_id}/toggle")
async def toggle_configuration(
    configuration_id: int,
    request: ToggleRequest,
    manager: SyncManager = Depends(get_manager),
):
    """Flip is_active. Call /auto-sync/reload for the change to reach live jobs."""
    return await manager.toggle_configuration(configuration_id, request.is_active)
