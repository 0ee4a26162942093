"""Request dependencies resolving the services built in the app lifespan."""
from fastapi import Request

from racesync.scheduler.sync_scheduler import SyncScheduler
from racesync.sync.manager import SyncManager


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def get_manager(request: Request) -> SyncManager:
    return request.app.state.scheduler.manager
