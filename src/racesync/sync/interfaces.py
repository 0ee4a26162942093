"""
Collaborator interfaces the engine depends on.

SyncManager and SyncScheduler only ever talk to these; the concrete
implementations live in racesync.store, racesync.scraper and
racesync.sync.notifications, and tests substitute AsyncMocks.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from racesync.models.sync import SyncConfiguration, SyncLog, SyncSchedule


class ConfigurationStore(Protocol):
    async def list_active_auto_sync_configurations(
        self,
    ) -> List[Tuple[SyncConfiguration, Optional[SyncSchedule]]]: ...

    async def list_configurations(
        self,
    ) -> List[Tuple[SyncConfiguration, Optional[SyncSchedule], int]]: ...

    async def get_configuration(self, configuration_id: int) -> Optional[SyncConfiguration]: ...

    async def upsert_configuration(self, data: Dict[str, Any]) -> SyncConfiguration: ...

    async def set_configuration_active(
        self, configuration_id: int, is_active: bool
    ) -> Optional[SyncConfiguration]: ...

    async def set_auto_sync(
        self, configuration_id: int, enabled: bool
    ) -> Optional[SyncConfiguration]: ...

    async def get_schedule(self, configuration_id: int) -> Optional[SyncSchedule]: ...

    async def upsert_schedule(
        self, configuration_id: int, cron_expression: str, next_run: Optional[datetime]
    ) -> SyncSchedule: ...

    async def update_schedule_run_times(
        self, configuration_id: int, last_run: Optional[datetime], next_run: Optional[datetime]
    ) -> None: ...

    async def create_log(self, data: Dict[str, Any]) -> int: ...

    async def update_log(self, log_id: int, data: Dict[str, Any]) -> None: ...

    async def get_log(self, log_id: int) -> Optional[SyncLog]: ...

    async def list_logs(
        self, status: Optional[str], page: int, limit: int
    ) -> Tuple[List[SyncLog], int]: ...

    async def aggregate_logs(self, since: datetime) -> List[SyncLog]: ...


class DataSourceClient(Protocol):
    async def check_health(self) -> Dict[str, Any]: ...

    async def sync_events(self) -> Dict[str, Any]: ...

    async def sync_news(self) -> Dict[str, Any]: ...

    async def sync_all(self) -> Dict[str, Any]: ...


class NotificationSink(Protocol):
    async def notify_failure(self, configuration: SyncConfiguration, result: Any) -> None: ...
