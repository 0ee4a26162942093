"""
SQLModel-backed ConfigurationStore.

Every public method is async and runs its Session work in the default
thread-pool executor, the same way the scraper and API clients keep
blocking calls off the event loop. Each call opens its own Session; rows
are refreshed before the Session closes so callers get fully loaded,
detached objects.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from racesync.errors import PersistenceError
from racesync.models.sync import SyncConfiguration, SyncLog, SyncSchedule

logger = logging.getLogger(__name__)

_CONFIGURATION_FIELDS = set(SyncConfiguration.model_fields) - {"id", "created_at", "updated_at"}
_LOG_FIELDS = set(SyncLog.model_fields) - {"id"}


class SqlConfigurationStore:
    """Persists SyncConfiguration, SyncSchedule and SyncLog rows."""

    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking Session call in the thread pool."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    # ─── Configurations ──────────────────────────────────────────────────────

    async def list_active_auto_sync_configurations(
        self,
    ) -> List[Tuple[SyncConfiguration, Optional[SyncSchedule]]]:
        return await self._run(self._list_active_auto_sync)

    def _list_active_auto_sync(self):
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncConfiguration, SyncSchedule)
                .join(
                    SyncSchedule,
                    SyncSchedule.configuration_id == SyncConfiguration.id,
                    isouter=True,
                )
                .where(SyncConfiguration.is_active == True)  # noqa: E712
                .where(SyncConfiguration.auto_sync_enabled == True)  # noqa: E712
                .order_by(SyncConfiguration.id)
            ).all()
            return [(config, schedule) for config, schedule in rows]

    async def list_configurations(
        self,
    ) -> List[Tuple[SyncConfiguration, Optional[SyncSchedule], int]]:
        """All configurations newest first, each with its schedule and log count."""
        return await self._run(self._list_configurations)

    def _list_configurations(self):
        with Session(self.engine) as s:
            log_counts = (
                select(SyncLog.configuration_id, func.count(SyncLog.id).label("log_count"))
                .group_by(SyncLog.configuration_id)
                .subquery()
            )
            rows = s.exec(
                select(SyncConfiguration, SyncSchedule, log_counts.c.log_count)
                .join(
                    SyncSchedule,
                    SyncSchedule.configuration_id == SyncConfiguration.id,
                    isouter=True,
                )
                .join(
                    log_counts,
                    log_counts.c.configuration_id == SyncConfiguration.id,
                    isouter=True,
                )
                .order_by(SyncConfiguration.created_at.desc(), SyncConfiguration.id.desc())
            ).all()
            return [(config, schedule, count or 0) for config, schedule, count in rows]

    async def get_configuration(self, configuration_id: int) -> Optional[SyncConfiguration]:
        return await self._run(self._get, SyncConfiguration, configuration_id)

    def _get(self, model, pk):
        with Session(self.engine) as s:
            return s.get(model, pk)

    async def upsert_configuration(self, data: Dict[str, Any]) -> SyncConfiguration:
        """
        Create or update a configuration keyed by its unique name.

        On create, omitted fields take the model defaults. On update, only
        fields present in `data` with a non-None value are overwritten.
        """
        if not data.get("name"):
            raise PersistenceError("Configuration name is required")
        return await self._run(self._upsert_configuration, data)

    def _upsert_configuration(self, data: Dict[str, Any]) -> SyncConfiguration:
        fields = {
            k: v for k, v in data.items() if k in _CONFIGURATION_FIELDS and v is not None
        }
        with Session(self.engine) as s:
            existing = s.exec(
                select(SyncConfiguration).where(SyncConfiguration.name == data["name"])
            ).first()
            if existing:
                for k, v in fields.items():
                    setattr(existing, k, v)
                existing.updated_at = datetime.utcnow()
                config = existing
            else:
                config = SyncConfiguration(**fields)
            s.add(config)
            s.commit()
            s.refresh(config)
            return config

    async def set_configuration_active(
        self, configuration_id: int, is_active: bool
    ) -> Optional[SyncConfiguration]:
        return await self._run(self._set_flag, configuration_id, "is_active", is_active)

    async def set_auto_sync(
        self, configuration_id: int, enabled: bool
    ) -> Optional[SyncConfiguration]:
        return await self._run(
            self._set_flag, configuration_id, "auto_sync_enabled", enabled
        )

    def _set_flag(self, configuration_id: int, flag: str, value: bool):
        with Session(self.engine) as s:
            config = s.get(SyncConfiguration, configuration_id)
            if config is None:
                return None
            setattr(config, flag, value)
            config.updated_at = datetime.utcnow()
            s.add(config)
            s.commit()
            s.refresh(config)
            return config

    # ─── Schedules ───────────────────────────────────────────────────────────

    async def get_schedule(self, configuration_id: int) -> Optional[SyncSchedule]:
        return await self._run(self._get_schedule, configuration_id)

    def _get_schedule(self, configuration_id: int) -> Optional[SyncSchedule]:
        with Session(self.engine) as s:
            return s.exec(
                select(SyncSchedule).where(SyncSchedule.configuration_id == configuration_id)
            ).first()

    async def upsert_schedule(
        self, configuration_id: int, cron_expression: str, next_run: Optional[datetime]
    ) -> SyncSchedule:
        return await self._run(
            self._upsert_schedule, configuration_id, cron_expression, next_run
        )

    def _upsert_schedule(self, configuration_id, cron_expression, next_run) -> SyncSchedule:
        with Session(self.engine) as s:
            schedule = s.exec(
                select(SyncSchedule).where(SyncSchedule.configuration_id == configuration_id)
            ).first()
            if schedule is None:
                schedule = SyncSchedule(
                    configuration_id=configuration_id,
                    cron_expression=cron_expression,
                    next_run=next_run,
                )
            else:
                schedule.cron_expression = cron_expression
                schedule.next_run = next_run
                schedule.updated_at = datetime.utcnow()
            s.add(schedule)
            s.commit()
            s.refresh(schedule)
            return schedule

    async def update_schedule_run_times(
        self,
        configuration_id: int,
        last_run: Optional[datetime],
        next_run: Optional[datetime],
    ) -> None:
        """Refresh run timestamps. Only the fields passed as non-None are written."""
        await self._run(self._update_run_times, configuration_id, last_run, next_run)

    def _update_run_times(self, configuration_id, last_run, next_run) -> None:
        with Session(self.engine) as s:
            schedule = s.exec(
                select(SyncSchedule).where(SyncSchedule.configuration_id == configuration_id)
            ).first()
            if schedule is None:
                raise PersistenceError(
                    f"No schedule for configuration {configuration_id}"
                )
            if last_run is not None:
                schedule.last_run = last_run
            if next_run is not None:
                schedule.next_run = next_run
            schedule.updated_at = datetime.utcnow()
            s.add(schedule)
            s.commit()

    # ─── Logs ────────────────────────────────────────────────────────────────

    async def create_log(self, data: Dict[str, Any]) -> int:
        return await self._run(self._create_log, data)

    def _create_log(self, data: Dict[str, Any]) -> int:
        log = SyncLog(**{k: v for k, v in data.items() if k in _LOG_FIELDS})
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
            return log.id

    async def update_log(self, log_id: int, data: Dict[str, Any]) -> None:
        await self._run(self._update_log, log_id, data)

    def _update_log(self, log_id: int, data: Dict[str, Any]) -> None:
        with Session(self.engine) as s:
            log = s.get(SyncLog, log_id)
            if log is None:
                raise PersistenceError(f"Sync log {log_id} not found")
            for k, v in data.items():
                if k in _LOG_FIELDS:
                    setattr(log, k, v)
            s.add(log)
            s.commit()

    async def get_log(self, log_id: int) -> Optional[SyncLog]:
        return await self._run(self._get, SyncLog, log_id)

    async def list_logs(
        self, status: Optional[str], page: int, limit: int
    ) -> Tuple[List[SyncLog], int]:
        """One page of logs, most recent first, plus the total matching count."""
        return await self._run(self._list_logs, status, page, limit)

    def _list_logs(self, status, page, limit):
        with Session(self.engine) as s:
            query = select(SyncLog)
            count_query = select(func.count()).select_from(SyncLog)
            if status:
                query = query.where(SyncLog.status == status)
                count_query = count_query.where(SyncLog.status == status)
            logs = s.exec(
                query.order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            total = s.exec(count_query).one()
            return list(logs), total

    async def aggregate_logs(self, since: datetime) -> List[SyncLog]:
        """All logs started at or after `since`, most recent first."""
        return await self._run(self._aggregate_logs, since)

    def _aggregate_logs(self, since: datetime) -> List[SyncLog]:
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(SyncLog)
                    .where(SyncLog.started_at >= since)
                    .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
                ).all()
            )
