"""
SyncScheduler: owns one live APScheduler job per sync configuration.

Each configuration with auto-sync enabled gets a cron job on a shared
AsyncIOScheduler. When a job fires, execute_scheduled_sync() re-reads the
configuration, cancels itself if the configuration has been deactivated,
and otherwise hands the run to SyncManager with trigger_type="scheduled".

The task map is mutated only while holding self._lock, so a reload racing
with schedule_task()/cancel_task() can never leave two jobs for one
configuration. Runs themselves happen outside the lock: a slow run for one
configuration never delays another configuration's job, and cancel_task()
stops future firings without aborting a run already in flight.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from racesync.errors import (
    InternalError,
    NotFoundError,
    SyncError,
    SyncInProgressError,
    ValidationError,
)
from racesync.scheduler.cron import build_trigger, next_run
from racesync.sync.best_effort import best_effort
from racesync.sync.interfaces import ConfigurationStore, NotificationSink
from racesync.sync.manager import SyncManager
from racesync.sync.types import (
    ExecutionResult,
    SyncType,
    TriggerType,
    sync_type_for,
    validate_configuration_id,
)

logger = logging.getLogger(__name__)

MISFIRE_GRACE_SECONDS = 60


@dataclass
class ScheduledTask:
    """A registered cron job for one configuration."""

    configuration_id: int
    cron_expression: str
    job: Job

    @property
    def running(self) -> bool:
        # Paused or removed jobs have no next fire time
        return getattr(self.job, "next_run_time", None) is not None

    @property
    def next_run_time(self) -> Optional[datetime]:
        return getattr(self.job, "next_run_time", None)


class SyncScheduler:
    """Scheduler: translates configuration state into running/stopped cron jobs."""

    def __init__(
        self,
        manager: SyncManager,
        store: ConfigurationStore,
        notifier: Optional[NotificationSink] = None,
        timezone: str = "UTC",
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        """
        Args:
            manager: SyncManager that executes runs.
            store: ConfigurationStore for fresh configuration reads and schedule timestamps.
            notifier: Optional NotificationSink for failed scheduled runs.
            timezone: Zone the cron expressions are evaluated in.
            scheduler: AsyncIOScheduler to register jobs on (one is created if omitted).
        """
        self.manager = manager
        self.store = store
        self.notifier = notifier
        self.timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._tasks: Dict[int, ScheduledTask] = {}
        self._in_flight: Set[int] = set()
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def tasks(self) -> Dict[int, ScheduledTask]:
        """Snapshot of the registered tasks keyed by configuration id."""
        return dict(self._tasks)

    # ─── Lifecycle ───────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """
        Register a job for every active auto-sync configuration with a schedule.

        No-op if already initialized. A failure to load configurations is
        raised so the scheduler never reports itself ready without its jobs.
        """
        async with self._lock:
            await self._initialize()

    async def _initialize(self) -> None:
        if self._initialized:
            logger.info("Sync scheduler already initialized")
            return

        logger.info("Initializing sync scheduler...")
        configurations = await self.store.list_active_auto_sync_configurations()
        logger.info("Found %d active configurations", len(configurations))

        for configuration, schedule in configurations:
            if schedule is None:
                continue
            try:
                await self._schedule_task(configuration.id, schedule.cron_expression)
            except ValidationError as exc:
                logger.error(
                    "Skipping configuration %s with invalid schedule: %s",
                    configuration.id,
                    exc,
                )

        self._initialized = True
        logger.info("Sync scheduler initialized with %d tasks", len(self._tasks))

    async def reload_configurations(self) -> None:
        """Drop every job and initialize again from the store."""
        async with self._lock:
            logger.info("Reloading sync configurations...")
            self._cancel_all()
            self._initialized = False
            await self._initialize()

    async def stop_all(self) -> None:
        """Cancel every job and mark the scheduler uninitialized."""
        async with self._lock:
            logger.info("Stopping all scheduled tasks...")
            self._cancel_all()
            self._initialized = False
            logger.info("All scheduled tasks stopped")

    async def shutdown(self) -> None:
        """stop_all() and shut the underlying APScheduler down."""
        await self.stop_all()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    # ─── Task registration ───────────────────────────────────────────────────

    async def schedule_task(self, configuration_id: int, cron_expression: str) -> ScheduledTask:
        """
        Register (or replace) the cron job for a configuration.

        Raises:
            ValidationError: invalid id or cron expression; nothing changes.
        """
        async with self._lock:
            return await self._schedule_task(configuration_id, cron_expression)

    async def _schedule_task(self, configuration_id: int, cron_expression: str) -> ScheduledTask:
        validate_configuration_id(configuration_id)
        trigger = build_trigger(cron_expression, self.timezone)

        self._cancel_task(configuration_id)
        if not self._scheduler.running:
            self._scheduler.start()

        job = self._scheduler.add_job(
            self.execute_scheduled_sync,
            trigger=trigger,
            args=[configuration_id],
            id=f"config_{configuration_id}",
            name=f"sync configuration {configuration_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )
        task = ScheduledTask(configuration_id, cron_expression, job)
        self._tasks[configuration_id] = task
        logger.info(
            "Scheduled task created for configuration %s: %s",
            configuration_id,
            cron_expression,
        )

        await best_effort(
            self.store.update_schedule_run_times(
                configuration_id, None, next_run(cron_expression, self.timezone)
            ),
            f"next_run update for configuration {configuration_id}",
        )
        return task

    async def cancel_task(self, configuration_id: int) -> bool:
        """Remove a configuration's job. Returns False (no error) if none was registered."""
        async with self._lock:
            return self._cancel_task(configuration_id)

    def _cancel_task(self, configuration_id: int) -> bool:
        task = self._tasks.pop(configuration_id, None)
        if task is None:
            return False
        try:
            task.job.remove()
        except JobLookupError:
            pass  # already removed from the APScheduler side
        logger.info("Cancelled scheduled task for configuration %s", configuration_id)
        return True

    def _cancel_all(self) -> None:
        for configuration_id in list(self._tasks):
            self._cancel_task(configuration_id)

    # ─── Job body ────────────────────────────────────────────────────────────

    async def execute_scheduled_sync(self, configuration_id: int) -> None:
        """
        Job body for a fired cron trigger. Never raises.

        Overlapping fires for the same configuration are skipped while a run
        (scheduled or test) is still in flight.
        """
        if configuration_id in self._in_flight:
            logger.warning(
                "Sync for configuration %s still running; skipping this fire",
                configuration_id,
            )
            return

        self._in_flight.add(configuration_id)
        try:
            await self._execute_scheduled_sync(configuration_id)
        finally:
            self._in_flight.discard(configuration_id)

    async def _execute_scheduled_sync(self, configuration_id: int) -> None:
        logger.info("Executing scheduled sync for configuration %s", configuration_id)
        sync_type = SyncType.ALL

        try:
            configuration = await self.store.get_configuration(configuration_id)
            if (
                configuration is None
                or not configuration.is_active
                or not configuration.auto_sync_enabled
            ):
                logger.warning(
                    "Configuration %s is no longer active or auto-sync is disabled; cancelling its task",
                    configuration_id,
                )
                await self.cancel_task(configuration_id)
                return

            sync_type = sync_type_for(configuration)
            result = await self.manager.execute_sync_with_logging(
                sync_type.value,
                TriggerType.SCHEDULED.value,
                None,
                configuration_id,
                timeout_seconds=(configuration.timeout_minutes or 0) * 60 or None,
            )
        except Exception as exc:
            logger.exception("Error in scheduled sync for configuration %s", configuration_id)
            error = exc if isinstance(exc, SyncError) else InternalError(str(exc))
            await best_effort(
                self.manager.record_failure(
                    sync_type.value, TriggerType.SCHEDULED.value, configuration_id, error
                ),
                f"failure log for configuration {configuration_id}",
            )
            return

        await best_effort(
            self._update_last_run(configuration_id),
            f"last_run update for configuration {configuration_id}",
        )
        logger.info(
            "Scheduled sync completed for configuration %s: success=%s log_id=%s",
            configuration_id,
            result.success,
            result.log_id,
        )

        if not result.success and configuration.notifications_enabled and self.notifier is not None:
            await best_effort(
                self.notifier.notify_failure(configuration, result),
                f"failure notification for configuration {configuration_id}",
            )

    async def _update_last_run(self, configuration_id: int) -> None:
        schedule = await self.store.get_schedule(configuration_id)
        upcoming = next_run(schedule.cron_expression, self.timezone) if schedule else None
        await self.store.update_schedule_run_times(configuration_id, datetime.utcnow(), upcoming)

    # ─── Control plane ───────────────────────────────────────────────────────

    async def test_run(self, configuration_id: int, triggered_by: Optional[int] = None) -> ExecutionResult:
        """
        Run a configuration once right now with trigger_type="test".

        Raises:
            ValidationError: invalid id.
            NotFoundError: no such configuration.
            SyncInProgressError: a run for this configuration is already in flight.
        """
        validate_configuration_id(configuration_id)
        configuration = await self.store.get_configuration(configuration_id)
        if configuration is None:
            raise NotFoundError(f"Configuration {configuration_id} not found")
        if configuration_id in self._in_flight:
            raise SyncInProgressError(
                f"A sync for configuration {configuration_id} is already running"
            )

        self._in_flight.add(configuration_id)
        try:
            return await self.manager.execute_sync_with_logging(
                sync_type_for(configuration).value,
                TriggerType.TEST.value,
                triggered_by,
                configuration_id,
                timeout_seconds=(configuration.timeout_minutes or 0) * 60 or None,
            )
        finally:
            self._in_flight.discard(configuration_id)

    def get_scheduled_tasks_status(self) -> Dict[str, Any]:
        """Snapshot of the currently registered tasks."""
        tasks = [
            {
                "configuration_id": task.configuration_id,
                "cron_expression": task.cron_expression,
                "running": task.running,
                "next_run_time": _as_utc(task.next_run_time),
            }
            for task in self._tasks.values()
        ]
        return {
            "total_tasks": len(tasks),
            "initialized": self._initialized,
            "tasks": tasks,
        }

    async def get_status(self) -> Dict[str, Any]:
        """Scheduler snapshot plus the active auto-sync configuration."""
        scheduler_status = self.get_scheduled_tasks_status()
        active_configuration = await self.manager.get_active_configuration()
        return {
            "scheduler": scheduler_status,
            "active_configuration": active_configuration,
            "system_status": {
                "has_active_tasks": scheduler_status["total_tasks"] > 0,
                "scheduler_initialized": scheduler_status["initialized"],
                "auto_sync_configured": active_configuration is not None,
            },
        }


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
