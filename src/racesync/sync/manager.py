"""
SyncManager: runs one synchronization attempt end to end with an audit log.

Flow for execute_sync_with_logging():
  1. Snapshot scraper health (errors count as unhealthy)
  2. Create SyncLog (status="running")
  3. Dispatch to sync_events / sync_news / sync_all, normalized to SyncResult
  4. Update SyncLog to "completed" or "failed" with counts and error details

If the dispatch raises (or exceeds its deadline) the log is marked "failed"
with the single error message and {success: False, log_id} is returned.
Every path that creates a log finishes it exactly once; a cancelled run is
finalized as "failed" before the cancellation propagates.

Also owns configuration upserts and the statistics/log queries used by the
control plane.
"""
import asyncio
import logging
import math
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from racesync.errors import NotFoundError, TransientExternalError, ValidationError
from racesync.models.sync import SyncConfiguration
from racesync.scheduler.cron import next_run, validate_cron
from racesync.sync.best_effort import best_effort
from racesync.sync.interfaces import ConfigurationStore, DataSourceClient
from racesync.sync.types import (
    ExecutionResult,
    SyncResult,
    SyncStatus,
    SyncType,
    coerce_sync_type,
    coerce_trigger_type,
    validate_configuration_id,
)

logger = logging.getLogger(__name__)

RECENT_LOGS_LIMIT = 10


class SyncManager:
    """Executor: turns one sync request into exactly one terminal log row."""

    def __init__(self, store: ConfigurationStore, client: DataSourceClient, timezone: str = "UTC"):
        """
        Args:
            store: ConfigurationStore (SqlConfigurationStore, or AsyncMock in tests).
            client: DataSourceClient (ScraperClient, or AsyncMock in tests).
            timezone: Zone the cron expressions are evaluated in for next_run.
        """
        self.store = store
        self.client = client
        self.timezone = timezone

    async def execute_sync_with_logging(
        self,
        sync_type: str = "all",
        trigger_type: str = "manual",
        triggered_by: Optional[int] = None,
        configuration_id: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Run one sync and record it.

        Args:
            sync_type: "events", "news" or "all".
            trigger_type: "manual", "scheduled" or "test".
            triggered_by: Optional id of the user who asked for the run.
            configuration_id: Optional configuration the run belongs to.
            timeout_seconds: Deadline for the data-source call, if any.

        Returns:
            ExecutionResult; `result` is None when the data-source call raised.

        Raises:
            ValidationError: unknown sync or trigger type (no log is written).
        """
        sync_type = coerce_sync_type(sync_type)
        trigger_type = coerce_trigger_type(trigger_type)

        scraper_health = await self._check_scraper_health()
        started = time.monotonic()
        log_id = await self.store.create_log(
            {
                "sync_type": sync_type.value,
                "trigger_type": trigger_type.value,
                "status": SyncStatus.RUNNING.value,
                "triggered_by": triggered_by,
                "configuration_id": configuration_id,
                "scraper_health": scraper_health,
                "started_at": datetime.utcnow(),
            }
        )

        try:
            result = await self._dispatch(sync_type, timeout_seconds)
        except asyncio.CancelledError:
            await self._finish_sync_log(
                log_id, started, status=SyncStatus.FAILED, errors=["Sync cancelled"]
            )
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            await self._finish_sync_log(
                log_id, started, status=SyncStatus.FAILED, errors=[message]
            )
            logger.error("Sync %s failed: %s", log_id, message)
            return ExecutionResult(success=False, log_id=log_id)

        recorded = await self._finish_sync_log(
            log_id,
            started,
            status=SyncStatus.COMPLETED if result.success else SyncStatus.FAILED,
            errors=result.errors,
            result=result,
        )
        if not recorded:
            return ExecutionResult(success=False, log_id=log_id, result=result)
        logger.info(
            "Sync %s %s (%s, %s): %d events, %d news, %d errors",
            log_id,
            "completed" if result.success else "failed",
            sync_type.value,
            trigger_type.value,
            result.events.total,
            result.news.total,
            len(result.errors),
        )
        return ExecutionResult(success=result.success, log_id=log_id, result=result)

    async def record_failure(
        self,
        sync_type: str,
        trigger_type: str,
        configuration_id: Optional[int],
        error: BaseException,
    ) -> int:
        """Write a single log row directly in the "failed" state. Returns its id."""
        now = datetime.utcnow()
        return await self.store.create_log(
            {
                "sync_type": coerce_sync_type(sync_type).value,
                "trigger_type": coerce_trigger_type(trigger_type).value,
                "status": SyncStatus.FAILED.value,
                "configuration_id": configuration_id,
                "started_at": now,
                "completed_at": now,
                "total_errors": 1,
                "error_details": [str(error)],
            }
        )

    # ─── Configurations ──────────────────────────────────────────────────────

    async def upsert_configuration(self, data: Dict[str, Any]) -> SyncConfiguration:
        """
        Create or update a configuration by name; upsert its schedule when a
        cron_expression is supplied.

        A failed schedule write is logged and does not undo the configuration
        write.

        Raises:
            ValidationError: missing name or malformed cron expression.
        """
        data = dict(data)
        cron_expression = data.pop("cron_expression", None)
        if not data.get("name"):
            raise ValidationError("Configuration name is required")
        if cron_expression:
            validate_cron(cron_expression)

        configuration = await self.store.upsert_configuration(data)

        if cron_expression:
            await best_effort(
                self.store.upsert_schedule(
                    configuration.id,
                    cron_expression,
                    next_run(cron_expression, self.timezone),
                ),
                f"schedule upsert for configuration {configuration.id}",
            )
        return configuration

    async def toggle_configuration(self, configuration_id: int, is_active: bool) -> SyncConfiguration:
        """Flip is_active. Live timers are reconciled by the caller (reload)."""
        configuration = await self.store.set_configuration_active(configuration_id, is_active)
        if configuration is None:
            raise NotFoundError(f"Configuration {configuration_id} not found")
        return configuration

    async def set_auto_sync(
        self,
        configuration_id: int,
        enabled: bool,
        cron_expression: Optional[str] = None,
    ) -> SyncConfiguration:
        """Enable or disable auto-sync for a configuration, optionally rebinding its cron."""
        validate_configuration_id(configuration_id)
        if cron_expression:
            validate_cron(cron_expression)

        configuration = await self.store.set_auto_sync(configuration_id, enabled)
        if configuration is None:
            raise NotFoundError(f"Configuration {configuration_id} not found")
        if cron_expression:
            await self.store.upsert_schedule(
                configuration_id, cron_expression, next_run(cron_expression, self.timezone)
            )
        return configuration

    async def get_configurations(self) -> List[Dict[str, Any]]:
        rows = await self.store.list_configurations()
        return [
            {**config.model_dump(), "schedule": schedule, "log_count": log_count}
            for config, schedule, log_count in rows
        ]

    async def get_active_configuration(self) -> Optional[Dict[str, Any]]:
        """The first active configuration with auto-sync enabled, or None."""
        rows = await self.store.list_active_auto_sync_configurations()
        if not rows:
            return None
        config, schedule = rows[0]
        return {**config.model_dump(), "schedule": schedule}

    # ─── Statistics and logs ─────────────────────────────────────────────────

    async def get_sync_statistics(self, days: int = 30) -> Dict[str, Any]:
        """
        Aggregate the logs started in the last `days` days.

        average_duration_ms only counts logs that recorded a duration.
        """
        since = datetime.utcnow() - timedelta(days=days)
        logs = await self.store.aggregate_logs(since)

        successful = sum(1 for log in logs if log.status == SyncStatus.COMPLETED.value)
        failed = sum(1 for log in logs if log.status == SyncStatus.FAILED.value)
        durations = [log.duration_ms for log in logs if log.duration_ms is not None]

        return {
            "period": f"Last {days} days",
            "total_syncs": len(logs),
            "successful": successful,
            "failed": failed,
            "success_rate": (successful / len(logs)) * 100 if logs else 0,
            "total_events": sum(log.events_synced or 0 for log in logs),
            "total_news": sum(log.news_synced or 0 for log in logs),
            "average_duration_ms": round(sum(durations) / len(durations)) if durations else 0,
            "recent_logs": logs[:RECENT_LOGS_LIMIT],
        }

    async def get_sync_logs(
        self, page: int = 1, limit: int = 20, status: Optional[str] = None
    ) -> Dict[str, Any]:
        """Offset-paginated logs, most recent first."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        logs, total = await self.store.list_logs(status, page, limit)
        return {
            "logs": logs,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    # ─── Internal helpers ────────────────────────────────────────────────────

    async def _check_scraper_health(self) -> bool:
        try:
            health = await self.client.check_health()
            return bool(health.get("is_healthy"))
        except Exception as exc:
            logger.warning("Scraper health check failed: %s", exc)
            return False

    async def _dispatch(self, sync_type: SyncType, timeout_seconds: Optional[float]) -> SyncResult:
        if sync_type is SyncType.EVENTS:
            call, normalize = self.client.sync_events(), SyncResult.from_events
        elif sync_type is SyncType.NEWS:
            call, normalize = self.client.sync_news(), SyncResult.from_news
        else:
            call, normalize = self.client.sync_all(), SyncResult.from_all

        if not timeout_seconds:
            return normalize(await call)
        try:
            raw = await asyncio.wait_for(_client_timeouts_as_errors(call), timeout=timeout_seconds)
        except (asyncio.TimeoutError, TimeoutError):
            raise TransientExternalError(f"Sync timed out after {timeout_seconds:g}s") from None
        return normalize(raw)

    async def _finish_sync_log(
        self,
        log_id: int,
        started: float,
        *,
        status: SyncStatus,
        errors: List[str],
        result: Optional[SyncResult] = None,
    ) -> bool:
        """
        Move the log to its terminal state.

        If the full update cannot be written, a minimal "failed" update is
        tried instead and False is returned. Raises only if that fails too.
        """
        data: Dict[str, Any] = {
            "status": status.value,
            "completed_at": datetime.utcnow(),
            "duration_ms": int((time.monotonic() - started) * 1000),
            "total_errors": len(errors),
            "error_details": list(errors),
        }
        if result is not None:
            data.update(
                events_usabmx=result.events.usabmx,
                events_uci=result.events.uci,
                news_usabmx=result.news.usabmx,
                news_uci=result.news.uci,
                events_synced=result.events.total,
                news_synced=result.news.total,
            )
        try:
            await self.store.update_log(log_id, data)
            return True
        except Exception as exc:
            logger.exception("Recording the outcome of sync %s failed", log_id)
            await self.store.update_log(
                log_id,
                {
                    "status": SyncStatus.FAILED.value,
                    "completed_at": datetime.utcnow(),
                    "duration_ms": data["duration_ms"],
                    "total_errors": 1,
                    "error_details": [f"Failed to record sync result: {exc}"],
                },
            )
            return False


async def _client_timeouts_as_errors(call):
    """Await the client call, re-raising its own timeouts so they are not taken for the deadline."""
    try:
        return await call
    except (asyncio.TimeoutError, TimeoutError) as exc:
        raise TransientExternalError(str(exc) or "Data source timed out") from exc
