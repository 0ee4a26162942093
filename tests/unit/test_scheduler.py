"""Tests for SyncScheduler task bookkeeping and the scheduled job body."""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from racesync.config import Settings
from racesync.errors import InternalError, NotFoundError, SyncInProgressError, ValidationError
from racesync.scheduler.jobs import build_notifier, build_scheduler
from racesync.scheduler.sync_scheduler import SyncScheduler
from racesync.sync.notifications import LogNotificationSink, TelegramNotificationSink
from racesync.sync.types import ExecutionResult


def _config(id=42, **overrides):
    fields = dict(
        id=id,
        name=f"config {id}",
        is_active=True,
        auto_sync_enabled=True,
        notifications_enabled=True,
        notification_email=None,
        sync_events=True,
        sync_news=True,
        timeout_minutes=30,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _schedule(configuration_id=42, cron="0 2 * * *"):
    return SimpleNamespace(configuration_id=configuration_id, cron_expression=cron)


def _mock_store(configurations=()):
    store = AsyncMock()
    store.list_active_auto_sync_configurations = AsyncMock(return_value=list(configurations))
    store.get_configuration = AsyncMock(
        side_effect=lambda cid: next((c for c, _ in configurations if c.id == cid), None)
    )
    store.get_schedule = AsyncMock(
        side_effect=lambda cid: next((s for c, s in configurations if c.id == cid), None)
    )
    return store


def _mock_manager(success=True):
    manager = AsyncMock()
    manager.execute_sync_with_logging = AsyncMock(
        return_value=ExecutionResult(success=success, log_id=7)
    )
    return manager


@pytest_asyncio.fixture
async def make_scheduler():
    """Factory for SyncSchedulers on mocks; every one is shut down in-loop afterwards."""
    created = []

    def _make(configurations=(), manager=None, notifier=None):
        scheduler = SyncScheduler(
            manager=manager or _mock_manager(),
            store=_mock_store(configurations),
            notifier=notifier,
            timezone="UTC",
        )
        created.append(scheduler)
        return scheduler

    yield _make

    for scheduler in created:
        await scheduler.shutdown()
    await asyncio.sleep(0)


# ─── Task registration ────────────────────────────────────────────────────────

class TestScheduleTask:
    @pytest.mark.asyncio
    async def test_registers_one_job(self, make_scheduler):
        scheduler = make_scheduler()
        task = await scheduler.schedule_task(42, "0 2 * * *")

        assert list(scheduler.tasks) == [42]
        assert task.cron_expression == "0 2 * * *"
        assert task.job.id == "config_42"
        assert task.running

    @pytest.mark.asyncio
    async def test_job_is_cron_with_overlap_guards(self, make_scheduler):
        scheduler = make_scheduler()
        task = await scheduler.schedule_task(42, "15 4 * * *")

        assert task.job.trigger.__class__.__name__ == "CronTrigger"
        assert task.job.max_instances == 1
        assert task.job.coalesce is True

    @pytest.mark.asyncio
    async def test_rescheduling_replaces_the_job(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.schedule_task(42, "0 2 * * *")
        await scheduler.schedule_task(42, "0 3 * * *")

        assert len(scheduler.tasks) == 1
        assert scheduler.tasks[42].cron_expression == "0 3 * * *"
        assert len(scheduler._scheduler.get_jobs()) == 1

    @pytest.mark.asyncio
    async def test_invalid_cron_leaves_existing_task(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.schedule_task(42, "0 2 * * *")

        with pytest.raises(ValidationError):
            await scheduler.schedule_task(42, "not a cron")

        assert scheduler.tasks[42].cron_expression == "0 2 * * *"

    @pytest.mark.asyncio
    async def test_invalid_cron_registers_nothing(self, make_scheduler):
        scheduler = make_scheduler()
        with pytest.raises(ValidationError):
            await scheduler.schedule_task(42, "* * *")
        assert scheduler.tasks == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", [0, -1, None, "42", True])
    async def test_invalid_configuration_id(self, make_scheduler, bad_id):
        scheduler = make_scheduler()
        with pytest.raises(ValidationError):
            await scheduler.schedule_task(bad_id, "0 2 * * *")
        assert scheduler.tasks == {}

    @pytest.mark.asyncio
    async def test_next_run_written_to_store(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.schedule_task(42, "0 2 * * *")

        scheduler.store.update_schedule_run_times.assert_awaited_once()
        args = scheduler.store.update_schedule_run_times.call_args.args
        assert args[0] == 42
        assert args[1] is None
        assert args[2].hour == 2 and args[2].minute == 0

    @pytest.mark.asyncio
    async def test_store_failure_does_not_undo_registration(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.store.update_schedule_run_times.side_effect = RuntimeError("db down")

        await scheduler.schedule_task(42, "0 2 * * *")

        assert 42 in scheduler.tasks


class TestCancelTask:
    @pytest.mark.asyncio
    async def test_cancel_removes_job(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.schedule_task(42, "0 2 * * *")

        assert await scheduler.cancel_task(42) is True
        assert scheduler.tasks == {}
        assert scheduler._scheduler.get_jobs() == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_is_noop(self, make_scheduler):
        scheduler = make_scheduler()
        assert await scheduler.cancel_task(999) is False

    @pytest.mark.asyncio
    async def test_cancel_twice(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.schedule_task(42, "0 2 * * *")
        await scheduler.cancel_task(42)
        assert await scheduler.cancel_task(42) is False


# ─── Lifecycle ────────────────────────────────────────────────────────────────

class TestInitialize:
    @pytest.mark.asyncio
    async def test_schedules_each_configuration_with_a_schedule(self, make_scheduler):
        scheduler = make_scheduler(
            [
                (_config(1), _schedule(1, "0 2 * * *")),
                (_config(2), _schedule(2, "0 */6 * * *")),
                (_config(3), None),
            ]
        )
        await scheduler.initialize()

        assert scheduler.initialized
        assert sorted(scheduler.tasks) == [1, 2]

    @pytest.mark.asyncio
    async def test_second_initialize_is_noop(self, make_scheduler):
        scheduler = make_scheduler([(_config(1), _schedule(1))])
        await scheduler.initialize()
        await scheduler.initialize()

        assert scheduler.store.list_active_auto_sync_configurations.await_count == 1
        assert len(scheduler.tasks) == 1

    @pytest.mark.asyncio
    async def test_invalid_stored_cron_is_skipped(self, make_scheduler):
        scheduler = make_scheduler(
            [
                (_config(1), _schedule(1, "bogus")),
                (_config(2), _schedule(2, "0 2 * * *")),
            ]
        )
        await scheduler.initialize()

        assert scheduler.initialized
        assert list(scheduler.tasks) == [2]

    @pytest.mark.asyncio
    async def test_load_failure_propagates(self, make_scheduler):
        scheduler = make_scheduler()
        scheduler.store.list_active_auto_sync_configurations.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await scheduler.initialize()
        assert not scheduler.initialized

    @pytest.mark.asyncio
    async def test_stop_all(self, make_scheduler):
        scheduler = make_scheduler([(_config(1), _schedule(1)), (_config(2), _schedule(2))])
        await scheduler.initialize()
        await scheduler.stop_all()

        assert scheduler.tasks == {}
        assert not scheduler.initialized
        assert scheduler.get_scheduled_tasks_status()["total_tasks"] == 0

    @pytest.mark.asyncio
    async def test_reload_picks_up_changes(self, make_scheduler):
        scheduler = make_scheduler([(_config(1), _schedule(1))])
        await scheduler.initialize()

        scheduler.store.list_active_auto_sync_configurations.return_value = [
            (_config(2), _schedule(2, "30 5 * * *"))
        ]
        await scheduler.reload_configurations()

        assert list(scheduler.tasks) == [2]
        assert scheduler.initialized

    @pytest.mark.asyncio
    async def test_concurrent_reloads_leave_one_task_per_configuration(self, make_scheduler):
        scheduler = make_scheduler([(_config(1), _schedule(1)), (_config(2), _schedule(2))])

        await asyncio.gather(
            scheduler.reload_configurations(),
            scheduler.reload_configurations(),
            scheduler.schedule_task(1, "0 4 * * *"),
        )

        assert sorted(scheduler.tasks) == [1, 2]
        assert len(scheduler._scheduler.get_jobs()) == 2


class TestStatus:
    @pytest.mark.asyncio
    async def test_tasks_status_snapshot(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.schedule_task(42, "0 2 * * *")

        status = scheduler.get_scheduled_tasks_status()

        assert status["total_tasks"] == 1
        assert status["initialized"] is False
        task = status["tasks"][0]
        assert task["configuration_id"] == 42
        assert task["cron_expression"] == "0 2 * * *"
        assert task["running"] is True
        assert task["next_run_time"].tzinfo is None

    @pytest.mark.asyncio
    async def test_get_status_includes_active_configuration(self, make_scheduler):
        manager = _mock_manager()
        manager.get_active_configuration = AsyncMock(return_value={"id": 42, "name": "Nightly"})
        scheduler = make_scheduler(manager=manager)
        await scheduler.schedule_task(42, "0 2 * * *")

        status = await scheduler.get_status()

        assert status["active_configuration"]["id"] == 42
        assert status["system_status"] == {
            "has_active_tasks": True,
            "scheduler_initialized": False,
            "auto_sync_configured": True,
        }


# ─── Scheduled job body ───────────────────────────────────────────────────────

class TestExecuteScheduledSync:
    @pytest.mark.asyncio
    async def test_runs_executor_with_scheduled_trigger(self, make_scheduler):
        scheduler = make_scheduler([(_config(42), _schedule(42))])

        await scheduler.execute_scheduled_sync(42)

        scheduler.manager.execute_sync_with_logging.assert_awaited_once_with(
            "all", "scheduled", None, 42, timeout_seconds=1800
        )

    @pytest.mark.asyncio
    async def test_sync_type_follows_scope_flags(self, make_scheduler):
        scheduler = make_scheduler([(_config(42, sync_news=False), _schedule(42))])

        await scheduler.execute_scheduled_sync(42)

        assert scheduler.manager.execute_sync_with_logging.call_args.args[0] == "events"

    @pytest.mark.asyncio
    async def test_updates_last_run(self, make_scheduler):
        scheduler = make_scheduler([(_config(42), _schedule(42))])

        await scheduler.execute_scheduled_sync(42)

        args = scheduler.store.update_schedule_run_times.call_args.args
        assert args[0] == 42
        assert args[1] is not None
        assert args[2] is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides", [{"is_active": False}, {"auto_sync_enabled": False}]
    )
    async def test_inactive_configuration_cancels_itself(self, make_scheduler, overrides):
        scheduler = make_scheduler([(_config(42, **overrides), _schedule(42))])
        await scheduler.schedule_task(42, "0 2 * * *")

        await scheduler.execute_scheduled_sync(42)

        scheduler.manager.execute_sync_with_logging.assert_not_awaited()
        assert 42 not in scheduler.tasks

    @pytest.mark.asyncio
    async def test_missing_configuration_cancels_itself(self, make_scheduler):
        scheduler = make_scheduler()
        await scheduler.schedule_task(42, "0 2 * * *")

        await scheduler.execute_scheduled_sync(42)

        scheduler.manager.execute_sync_with_logging.assert_not_awaited()
        assert scheduler.tasks == {}

    @pytest.mark.asyncio
    async def test_executor_error_records_failure_log(self, make_scheduler):
        manager = _mock_manager()
        manager.execute_sync_with_logging.side_effect = RuntimeError("store exploded")
        scheduler = make_scheduler([(_config(42), _schedule(42))], manager=manager)

        await scheduler.execute_scheduled_sync(42)  # does not raise

        manager.record_failure.assert_awaited_once()
        args = manager.record_failure.call_args.args
        assert args[:3] == ("all", "scheduled", 42)
        assert isinstance(args[3], InternalError)
        assert str(args[3]) == "store exploded"

    @pytest.mark.asyncio
    async def test_failure_log_error_is_swallowed(self, make_scheduler):
        manager = _mock_manager()
        manager.execute_sync_with_logging.side_effect = RuntimeError("boom")
        manager.record_failure.side_effect = RuntimeError("still down")
        scheduler = make_scheduler([(_config(42), _schedule(42))], manager=manager)

        await scheduler.execute_scheduled_sync(42)

    @pytest.mark.asyncio
    async def test_failed_run_notifies(self, make_scheduler):
        notifier = AsyncMock()
        scheduler = make_scheduler(
            [(_config(42), _schedule(42))], manager=_mock_manager(success=False), notifier=notifier
        )

        await scheduler.execute_scheduled_sync(42)

        notifier.notify_failure.assert_awaited_once()
        configuration, result = notifier.notify_failure.call_args.args
        assert configuration.id == 42
        assert result.log_id == 7

    @pytest.mark.asyncio
    async def test_successful_run_does_not_notify(self, make_scheduler):
        notifier = AsyncMock()
        scheduler = make_scheduler([(_config(42), _schedule(42))], notifier=notifier)

        await scheduler.execute_scheduled_sync(42)

        notifier.notify_failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifications_disabled(self, make_scheduler):
        notifier = AsyncMock()
        scheduler = make_scheduler(
            [(_config(42, notifications_enabled=False), _schedule(42))],
            manager=_mock_manager(success=False),
            notifier=notifier,
        )

        await scheduler.execute_scheduled_sync(42)

        notifier.notify_failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifier_error_is_swallowed(self, make_scheduler):
        notifier = AsyncMock()
        notifier.notify_failure.side_effect = RuntimeError("telegram down")
        scheduler = make_scheduler(
            [(_config(42), _schedule(42))], manager=_mock_manager(success=False), notifier=notifier
        )

        await scheduler.execute_scheduled_sync(42)

    @pytest.mark.asyncio
    async def test_overlapping_fire_is_skipped(self, make_scheduler):
        release = asyncio.Event()
        calls = []

        async def slow_run(*args, **kwargs):
            calls.append(args)
            await release.wait()
            return ExecutionResult(success=True, log_id=1)

        manager = _mock_manager()
        manager.execute_sync_with_logging.side_effect = slow_run
        scheduler = make_scheduler([(_config(42), _schedule(42))], manager=manager)

        first = asyncio.create_task(scheduler.execute_scheduled_sync(42))
        while not calls:
            await asyncio.sleep(0.01)
        await scheduler.execute_scheduled_sync(42)
        release.set()
        await first

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_does_not_abort_in_flight_run(self, make_scheduler):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_run(*args, **kwargs):
            started.set()
            await release.wait()
            return ExecutionResult(success=True, log_id=1)

        manager = _mock_manager()
        manager.execute_sync_with_logging.side_effect = slow_run
        scheduler = make_scheduler([(_config(42), _schedule(42))], manager=manager)
        await scheduler.schedule_task(42, "0 2 * * *")

        run = asyncio.create_task(scheduler.execute_scheduled_sync(42))
        await started.wait()
        await scheduler.cancel_task(42)
        release.set()
        await run

        assert not run.cancelled()
        assert scheduler.tasks == {}


class TestTestRun:
    @pytest.mark.asyncio
    async def test_runs_with_test_trigger(self, make_scheduler):
        scheduler = make_scheduler([(_config(42, timeout_minutes=5), _schedule(42))])

        result = await scheduler.test_run(42, triggered_by=3)

        assert result.log_id == 7
        scheduler.manager.execute_sync_with_logging.assert_awaited_once_with(
            "all", "test", 3, 42, timeout_seconds=300
        )

    @pytest.mark.asyncio
    async def test_unknown_configuration(self, make_scheduler):
        scheduler = make_scheduler()
        with pytest.raises(NotFoundError):
            await scheduler.test_run(42)

    @pytest.mark.asyncio
    async def test_invalid_id(self, make_scheduler):
        scheduler = make_scheduler()
        with pytest.raises(ValidationError):
            await scheduler.test_run(0)

    @pytest.mark.asyncio
    async def test_rejected_while_scheduled_run_in_flight(self, make_scheduler):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_run(*args, **kwargs):
            started.set()
            await release.wait()
            return ExecutionResult(success=True, log_id=1)

        manager = _mock_manager()
        manager.execute_sync_with_logging.side_effect = slow_run
        scheduler = make_scheduler([(_config(42), _schedule(42))], manager=manager)

        scheduled = asyncio.create_task(scheduler.execute_scheduled_sync(42))
        await started.wait()
        with pytest.raises(SyncInProgressError):
            await scheduler.test_run(42)
        release.set()
        await scheduled

        assert manager.execute_sync_with_logging.await_count == 1

    @pytest.mark.asyncio
    async def test_scheduled_fire_skipped_during_test_run(self, make_scheduler):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_run(*args, **kwargs):
            started.set()
            await release.wait()
            return ExecutionResult(success=True, log_id=1)

        manager = _mock_manager()
        manager.execute_sync_with_logging.side_effect = slow_run
        scheduler = make_scheduler([(_config(42), _schedule(42))], manager=manager)

        test_run = asyncio.create_task(scheduler.test_run(42))
        await started.wait()
        await scheduler.execute_scheduled_sync(42)
        release.set()
        await test_run

        assert manager.execute_sync_with_logging.await_count == 1
        assert manager.execute_sync_with_logging.call_args.args[1] == "test"

    @pytest.mark.asyncio
    async def test_in_flight_released_after_failure(self, make_scheduler):
        manager = _mock_manager()
        manager.execute_sync_with_logging.side_effect = [
            RuntimeError("store down"),
            ExecutionResult(success=True, log_id=2),
        ]
        scheduler = make_scheduler([(_config(42), _schedule(42))], manager=manager)

        with pytest.raises(RuntimeError):
            await scheduler.test_run(42)
        result = await scheduler.test_run(42)

        assert result.log_id == 2


# ─── Wiring ───────────────────────────────────────────────────────────────────

class TestBuildScheduler:
    def test_returns_sync_scheduler(self):
        scheduler = build_scheduler(MagicMock(), settings=Settings(), client=AsyncMock())
        assert isinstance(scheduler, SyncScheduler)
        assert isinstance(scheduler._scheduler, AsyncIOScheduler)

    def test_scheduler_not_running_on_creation(self):
        """build_scheduler should not auto-start."""
        scheduler = build_scheduler(MagicMock(), settings=Settings(), client=AsyncMock())
        assert not scheduler._scheduler.running
        assert not scheduler.initialized

    def test_timezone_from_settings(self):
        settings = Settings(scheduler_timezone="Europe/Madrid")
        scheduler = build_scheduler(MagicMock(), settings=settings, client=AsyncMock())
        assert scheduler.timezone == "Europe/Madrid"
        assert scheduler.manager.timezone == "Europe/Madrid"

    def test_manager_and_scheduler_share_store(self):
        scheduler = build_scheduler(MagicMock(), settings=Settings(), client=AsyncMock())
        assert scheduler.manager.store is scheduler.store

    def test_log_notifier_without_telegram(self):
        assert isinstance(build_notifier(Settings(telegram_bot_token="")), LogNotificationSink)

    def test_telegram_notifier_when_configured(self):
        settings = Settings(telegram_bot_token="123:abc", telegram_chat_id=555)
        notifier = build_notifier(settings)
        assert isinstance(notifier, TelegramNotificationSink)
        assert notifier.chat_id == 555
