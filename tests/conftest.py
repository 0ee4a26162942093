"""Shared test fixtures."""
from datetime import datetime, timedelta
from typing import Generator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from racesync.models.content import Event, News  # noqa: F401
from racesync.models.sync import SyncConfiguration, SyncLog, SyncSchedule  # noqa: F401
from racesync.store.configuration_store import SqlConfigurationStore


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(engine) -> SqlConfigurationStore:
    return SqlConfigurationStore(engine)


ALL_OK = {
    "success": True,
    "events": {"usabmx": 5, "uci": 3},
    "news": {"usabmx": 2, "uci": 1},
    "errors": [],
}


def make_mock_client(sync_all=None, sync_events=None, sync_news=None, healthy=True):
    """DataSourceClient double with canned results."""
    client = AsyncMock()
    client.check_health = AsyncMock(return_value={"is_healthy": healthy})
    client.sync_all = AsyncMock(return_value=sync_all or ALL_OK)
    client.sync_events = AsyncMock(
        return_value=sync_events or {"success": True, "usabmx": 4, "uci": 2, "errors": []}
    )
    client.sync_news = AsyncMock(
        return_value=sync_news or {"success": True, "usabmx": 1, "uci": 1, "errors": []}
    )
    return client


@pytest.fixture(name="mock_client")
def mock_client_fixture():
    return make_mock_client()


def seed_configuration(session: Session, **overrides) -> SyncConfiguration:
    """Persist a configuration (auto-sync on, daily at 02:00 by default) with its schedule."""
    cron = overrides.pop("cron_expression", "0 2 * * *")
    fields = dict(name="Nightly", auto_sync_enabled=True, is_active=True)
    fields.update(overrides)
    config = SyncConfiguration(**fields)
    session.add(config)
    session.commit()
    session.refresh(config)
    if cron:
        session.add(SyncSchedule(configuration_id=config.id, cron_expression=cron))
        session.commit()
    return config


def seed_logs(session: Session, count: int, start: datetime = None, **fields) -> list:
    """Persist `count` completed logs one minute apart, oldest first."""
    start = start or datetime.utcnow() - timedelta(hours=count)
    logs = []
    for i in range(count):
        log = SyncLog(
            sync_type="all",
            trigger_type="manual",
            status=fields.get("status", "completed"),
            started_at=start + timedelta(minutes=i),
            duration_ms=fields.get("duration_ms"),
            events_synced=fields.get("events_synced", 0),
            news_synced=fields.get("news_synced", 0),
        )
        session.add(log)
        logs.append(log)
    session.commit()
    for log in logs:
        session.refresh(log)
    return logs
