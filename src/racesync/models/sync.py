"""Sync configuration, schedule and audit log models."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class SyncConfiguration(SQLModel, table=True):
    """Named set of toggles describing what, when and how to synchronize."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    description: Optional[str] = None
    is_active: bool = True
    sync_frequency: str = "daily"
    sync_time: Optional[str] = "02:00"

    # Scope
    sync_events: bool = True
    sync_news: bool = True
    sync_usabmx: bool = True
    sync_uci: bool = True

    auto_sync_enabled: bool = False
    notifications_enabled: bool = True
    notification_email: Optional[str] = None
    max_retries: int = 3
    timeout_minutes: int = 30

    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SyncSchedule(SQLModel, table=True):
    """Cron binding for one configuration. next_run is display data only."""

    id: Optional[int] = Field(default=None, primary_key=True)
    configuration_id: int = Field(
        foreign_key="syncconfiguration.id", unique=True, index=True
    )
    cron_expression: str
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SyncLog(SQLModel, table=True):
    """One row per sync attempt. status: "running" -> "completed" | "failed"."""

    id: Optional[int] = Field(default=None, primary_key=True)
    sync_type: str = Field(index=True)  # "events", "news", "all"
    trigger_type: str = "manual"  # "manual", "scheduled", "test"
    status: str = Field(default="running", index=True)
    started_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    events_synced: int = 0
    news_synced: int = 0
    events_usabmx: int = 0
    events_uci: int = 0
    news_usabmx: int = 0
    news_uci: int = 0

    total_errors: int = 0
    error_details: List[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )

    configuration_id: Optional[int] = Field(
        default=None, foreign_key="syncconfiguration.id", index=True
    )
    triggered_by: Optional[int] = None
    scraper_health: Optional[bool] = None
