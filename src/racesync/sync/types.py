"""Value types shared by the executor, the scheduler and the API."""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from racesync.errors import ValidationError


class SyncType(str, Enum):
    EVENTS = "events"
    NEWS = "news"
    ALL = "all"


class TriggerType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    TEST = "test"


class SyncStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceCounts(BaseModel):
    usabmx: int = 0
    uci: int = 0

    @property
    def total(self) -> int:
        return self.usabmx + self.uci


class SyncResult(BaseModel):
    """Normalized outcome of one data-source call, whatever the sync type."""

    success: bool
    events: SourceCounts = Field(default_factory=SourceCounts)
    news: SourceCounts = Field(default_factory=SourceCounts)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_events(cls, raw: Dict[str, Any]) -> "SyncResult":
        return cls(
            success=bool(raw["success"]),
            events=SourceCounts(usabmx=raw.get("usabmx", 0), uci=raw.get("uci", 0)),
            errors=list(raw.get("errors") or []),
        )

    @classmethod
    def from_news(cls, raw: Dict[str, Any]) -> "SyncResult":
        return cls(
            success=bool(raw["success"]),
            news=SourceCounts(usabmx=raw.get("usabmx", 0), uci=raw.get("uci", 0)),
            errors=list(raw.get("errors") or []),
        )

    @classmethod
    def from_all(cls, raw: Dict[str, Any]) -> "SyncResult":
        return cls(
            success=bool(raw["success"]),
            events=SourceCounts(**(raw.get("events") or {})),
            news=SourceCounts(**(raw.get("news") or {})),
            errors=list(raw.get("errors") or []),
        )


class ExecutionResult(BaseModel):
    """What execute_sync_with_logging hands back. result is None when the run raised."""

    success: bool
    log_id: int
    result: Optional[SyncResult] = None


def coerce_sync_type(value) -> SyncType:
    try:
        return SyncType(value)
    except ValueError:
        raise ValidationError(f"Invalid sync type: {value!r}") from None


def coerce_trigger_type(value) -> TriggerType:
    try:
        return TriggerType(value)
    except ValueError:
        raise ValidationError(f"Invalid trigger type: {value!r}") from None


def sync_type_for(configuration) -> SyncType:
    """Pick the narrowest sync type that covers a configuration's scope flags."""
    if configuration.sync_events and not configuration.sync_news:
        return SyncType.EVENTS
    if configuration.sync_news and not configuration.sync_events:
        return SyncType.NEWS
    return SyncType.ALL


def validate_configuration_id(configuration_id) -> None:
    """Raise ValidationError unless `configuration_id` is a positive int (bools rejected)."""
    if (
        isinstance(configuration_id, bool)
        or not isinstance(configuration_id, int)
        or configuration_id <= 0
    ):
        raise ValidationError(f"Invalid configuration id: {configuration_id!r}")
