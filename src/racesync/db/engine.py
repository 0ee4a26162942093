"""SQLModel engine singleton."""
from sqlmodel import SQLModel, create_engine

from racesync.config import get_settings

_engine = None


def get_engine():
    """Return the module-level engine, creating it and its tables on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # store calls run in a thread pool
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        # Import all models so metadata is populated before create_all
        from racesync.models.content import Event, News  # noqa
        from racesync.models.sync import SyncConfiguration, SyncLog, SyncSchedule  # noqa
        SQLModel.metadata.create_all(_engine)
    return _engine
