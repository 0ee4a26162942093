"""
Service wiring for the scheduled sync engine.

build_scheduler() constructs the store, scraper client, executor and
notification sink once and hands back the SyncScheduler that owns them.
The API lifespan (and the CLI) call it at process start; nothing in the
package keeps these objects as module globals.
"""
import logging
from typing import Optional

from racesync.config import Settings, get_settings
from racesync.scheduler.sync_scheduler import SyncScheduler
from racesync.scraper.client import ScraperClient
from racesync.store.configuration_store import SqlConfigurationStore
from racesync.sync.manager import SyncManager
from racesync.sync.notifications import LogNotificationSink, TelegramNotificationSink

logger = logging.getLogger(__name__)


def build_notifier(settings: Settings):
    """Telegram when a bot token and chat id are configured, the log otherwise."""
    if settings.telegram_bot_token and settings.telegram_chat_id:
        return TelegramNotificationSink(
            token=settings.telegram_bot_token, chat_id=settings.telegram_chat_id
        )
    logger.info("Telegram not configured; failure notices go to the log.")
    return LogNotificationSink()


def build_scheduler(engine, settings: Optional[Settings] = None, client=None) -> SyncScheduler:
    """
    Create and wire the SyncScheduler and its collaborators.

    Args:
        engine: SQLAlchemy engine backing the store and the scraped content.
        settings: Settings override (defaults to get_settings()).
        client: DataSourceClient override (defaults to a ScraperClient).

    Returns:
        SyncScheduler, not yet initialized. Its executor is `scheduler.manager`.
    """
    settings = settings or get_settings()
    store = SqlConfigurationStore(engine)
    client = client or ScraperClient(engine)
    manager = SyncManager(store=store, client=client, timezone=settings.scheduler_timezone)
    return SyncScheduler(
        manager=manager,
        store=store,
        notifier=build_notifier(settings),
        timezone=settings.scheduler_timezone,
    )
