"""
Failure notification sinks.

The scheduler calls notify_failure() through best_effort(), so a sink may
raise freely; the error is logged and never mistaken for a failed sync.
"""
import logging
from typing import Optional

from telegram import Bot

logger = logging.getLogger(__name__)

_TELEGRAM_MAX_LEN = 4096


def format_failure(configuration, result) -> str:
    """Human-readable summary of a failed run."""
    lines = [
        f"⚠️ Sync failed for configuration \"{configuration.name}\"",
        f"Log ID: {result.log_id}",
        f"Email: {configuration.notification_email or 'Not configured'}",
    ]
    if result.result is not None and result.result.errors:
        lines.append("Errors:")
        lines.extend(f"- {e}" for e in result.result.errors[:10])
    return "\n".join(lines)


class LogNotificationSink:
    """Writes failure notices to the application log."""

    async def notify_failure(self, configuration, result) -> None:
        logger.warning(format_failure(configuration, result))


class TelegramNotificationSink:
    """Sends failure notices to a Telegram chat via the Bot API."""

    def __init__(self, token: str, chat_id: int, bot: Optional[Bot] = None):
        """
        Args:
            token: Telegram bot token.
            chat_id: Chat that receives the notices.
            bot: Pre-built Bot (tests pass an AsyncMock).
        """
        self.chat_id = chat_id
        self._bot = bot or Bot(token=token)
        self._initialized = False

    async def notify_failure(self, configuration, result) -> None:
        if not self._initialized:
            await self._bot.initialize()
            self._initialized = True
        text = format_failure(configuration, result)
        await self._bot.send_message(chat_id=self.chat_id, text=text[:_TELEGRAM_MAX_LEN])
        logger.info(
            "Failure notice for configuration %s sent to chat %s",
            configuration.id,
            self.chat_id,
        )
