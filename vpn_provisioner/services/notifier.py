from __future__ import annotations

import logging
from typing import Protocol as TypingProtocol

from telegram import Bot
from telegram.constants import ParseMode

logger = logging.getLogger(__name__)


class Notifier(TypingProtocol):
    async def send(self, chat_id: str, text: str) -> None: ...


class TelegramNotifier:
    def __init__(self, token: str) -> None:
        self._bot = Bot(token=token)
        self._initialized = False

    async def send(self, chat_id: str, text: str) -> None:
        if not self._initialized:
            await self._bot.initialize()
            self._initialized = True
        await self._bot.send_message(chat_id=int(chat_id), text=text, parse_mode=ParseMode.MARKDOWN)


class LogNotifier:
    """Used when no bot token is configured."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, chat_id: str, text: str) -> None:
        self.sent.append((chat_id, text))
        logger.info("notify %s: %s", chat_id, text.splitlines()[0] if text else "")


def build_notifier(settings) -> Notifier:
    if settings.telegram_bot_token:
        return TelegramNotifier(settings.telegram_bot_token)
    logger.warning("TELEGRAM_BOT_TOKEN kosong, notifikasi hanya dicatat di log.")
    return LogNotifier()
