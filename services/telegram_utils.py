"""
Утилиты для работы с Telegram API: экранирование Markdown, безопасное редактирование сообщения.
"""
import asyncio
import logging
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError, TelegramRetryAfter

logger = logging.getLogger(__name__)

# Сетевые ошибки, при которых имеет смысл повторить запрос
RETRYABLE_EXC = (TelegramNetworkError, TelegramRetryAfter)
MAX_EDIT_RETRIES = 3
RETRY_DELAY = 1.0


def escape_markdown(s: str) -> str:
    """
    Экранирует спецсимволы Markdown в пользовательском тексте.
    Использовать для всех полей с сервера (имена, адреса, статусы).
    """
    if not s or not isinstance(s, str):
        return str(s) if s is not None else ""
    # Сначала \, иначе двойное экранирование сломается
    s = s.replace("\\", "\\\\")
    for ch in "_*[]()`":
        s = s.replace(ch, f"\\{ch}")
    return s


async def safe_edit_message(
    bot: Bot,
    chat_id: int,
    message_id: int,
    text: str,
    *,
    reply_markup=None,
    parse_mode: Optional[str] = "Markdown",
) -> bool:
    """
    Безопасное редактирование: ловит TelegramBadRequest (message not modified, not found),
    при сетевых ошибках повторяет запрос до MAX_EDIT_RETRIES раз.
    Возвращает True при успехе, False при ожидаемых ошибках.
    """
    for attempt in range(MAX_EDIT_RETRIES):
        try:
            await bot.edit_message_text(
                text=text,
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=reply_markup,
                parse_mode=parse_mode,
            )
            return True
        except RETRYABLE_EXC as e:
            wait = getattr(e, "retry_after", None) or RETRY_DELAY
            if attempt < MAX_EDIT_RETRIES - 1:
                logger.warning("safe_edit_message: %s, retry in %.1fs (attempt %s/%s)", e, wait, attempt + 1, MAX_EDIT_RETRIES)
                await asyncio.sleep(wait)
            else:
                logger.error("safe_edit_message: failed after %s attempts: %s", MAX_EDIT_RETRIES, e)
                raise
        except TelegramBadRequest as e:
            msg = str(e).lower()
            if "message is not modified" in msg or "message to edit not found" in msg:
                logger.debug("safe_edit_message: %s", e)
                return False
            raise
    return False
