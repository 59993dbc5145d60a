"""
Логирование входящих событий и исключений: апдейты бота и HTTP-запросы API доставки.

Формат одинаковый для обоих: IN / OUT / ERR с trace id и временем обработки.
"""

import logging
import time
from typing import Callable, Dict, Any, Awaitable, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from fastapi import Request
from fastapi.responses import Response


logger = logging.getLogger(__name__)


def _truncate(text: Optional[str], limit: int = 200) -> Optional[str]:
    if text is None:
        return None
    text = text.replace("\n", "\\n")
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _message_payload(message: Message) -> Optional[str]:
    if message.location is not None:
        # Трансляция геопозиции идёт часто, координаты пишем коротко
        loc = message.location
        return f"location={loc.latitude:.6f},{loc.longitude:.6f}"
    return _truncate(message.text or message.caption)


class LoggingMiddleware(BaseMiddleware):
    """Логирует старт/финиш обработки апдейта бота + исключения с контекстом."""

    def __init__(self, log_success: bool = True):
        self.log_success = log_success

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        started = time.monotonic()

        event_type = type(event).__name__
        user_id = None
        payload = None

        if isinstance(event, Message):
            user_id = event.from_user.id if event.from_user else None
            payload = _message_payload(event)
        elif isinstance(event, CallbackQuery):
            user_id = event.from_user.id if event.from_user else None
            payload = _truncate(event.data)

        trace_id = f"{int(time.time() * 1000)}:{user_id or 'na'}"
        data["trace_id"] = trace_id

        logger.info("IN  trace=%s type=%s user=%s payload=%s", trace_id, event_type, user_id, payload)

        try:
            result = await handler(event, data)
        except Exception as e:
            ms = (time.monotonic() - started) * 1000
            logger.error(
                "ERR trace=%s type=%s user=%s time_ms=%.1f err=%s",
                trace_id, event_type, user_id, ms, repr(e),
                exc_info=True,
            )
            raise
        if self.log_success:
            ms = (time.monotonic() - started) * 1000
            logger.info("OUT trace=%s type=%s user=%s time_ms=%.1f", trace_id, event_type, user_id, ms)
        return result


async def request_logging_middleware(request: Request, call_next) -> Response:
    """То же для HTTP: метод, путь с query, администратор из X-Admin-ID, код ответа."""
    started = time.monotonic()
    admin_id = request.headers.get("X-Admin-ID") or "na"
    trace_id = f"{int(time.time() * 1000)}:{admin_id}"
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    target = _truncate(target)

    logger.info("IN  trace=%s %s %s", trace_id, request.method, target)
    try:
        response = await call_next(request)
    except Exception as e:
        ms = (time.monotonic() - started) * 1000
        logger.error(
            "ERR trace=%s %s %s time_ms=%.1f err=%s",
            trace_id, request.method, target, ms, repr(e),
            exc_info=True,
        )
        raise
    ms = (time.monotonic() - started) * 1000
    logger.info("OUT trace=%s %s %s status=%s time_ms=%.1f", trace_id, request.method, target, response.status_code, ms)
    return response
