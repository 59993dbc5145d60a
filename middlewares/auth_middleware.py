"""
Доступ к панели курьера только для Telegram ID из COURIER_IDS.
"""
import logging
from typing import Callable, Dict, Any, Awaitable, Iterable, Optional
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from config import config

logger = logging.getLogger(__name__)


class CourierAccessMiddleware(BaseMiddleware):
    """
    Пропускает только курьеров. Если список курьеров пуст, доступ открыт всем
    (удобно для локального запуска).
    """

    def __init__(self, courier_ids: Optional[Iterable[int]] = None):
        self._courier_ids = set(courier_ids) if courier_ids is not None else None

    @property
    def courier_ids(self) -> set:
        if self._courier_ids is not None:
            return self._courier_ids
        return set(config.COURIER_IDS_LIST)

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        allowed = self.courier_ids
        if not allowed:
            return await handler(event, data)

        user_id = None
        if isinstance(event, (Message, CallbackQuery)):
            user_id = event.from_user.id if event.from_user else None

        if user_id in allowed:
            return await handler(event, data)

        logger.warning("Access denied for user %s (not a courier)", user_id)
        if isinstance(event, CallbackQuery):
            await event.answer("Доступ запрещен", show_alert=True)
        elif isinstance(event, Message) and event.text:
            await event.answer("Доступ запрещен")
        return None
