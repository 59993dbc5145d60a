"""
Обработчик необработанных обновлений.
Подключается последним: ловит сообщения и callback, которые не попали в другие хендлеры.
"""
import logging
from aiogram import Router, types
from aiogram.exceptions import TelegramBadRequest

logger = logging.getLogger(__name__)
router = Router()


@router.message()
async def fallback_message(message: types.Message):
    """Любое сообщение, не обработанное другими хендлерами."""
    await message.answer("Используйте /start, чтобы увидеть команды курьера.")


@router.callback_query()
async def fallback_callback(callback: types.CallbackQuery):
    """Кнопки от завершённых сессий доставки."""
    try:
        await callback.answer("Доставка уже завершена. Начните заново: /delivery")
    except TelegramBadRequest as e:
        # Устаревший callback (query is too old): ответить уже нельзя
        logger.debug("Fallback callback answer failed: %s", e)
