from aiogram.types import (
    InlineKeyboardMarkup, InlineKeyboardButton,
    ReplyKeyboardMarkup, KeyboardButton, ReplyKeyboardRemove,
)

from services.order_status import OrderStatus

DECLINE_LOCATION_TEXT = "🚫 Не делиться геопозицией"


def get_location_request_kb() -> ReplyKeyboardMarkup:
    # Inline-кнопки не умеют запрашивать геопозицию, только Reply
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text="📍 Поделиться геопозицией", request_location=True)],
            [KeyboardButton(text=DECLINE_LOCATION_TEXT)],
        ],
        resize_keyboard=True,
        one_time_keyboard=True,
    )


def remove_kb() -> ReplyKeyboardRemove:
    return ReplyKeyboardRemove()


def get_delivery_kb(status: OrderStatus) -> InlineKeyboardMarkup:
    """
    Действия по заказу в доставке.
    До delivering: «Начать доставку», в delivering: «Доставлено».
    """
    rows = []
    if status == OrderStatus.DELIVERING:
        rows.append([InlineKeyboardButton(text="✅ Доставлено", callback_data="delivery:done")])
    elif status not in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
        rows.append([InlineKeyboardButton(text="🚚 Начать доставку", callback_data="delivery:start")])
    rows.append([InlineKeyboardButton(text="✖ Завершить сессию", callback_data="delivery:close")])
    return InlineKeyboardMarkup(inline_keyboard=rows)
