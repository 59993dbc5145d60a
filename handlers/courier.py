import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from aiogram import Bot, Router, types, F
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext

from keyboards.courier_kbs import (
    DECLINE_LOCATION_TEXT, get_delivery_kb, get_location_request_kb, remove_kb,
)
from middlewares.auth_middleware import CourierAccessMiddleware
from services.courier_sessions import CourierDelivery, registry
from services.delivery_session import build_map_message
from services.errors import DeliveryError, LocationMismatch
from services.geo import Coordinate, distance_meters
from services.order_status import OrderType
from services.telegram_utils import escape_markdown, safe_edit_message
from services.validation import DeliveryOrder
from states.courier_states import CourierState

logger = logging.getLogger(__name__)

router = Router()
router.message.middleware(CourierAccessMiddleware())
router.edited_message.middleware(CourierAccessMiddleware())
router.callback_query.middleware(CourierAccessMiddleware())

USAGE = "Использование: /delivery <normal|custom> <номер заказа>"

# Ссылки на фоновые старты сессий, чтобы задачи не собрал GC
_start_tasks: set[asyncio.Task] = set()


class TelegramMapChannel:
    """
    Карта в чате курьера: вместо отрисовки редактируем одно сообщение
    с позицией курьера и расстоянием до точки.
    """

    def __init__(self, bot: Bot, chat_id: int):
        self.bot = bot
        self.chat_id = chat_id
        self.message_id: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    def __call__(self, message: dict) -> None:
        if self.message_id is None:
            return
        # Пока прошлое редактирование не ушло, новое не ставим
        if self._task is not None and not self._task.done():
            return
        payload = message["payload"]
        self._task = asyncio.create_task(self._edit(payload["driverLocation"], payload["destinationLocation"]))

    async def _edit(self, driver: dict, destination: dict) -> None:
        distance = distance_meters(
            Coordinate(driver["latitude"], driver["longitude"]),
            Coordinate(destination["latitude"], destination["longitude"]),
        )
        text = (
            f"📍 Курьер: {driver['latitude']:.6f}, {driver['longitude']:.6f}"
            f" (±{driver.get('accuracy') or 0:.0f} м)\n"
            f"🏁 До точки доставки: {distance:.0f} м"
        )
        try:
            await safe_edit_message(self.bot, self.chat_id, self.message_id, text, parse_mode=None)
        except Exception as e:
            logger.warning("Map message update failed: chat=%s err=%s", self.chat_id, e)


def format_order_card(order: DeliveryOrder) -> str:
    user = order.user
    customer = "N/A"
    if user is not None:
        customer = f"{user.first_name or 'N/A'} {user.last_name or ''}".strip()
    address = order.delivery_location.address if order.delivery_location else None
    return (
        f"📦 *Доставка заказа #{order.id}*\n\n"
        f"Клиент: {escape_markdown(customer)}\n"
        f"Статус: {escape_markdown(order.status.value.capitalize())}\n"
        f"Адрес: {escape_markdown(address or 'N/A')}"
    )


def _parse_args(command: CommandObject) -> Optional[tuple[OrderType, int]]:
    parts = (command.args or "").split()
    if len(parts) != 2:
        return None
    try:
        return OrderType(parts[0].lower()), int(parts[1])
    except ValueError:
        return None


@router.message(Command("delivery"))
async def cmd_delivery(message: types.Message, command: CommandObject, state: FSMContext, bot: Bot):
    args = _parse_args(command)
    if args is None:
        await message.answer(USAGE)
        return
    order_type, order_id = args

    map_channel = TelegramMapChannel(bot, message.chat.id)
    delivery = registry.open(message.from_user.id, map_channel=map_channel)
    await state.set_state(CourierState.waiting_location)
    await message.answer(
        f"Заказ #{order_id}: включите трансляцию геопозиции, чтобы начать слежение.",
        reply_markup=get_location_request_kb(),
    )
    # Старт ждёт разрешения на геолокацию, обработку апдейта не держим
    task = asyncio.create_task(
        _start_session(bot, message.chat.id, delivery, map_channel, state, order_id, order_type)
    )
    _start_tasks.add(task)
    task.add_done_callback(_start_tasks.discard)


async def _start_session(
    bot: Bot,
    chat_id: int,
    delivery: CourierDelivery,
    map_channel: TelegramMapChannel,
    state: FSMContext,
    order_id: int,
    order_type: OrderType,
) -> None:
    try:
        order = await delivery.session.start(order_id, order_type)
    except DeliveryError as e:
        # Курьер уже открыл новую сессию или остановил эту: молча выходим
        if registry.get(delivery.courier_id) is not delivery:
            return
        registry.close(delivery.courier_id)
        await state.clear()
        await bot.send_message(chat_id, f"❌ {e.message}", reply_markup=remove_kb())
        return
    if not delivery.session.live:
        return

    await state.set_state(CourierState.tracking)
    await bot.send_message(chat_id, "Слежение включено.", reply_markup=remove_kb())
    await bot.send_message(
        chat_id, format_order_card(order), parse_mode="Markdown", reply_markup=get_delivery_kb(order.status)
    )
    status_message = await bot.send_message(chat_id, "📍 Ожидаем геопозицию...")
    map_channel.message_id = status_message.message_id
    session = delivery.session
    if session.last_sample is not None:
        # Позиция, выдавшая разрешение, пришла раньше, чем сообщение карты
        map_channel(build_map_message(session.last_sample, session.destination))


@router.message(F.text == DECLINE_LOCATION_TEXT)
async def decline_location(message: types.Message, state: FSMContext):
    delivery = registry.get(message.from_user.id)
    if delivery is not None:
        delivery.provider.deny()
    await state.clear()


@router.message(F.location)
@router.edited_message(F.location)
async def live_location(message: types.Message):
    delivery = registry.get(message.from_user.id)
    if delivery is None:
        return
    loc = message.location
    timestamp = message.edit_date or message.date
    if isinstance(timestamp, int):
        timestamp = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    delivery.provider.feed(loc.latitude, loc.longitude, accuracy=loc.horizontal_accuracy, timestamp=timestamp)


@router.callback_query(F.data == "delivery:start")
async def start_delivery(callback: types.CallbackQuery):
    delivery = registry.get(callback.from_user.id)
    if delivery is None:
        await callback.answer("Нет активной доставки", show_alert=True)
        return
    order, error = await delivery.session.start_delivery()
    if error is not None:
        await callback.answer(f"❌ {error.message}", show_alert=True)
        return
    await callback.message.edit_text(
        format_order_card(order), parse_mode="Markdown", reply_markup=get_delivery_kb(order.status)
    )
    await callback.answer("Статус: delivering")


@router.callback_query(F.data == "delivery:done")
async def mark_delivered(callback: types.CallbackQuery, state: FSMContext):
    delivery = registry.get(callback.from_user.id)
    if delivery is None:
        await callback.answer("Нет активной доставки", show_alert=True)
        return
    order, error = await delivery.session.mark_delivered()
    if isinstance(error, LocationMismatch):
        await callback.answer(f"📏 {error.message}", show_alert=True)
        return
    if error is not None:
        await callback.answer(f"❌ {error.message}", show_alert=True)
        return
    registry.close(callback.from_user.id)
    await state.clear()
    await callback.message.edit_text(f"✅ Заказ #{order.id} доставлен.")
    await callback.answer()


@router.callback_query(F.data == "delivery:close")
async def close_delivery(callback: types.CallbackQuery, state: FSMContext):
    registry.close(callback.from_user.id)
    await state.clear()
    await callback.message.edit_text("Сессия доставки завершена.")
    await callback.answer()
