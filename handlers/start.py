import logging
from aiogram import Router, types
from aiogram.filters import CommandStart, Command
from aiogram.fsm.context import FSMContext

from services.courier_sessions import registry

logger = logging.getLogger(__name__)
router = Router()

HELP_TEXT = (
    "Панель курьера.\n\n"
    "/delivery <normal|custom> <номер>: начать доставку заказа\n"
    "/stop: завершить текущую доставку\n\n"
    "После команды включите трансляцию геопозиции: позиция будет уходить на сервер, "
    "а отметить заказ доставленным можно только рядом с точкой доставки."
)


@router.message(CommandStart())
async def cmd_start(message: types.Message):
    await message.answer(HELP_TEXT)


@router.message(Command("stop"))
async def cmd_stop(message: types.Message, state: FSMContext):
    if registry.get(message.from_user.id) is None:
        await message.answer("Активной доставки нет.")
        return
    registry.close(message.from_user.id)
    await state.clear()
    await message.answer("Сессия доставки завершена.")
