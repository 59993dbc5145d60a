from aiogram.fsm.state import State, StatesGroup

class CourierState(StatesGroup):
    waiting_location = State() # Сессия загружается, ждём трансляцию геопозиции
    tracking = State() # Активная доставка: геопозиция уходит на сервер
