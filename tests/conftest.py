import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
import uvicorn

from services.delivery_session import DeliverySession
from services.geo import Coordinate, PositionSample
from services.location_stream import GeolocationStream, LocationProvider, TrackingOptions
from services.order_status import OrderStatus
from services.validation import DeliveryOrder

BASE_TIME = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

# Точка доставки из ответа сервера: координаты строками
DESTINATION = {"address": "X", "latitude": "14.5995", "longitude": "120.9842"}


class FakeStore:
    """Хранилище заказов в памяти: записывает вызовы, умеет падать и зависать."""

    def __init__(self, order=None):
        self.order = order
        self.fetch_error = None
        self.status_error = None
        self.location_failures = {}
        self.location_gate = None
        self.status_gate = None
        self.fetch_calls = []
        self.location_calls = []
        self.status_calls = []

    async def fetch_order(self, order_id, order_type):
        self.fetch_calls.append((order_id, order_type))
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.order

    async def update_location(self, order_id, order_type, coordinate):
        index = len(self.location_calls)
        self.location_calls.append(coordinate)
        if self.location_gate is not None:
            await self.location_gate.wait()
        error = self.location_failures.get(index)
        if error is not None:
            raise error
        return coordinate.to_dict()

    async def update_status(self, order_id, order_type, new_status):
        self.status_calls.append(new_status)
        if self.status_gate is not None:
            await self.status_gate.wait()
        if self.status_error is not None:
            raise self.status_error
        return new_status.value if isinstance(new_status, OrderStatus) else new_status


class _WatchHandle:
    def __init__(self, provider, callback):
        self.provider = provider
        self.callback = callback

    def remove(self):
        self.provider.removed += 1
        if self.callback in self.provider.callbacks:
            self.provider.callbacks.remove(self.callback)


class FakeProvider(LocationProvider):
    """Провайдер геолокации с ручной подачей фиксов и счётчиком отписок."""

    def __init__(self, granted=True):
        self.granted = granted
        self.callbacks = []
        self.removed = 0

    async def request_permission(self):
        return self.granted

    def watch_position(self, callback):
        self.callbacks.append(callback)
        return _WatchHandle(self, callback)

    def emit(self, latitude, longitude, at=0.0, accuracy=None):
        sample = PositionSample(
            coordinate=Coordinate(latitude, longitude),
            accuracy=accuracy,
            timestamp=BASE_TIME + timedelta(seconds=at),
        )
        for callback in list(self.callbacks):
            callback(sample)
        return sample


@pytest.fixture
def make_order():
    def _make(**overrides):
        data = {
            "id": 42,
            "type": "normal",
            "status": "processing",
            "user": {"id": 5, "first_name": "Maria", "last_name": "Cruz"},
            "delivery_location": dict(DESTINATION),
        }
        data.update(overrides)
        return DeliveryOrder.model_validate(data)
    return _make


@pytest.fixture
def fake_store(make_order):
    return FakeStore(make_order())


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def map_messages():
    return []


@pytest.fixture
def delivery(fake_store, provider, map_messages):
    """Сессия доставки поверх FakeStore/FakeProvider, ещё не запущенная."""
    stream = GeolocationStream(provider, TrackingOptions())
    return DeliverySession(fake_store, stream, map_channel=map_messages.append)


@pytest.fixture
async def tracking(delivery):
    """Запущенная сессия доставки заказа 42."""
    await delivery.start(42, "normal")
    yield delivery
    delivery.close()
    await delivery.drain()


async def settle(rounds: int = 5) -> None:
    """Дать фоновым задачам пройти несколько итераций цикла событий."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def run_pending():
    return settle


@asynccontextmanager
async def serve(app):
    """Поднять ASGI-приложение на случайном порту и вернуть базовый URL."""
    server = uvicorn.Server(
        uvicorn.Config(app, host="127.0.0.1", port=0, log_config=None, lifespan="off")
    )
    task = asyncio.create_task(server.serve())
    while not server.started:
        if task.done():
            task.result()
            raise RuntimeError("uvicorn stopped before startup")
        await asyncio.sleep(0.01)
    port = server.servers[0].sockets[0].getsockname()[1]
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        server.should_exit = True
        await task
