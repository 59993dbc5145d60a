"""
Сессия доставки: заказ → слежение за курьером → отправка позиции на сервер →
проверка расстояния до точки → смена статуса.

Одна сессия на один экран (чат курьера). Отправка позиции идёт в фоне,
не больше одного запроса одновременно; пока запрос в полёте, хранится только
самый свежий отсчёт, более старые отбрасываются.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable, Optional, Tuple

from services.errors import (
    DeliveryError,
    IncompleteLocationData,
    LocationMismatch,
    MissingDestination,
    SessionNotActive,
)
from services.geo import Coordinate, PositionSample, coordinate_from_raw, distance_meters
from services.location_stream import GeolocationStream, Subscription
from services.order_status import OrderStateMachine, OrderStatus, OrderType
from services.validation import DeliveryOrder, DriverLocation

logger = logging.getLogger(__name__)

# Радиус, в котором заказ можно отметить доставленным
DELIVERY_RADIUS_M = 50.0

MAP_UPDATE_MESSAGE = "UPDATE_MAP"

MapChannel = Callable[[dict], None]


class SessionState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    TRACKING = "tracking"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


TERMINAL_SESSION_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.ABANDONED})


def destination_of(order: DeliveryOrder) -> Coordinate:
    """Координата точки доставки или MissingDestination."""
    location = order.delivery_location
    if location is None:
        raise MissingDestination("Точка доставки для заказа не указана")
    try:
        return coordinate_from_raw(location.latitude, location.longitude)
    except ValueError as e:
        raise MissingDestination(f"Некорректные координаты точки доставки: {e}") from e


def build_map_message(driver: PositionSample, destination: Coordinate) -> dict:
    """Сообщение для карты: {type, payload: {driverLocation, destinationLocation}}."""
    return {
        "type": MAP_UPDATE_MESSAGE,
        "payload": {
            "driverLocation": {
                "latitude": driver.latitude,
                "longitude": driver.longitude,
                "accuracy": driver.accuracy or 0,
            },
            "destinationLocation": destination.to_dict(),
        },
    }


class DeliverySession:
    """Управляет одной активной доставкой."""

    def __init__(
        self,
        store,
        stream: GeolocationStream,
        map_channel: Optional[MapChannel] = None,
        state_machine: Optional[OrderStateMachine] = None,
        radius_m: float = DELIVERY_RADIUS_M,
    ):
        self.store = store
        self.stream = stream
        self.map_channel = map_channel
        self.state_machine = state_machine or OrderStateMachine(store)
        self.radius_m = radius_m

        self.state = SessionState.IDLE
        self.order: Optional[DeliveryOrder] = None
        self.destination: Optional[Coordinate] = None
        self.last_sample: Optional[PositionSample] = None
        self.distance_m: Optional[float] = None

        self._subscription: Optional[Subscription] = None
        self._push_task: Optional[asyncio.Task] = None
        self._pending: Optional[PositionSample] = None

    # ------------------------------------------------------------------
    # Жизненный цикл
    # ------------------------------------------------------------------

    @property
    def live(self) -> bool:
        return self.state in (SessionState.LOADING, SessionState.TRACKING)

    @property
    def driver_location(self) -> Optional[Coordinate]:
        return self.last_sample.coordinate if self.last_sample else None

    async def start(self, order_id: int, order_type: OrderType | str) -> DeliveryOrder:
        """
        Загрузить заказ и начать слежение.

        Raises:
            NotFound, NetworkFailure: заказ не получен
            MissingDestination: нет точки доставки или координаты не разбираются
            PermissionDenied: курьер не дал доступ к геолокации
        """
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Session already started (state={self.state.value})")
        self.state = SessionState.LOADING
        logger.info("Delivery session loading: order=%s type=%s", order_id, order_type)

        try:
            order = await self.store.fetch_order(order_id, order_type)
            destination = destination_of(order)
            if self.state != SessionState.LOADING:
                return order
            self.order = order
            self.destination = destination
            subscription = await self.stream.start_tracking(self._on_sample)
        except DeliveryError as e:
            if self.state == SessionState.LOADING:
                self.state = SessionState.FAILED
            logger.warning("Delivery session failed to start: order=%s err=%s", order_id, e)
            raise

        if self.state != SessionState.LOADING:
            # Сессию закрыли, пока ждали разрешения
            subscription.cancel()
            return order

        self._subscription = subscription
        self.state = SessionState.TRACKING
        logger.info(
            "Delivery session tracking: order=%s destination=%s,%s",
            order.id, destination.latitude, destination.longitude,
        )
        return order

    def close(self) -> None:
        """Завершить сессию: отписаться от геолокации. Повторный вызов ничего не делает."""
        if self.live:
            self.state = SessionState.ABANDONED
            logger.info("Delivery session abandoned: order=%s", self.order.id if self.order else None)
        self._teardown()

    def _teardown(self) -> None:
        self._pending = None
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.cancel()

    async def drain(self) -> None:
        """Дождаться завершения фоновой отправки позиции."""
        while self._push_task is not None and not self._push_task.done():
            await asyncio.shield(self._push_task)

    async def __aenter__(self) -> "DeliverySession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Геолокация
    # ------------------------------------------------------------------

    def _on_sample(self, sample: PositionSample) -> None:
        if self.state != SessionState.TRACKING:
            return
        self.last_sample = sample
        self.order = self.order.model_copy(
            update={"driver_location": DriverLocation(**sample.coordinate.to_dict())}
        )
        self.distance_m = distance_meters(sample.coordinate, self.destination)
        logger.debug("Driver at %.6f,%.6f, %.0fm to destination", sample.latitude, sample.longitude, self.distance_m)

        if self.map_channel is not None:
            try:
                self.map_channel(build_map_message(sample, self.destination))
            except Exception as e:
                logger.warning("Map channel error: %s", e, exc_info=True)

        if self._push_task is not None and not self._push_task.done():
            self._pending = sample
            return
        self._push_task = asyncio.get_running_loop().create_task(self._push_locations(sample))

    async def _push_locations(self, sample: PositionSample) -> None:
        order_id, order_type = self.order.id, self.order.type
        while sample is not None:
            try:
                await self.store.update_location(order_id, order_type, sample.coordinate)
            except Exception as e:
                # Одна неудачная отправка не прерывает доставку
                logger.warning("Failed to push driver location for order %s: %s", order_id, e)
            if self.state != SessionState.TRACKING:
                return
            sample, self._pending = self._pending, None

    # ------------------------------------------------------------------
    # Действия курьера
    # ------------------------------------------------------------------

    async def _apply(self, target: OrderStatus) -> Tuple[Optional[DeliveryOrder], Optional[DeliveryError]]:
        order, error = await self.state_machine.transition(self.order, target)
        if error is not None:
            return None, error
        if not self.live:
            logger.info("Status %s confirmed after session end, ignoring", target.value)
            return order, None
        # Пока шёл запрос, _on_sample мог обновить driver_location: берём только статус
        self.order = self.order.model_copy(update={"status": order.status})
        return self.order, None

    async def start_delivery(self) -> Tuple[Optional[DeliveryOrder], Optional[DeliveryError]]:
        """Перевести заказ в delivering. Расстояние не проверяется."""
        if self.state != SessionState.TRACKING:
            return None, SessionNotActive()
        return await self._apply(OrderStatus.DELIVERING)

    async def mark_delivered(self) -> Tuple[Optional[DeliveryOrder], Optional[DeliveryError]]:
        """
        Отметить заказ доставленным, если курьер в радиусе radius_m от точки.

        Returns:
            (order, None): доставлено, сессия завершена;
            (None, LocationMismatch): курьер слишком далеко;
            (None, error): иная ошибка, можно повторить
        """
        if self.state != SessionState.TRACKING:
            return None, SessionNotActive()
        driver = self.driver_location
        if driver is None or self.destination is None:
            return None, IncompleteLocationData()

        distance = distance_meters(driver, self.destination)
        if distance > self.radius_m:
            logger.info("Delivery rejected: order=%s distance=%.1fm", self.order.id, distance)
            return None, LocationMismatch(distance, self.radius_m)

        order, error = await self._apply(OrderStatus.DELIVERED)
        if error is not None:
            return None, error
        if self.state == SessionState.TRACKING:
            self.state = SessionState.COMPLETED
            logger.info("Delivery completed: order=%s distance=%.1fm", order.id, distance)
            self._teardown()
        return order, None
