"""
Поток геолокации курьера.

Платформа (LocationProvider) отдаёт «сырые» фиксы, GeolocationStream
прореживает их и выдаёт PositionSample подписчику.

Правило выдачи: первый фикс выдаётся всегда; дальше фикс выдаётся, если
выполнено ЛЮБОЕ из условий: с последней выдачи прошло не меньше
time_interval секунд ИЛИ курьер сместился не меньше чем на distance_interval
метров. Остальные фиксы отбрасываются.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from services.errors import PermissionDenied
from services.geo import Coordinate, PositionSample, distance_meters

logger = logging.getLogger(__name__)

# Интервалы по умолчанию: 5 секунд / 10 метров
DEFAULT_TIME_INTERVAL_S = 5.0
DEFAULT_DISTANCE_INTERVAL_M = 10.0

SampleCallback = Callable[[PositionSample], None]


@dataclass(frozen=True, slots=True)
class TrackingOptions:
    time_interval: float = DEFAULT_TIME_INTERVAL_S
    distance_interval: float = DEFAULT_DISTANCE_INTERVAL_M
    accuracy: str = "high"


class LocationProvider:
    """Источник геолокации платформы."""

    async def request_permission(self) -> bool:
        raise NotImplementedError

    def watch_position(self, callback: SampleCallback):
        """Начать наблюдение. Возвращает объект с методом remove()."""
        raise NotImplementedError


class _Watcher:
    def __init__(self, provider: "LiveLocationProvider", callback: SampleCallback):
        self._provider = provider
        self.callback = callback
        self.seen = False

    def deliver(self, sample: PositionSample) -> None:
        self.seen = True
        self.callback(sample)

    def remove(self) -> None:
        self._provider._watchers.discard(self)


class LiveLocationProvider(LocationProvider):
    """
    Провайдер, которого «кормят» снаружи: бот передаёт сюда трансляцию
    геопозиции из Telegram. Разрешение считается выданным, когда курьер
    поделился геопозицией, и отклонённым по отказу или по таймауту.
    """

    def __init__(self, permission_timeout: float = 120.0):
        self.permission_timeout = permission_timeout
        self._watchers: set[_Watcher] = set()
        self._decision: Optional[asyncio.Future] = None
        self._granted: Optional[bool] = None
        self._latest: Optional[PositionSample] = None

    def _future(self) -> asyncio.Future:
        if self._decision is None:
            self._decision = asyncio.get_running_loop().create_future()
            if self._granted is not None:
                self._decision.set_result(self._granted)
        return self._decision

    async def request_permission(self) -> bool:
        if self._granted is not None:
            return self._granted
        try:
            return await asyncio.wait_for(asyncio.shield(self._future()), self.permission_timeout)
        except asyncio.TimeoutError:
            logger.info("Location permission not granted within %.0fs", self.permission_timeout)
            self._resolve(False)
            return False

    def _resolve(self, granted: bool) -> None:
        if self._granted is not None:
            return
        self._granted = granted
        if self._decision is not None and not self._decision.done():
            self._decision.set_result(granted)

    def grant(self) -> None:
        self._resolve(True)

    def deny(self) -> None:
        self._resolve(False)

    @property
    def watching(self) -> bool:
        return bool(self._watchers)

    @property
    def latest(self) -> Optional[PositionSample]:
        return self._latest

    def watch_position(self, callback: SampleCallback) -> _Watcher:
        """
        Подписать callback на фиксы.

        Если фикс уже приходил (обычно тот, что выдал разрешение), он
        повторяется новому наблюдателю на следующей итерации цикла событий,
        когда подписчик уже готов его принять. Повтор пропускается, если
        наблюдателя сняли или к нему успел прийти более свежий фикс.
        """
        watcher = _Watcher(self, callback)
        self._watchers.add(watcher)
        if self._latest is not None:
            asyncio.get_running_loop().call_soon(self._replay, watcher)
        return watcher

    def _replay(self, watcher: _Watcher) -> None:
        if watcher.seen or watcher not in self._watchers or self._latest is None:
            return
        logger.debug("Replaying last known location to a new watcher")
        watcher.deliver(self._latest)

    def feed(
        self,
        latitude: float,
        longitude: float,
        accuracy: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Новый фикс геопозиции. Первый фикс заодно означает разрешение."""
        self.grant()
        sample = PositionSample(
            coordinate=Coordinate(latitude=latitude, longitude=longitude),
            accuracy=accuracy,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        self._latest = sample
        for watcher in list(self._watchers):
            watcher.deliver(sample)


class SampleThrottle:
    """Прореживание фиксов по времени и расстоянию (см. правило в модуле)."""

    def __init__(self, options: TrackingOptions):
        self.options = options
        self._last: Optional[PositionSample] = None

    def accept(self, sample: PositionSample) -> bool:
        last = self._last
        if last is None:
            self._last = sample
            return True
        elapsed = (sample.timestamp - last.timestamp).total_seconds()
        moved = distance_meters(last.coordinate, sample.coordinate)
        if elapsed >= self.options.time_interval or moved >= self.options.distance_interval:
            self._last = sample
            return True
        return False


class Subscription:
    """
    Подписка на поток геолокации. cancel() синхронный и идемпотентный.
    Без callback отсчёты можно читать через async for.
    """

    def __init__(self, callback: Optional[SampleCallback] = None):
        self._callback = callback
        self._watcher = None
        self._cancelled = False
        self._queue: Optional[asyncio.Queue] = None if callback else asyncio.Queue()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _attach(self, watcher) -> None:
        self._watcher = watcher

    def _deliver(self, sample: PositionSample) -> None:
        if self._cancelled:
            return
        if self._callback is not None:
            self._callback(sample)
        else:
            self._queue.put_nowait(sample)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            watcher.remove()
        if self._queue is not None:
            self._queue.put_nowait(None)
        logger.debug("Location subscription cancelled")

    def __aiter__(self):
        if self._queue is None:
            raise TypeError("Subscription with a callback cannot be iterated")
        return self

    async def __anext__(self) -> PositionSample:
        if self._cancelled and self._queue.empty():
            raise StopAsyncIteration
        sample = await self._queue.get()
        if sample is None:
            raise StopAsyncIteration
        return sample


class GeolocationStream:
    """Одноразовый поток геолокации поверх LocationProvider."""

    def __init__(self, provider: LocationProvider, options: Optional[TrackingOptions] = None):
        self.provider = provider
        self.options = options or TrackingOptions()
        self._started = False

    async def start_tracking(self, on_sample: Optional[SampleCallback] = None) -> Subscription:
        """
        Запросить разрешение и начать слежение.

        Raises:
            PermissionDenied: курьер не дал доступ к геолокации
            RuntimeError: поток уже запускался
        """
        if self._started:
            raise RuntimeError("Location stream cannot be restarted")
        self._started = True

        if not await self.provider.request_permission():
            logger.warning("Location permission denied")
            raise PermissionDenied()

        subscription = Subscription(on_sample)
        throttle = SampleThrottle(self.options)

        def _on_fix(sample: PositionSample) -> None:
            if throttle.accept(sample):
                subscription._deliver(sample)

        subscription._attach(self.provider.watch_position(_on_fix))
        logger.info(
            "Location tracking started (interval=%.1fs, distance=%.1fm)",
            self.options.time_interval, self.options.distance_interval,
        )
        return subscription
