"""
Активные доставки курьеров: одна сессия на чат курьера.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from config import config
from services.delivery_session import DeliverySession, MapChannel
from services.location_stream import GeolocationStream, LiveLocationProvider, TrackingOptions
from services.order_store import RemoteOrderStore

logger = logging.getLogger(__name__)


@dataclass
class CourierDelivery:
    courier_id: int
    session: DeliverySession
    provider: LiveLocationProvider


class CourierSessionRegistry:
    """Создаёт, хранит и закрывает сессии доставки по Telegram ID курьера."""

    def __init__(
        self,
        store_factory: Callable[[], object] = RemoteOrderStore,
        options: Optional[TrackingOptions] = None,
        permission_timeout: Optional[float] = None,
    ):
        self.store_factory = store_factory
        self.options = options or TrackingOptions()
        self.permission_timeout = (
            permission_timeout if permission_timeout is not None else config.LOCATION_PERMISSION_TIMEOUT
        )
        self._deliveries: Dict[int, CourierDelivery] = {}

    def __len__(self) -> int:
        return len(self._deliveries)

    def open(self, courier_id: int, map_channel: Optional[MapChannel] = None) -> CourierDelivery:
        """Новая сессия; предыдущая сессия этого курьера закрывается."""
        self.close(courier_id)
        provider = LiveLocationProvider(permission_timeout=self.permission_timeout)
        session = DeliverySession(
            store=self.store_factory(),
            stream=GeolocationStream(provider, self.options),
            map_channel=map_channel,
        )
        delivery = CourierDelivery(courier_id=courier_id, session=session, provider=provider)
        self._deliveries[courier_id] = delivery
        return delivery

    def get(self, courier_id: int) -> Optional[CourierDelivery]:
        return self._deliveries.get(courier_id)

    def close(self, courier_id: int) -> None:
        delivery = self._deliveries.pop(courier_id, None)
        if delivery is not None:
            # Если разрешение ещё ждут, не держим старт сессии
            delivery.provider.deny()
            delivery.session.close()
            logger.info("Courier %s delivery session closed", courier_id)

    def close_all(self) -> None:
        for courier_id in list(self._deliveries):
            self.close(courier_id)


registry = CourierSessionRegistry()
