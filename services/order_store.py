"""
HTTP-клиент сервера доставки (GET/POST /delivery).

Все ответы в JSON; ошибки приходят как {"message": ...} с кодом 400/404/500.
Повторных попыток нет: повтор инициирует курьер (повторное нажатие кнопки).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp
from pydantic import ValidationError

from config import config
from services.errors import InvalidStatus, NetworkFailure, NotFound
from services.geo import Coordinate
from services.order_status import OrderStatus, OrderType
from services.validation import DeliveryOrder

logger = logging.getLogger(__name__)

ADMIN_ID_HEADER = "X-Admin-ID"


class RemoteOrderStore:
    """Клиент эндпоинта доставки. Идентификатор администратора передаётся как есть."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        admin_id: Optional[str] = None,
        timeout: Optional[float] = None,
        path: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url if base_url is not None else config.DELIVERY_API_URL).rstrip("/")
        self.path = path if path is not None else config.DELIVERY_API_PATH
        self.admin_id = admin_id if admin_id is not None else config.ADMIN_ID
        self.timeout = aiohttp.ClientTimeout(total=timeout if timeout is not None else config.HTTP_TIMEOUT)
        self._session = session

    @property
    def headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.admin_id:
            headers[ADMIN_ID_HEADER] = str(self.admin_id)
        return headers

    async def _send(self, session: aiohttp.ClientSession, method: str, url: str, **kwargs) -> tuple[int, dict]:
        async with session.request(method, url, headers=self.headers, timeout=self.timeout, **kwargs) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = None
            if not isinstance(data, dict):
                raise NetworkFailure(
                    f"Некорректный ответ сервера (HTTP {resp.status})", status=resp.status
                )
            return resp.status, data

    async def _request(self, method: str, params: dict, json: Optional[dict] = None) -> tuple[int, dict]:
        url = f"{self.base_url}{self.path}"
        try:
            if self._session is not None:
                return await self._send(self._session, method, url, params=params, json=json)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, method, url, params=params, json=json)
        except asyncio.TimeoutError:
            logger.warning("Delivery API timeout [%s %s] params=%s", method, self.path, params)
            raise NetworkFailure("Сервер доставки не ответил вовремя")
        except aiohttp.ClientError as e:
            logger.error("Delivery API error [%s %s]: %s", method, self.path, e)
            raise NetworkFailure(f"Ошибка соединения с сервером доставки: {e}")

    @staticmethod
    def _raise_for_status(status: int, data: dict, *, bad_request=None) -> None:
        if 200 <= status < 300:
            return
        message = data.get("message") or f"HTTP {status}"
        if status == 404:
            raise NotFound(message)
        if status == 400 and bad_request is not None:
            raise bad_request(message)
        raise NetworkFailure(message, status=status)

    async def fetch_order(self, order_id: int, order_type: OrderType | str) -> DeliveryOrder:
        """
        Получить заказ.
        GET /delivery?orderId=..&orderType=.. → {"order": {...}}
        """
        order_type = OrderType(order_type)
        params = {"orderId": str(order_id), "orderType": order_type.value}
        status, data = await self._request("GET", params)
        self._raise_for_status(status, data)

        raw = data.get("order")
        if not isinstance(raw, dict):
            raise NotFound("Заказ не найден")
        raw = {"type": order_type.value, **raw}
        try:
            return DeliveryOrder.model_validate(raw)
        except ValidationError as e:
            logger.error("Malformed order payload for id=%s: %s", order_id, e)
            raise NetworkFailure("Сервер вернул некорректные данные заказа")

    async def update_location(self, order_id: int, order_type: OrderType | str, coordinate: Coordinate) -> dict:
        """
        Отправить позицию курьера.
        POST /delivery?action=update-location {"latitude", "longitude"} → {"message", "newLocation"}
        """
        params = {
            "action": "update-location",
            "orderId": str(order_id),
            "orderType": OrderType(order_type).value,
        }
        status, data = await self._request("POST", params, json=coordinate.to_dict())
        self._raise_for_status(status, data)
        return data.get("newLocation") or coordinate.to_dict()

    async def update_status(self, order_id: int, order_type: OrderType | str, new_status: OrderStatus | str) -> str:
        """
        Сменить статус заказа.
        POST /delivery?action=update-status {"status"} → {"message", "newStatus"}
        """
        value = new_status.value if isinstance(new_status, OrderStatus) else str(new_status)
        params = {
            "action": "update-status",
            "orderId": str(order_id),
            "orderType": OrderType(order_type).value,
        }
        status, data = await self._request("POST", params, json={"status": value})
        self._raise_for_status(status, data, bad_request=lambda m: InvalidStatus(value, m))
        return data.get("newStatus") or value
