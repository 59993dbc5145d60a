"""
Хранилище заказов для сервера доставки.

Сессии БД приходят через session_maker, переданный в конструктор,
глобального соединения нет.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from database.models import CustomOrder, CustomOrderItem, Order
from services.order_status import OrderStatus, OrderType, gathering_status

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"


def _model_for(order_type: OrderType):
    return CustomOrder if order_type == OrderType.CUSTOM else Order


def _split_name(full_name: Optional[str]) -> tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return NOT_AVAILABLE, NOT_AVAILABLE
    first = parts[0]
    last = " ".join(parts[1:]) if len(parts) > 1 else NOT_AVAILABLE
    return first, last


def _delivery_location(order) -> Optional[Dict[str, Any]]:
    """Точка доставки: сначала адрес и координаты школы, затем JSON-колонка заказа."""
    school = order.school
    if school is not None and school.address and school.latitude and school.longitude:
        return {
            "address": school.address,
            "latitude": float(school.latitude),
            "longitude": float(school.longitude),
        }
    if order.delivery_location:
        try:
            decoded = json.loads(order.delivery_location)
        except ValueError:
            logger.warning("Undecodable delivery_location for order %s", order.id)
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _item_to_dict(item) -> Dict[str, Any]:
    return {
        column.key: getattr(item, column.key)
        for column in item.__table__.columns
    }


def serialize_order(order, order_type: OrderType) -> Dict[str, Any]:
    """Заказ в формате ответа GET /delivery."""
    user = order.user
    first_name, last_name = _split_name(user.name if user else None)
    driver_location = None
    if order.driver_latitude is not None and order.driver_longitude is not None:
        driver_location = {"latitude": order.driver_latitude, "longitude": order.driver_longitude}

    return {
        "id": order.id,
        "type": order_type.value,
        "status": order.status.value,
        "user_id": order.user_id,
        "school_id": order.school_id,
        "user": {
            "id": order.user_id,
            "name": user.name if user else NOT_AVAILABLE,
            "first_name": first_name,
            "last_name": last_name,
            "phone_number": (user.phone_number if user else None) or NOT_AVAILABLE,
            "email": (user.email if user else None) or NOT_AVAILABLE,
        },
        "delivery_location": _delivery_location(order),
        "driver_location": driver_location,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "items": [_item_to_dict(item) for item in order.items],
    }


class OrderRepository:
    """Чтение заказа и запись статуса/позиции курьера."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def get_order(self, order_id: int, order_type: OrderType) -> Optional[Dict[str, Any]]:
        """
        Получить заказ со всеми позициями.

        Returns:
            dict для ответа API или None, если заказа нет
        """
        model = _model_for(order_type)
        stmt = (
            select(model)
            .options(
                selectinload(model.user),
                selectinload(model.school),
                selectinload(model.items),
            )
            .where(model.id == order_id)
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            order = result.scalar_one_or_none()
            if order is None:
                return None
            return serialize_order(order, order_type)

    async def _update(self, order_type: OrderType, order_id: int, **values) -> bool:
        model = _model_for(order_type)
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = update(model).where(model.id == order_id).values(**values)
        async with self.session_maker() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return result.rowcount > 0

    async def update_driver_location(
        self,
        order_id: int,
        order_type: OrderType,
        latitude: float,
        longitude: float,
    ) -> bool:
        """Сохранить позицию курьера. False, если заказа нет."""
        updated = await self._update(
            order_type, order_id, driver_latitude=latitude, driver_longitude=longitude
        )
        if updated:
            logger.debug("Driver location stored: order=%s type=%s %.6f,%.6f", order_id, order_type.value, latitude, longitude)
        return updated

    async def update_status(self, order_id: int, order_type: OrderType, status: OrderStatus) -> bool:
        """Сохранить статус без проверки текущего. False, если заказа нет."""
        updated = await self._update(order_type, order_id, status=status)
        if updated:
            logger.info("Order status updated: id=%s type=%s -> %s", order_id, order_type.value, status.value)
        return updated

    async def set_item_gathered(self, item_id: int, gathered: bool) -> Optional[OrderStatus]:
        """
        Отметить позицию индивидуального заказа собранной или снять отметку.

        Статус заказа пересчитывается через gathering_status: все позиции
        собраны → to be delivered, отметку сняли у заказа to be delivered →
        снова gathering.

        Returns:
            статус заказа после изменения или None, если позиции нет
        """
        stmt = (
            select(CustomOrderItem)
            .options(selectinload(CustomOrderItem.order).selectinload(CustomOrder.items))
            .where(CustomOrderItem.id == item_id)
        )
        async with self.session_maker() as session:
            try:
                item = (await session.execute(stmt)).scalar_one_or_none()
                if item is None:
                    return None
                item.gathered = gathered
                order = item.order
                new_status = gathering_status(
                    ({"gathered": i.gathered} for i in order.items), order.status
                )
                if new_status is not None:
                    logger.info(
                        "Custom order %s gathering: %s -> %s",
                        order.id, order.status.value, new_status.value,
                    )
                    order.status = new_status
                    order.updated_at = datetime.now(timezone.utc)
                status = order.status
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        logger.debug("Item %s gathered=%s", item_id, gathered)
        return status
