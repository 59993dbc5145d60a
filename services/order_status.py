"""
Статусы заказов и их переходы.

Сервер принимает любой статус из белого списка независимо от текущего,
поэтому по умолчанию машина тоже разрешает любой переход внутри белого
списка и только пишет warning, если переход не соответствует потоку заказа.
strict=True включает проверку потока.
"""
from __future__ import annotations

import enum
import logging
from typing import Iterable, Mapping, Optional, Tuple

from services.errors import DeliveryError, InvalidStatus, InvalidTransition

logger = logging.getLogger(__name__)


class OrderType(str, enum.Enum):
    NORMAL = "normal"
    CUSTOM = "custom"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    TO_BE_QUOTED = "to be quoted"
    QUOTED = "quoted"
    APPROVED = "approved"
    GATHERING = "gathering"
    TO_BE_DELIVERED = "to be delivered"
    TO_DELIVER = "to deliver"


ALLOWED_STATUSES = frozenset(s.value for s in OrderStatus)
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Основной поток по типу заказа; cancelled доступен из любого нетерминального
FLOWS = {
    OrderType.NORMAL: (
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.DELIVERING,
        OrderStatus.DELIVERED,
    ),
    OrderType.CUSTOM: (
        OrderStatus.TO_BE_QUOTED,
        OrderStatus.QUOTED,
        OrderStatus.APPROVED,
        OrderStatus.GATHERING,
        OrderStatus.TO_BE_DELIVERED,
        OrderStatus.DELIVERING,
        OrderStatus.DELIVERED,
    ),
}


def parse_status(value: object) -> OrderStatus:
    """Статус из белого списка или InvalidStatus."""
    if isinstance(value, OrderStatus):
        return value
    if isinstance(value, str) and value in ALLOWED_STATUSES:
        return OrderStatus(value)
    raise InvalidStatus(value)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def next_statuses(order_type: OrderType, status: OrderStatus) -> frozenset[OrderStatus]:
    """Статусы, в которые заказ может перейти по своему потоку."""
    if is_terminal(status):
        return frozenset()
    allowed = {OrderStatus.CANCELLED}
    flow = FLOWS[OrderType(order_type)]
    if status in flow:
        idx = flow.index(status)
        if idx + 1 < len(flow):
            allowed.add(flow[idx + 1])
    # Откат со сборки: не всё собрано, снова gathering
    if status == OrderStatus.TO_BE_DELIVERED and order_type == OrderType.CUSTOM:
        allowed.add(OrderStatus.GATHERING)
    return frozenset(allowed)


def is_allowed_transition(order_type: OrderType, current: OrderStatus, target: OrderStatus) -> bool:
    return target in next_statuses(order_type, current)


def gathering_status(items: Iterable[Mapping], current: OrderStatus) -> Optional[OrderStatus]:
    """
    Какой статус выставить индивидуальному заказу после отметки сборки позиций.

    Все позиции собраны: to be delivered. Позицию сняли со сборки, когда заказ
    уже был to be delivered: обратно gathering. Иначе None (статус не меняем).
    """
    items = list(items)
    if not items:
        return None
    gathered = sum(1 for item in items if item.get("gathered"))
    if gathered == len(items):
        if current != OrderStatus.TO_BE_DELIVERED:
            return OrderStatus.TO_BE_DELIVERED
        return None
    if current == OrderStatus.TO_BE_DELIVERED:
        return OrderStatus.GATHERING
    return None


class OrderStateMachine:
    """Проверяет и применяет смену статуса, сохраняя её через хранилище заказов."""

    def __init__(self, store, strict: bool = False):
        self.store = store
        self.strict = strict

    async def transition(self, order, target) -> Tuple[Optional[object], Optional[DeliveryError]]:
        """
        Перевести заказ в статус target.

        Args:
            order: DeliveryOrder (не изменяется)
            target: OrderStatus или строка статуса

        Returns:
            (новая копия заказа, None) при успехе, (None, error) при ошибке
        """
        try:
            new_status = parse_status(target)
        except InvalidStatus as e:
            logger.warning("Rejected status %r for order %s", target, order.id)
            return None, e

        if not is_allowed_transition(order.type, order.status, new_status):
            if self.strict:
                return None, InvalidTransition(order.status.value, new_status.value)
            logger.warning(
                "Out-of-flow transition accepted: order=%s type=%s %s -> %s",
                order.id, order.type.value, order.status.value, new_status.value,
            )

        try:
            confirmed = await self.store.update_status(order.id, order.type, new_status)
        except DeliveryError as e:
            logger.warning("Status update failed: order=%s target=%s err=%s", order.id, new_status.value, e)
            return None, e

        stored = new_status
        if confirmed and confirmed != new_status.value:
            try:
                stored = parse_status(confirmed)
            except InvalidStatus:
                logger.warning(
                    "Server confirmed unknown status %r for order %s, keeping %r",
                    confirmed, order.id, new_status.value,
                )
            else:
                logger.warning(
                    "Server confirmed %r instead of %r for order %s",
                    confirmed, new_status.value, order.id,
                )
        logger.info(
            "Order status updated: id=%s, %s -> %s",
            order.id, order.status.value, stored.value,
        )
        return order.model_copy(update={"status": stored}), None
