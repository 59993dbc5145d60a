"""
Ошибки доставки.

Фатальные при старте сессии (PermissionDenied, MissingDestination, NotFound,
NetworkFailure) поднимаются как исключения. Ошибки действий курьера
возвращаются вторым элементом кортежа (order, error).
"""
from typing import Optional


class DeliveryError(Exception):
    """Базовая ошибка доставки. В message текст для пользователя."""

    default_message = "Ошибка доставки"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class PermissionDenied(DeliveryError):
    default_message = "Доступ к геолокации запрещён"


class MissingDestination(DeliveryError):
    default_message = "У заказа нет корректной точки доставки"


class InvalidStatus(DeliveryError):
    default_message = "Недопустимый статус заказа"

    def __init__(self, status: object = None, message: Optional[str] = None):
        self.status = status
        super().__init__(message or f"Недопустимый статус заказа: {status!r}")


class InvalidTransition(DeliveryError):
    default_message = "Недопустимый переход статуса"

    def __init__(self, current: object, target: object):
        self.current = current
        self.target = target
        super().__init__(f"Переход {current!s} → {target!s} не разрешён")


class IncompleteLocationData(DeliveryError):
    default_message = "Нет текущей позиции курьера или точки доставки"


class LocationMismatch(DeliveryError):
    """Курьер слишком далеко от точки доставки. Ожидаемый исход, не сбой."""

    def __init__(self, distance_m: float, threshold_m: float):
        self.distance_m = distance_m
        self.threshold_m = threshold_m
        super().__init__(
            f"Вы находитесь в {distance_m:.0f} м от точки доставки. "
            f"Отметить заказ доставленным можно в радиусе {threshold_m:.0f} м."
        )


class NetworkFailure(DeliveryError):
    default_message = "Сервер доставки недоступен. Попробуйте ещё раз."

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class NotFound(DeliveryError):
    default_message = "Заказ не найден"


class SessionNotActive(DeliveryError):
    default_message = "Сессия доставки не активна"
