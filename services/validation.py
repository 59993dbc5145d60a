"""
Модели данных API доставки: разбор ответов сервера и валидация тел запросов.
"""
from typing import Any, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator

from services.order_status import OrderStatus, OrderType


class DeliveryUser(BaseModel):
    """Клиент, оформивший заказ."""

    model_config = ConfigDict(extra="allow")

    id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None


class DeliveryLocation(BaseModel):
    """
    Точка доставки. Координаты не приводятся к float здесь:
    сервер может вернуть строки, строгий разбор делает сессия доставки.
    """

    model_config = ConfigDict(extra="allow")

    address: Optional[str] = None
    latitude: Any = None
    longitude: Any = None


class DriverLocation(BaseModel):
    """Последняя известная позиция курьера."""

    latitude: float
    longitude: float


class DeliveryOrder(BaseModel):
    """Заказ в том виде, в каком его отдаёт GET /delivery."""

    model_config = ConfigDict(extra="allow")

    id: int
    type: OrderType = OrderType.NORMAL
    status: OrderStatus
    user: Optional[DeliveryUser] = None
    delivery_location: Optional[DeliveryLocation] = None
    driver_location: Optional[DriverLocation] = None
    items: List[dict] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def collect_driver_location(cls, data: Any) -> Any:
        """Старый формат ответа: driver_latitude / driver_longitude на верхнем уровне."""
        if not isinstance(data, dict) or data.get("driver_location") is not None:
            return data
        lat = data.get("driver_latitude")
        lon = data.get("driver_longitude")
        if lat is not None and lon is not None:
            data = {**data, "driver_location": {"latitude": lat, "longitude": lon}}
        return data

    @field_validator("delivery_location", mode="before")
    @classmethod
    def drop_malformed_location(cls, v: Any) -> Any:
        """Не объект, значит точки доставки нет."""
        if v is not None and not isinstance(v, dict):
            return None
        return v


class LocationUpdateInput(BaseModel):
    """Тело POST action=update-location."""

    latitude: float = Field(..., ge=-90, le=90, description="Широта")
    longitude: float = Field(..., ge=-180, le=180, description="Долгота")

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def reject_booleans(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("Координата должна быть числом")
        return v


class StatusUpdateInput(BaseModel):
    """Тело POST action=update-status."""

    status: str = Field(..., min_length=1, description="Новый статус")


class ItemGatheredInput(BaseModel):
    """Тело POST .../items/{item_id}/gathered."""

    gathered: StrictBool = Field(..., description="Позиция собрана")
