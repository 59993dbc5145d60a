"""
Геометрия доставки: координаты, отсчёты геолокации и расстояние по формуле Haversine.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True, slots=True)
class Coordinate:
    """Точка на Земле (градусы)."""
    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True, slots=True)
class PositionSample:
    """Отсчёт геолокации устройства: координата + точность (м) + время."""
    coordinate: Coordinate
    accuracy: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def latitude(self) -> float:
        return self.coordinate.latitude

    @property
    def longitude(self) -> float:
        return self.coordinate.longitude


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """
    Расстояние по дуге большого круга между двумя точками (в метрах).

    Haversine с радиусом Земли 6371 км. Для одинаковых точек 0,
    для антиподов половина окружности (π·R).
    """
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Погрешность float может дать h чуть больше 1 для антиподов
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c * 1000


def _parse_degrees(value: Any, name: str) -> float:
    if value is None or isinstance(value, bool):
        raise ValueError(f"{name} отсутствует")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError(f"{name} пустая строка")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} не число: {value!r}")
    if not math.isfinite(number):
        raise ValueError(f"{name} не конечное число: {value!r}")
    return number


def coordinate_from_raw(latitude: Any, longitude: Any) -> Coordinate:
    """
    Строгий разбор координат из ответа сервера (числа или числовые строки).

    Raises:
        ValueError: значение отсутствует, не число или вне допустимого диапазона
    """
    lat = _parse_degrees(latitude, "latitude")
    lon = _parse_degrees(longitude, "longitude")
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"latitude вне диапазона: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"longitude вне диапазона: {lon}")
    return Coordinate(latitude=lat, longitude=lon)
