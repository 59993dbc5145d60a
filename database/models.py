from datetime import datetime
from typing import Optional, List

from sqlalchemy import BigInteger, Integer, String, Text, Boolean, ForeignKey, DateTime, Float, Numeric, Enum as PgEnum, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database.core import Base
from config import config
from services.order_status import OrderStatus


# В SQLite автоинкремент корректно работает только для PRIMARY KEY типа INTEGER (rowid).
PK_INT = Integer if config.DB_DIALECT in ("sqlite", "sqlite3") else BigInteger


def _status_column():
    # В БД храним значения ("to be quoted"), а не имена членов enum
    return mapped_column(
        PgEnum(
            OrderStatus,
            name="order_status_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        index=True,
    )

# --- Models ---

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)

    __table_args__ = (
        {"comment": "Клиенты"},
    )


class School(Base):
    __tablename__ = "schools"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    __table_args__ = (
        {"comment": "Школы, основные точки доставки"},
    )


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    school_id: Mapped[Optional[int]] = mapped_column(ForeignKey("schools.id"), nullable=True, index=True)

    status: Mapped[OrderStatus] = _status_column()
    # JSON {"address", "latitude", "longitude"}; используется, если у школы нет координат
    delivery_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    driver_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    driver_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[Optional["User"]] = relationship("User")
    school: Mapped[Optional["School"]] = relationship("School")
    items: Mapped[List["OrderDetail"]] = relationship(
        "OrderDetail", back_populates="order", cascade="all, delete-orphan", order_by="OrderDetail.id"
    )

    __table_args__ = (
        {"comment": "Обычные заказы"},
    )


class OrderDetail(Base):
    __tablename__ = "order_details"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class CustomOrder(Base):
    __tablename__ = "custom_orders"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    school_id: Mapped[Optional[int]] = mapped_column(ForeignKey("schools.id"), nullable=True, index=True)

    status: Mapped[OrderStatus] = _status_column()
    delivery_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    driver_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    driver_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[Optional["User"]] = relationship("User")
    school: Mapped[Optional["School"]] = relationship("School")
    items: Mapped[List["CustomOrderItem"]] = relationship(
        "CustomOrderItem", back_populates="order", cascade="all, delete-orphan", order_by="CustomOrderItem.id"
    )

    __table_args__ = (
        {"comment": "Индивидуальные заказы (через расчёт стоимости)"},
    )


class CustomOrderItem(Base):
    __tablename__ = "custom_order_items"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    custom_order_id: Mapped[int] = mapped_column(ForeignKey("custom_orders.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    gathered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order: Mapped["CustomOrder"] = relationship("CustomOrder", back_populates="items")
