"""
Эндпоинт сервера доставки (FastAPI).

    GET  /delivery?orderId=..&orderType=..                      → {"order": {...}}
    POST /delivery?action=update-location&orderId=..&orderType=.. {"latitude", "longitude"}
    POST /delivery?action=update-status&orderId=..&orderType=..   {"status"}
    POST /delivery/items/{item_id}/gathered                      {"gathered"}

Статус проверяется только по белому списку, переход из текущего статуса
не проверяется. Ошибки отдаются как {"message": ...}.
"""
import json
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from middlewares.logging_middleware import request_logging_middleware
from services.order_repository import OrderRepository
from services.order_status import ALLOWED_STATUSES, OrderStatus, OrderType
from services.validation import ItemGatheredInput, LocationUpdateInput, StatusUpdateInput

logger = logging.getLogger(__name__)

INVALID_REQUEST = (
    "Invalid request. Specify orderId and orderType, "
    "or action, orderId, and orderType for update."
)


def _error(message: str, status: int) -> JSONResponse:
    return JSONResponse({"message": message}, status_code=status)


def get_repository(request: Request) -> OrderRepository:
    return request.app.state.repository


def _parse_order_id(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _parse_order_type(raw: Optional[str]) -> OrderType:
    # Всё, что не custom, считается обычным заказом
    return OrderType.CUSTOM if raw == OrderType.CUSTOM.value else OrderType.NORMAL


async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


async def get_order(
    action: Optional[str] = Query(None),
    order_id: Optional[str] = Query(None, alias="orderId"),
    order_type: Optional[str] = Query(None, alias="orderType"),
    repository: OrderRepository = Depends(get_repository),
):
    parsed_id = _parse_order_id(order_id)
    if parsed_id is None or action is not None:
        return _error(INVALID_REQUEST, 400)

    try:
        order = await repository.get_order(parsed_id, _parse_order_type(order_type))
    except Exception as e:
        logger.error("Failed to load order %s: %s", parsed_id, e, exc_info=True)
        return _error(f"Failed to load order: {e}", 500)

    if order is None:
        return _error("Order not found", 404)
    return {"order": order}


async def _update_location(
    request: Request, repository: OrderRepository, order_id: int, order_type: OrderType
) -> JSONResponse:
    data = await _json_body(request)
    if data.get("latitude") is None or data.get("longitude") is None:
        return _error("Latitude and longitude are required.", 400)
    try:
        payload = LocationUpdateInput.model_validate(data)
    except ValidationError:
        return _error("Latitude and longitude must be valid coordinates.", 400)

    try:
        updated = await repository.update_driver_location(
            order_id, order_type, payload.latitude, payload.longitude
        )
    except Exception as e:
        logger.error("Failed to update driver location for order %s: %s", order_id, e, exc_info=True)
        return _error(f"Failed to update driver location: {e}", 500)

    if not updated:
        return _error("Order not found", 404)
    return JSONResponse({
        "message": "Driver location updated successfully.",
        "newLocation": {"latitude": payload.latitude, "longitude": payload.longitude},
    })


async def _update_status(
    request: Request, repository: OrderRepository, order_id: int, order_type: OrderType
) -> JSONResponse:
    data = await _json_body(request)
    if data.get("status") is None:
        return _error("New status is required.", 400)
    try:
        payload = StatusUpdateInput.model_validate(data)
    except ValidationError:
        return _error("Invalid status provided.", 400)
    if payload.status not in ALLOWED_STATUSES:
        logger.warning("Rejected status %r for order %s", payload.status, order_id)
        return _error("Invalid status provided.", 400)

    new_status = OrderStatus(payload.status)
    try:
        updated = await repository.update_status(order_id, order_type, new_status)
    except Exception as e:
        logger.error("Failed to update status for order %s: %s", order_id, e, exc_info=True)
        return _error(f"Failed to update order status: {e}", 500)

    if not updated:
        return _error("Order not found", 404)
    return JSONResponse({
        "message": f"Order status updated to '{new_status.value}' successfully.",
        "newStatus": new_status.value,
    })


async def post_action(
    request: Request,
    action: Optional[str] = Query(None),
    order_id: Optional[str] = Query(None, alias="orderId"),
    order_type: Optional[str] = Query(None, alias="orderType"),
    repository: OrderRepository = Depends(get_repository),
):
    parsed_id = _parse_order_id(order_id)
    if parsed_id is None:
        return _error(INVALID_REQUEST, 400)
    if action == "update-location":
        return await _update_location(request, repository, parsed_id, _parse_order_type(order_type))
    if action == "update-status":
        return await _update_status(request, repository, parsed_id, _parse_order_type(order_type))
    return _error(INVALID_REQUEST, 400)


async def set_item_gathered(
    item_id: int,
    request: Request,
    repository: OrderRepository = Depends(get_repository),
):
    data = await _json_body(request)
    try:
        payload = ItemGatheredInput.model_validate(data)
    except ValidationError:
        return _error("Gathered flag must be true or false.", 400)

    try:
        status = await repository.set_item_gathered(item_id, payload.gathered)
    except Exception as e:
        logger.error("Failed to update item %s: %s", item_id, e, exc_info=True)
        return _error(f"Failed to update gathered status: {e}", 500)

    if status is None:
        return _error("Item not found", 404)
    return JSONResponse({
        "message": "Gathered status updated successfully.",
        "gathered": payload.gathered,
        "orderStatus": status.value,
    })


async def preflight():
    # Preflight с Origin перехватывает CORSMiddleware, сюда доходит голый OPTIONS
    return Response(status_code=200)


def create_app(repository: OrderRepository, path: str = "/delivery") -> FastAPI:
    """Приложение FastAPI с внедрённым хранилищем заказов."""
    app = FastAPI(title="Delivery API", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.repository = repository
    app.add_api_route(path, get_order, methods=["GET"])
    app.add_api_route(path, post_action, methods=["POST"])
    app.add_api_route(path, preflight, methods=["OPTIONS"])
    app.add_api_route(f"{path}/items/{{item_id}}/gathered", set_item_gathered, methods=["POST"])
    app.middleware("http")(request_logging_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-ID"],
    )
    return app
