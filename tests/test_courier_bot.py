import pytest
from aiogram.filters import CommandObject

from handlers.courier import _parse_args, format_order_card
from keyboards.courier_kbs import get_delivery_kb, get_location_request_kb
from middlewares.auth_middleware import CourierAccessMiddleware
from services.order_status import OrderStatus, OrderType
from services.telegram_utils import escape_markdown


def _callbacks(markup):
    return [button.callback_data for row in markup.inline_keyboard for button in row]


@pytest.mark.parametrize(
    "args, expected",
    [
        ("normal 15", (OrderType.NORMAL, 15)),
        ("CUSTOM 7", (OrderType.CUSTOM, 7)),
        ("custom", None),
        ("express 7", None),
        ("normal seven", None),
        (None, None),
    ],
)
def test_parse_delivery_command(args, expected):
    assert _parse_args(CommandObject(prefix="/", command="delivery", args=args)) == expected


def test_order_card_escapes_server_fields(make_order):
    order = make_order(
        user={"first_name": "Maria_Ana", "last_name": "Cruz"},
        delivery_location={"address": "Block *5*", "latitude": 1, "longitude": 2},
    )
    card = format_order_card(order)
    assert "#42" in card
    assert "Maria\\_Ana Cruz" in card
    assert "Block \\*5\\*" in card
    assert "Processing" in card


def test_order_card_without_location(make_order):
    card = format_order_card(make_order(user=None, delivery_location=None))
    assert "Клиент: N/A" in card
    assert "Адрес: N/A" in card


@pytest.mark.parametrize(
    "status, expected",
    [
        (OrderStatus.PROCESSING, ["delivery:start", "delivery:close"]),
        (OrderStatus.TO_BE_DELIVERED, ["delivery:start", "delivery:close"]),
        (OrderStatus.DELIVERING, ["delivery:done", "delivery:close"]),
        (OrderStatus.DELIVERED, ["delivery:close"]),
    ],
)
def test_delivery_keyboard(status, expected):
    assert _callbacks(get_delivery_kb(status)) == expected


def test_location_request_keyboard():
    markup = get_location_request_kb()
    assert markup.keyboard[0][0].request_location is True


def test_escape_markdown():
    assert escape_markdown("a_b*c[d]`e\\") == "a\\_b\\*c\\[d\\]\\`e\\\\"
    assert escape_markdown(None) == ""


async def test_access_middleware_without_couriers_lets_everyone_in():
    middleware = CourierAccessMiddleware(courier_ids=[])
    calls = []

    async def handler(event, data):
        calls.append(event)
        return "handled"

    assert await middleware(handler, object(), {}) == "handled"
    assert len(calls) == 1


async def test_access_middleware_blocks_unknown_user():
    middleware = CourierAccessMiddleware(courier_ids=[100])

    async def handler(event, data):
        raise AssertionError("handler must not run")

    assert await middleware(handler, object(), {}) is None
