import logging

import pytest

from services.errors import InvalidStatus, InvalidTransition, NetworkFailure, NotFound
from services.order_status import (
    ALLOWED_STATUSES,
    OrderStateMachine,
    OrderStatus,
    OrderType,
    gathering_status,
    is_allowed_transition,
    next_statuses,
    parse_status,
)

BOGUS_STATUSES = ["shipped", "Delivered", "", "to_be_delivered", None, 3]


def test_allowed_statuses_whitelist():
    assert ALLOWED_STATUSES == {
        "pending", "processing", "delivering", "delivered", "cancelled",
        "to be quoted", "quoted", "approved", "gathering", "to be delivered", "to deliver",
    }


def test_parse_status_accepts_whitelisted_strings():
    assert parse_status("to be delivered") is OrderStatus.TO_BE_DELIVERED
    assert parse_status(OrderStatus.DELIVERING) is OrderStatus.DELIVERING


@pytest.mark.parametrize("value", BOGUS_STATUSES)
def test_parse_status_rejects_everything_else(value):
    with pytest.raises(InvalidStatus):
        parse_status(value)


def test_normal_flow():
    assert next_statuses(OrderType.NORMAL, OrderStatus.PENDING) == {OrderStatus.PROCESSING, OrderStatus.CANCELLED}
    assert next_statuses(OrderType.NORMAL, OrderStatus.DELIVERING) == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def test_custom_order_can_return_to_gathering():
    assert next_statuses(OrderType.CUSTOM, OrderStatus.TO_BE_DELIVERED) == {
        OrderStatus.DELIVERING, OrderStatus.GATHERING, OrderStatus.CANCELLED,
    }
    assert not is_allowed_transition(OrderType.NORMAL, OrderStatus.PROCESSING, OrderStatus.GATHERING)


@pytest.mark.parametrize("status", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
def test_terminal_statuses_have_no_successors(status):
    assert next_statuses(OrderType.NORMAL, status) == frozenset()
    assert next_statuses(OrderType.CUSTOM, status) == frozenset()


def test_gathering_status():
    all_gathered = [{"gathered": True}, {"gathered": 1}]
    partly = [{"gathered": True}, {"gathered": False}]
    assert gathering_status(all_gathered, OrderStatus.GATHERING) is OrderStatus.TO_BE_DELIVERED
    assert gathering_status(all_gathered, OrderStatus.TO_BE_DELIVERED) is None
    assert gathering_status(partly, OrderStatus.TO_BE_DELIVERED) is OrderStatus.GATHERING
    assert gathering_status(partly, OrderStatus.GATHERING) is None
    assert gathering_status([], OrderStatus.GATHERING) is None


@pytest.mark.parametrize("current", list(OrderStatus))
@pytest.mark.parametrize("target", BOGUS_STATUSES)
async def test_unknown_target_is_rejected_without_store_call(make_order, fake_store, current, target):
    order = make_order(status=current.value)
    machine = OrderStateMachine(fake_store)

    result, error = await machine.transition(order, target)

    assert result is None
    assert isinstance(error, InvalidStatus)
    assert fake_store.status_calls == []
    assert order.status is current


async def test_transition_returns_updated_copy(make_order, fake_store):
    order = make_order(status="processing")

    result, error = await OrderStateMachine(fake_store).transition(order, "delivering")

    assert error is None
    assert result.status is OrderStatus.DELIVERING
    assert order.status is OrderStatus.PROCESSING
    assert fake_store.status_calls == [OrderStatus.DELIVERING]


@pytest.mark.parametrize("failure", [NetworkFailure(), NotFound()])
async def test_store_failure_leaves_order_unchanged(make_order, fake_store, failure):
    order = make_order(status="processing")
    fake_store.status_error = failure

    result, error = await OrderStateMachine(fake_store).transition(order, OrderStatus.DELIVERING)

    assert result is None
    assert error is failure
    assert order.status is OrderStatus.PROCESSING


async def test_permissive_machine_accepts_out_of_flow_transition(make_order, fake_store, caplog):
    order = make_order(status="pending")

    with caplog.at_level(logging.WARNING, logger="services.order_status"):
        result, error = await OrderStateMachine(fake_store).transition(order, OrderStatus.DELIVERED)

    assert error is None
    assert result.status is OrderStatus.DELIVERED
    assert "Out-of-flow transition accepted" in caplog.text


async def test_strict_machine_rejects_out_of_flow_transition(make_order, fake_store):
    order = make_order(status="pending")

    result, error = await OrderStateMachine(fake_store, strict=True).transition(order, OrderStatus.DELIVERED)

    assert result is None
    assert isinstance(error, InvalidTransition)
    assert error.current == "pending"
    assert error.target == "delivered"
    assert fake_store.status_calls == []


async def test_strict_machine_allows_flow_step(make_order, fake_store):
    order = make_order(type="custom", status="to be delivered")

    result, error = await OrderStateMachine(fake_store, strict=True).transition(order, "gathering")

    assert error is None
    assert result.status is OrderStatus.GATHERING


@pytest.mark.parametrize(
    "confirmed, expected",
    [
        ("to be delivered", OrderStatus.TO_BE_DELIVERED),
        ("teleported", OrderStatus.DELIVERING),
        (None, OrderStatus.DELIVERING),
    ],
)
async def test_server_confirmed_status_is_committed(make_order, fake_store, confirmed, expected):
    async def update_status(order_id, order_type, new_status):
        fake_store.status_calls.append(new_status)
        return confirmed

    fake_store.update_status = update_status
    order = make_order(type="custom", status="to be delivered")

    result, error = await OrderStateMachine(fake_store).transition(order, OrderStatus.DELIVERING)

    assert error is None
    assert result.status is expected
    assert fake_store.status_calls == [OrderStatus.DELIVERING]
