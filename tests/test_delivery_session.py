import asyncio
import logging

import pytest

from services import delivery_session
from services.delivery_session import DELIVERY_RADIUS_M, DeliverySession, SessionState, build_map_message
from services.errors import (
    IncompleteLocationData,
    LocationMismatch,
    MissingDestination,
    NetworkFailure,
    NotFound,
    PermissionDenied,
    SessionNotActive,
)
from services.geo import Coordinate, PositionSample
from services.location_stream import GeolocationStream
from services.order_status import OrderStatus


async def test_start_loads_order_and_tracks(delivery, fake_store, provider):
    order = await delivery.start(42, "normal")

    assert delivery.state is SessionState.TRACKING
    assert delivery.live
    assert order.id == 42
    assert delivery.destination == Coordinate(14.5995, 120.9842)
    assert fake_store.fetch_calls == [(42, "normal")]
    assert len(provider.callbacks) == 1


async def test_start_twice_is_an_error(tracking):
    with pytest.raises(RuntimeError):
        await tracking.start(42, "normal")


async def test_missing_destination_fails_before_tracking(make_order, fake_store, delivery, provider):
    fake_store.order = make_order(delivery_location=None)

    with pytest.raises(MissingDestination):
        await delivery.start(42, "normal")

    assert delivery.state is SessionState.FAILED
    assert provider.callbacks == []
    assert fake_store.location_calls == []


@pytest.mark.parametrize(
    "location",
    [
        {"address": "X", "latitude": "abc", "longitude": "120.9842"},
        {"address": "X", "latitude": None, "longitude": "120.9842"},
        {"address": "X"},
        "Manila",
    ],
)
async def test_unparsable_destination_is_missing(make_order, fake_store, delivery, provider, location):
    fake_store.order = make_order(delivery_location=location)

    with pytest.raises(MissingDestination):
        await delivery.start(42, "normal")

    assert provider.callbacks == []


@pytest.mark.parametrize("failure", [NotFound("Order not found"), NetworkFailure()])
async def test_fetch_failure_is_fatal(fake_store, delivery, failure):
    fake_store.fetch_error = failure

    with pytest.raises(type(failure)):
        await delivery.start(42, "normal")

    assert delivery.state is SessionState.FAILED


async def test_permission_denied_is_fatal(delivery, provider, fake_store):
    provider.granted = False

    with pytest.raises(PermissionDenied):
        await delivery.start(42, "normal")

    assert delivery.state is SessionState.FAILED
    assert fake_store.location_calls == []


async def test_sample_updates_map_and_pushes_location(tracking, provider, fake_store, map_messages):
    provider.emit(14.5990, 120.9840, at=0, accuracy=12.0)
    await tracking.drain()

    assert fake_store.location_calls == [Coordinate(14.5990, 120.9840)]
    assert tracking.order.driver_location.latitude == 14.5990
    assert 55 < tracking.distance_m < 65
    assert map_messages == [
        {
            "type": "UPDATE_MAP",
            "payload": {
                "driverLocation": {"latitude": 14.5990, "longitude": 120.9840, "accuracy": 12.0},
                "destinationLocation": {"latitude": 14.5995, "longitude": 120.9842},
            },
        }
    ]


def test_map_message_without_accuracy():
    sample = PositionSample(Coordinate(1.0, 2.0))
    message = build_map_message(sample, Coordinate(3.0, 4.0))
    assert message["payload"]["driverLocation"] == {"latitude": 1.0, "longitude": 2.0, "accuracy": 0}


async def test_broken_map_channel_does_not_stop_pushes(fake_store, provider):
    def broken(message):
        raise RuntimeError("map gone")

    session = DeliverySession(fake_store, GeolocationStream(provider), map_channel=broken)
    await session.start(42, "normal")
    provider.emit(14.5990, 120.9840)
    await session.drain()

    assert len(fake_store.location_calls) == 1
    session.close()


async def test_failed_push_keeps_tracking(tracking, provider, fake_store, caplog):
    fake_store.location_failures = {1: NetworkFailure("HTTP 500")}

    with caplog.at_level(logging.WARNING, logger="services.delivery_session"):
        provider.emit(14.5990, 120.9840, at=0)
        await tracking.drain()
        provider.emit(14.5991, 120.9840, at=10)
        await tracking.drain()

    assert len(fake_store.location_calls) == 2
    assert tracking.state is SessionState.TRACKING
    assert "Failed to push driver location" in caplog.text


async def test_only_latest_sample_waits_while_push_in_flight(tracking, provider, fake_store, run_pending):
    fake_store.location_gate = asyncio.Event()

    provider.emit(14.5990, 120.9840, at=0)
    await run_pending()
    provider.emit(14.5991, 120.9840, at=10)
    provider.emit(14.5992, 120.9840, at=20)
    await run_pending()
    assert len(fake_store.location_calls) == 1

    fake_store.location_gate.set()
    await tracking.drain()

    assert fake_store.location_calls == [Coordinate(14.5990, 120.9840), Coordinate(14.5992, 120.9840)]


async def test_mark_delivered_too_far(tracking, provider, fake_store):
    provider.emit(14.5990, 120.9840)
    await tracking.drain()

    order, error = await tracking.mark_delivered()

    assert order is None
    assert isinstance(error, LocationMismatch)
    assert 55 < error.distance_m < 65
    assert error.threshold_m == DELIVERY_RADIUS_M
    assert f"{error.distance_m:.0f} м" in error.message
    assert "50 м" in error.message
    assert fake_store.status_calls == []
    assert tracking.state is SessionState.TRACKING


@pytest.mark.parametrize("distance, delivered", [(0.0, True), (50.0, True), (50.01, False)])
async def test_delivery_radius_boundary(tracking, provider, fake_store, monkeypatch, distance, delivered):
    monkeypatch.setattr(delivery_session, "distance_meters", lambda a, b: distance)
    provider.emit(14.5990, 120.9840)
    await tracking.drain()

    order, error = await tracking.mark_delivered()

    if delivered:
        assert error is None
        assert order.status is OrderStatus.DELIVERED
        assert fake_store.status_calls == [OrderStatus.DELIVERED]
    else:
        assert isinstance(error, LocationMismatch)
        assert fake_store.status_calls == []


async def test_delivered_session_tears_down(tracking, provider, fake_store):
    provider.emit(14.5995, 120.9842)
    await tracking.drain()

    order, error = await tracking.mark_delivered()

    assert error is None
    assert tracking.state is SessionState.COMPLETED
    assert tracking.order.status is OrderStatus.DELIVERED
    assert provider.removed == 1
    provider.emit(14.6000, 120.9900, at=60)
    await tracking.drain()
    assert len(fake_store.location_calls) == 1


async def test_mark_delivered_without_position(tracking):
    order, error = await tracking.mark_delivered()
    assert order is None
    assert isinstance(error, IncompleteLocationData)


async def test_mark_delivered_store_failure_is_retryable(tracking, provider, fake_store):
    provider.emit(14.5995, 120.9842)
    await tracking.drain()
    fake_store.status_error = NetworkFailure()

    order, error = await tracking.mark_delivered()
    assert isinstance(error, NetworkFailure)
    assert tracking.state is SessionState.TRACKING
    assert tracking.order.status is OrderStatus.PROCESSING

    fake_store.status_error = None
    order, error = await tracking.mark_delivered()
    assert error is None
    assert tracking.state is SessionState.COMPLETED


async def test_start_delivery_does_not_check_distance(tracking, fake_store):
    order, error = await tracking.start_delivery()

    assert error is None
    assert order.status is OrderStatus.DELIVERING
    assert tracking.order.status is OrderStatus.DELIVERING
    assert fake_store.status_calls == [OrderStatus.DELIVERING]


@pytest.mark.parametrize("action", ["start_delivery", "mark_delivered"])
async def test_actions_require_tracking(delivery, fake_store, action):
    order, error = await getattr(delivery, action)()

    assert order is None
    assert isinstance(error, SessionNotActive)
    assert fake_store.status_calls == []


async def test_close_is_idempotent_and_unsubscribes(tracking, provider):
    tracking.close()
    tracking.close()

    assert tracking.state is SessionState.ABANDONED
    assert provider.removed == 1
    order, error = await tracking.start_delivery()
    assert isinstance(error, SessionNotActive)


async def test_status_confirmed_after_close_is_ignored(tracking, fake_store, run_pending):
    fake_store.status_gate = asyncio.Event()
    task = asyncio.create_task(tracking.start_delivery())
    await run_pending()

    tracking.close()
    fake_store.status_gate.set()
    await task

    assert tracking.state is SessionState.ABANDONED
    assert tracking.order.status is OrderStatus.PROCESSING


async def test_sample_during_status_update_is_kept(tracking, provider, fake_store, run_pending):
    fake_store.status_gate = asyncio.Event()
    task = asyncio.create_task(tracking.start_delivery())
    await run_pending()

    provider.emit(14.5990, 120.9840)
    fake_store.status_gate.set()
    order, error = await task

    assert error is None
    assert tracking.order.status is OrderStatus.DELIVERING
    assert tracking.order.driver_location.latitude == 14.5990
    assert tracking.order.driver_location.longitude == 120.9840
    assert order is tracking.order


async def test_close_during_loading_cancels_subscription(fake_store, provider, run_pending):
    gate = asyncio.Event()

    async def slow_permission():
        await gate.wait()
        return True

    provider.request_permission = slow_permission
    session = DeliverySession(fake_store, GeolocationStream(provider))
    task = asyncio.create_task(session.start(42, "normal"))
    await run_pending()

    session.close()
    gate.set()
    await task

    assert session.state is SessionState.ABANDONED
    assert provider.removed == 1
    provider.emit(14.5990, 120.9840)
    assert fake_store.location_calls == []


async def test_context_manager_closes(fake_store, provider):
    async with DeliverySession(fake_store, GeolocationStream(provider)) as session:
        await session.start(42, "normal")
    assert session.state is SessionState.ABANDONED
    assert provider.removed == 1
