from __future__ import annotations

import asyncio

import pytest

from app.control import ERR_INVALID, ERR_OFFLINE, ERR_PUBLISH, ControlHandler
from app.devices import Device, DeviceStatus
from app.monitor import LivenessMonitor
from app.store import DeviceStateStore


@pytest.fixture
def store() -> DeviceStateStore:
    return DeviceStateStore()


@pytest.fixture
def monitor(store, clock) -> LivenessMonitor:
    return LivenessMonitor(store, timeout_s=10, poll_interval_s=5, clock=clock)


def _go_online(monitor: LivenessMonitor) -> None:
    monitor.touch("telemetry")
    monitor.mark_online()


@pytest.mark.parametrize(
    "request_data",
    [
        {"device": "heater", "status": "ON"},
        {"device": "bell", "status": "ON"},
        {"device": "light", "status": "DIM"},
        {"device": "light"},
        "light ON",
        None,
    ],
)
def test_invalid_requests_never_reach_the_broker(monitor, fake_mqtt, request_data) -> None:
    _go_online(monitor)
    handler = ControlHandler(monitor=monitor, mqtt=fake_mqtt)

    result = asyncio.run(handler.handle(request_data))

    assert not result.ok
    assert result.error == ERR_INVALID
    assert fake_mqtt.published == []


def test_offline_request_is_rejected(monitor, fake_mqtt) -> None:
    handler = ControlHandler(monitor=monitor, mqtt=fake_mqtt)

    result = asyncio.run(handler.handle({"device": "fan", "status": "ON"}))

    assert result.error == ERR_OFFLINE
    assert result.error_event() == {"device": "fan", "error": ERR_OFFLINE}
    assert fake_mqtt.published == []


def test_online_request_is_published_without_touching_state(store, monitor, fake_mqtt) -> None:
    _go_online(monitor)
    handler = ControlHandler(monitor=monitor, mqtt=fake_mqtt)

    on = asyncio.run(handler.handle({"device": "light", "status": "ON"}))
    off = asyncio.run(handler.handle({"device": "AC", "status": "off"}))

    assert on.ok and off.ok
    assert (on.device, on.status) == ("light", "ON")
    assert fake_mqtt.published == [("esp32/led1/control", "1"), ("esp32/led2/control", "0")]
    # only the ESP32's own confirmation changes the store
    assert store.get_status(Device.LIGHT) == DeviceStatus.OFF


def test_publish_failure_is_reported(monitor, fake_mqtt) -> None:
    _go_online(monitor)
    fake_mqtt.publish_ok = False
    handler = ControlHandler(monitor=monitor, mqtt=fake_mqtt)

    result = asyncio.run(handler.handle({"device": "fan", "status": "ON"}))

    assert result.error == ERR_PUBLISH


def test_publish_exception_is_reported(monitor) -> None:
    class ExplodingMqtt:
        def publish(self, topic, payload, *, retain=False, qos=0):
            raise OSError("socket closed")

    _go_online(monitor)
    handler = ControlHandler(monitor=monitor, mqtt=ExplodingMqtt())

    result = asyncio.run(handler.handle({"device": "fan", "status": "OFF"}))

    assert result.error == ERR_PUBLISH
