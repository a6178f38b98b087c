from __future__ import annotations

import pytest

from app import devices
from app.devices import Device, DeviceStatus


def test_tables_are_complete() -> None:
    devices.validate_tables()


def test_validate_tables_rejects_missing_status_channel(monkeypatch: pytest.MonkeyPatch) -> None:
    channels = dict(devices.STATUS_CHANNELS)
    del channels["led4"]
    monkeypatch.setattr(devices, "STATUS_CHANNELS", channels)
    with pytest.raises(ValueError, match="bell"):
        devices.validate_tables()


def test_validate_tables_rejects_duplicate_channel(monkeypatch: pytest.MonkeyPatch) -> None:
    channels = dict(devices.STATUS_CHANNELS)
    channels["led9"] = Device.FAN
    monkeypatch.setattr(devices, "STATUS_CHANNELS", channels)
    with pytest.raises(ValueError, match="fan"):
        devices.validate_tables()


def test_subscribed_topics() -> None:
    assert devices.subscribed_topics() == [
        "datasensor/all",
        "esp32/led1/status",
        "esp32/led2/status",
        "esp32/led3/status",
        "esp32/led4/status",
    ]


@pytest.mark.parametrize("payload", ["1", "ON", "on", " true "])
def test_status_payload_on(payload: str) -> None:
    assert devices.status_from_payload(payload) == DeviceStatus.ON


@pytest.mark.parametrize("payload", ["0", "OFF", "false"])
def test_status_payload_off(payload: str) -> None:
    assert devices.status_from_payload(payload) == DeviceStatus.OFF


@pytest.mark.parametrize("payload", ["", "2", "maybe"])
def test_status_payload_rejects_garbage(payload: str) -> None:
    with pytest.raises(ValueError):
        devices.status_from_payload(payload)


def test_parsers() -> None:
    assert devices.parse_device(" Fan ") == Device.FAN
    assert devices.parse_device("heater") is None
    assert devices.parse_device(None) is None
    assert devices.parse_status("on") == DeviceStatus.ON
    assert devices.parse_status("dim") is None


def test_command_payload_and_controllable() -> None:
    assert devices.command_payload(DeviceStatus.ON) == "1"
    assert devices.command_payload(DeviceStatus.OFF) == "0"
    assert devices.is_controllable(Device.LIGHT)
    assert not devices.is_controllable(Device.BELL)
