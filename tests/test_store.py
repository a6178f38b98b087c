from __future__ import annotations

import pytest

from app.devices import Device, DeviceStatus
from app.store import DeviceStateStore


def test_defaults_to_off() -> None:
    store = DeviceStateStore()
    assert all(store.get_status(dev) == DeviceStatus.OFF for dev in Device)


def test_set_and_snapshot() -> None:
    store = DeviceStateStore()
    store.set_status(Device.LIGHT, DeviceStatus.ON)
    store.set_status("fan", DeviceStatus.ON)
    assert store.get_status("light") == DeviceStatus.ON
    assert store.snapshot() == {"light": "ON", "ac": "OFF", "fan": "ON", "bell": "OFF"}


def test_snapshot_is_a_copy() -> None:
    store = DeviceStateStore()
    snap = store.snapshot()
    snap["light"] = "ON"
    assert store.get_status(Device.LIGHT) == DeviceStatus.OFF


def test_reset_all_turns_everything_off() -> None:
    store = DeviceStateStore()
    store.seed({dev: DeviceStatus.ON for dev in Device})
    store.reset_all()
    for dev in Device:
        assert store.get_status(dev) == DeviceStatus.OFF


def test_unknown_device_reads_off_but_cannot_be_set() -> None:
    store = DeviceStateStore()
    assert store.get_status("heater") == DeviceStatus.OFF
    assert store.get_status("") == DeviceStatus.OFF
    assert store.get_status("light") == DeviceStatus.OFF
    with pytest.raises(KeyError):
        store.set_status("heater", DeviceStatus.ON)
