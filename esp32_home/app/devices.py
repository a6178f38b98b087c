from __future__ import annotations

from enum import Enum


class Device(str, Enum):
    LIGHT = "light"
    AC = "ac"
    FAN = "fan"
    BELL = "bell"


class DeviceStatus(str, Enum):
    ON = "ON"
    OFF = "OFF"


TOPIC_SENSOR = "datasensor/all"

# esp32/<channel>/status -> device. The firmware numbers its outputs, the dashboard names them.
STATUS_CHANNELS: dict[str, Device] = {
    "led1": Device.LIGHT,
    "led2": Device.AC,
    "led3": Device.FAN,
    "led4": Device.BELL,
}

# The bell is driven by the firmware itself and only reports its state.
CONTROL_TOPICS: dict[Device, str] = {
    Device.LIGHT: "esp32/led1/control",
    Device.AC: "esp32/led2/control",
    Device.FAN: "esp32/led3/control",
}

_ON_PAYLOADS = ("1", "ON", "TRUE")
_OFF_PAYLOADS = ("0", "OFF", "FALSE")


def status_topic(channel: str) -> str:
    return f"esp32/{channel}/status"


def subscribed_topics() -> list[str]:
    return [TOPIC_SENSOR] + [status_topic(ch) for ch in STATUS_CHANNELS]


def validate_tables() -> None:
    """Fail fast if the static topic tables drift from the device enumeration."""
    reported = list(STATUS_CHANNELS.values())
    for dev in Device:
        n = reported.count(dev)
        if n != 1:
            raise ValueError(f"device {dev.value} has {n} status channels, expected 1")
    for dev, topic in CONTROL_TOPICS.items():
        if not isinstance(dev, Device) or not topic:
            raise ValueError(f"invalid control topic entry for {dev!r}")
    if len(set(CONTROL_TOPICS.values())) != len(CONTROL_TOPICS):
        raise ValueError("control topics must be unique per device")


def parse_device(name: object) -> Device | None:
    try:
        return Device(str(name or "").strip().lower())
    except ValueError:
        return None


def parse_status(text: object) -> DeviceStatus | None:
    try:
        return DeviceStatus(str(text or "").strip().upper())
    except ValueError:
        return None


def status_from_payload(payload: str) -> DeviceStatus:
    s = str(payload or "").strip().upper()
    if s in _ON_PAYLOADS:
        return DeviceStatus.ON
    if s in _OFF_PAYLOADS:
        return DeviceStatus.OFF
    raise ValueError(f"unsupported status payload: {payload!r}")


def command_payload(status: DeviceStatus) -> str:
    return "1" if status == DeviceStatus.ON else "0"


def is_controllable(device: Device) -> bool:
    return device in CONTROL_TOPICS
