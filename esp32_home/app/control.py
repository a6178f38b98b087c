from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .devices import CONTROL_TOPICS, command_payload, is_controllable, parse_device, parse_status
from .monitor import LivenessMonitor

_LOGGER = logging.getLogger("esp32_home.control")

ERR_INVALID = "Invalid command"
ERR_OFFLINE = "ESP32 offline"
ERR_PUBLISH = "Failed to send command"


class Publisher(Protocol):
    def publish(self, topic: str, payload: Any, *, retain: bool = False, qos: int = 0) -> bool: ...


@dataclass(frozen=True)
class ControlResult:
    ok: bool
    device: str
    status: str | None = None
    error: str | None = None

    def error_event(self) -> dict[str, Any]:
        return {"device": self.device, "error": self.error}


class ControlHandler:
    """Validates dashboard control requests and forwards them to the ESP32.

    A request is only an intent: the device state changes when the ESP32
    confirms it on its status topic, never here.
    """

    def __init__(self, *, monitor: LivenessMonitor, mqtt: Publisher, qos: int = 0):
        self._monitor = monitor
        self._mqtt = mqtt
        self._qos = qos

    async def handle(self, data: Any) -> ControlResult:
        if not isinstance(data, dict):
            return ControlResult(ok=False, device="", error=ERR_INVALID)

        raw_device = str(data.get("device") or "")
        device = parse_device(raw_device)
        status = parse_status(data.get("status"))
        _LOGGER.info("Control request: %s -> %s", raw_device, data.get("status"))

        if device is None or status is None or not is_controllable(device):
            return ControlResult(ok=False, device=raw_device, error=ERR_INVALID)

        if not self._monitor.online:
            return ControlResult(ok=False, device=device.value, error=ERR_OFFLINE)

        topic = CONTROL_TOPICS[device]
        payload = command_payload(status)
        try:
            sent = await asyncio.to_thread(self._mqtt.publish, topic, payload, qos=self._qos)
        except Exception:
            _LOGGER.exception("Publishing %s to %s failed", payload, topic)
            sent = False
        if not sent:
            return ControlResult(ok=False, device=device.value, status=status.value, error=ERR_PUBLISH)

        _LOGGER.info("Command sent: %s -> %s (%s)", topic, payload, status.value)
        return ControlResult(ok=True, device=device.value, status=status.value)
