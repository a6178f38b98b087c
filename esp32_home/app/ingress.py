from __future__ import annotations

import asyncio
import json
import logging
import math
from datetime import datetime
from typing import Any, Protocol

from .devices import STATUS_CHANNELS, TOPIC_SENSOR, Device, DeviceStatus, status_from_payload
from .monitor import LivenessMonitor, MessageKind
from .persistence import DevicePersistence, SensorReading
from .realtime import EVENT_CONNECTED, EVENT_CURRENT_STATES, EVENT_SENSOR_UPDATE, EVENT_STATUS_CONFIRMED
from .store import DeviceStateStore

_LOGGER = logging.getLogger("esp32_home.ingress")


class Broadcaster(Protocol):
    async def broadcast(self, event_type: str, data: dict[str, Any]) -> None: ...


def classify_topic(topic: str) -> tuple[MessageKind, Device | None] | None:
    if topic == TOPIC_SENSOR:
        return "telemetry", None
    # esp32/<channel>/status
    parts = str(topic or "").split("/")
    if len(parts) != 3 or parts[0] != "esp32" or parts[2] != "status":
        return None
    device = STATUS_CHANNELS.get(parts[1])
    if device is None:
        return None
    return "control", device


def _finite(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(f):
        return 0.0
    return f


def _to_float(value: Any) -> float:
    return round(_finite(value), 1)


def _to_level(value: Any) -> int:
    # truncated, never rounded up
    return max(0, int(_finite(value)))


def parse_sensor_payload(payload: str) -> SensorReading:
    """Normalize a telemetry message. A bad field becomes 0; only a non-object payload is rejected."""
    try:
        obj = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise ValueError(f"telemetry payload is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ValueError("telemetry payload is not a JSON object")

    light = obj.get("light")
    if light is None:
        light = obj.get("light_level")
    return SensorReading(
        temperature=_to_float(obj.get("temperature")),
        humidity=_to_float(obj.get("humidity")),
        light_level=_to_level(light),
    )


def current_states(store: DeviceStateStore, monitor: LivenessMonitor) -> dict[str, Any]:
    return {"devices": store.snapshot(), "esp32Online": monitor.online}


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat()


class MessageIngress:
    """Turns broker messages into state changes, history rows and dashboard events.

    Messages are processed one at a time on the event loop; the lock keeps a
    reconnect reconciliation from interleaving with the next message.
    """

    def __init__(
        self,
        *,
        store: DeviceStateStore,
        monitor: LivenessMonitor,
        persistence: DevicePersistence,
        hub: Broadcaster,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._store = store
        self._monitor = monitor
        self._db = persistence
        self._hub = hub
        self._loop = loop
        self._lock = asyncio.Lock()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def submit(self, topic: str, payload: str) -> None:
        """Entry point for paho's network thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            _LOGGER.warning("Dropping message on %s: event loop not available", topic)
            return
        asyncio.run_coroutine_threadsafe(self.handle(topic, payload), loop)

    async def handle(self, topic: str, payload: str) -> None:
        route = classify_topic(topic)
        if route is None:
            _LOGGER.debug("Ignoring message on unknown topic %s", topic)
            return
        kind, device = route
        async with self._lock:
            try:
                if kind == "telemetry":
                    await self._handle_sensor(payload)
                elif device is not None:
                    await self._handle_status(device, payload)
            except Exception:
                _LOGGER.exception("Error processing MQTT message on %s", topic)

    async def _mark_seen(self, kind: MessageKind) -> None:
        if self._monitor.touch(kind):
            await self._reconnect(kind)

    async def _reconnect(self, kind: MessageKind) -> None:
        statuses: dict[Device, DeviceStatus] = {}
        for dev in Device:
            try:
                statuses[dev] = await asyncio.to_thread(self._db.get_last_status, dev)
            except Exception:
                _LOGGER.exception("Could not load last status of %s, assuming OFF", dev.value)
                statuses[dev] = DeviceStatus.OFF
        self._store.seed(statuses)
        self._monitor.mark_online()
        _LOGGER.info("ESP32 reconnected (%s message received)", kind)

        await self._hub.broadcast(EVENT_CONNECTED, {"timestamp": _now_iso()})
        await self._hub.broadcast(EVENT_CURRENT_STATES, current_states(self._store, self._monitor))

    async def _handle_sensor(self, payload: str) -> None:
        await self._mark_seen("telemetry")
        try:
            reading = parse_sensor_payload(payload)
        except ValueError as e:
            _LOGGER.warning("Dropping telemetry message: %s", e)
            return

        reading_id: int | None = None
        try:
            reading_id = await asyncio.to_thread(self._db.insert_reading, reading)
        except Exception:
            _LOGGER.exception("Could not save sensor reading")

        await self._hub.broadcast(EVENT_SENSOR_UPDATE, reading.to_event(reading_id))
        _LOGGER.debug(
            "Sensor reading %s: temp=%s hum=%s light=%s",
            reading_id,
            reading.temperature,
            reading.humidity,
            reading.light_level,
        )

    async def _handle_status(self, device: Device, payload: str) -> None:
        await self._mark_seen("control")
        try:
            status = status_from_payload(payload)
        except ValueError as e:
            _LOGGER.warning("Dropping status message for %s: %s", device.value, e)
            return

        self._store.set_status(device, status)
        try:
            await asyncio.to_thread(self._db.insert_status_change, device, status)
        except Exception:
            _LOGGER.exception("Could not save history for %s", device.value)

        await self._hub.broadcast(
            EVENT_STATUS_CONFIRMED,
            {"device": device.value, "status": status.value, "timestamp": _now_iso()},
        )
        _LOGGER.info("%s status confirmed: %s", device.value, status.value)
