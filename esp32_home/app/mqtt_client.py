from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

_LOGGER = logging.getLogger("esp32_home.mqtt")


@dataclass(frozen=True)
class MqttStatus:
    connected: bool
    last_error: str | None


class MqttClient:
    """paho-mqtt wrapper: runs paho's network thread and re-subscribes on every reconnect.

    User handlers are called on paho's thread; they must hand work over to the
    event loop themselves.
    """

    def __init__(self, *, host: str, port: int, username: str, password: str, client_id: str):
        self._host = host
        self._port = port
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username:
            self._client.username_pw_set(username, password)

        self._lock = threading.Lock()
        self._connected = False
        self._last_error: str | None = None
        self._subscriptions: dict[str, int] = {}

        self._on_message_user: Callable[[str, str], None] | None = None

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if getattr(reason_code, "is_failure", False):
            with self._lock:
                self._last_error = f"connect reason_code={reason_code}"
            _LOGGER.error("MQTT connection refused: %s", reason_code)
            return

        with self._lock:
            self._connected = True
            self._last_error = None
            subs = list(self._subscriptions.items())
        _LOGGER.info("Connected to MQTT broker %s:%s", self._host, self._port)
        for topic, qos in subs:
            try:
                client.subscribe(topic, qos=qos)
            except Exception:
                _LOGGER.exception("Subscribe to %s failed", topic)
        if subs:
            _LOGGER.info("Subscribed to %d topics", len(subs))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        with self._lock:
            self._connected = False
            if getattr(reason_code, "value", reason_code) != 0:
                self._last_error = f"disconnect reason_code={reason_code}"
        _LOGGER.warning("Disconnected from MQTT broker: %s", reason_code)

    def _on_message(self, client, userdata, msg):
        handler = self._on_message_user
        if handler is None:
            return
        payload = msg.payload.decode("utf-8", errors="replace")
        try:
            handler(str(msg.topic), payload)
        except Exception:
            # Keep MQTT thread alive
            _LOGGER.exception("Message handler failed for topic %s", msg.topic)

    def set_message_handler(self, handler: Callable[[str, str], None] | None) -> None:
        self._on_message_user = handler

    def connect(self) -> None:
        try:
            # Auto-reconnect and re-subscribe is handled via on_connect.
            self._client.reconnect_delay_set(min_delay=1, max_delay=30)
            self._client.connect_async(self._host, self._port, keepalive=30)
            self._client.loop_start()
        except Exception as e:
            _LOGGER.error("MQTT connect to %s:%s failed: %s", self._host, self._port, e)
            with self._lock:
                self._connected = False
                self._last_error = str(e)

    def disconnect(self) -> None:
        try:
            self._client.disconnect()
            self._client.loop_stop()
        finally:
            with self._lock:
                self._connected = False

    def status(self) -> MqttStatus:
        with self._lock:
            return MqttStatus(connected=self._connected, last_error=self._last_error)

    def publish(self, topic: str, payload: Any, *, retain: bool = False, qos: int = 0) -> bool:
        if isinstance(payload, (dict, list)):
            data = json.dumps(payload, ensure_ascii=False)
        else:
            data = str(payload)
        info = self._client.publish(topic, data, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            _LOGGER.warning("Publish to %s failed: rc=%s", topic, info.rc)
            return False
        return True

    def subscribe(self, topic: str, *, qos: int = 0) -> None:
        with self._lock:
            self._subscriptions[topic] = qos
            connected = self._connected
        if connected:
            self._client.subscribe(topic, qos=qos)
