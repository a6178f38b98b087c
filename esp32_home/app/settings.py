from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

_LOGGER = logging.getLogger("esp32_home.settings")

OPTIONS_ENV = "ESP32_HOME_OPTIONS"
DEFAULT_OPTIONS_PATH = "/data/options.json"


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    username: str
    password: str
    client_id: str
    qos: int


@dataclass(frozen=True)
class DatabaseConfig:
    path: str


@dataclass(frozen=True)
class LivenessConfig:
    timeout_s: float
    poll_interval_s: float


@dataclass(frozen=True)
class HttpConfig:
    host: str
    port: int


@dataclass(frozen=True)
class Settings:
    mqtt: MqttConfig
    database: DatabaseConfig
    liveness: LivenessConfig
    http: HttpConfig
    debug: bool


def read_options() -> dict[str, Any]:
    path = os.environ.get(OPTIONS_ENV, DEFAULT_OPTIONS_PATH)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    if not isinstance(data, dict):
        _LOGGER.warning("Ignoring %s: top-level JSON value is not an object", path)
        return {}
    return data


def _read_float(raw: dict[str, Any], key: str, default: float) -> float:
    try:
        v = raw.get(key)
        if v is None:
            return float(default)
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _read_int(raw: dict[str, Any], key: str, default: int) -> int:
    try:
        v = raw.get(key)
        if v is None or v == "":
            return int(default)
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def load_settings(options: dict[str, Any]) -> Settings:
    mqtt_raw = options.get("mqtt") or {}
    mqtt = MqttConfig(
        host=str(mqtt_raw.get("host") or "localhost"),
        port=_read_int(mqtt_raw, "port", 1883),
        username=str(mqtt_raw.get("username") or "esp32"),
        password=str(mqtt_raw.get("password") or ""),
        client_id=str(mqtt_raw.get("client_id") or "esp32-home-dashboard"),
        qos=max(0, min(2, _read_int(mqtt_raw, "qos", 0))),
    )

    db_raw = options.get("database") or {}
    database = DatabaseConfig(path=str(db_raw.get("path") or "/data/iot.sqlite3"))

    live_raw = options.get("liveness") or {}
    timeout_s = max(1.0, _read_float(live_raw, "timeout_s", 10.0))
    poll_interval_s = max(0.5, _read_float(live_raw, "poll_interval_s", 5.0))
    # poll interval never exceeds the timeout
    poll_interval_s = min(poll_interval_s, timeout_s)

    http_raw = options.get("http") or {}
    http = HttpConfig(
        host=str(http_raw.get("host") or "0.0.0.0"),
        port=_read_int(http_raw, "port", 3000),
    )

    return Settings(
        mqtt=mqtt,
        database=database,
        liveness=LivenessConfig(timeout_s=timeout_s, poll_interval_s=poll_interval_s),
        http=http,
        debug=bool(options.get("debug") or False),
    )
