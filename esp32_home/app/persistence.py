from __future__ import annotations

import logging
import math
import os
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from .devices import Device, DeviceStatus

_LOGGER = logging.getLogger("esp32_home.persistence")

TS_FORMAT = "%Y-%m-%d %H:%M:%S"

# Threshold statistics shown on the stats page: readings strictly above these count as exceedances.
SENSOR_THRESHOLDS: dict[str, float] = {
    "temperature": 35.0,
    "humidity": 80.0,
    "light_level": 800.0,
}

SENSOR_SORT_COLUMNS = ("id", "temperature", "humidity", "light_level", "timestamp")
HISTORY_SORT_COLUMNS = ("id", "device", "status", "timestamp")
MAX_PAGE_SIZE = 100

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sensor_data (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        temperature REAL NOT NULL DEFAULT 0,
        humidity REAL NOT NULL DEFAULT 0,
        light_level INTEGER NOT NULL DEFAULT 0,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sensor_data_ts ON sensor_data(timestamp)",
    """
    CREATE TABLE IF NOT EXISTS device_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device TEXT NOT NULL,
        status TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_device_history_device_ts ON device_history(device, timestamp)",
)


@dataclass
class SensorReading:
    temperature: float = 0.0
    humidity: float = 0.0
    light_level: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now().replace(microsecond=0))

    def to_event(self, reading_id: int | None) -> dict[str, Any]:
        return {
            "id": reading_id,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "light_level": self.light_level,
            "timestamp": self.timestamp.isoformat(),
        }


def _ts_to_str(ts: datetime) -> str:
    return ts.strftime(TS_FORMAT)


def _day_bounds(start_date: date, end_date: date) -> tuple[str, str]:
    if end_date < start_date:
        start_date, end_date = end_date, start_date
    lo = datetime.combine(start_date, datetime.min.time())
    hi = datetime.combine(end_date + timedelta(days=1), datetime.min.time())
    return _ts_to_str(lo), _ts_to_str(hi)


def _page_args(page: Any, limit: Any) -> tuple[int, int, int]:
    try:
        page_i = max(1, int(page))
    except (TypeError, ValueError):
        page_i = 1
    try:
        limit_i = max(1, min(MAX_PAGE_SIZE, int(limit)))
    except (TypeError, ValueError):
        limit_i = 10
    return page_i, limit_i, (page_i - 1) * limit_i


def _sort_args(sort_by: Any, sort_order: Any, allowed: tuple[str, ...]) -> tuple[str, str]:
    col = str(sort_by or "").strip()
    if col not in allowed:
        col = "timestamp"
    order = str(sort_order or "").strip().upper()
    if order not in ("ASC", "DESC"):
        order = "DESC"
    return col, order


class DevicePersistence:
    """SQLite store for sensor readings and device ON/OFF history.

    Every public method is blocking; callers on the event loop wrap them in
    ``asyncio.to_thread``. A single connection is shared behind an RLock.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    def start(self) -> None:
        with self._lock:
            if self._conn is not None:
                return

            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA busy_timeout = 3000")
            with conn:
                for stmt in _SCHEMA:
                    conn.execute(stmt)
            self._conn = conn
            _LOGGER.info("Database ready at %s", self.db_path)

    def stop(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            except sqlite3.Error:
                _LOGGER.warning("Error while closing database", exc_info=True)
            self._conn = None

    def _require_conn_locked(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Persistence not started")
        return self._conn

    # --- live core -----------------------------------------------------

    def get_last_status(self, device: Device) -> DeviceStatus:
        with self._lock:
            conn = self._require_conn_locked()
            row = conn.execute(
                "SELECT status FROM device_history WHERE device = ? ORDER BY timestamp DESC, id DESC LIMIT 1",
                (Device(device).value,),
            ).fetchone()
        if row is None:
            return DeviceStatus.OFF
        try:
            return DeviceStatus(str(row["status"]).upper())
        except ValueError:
            return DeviceStatus.OFF

    def insert_reading(self, reading: SensorReading) -> int:
        with self._lock:
            conn = self._require_conn_locked()
            with conn:
                cur = conn.execute(
                    "INSERT INTO sensor_data (temperature, humidity, light_level, timestamp) VALUES (?, ?, ?, ?)",
                    (
                        float(reading.temperature),
                        float(reading.humidity),
                        int(reading.light_level),
                        _ts_to_str(reading.timestamp),
                    ),
                )
            return int(cur.lastrowid)

    def insert_status_change(self, device: Device, status: DeviceStatus, ts: datetime | None = None) -> int:
        ts = ts or datetime.now().replace(microsecond=0)
        with self._lock:
            conn = self._require_conn_locked()
            with conn:
                cur = conn.execute(
                    "INSERT INTO device_history (device, status, timestamp) VALUES (?, ?, ?)",
                    (Device(device).value, DeviceStatus(status).value, _ts_to_str(ts)),
                )
            return int(cur.lastrowid)

    # --- reporting -----------------------------------------------------

    def get_dashboard_data(self, chart_points: int = 20) -> dict[str, Any]:
        chart_points = max(1, int(chart_points))
        with self._lock:
            conn = self._require_conn_locked()
            latest = conn.execute(
                "SELECT ROUND(temperature, 1) AS temperature, humidity, light_level, timestamp "
                "FROM sensor_data ORDER BY timestamp DESC, id DESC LIMIT 1"
            ).fetchone()
            chart = conn.execute(
                "SELECT timestamp, ROUND(temperature, 1) AS temperature, humidity, light_level "
                "FROM sensor_data ORDER BY timestamp DESC, id DESC LIMIT ?",
                (chart_points,),
            ).fetchall()
            devices = {dev.value: self.get_last_status(dev).value for dev in Device}
        return {
            "latestSensor": dict(latest) if latest is not None else {},
            "chartData": [dict(r) for r in reversed(chart)],
            "devices": devices,
        }

    def get_sensor_data_paged(
        self,
        page: Any = 1,
        limit: Any = 10,
        sort_by: Any = "timestamp",
        sort_order: Any = "DESC",
    ) -> dict[str, Any]:
        page_i, limit_i, offset = _page_args(page, limit)
        col, order = _sort_args(sort_by, sort_order, SENSOR_SORT_COLUMNS)
        with self._lock:
            conn = self._require_conn_locked()
            total = int(conn.execute("SELECT COUNT(*) AS total FROM sensor_data").fetchone()["total"])
            rows = conn.execute(
                "SELECT id, ROUND(temperature, 1) AS temperature, humidity, light_level, timestamp "
                f"FROM sensor_data ORDER BY {col} {order}, id {order} LIMIT ? OFFSET ?",
                (limit_i, offset),
            ).fetchall()
        return {
            "data": [dict(r) for r in rows],
            "totalItems": total,
            "totalPages": max(1, math.ceil(total / limit_i)),
            "currentPage": page_i,
            "sortBy": col,
            "sortOrder": order,
        }

    def get_device_history_paged(
        self,
        page: Any = 1,
        limit: Any = 10,
        sort_by: Any = "timestamp",
        sort_order: Any = "DESC",
        device: Device | None = None,
        status: DeviceStatus | None = None,
    ) -> dict[str, Any]:
        page_i, limit_i, offset = _page_args(page, limit)
        col, order = _sort_args(sort_by, sort_order, HISTORY_SORT_COLUMNS)

        where: list[str] = []
        params: list[Any] = []
        if device is not None:
            where.append("device = ?")
            params.append(Device(device).value)
        if status is not None:
            where.append("status = ?")
            params.append(DeviceStatus(status).value)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""

        with self._lock:
            conn = self._require_conn_locked()
            total = int(
                conn.execute(f"SELECT COUNT(*) AS total FROM device_history {where_sql}", params).fetchone()["total"]
            )
            rows = conn.execute(
                f"SELECT id, device, status, timestamp FROM device_history {where_sql} "
                f"ORDER BY {col} {order}, id {order} LIMIT ? OFFSET ?",
                (*params, limit_i, offset),
            ).fetchall()
        return {
            "data": [dict(r) for r in rows],
            "totalItems": total,
            "totalPages": max(1, math.ceil(total / limit_i)),
            "currentPage": page_i,
        }

    def get_sensor_stats(self, start_date: date, end_date: date) -> list[dict[str, Any]]:
        lo, hi = _day_bounds(start_date, end_date)
        out: list[dict[str, Any]] = []
        with self._lock:
            conn = self._require_conn_locked()
            for column, threshold in SENSOR_THRESHOLDS.items():
                row = conn.execute(
                    f"SELECT COUNT(*) AS n FROM sensor_data WHERE {column} > ? AND timestamp >= ? AND timestamp < ?",
                    (threshold, lo, hi),
                ).fetchone()
                out.append({"sensor_type": column, "threshold": threshold, "exceed_count": int(row["n"])})
        return out

    def get_device_stats(self, start_date: date, end_date: date) -> list[dict[str, Any]]:
        lo, hi = _day_bounds(start_date, end_date)
        with self._lock:
            conn = self._require_conn_locked()
            rows = conn.execute(
                "SELECT device, COUNT(*) AS n FROM device_history "
                "WHERE status = ? AND timestamp >= ? AND timestamp < ? GROUP BY device",
                (DeviceStatus.ON.value, lo, hi),
            ).fetchall()
        counts = {str(r["device"]): int(r["n"]) for r in rows}
        return [{"device": dev.value, "turn_on_count": counts.get(dev.value, 0)} for dev in Device]
