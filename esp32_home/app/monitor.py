from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Literal

from .store import DeviceStateStore

_LOGGER = logging.getLogger("esp32_home.monitor")

MessageKind = Literal["telemetry", "control"]

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_POLL_INTERVAL_S = 5.0


class LivenessMonitor:
    """Tracks whether the ESP32 is alive from the two message classes it sends.

    The device is declared offline only when both the telemetry and the
    control-ack streams have been silent for longer than ``timeout_s``.
    A stream that never produced a message counts as silent forever.
    """

    def __init__(
        self,
        store: DeviceStateStore,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        clock: Callable[[], float] = time.time,
    ):
        if poll_interval_s <= 0 or timeout_s <= 0:
            raise ValueError("timeout_s and poll_interval_s must be positive")
        if poll_interval_s > timeout_s:
            raise ValueError("poll_interval_s must not exceed timeout_s")
        self._store = store
        self._timeout_s = float(timeout_s)
        self._poll_interval_s = float(poll_interval_s)
        self._clock = clock

        self._online = False
        self._last_seen: dict[str, float | None] = {"telemetry": None, "control": None}

    @property
    def online(self) -> bool:
        return self._online

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    @property
    def poll_interval_s(self) -> float:
        return self._poll_interval_s

    def last_seen(self, kind: MessageKind) -> float | None:
        return self._last_seen[kind]

    def touch(self, kind: MessageKind, now: float | None = None) -> bool:
        """Record a message of ``kind``. Returns True when a reconnect sequence is due."""
        if kind not in self._last_seen:
            raise ValueError(f"unknown message kind: {kind!r}")
        self._last_seen[kind] = self._clock() if now is None else float(now)
        return not self._online

    def mark_online(self) -> None:
        self._online = True

    def _stale(self, ts: float | None, now: float) -> bool:
        if ts is None:
            return True
        return now - ts > self._timeout_s

    def check(self, now: float | None = None) -> bool:
        """Evaluate the timeout. Returns True on an ONLINE -> OFFLINE transition."""
        if not self._online:
            return False
        t = self._clock() if now is None else float(now)
        if all(self._stale(ts, t) for ts in self._last_seen.values()):
            self._online = False
            self._store.reset_all()
            return True
        return False

    def status(self) -> dict[str, object]:
        return {
            "online": self._online,
            "last_telemetry_ts": self._last_seen["telemetry"],
            "last_control_ts": self._last_seen["control"],
            "timeout_s": self._timeout_s,
        }

    async def run(self, on_disconnect: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(self._poll_interval_s)
            if not self.check():
                continue
            _LOGGER.warning("ESP32 disconnected (no messages for %.1fs)", self._timeout_s)
            try:
                await on_disconnect()
            except Exception:
                _LOGGER.exception("Disconnect notification failed")
