from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

_LOGGER = logging.getLogger("esp32_home.realtime")

EVENT_CURRENT_STATES = "current_states"
EVENT_SENSOR_UPDATE = "sensor_update"
EVENT_STATUS_CONFIRMED = "device_status_confirmed"
EVENT_CONNECTED = "esp32_connected"
EVENT_DISCONNECTED = "esp32_disconnected"
EVENT_CONTROL_ERROR = "device_control_error"


def encode_event(event_type: str, data: dict[str, Any]) -> str:
    return json.dumps({"type": event_type, "data": data}, ensure_ascii=False)


class RealtimeHub:
    """Best-effort fan-out to every connected dashboard websocket.

    No ordering across clients and no replay for clients that were away.
    """

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._clients.add(ws)
        _LOGGER.info("Dashboard client connected (%d total)", len(self._clients))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(ws)
        _LOGGER.info("Dashboard client disconnected (%d total)", len(self._clients))

    async def send(self, ws: WebSocket, event_type: str, data: dict[str, Any]) -> None:
        await ws.send_text(encode_event(event_type, data))

    async def broadcast(self, event_type: str, data: dict[str, Any]) -> None:
        msg = encode_event(event_type, data)
        async with self._lock:
            clients = list(self._clients)
        if not clients:
            return

        dead: list[WebSocket] = []
        for ws in clients:
            try:
                await ws.send_text(msg)
            except Exception:
                dead.append(ws)
        if dead:
            _LOGGER.debug("Dropping %d dead websocket(s) after %s", len(dead), event_type)
            async with self._lock:
                for ws in dead:
                    self._clients.discard(ws)

    async def close_all(self) -> None:
        async with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for ws in clients:
            try:
                await ws.close()
            except Exception:
                _LOGGER.debug("Websocket close failed", exc_info=True)
