from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
from datetime import date, datetime
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from .control import ERR_INVALID, ERR_OFFLINE, ControlHandler
from .devices import Device, parse_device, parse_status, subscribed_topics, validate_tables
from .ingress import MessageIngress, current_states
from .monitor import LivenessMonitor
from .mqtt_client import MqttClient
from .persistence import DevicePersistence
from .realtime import EVENT_CONTROL_ERROR, EVENT_CURRENT_STATES, EVENT_DISCONNECTED, RealtimeHub
from .settings import Settings, load_settings, read_options
from .store import DeviceStateStore

_LOGGER = logging.getLogger("esp32_home")
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

APP_VERSION = "1.0.0"


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for name in (
        "esp32_home",
        "paho",
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
    ):
        logging.getLogger(name).setLevel(level)


def _parse_date(value: str | None, name: str) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be YYYY-MM-DD") from None


def create_app(
    settings: Settings | None = None,
    *,
    mqtt: Any = None,
    persistence: DevicePersistence | None = None,
    clock: Callable[[], float] | None = None,
) -> FastAPI:
    settings = settings or load_settings(read_options())
    _configure_logging(settings.debug)
    validate_tables()

    api = FastAPI(title="ESP32 Home Dashboard", version=APP_VERSION)

    store = DeviceStateStore()
    monitor_kwargs: dict[str, Any] = {
        "timeout_s": settings.liveness.timeout_s,
        "poll_interval_s": settings.liveness.poll_interval_s,
    }
    if clock is not None:
        monitor_kwargs["clock"] = clock
    monitor = LivenessMonitor(store, **monitor_kwargs)
    hub = RealtimeHub()
    db = persistence or DevicePersistence(settings.database.path)
    if mqtt is None:
        mqtt = MqttClient(
            host=settings.mqtt.host,
            port=settings.mqtt.port,
            username=settings.mqtt.username,
            password=settings.mqtt.password,
            client_id=settings.mqtt.client_id,
        )
    ingress = MessageIngress(store=store, monitor=monitor, persistence=db, hub=hub)
    control = ControlHandler(monitor=monitor, mqtt=mqtt, qos=settings.mqtt.qos)

    api.state.settings = settings
    api.state.store = store
    api.state.monitor = monitor
    api.state.hub = hub
    api.state.db = db
    api.state.mqtt = mqtt
    api.state.ingress = ingress
    api.state.control = control
    api.state.liveness_task = None

    async def _db_call(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (sqlite3.Error, RuntimeError):
            _LOGGER.exception("Database call %s failed", getattr(fn, "__name__", fn))
            raise HTTPException(status_code=500, detail="Internal server error") from None

    async def _on_disconnect() -> None:
        await hub.broadcast(EVENT_DISCONNECTED, {"timestamp": datetime.now().replace(microsecond=0).isoformat()})
        await hub.broadcast(EVENT_CURRENT_STATES, current_states(store, monitor))

    @api.on_event("startup")
    async def _startup() -> None:
        loop = asyncio.get_running_loop()

        await asyncio.to_thread(db.start)
        # Last durable statuses are the best guess until the ESP32 speaks.
        initial = {}
        for dev in Device:
            initial[dev] = await asyncio.to_thread(db.get_last_status, dev)
        store.seed(initial)
        _LOGGER.info("Device states loaded: %s", store.snapshot())

        ingress.bind_loop(loop)
        mqtt.set_message_handler(ingress.submit)
        for topic in subscribed_topics():
            mqtt.subscribe(topic, qos=settings.mqtt.qos)
        _LOGGER.info("Starting MQTT client %s:%s", settings.mqtt.host, settings.mqtt.port)
        mqtt.connect()

        api.state.liveness_task = asyncio.create_task(monitor.run(_on_disconnect))

    @api.on_event("shutdown")
    async def _shutdown() -> None:
        task = api.state.liveness_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            api.state.liveness_task = None

        try:
            mqtt.set_message_handler(None)
            mqtt.disconnect()
        finally:
            await hub.close_all()
            await asyncio.to_thread(db.stop)

    @api.get("/health")
    async def health():
        return {"status": "ok"}

    @api.get("/api/meta")
    async def api_meta():
        return {
            "version": APP_VERSION,
            "mqtt": mqtt.status().__dict__,
            "esp32": monitor.status(),
            "clients": hub.client_count,
        }

    @api.get("/api/dashboard_data")
    async def api_dashboard_data():
        data = await _db_call(db.get_dashboard_data)
        # live store is authoritative; the table only knows what was confirmed before
        data["devices"] = store.snapshot()
        data["esp32Online"] = monitor.online
        return data

    @api.get("/api/sensor_data")
    async def api_sensor_data(page: int = 1, limit: int = 10, sortBy: str = "timestamp", sortOrder: str = "DESC"):
        return await _db_call(db.get_sensor_data_paged, page, limit, sortBy, sortOrder)

    @api.get("/api/device_history")
    async def api_device_history(
        page: int = 1,
        limit: int = 10,
        sortBy: str = "timestamp",
        sortOrder: str = "DESC",
        deviceFilter: str = "",
        statusFilter: str = "",
    ):
        device = parse_device(deviceFilter) if deviceFilter else None
        if deviceFilter and device is None:
            raise HTTPException(status_code=400, detail="unknown device")
        status = parse_status(statusFilter) if statusFilter else None
        if statusFilter and status is None:
            raise HTTPException(status_code=400, detail="status must be ON or OFF")
        result = await _db_call(
            db.get_device_history_paged,
            page,
            limit,
            sortBy,
            sortOrder,
            device=device,
            status=status,
        )
        return {"success": True, **result}

    @api.get("/api/sensor_stats")
    async def api_sensor_stats(startDate: str | None = None, endDate: str | None = None):
        start = _parse_date(startDate, "startDate")
        end = _parse_date(endDate, "endDate") if endDate else start
        return {"success": True, "data": await _db_call(db.get_sensor_stats, start, end)}

    @api.get("/api/device_stats")
    async def api_device_stats(startDate: str | None = None, endDate: str | None = None):
        start = _parse_date(startDate, "startDate")
        end = _parse_date(endDate, "endDate") if endDate else start
        return {"success": True, "data": await _db_call(db.get_device_stats, start, end)}

    @api.post("/api/control")
    async def api_control(payload: dict[str, Any]):
        result = await control.handle(payload)
        if result.ok:
            return {"success": True, "device": result.device, "status": result.status}
        if result.error == ERR_INVALID:
            raise HTTPException(status_code=400, detail=result.error)
        if result.error == ERR_OFFLINE:
            raise HTTPException(status_code=409, detail=result.error)
        raise HTTPException(status_code=502, detail=result.error)

    @api.websocket("/ws")
    async def ws_endpoint(ws: WebSocket):
        await hub.connect(ws)
        try:
            await hub.send(ws, EVENT_CURRENT_STATES, current_states(store, monitor))

            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                msg = message.get("text")
                if msg is None:
                    _LOGGER.debug("Ignoring binary websocket frame")
                    continue
                if msg.strip().lower() == "ping":
                    await ws.send_text("pong")
                    continue
                try:
                    obj = json.loads(msg)
                except ValueError:
                    obj = None
                if not isinstance(obj, dict) or obj.get("type") != "device_control":
                    await hub.send(ws, EVENT_CONTROL_ERROR, {"device": "", "error": ERR_INVALID})
                    continue
                result = await control.handle(obj.get("data"))
                if not result.ok:
                    await hub.send(ws, EVENT_CONTROL_ERROR, result.error_event())
        except WebSocketDisconnect:
            pass
        finally:
            await hub.disconnect(ws)

    return api


def main() -> None:
    import uvicorn

    settings = load_settings(read_options())
    app = create_app(settings)

    async def _serve() -> None:
        cfg = uvicorn.Config(app, host=settings.http.host, port=settings.http.port, log_level="info")
        srv = uvicorn.Server(cfg)
        await srv.serve()

    asyncio.run(_serve())


if __name__ == "__main__":
    main()
