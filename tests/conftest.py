from __future__ import annotations

from typing import Any, Callable, Iterator

import pytest

from app.mqtt_client import MqttStatus
from app.persistence import DevicePersistence


class FakeHub:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def broadcast(self, event_type: str, data: dict[str, Any]) -> None:
        self.events.append((event_type, data))

    def types(self) -> list[str]:
        return [t for t, _ in self.events]

    def of(self, event_type: str) -> list[dict[str, Any]]:
        return [d for t, d in self.events if t == event_type]


class FakeMqtt:
    def __init__(self) -> None:
        self.published: list[tuple[str, Any]] = []
        self.subscribed: list[str] = []
        self.handler: Callable[[str, str], None] | None = None
        self.connected = False
        self.publish_ok = True

    def set_message_handler(self, handler: Callable[[str, str], None] | None) -> None:
        self.handler = handler

    def subscribe(self, topic: str, *, qos: int = 0) -> None:
        self.subscribed.append(topic)

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def status(self) -> MqttStatus:
        return MqttStatus(connected=self.connected, last_error=None)

    def publish(self, topic: str, payload: Any, *, retain: bool = False, qos: int = 0) -> bool:
        if not self.publish_ok:
            return False
        self.published.append((topic, payload))
        return True


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def hub() -> FakeHub:
    return FakeHub()


@pytest.fixture
def fake_mqtt() -> FakeMqtt:
    return FakeMqtt()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db(tmp_path) -> Iterator[DevicePersistence]:
    persistence = DevicePersistence(str(tmp_path / "iot.sqlite3"))
    persistence.start()
    yield persistence
    persistence.stop()
