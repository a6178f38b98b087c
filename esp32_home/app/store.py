from __future__ import annotations

from typing import Mapping

from .devices import Device, DeviceStatus


class DeviceStateStore:
    """Last confirmed ON/OFF state of every device.

    Only the event loop touches this object: ingress writes confirmed states,
    the liveness monitor resets them, everyone else reads.
    """

    def __init__(self) -> None:
        self._states: dict[Device, DeviceStatus] = {dev: DeviceStatus.OFF for dev in Device}

    @staticmethod
    def _key(device: Device | str) -> Device:
        if isinstance(device, Device):
            return device
        try:
            return Device(str(device))
        except ValueError:
            raise KeyError(device) from None

    def get_status(self, device: Device | str) -> DeviceStatus:
        try:
            key = self._key(device)
        except KeyError:
            return DeviceStatus.OFF
        return self._states.get(key, DeviceStatus.OFF)

    def set_status(self, device: Device | str, status: DeviceStatus) -> None:
        self._states[self._key(device)] = DeviceStatus(status)

    def seed(self, statuses: Mapping[Device, DeviceStatus]) -> None:
        for dev, st in statuses.items():
            self.set_status(dev, st)

    def reset_all(self) -> None:
        for dev in self._states:
            self._states[dev] = DeviceStatus.OFF

    def snapshot(self) -> dict[str, str]:
        return {dev.value: st.value for dev, st in self._states.items()}
