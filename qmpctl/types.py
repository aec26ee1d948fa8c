"""Data shapes exchanged with the QMP server."""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Any, Mapping


def _nanoseconds(delta: _dt.timedelta) -> int:
    return ((delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds) * 1000


@dataclass
class USBDevice:
    """A USB device attached to the VM."""

    driver: str
    id: str
    bus: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"driver": self.driver, "id": self.id}
        if self.bus:
            data["bus"] = self.bus
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "USBDevice":
        return cls(
            driver=str(data.get("driver", "")),
            id=str(data.get("id", "")),
            bus=str(data.get("bus", "")),
        )


@dataclass
class KeyPress:
    """A single key press."""

    key: str

    def to_dict(self) -> dict[str, Any]:
        return {"keys": self.key}


@dataclass
class KeyPresses:
    """Several key presses with optional hold and delay times."""

    keys: list[str]
    hold: _dt.timedelta = field(default_factory=_dt.timedelta)
    delay: _dt.timedelta = field(default_factory=_dt.timedelta)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"keys": list(self.keys)}
        if self.hold:
            data["hold"] = _nanoseconds(self.hold)
        if self.delay:
            data["delay"] = _nanoseconds(self.delay)
        return data


@dataclass
class DeviceAdd:
    """Arguments of a device_add command."""

    driver: str
    id: str

    def to_dict(self) -> dict[str, Any]:
        return {"driver": self.driver, "id": self.id}


@dataclass
class DeviceDel:
    """Arguments of a device_del command."""

    id: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id}


@dataclass
class Status:
    """The run state of the VM."""

    running: bool = False
    status: str = ""
    singlestep: bool = False
    pause: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Status":
        return cls(
            running=bool(data.get("running", False)),
            status=str(data.get("status", "")),
            singlestep=bool(data.get("singlestep", False)),
            pause=bool(data.get("pause", False)),
        )


@dataclass
class Screenshot:
    """Arguments of a screendump command."""

    filename: str

    def to_dict(self) -> dict[str, Any]:
        return {"filename": self.filename}