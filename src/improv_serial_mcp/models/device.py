"""Device-level data returned by the session."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


class ConnectionState(str, Enum):
    """Session view of the link, independent of the device's own state."""

    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class DeviceInfo:
    """Parsed REQUEST_INFO response."""

    firmware: str
    version: str
    chip_family: str
    name: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class NetworkEntry:
    """One network from a REQUEST_WIFI_NETWORKS scan."""

    name: str
    rssi: int
    secured: bool

    def to_dict(self) -> dict:
        return asdict(self)
