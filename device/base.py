"""Base definitions for the metering plug - data contracts, events and the transport protocol"""
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Mapping, Protocol


# Data point keys reported by the plug
DP_POWER_ON = "1"
DP_CURRENT = "18"   # milliamps
DP_POWER = "19"     # deciwatts
DP_VOLTAGE = "20"   # decivolts

REQUIRED_CONFIG_FIELDS = ("id", "key", "ip", "version")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a 'Z' suffix"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string. Naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Connectivity(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclass(frozen=True)
class DeviceConfig:
    """
    Local connection parameters of the plug.

    Attributes:
        id: Tuya device id
        key: Local key used to encrypt the session
        ip: IP address of the plug on the local network
        version: Tuya protocol version, e.g. "3.3"
    """
    id: str
    key: str
    ip: str
    version: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeviceConfig":
        return cls(**{name: str(data[name]) for name in REQUIRED_CONFIG_FIELDS})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Reading:
    """
    One normalized measurement of the plug.

    Attributes:
        watt: Active power in Watts
        current: Current in Amperes
        voltage: Voltage in Volts
        power_on: Relay state
        connected: Whether the plug was connected when the reading was derived
        timestamp: Moment the reading was derived (UTC)
    """
    watt: float = 0.0
    current: float = 0.0
    voltage: float = 0.0
    power_on: bool = False
    connected: bool = False
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "watt": self.watt,
            "current": self.current,
            "voltage": self.voltage,
            "power_on": self.power_on,
            "connected": self.connected,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Reading":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["timestamp"] = parse_timestamp(data["timestamp"])
        return cls(**values)


# Events emitted by a transport. The supervisor consumes them in order.

@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class Error:
    message: str


@dataclass(frozen=True)
class Data:
    points: Mapping[str, Any]


@dataclass(frozen=True)
class DpRefresh:
    points: Mapping[str, Any]


DeviceEvent = Connected | Disconnected | Error | Data | DpRefresh


class DeviceTransport(Protocol):
    """
    Protocol for the plug's local-network transport.

    Uses Protocol for duck typing - implementations don't need to inherit,
    just implement the methods with matching signatures.
    """

    async def find(self, timeout: float) -> None:
        """
        Locate the device on the network.

        Should raise DiscoveryError if it is not found within timeout.
        """
        ...

    async def connect(self) -> None:
        """
        Open a session with the device.

        Emits Connected (and usually an initial Data) on success.
        Should raise DeviceConnectionError on failure.
        """
        ...

    async def disconnect(self) -> None:
        """Close the session. Emits Disconnected if a session was open."""
        ...

    async def set(self, dp: str, value: Any) -> None:
        """
        Write a single data point.

        Should raise CommandError if the device rejects the command.
        """
        ...

    async def refresh(self) -> None:
        """
        Request fresh data points.

        Failures are never raised; they are reported as Error and
        Disconnected events.
        """
        ...

    def events(self) -> AsyncIterator[DeviceEvent]:
        """Async iterator over the events emitted by this transport"""
        ...
