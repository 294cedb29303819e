"""Events delivered to the sensor monitor.

Every radio callback and timer firing is represented by one of the frozen
dataclasses below and fed through ``SensorMonitor.handle``. Events that concern
a peripheral carry the handle they were issued for so the monitor can drop
them once that handle is no longer the one it tracks.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from airmonitor.sensor.state import RadioState


class TimerKind(Enum):
    """The three timers driving time-based transitions."""

    SCAN_TIMEOUT = "scan_timeout"
    AUTO_REFRESH = "auto_refresh"
    RETRY = "retry"


@dataclass(frozen=True)
class RadioStateChanged:
    state: RadioState
    detail: Optional[str] = None


@dataclass(frozen=True)
class PeripheralDiscovered:
    peripheral: Any
    name: Optional[str] = None
    rssi: Optional[int] = None


@dataclass(frozen=True)
class ConnectSucceeded:
    peripheral: Any


@dataclass(frozen=True)
class ConnectFailed:
    peripheral: Any
    detail: Optional[str] = None


@dataclass(frozen=True)
class CharacteristicDiscovered:
    peripheral: Any
    characteristic: Any


@dataclass(frozen=True)
class CharacteristicDiscoveryFailed:
    peripheral: Any
    detail: Optional[str] = None


@dataclass(frozen=True)
class ReadCompleted:
    """Outcome of a characteristic read; ``data`` is None when ``error`` is set."""

    peripheral: Any
    characteristic: Any
    data: Optional[bytes] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class PeripheralDisconnected:
    peripheral: Any
    detail: Optional[str] = None


@dataclass(frozen=True)
class TimerFired:
    kind: TimerKind


@dataclass(frozen=True)
class DisconnectRequested:
    pass


SensorEvent = Union[
    RadioStateChanged,
    PeripheralDiscovered,
    ConnectSucceeded,
    ConnectFailed,
    CharacteristicDiscovered,
    CharacteristicDiscoveryFailed,
    ReadCompleted,
    PeripheralDisconnected,
    TimerFired,
    DisconnectRequested,
]

__all__ = [
    "CharacteristicDiscovered",
    "CharacteristicDiscoveryFailed",
    "ConnectFailed",
    "ConnectSucceeded",
    "DisconnectRequested",
    "PeripheralDisconnected",
    "PeripheralDiscovered",
    "RadioStateChanged",
    "ReadCompleted",
    "SensorEvent",
    "TimerFired",
    "TimerKind",
]
