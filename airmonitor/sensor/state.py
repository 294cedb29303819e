"""Connection status model and transition bookkeeping."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from airmonitor.sensor.constants import logger
from airmonitor.sensor.reading import Reading


class ConnectionStatus(Enum):
    """Enum for the sensor connection lifecycle."""

    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    NOT_FOUND = "not_found"


class RadioState(Enum):
    """Power state reported by the local radio stack."""

    UNKNOWN = "unknown"
    POWERED_ON = "powered_on"
    POWERED_OFF = "powered_off"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class MonitorSnapshot:
    """Immutable view of the monitor handed to observers."""

    status: ConnectionStatus
    reading: Optional[Reading]
    last_updated: Optional[datetime]
    error: Optional[str]
    radio_state: RadioState
    peripheral_address: Optional[str] = None
    peripheral_name: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED


_VALID_TRANSITIONS = {
    ConnectionStatus.DISCONNECTED: {
        ConnectionStatus.SCANNING,
    },
    ConnectionStatus.SCANNING: {
        ConnectionStatus.CONNECTING,
        ConnectionStatus.NOT_FOUND,
        ConnectionStatus.DISCONNECTED,
    },
    ConnectionStatus.CONNECTING: {
        ConnectionStatus.CONNECTED,
        ConnectionStatus.NOT_FOUND,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.SCANNING,
    },
    ConnectionStatus.CONNECTED: {
        ConnectionStatus.NOT_FOUND,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.SCANNING,
    },
    ConnectionStatus.NOT_FOUND: {
        ConnectionStatus.SCANNING,
        ConnectionStatus.DISCONNECTED,
    },
}


class StatusTracker:
    """
    Single source of truth for the current ``ConnectionStatus``.

    All access happens on the monitor's event loop, so no locking is needed.
    """

    def __init__(self):
        self._status = ConnectionStatus.DISCONNECTED

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    def transition_to(self, new_status: ConnectionStatus) -> bool:
        """
        Move to ``new_status`` if the lifecycle allows it.

        Returns:
            True if the status changed, False if the transition was rejected or
            ``new_status`` is already current.
        """
        if new_status == self._status:
            return False
        if not self.is_valid_transition(self._status, new_status):
            logger.warning(
                "Invalid state transition: %s → %s",
                self._status.value,
                new_status.value,
            )
            return False
        old_status = self._status
        self._status = new_status
        logger.debug("State transition: %s → %s", old_status.value, new_status.value)
        return True

    @staticmethod
    def is_valid_transition(
        from_status: ConnectionStatus, to_status: ConnectionStatus
    ) -> bool:
        return to_status in _VALID_TRANSITIONS.get(from_status, set())
