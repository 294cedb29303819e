"""Sensor identification constants and error detail strings."""

import importlib.metadata
import logging
from typing import Tuple

logger = logging.getLogger("airmonitor.sensor")

BLEAK_VERSION = importlib.metadata.version("bleak")

# Aranet4 advertises one of two service UUIDs depending on firmware.
SERVICE_UUID = "f0cd1400-95da-4f4b-9ac8-aa55d312af0c"
SERVICE_UUID_NEW = "0000fce0-0000-1000-8000-00805f9b34fb"
SERVICE_UUIDS: Tuple[str, ...] = (SERVICE_UUID, SERVICE_UUID_NEW)

CURRENT_READINGS_UUID = "f0cd1503-95da-4f4b-9ac8-aa55d312af0c"
CURRENT_READINGS_DETAILED_UUID = "f0cd3001-95da-4f4b-9ac8-aa55d312af0c"
# Polled in order of preference
READING_CHARACTERISTIC_UUIDS: Tuple[str, ...] = (
    CURRENT_READINGS_DETAILED_UUID,
    CURRENT_READINGS_UUID,
)

# Error detail strings surfaced on the monitor snapshot
ERROR_BLUETOOTH_UNAVAILABLE = "Bluetooth is not available"
ERROR_BLUETOOTH_POWERED_OFF = "Bluetooth is powered off"
ERROR_BLUETOOTH_UNAUTHORIZED = "Bluetooth permission denied"
ERROR_BLUETOOTH_UNSUPPORTED = "Bluetooth not supported"
ERROR_NOT_CONNECTED = "Not connected to device"
ERROR_READ_FAILED = "Failed to read sensor data"
ERROR_DECODE_FAILED = "Failed to decode sensor data"
ERROR_CHARACTERISTIC_NOT_FOUND = "Sensor characteristic not found"

# pypubsub topics
TOPIC_STATUS = "airmonitor.status"
TOPIC_READING = "airmonitor.reading"
TOPIC_ALERT = "airmonitor.alert"

__all__ = [
    "BLEAK_VERSION",
    "CURRENT_READINGS_DETAILED_UUID",
    "CURRENT_READINGS_UUID",
    "ERROR_BLUETOOTH_POWERED_OFF",
    "ERROR_BLUETOOTH_UNAUTHORIZED",
    "ERROR_BLUETOOTH_UNAVAILABLE",
    "ERROR_BLUETOOTH_UNSUPPORTED",
    "ERROR_CHARACTERISTIC_NOT_FOUND",
    "ERROR_DECODE_FAILED",
    "ERROR_NOT_CONNECTED",
    "ERROR_READ_FAILED",
    "READING_CHARACTERISTIC_UUIDS",
    "SERVICE_UUID",
    "SERVICE_UUID_NEW",
    "SERVICE_UUIDS",
    "TOPIC_ALERT",
    "TOPIC_READING",
    "TOPIC_STATUS",
    "logger",
]
