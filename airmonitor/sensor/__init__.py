"""Sensor connection lifecycle: discovery, polling and recovery for one Aranet4."""

from airmonitor.sensor.alerts import AlertGate, AlertSignal, PubSubNotifier
from airmonitor.sensor.config import MonitorConfig, SensorConfig
from airmonitor.sensor.constants import (
    CURRENT_READINGS_DETAILED_UUID,
    CURRENT_READINGS_UUID,
    READING_CHARACTERISTIC_UUIDS,
    SERVICE_UUIDS,
    TOPIC_ALERT,
    TOPIC_READING,
    TOPIC_STATUS,
    logger,
)
from airmonitor.sensor.errors import MonitorError, SensorErrorHandler
from airmonitor.sensor.events import *  # noqa: F403
from airmonitor.sensor.monitor import SensorMonitor
from airmonitor.sensor.reading import DecodeFailure, Reading, decode
from airmonitor.sensor.state import (
    ConnectionStatus,
    MonitorSnapshot,
    RadioState,
    StatusTracker,
)
from airmonitor.sensor.timers import TimerSet
from airmonitor.sensor.transport import BleakTransport, RadioTransport

__all__ = [
    # Core classes
    "SensorMonitor",
    "MonitorConfig",
    "SensorConfig",
    "ConnectionStatus",
    "RadioState",
    "MonitorSnapshot",
    "StatusTracker",
    "TimerSet",
    "TimerKind",
    "AlertGate",
    "AlertSignal",
    "PubSubNotifier",
    "RadioTransport",
    "BleakTransport",
    "Reading",
    "DecodeFailure",
    "decode",
    "MonitorError",
    "SensorErrorHandler",
    # Events
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
    # Constants/helpers
    "SERVICE_UUIDS",
    "CURRENT_READINGS_UUID",
    "CURRENT_READINGS_DETAILED_UUID",
    "READING_CHARACTERISTIC_UUIDS",
    "TOPIC_ALERT",
    "TOPIC_READING",
    "TOPIC_STATUS",
    "logger",
]
