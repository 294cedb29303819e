"""
Shared pytest fixtures for sensor monitor tests.
"""

import struct
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest  # type: ignore[import-untyped]  # pylint: disable=E0401
from pubsub import pub

from airmonitor.sensor import (
    TOPIC_ALERT,
    TOPIC_READING,
    TOPIC_STATUS,
    MonitorConfig,
    RadioTransport,
    SensorMonitor,
)

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_payload(
    co2=800,
    temperature=22.5,
    pressure=1013.2,
    humidity=45,
    battery=90,
    status=1,
    interval=300,
    ago=12,
    detailed=True,
):
    """
    Build a readings payload in the sensor's little-endian layout.

    Returns:
        bytes: 13 bytes when `detailed` is True, otherwise the 9-byte basic layout.
    """
    data = struct.pack(
        "<HHHBBB",
        co2,
        int(round(temperature * 20)),
        int(round(pressure * 10)),
        humidity,
        battery,
        status,
    )
    if detailed:
        data += struct.pack("<HH", interval, ago)
    return data


class _ManualHandle:
    def __init__(self, when, seq, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic stand-in for the event loop's `call_later`.

    Time only moves when `advance` is called; due callbacks run in deadline order.
    """

    def __init__(self):
        self.now = 0.0
        self._handles = []
        self._seq = 0

    def call_later(self, delay, callback, *args):
        handle = _ManualHandle(self.now + delay, self._seq, callback, args)
        self._seq += 1
        self._handles.append(handle)
        return handle

    def pending(self):
        return [handle for handle in self._handles if not handle.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending() if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback(*handle.args)
        self.now = target
        self._handles = self.pending()


class RecordingTransport(RadioTransport):
    """RadioTransport that records every command and never answers on its own."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.suspended = 0
        self.closed = False

    def names(self):
        return [call[0] for call in self.calls]

    def clear(self):
        self.calls.clear()

    def start(self):
        self.calls.append(("start",))

    def scan(self, service_uuids):
        self.calls.append(("scan", tuple(service_uuids)))

    def stop_scan(self):
        self.calls.append(("stop_scan",))

    def connect(self, peripheral):
        self.calls.append(("connect", peripheral))

    def cancel_connection(self, peripheral):
        self.calls.append(("cancel_connection", peripheral))

    def discover_characteristics(self, peripheral, service_uuids, characteristic_uuids):
        self.calls.append(
            ("discover_characteristics", peripheral, tuple(characteristic_uuids))
        )

    def read_characteristic(self, peripheral, characteristic):
        self.calls.append(("read_characteristic", peripheral, characteristic))

    def suspend(self):
        self.suspended += 1

    async def close(self):
        self.closed = True


@pytest.fixture
def scheduler():
    """Provide a fresh ManualScheduler."""
    return ManualScheduler()


@pytest.fixture
def transport():
    """Provide a fresh RecordingTransport."""
    return RecordingTransport()


@pytest.fixture
def alerts():
    """List collecting every AlertSignal delivered to the monitor's notifier."""
    return []


@pytest.fixture
def peripheral():
    """A fake sensor handle shaped like bleak's BLEDevice."""
    return SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="Aranet4 1A2B3")


@pytest.fixture
def characteristic():
    """A fake readings characteristic handle."""
    return SimpleNamespace(uuid="f0cd3001-95da-4f4b-9ac8-aa55d312af0c")


@pytest.fixture
def monitor(transport, scheduler, alerts):
    """
    SensorMonitor wired to the recording transport, manual scheduler and an alert list.

    Uses default timings (30 s scan, 300 s refresh, 300 s retry, 1200 ppm).
    """
    return SensorMonitor(
        transport,
        MonitorConfig(),
        notifier=alerts.append,
        scheduler=scheduler,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def published():
    """
    Record messages sent on the monitor's pypubsub topics for the duration of a test.

    Returns:
        SimpleNamespace: `status`, `reading` and `alert` lists of received payloads.
    """
    record = SimpleNamespace(status=[], reading=[], alert=[])

    def on_status(snapshot, monitor):
        record.status.append(snapshot)

    def on_reading(snapshot, monitor):
        record.reading.append(snapshot)

    def on_alert(signal, monitor):
        record.alert.append(signal)

    listeners = ((on_status, TOPIC_STATUS), (on_reading, TOPIC_READING), (on_alert, TOPIC_ALERT))
    for listener, topic in listeners:
        pub.subscribe(listener, topic)
    yield record
    for listener, topic in listeners:
        pub.unsubscribe(listener, topic)
