"""Tests for the bleak-backed radio transport."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bleak.exc import BleakError

from airmonitor.sensor import (
    CharacteristicDiscovered,
    CharacteristicDiscoveryFailed,
    ConnectFailed,
    ConnectionStatus,
    ConnectSucceeded,
    PeripheralDisconnected,
    PeripheralDiscovered,
    RadioState,
    RadioStateChanged,
    ReadCompleted,
    SensorMonitor,
    TimerKind,
)
from airmonitor.sensor.constants import (
    CURRENT_READINGS_DETAILED_UUID,
    CURRENT_READINGS_UUID,
    READING_CHARACTERISTIC_UUIDS,
    SERVICE_UUID,
    SERVICE_UUIDS,
)
from airmonitor.sensor.transport import BleakTransport, classify_radio_error

from conftest import make_payload

DEVICE = SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="Aranet4 1A2B3")


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def events():
    return []


@pytest.fixture
def transport(events):
    radio = BleakTransport(probe_interval=0.01)
    radio.bind(events.append)
    return radio


@pytest.fixture
def scanner(monkeypatch):
    """Patch BleakScanner and return the instance the transport will receive."""
    instance = MagicMock()
    instance.start = AsyncMock()
    instance.stop = AsyncMock()
    factory = MagicMock(return_value=instance)
    monkeypatch.setattr("airmonitor.sensor.transport.BleakScanner", factory)
    instance.factory = factory
    return instance


@pytest.fixture
def client(monkeypatch):
    """Patch BleakClient and return the instance the transport will receive."""
    instance = MagicMock()
    instance.connect = AsyncMock()
    instance.disconnect = AsyncMock()
    instance.read_gatt_char = AsyncMock(return_value=bytearray(make_payload()))
    factory = MagicMock(return_value=instance)
    monkeypatch.setattr("airmonitor.sensor.transport.BleakClient", factory)
    instance.factory = factory
    return instance


def _characteristic(uuid):
    return SimpleNamespace(uuid=uuid, service_uuid=SERVICE_UUID)


def test_start_reports_power_on(transport, events):
    """start() should announce a powered-on radio from the event loop."""

    async def _invoke():
        transport.start()
        assert events == []
        await _settle()

    asyncio.run(_invoke())

    assert events == [RadioStateChanged(RadioState.POWERED_ON)]


def test_unbound_transport_drops_events():
    radio = BleakTransport()

    async def _invoke():
        radio.start()
        await _settle()

    asyncio.run(_invoke())


def test_scan_filters_on_service_uuids(transport, scanner, events):
    """The scanner is created with the service filter and matching adverts are reported."""

    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        await _settle()
        callback = scanner.factory.call_args.kwargs["detection_callback"]
        callback(DEVICE, SimpleNamespace(service_uuids=[SERVICE_UUID.upper()], rssi=-60))
        callback(DEVICE, SimpleNamespace(service_uuids=["0000180f-0000-1000-8000-00805f9b34fb"], rssi=-50))

    asyncio.run(_invoke())

    assert scanner.factory.call_args.kwargs["service_uuids"] == list(SERVICE_UUIDS)
    scanner.start.assert_awaited_once()
    assert events == [PeripheralDiscovered(DEVICE, name="Aranet4 1A2B3", rssi=-60)]


def test_scan_passes_adapter(scanner, events):
    radio = BleakTransport(adapter="hci1")
    radio.bind(events.append)

    async def _invoke():
        radio.scan(SERVICE_UUIDS)
        await _settle()

    asyncio.run(_invoke())

    assert scanner.factory.call_args.kwargs["adapter"] == "hci1"


def test_stop_scan_silences_detections(transport, scanner, events):
    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        await _settle()
        callback = scanner.factory.call_args.kwargs["detection_callback"]
        transport.stop_scan()
        await _settle()
        callback(DEVICE, SimpleNamespace(service_uuids=[SERVICE_UUID], rssi=-60))

    asyncio.run(_invoke())

    scanner.stop.assert_awaited_once()
    assert events == []


def test_stop_scan_without_scanner_is_noop(transport, scanner):
    async def _invoke():
        transport.stop_scan()
        await _settle()

    asyncio.run(_invoke())

    scanner.stop.assert_not_awaited()


def test_scan_failure_reports_radio_state_and_probes(transport, scanner, events):
    """A failing scan start maps to a radio state and a later power-on probe."""
    scanner.start.side_effect = BleakError("Bluetooth device is turned off")

    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        await _settle()
        await asyncio.sleep(0.05)
        await transport.close()

    asyncio.run(_invoke())

    assert events[0] == RadioStateChanged(
        RadioState.POWERED_OFF, "Bluetooth device is turned off"
    )
    assert RadioStateChanged(RadioState.POWERED_ON) in events[1:]


def test_connect_success(transport, client, events):
    async def _invoke():
        transport.connect(DEVICE)
        await _settle()

    asyncio.run(_invoke())

    assert client.factory.call_args.args == (DEVICE,)
    assert client.factory.call_args.kwargs["timeout"] == transport.connection_timeout
    client.connect.assert_awaited_once()
    assert events == [ConnectSucceeded(DEVICE)]


def test_connect_failure(transport, client, events):
    client.connect.side_effect = BleakError("le-connection-abort-by-local")

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()

    asyncio.run(_invoke())

    assert events == [ConnectFailed(DEVICE, "le-connection-abort-by-local")]


def test_unexpected_disconnect_is_reported(transport, client, events):
    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        client.factory.call_args.kwargs["disconnected_callback"](client)

    asyncio.run(_invoke())

    assert events == [ConnectSucceeded(DEVICE), PeripheralDisconnected(DEVICE)]


def test_cancelled_connection_does_not_report_disconnect(transport, client, events):
    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.cancel_connection(DEVICE)
        await _settle()
        client.factory.call_args.kwargs["disconnected_callback"](client)

    asyncio.run(_invoke())

    client.disconnect.assert_awaited_once()
    assert events == [ConnectSucceeded(DEVICE)]


def test_discover_prefers_detailed_characteristic(transport, client, events):
    detailed = _characteristic(CURRENT_READINGS_DETAILED_UUID)
    basic = _characteristic(CURRENT_READINGS_UUID)
    table = {CURRENT_READINGS_DETAILED_UUID: detailed, CURRENT_READINGS_UUID: basic}
    client.services.get_characteristic.side_effect = table.get

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.discover_characteristics(DEVICE, SERVICE_UUIDS, READING_CHARACTERISTIC_UUIDS)
        await _settle()

    asyncio.run(_invoke())

    assert events[-1] == CharacteristicDiscovered(DEVICE, detailed)


def test_discover_falls_back_to_basic_characteristic(transport, client, events):
    basic = _characteristic(CURRENT_READINGS_UUID)
    client.services.get_characteristic.side_effect = {CURRENT_READINGS_UUID: basic}.get

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.discover_characteristics(DEVICE, SERVICE_UUIDS, READING_CHARACTERISTIC_UUIDS)
        await _settle()

    asyncio.run(_invoke())

    assert events[-1] == CharacteristicDiscovered(DEVICE, basic)


def test_discover_reports_missing_characteristic(transport, client, events):
    client.services.get_characteristic.return_value = None

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.discover_characteristics(DEVICE, SERVICE_UUIDS, READING_CHARACTERISTIC_UUIDS)
        await _settle()

    asyncio.run(_invoke())

    assert isinstance(events[-1], CharacteristicDiscoveryFailed)


def test_discover_without_connection(transport, events):
    async def _invoke():
        transport.discover_characteristics(DEVICE, SERVICE_UUIDS, READING_CHARACTERISTIC_UUIDS)
        await _settle()

    asyncio.run(_invoke())

    assert events == [CharacteristicDiscoveryFailed(DEVICE, "not connected")]


def test_read_returns_bytes(transport, client, events):
    characteristic = _characteristic(CURRENT_READINGS_DETAILED_UUID)

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.read_characteristic(DEVICE, characteristic)
        await _settle()

    asyncio.run(_invoke())

    client.read_gatt_char.assert_awaited_once_with(characteristic)
    assert events[-1] == ReadCompleted(DEVICE, characteristic, data=make_payload())
    assert isinstance(events[-1].data, bytes)


def test_read_timeout_reports_error(transport, client, events):
    characteristic = _characteristic(CURRENT_READINGS_DETAILED_UUID)
    client.read_gatt_char.side_effect = asyncio.TimeoutError()

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.read_characteristic(DEVICE, characteristic)
        await _settle()

    asyncio.run(_invoke())

    assert events[-1] == ReadCompleted(DEVICE, characteristic, error="operation timed out")


def test_read_without_connection(transport, events):
    async def _invoke():
        transport.read_characteristic(DEVICE, "char")
        await _settle()

    asyncio.run(_invoke())

    assert events == [ReadCompleted(DEVICE, "char", error="not connected")]


def test_backend_error_during_connect_reports_failure(transport, client, events):
    """Exceptions outside bleak's hierarchy still end the attempt with ConnectFailed."""
    client.connect.side_effect = EOFError()

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()

    asyncio.run(_invoke())

    assert events == [ConnectFailed(DEVICE, "EOFError")]


def test_backend_error_during_discovery_reports_failure(transport, client, events):
    client.services.get_characteristic.side_effect = KeyError("handle")

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.discover_characteristics(DEVICE, SERVICE_UUIDS, READING_CHARACTERISTIC_UUIDS)
        await _settle()

    asyncio.run(_invoke())

    assert isinstance(events[-1], CharacteristicDiscoveryFailed)


def test_backend_error_during_read_reports_failure(transport, client, events):
    characteristic = _characteristic(CURRENT_READINGS_DETAILED_UUID)
    client.read_gatt_char.side_effect = RuntimeError("dbus connection lost")

    async def _invoke():
        transport.connect(DEVICE)
        await _settle()
        transport.read_characteristic(DEVICE, characteristic)
        await _settle()

    asyncio.run(_invoke())

    assert events[-1] == ReadCompleted(DEVICE, characteristic, error="dbus connection lost")


def test_monitor_recovers_from_backend_connect_error(transport, scanner, client):
    """A monitor driven by the real transport falls back to NotFound and arms its retry."""
    client.connect.side_effect = EOFError()
    seen = {}

    async def _invoke():
        monitor = SensorMonitor(transport, notifier=lambda signal: None)
        monitor.start()
        await _settle()
        callback = scanner.factory.call_args.kwargs["detection_callback"]
        callback(DEVICE, SimpleNamespace(service_uuids=[SERVICE_UUID], rssi=-60))
        await _settle()
        seen["status"] = monitor.status
        seen["retry"] = monitor.is_timer_armed(TimerKind.RETRY)
        monitor.disconnect()
        await transport.close()

    asyncio.run(_invoke())

    assert seen == {"status": ConnectionStatus.NOT_FOUND, "retry": True}


@pytest.fixture
def scanners(monkeypatch):
    """Patch BleakScanner so every scan gets its own mock scanner."""
    created = []

    def factory(**kwargs):
        instance = MagicMock()
        instance.start = AsyncMock()
        instance.stop = AsyncMock()
        instance.kwargs = kwargs
        created.append(instance)
        return instance

    monkeypatch.setattr("airmonitor.sensor.transport.BleakScanner", factory)
    return created


def test_rescan_in_one_tick_leaves_one_scanner(transport, scanners):
    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        transport.stop_scan()
        transport.scan(SERVICE_UUIDS)
        await _settle()
        assert len(scanners) == 1
        transport.stop_scan()
        await _settle()

    asyncio.run(_invoke())

    started = sum(s.start.await_count for s in scanners)
    stopped = sum(s.stop.await_count for s in scanners)
    assert started == stopped == 1


def test_stop_before_scan_task_runs_creates_no_scanner(transport, scanners):
    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        transport.stop_scan()
        await _settle()

    asyncio.run(_invoke())

    assert scanners == []


def test_stop_during_scanner_start_stops_it(transport, monkeypatch):
    instance = MagicMock()
    instance.stop = AsyncMock()
    gate = {}

    async def start():
        gate["stop_scan"]()
        await asyncio.sleep(0)

    instance.start = AsyncMock(side_effect=start)
    monkeypatch.setattr(
        "airmonitor.sensor.transport.BleakScanner", MagicMock(return_value=instance)
    )
    gate["stop_scan"] = transport.stop_scan

    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        await _settle()
        await transport.close()

    asyncio.run(_invoke())

    instance.stop.assert_awaited_once()


def test_suspend_cancels_radio_recheck(transport, scanner, events):
    scanner.start.side_effect = BleakError("Bluetooth device is turned off")

    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        await _settle()
        transport.suspend()
        await asyncio.sleep(0.05)

    asyncio.run(_invoke())

    assert events == [
        RadioStateChanged(RadioState.POWERED_OFF, "Bluetooth device is turned off")
    ]


def test_close_releases_everything(transport, scanner, client, events):
    async def _invoke():
        transport.scan(SERVICE_UUIDS)
        transport.connect(DEVICE)
        await _settle()
        await transport.close()
        transport.start()
        await _settle()

    asyncio.run(_invoke())

    scanner.stop.assert_awaited_once()
    client.disconnect.assert_awaited_once()
    assert RadioStateChanged(RadioState.POWERED_ON) not in events


@pytest.mark.parametrize(
    "message, state",
    [
        ("Bluetooth device is turned off", RadioState.POWERED_OFF),
        ("org.bluez.Error.NotReady: Resource Not Ready (powered off)", RadioState.POWERED_OFF),
        ("Permission denied", RadioState.UNAUTHORIZED),
        ("No Bluetooth adapters found.", RadioState.UNSUPPORTED),
        ("Bluetooth LE is not supported", RadioState.UNSUPPORTED),
        ("something else", RadioState.UNKNOWN),
    ],
)
def test_classify_radio_error(message, state):
    assert classify_radio_error(BleakError(message)) == state
