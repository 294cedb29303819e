"""Radio transport abstraction and its bleak-backed implementation."""

import asyncio
import functools
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Set

from bleak import BleakClient, BleakScanner

from airmonitor.sensor.config import SensorConfig
from airmonitor.sensor.constants import logger
from airmonitor.sensor.errors import TRANSPORT_ERRORS, SensorErrorHandler
from airmonitor.sensor.events import (
    CharacteristicDiscovered,
    CharacteristicDiscoveryFailed,
    ConnectFailed,
    ConnectSucceeded,
    PeripheralDisconnected,
    PeripheralDiscovered,
    RadioStateChanged,
    ReadCompleted,
    SensorEvent,
)
from airmonitor.sensor.state import RadioState

EventSink = Callable[[SensorEvent], None]


class RadioTransport(ABC):
    """
    Commands the monitor issues to the radio stack.

    Every command returns immediately; its outcome is delivered later as an
    event on the sink registered with ``bind``, on the same event loop.
    """

    def __init__(self):
        self._sink: Optional[EventSink] = None

    def bind(self, sink: EventSink) -> None:
        """Register the callable that receives every transport event."""
        self._sink = sink

    def emit(self, event: SensorEvent) -> None:
        if self._sink is None:
            logger.debug("Dropping %s: no event sink bound", type(event).__name__)
            return
        self._sink(event)

    @abstractmethod
    def start(self) -> None:
        """Begin reporting radio power state."""

    @abstractmethod
    def scan(self, service_uuids: Iterable[str]) -> None:
        """Start scanning for peripherals advertising any of ``service_uuids``."""

    @abstractmethod
    def stop_scan(self) -> None:
        """Stop an active scan; a no-op when not scanning."""

    @abstractmethod
    def connect(self, peripheral: Any) -> None:
        """Open a connection to ``peripheral``."""

    @abstractmethod
    def cancel_connection(self, peripheral: Any) -> None:
        """Abort a pending connect or close an established connection."""

    @abstractmethod
    def discover_characteristics(
        self,
        peripheral: Any,
        service_uuids: Iterable[str],
        characteristic_uuids: Iterable[str],
    ) -> None:
        """Look up the first of ``characteristic_uuids`` exposed by a connected peripheral."""

    @abstractmethod
    def read_characteristic(self, peripheral: Any, characteristic: Any) -> None:
        """Read the current value of ``characteristic``."""

    def suspend(self) -> None:
        """Stop background activity the transport started on its own, such as radio re-checks."""

    @abstractmethod
    async def close(self) -> None:
        """Release every radio resource held by the transport."""


def classify_radio_error(exc: BaseException) -> RadioState:
    """Map a scan start failure to the radio power state it most likely indicates."""
    message = str(exc).lower()
    if any(word in message for word in ("powered off", "turned off", "not powered")):
        return RadioState.POWERED_OFF
    if any(word in message for word in ("unauthorized", "permission", "denied")):
        return RadioState.UNAUTHORIZED
    if any(
        word in message
        for word in ("not supported", "unsupported", "no bluetooth adapter")
    ):
        return RadioState.UNSUPPORTED
    return RadioState.UNKNOWN


class BleakTransport(RadioTransport):
    """
    ``RadioTransport`` built on bleak's ``BleakScanner`` and ``BleakClient``.

    Bleak has no power-state notification, so ``start`` reports the radio as
    powered on and a failing scan start is translated into the matching
    ``RadioStateChanged``. After such a failure the radio is probed again every
    ``probe_interval`` seconds by re-announcing power-on.
    """

    def __init__(
        self,
        *,
        connection_timeout: float = SensorConfig.CONNECTION_TIMEOUT,
        gatt_timeout: float = SensorConfig.GATT_IO_TIMEOUT,
        disconnect_timeout: float = SensorConfig.DISCONNECT_TIMEOUT_SECONDS,
        probe_interval: float = SensorConfig.RADIO_PROBE_INTERVAL,
        adapter: Optional[str] = None,
    ):
        super().__init__()
        self.connection_timeout = connection_timeout
        self.gatt_timeout = gatt_timeout
        self.disconnect_timeout = disconnect_timeout
        self.probe_interval = probe_interval
        self.adapter = adapter
        self._scanner: Optional[BleakScanner] = None
        self._scan_generation = 0
        self._service_uuids: tuple = ()
        self._clients: Dict[str, BleakClient] = {}
        self._connect_tasks: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._probe_handle: Optional[asyncio.TimerHandle] = None

    @staticmethod
    def _key(peripheral: Any) -> str:
        return getattr(peripheral, "address", None) or str(peripheral)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"airmonitor-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Unhandled error in transport task %s",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    # -- power state ------------------------------------------------------

    def start(self) -> None:
        asyncio.get_running_loop().call_soon(self._announce_power_on)

    def _announce_power_on(self) -> None:
        self._probe_handle = None
        logger.debug("Radio reported powered on")
        self.emit(RadioStateChanged(RadioState.POWERED_ON))

    def _schedule_probe(self) -> None:
        if self._probe_handle is not None:
            self._probe_handle.cancel()
        self._probe_handle = asyncio.get_running_loop().call_later(
            self.probe_interval, self._announce_power_on
        )

    def suspend(self) -> None:
        if self._probe_handle is not None:
            logger.debug("Cancelling pending radio re-check")
            self._probe_handle.cancel()
            self._probe_handle = None

    # -- scanning ---------------------------------------------------------

    def scan(self, service_uuids: Iterable[str]) -> None:
        self._service_uuids = tuple(uuid.lower() for uuid in service_uuids)
        self._scan_generation += 1
        self._spawn(self._start_scan(self._scan_generation), "scan")

    async def _start_scan(self, generation: int) -> None:
        # Only the newest scan()/stop_scan() generation may keep a scanner
        if generation != self._scan_generation:
            return
        kwargs = {}
        if self.adapter:
            kwargs["adapter"] = self.adapter
        scanner = BleakScanner(
            detection_callback=functools.partial(self._on_detection, generation),
            service_uuids=list(self._service_uuids),
            **kwargs,
        )
        try:
            await scanner.start()
        except TRANSPORT_ERRORS as exc:
            if generation != self._scan_generation:
                logger.debug("Superseded scan failed to start: %s", exc)
                return
            state = classify_radio_error(exc)
            logger.warning("Unable to start scan (%s): %s", state.value, exc)
            self.emit(RadioStateChanged(state, SensorErrorHandler.describe(exc)))
            self._schedule_probe()
            return
        if generation != self._scan_generation:
            await SensorErrorHandler.safe_cleanup(scanner.stop(), "scanner stop")
            return
        self._scanner = scanner
        logger.info("Scanning for sensor")

    def _on_detection(self, generation: int, device, advertisement_data) -> None:
        if generation != self._scan_generation:
            return
        advertised = {
            uuid.lower() for uuid in (getattr(advertisement_data, "service_uuids", None) or ())
        }
        if advertised and self._service_uuids and advertised.isdisjoint(self._service_uuids):
            return
        logger.info("Sensor found: %s (%s)", device.address, device.name)
        self.emit(
            PeripheralDiscovered(
                device,
                name=device.name,
                rssi=getattr(advertisement_data, "rssi", None),
            )
        )

    def stop_scan(self) -> None:
        self._scan_generation += 1
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            self._spawn(
                SensorErrorHandler.safe_cleanup(scanner.stop(), "scanner stop"),
                "stop-scan",
            )

    # -- connection -------------------------------------------------------

    def connect(self, peripheral: Any) -> None:
        key = self._key(peripheral)
        client = BleakClient(
            peripheral,
            disconnected_callback=functools.partial(self._on_disconnected, peripheral),
            timeout=self.connection_timeout,
        )
        self._clients[key] = client
        self._connect_tasks[key] = self._spawn(
            self._connect(peripheral, client), f"connect-{key}"
        )

    async def _connect(self, peripheral: Any, client: BleakClient) -> None:
        key = self._key(peripheral)
        try:
            await client.connect()
        except Exception as exc:
            if isinstance(exc, TRANSPORT_ERRORS):
                logger.warning("Connection to %s failed: %s", key, exc)
            else:
                logger.exception("Unexpected error connecting to %s", key)
            if self._clients.get(key) is client:
                del self._clients[key]
            self.emit(ConnectFailed(peripheral, SensorErrorHandler.describe(exc)))
            return
        finally:
            if self._connect_tasks.get(key) is asyncio.current_task():
                del self._connect_tasks[key]
        logger.info("Connected to %s", key)
        self.emit(ConnectSucceeded(peripheral))

    def _on_disconnected(self, peripheral: Any, client: BleakClient) -> None:
        key = self._key(peripheral)
        if self._clients.get(key) is not client:
            return
        del self._clients[key]
        logger.info("Sensor %s disconnected", key)
        self.emit(PeripheralDisconnected(peripheral))

    def cancel_connection(self, peripheral: Any) -> None:
        key = self._key(peripheral)
        task = self._connect_tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
        client = self._clients.pop(key, None)
        if client is not None:
            self._spawn(self._disconnect(client), f"disconnect-{key}")

    async def _disconnect(self, client: BleakClient) -> None:
        await SensorErrorHandler.safe_cleanup(
            asyncio.wait_for(client.disconnect(), timeout=self.disconnect_timeout),
            "client disconnect",
        )

    # -- GATT -------------------------------------------------------------

    def discover_characteristics(
        self,
        peripheral: Any,
        service_uuids: Iterable[str],
        characteristic_uuids: Iterable[str],
    ) -> None:
        self._spawn(
            self._discover(peripheral, tuple(service_uuids), tuple(characteristic_uuids)),
            "discover",
        )

    async def _discover(self, peripheral: Any, service_uuids: tuple, characteristic_uuids: tuple) -> None:
        client = self._clients.get(self._key(peripheral))
        if client is None:
            self.emit(CharacteristicDiscoveryFailed(peripheral, "not connected"))
            return
        wanted_services = {uuid.lower() for uuid in service_uuids}
        try:
            services = client.services
            for uuid in characteristic_uuids:
                characteristic = services.get_characteristic(uuid)
                if characteristic is None:
                    continue
                service_uuid = str(getattr(characteristic, "service_uuid", "")).lower()
                if wanted_services and service_uuid and service_uuid not in wanted_services:
                    continue
                logger.debug("Using characteristic %s", uuid)
                self.emit(CharacteristicDiscovered(peripheral, characteristic))
                return
        except Exception as exc:
            if isinstance(exc, TRANSPORT_ERRORS):
                logger.warning("Characteristic discovery failed: %s", exc)
            else:
                logger.exception("Unexpected error during characteristic discovery")
            self.emit(
                CharacteristicDiscoveryFailed(peripheral, SensorErrorHandler.describe(exc))
            )
            return
        self.emit(CharacteristicDiscoveryFailed(peripheral, "no readings characteristic"))

    def read_characteristic(self, peripheral: Any, characteristic: Any) -> None:
        self._spawn(self._read(peripheral, characteristic), "read")

    async def _read(self, peripheral: Any, characteristic: Any) -> None:
        client = self._clients.get(self._key(peripheral))
        if client is None:
            self.emit(ReadCompleted(peripheral, characteristic, error="not connected"))
            return
        try:
            data = await asyncio.wait_for(
                client.read_gatt_char(characteristic), timeout=self.gatt_timeout
            )
        except Exception as exc:
            if isinstance(exc, TRANSPORT_ERRORS):
                logger.warning("Reading sensor characteristic failed: %s", exc)
            else:
                logger.exception("Unexpected error reading sensor characteristic")
            self.emit(
                ReadCompleted(
                    peripheral, characteristic, error=SensorErrorHandler.describe(exc)
                )
            )
            return
        self.emit(ReadCompleted(peripheral, characteristic, data=bytes(data)))

    # -- teardown ---------------------------------------------------------

    async def close(self) -> None:
        self.suspend()
        self._scan_generation += 1
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            await SensorErrorHandler.safe_cleanup(scanner.stop(), "scanner stop")
        for task in list(self._connect_tasks.values()):
            task.cancel()
        self._connect_tasks.clear()
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await self._disconnect(client)
        pending = [task for task in self._tasks if task is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._sink = None
