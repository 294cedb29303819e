"""Connection lifecycle state machine for a single environmental sensor."""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from pubsub import pub

from airmonitor.sensor.alerts import AlertGate, AlertSignal, PubSubNotifier
from airmonitor.sensor.config import MonitorConfig
from airmonitor.sensor.constants import (
    ERROR_BLUETOOTH_POWERED_OFF,
    ERROR_BLUETOOTH_UNAUTHORIZED,
    ERROR_BLUETOOTH_UNAVAILABLE,
    ERROR_BLUETOOTH_UNSUPPORTED,
    ERROR_CHARACTERISTIC_NOT_FOUND,
    ERROR_DECODE_FAILED,
    ERROR_NOT_CONNECTED,
    ERROR_READ_FAILED,
    READING_CHARACTERISTIC_UUIDS,
    SERVICE_UUIDS,
    TOPIC_READING,
    TOPIC_STATUS,
    logger,
)
from airmonitor.sensor.errors import MonitorError, SensorErrorHandler
from airmonitor.sensor.events import (
    CharacteristicDiscovered,
    CharacteristicDiscoveryFailed,
    ConnectFailed,
    ConnectSucceeded,
    DisconnectRequested,
    PeripheralDisconnected,
    PeripheralDiscovered,
    RadioStateChanged,
    ReadCompleted,
    SensorEvent,
    TimerFired,
    TimerKind,
)
from airmonitor.sensor.reading import DecodeFailure, Reading, decode
from airmonitor.sensor.state import (
    ConnectionStatus,
    MonitorSnapshot,
    RadioState,
    StatusTracker,
)
from airmonitor.sensor.timers import Scheduler, TimerSet
from airmonitor.sensor.transport import RadioTransport

_RADIO_ERRORS = {
    RadioState.POWERED_OFF: ERROR_BLUETOOTH_POWERED_OFF,
    RadioState.UNAUTHORIZED: ERROR_BLUETOOTH_UNAUTHORIZED,
    RadioState.UNSUPPORTED: ERROR_BLUETOOTH_UNSUPPORTED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SensorMonitor:
    """
    Discover one sensor, stay connected to it and poll its readings.

    The monitor is driven entirely by ``handle``: the transport feeds radio
    outcomes into it and the timer set feeds timer firings into it, all on one
    event loop. Failures never raise out of ``handle``; they are reflected in
    ``status`` and ``error``.

    Observers either poll ``snapshot()`` or subscribe to the pypubsub topics
    ``airmonitor.status`` and ``airmonitor.reading`` (both sent with
    ``snapshot`` and ``monitor``).

    Architecture:
        - StatusTracker: the single ``ConnectionStatus`` and its valid transitions
        - TimerSet: scan-timeout, auto-refresh and retry timers
        - AlertGate: edge-triggered CO2 threshold latch
        - RadioTransport: scan/connect/read commands, results come back as events
    """

    def __init__(
        self,
        transport: RadioTransport,
        config: Optional[MonitorConfig] = None,
        *,
        notifier: Optional[Callable[[AlertSignal], None]] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Parameters:
            transport (RadioTransport): Radio stack the monitor commands; bound to ``handle``.
            config (MonitorConfig | None): Timing and threshold overrides.
            notifier (Callable[[AlertSignal], None] | None): Receives alert signals; defaults to publishing on ``airmonitor.alert``.
            scheduler (Scheduler | None): Timer scheduler; defaults to the running asyncio loop.
            clock (Callable[[], datetime]): Source of reading timestamps.
        """
        self.config = config or MonitorConfig()
        self._transport = transport
        self._clock = clock
        self._status = StatusTracker()
        self._radio_state = RadioState.UNKNOWN
        self._peripheral: Optional[Any] = None
        self._peripheral_name: Optional[str] = None
        self._characteristic: Optional[Any] = None
        self._reading: Optional[Reading] = None
        self._last_updated: Optional[datetime] = None
        self._error: Optional[str] = None
        self._alert_gate = AlertGate()
        self._notifier = notifier or PubSubNotifier(self)
        self._timers = TimerSet(scheduler or asyncio.get_running_loop(), self._on_timer)

        self._pending: Deque[SensorEvent] = deque()
        self._dispatching = False
        self._pending_alerts: List[AlertSignal] = []
        self._published = self.snapshot()

        self._handlers: Dict[type, Callable[[Any], None]] = {
            RadioStateChanged: self._on_radio_state,
            PeripheralDiscovered: self._on_discovered,
            ConnectSucceeded: self._on_connect_succeeded,
            ConnectFailed: self._on_connect_failed,
            CharacteristicDiscovered: self._on_characteristic_discovered,
            CharacteristicDiscoveryFailed: self._on_characteristic_discovery_failed,
            ReadCompleted: self._on_read_completed,
            PeripheralDisconnected: self._on_peripheral_disconnected,
            TimerFired: self._on_timer_fired,
            DisconnectRequested: self._on_disconnect_requested,
        }
        transport.bind(self.handle)

    # -- observer surface -------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status.status

    @property
    def reading(self) -> Optional[Reading]:
        return self._reading

    @property
    def last_updated(self) -> Optional[datetime]:
        return self._last_updated

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def radio_state(self) -> RadioState:
        return self._radio_state

    @property
    def peripheral(self) -> Optional[Any]:
        return self._peripheral

    @property
    def characteristic(self) -> Optional[Any]:
        return self._characteristic

    @property
    def has_alerted_for_high_co2(self) -> bool:
        return self._alert_gate.has_alerted_for_high_metric

    def is_timer_armed(self, kind: TimerKind) -> bool:
        return self._timers.is_armed(kind)

    def snapshot(self) -> MonitorSnapshot:
        """Return an immutable view of the current state."""
        peripheral = self._peripheral
        return MonitorSnapshot(
            status=self._status.status,
            reading=self._reading,
            last_updated=self._last_updated,
            error=self._error,
            radio_state=self._radio_state,
            peripheral_address=getattr(peripheral, "address", None),
            peripheral_name=self._peripheral_name,
        )

    # -- commands ---------------------------------------------------------

    def start(self) -> None:
        """Ask the transport to begin reporting radio state; power-on starts the first scan."""
        self._transport.start()

    def disconnect(self) -> None:
        """Drop the sensor and stop every timer. Effective in every state."""
        self.handle(DisconnectRequested())

    def start_scanning(self) -> None:
        """Scan for the sensor again, typically after an explicit ``disconnect``."""
        self._run(self._begin_scan)

    def refresh(self) -> None:
        """Read the sensor now instead of waiting for the next auto-refresh."""
        self._run(self._request_read)

    def send_test_alert(self) -> None:
        """Deliver a test signal to the notifier without touching the alert latch."""
        threshold = self.config.alert_threshold
        self._deliver_alert(AlertSignal(metric_value=threshold, threshold=threshold, test=True))

    def handle(self, event: SensorEvent) -> None:
        """
        Apply one event to the state machine.

        Events raised while another event is being applied are queued and run
        afterwards, so transitions never interleave.

        Raises:
            MonitorError: If ``event`` is not a known event type.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise MonitorError(f"Unknown sensor event: {event!r}")
        self._pending.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                current = self._pending.popleft()
                self._run(self._handlers[type(current)], current)
        finally:
            self._dispatching = False

    # -- internals --------------------------------------------------------

    def _run(self, func: Callable, *args) -> None:
        func(*args)
        self._enforce_invariants()
        self._publish()

    def _set_status(self, status: ConnectionStatus) -> None:
        self._status.transition_to(status)

    def _is_current(self, peripheral: Any) -> bool:
        return self._peripheral is not None and peripheral is self._peripheral

    def _drop(self, event: SensorEvent) -> None:
        logger.debug(
            "Dropping stale %s while %s", type(event).__name__, self.status.value
        )

    def _clear_handles(self) -> None:
        self._peripheral = None
        self._peripheral_name = None
        self._characteristic = None

    def _begin_scan(self) -> None:
        if self._radio_state != RadioState.POWERED_ON:
            self._error = ERROR_BLUETOOTH_UNAVAILABLE
            return
        if self._peripheral is not None:
            self._transport.cancel_connection(self._peripheral)
            self._clear_handles()
        if self.status == ConnectionStatus.SCANNING:
            self._transport.stop_scan()
        self._timers.stop(TimerKind.AUTO_REFRESH)
        self._timers.stop(TimerKind.RETRY)
        self._set_status(ConnectionStatus.SCANNING)
        self._error = None
        self._transport.scan(SERVICE_UUIDS)
        self._timers.start(TimerKind.SCAN_TIMEOUT, self.config.scan_timeout)

    def _enter_not_found(self) -> None:
        self._set_status(ConnectionStatus.NOT_FOUND)
        self._error = None
        self._timers.start(TimerKind.RETRY, self.config.retry_interval)

    def _request_read(self) -> None:
        if not self._status.is_connected or self._characteristic is None:
            self._error = ERROR_NOT_CONNECTED
            return
        self._transport.read_characteristic(self._peripheral, self._characteristic)

    def _on_radio_state(self, event: RadioStateChanged) -> None:
        self._radio_state = event.state
        if event.state == RadioState.POWERED_ON:
            logger.info("Bluetooth powered on")
            self._begin_scan()
            return

        logger.warning(
            "Bluetooth unavailable (%s)%s",
            event.state.value,
            f": {event.detail}" if event.detail else "",
        )
        if self.status == ConnectionStatus.SCANNING:
            self._transport.stop_scan()
        if self._peripheral is not None:
            self._transport.cancel_connection(self._peripheral)
        self._clear_handles()
        self._timers.stop_all()
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._error = _RADIO_ERRORS.get(event.state, ERROR_BLUETOOTH_UNAVAILABLE)

    def _on_discovered(self, event: PeripheralDiscovered) -> None:
        if self.status != ConnectionStatus.SCANNING:
            self._drop(event)
            return
        # First match wins: this is a single-sensor monitor.
        self._peripheral = event.peripheral
        self._peripheral_name = event.name
        self._transport.stop_scan()
        self._timers.stop(TimerKind.SCAN_TIMEOUT)
        self._set_status(ConnectionStatus.CONNECTING)
        self._transport.connect(event.peripheral)

    def _on_connect_succeeded(self, event: ConnectSucceeded) -> None:
        if self.status != ConnectionStatus.CONNECTING or not self._is_current(event.peripheral):
            self._drop(event)
            return
        self._set_status(ConnectionStatus.CONNECTED)
        self._error = None
        self._timers.stop(TimerKind.RETRY)
        self._transport.discover_characteristics(
            self._peripheral, SERVICE_UUIDS, READING_CHARACTERISTIC_UUIDS
        )

    def _on_connect_failed(self, event: ConnectFailed) -> None:
        if self.status != ConnectionStatus.CONNECTING or not self._is_current(event.peripheral):
            self._drop(event)
            return
        logger.warning("Could not connect to sensor: %s", event.detail or "unknown error")
        self._clear_handles()
        self._enter_not_found()

    def _on_characteristic_discovered(self, event: CharacteristicDiscovered) -> None:
        if not self._status.is_connected or not self._is_current(event.peripheral):
            self._drop(event)
            return
        self._characteristic = event.characteristic
        self._transport.read_characteristic(self._peripheral, self._characteristic)
        self._timers.start(
            TimerKind.AUTO_REFRESH, self.config.auto_refresh_interval, repeating=True
        )

    def _on_characteristic_discovery_failed(
        self, event: CharacteristicDiscoveryFailed
    ) -> None:
        if not self._status.is_connected or not self._is_current(event.peripheral):
            self._drop(event)
            return
        logger.warning("Readings characteristic not found: %s", event.detail)
        self._error = ERROR_CHARACTERISTIC_NOT_FOUND

    def _on_read_completed(self, event: ReadCompleted) -> None:
        if (
            not self._status.is_connected
            or not self._is_current(event.peripheral)
            or event.characteristic is not self._characteristic
        ):
            self._drop(event)
            return
        if event.error is not None:
            logger.warning("Sensor read failed: %s", event.error)
            self._error = ERROR_READ_FAILED
            return

        result = decode(event.data, captured_at=self._clock())
        if isinstance(result, DecodeFailure):
            logger.warning("Sensor payload rejected: %s", result.reason)
            self._error = ERROR_DECODE_FAILED
            return

        self._reading = result
        self._last_updated = result.captured_at
        self._error = None
        logger.debug("New reading: %s", result)
        signal = self._alert_gate.evaluate(result.co2, self.config.alert_threshold)
        if signal is not None:
            self._pending_alerts.append(signal)

    def _on_peripheral_disconnected(self, event: PeripheralDisconnected) -> None:
        if self.status not in (
            ConnectionStatus.CONNECTED,
            ConnectionStatus.CONNECTING,
        ) or not self._is_current(event.peripheral):
            self._drop(event)
            return
        logger.info("Sensor disconnected; retrying in %.0fs", self.config.retry_interval)
        # A connect still in flight must not complete into an untracked connection
        self._transport.cancel_connection(self._peripheral)
        self._clear_handles()
        self._timers.stop(TimerKind.AUTO_REFRESH)
        self._enter_not_found()

    def _on_timer(self, kind: TimerKind) -> None:
        self.handle(TimerFired(kind))

    def _on_timer_fired(self, event: TimerFired) -> None:
        if event.kind == TimerKind.SCAN_TIMEOUT:
            if self.status != ConnectionStatus.SCANNING:
                self._drop(event)
                return
            logger.info("Sensor not found within %.0fs", self.config.scan_timeout)
            self._transport.stop_scan()
            self._enter_not_found()
        elif event.kind == TimerKind.RETRY:
            if self.status != ConnectionStatus.NOT_FOUND:
                self._drop(event)
                return
            self._begin_scan()
        elif event.kind == TimerKind.AUTO_REFRESH:
            if not self._status.is_connected or self._characteristic is None:
                self._drop(event)
                return
            self._request_read()

    def _on_disconnect_requested(self, event: DisconnectRequested) -> None:
        if self.status == ConnectionStatus.SCANNING:
            self._transport.stop_scan()
        if self._peripheral is not None:
            self._transport.cancel_connection(self._peripheral)
        self._clear_handles()
        self._timers.stop_all()
        self._transport.suspend()
        if self.status != ConnectionStatus.DISCONNECTED:
            logger.info("Disconnected from sensor on request")
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _enforce_invariants(self) -> None:
        status = self.status
        if self._characteristic is not None and (
            status != ConnectionStatus.CONNECTED or self._peripheral is None
        ):
            logger.warning("Clearing characteristic left over while %s", status.value)
            self._characteristic = None
        preconditions = (
            (TimerKind.SCAN_TIMEOUT, status == ConnectionStatus.SCANNING),
            (TimerKind.RETRY, status == ConnectionStatus.NOT_FOUND),
            (
                TimerKind.AUTO_REFRESH,
                status == ConnectionStatus.CONNECTED and self._characteristic is not None,
            ),
        )
        for kind, allowed in preconditions:
            if not allowed and self._timers.is_armed(kind):
                logger.debug("Stopping %s timer: not valid while %s", kind.value, status.value)
                self._timers.stop(kind)

    def _publish(self) -> None:
        snapshot = self.snapshot()
        previous, self._published = self._published, snapshot
        if snapshot != previous:
            SensorErrorHandler.safe_execute(
                lambda: pub.sendMessage(TOPIC_STATUS, snapshot=snapshot, monitor=self),
                error_msg="Error publishing status",
            )
        if snapshot.reading is not previous.reading and snapshot.reading is not None:
            SensorErrorHandler.safe_execute(
                lambda: pub.sendMessage(TOPIC_READING, snapshot=snapshot, monitor=self),
                error_msg="Error publishing reading",
            )
        alerts, self._pending_alerts = self._pending_alerts, []
        for signal in alerts:
            self._deliver_alert(signal)

    def _deliver_alert(self, signal: AlertSignal) -> None:
        SensorErrorHandler.safe_execute(
            lambda: self._notifier(signal), error_msg="Error delivering alert"
        )
