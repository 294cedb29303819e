"""
Console runner for the sensor monitor.

Finds the first Aranet4 in range, logs every status change and reading, and
logs an alert whenever CO2 crosses the threshold. Stop with Ctrl-C.
"""
import argparse
import asyncio
import logging
from signal import SIGINT, SIGTERM

from pubsub import pub

from airmonitor import __version__
from airmonitor.sensor import (
    BleakTransport,
    MonitorConfig,
    SensorConfig,
    SensorMonitor,
    TOPIC_ALERT,
    TOPIC_READING,
    TOPIC_STATUS,
)
from airmonitor.sensor.constants import BLEAK_VERSION

logger = logging.getLogger(__name__)


def on_status(snapshot, monitor):
    """Log the connection status and any error detail attached to it."""
    if snapshot.error:
        logger.info("Status: %s (%s)", snapshot.status.value, snapshot.error)
    else:
        logger.info("Status: %s", snapshot.status.value)


def on_reading(snapshot, monitor):
    reading = snapshot.reading
    logger.info(
        "CO2 %d ppm | %.1f °C | %d %% RH | %.1f hPa | battery %d %%",
        reading.co2,
        reading.temperature,
        reading.humidity,
        reading.pressure,
        reading.battery,
    )


def on_alert(signal, monitor):
    # PubSubNotifier already logs the alert; terminal bell for attention.
    print("\a", end="", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="airmonitor",
        description="Monitor an Aranet4 CO2 sensor over Bluetooth Low Energy.",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=SensorConfig.SCAN_TIMEOUT,
        help="Seconds to scan before giving up (default: %(default)s)",
    )
    parser.add_argument(
        "--refresh",
        type=float,
        default=SensorConfig.AUTO_REFRESH_INTERVAL,
        help="Seconds between readings while connected (default: %(default)s)",
    )
    parser.add_argument(
        "--retry",
        type=float,
        default=SensorConfig.RETRY_INTERVAL,
        help="Seconds to wait before scanning again (default: %(default)s)",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=SensorConfig.CO2_ALERT_THRESHOLD,
        help="CO2 alert threshold in ppm (default: %(default)s)",
    )
    parser.add_argument("--adapter", help="Bluetooth adapter to use, e.g. hci0")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def run(config: MonitorConfig, adapter=None) -> None:
    """Run the monitor until cancelled, then disconnect and release the radio."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(SIGINT, stop.set)
        loop.add_signal_handler(SIGTERM, stop.set)
    except NotImplementedError:  # pragma: no cover - Windows event loops
        pass

    transport = BleakTransport(adapter=adapter)
    monitor = SensorMonitor(transport, config)
    monitor.start()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        monitor.disconnect()
        await transport.close()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = MonitorConfig(
            scan_timeout=args.scan_timeout,
            auto_refresh_interval=args.refresh,
            retry_interval=args.retry,
            alert_threshold=args.threshold,
        )
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    logger.debug("airmonitor %s using bleak %s", __version__, BLEAK_VERSION)
    pub.subscribe(on_status, TOPIC_STATUS)
    pub.subscribe(on_reading, TOPIC_READING)
    pub.subscribe(on_alert, TOPIC_ALERT)
    try:
        asyncio.run(run(config, adapter=args.adapter))
    except KeyboardInterrupt:
        logger.info("Exiting...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
