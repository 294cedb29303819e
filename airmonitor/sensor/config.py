"""Timing configuration for the sensor monitor."""

from dataclasses import dataclass


class SensorConfig:
    """Configuration constants for sensor operations."""

    SCAN_TIMEOUT = 30.0
    AUTO_REFRESH_INTERVAL = 300.0
    RETRY_INTERVAL = 300.0
    CO2_ALERT_THRESHOLD = 1200
    CONNECTION_TIMEOUT = 20.0
    GATT_IO_TIMEOUT = 10.0
    DISCONNECT_TIMEOUT_SECONDS = 5.0
    RADIO_PROBE_INTERVAL = 30.0


@dataclass(frozen=True)
class MonitorConfig:
    """
    Per-instance overrides accepted by ``SensorMonitor``.

    Attributes:
        scan_timeout (float): Seconds a scan may run before the sensor is declared not found.
        auto_refresh_interval (float): Polling period while connected.
        retry_interval (float): Delay before scanning again after the sensor was not found or dropped.
        alert_threshold (int): CO2 level in ppm at or above which an alert fires.
    """

    scan_timeout: float = SensorConfig.SCAN_TIMEOUT
    auto_refresh_interval: float = SensorConfig.AUTO_REFRESH_INTERVAL
    retry_interval: float = SensorConfig.RETRY_INTERVAL
    alert_threshold: int = SensorConfig.CO2_ALERT_THRESHOLD

    def __post_init__(self):
        if self.scan_timeout <= 0:
            raise ValueError(f"scan_timeout must be > 0, got {self.scan_timeout}")
        if self.auto_refresh_interval <= 0:
            raise ValueError(
                f"auto_refresh_interval must be > 0, got {self.auto_refresh_interval}"
            )
        if self.retry_interval <= 0:
            raise ValueError(f"retry_interval must be > 0, got {self.retry_interval}")
        if self.alert_threshold < 0:
            raise ValueError(
                f"alert_threshold must be >= 0, got {self.alert_threshold}"
            )
