"""Edge-triggered high-CO2 alerting."""

from dataclasses import dataclass
from typing import Optional

from pubsub import pub

from airmonitor.sensor.constants import TOPIC_ALERT, logger


@dataclass(frozen=True)
class AlertSignal:
    """Raised once per upward crossing of the alert threshold."""

    metric_value: int
    threshold: int
    test: bool = False


class AlertGate:
    """
    Suppress repeat alerts while the metric stays at or above the threshold.

    The latch arms on the first reading at or above the threshold and is
    released silently by the first reading below it.
    """

    def __init__(self):
        self.has_alerted_for_high_metric = False

    def evaluate(self, metric_value, threshold) -> Optional[AlertSignal]:
        if metric_value >= threshold:
            if self.has_alerted_for_high_metric:
                return None
            self.has_alerted_for_high_metric = True
            return AlertSignal(metric_value=metric_value, threshold=threshold)
        self.has_alerted_for_high_metric = False
        return None


class PubSubNotifier:
    """Default alert collaborator: publish each signal on the alert topic."""

    def __init__(self, source=None):
        self.source = source

    def __call__(self, signal: AlertSignal) -> None:
        logger.info(
            "%s: CO2 level is %d ppm (threshold %d ppm)",
            "Test alert" if signal.test else "High CO2 alert",
            signal.metric_value,
            signal.threshold,
        )
        pub.sendMessage(TOPIC_ALERT, signal=signal, monitor=self.source)
