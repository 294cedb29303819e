"""Per-kind one-shot or repeating timers for the sensor monitor."""

from typing import Any, Callable, Dict, Optional, Protocol

from airmonitor.sensor.constants import logger
from airmonitor.sensor.events import TimerKind


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything exposing asyncio's ``call_later``; normally the running event loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class _ArmedTimer:
    __slots__ = ("duration", "repeating", "handle")

    def __init__(self, duration: float, repeating: bool):
        self.duration = duration
        self.repeating = repeating
        self.handle: Optional[TimerHandle] = None


class TimerSet:
    """
    Owns at most one live timer per ``TimerKind``.

    Firing callbacks run on the scheduler's loop, the same context the monitor
    handles events on, so no firing can interleave with a transition.
    """

    def __init__(self, scheduler: Scheduler, on_fire: Callable[[TimerKind], None]):
        """
        Parameters:
            scheduler (Scheduler): Provides ``call_later``.
            on_fire (Callable[[TimerKind], None]): Invoked with the kind of timer that fired.
        """
        self._scheduler = scheduler
        self._on_fire = on_fire
        self._timers: Dict[TimerKind, _ArmedTimer] = {}

    def start(self, kind: TimerKind, duration: float, repeating: bool = False) -> None:
        """
        Arm the timer of ``kind``, cancelling any existing timer of that kind first.

        Parameters:
            kind (TimerKind): Which timer to arm.
            duration (float): Seconds until the first firing (and the period when repeating).
            repeating (bool): If True the timer re-arms itself after every firing.
        """
        if duration <= 0:
            raise ValueError(f"duration must be > 0, got {duration}")
        self.stop(kind)
        timer = _ArmedTimer(duration, repeating)
        self._timers[kind] = timer
        self._schedule(kind, timer)
        logger.debug(
            "Timer %s armed for %.1fs%s",
            kind.value,
            duration,
            " (repeating)" if repeating else "",
        )

    def stop(self, kind: TimerKind) -> None:
        """Cancel the timer of ``kind``; a no-op when it is idle."""
        timer = self._timers.pop(kind, None)
        if timer is None:
            return
        if timer.handle is not None:
            timer.handle.cancel()
        logger.debug("Timer %s stopped", kind.value)

    def stop_all(self) -> None:
        for kind in list(self._timers):
            self.stop(kind)

    def is_armed(self, kind: TimerKind) -> bool:
        return kind in self._timers

    def _schedule(self, kind: TimerKind, timer: _ArmedTimer) -> None:
        timer.handle = self._scheduler.call_later(timer.duration, self._fire, kind, timer)

    def _fire(self, kind: TimerKind, timer: _ArmedTimer) -> None:
        # A handle cancelled too late to stop the loop from running it
        if self._timers.get(kind) is not timer:
            return
        if timer.repeating:
            self._schedule(kind, timer)
        else:
            del self._timers[kind]
        self._on_fire(kind)
