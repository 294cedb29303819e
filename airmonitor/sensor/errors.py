"""Error handling for sensor operations."""

import asyncio
from typing import Callable

from bleak.exc import BleakDBusError, BleakError

from airmonitor.sensor.constants import logger

__all__ = ["MonitorError", "SensorErrorHandler", "TRANSPORT_ERRORS"]

# Exceptions a radio operation may raise that count as an ordinary failure
TRANSPORT_ERRORS = (BleakError, BleakDBusError, asyncio.TimeoutError, OSError)


class MonitorError(Exception):
    """Raised for misuse of the monitor outside its event boundary."""


class SensorErrorHandler:
    """
    Helper class for consistent error handling in radio operations.

    Radio failures never escape to the state machine as exceptions; they are
    logged here and turned into failure events by the transport.
    """

    @staticmethod
    def describe(exc: BaseException) -> str:
        """Return a short human-readable description of a transport failure."""
        if isinstance(exc, asyncio.TimeoutError):
            return "operation timed out"
        message = str(exc).strip()
        return message or type(exc).__name__

    @staticmethod
    def safe_execute(
        func: Callable,
        default_return=None,
        log_error: bool = True,
        error_msg: str = "Error in operation",
    ):
        """
        Execute a zero-argument callable and return its result, falling back to a default on failure.

        Transport errors are logged at debug level; anything else is logged with a traceback.

        Parameters:
            func (callable): A zero-argument callable to execute.
            default_return: Value to return if execution fails.
            log_error (bool): If True, log caught exceptions.
            error_msg (str): Message prefix used when logging errors.

        Returns:
            The value returned by `func()` on success, or `default_return` if execution failed.
        """
        try:
            return func()
        except TRANSPORT_ERRORS as e:
            if log_error:
                logger.debug("%s: %s", error_msg, e)
            return default_return
        except Exception:
            if log_error:
                logger.exception("%s", error_msg)
            return default_return

    @staticmethod
    async def safe_cleanup(awaitable, cleanup_name: str = "cleanup operation") -> None:
        """
        Await a cleanup coroutine and suppress any exception it raises.

        Parameters:
            awaitable: Coroutine performing the cleanup.
            cleanup_name (str): Human-readable name used in the log message.
        """
        try:
            await awaitable
        except Exception as e:  # noqa: BLE001
            logger.debug("Error during %s: %s", cleanup_name, e)
