"""Decoding of the sensor's current-readings payload."""

import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

__all__ = [
    "BASIC_LENGTH",
    "DETAILED_LENGTH",
    "DecodeFailure",
    "Reading",
    "decode",
]

# co2, temperature*20, pressure*10, humidity, battery, status
_BASIC = struct.Struct("<HHHBBB")
# update interval, seconds since last measurement
_DETAILED_TAIL = struct.Struct("<HH")

BASIC_LENGTH = _BASIC.size
DETAILED_LENGTH = _BASIC.size + _DETAILED_TAIL.size

_INVALID_FLAG = 0x8000


@dataclass(frozen=True)
class Reading:
    """One decoded measurement from the sensor."""

    co2: int
    temperature: float
    humidity: int
    pressure: float
    battery: int
    captured_at: datetime
    status: int = 0
    interval: Optional[int] = None
    ago: Optional[int] = None


@dataclass(frozen=True)
class DecodeFailure:
    """Why a payload could not be turned into a ``Reading``."""

    reason: str
    length: int

    def __bool__(self) -> bool:
        return False


def decode(
    data: Union[bytes, bytearray, memoryview, None],
    *,
    captured_at: Optional[datetime] = None,
) -> Union[Reading, DecodeFailure]:
    """
    Decode a current-readings payload.

    Parameters:
        data: Raw bytes read from the readings characteristic.
        captured_at (datetime | None): Timestamp to stamp on the reading; defaults to now (UTC).

    Returns:
        A ``Reading`` for a well-formed payload, otherwise a ``DecodeFailure``.
        Never raises.
    """
    if data is None:
        return DecodeFailure("no data", 0)
    try:
        payload = bytes(data)
    except (TypeError, ValueError):
        return DecodeFailure("payload is not a byte buffer", 0)

    if len(payload) < BASIC_LENGTH:
        return DecodeFailure(
            f"payload too short: {len(payload)} < {BASIC_LENGTH} bytes", len(payload)
        )
    if BASIC_LENGTH < len(payload) < DETAILED_LENGTH:
        return DecodeFailure(
            f"truncated detailed payload: {len(payload)} bytes", len(payload)
        )

    co2, temp_raw, pressure_raw, humidity, battery, status = _BASIC.unpack_from(payload)
    if co2 & _INVALID_FLAG:
        return DecodeFailure("co2 value flagged as unavailable", len(payload))

    interval = ago = None
    if len(payload) >= DETAILED_LENGTH:
        interval, ago = _DETAILED_TAIL.unpack_from(payload, BASIC_LENGTH)

    return Reading(
        co2=co2,
        temperature=round(temp_raw / 20.0, 2),
        humidity=humidity,
        pressure=round(pressure_raw / 10.0, 1),
        battery=battery,
        captured_at=captured_at or datetime.now(timezone.utc),
        status=status,
        interval=interval,
        ago=ago,
    )
