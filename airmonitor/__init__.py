"""
# A monitor for Aranet4 CO2 sensors over Bluetooth Low Energy

The package finds a single sensor, stays connected to it and polls its current
readings, scanning again on its own whenever the sensor drops out of range.

State changes are published with pypubsub:

- `airmonitor.status` (snapshot, monitor): connection status, latest reading or error detail changed
- `airmonitor.reading` (snapshot, monitor): a new reading was decoded
- `airmonitor.alert` (signal, monitor): CO2 crossed the alert threshold

Example:

```
import asyncio
from pubsub import pub
from airmonitor.sensor import BleakTransport, SensorMonitor

def on_reading(snapshot, monitor):
    print(snapshot.reading.co2)

async def main():
    pub.subscribe(on_reading, "airmonitor.reading")
    monitor = SensorMonitor(BleakTransport())
    monitor.start()
    await asyncio.Event().wait()

asyncio.run(main())
```
"""

__version__ = "0.1.0"
