"""
Collectors for OS-level telemetry.

- Power Reader (battery controller)
- Process Enumerator (per-process resource counters)
"""

from powerwatt.services.collectors.power import (
    IORegPowerSource,
    PowerReader,
    PowerSource,
    SysfsPowerSource,
    detect_power_source,
)
from powerwatt.services.collectors.process import (
    ProcessEnumerator,
    ProcessInventory,
    PsutilProcessInventory,
)

__all__ = [
    "IORegPowerSource",
    "PowerReader",
    "PowerSource",
    "SysfsPowerSource",
    "detect_power_source",
    "ProcessEnumerator",
    "ProcessInventory",
    "PsutilProcessInventory",
]
