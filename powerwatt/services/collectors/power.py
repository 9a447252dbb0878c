"""
Power Reader - Best-effort total system power from the battery controller.

Resolution order for one reading:
1. A direct system-power property (measured)
2. Battery voltage x current while discharging (derived)
3. Unavailable, with the reason preserved

Data sources:
- macOS: `ioreg -r -c AppleSmartBattery -a` (plist output)
- Linux laptops: /sys/class/power_supply/BAT*

Both sources are mapped onto the AppleSmartBattery property vocabulary
(Voltage in mV, Amperage in signed mA, IsCharging, ExternalConnected,
CurrentCapacity, MaxCapacity) so a single decoder handles them.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
import logging
import math
import plistlib
import struct
import subprocess
import sys

from powerwatt.models.power import MAX_VALID_WATTS, TotalPowerSample, TotalPowerSource, UnavailableReason

logger = logging.getLogger(__name__)

# Integers in this open range are IEEE-754 float32 bit patterns (1.0 .. 512.0)
FLOAT_BITS_LOW = 0x3F800000
FLOAT_BITS_HIGH = 0x44000000

# Pre-filter applied to raw float32 byte decodes
RAW_FLOAT_MAX_WATTS = 500.0

FULLY_CHARGED_PERCENT = 99.5

PropertyBag = Dict[str, Any]
Decoder = Callable[[Any], Optional[float]]


# ============================================================================
# Property Decoding
# ============================================================================

def decode_number(value: Any) -> Optional[float]:
    """
    Decode a power property that may be stored in several encodings.

    Args:
        value: float, int (plain or float32 bit pattern) or raw little-endian bytes

    Returns:
        Decoded value, or None when the encoding is not recognized
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, int):
        if FLOAT_BITS_LOW < value < FLOAT_BITS_HIGH:
            return float(struct.unpack('<f', struct.pack('<I', value))[0])
        return float(value)
    if isinstance(value, (bytes, bytearray)) and len(value) >= 4:
        decoded = struct.unpack('<f', bytes(value[:4]))[0]
        if math.isfinite(decoded) and 0.0 <= decoded <= RAW_FLOAT_MAX_WATTS:
            return float(decoded)
    return None


def decode_adapter_details(value: Any) -> Optional[float]:
    """AdapterDetails is a dictionary carrying `Watts` or `Wattage`."""
    if not isinstance(value, dict):
        return None
    for key in ("Watts", "Wattage"):
        if key in value:
            watts = decode_number(value[key])
            if watts is not None:
                return watts
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


SYSTEM_POWER_DECODERS: Sequence[Tuple[str, Decoder]] = (
    ("SystemPower", decode_number),
    ("SystemPowerDrain", decode_number),
)

ADAPTER_POWER_DECODERS: Sequence[Tuple[str, Decoder]] = (
    ("AdapterPower", decode_number),
    ("Wattage", decode_number),
    ("AdapterDetails", decode_adapter_details),
)


def first_decoded(props: PropertyBag, decoders: Sequence[Tuple[str, Decoder]]) -> Optional[float]:
    """Return the first value any (key, decoder) attempt produces."""
    for key, decoder in decoders:
        if key not in props:
            continue
        value = decoder(props[key])
        if value is not None:
            return value
    return None


# ============================================================================
# Hardware Power Sources
# ============================================================================

class PowerSource(ABC):
    """A call returning the battery controller's named properties."""

    name = "base"

    @abstractmethod
    def read_properties(self) -> Optional[PropertyBag]:
        """Return the property bag, or None when no battery data is available."""


class IORegPowerSource(PowerSource):
    """Reads AppleSmartBattery properties through the `ioreg` tool."""

    name = "ioreg"
    COMMAND = ["ioreg", "-r", "-c", "AppleSmartBattery", "-a"]

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    @staticmethod
    def _fold_signed(value: Any) -> Any:
        # ioreg prints negative 64-bit registers as unsigned
        if isinstance(value, int) and not isinstance(value, bool) and value >= 2 ** 63:
            return value - 2 ** 64
        return value

    def read_properties(self) -> Optional[PropertyBag]:
        try:
            result = subprocess.run(self.COMMAND, capture_output=True, timeout=self.timeout, check=True)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"ioreg query failed: {e}")
            return None

        if not result.stdout.strip():
            return None

        try:
            data = plistlib.loads(result.stdout)
        except (plistlib.InvalidFileException, ValueError) as e:
            logger.warning(f"Could not parse ioreg output: {e}")
            return None

        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            return None

        return {key: self._fold_signed(value) for key, value in data.items()}


class SysfsPowerSource(PowerSource):
    """Reads /sys/class/power_supply and maps it onto AppleSmartBattery names."""

    name = "sysfs"

    def __init__(self, root: str = "/sys/class/power_supply"):
        self.root = Path(root)

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            return path.read_text().strip()
        except OSError:
            return None

    def _read_int(self, path: Path) -> Optional[int]:
        raw = self._read(path)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def _external_connected(self) -> bool:
        for supply in sorted(self.root.glob("*")):
            if self._read(supply / "type") == "Mains" and self._read(supply / "online") == "1":
                return True
        return False

    def read_properties(self) -> Optional[PropertyBag]:
        batteries = sorted(self.root.glob("BAT*"))
        if not batteries:
            return None
        battery = batteries[0]

        status = self._read(battery / "status") or ""
        voltage_uv = self._read_int(battery / "voltage_now")
        current_ua = self._read_int(battery / "current_now")
        power_uw = self._read_int(battery / "power_now")
        capacity = self._read_int(battery / "capacity")

        props: PropertyBag = {
            "IsCharging": status == "Charging",
            "ExternalConnected": self._external_connected(),
        }

        if voltage_uv is not None:
            props["Voltage"] = voltage_uv // 1000

        # Some controllers report power_now instead of current_now
        if current_ua is None and power_uw is not None and voltage_uv:
            current_ua = int(power_uw / voltage_uv * 1_000_000)

        if current_ua is not None:
            amperage_ma = abs(current_ua) // 1000
            props["Amperage"] = -amperage_ma if status == "Discharging" else amperage_ma

        if capacity is not None:
            props["CurrentCapacity"] = capacity
            props["MaxCapacity"] = 100

        return props


def detect_power_source(preference: str = "auto", timeout: float = 2.0) -> PowerSource:
    """Pick a power source for this platform (or the configured one)."""
    if preference == "ioreg" or (preference == "auto" and sys.platform == "darwin"):
        return IORegPowerSource(timeout=timeout)
    return SysfsPowerSource()


# ============================================================================
# Power Reader
# ============================================================================

class PowerReader:
    """Produces one TotalPowerSample per call; never raises."""

    def __init__(self, source: Optional[PowerSource] = None):
        self.source = source or detect_power_source()

    def sample(self) -> TotalPowerSample:
        timestamp = datetime.now(timezone.utc)

        try:
            props = self.source.read_properties()
        except Exception as e:
            logger.warning(f"Power source '{self.source.name}' failed: {e}")
            props = None

        if not props:
            return TotalPowerSample.unavailable(timestamp, UnavailableReason.NO_BATTERY_DATA)

        try:
            return self.resolve(timestamp, props)
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.warning(f"Could not decode power properties: {e}")
            return TotalPowerSample.unavailable(timestamp, UnavailableReason.NO_BATTERY_DATA)

    def resolve(self, timestamp: datetime, props: PropertyBag) -> TotalPowerSample:
        """Apply measured -> derived -> unavailable resolution to a property bag."""
        is_on_ac = bool(props.get("IsCharging")) or bool(props.get("ExternalConnected"))

        battery_percent = None
        current_capacity = _as_float(props.get("CurrentCapacity"))
        max_capacity = _as_float(props.get("MaxCapacity"))
        if current_capacity is not None and max_capacity and max_capacity > 0:
            battery_percent = min(100.0, max(0.0, current_capacity / max_capacity * 100.0))

        voltage_mv = _as_float(props.get("Voltage"))
        amperage_ma = _as_float(props.get("Amperage"))
        voltage = voltage_mv / 1000.0 if voltage_mv is not None else None
        current = abs(amperage_ma) / 1000.0 if amperage_ma is not None else None

        common = dict(
            is_on_ac=is_on_ac,
            battery_percent=battery_percent,
            battery_voltage_volts=voltage,
            battery_current_amperes=current,
        )

        system_watts = first_decoded(props, SYSTEM_POWER_DECODERS)
        if system_watts is not None and 0.0 <= system_watts <= MAX_VALID_WATTS:
            return TotalPowerSample(
                timestamp=timestamp,
                total_watts=system_watts,
                adapter_watts=first_decoded(props, ADAPTER_POWER_DECODERS),
                source=TotalPowerSource.MEASURED,
                **common
            )

        # Negative amperage means the battery is discharging
        if amperage_ma is not None and amperage_ma < 0 and voltage is not None:
            derived_watts = voltage * current
            if 0.0 <= derived_watts <= MAX_VALID_WATTS:
                return TotalPowerSample(
                    timestamp=timestamp,
                    total_watts=derived_watts,
                    source=TotalPowerSource.DERIVED,
                    **common
                )
            return TotalPowerSample.unavailable(timestamp, UnavailableReason.OUT_OF_RANGE, **common)

        if voltage is None and amperage_ma is None and battery_percent is None and system_watts is None:
            reason = UnavailableReason.NO_BATTERY_DATA
        elif system_watts is not None:
            reason = UnavailableReason.OUT_OF_RANGE
        elif is_on_ac and battery_percent is not None and battery_percent >= FULLY_CHARGED_PERCENT:
            reason = UnavailableReason.AC_FULLY_CHARGED
        else:
            reason = UnavailableReason.NOT_DISCHARGING

        return TotalPowerSample.unavailable(timestamp, reason, **common)
