"""
Coefficient Provider - Energy impact weights with cached hot-reload.

Weights are read from structured documents (plist or JSON) in a directory,
typically /usr/share/pmenergy. Parsing tolerates several historical key names
per weight and both int and float values. A document is used only if it
contributes at least one recognized weight and the merged result is valid;
otherwise the built-in defaults apply.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
import json
import logging
import plistlib
import threading
import time
from xml.parsers.expat import ExpatError

from powerwatt.models.energy import DEFAULT_COEFFICIENTS, EnergyCoefficients

logger = logging.getLogger(__name__)

PREFERRED_FILES = ("coefficients.plist", "energymodel.plist", "weights.plist")
DOCUMENT_SUFFIXES = (".plist", ".json")

KEY_ALIASES: Dict[str, Sequence[str]] = {
    "cpu_weight": ("cpu_weight", "cpuWeight", "cpu", "CPU"),
    "wakeups_weight": ("wakeups_weight", "wakeupsWeight", "wakeups", "interrupt_wakeups"),
    "disk_weight": ("disk_weight", "diskWeight", "disk", "diskio"),
    "network_weight": ("network_weight", "networkWeight", "network", "net"),
}


def extract_weight(document: Dict[str, Any], keys: Sequence[str]) -> Optional[float]:
    """First numeric value found under any of `keys`; booleans are not numbers."""
    for key in keys:
        value = document.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
    return None


def parse_coefficients(document: Any) -> Optional[EnergyCoefficients]:
    """
    Build coefficients from one parsed document.

    Args:
        document: Parsed plist/JSON content

    Returns:
        EnergyCoefficients when at least one weight was found and the merged
        set is valid, otherwise None
    """
    if not isinstance(document, dict):
        return None

    found: Dict[str, float] = {}
    for field, aliases in KEY_ALIASES.items():
        weight = extract_weight(document, aliases)
        if weight is not None:
            found[field] = weight

    if not found:
        return None

    try:
        coeffs = EnergyCoefficients(**{**DEFAULT_COEFFICIENTS.model_dump(), **found})
    except ValueError:
        # negative weights
        return None

    return coeffs if coeffs.is_valid else None


class CoefficientProvider:
    """Caches the active coefficients and revalidates them against the source."""

    def __init__(
        self,
        directory: str = "/usr/share/pmenergy",
        revalidate_seconds: float = 3600,
        clock: Callable[[], float] = time.time
    ):
        self.directory = Path(directory)
        self.revalidate_seconds = revalidate_seconds
        self._clock = clock
        self._lock = threading.Lock()

        self._cached: Optional[EnergyCoefficients] = None
        self._loaded_at: Optional[float] = None
        self._source_mtime: Optional[float] = None
        self._loaded_from_system = False
        self._custom: Optional[EnergyCoefficients] = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def loaded_from_system(self) -> bool:
        return self._loaded_from_system

    @property
    def custom(self) -> Optional[EnergyCoefficients]:
        return self._custom

    def set_custom(self, coefficients: Optional[EnergyCoefficients]) -> bool:
        """Override loaded coefficients; None clears the override. Invalid sets are ignored."""
        if coefficients is not None and not coefficients.is_valid:
            logger.warning(f"Ignoring invalid custom coefficients: {coefficients}")
            return False
        with self._lock:
            self._custom = coefficients
        return True

    def load(self) -> EnergyCoefficients:
        """Return the active coefficients, re-reading the source only when it is stale and changed."""
        with self._lock:
            now = self._clock()

            if self._cached is None:
                self._read_into_cache(now, keep_previous=False)
                return self._active()

            if now - self._loaded_at < self.revalidate_seconds:
                return self._active()

            mtime = self._latest_mtime()
            advanced = mtime is not None and (self._source_mtime is None or mtime > self._source_mtime)
            if advanced:
                logger.info("Coefficient documents changed, reloading")
                self._read_into_cache(now, keep_previous=True)
            else:
                self._loaded_at = now

            return self._active()

    def force_reload(self) -> EnergyCoefficients:
        """Re-read the source regardless of cache age."""
        with self._lock:
            self._read_into_cache(self._clock(), keep_previous=False)
            return self._active()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _active(self) -> EnergyCoefficients:
        return self._custom or self._cached or DEFAULT_COEFFICIENTS

    def _read_into_cache(self, now: float, keep_previous: bool):
        coeffs = self._read_documents()
        self._loaded_at = now
        self._source_mtime = self._latest_mtime()

        if coeffs is not None:
            self._cached = coeffs
            self._loaded_from_system = True
            logger.info(f"Loaded energy coefficients from {self.directory}: {coeffs}")
        elif not keep_previous or self._cached is None:
            self._cached = DEFAULT_COEFFICIENTS
            self._loaded_from_system = False
            logger.debug("Using default energy coefficients")

    def _candidate_files(self) -> List[Path]:
        if not self.directory.is_dir():
            return []

        preferred = [self.directory / name for name in PREFERRED_FILES]
        try:
            others = sorted(
                path for path in self.directory.iterdir()
                if path.suffix in DOCUMENT_SUFFIXES and path.name not in PREFERRED_FILES
            )
        except OSError:
            others = []
        return [path for path in preferred if path.is_file()] + [path for path in others if path.is_file()]

    def _latest_mtime(self) -> Optional[float]:
        mtimes = []
        for path in self._candidate_files():
            try:
                mtimes.append(path.stat().st_mtime)
            except OSError:
                continue
        return max(mtimes) if mtimes else None

    def _read_documents(self) -> Optional[EnergyCoefficients]:
        for path in self._candidate_files():
            try:
                with open(path, "rb") as f:
                    if path.suffix == ".json":
                        document = json.load(f)
                    else:
                        document = plistlib.load(f)
            except (OSError, ValueError, ExpatError, plistlib.InvalidFileException) as e:
                logger.warning(f"Skipping coefficient document {path}: {e}")
                continue

            coeffs = parse_coefficients(document)
            if coeffs is not None:
                return coeffs
        return None
