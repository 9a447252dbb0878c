"""
Process Enumerator - Per-process resource deltas between polls.

The enumerator keeps a baseline of absolute counters per pid. The first poll
after a (re)start only records the baseline; later polls emit deltas.

Data source: psutil
- CPU user/system time
- Voluntary context switches (wakeups proxy)
- Disk read/write bytes where the platform exposes them
- Network counters are not available per process
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
import getpass
import logging
import os
import plistlib
import sys
import threading
from xml.parsers.expat import ExpatError

import psutil

from powerwatt.models.process import (
    NANOSECONDS_PER_SECOND,
    ProcessMetricsSample,
    ProcessResourceUsage,
    RunningAppInfo,
)

logger = logging.getLogger(__name__)

BACKGROUND_SKIP_PREFIXES = ("kernel", "launchd", "syslog", "notifyd", "mds", "distnoted")


# ============================================================================
# Process Inventory
# ============================================================================

class ProcessInventory(ABC):
    """Source of running processes and their cumulative counters."""

    @abstractmethod
    def running_apps(self) -> List[RunningAppInfo]:
        """User-facing applications (and their helper processes)."""

    @abstractmethod
    def background_processes(self, exclude_pids: Set[int]) -> List[RunningAppInfo]:
        """Every other OS process, minus `exclude_pids`."""

    @abstractmethod
    def resource_usage(self, pid: int) -> Optional[ProcessResourceUsage]:
        """Absolute counters for `pid`, or None if it vanished or denied access."""


class PsutilProcessInventory(ProcessInventory):
    """
    Process inventory built on psutil.

    On macOS an application is any process whose executable lives inside a
    `.app` bundle; the outermost bundle's Info.plist names it, so helpers
    group under their parent. Elsewhere, processes owned by the current user
    count as applications and are identified by executable name.
    """

    def __init__(self):
        self._own_pid = os.getpid()
        self._bundle_cache: Dict[str, Optional[Tuple[str, str]]] = {}
        self._is_macos = sys.platform == "darwin"
        try:
            self._username = getpass.getuser()
        except (KeyError, OSError):
            self._username = None

    @staticmethod
    def _bundle_path(exe: str) -> Optional[Path]:
        parts = Path(exe).parts
        for index, part in enumerate(parts):
            if part.endswith(".app"):
                return Path(*parts[:index + 1])
        return None

    def _bundle_info(self, bundle: Path) -> Optional[Tuple[str, str]]:
        key = str(bundle)
        if key in self._bundle_cache:
            return self._bundle_cache[key]

        info = None
        try:
            with open(bundle / "Contents" / "Info.plist", "rb") as f:
                plist = plistlib.load(f)
            bundle_id = plist.get("CFBundleIdentifier") if isinstance(plist, dict) else None
            if bundle_id:
                name = plist.get("CFBundleDisplayName") or plist.get("CFBundleName") or bundle.stem
                info = (str(bundle_id), str(name))
        except (OSError, plistlib.InvalidFileException, ValueError, ExpatError) as e:
            logger.debug(f"No bundle info for {bundle}: {e}")

        self._bundle_cache[key] = info
        return info

    def _classify(self, proc_info: dict) -> Optional[RunningAppInfo]:
        pid = proc_info.get("pid")
        name = proc_info.get("name") or ""
        if pid is None or pid <= 0 or pid == self._own_pid:
            return None

        if self._is_macos:
            exe = proc_info.get("exe")
            bundle = self._bundle_path(exe) if exe else None
            if bundle is None:
                return None
            info = self._bundle_info(bundle)
            if info is None:
                return None
            return RunningAppInfo(pid=pid, bundle_id=info[0], name=info[1], is_app=True)

        if self._username is None or proc_info.get("username") != self._username or not name:
            return None
        return RunningAppInfo(pid=pid, bundle_id=name, name=name, is_app=True)

    def running_apps(self) -> List[RunningAppInfo]:
        apps = []
        for proc in psutil.process_iter(["pid", "name", "exe", "username"]):
            app = self._classify(proc.info)
            if app is not None:
                apps.append(app)
        return apps

    def background_processes(self, exclude_pids: Set[int]) -> List[RunningAppInfo]:
        processes = []
        for proc in psutil.process_iter(["pid", "name"]):
            pid = proc.info.get("pid")
            name = proc.info.get("name")
            if pid is None or pid <= 0 or pid in exclude_pids or pid == self._own_pid or not name:
                continue
            if name.lower().startswith(BACKGROUND_SKIP_PREFIXES):
                continue
            processes.append(RunningAppInfo(pid=pid, bundle_id=None, name=name, is_app=False))
        return processes

    def resource_usage(self, pid: int) -> Optional[ProcessResourceUsage]:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                cpu = proc.cpu_times()
                ctx = proc.num_ctx_switches()
                read_bytes = write_bytes = 0
                # io_counters is missing on macOS
                if hasattr(proc, "io_counters"):
                    try:
                        io = proc.io_counters()
                        read_bytes, write_bytes = io.read_bytes, io.write_bytes
                    except (psutil.AccessDenied, NotImplementedError):
                        pass
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

        return ProcessResourceUsage(
            pid=pid,
            user_time_ns=int(cpu.user * NANOSECONDS_PER_SECOND),
            system_time_ns=int(cpu.system * NANOSECONDS_PER_SECOND),
            wakeups=ctx.voluntary,
            disk_bytes_read=read_bytes,
            disk_bytes_written=write_bytes,
        )


# ============================================================================
# Process Enumerator
# ============================================================================

def _clamped(current: int, previous: int) -> int:
    return max(0, current - previous)


def _clamped_optional(current: Optional[int], previous: Optional[int]) -> Optional[int]:
    if current is None or previous is None:
        return None
    return max(0, current - previous)


class ProcessEnumerator:
    """Turns cumulative per-process counters into per-poll deltas."""

    def __init__(
        self,
        inventory: Optional[ProcessInventory] = None,
        include_background: bool = False,
        min_activity_threshold: float = 0.0001
    ):
        self.inventory = inventory or PsutilProcessInventory()
        self.include_background = include_background
        self.min_activity_threshold = min_activity_threshold
        self._previous: Dict[int, ProcessResourceUsage] = {}
        self._has_baseline = False
        self._generation = 0
        self._lock = threading.Lock()

    def reset(self):
        """
        Drop the baseline so the next sample() only re-establishes it.

        Never waits on an in-flight sample(); a poll started before the reset
        discards its result instead of committing it.
        """
        with self._lock:
            self._previous = {}
            self._has_baseline = False
            self._generation += 1

    def list_processes(self) -> List[RunningAppInfo]:
        apps = self.inventory.running_apps()
        if self.include_background:
            seen = {app.pid for app in apps}
            apps = apps + [p for p in self.inventory.background_processes(seen) if p.pid not in seen]
        return apps

    def sample(self) -> List[ProcessMetricsSample]:
        """
        Poll every live process and emit activity since the previous poll.

        Returns:
            Samples for processes with a baseline and some activity. Empty on
            the first call after a (re)start, and for a poll overtaken by reset().
        """
        timestamp = datetime.now(timezone.utc)

        # The lock only guards the baseline swap, never the OS queries
        with self._lock:
            generation = self._generation
            baseline = self._previous if self._has_baseline else {}

        try:
            processes = self.list_processes()
        except Exception as e:
            logger.warning(f"Process enumeration failed: {e}")
            return []

        samples: List[ProcessMetricsSample] = []
        current: Dict[int, ProcessResourceUsage] = {}

        for info in processes:
            usage = self.inventory.resource_usage(info.pid)
            if usage is None:
                continue
            current[info.pid] = usage

            previous = baseline.get(info.pid)
            if previous is None:
                continue

            sample = self._delta_sample(timestamp, info, usage, previous)
            if sample is not None:
                samples.append(sample)

        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding process sample started before a reset")
                return []
            # Baseline is replaced wholesale, pruning pids that disappeared
            self._previous = current
            self._has_baseline = True

        logger.debug(f"Process sample: {len(samples)} active of {len(current)} tracked")
        return samples

    def _delta_sample(
        self,
        timestamp: datetime,
        info: RunningAppInfo,
        usage: ProcessResourceUsage,
        previous: ProcessResourceUsage
    ) -> Optional[ProcessMetricsSample]:
        cpu_delta = max(0.0, usage.total_cpu_time_seconds - previous.total_cpu_time_seconds)
        wakeups_delta = _clamped(usage.wakeups, previous.wakeups)
        read_delta = _clamped(usage.disk_bytes_read, previous.disk_bytes_read)
        write_delta = _clamped(usage.disk_bytes_written, previous.disk_bytes_written)
        net_in_delta = _clamped_optional(usage.network_bytes_in, previous.network_bytes_in)
        net_out_delta = _clamped_optional(usage.network_bytes_out, previous.network_bytes_out)

        idle = (
            cpu_delta < self.min_activity_threshold
            and wakeups_delta == 0
            and read_delta == 0
            and write_delta == 0
            and not net_in_delta
            and not net_out_delta
        )
        if idle:
            return None

        return ProcessMetricsSample(
            timestamp=timestamp,
            pid=info.pid,
            bundle_id=info.bundle_id,
            app_name=info.name,
            cpu_time_delta_seconds=cpu_delta,
            wakeups_delta=wakeups_delta,
            disk_read_bytes_delta=read_delta,
            disk_write_bytes_delta=write_delta,
            net_in_bytes_delta=net_in_delta,
            net_out_bytes_delta=net_out_delta,
            is_app=info.is_app,
        )
