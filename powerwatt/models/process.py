"""
Process Metrics Models - Raw per-process counters and per-tick deltas.
"""

from typing import Optional
from dataclasses import dataclass
from datetime import datetime
from pydantic import BaseModel, Field

NANOSECONDS_PER_SECOND = 1_000_000_000


@dataclass(frozen=True)
class RunningAppInfo:
    """A running process as reported by the process inventory."""
    pid: int
    bundle_id: Optional[str]
    name: str
    is_app: bool


@dataclass(frozen=True)
class ProcessResourceUsage:
    """Absolute (cumulative) resource counters for one process."""
    pid: int
    user_time_ns: int
    system_time_ns: int
    wakeups: int
    disk_bytes_read: int
    disk_bytes_written: int
    network_bytes_in: Optional[int] = None
    network_bytes_out: Optional[int] = None

    @property
    def total_cpu_time_seconds(self) -> float:
        return (self.user_time_ns + self.system_time_ns) / NANOSECONDS_PER_SECOND


class ProcessMetricsSample(BaseModel):
    """
    Resource usage of one process since the previous poll.

    All deltas are clamped to >= 0 so counter resets and pid reuse never
    produce negative activity.
    """
    timestamp: datetime
    pid: int
    bundle_id: Optional[str] = None
    app_name: Optional[str] = None
    cpu_time_delta_seconds: float = Field(0.0, ge=0)
    wakeups_delta: int = Field(0, ge=0)
    disk_read_bytes_delta: int = Field(0, ge=0)
    disk_write_bytes_delta: int = Field(0, ge=0)
    net_in_bytes_delta: Optional[int] = Field(None, ge=0)
    net_out_bytes_delta: Optional[int] = Field(None, ge=0)
    is_app: bool = True

    @property
    def group_key(self) -> str:
        """Identifier used to group helper processes under one application."""
        return self.bundle_id or f"unknown.{self.pid}"

    @property
    def total_disk_bytes(self) -> int:
        return self.disk_read_bytes_delta + self.disk_write_bytes_delta

    @property
    def total_network_bytes(self) -> int:
        return (self.net_in_bytes_delta or 0) + (self.net_out_bytes_delta or 0)
