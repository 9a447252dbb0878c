"""
Minute Bucket Aggregator - Folds combined samples into per-minute buckets.

State per current minute: idle -> accumulating -> flush on boundary crossing
-> accumulating (next minute). Folding and flushing share one lock, so a
shutdown flush can never interleave with a sample from the sampling loop.
"""

from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging
import threading

from powerwatt.config import clamp_interval
from powerwatt.middleware.metrics import record_minute_flush
from powerwatt.models.power import CombinedPowerSample
from powerwatt.models.usage import AppMinuteBucket, MinuteBucket, floor_to_minute
from powerwatt.services.attribution import SampleChannel
from powerwatt.storage.usage_store import UsageStore

logger = logging.getLogger(__name__)


def _energy_mwh(watts: float, interval_seconds: float) -> float:
    return watts * (interval_seconds / 3600.0) * 1000.0


@dataclass
class _RunningMean:
    value: Optional[float] = None
    count: int = 0

    def add(self, x: float):
        if self.value is None:
            self.value = x
        else:
            self.value = (self.value * self.count + x) / (self.count + 1)
        self.count += 1


@dataclass
class _AppAccumulator:
    app_name: Optional[str] = None
    mwh: float = 0.0
    watts: _RunningMean = field(default_factory=_RunningMean)
    relative_impact_sum: float = 0.0


@dataclass
class _MinuteAccumulator:
    total_mwh: float = 0.0
    watts: _RunningMean = field(default_factory=_RunningMean)
    is_on_ac: bool = False
    battery_percent: Optional[float] = None
    samples: int = 0
    apps: Dict[str, _AppAccumulator] = field(default_factory=dict)


class MinuteBucketAggregator:
    """Owns the in-memory current-minute accumulators."""

    def __init__(self, store: UsageStore, interval_seconds: float = 5.0):
        self.store = store
        self._interval = clamp_interval(interval_seconds)
        self._lock = threading.Lock()
        self._current_minute: Optional[int] = None
        self._acc = _MinuteAccumulator()

        self._consumer: Optional[threading.Thread] = None
        self._consumer_stop: Optional[threading.Event] = None
        self._channel: Optional[SampleChannel] = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    def set_interval(self, seconds: float):
        with self._lock:
            self._interval = clamp_interval(seconds)

    @property
    def current_minute(self) -> Optional[int]:
        return self._current_minute

    # ------------------------------------------------------------------
    # Folding
    # ------------------------------------------------------------------

    def ingest(self, sample: CombinedPowerSample) -> Optional[Future]:
        """
        Fold one combined sample, flushing the open minute first if the sample
        belongs to a later minute.

        Returns:
            The store Future of a boundary flush, if one happened
        """
        flushed = None
        try:
            minute = floor_to_minute(sample.timestamp)
            with self._lock:
                if self._current_minute is not None and minute != self._current_minute:
                    flushed = self._flush_locked("boundary")
                    self._acc = _MinuteAccumulator()
                self._current_minute = minute
                self._fold_locked(sample)
        except Exception as e:
            logger.error(f"Could not aggregate sample at {sample.timestamp}: {e}")
        return flushed

    __call__ = ingest

    def _fold_locked(self, sample: CombinedPowerSample):
        acc = self._acc
        total = sample.total_power
        interval = self._interval

        if total.has_valid_watts:
            acc.total_mwh += _energy_mwh(total.total_watts, interval)
            acc.watts.add(total.total_watts)
        acc.is_on_ac = total.is_on_ac
        if total.battery_percent is not None:
            acc.battery_percent = total.battery_percent
        acc.samples += 1

        for app in sample.app_power:
            app_acc = acc.apps.setdefault(app.bundle_id, _AppAccumulator())
            if app_acc.app_name is None:
                app_acc.app_name = app.app_name
            app_mwh = app.energy_mwh(interval)
            if app_mwh is not None:
                app_acc.mwh += app_mwh
                app_acc.watts.add(app.estimated_watts)
            app_acc.relative_impact_sum += app.relative_score

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def snapshot(self) -> Optional[Tuple[MinuteBucket, List[AppMinuteBucket]]]:
        """Copies of the open minute's buckets, or None when idle."""
        with self._lock:
            return self._buckets_locked()

    def _buckets_locked(self) -> Optional[Tuple[MinuteBucket, List[AppMinuteBucket]]]:
        if self._current_minute is None or self._acc.samples == 0:
            return None

        acc = self._acc
        bucket = MinuteBucket(
            ts_minute=self._current_minute,
            total_mwh=acc.total_mwh,
            total_watts_avg=acc.watts.value,
            is_on_ac=acc.is_on_ac,
            battery_percent=acc.battery_percent,
        )
        app_buckets = [
            AppMinuteBucket(
                ts_minute=self._current_minute,
                bundle_id=bundle_id,
                app_name=app.app_name,
                mwh=app.mwh,
                watts_avg=app.watts.value,
                relative_impact_sum=app.relative_impact_sum,
            )
            for bundle_id, app in acc.apps.items()
        ]
        return bucket, app_buckets

    def _flush_locked(self, reason: str) -> Optional[Future]:
        buckets = self._buckets_locked()
        if buckets is None:
            return None

        bucket, app_buckets = buckets
        logger.debug(
            f"Flushing minute {bucket.ts_minute} ({reason}): {bucket.total_mwh:.3f} mWh, {len(app_buckets)} apps"
        )
        record_minute_flush(reason)
        return self.store.upsert_minute(bucket, app_buckets)

    def force_flush(self) -> Optional[Future]:
        """
        Persist the open minute now, possibly partial.

        Accumulators are cleared but the minute stays open, so later samples in
        the same minute merge into the stored row without being counted twice.
        """
        with self._lock:
            future = self._flush_locked("force")
            if future is not None:
                self._acc = _MinuteAccumulator()
            return future

    def reset(self):
        """Drop unflushed state and go idle."""
        with self._lock:
            self._current_minute = None
            self._acc = _MinuteAccumulator()

    # ------------------------------------------------------------------
    # Channel consumer
    # ------------------------------------------------------------------

    def consume(self, channel: SampleChannel):
        """Start a thread that folds every sample published into `channel`."""
        if self._consumer is not None and self._consumer.is_alive():
            return
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._consume_loop, args=(channel, stop_event),
            name="powerwatt-aggregator", daemon=True
        )
        self._channel = channel
        self._consumer_stop = stop_event
        self._consumer = thread
        thread.start()

    def _consume_loop(self, channel: SampleChannel, stop_event: threading.Event):
        while not stop_event.is_set():
            sample = channel.get(timeout=0.25)
            if sample is not None:
                self.ingest(sample)

    def stop_consuming(self):
        """Stop the consumer thread, folding any sample still waiting in the channel."""
        thread, stop_event, channel = self._consumer, self._consumer_stop, self._channel
        self._consumer = self._consumer_stop = self._channel = None
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        if channel is not None:
            sample = channel.get(timeout=0)
            if sample is not None:
                self.ingest(sample)
