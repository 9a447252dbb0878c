"""
Power Attribution Engine - The periodic sampling loop.

Each tick:
- polls the Power Reader and the Process Enumerator (bounded by a timeout)
- scores processes with the Energy Impact Engine (or emits an empty impact)
- splits total watts across apps in proportion to their scores
- publishes one CombinedPowerSample to every subscriber

A tick never raises. Missing data shows up as absent fields in the sample.
"""

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
import logging
import queue
import threading
import time

from powerwatt.config import clamp_interval
from powerwatt.middleware.metrics import record_power_sample, record_tick
from powerwatt.models.energy import EnergyImpactSample
from powerwatt.models.power import (
    AppPowerSample,
    CombinedPowerSample,
    TotalPowerSample,
    UnavailableReason,
)
from powerwatt.models.process import ProcessMetricsSample
from powerwatt.services.coefficients import CoefficientProvider
from powerwatt.services.collectors.power import PowerReader
from powerwatt.services.collectors.process import ProcessEnumerator
from powerwatt.services.energy_impact import EnergyImpactEngine

logger = logging.getLogger(__name__)

Subscriber = Callable[[CombinedPowerSample], None]


# ============================================================================
# Sample Channel
# ============================================================================

class SampleChannel:
    """
    Single-slot hand-off between the sampling loop and a consumer.

    Publishing into a full channel replaces the pending sample with the newer one.
    """

    def __init__(self):
        self._queue: "queue.Queue[CombinedPowerSample]" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self.dropped = 0

    def publish(self, sample: CombinedPowerSample):
        with self._lock:
            try:
                self._queue.put_nowait(sample)
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass
                self._queue.put_nowait(sample)

    __call__ = publish

    def get(self, timeout: Optional[float] = None) -> Optional[CombinedPowerSample]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()


# ============================================================================
# Attribution
# ============================================================================

def attribute(total: TotalPowerSample, impact: EnergyImpactSample, timestamp: datetime) -> List[AppPowerSample]:
    """
    Split total watts across apps in proportion to their impact scores.

    Args:
        total: Total power reading for the tick
        impact: Raw (un-normalized) per-app scores
        timestamp: Timestamp stamped onto each app sample

    Returns:
        AppPowerSample list sorted by relative score, highest first. Watts are
        None when total watts are unknown or every score is zero.
    """
    score_sum = impact.total_score
    can_attribute = total.has_valid_watts and score_sum > 0

    apps = []
    for bundle_id, score in impact.per_app_scores.items():
        relative = min(1.0, max(0.0, score / score_sum)) if score_sum > 0 else 0.0
        watts = total.total_watts * (score / score_sum) if can_attribute else None
        apps.append(AppPowerSample(
            timestamp=timestamp,
            bundle_id=bundle_id,
            app_name=impact.app_name(bundle_id),
            estimated_watts=max(0.0, watts) if watts is not None else None,
            relative_score=relative,
        ))

    apps.sort(key=lambda app: app.relative_score, reverse=True)
    return apps


class PowerAttributionEngine:
    """Owns the sampling loop and publishes combined samples."""

    def __init__(
        self,
        reader: PowerReader,
        enumerator: ProcessEnumerator,
        coefficients: CoefficientProvider,
        impact_engine: Optional[EnergyImpactEngine] = None,
        interval_seconds: float = 5.0,
        sensor_timeout: float = 2.0
    ):
        self.reader = reader
        self.enumerator = enumerator
        self.coefficients = coefficients
        self.impact_engine = impact_engine or EnergyImpactEngine()
        self.sensor_timeout = sensor_timeout
        self._interval = clamp_interval(interval_seconds)

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="powerwatt-sensor")
        self._pending: Dict[str, Future] = {}
        self._subscribers: List[Subscriber] = []

        self._lifecycle_lock = threading.RLock()
        self._tick_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

        self.latest: Optional[CombinedPowerSample] = None

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, subscriber: Subscriber):
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber):
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def _publish(self, sample: CombinedPowerSample):
        for subscriber in list(self._subscribers):
            try:
                subscriber(sample)
            except Exception as e:
                logger.error(f"Subscriber {subscriber!r} failed: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start sampling. The first poll only establishes the process baseline."""
        with self._lifecycle_lock:
            if self.is_running:
                return
            self.enumerator.reset()
            self._collect(self._submit("processes", self.enumerator.sample), time.monotonic() + self.sensor_timeout)
            self._start_loop()
            logger.info(f"Power attribution started (interval {self._interval}s)")

    def stop(self):
        """Stop sampling. Safe to call repeatedly."""
        with self._lifecycle_lock:
            if self._thread is None:
                return
            self._stop_loop()
            logger.info("Power attribution stopped")

    def set_interval(self, seconds: float):
        """Change the poll interval, restarting the loop if it is running."""
        with self._lifecycle_lock:
            self._interval = clamp_interval(seconds)
            if self._thread is not None:
                self._stop_loop()
                self._start_loop()
            logger.info(f"Sampling interval set to {self._interval}s")

    def close(self):
        self.stop()
        self._executor.shutdown(wait=False)

    def _start_loop(self):
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run, args=(stop_event, self._interval),
            name="powerwatt-sampler", daemon=True
        )
        self._stop_event = stop_event
        self._thread = thread
        thread.start()

    def _stop_loop(self):
        thread, stop_event = self._thread, self._stop_event
        self._thread = None
        self._stop_event = None
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._interval + self.sensor_timeout * 2)

    def _run(self, stop_event: threading.Event, interval: float):
        while not stop_event.wait(interval):
            self.tick()

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _submit(self, name: str, fn: Callable) -> Optional[Future]:
        pending = self._pending.get(name)
        if pending is not None and not pending.done():
            # A stalled OS call from an earlier tick is still running
            logger.warning(f"{name} query from a previous tick still running, skipping")
            return None
        future = self._executor.submit(fn)
        self._pending[name] = future
        return future

    def _collect(self, future: Optional[Future], deadline: float):
        if future is None:
            return None
        try:
            return future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            logger.warning("Sensor query timed out, treating as unavailable")
        except Exception as e:
            logger.warning(f"Sensor query failed: {e}")
        return None

    def combine(
        self,
        timestamp: datetime,
        total: TotalPowerSample,
        processes: List[ProcessMetricsSample]
    ) -> CombinedPowerSample:
        if processes:
            impact = self.impact_engine.compute(processes, self.coefficients.load(), timestamp)
        else:
            impact = EnergyImpactSample.empty(timestamp)

        return CombinedPowerSample(
            timestamp=timestamp,
            total_power=total,
            app_power=attribute(total, impact, timestamp),
            energy_impact=impact,
        )

    def tick(self) -> CombinedPowerSample:
        """Run one sampling tick and publish its result."""
        with self._tick_lock:
            started = time.monotonic()
            timestamp = datetime.now(timezone.utc)
            outcome = "ok"
            total: Optional[TotalPowerSample] = None

            try:
                power_future = self._submit("power", self.reader.sample)
                process_future = self._submit("processes", self.enumerator.sample)
                deadline = started + self.sensor_timeout

                total = self._collect(power_future, deadline)
                if total is None:
                    total = TotalPowerSample.unavailable(timestamp, UnavailableReason.SENSOR_TIMEOUT)
                    outcome = "degraded"
                processes = self._collect(process_future, deadline) or []

                sample = self.combine(timestamp, total, processes)
            except Exception as e:
                logger.error(f"Sampling tick failed: {e}")
                outcome = "error"
                # Keep whatever total reading already arrived
                sample = CombinedPowerSample(
                    timestamp=timestamp,
                    total_power=total or TotalPowerSample.unavailable(timestamp, UnavailableReason.SENSOR_TIMEOUT),
                    app_power=[],
                    energy_impact=EnergyImpactSample.empty(timestamp),
                )

            self.latest = sample
            record_power_sample(
                sample.total_power.source.value,
                sample.total_power.total_watts if sample.has_valid_total_watts else None
            )
            record_tick(time.monotonic() - started, outcome)
            logger.debug(
                f"Tick: total={sample.total_power.total_watts} ({sample.total_power.source.value}), "
                f"apps={len(sample.app_power)}"
            )

        self._publish(sample)
        return sample
