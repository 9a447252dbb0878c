"""
Usage Manager - Wires the sampling pipeline together.

The store is constructed once here and handed to the aggregator and to the
query API. The attribution engine publishes into a single-slot channel that
the aggregator consumes.
"""

from concurrent.futures import Future
from typing import List, Optional
import logging
import threading

from powerwatt.config import Settings, clamp_interval
from powerwatt.models.energy import EnergyCoefficients
from powerwatt.models.power import AppPowerSample, CombinedPowerSample
from powerwatt.models.usage import RetentionPeriod
from powerwatt.services.aggregator import MinuteBucketAggregator
from powerwatt.services.attribution import PowerAttributionEngine, SampleChannel
from powerwatt.services.coefficients import CoefficientProvider
from powerwatt.services.collectors.power import PowerReader, PowerSource, detect_power_source
from powerwatt.services.collectors.process import ProcessEnumerator, ProcessInventory
from powerwatt.storage.usage_store import UsageStore

logger = logging.getLogger(__name__)


class UsageManager:
    """Lifecycle and runtime settings for the usage-tracking pipeline."""

    def __init__(
        self,
        settings: Settings,
        power_source: Optional[PowerSource] = None,
        inventory: Optional[ProcessInventory] = None,
        store: Optional[UsageStore] = None
    ):
        self.settings = settings

        self.store = store or UsageStore(settings.database_file, retention=settings.RETENTION_PERIOD)
        self.coefficients = CoefficientProvider(
            directory=settings.COEFFICIENTS_DIR,
            revalidate_seconds=settings.COEFFICIENTS_REVALIDATE_SECONDS,
        )
        if settings.custom_coefficients is not None:
            self.coefficients.set_custom(settings.custom_coefficients)

        self.reader = PowerReader(
            power_source or detect_power_source(settings.POWER_SOURCE, timeout=settings.SENSOR_TIMEOUT_SECONDS)
        )
        self.enumerator = ProcessEnumerator(
            inventory=inventory,
            include_background=settings.INCLUDE_BACKGROUND_PROCESSES,
            min_activity_threshold=settings.MIN_ACTIVITY_THRESHOLD_SECONDS,
        )
        self.engine = PowerAttributionEngine(
            self.reader,
            self.enumerator,
            self.coefficients,
            interval_seconds=settings.SAMPLING_INTERVAL_SECONDS,
            sensor_timeout=settings.SENSOR_TIMEOUT_SECONDS,
        )
        self.aggregator = MinuteBucketAggregator(self.store, interval_seconds=settings.SAMPLING_INTERVAL_SECONDS)

        self.channel = SampleChannel()
        self.engine.subscribe(self.channel)

        self._cleanup_stop: Optional[threading.Event] = None
        self._cleanup_thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        with self._lock:
            if self._running:
                return
            self.aggregator.consume(self.channel)
            self.engine.start()
            self._start_cleanup_scheduler()
            self._running = True
            logger.info("Usage tracking started")

    def stop(self):
        """Flush the open minute and stop sampling. Safe to call repeatedly."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self.engine.stop()
            self.aggregator.stop_consuming()
            future = self.aggregator.force_flush()
            if future is not None:
                future.result()
            self.aggregator.reset()
            self._stop_cleanup_scheduler()
            logger.info("Usage tracking stopped")

    def handle_termination(self):
        """Process is exiting: persist what we have and release resources."""
        self.stop()
        self.engine.close()
        self.store.close()

    # ------------------------------------------------------------------
    # Runtime settings
    # ------------------------------------------------------------------

    def set_sampling_interval(self, seconds: float) -> float:
        interval = clamp_interval(seconds)
        self.aggregator.set_interval(interval)
        self.engine.set_interval(interval)
        return interval

    def set_include_background_processes(self, include: bool):
        self.enumerator.include_background = include

    def set_retention_period(self, period: RetentionPeriod) -> "Future[int]":
        return self.store.set_retention(period)

    def set_custom_coefficients(self, coefficients: Optional[EnergyCoefficients]) -> bool:
        return self.coefficients.set_custom(coefficients)

    def force_flush(self) -> Optional[Future]:
        return self.aggregator.force_flush()

    # ------------------------------------------------------------------
    # Recurring cleanup
    # ------------------------------------------------------------------

    def _start_cleanup_scheduler(self):
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._cleanup_loop, args=(stop_event,),
            name="powerwatt-cleanup", daemon=True
        )
        self._cleanup_stop = stop_event
        self._cleanup_thread = thread
        thread.start()

    def _cleanup_loop(self, stop_event: threading.Event):
        while not stop_event.wait(self.settings.CLEANUP_INTERVAL_SECONDS):
            self.store.cleanup()

    def _stop_cleanup_scheduler(self):
        if self._cleanup_stop is not None:
            self._cleanup_stop.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=1.0)
        self._cleanup_stop = None
        self._cleanup_thread = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def latest_sample(self) -> Optional[CombinedPowerSample]:
        return self.engine.latest

    def top_apps(self, n: int = 5) -> List[AppPowerSample]:
        sample = self.latest_sample
        if sample is None:
            return []
        return sample.top_apps(n)
