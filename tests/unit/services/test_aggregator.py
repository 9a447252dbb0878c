"""
Unit tests for the Minute Bucket Aggregator

Tests:
- Energy integration and running averages
- Flush on minute boundary
- Forced flush without double counting
- Relative impact accumulates even without watts
- Channel consumption
"""

import time
from unittest.mock import Mock

import pytest

from powerwatt.services.aggregator import MinuteBucketAggregator
from powerwatt.services.attribution import SampleChannel

# Start of a minute
BASE = 1_700_000_040
WINDOW = (BASE - 3600, BASE + 3600)


def energy_mwh(watts, interval=5.0):
    return watts * interval / 3600.0 * 1000.0


@pytest.fixture
def aggregator(store):
    return MinuteBucketAggregator(store, interval_seconds=5.0)


class TestFolding:
    """Test in-memory accumulation"""

    def test_idle_snapshot_is_none(self, aggregator):
        assert aggregator.snapshot() is None
        assert aggregator.force_flush() is None

    def test_energy_and_average(self, aggregator, make_sample):
        aggregator.ingest(make_sample(BASE, 12.0, apps=[("com.example.editor", 9.0, 0.75)]))
        aggregator.ingest(make_sample(BASE + 5, 18.0, apps=[("com.example.editor", 12.0, 0.5)]))

        bucket, apps = aggregator.snapshot()
        assert bucket.ts_minute == BASE
        assert bucket.total_mwh == pytest.approx(energy_mwh(12.0) + energy_mwh(18.0))
        assert bucket.total_watts_avg == pytest.approx(15.0)

        assert len(apps) == 1
        assert apps[0].mwh == pytest.approx(energy_mwh(9.0) + energy_mwh(12.0))
        assert apps[0].watts_avg == pytest.approx(10.5)
        assert apps[0].relative_impact_sum == pytest.approx(1.25)
        assert apps[0].app_name == "Editor"

    def test_relative_impact_without_watts(self, aggregator, make_sample):
        aggregator.ingest(make_sample(BASE, None, apps=[("com.example.editor", None, 0.6)]))
        aggregator.ingest(make_sample(BASE + 5, None, apps=[("com.example.editor", None, 0.4)]))

        bucket, apps = aggregator.snapshot()
        assert bucket.total_mwh == 0.0
        assert bucket.total_watts_avg is None
        assert apps[0].mwh == 0.0
        assert apps[0].watts_avg is None
        assert apps[0].relative_impact_sum == pytest.approx(1.0)

    def test_latest_ac_and_battery(self, aggregator, make_sample):
        aggregator.ingest(make_sample(BASE, 10.0, is_on_ac=False, battery_percent=80.0))
        aggregator.ingest(make_sample(BASE + 5, None, is_on_ac=True, battery_percent=None))

        bucket, _ = aggregator.snapshot()
        assert bucket.is_on_ac is True
        assert bucket.battery_percent == 80.0

    def test_interval_scales_energy(self, store, make_sample):
        aggregator = MinuteBucketAggregator(store, interval_seconds=10.0)
        aggregator.ingest(make_sample(BASE, 36.0))
        bucket, _ = aggregator.snapshot()
        assert bucket.total_mwh == pytest.approx(100.0)

    def test_bad_sample_does_not_raise(self, aggregator):
        aggregator.ingest(Mock(timestamp=None))
        assert aggregator.snapshot() is None


class TestBoundaryFlush:
    """Test flushing when a sample lands in a later minute"""

    def test_boundary_flush_persists_previous_minute(self, aggregator, store, make_sample):
        aggregator.ingest(make_sample(BASE + 10, 12.0, apps=[("com.example.editor", 12.0, 1.0)]))
        future = aggregator.ingest(make_sample(BASE + 65, 6.0))

        assert future is not None
        assert future.result() is True
        assert aggregator.current_minute == BASE + 60

        buckets = store.minute_buckets(*WINDOW).result()
        assert [b.ts_minute for b in buckets] == [BASE]
        assert buckets[0].total_mwh == pytest.approx(energy_mwh(12.0))

        apps = store.app_minute_buckets(*WINDOW).result()
        assert [(a.ts_minute, a.bundle_id) for a in apps] == [(BASE, "com.example.editor")]

        bucket, _ = aggregator.snapshot()
        assert bucket.ts_minute == BASE + 60
        assert bucket.total_mwh == pytest.approx(energy_mwh(6.0))

    def test_same_minute_does_not_flush(self, aggregator, store, make_sample):
        assert aggregator.ingest(make_sample(BASE, 10.0)) is None
        assert aggregator.ingest(make_sample(BASE + 59, 10.0)) is None
        assert store.minute_buckets(*WINDOW).result() == []


class TestForceFlush:
    """Test partial-minute persistence"""

    def test_force_flush_then_continue_without_double_count(self, aggregator, store, make_sample):
        aggregator.ingest(make_sample(BASE, 12.0, apps=[("com.example.editor", 12.0, 1.0)]))
        aggregator.force_flush().result()

        aggregator.ingest(make_sample(BASE + 5, 24.0, apps=[("com.example.editor", 24.0, 1.0)]))
        aggregator.force_flush().result()

        bucket = store.minute_buckets(*WINDOW).result()[0]
        assert bucket.total_mwh == pytest.approx(energy_mwh(12.0) + energy_mwh(24.0))
        assert bucket.total_watts_avg == pytest.approx(18.0)
        assert bucket.samples_count == 2

        app = store.app_minute_buckets(*WINDOW).result()[0]
        assert app.mwh == pytest.approx(energy_mwh(36.0))
        assert app.relative_impact_sum == pytest.approx(2.0)

    def test_force_flush_keeps_minute_open(self, aggregator, make_sample):
        aggregator.ingest(make_sample(BASE, 12.0))
        aggregator.force_flush().result()

        assert aggregator.current_minute == BASE
        assert aggregator.snapshot() is None
        assert aggregator.force_flush() is None

    def test_reset_drops_state(self, aggregator, store, make_sample):
        aggregator.ingest(make_sample(BASE, 12.0))
        aggregator.reset()
        assert aggregator.current_minute is None
        assert aggregator.force_flush() is None
        assert store.minute_buckets(*WINDOW).result() == []


class TestConsume:
    """Test folding samples from a channel"""

    def test_consumes_published_samples(self, aggregator, make_sample):
        channel = SampleChannel()
        aggregator.consume(channel)
        try:
            channel.publish(make_sample(BASE, 12.0))
            deadline = time.monotonic() + 2.0
            while aggregator.snapshot() is None and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            aggregator.stop_consuming()

        bucket, _ = aggregator.snapshot()
        assert bucket.total_watts_avg == pytest.approx(12.0)

    def test_stop_consuming_folds_pending_sample(self, aggregator, make_sample):
        channel = SampleChannel()
        aggregator.consume(channel)
        channel.publish(make_sample(BASE, 12.0))
        aggregator.stop_consuming()

        assert channel.pending() == 0
        assert aggregator.snapshot() is not None
