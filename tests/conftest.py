"""
Pytest configuration and fixtures for all tests
"""
import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient

from powerwatt.config import Settings
from powerwatt.deps import get_optional_usage_manager
from powerwatt.main import app
from powerwatt.models.energy import EnergyImpactSample
from powerwatt.models.power import (
    AppPowerSample,
    CombinedPowerSample,
    TotalPowerSample,
    TotalPowerSource,
    UnavailableReason,
)
from powerwatt.models.process import NANOSECONDS_PER_SECOND, ProcessResourceUsage, RunningAppInfo
from powerwatt.services.collectors.power import PowerSource
from powerwatt.services.collectors.process import ProcessInventory
from powerwatt.services.usage_manager import UsageManager
from powerwatt.storage.usage_store import UsageStore


# ============================================================================
# Fakes for OS boundaries
# ============================================================================

class FakePowerSource(PowerSource):
    """Returns a fixed property bag (or raises)."""

    name = "fake"

    def __init__(self, props=None, error=None):
        self.props = props
        self.error = error
        self.calls = 0

    def read_properties(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.props


class FakeInventory(ProcessInventory):
    """In-memory process table with mutable cumulative counters."""

    def __init__(self, apps=None, background=None):
        self.apps = list(apps or [])
        self.background = list(background or [])
        self.usage = {}

    def set_usage(self, pid, cpu_seconds=0.0, wakeups=0, read=0, written=0, net_in=None, net_out=None):
        self.usage[pid] = ProcessResourceUsage(
            pid=pid,
            user_time_ns=int(cpu_seconds * NANOSECONDS_PER_SECOND),
            system_time_ns=0,
            wakeups=wakeups,
            disk_bytes_read=read,
            disk_bytes_written=written,
            network_bytes_in=net_in,
            network_bytes_out=net_out,
        )

    def running_apps(self):
        return list(self.apps)

    def background_processes(self, exclude_pids):
        return [p for p in self.background if p.pid not in exclude_pids]

    def resource_usage(self, pid):
        return self.usage.get(pid)


DISCHARGING_PROPS = {
    "Voltage": 12000,
    "Amperage": -1500,
    "IsCharging": False,
    "ExternalConnected": False,
    "CurrentCapacity": 80,
    "MaxCapacity": 100,
}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a temporary database and coefficient directory"""
    coeff_dir = tmp_path / "pmenergy"
    coeff_dir.mkdir()
    return Settings(
        DATABASE_PATH=str(tmp_path / "usage.sqlite"),
        COEFFICIENTS_DIR=str(coeff_dir),
        SAMPLING_INTERVAL_SECONDS=5.0,
        SENSOR_TIMEOUT_SECONDS=1.0,
        CLEANUP_INTERVAL_SECONDS=3600,
        USE_CUSTOM_COEFFICIENTS=False,
    )


@pytest.fixture
def fake_power_source():
    """Power source reporting 18 W derived from a discharging battery"""
    return FakePowerSource(dict(DISCHARGING_PROPS))


@pytest.fixture
def fake_inventory():
    """Two apps, one with a helper process"""
    return FakeInventory(apps=[
        RunningAppInfo(pid=101, bundle_id="com.example.editor", name="Editor", is_app=True),
        RunningAppInfo(pid=102, bundle_id="com.example.editor", name="Editor Helper", is_app=True),
        RunningAppInfo(pid=201, bundle_id="com.example.browser", name="Browser", is_app=True),
    ])


@pytest.fixture
def store(tmp_path):
    """Usage store on a temporary SQLite file"""
    usage_store = UsageStore(tmp_path / "store.sqlite")
    yield usage_store
    usage_store.close()


@pytest.fixture
def usage_manager(test_settings, fake_power_source, fake_inventory):
    """Usage manager built from fakes; not started"""
    manager = UsageManager(test_settings, power_source=fake_power_source, inventory=fake_inventory)
    yield manager
    manager.handle_termination()


@pytest.fixture
def client(usage_manager):
    """Test client with the usage manager injected"""
    app.dependency_overrides[get_optional_usage_manager] = lambda: usage_manager
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def client_without_pipeline():
    """Test client with no usage manager available"""
    app.dependency_overrides[get_optional_usage_manager] = lambda: None
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_sample():
    """Factory for combined samples: apps are (bundle_id, watts, relative_score) tuples"""
    def _make(timestamp, total_watts=None, apps=(), is_on_ac=False, battery_percent=None):
        if isinstance(timestamp, (int, float)):
            timestamp = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        if total_watts is None:
            total = TotalPowerSample.unavailable(
                timestamp, UnavailableReason.NOT_DISCHARGING,
                is_on_ac=is_on_ac, battery_percent=battery_percent
            )
        else:
            total = TotalPowerSample(
                timestamp=timestamp,
                total_watts=total_watts,
                is_on_ac=is_on_ac,
                battery_percent=battery_percent,
                source=TotalPowerSource.MEASURED,
            )
        app_power = [
            AppPowerSample(
                timestamp=timestamp,
                bundle_id=bundle_id,
                app_name=bundle_id.split(".")[-1].title(),
                estimated_watts=watts,
                relative_score=relative,
            )
            for bundle_id, watts, relative in apps
        ]
        return CombinedPowerSample(
            timestamp=timestamp,
            total_power=total,
            app_power=app_power,
            energy_impact=EnergyImpactSample.empty(timestamp),
        )
    return _make
