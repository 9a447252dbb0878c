"""
Unit tests for EnergyCoefficients and the Coefficient Provider

Tests:
- Validity and linear scoring
- Key aliases and numeric representations
- Cache revalidation window and modification-time check
- Failure keeps the previous value
- Custom overrides
"""

import json
import os
import plistlib

import pytest

from powerwatt.models.energy import DEFAULT_COEFFICIENTS, EnergyCoefficients, FeatureShares
from powerwatt.services.coefficients import CoefficientProvider, parse_coefficients


TRUNCATED_XML_PLIST = b"<?xml version='1.0'?><plist><dict><key>cpu</key>"


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def write_plist(path, data, mtime=None):
    with open(path, "wb") as f:
        plistlib.dump(data, f)
    if mtime is not None:
        os.utime(path, (mtime, mtime))


class TestEnergyCoefficients:
    """Test validity and scoring"""

    def test_defaults_are_valid(self):
        assert DEFAULT_COEFFICIENTS.cpu_weight == 0.70
        assert DEFAULT_COEFFICIENTS.wakeups_weight == 0.10
        assert DEFAULT_COEFFICIENTS.disk_weight == 0.15
        assert DEFAULT_COEFFICIENTS.network_weight == 0.05
        assert DEFAULT_COEFFICIENTS.is_valid

    @pytest.mark.parametrize("weights,valid", [
        ((0.25, 0.25, 0.25, 0.25), True),
        ((0.5, 0.5, 0.0, 0.0005), True),
        ((0.5, 0.5, 0.0, 0.002), False),
        ((0.7, 0.1, 0.1, 0.05), False),
        ((1.0, 0.0, 0.0, 0.0), True),
    ])
    def test_validity_tolerance(self, weights, valid):
        coeffs = EnergyCoefficients(
            cpu_weight=weights[0], wakeups_weight=weights[1],
            disk_weight=weights[2], network_weight=weights[3],
        )
        assert coeffs.is_valid is valid

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            EnergyCoefficients(cpu_weight=-0.1)

    def test_compute_score_is_linear(self):
        coeffs = DEFAULT_COEFFICIENTS
        a = FeatureShares(bundle_id="a", cpu_share=0.2, wakeups_share=0.4, disk_share=0.1, network_share=0.0)
        doubled = FeatureShares(bundle_id="a", cpu_share=0.4, wakeups_share=0.8, disk_share=0.2, network_share=0.0)
        assert coeffs.compute_score(doubled) == pytest.approx(2 * coeffs.compute_score(a))
        assert coeffs.compute_score(a) == pytest.approx(0.7 * 0.2 + 0.1 * 0.4 + 0.15 * 0.1)

    def test_full_shares_score_total_weight(self):
        full = FeatureShares(bundle_id="a", cpu_share=1, wakeups_share=1, disk_share=1, network_share=1)
        assert DEFAULT_COEFFICIENTS.compute_score(full) == pytest.approx(1.0)


class TestParseCoefficients:
    """Test document parsing"""

    def test_snake_case_keys(self):
        coeffs = parse_coefficients({"cpu_weight": 0.6, "wakeups_weight": 0.2, "disk_weight": 0.15, "network_weight": 0.05})
        assert coeffs.cpu_weight == 0.6
        assert coeffs.wakeups_weight == 0.2

    def test_alias_keys(self):
        coeffs = parse_coefficients({"CPU": 0.5, "interrupt_wakeups": 0.3, "diskio": 0.15, "net": 0.05})
        assert (coeffs.cpu_weight, coeffs.wakeups_weight, coeffs.disk_weight, coeffs.network_weight) == (0.5, 0.3, 0.15, 0.05)

    def test_int_values_accepted(self):
        coeffs = parse_coefficients({"cpu": 1, "wakeups": 0, "disk": 0, "network": 0})
        assert coeffs.cpu_weight == 1.0

    def test_bool_values_ignored(self):
        assert parse_coefficients({"cpu": True}) is None

    def test_partial_document_merges_with_defaults(self):
        # Only cpu changes, so the merged sum is no longer 1.0
        assert parse_coefficients({"cpuWeight": 0.8}) is None
        coeffs = parse_coefficients({"cpuWeight": 0.70, "diskWeight": 0.15})
        assert coeffs == DEFAULT_COEFFICIENTS

    def test_no_recognized_keys(self):
        assert parse_coefficients({"gpu": 0.5}) is None
        assert parse_coefficients([0.7, 0.1]) is None


class TestCoefficientProvider:
    """Test caching and reloading"""

    def test_missing_directory_uses_defaults(self, tmp_path):
        provider = CoefficientProvider(str(tmp_path / "missing"))
        assert provider.load() == DEFAULT_COEFFICIENTS
        assert provider.loaded_from_system is False

    def test_loads_preferred_file(self, tmp_path):
        write_plist(tmp_path / "coefficients.plist", {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1})
        write_plist(tmp_path / "aaa.plist", {"cpu": 0.25, "wakeups": 0.25, "disk": 0.25, "network": 0.25})

        provider = CoefficientProvider(str(tmp_path))
        coeffs = provider.load()
        assert coeffs.cpu_weight == 0.5
        assert provider.loaded_from_system is True

    def test_falls_back_to_other_documents(self, tmp_path):
        write_plist(tmp_path / "coefficients.plist", {"unrelated": 1})
        (tmp_path / "model.json").write_text(json.dumps({"cpu": 0.4, "wakeups": 0.3, "disk": 0.2, "network": 0.1}))

        coeffs = CoefficientProvider(str(tmp_path)).load()
        assert coeffs.cpu_weight == 0.4

    def test_cache_within_window_ignores_changes(self, tmp_path):
        clock = FakeClock()
        path = tmp_path / "coefficients.plist"
        write_plist(path, {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1}, mtime=1000)
        provider = CoefficientProvider(str(tmp_path), revalidate_seconds=3600, clock=clock)
        provider.load()

        write_plist(path, {"cpu": 0.25, "wakeups": 0.25, "disk": 0.25, "network": 0.25}, mtime=2000)
        clock.now += 60
        assert provider.load().cpu_weight == 0.5

    def test_stale_cache_without_change_kept(self, tmp_path):
        clock = FakeClock()
        path = tmp_path / "coefficients.plist"
        write_plist(path, {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1}, mtime=1000)
        provider = CoefficientProvider(str(tmp_path), revalidate_seconds=3600, clock=clock)
        provider.load()

        # Content changes but the modification time does not advance
        write_plist(path, {"cpu": 0.25, "wakeups": 0.25, "disk": 0.25, "network": 0.25}, mtime=1000)
        clock.now += 7200
        assert provider.load().cpu_weight == 0.5

    def test_stale_cache_with_change_reloads(self, tmp_path):
        clock = FakeClock()
        path = tmp_path / "coefficients.plist"
        write_plist(path, {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1}, mtime=1000)
        provider = CoefficientProvider(str(tmp_path), revalidate_seconds=3600, clock=clock)
        provider.load()

        write_plist(path, {"cpu": 0.25, "wakeups": 0.25, "disk": 0.25, "network": 0.25}, mtime=2000)
        clock.now += 7200
        assert provider.load().cpu_weight == 0.25

    def test_invalid_update_keeps_previous(self, tmp_path):
        clock = FakeClock()
        path = tmp_path / "coefficients.plist"
        write_plist(path, {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1}, mtime=1000)
        provider = CoefficientProvider(str(tmp_path), revalidate_seconds=3600, clock=clock)
        provider.load()

        path.write_bytes(b"corrupted")
        os.utime(path, (2000, 2000))
        clock.now += 7200
        coeffs = provider.load()
        assert coeffs.cpu_weight == 0.5
        assert provider.loaded_from_system is True

    def test_malformed_xml_plist_uses_defaults(self, tmp_path):
        (tmp_path / "coefficients.plist").write_bytes(TRUNCATED_XML_PLIST)

        provider = CoefficientProvider(str(tmp_path))
        assert provider.load() == DEFAULT_COEFFICIENTS
        assert provider.loaded_from_system is False
        assert provider.force_reload() == DEFAULT_COEFFICIENTS

    def test_malformed_xml_plist_keeps_previous(self, tmp_path):
        clock = FakeClock()
        path = tmp_path / "coefficients.plist"
        write_plist(path, {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1}, mtime=1000)
        provider = CoefficientProvider(str(tmp_path), revalidate_seconds=3600, clock=clock)
        provider.load()

        path.write_bytes(TRUNCATED_XML_PLIST)
        os.utime(path, (2000, 2000))
        clock.now += 7200
        assert provider.load().cpu_weight == 0.5

    def test_unchanged_check_restarts_window(self, tmp_path):
        clock = FakeClock()
        path = tmp_path / "coefficients.plist"
        write_plist(path, {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1}, mtime=1000)
        provider = CoefficientProvider(str(tmp_path), revalidate_seconds=3600, clock=clock)
        provider.load()

        clock.now += 7200
        assert provider.load().cpu_weight == 0.5

        # A change right after an unchanged check waits for the next window
        write_plist(path, {"cpu": 0.25, "wakeups": 0.25, "disk": 0.25, "network": 0.25}, mtime=2000)
        clock.now += 60
        assert provider.load().cpu_weight == 0.5

        clock.now += 3600
        assert provider.load().cpu_weight == 0.25

    def test_force_reload_bypasses_cache(self, tmp_path):
        path = tmp_path / "coefficients.plist"
        write_plist(path, {"cpu": 0.5, "wakeups": 0.2, "disk": 0.2, "network": 0.1}, mtime=1000)
        provider = CoefficientProvider(str(tmp_path), clock=FakeClock())
        provider.load()

        write_plist(path, {"cpu": 0.25, "wakeups": 0.25, "disk": 0.25, "network": 0.25}, mtime=1000)
        assert provider.force_reload().cpu_weight == 0.25

    def test_custom_override(self, tmp_path):
        provider = CoefficientProvider(str(tmp_path))
        custom = EnergyCoefficients(cpu_weight=1.0, wakeups_weight=0.0, disk_weight=0.0, network_weight=0.0)

        assert provider.set_custom(custom) is True
        assert provider.load() == custom

        assert provider.set_custom(None) is True
        assert provider.load() == DEFAULT_COEFFICIENTS

    def test_invalid_custom_ignored(self, tmp_path):
        provider = CoefficientProvider(str(tmp_path))
        invalid = EnergyCoefficients(cpu_weight=0.9, wakeups_weight=0.9, disk_weight=0.0, network_weight=0.0)

        assert provider.set_custom(invalid) is False
        assert provider.custom is None
        assert provider.load() == DEFAULT_COEFFICIENTS
