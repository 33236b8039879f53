"""
Unit tests for sitepulse.core.rollup.rollup_aggregator.

These tests build SiteViews by hand and verify:
- empty input -> zeros, no real data
- general-meter-only energy totals (sub-meters reported apart)
- sites without a value are excluded from sums and averages
- placeholder sites never enter an aggregate
- averages use only live CO2
- input order does not change the result
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import pytest

from sitepulse.core.rollup.rollup_aggregator import air_quality_label, rollup
from sitepulse.domain.metrics import MetricKey, Module
from sitepulse.domain.models import (
    AlertStatus,
    DeviceCategory,
    Liveness,
    MetricSample,
    ModuleStatus,
    RollupTotals,
    Scope,
    ScopeKind,
    SiteSnapshot,
    SiteView,
    StatusLevel,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
BRAND = Scope(ScopeKind.BRAND, "b1")

LIVE = ModuleStatus(score=90, level=StatusLevel.GOOD, is_live=True, liveness=Liveness.LIVE)
STALE = ModuleStatus(score=90, level=StatusLevel.GOOD, is_live=False, liveness=Liveness.STALE)
OFF = ModuleStatus(score=0, level=StatusLevel.CRITICAL, is_live=False, liveness=Liveness.OFFLINE)


def _view(
    site_id: str,
    rows: Tuple[Tuple[MetricKey, float, str, Optional[DeviceCategory]], ...] = (),
    is_real: Optional[bool] = None,
    air: ModuleStatus = LIVE,
    energy: ModuleStatus = LIVE,
    alerts: AlertStatus = AlertStatus(),
    area: Optional[float] = None,
) -> SiteView:
    metrics: Dict[MetricKey, Dict[str, MetricSample]] = {}
    for key, value, device, cat in rows:
        metrics.setdefault(key, {})[device] = MetricSample(
            key=key, value=value, unit=key.unit, device_id=device, sample_time=NOW, category=cat
        )
    # A view without samples is never real.
    real = bool(rows) if is_real is None else is_real
    snap = SiteSnapshot.build(site_id, metrics, is_real=real, captured_at=NOW)
    modules = {Module.ENERGY: energy, Module.AIR: air, Module.WATER: OFF}
    return SiteView(snapshot=snap, modules=modules, composite=LIVE, alerts=alerts, area_m2=area)


def _energy(value: float, device: str = "main", cat: DeviceCategory = DeviceCategory.GENERAL):
    return (MetricKey.ACTIVE_ENERGY, value, device, cat)


def _co2(value: float, device: str = "iaq"):
    return (MetricKey.CO2, value, device, DeviceCategory.AIR_QUALITY)


def test_empty_rollup_is_zero() -> None:
    totals = rollup([], BRAND)

    assert totals == RollupTotals(scope=BRAND)
    assert totals.sites_total == 0
    assert totals.aggregated_energy_kwh == 0.0
    assert totals.avg_co2_ppm == 0.0
    assert totals.has_real_data is False
    assert totals.air_quality_label is None


def test_site_without_energy_contributes_nothing() -> None:
    totals = rollup([_view("A", (_energy(500.0),)), _view("B")], BRAND)

    assert totals.aggregated_energy_kwh == 500.0
    assert totals.sites_total == 2
    assert totals.sites_with_data == 1


def test_sub_meters_reported_apart_from_total() -> None:
    view = _view(
        "A",
        (
            _energy(1000.0),
            _energy(400.0, "hvac-1", DeviceCategory.HVAC),
            _energy(200.0, "light-1", DeviceCategory.LIGHTING),
        ),
    )
    totals = rollup([view], BRAND)

    assert totals.aggregated_energy_kwh == 1000.0
    assert totals.energy_by_category == {"hvac": 400.0, "lighting": 200.0}


def test_additive_total_is_exact_sum() -> None:
    views = [_view(f"s{i}", (_energy(float(i * 10)),)) for i in range(1, 6)]
    assert rollup(views, BRAND).aggregated_energy_kwh == 150.0


def test_placeholder_sites_never_aggregate() -> None:
    views = [
        _view("real", (_energy(100.0), _co2(800.0))),
        _view("demo", (_energy(9999.0), _co2(400.0)), is_real=False, air=OFF, energy=OFF),
    ]
    totals = rollup(views, BRAND)

    assert totals.aggregated_energy_kwh == 100.0
    assert totals.avg_co2_ppm == 800.0
    assert totals.has_real_data is True
    assert totals.sites_with_data == 1
    assert totals.sites_total == 2


def test_all_placeholder_has_no_real_data() -> None:
    totals = rollup([_view("demo", (_co2(400.0),), is_real=False, air=OFF, energy=OFF)], BRAND)
    assert totals.has_real_data is False
    assert totals.avg_co2_ppm == 0.0


def test_co2_average_over_live_sites_only() -> None:
    views = [
        _view("A", (_co2(600.0),)),
        _view("B", (_co2(1000.0),)),
        _view("C", (_co2(2000.0),), air=STALE),
        _view("D"),
    ]
    totals = rollup(views, BRAND)

    assert totals.avg_co2_ppm == pytest.approx(800.0)
    assert totals.air_quality_label == "MODERATE"


def test_online_count_and_alerts() -> None:
    views = [
        _view("A", alerts=AlertStatus(critical_count=1, warning_count=2)),
        _view("B", air=OFF, energy=OFF, alerts=AlertStatus(warning_count=1)),
        _view("C", air=STALE, energy=OFF),
    ]
    totals = rollup(views, BRAND)

    assert totals.sites_online == 1
    assert totals.alerts_critical == 1
    assert totals.alerts_warning == 3


def test_energy_intensity_over_sites_with_area() -> None:
    views = [
        _view("A", (_energy(1000.0),), area=500.0),
        _view("B", (_energy(300.0),), area=100.0),
        _view("C", (_energy(50.0),)),
        _view("D", (_energy(0.0),), area=100.0),
    ]
    totals = rollup(views, BRAND)

    assert totals.avg_energy_intensity_kwh_m2 == pytest.approx(2.5)


def test_no_area_gives_no_intensity() -> None:
    assert rollup([_view("A", (_energy(10.0),))], BRAND).avg_energy_intensity_kwh_m2 is None


def test_order_independent_and_idempotent() -> None:
    views = [_view(f"s{i}", (_energy(0.1 * i), _co2(400.0 + i))) for i in range(20)]

    forward = rollup(views, BRAND)
    backward = rollup(list(reversed(views)), BRAND)

    assert forward == backward
    assert forward == rollup(views, BRAND)


@pytest.mark.parametrize(
    "co2, label",
    [(None, None), (350.0, "EXCELLENT"), (400.0, "GOOD"), (599.0, "GOOD"), (600.0, "MODERATE"), (1000.0, "POOR")],
)
def test_air_quality_label(co2, label) -> None:
    assert air_quality_label(co2) == label
