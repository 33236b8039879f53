"""
Unit tests for sitepulse.core.scoring.module_scoring.

These tests verify:
- default per-module formulas, clamping and half-up rounding
- status bands
- liveness handling (LIVE scored+live, STALE scored+not live, OFFLINE 0)
- placeholder / missing / disabled modules score 0
- composite renormalisation over enabled modules
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict

import pytest

from sitepulse.core.scoring.module_scoring import (
    CompositeWeights,
    ModuleScorer,
    score_air,
    score_energy,
    score_water,
    status_level,
)
from sitepulse.domain.metrics import MetricKey, Module
from sitepulse.domain.models import Liveness, MetricSample, ModuleStatus, SiteSnapshot, StatusLevel

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _snap(values: Dict[MetricKey, float], minutes_ago: int = 1, is_real: bool = True) -> SiteSnapshot:
    ts = NOW - timedelta(minutes=minutes_ago)
    metrics = {
        k: {"d1": MetricSample(key=k, value=v, unit=k.unit, device_id="d1", sample_time=ts)} for k, v in values.items()
    }
    return SiteSnapshot.build("s1", metrics, is_real=is_real, captured_at=NOW)


def _st(score: int, live: bool = True, enabled: bool = True) -> ModuleStatus:
    return ModuleStatus(score=score, level=status_level(score), is_live=live, enabled=enabled)


@pytest.mark.parametrize(
    "power, expected",
    [(0.0, 100), (50.0, 90), (120.0, 76), (500.0, 0), (1000.0, 0), (-50.0, 100), (12.5, 98), (37.5, 93)],
)
def test_energy_formula(power: float, expected: int) -> None:
    assert score_energy(power) == expected


@pytest.mark.parametrize("co2, expected", [(400.0, 100), (700.0, 50), (1000.0, 0), (1600.0, 0), (350.0, 100)])
def test_air_formula(co2: float, expected: int) -> None:
    assert score_air(co2) == expected


def test_air_rounds_half_up() -> None:
    # 100 - (403/600)*100 = 32.8333..., 100 - (397/600)*100 = 33.8333...
    assert score_air(803.0) == 33
    assert score_air(797.0) == 34


def test_water_formula() -> None:
    assert score_water(3.2) == 85
    assert score_water(0.0) == 60


@pytest.mark.parametrize(
    "score, level",
    [(100, StatusLevel.GOOD), (80, StatusLevel.GOOD), (79, StatusLevel.OK), (60, StatusLevel.OK),
     (59, StatusLevel.WARNING), (40, StatusLevel.WARNING), (39, StatusLevel.CRITICAL), (0, StatusLevel.CRITICAL)],
)
def test_status_bands(score: int, level: StatusLevel) -> None:
    assert status_level(score) is level


def test_energy_120kw_live_is_76_ok() -> None:
    st = ModuleScorer().score_module(_snap({MetricKey.POWER_KW: 120.0}), Module.ENERGY, now=NOW)

    assert st.score == 76
    assert st.level is StatusLevel.OK
    assert st.is_live
    assert st.liveness is Liveness.LIVE
    assert st.last_update == NOW - timedelta(minutes=1)


def test_stale_reading_is_scored_but_not_live() -> None:
    st = ModuleScorer().score_module(_snap({MetricKey.CO2: 700.0}, minutes_ago=20), Module.AIR, now=NOW)

    assert st.score == 50
    assert not st.is_live
    assert st.liveness is Liveness.STALE


def test_offline_reading_scores_zero() -> None:
    st = ModuleScorer().score_module(_snap({MetricKey.CO2: 700.0}, minutes_ago=45), Module.AIR, now=NOW)

    assert st.score == 0
    assert not st.is_live
    assert st.liveness is Liveness.OFFLINE
    assert st.last_update is not None


def test_missing_defining_metric_scores_zero() -> None:
    st = ModuleScorer().score_module(_snap({MetricKey.TEMPERATURE: 21.0}), Module.AIR, now=NOW)
    assert st.score == 0
    assert not st.is_live


def test_placeholder_snapshot_scores_zero() -> None:
    st = ModuleScorer().score_module(_snap({MetricKey.POWER_KW: 45.2}, is_real=False), Module.ENERGY, now=NOW)
    assert st.score == 0
    assert not st.is_live


def test_disabled_module() -> None:
    st = ModuleScorer().score_module(_snap({MetricKey.POWER_KW: 10.0}), Module.ENERGY, enabled=False, now=NOW)
    assert st.score == 0
    assert not st.enabled
    assert not st.is_live


def test_custom_scorer_is_clamped() -> None:
    scorer = ModuleScorer(scorers={Module.WATER: lambda flow: 250})
    st = scorer.score_module(_snap({MetricKey.FLOW_RATE: 1.0}), Module.WATER, now=NOW)
    assert st.score == 100


def test_composite_default_weights() -> None:
    statuses = {Module.ENERGY: _st(76), Module.AIR: _st(50), Module.WATER: _st(85)}
    comp = ModuleScorer().composite(statuses)

    # 0.80*76 + 0.05*50 + 0.15*85 = 76.05
    assert comp.score == 76
    assert comp.level is StatusLevel.OK
    assert comp.is_live


def test_composite_renormalises_over_enabled_modules() -> None:
    statuses = {Module.ENERGY: _st(76), Module.AIR: _st(0, live=False, enabled=False), Module.WATER: _st(60)}
    comp = ModuleScorer().composite(statuses)

    # (0.80*76 + 0.15*60) / 0.95 = 73.47...
    assert comp.score == 73


def test_disabled_module_does_not_change_composite() -> None:
    scorer = ModuleScorer()
    only_energy = scorer.composite({Module.ENERGY: _st(90)})
    with_disabled = scorer.composite({Module.ENERGY: _st(90), Module.WATER: _st(0, live=False, enabled=False)})

    assert only_energy.score == with_disabled.score == 90


def test_composite_explicit_enabled_list() -> None:
    statuses = {Module.ENERGY: _st(100), Module.AIR: _st(0)}
    assert ModuleScorer().composite(statuses, enabled=[Module.ENERGY]).score == 100


def test_composite_no_enabled_modules() -> None:
    comp = ModuleScorer().composite({Module.ENERGY: _st(0, live=False, enabled=False)})
    assert comp.score == 0
    assert not comp.is_live


def test_composite_live_if_any_enabled_module_live() -> None:
    statuses = {Module.ENERGY: _st(80, live=False), Module.AIR: _st(80, live=True)}
    assert ModuleScorer().composite(statuses).is_live


def test_custom_weights() -> None:
    scorer = ModuleScorer(weights=CompositeWeights(energy=1.0, air=1.0, water=0.0))
    statuses = {Module.ENERGY: _st(100), Module.AIR: _st(50), Module.WATER: _st(0)}
    assert scorer.composite(statuses).score == 75


def test_negative_weight_rejected() -> None:
    with pytest.raises(ValueError):
        CompositeWeights(energy=-0.1)


def test_weights_from_mapping_keeps_defaults() -> None:
    w = CompositeWeights.from_mapping({"air": 0.5})
    assert (w.energy, w.air, w.water) == (0.80, 0.5, 0.15)


@pytest.mark.parametrize("power", [0.0, 37.0, 120.0, 480.0, 9999.0])
@pytest.mark.parametrize("co2", [300.0, 650.0, 1200.0])
def test_scores_stay_in_range_and_are_idempotent(power: float, co2: float) -> None:
    scorer = ModuleScorer()
    snap = _snap({MetricKey.POWER_KW: power, MetricKey.CO2: co2, MetricKey.FLOW_RATE: 1.0})

    first = scorer.score_all(snap, enabled=list(Module), now=NOW)
    second = scorer.score_all(snap, enabled=list(Module), now=NOW)
    comp = scorer.composite(first)

    assert first == second
    assert all(0 <= st.score <= 100 for st in first.values())
    assert 0 <= comp.score <= 100


@pytest.mark.parametrize("raw, expected", [(84.5, 85), (84.49, 84), (0.5, 1), (-3.2, 0)])
def test_custom_scorer_float_rounds_half_up(raw: float, expected: int) -> None:
    scorer = ModuleScorer(scorers={Module.WATER: lambda flow: raw})
    st = scorer.score_module(_snap({MetricKey.FLOW_RATE: 1.0}), Module.WATER, now=NOW)
    assert st.score == expected
