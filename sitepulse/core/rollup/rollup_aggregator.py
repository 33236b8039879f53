"""
Hierarchical rollup of site views into Brand / Holding / region totals.

Rules
-----
- Only real telemetry enters an aggregate; placeholder sites are counted in
  ``sites_total`` and nowhere else.
- Energy totals use the general (main) meter only. Sub-meter energy is
  reported per category next to the total, never added to it.
- Averages are taken over the sites that report the metric; a site without
  a value is excluded from the denominator, not counted as zero.
- Views are visited in site id order so float sums are reproducible no
  matter in which order a concurrent rollup finished them.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from sitepulse.domain.metrics import MetricKey, Module
from sitepulse.domain.models import (
    SUB_METER_CATEGORIES,
    DeviceCategory,
    Liveness,
    RollupTotals,
    Scope,
    SiteView,
)

log = logging.getLogger(__name__)


def air_quality_label(co2_ppm: Optional[float]) -> Optional[str]:
    """Coarse label: EXCELLENT < 400, GOOD < 600, MODERATE < 1000, else POOR."""
    if co2_ppm is None:
        return None
    if co2_ppm < 400:
        return "EXCELLENT"
    if co2_ppm < 600:
        return "GOOD"
    if co2_ppm < 1000:
        return "MODERATE"
    return "POOR"


def _live_co2(view: SiteView) -> Optional[float]:
    air = view.modules.get(Module.AIR)
    if air is None or not air.enabled or air.liveness is not Liveness.LIVE:
        return None
    return view.snapshot.value(MetricKey.CO2)


def rollup(site_views: Sequence[SiteView], scope: Optional[Scope] = None) -> RollupTotals:
    """
    Aggregate site views into scope totals.

    Parameters
    ----------
    site_views
        Views of the sites in the scope (already filtered by membership).
    scope
        Scope the totals describe, echoed in the result.

    Returns
    -------
    RollupTotals
        Totals; an empty input yields all zeros and ``has_real_data=False``.
    """
    views = sorted(site_views, key=lambda v: v.site_id)
    real = [v for v in views if v.snapshot.is_real]

    energy_total = 0.0
    by_category: Dict[str, float] = {}
    intensities: List[float] = []
    co2_values: List[float] = []

    for v in real:
        snap = v.snapshot

        energy = snap.category_value(MetricKey.ACTIVE_ENERGY, DeviceCategory.GENERAL)
        if energy is not None:
            energy_total += energy
            if v.area_m2 is not None and v.area_m2 > 0 and energy > 0:
                intensities.append(energy / v.area_m2)

        for cat in SUB_METER_CATEGORIES:
            sub = snap.category_value(MetricKey.ACTIVE_ENERGY, cat)
            if sub is not None:
                by_category[cat.value] = by_category.get(cat.value, 0.0) + sub

        co2 = _live_co2(v)
        if co2 is not None:
            co2_values.append(co2)

    avg_co2 = sum(co2_values) / len(co2_values) if co2_values else 0.0

    totals = RollupTotals(
        scope=scope,
        sites_online=sum(1 for v in views if v.is_online),
        sites_total=len(views),
        aggregated_energy_kwh=energy_total,
        avg_co2_ppm=avg_co2,
        alerts_critical=sum(v.alerts.critical_count for v in views),
        alerts_warning=sum(v.alerts.warning_count for v in views),
        has_real_data=bool(real),
        sites_with_data=len(real),
        energy_by_category=by_category,
        avg_energy_intensity_kwh_m2=sum(intensities) / len(intensities) if intensities else None,
        air_quality_label=air_quality_label(avg_co2) if co2_values else None,
    )
    log.debug(
        "Rollup %s: %d/%d online, %.3f kWh, avg co2 %.1f",
        scope,
        totals.sites_online,
        totals.sites_total,
        totals.aggregated_energy_kwh,
        totals.avg_co2_ppm,
    )
    return totals
