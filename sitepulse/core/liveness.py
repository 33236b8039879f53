"""
Staleness and liveness classification.

A sample is classified purely by its age relative to a freshness window:

- ``age <= window``            -> LIVE
- ``window < age <= 2*window`` -> STALE
- otherwise (or no sample)     -> OFFLINE

STALE is deliberately separate from OFFLINE and from any threshold verdict:
a stale reading is uncertain, not bad.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping, Optional

from sitepulse.domain.metrics import DEFINING_METRIC, MetricKey, Module
from sitepulse.domain.models import Liveness, SiteSnapshot, as_utc

DEFAULT_TELEMETRY_WINDOW = timedelta(minutes=15)
DEFAULT_COUNTER_WINDOW = timedelta(hours=26)

# Daily / cumulative counters are published far less often than live telemetry.
_COUNTER_KEYS = (
    MetricKey.ACTIVE_ENERGY,
    MetricKey.DAILY_ENERGY_KWH,
    MetricKey.DAILY_WATER_LITERS,
)


def classify(sample_time: Optional[datetime], now: datetime, freshness_window: timedelta) -> Liveness:
    """
    Classify a sample by age.

    Parameters
    ----------
    sample_time
        Sample timestamp, or None if nothing was ever reported.
    now
        Evaluation time.
    freshness_window
        Expected reporting interval for the metric class.

    Returns
    -------
    Liveness
        LIVE, STALE or OFFLINE. Samples from the future (clock skew) are LIVE.
    """
    if sample_time is None:
        return Liveness.OFFLINE

    age = as_utc(now) - as_utc(sample_time)
    if age <= freshness_window:
        return Liveness.LIVE
    if age <= 2 * freshness_window:
        return Liveness.STALE
    return Liveness.OFFLINE


@dataclass(frozen=True)
class FreshnessPolicy:
    """
    Freshness window per metric class.

    Parameters
    ----------
    telemetry_window
        Window for live telemetry (power, CO2, flow ...).
    counter_window
        Window for daily / cumulative counters.
    overrides
        Per-key windows taking precedence over the class defaults.
    """

    telemetry_window: timedelta = DEFAULT_TELEMETRY_WINDOW
    counter_window: timedelta = DEFAULT_COUNTER_WINDOW
    overrides: Mapping[MetricKey, timedelta] = field(default_factory=dict)

    def window_for(self, key: MetricKey) -> timedelta:
        if key in self.overrides:
            return self.overrides[key]
        if key in _COUNTER_KEYS:
            return self.counter_window
        return self.telemetry_window

    def classify_metric(self, snapshot: SiteSnapshot, key: MetricKey, now: datetime) -> Liveness:
        """Classify the newest sample of ``key`` in ``snapshot``."""
        return classify(snapshot.latest_sample_time(key), now, self.window_for(key))

    def module_liveness(self, snapshot: SiteSnapshot, module: Module, now: datetime) -> Liveness:
        """
        Liveness of a module, judged on its defining metric.

        A module whose defining metric has never been reported is OFFLINE.
        """
        return self.classify_metric(snapshot, DEFINING_METRIC[module], now)
