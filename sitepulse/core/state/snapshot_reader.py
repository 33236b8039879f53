"""
Site snapshot reader.

Turns the raw rows of the metric store into an immutable
:class:`~sitepulse.domain.models.SiteSnapshot`:

- keeps only the newest sample per (metric, device)
- drops rows without a finite value
- marks the snapshot real when at least one value survives

This is the only place where "real telemetry vs placeholder" is decided.
Every downstream component trusts ``SiteSnapshot.is_real`` and never
re-checks the data source.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Optional, Protocol, Sequence

from sitepulse.core.state.metric_store import DeviceFilter, MetricStore
from sitepulse.domain.errors import MetricStoreError
from sitepulse.domain.metrics import MetricKey
from sitepulse.domain.models import DeviceCategory, MetricSample, SiteSnapshot, as_utc, now_utc

log = logging.getLogger(__name__)


class PlaceholderProvider(Protocol):
    """
    Supplies demo values for sites without telemetry.

    Placeholder samples are only ever wrapped in a snapshot with
    ``is_real = False`` so they can be displayed but never aggregated.
    """

    def placeholder_samples(self, site_id: str, now: datetime) -> Sequence[MetricSample]:
        ...


# Values shown on the dashboard for sites that have not been wired yet.
DEMO_VALUES: Mapping[MetricKey, float] = {
    MetricKey.POWER_KW: 45.2,
    MetricKey.HVAC_KW: 22.5,
    MetricKey.LIGHTING_KW: 12.8,
    MetricKey.CO2: 520.0,
    MetricKey.VOC: 85.0,
    MetricKey.TEMPERATURE: 22.5,
    MetricKey.HUMIDITY: 48.0,
}


@dataclass(frozen=True)
class StaticPlaceholderProvider:
    """Placeholder provider returning the same fixed values for every site."""

    values: Mapping[MetricKey, float] = field(default_factory=lambda: dict(DEMO_VALUES))
    device_id: str = "placeholder"

    def placeholder_samples(self, site_id: str, now: datetime) -> Sequence[MetricSample]:
        return [
            MetricSample(
                key=k,
                value=float(v),
                unit=k.unit,
                device_id=self.device_id,
                sample_time=now,
                category=DeviceCategory.GENERAL if k is MetricKey.POWER_KW else None,
            )
            for k, v in self.values.items()
        ]


def _latest_per_device(samples: Sequence[MetricSample]) -> Dict[MetricKey, Dict[str, MetricSample]]:
    """
    Keep the newest sample with a finite value per (key, device).

    Ties on ``sample_time`` resolve to the sample seen last.
    """
    out: Dict[MetricKey, Dict[str, MetricSample]] = {}
    for s in samples:
        if s.value is None or not math.isfinite(s.value):
            continue
        by_device = out.setdefault(s.key, {})
        prev = by_device.get(s.device_id)
        if prev is None or as_utc(s.sample_time) >= as_utc(prev.sample_time):
            by_device[s.device_id] = s
    return out


@dataclass
class SnapshotReader:
    """
    Build site snapshots from a metric store.

    Parameters
    ----------
    store
        Metric store to read from.
    placeholder
        Optional provider of demo values for sites without telemetry.
    device_filter
        Optional default restriction applied to every read.
    """

    store: MetricStore
    placeholder: Optional[PlaceholderProvider] = None
    device_filter: Optional[DeviceFilter] = None

    def get_snapshot(self, site_id: str, now: Optional[datetime] = None) -> SiteSnapshot:
        """
        Read the latest snapshot of a site.

        Parameters
        ----------
        site_id
            Site to read.
        now
            Capture time stamped on the snapshot. Defaults to current UTC time.

        Returns
        -------
        SiteSnapshot
            A fresh snapshot. Unknown sites and sites without values yield an
            empty (or placeholder) snapshot with ``is_real = False``.

        Raises
        ------
        MetricStoreError
            If the store itself fails. Absence of data is never an error.
        """
        ts = now or now_utc()

        try:
            rows = self.store.latest_samples(site_id, self.device_filter)
        except MetricStoreError:
            raise
        except Exception as e:
            raise MetricStoreError(f"metric store read failed for site {site_id}: {e!r}", site_id) from e

        metrics = _latest_per_device(rows)
        if metrics:
            log.debug("Snapshot %s: %d metrics from %d rows", site_id, len(metrics), len(rows))
            return SiteSnapshot.build(site_id, metrics, is_real=True, captured_at=ts)

        if self.placeholder is not None:
            demo = _latest_per_device(self.placeholder.placeholder_samples(site_id, ts))
            log.debug("Snapshot %s: no telemetry, using %d placeholder metrics", site_id, len(demo))
            return SiteSnapshot.build(site_id, demo, is_real=False, captured_at=ts)

        log.debug("Snapshot %s: no telemetry", site_id)
        return SiteSnapshot.empty(site_id, ts)
