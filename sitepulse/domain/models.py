"""
Domain models and enums.

This module defines the value objects exchanged between the engine layers:
- Metric samples and the per-site snapshot built from them
- Per-site threshold configuration
- Verdicts, liveness classes and status bands
- Module / composite status, alert counts and rollup totals

All models are frozen dataclasses so a snapshot or a rollup result can be
shared across threads and serialized (``to_dict``) without defensive copies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sitepulse.domain.events import FetchFailure
from sitepulse.domain.metrics import MetricKey, Module, keys_for_module


def now_utc() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """
    Normalize a timestamp to aware UTC.

    Naive datetimes are interpreted as UTC; aware ones are converted.
    """
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat(timespec="seconds") if ts is not None else None


class DeviceCategory(str, Enum):
    """
    Role of a device within a site.

    Members
    -------
    GENERAL : str
        Main (whole-site) energy meter. The only category counted toward site
        energy totals.
    HVAC, LIGHTING, PLUGS : str
        Sub-meters; components of the general meter, not additions to it.
    AIR_QUALITY : str
        Indoor air quality sensor.
    WATER : str
        Water meter or leak sensor.
    OTHER : str
        Anything else.
    """

    GENERAL = "general"
    HVAC = "hvac"
    LIGHTING = "lighting"
    PLUGS = "plugs"
    AIR_QUALITY = "air_quality"
    WATER = "water"
    OTHER = "other"

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["DeviceCategory"]:
        if not text:
            return None
        try:
            return cls(text.strip().lower())
        except ValueError:
            return cls.OTHER


SUB_METER_CATEGORIES: Tuple[DeviceCategory, ...] = (
    DeviceCategory.HVAC,
    DeviceCategory.LIGHTING,
    DeviceCategory.PLUGS,
)


class Verdict(str, Enum):
    """
    Outcome of evaluating one metric value against site thresholds.

    An *indeterminate* outcome (no value reported) is represented by ``None``
    rather than a member, so it can never be mistaken for ``GOOD``.
    """

    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class Liveness(str, Enum):
    """
    Freshness class of a sample.

    Members
    -------
    LIVE : str
        Sample age within the freshness window.
    STALE : str
        Older than the window but within twice the window. Uncertain, not bad.
    OFFLINE : str
        Older than twice the window, or no sample at all.
    """

    LIVE = "LIVE"
    STALE = "STALE"
    OFFLINE = "OFFLINE"


class StatusLevel(str, Enum):
    """Four-level band applied to module and composite scores."""

    GOOD = "GOOD"
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class ScopeKind(str, Enum):
    BRAND = "BRAND"
    HOLDING = "HOLDING"
    REGION = "REGION"


@dataclass(frozen=True)
class Scope:
    """
    A Brand, Holding or region filter over the site hierarchy.

    Parameters
    ----------
    kind
        Hierarchy level.
    scope_id
        Identifier of the brand / holding / region.
    """

    kind: ScopeKind
    scope_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.scope_id}"


@dataclass(frozen=True)
class MetricSample:
    """
    One reading of one metric from one device.

    Parameters
    ----------
    key
        Catalog key of the metric.
    value
        Measured value. ``None`` means the store holds a row without a value;
        such samples are treated as absent.
    unit
        Unit reported by the device (informational; the catalog unit is
        authoritative).
    device_id
        Reporting device.
    sample_time
        When the value was measured.
    category
        Role of the reporting device within the site, if known.
    """

    key: MetricKey
    value: Optional[float]
    unit: str
    device_id: str
    sample_time: datetime
    category: Optional[DeviceCategory] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.value,
            "value": self.value,
            "unit": self.unit,
            "device_id": self.device_id,
            "sample_time": _iso(self.sample_time),
            "category": self.category.value if self.category else None,
        }


def _combine(key: MetricKey, values: List[float]) -> Optional[float]:
    if not values:
        return None
    total = sum(values)
    if key.is_additive:
        return total
    return total / len(values)


@dataclass(frozen=True)
class SiteSnapshot:
    """
    Latest known samples of one site, keyed by metric then by device.

    A snapshot is rebuilt on every read and never mutated; the nested
    mappings are read-only views.

    Parameters
    ----------
    site_id
        Site identifier.
    metrics
        ``{MetricKey: {device_id: MetricSample}}`` holding only the latest
        non-null sample per (device, key).
    is_real
        True when the values come from live telemetry; False for an empty
        snapshot or an externally supplied placeholder.
    captured_at
        When the snapshot was built.
    """

    site_id: str
    metrics: Mapping[MetricKey, Mapping[str, MetricSample]]
    is_real: bool
    captured_at: datetime

    @classmethod
    def build(
        cls,
        site_id: str,
        metrics: Mapping[MetricKey, Mapping[str, MetricSample]],
        is_real: bool,
        captured_at: datetime,
    ) -> "SiteSnapshot":
        """Create a snapshot, freezing the nested mappings."""
        frozen = {k: MappingProxyType(dict(v)) for k, v in metrics.items() if v}
        return cls(
            site_id=site_id,
            metrics=MappingProxyType(frozen),
            is_real=is_real,
            captured_at=captured_at,
        )

    @classmethod
    def empty(cls, site_id: str, captured_at: datetime) -> "SiteSnapshot":
        return cls.build(site_id, {}, is_real=False, captured_at=captured_at)

    def samples(self, key: MetricKey) -> List[MetricSample]:
        """Samples for ``key`` ordered by device id."""
        by_device = self.metrics.get(key, {})
        return [by_device[d] for d in sorted(by_device)]

    def value(self, key: MetricKey) -> Optional[float]:
        """
        Per-site single value for ``key``.

        Additive metrics are summed over devices, instantaneous metrics are
        averaged. Devices are visited in id order so the result does not
        depend on store ordering.

        Returns
        -------
        float or None
            Combined value, or None if no device reported the metric.
        """
        return _combine(key, [s.value for s in self.samples(key) if s.value is not None])

    def category_value(self, key: MetricKey, category: DeviceCategory) -> Optional[float]:
        """Like :meth:`value`, restricted to devices of one category."""
        return _combine(
            key,
            [s.value for s in self.samples(key) if s.value is not None and s.category is category],
        )

    def headline_value(self, key: MetricKey) -> Optional[float]:
        """
        Site-level figure used for verdicts and scores.

        For additive keys reported by a general (main) meter only that meter
        counts, since sub-meters are components of it. Otherwise identical to
        :meth:`value`.
        """
        if key.is_additive:
            general = self.category_value(key, DeviceCategory.GENERAL)
            if general is not None:
                return general
        return self.value(key)

    def latest_sample_time(self, key: Optional[MetricKey] = None) -> Optional[datetime]:
        """Newest sample time for ``key``, or across all metrics when omitted."""
        keys = [key] if key is not None else list(self.metrics)
        times = [as_utc(s.sample_time) for k in keys for s in self.metrics.get(k, {}).values()]
        return max(times) if times else None

    def has_metric(self, key: MetricKey) -> bool:
        return self.value(key) is not None

    def has_module_data(self, module: Module) -> bool:
        return any(k in self.metrics for k in keys_for_module(module))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "is_real": self.is_real,
            "captured_at": _iso(self.captured_at),
            "metrics": {
                k.value: {d: s.to_dict() for d, s in sorted(by_dev.items())}
                for k, by_dev in sorted(self.metrics.items(), key=lambda kv: kv[0].value)
            },
        }


@dataclass(frozen=True)
class ThresholdSet:
    """
    Per-site operating limits.

    Every numeric field is optional; ``None`` means "not configured" and the
    related metric always evaluates as good. The invariants (min < max,
    warning < critical, non-negative limits) are enforced by the threshold
    store on write; evaluation tolerates violations.
    """

    energy_power_limit_kw: Optional[float] = None
    energy_daily_budget_kwh: Optional[float] = None
    energy_anomaly_detection_enabled: bool = False
    air_temp_min_c: Optional[float] = None
    air_temp_max_c: Optional[float] = None
    air_humidity_min_pct: Optional[float] = None
    air_humidity_max_pct: Optional[float] = None
    air_co2_warning_ppm: Optional[float] = None
    air_co2_critical_ppm: Optional[float] = None
    water_leak_threshold_lh: Optional[float] = None
    water_daily_budget_liters: Optional[float] = None

    def validate(self) -> List[str]:
        """
        Check the write-time invariants.

        Returns
        -------
        list of str
            Human-readable violations; empty when the set is valid.
        """
        problems: List[str] = []

        pairs = [
            ("air_temp_min_c", "air_temp_max_c", self.air_temp_min_c, self.air_temp_max_c),
            ("air_humidity_min_pct", "air_humidity_max_pct", self.air_humidity_min_pct, self.air_humidity_max_pct),
            ("air_co2_warning_ppm", "air_co2_critical_ppm", self.air_co2_warning_ppm, self.air_co2_critical_ppm),
        ]
        for lo_name, hi_name, lo, hi in pairs:
            if lo is not None and hi is not None and lo >= hi:
                problems.append(f"{lo_name} ({lo}) must be lower than {hi_name} ({hi})")

        limits = {
            "energy_power_limit_kw": self.energy_power_limit_kw,
            "energy_daily_budget_kwh": self.energy_daily_budget_kwh,
            "water_leak_threshold_lh": self.water_leak_threshold_lh,
            "water_daily_budget_liters": self.water_daily_budget_liters,
        }
        for name, v in limits.items():
            if v is not None and v < 0:
                problems.append(f"{name} ({v}) must not be negative")

        return problems

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ThresholdSet":
        """
        Build a ThresholdSet from a plain mapping (YAML / JSON row).

        Unknown keys are ignored; numeric fields are coerced to float.
        """
        kwargs: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            if name not in raw:
                continue
            v = raw[name]
            if name == "energy_anomaly_detection_enabled":
                kwargs[name] = bool(v)
            else:
                kwargs[name] = None if v is None else float(v)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class ModuleStatus:
    """
    Score and band of one module (or of the composite).

    Parameters
    ----------
    score
        Integer score in [0, 100].
    level
        Status band derived from the score.
    is_live
        True only when scored from a LIVE reading.
    last_update
        Sample time of the reading the score is based on.
    liveness
        Freshness class of that reading (None for disabled modules and the
        composite).
    enabled
        Whether the module is enabled for the site.
    """

    score: int
    level: StatusLevel
    is_live: bool
    last_update: Optional[datetime] = None
    liveness: Optional[Liveness] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "is_live": self.is_live,
            "last_update": _iso(self.last_update),
            "liveness": self.liveness.value if self.liveness else None,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class AlertStatus:
    """Warning / critical breach counts for one site."""

    critical_count: int = 0
    warning_count: int = 0

    @property
    def has_alerts(self) -> bool:
        return self.critical_count + self.warning_count > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "critical_count": self.critical_count,
            "warning_count": self.warning_count,
            "has_alerts": self.has_alerts,
        }


@dataclass(frozen=True)
class SiteView:
    """
    Everything computed for one site in one evaluation pass.

    Parameters
    ----------
    snapshot
        Snapshot the evaluation was based on.
    modules
        Status per module (disabled modules included, with ``enabled=False``).
    composite
        Weighted composite status across enabled modules.
    alerts
        Alert counts derived from ``verdicts``.
    verdicts
        Verdict per evaluated metric (None = indeterminate).
    area_m2
        Floor area of the site, when known (used for energy intensity).
    """

    snapshot: SiteSnapshot
    modules: Mapping[Module, ModuleStatus]
    composite: ModuleStatus
    alerts: AlertStatus
    verdicts: Mapping[MetricKey, Optional[Verdict]] = field(default_factory=dict)
    area_m2: Optional[float] = None

    @property
    def site_id(self) -> str:
        return self.snapshot.site_id

    @property
    def is_online(self) -> bool:
        return any(m.is_live for m in self.modules.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "snapshot": self.snapshot.to_dict(),
            "modules": {m.value: st.to_dict() for m, st in self.modules.items()},
            "composite": self.composite.to_dict(),
            "alerts": self.alerts.to_dict(),
            "verdicts": {k.value: (v.value if v else None) for k, v in self.verdicts.items()},
            "area_m2": self.area_m2,
        }


@dataclass(frozen=True)
class RollupTotals:
    """
    Scope-level totals over a filtered site set.

    Parameters
    ----------
    scope
        Brand / Holding / region the totals describe (None for ad-hoc sets).
    sites_online
        Sites with at least one LIVE module.
    sites_total
        Sites rolled up.
    aggregated_energy_kwh
        Sum of general-meter energy over sites that report it.
    avg_co2_ppm
        Mean live CO2 over sites that report it (0.0 when none).
    alerts_critical, alerts_warning
        Summed alert counts.
    has_real_data
        True when at least one site carries real telemetry.
    sites_with_data
        Sites carrying real telemetry.
    energy_by_category
        Sub-meter energy sums (hvac / lighting / plugs), reported separately.
    avg_energy_intensity_kwh_m2
        Mean of per-site kWh/m2 over sites with a known area.
    air_quality_label
        Coarse label derived from ``avg_co2_ppm``.
    """

    scope: Optional[Scope] = None
    sites_online: int = 0
    sites_total: int = 0
    aggregated_energy_kwh: float = 0.0
    avg_co2_ppm: float = 0.0
    alerts_critical: int = 0
    alerts_warning: int = 0
    has_real_data: bool = False
    sites_with_data: int = 0
    energy_by_category: Mapping[str, float] = field(default_factory=dict)
    avg_energy_intensity_kwh_m2: Optional[float] = None
    air_quality_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": str(self.scope) if self.scope else None,
            "sites_online": self.sites_online,
            "sites_total": self.sites_total,
            "aggregated_energy_kwh": self.aggregated_energy_kwh,
            "avg_co2_ppm": self.avg_co2_ppm,
            "alerts_critical": self.alerts_critical,
            "alerts_warning": self.alerts_warning,
            "has_real_data": self.has_real_data,
            "sites_with_data": self.sites_with_data,
            "energy_by_category": dict(self.energy_by_category),
            "avg_energy_intensity_kwh_m2": self.avg_energy_intensity_kwh_m2,
            "air_quality_label": self.air_quality_label,
        }


@dataclass(frozen=True)
class RollupResult:
    """Best-effort rollup plus the sites that had to be excluded."""

    totals: RollupTotals
    failures: Tuple[FetchFailure, ...] = ()
    computed_at: Optional[datetime] = None

    @property
    def is_partial(self) -> bool:
        return len(self.failures) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totals": self.totals.to_dict(),
            "failures": [f.to_dict() for f in self.failures],
            "computed_at": _iso(self.computed_at),
        }
