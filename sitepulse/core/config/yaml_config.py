from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from sitepulse.core.liveness import (
    DEFAULT_COUNTER_WINDOW,
    DEFAULT_TELEMETRY_WINDOW,
)
from sitepulse.domain.errors import ConfigError
from sitepulse.domain.metrics import MetricKey, Module
from sitepulse.domain.models import Scope, ScopeKind, ThresholdSet

CONFIG_ENV_VAR = "SITEPULSE_CONFIG"
API_KEY_ENV_VAR = "SITEPULSE_METRIC_STORE_API_KEY"


@dataclass(frozen=True)
class FreshnessConfig:
    """Freshness windows used by the liveness classifier."""
    telemetry_window: timedelta = DEFAULT_TELEMETRY_WINDOW
    counter_window: timedelta = DEFAULT_COUNTER_WINDOW
    overrides: Mapping[MetricKey, timedelta] = field(default_factory=dict)


@dataclass(frozen=True)
class RollupConfig:
    """Concurrency limits of scope rollups."""
    max_workers: int = 8
    site_timeout_s: float = 10.0


@dataclass(frozen=True)
class RefreshConfig:
    """Periodic refresh worker settings."""
    interval_s: float = 60.0
    queue_size: int = 16
    scopes: List[Scope] = field(default_factory=list)


@dataclass(frozen=True)
class MetricStoreConfigData:
    """Metric store selection (in-memory or HTTP) and HTTP settings."""
    kind: str = "memory"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_s: float = 5.0
    verify_tls: bool = True


@dataclass(frozen=True)
class HierarchyConfig:
    """Static Holding -> Brand -> Site hierarchy plus regions."""
    holdings: Mapping[str, List[str]] = field(default_factory=dict)
    brands: Mapping[str, List[str]] = field(default_factory=dict)
    regions: Mapping[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class EngineConfig:
    """
    Root engine configuration loaded from YAML.

    This is the single source of truth for runtime-tunable values; nothing
    below the composition root reads files or environment variables.
    """
    log_level: str = "INFO"
    cache_ttl_s: float = 30.0
    placeholder_enabled: bool = False
    freshness: FreshnessConfig = field(default_factory=FreshnessConfig)
    weights: Mapping[str, float] = field(default_factory=dict)
    power_soft_ratio: Optional[float] = None
    rollup: RollupConfig = field(default_factory=RollupConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    metric_store: MetricStoreConfigData = field(default_factory=MetricStoreConfigData)
    default_thresholds: ThresholdSet = field(default_factory=ThresholdSet)
    site_thresholds: Mapping[str, ThresholdSet] = field(default_factory=dict)
    hierarchy: HierarchyConfig = field(default_factory=HierarchyConfig)
    default_modules: FrozenSet[Module] = frozenset(Module)
    site_modules: Mapping[str, FrozenSet[Module]] = field(default_factory=dict)
    site_areas_m2: Mapping[str, float] = field(default_factory=dict)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config.yaml must contain a YAML mapping at the root")
    return data


def _resolve_default_config_path() -> Path:
    """
    Resolve config.yaml location.

    Priority:
    1) SITEPULSE_CONFIG env var if provided
    2) ./config.yaml in current working directory
    """
    env = os.getenv(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser().resolve()
    return Path("config.yaml").resolve()


def _section(raw: Mapping[str, Any], name: str) -> Dict[str, Any]:
    v = raw.get(name) or {}
    if not isinstance(v, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return v


def _seconds(raw: Mapping[str, Any], name: str, default: timedelta) -> timedelta:
    if raw.get(name) is None:
        return default
    return timedelta(seconds=float(raw[name]))


def _modules(items: Any, where: str) -> FrozenSet[Module]:
    if not isinstance(items, list):
        raise ConfigError(f"{where} must be a list of modules")
    try:
        return frozenset(Module(str(m).lower()) for m in items)
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e


def _thresholds(raw: Any, where: str) -> ThresholdSet:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a mapping")
    ts = ThresholdSet.from_mapping(raw)
    problems = ts.validate()
    if problems:
        raise ConfigError(f"{where}: " + "; ".join(problems))
    return ts


def _id_lists(raw: Mapping[str, Any], where: str) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for k, v in raw.items():
        if not isinstance(v, list):
            raise ConfigError(f"{where}.{k} must be a list")
        out[str(k)] = [str(x) for x in v]
    return out


def load_engine_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration from YAML and convert into typed config objects.

    A ``.env`` file next to the config file is loaded first (without
    overriding variables already set) so the metric store API key can be
    supplied as ``SITEPULSE_METRIC_STORE_API_KEY``.

    Parameters
    ----------
    path
        Explicit path to config.yaml. If None, uses default resolution.

    Returns
    -------
    EngineConfig
        Parsed and validated configuration.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ConfigError
        If the file is not valid YAML or a field is missing or invalid.
    """
    cfg_path = Path(path).expanduser().resolve() if path else _resolve_default_config_path()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    load_dotenv(cfg_path.parent / ".env", override=False)
    raw = _read_yaml(cfg_path)

    try:
        return _build(raw)
    except ConfigError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid config {cfg_path}: {e!r}") from e


def _build(raw: Mapping[str, Any]) -> EngineConfig:
    # ---- freshness ----
    f = _section(raw, "freshness")
    overrides: Dict[MetricKey, timedelta] = {}
    for k, v in (f.get("overrides_s") or {}).items():
        key = MetricKey.parse(str(k))
        if key is None:
            raise ConfigError(f"freshness.overrides_s: unknown metric {k!r}")
        overrides[key] = timedelta(seconds=float(v))
    freshness = FreshnessConfig(
        telemetry_window=_seconds(f, "telemetry_window_s", DEFAULT_TELEMETRY_WINDOW),
        counter_window=_seconds(f, "counter_window_s", DEFAULT_COUNTER_WINDOW),
        overrides=overrides,
    )

    # ---- scoring / alerts ----
    s = _section(raw, "scoring")
    weights = {str(k): float(v) for k, v in (s.get("weights") or {}).items()}
    unknown = set(weights) - {m.value for m in Module}
    if unknown:
        raise ConfigError(f"scoring.weights: unknown modules {sorted(unknown)}")

    a = _section(raw, "alerts")
    soft = a.get("power_soft_ratio")
    power_soft_ratio = None if soft is None else float(soft)
    if power_soft_ratio is not None and not 0.0 < power_soft_ratio < 1.0:
        raise ConfigError(f"alerts.power_soft_ratio must be in (0, 1), got {power_soft_ratio}")

    # ---- rollup / refresh ----
    r = _section(raw, "rollup")
    rollup = RollupConfig(
        max_workers=int(r.get("max_workers", 8)),
        site_timeout_s=float(r.get("site_timeout_s", 10.0)),
    )
    if rollup.max_workers < 1:
        raise ConfigError("rollup.max_workers must be >= 1")

    rf = _section(raw, "refresh")
    scopes: List[Scope] = []
    for item in rf.get("scopes") or []:
        try:
            scopes.append(Scope(kind=ScopeKind(str(item["kind"]).upper()), scope_id=str(item["id"])))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"refresh.scopes: invalid entry {item!r}") from e
    refresh = RefreshConfig(
        interval_s=float(rf.get("interval_s", 60.0)),
        queue_size=int(rf.get("queue_size", 16)),
        scopes=scopes,
    )

    # ---- metric store ----
    m = _section(raw, "metric_store")
    kind = str(m.get("kind", "memory")).lower()
    if kind not in ("memory", "http"):
        raise ConfigError(f"metric_store.kind must be 'memory' or 'http', got {kind!r}")
    h = m.get("http") or {}
    if kind == "http" and not h.get("base_url"):
        raise ConfigError("metric_store.http.base_url is required when kind is 'http'")
    metric_store = MetricStoreConfigData(
        kind=kind,
        base_url=h.get("base_url"),
        api_key=os.getenv(API_KEY_ENV_VAR) or h.get("api_key"),
        timeout_s=float(h.get("timeout_s", 5.0)),
        verify_tls=bool(h.get("verify_tls", True)),
    )

    # ---- thresholds ----
    t = _section(raw, "thresholds")
    default_thresholds = _thresholds(t.get("defaults") or {}, "thresholds.defaults")
    site_thresholds = {
        str(site): _thresholds(v, f"thresholds.sites.{site}") for site, v in (t.get("sites") or {}).items()
    }

    # ---- hierarchy ----
    hi = _section(raw, "hierarchy")
    hierarchy = HierarchyConfig(
        holdings=_id_lists(hi.get("holdings") or {}, "hierarchy.holdings"),
        brands=_id_lists(hi.get("brands") or {}, "hierarchy.brands"),
        regions=_id_lists(hi.get("regions") or {}, "hierarchy.regions"),
    )

    # ---- modules / sites ----
    mo = _section(raw, "modules")
    default_modules = _modules(mo["default"], "modules.default") if "default" in mo else frozenset(Module)
    site_modules = {str(k): _modules(v, f"modules.sites.{k}") for k, v in (mo.get("sites") or {}).items()}

    si = _section(raw, "sites")
    site_areas = {str(k): float(v) for k, v in (si.get("areas_m2") or {}).items()}

    return EngineConfig(
        log_level=str(raw.get("log_level", "INFO")).upper(),
        cache_ttl_s=float(_section(raw, "cache").get("ttl_s", 30.0)),
        placeholder_enabled=bool(_section(raw, "placeholder").get("enabled", False)),
        freshness=freshness,
        weights=weights,
        power_soft_ratio=power_soft_ratio,
        rollup=rollup,
        refresh=refresh,
        metric_store=metric_store,
        default_thresholds=default_thresholds,
        site_thresholds=site_thresholds,
        hierarchy=hierarchy,
        default_modules=default_modules,
        site_modules=site_modules,
        site_areas_m2=site_areas,
    )
