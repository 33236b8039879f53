from __future__ import annotations

import threading
from dataclasses import dataclass
from queue import Queue
from typing import Optional

from sitepulse.core.alerts.threshold_rules import ThresholdEvaluator
from sitepulse.core.config.threshold_store import InMemoryThresholdStore
from sitepulse.core.config.yaml_config import EngineConfig, load_engine_config
from sitepulse.core.liveness import FreshnessPolicy
from sitepulse.core.scoring.module_scoring import CompositeWeights, ModuleScorer
from sitepulse.core.state.issue_log import IssueLog
from sitepulse.core.state.metric_store import InMemoryMetricStore, MetricStore
from sitepulse.core.state.snapshot_cache import SnapshotCache
from sitepulse.core.state.snapshot_reader import SnapshotReader, StaticPlaceholderProvider
from sitepulse.domain.models import RollupResult
from sitepulse.runtime.refresh_worker_thread import RefreshWorkerThread
from sitepulse.services.site_monitor import SiteMonitor, StaticHierarchy, StaticModuleConfig
from sitepulse.shared.logger import setup_logging
from sitepulse.transport.http_metric_store import HttpMetricStore, HttpMetricStoreConfig


@dataclass(frozen=True)
class EngineWiring:
    """Everything a host process needs to run the engine."""
    config: EngineConfig
    metric_store: MetricStore
    thresholds: InMemoryThresholdStore
    cache: SnapshotCache
    issues: IssueLog
    monitor: SiteMonitor
    results: "Queue[RollupResult]"
    refresher: RefreshWorkerThread


def build_metric_store(cfg: EngineConfig) -> MetricStore:
    ms = cfg.metric_store
    if ms.kind == "http":
        return HttpMetricStore(
            HttpMetricStoreConfig(
                base_url=str(ms.base_url),
                api_key=ms.api_key,
                timeout_s=ms.timeout_s,
                verify_tls=ms.verify_tls,
            )
        )
    return InMemoryMetricStore()


def build_threshold_store(cfg: EngineConfig) -> InMemoryThresholdStore:
    store = InMemoryThresholdStore(defaults=cfg.default_thresholds)
    store.load(cfg.site_thresholds.items())
    return store


def build_scorer(cfg: EngineConfig) -> ModuleScorer:
    f = cfg.freshness
    return ModuleScorer(
        weights=CompositeWeights.from_mapping(cfg.weights),
        freshness=FreshnessPolicy(
            telemetry_window=f.telemetry_window,
            counter_window=f.counter_window,
            overrides=dict(f.overrides),
        ),
    )


def build_engine_system(
    config_path: Optional[str] = None,
    metric_store: Optional[MetricStore] = None,
    start_refresher: bool = False,
    configure_logging: bool = True,
) -> EngineWiring:
    """
    Load the configuration and wire every engine component.

    Parameters
    ----------
    config_path
        Explicit config.yaml path (default resolution otherwise).
    metric_store
        Metric store to use instead of the configured one (tests, demos).
    start_refresher
        Start the periodic refresh worker before returning.
    configure_logging
        Install the root logging handler at the configured level. Hosts that
        own logging themselves pass False.
    """
    cfg = load_engine_config(config_path)
    if configure_logging:
        setup_logging(cfg.log_level)

    # --- STATE ---
    store = metric_store if metric_store is not None else build_metric_store(cfg)
    thresholds = build_threshold_store(cfg)
    issues = IssueLog()

    reader = SnapshotReader(
        store=store,
        placeholder=StaticPlaceholderProvider() if cfg.placeholder_enabled else None,
    )
    cache = SnapshotCache(reader=reader, ttl_s=cfg.cache_ttl_s)

    # --- EVALUATION ---
    evaluator = ThresholdEvaluator(power_soft_ratio=cfg.power_soft_ratio, recorder=issues)
    scorer = build_scorer(cfg)

    # --- MONITOR ---
    areas = dict(cfg.site_areas_m2)
    monitor = SiteMonitor(
        snapshots=cache,
        thresholds=thresholds,
        evaluator=evaluator,
        scorer=scorer,
        hierarchy=StaticHierarchy(
            brands=cfg.hierarchy.brands,
            holdings=cfg.hierarchy.holdings,
            regions=cfg.hierarchy.regions,
        ),
        modules=StaticModuleConfig(default=cfg.default_modules, per_site=cfg.site_modules),
        area_lookup=areas.get,
        recorder=issues,
        max_workers=cfg.rollup.max_workers,
        site_timeout_s=cfg.rollup.site_timeout_s,
    )

    # --- RUNTIME ---
    results: "Queue[RollupResult]" = Queue(maxsize=cfg.refresh.queue_size)
    refresher = RefreshWorkerThread(
        monitor=monitor,
        scopes=cfg.refresh.scopes,
        results_q=results,
        stop_event=threading.Event(),
        interval_s=cfg.refresh.interval_s,
        cache=cache,
    )
    if start_refresher:
        refresher.start()

    return EngineWiring(
        config=cfg,
        metric_store=store,
        thresholds=thresholds,
        cache=cache,
        issues=issues,
        monitor=monitor,
        results=results,
        refresher=refresher,
    )
