from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from sitepulse.core.alerts.alert_aggregator import aggregate
from sitepulse.core.alerts.threshold_rules import ThresholdEvaluator
from sitepulse.core.config.threshold_store import ThresholdStore
from sitepulse.core.rollup.rollup_aggregator import rollup
from sitepulse.core.scoring.module_scoring import ModuleScorer
from sitepulse.core.state.issue_log import IssueRecorder
from sitepulse.domain.errors import MetricStoreError, ScopeResolutionError, ThresholdStoreError
from sitepulse.domain.events import FailureReason, FetchFailure
from sitepulse.domain.metrics import Module
from sitepulse.domain.models import RollupResult, Scope, ScopeKind, SiteSnapshot, SiteView, ThresholdSet, now_utc

log = logging.getLogger(__name__)

ALL_MODULES: FrozenSet[Module] = frozenset(Module)


class SnapshotSource(Protocol):
    """Anything that yields site snapshots (a reader or a cache in front of one)."""

    def get_snapshot(self, site_id: str, now: Optional[datetime] = None) -> SiteSnapshot:
        ...


class HierarchyProvider(Protocol):
    """
    Resolve the site membership of a scope.

    Implementations raise on failure; an unknown scope is a failure, not an
    empty scope.
    """

    def site_ids(self, scope: Scope) -> Sequence[str]:
        ...


class ModuleConfigProvider(Protocol):
    """Which modules are enabled for a site."""

    def enabled_modules(self, site_id: str) -> FrozenSet[Module]:
        ...


@dataclass(frozen=True)
class StaticHierarchy:
    """
    Fixed Holding -> Brand -> Site hierarchy, plus optional region groupings.

    Parameters
    ----------
    brands
        Brand id -> site ids.
    holdings
        Holding id -> brand ids.
    regions
        Region id -> site ids.
    """

    brands: Mapping[str, Sequence[str]] = field(default_factory=dict)
    holdings: Mapping[str, Sequence[str]] = field(default_factory=dict)
    regions: Mapping[str, Sequence[str]] = field(default_factory=dict)

    def site_ids(self, scope: Scope) -> Sequence[str]:
        if scope.kind is ScopeKind.BRAND:
            if scope.scope_id not in self.brands:
                raise ScopeResolutionError(f"unknown brand {scope.scope_id!r}")
            return list(self.brands[scope.scope_id])

        if scope.kind is ScopeKind.HOLDING:
            if scope.scope_id not in self.holdings:
                raise ScopeResolutionError(f"unknown holding {scope.scope_id!r}")
            out: List[str] = []
            for brand in self.holdings[scope.scope_id]:
                if brand not in self.brands:
                    raise ScopeResolutionError(f"holding {scope.scope_id!r} references unknown brand {brand!r}")
                out.extend(self.brands[brand])
            return out

        if scope.scope_id not in self.regions:
            raise ScopeResolutionError(f"unknown region {scope.scope_id!r}")
        return list(self.regions[scope.scope_id])


@dataclass(frozen=True)
class StaticModuleConfig:
    """Module enablement from configuration; sites not listed get ``default``."""

    default: FrozenSet[Module] = ALL_MODULES
    per_site: Mapping[str, FrozenSet[Module]] = field(default_factory=dict)

    def enabled_modules(self, site_id: str) -> FrozenSet[Module]:
        return self.per_site.get(site_id, self.default)


def _failure_reason(err: BaseException) -> FailureReason:
    if isinstance(err, MetricStoreError):
        return FailureReason.METRIC_STORE
    if isinstance(err, ThresholdStoreError):
        return FailureReason.THRESHOLD_STORE
    return FailureReason.UNEXPECTED


@dataclass
class SiteMonitor:
    """
    Orchestrate per-site evaluation and scope rollups.

    Responsibilities
    ----------------
    - Read a site snapshot and its thresholds.
    - Evaluate verdicts, score modules and count alerts (one ``SiteView``).
    - Resolve scope membership and evaluate member sites concurrently.
    - Turn per-site failures into ``FetchFailure`` records instead of
      aborting the rollup.

    Notes
    -----
    This service contains orchestration only. Threshold rules, scoring and
    aggregation are pure functions living in ``sitepulse.core``.

    Concurrency Model
    -----------------
    Sites of one rollup are evaluated on a bounded ``ThreadPoolExecutor``.
    A site that has been running for longer than ``site_timeout_s`` is
    reported as ``TIMEOUT``; a site still queued when the whole rollup has
    used ``site_timeout_s`` per wave of workers is reported the same way.
    Worker threads cannot be interrupted, so a timed-out read finishes in the
    background and its result is discarded.

    Parameters
    ----------
    snapshots
        Snapshot reader or cache.
    thresholds
        Threshold store.
    evaluator
        Threshold evaluator.
    scorer
        Module scorer.
    hierarchy
        Scope membership provider (required for :meth:`rollup_scope`).
    modules
        Module enablement provider. None enables every module.
    area_lookup
        Optional ``site_id -> floor area (m2)`` used for energy intensity.
    recorder
        Optional sink for fetch failures.
    max_workers
        Upper bound of concurrent site evaluations.
    site_timeout_s
        Per-site evaluation timeout in seconds.
    """

    snapshots: SnapshotSource
    thresholds: ThresholdStore
    evaluator: ThresholdEvaluator = field(default_factory=ThresholdEvaluator)
    scorer: ModuleScorer = field(default_factory=ModuleScorer)
    hierarchy: Optional[HierarchyProvider] = None
    modules: Optional[ModuleConfigProvider] = None
    area_lookup: Optional[Callable[[str], Optional[float]]] = None
    recorder: Optional[IssueRecorder] = None
    max_workers: int = 8
    site_timeout_s: float = 10.0
    clock: Callable[[], float] = time.monotonic

    def _read_thresholds(self, site_id: str) -> ThresholdSet:
        try:
            return self.thresholds.get_thresholds(site_id)
        except ThresholdStoreError:
            raise
        except Exception as e:
            raise ThresholdStoreError(f"threshold store read failed for site {site_id}: {e!r}", site_id) from e

    def evaluate_site(
        self,
        site_id: str,
        enabled_modules: Optional[Iterable[Module]] = None,
        now: Optional[datetime] = None,
    ) -> SiteView:
        """
        Run the full pipeline for one site.

        Parameters
        ----------
        site_id
            Site to evaluate.
        enabled_modules
            Modules enabled for the site. Defaults to the module provider,
            or every module when none is configured.
        now
            Evaluation time (one value for every step).

        Returns
        -------
        SiteView
            Snapshot, module statuses, composite, verdicts and alert counts.
            Verdicts of disabled modules are dropped.

        Raises
        ------
        MetricStoreError
            If the snapshot cannot be read.
        ThresholdStoreError
            If the thresholds cannot be read.
        """
        ts = now or now_utc()
        if enabled_modules is not None:
            enabled = frozenset(enabled_modules)
        elif self.modules is not None:
            enabled = self.modules.enabled_modules(site_id)
        else:
            enabled = ALL_MODULES

        snapshot = self.snapshots.get_snapshot(site_id, now=ts)
        thresholds = self._read_thresholds(site_id)

        verdicts = {k: v for k, v in self.evaluator.evaluate_snapshot(snapshot, thresholds).items() if k.module in enabled}
        statuses = self.scorer.score_all(snapshot, enabled, now=ts)
        composite = self.scorer.composite(statuses)
        alerts = aggregate(verdicts)
        area = self.area_lookup(site_id) if self.area_lookup is not None else None

        log.debug(
            "Site %s: real=%s composite=%d (%s) alerts=%d/%d",
            site_id,
            snapshot.is_real,
            composite.score,
            composite.level.value,
            alerts.critical_count,
            alerts.warning_count,
        )
        return SiteView(
            snapshot=snapshot,
            modules=statuses,
            composite=composite,
            alerts=alerts,
            verdicts=verdicts,
            area_m2=area,
        )

    def resolve_scope(self, scope: Scope) -> List[str]:
        """
        Member site ids of a scope, without duplicates, in hierarchy order.

        Raises
        ------
        ScopeResolutionError
            If no hierarchy is configured or the provider fails.
        """
        if self.hierarchy is None:
            raise ScopeResolutionError(f"no hierarchy configured to resolve {scope}")
        try:
            ids = self.hierarchy.site_ids(scope)
        except ScopeResolutionError:
            raise
        except Exception as e:
            raise ScopeResolutionError(f"could not resolve {scope}: {e!r}") from e
        return list(dict.fromkeys(ids))

    def rollup_scope(self, scope: Scope, now: Optional[datetime] = None) -> RollupResult:
        """
        Best-effort rollup of every site in a scope.

        Parameters
        ----------
        scope
            Brand, Holding or region.
        now
            Evaluation time shared by every site.

        Returns
        -------
        RollupResult
            Totals over the sites that evaluated successfully, plus one
            ``FetchFailure`` per excluded site.

        Raises
        ------
        ScopeResolutionError
            If membership cannot be resolved. This is the only hard failure.
        """
        site_ids = self.resolve_scope(scope)
        return self.rollup_sites(site_ids, scope=scope, now=now)

    def rollup_sites(
        self,
        site_ids: Sequence[str],
        scope: Optional[Scope] = None,
        now: Optional[datetime] = None,
    ) -> RollupResult:
        """Roll up an explicit list of sites (see :meth:`rollup_scope`)."""
        ts = now or now_utc()
        views, failures = self._evaluate_many(site_ids, ts)

        # sites_total counts evaluated sites only; failures are listed apart.
        totals = rollup(views, scope)
        result = RollupResult(totals=totals, failures=tuple(failures), computed_at=ts)
        log.log(
            logging.WARNING if result.is_partial else logging.INFO,
            "Rollup %s: %d sites evaluated, %d failed, %d online, %.3f kWh",
            scope,
            totals.sites_total,
            len(failures),
            totals.sites_online,
            totals.aggregated_energy_kwh,
        )
        return result

    def _fail(self, site_id: str, reason: FailureReason, error: str, ts: datetime) -> FetchFailure:
        failure = FetchFailure(site_id=site_id, reason=reason, error=error, occurred_at=ts)
        log.warning("Site %s excluded from rollup (%s): %s", site_id, reason.value, error)
        if self.recorder is not None:
            self.recorder.record_fetch_failure(failure)
        return failure

    def _evaluate_many(self, site_ids: Sequence[str], ts: datetime) -> Tuple[List[SiteView], List[FetchFailure]]:
        ids = list(dict.fromkeys(site_ids))
        if not ids:
            return [], []

        workers = max(1, min(self.max_workers, len(ids)))
        waves = math.ceil(len(ids) / workers)
        started: Dict[str, float] = {}
        lock = threading.Lock()

        def task(site_id: str) -> SiteView:
            with lock:
                started[site_id] = self.clock()
            return self.evaluate_site(site_id, now=ts)

        views: Dict[str, SiteView] = {}
        failures: List[FetchFailure] = []
        poll_s = max(0.001, min(0.05, self.site_timeout_s / 4))

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rollup")
        try:
            t0 = self.clock()
            pending: Dict[Future, str] = {pool.submit(task, sid): sid for sid in ids}

            while pending:
                done, _ = wait(list(pending), timeout=poll_s, return_when=FIRST_COMPLETED)
                for fut in done:
                    sid = pending.pop(fut)
                    err = fut.exception()
                    if err is None:
                        views[sid] = fut.result()
                    else:
                        failures.append(self._fail(sid, _failure_reason(err), repr(err), ts))

                t = self.clock()
                for fut, sid in list(pending.items()):
                    with lock:
                        st = started.get(sid)
                    if st is not None:
                        expired = t - st > self.site_timeout_s
                    else:
                        expired = t - t0 > self.site_timeout_s * waves
                    if expired:
                        pending.pop(fut)
                        fut.cancel()
                        failures.append(
                            self._fail(sid, FailureReason.TIMEOUT, f"no result within {self.site_timeout_s}s", ts)
                        )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        failures.sort(key=lambda f: f.site_id)
        return [views[sid] for sid in ids if sid in views], failures
