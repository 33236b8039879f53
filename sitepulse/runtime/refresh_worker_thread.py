from __future__ import annotations

import logging
import threading
from queue import Full, Queue
from typing import Optional, Sequence

from sitepulse.core.state.snapshot_cache import SnapshotCache
from sitepulse.domain.errors import ScopeResolutionError
from sitepulse.domain.models import RollupResult, Scope
from sitepulse.services.site_monitor import SiteMonitor

log = logging.getLogger(__name__)


class RefreshWorkerThread:
    """
    Worker thread re-running scope rollups on a fixed interval.

    Responsibilities
    ----------------
    - Every ``interval_s`` seconds, roll up each configured scope through
      `SiteMonitor.rollup_scope(...)`.
    - Publish each `RollupResult` to a bounded output queue for consumers
      (dashboards, exporters).
    - Optionally invalidate the snapshot cache before each cycle so a cycle
      never reuses the previous cycle's reads.

    Concurrency Model
    -----------------
    - The thread waits on the stop event between cycles, so ``stop()`` takes
      effect within one wait instead of one full interval.
    - When the output queue is full the newest result is dropped and logged;
      the worker never blocks on a slow consumer.
    - A scope that cannot be resolved is logged and skipped; the other scopes
      of the cycle still run.

    Parameters
    ----------
    monitor
        Site monitor used to run rollups.
    scopes
        Scopes rolled up every cycle.
    results_q
        Output queue of rollup results.
    stop_event
        Thread stop signal. When set, the worker exits its loop.
    interval_s
        Delay between the start of two cycles.
    cache
        Optional snapshot cache invalidated at the start of each cycle.
    """

    def __init__(
        self,
        monitor: SiteMonitor,
        scopes: Sequence[Scope],
        results_q: "Queue[RollupResult]",
        stop_event: threading.Event,
        interval_s: float = 60.0,
        cache: Optional[SnapshotCache] = None,
    ):
        self._monitor = monitor
        self._scopes = list(scopes)
        self._q = results_q
        self._stop = stop_event
        self._interval_s = interval_s
        self._cache = cache
        self._dropped = 0
        self._cycles = 0
        self._thread = threading.Thread(target=self._run, name="refresh-worker", daemon=True)

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def cycles(self) -> int:
        return self._cycles

    def start(self) -> None:
        """
        Start the worker thread if it is not already running.
        """
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        """
        Signal the worker thread to stop.
        """
        self._stop.set()

    def join(self, timeout: Optional[float] = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def run_cycle(self) -> int:
        """
        Run one refresh cycle synchronously.

        Returns
        -------
        int
            Number of results published to the queue.
        """
        if self._cache is not None:
            self._cache.invalidate()

        published = 0
        for scope in self._scopes:
            if self._stop.is_set():
                break
            try:
                result = self._monitor.rollup_scope(scope)
            except ScopeResolutionError as e:
                log.warning("Refresh skipped %s: %s", scope, e)
                continue

            try:
                self._q.put_nowait(result)
                published += 1
            except Full:
                self._dropped += 1
                log.warning("Refresh queue full, dropped result for %s (%d dropped so far)", scope, self._dropped)

        self._cycles += 1
        return published

    def _run(self) -> None:
        """
        Worker loop running cycles until the stop event is set.
        """
        while not self._stop.is_set():
            try:
                self.run_cycle()
            except Exception:
                log.exception("Refresh cycle failed")
            self._stop.wait(self._interval_s)
