"""
Unit tests for sitepulse.runtime.refresh_worker_thread.RefreshWorkerThread.

Cycles are mostly driven synchronously through run_cycle(); one test runs the
real thread and stops it through the stop event.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from queue import Queue
from typing import List, Optional

from sitepulse.domain.errors import ScopeResolutionError
from sitepulse.domain.models import RollupResult, RollupTotals, Scope, ScopeKind
from sitepulse.runtime.refresh_worker_thread import RefreshWorkerThread

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeMonitor:
    """Returns a trivial result per scope; fails for scopes listed in ``bad``."""

    def __init__(self, bad: Optional[List[str]] = None) -> None:
        self.bad = set(bad or [])
        self.calls: List[Scope] = []

    def rollup_scope(self, scope: Scope, now: Optional[datetime] = None) -> RollupResult:
        self.calls.append(scope)
        if scope.scope_id in self.bad:
            raise ScopeResolutionError(f"unknown {scope}")
        return RollupResult(totals=RollupTotals(scope=scope), computed_at=NOW)


class FakeCache:
    def __init__(self) -> None:
        self.invalidations = 0

    def invalidate(self, site_id: Optional[str] = None) -> None:
        self.invalidations += 1


B1 = Scope(ScopeKind.BRAND, "b1")
B2 = Scope(ScopeKind.BRAND, "b2")
H1 = Scope(ScopeKind.HOLDING, "h1")


def test_run_cycle_publishes_one_result_per_scope() -> None:
    q: "Queue[RollupResult]" = Queue(maxsize=10)
    cache = FakeCache()
    w = RefreshWorkerThread(FakeMonitor(), [B1, H1], q, threading.Event(), cache=cache)  # type: ignore[arg-type]

    assert w.run_cycle() == 2
    assert [q.get_nowait().totals.scope for _ in range(2)] == [B1, H1]
    assert cache.invalidations == 1
    assert w.cycles == 1


def test_full_queue_drops_newest() -> None:
    q: "Queue[RollupResult]" = Queue(maxsize=1)
    w = RefreshWorkerThread(FakeMonitor(), [B1, B2, H1], q, threading.Event())  # type: ignore[arg-type]

    assert w.run_cycle() == 1
    assert w.dropped == 2
    assert q.get_nowait().totals.scope == B1


def test_unresolvable_scope_is_skipped() -> None:
    q: "Queue[RollupResult]" = Queue()
    monitor = FakeMonitor(bad=["b2"])
    w = RefreshWorkerThread(monitor, [B1, B2, H1], q, threading.Event())  # type: ignore[arg-type]

    assert w.run_cycle() == 2
    assert monitor.calls == [B1, B2, H1]


def test_thread_runs_until_stopped() -> None:
    q: "Queue[RollupResult]" = Queue()
    stop = threading.Event()
    w = RefreshWorkerThread(FakeMonitor(), [B1], q, stop, interval_s=0.01)  # type: ignore[arg-type]

    w.start()
    deadline = time.monotonic() + 2.0
    while w.cycles < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    w.stop()
    w.join(timeout=2.0)

    assert w.cycles >= 3
    assert q.qsize() >= 3
