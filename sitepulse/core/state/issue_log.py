from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Protocol

from sitepulse.domain.events import FetchFailure, ThresholdIssue


class IssueRecorder(Protocol):
    """
    Sink for observability records produced during evaluation.

    Implementations must be safe to call from several threads at once; the
    rollup evaluates sites concurrently.
    """

    def record_threshold_issue(self, issue: ThresholdIssue) -> None:
        ...

    def record_fetch_failure(self, failure: FetchFailure) -> None:
        ...


@dataclass
class IssueLog:
    """
    In-memory, thread-safe issue recorder.

    Keeps the most recent ``max_items`` records of each kind plus running
    totals. Older records are discarded first; totals keep counting.

    Attributes
    ----------
    max_items
        History bound per record kind.
    """

    max_items: int = 500

    _threshold_issues: List[ThresholdIssue] = field(default_factory=list, init=False, repr=False)
    _fetch_failures: List[FetchFailure] = field(default_factory=list, init=False, repr=False)
    _totals: Counter = field(default_factory=Counter, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_items < 1:
            raise ValueError(f"max_items must be >= 1, got {self.max_items}")

    def record_threshold_issue(self, issue: ThresholdIssue) -> None:
        with self._lock:
            self._threshold_issues.append(issue)
            del self._threshold_issues[: -self.max_items]
            self._totals["threshold_issue"] += 1
            self._totals[f"threshold_issue:{issue.metric}"] += 1

    def record_fetch_failure(self, failure: FetchFailure) -> None:
        with self._lock:
            self._fetch_failures.append(failure)
            del self._fetch_failures[: -self.max_items]
            self._totals["fetch_failure"] += 1
            self._totals[f"fetch_failure:{failure.reason.value}"] += 1

    @property
    def threshold_issues(self) -> List[ThresholdIssue]:
        with self._lock:
            return list(self._threshold_issues)

    @property
    def fetch_failures(self) -> List[FetchFailure]:
        with self._lock:
            return list(self._fetch_failures)

    def totals(self) -> Dict[str, int]:
        """
        Running counts by record kind, and by metric / failure reason.

        Returns
        -------
        dict[str, int]
            e.g. ``{"threshold_issue": 2, "threshold_issue:iaq.co2": 2}``.
        """
        with self._lock:
            return dict(self._totals)

    def clear(self) -> None:
        with self._lock:
            self._threshold_issues.clear()
            self._fetch_failures.clear()
            self._totals.clear()
