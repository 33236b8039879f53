from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Protocol, Tuple

from sitepulse.domain.errors import ThresholdValidationError
from sitepulse.domain.models import ThresholdSet

log = logging.getLogger(__name__)


class ThresholdStore(Protocol):
    """
    Read/write contract for per-site threshold configuration.

    Methods
    -------
    get_thresholds(site_id)
        Thresholds of a site. Unknown sites yield a set (possibly all-None),
        never an error. I/O problems raise ``ThresholdStoreError``.
    put_thresholds(site_id, thresholds)
        Persist thresholds after validating the invariants. Violations raise
        ``ThresholdValidationError`` and leave the stored set untouched.
    """

    def get_thresholds(self, site_id: str) -> ThresholdSet:
        ...

    def put_thresholds(self, site_id: str, thresholds: ThresholdSet) -> None:
        ...


@dataclass
class InMemoryThresholdStore:
    """
    Thread-safe in-memory threshold store.

    Sites without an explicit entry get ``defaults``. Writes replace the
    whole set of a site.

    Notes
    -----
    Sets loaded through :meth:`load` are validated like any other write, so
    a malformed YAML entry fails at startup rather than at evaluation time.
    Evaluation still tolerates malformed sets (see the threshold rules).

    Attributes
    ----------
    defaults
        Set returned for sites without an entry.
    """

    defaults: ThresholdSet = field(default_factory=ThresholdSet)

    _sets: Dict[str, ThresholdSet] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def get_thresholds(self, site_id: str) -> ThresholdSet:
        with self._lock:
            return self._sets.get(site_id, self.defaults)

    def put_thresholds(self, site_id: str, thresholds: ThresholdSet) -> None:
        """
        Validate and store the thresholds of one site.

        Parameters
        ----------
        site_id
            Target site.
        thresholds
            Complete set; replaces any previous one.

        Raises
        ------
        ThresholdValidationError
            If ``thresholds.validate()`` reports any violation.
        """
        problems = thresholds.validate()
        if problems:
            log.warning("Rejected thresholds for site %s: %s", site_id, "; ".join(problems))
            raise ThresholdValidationError(site_id, problems)
        with self._lock:
            self._sets[site_id] = thresholds

    def load(self, items: Iterable[Tuple[str, ThresholdSet]]) -> None:
        """Store several sites at once; stops at the first invalid set."""
        for site_id, ts in items:
            self.put_thresholds(site_id, ts)

    def remove(self, site_id: str) -> None:
        with self._lock:
            self._sets.pop(site_id, None)

    def site_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._sets)

    def snapshot(self) -> Mapping[str, ThresholdSet]:
        with self._lock:
            return dict(self._sets)
