from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from sitepulse.core.state.snapshot_reader import SnapshotReader
from sitepulse.domain.models import SiteSnapshot

log = logging.getLogger(__name__)


@dataclass
class SnapshotCache:
    """
    Thread-safe read-through cache of the latest snapshot per site.

    Several rollups in the same refresh cycle often ask for the same site;
    the cache serves them from one store read for ``ttl_s`` seconds.

    Concurrency Model
    -----------------
    All reads/writes of the entry map are guarded by a single re-entrant lock
    (`threading.RLock`). The lock is never held while reading the store: on a
    miss each caller fetches on its own, so no caller ever waits for another
    caller's in-flight read. Two concurrent misses may both fetch; the later
    write wins, which is harmless because snapshots are immutable.

    Design Notes
    ------------
    - Failed reads are not cached; the exception reaches the caller.
    - Entries are stored with a monotonic timestamp so wall-clock jumps do
      not extend or shorten their lifetime.

    Attributes
    ----------
    reader
        Snapshot reader used on a miss.
    ttl_s
        Entry lifetime in seconds. ``0`` disables caching.
    clock
        Monotonic clock (injectable for tests).
    """

    reader: SnapshotReader
    ttl_s: float = 30.0
    clock: Callable[[], float] = time.monotonic

    _entries: Dict[str, Tuple[SiteSnapshot, float]] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _hits: int = field(default=0, init=False, repr=False)
    _misses: int = field(default=0, init=False, repr=False)

    def get_snapshot(self, site_id: str, now: Optional[datetime] = None) -> SiteSnapshot:
        """
        Return a cached snapshot if still fresh, otherwise read a new one.

        Parameters
        ----------
        site_id
            Site to read.
        now
            Capture time passed to the reader on a miss.

        Returns
        -------
        SiteSnapshot
            Cached or freshly read snapshot.
        """
        t = self.clock()
        with self._lock:
            entry = self._entries.get(site_id)
            if entry is not None and t - entry[1] < self.ttl_s:
                self._hits += 1
                return entry[0]
            self._misses += 1

        snap = self.reader.get_snapshot(site_id, now=now)

        with self._lock:
            self._entries[site_id] = (snap, self.clock())
        return snap

    def invalidate(self, site_id: Optional[str] = None) -> None:
        """
        Drop one entry, or every entry when ``site_id`` is None.
        """
        with self._lock:
            if site_id is None:
                self._entries.clear()
            else:
                self._entries.pop(site_id, None)
        log.debug("Snapshot cache invalidated (%s)", site_id or "all")

    @property
    def snapshots(self) -> Dict[str, SiteSnapshot]:
        """
        Copy of the cached snapshots, regardless of age.

        Returns
        -------
        dict[str, SiteSnapshot]
            Mapping of site id -> cached snapshot.
        """
        with self._lock:
            return {k: v[0] for k, v in self._entries.items()}

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"hits": self._hits, "misses": self._misses, "entries": len(self._entries)}
