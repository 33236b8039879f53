"""
Metric store read contract.

The engine does not own telemetry storage. It consumes a narrow read
interface, :class:`MetricStore`, returning the latest samples of a site.
Implementations live at the edges:

- :class:`InMemoryMetricStore` here, used by tests and demos
- :class:`~sitepulse.transport.http_metric_store.HttpMetricStore` for a
  REST "latest telemetry" endpoint
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence

from sitepulse.domain.models import DeviceCategory, MetricSample


@dataclass(frozen=True)
class DeviceFilter:
    """
    Optional restriction of a read to some devices of a site.

    Parameters
    ----------
    device_ids
        Only these devices (None = all).
    categories
        Only devices of these categories (None = all).
    """

    device_ids: Optional[FrozenSet[str]] = None
    categories: Optional[FrozenSet[DeviceCategory]] = None

    def matches(self, sample: MetricSample) -> bool:
        if self.device_ids is not None and sample.device_id not in self.device_ids:
            return False
        if self.categories is not None and sample.category not in self.categories:
            return False
        return True


class MetricStore(Protocol):
    """
    Read interface of the external metric store.

    Methods
    -------
    latest_samples(site_id, device_filter)
        Latest samples of the site's devices. May return several samples per
        (device, key); the reader keeps the newest. An unknown site returns an
        empty sequence. I/O problems raise.
    """

    def latest_samples(
        self,
        site_id: str,
        device_filter: Optional[DeviceFilter] = None,
    ) -> Sequence[MetricSample]:
        ...


@dataclass
class InMemoryMetricStore:
    """
    Thread-safe in-memory metric store.

    Samples are appended per site; nothing is deduplicated on write.

    Attributes
    ----------
    _samples
        Mapping site id -> list of samples in insertion order.
    """

    _samples: Dict[str, List[MetricSample]] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def add(self, site_id: str, sample: MetricSample) -> None:
        with self._lock:
            self._samples.setdefault(site_id, []).append(sample)

    def add_many(self, site_id: str, samples: Iterable[MetricSample]) -> None:
        with self._lock:
            self._samples.setdefault(site_id, []).extend(samples)

    def clear(self, site_id: Optional[str] = None) -> None:
        with self._lock:
            if site_id is None:
                self._samples.clear()
            else:
                self._samples.pop(site_id, None)

    def latest_samples(
        self,
        site_id: str,
        device_filter: Optional[DeviceFilter] = None,
    ) -> Sequence[MetricSample]:
        with self._lock:
            rows = list(self._samples.get(site_id, []))
        if device_filter is None:
            return rows
        return [s for s in rows if device_filter.matches(s)]
