from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests

from sitepulse.core.state.metric_store import DeviceFilter
from sitepulse.domain.errors import MetricStoreError
from sitepulse.domain.metrics import MetricKey
from sitepulse.domain.models import DeviceCategory, MetricSample, as_utc

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpMetricStoreConfig:
    """
    Configuration of the REST "latest telemetry" endpoint.

    Parameters
    ----------
    base_url
        Service root; the adapter calls ``GET {base_url}/latest?site_id=...``.
    api_key
        Optional key, sent as ``Authorization: Bearer <key>`` and ``apikey``.
    timeout_s
        HTTP request timeout in seconds.
    verify_tls
        Whether to verify TLS certificates.
    """

    base_url: str
    api_key: Optional[str] = None
    timeout_s: float = 5.0
    verify_tls: bool = True


def _parse_ts(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def _parse_row(row: Any, device_hint: Optional[str] = None) -> Optional[MetricSample]:
    """
    Convert one JSON row into a sample.

    Rows with an unknown metric, no device or an unreadable timestamp are
    dropped (None), and so are non-numeric or non-finite values (NaN, inf).
    A null value is kept; the reader ignores it.
    """
    if not isinstance(row, dict):
        return None

    key = MetricKey.parse(row.get("metric"))
    if key is None:
        log.debug("Dropping row with unknown metric %r", row.get("metric"))
        return None

    device_id = row.get("device_id") or device_hint
    ts = _parse_ts(row.get("ts"))
    if not device_id or ts is None:
        log.debug("Dropping malformed %s row: %r", key.value, row)
        return None

    raw_value = row.get("value")
    try:
        value = None if raw_value is None else float(raw_value)
    except (TypeError, ValueError):
        log.debug("Dropping %s row with non-numeric value %r", key.value, raw_value)
        return None

    if value is not None and not math.isfinite(value):
        log.debug("Dropping %s row with non-finite value %r", key.value, raw_value)
        return None

    return MetricSample(
        key=key,
        value=value,
        unit=str(row.get("unit") or key.unit),
        device_id=str(device_id),
        sample_time=ts,
        category=DeviceCategory.parse(row.get("category")),
    )


def parse_latest_payload(payload: Any) -> List[MetricSample]:
    """
    Parse a ``latest`` response body.

    Accepted shapes
    ---------------
    - ``{"data": {device_id: [row, ...], ...}}``
    - ``{"data": [row, ...]}``

    Raises
    ------
    MetricStoreError
        If the body does not have one of the accepted shapes.
    """
    if not isinstance(payload, dict) or "data" not in payload:
        raise MetricStoreError("latest response has no 'data' field")

    data = payload["data"]
    rows: Iterable[tuple] = ()
    if isinstance(data, dict):
        rows = ((r, dev) for dev, items in data.items() for r in (items or []))
    elif isinstance(data, list):
        rows = ((r, None) for r in data)
    elif data is not None:
        raise MetricStoreError(f"latest response 'data' has unexpected type {type(data).__name__}")

    out: List[MetricSample] = []
    for row, dev in rows:
        s = _parse_row(row, dev)
        if s is not None:
            out.append(s)
    return out


class HttpMetricStore:
    """
    Metric store adapter reading the latest samples over HTTP.

    Notes
    -----
    - This class performs side effects (network I/O).
    - Every transport, HTTP status and decoding error is raised as
      ``MetricStoreError`` so rollups can record it as a fetch failure.
    - Device filters are applied client-side.
    """

    def __init__(self, cfg: HttpMetricStoreConfig):
        self._cfg = cfg

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._cfg.api_key:
            headers["Authorization"] = f"Bearer {self._cfg.api_key}"
            headers["apikey"] = self._cfg.api_key
        return headers

    def latest_samples(
        self,
        site_id: str,
        device_filter: Optional[DeviceFilter] = None,
    ) -> Sequence[MetricSample]:
        """
        Fetch the latest samples of a site.

        Raises
        ------
        MetricStoreError
            On network errors, non-2xx responses or malformed bodies.
        """
        url = f"{self._cfg.base_url.rstrip('/')}/latest"
        try:
            r = requests.get(
                url,
                params={"site_id": site_id},
                headers=self._headers(),
                timeout=self._cfg.timeout_s,
                verify=self._cfg.verify_tls,
            )
            r.raise_for_status()
            payload = r.json()
        except requests.RequestException as e:
            raise MetricStoreError(f"GET {url} failed for site {site_id}: {e!r}", site_id) from e
        except ValueError as e:
            raise MetricStoreError(f"GET {url} returned invalid JSON for site {site_id}", site_id) from e

        samples = parse_latest_payload(payload)
        if device_filter is not None:
            samples = [s for s in samples if device_filter.matches(s)]
        log.debug("Fetched %d samples for site %s", len(samples), site_id)
        return samples
