"""
Unit tests for sitepulse.transport.http_metric_store.

These tests validate the HTTP metric store adapter using mocked HTTP calls:
- correct request parameters passed to requests.get
- auth header handling
- both accepted response shapes, aliases and row filtering
- every transport / HTTP / decoding failure surfaces as MetricStoreError

No real network requests are made.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest
import requests

from sitepulse.core.state.metric_store import DeviceFilter
from sitepulse.domain.errors import MetricStoreError
from sitepulse.domain.metrics import MetricKey
from sitepulse.domain.models import DeviceCategory
from sitepulse.transport.http_metric_store import HttpMetricStore, HttpMetricStoreConfig, parse_latest_payload

BODY = {
    "data": {
        "main-meter": [
            {"metric": "energy.power_kw", "value": 42.5, "unit": "kW", "ts": "2026-03-01T11:58:00Z", "category": "general"},
            {"metric": "energy.active_energy", "value": "1250.5", "unit": "kWh", "ts": "2026-03-01T11:58:00Z"},
        ],
        "iaq-1": [
            {"device_id": "iaq-1", "metric": "CO2", "value": 640, "unit": "ppm", "ts": "2026-03-01T11:59:00+00:00"},
            {"metric": "pressure", "value": 1013, "unit": "hPa", "ts": "2026-03-01T11:59:00Z"},
            {"metric": "temp", "value": None, "unit": "C", "ts": "2026-03-01T11:59:00Z"},
        ],
    }
}


def _response(body: Any) -> MagicMock:
    r = MagicMock()
    r.raise_for_status.return_value = None
    r.json.return_value = body
    return r


def test_get_request_parameters(monkeypatch) -> None:
    captured: Dict[str, Any] = {}

    def fake_get(url: str, params: Dict[str, str], headers: Dict[str, str], timeout: float, verify: bool):
        captured.update(url=url, params=params, headers=headers, timeout=timeout, verify=verify)
        return _response({"data": []})

    monkeypatch.setattr("requests.get", fake_get)

    store = HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com/api/", timeout_s=3.0, verify_tls=False))
    assert store.latest_samples("site-7") == []

    assert captured["url"] == "https://example.com/api/latest"
    assert captured["params"] == {"site_id": "site-7"}
    assert captured["headers"] == {"Accept": "application/json"}
    assert captured["timeout"] == 3.0
    assert captured["verify"] is False


def test_api_key_headers(monkeypatch) -> None:
    def fake_get(url, params, headers, timeout, verify):
        assert headers["Authorization"] == "Bearer KEY"
        assert headers["apikey"] == "KEY"
        return _response({"data": []})

    monkeypatch.setattr("requests.get", fake_get)

    HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com", api_key="KEY")).latest_samples("s1")


def test_parses_device_map_shape(monkeypatch) -> None:
    monkeypatch.setattr("requests.get", lambda *a, **k: _response(BODY))

    samples = HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com")).latest_samples("s1")
    by_key = {s.key: s for s in samples}

    assert set(by_key) == {MetricKey.POWER_KW, MetricKey.ACTIVE_ENERGY, MetricKey.CO2, MetricKey.TEMPERATURE}
    assert by_key[MetricKey.POWER_KW].device_id == "main-meter"
    assert by_key[MetricKey.POWER_KW].category is DeviceCategory.GENERAL
    assert by_key[MetricKey.POWER_KW].sample_time == datetime(2026, 3, 1, 11, 58, tzinfo=timezone.utc)
    assert by_key[MetricKey.ACTIVE_ENERGY].value == 1250.5
    assert by_key[MetricKey.CO2].value == 640.0
    assert by_key[MetricKey.TEMPERATURE].value is None


def test_parses_flat_list_shape() -> None:
    samples = parse_latest_payload(
        {
            "data": [
                {"device_id": "wm", "metric": "water.flow_rate", "value": 3, "unit": "L/h", "ts": 1772366400},
                {"metric": "water.flow_rate", "value": 3, "ts": "2026-03-01T12:00:00Z"},
                {"device_id": "wm", "metric": "water.flow_rate", "value": 3, "ts": "yesterday"},
                {"device_id": "wm", "metric": "water.flow_rate", "value": "n/a", "ts": "2026-03-01T12:00:00Z"},
                "garbage",
            ]
        }
    )

    assert len(samples) == 1
    assert samples[0].sample_time == datetime.fromtimestamp(1772366400, tz=timezone.utc)


def test_null_data_is_empty() -> None:
    assert parse_latest_payload({"data": None}) == []


@pytest.mark.parametrize("body", [[], {"rows": []}, {"data": "oops"}])
def test_malformed_body_raises(monkeypatch, body) -> None:
    monkeypatch.setattr("requests.get", lambda *a, **k: _response(body))

    with pytest.raises(MetricStoreError):
        HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com")).latest_samples("s1")


def test_http_error_raises_metric_store_error(monkeypatch) -> None:
    r = _response({})
    r.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
    monkeypatch.setattr("requests.get", lambda *a, **k: r)

    with pytest.raises(MetricStoreError) as ei:
        HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com")).latest_samples("s1")
    assert ei.value.site_id == "s1"


def test_connection_error_raises_metric_store_error(monkeypatch) -> None:
    def fake_get(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr("requests.get", fake_get)

    with pytest.raises(MetricStoreError):
        HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com")).latest_samples("s1")


def test_invalid_json_raises_metric_store_error(monkeypatch) -> None:
    r = _response(None)
    r.json.side_effect = ValueError("no json")
    monkeypatch.setattr("requests.get", lambda *a, **k: r)

    with pytest.raises(MetricStoreError):
        HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com")).latest_samples("s1")


def test_device_filter_applied_client_side(monkeypatch) -> None:
    monkeypatch.setattr("requests.get", lambda *a, **k: _response(BODY))

    store = HttpMetricStore(HttpMetricStoreConfig(base_url="https://example.com"))
    samples = store.latest_samples("s1", DeviceFilter(device_ids=frozenset({"iaq-1"})))

    assert {s.device_id for s in samples} == {"iaq-1"}


def test_non_finite_values_are_dropped() -> None:
    samples = parse_latest_payload(
        {
            "data": [
                {"device_id": "m", "metric": "energy.power_kw", "value": float("nan"), "ts": "2026-03-01T12:00:00Z"},
                {"device_id": "m", "metric": "energy.power_kw", "value": "Infinity", "ts": "2026-03-01T12:00:00Z"},
                {"device_id": "i", "metric": "iaq.co2", "value": 640, "ts": "2026-03-01T12:00:00Z"},
            ]
        }
    )

    assert [s.key for s in samples] == [MetricKey.CO2]
