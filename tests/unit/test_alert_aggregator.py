"""
Unit tests for sitepulse.core.alerts.alert_aggregator.aggregate.
"""

from __future__ import annotations

from sitepulse.core.alerts.alert_aggregator import aggregate
from sitepulse.domain.metrics import MetricKey
from sitepulse.domain.models import AlertStatus, Verdict


def test_counts_critical_and_warning_only() -> None:
    status = aggregate(
        {
            MetricKey.CO2: Verdict.CRITICAL,
            MetricKey.TEMPERATURE: Verdict.WARNING,
            MetricKey.HUMIDITY: Verdict.WARNING,
            MetricKey.POWER_KW: Verdict.GOOD,
            MetricKey.LEAK_FLOW_LH: None,
        }
    )

    assert status == AlertStatus(critical_count=1, warning_count=2)
    assert status.has_alerts


def test_empty_and_all_good_have_no_alerts() -> None:
    assert aggregate({}) == AlertStatus()
    assert not aggregate([Verdict.GOOD, None, Verdict.GOOD]).has_alerts


def test_accepts_plain_iterable() -> None:
    assert aggregate([Verdict.CRITICAL, Verdict.CRITICAL]).critical_count == 2
