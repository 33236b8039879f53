from __future__ import annotations

from typing import Iterable, Mapping, Optional, Union

from sitepulse.domain.metrics import MetricKey
from sitepulse.domain.models import AlertStatus, Verdict


def aggregate(
    verdicts: Union[Mapping[MetricKey, Optional[Verdict]], Iterable[Optional[Verdict]]],
) -> AlertStatus:
    """
    Count breaches among a site's verdicts.

    Parameters
    ----------
    verdicts
        Either the mapping returned by ``ThresholdEvaluator.evaluate_snapshot``
        or a plain iterable of verdicts.

    Returns
    -------
    AlertStatus
        Critical and warning counts. ``good`` and indeterminate (None)
        verdicts are not counted.
    """
    values = verdicts.values() if isinstance(verdicts, Mapping) else verdicts

    critical = 0
    warning = 0
    for v in values:
        if v is Verdict.CRITICAL:
            critical += 1
        elif v is Verdict.WARNING:
            warning += 1
    return AlertStatus(critical_count=critical, warning_count=warning)
