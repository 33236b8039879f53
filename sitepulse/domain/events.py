"""
Observability records.

The engine never raises for expected "no data" conditions and never aborts a
multi-site rollup because one site misbehaves. Instead, it produces small
immutable records describing *what went wrong* so callers can show a
"data unavailable" indicator or count configuration problems:

- :class:`ThresholdIssue` for a threshold pair that cannot be used
  (warning >= critical, min >= max, negative limit).
- :class:`FetchFailure` for a site excluded from a rollup because its
  snapshot or thresholds could not be read in time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class FailureReason(str, Enum):
    """
    Why a site was excluded from a rollup.

    Members
    -------
    METRIC_STORE : str
        The metric store raised while reading the site's samples.
    THRESHOLD_STORE : str
        The threshold store raised while reading the site's limits.
    TIMEOUT : str
        The site did not finish evaluating within the per-site timeout.
    UNEXPECTED : str
        Any other error raised while evaluating the site.
    """

    METRIC_STORE = "METRIC_STORE"
    THRESHOLD_STORE = "THRESHOLD_STORE"
    TIMEOUT = "TIMEOUT"
    UNEXPECTED = "UNEXPECTED"


@dataclass(frozen=True)
class ThresholdIssue:
    """
    A threshold configuration that had to be ignored during evaluation.

    Parameters
    ----------
    site_id
        Site whose thresholds are malformed (None when evaluated without a site).
    metric
        Wire key of the metric being evaluated.
    message
        Human-readable description of the violated invariant.
    """

    site_id: Optional[str]
    metric: str
    message: str


@dataclass(frozen=True)
class FetchFailure:
    """
    A site excluded from a rollup.

    Parameters
    ----------
    site_id
        Excluded site.
    reason
        Failure category.
    error
        ``repr`` of the underlying exception (or a timeout description).
    occurred_at
        When the failure was observed.
    """

    site_id: str
    reason: FailureReason
    error: str
    occurred_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "reason": self.reason.value,
            "error": self.error,
            "occurred_at": self.occurred_at.isoformat(timespec="seconds"),
        }
