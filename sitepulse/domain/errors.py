"""
Exception hierarchy.

Only genuine failures are exceptions. Missing data, stale data and malformed
thresholds are modelled as values (``None``, ``Liveness.STALE``, a ``good``
verdict plus a :class:`~sitepulse.domain.events.ThresholdIssue`).
"""

from __future__ import annotations

from typing import List, Optional


class SitePulseError(Exception):
    """Base class for all engine errors."""


class ConfigError(SitePulseError):
    """Engine configuration file is missing required fields or malformed."""


class MetricStoreError(SitePulseError):
    """The metric store could not be read for a site."""

    def __init__(self, message: str, site_id: Optional[str] = None):
        super().__init__(message)
        self.site_id = site_id


class ThresholdStoreError(SitePulseError):
    """The threshold store could not be read or written for a site."""

    def __init__(self, message: str, site_id: Optional[str] = None):
        super().__init__(message)
        self.site_id = site_id


class ThresholdValidationError(ThresholdStoreError):
    """A threshold set violates min < max / warning < critical on write."""

    def __init__(self, site_id: str, problems: List[str]):
        super().__init__(f"invalid thresholds for site {site_id}: " + "; ".join(problems), site_id)
        self.problems = list(problems)


class ScopeResolutionError(SitePulseError):
    """The site membership of a Brand / Holding / region could not be resolved."""
