"""
Threshold evaluation contracts (context, outcome, rule protocol).

This module defines the contract between:

- Threshold rules (stateless strategies) producing -> class:`RuleOutcome`
- The evaluator (dispatch + observability) turning outcomes into verdicts

Rules never raise for bad configuration. A threshold pair that cannot be
used (``min >= max``, ``warning >= critical``, a negative limit) yields a
``good`` outcome carrying a ``problem`` description; the evaluator logs and
records it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from sitepulse.domain.metrics import MetricKey
from sitepulse.domain.models import ThresholdSet, Verdict


@dataclass(frozen=True)
class EvaluationContext:
    """
    Context passed into a rule.

    Parameters
    ----------
    key
        Metric being evaluated.
    thresholds
        Threshold set of the site.
    site_id
        Site being evaluated (None for ad-hoc evaluation).
    """

    key: MetricKey
    thresholds: ThresholdSet
    site_id: Optional[str] = None


@dataclass(frozen=True)
class RuleOutcome:
    """
    Result of applying one rule to one value.

    Parameters
    ----------
    verdict
        Verdict for the value.
    problem
        Description of a misconfigured threshold pair, if the rule had to
        ignore it. ``verdict`` is then always ``GOOD``.
    """

    verdict: Verdict
    problem: Optional[str] = None


GOOD = RuleOutcome(Verdict.GOOD)


class ThresholdRule(Protocol):
    """
    Protocol interface for threshold rules.

    Rules are **stateless**: everything they need comes from the value and
    the context. A rule whose thresholds are not configured returns ``GOOD``.
    """

    def apply(self, value: float, ctx: EvaluationContext) -> RuleOutcome:
        ...
