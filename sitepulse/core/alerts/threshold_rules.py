from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from sitepulse.core.alerts.evaluation_base import GOOD, EvaluationContext, RuleOutcome, ThresholdRule
from sitepulse.core.state.issue_log import IssueRecorder
from sitepulse.domain.events import ThresholdIssue
from sitepulse.domain.metrics import MetricKey
from sitepulse.domain.models import SiteSnapshot, ThresholdSet, Verdict

log = logging.getLogger(__name__)


def _threshold(ts: ThresholdSet, name: Optional[str]) -> Optional[float]:
    if name is None:
        return None
    return getattr(ts, name)


@dataclass(frozen=True)
class RangeRule(ThresholdRule):
    """
    Comfort band check (temperature, humidity).

    Logic
    -----
    - both bounds: ``good`` iff ``min <= value <= max``, else ``warning``
    - one bound: one-sided check against that bound
    - ``min >= max``: misconfigured, ``good``
    """

    min_field: str
    max_field: str

    def apply(self, value: float, ctx: EvaluationContext) -> RuleOutcome:
        lo = _threshold(ctx.thresholds, self.min_field)
        hi = _threshold(ctx.thresholds, self.max_field)

        if lo is not None and hi is not None and lo >= hi:
            return RuleOutcome(Verdict.GOOD, f"{self.min_field} ({lo}) >= {self.max_field} ({hi})")

        if lo is not None and value < lo:
            return RuleOutcome(Verdict.WARNING)
        if hi is not None and value > hi:
            return RuleOutcome(Verdict.WARNING)
        return GOOD


@dataclass(frozen=True)
class DualThresholdRule(ThresholdRule):
    """
    Ascending warning / critical cuts (CO2, leak flow).

    Logic
    -----
    - ``value < warning``             -> good
    - ``warning <= value < critical`` -> warning
    - ``value >= critical``           -> critical
    - one bound: sole cut at that bound's severity
    - ``warning >= critical``: misconfigured, ``good``

    ``warning_field`` may be None for metrics with a critical cut only.
    """

    warning_field: Optional[str]
    critical_field: Optional[str]

    def apply(self, value: float, ctx: EvaluationContext) -> RuleOutcome:
        warn = _threshold(ctx.thresholds, self.warning_field)
        crit = _threshold(ctx.thresholds, self.critical_field)

        if warn is not None and crit is not None and warn >= crit:
            return RuleOutcome(Verdict.GOOD, f"{self.warning_field} ({warn}) >= {self.critical_field} ({crit})")

        if crit is not None and value >= crit:
            return RuleOutcome(Verdict.CRITICAL)
        if warn is not None and value >= warn:
            return RuleOutcome(Verdict.WARNING)
        return GOOD


@dataclass(frozen=True)
class CapacityRule(ThresholdRule):
    """
    Upper limit / budget check (power, daily energy, daily water).

    Logic
    -----
    - ``value > limit`` -> critical
    - ``soft_ratio * limit < value <= limit`` -> warning, only when
      ``soft_ratio`` is set
    - negative limit: misconfigured, ``good``
    """

    limit_field: str
    soft_ratio: Optional[float] = None

    def apply(self, value: float, ctx: EvaluationContext) -> RuleOutcome:
        limit = _threshold(ctx.thresholds, self.limit_field)
        if limit is None:
            return GOOD
        if limit < 0:
            return RuleOutcome(Verdict.GOOD, f"{self.limit_field} ({limit}) is negative")

        if value > limit:
            return RuleOutcome(Verdict.CRITICAL)
        if self.soft_ratio is not None and value > self.soft_ratio * limit:
            return RuleOutcome(Verdict.WARNING)
        return GOOD


def default_rules(power_soft_ratio: Optional[float] = None) -> Dict[MetricKey, ThresholdRule]:
    """
    Build the metric -> rule table.

    Parameters
    ----------
    power_soft_ratio
        Fraction of the power limit above which power is a warning
        (e.g. ``0.9``). None disables the warning band.

    Returns
    -------
    dict[MetricKey, ThresholdRule]
        One rule per metric that has thresholds. Keys without a rule always
        evaluate as good.

    Raises
    ------
    ValueError
        If ``power_soft_ratio`` is outside ``(0, 1)``.
    """
    if power_soft_ratio is not None and not 0.0 < power_soft_ratio < 1.0:
        raise ValueError(f"power_soft_ratio must be in (0, 1), got {power_soft_ratio}")

    return {
        MetricKey.TEMPERATURE: RangeRule("air_temp_min_c", "air_temp_max_c"),
        MetricKey.HUMIDITY: RangeRule("air_humidity_min_pct", "air_humidity_max_pct"),
        MetricKey.CO2: DualThresholdRule("air_co2_warning_ppm", "air_co2_critical_ppm"),
        MetricKey.LEAK_FLOW_LH: DualThresholdRule(None, "water_leak_threshold_lh"),
        MetricKey.POWER_KW: CapacityRule("energy_power_limit_kw", soft_ratio=power_soft_ratio),
        MetricKey.DAILY_ENERGY_KWH: CapacityRule("energy_daily_budget_kwh"),
        MetricKey.DAILY_WATER_LITERS: CapacityRule("water_daily_budget_liters"),
    }


class ThresholdEvaluator:
    """
    Evaluate metric values against per-site thresholds.

    The evaluator dispatches on the metric key through a rule table. It is
    stateless apart from the optional issue recorder, so one instance can be
    shared by every worker of a rollup.

    Parameters
    ----------
    rules
        Metric -> rule table. Defaults to :func:`default_rules`.
    power_soft_ratio
        Forwarded to :func:`default_rules` when ``rules`` is not given.
    recorder
        Optional sink for misconfigured threshold pairs.
    """

    def __init__(
        self,
        rules: Optional[Mapping[MetricKey, ThresholdRule]] = None,
        power_soft_ratio: Optional[float] = None,
        recorder: Optional[IssueRecorder] = None,
    ):
        self._rules: Dict[MetricKey, ThresholdRule] = (
            dict(rules) if rules is not None else default_rules(power_soft_ratio)
        )
        self._recorder = recorder

    def evaluate(
        self,
        key: MetricKey,
        value: Optional[float],
        thresholds: ThresholdSet,
        site_id: Optional[str] = None,
    ) -> Optional[Verdict]:
        """
        Evaluate one value.

        Parameters
        ----------
        key
            Metric key of the value.
        value
            Measured value; None when nothing was reported.
        thresholds
            Thresholds of the site.
        site_id
            Used only to annotate logs and issue records.

        Returns
        -------
        Verdict or None
            None when ``value`` is None or not finite (indeterminate);
            ``GOOD`` when no rule or no threshold applies.
        """
        if value is None or not math.isfinite(value):
            return None

        rule = self._rules.get(key)
        if rule is None:
            return Verdict.GOOD

        outcome = rule.apply(value, EvaluationContext(key=key, thresholds=thresholds, site_id=site_id))
        if outcome.problem is not None:
            self._report(site_id, key, outcome.problem)
        return outcome.verdict

    def evaluate_snapshot(self, snapshot: SiteSnapshot, thresholds: ThresholdSet) -> Dict[MetricKey, Optional[Verdict]]:
        """
        Evaluate every ruled metric present in a real snapshot.

        Placeholder and empty snapshots produce no verdicts, so demo values
        can never raise alerts.

        Returns
        -------
        dict[MetricKey, Verdict | None]
            Verdict per metric, in catalog order.
        """
        if not snapshot.is_real:
            return {}

        out: Dict[MetricKey, Optional[Verdict]] = {}
        for key in MetricKey:
            if key not in self._rules or key not in snapshot.metrics:
                continue
            out[key] = self.evaluate(key, snapshot.headline_value(key), thresholds, site_id=snapshot.site_id)
        return out

    def _report(self, site_id: Optional[str], key: MetricKey, problem: str) -> None:
        log.warning("Misconfigured threshold for site %s, %s: %s (treated as good)", site_id, key.value, problem)
        if self._recorder is not None:
            self._recorder.record_threshold_issue(ThresholdIssue(site_id=site_id, metric=key.value, message=problem))
