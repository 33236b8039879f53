"""
Module and composite performance scores.

Each enabled module of a site gets an integer score in ``[0, 100]`` derived
from its defining metric, banded into GOOD / OK / WARNING / CRITICAL. The
composite is a weighted mean over the *enabled* modules only; weights are
renormalised so disabling a module never drags the composite down.

Default per-module scorers
--------------------------
- energy: ``100 - (P / 100) * 20`` with ``P`` the site power in kW
- air:    ``100 - ((C - 400) / 600) * 100`` with ``C`` the CO2 in ppm
- water:  ``85`` while water flows, ``60`` otherwise

Scores are clamped to ``[0, 100]`` and rounded half-up.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Mapping, Optional

from sitepulse.core.liveness import FreshnessPolicy
from sitepulse.domain.metrics import DEFINING_METRIC, Module
from sitepulse.domain.models import Liveness, ModuleStatus, SiteSnapshot, StatusLevel, now_utc

ModuleScoreFn = Callable[[float], float]


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


def status_level(score: int) -> StatusLevel:
    """Band a 0..100 score: >= 80 GOOD, >= 60 OK, >= 40 WARNING, else CRITICAL."""
    if score >= 80:
        return StatusLevel.GOOD
    if score >= 60:
        return StatusLevel.OK
    if score >= 40:
        return StatusLevel.WARNING
    return StatusLevel.CRITICAL


def score_energy(power_kw: float) -> int:
    return _round_half_up(_clamp(100.0 - (power_kw / 100.0) * 20.0))


def score_air(co2_ppm: float) -> int:
    return _round_half_up(_clamp(100.0 - ((co2_ppm - 400.0) / 600.0) * 100.0))


def score_water(flow_rate: float) -> int:
    # Placeholder heuristic until consumption baselines exist.
    return 85 if flow_rate > 0 else 60


DEFAULT_SCORERS: Mapping[Module, ModuleScoreFn] = {
    Module.ENERGY: score_energy,
    Module.AIR: score_air,
    Module.WATER: score_water,
}


@dataclass(frozen=True)
class CompositeWeights:
    """
    Relative weight of each module in the composite score.

    Weights need not sum to 1; only the enabled modules' weights are used
    and they are renormalised.
    """

    energy: float = 0.80
    air: float = 0.05
    water: float = 0.15

    def __post_init__(self) -> None:
        for name in ("energy", "air", "water"):
            v = getattr(self, name)
            if v < 0:
                raise ValueError(f"composite weight {name} must not be negative, got {v}")

    def weight(self, module: Module) -> float:
        return float(getattr(self, module.value))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, float]) -> "CompositeWeights":
        base = cls()
        return cls(
            energy=float(raw.get("energy", base.energy)),
            air=float(raw.get("air", base.air)),
            water=float(raw.get("water", base.water)),
        )


_DISABLED = ModuleStatus(score=0, level=StatusLevel.CRITICAL, is_live=False, enabled=False)


@dataclass(frozen=True)
class ModuleScorer:
    """
    Score modules and combine them into a composite.

    Parameters
    ----------
    weights
        Composite weights.
    scorers
        Per-module score functions ``value -> int``. Modules missing from
        the mapping fall back to the defaults.
    freshness
        Freshness policy deciding whether a reading is live, stale or offline.
    """

    weights: CompositeWeights = field(default_factory=CompositeWeights)
    scorers: Mapping[Module, ModuleScoreFn] = field(default_factory=dict)
    freshness: FreshnessPolicy = field(default_factory=FreshnessPolicy)

    def _scorer(self, module: Module) -> ModuleScoreFn:
        return self.scorers.get(module, DEFAULT_SCORERS[module])

    def score_module(
        self,
        snapshot: SiteSnapshot,
        module: Module,
        enabled: bool = True,
        now: Optional[datetime] = None,
    ) -> ModuleStatus:
        """
        Score one module of one site.

        Parameters
        ----------
        snapshot
            Snapshot of the site.
        module
            Module to score.
        enabled
            Whether the module is enabled for the site.
        now
            Evaluation time used for liveness.

        Returns
        -------
        ModuleStatus
            - disabled: score 0, ``enabled=False``
            - placeholder snapshot, no defining value, or OFFLINE reading:
              score 0, not live
            - STALE reading: scored, not live
            - LIVE reading: scored, live
        """
        if not enabled:
            return _DISABLED

        ts = now or now_utc()
        key = DEFINING_METRIC[module]
        value = snapshot.headline_value(key) if snapshot.is_real else None
        if value is None:
            return ModuleStatus(score=0, level=StatusLevel.CRITICAL, is_live=False, liveness=Liveness.OFFLINE)

        last_update = snapshot.latest_sample_time(key)
        liveness = self.freshness.module_liveness(snapshot, module, ts)
        if liveness is Liveness.OFFLINE:
            return ModuleStatus(
                score=0,
                level=StatusLevel.CRITICAL,
                is_live=False,
                last_update=last_update,
                liveness=liveness,
            )

        score = _round_half_up(_clamp(self._scorer(module)(value)))
        return ModuleStatus(
            score=score,
            level=status_level(score),
            is_live=liveness is Liveness.LIVE,
            last_update=last_update,
            liveness=liveness,
        )

    def score_all(
        self,
        snapshot: SiteSnapshot,
        enabled: Iterable[Module],
        now: Optional[datetime] = None,
    ) -> Dict[Module, ModuleStatus]:
        """Score every module, marking those not in ``enabled`` as disabled."""
        on = set(enabled)
        return {m: self.score_module(snapshot, m, enabled=m in on, now=now) for m in Module}

    def composite(
        self,
        statuses: Mapping[Module, ModuleStatus],
        enabled: Optional[Iterable[Module]] = None,
    ) -> ModuleStatus:
        """
        Weighted composite over enabled modules.

        Parameters
        ----------
        statuses
            Status per module.
        enabled
            Modules to include. Defaults to the statuses flagged ``enabled``.

        Returns
        -------
        ModuleStatus
            Composite score (renormalised weights, rounded half-up). With no
            enabled module, or only zero weights, the score is 0 and not live.
        """
        if enabled is None:
            on = [m for m, st in statuses.items() if st.enabled]
        else:
            on = [m for m in enabled if m in statuses]

        total_w = sum(self.weights.weight(m) for m in on)
        if not on or total_w <= 0:
            return ModuleStatus(score=0, level=StatusLevel.CRITICAL, is_live=False)

        mean = sum(self.weights.weight(m) * statuses[m].score for m in on) / total_w
        score = _round_half_up(_clamp(mean))
        updates = [statuses[m].last_update for m in on if statuses[m].last_update is not None]

        return ModuleStatus(
            score=score,
            level=status_level(score),
            is_live=any(statuses[m].is_live for m in on),
            last_update=max(updates) if updates else None,
        )
