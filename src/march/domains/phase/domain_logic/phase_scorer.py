"""Deterministic phase scoring: WeeklyAggregate + BaselineStats -> assessment.

Five independent rules score the week, one per phase. Each rule is a weighted
sum of triggered conditions and records an evidence string per condition.
Every condition requires the signals it reads to be present, so a missing
signal can only remove contributions, never add them.

Red flags (very low HRV, very high RHR, severe GI) raise their phase to a
configured floor. A readiness guardrail keeps HYPERTROPHY_HEALTHSPAN from
winning while stress, energy or GI say the base is not stable.

Selection:
    1. Clamp each raw score to [0, 100], then apply the readiness guardrail.
    2. Pick the strict maximum; ties go to the phase declared first in
       ``MarchPhase`` (MITOCHONDRIA > ... > HYPERTROPHY_HEALTHSPAN).
    3. Confidence grows linearly with the gap between the top two scores,
       capped for low-data weeks, clamped to the configured bounds.
    4. The rationale is the decided phase's evidence, in evaluation order.

No clock reads, no randomness, no I/O.
"""

from __future__ import annotations

import logging
import math
from datetime import date, timedelta
from typing import Callable, Mapping

from march.domains.phase.domain_logic.march_config import (
    DEFAULT_MARCH_CONFIG,
    ConfidenceParams,
    MarchConfig,
)
from march.domains.phase.domain_logic.phase_models import (
    PHASE_PRIORITY,
    BaselineStats,
    MarchPhase,
    MarchPhaseAssessment,
    WeeklyAggregate,
)
from march.domains.phase.domain_logic.sample_aggregator import has_sufficient_data
from march.domains.phase.errors import ComputationError

logger = logging.getLogger(__name__)

SCORE_MIN = 0.0
SCORE_MAX = 100.0

RuleResult = tuple[float, list[str]]
ScoringRule = Callable[[WeeklyAggregate, BaselineStats, MarchConfig], RuleResult]


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _fmt(value: float) -> str:
    """One decimal at most, no trailing '.0' (38 -> '38', 46.5 -> '46.5')."""
    text = f"{value:.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return "0" if text == "-0" else text


def _below_ratio(value: float | None, reference: float, ratio: float) -> bool:
    return value is not None and reference > 0 and value < reference * ratio


def _hrv_declining(aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig) -> bool:
    return _below_ratio(aggregate.hrv_avg, baseline.hrv_median, config.rules.resilience_hrv_ratio)


def _recovery_low(aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig) -> bool:
    """Any present recovery signal that is lagging."""
    sleep = aggregate.sleep_avg
    stress = aggregate.stress_avg
    return (
        _hrv_declining(aggregate, baseline, config)
        or (sleep is not None and sleep < config.thresholds.stable_sleep)
        or (stress is not None and stress >= config.rules.recovery_stress)
    )


def _volume_increase(aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig) -> float | None:
    """Fractional volume change vs baseline when it meets the increase cutoff."""
    reference = baseline.volume_load_baseline
    if reference <= 0:
        return None
    change = aggregate.training.volume_load_sum / reference - 1.0
    # Rounded so that exactly +10% counts as a 10% increase.
    if round(change, 9) >= config.thresholds.volume_increase:
        return change
    return None


def has_severe_gi(aggregate: WeeklyAggregate, config: MarchConfig) -> bool:
    """Any present GI signal past its red-flag cutoff."""
    gi, r = aggregate.gi, config.rules
    stool = gi.stool_form_avg
    return (
        (gi.bloating_avg is not None and gi.bloating_avg >= r.severe_bloating)
        or (stool is not None and (stool < r.severe_stool_form_min or stool > r.severe_stool_form_max))
        or (gi.food_reactivity_avg is not None and gi.food_reactivity_avg >= r.severe_food_reactivity)
    )


# ---------------------------------------------------------------------------
# Rule 1: MITOCHONDRIA (energy foundation)
# ---------------------------------------------------------------------------

def score_mitochondria(
    aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig
) -> RuleResult:
    t, w, r = config.thresholds, config.weights, config.rules
    score = 0.0
    evidence: list[str] = []

    hrv = aggregate.hrv_avg
    if hrv is not None and (hrv < t.low_hrv or _below_ratio(hrv, baseline.hrv_median, r.hrv_baseline_ratio)):
        score += w.hrv
        if baseline.hrv_median > 0:
            evidence.append(f"HRV {_fmt(hrv)}ms vs baseline {_fmt(baseline.hrv_median)}ms")
        else:
            evidence.append(f"HRV {_fmt(hrv)}ms < {_fmt(t.low_hrv)}ms")

    rhr = aggregate.rhr_avg
    if rhr is not None and (
        rhr > t.high_rhr or (baseline.rhr_baseline > 0 and rhr > baseline.rhr_baseline * r.rhr_baseline_ratio)
    ):
        score += w.rhr
        if baseline.rhr_baseline > 0:
            evidence.append(f"RHR {_fmt(rhr)} bpm vs baseline {_fmt(baseline.rhr_baseline)} bpm")
        else:
            evidence.append(f"RHR {_fmt(rhr)} bpm > {_fmt(t.high_rhr)} bpm")

    sleep = aggregate.sleep_avg
    if sleep is not None and sleep < t.poor_sleep:
        score += w.sleep
        evidence.append(f"Sleep {sleep:.1f}h < {_fmt(t.poor_sleep)}h")

    efficiency = aggregate.sleep_efficiency_avg
    if efficiency is not None and efficiency < t.sleep_efficiency:
        score += w.sleep * 0.5
        evidence.append(
            f"Sleep efficiency {efficiency * 100:.0f}% < {t.sleep_efficiency * 100:.0f}%"
        )

    energy = aggregate.energy_avg
    if energy is not None and energy <= r.low_energy:
        score += w.energy
        evidence.append(f"Energy {energy:.1f}/5")

    steps = aggregate.steps_avg
    steps_reference = baseline.steps_baseline or 0.0
    if steps is not None and (
        steps < r.low_steps or _below_ratio(steps, steps_reference, r.steps_baseline_ratio)
    ):
        score += w.steps
        evidence.append(f"Steps {steps:.0f}/day")

    # Red flags force the phase into contention regardless of other signals.
    red_flag = False
    if hrv is not None and hrv < r.very_low_hrv:
        red_flag = True
        evidence.append(f"HRV {_fmt(hrv)}ms below red-flag {_fmt(r.very_low_hrv)}ms")
    if rhr is not None and rhr > r.very_high_rhr:
        red_flag = True
        evidence.append(f"RHR {_fmt(rhr)} bpm above red-flag {_fmt(r.very_high_rhr)} bpm")
    if red_flag:
        score = max(score, r.red_flag_floor)

    return score, evidence


# ---------------------------------------------------------------------------
# Rule 2: ABSORPTION_DETOX (digestive health)
# ---------------------------------------------------------------------------

def score_absorption_detox(
    aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig
) -> RuleResult:
    t, w = config.thresholds, config.weights
    gi = aggregate.gi
    score = 0.0
    evidence: list[str] = []

    if gi.bloating_avg is not None and gi.bloating_avg >= t.gi_bloating:
        score += w.gi
        evidence.append(f"Bloating avg {gi.bloating_avg:.1f}/3")

    stool = gi.stool_form_avg
    if stool is not None and (stool < t.stool_form_min or stool > t.stool_form_max):
        score += w.gi
        evidence.append(
            f"Stool form {stool:.1f} outside {_fmt(t.stool_form_min)}-{_fmt(t.stool_form_max)}"
        )

    bowel = gi.bowel_freq_avg
    if bowel is not None and (bowel < t.bowel_freq_min or bowel > t.bowel_freq_max):
        score += w.gi * 0.6
        evidence.append(
            f"Bowel frequency {_fmt(bowel)}/day outside "
            f"{_fmt(t.bowel_freq_min)}-{_fmt(t.bowel_freq_max)}"
        )

    if gi.food_reactivity_avg is not None and gi.food_reactivity_avg >= t.food_reactivity:
        score += w.gi * 0.8
        evidence.append(f"Food reactivity {gi.food_reactivity_avg:.1f}/day")

    if gi.nausea_days > 0:
        score += w.gi * 0.4
        evidence.append(f"Nausea on {gi.nausea_days} day{'s' if gi.nausea_days != 1 else ''}")

    if has_severe_gi(aggregate, config):
        score = max(score, config.rules.gi_red_flag_floor)
        evidence.append("Severe GI symptoms above red-flag thresholds")

    return score, evidence


# ---------------------------------------------------------------------------
# Rule 3: RESILIENCE (stress load vs recovery)
# ---------------------------------------------------------------------------

def score_resilience(
    aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig
) -> RuleResult:
    t, w, r = config.thresholds, config.weights, config.rules
    score = 0.0
    evidence: list[str] = []

    stress = aggregate.stress_avg
    if stress is not None and stress >= t.high_stress:
        score += w.stress
        evidence.append(f"Stress {stress:.1f}/5")

    # Milder decline than the MITOCHONDRIA cutoff still signals strain.
    if _hrv_declining(aggregate, baseline, config):
        score += w.stress * 0.6
        evidence.append(
            f"HRV {_fmt(aggregate.hrv_avg)}ms below "
            f"{r.resilience_hrv_ratio * 100:.0f}% of baseline {_fmt(baseline.hrv_median)}ms"
        )

    rpe = aggregate.training.rpe_avg
    high_rpe = rpe is not None and rpe >= r.high_rpe
    volume_change = _volume_increase(aggregate, baseline, config)
    if (high_rpe or volume_change is not None) and _recovery_low(aggregate, baseline, config):
        score += w.training
        if high_rpe:
            evidence.append(f"RPE {rpe:.1f}/10 without matching recovery")
        else:
            evidence.append(
                f"Volume load {aggregate.training.volume_load_sum:.0f} vs baseline "
                f"{baseline.volume_load_baseline:.0f} without matching recovery"
            )

    return score, evidence


# ---------------------------------------------------------------------------
# Rule 4: CYCLICAL (hormonal cycle)
# ---------------------------------------------------------------------------

def score_cyclical(
    aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig
) -> RuleResult:
    w, r = config.weights, config.rules
    cycle = aggregate.cycle
    score = 0.0
    evidence: list[str] = []

    # Presence-gated: one menstrual day counts as much as five.
    if cycle.menstrual_days > 0:
        score += w.cycle * r.menstrual_multiplier
        noun = "menstrual day" if cycle.menstrual_days == 1 else "menstrual days"
        evidence.append(f"{cycle.menstrual_days} {noun}")

    pms = cycle.pms_severity_avg
    if pms is not None and pms >= r.pms_elevated:
        score += w.cycle * 0.67
        evidence.append(f"PMS severity {pms:.1f}/3")

    return score, evidence


# ---------------------------------------------------------------------------
# Rule 5: HYPERTROPHY_HEALTHSPAN (ready to build)
# ---------------------------------------------------------------------------

def score_hypertrophy_healthspan(
    aggregate: WeeklyAggregate, baseline: BaselineStats, config: MarchConfig
) -> RuleResult:
    t, w = config.thresholds, config.weights
    training = aggregate.training
    score = 0.0
    evidence: list[str] = []

    sleep = aggregate.sleep_avg
    if sleep is not None and sleep >= t.stable_sleep:
        score += w.training * 0.4
        evidence.append(f"Sleep {sleep:.1f}h ≥ {_fmt(t.stable_sleep)}h")

    hrv = aggregate.hrv_avg
    if hrv is not None and baseline.hrv_median > 0 and hrv >= baseline.hrv_median:
        score += w.training * 0.4
        evidence.append(f"HRV {_fmt(hrv)}ms at or above baseline {_fmt(baseline.hrv_median)}ms")

    if training.strength_sessions >= t.strength_sessions:
        score += w.training
        noun = "strength session" if training.strength_sessions == 1 else "strength sessions"
        evidence.append(f"{training.strength_sessions} {noun}")

    trend = aggregate.body.strength_trend_pct
    if trend >= t.strength_trend:
        score += w.training * 0.6
        evidence.append(f"Strength trend +{trend:.1f}%")

    volume_change = _volume_increase(aggregate, baseline, config)
    if volume_change is not None:
        score += w.training * 0.8
        evidence.append(
            f"Volume load {training.volume_load_sum:.0f} vs baseline "
            f"{baseline.volume_load_baseline:.0f} (+{volume_change * 100:.0f}%)"
        )

    return score, evidence


# Fixed evaluation order; also the tie-break priority.
SCORING_RULES: tuple[tuple[MarchPhase, ScoringRule], ...] = (
    (MarchPhase.MITOCHONDRIA, score_mitochondria),
    (MarchPhase.ABSORPTION_DETOX, score_absorption_detox),
    (MarchPhase.RESILIENCE, score_resilience),
    (MarchPhase.CYCLICAL, score_cyclical),
    (MarchPhase.HYPERTROPHY_HEALTHSPAN, score_hypertrophy_healthspan),
)


# ---------------------------------------------------------------------------
# Readiness guardrail
# ---------------------------------------------------------------------------

def apply_readiness_guardrail(
    results: Mapping[MarchPhase, RuleResult],
    aggregate: WeeklyAggregate,
    config: MarchConfig,
) -> dict[MarchPhase, RuleResult]:
    """Keep HYPERTROPHY_HEALTHSPAN from winning on an unstable base.

    Each present blocker (low energy, severe GI, elevated stress) lifts the
    phase that owns it to the HYPERTROPHY_HEALTHSPAN score, and the tie then
    goes to the blocker's phase by priority. Only raises scores, so dropping
    a signal can never lift another phase.
    """
    r = config.rules
    adjusted = dict(results)
    build_score = results[MarchPhase.HYPERTROPHY_HEALTHSPAN][0]
    if build_score <= 0:
        return adjusted

    blockers: list[tuple[MarchPhase, str]] = []
    energy = aggregate.energy_avg
    if energy is not None and energy < r.readiness_energy_min:
        blockers.append((
            MarchPhase.MITOCHONDRIA,
            f"Energy {energy:.1f}/5 below readiness minimum {_fmt(r.readiness_energy_min)}/5",
        ))
    if has_severe_gi(aggregate, config):
        blockers.append((MarchPhase.ABSORPTION_DETOX, "Severe GI symptoms hold back progression"))
    stress = aggregate.stress_avg
    if stress is not None and stress > r.readiness_stress_max:
        blockers.append((
            MarchPhase.RESILIENCE,
            f"Stress {stress:.1f}/5 above readiness limit {_fmt(r.readiness_stress_max)}/5",
        ))

    for phase, note in blockers:
        score, evidence = adjusted[phase]
        if score < build_score:
            adjusted[phase] = (build_score, [*evidence, note])
    return adjusted


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def rank_phases(scores: Mapping[MarchPhase, float]) -> list[MarchPhase]:
    """Phases ordered best-first; equal scores keep priority order."""
    return sorted(PHASE_PRIORITY, key=lambda phase: (-scores[phase], PHASE_PRIORITY.index(phase)))


def compute_confidence(
    top_score: float,
    second_score: float,
    *,
    sufficient_data: bool,
    params: ConfidenceParams,
) -> float:
    """Map the top-two score gap onto ``[min_confidence, max_confidence]``."""
    span = params.min_separation * params.saturation_multiple
    fraction = _clamp((top_score - second_score) / span, 0.0, 1.0)
    confidence = params.min_confidence + (params.max_confidence - params.min_confidence) * fraction
    if not sufficient_data:
        confidence = min(confidence, params.low_data_ceiling)
    return round(_clamp(confidence, params.min_confidence, params.max_confidence), 4)


def _default_created_at(week_start_iso: str) -> str:
    """The week's exclusive end boundary, so output never depends on the clock."""
    try:
        start = date.fromisoformat(week_start_iso)
    except (TypeError, ValueError):
        return ""
    return f"{(start + timedelta(days=7)).isoformat()}T00:00:00+00:00"


class PhaseScorer:
    """Scores weekly aggregates against an injected, immutable MarchConfig.

    Usage::

        scorer = PhaseScorer(config)
        assessment = scorer.compute_phase_assessment(aggregate, baseline)
    """

    def __init__(self, config: MarchConfig = DEFAULT_MARCH_CONFIG) -> None:
        self._config = config.validate()

    @property
    def config(self) -> MarchConfig:
        return self._config

    def score_phases(
        self, aggregate: WeeklyAggregate, baseline: BaselineStats
    ) -> dict[MarchPhase, RuleResult]:
        """Run every rule; return clamped, guardrailed scores with their evidence."""
        results: dict[MarchPhase, RuleResult] = {}
        for phase, rule in SCORING_RULES:
            raw, evidence = rule(aggregate, baseline, self._config)
            results[phase] = (round(_clamp(raw, SCORE_MIN, SCORE_MAX), 2), evidence)
        return apply_readiness_guardrail(results, aggregate, self._config)

    def compute_phase_assessment(
        self,
        aggregate: WeeklyAggregate,
        baseline: BaselineStats,
        *,
        created_at: str | None = None,
    ) -> MarchPhaseAssessment:
        """Score the week and decide its phase.

        Args:
            aggregate: The week's reduced signals.
            baseline: The client's reference values (read-only).
            created_at: Timestamp to stamp on the assessment. Defaults to the
                week's end boundary so identical inputs give identical output.
        """
        results = self.score_phases(aggregate, baseline)
        scores = {phase: score for phase, (score, _) in results.items()}
        self._check_scores(scores)

        ranked = rank_phases(scores)
        decided, runner_up = ranked[0], ranked[1]
        confidence = compute_confidence(
            scores[decided],
            scores[runner_up],
            sufficient_data=has_sufficient_data(aggregate, self._config),
            params=self._config.confidence,
        )

        logger.debug(
            "Scored %s week %s: %s -> %s (confidence %.4f)",
            aggregate.client_id,
            aggregate.week_start_iso,
            {p.value: s for p, s in scores.items()},
            decided.value,
            confidence,
        )

        return MarchPhaseAssessment(
            id=f"march_{aggregate.client_id}_{aggregate.week_start_iso}",
            client_id=aggregate.client_id,
            week_start_iso=aggregate.week_start_iso,
            decided_phase=decided,
            confidence=confidence,
            phase_scores=scores,
            rationale=tuple(results[decided][1]),
            created_at=created_at if created_at is not None else _default_created_at(aggregate.week_start_iso),
        )

    @staticmethod
    def _check_scores(scores: Mapping[MarchPhase, float]) -> None:
        if len(scores) != len(PHASE_PRIORITY):
            raise ComputationError(f"Expected {len(PHASE_PRIORITY)} phase scores, got {len(scores)}")
        for phase, score in scores.items():
            if math.isnan(score) or not SCORE_MIN <= score <= SCORE_MAX:
                raise ComputationError(f"Score for {phase.value} out of range: {score!r}")


def compute_phase_assessment(
    aggregate: WeeklyAggregate,
    baseline: BaselineStats,
    config: MarchConfig = DEFAULT_MARCH_CONFIG,
) -> MarchPhaseAssessment:
    """Functional shortcut for ``PhaseScorer(config).compute_phase_assessment``."""
    return PhaseScorer(config).compute_phase_assessment(aggregate, baseline)
