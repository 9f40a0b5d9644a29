"""Static coaching guidance per phase, plus assessment-specific recommendations.

The guidance table is a read-only mapping keyed by ``MarchPhase``; lookups
are total over the enum.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from march.domains.phase.domain_logic.phase_models import (
    MarchPhase,
    MarchPhaseAssessment,
    MarchPhaseGuidance,
)
from march.domains.phase.errors import ValidationError

TRANSITION_MARGIN = 10.0
PROXIMITY_MARGIN = 10.0
LOW_CONFIDENCE = 0.6

LOW_CONFIDENCE_MESSAGE = "Low-confidence week: keep logging daily check-ins and biometrics"


_GUIDANCE: Mapping[MarchPhase, MarchPhaseGuidance] = MappingProxyType({
    MarchPhase.MITOCHONDRIA: MarchPhaseGuidance(
        phase=MarchPhase.MITOCHONDRIA,
        focus="Energy Foundation & Recovery",
        key_actions=(
            "Prioritize sleep quality and duration",
            "Manage stress through meditation/breathing",
            "Focus on gentle movement and recovery",
            "Optimize nutrition for energy production",
        ),
        training_adjustments=(
            "Reduce training volume by 30-50%",
            "Focus on low-intensity cardio",
            "Include more mobility work",
            "Take extra rest days",
        ),
        nutrition_tips=(
            "Increase B-vitamin rich foods",
            "Focus on complex carbohydrates",
            "Ensure adequate protein for recovery",
            "Consider magnesium supplementation",
        ),
        red_flags=(
            "HRV continues to decline",
            "Sleep quality worsens",
            "Energy levels drop further",
            "Increased illness frequency",
        ),
        duration="2-4 weeks",
    ),
    MarchPhase.ABSORPTION_DETOX: MarchPhaseGuidance(
        phase=MarchPhase.ABSORPTION_DETOX,
        focus="Digestive Health & Nutrient Absorption",
        key_actions=(
            "Identify and eliminate food triggers",
            "Support gut microbiome health",
            "Manage stress around meal times",
            "Focus on easily digestible foods",
        ),
        training_adjustments=(
            "Avoid high-intensity training",
            "Focus on gentle movement",
            "Include gut-friendly exercises",
            "Listen to body signals",
        ),
        nutrition_tips=(
            "Eliminate common allergens",
            "Include fermented foods",
            "Focus on cooked vegetables",
            "Consider digestive enzymes",
        ),
        red_flags=(
            "Digestive symptoms worsen",
            "New food intolerances develop",
            "Weight loss or gain",
            "Nutrient deficiencies",
        ),
        duration="3-6 weeks",
    ),
    MarchPhase.RESILIENCE: MarchPhaseGuidance(
        phase=MarchPhase.RESILIENCE,
        focus="Stress Management & Recovery",
        key_actions=(
            "Implement stress reduction techniques",
            "Optimize recovery protocols",
            "Manage training load carefully",
            "Focus on sleep and nutrition",
        ),
        training_adjustments=(
            "Reduce training intensity",
            "Increase recovery time",
            "Focus on technique over load",
            "Include stress-reducing activities",
        ),
        nutrition_tips=(
            "Focus on anti-inflammatory foods",
            "Ensure adequate protein",
            "Include adaptogenic herbs",
            "Manage caffeine intake",
        ),
        red_flags=(
            "Stress levels continue to rise",
            "Recovery time increases",
            "Performance declines",
            "Mood disturbances",
        ),
        duration="2-4 weeks",
    ),
    MarchPhase.CYCLICAL: MarchPhaseGuidance(
        phase=MarchPhase.CYCLICAL,
        focus="Hormonal Balance & Cycle Optimization",
        key_actions=(
            "Track menstrual cycle patterns",
            "Adjust training to cycle phases",
            "Manage PMS symptoms",
            "Support hormonal balance",
        ),
        training_adjustments=(
            "Reduce intensity during PMS",
            "Focus on strength during follicular phase",
            "Include more cardio during luteal phase",
            "Take rest during menstruation",
        ),
        nutrition_tips=(
            "Increase iron-rich foods during menstruation",
            "Focus on magnesium for PMS",
            "Include phytoestrogens",
            "Manage blood sugar stability",
        ),
        red_flags=(
            "Irregular cycles",
            "Severe PMS symptoms",
            "Hormonal imbalances",
            "Fertility concerns",
        ),
        duration="1-3 cycles",
    ),
    MarchPhase.HYPERTROPHY_HEALTHSPAN: MarchPhaseGuidance(
        phase=MarchPhase.HYPERTROPHY_HEALTHSPAN,
        focus="Strength Building & Long-term Health",
        key_actions=(
            "Progressive overload training",
            "Optimize protein intake",
            "Focus on compound movements",
            "Monitor recovery markers",
        ),
        training_adjustments=(
            "Increase training volume gradually",
            "Focus on strength progression",
            "Include variety in training",
            "Monitor for overtraining",
        ),
        nutrition_tips=(
            "Increase protein to 1.6-2.2g/kg",
            "Time protein around workouts",
            "Focus on nutrient density",
            "Consider creatine supplementation",
        ),
        red_flags=(
            "Performance plateaus",
            "Increased injury risk",
            "Recovery markers decline",
            "Overtraining symptoms",
        ),
        duration="4-8 weeks",
    ),
})


# (other phase, score above which the hint applies, hint)
_CROSS_PHASE_HINTS: Mapping[MarchPhase, tuple[tuple[MarchPhase, float, str], ...]] = MappingProxyType({
    MarchPhase.MITOCHONDRIA: (
        (MarchPhase.ABSORPTION_DETOX, 60.0, "Address digestive issues before progressing"),
        (MarchPhase.RESILIENCE, 50.0, "Focus on stress management techniques"),
    ),
    MarchPhase.ABSORPTION_DETOX: (
        (MarchPhase.MITOCHONDRIA, 40.0, "Continue energy foundation work"),
        (MarchPhase.RESILIENCE, 60.0, "Address stress factors affecting digestion"),
    ),
    MarchPhase.RESILIENCE: (
        (MarchPhase.HYPERTROPHY_HEALTHSPAN, 70.0, "Ready for strength training progression"),
        (MarchPhase.CYCLICAL, 60.0, "Consider hormonal optimization"),
    ),
    MarchPhase.CYCLICAL: (
        (MarchPhase.HYPERTROPHY_HEALTHSPAN, 80.0, "Ready for hypertrophy phase"),
    ),
    MarchPhase.HYPERTROPHY_HEALTHSPAN: (
        (MarchPhase.MITOCHONDRIA, 50.0, "Monitor recovery markers closely"),
    ),
})


def coerce_phase(phase: MarchPhase | str) -> MarchPhase:
    """Accept a MarchPhase or its string value (case-insensitive)."""
    if isinstance(phase, MarchPhase):
        return phase
    try:
        return MarchPhase(str(phase).strip().upper())
    except ValueError:
        valid = ", ".join(p.value for p in MarchPhase)
        raise ValidationError(f"Unknown phase {phase!r}; expected one of {valid}") from None


def get_phase_guidance(phase: MarchPhase | str) -> MarchPhaseGuidance:
    return _GUIDANCE[coerce_phase(phase)]


def all_phase_guidance() -> list[MarchPhaseGuidance]:
    return [_GUIDANCE[phase] for phase in MarchPhase]


def _fmt_score(score: float) -> str:
    return f"{score:g}"


def get_phase_transition_recommendations(
    phase: MarchPhase | str,
    assessment: MarchPhaseAssessment,
) -> list[str]:
    """Recommendations for a client currently in ``phase``.

    Args:
        phase: The phase the client is working in (usually the decided phase).
        assessment: The week's assessment whose scores drive the hints.

    Returns:
        Zero or more human-readable recommendation strings, in a fixed order:
        transition suggestion, cross-phase hints, proximity warning,
        low-confidence notice.
    """
    current = coerce_phase(phase)
    scores = assessment.phase_scores
    current_score = scores[current]

    # Python's sort is stable, so equal scores keep enum order.
    others = sorted(
        (p for p in MarchPhase if p is not current),
        key=lambda p: -scores[p],
    )
    runner_up = others[0]
    runner_score = scores[runner_up]

    recommendations: list[str] = []

    if runner_score > current_score + TRANSITION_MARGIN:
        recommendations.append(
            f"Consider transitioning to {runner_up.value} phase (score: {_fmt_score(runner_score)})"
        )

    for other, cutoff, hint in _CROSS_PHASE_HINTS[current]:
        if scores[other] > cutoff:
            recommendations.append(hint)

    if runner_score > 0 and abs(current_score - runner_score) <= PROXIMITY_MARGIN:
        flag = _GUIDANCE[runner_up].red_flags[0]
        recommendations.append(f"Watch {runner_up.value} red flag: {flag}")

    if assessment.confidence < LOW_CONFIDENCE:
        recommendations.append(LOW_CONFIDENCE_MESSAGE)

    return recommendations
