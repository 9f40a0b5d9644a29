"""Tests for PhaseScorer: rule scoring, phase selection, confidence."""

from __future__ import annotations

from dataclasses import fields, replace

import pytest

from conftest import (
    BASELINE,
    absorption_week,
    cyclical_week,
    hypertrophy_week,
    make_aggregate,
    mitochondria_week,
    resilience_week,
    with_gi,
)
from march.domains.phase.domain_logic.march_config import (
    DEFAULT_MARCH_CONFIG,
    ConfidenceParams,
    march_config_from_dict,
)
from march.domains.phase.domain_logic.phase_models import (
    BaselineStats,
    CycleSummary,
    GiSummary,
    MarchPhase,
    TrainingSummary,
)
from march.domains.phase.domain_logic.phase_scorer import (
    PhaseScorer,
    _fmt,
    compute_confidence,
    compute_phase_assessment,
    rank_phases,
)

SCENARIOS = [
    (mitochondria_week, MarchPhase.MITOCHONDRIA),
    (absorption_week, MarchPhase.ABSORPTION_DETOX),
    (resilience_week, MarchPhase.RESILIENCE),
    (cyclical_week, MarchPhase.CYCLICAL),
    (hypertrophy_week, MarchPhase.HYPERTROPHY_HEALTHSPAN),
]


@pytest.fixture
def scorer() -> PhaseScorer:
    return PhaseScorer()


# ---------------------------------------------------------------------------
# Named scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    @pytest.mark.parametrize("build, expected", SCENARIOS)
    def test_decided_phase(self, scorer, build, expected):
        assessment = scorer.compute_phase_assessment(build(), BASELINE)
        assert assessment.decided_phase is expected

    def test_mitochondria_scores(self, scorer):
        a = scorer.compute_phase_assessment(mitochondria_week(), BASELINE)
        assert a.phase_scores[MarchPhase.MITOCHONDRIA] == 90.0
        assert a.phase_scores[MarchPhase.RESILIENCE] == 15.0
        assert a.confidence == 0.95
        assert "HRV 38ms vs baseline 55ms" in a.rationale
        assert "RHR 76 bpm vs baseline 65 bpm" in a.rationale
        assert "Sleep 6.2h < 6.5h" in a.rationale
        assert "Energy 2.0/5" in a.rationale
        assert "Steps 4200/day" in a.rationale

    def test_absorption_scores(self, scorer):
        a = scorer.compute_phase_assessment(absorption_week(), BASELINE)
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 95.0
        assert a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN] == 20.0
        assert a.rationale == (
            "Bloating avg 2.5/3",
            "Stool form 2.0 outside 3-5",
            "Bowel frequency 0.5/day outside 1-3",
            "Food reactivity 1.2/day",
            "Nausea on 2 days",
            "Severe GI symptoms above red-flag thresholds",
        )

    def test_resilience_scores(self, scorer):
        a = scorer.compute_phase_assessment(resilience_week(), BASELINE)
        assert a.phase_scores[MarchPhase.RESILIENCE] == 65.0
        assert a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN] == 45.0
        assert a.phase_scores[MarchPhase.MITOCHONDRIA] == 0.0
        assert a.confidence == pytest.approx(0.78125, abs=1e-4)
        assert a.rationale == (
            "Stress 4.2/5",
            "HRV 47ms below 90% of baseline 55ms",
            "RPE 8.0/10 without matching recovery",
        )

    def test_cyclical_scores(self, scorer):
        a = scorer.compute_phase_assessment(cyclical_week(), BASELINE)
        assert a.phase_scores[MarchPhase.CYCLICAL] == pytest.approx(80.1)
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 0.0
        assert a.rationale == ("3 menstrual days", "PMS severity 2.0/3")

    def test_hypertrophy_scores(self, scorer):
        a = scorer.compute_phase_assessment(hypertrophy_week(), BASELINE)
        assert a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN] == 80.0
        others = [s for p, s in a.phase_scores.items() if p is not MarchPhase.HYPERTROPHY_HEALTHSPAN]
        assert others == [0.0, 0.0, 0.0, 0.0]
        assert "4 strength sessions" in a.rationale
        assert "Strength trend +2.5%" in a.rationale
        assert "Volume load 2500 vs baseline 2000 (+25%)" in a.rationale

    def test_high_rpe_with_good_recovery_is_not_resilience(self, scorer):
        """RPE alone does not count when HRV, sleep and stress all look fine."""
        a = scorer.compute_phase_assessment(hypertrophy_week(), BASELINE)
        assert a.phase_scores[MarchPhase.RESILIENCE] == 0.0


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------

class TestInvariants:
    @pytest.mark.parametrize("build, _", SCENARIOS)
    def test_five_bounded_scores(self, scorer, build, _):
        a = scorer.compute_phase_assessment(build(), BASELINE)
        assert set(a.phase_scores) == set(MarchPhase)
        assert all(0.0 <= s <= 100.0 for s in a.phase_scores.values())

    @pytest.mark.parametrize("build, _", SCENARIOS)
    def test_confidence_within_bounds(self, scorer, build, _):
        a = scorer.compute_phase_assessment(build(), BASELINE)
        c = DEFAULT_MARCH_CONFIG.confidence
        assert c.min_confidence <= a.confidence <= c.max_confidence

    @pytest.mark.parametrize("build, _", SCENARIOS)
    def test_decided_phase_is_argmax(self, scorer, build, _):
        a = scorer.compute_phase_assessment(build(), BASELINE)
        assert a.phase_scores[a.decided_phase] == max(a.phase_scores.values())

    def test_scores_are_read_only(self, scorer):
        a = scorer.compute_phase_assessment(mitochondria_week(), BASELINE)
        with pytest.raises(TypeError):
            a.phase_scores[MarchPhase.CYCLICAL] = 100.0  # type: ignore[index]

    def test_deterministic(self, scorer):
        first = scorer.compute_phase_assessment(resilience_week(), BASELINE)
        second = scorer.compute_phase_assessment(resilience_week(), BASELINE)
        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_id_and_default_created_at(self, scorer):
        a = scorer.compute_phase_assessment(make_aggregate(), BASELINE)
        assert a.id == "march_client-1_2026-01-05"
        assert a.created_at == "2026-01-12T00:00:00+00:00"

    def test_explicit_created_at(self, scorer):
        a = scorer.compute_phase_assessment(
            make_aggregate(), BASELINE, created_at="2026-01-11T23:00:00+00:00"
        )
        assert a.created_at == "2026-01-11T23:00:00+00:00"

    def test_scores_clamped_to_100(self):
        config = march_config_from_dict({"weights": {"gi": 60}})
        a = PhaseScorer(config).compute_phase_assessment(absorption_week(), BASELINE)
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 100.0


class TestMissingDataNeutrality:
    @pytest.mark.parametrize("build, _", SCENARIOS)
    def test_removing_top_level_signal_never_raises_scores(self, scorer, build, _):
        aggregate = build()
        base = scorer.compute_phase_assessment(aggregate, BASELINE).phase_scores
        optional = [f.name for f in fields(aggregate) if f.name.endswith("_avg")]
        for name in optional:
            reduced = scorer.compute_phase_assessment(replace(aggregate, **{name: None}), BASELINE)
            for phase in MarchPhase:
                assert reduced.phase_scores[phase] <= base[phase], (name, phase)

    @pytest.mark.parametrize("build, _", SCENARIOS)
    def test_removing_gi_signal_never_raises_scores(self, scorer, build, _):
        aggregate = build()
        base = scorer.compute_phase_assessment(aggregate, BASELINE).phase_scores
        for name in ("bloating_avg", "stool_form_avg", "bowel_freq_avg", "food_reactivity_avg"):
            reduced = scorer.compute_phase_assessment(with_gi(aggregate, **{name: None}), BASELINE)
            for phase in MarchPhase:
                assert reduced.phase_scores[phase] <= base[phase], (name, phase)

    def test_removing_rpe_never_raises_scores(self, scorer):
        aggregate = resilience_week()
        base = scorer.compute_phase_assessment(aggregate, BASELINE).phase_scores
        no_rpe = replace(aggregate, training=replace(aggregate.training, rpe_avg=None))
        reduced = scorer.compute_phase_assessment(no_rpe, BASELINE).phase_scores
        assert all(reduced[p] <= base[p] for p in MarchPhase)


# ---------------------------------------------------------------------------
# Empty data, tie-break, low data
# ---------------------------------------------------------------------------

class TestEmptyAndTies:
    def test_empty_aggregate(self, scorer):
        a = scorer.compute_phase_assessment(make_aggregate(data_days=0), BASELINE)
        assert all(s == 0.0 for s in a.phase_scores.values())
        assert a.decided_phase is MarchPhase.MITOCHONDRIA
        assert a.confidence == DEFAULT_MARCH_CONFIG.confidence.min_confidence
        assert a.rationale == ()

    def test_tie_resolved_by_priority(self, scorer):
        aggregate = make_aggregate(stress_avg=4.0, gi=GiSummary(bloating_avg=2.0))
        a = scorer.compute_phase_assessment(aggregate, BASELINE)
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 25.0
        assert a.phase_scores[MarchPhase.RESILIENCE] == 25.0
        assert a.decided_phase is MarchPhase.ABSORPTION_DETOX
        assert a.confidence == 0.5

    def test_cyclical_beats_hypertrophy_on_tie(self):
        config = march_config_from_dict({"weights": {"cycle": 12.5}})
        aggregate = make_aggregate(
            cycle=CycleSummary(menstrual_days=1),
            training=TrainingSummary(strength_sessions=3),
        )
        a = PhaseScorer(config).compute_phase_assessment(aggregate, BASELINE)
        assert a.phase_scores[MarchPhase.CYCLICAL] == a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN]
        assert a.decided_phase is MarchPhase.CYCLICAL

    def test_rank_phases_orders_by_score_then_priority(self):
        scores = {p: 10.0 for p in MarchPhase}
        scores[MarchPhase.CYCLICAL] = 50.0
        ranked = rank_phases(scores)
        assert ranked[0] is MarchPhase.CYCLICAL
        assert ranked[1] is MarchPhase.MITOCHONDRIA


class TestConfidence:
    def test_low_data_ceiling(self, scorer):
        a = scorer.compute_phase_assessment(replace(hypertrophy_week(), data_days=2), BASELINE)
        assert a.decided_phase is MarchPhase.HYPERTROPHY_HEALTHSPAN
        assert a.confidence == 0.6

    def test_threshold_days_are_sufficient(self, scorer):
        a = scorer.compute_phase_assessment(replace(hypertrophy_week(), data_days=3), BASELINE)
        assert a.confidence == 0.95

    def test_zero_gap_gives_min(self):
        assert compute_confidence(40, 40, sufficient_data=True, params=ConfidenceParams()) == 0.5

    def test_saturates_at_max(self):
        assert compute_confidence(90, 10, sufficient_data=True, params=ConfidenceParams()) == 0.95

    def test_linear_between(self):
        # gap 16 of saturation 32 -> halfway
        assert compute_confidence(56, 40, sufficient_data=True, params=ConfidenceParams()) == 0.725

    def test_ceiling_never_raises_confidence(self):
        assert compute_confidence(40, 40, sufficient_data=False, params=ConfidenceParams()) == 0.5


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------

class TestRules:
    def test_red_flag_floor(self, scorer):
        a = scorer.compute_phase_assessment(make_aggregate(hrv_avg=32.0), BASELINE)
        assert a.phase_scores[MarchPhase.MITOCHONDRIA] == 80.0
        assert "HRV 32ms below red-flag 35ms" in a.rationale

    def test_rhr_red_flag(self, scorer):
        a = scorer.compute_phase_assessment(make_aggregate(rhr_avg=88.0), BASELINE)
        assert a.phase_scores[MarchPhase.MITOCHONDRIA] == 80.0
        assert "RHR 88 bpm above red-flag 85 bpm" in a.rationale

    def test_relative_hrv_drop_counts(self, scorer):
        # 46 is above the absolute cutoff but below 85% of a 60ms median
        baseline = replace(BASELINE, hrv_median=60.0)
        a = scorer.compute_phase_assessment(make_aggregate(hrv_avg=46.0), baseline)
        assert "HRV 46ms vs baseline 60ms" in a.rationale

    def test_zero_baseline_uses_absolute_evidence(self, scorer):
        empty = BaselineStats(0.0, 0.0, 0.0, 0.0)
        a = scorer.compute_phase_assessment(make_aggregate(hrv_avg=40.0, rhr_avg=75.0), empty)
        assert "HRV 40ms < 45ms" in a.rationale
        assert "RHR 75 bpm > 72 bpm" in a.rationale

    def test_sleep_efficiency(self, scorer):
        a = scorer.compute_phase_assessment(make_aggregate(sleep_efficiency_avg=0.8), BASELINE)
        assert a.phase_scores[MarchPhase.MITOCHONDRIA] == 7.5
        assert "Sleep efficiency 80% < 85%" in a.rationale

    def test_steps_below_personal_baseline(self, scorer):
        baseline = replace(BASELINE, steps_baseline=12000.0)
        a = scorer.compute_phase_assessment(make_aggregate(steps_avg=8000.0), baseline)
        assert a.phase_scores[MarchPhase.MITOCHONDRIA] == 10.0

    def test_volume_spike_with_poor_sleep_is_resilience(self, scorer):
        aggregate = make_aggregate(
            sleep_avg=6.6, training=TrainingSummary(volume_load_sum=2800.0),
        )
        a = scorer.compute_phase_assessment(aggregate, BASELINE)
        assert a.phase_scores[MarchPhase.RESILIENCE] == 25.0
        assert a.rationale == ("Volume load 2800 vs baseline 2000 without matching recovery",)

    def test_volume_increase_exactly_at_threshold(self, scorer):
        aggregate = make_aggregate(training=TrainingSummary(volume_load_sum=2200.0))
        a = scorer.compute_phase_assessment(aggregate, BASELINE)
        assert a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN] == 20.0

    def test_volume_without_baseline_is_ignored(self, scorer):
        baseline = replace(BASELINE, volume_load_baseline=0.0)
        aggregate = make_aggregate(training=TrainingSummary(volume_load_sum=5000.0))
        a = scorer.compute_phase_assessment(aggregate, baseline)
        assert a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN] == 0.0

    def test_single_menstrual_day(self, scorer):
        a = scorer.compute_phase_assessment(
            make_aggregate(cycle=CycleSummary(menstrual_days=1)), BASELINE
        )
        assert a.phase_scores[MarchPhase.CYCLICAL] == 60.0
        assert a.rationale == ("1 menstrual day",)

    def test_config_weights_change_scores(self):
        config = march_config_from_dict({"weights": {"stress": 40}})
        a = PhaseScorer(config).compute_phase_assessment(make_aggregate(stress_avg=4.0), BASELINE)
        assert a.phase_scores[MarchPhase.RESILIENCE] == 40.0

    def test_functional_shortcut(self):
        a = compute_phase_assessment(absorption_week(), BASELINE)
        assert a.decided_phase is MarchPhase.ABSORPTION_DETOX


def _ready_to_build(**overrides):
    """Good sleep and four strength sessions: HYPERTROPHY_HEALTHSPAN scores 35."""
    values = dict(sleep_avg=7.8, training=TrainingSummary(strength_sessions=4))
    values.update(overrides)
    return make_aggregate(**values)


class TestGuardrails:
    def test_severe_bloating_floor(self, scorer):
        a = scorer.compute_phase_assessment(make_aggregate(gi=GiSummary(bloating_avg=2.6)), BASELINE)
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 70.0
        assert a.decided_phase is MarchPhase.ABSORPTION_DETOX
        assert a.rationale == ("Bloating avg 2.6/3", "Severe GI symptoms above red-flag thresholds")

    @pytest.mark.parametrize("gi", [
        GiSummary(stool_form_avg=1.5),
        GiSummary(stool_form_avg=6.5),
        GiSummary(food_reactivity_avg=1.5),
    ])
    def test_other_severe_gi_signals(self, scorer, gi):
        a = scorer.compute_phase_assessment(make_aggregate(gi=gi), BASELINE)
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 70.0

    def test_moderate_gi_has_no_floor(self, scorer):
        a = scorer.compute_phase_assessment(make_aggregate(gi=GiSummary(bloating_avg=2.0)), BASELINE)
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 25.0

    def test_gi_floor_is_configurable(self):
        config = march_config_from_dict({"rules": {"giRedFlagFloor": 50}})
        a = PhaseScorer(config).compute_phase_assessment(
            make_aggregate(gi=GiSummary(bloating_avg=3.0)), BASELINE
        )
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 50.0

    def test_stress_blocks_hypertrophy(self, scorer):
        a = scorer.compute_phase_assessment(_ready_to_build(stress_avg=4.2), BASELINE)
        assert a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN] == 35.0
        assert a.phase_scores[MarchPhase.RESILIENCE] == 35.0
        assert a.decided_phase is MarchPhase.RESILIENCE
        assert a.confidence == 0.5
        assert a.rationale == ("Stress 4.2/5", "Stress 4.2/5 above readiness limit 3/5")

    def test_low_energy_blocks_hypertrophy(self, scorer):
        a = scorer.compute_phase_assessment(_ready_to_build(energy_avg=2.5), BASELINE)
        assert a.phase_scores[MarchPhase.MITOCHONDRIA] == 35.0
        assert a.decided_phase is MarchPhase.MITOCHONDRIA
        assert a.rationale == ("Energy 2.5/5 below readiness minimum 3/5",)

    def test_severe_gi_blocks_strong_hypertrophy(self, scorer):
        aggregate = with_gi(hypertrophy_week(), food_reactivity_avg=1.6)
        a = scorer.compute_phase_assessment(aggregate, BASELINE)
        assert a.phase_scores[MarchPhase.HYPERTROPHY_HEALTHSPAN] == 80.0
        assert a.phase_scores[MarchPhase.ABSORPTION_DETOX] == 80.0
        assert a.decided_phase is MarchPhase.ABSORPTION_DETOX
        assert a.rationale[-1] == "Severe GI symptoms hold back progression"

    def test_stable_base_keeps_hypertrophy(self, scorer):
        a = scorer.compute_phase_assessment(_ready_to_build(stress_avg=3.0, energy_avg=3.0), BASELINE)
        assert a.decided_phase is MarchPhase.HYPERTROPHY_HEALTHSPAN
        assert a.phase_scores[MarchPhase.RESILIENCE] == 0.0

    def test_readiness_limits_are_configurable(self):
        config = march_config_from_dict({"rules": {"readinessStressMax": 4.5}})
        a = PhaseScorer(config).compute_phase_assessment(_ready_to_build(stress_avg=4.2), BASELINE)
        assert a.decided_phase is MarchPhase.HYPERTROPHY_HEALTHSPAN

    def test_dropping_a_blocker_never_raises_scores(self, scorer):
        aggregate = _ready_to_build(stress_avg=4.2, energy_avg=2.5)
        base = scorer.compute_phase_assessment(aggregate, BASELINE).phase_scores
        for name in ("stress_avg", "energy_avg", "sleep_avg"):
            reduced = scorer.compute_phase_assessment(replace(aggregate, **{name: None}), BASELINE)
            for phase in MarchPhase:
                assert reduced.phase_scores[phase] <= base[phase], (name, phase)


class TestFormatting:
    @pytest.mark.parametrize("value, expected", [
        (38.0, "38"), (46.5, "46.5"), (46.55, "46.5"), (0.0, "0"), (6.5, "6.5"), (-0.01, "0"),
    ])
    def test_fmt(self, value, expected):
        assert _fmt(value) == expected
