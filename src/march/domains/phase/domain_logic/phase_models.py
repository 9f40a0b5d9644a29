"""M.A.R.C.H. phase data model: raw samples, weekly aggregates, assessments.

All types are frozen dataclasses. A weekly aggregate or an assessment is never
patched in place; recomputation produces a new value.

Optional numeric fields are ``None`` when no sample contributed to them.
``None`` and ``0`` mean different things throughout this module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class MarchPhase(str, Enum):
    """The five weekly phases.

    Declaration order is the tie-break priority: earlier phases carry higher
    physiological urgency.
    """

    MITOCHONDRIA = "MITOCHONDRIA"
    ABSORPTION_DETOX = "ABSORPTION_DETOX"
    RESILIENCE = "RESILIENCE"
    CYCLICAL = "CYCLICAL"
    HYPERTROPHY_HEALTHSPAN = "HYPERTROPHY_HEALTHSPAN"


PHASE_PRIORITY: tuple[MarchPhase, ...] = tuple(MarchPhase)


class SessionType(str, Enum):
    STRENGTH = "STRENGTH"
    CARDIO = "CARDIO"
    MOBILITY = "MOBILITY"
    REST = "REST"


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-None value among ``keys`` (camelCase or snake_case)."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _opt_float(value: Any) -> float | None:
    """Coerce to float, mapping None/non-numeric/bool to None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop None values so absent signals stay absent on the wire."""
    return {k: v for k, v in data.items() if v is not None}


# ---------------------------------------------------------------------------
# Raw samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BiometricsSample:
    """One wearable reading (usually one per night/morning)."""

    client_id: str
    timestamp: str  # ISO 8601
    hrv: float | None = None                # ms
    rhr: float | None = None                # bpm
    sleep_hours: float | None = None
    sleep_efficiency: float | None = None   # 0-1
    steps: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BiometricsSample:
        return cls(
            client_id=str(_pick(data, "clientId", "client_id") or ""),
            timestamp=str(data.get("timestamp", "")),
            hrv=_opt_float(data.get("hrv")),
            rhr=_opt_float(data.get("rhr")),
            sleep_hours=_opt_float(_pick(data, "sleepHours", "sleep_hours")),
            sleep_efficiency=_opt_float(_pick(data, "sleepEfficiency", "sleep_efficiency")),
            steps=_opt_float(data.get("steps")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "clientId": self.client_id,
            "timestamp": self.timestamp,
            "hrv": self.hrv,
            "rhr": self.rhr,
            "sleepHours": self.sleep_hours,
            "sleepEfficiency": self.sleep_efficiency,
            "steps": self.steps,
        })


@dataclass(frozen=True)
class Digestion:
    bloating: float | None = None               # 0-3
    stool_form: float | None = None             # Bristol 1-7
    bowel_freq_per_day: float | None = None
    nausea: bool | None = None
    food_reactivity_count: float | None = None  # meals with symptoms

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Digestion:
        data = data or {}
        return cls(
            bloating=_opt_float(data.get("bloating")),
            stool_form=_opt_float(_pick(data, "stoolForm", "stool_form")),
            bowel_freq_per_day=_opt_float(_pick(data, "bowelFreqPerDay", "bowel_freq_per_day")),
            nausea=_opt_bool(data.get("nausea")),
            food_reactivity_count=_opt_float(
                _pick(data, "foodReactivityCount", "food_reactivity_count")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "bloating": self.bloating,
            "stoolForm": self.stool_form,
            "bowelFreqPerDay": self.bowel_freq_per_day,
            "nausea": self.nausea,
            "foodReactivityCount": self.food_reactivity_count,
        })


@dataclass(frozen=True)
class CycleCheckIn:
    cycle_day: int | None = None
    pms_severity: float | None = None   # 0-3
    menstrual: bool | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> CycleCheckIn | None:
        if not data:
            return None
        day = _opt_float(_pick(data, "cycleDay", "cycle_day"))
        return cls(
            cycle_day=int(day) if day is not None else None,
            pms_severity=_opt_float(_pick(data, "pmsSeverity", "pms_severity")),
            menstrual=_opt_bool(data.get("menstrual")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "cycleDay": self.cycle_day,
            "pmsSeverity": self.pms_severity,
            "menstrual": self.menstrual,
        })


@dataclass(frozen=True)
class CheckInSample:
    """A subjective daily check-in."""

    client_id: str
    timestamp: str
    energy_score: float | None = None    # 1-5
    stress_score: float | None = None    # 1-5
    soreness_score: float | None = None  # 1-5
    digestion: Digestion = field(default_factory=Digestion)
    cycle: CycleCheckIn | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CheckInSample:
        return cls(
            client_id=str(_pick(data, "clientId", "client_id") or ""),
            timestamp=str(data.get("timestamp", "")),
            energy_score=_opt_float(_pick(data, "energyScore", "energy_score")),
            stress_score=_opt_float(_pick(data, "stressScore", "stress_score")),
            soreness_score=_opt_float(_pick(data, "sorenessScore", "soreness_score")),
            digestion=Digestion.from_dict(data.get("digestion")),
            cycle=CycleCheckIn.from_dict(data.get("cycle")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "clientId": self.client_id,
            "timestamp": self.timestamp,
            "energyScore": self.energy_score,
            "stressScore": self.stress_score,
            "sorenessScore": self.soreness_score,
            "digestion": self.digestion.to_dict(),
            "cycle": self.cycle.to_dict() if self.cycle else None,
        })


@dataclass(frozen=True)
class TrainingLog:
    """One training session.

    ``strength_estimate`` (e.g. an estimated 1RM) is supplied by an external
    rolling-stats collaborator; it is never derived here.
    """

    client_id: str
    timestamp: str
    session_type: SessionType
    volume_load: float | None = None   # sum(weight * reps)
    rpe: float | None = None           # 1-10
    duration_min: float | None = None
    strength_estimate: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TrainingLog:
        raw_type = str(_pick(data, "sessionType", "session_type") or "").upper()
        try:
            session_type = SessionType(raw_type)
        except ValueError:
            # Unknown session types still count as a logged day of training data.
            session_type = SessionType.REST
        return cls(
            client_id=str(_pick(data, "clientId", "client_id") or ""),
            timestamp=str(data.get("timestamp", "")),
            session_type=session_type,
            volume_load=_opt_float(_pick(data, "volumeLoad", "volume_load")),
            rpe=_opt_float(data.get("rpe")),
            duration_min=_opt_float(_pick(data, "durationMin", "duration_min")),
            strength_estimate=_opt_float(_pick(data, "strengthEstimate", "strength_estimate")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "clientId": self.client_id,
            "timestamp": self.timestamp,
            "sessionType": self.session_type.value,
            "volumeLoad": self.volume_load,
            "rpe": self.rpe,
            "durationMin": self.duration_min,
            "strengthEstimate": self.strength_estimate,
        })


@dataclass(frozen=True)
class LabPanel:
    crp: float | None = None
    alt: float | None = None
    ast: float | None = None
    tsh: float | None = None
    cortisol_am: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> LabPanel | None:
        if not data:
            return None
        return cls(
            crp=_opt_float(data.get("crp")),
            alt=_opt_float(data.get("alt")),
            ast=_opt_float(data.get("ast")),
            tsh=_opt_float(data.get("tsh")),
            cortisol_am=_opt_float(_pick(data, "cortisolAm", "cortisol_am")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "crp": self.crp,
            "alt": self.alt,
            "ast": self.ast,
            "tsh": self.tsh,
            "cortisolAm": self.cortisol_am,
        })


@dataclass(frozen=True)
class BodyMetrics:
    client_id: str
    timestamp: str
    weight_kg: float | None = None
    body_fat_pct: float | None = None
    waist_cm: float | None = None
    labs: LabPanel | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BodyMetrics:
        return cls(
            client_id=str(_pick(data, "clientId", "client_id") or ""),
            timestamp=str(data.get("timestamp", "")),
            weight_kg=_opt_float(_pick(data, "weightKg", "weight_kg")),
            body_fat_pct=_opt_float(_pick(data, "bodyFatPct", "body_fat_pct")),
            waist_cm=_opt_float(_pick(data, "waistCm", "waist_cm")),
            labs=LabPanel.from_dict(data.get("labs")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "clientId": self.client_id,
            "timestamp": self.timestamp,
            "weightKg": self.weight_kg,
            "bodyFatPct": self.body_fat_pct,
            "waistCm": self.waist_cm,
            "labs": self.labs.to_dict() if self.labs else None,
        })


# ---------------------------------------------------------------------------
# Weekly aggregate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GiSummary:
    bloating_avg: float | None = None
    stool_form_avg: float | None = None
    bowel_freq_avg: float | None = None
    food_reactivity_avg: float | None = None
    nausea_days: int = 0


@dataclass(frozen=True)
class CycleSummary:
    cycle_day_mode: int | None = None
    pms_severity_avg: float | None = None
    menstrual_days: int = 0


@dataclass(frozen=True)
class TrainingSummary:
    strength_sessions: int = 0
    cardio_sessions: int = 0
    mobility_sessions: int = 0
    rest_days: int = 0
    volume_load_sum: float = 0.0
    rpe_avg: float | None = None
    duration_min_sum: float = 0.0


@dataclass(frozen=True)
class BodySummary:
    weight_delta_kg: float | None = None
    body_fat_delta_pct: float | None = None
    strength_trend_pct: float = 0.0


@dataclass(frozen=True)
class WeeklyAggregate:
    """Reduced signals for one (client, week).

    ``data_days`` counts distinct calendar days that contributed at least one
    in-window sample of any kind; it drives the low-data confidence cap.
    """

    client_id: str
    week_start_iso: str
    week_end_iso: str
    hrv_avg: float | None = None
    rhr_avg: float | None = None
    sleep_avg: float | None = None
    sleep_efficiency_avg: float | None = None
    steps_avg: float | None = None
    energy_avg: float | None = None
    stress_avg: float | None = None
    soreness_avg: float | None = None
    gi: GiSummary = field(default_factory=GiSummary)
    cycle: CycleSummary = field(default_factory=CycleSummary)
    training: TrainingSummary = field(default_factory=TrainingSummary)
    body: BodySummary = field(default_factory=BodySummary)
    data_days: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientId": self.client_id,
            "weekStartISO": self.week_start_iso,
            "weekEndISO": self.week_end_iso,
            **_compact({
                "hrvAvg": self.hrv_avg,
                "rhrAvg": self.rhr_avg,
                "sleepAvg": self.sleep_avg,
                "sleepEfficiencyAvg": self.sleep_efficiency_avg,
                "stepsAvg": self.steps_avg,
                "energyAvg": self.energy_avg,
                "stressAvg": self.stress_avg,
                "sorenessAvg": self.soreness_avg,
            }),
            "gi": {
                **_compact({
                    "bloatingAvg": self.gi.bloating_avg,
                    "stoolFormAvg": self.gi.stool_form_avg,
                    "bowelFreqAvg": self.gi.bowel_freq_avg,
                    "foodReactivityAvg": self.gi.food_reactivity_avg,
                }),
                "nauseaDays": self.gi.nausea_days,
            },
            "cycle": {
                **_compact({
                    "cycleDayMode": self.cycle.cycle_day_mode,
                    "pmsSeverityAvg": self.cycle.pms_severity_avg,
                }),
                "menstrualDays": self.cycle.menstrual_days,
            },
            "training": {
                "strengthSessions": self.training.strength_sessions,
                "cardioSessions": self.training.cardio_sessions,
                "mobilitySessions": self.training.mobility_sessions,
                "restDays": self.training.rest_days,
                "volumeLoadSum": self.training.volume_load_sum,
                "durationMinSum": self.training.duration_min_sum,
                **_compact({"rpeAvg": self.training.rpe_avg}),
            },
            "body": {
                **_compact({
                    "weightDeltaKg": self.body.weight_delta_kg,
                    "bodyFatDeltaPct": self.body.body_fat_delta_pct,
                }),
                "strengthTrendPct": self.body.strength_trend_pct,
            },
            "dataDays": self.data_days,
        }


# ---------------------------------------------------------------------------
# Baseline (read-only input)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BaselineStats:
    """Per-client rolling reference values, supplied by a collaborator."""

    hrv_median: float
    rhr_baseline: float
    volume_load_baseline: float
    strength_baseline: float
    steps_baseline: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BaselineStats:
        return cls(
            hrv_median=float(_pick(data, "hrvMedian", "hrv_median") or 0.0),
            rhr_baseline=float(_pick(data, "rhrBaseline", "rhr_baseline") or 0.0),
            volume_load_baseline=float(
                _pick(data, "volumeLoadBaseline", "volume_load_baseline") or 0.0
            ),
            strength_baseline=float(_pick(data, "strengthBaseline", "strength_baseline") or 0.0),
            steps_baseline=_opt_float(_pick(data, "stepsBaseline", "steps_baseline")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "hrvMedian": self.hrv_median,
            "rhrBaseline": self.rhr_baseline,
            "volumeLoadBaseline": self.volume_load_baseline,
            "strengthBaseline": self.strength_baseline,
            "stepsBaseline": self.steps_baseline,
        })


# ---------------------------------------------------------------------------
# Assessment and guidance
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MarchPhaseAssessment:
    """The decided phase for one client-week, with its evidence."""

    id: str
    client_id: str
    week_start_iso: str
    decided_phase: MarchPhase
    confidence: float
    phase_scores: Mapping[MarchPhase, float]
    rationale: tuple[str, ...]
    created_at: str

    def __post_init__(self) -> None:
        scores = MappingProxyType(
            {phase: float(self.phase_scores[phase]) for phase in PHASE_PRIORITY}
        )
        object.__setattr__(self, "phase_scores", scores)
        object.__setattr__(self, "rationale", tuple(self.rationale))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "weekStartISO": self.week_start_iso,
            "decidedPhase": self.decided_phase.value,
            "confidence": self.confidence,
            "phaseScores": {p.value: s for p, s in self.phase_scores.items()},
            "rationale": list(self.rationale),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MarchPhaseAssessment:
        raw_scores = _pick(data, "phaseScores", "phase_scores") or {}
        return cls(
            id=str(data.get("id", "")),
            client_id=str(_pick(data, "clientId", "client_id") or ""),
            week_start_iso=str(_pick(data, "weekStartISO", "week_start_iso") or ""),
            decided_phase=MarchPhase(_pick(data, "decidedPhase", "decided_phase")),
            confidence=float(data.get("confidence", 0.0)),
            phase_scores={
                phase: float(raw_scores.get(phase.value, 0.0)) for phase in PHASE_PRIORITY
            },
            rationale=tuple(data.get("rationale", ())),
            created_at=str(_pick(data, "createdAt", "created_at") or ""),
        )


@dataclass(frozen=True)
class MarchPhaseGuidance:
    """Static coaching guidance for one phase."""

    phase: MarchPhase
    focus: str
    key_actions: tuple[str, ...]
    training_adjustments: tuple[str, ...]
    nutrition_tips: tuple[str, ...]
    red_flags: tuple[str, ...]
    duration: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "focus": self.focus,
            "keyActions": list(self.key_actions),
            "trainingAdjustments": list(self.training_adjustments),
            "nutritionTips": list(self.nutrition_tips),
            "redFlags": list(self.red_flags),
            "duration": self.duration,
        }
