"""MCP tools for logging raw samples and setting a client's baseline.

Samples go to the active sample source (encrypted SQLite when an
encryption key is configured). Values outside their documented scale are
rejected here; the aggregator would otherwise silently ignore them.
"""

from __future__ import annotations

import json
import logging
import math
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from march.domains.phase.domain_logic.phase_models import (
    BaselineStats,
    BiometricsSample,
    BodyMetrics,
    CheckInSample,
    CycleCheckIn,
    Digestion,
    LabPanel,
    SessionType,
    TrainingLog,
)
from march.domains.phase.domain_logic.sample_aggregator import parse_timestamp
from march.domains.phase.errors import MarchError, ValidationError
from march.domains.phase.tools.march_phase_tools import error_response

if TYPE_CHECKING:
    from march.domains.phase.domain_logic.phase_service import MarchPhaseService

logger = logging.getLogger(__name__)

# Inclusive (lo, hi); None means unbounded.
VALUE_RANGES: dict[str, tuple[float | None, float | None]] = {
    "hrv": (0, None),
    "rhr": (0, None),
    "sleep_hours": (0, 24),
    "sleep_efficiency": (0, 1),
    "steps": (0, None),
    "energy_score": (1, 5),
    "stress_score": (1, 5),
    "soreness_score": (1, 5),
    "bloating": (0, 3),
    "stool_form": (1, 7),
    "bowel_freq_per_day": (0, None),
    "food_reactivity_count": (0, None),
    "cycle_day": (1, None),
    "pms_severity": (0, 3),
    "volume_load": (0, None),
    "rpe": (1, 10),
    "duration_min": (0, None),
    "strength_estimate": (0, None),
    "weight_kg": (0, None),
    "body_fat_pct": (0, 100),
    "waist_cm": (0, None),
    "hrv_median": (0, None),
    "rhr_baseline": (0, None),
    "volume_load_baseline": (0, None),
    "strength_baseline": (0, None),
    "steps_baseline": (0, None),
}


def check_ranges(values: dict[str, Any]) -> None:
    """Raise ValidationError listing every value outside its scale."""
    problems = []
    for name, value in values.items():
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and not math.isfinite(value):
            problems.append(f"{name}={value} is not a finite number")
            continue
        if name not in VALUE_RANGES:
            continue
        lo, hi = VALUE_RANGES[name]
        if (lo is not None and value < lo) or (hi is not None and value > hi):
            bounds = f"{lo if lo is not None else '-inf'}..{hi if hi is not None else 'inf'}"
            problems.append(f"{name}={value} outside {bounds}")
    if problems:
        raise ValidationError("Out of range: " + ", ".join(problems))


def _require_any(values: dict[str, Any], what: str) -> None:
    if all(v is None for v in values.values()):
        raise ValidationError(f"No {what} provided")


def register_sample_entry_tools(
    mcp: FastMCP,
    service: MarchPhaseService,
) -> None:
    """Register sample logging tools on the MCP server."""
    source = service.source

    def _timestamp(value: str) -> str:
        if not value:
            return service.now().isoformat()
        if parse_timestamp(value) is None:
            raise ValidationError(f"Invalid timestamp: {value!r}")
        return value

    def _client(client_id: str) -> str:
        if not client_id or not client_id.strip():
            raise ValidationError("client_id is required")
        return client_id.strip()

    def _saved(kind: str, sample_id: str, client_id: str, timestamp: str, **extra: Any) -> str:
        logger.info("Logged %s sample %s for client %s", kind, sample_id, client_id)
        return json.dumps({
            "status": "saved",
            "sample_id": sample_id,
            "kind": kind,
            "client_id": client_id,
            "timestamp": timestamp,
            "persistent": source.persistent,
            **extra,
        })

    @mcp.tool
    async def log_biometrics(
        ctx: Context,
        client_id: str,
        timestamp: str = "",
        hrv: float | None = None,
        rhr: float | None = None,
        sleep_hours: float | None = None,
        sleep_efficiency: float | None = None,
        steps: float | None = None,
    ) -> str:
        """Log a wearable reading (HRV, resting HR, sleep, steps).

        Args:
            client_id: The client the reading belongs to.
            timestamp: When it was taken (ISO 8601). Defaults to now.
            hrv: Heart rate variability in ms.
            rhr: Resting heart rate in bpm.
            sleep_hours: Hours slept.
            sleep_efficiency: Fraction of time in bed asleep (0-1).
            steps: Step count for the day.
        """
        values = {
            "hrv": hrv, "rhr": rhr, "sleep_hours": sleep_hours,
            "sleep_efficiency": sleep_efficiency, "steps": steps,
        }
        try:
            client_id = _client(client_id)
            ts = _timestamp(timestamp)
            _require_any(values, "biometrics")
            check_ranges(values)
            sid = source.save_sample(BiometricsSample(client_id=client_id, timestamp=ts, **values))
        except MarchError as exc:
            return error_response(exc)
        recorded = [k for k, v in values.items() if v is not None]
        return _saved("biometrics", sid, client_id, ts, recorded=recorded)

    @mcp.tool
    async def log_check_in(
        ctx: Context,
        client_id: str,
        timestamp: str = "",
        energy_score: float | None = None,
        stress_score: float | None = None,
        soreness_score: float | None = None,
        bloating: float | None = None,
        stool_form: float | None = None,
        bowel_freq_per_day: float | None = None,
        nausea: bool | None = None,
        food_reactivity_count: float | None = None,
        cycle_day: int | None = None,
        pms_severity: float | None = None,
        menstrual: bool | None = None,
    ) -> str:
        """Log a daily subjective check-in (energy, stress, digestion, cycle).

        Args:
            client_id: The client checking in.
            timestamp: When (ISO 8601). Defaults to now.
            energy_score: Energy, 1-5.
            stress_score: Stress, 1-5.
            soreness_score: Muscle soreness, 1-5.
            bloating: Bloating, 0-3.
            stool_form: Bristol stool form, 1-7.
            bowel_freq_per_day: Bowel movements today.
            nausea: Whether nausea occurred.
            food_reactivity_count: Meals that caused symptoms.
            cycle_day: Day of the menstrual cycle (1 = first day of bleeding).
            pms_severity: PMS severity, 0-3.
            menstrual: Whether menstruating today.
        """
        values = {
            "energy_score": energy_score, "stress_score": stress_score,
            "soreness_score": soreness_score, "bloating": bloating, "stool_form": stool_form,
            "bowel_freq_per_day": bowel_freq_per_day, "nausea": nausea,
            "food_reactivity_count": food_reactivity_count, "cycle_day": cycle_day,
            "pms_severity": pms_severity, "menstrual": menstrual,
        }
        try:
            client_id = _client(client_id)
            ts = _timestamp(timestamp)
            _require_any(values, "check-in values")
            check_ranges(values)
            has_cycle = any(v is not None for v in (cycle_day, pms_severity, menstrual))
            sample = CheckInSample(
                client_id=client_id,
                timestamp=ts,
                energy_score=energy_score,
                stress_score=stress_score,
                soreness_score=soreness_score,
                digestion=Digestion(
                    bloating=bloating,
                    stool_form=stool_form,
                    bowel_freq_per_day=bowel_freq_per_day,
                    nausea=nausea,
                    food_reactivity_count=food_reactivity_count,
                ),
                cycle=CycleCheckIn(cycle_day, pms_severity, menstrual) if has_cycle else None,
            )
            sid = source.save_sample(sample)
        except MarchError as exc:
            return error_response(exc)
        recorded = [k for k, v in values.items() if v is not None]
        return _saved("check_in", sid, client_id, ts, recorded=recorded)

    @mcp.tool
    async def log_training(
        ctx: Context,
        client_id: str,
        session_type: str,
        timestamp: str = "",
        volume_load: float | None = None,
        rpe: float | None = None,
        duration_min: float | None = None,
        strength_estimate: float | None = None,
    ) -> str:
        """Log a training session.

        Args:
            client_id: The client who trained.
            session_type: STRENGTH, CARDIO, MOBILITY or REST.
            timestamp: When (ISO 8601). Defaults to now.
            volume_load: Total weight x reps for the session.
            rpe: Session RPE, 1-10.
            duration_min: Session length in minutes.
            strength_estimate: Externally computed strength estimate (e.g. e1RM).
        """
        values = {
            "volume_load": volume_load, "rpe": rpe,
            "duration_min": duration_min, "strength_estimate": strength_estimate,
        }
        try:
            client_id = _client(client_id)
            ts = _timestamp(timestamp)
            try:
                kind = SessionType(session_type.strip().upper())
            except ValueError:
                valid = ", ".join(t.value for t in SessionType)
                raise ValidationError(f"Unknown session_type {session_type!r}; expected one of {valid}") from None
            check_ranges(values)
            sid = source.save_sample(TrainingLog(client_id=client_id, timestamp=ts, session_type=kind, **values))
        except MarchError as exc:
            return error_response(exc)
        return _saved("training", sid, client_id, ts, session_type=kind.value)

    @mcp.tool
    async def log_body_metrics(
        ctx: Context,
        client_id: str,
        timestamp: str = "",
        weight_kg: float | None = None,
        body_fat_pct: float | None = None,
        waist_cm: float | None = None,
        crp: float | None = None,
        alt: float | None = None,
        ast: float | None = None,
        tsh: float | None = None,
        cortisol_am: float | None = None,
    ) -> str:
        """Log a weigh-in, body composition, or lab values.

        Args:
            client_id: The client measured.
            timestamp: When (ISO 8601). Defaults to now.
            weight_kg: Body weight in kg.
            body_fat_pct: Body fat percentage.
            waist_cm: Waist circumference in cm.
            crp: C-reactive protein.
            alt: Alanine aminotransferase.
            ast: Aspartate aminotransferase.
            tsh: Thyroid-stimulating hormone.
            cortisol_am: Morning cortisol.
        """
        body = {"weight_kg": weight_kg, "body_fat_pct": body_fat_pct, "waist_cm": waist_cm}
        labs = {"crp": crp, "alt": alt, "ast": ast, "tsh": tsh, "cortisol_am": cortisol_am}
        try:
            client_id = _client(client_id)
            ts = _timestamp(timestamp)
            _require_any({**body, **labs}, "body metrics")
            check_ranges({**body, **labs})
            panel = LabPanel(**labs) if any(v is not None for v in labs.values()) else None
            sid = source.save_sample(BodyMetrics(client_id=client_id, timestamp=ts, labs=panel, **body))
        except MarchError as exc:
            return error_response(exc)
        recorded = [k for k, v in {**body, **labs}.items() if v is not None]
        return _saved("body", sid, client_id, ts, recorded=recorded)

    @mcp.tool
    async def set_baseline(
        ctx: Context,
        client_id: str,
        hrv_median: float,
        rhr_baseline: float,
        volume_load_baseline: float = 0.0,
        strength_baseline: float = 0.0,
        steps_baseline: float | None = None,
    ) -> str:
        """Set a client's reference values used for relative comparisons.

        Baselines are supplied by the coach or an external stats job; they are
        not derived from logged samples.

        Args:
            client_id: The client.
            hrv_median: Typical HRV in ms.
            rhr_baseline: Typical resting HR in bpm.
            volume_load_baseline: Typical weekly training volume load.
            strength_baseline: Reference strength estimate (e.g. e1RM).
            steps_baseline: Typical daily steps.
        """
        baseline = BaselineStats(
            hrv_median=hrv_median,
            rhr_baseline=rhr_baseline,
            volume_load_baseline=volume_load_baseline,
            strength_baseline=strength_baseline,
            steps_baseline=steps_baseline,
        )
        try:
            client_id = _client(client_id)
            check_ranges({
                "hrv_median": hrv_median, "rhr_baseline": rhr_baseline,
                "volume_load_baseline": volume_load_baseline,
                "strength_baseline": strength_baseline, "steps_baseline": steps_baseline,
            })
            source.save_baseline(client_id, baseline)
        except MarchError as exc:
            return error_response(exc)
        logger.info("Baseline set for client %s", client_id)
        return json.dumps({
            "status": "saved",
            "client_id": client_id,
            "baseline": baseline.to_dict(),
        })
