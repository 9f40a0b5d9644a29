"""Deterministic weekly aggregation: raw samples -> WeeklyAggregate.

Samples are filtered to the half-open window ``[week_start, week_start + 7d)``
in UTC. Malformed samples (unparseable timestamp, another client's data,
values outside their documented scale) are dropped, never raised: they simply
degrade to "absent signal".

Scalar signals are arithmetic means over the samples that carry them.
Categorical signals use the mode, counts use distinct calendar days, and
body composition uses the chronological first-to-last delta.
"""

from __future__ import annotations

import logging
import math
import statistics
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Sequence

from march.domains.phase.domain_logic.march_config import DEFAULT_MARCH_CONFIG, MarchConfig
from march.domains.phase.domain_logic.phase_models import (
    BaselineStats,
    BiometricsSample,
    BodyMetrics,
    BodySummary,
    CheckInSample,
    CycleSummary,
    GiSummary,
    SessionType,
    TrainingLog,
    TrainingSummary,
    WeeklyAggregate,
)
from march.domains.phase.errors import ValidationError

logger = logging.getLogger(__name__)

WEEK_LENGTH = timedelta(days=7)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def parse_timestamp(value: str | datetime | date | None) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Naive values are taken as UTC. Returns None for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def week_window(week_start: str | date | datetime) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` UTC window for the week beginning on ``week_start``.

    Raises:
        ValidationError: If ``week_start`` cannot be interpreted as a date.
    """
    parsed = parse_timestamp(week_start)
    if parsed is None:
        raise ValidationError(f"Invalid week start: {week_start!r}")
    start = datetime.combine(parsed.date(), time.min, tzinfo=timezone.utc)
    return start, start + WEEK_LENGTH


def _in_window(
    samples: Iterable[Any],
    client_id: str,
    start: datetime,
    end: datetime,
    kind: str,
) -> list[tuple[datetime, Any]]:
    """Keep this client's samples inside the window, sorted chronologically."""
    kept: list[tuple[datetime, Any]] = []
    dropped = 0
    for sample in samples or ():
        ts = parse_timestamp(getattr(sample, "timestamp", None))
        if ts is None or (sample.client_id and sample.client_id != client_id):
            dropped += 1
            continue
        if start <= ts < end:
            kept.append((ts, sample))
    if dropped:
        logger.debug("Dropped %d malformed %s samples for %s", dropped, kind, client_id)
    kept.sort(key=lambda pair: pair[0])
    return kept


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _in_range(value: float | None, lo: float | None = None, hi: float | None = None) -> float | None:
    """Return value if it is finite and lies within [lo, hi], else None (treated as absent)."""
    if value is None or not math.isfinite(value):
        return None
    if lo is not None and value < lo:
        return None
    if hi is not None and value > hi:
        return None
    return value


def _mean(values: Iterable[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return statistics.fmean(present)


def _mode_earliest(values: Sequence[int | None]) -> int | None:
    """Mode of the present values; ties go to the value observed first."""
    present = [v for v in values if v is not None]
    if not present:
        return None
    counts = Counter(present)
    top = max(counts.values())
    for value in present:
        if counts[value] == top:
            return value
    return None  # pragma: no cover


def _first_to_last_delta(values: Sequence[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if len(present) < 2:
        return None
    return present[-1] - present[0]


def _normalized_slope_pct(values: Sequence[float]) -> float:
    """Least-squares slope over index, as a percent of the mean value."""
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = n * (n - 1) / 2
    sum_x2 = n * (n - 1) * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    denom = n * sum_x2 - sum_x * sum_x
    mean_y = sum_y / n
    if denom == 0 or mean_y <= 0:
        return 0.0
    slope = (n * sum_xy - sum_x * sum_y) / denom
    return slope / mean_y * 100


# ---------------------------------------------------------------------------
# Section reducers
# ---------------------------------------------------------------------------

def _present(values: Iterable[float | None]) -> list[float]:
    return [v for v in values if v is not None]


def _summarize_training(logs: Sequence[tuple[datetime, TrainingLog]]) -> TrainingSummary:
    by_type = Counter(log.session_type for _, log in logs)
    return TrainingSummary(
        strength_sessions=by_type[SessionType.STRENGTH],
        cardio_sessions=by_type[SessionType.CARDIO],
        mobility_sessions=by_type[SessionType.MOBILITY],
        rest_days=by_type[SessionType.REST],
        volume_load_sum=sum(_present(_in_range(log.volume_load, 0) for _, log in logs)),
        rpe_avg=_mean(_in_range(log.rpe, 1, 10) for _, log in logs),
        duration_min_sum=sum(_present(_in_range(log.duration_min, 0) for _, log in logs)),
    )


def compute_strength_trend_pct(
    logs: Sequence[tuple[datetime, TrainingLog]],
    baseline: BaselineStats | None = None,
) -> float:
    """Percent strength change for the week.

    With a positive ``baseline.strength_baseline`` the trend is the latest
    supplied ``strength_estimate`` against it, and a week without estimates
    reads as 0.0 (no evidence). Only clients without a strength baseline use
    the slope of volume load across the week's strength sessions. Returns
    0.0 when the week has no usable strength samples.
    """
    strength = [log for _, log in logs if log.session_type is SessionType.STRENGTH]
    if not strength:
        return 0.0

    if baseline is not None and baseline.strength_baseline > 0:
        estimates = _present(_in_range(log.strength_estimate, 0.001) for log in strength)
        if not estimates:
            return 0.0
        return (estimates[-1] / baseline.strength_baseline - 1.0) * 100

    volumes = _present(_in_range(log.volume_load, 0.001) for log in strength)
    return _normalized_slope_pct(volumes)


def _distinct_days(stamps: Iterable[datetime]) -> set[date]:
    return {ts.date() for ts in stamps}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def aggregate_weekly(
    client_id: str,
    week_start: str | date | datetime,
    biometrics: Sequence[BiometricsSample],
    check_ins: Sequence[CheckInSample],
    training: Sequence[TrainingLog],
    body_metrics: Sequence[BodyMetrics],
    *,
    baseline: BaselineStats | None = None,
) -> WeeklyAggregate:
    """Reduce one client-week of raw samples into a WeeklyAggregate.

    Args:
        client_id: Client whose samples are being reduced. Samples tagged with
            a different client id are ignored.
        week_start: First day of the week (date, datetime or ISO string).
        biometrics: Wearable readings.
        check_ins: Subjective daily check-ins.
        training: Training sessions.
        body_metrics: Weigh-ins and body composition readings.
        baseline: Optional reference stats; only used to express a supplied
            strength estimate as a percent change.

    Raises:
        ValidationError: If ``client_id`` is empty or ``week_start`` is malformed.
    """
    if not client_id or not str(client_id).strip():
        raise ValidationError("client_id is required")

    start, end = week_window(week_start)

    bio = _in_window(biometrics, client_id, start, end, "biometrics")
    checks = _in_window(check_ins, client_id, start, end, "check-in")
    sessions = _in_window(training, client_id, start, end, "training")
    body = _in_window(body_metrics, client_id, start, end, "body")

    bio_samples = [s for _, s in bio]
    check_samples = [s for _, s in checks]
    cycles = [(ts, s.cycle) for ts, s in checks if s.cycle is not None]

    gi = GiSummary(
        bloating_avg=_mean(_in_range(c.digestion.bloating, 0, 3) for c in check_samples),
        stool_form_avg=_mean(_in_range(c.digestion.stool_form, 1, 7) for c in check_samples),
        bowel_freq_avg=_mean(_in_range(c.digestion.bowel_freq_per_day, 0) for c in check_samples),
        food_reactivity_avg=_mean(
            _in_range(c.digestion.food_reactivity_count, 0) for c in check_samples
        ),
        nausea_days=len(_distinct_days(ts for ts, c in checks if c.digestion.nausea is True)),
    )

    cycle = CycleSummary(
        cycle_day_mode=_mode_earliest(
            [c.cycle_day if c.cycle_day is not None and c.cycle_day >= 1 else None for _, c in cycles]
        ),
        pms_severity_avg=_mean(_in_range(c.pms_severity, 0, 3) for _, c in cycles),
        menstrual_days=len(_distinct_days(ts for ts, c in cycles if c.menstrual is True)),
    )

    body_summary = BodySummary(
        weight_delta_kg=_first_to_last_delta([_in_range(b.weight_kg, 0.1) for _, b in body]),
        body_fat_delta_pct=_first_to_last_delta(
            [_in_range(b.body_fat_pct, 0, 100) for _, b in body]
        ),
        strength_trend_pct=compute_strength_trend_pct(sessions, baseline),
    )

    data_days = _distinct_days(
        ts for group in (bio, checks, sessions, body) for ts, _ in group
    )

    aggregate = WeeklyAggregate(
        client_id=client_id,
        week_start_iso=start.date().isoformat(),
        week_end_iso=(end - timedelta(days=1)).date().isoformat(),
        hrv_avg=_mean(_in_range(s.hrv, 0.1) for s in bio_samples),
        rhr_avg=_mean(_in_range(s.rhr, 1) for s in bio_samples),
        sleep_avg=_mean(_in_range(s.sleep_hours, 0, 24) for s in bio_samples),
        sleep_efficiency_avg=_mean(_in_range(s.sleep_efficiency, 0, 1) for s in bio_samples),
        steps_avg=_mean(_in_range(s.steps, 0) for s in bio_samples),
        energy_avg=_mean(_in_range(c.energy_score, 1, 5) for c in check_samples),
        stress_avg=_mean(_in_range(c.stress_score, 1, 5) for c in check_samples),
        soreness_avg=_mean(_in_range(c.soreness_score, 1, 5) for c in check_samples),
        gi=gi,
        cycle=cycle,
        training=_summarize_training(sessions),
        body=body_summary,
        data_days=len(data_days),
    )
    logger.debug(
        "Aggregated week %s for %s: %d biometrics, %d check-ins, %d sessions, %d body, %d days",
        aggregate.week_start_iso,
        client_id,
        len(bio),
        len(checks),
        len(sessions),
        len(body),
        aggregate.data_days,
    )
    return aggregate


def has_sufficient_data(
    aggregate: WeeklyAggregate,
    config: MarchConfig = DEFAULT_MARCH_CONFIG,
) -> bool:
    """True iff the week's samples span at least ``low_data_threshold`` distinct days."""
    return aggregate.data_days >= config.confidence.low_data_threshold
