"""Weekly phase orchestration: fetch -> aggregate -> score -> persist.

The service is the only part of the engine that reads a clock or touches a
sample store. Everything below it is pure.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable

from march.domains.phase.connectors import MarchSampleSource
from march.domains.phase.domain_logic.phase_models import BaselineStats, MarchPhaseAssessment
from march.domains.phase.domain_logic.phase_scorer import PhaseScorer
from march.domains.phase.domain_logic.sample_aggregator import (
    aggregate_weekly,
    has_sufficient_data,
    parse_timestamp,
    week_window,
)
from march.domains.phase.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Weekly recomputation runs Sunday 23:00 UTC.
COMPUTATION_WEEKDAY = 6
COMPUTATION_TIME = time(23, 0)

HIGH_QUALITY_SAMPLES = 10
MEDIUM_QUALITY_SAMPLES = 5
MAX_HISTORY_LIMIT = 104

NEUTRAL_BASELINE = BaselineStats(
    hrv_median=0.0,
    rhr_baseline=0.0,
    volume_load_baseline=0.0,
    strength_baseline=0.0,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def current_week_start(now: datetime) -> date:
    """Monday of the week containing ``now`` (UTC)."""
    today = now.astimezone(timezone.utc).date()
    return today - timedelta(days=today.weekday())


def next_computation(now: datetime) -> datetime:
    """The next Sunday 23:00 UTC strictly after ``now``."""
    now = now.astimezone(timezone.utc)
    days_ahead = (COMPUTATION_WEEKDAY - now.weekday()) % 7
    candidate = datetime.combine(
        now.date() + timedelta(days=days_ahead), COMPUTATION_TIME, tzinfo=timezone.utc
    )
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def _require_client(client_id: str | None) -> str:
    if client_id is None or not str(client_id).strip():
        raise ValidationError("client_id is required")
    return str(client_id).strip()


class MarchPhaseService:
    """Computes, stores and serves weekly phase assessments.

    Usage::

        service = MarchPhaseService(source, PhaseScorer(config))
        assessment = service.compute_weekly_assessment("client-1")
        latest = service.get_current_phase("client-1")
    """

    def __init__(
        self,
        source: MarchSampleSource,
        scorer: PhaseScorer | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        history_limit: int = 12,
    ) -> None:
        self._source = source
        self._scorer = scorer or PhaseScorer()
        self._clock = clock or _utcnow
        self._history_limit = history_limit

    @property
    def source(self) -> MarchSampleSource:
        return self._source

    @property
    def scorer(self) -> PhaseScorer:
        return self._scorer

    def now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now

    def current_week_start(self) -> date:
        return current_week_start(self.now())

    def _resolve_week(self, week_start: str | date | datetime | None) -> date:
        if week_start is None or week_start == "":
            return self.current_week_start()
        parsed = parse_timestamp(week_start)
        if parsed is None:
            raise ValidationError(f"Invalid week start: {week_start!r}")
        return parsed.date()

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def compute_weekly_assessment(
        self,
        client_id: str,
        week_start: str | date | datetime | None = None,
    ) -> MarchPhaseAssessment:
        """Aggregate and score one client-week, then append it to history.

        Args:
            client_id: Client to assess.
            week_start: First day of the week; defaults to this week's Monday.

        Raises:
            ValidationError: Missing client id or malformed week start.
            UpstreamDataError: The sample store failed.
        """
        client_id = _require_client(client_id)
        week = self._resolve_week(week_start)
        start, end = week_window(week)

        biometrics = self._source.get_biometrics(client_id, start, end)
        check_ins = self._source.get_check_ins(client_id, start, end)
        training = self._source.get_training_logs(client_id, start, end)
        body = self._source.get_body_metrics(client_id, start, end)
        baseline = self._source.get_baseline(client_id)

        aggregate = aggregate_weekly(
            client_id, week, biometrics, check_ins, training, body, baseline=baseline
        )

        if baseline is None:
            logger.warning(
                "No baseline for client %s; scoring week %s on absolute thresholds only",
                client_id,
                aggregate.week_start_iso,
            )
            baseline = NEUTRAL_BASELINE

        assessment = self._scorer.compute_phase_assessment(
            aggregate, baseline, created_at=self.now().isoformat()
        )
        self._source.save_assessment(assessment)

        logger.info(
            "Computed phase for %s week %s: %s (confidence %.2f, %d data days)",
            client_id,
            assessment.week_start_iso,
            assessment.decided_phase.value,
            assessment.confidence,
            aggregate.data_days,
        )
        return assessment

    def recompute_phase(
        self, client_id: str, week_start: str | date | datetime | None = None
    ) -> MarchPhaseAssessment:
        """Compute a fresh record for the week; it supersedes earlier ones."""
        return self.compute_weekly_assessment(client_id, week_start)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_current_phase(self, client_id: str) -> MarchPhaseAssessment | None:
        """Assessment for the latest assessed week, or None when the client has none yet."""
        return self._source.get_latest_assessment(_require_client(client_id))

    def require_current_phase(self, client_id: str) -> MarchPhaseAssessment:
        assessment = self.get_current_phase(client_id)
        if assessment is None:
            raise NotFoundError(f"No phase assessment for client {client_id!r}")
        return assessment

    def get_week_phase(
        self, client_id: str, week_start: str | date | datetime
    ) -> MarchPhaseAssessment | None:
        """The record in force for one week; a recomputation replaces earlier ones."""
        client_id = _require_client(client_id)
        week = self._resolve_week(week_start)
        return self._source.get_week_assessment(client_id, week.isoformat())

    def get_phase_history(self, client_id: str, limit: int | None = None) -> list[MarchPhaseAssessment]:
        """One assessment per week, latest week first."""
        client_id = _require_client(client_id)
        if limit is None:
            limit = self._history_limit
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
        return self._source.get_assessment_history(client_id, limit)

    def get_weekly_status(self, client_id: str) -> dict[str, Any]:
        """Data coverage of the current week and the computation schedule.

        ``hasData`` uses the same distinct-day rule as confidence scoring, so
        a burst of samples on one day still reads as low quality.
        """
        client_id = _require_client(client_id)
        now = self.now()
        week = current_week_start(now)
        start, end = week_window(week)

        sample_count = self._source.count_samples(client_id, start, end)
        aggregate = aggregate_weekly(
            client_id,
            week,
            self._source.get_biometrics(client_id, start, end),
            self._source.get_check_ins(client_id, start, end),
            self._source.get_training_logs(client_id, start, end),
            self._source.get_body_metrics(client_id, start, end),
        )
        has_data = has_sufficient_data(aggregate, self._scorer.config)
        latest = self._source.get_latest_assessment(client_id)

        if not has_data:
            quality = "low"
        elif sample_count >= HIGH_QUALITY_SAMPLES:
            quality = "high"
        elif sample_count >= MEDIUM_QUALITY_SAMPLES:
            quality = "medium"
        else:
            quality = "low"

        return {
            "hasData": has_data,
            "lastComputed": latest.created_at if latest is not None else None,
            "nextComputation": next_computation(now).isoformat(),
            "dataQuality": quality,
            "sampleCount": sample_count,
        }
