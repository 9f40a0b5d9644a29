"""In-memory sample source.

Used when no encryption key is configured (nothing is persisted) and in
tests. Same half-open window semantics as the SQLite-backed source.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from march.domains.phase.connectors import Sample
from march.domains.phase.domain_logic.phase_models import (
    BaselineStats,
    BiometricsSample,
    BodyMetrics,
    CheckInSample,
    MarchPhaseAssessment,
    TrainingLog,
)
from march.domains.phase.domain_logic.sample_aggregator import parse_timestamp

logger = logging.getLogger(__name__)


class InMemorySampleSource:
    """Non-persistent MarchSampleSource.

    Usage::

        source = InMemorySampleSource()
        source.save_sample(BiometricsSample(client_id="c1", timestamp="...", hrv=52))
    """

    def __init__(self) -> None:
        self._samples: list[Sample] = []
        self._baselines: dict[str, BaselineStats] = {}
        self._assessments: list[MarchPhaseAssessment] = []

    @property
    def persistent(self) -> bool:
        return False

    def _select(self, kind: type, client_id: str, start: datetime, end: datetime) -> list[Any]:
        selected = []
        for sample in self._samples:
            if not isinstance(sample, kind) or sample.client_id != client_id:
                continue
            ts = parse_timestamp(sample.timestamp)
            if ts is not None and start <= ts < end:
                selected.append((ts, sample))
        selected.sort(key=lambda pair: pair[0])
        return [sample for _, sample in selected]

    def get_biometrics(self, client_id: str, start: datetime, end: datetime) -> list[BiometricsSample]:
        return self._select(BiometricsSample, client_id, start, end)

    def get_check_ins(self, client_id: str, start: datetime, end: datetime) -> list[CheckInSample]:
        return self._select(CheckInSample, client_id, start, end)

    def get_training_logs(self, client_id: str, start: datetime, end: datetime) -> list[TrainingLog]:
        return self._select(TrainingLog, client_id, start, end)

    def get_body_metrics(self, client_id: str, start: datetime, end: datetime) -> list[BodyMetrics]:
        return self._select(BodyMetrics, client_id, start, end)

    def count_samples(self, client_id: str, start: datetime, end: datetime) -> int:
        return sum(
            len(self._select(kind, client_id, start, end))
            for kind in (BiometricsSample, CheckInSample, TrainingLog)
        )

    def get_baseline(self, client_id: str) -> BaselineStats | None:
        return self._baselines.get(client_id)

    def save_sample(self, sample: Sample) -> str:
        self._samples.append(sample)
        return str(uuid.uuid4())

    def save_baseline(self, client_id: str, baseline: BaselineStats) -> None:
        self._baselines[client_id] = baseline

    def save_assessment(self, assessment: MarchPhaseAssessment) -> None:
        self._assessments.append(assessment)

    def get_latest_assessment(self, client_id: str) -> MarchPhaseAssessment | None:
        history = self.get_assessment_history(client_id, 1)
        return history[0] if history else None

    def get_week_assessment(self, client_id: str, week_start_iso: str) -> MarchPhaseAssessment | None:
        return self._newest_per_week(client_id).get(week_start_iso)

    def get_assessment_history(self, client_id: str, limit: int) -> list[MarchPhaseAssessment]:
        by_week = self._newest_per_week(client_id)
        return [by_week[week] for week in sorted(by_week, reverse=True)][:limit]

    def _newest_per_week(self, client_id: str) -> dict[str, MarchPhaseAssessment]:
        # Later saves win ties on created_at, matching rowid order in SQLite.
        newest: dict[str, MarchPhaseAssessment] = {}
        for assessment in self._assessments:
            if assessment.client_id != client_id:
                continue
            current = newest.get(assessment.week_start_iso)
            if current is None or assessment.created_at >= current.created_at:
                newest[assessment.week_start_iso] = assessment
        return newest

    def delete_client_data(self, client_id: str) -> int:
        before = len(self._samples) + len(self._assessments) + len(self._baselines)
        self._samples = [s for s in self._samples if s.client_id != client_id]
        self._assessments = [a for a in self._assessments if a.client_id != client_id]
        self._baselines.pop(client_id, None)
        removed = before - (len(self._samples) + len(self._assessments) + len(self._baselines))
        logger.info("Deleted %d in-memory records for client %s", removed, client_id)
        return removed
