"""Sample source backed by the encrypted SQLite repository."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator

from march.core.storage.database import DatabaseError
from march.core.storage.encryption import EncryptionError
from march.core.storage.models import SampleKind, StoredAssessment, StoredBaseline, StoredSample
from march.core.storage.repository import MarchRepository, RepositoryError
from march.domains.phase.connectors import Sample
from march.domains.phase.domain_logic.phase_models import (
    BaselineStats,
    BiometricsSample,
    BodyMetrics,
    CheckInSample,
    MarchPhaseAssessment,
    TrainingLog,
)
from march.domains.phase.errors import UpstreamDataError

logger = logging.getLogger(__name__)

_KIND_BY_TYPE: dict[type, SampleKind] = {
    BiometricsSample: SampleKind.BIOMETRICS,
    CheckInSample: SampleKind.CHECK_IN,
    TrainingLog: SampleKind.TRAINING,
    BodyMetrics: SampleKind.BODY,
}

_STORE_ERRORS = (RepositoryError, DatabaseError, EncryptionError, sqlite3.Error)


@contextmanager
def _upstream(operation: str) -> Iterator[None]:
    """Translate storage failures into the domain's UpstreamDataError."""
    try:
        yield
    except _STORE_ERRORS as exc:
        logger.error("Sample store failure during %s: %s", operation, exc)
        raise UpstreamDataError(f"Sample store unavailable ({operation}): {exc}") from exc


def _to_assessment(stored: StoredAssessment) -> MarchPhaseAssessment:
    return MarchPhaseAssessment.from_dict(stored.to_dict())


class RepositorySampleSource:
    """Adapts MarchRepository rows to phase-domain types.

    Usage::

        source = RepositorySampleSource(MarchRepository(db, encryptor))
        source.get_biometrics("c1", start, end)
    """

    def __init__(self, repository: MarchRepository) -> None:
        self._repo = repository

    @property
    def repository(self) -> MarchRepository:
        return self._repo

    @property
    def persistent(self) -> bool:
        return True

    def _load(
        self,
        client_id: str,
        kind: SampleKind,
        start: datetime,
        end: datetime,
        factory: Callable[[dict[str, Any]], Any],
    ) -> list[Any]:
        with _upstream(f"read {kind.value}"):
            rows = self._repo.get_samples(
                client_id, kind, since=start.isoformat(), until=end.isoformat()
            )
        return [factory({**row.payload, "clientId": row.client_id}) for row in rows]

    # --- reads --------------------------------------------------------

    def get_biometrics(self, client_id: str, start: datetime, end: datetime) -> list[BiometricsSample]:
        return self._load(client_id, SampleKind.BIOMETRICS, start, end, BiometricsSample.from_dict)

    def get_check_ins(self, client_id: str, start: datetime, end: datetime) -> list[CheckInSample]:
        return self._load(client_id, SampleKind.CHECK_IN, start, end, CheckInSample.from_dict)

    def get_training_logs(self, client_id: str, start: datetime, end: datetime) -> list[TrainingLog]:
        return self._load(client_id, SampleKind.TRAINING, start, end, TrainingLog.from_dict)

    def get_body_metrics(self, client_id: str, start: datetime, end: datetime) -> list[BodyMetrics]:
        return self._load(client_id, SampleKind.BODY, start, end, BodyMetrics.from_dict)

    def count_samples(self, client_id: str, start: datetime, end: datetime) -> int:
        with _upstream("count samples"):
            return self._repo.count_samples(
                client_id,
                kinds=(SampleKind.BIOMETRICS, SampleKind.CHECK_IN, SampleKind.TRAINING),
                since=start.isoformat(),
                until=end.isoformat(),
            )

    def get_baseline(self, client_id: str) -> BaselineStats | None:
        with _upstream("read baseline"):
            stored = self._repo.get_baseline(client_id)
        if stored is None:
            return None
        return BaselineStats.from_dict(stored.values)

    def get_latest_assessment(self, client_id: str) -> MarchPhaseAssessment | None:
        with _upstream("read assessment"):
            stored = self._repo.get_latest_assessment(client_id)
        return _to_assessment(stored) if stored is not None else None

    def get_week_assessment(self, client_id: str, week_start_iso: str) -> MarchPhaseAssessment | None:
        with _upstream("read assessment"):
            stored = self._repo.get_week_assessment(client_id, week_start_iso)
        return _to_assessment(stored) if stored is not None else None

    def get_assessment_history(self, client_id: str, limit: int) -> list[MarchPhaseAssessment]:
        with _upstream("read history"):
            rows = self._repo.get_assessments(client_id, limit=limit)
        return [_to_assessment(row) for row in rows]

    # --- writes -------------------------------------------------------

    def save_sample(self, sample: Sample) -> str:
        kind = _KIND_BY_TYPE[type(sample)]
        payload = sample.to_dict()
        payload.pop("clientId", None)
        with _upstream(f"write {kind.value}"):
            return self._repo.save_sample(StoredSample(
                id="",
                client_id=sample.client_id,
                kind=kind,
                timestamp=sample.timestamp,
                payload=payload,
            ))

    def save_baseline(self, client_id: str, baseline: BaselineStats) -> None:
        with _upstream("write baseline"):
            self._repo.save_baseline(StoredBaseline(client_id=client_id, values=baseline.to_dict()))

    def save_assessment(self, assessment: MarchPhaseAssessment) -> None:
        data = assessment.to_dict()
        with _upstream("write assessment"):
            self._repo.save_assessment(StoredAssessment(
                id="",
                assessment_id=assessment.id,
                client_id=assessment.client_id,
                week_start_iso=assessment.week_start_iso,
                decided_phase=assessment.decided_phase.value,
                confidence=assessment.confidence,
                phase_scores=data["phaseScores"],
                rationale=data["rationale"],
                created_at=assessment.created_at,
            ))

    def delete_client_data(self, client_id: str) -> int:
        with _upstream("delete client data"):
            return self._repo.delete_client_data(client_id)
