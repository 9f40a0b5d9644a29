"""Sample sources: the abstraction the phase service reads from and writes to."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Union, runtime_checkable

from march.domains.phase.domain_logic.phase_models import (
    BaselineStats,
    BiometricsSample,
    BodyMetrics,
    CheckInSample,
    MarchPhaseAssessment,
    TrainingLog,
)

Sample = Union[BiometricsSample, CheckInSample, TrainingLog, BodyMetrics]


@runtime_checkable
class MarchSampleSource(Protocol):
    """Interface for per-client sample retrieval and assessment history.

    The service and tools call these methods without knowing whether data
    lives in the encrypted SQLite store or in memory. Windows are half-open
    ``[start, end)``. Implementations raise ``UpstreamDataError`` when the
    backing store fails.
    """

    def get_biometrics(self, client_id: str, start: datetime, end: datetime) -> list[BiometricsSample]:
        ...

    def get_check_ins(self, client_id: str, start: datetime, end: datetime) -> list[CheckInSample]:
        ...

    def get_training_logs(self, client_id: str, start: datetime, end: datetime) -> list[TrainingLog]:
        ...

    def get_body_metrics(self, client_id: str, start: datetime, end: datetime) -> list[BodyMetrics]:
        ...

    def count_samples(self, client_id: str, start: datetime, end: datetime) -> int:
        """Biometrics, check-in and training samples in the window."""
        ...

    def get_baseline(self, client_id: str) -> BaselineStats | None:
        ...

    def save_sample(self, sample: Sample) -> str:
        """Store one raw sample; return its id."""
        ...

    def save_baseline(self, client_id: str, baseline: BaselineStats) -> None:
        ...

    def save_assessment(self, assessment: MarchPhaseAssessment) -> None:
        """Append an assessment; later records for the same week supersede."""
        ...

    def get_latest_assessment(self, client_id: str) -> MarchPhaseAssessment | None:
        ...

    def get_week_assessment(self, client_id: str, week_start_iso: str) -> MarchPhaseAssessment | None:
        """The record currently in force for one week."""
        ...

    def get_assessment_history(self, client_id: str, limit: int) -> list[MarchPhaseAssessment]:
        """One record per week, the newest save for each, latest week first."""
        ...

    def delete_client_data(self, client_id: str) -> int:
        ...

    @property
    def persistent(self) -> bool:
        """Whether data survives a restart."""
        ...
