"""Data models for the persistence layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SampleKind(str, Enum):
    BIOMETRICS = "biometrics"
    CHECK_IN = "check_in"
    TRAINING = "training"
    BODY = "body"


@dataclass
class StoredSample:
    """A raw sample row. ``payload`` is encrypted at rest."""

    id: str
    client_id: str
    kind: SampleKind
    timestamp: str  # ISO 8601, normalized to UTC on save
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""


@dataclass
class StoredBaseline:
    client_id: str
    values: dict[str, Any] = field(default_factory=dict)
    updated_at: str = ""


@dataclass
class StoredAssessment:
    """One row of the append-only assessment history.

    ``assessment_id`` is the deterministic ``march_{client}_{week}`` id; it
    repeats across recomputations of the same week, while ``id`` is unique
    per row.
    """

    id: str
    assessment_id: str
    client_id: str
    week_start_iso: str
    decided_phase: str
    confidence: float
    phase_scores: dict[str, float] = field(default_factory=dict)
    rationale: list[str] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Wire form, keyed like the domain assessment."""
        return {
            "id": self.assessment_id,
            "clientId": self.client_id,
            "weekStartISO": self.week_start_iso,
            "decidedPhase": self.decided_phase,
            "confidence": self.confidence,
            "phaseScores": dict(self.phase_scores),
            "rationale": list(self.rationale),
            "createdAt": self.created_at,
        }
