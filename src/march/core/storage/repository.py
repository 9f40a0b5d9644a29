"""March repository: CRUD for encrypted samples, baselines and assessments.

The repository mediates between storage rows and SQLite, using
FieldEncryptor to encrypt/decrypt raw sample payloads. It knows nothing
about phase scoring; the domain connector turns rows into domain types.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from march.core.storage.database import MarchDatabase
from march.core.storage.encryption import FieldEncryptor
from march.core.storage.models import (
    SampleKind,
    StoredAssessment,
    StoredBaseline,
    StoredSample,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def normalize_timestamp(value: str) -> str:
    """Normalize an ISO 8601 timestamp to fixed-width UTC for range queries.

    Naive values are taken as UTC.

    Raises:
        RepositoryError: If the value is not a valid ISO 8601 timestamp.
    """
    text = (value or "").strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise RepositoryError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="microseconds")


class MarchRepository:
    """Repository for the encrypted sample store and assessment history.

    Usage::

        db = MarchDatabase(":memory:")
        db.initialize()
        repo = MarchRepository(db, FieldEncryptor(key="..."))

        repo.save_sample(StoredSample(id="", client_id="c1", kind=SampleKind.BIOMETRICS,
                                      timestamp="2026-01-05T07:00:00Z", payload={...}))
        rows = repo.get_samples("c1", SampleKind.BIOMETRICS, since=..., until=...)
    """

    def __init__(self, database: MarchDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def save_sample(self, sample: StoredSample) -> str:
        """Persist a raw sample with its payload encrypted.

        Returns:
            The sample ID (generated if ``sample.id`` is empty).

        Raises:
            RepositoryError: If the client id or timestamp is missing/invalid.
        """
        if not sample.client_id:
            raise RepositoryError("Sample has no client_id")
        sid = sample.id or self._new_id()
        kind = SampleKind(sample.kind)

        conn = self._db.connection
        conn.execute(
            """INSERT INTO samples (id, client_id, kind, timestamp, payload_enc, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                sid,
                sample.client_id,
                kind.value,
                normalize_timestamp(sample.timestamp),
                self._enc.encrypt(sample.payload),
                sample.created_at or self._now_iso(),
            ),
        )
        conn.commit()
        logger.info("Saved %s sample %s", kind.value, sid)
        return sid

    def get_samples(
        self,
        client_id: str,
        kind: SampleKind,
        *,
        since: str | None = None,
        until: str | None = None,
        limit: int | None = None,
    ) -> list[StoredSample]:
        """Query one client's samples of one kind, oldest first.

        Args:
            client_id: Owner of the samples.
            kind: Sample kind.
            since: ISO 8601 lower bound (inclusive).
            until: ISO 8601 upper bound (exclusive).
            limit: Maximum results.
        """
        conditions = ["client_id = ?", "kind = ?"]
        params: list[Any] = [client_id, SampleKind(kind).value]

        if since:
            conditions.append("timestamp >= ?")
            params.append(normalize_timestamp(since))
        if until:
            conditions.append("timestamp < ?")
            params.append(normalize_timestamp(until))

        query = f"SELECT * FROM samples WHERE {' AND '.join(conditions)} ORDER BY timestamp ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_sample(row) for row in rows]

    def count_samples(
        self,
        client_id: str,
        *,
        kinds: tuple[SampleKind, ...] | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> int:
        """Count samples without decrypting them."""
        conditions = ["client_id = ?"]
        params: list[Any] = [client_id]

        if kinds:
            conditions.append(f"kind IN ({','.join('?' for _ in kinds)})")
            params.extend(SampleKind(k).value for k in kinds)
        if since:
            conditions.append("timestamp >= ?")
            params.append(normalize_timestamp(since))
        if until:
            conditions.append("timestamp < ?")
            params.append(normalize_timestamp(until))

        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM samples WHERE {' AND '.join(conditions)}", params
        ).fetchone()
        return row[0]

    def _row_to_sample(self, row: sqlite3.Row) -> StoredSample:
        return StoredSample(
            id=row["id"],
            client_id=row["client_id"],
            kind=SampleKind(row["kind"]),
            timestamp=row["timestamp"],
            payload=self._enc.decrypt(row["payload_enc"]) or {},
            created_at=row["created_at"] or "",
        )

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def save_baseline(self, baseline: StoredBaseline) -> None:
        """Insert or replace a client's baseline (encrypted)."""
        if not baseline.client_id:
            raise RepositoryError("Baseline has no client_id")
        conn = self._db.connection
        conn.execute(
            """INSERT INTO baselines (client_id, baseline_enc, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(client_id) DO UPDATE SET
                   baseline_enc = excluded.baseline_enc,
                   updated_at = excluded.updated_at""",
            (
                baseline.client_id,
                self._enc.encrypt(baseline.values),
                baseline.updated_at or self._now_iso(),
            ),
        )
        conn.commit()
        logger.info("Saved baseline for client %s", baseline.client_id)

    def get_baseline(self, client_id: str) -> StoredBaseline | None:
        row = self._db.connection.execute(
            "SELECT * FROM baselines WHERE client_id = ?", (client_id,)
        ).fetchone()
        if row is None:
            return None
        return StoredBaseline(
            client_id=row["client_id"],
            values=self._enc.decrypt(row["baseline_enc"]) or {},
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Assessments (append-only)
    # ------------------------------------------------------------------

    def save_assessment(self, assessment: StoredAssessment) -> str:
        """Append an assessment row. Older rows for the same week are kept.

        Returns:
            The row ID.
        """
        row_id = assessment.id or self._new_id()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO march_assessments (
                id, assessment_id, client_id, week_start_iso, decided_phase,
                confidence, phase_scores_json, rationale_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                row_id,
                assessment.assessment_id,
                assessment.client_id,
                assessment.week_start_iso,
                assessment.decided_phase,
                assessment.confidence,
                json.dumps(assessment.phase_scores, separators=(",", ":")),
                json.dumps(assessment.rationale, separators=(",", ":")),
                assessment.created_at or self._now_iso(),
            ),
        )
        conn.commit()
        logger.info(
            "Saved assessment %s (phase=%s, confidence=%.4f)",
            assessment.assessment_id,
            assessment.decided_phase,
            assessment.confidence,
        )
        return row_id

    def get_assessments(self, client_id: str, *, limit: int = 12) -> list[StoredAssessment]:
        """One row per assessed week for a client, latest week first.

        Within a week the newest row wins; superseded recomputations stay
        in the table but are not returned.
        """
        rows = self._db.connection.execute(
            """SELECT a.* FROM march_assessments a
               WHERE a.client_id = ? AND a.rowid = (
                   SELECT b.rowid FROM march_assessments b
                   WHERE b.client_id = a.client_id AND b.week_start_iso = a.week_start_iso
                   ORDER BY b.created_at DESC, b.rowid DESC LIMIT 1
               )
               ORDER BY a.week_start_iso DESC LIMIT ?""",
            (client_id, limit),
        ).fetchall()
        return [self._row_to_assessment(row) for row in rows]

    def get_latest_assessment(self, client_id: str) -> StoredAssessment | None:
        results = self.get_assessments(client_id, limit=1)
        return results[0] if results else None

    def get_week_assessment(self, client_id: str, week_start_iso: str) -> StoredAssessment | None:
        """The newest row for one client-week."""
        row = self._db.connection.execute(
            """SELECT * FROM march_assessments WHERE client_id = ? AND week_start_iso = ?
               ORDER BY created_at DESC, rowid DESC LIMIT 1""",
            (client_id, week_start_iso),
        ).fetchone()
        return self._row_to_assessment(row) if row is not None else None

    def count_assessments(self, client_id: str | None = None) -> int:
        if client_id:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM march_assessments WHERE client_id = ?", (client_id,)
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM march_assessments"
            ).fetchone()
        return row[0]

    @staticmethod
    def _row_to_assessment(row: sqlite3.Row) -> StoredAssessment:
        return StoredAssessment(
            id=row["id"],
            assessment_id=row["assessment_id"],
            client_id=row["client_id"],
            week_start_iso=row["week_start_iso"],
            decided_phase=row["decided_phase"],
            confidence=row["confidence"],
            phase_scores=json.loads(row["phase_scores_json"]),
            rationale=json.loads(row["rationale_json"]),
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Deletion / data retention
    # ------------------------------------------------------------------

    def delete_client_data(self, client_id: str) -> int:
        """Delete every sample, baseline and assessment of one client.

        Returns:
            Total number of rows deleted.
        """
        conn = self._db.connection
        count = 0
        for table in ("samples", "baselines", "march_assessments"):
            # Table names come from the fixed tuple above
            cursor = conn.execute(f"DELETE FROM {table} WHERE client_id = ?", (client_id,))
            count += cursor.rowcount
        conn.commit()
        logger.warning("Deleted all data for client %s: %d rows removed", client_id, count)
        return count

    def purge_samples_before(self, before_timestamp: str) -> int:
        """Delete raw samples with ``timestamp < before_timestamp``.

        Assessments are kept; they hold no raw readings.
        """
        conn = self._db.connection
        cursor = conn.execute(
            "DELETE FROM samples WHERE timestamp < ?",
            (normalize_timestamp(before_timestamp),),
        )
        conn.commit()
        count = cursor.rowcount
        logger.info("Purged %d samples older than %s", count, before_timestamp)
        return count

    def purge_samples_before_days(self, days: int) -> int:
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        return self.purge_samples_before(cutoff)
