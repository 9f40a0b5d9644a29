"""Tests for MarchRepository: CRUD with in-memory SQLite."""

from __future__ import annotations

import pytest

from march.core.storage.models import SampleKind, StoredAssessment, StoredBaseline, StoredSample
from march.core.storage.repository import MarchRepository, RepositoryError, normalize_timestamp


def _make_sample(**overrides) -> StoredSample:
    defaults = dict(
        id="",
        client_id="client-1",
        kind=SampleKind.BIOMETRICS,
        timestamp="2026-01-05T07:00:00Z",
        payload={"hrv": 52.0, "rhr": 61.0},
    )
    defaults.update(overrides)
    return StoredSample(**defaults)


def _make_assessment(**overrides) -> StoredAssessment:
    defaults = dict(
        id="",
        assessment_id="march_client-1_2026-01-05",
        client_id="client-1",
        week_start_iso="2026-01-05",
        decided_phase="MITOCHONDRIA",
        confidence=0.95,
        phase_scores={
            "MITOCHONDRIA": 90.0,
            "ABSORPTION_DETOX": 0.0,
            "RESILIENCE": 15.0,
            "CYCLICAL": 0.0,
            "HYPERTROPHY_HEALTHSPAN": 0.0,
        },
        rationale=["HRV 38ms vs baseline 55ms"],
        created_at="2026-01-11T23:00:00+00:00",
    )
    defaults.update(overrides)
    return StoredAssessment(**defaults)


@pytest.fixture
def repo(march_repository) -> MarchRepository:
    return march_repository


class TestNormalizeTimestamp:
    def test_z_suffix(self):
        assert normalize_timestamp("2026-01-05T07:00:00Z") == "2026-01-05T07:00:00.000000+00:00"

    def test_offset_converted_to_utc(self):
        assert normalize_timestamp("2026-01-05T09:00:00+02:00") == "2026-01-05T07:00:00.000000+00:00"

    def test_naive_is_utc(self):
        assert normalize_timestamp("2026-01-05T07:00:00") == "2026-01-05T07:00:00.000000+00:00"

    @pytest.mark.parametrize("value", ["", "soon", "2026-02-30T00:00:00Z"])
    def test_invalid_raises(self, value):
        with pytest.raises(RepositoryError, match="Invalid timestamp"):
            normalize_timestamp(value)


class TestSamples:
    def test_save_generates_id(self, repo: MarchRepository):
        sid = repo.save_sample(_make_sample())
        assert sid
        assert len(sid) == 36

    def test_save_keeps_given_id(self, repo: MarchRepository):
        assert repo.save_sample(_make_sample(id="fixed-id")) == "fixed-id"

    def test_payload_encrypted_at_rest(self, repo: MarchRepository, march_db):
        repo.save_sample(_make_sample())
        raw = march_db.connection.execute("SELECT payload_enc FROM samples").fetchone()[0]
        assert "52.0" not in raw
        assert raw.startswith("gAAAA")

    def test_round_trip(self, repo: MarchRepository):
        repo.save_sample(_make_sample())
        rows = repo.get_samples("client-1", SampleKind.BIOMETRICS)
        assert len(rows) == 1
        assert rows[0].payload == {"hrv": 52.0, "rhr": 61.0}
        assert rows[0].kind is SampleKind.BIOMETRICS
        assert rows[0].timestamp == "2026-01-05T07:00:00.000000+00:00"

    def test_missing_client_rejected(self, repo: MarchRepository):
        with pytest.raises(RepositoryError, match="no client_id"):
            repo.save_sample(_make_sample(client_id=""))

    def test_bad_timestamp_rejected(self, repo: MarchRepository):
        with pytest.raises(RepositoryError):
            repo.save_sample(_make_sample(timestamp="tomorrow"))

    def test_window_is_half_open_and_sorted(self, repo: MarchRepository):
        for ts in ("2026-01-12T00:00:00Z", "2026-01-07T07:00:00Z", "2026-01-05T00:00:00Z",
                   "2026-01-04T23:59:59Z"):
            repo.save_sample(_make_sample(timestamp=ts))

        rows = repo.get_samples(
            "client-1", SampleKind.BIOMETRICS,
            since="2026-01-05T00:00:00+00:00", until="2026-01-12T00:00:00+00:00",
        )
        assert [r.timestamp[:10] for r in rows] == ["2026-01-05", "2026-01-07"]

    def test_window_compares_across_offsets(self, repo: MarchRepository):
        # 2026-01-05T01:00+02:00 is 2026-01-04T23:00 UTC, before the window.
        repo.save_sample(_make_sample(timestamp="2026-01-05T01:00:00+02:00"))
        rows = repo.get_samples("client-1", SampleKind.BIOMETRICS, since="2026-01-05T00:00:00Z")
        assert rows == []

    def test_filters_by_kind_and_client(self, repo: MarchRepository):
        repo.save_sample(_make_sample())
        repo.save_sample(_make_sample(kind=SampleKind.CHECK_IN, payload={"energyScore": 3.0}))
        repo.save_sample(_make_sample(client_id="client-2"))

        assert len(repo.get_samples("client-1", SampleKind.BIOMETRICS)) == 1
        assert len(repo.get_samples("client-1", SampleKind.CHECK_IN)) == 1
        assert repo.get_samples("client-1", SampleKind.BODY) == []

    def test_limit(self, repo: MarchRepository):
        for day in range(5, 9):
            repo.save_sample(_make_sample(timestamp=f"2026-01-{day:02d}T07:00:00Z"))
        assert len(repo.get_samples("client-1", SampleKind.BIOMETRICS, limit=2)) == 2

    def test_count_samples_by_kind(self, repo: MarchRepository):
        repo.save_sample(_make_sample())
        repo.save_sample(_make_sample(kind=SampleKind.TRAINING, payload={"sessionType": "STRENGTH"}))
        repo.save_sample(_make_sample(kind=SampleKind.BODY, payload={"weightKg": 80.0}))

        assert repo.count_samples("client-1") == 3
        assert repo.count_samples(
            "client-1", kinds=(SampleKind.BIOMETRICS, SampleKind.TRAINING)
        ) == 2
        assert repo.count_samples("client-1", since="2026-01-06T00:00:00Z") == 0


class TestBaselines:
    def test_missing_baseline(self, repo: MarchRepository):
        assert repo.get_baseline("client-1") is None

    def test_upsert(self, repo: MarchRepository, march_db):
        repo.save_baseline(StoredBaseline(client_id="client-1", values={"hrvMedian": 55.0}))
        repo.save_baseline(StoredBaseline(client_id="client-1", values={"hrvMedian": 58.0}))

        stored = repo.get_baseline("client-1")
        assert stored.values == {"hrvMedian": 58.0}
        assert stored.updated_at
        count = march_db.connection.execute("SELECT COUNT(*) FROM baselines").fetchone()[0]
        assert count == 1

    def test_requires_client(self, repo: MarchRepository):
        with pytest.raises(RepositoryError):
            repo.save_baseline(StoredBaseline(client_id="", values={}))


class TestAssessments:
    def test_round_trip(self, repo: MarchRepository):
        row_id = repo.save_assessment(_make_assessment())
        latest = repo.get_latest_assessment("client-1")

        assert latest.id == row_id
        assert latest.assessment_id == "march_client-1_2026-01-05"
        assert latest.phase_scores["MITOCHONDRIA"] == 90.0
        assert latest.rationale == ["HRV 38ms vs baseline 55ms"]
        assert latest.confidence == 0.95

    def test_to_dict_uses_domain_id(self, repo: MarchRepository):
        repo.save_assessment(_make_assessment())
        data = repo.get_latest_assessment("client-1").to_dict()
        assert data["id"] == "march_client-1_2026-01-05"
        assert data["decidedPhase"] == "MITOCHONDRIA"
        assert data["weekStartISO"] == "2026-01-05"

    def test_append_only_newest_wins(self, repo: MarchRepository):
        repo.save_assessment(_make_assessment())
        repo.save_assessment(_make_assessment(
            decided_phase="RESILIENCE", created_at="2026-01-12T09:00:00+00:00",
        ))

        assert repo.count_assessments("client-1") == 2
        assert repo.get_latest_assessment("client-1").decided_phase == "RESILIENCE"
        assert repo.get_week_assessment("client-1", "2026-01-05").decided_phase == "RESILIENCE"

    def test_same_created_at_falls_back_to_insertion_order(self, repo: MarchRepository):
        repo.save_assessment(_make_assessment(decided_phase="MITOCHONDRIA"))
        repo.save_assessment(_make_assessment(decided_phase="CYCLICAL"))
        assert repo.get_latest_assessment("client-1").decided_phase == "CYCLICAL"

    def test_history_newest_first_with_limit(self, repo: MarchRepository):
        for week, created in (("2025-12-22", "2025-12-28T23:00:00+00:00"),
                              ("2025-12-29", "2026-01-04T23:00:00+00:00"),
                              ("2026-01-05", "2026-01-11T23:00:00+00:00")):
            repo.save_assessment(_make_assessment(week_start_iso=week, created_at=created))

        rows = repo.get_assessments("client-1", limit=2)
        assert [r.week_start_iso for r in rows] == ["2026-01-05", "2025-12-29"]

    def test_superseded_rows_hidden_from_history(self, repo: MarchRepository):
        repo.save_assessment(_make_assessment())
        repo.save_assessment(_make_assessment(
            decided_phase="RESILIENCE", created_at="2026-01-12T09:00:00+00:00",
        ))

        rows = repo.get_assessments("client-1")
        assert [r.decided_phase for r in rows] == ["RESILIENCE"]

    def test_backfill_ordered_by_week(self, repo: MarchRepository):
        repo.save_assessment(_make_assessment(week_start_iso="2026-01-05"))
        repo.save_assessment(_make_assessment(
            week_start_iso="2025-12-29", decided_phase="CYCLICAL", created_at="2026-01-12T09:00:00+00:00",
        ))

        assert repo.get_latest_assessment("client-1").week_start_iso == "2026-01-05"
        rows = repo.get_assessments("client-1")
        assert [r.week_start_iso for r in rows] == ["2026-01-05", "2025-12-29"]

    def test_week_lookup_missing(self, repo: MarchRepository):
        assert repo.get_week_assessment("client-1", "2026-01-05") is None
        assert repo.get_latest_assessment("client-1") is None

    def test_count_all(self, repo: MarchRepository):
        repo.save_assessment(_make_assessment())
        repo.save_assessment(_make_assessment(client_id="client-2"))
        assert repo.count_assessments() == 2
        assert repo.count_assessments("client-2") == 1


class TestDeletion:
    def test_delete_client_data(self, repo: MarchRepository):
        repo.save_sample(_make_sample())
        repo.save_sample(_make_sample(kind=SampleKind.CHECK_IN, payload={}))
        repo.save_baseline(StoredBaseline(client_id="client-1", values={"hrvMedian": 55.0}))
        repo.save_assessment(_make_assessment())
        repo.save_sample(_make_sample(client_id="client-2"))

        assert repo.delete_client_data("client-1") == 4
        assert repo.get_samples("client-1", SampleKind.BIOMETRICS) == []
        assert repo.get_baseline("client-1") is None
        assert repo.get_latest_assessment("client-1") is None
        assert len(repo.get_samples("client-2", SampleKind.BIOMETRICS)) == 1

    def test_delete_unknown_client(self, repo: MarchRepository):
        assert repo.delete_client_data("nobody") == 0

    def test_purge_samples_before(self, repo: MarchRepository):
        repo.save_sample(_make_sample(timestamp="2025-06-01T00:00:00Z"))
        repo.save_sample(_make_sample(timestamp="2026-01-05T07:00:00Z"))
        repo.save_assessment(_make_assessment())

        assert repo.purge_samples_before("2026-01-01T00:00:00Z") == 1
        assert repo.count_samples("client-1") == 1
        assert repo.count_assessments("client-1") == 1

    def test_purge_before_days(self, repo: MarchRepository):
        repo.save_sample(_make_sample(timestamp="2001-01-01T00:00:00Z"))
        repo.save_sample(_make_sample(timestamp="2999-01-01T00:00:00Z"))
        assert repo.purge_samples_before_days(30) == 1
        assert repo.count_samples("client-1") == 1
