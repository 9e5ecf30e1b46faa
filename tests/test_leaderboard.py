"""
Tests de los rankings diarios por sala.

Cubre:
- fecha por defecto ("ayer en UTC+8")
- orden: total, últimos 7 días, nombre
- puntos posteriores a la fecha no cuentan
- reconstruir la misma fecha sobrescribe (nunca duplica)
- lectura con meta (fecha explícita vs por defecto)
"""

from datetime import date, datetime, timezone

import pytest

import leaderboard
from errors import InvalidInputError, NotRoomMemberError, SnapshotNotFoundError
from leaderboard import (
    DEFAULTED_NOTE, build_all_snapshots, build_snapshot, default_snapshot_date, get_leaderboard
)
from models import LeaderboardSnapshot

SNAP = date(2024, 3, 10)


@pytest.fixture
def member(make):
    return make.user("ana")


@pytest.fixture
def room(make, member):
    room = make.room("Sala")
    make.join(room, member)
    return room


class TestDefaultDate:

    def test_yesterday_in_reference_zone(self):
        # 15:30 UTC → 23:30 en UTC+8, todavía 1 de marzo
        assert default_snapshot_date(datetime(2024, 3, 1, 15, 30, tzinfo=timezone.utc)) == date(2024, 2, 29)

    def test_day_changes_at_midnight_utc8(self):
        # 16:30 UTC → 00:30 del 2 de marzo en UTC+8
        assert default_snapshot_date(datetime(2024, 3, 1, 16, 30, tzinfo=timezone.utc)) == date(2024, 3, 1)


class TestRanking:

    def test_equal_points_break_on_name(self, db, make, room):
        lobos = make.team(room, "lobos")
        aguilas = make.team(room, "Águilas")
        make.score(lobos, SNAP, 10)
        make.score(aguilas, SNAP, 10)

        ranking = build_snapshot(db, room.id, SNAP)

        assert [e["team_name"] for e in ranking] == ["Águilas", "lobos"]

    def test_equal_totals_break_on_last_seven_days(self, db, make, room):
        old = make.team(room, "Antiguos")
        recent = make.team(room, "Recientes")
        make.score(old, date(2024, 2, 1), 10)
        make.score(recent, date(2024, 3, 4), 10)  # SNAP - 6: dentro de la ventana

        ranking = build_snapshot(db, room.id, SNAP)

        assert [e["team_name"] for e in ranking] == ["Recientes", "Antiguos"]
        assert ranking[0]["points_last7_days"] == 10
        assert ranking[1]["points_last7_days"] == 0

    def test_scores_after_the_date_are_ignored(self, db, make, room):
        team = make.team(room, "Lobos")
        make.score(team, SNAP, 5)
        make.score(team, date(2024, 3, 11), 100)

        entry = build_snapshot(db, room.id, SNAP)[0]

        assert entry["total_points"] == 5
        assert entry["last_score_date"] == "2024-03-10"

    def test_zero_point_rows_still_set_last_score_date(self, db, make, room):
        team = make.team(room, "Lobos")
        make.score(team, date(2024, 3, 1), 5)
        make.score(team, date(2024, 3, 8), 0, reason="nobody_completed")

        entry = build_snapshot(db, room.id, SNAP)[0]

        assert entry["last_score_date"] == "2024-03-08"

    def test_member_count_and_team_without_scores(self, db, make, room, member):
        make.team(room, "Lobos", member, make.user("bea"))

        entry = build_snapshot(db, room.id, SNAP)[0]

        assert entry["member_count"] == 2
        assert entry["total_points"] == 0
        assert entry["last_score_date"] is None


class TestSnapshotStorage:

    def test_rebuilding_the_same_date_overwrites(self, db, make, room):
        team = make.team(room, "Lobos")
        make.score(team, SNAP, 5)
        build_snapshot(db, room.id, SNAP)
        make.score(team, SNAP, 7, reason="bonus")

        build_snapshot(db, room.id, SNAP)

        rows = db.query(LeaderboardSnapshot).all()
        assert len(rows) == 1
        db.refresh(rows[0])
        assert rows[0].ranking[0]["total_points"] == 12

    def test_room_without_teams_is_skipped(self, db, make, room):
        empty = make.room("Vacía")
        make.team(room, "Lobos")

        result = build_all_snapshots(db, snapshot_date="2024-03-10")

        assert result["rooms_processed"] == 1
        assert result["upserted"] == 1
        assert [r["room_id"] for r in result["rooms"]] == [room.id]
        assert db.query(LeaderboardSnapshot).filter(LeaderboardSnapshot.room_id == empty.id).count() == 0

    def test_dry_run_writes_nothing(self, db, make, room):
        make.team(room, "Lobos")

        result = build_all_snapshots(db, snapshot_date="2024-03-10", dry_run=True)

        assert result["rooms_processed"] == 1
        assert result["upserted"] == 0
        assert db.query(LeaderboardSnapshot).count() == 0

    def test_batch_uses_default_date(self, db, make, room):
        make.team(room, "Lobos")

        result = build_all_snapshots(db, now=datetime(2024, 3, 11, 1, 0, tzinfo=timezone.utc))

        assert result["snapshot_date"] == SNAP

    def test_bad_batch_date(self, db):
        with pytest.raises(InvalidInputError):
            build_all_snapshots(db, snapshot_date="2024-3-10")


class TestReadLeaderboard:

    def test_explicit_date(self, db, make, room, member):
        make.team(room, "Lobos")
        build_snapshot(db, room.id, SNAP)

        result = get_leaderboard(db, member, room.id, snapshot_date="2024-03-10")

        assert result["snapshot_date"] == SNAP
        assert result["meta"] == {"used_date": SNAP, "defaulted_date": False, "note": None}
        assert result["ranking"][0]["team_name"] == "Lobos"

    def test_defaulted_date_is_flagged(self, db, make, room, member):
        make.team(room, "Lobos")
        build_snapshot(db, room.id, SNAP)

        result = get_leaderboard(db, member, room.id, now=datetime(2024, 3, 11, 1, 0, tzinfo=timezone.utc))

        assert result["meta"]["used_date"] == SNAP
        assert result["meta"]["defaulted_date"] is True
        assert result["meta"]["note"] == DEFAULTED_NOTE

    def test_missing_snapshot(self, db, room, member):
        with pytest.raises(SnapshotNotFoundError):
            get_leaderboard(db, member, room.id, snapshot_date="2024-03-10")

    def test_non_member(self, db, make, room):
        make.team(room, "Lobos")
        build_snapshot(db, room.id, SNAP)

        with pytest.raises(NotRoomMemberError):
            get_leaderboard(db, make.user("eva"), room.id, snapshot_date="2024-03-10")

    def test_bad_date(self, db, room, member):
        with pytest.raises(InvalidInputError):
            get_leaderboard(db, member, room.id, snapshot_date="10/03/2024")


class TestBatchFailures:

    def test_one_room_failing_does_not_stop_the_batch(self, db, make, room, monkeypatch):
        other = make.room("Gimnasio")
        make.team(room, "Lobos")
        make.team(other, "Osos")
        real = leaderboard.build_snapshot

        def flaky(session, room_id, snapshot_date, dry_run=False):
            if room_id == room.id:
                raise RuntimeError("boom")
            return real(session, room_id, snapshot_date, dry_run=dry_run)

        monkeypatch.setattr(leaderboard, "build_snapshot", flaky)

        result = build_all_snapshots(db, snapshot_date="2024-03-10")

        assert result["failures"] == 1
        assert result["rooms_processed"] == 1
        assert [r["room_id"] for r in result["rooms"]] == [other.id]
        assert [s.room_id for s in db.query(LeaderboardSnapshot).all()] == [other.id]
