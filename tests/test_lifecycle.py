import datetime

import pytest
from pymongo.errors import PyMongoError

from errors import InvalidState, NotFound
from lifecycle import StatusSweeper, end_election, reconcile_election_statuses
from models import ENDED, ONGOING, UPCOMING

DAY = datetime.timedelta(days=1)


def _status(db, election):
    return db.elections.find_one({"_id": election["_id"]})["status"]


def test_upcoming_becomes_ongoing_when_start_passes(db, make_election, now):
    e = make_election(status=UPCOMING, start=now - datetime.timedelta(minutes=1), end=now + DAY)
    result = reconcile_election_statuses(db, now=now)
    assert result == {"started": 1, "ended": 0}
    assert _status(db, e) == ONGOING


def test_start_date_equal_to_now_counts_as_started(db, make_election, now):
    e = make_election(status=UPCOMING, start=now, end=now + DAY)
    reconcile_election_statuses(db, now=now)
    assert _status(db, e) == ONGOING


def test_future_election_stays_upcoming(db, make_election, now):
    e = make_election(status=UPCOMING, start=now + DAY, end=now + 2 * DAY)
    assert reconcile_election_statuses(db, now=now) == {"started": 0, "ended": 0}
    assert _status(db, e) == UPCOMING


def test_ongoing_becomes_ended_when_end_passes(db, make_election, now):
    e = make_election(status=ONGOING, start=now - 2 * DAY, end=now - DAY)
    reconcile_election_statuses(db, now=now)
    assert _status(db, e) == ENDED


def test_window_already_closed_ends_in_one_sweep(db, make_election, now):
    e = make_election(status=UPCOMING, start=now - 2 * DAY, end=now - DAY)
    assert reconcile_election_statuses(db, now=now) == {"started": 1, "ended": 1}
    assert _status(db, e) == ENDED


def test_sweep_is_idempotent(db, make_election, now):
    make_election(status=UPCOMING, start=now - DAY, end=now + DAY)
    make_election(status=ONGOING, start=now - 2 * DAY, end=now - DAY)
    first = reconcile_election_statuses(db, now=now)
    second = reconcile_election_statuses(db, now=now)
    assert first == {"started": 1, "ended": 1}
    assert second == {"started": 0, "ended": 0}


def test_ended_is_never_reverted(db, make_election, now):
    # dates say "ongoing" but an admin ended it
    e = make_election(status=ENDED, start=now - DAY, end=now + DAY)
    for _ in range(3):
        reconcile_election_statuses(db, now=now)
    assert _status(db, e) == ENDED


def test_scoped_sweep_only_touches_one_election(db, make_election, now):
    a = make_election(status=UPCOMING, start=now - DAY, end=now + DAY)
    b = make_election(status=UPCOMING, start=now - DAY, end=now + DAY)
    reconcile_election_statuses(db, now=now, election_id=a["_id"])
    assert _status(db, a) == ONGOING
    assert _status(db, b) == UPCOMING


def test_manual_end_sets_status_and_end_date(db, make_election, now):
    e = make_election(status=ONGOING, start=now - DAY, end=now + DAY)
    updated = end_election(db, e["_id"], now=now)
    assert updated["status"] == ENDED
    assert updated["end_date"] == now
    assert db.audit_logs.find_one({"action": "election_ended"}) is not None


def test_manual_end_is_absorbing_for_later_sweeps(db, make_election, now):
    e = make_election(status=ONGOING, start=now - DAY, end=now + 5 * DAY)
    end_election(db, e["_id"], now=now)
    # still before the scheduled end date
    reconcile_election_statuses(db, now=now + DAY)
    assert _status(db, e) == ENDED


def test_manual_end_twice_is_rejected(db, make_election, now):
    e = make_election(status=ONGOING)
    end_election(db, e["_id"], now=now)
    with pytest.raises(InvalidState):
        end_election(db, e["_id"], now=now)


@pytest.mark.parametrize("election_id", ["not-an-id", "64b7f0c2a1b2c3d4e5f60718"])
def test_manual_end_unknown_election(db, election_id):
    with pytest.raises(NotFound):
        end_election(db, election_id)


def test_sweeper_run_once_uses_injected_clock(db, make_election, now):
    e = make_election(status=UPCOMING, start=now - DAY, end=now + DAY)
    sweeper = StatusSweeper(db, interval=60, clock=lambda: now)
    assert sweeper.run_once() == {"started": 1, "ended": 0}
    assert _status(db, e) == ONGOING


def test_sweeper_logs_and_survives_store_errors(db, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise PyMongoError("connection refused")

    monkeypatch.setattr("lifecycle.reconcile_election_statuses", broken)
    sweeper = StatusSweeper(db, interval=60)
    assert sweeper.run_once() is None
    assert "Error updating election statuses" in caplog.text


def test_sweeper_start_and_stop(db, make_election, now):
    e = make_election(status=UPCOMING, start=now - DAY, end=now + DAY)
    sweeper = StatusSweeper(db, interval=3600, clock=lambda: now)
    sweeper.start()
    try:
        assert sweeper.running
    finally:
        sweeper.stop()
    assert not sweeper.running
    # the first tick runs as soon as the thread starts
    assert _status(db, e) == ONGOING
