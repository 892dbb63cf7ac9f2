import datetime

import pytest

import analytics
from models import ENDED, ONGOING, PENDING, UPCOMING


@pytest.mark.parametrize("counts,expected", [
    ([5, 5], 1.0),
    ([6, 4], 0.8),
    ([10, 0, 0], None),
    ([7], None),
    ([], None),
    ([3, 1, 1], 0.6),
])
def test_competitiveness_score(counts, expected):
    assert analytics.competitiveness_score(counts) == expected


def _cast(db, election, candidate, voter, when):
    db.votes.insert_one({"election_id": election["_id"], "voter_id": voter["_id"],
                         "candidate_id": candidate["_id"], "created_at": when})


def test_election_competitiveness_skips_one_sided_elections(db, make_user, make_election, make_candidate, now):
    close = make_election(status=ENDED, title="Close race")
    a, b = make_candidate(close), make_candidate(close)
    for _ in range(3):
        _cast(db, close, a, make_user(), now)
    for _ in range(2):
        _cast(db, close, b, make_user(), now)

    landslide = make_election(status=ENDED, title="Landslide")
    c = make_candidate(landslide)
    make_candidate(landslide)
    _cast(db, landslide, c, make_user(), now)

    rows = analytics.election_competitiveness(db)
    assert len(rows) == 1
    assert rows[0]["title"] == "Close race"
    assert rows[0]["total_votes"] == 5
    assert rows[0]["competitiveness_score"] == 0.8


def test_dashboard_stats(db, make_user, make_election, make_candidate, now):
    ongoing = make_election(status=ONGOING)
    make_election(status=UPCOMING)
    verified = make_candidate(ongoing)
    make_candidate(ongoing, status=PENDING)
    _cast(db, ongoing, verified, make_user(), now)

    stats = analytics.dashboard_stats(db)
    assert stats["total_elections"] == 2
    assert stats["ongoing_elections"] == 1
    assert stats["total_candidates"] == 1
    assert stats["pending_applications"] == 1
    assert stats["total_votes"] == 1
    # two candidates plus one voter
    assert stats["total_users"] == 3


def test_election_stats_turnout(db, make_user, make_election, make_candidate, now):
    e = make_election(status=ENDED)
    c = make_candidate(e)
    _cast(db, e, c, make_user(), now)
    make_user()
    make_user()

    stats = analytics.election_stats(db)
    assert stats["ended"] == 1
    assert stats["votes_per_election"] == [{"name": e["title"], "votes": 1}]
    # 1 voter out of 4 users
    assert stats["voter_turnout"] == "25.0%"


def test_election_stats_with_no_users(db):
    assert analytics.election_stats(db)["voter_turnout"] == "0%"


def test_hourly_distribution(db, make_user, make_election, make_candidate, now):
    e = make_election()
    c = make_candidate(e)
    _cast(db, e, c, make_user(), now.replace(hour=9))
    _cast(db, e, c, make_user(), now.replace(hour=9, minute=30))
    _cast(db, e, c, make_user(), now.replace(hour=23))
    hours = analytics.hourly_vote_distribution(db)
    assert len(hours) == 24
    assert hours[9] == 2
    assert hours[23] == 1
    assert sum(hours) == 3


def test_recent_activity_newest_first(db, make_user, make_election, make_candidate, now):
    e = make_election(title="Board")
    voter = make_user(name="Vera")
    candidate = make_candidate(e, user=make_user(name="Cody"))
    _cast(db, e, candidate, voter, now + datetime.timedelta(hours=1))

    feed = analytics.recent_activity(db)
    assert feed[0]["type"] == "vote"
    assert feed[0]["message"] == "Vera voted for Cody in Board"
    assert {a["type"] for a in feed} == {"vote", "candidate", "election"}
    assert len(feed) <= 10


def test_advanced_analytics_shape(db, make_user, make_election, make_candidate, now):
    e = make_election()
    c = make_candidate(e)
    _cast(db, e, c, make_user(), now)
    out = analytics.advanced_analytics(db)
    assert out["voter_engagement"]["total_voters"] == 1
    assert out["voter_engagement"]["total_eligible_users"] == 2
    assert out["voter_engagement"]["participation_rate"] == "0.50"
    assert sum(out["time_based_analytics"]["hourly_votes"]) == 1
    assert out["election_competitiveness"] == []
