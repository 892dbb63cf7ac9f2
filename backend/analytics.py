from collections import defaultdict

from pymongo import DESCENDING

from models import ENDED, ONGOING, PENDING, UPCOMING, VERIFIED, to_iso


def competitiveness_score(counts):
    """1 - margin/total between the top two; None with fewer than two vote-getters."""
    ranked = sorted((c for c in counts if c > 0), reverse=True)
    if len(ranked) < 2:
        return None
    total = sum(ranked)
    return round(1 - (ranked[0] - ranked[1]) / total, 2)


def election_competitiveness(db):
    pipeline = [
        {"$group": {"_id": {"election_id": "$election_id", "candidate_id": "$candidate_id"},
                    "count": {"$sum": 1}}},
    ]
    per_election = defaultdict(list)
    for row in db.votes.aggregate(pipeline):
        per_election[row["_id"]["election_id"]].append(row["count"])

    elections = {e["_id"]: e for e in
                 db.elections.find({"_id": {"$in": list(per_election)}}, {"title": 1, "status": 1})}
    out = []
    for election_id, counts in per_election.items():
        election = elections.get(election_id)
        score = competitiveness_score(counts)
        if election is None or score is None:
            continue
        out.append({
            "election_id": str(election_id),
            "title": election.get("title"),
            "status": election.get("status"),
            "total_votes": sum(counts),
            "competitiveness_score": score,
        })
    return sorted(out, key=lambda e: -e["competitiveness_score"])


def dashboard_stats(db):
    return {
        "total_users": db.users.count_documents({}),
        "total_elections": db.elections.count_documents({}),
        "total_votes": db.votes.count_documents({}),
        "total_candidates": db.candidates.count_documents({"status": VERIFIED}),
        "ongoing_elections": db.elections.count_documents({"status": ONGOING}),
        "pending_applications": db.candidates.count_documents({"status": PENDING}),
    }


def _voter_turnout(db):
    total_users = db.users.count_documents({})
    voters = len(db.votes.distinct("voter_id"))
    return total_users, voters


def election_stats(db, recent=5):
    recent_elections = db.elections.find({}, {"title": 1}).sort("start_date", DESCENDING).limit(recent)
    votes_per_election = [
        {"name": e.get("title"), "votes": db.votes.count_documents({"election_id": e["_id"]})}
        for e in recent_elections
    ]
    total_users, voters = _voter_turnout(db)
    return {
        "upcoming": db.elections.count_documents({"status": UPCOMING}),
        "ongoing": db.elections.count_documents({"status": ONGOING}),
        "ended": db.elections.count_documents({"status": ENDED}),
        "votes_per_election": votes_per_election,
        "voter_turnout": f"{voters / total_users * 100:.1f}%" if total_users else "0%",
    }


def recent_activity(db, limit=10):
    """Latest votes, applications and elections merged into one feed, newest first."""
    votes = list(db.votes.find().sort("created_at", DESCENDING).limit(5))
    candidates = list(db.candidates.find().sort("created_at", DESCENDING).limit(5))
    elections = list(db.elections.find().sort("created_at", DESCENDING).limit(3))

    # names for every referenced user, election and candidate
    candidate_ids = {v["candidate_id"] for v in votes}
    ballot_candidates = {c["_id"]: c for c in db.candidates.find({"_id": {"$in": list(candidate_ids)}}, {"user_id": 1})}
    user_ids = ({v["voter_id"] for v in votes} | {c["user_id"] for c in candidates}
                | {c["user_id"] for c in ballot_candidates.values()}
                | {e["created_by"] for e in elections if e.get("created_by") is not None})
    names = {u["_id"]: u.get("name") for u in db.users.find({"_id": {"$in": list(user_ids)}}, {"name": 1})}
    election_ids = {v["election_id"] for v in votes} | {c["election_id"] for c in candidates}
    titles = {e["_id"]: e.get("title") for e in db.elections.find({"_id": {"$in": list(election_ids)}}, {"title": 1})}
    titles.update({e["_id"]: e.get("title") for e in elections})

    activities = []
    for v in votes:
        ballot_candidate = ballot_candidates.get(v["candidate_id"])
        candidate_name = names.get(ballot_candidate["user_id"]) if ballot_candidate else None
        activities.append({
            "type": "vote",
            "message": f"{names.get(v['voter_id'], 'Unknown')} voted for {candidate_name or 'Unknown'} "
                       f"in {titles.get(v['election_id'], 'Unknown')}",
            "timestamp": v.get("created_at"),
        })
    for c in candidates:
        activities.append({
            "type": "candidate",
            "message": f"{names.get(c['user_id'], 'Unknown')} applied as a candidate for "
                       f"{titles.get(c['election_id'], 'Unknown')}",
            "timestamp": c.get("created_at"),
        })
    for e in elections:
        activities.append({
            "type": "election",
            "message": f"New election \"{e.get('title')}\" was created by {names.get(e.get('created_by'), 'Unknown')}",
            "timestamp": e.get("created_at"),
        })

    activities.sort(key=lambda a: a["timestamp"], reverse=True)
    for a in activities:
        a["timestamp"] = to_iso(a["timestamp"])
    return activities[:limit]


def hourly_vote_distribution(db):
    hours = [0] * 24
    for v in db.votes.find({}, {"created_at": 1}):
        if v.get("created_at") is not None:
            hours[v["created_at"].hour] += 1
    return hours


def advanced_analytics(db):
    total_users, voters = _voter_turnout(db)
    return {
        "voter_engagement": {
            "participation_rate": f"{voters / total_users:.2f}" if total_users else "0.00",
            "total_voters": voters,
            "total_eligible_users": total_users,
        },
        "time_based_analytics": {"hourly_votes": hourly_vote_distribution(db)},
        "election_competitiveness": election_competitiveness(db),
    }
