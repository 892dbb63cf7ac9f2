"""Vote casting and result tallying.

One ballot per (election, voter) is guaranteed by the unique index on the
votes collection: the insert itself is the duplicate check, so two
simultaneous submissions cannot both land.

Tallies read the votes collection without isolation; a tally taken during
a burst of votes can trail a later one by a few ballots.
"""

from pymongo.errors import DuplicateKeyError

from errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from models import ENDED, ONGOING, ROLE_ADMIN, VERIFIED, to_iso, log_audit, to_object_id, utcnow


def _find_election(db, election_id):
    election = db.elections.find_one({"_id": to_object_id(election_id, "Election")})
    if not election:
        raise NotFound("Election not found")
    return election


def cast_vote(db, voter_id, election_id, candidate_id, now=None):
    now = now or utcnow()
    election = _find_election(db, election_id)
    eid = election["_id"]

    if election["status"] != ONGOING:
        raise InvalidState("Voting is only allowed during ongoing elections")

    voter = db.users.find_one({"_id": to_object_id(voter_id, "User")}, {"eligible_elections": 1})
    if not voter or eid not in voter.get("eligible_elections", []):
        raise Forbidden("You are not eligible to vote in this election")

    try:
        cid = to_object_id(candidate_id, "Candidate")
    except NotFound:
        raise InvalidInput("Invalid candidate")
    candidate = db.candidates.find_one({"_id": cid})
    if not candidate or candidate["status"] != VERIFIED or candidate["election_id"] != eid:
        raise InvalidInput("Invalid candidate")

    vote = {"election_id": eid, "voter_id": voter["_id"], "candidate_id": cid, "created_at": now}
    try:
        res = db.votes.insert_one(vote)
    except DuplicateKeyError:
        raise Conflict("You have already voted in this election")
    vote["_id"] = res.inserted_id
    log_audit(db, "vote_cast", voter["_id"], {"election_id": str(eid), "vote_id": str(res.inserted_id)})
    return vote


def count_votes(db, election_id):
    """Map candidate id -> number of votes for one election."""
    pipeline = [
        {"$match": {"election_id": election_id}},
        {"$group": {"_id": "$candidate_id", "count": {"$sum": 1}}},
    ]
    return {row["_id"]: row["count"] for row in db.votes.aggregate(pipeline)}


def ranked_results(db, election_id, counts):
    """Verified candidates with their vote counts, most votes first.

    Ties keep application order (created_at, then id).
    """
    candidates = list(db.candidates.find({"election_id": election_id, "status": VERIFIED})
                      .sort([("created_at", 1), ("_id", 1)]))
    names = {u["_id"]: u.get("name") for u in
             db.users.find({"_id": {"$in": [c["user_id"] for c in candidates]}}, {"name": 1})}
    results = [{
        "candidate_id": str(c["_id"]),
        "candidate_name": names.get(c["user_id"]),
        "manifesto": c.get("manifesto"),
        "profile_image": c.get("profile_image", ""),
        "votes": counts.get(c["_id"], 0),
    } for c in candidates]
    # sorted() is stable, so equal counts stay in application order
    return sorted(results, key=lambda r: -r["votes"])


def turnout_percentage(total_votes, eligible):
    if eligible <= 0:
        return "0%"
    return f"{total_votes / eligible * 100:.2f}%"


def tally(db, election_id, requester_role=None):
    election = _find_election(db, election_id)
    eid = election["_id"]
    if election["status"] != ENDED and requester_role != ROLE_ADMIN:
        raise Forbidden("Results are only available after the election has ended")

    counts = count_votes(db, eid)
    results = ranked_results(db, eid, counts)
    total_votes = sum(counts.values())
    eligible = db.users.count_documents({"eligible_elections": eid})
    return {
        "election_id": str(eid),
        "election_title": election.get("title"),
        "election_status": election.get("status"),
        "start_date": to_iso(election.get("start_date")),
        "end_date": to_iso(election.get("end_date")),
        "total_votes": total_votes,
        "total_eligible_voters": eligible,
        "turnout_percentage": turnout_percentage(total_votes, eligible),
        "results": results,
        "winner": results[0] if results else None,
    }


def live_tally(db, election_id):
    election = _find_election(db, election_id)
    counts = count_votes(db, election["_id"])
    results = [{k: r[k] for k in ("candidate_id", "candidate_name", "votes")}
               for r in ranked_results(db, election["_id"], counts)]
    return {
        "election_id": str(election["_id"]),
        "election_title": election.get("title"),
        "election_status": election.get("status"),
        "total_votes": sum(counts.values()),
        "results": results,
    }


def votes_for_user(db, voter_id):
    vid = to_object_id(voter_id, "User")
    votes = list(db.votes.find({"voter_id": vid}).sort("created_at", -1))
    elections = {e["_id"]: e.get("title") for e in
                 db.elections.find({"_id": {"$in": [v["election_id"] for v in votes]}}, {"title": 1})}
    candidates = {c["_id"]: c for c in
                  db.candidates.find({"_id": {"$in": [v["candidate_id"] for v in votes]}}, {"user_id": 1})}
    names = {u["_id"]: u.get("name") for u in
             db.users.find({"_id": {"$in": [c["user_id"] for c in candidates.values()]}}, {"name": 1})}
    out = []
    for v in votes:
        candidate = candidates.get(v["candidate_id"])
        out.append({
            "vote_id": str(v["_id"]),
            "election_id": str(v["election_id"]),
            "election_title": elections.get(v["election_id"]),
            "candidate_id": str(v["candidate_id"]),
            "candidate_name": names.get(candidate["user_id"]) if candidate else None,
            "created_at": to_iso(v.get("created_at")),
        })
    return out
