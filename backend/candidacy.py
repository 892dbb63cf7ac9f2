from pymongo.errors import DuplicateKeyError

from errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from models import ENDED, PENDING, ROLE_ADMIN, log_audit, to_object_id, utcnow
from validators import check_decision


def _find_candidate(db, candidate_id):
    candidate = db.candidates.find_one({"_id": to_object_id(candidate_id, "Candidate")})
    if not candidate:
        raise NotFound("Candidate not found")
    return candidate


def apply(db, user_id, election_id, manifesto, profile_image=None, now=None):
    now = now or utcnow()
    if not manifesto or not str(manifesto).strip():
        raise InvalidInput("Manifesto is required")
    eid = to_object_id(election_id, "Election")
    election = db.elections.find_one({"_id": eid}, {"status": 1})
    if not election:
        raise NotFound("Election not found")
    if election["status"] == ENDED:
        raise InvalidState("This election has ended and is not accepting applications")

    doc = {
        "user_id": to_object_id(user_id, "User"),
        "election_id": eid,
        "manifesto": str(manifesto).strip(),
        "profile_image": profile_image or "",
        "status": PENDING,
        "created_at": now,
        "updated_at": now,
    }
    try:
        res = db.candidates.insert_one(doc)
    except DuplicateKeyError:
        raise Conflict("You have already applied for this election")
    doc["_id"] = res.inserted_id
    log_audit(db, "candidate_applied", user_id, {"candidate_id": str(res.inserted_id), "election_id": str(eid)})
    return doc


def verify(db, candidate_id, decision, actor=None):
    # no Pending check, an admin may revisit an earlier decision
    decision = check_decision(decision)
    candidate = _find_candidate(db, candidate_id)
    db.candidates.update_one({"_id": candidate["_id"]}, {"$set": {"status": decision, "updated_at": utcnow()}})
    log_audit(db, "candidate_verified", actor, {"candidate_id": str(candidate["_id"]),
                                                "from": candidate["status"], "to": decision})
    candidate["status"] = decision
    return candidate


def remove(db, candidate_id, requester_id, requester_role):
    candidate = _find_candidate(db, candidate_id)
    if requester_role != ROLE_ADMIN and str(candidate["user_id"]) != str(requester_id):
        raise Forbidden("Not authorized to delete this application")
    if db.votes.find_one({"candidate_id": candidate["_id"]}, {"_id": 1}):
        raise Conflict("Cannot remove a candidate that has received votes")

    db.candidates.delete_one({"_id": candidate["_id"]})
    log_audit(db, "candidate_removed", requester_id, {"candidate_id": str(candidate["_id"]),
                                                      "election_id": str(candidate["election_id"])})


def _join(db, candidates, election_fields):
    user_ids = list({c["user_id"] for c in candidates})
    election_ids = list({c["election_id"] for c in candidates})
    users = {u["_id"]: u for u in db.users.find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})}
    projection = dict.fromkeys(election_fields, 1)
    elections = {e["_id"]: e for e in db.elections.find({"_id": {"$in": election_ids}}, projection)}
    return [(c, users.get(c["user_id"]), elections.get(c["election_id"])) for c in candidates]


def list_candidates(db, election_id=None, status=None):
    """Candidates with the owner's name/email and the election title."""
    query = {}
    if election_id:
        query["election_id"] = to_object_id(election_id, "Election")
    if status:
        query["status"] = status
    candidates = list(db.candidates.find(query).sort([("created_at", 1), ("_id", 1)]))
    return _join(db, candidates, ("title",))


def get_candidate(db, candidate_id):
    candidate = _find_candidate(db, candidate_id)
    return _join(db, [candidate], ("title", "description", "start_date", "end_date", "status"))[0]
