from pymongo import DESCENDING

from errors import Conflict, InvalidState, NotFound
from lifecycle import reconcile_election_statuses
from models import ENDED, UPCOMING, log_audit, to_object_id, utcnow
from validators import check_date_window, parse_datetime, require_fields


def _find_election(db, election_id):
    oid = to_object_id(election_id, "Election")
    election = db.elections.find_one({"_id": oid})
    if not election:
        raise NotFound("Election not found")
    return election


def _election_fields(data):
    require_fields(data, "title", "description")
    start = parse_datetime(data.get("start_date"), "start_date")
    end = parse_datetime(data.get("end_date"), "end_date")
    check_date_window(start, end)
    return {
        "title": str(data["title"]).strip(),
        "description": str(data["description"]).strip(),
        "start_date": start,
        "end_date": end,
    }


def create_election(db, data: dict, creator_id, now=None):
    now = now or utcnow()
    doc = _election_fields(data)
    doc.update({
        "status": UPCOMING,
        "created_by": to_object_id(creator_id, "User"),
        "created_at": now,
        "updated_at": now,
    })
    res = db.elections.insert_one(doc)
    # a window that has already opened is picked up by the sweep itself
    reconcile_election_statuses(db, now=now, election_id=res.inserted_id)
    log_audit(db, "election_created", creator_id, {"election_id": str(res.inserted_id), "title": doc["title"]})
    return db.elections.find_one({"_id": res.inserted_id})


def update_election(db, election_id, data: dict, actor=None, now=None):
    now = now or utcnow()
    election = _find_election(db, election_id)
    if election["status"] == ENDED:
        raise InvalidState("Cannot update an election that has already ended")

    updates = _election_fields(data)
    updates["updated_at"] = now
    db.elections.update_one({"_id": election["_id"]}, {"$set": updates})
    reconcile_election_statuses(db, now=now, election_id=election["_id"])
    log_audit(db, "election_edited", actor, {"election_id": str(election["_id"])})
    return db.elections.find_one({"_id": election["_id"]})


def get_election(db, election_id):
    election = _find_election(db, election_id)
    creator = None
    if election.get("created_by") is not None:
        creator = db.users.find_one({"_id": election["created_by"]}, {"name": 1})
    return election, creator


def list_elections(db):
    elections = list(db.elections.find().sort("start_date", DESCENDING))
    creator_ids = list({e["created_by"] for e in elections if e.get("created_by") is not None})
    creators = {u["_id"]: u for u in db.users.find({"_id": {"$in": creator_ids}}, {"name": 1})}
    return [(e, creators.get(e.get("created_by"))) for e in elections]


def delete_election(db, election_id, actor=None):
    election = _find_election(db, election_id)
    oid = election["_id"]
    if db.votes.count_documents({"election_id": oid}) > 0:
        raise Conflict("Cannot delete election with existing votes")

    removed = db.candidates.delete_many({"election_id": oid})
    db.users.update_many({"eligible_elections": oid}, {"$pull": {"eligible_elections": oid}})
    db.elections.delete_one({"_id": oid})
    log_audit(db, "election_deleted", actor, {"election_id": str(oid), "candidates_removed": removed.deleted_count})


def eligible_elections(db, user_id):
    user = db.users.find_one({"_id": to_object_id(user_id, "User")}, {"eligible_elections": 1})
    if not user:
        raise NotFound("User not found")
    ids = user.get("eligible_elections", [])
    by_id = {e["_id"]: e for e in db.elections.find({"_id": {"$in": ids}})}
    # keep the order the elections were assigned in
    return [by_id[i] for i in ids if i in by_id]
