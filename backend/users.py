from pymongo.errors import DuplicateKeyError

from auth import check_password, hash_password
from errors import Conflict, InvalidInput, NotFound, Unauthorized
from models import ROLE_USER, log_audit, to_object_id, utcnow
from validators import check_password_strength, check_role, clean_email, require_fields

PUBLIC_FIELDS = {"password_hash": 0}


def _find_user(db, user_id):
    user = db.users.find_one({"_id": to_object_id(user_id, "User")}, PUBLIC_FIELDS)
    if not user:
        raise NotFound("User not found")
    return user


def _insert_user(db, name, email, password, role):
    now = utcnow()
    doc = {
        "name": name,
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "eligible_elections": [],
        "created_at": now,
        "updated_at": now,
    }
    try:
        res = db.users.insert_one(doc)
    except DuplicateKeyError:
        raise Conflict("User already exists")
    doc["_id"] = res.inserted_id
    doc.pop("password_hash")
    return doc


def register_user(db, data: dict):
    require_fields(data, "name", "email", "password")
    email = clean_email(data.get("email"))
    user = _insert_user(db, str(data["name"]).strip(), email, check_password_strength(data.get("password")), ROLE_USER)
    log_audit(db, "user_register", user["_id"], {"email": email})
    return user


def create_user(db, data: dict, actor=None):
    require_fields(data, "name", "email", "password")
    email = clean_email(data.get("email"))
    role = check_role(data.get("role") or ROLE_USER)
    user = _insert_user(db, str(data["name"]).strip(), email, check_password_strength(data.get("password")), role)
    log_audit(db, "user_created", actor, {"user_id": str(user["_id"]), "email": email, "role": role})
    return user


def authenticate(db, email, password):
    if not (email and password):
        raise InvalidInput("email and password required")
    u = db.users.find_one({"email": str(email).strip().lower()})
    if not u or not check_password(password, u.get("password_hash")):
        log_audit(db, "login_failed", email)
        raise Unauthorized("Invalid credentials")
    u.pop("password_hash", None)
    return u


def list_users(db):
    return list(db.users.find({}, PUBLIC_FIELDS).sort("created_at", 1))


def get_user(db, user_id):
    return _find_user(db, user_id)


def update_user(db, user_id, data: dict, actor=None):
    user = _find_user(db, user_id)
    updates = {}
    if "name" in data:
        require_fields(data, "name")
        updates["name"] = str(data["name"]).strip()
    if "email" in data:
        updates["email"] = clean_email(data["email"])
    if "role" in data:
        updates["role"] = check_role(data["role"])
    if not updates:
        return user

    updates["updated_at"] = utcnow()
    try:
        db.users.update_one({"_id": user["_id"]}, {"$set": updates})
    except DuplicateKeyError:
        raise Conflict("Email already in use")
    log_audit(db, "user_updated", actor, {"user_id": str(user["_id"]), "fields": sorted(updates)})
    return _find_user(db, user["_id"])


def delete_user(db, user_id, actor=None):
    """Delete a user and their candidacies.

    Ballots are immutable, so a user who has voted, or whose candidacy has
    received votes, cannot be deleted.
    """
    user = _find_user(db, user_id)
    oid = user["_id"]
    if db.votes.find_one({"voter_id": oid}, {"_id": 1}):
        raise Conflict("Cannot delete a user who has cast votes")
    candidacy_ids = [c["_id"] for c in db.candidates.find({"user_id": oid}, {"_id": 1})]
    if candidacy_ids and db.votes.find_one({"candidate_id": {"$in": candidacy_ids}}, {"_id": 1}):
        raise Conflict("Cannot delete a user whose candidacy has received votes")

    db.candidates.delete_many({"user_id": oid})
    db.users.delete_one({"_id": oid})
    log_audit(db, "user_deleted", actor, {"user_id": str(oid), "candidacies_removed": len(candidacy_ids)})


def assign_election(db, user_id, election_id, actor=None):
    user = _find_user(db, user_id)
    eid = to_object_id(election_id, "Election")
    if not db.elections.find_one({"_id": eid}, {"_id": 1}):
        raise NotFound("Election not found")
    if eid in user.get("eligible_elections", []):
        raise Conflict("User already assigned to this election")

    db.users.update_one({"_id": user["_id"]}, {"$addToSet": {"eligible_elections": eid}})
    log_audit(db, "added_eligible_voter", actor, {"election_id": str(eid), "user_id": str(user["_id"])})
    return _find_user(db, user["_id"])


def remove_election(db, user_id, election_id, actor=None):
    user = _find_user(db, user_id)
    eid = to_object_id(election_id, "Election")
    db.users.update_one({"_id": user["_id"]}, {"$pull": {"eligible_elections": eid}})
    log_audit(db, "removed_eligible_voter", actor, {"election_id": str(eid), "user_id": str(user["_id"])})
    return _find_user(db, user["_id"])
