import datetime
import logging

import certifi
from bson.errors import InvalidId
from bson.objectid import ObjectId
from pymongo import MongoClient, ASCENDING

from config import Config
from errors import NotFound

logger = logging.getLogger(__name__)

# Roles
ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

# Election status
UPCOMING = "Upcoming"
ONGOING = "Ongoing"
ENDED = "Ended"

# Candidate status
PENDING = "Pending"
VERIFIED = "Verified"
REJECTED = "Rejected"

client = None
db = None


def connect(uri=None, db_name=None):
    """Open the shared MongoClient and return the configured database."""
    global client
    uri = uri or Config.MONGO_URI
    if uri.startswith("mongodb+srv://"):
        client = MongoClient(uri, tls=True, tlsCAFile=certifi.where())
    else:
        client = MongoClient(uri)
    return client[db_name or Config.MONGO_DB_NAME]


def init_db(database):
    global db
    db = database
    ensure_indexes(database)
    return database


def get_db():
    if db is None:
        raise RuntimeError("database not initialised, call init_db() first")
    return db


def ensure_indexes(database):
    # uniqueness lives in the store, not in check-then-insert code
    database.users.create_index([("email", ASCENDING)], unique=True)
    database.candidates.create_index([("user_id", ASCENDING), ("election_id", ASCENDING)], unique=True)
    database.votes.create_index([("election_id", ASCENDING), ("voter_id", ASCENDING)], unique=True)
    database.votes.create_index([("candidate_id", ASCENDING)])
    database.elections.create_index([("status", ASCENDING)])
    database.audit_logs.create_index([("timestamp", ASCENDING)])


def utcnow():
    # naive UTC, the way pymongo hands datetimes back
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def to_object_id(value, what="Resource"):
    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise NotFound(f"{what} not found")
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def to_iso(value):
    return value.isoformat() if isinstance(value, datetime.datetime) else value


def _str(value):
    return str(value) if value is not None else None


def user_to_json(u):
    return {
        "user_id": str(u["_id"]),
        "name": u.get("name"),
        "email": u.get("email"),
        "role": u.get("role"),
        "eligible_elections": [str(e) for e in u.get("eligible_elections", [])],
        "created_at": to_iso(u.get("created_at")),
    }


def election_to_json(e, creator=None):
    out = {
        "election_id": str(e["_id"]),
        "title": e.get("title"),
        "description": e.get("description", ""),
        "start_date": to_iso(e.get("start_date")),
        "end_date": to_iso(e.get("end_date")),
        "status": e.get("status"),
        "created_by": _str(e.get("created_by")),
        "created_at": to_iso(e.get("created_at")),
    }
    if creator is not None:
        out["created_by_name"] = creator.get("name")
    return out


def candidate_to_json(c, user=None, election=None):
    out = {
        "candidate_id": str(c["_id"]),
        "user_id": _str(c.get("user_id")),
        "election_id": _str(c.get("election_id")),
        "manifesto": c.get("manifesto"),
        "profile_image": c.get("profile_image", ""),
        "status": c.get("status"),
        "created_at": to_iso(c.get("created_at")),
    }
    if user is not None:
        out["user"] = {"name": user.get("name"), "email": user.get("email")}
    if election is not None:
        out["election"] = {k: to_iso(v) for k, v in election.items() if k != "_id"}
    return out


# Audit trail, one document per business event
def log_audit(database, action: str, actor, details: dict = None):
    database.audit_logs.insert_one({
        "action": action,
        "actor": _str(actor) or "system",
        "details": details or {},
        "timestamp": utcnow()
    })
    logger.debug("audit %s by %s", action, actor)
