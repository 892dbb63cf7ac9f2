import logging

from flask import Blueprint, Flask, current_app, jsonify, request
from bson.errors import BSONError
from flask_cors import CORS
from pymongo.errors import PyMongoError

import analytics
import candidacy
import elections
import users
import voting
from auth import jwt, create_user_token, current_user, optional_user, role_required
from config import Config
from errors import VotingError
from lifecycle import StatusSweeper, end_election
from models import (ROLE_ADMIN, candidate_to_json, connect, election_to_json, get_db, init_db,
                    to_iso, user_to_json)

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _me():
    return current_user()["_id"]


# ---------------------------
# Auth
# ---------------------------
@api.route("/auth/register", methods=["POST"])
def register():
    user = users.register_user(get_db(), _body())
    return jsonify({"token": create_user_token(user), "user": user_to_json(user)}), 201

@api.route("/auth/login", methods=["POST"])
def login():
    data = _body()
    user = users.authenticate(get_db(), data.get("email"), data.get("password"))
    return jsonify({"token": create_user_token(user), "user": user_to_json(user)}), 200

@api.route("/auth/me", methods=["GET"])
@role_required()
def whoami():
    return jsonify(user_to_json(current_user())), 200

# ---------------------------
# Users (admin)
# ---------------------------
@api.route("/users", methods=["GET"])
@role_required(ROLE_ADMIN)
def list_users():
    return jsonify([user_to_json(u) for u in users.list_users(get_db())]), 200

@api.route("/users/<user_id>", methods=["GET"])
@role_required(ROLE_ADMIN)
def get_user(user_id):
    return jsonify(user_to_json(users.get_user(get_db(), user_id))), 200

@api.route("/users", methods=["POST"])
@role_required(ROLE_ADMIN)
def create_user():
    user = users.create_user(get_db(), _body(), actor=_me())
    return jsonify(user_to_json(user)), 201

@api.route("/users/<user_id>", methods=["PUT"])
@role_required(ROLE_ADMIN)
def update_user(user_id):
    return jsonify(user_to_json(users.update_user(get_db(), user_id, _body(), actor=_me()))), 200

@api.route("/users/<user_id>", methods=["DELETE"])
@role_required(ROLE_ADMIN)
def delete_user(user_id):
    users.delete_user(get_db(), user_id, actor=_me())
    return jsonify({"msg": "User removed"}), 200

@api.route("/users/<user_id>/assign-election", methods=["PATCH"])
@role_required(ROLE_ADMIN)
def assign_election(user_id):
    user = users.assign_election(get_db(), user_id, _body().get("election_id"), actor=_me())
    return jsonify(user_to_json(user)), 200

@api.route("/users/<user_id>/remove-election", methods=["PATCH"])
@role_required(ROLE_ADMIN)
def remove_election(user_id):
    user = users.remove_election(get_db(), user_id, _body().get("election_id"), actor=_me())
    return jsonify(user_to_json(user)), 200

# ---------------------------
# Elections
# ---------------------------
@api.route("/elections", methods=["GET"])
def list_elections():
    return jsonify([election_to_json(e, creator) for e, creator in elections.list_elections(get_db())]), 200

@api.route("/elections/eligible", methods=["GET"])
@role_required()
def eligible_elections():
    return jsonify([election_to_json(e) for e in elections.eligible_elections(get_db(), _me())]), 200

@api.route("/elections", methods=["POST"])
@role_required(ROLE_ADMIN)
def create_election():
    election = elections.create_election(get_db(), _body(), creator_id=_me())
    return jsonify(election_to_json(election)), 201

@api.route("/elections/live/<election_id>", methods=["GET"])
@role_required(ROLE_ADMIN)
def live_results(election_id):
    return jsonify(voting.live_tally(get_db(), election_id)), 200

@api.route("/elections/<election_id>", methods=["GET"])
def get_election(election_id):
    election, creator = elections.get_election(get_db(), election_id)
    return jsonify(election_to_json(election, creator)), 200

@api.route("/elections/<election_id>", methods=["PUT"])
@role_required(ROLE_ADMIN)
def update_election(election_id):
    election = elections.update_election(get_db(), election_id, _body(), actor=_me())
    return jsonify(election_to_json(election)), 200

@api.route("/elections/<election_id>/end", methods=["PATCH"])
@role_required(ROLE_ADMIN)
def end_election_now(election_id):
    return jsonify(election_to_json(end_election(get_db(), election_id, actor=_me()))), 200

@api.route("/elections/<election_id>", methods=["DELETE"])
@role_required(ROLE_ADMIN)
def delete_election(election_id):
    elections.delete_election(get_db(), election_id, actor=_me())
    return jsonify({"msg": "Election deleted successfully"}), 200

# ---------------------------
# Candidates
# ---------------------------
@api.route("/candidates", methods=["GET"])
def list_candidates():
    rows = candidacy.list_candidates(get_db(), request.args.get("election_id"), request.args.get("status"))
    return jsonify([candidate_to_json(c, u, e) for c, u, e in rows]), 200

@api.route("/candidates/<candidate_id>", methods=["GET"])
def get_candidate(candidate_id):
    c, u, e = candidacy.get_candidate(get_db(), candidate_id)
    return jsonify(candidate_to_json(c, u, e)), 200

@api.route("/candidates/apply", methods=["POST"])
@role_required()
def apply_candidate():
    data = _body()
    if not data.get("election_id"):
        return jsonify({"msg": "election_id required"}), 400
    candidate = candidacy.apply(get_db(), _me(), data["election_id"], data.get("manifesto"),
                                data.get("profile_image"))
    return jsonify(candidate_to_json(candidate)), 201

@api.route("/candidates/<candidate_id>/verify", methods=["PATCH"])
@role_required(ROLE_ADMIN)
def verify_candidate(candidate_id):
    candidate = candidacy.verify(get_db(), candidate_id, _body().get("status"), actor=_me())
    return jsonify(candidate_to_json(candidate)), 200

@api.route("/candidates/<candidate_id>", methods=["DELETE"])
@role_required()
def remove_candidate(candidate_id):
    me = current_user()
    candidacy.remove(get_db(), candidate_id, me["_id"], me["role"])
    return jsonify({"msg": "Candidate application removed"}), 200

# ---------------------------
# Votes / results
# ---------------------------
@api.route("/votes", methods=["POST"])
@role_required()
def cast_vote():
    data = _body()
    if not (data.get("election_id") and data.get("candidate_id")):
        return jsonify({"msg": "election_id and candidate_id required"}), 400
    vote = voting.cast_vote(get_db(), _me(), data["election_id"], data["candidate_id"])
    return jsonify({"msg": "Vote cast successfully", "vote_id": str(vote["_id"])}), 201

@api.route("/votes/user", methods=["GET"])
@role_required()
def my_votes():
    return jsonify(voting.votes_for_user(get_db(), _me())), 200

@api.route("/votes/results/<election_id>", methods=["GET"])
@optional_user
def results(election_id):
    me = current_user()
    return jsonify(voting.tally(get_db(), election_id, requester_role=me["role"] if me else None)), 200

# ---------------------------
# Admin dashboards
# ---------------------------
@api.route("/admin/stats", methods=["GET"])
@role_required(ROLE_ADMIN)
def admin_stats():
    return jsonify(analytics.dashboard_stats(get_db())), 200

@api.route("/admin/election-stats", methods=["GET"])
@role_required(ROLE_ADMIN)
def admin_election_stats():
    return jsonify(analytics.election_stats(get_db())), 200

@api.route("/admin/recent-activity", methods=["GET"])
@role_required(ROLE_ADMIN)
def admin_recent_activity():
    return jsonify(analytics.recent_activity(get_db())), 200

@api.route("/admin/analytics", methods=["GET"])
@role_required(ROLE_ADMIN)
def admin_analytics():
    return jsonify(analytics.advanced_analytics(get_db())), 200

@api.route("/admin/audit-logs", methods=["GET"])
@role_required(ROLE_ADMIN)
def admin_audit_logs():
    try:
        limit = int(request.args.get("limit", "200"))
    except ValueError:
        return jsonify({"msg": "limit must be an integer"}), 400
    out = []
    for a in get_db().audit_logs.find().sort("timestamp", -1).limit(max(limit, 1)):
        out.append({
            "action": a.get("action"),
            "actor": a.get("actor"),
            "details": a.get("details"),
            "timestamp": to_iso(a.get("timestamp"))
        })
    return jsonify({"audit_logs": out}), 200

# ---------------------------
# Errors
# ---------------------------
def handle_voting_error(error):
    return jsonify({"msg": error.message}), error.status_code

def handle_store_error(error):
    logger.exception("Persistence error on %s %s", request.method, request.path)
    body = {"msg": "Server error"}
    if current_app.config.get("DEBUG"):
        body["error"] = str(error)
    return jsonify(body), 500


def create_app(config_object=Config, database=None):
    """Build the Flask app.

    ``database`` is a pymongo Database (tests hand in a mongomock one); when
    omitted the app connects with ``MONGO_URI``. The status sweeper starts
    only when ``START_STATUS_SWEEPER`` is set.
    """
    logging.basicConfig(
        level=getattr(logging, str(config_object.LOG_LEVEL), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    app = Flask(__name__)
    app.config.from_object(config_object)
    CORS(app, origins=config_object.CORS_ORIGINS, supports_credentials=True)
    jwt.init_app(app)

    if database is None:
        database = connect(config_object.MONGO_URI, config_object.MONGO_DB_NAME)
    init_db(database)

    app.register_blueprint(api)
    app.register_error_handler(VotingError, handle_voting_error)
    app.register_error_handler(PyMongoError, handle_store_error)
    app.register_error_handler(BSONError, handle_store_error)

    sweeper = StatusSweeper(database, interval=config_object.STATUS_SWEEP_SECONDS)
    app.extensions["status_sweeper"] = sweeper
    if config_object.START_STATUS_SWEEPER:
        sweeper.start()
    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=Config.PORT, debug=Config.DEBUG, use_reloader=False)
