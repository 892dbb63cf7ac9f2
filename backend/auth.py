from functools import wraps

import bcrypt
from flask import current_app, g, has_app_context, jsonify
from flask_jwt_extended import JWTManager, create_access_token, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from config import Config
from models import get_db, log_audit, to_object_id
from errors import NotFound

jwt = JWTManager()


# bcrypt + salt, the salt is carried inside the stored hash
def hash_password(plain_password: str, rounds: int = None) -> bytes:
    if rounds is None:
        rounds = current_app.config.get("BCRYPT_ROUNDS", Config.BCRYPT_ROUNDS) if has_app_context() \
            else Config.BCRYPT_ROUNDS
    return bcrypt.hashpw(plain_password.encode('utf-8'), bcrypt.gensalt(rounds))


def check_password(plain_password: str, pw_hash: bytes) -> bool:
    if not pw_hash:
        return False
    return bcrypt.checkpw(plain_password.encode('utf-8'), bytes(pw_hash))


# identity is the user id, role travels as a claim for the UI
def create_user_token(user_doc):
    return create_access_token(identity=str(user_doc["_id"]), additional_claims={"role": user_doc["role"]})


def _load_user(identity):
    try:
        oid = to_object_id(identity, "User")
    except NotFound:
        return None
    return get_db().users.find_one({"_id": oid}, {"password_hash": 0})


def current_user():
    return g.get("current_user")


def role_required(*required_roles):
    """Require a valid bearer token whose user holds one of ``required_roles``.

    With no roles any authenticated user passes. The user document (without
    the password hash) is reloaded from the store so role changes and
    deletions take effect before the token expires.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            identity = get_jwt_identity()
            user = _load_user(identity)
            if not user:
                return jsonify({"msg": "Not authorized to access this route"}), 401
            if required_roles and user.get("role") not in required_roles:
                log_audit(get_db(), "unauthorized_access_attempt", identity,
                          {"required_roles": list(required_roles), "actual_role": user.get("role"),
                           "endpoint": fn.__name__})
                return jsonify({"msg": f"User role {user.get('role')} is not authorized to access this route"}), 403
            g.current_user = user
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def optional_user(fn):
    # anonymous callers, and callers with a stale or broken token, get
    # through with current_user() == None
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            verify_jwt_in_request(optional=True)
            identity = get_jwt_identity()
        except (JWTExtendedException, PyJWTError):
            identity = None
        g.current_user = _load_user(identity) if identity else None
        return fn(*args, **kwargs)
    return wrapper



@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    return jsonify({"msg": "token_expired", "description": "Your session has expired. Please login again."}), 401

@jwt.invalid_token_loader
def invalid_token_callback(error_string):
    return jsonify({"msg": "invalid_token", "description": error_string}), 401

@jwt.unauthorized_loader
def missing_token_callback(error_string):
    return jsonify({"msg": "missing_token", "description": error_string}), 401
