import datetime

import mongomock
import pytest

from app import create_app
from auth import create_user_token, hash_password
from config import TestConfig
from models import ONGOING, ROLE_ADMIN, ROLE_USER, VERIFIED, init_db

NOW = datetime.datetime(2026, 5, 1, 12, 0, 0)


@pytest.fixture
def db():
    """A fresh in-memory database with the production indexes."""
    client = mongomock.MongoClient()
    client.drop_database(TestConfig.MONGO_DB_NAME)
    return init_db(client[TestConfig.MONGO_DB_NAME])


@pytest.fixture
def app(db):
    return create_app(TestConfig, database=db)


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(name=None, role=ROLE_USER, eligible=(), password="secret123", email=None):
        counter["n"] += 1
        n = counter["n"]
        doc = {
            "name": name or f"User {n}",
            "email": email or f"user{n}@example.com",
            "password_hash": hash_password(password, rounds=4),
            "role": role,
            "eligible_elections": list(eligible),
            "created_at": NOW,
            "updated_at": NOW,
        }
        doc["_id"] = db.users.insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def make_election(db):
    def _make(status=ONGOING, start=None, end=None, title="Student Council"):
        doc = {
            "title": title,
            "description": "Annual vote",
            "start_date": start or NOW - datetime.timedelta(days=1),
            "end_date": end or NOW + datetime.timedelta(days=1),
            "status": status,
            "created_by": None,
            "created_at": NOW,
            "updated_at": NOW,
        }
        doc["_id"] = db.elections.insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def make_candidate(db, make_user):
    offset = {"n": 0}

    def _make(election, status=VERIFIED, user=None, manifesto="Better food"):
        offset["n"] += 1
        user = user or make_user()
        doc = {
            "user_id": user["_id"],
            "election_id": election["_id"],
            "manifesto": manifesto,
            "profile_image": "",
            "status": status,
            # distinct creation times so application order is well defined
            "created_at": NOW + datetime.timedelta(seconds=offset["n"]),
            "updated_at": NOW,
        }
        doc["_id"] = db.candidates.insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(name="Admin", role=ROLE_ADMIN, email="admin@example.com")


@pytest.fixture
def auth_header(app):
    def _header(user):
        with app.app_context():
            token = create_user_token(user)
        return {"Authorization": f"Bearer {token}"}
    return _header


@pytest.fixture
def now():
    return NOW
