import os
from dotenv import load_dotenv
load_dotenv()


def _env_flag(name, default="false"):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    # Database & JWT
    MONGO_URI = os.environ.get("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME", "voting_db")
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "change-me-to-a-strong-secret")
    JWT_ACCESS_TOKEN_EXPIRES = int(os.environ.get("JWT_EXPIRES_SECONDS", 3600))

    # Password hashing
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Election status sweep
    STATUS_SWEEP_SECONDS = int(os.environ.get("STATUS_SWEEP_SECONDS", "60"))
    START_STATUS_SWEEPER = _env_flag("START_STATUS_SWEEPER", "true")

    # Web
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]
    PORT = int(os.environ.get("PORT", "5000"))

    # Behavior toggles
    DEBUG = _env_flag("DEBUG")
    TESTING = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


class TestConfig(Config):
    TESTING = True
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    BCRYPT_ROUNDS = 4
    START_STATUS_SWEEPER = False
    MONGO_DB_NAME = "voting_db_test"
