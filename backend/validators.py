import datetime
import re

from errors import InvalidInput
from models import ROLES, VERIFIED, REJECTED

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def require_fields(data: dict, *fields):
    missing = [f for f in fields if not str(data.get(f) or "").strip()]
    if missing:
        raise InvalidInput(f"{', '.join(missing)} required")


def clean_email(email):
    if not email or not isinstance(email, str):
        raise InvalidInput("Please include a valid email")
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise InvalidInput("Please include a valid email")
    return email


def check_password_strength(password):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def check_role(role):
    if role not in ROLES:
        raise InvalidInput("Invalid role")
    return role


def check_decision(status):
    if status not in (VERIFIED, REJECTED):
        raise InvalidInput("Status must be Verified or Rejected")
    return status


def parse_datetime(value, field="date"):
    """Accept a datetime or an ISO-8601 string and return naive UTC."""
    if isinstance(value, datetime.datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        # fromisoformat only learned the Z suffix in 3.11
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.datetime.fromisoformat(text)
        except ValueError:
            raise InvalidInput(f"{field} must be an ISO-8601 date")
    else:
        raise InvalidInput(f"{field} required")
    if dt.tzinfo is not None:
        dt = dt.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return dt


def check_date_window(start, end):
    if start >= end:
        raise InvalidInput("end_date must be after start_date")
