# Overview: Service-layer operations for auth; password hashing and user accounts.

"""
Authentication Service

WHY: Every request, approval and completion must be attributable to a user.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS)
- Minimum 8 characters, mixed case, digit and special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Role, User
from infradesk.time_utils import utcnow


class PasswordValidationError(ValueError):
    """Raised when password doesn't meet strength requirements."""
    pass


PASSWORD_MIN_LENGTH = 8

# (pattern, what is missing)
PASSWORD_RULES = [
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"\d"), "one digit"),
    (re.compile(r"[!@#$%^&*(),.'\":{}|<>]"), "one special character"),
]


def validate_password_strength(password: str) -> None:
    """Raises PasswordValidationError on the first unmet requirement."""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise PasswordValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")

    for pattern, requirement in PASSWORD_RULES:
        if not pattern.search(password):
            raise PasswordValidationError(f"Password must contain at least {requirement}")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash with the configured cost factor."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: Role | str = Role.USER,
    name: str | None = None,
    department: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValueError: unknown role, or username/email already taken
        PasswordValidationError: weak password
    """
    try:
        role = Role(role)
    except ValueError:
        raise ValueError(f"Unknown role '{role}'. Must be one of: {', '.join(r.value for r in Role)}")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        name=name,
        department=department,
        role=role,
        password_hash=hash_password(password),
    )

    db.session.add(user)
    db.session.commit()
    current_app.logger.info("User %s created with role %s", user.username, role.value)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate by username or email.

    Returns the User and stamps last_login_at on success, None otherwise.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
