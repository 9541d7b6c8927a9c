# Overview: Operator accounts and password checks (bcrypt).

"""
Operator identity boundary.

Full account management lives outside the POS core; this module only
creates operators, verifies passwords and tells routes who is acting.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import Branch, User
from ..models.auth import ROLES, ROLE_CASHIER
from vitrina.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    if len(password or "") < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check; malformed hashes simply fail."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    role: str = ROLE_CASHIER,
    branch_id: int | None = None,
) -> User:
    """
    Create an operator account.

    Raises:
        ValidationError: duplicate username, unknown role or branch
        PasswordValidationError: weak password
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")
    role = (role or ROLE_CASHIER).strip().lower()
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}", {"allowed": list(ROLES)})

    if db.session.query(User).filter_by(username=username).first():
        raise ValidationError("Username already exists", {"username": username})
    if branch_id is not None and db.session.get(Branch, branch_id) is None:
        raise ValidationError("Branch not found", {"branch_id": branch_id})

    user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
        branch_id=branch_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, or None.
    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == (username or "").strip(),
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    if verify_password(password or "", user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
