# Overview: Staff accounts and credential checks.

"""
Credential handling

Sessions are issued by the gateway in front of this service; what lives here is
account creation and the password re-entry check destructive actions require
(e.g. deleting an order).

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower and digit
"""

import bcrypt
import re
from ..extensions import db
from ..models import User
from ..models.users import VALID_ROLES, STATUS_ACTIVE


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserError(Exception):
    """Raised for account operation errors."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Hash password using bcrypt. Password is validated for strength before hashing."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def confirm_user_password(user: User, password: str | None) -> bool:
    """Re-entry check for destructive actions."""
    return verify_password(password or "", user.password_hash)


def create_user(
    name: str,
    email: str,
    role: str,
    password: str | None = None,
    *,
    phone: str | None = None,
    notify_new_orders: bool = True,
    bcrypt_rounds: int = 12,
) -> User:
    if role not in VALID_ROLES:
        raise UserError(f"Invalid role: {role}. Must be one of {VALID_ROLES}")

    email = (email or "").strip().lower()
    if not email:
        raise UserError("email is required")

    if db.session.query(User).filter_by(email=email).first():
        raise UserError(f"User with email {email} already exists")

    user = User(
        name=name.strip(),
        email=email,
        phone=phone,
        role=role,
        status=STATUS_ACTIVE,
        notify_new_orders=notify_new_orders,
        password_hash=hash_password(password, rounds=bcrypt_rounds) if password else None,
    )
    db.session.add(user)
    db.session.commit()
    return user
