# Overview: Service-layer operations for accounts; password hashing, registration, login and OTP challenges.

"""
Account Service

WHY: Customers register directly, or get an account implicitly when they
ask for one during checkout. Passwords are bcrypt hashed; OTP codes are
stored only as SHA-256 hashes with an expiry.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
- Login count drives the second-login verification prompt
"""

from __future__ import annotations

import hashlib
import re
import secrets

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..statuses import Role
from ..validation import ConflictError, NotFoundError, ValidationError, normalize_email
from hive.time_utils import utcnow, minutes_from_now, is_past


# Unverified accounts are asked for an OTP from this login onwards
VERIFICATION_LOGIN_THRESHOLD = 2


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthError(Exception):
    """Invalid credentials or inactive account."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes simply fail."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except (TypeError, ValueError):
        return False


def get_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter(User.email == email.strip().lower()).first()


def create_user(
    *,
    email: str,
    password: str | None = None,
    password_hash: str | None = None,
    first_name: str = "",
    last_name: str = "",
    phone: str | None = None,
    address: dict | None = None,
    role: str = Role.USER.value,
    commit: bool = True,
) -> User:
    """
    Create a user with a lowercase, unique email.

    Either a plaintext ``password`` (validated and hashed here) or an
    already computed ``password_hash`` must be given.

    Raises:
        ConflictError: email already registered
        PasswordValidationError: weak password
    """
    email = normalize_email(email)
    if password_hash is None:
        if password is None:
            raise ValidationError("password is required", field="password")
        password_hash = hash_password(password)

    if get_user_by_email(email):
        raise ConflictError("User with this email already exists")

    user = User(
        email=email,
        password_hash=password_hash,
        first_name=(first_name or "").strip(),
        last_name=(last_name or "").strip(),
        phone=phone,
        address=address,
        role=role,
        login_count=0,
    )
    db.session.add(user)
    if commit:
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("User with this email already exists")
    return user


def register_user(*, email: str, password: str, first_name: str, last_name: str, phone: str | None = None) -> User:
    if not (first_name or "").strip() or not (last_name or "").strip():
        raise ValidationError("first_name and last_name are required")
    user = create_user(
        email=email,
        password=password,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
    )
    from .notification_service import get_notifier
    get_notifier().send_welcome(user)
    return user


def authenticate(email: str, password: str) -> User:
    """
    Check credentials and bump the login counter.

    Raises AuthError for unknown email, wrong password or inactive account;
    the message never reveals which.
    """
    user = get_user_by_email(email or "")
    if not user or not user.is_active or not verify_password(password or "", user.password_hash):
        raise AuthError("Invalid credentials")

    user.login_count = (user.login_count or 0) + 1
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def requires_verification(user: User) -> bool:
    return user.login_count >= VERIFICATION_LOGIN_THRESHOLD and not user.is_phone_verified


# =============================================================================
# OTP CHALLENGES
# =============================================================================

def _hash_otp(otp: str) -> str:
    return hashlib.sha256(otp.encode('utf-8')).hexdigest()


def _generate_otp() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def _otp_matches(stored_hash: str | None, expires_at, otp: str | None) -> bool:
    if not stored_hash or not otp or is_past(expires_at):
        return False
    return secrets.compare_digest(stored_hash, _hash_otp(str(otp).strip()))


def issue_phone_otp(user: User) -> str:
    """Replace any previous verification challenge; returns the plaintext code."""
    otp = _generate_otp()
    user.phone_otp_hash = _hash_otp(otp)
    user.phone_otp_expires_at = minutes_from_now(current_app.config.get("OTP_TTL_MINUTES", 10))
    db.session.commit()
    return otp


def send_phone_otp(user: User) -> None:
    from .notification_service import get_notifier
    otp = issue_phone_otp(user)
    get_notifier().send_verification_otp(user, otp)


def verify_phone_otp(user_id: int, otp: str) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    if not _otp_matches(user.phone_otp_hash, user.phone_otp_expires_at, otp):
        raise ValidationError("Invalid or expired OTP", field="otp")

    user.is_phone_verified = True
    user.phone_otp_hash = None
    user.phone_otp_expires_at = None
    db.session.commit()
    return user


def request_password_reset(email: str) -> None:
    """
    Issue and email a reset code. Silent when the email is unknown so the
    endpoint cannot be used to enumerate accounts.
    """
    user = get_user_by_email(email)
    if not user:
        return

    otp = _generate_otp()
    user.password_reset_otp_hash = _hash_otp(otp)
    user.password_reset_otp_expires_at = minutes_from_now(current_app.config.get("OTP_TTL_MINUTES", 10))
    db.session.commit()

    from .notification_service import get_notifier
    get_notifier().send_password_reset_otp(user, otp)


def check_password_reset_otp(email: str, otp: str) -> User:
    user = get_user_by_email(email)
    if not user:
        raise NotFoundError("User not found")
    if not _otp_matches(user.password_reset_otp_hash, user.password_reset_otp_expires_at, otp):
        raise ValidationError("Invalid or expired OTP", field="otp")
    return user


def reset_password(email: str, otp: str, new_password: str) -> User:
    user = check_password_reset_otp(email, otp)
    user.password_hash = hash_password(new_password)
    user.password_reset_otp_hash = None
    user.password_reset_otp_expires_at = None
    db.session.commit()

    from .session_service import revoke_all_user_sessions
    revoke_all_user_sessions(user.id, reason="Password reset")
    return user


# =============================================================================
# PROFILE
# =============================================================================

PROFILE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "phone": "phone",
}


def update_profile(user: User, data: dict) -> User:
    """
    Apply a partial profile update. Only keys present in ``data`` change;
    order snapshots taken earlier are not touched.

    Raises:
        ValidationError: blank name, malformed email or address
        ConflictError: email belongs to another account
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")

    changes = {}
    for key, attr in PROFILE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{key} must be a string", field=key)
        value = (value or "").strip()
        if not value and attr != "phone":
            raise ValidationError(f"{key} cannot be blank", field=key)
        changes[attr] = value or None

    if "address" in data:
        address = data["address"]
        if address is not None and not isinstance(address, dict):
            raise ValidationError("address must be an object", field="address")
        changes["address"] = address

    if "email" in data:
        email = normalize_email(data["email"])
        if email != user.email:
            other = get_user_by_email(email)
            if other and other.id != user.id:
                raise ConflictError("User with this email already exists")
        changes["email"] = email

    for attr, value in changes.items():
        setattr(user, attr, value)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User with this email already exists")
    return user


def change_password(user: User, current_password: str, new_password: str) -> User:
    """
    Replace the password after checking the current one. Every existing
    session is revoked; the caller issues a fresh token.

    Raises:
        AuthError: current password is wrong
        PasswordValidationError: new password too weak
    """
    if not verify_password(current_password or "", user.password_hash):
        raise AuthError("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    db.session.commit()

    from .session_service import revoke_all_user_sessions
    revoke_all_user_sessions(user.id, reason="Password changed")
    current_app.logger.info("Password changed for user %s", user.id)
    return user
