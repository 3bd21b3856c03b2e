# Overview: Resolves which account owns a paid order (by id, then email, then creation).

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from .auth_service import get_user_by_email


@dataclass(frozen=True)
class ResolvedIdentity:
    user: User | None
    created: bool = False


def _as_user_id(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def resolve_identity(
    candidate_user_id,
    email: str,
    customer_info: dict | None = None,
    account_options: dict | None = None,
) -> ResolvedIdentity:
    """
    Find or create the account that should own an order.

    Precedence, each step only if the previous found nothing:
    1. candidate_user_id (authenticated user captured at checkout)
    2. email, case-insensitive
    3. create, when account_options asks for it and carries a credential
       hash. The email is re-checked first, and the insert runs inside a
       savepoint: if a concurrent request created the same email, the unique
       constraint fires and the existing row is returned instead.

    Runs inside the caller's transaction and never commits.
    """
    user_id = _as_user_id(candidate_user_id)
    if user_id is not None:
        user = db.session.get(User, user_id)
        if user:
            return ResolvedIdentity(user=user)

    email = (email or "").strip().lower()
    if email:
        user = get_user_by_email(email)
        if user:
            return ResolvedIdentity(user=user)

    options = account_options or {}
    password_hash = options.get("password_hash")
    if not email or not options.get("create_account") or not password_hash:
        return ResolvedIdentity(user=None)

    existing = get_user_by_email(email)
    if existing:
        return ResolvedIdentity(user=existing)

    info = customer_info or {}
    user = User(
        email=email,
        password_hash=password_hash,
        first_name=info.get("first_name", ""),
        last_name=info.get("last_name", ""),
        phone=info.get("phone"),
        address=info.get("shipping_address"),
        login_count=0,
    )
    try:
        with db.session.begin_nested():
            db.session.add(user)
    except IntegrityError:
        existing = get_user_by_email(email)
        if existing is None:
            raise
        return ResolvedIdentity(user=existing)

    return ResolvedIdentity(user=user, created=True)
