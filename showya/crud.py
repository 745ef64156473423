"""CRUD helpers for users and their profiles."""

from __future__ import annotations

import secrets
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import BadRequestError, ConflictError, NotFoundError
from .models import User

PROFILE_FIELDS = {
    "name",
    "display_name",
    "phone",
    "street1",
    "street2",
    "city",
    "state",
    "postal_code",
    "pan",
    "dob",
}


def generate_api_token() -> str:
    return secrets.token_urlsafe(32)


def get_user_by_token(session: Session, token: str | None) -> User | None:
    if not token:
        return None
    return session.scalars(select(User).where(User.api_token == token)).first()


def get_user_by_email(session: Session, email: str) -> User | None:
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    stmt = select(User).where(func.lower(User.email) == normalized)
    return session.scalars(stmt).first()


def create_user(
    session: Session,
    *,
    email: str,
    name: str,
    display_name: str | None = None,
    is_admin: bool = False,
) -> User:
    """Register a user and mint their API token."""
    normalized = (email or "").strip().lower()
    if "@" not in normalized:
        raise BadRequestError("A valid email address is required")
    if not (name or "").strip():
        raise BadRequestError("Name is required")
    if get_user_by_email(session, normalized):
        raise ConflictError("A user with this email already exists")
    user = User(
        email=normalized,
        name=name.strip(),
        display_name=(display_name or "").strip() or None,
        api_token=generate_api_token(),
        is_admin=is_admin,
    )
    session.add(user)
    session.flush()
    return user


def update_profile(session: Session, user: User, updates: dict[str, Any]) -> User:
    unknown = set(updates) - PROFILE_FIELDS
    if unknown:
        raise BadRequestError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
    for field, value in updates.items():
        if isinstance(value, str):
            value = value.strip() or None
        if field == "pan" and value:
            value = value.upper()
        setattr(user, field, value)
    if not user.name:
        raise BadRequestError("Name is required")
    session.add(user)
    return user


def rotate_api_token(session: Session, user: User) -> str:
    user.api_token = generate_api_token()
    session.add(user)
    return user.api_token


def grant_admin(session: Session, email: str) -> dict[str, Any]:
    """Give the user with ``email`` platform admin rights."""
    if not (email or "").strip():
        raise BadRequestError("Target user email is required")
    user = get_user_by_email(session, email)
    if not user:
        raise NotFoundError(f"User with email {email} not found")
    if user.is_admin:
        return {"message": f"User {user.email} already has admin role", "userId": user.id}
    user.is_admin = True
    session.add(user)
    return {"message": f"Successfully granted admin role to {user.email}", "userId": user.id}


def serialize_user(user: User, *, include_private: bool = False) -> dict[str, Any]:
    payload = {
        "id": user.id,
        "name": user.name,
        "display_name": user.display_name,
        "is_admin": user.is_admin,
    }
    if include_private:
        payload.update(
            {
                "email": user.email,
                "phone": user.phone,
                "street1": user.street1,
                "street2": user.street2,
                "city": user.city,
                "state": user.state,
                "postal_code": user.postal_code,
                "pan": user.pan,
                "dob": user.dob,
            }
        )
    return payload
