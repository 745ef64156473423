"""Passwordless sign-in with emailed one-time codes, and account deletion."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Mapping

import requests
from resend.exceptions import ResendError
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from .crud import create_user, get_user_by_email, serialize_user
from .errors import (
    BadRequestError,
    ConflictError,
    EmailDeliveryError,
    NotFoundError,
    TooManyRequestsError,
)
from .models import (
    OTP_PURPOSES,
    Community,
    CommunityMember,
    CommunityMessage,
    EmailOtp,
    EventParticipant,
    KycDocument,
    Notification,
    Refund,
    Report,
    ShowClip,
    User,
)
from .notifications import EmailSender, render_otp_email
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

OTP_TTL_MINUTES = 10
OTP_MAX_ATTEMPTS = 5
OTP_RATE_LIMIT = 3
OTP_RATE_WINDOW = timedelta(minutes=10)


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _check_purpose(purpose: str | None) -> str:
    if purpose not in OTP_PURPOSES:
        raise BadRequestError("Invalid purpose")
    return purpose


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def send_otp(
    session: Session,
    mailer: EmailSender | None,
    email: str,
    purpose: str,
    details: Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Store a fresh six digit code for ``email`` and mail it out.

    Sign-in codes are only issued for known addresses. At most three codes go
    to one address in any ten minute window.
    """
    email = _normalize_email(email)
    if not email or not purpose:
        raise BadRequestError("Email and purpose are required")
    _check_purpose(purpose)
    if purpose == "signin" and not get_user_by_email(session, email):
        raise NotFoundError("No account found with this email. Please sign up first.")

    now = now or utcnow()
    recent = session.scalar(
        select(func.count(EmailOtp.id)).where(
            EmailOtp.email == email, EmailOtp.created_at > now - OTP_RATE_WINDOW
        )
    )
    if (recent or 0) >= OTP_RATE_LIMIT:
        raise TooManyRequestsError("Too many OTP requests. Please wait a few minutes.")
    if mailer is None or not mailer.enabled:
        logger.error("Email delivery is not configured; cannot send OTP to %s", email)
        raise EmailDeliveryError("Failed to send OTP email")

    code = generate_otp()
    session.add(
        EmailOtp(
            email=email,
            otp_code=code,
            purpose=purpose,
            details=dict(details or {}),
            expires_at=now + timedelta(minutes=OTP_TTL_MINUTES),
            created_at=now,
        )
    )
    session.flush()

    html = render_otp_email(code=code, purpose=purpose, ttl_minutes=OTP_TTL_MINUTES)
    try:
        mailer.send(to=email, subject=f"{code} is your Showya verification code", html=html)
    except (ResendError, requests.RequestException) as exc:
        logger.error("Failed to send OTP email to %s: %s", email, exc)
        raise EmailDeliveryError("Failed to send OTP email") from exc
    logger.info("OTP sent to %s for %s", email, purpose)
    return {"success": True}


def verify_otp(
    session: Session,
    email: str,
    otp: str,
    purpose: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Check a code and hand back the caller's API token.

    A verified sign-up code creates the account from the details stored with
    the code. Wrong guesses are committed before the error is raised so the
    attempt limit holds across requests.
    """
    email = _normalize_email(email)
    if not email or not otp or not purpose:
        raise BadRequestError("Email, OTP, and purpose are required")
    _check_purpose(purpose)

    now = now or utcnow()
    record = session.scalars(
        select(EmailOtp)
        .where(
            EmailOtp.email == email,
            EmailOtp.purpose == purpose,
            EmailOtp.verified.is_(False),
            EmailOtp.expires_at > now,
        )
        .order_by(EmailOtp.created_at.desc())
        .limit(1)
    ).first()
    if record is None:
        raise BadRequestError("OTP expired or not found. Please request a new one.")
    if record.attempts >= OTP_MAX_ATTEMPTS:
        raise TooManyRequestsError("Too many failed attempts. Please request a new OTP.")

    record.attempts += 1
    if not secrets.compare_digest(record.otp_code, str(otp).strip()):
        session.commit()
        raise BadRequestError("Invalid OTP. Please try again.", code="InvalidOtp")
    record.verified = True

    user = get_user_by_email(session, email)
    already_exists = user is not None
    if purpose == "signup" and user is None:
        details = record.details or {}
        user = create_user(
            session,
            email=email,
            name=details.get("name") or email.split("@", 1)[0],
            display_name=details.get("display_name"),
        )
        logger.info("Created user %s from a verified sign-up code", user.id)
    if user is None:
        raise NotFoundError("No account found with this email. Please sign up first.")

    result = {
        "success": True,
        "api_token": user.api_token,
        "user": serialize_user(user, include_private=True),
    }
    if purpose == "signup" and already_exists:
        result["already_exists"] = True
    return result


def _upcoming_booked_events(community: Community, now: datetime) -> list[str]:
    return [
        event.id
        for event in community.events
        if not event.is_cancelled and event.event_date > now and event.participants
    ]


def delete_account(
    session: Session, user: User, *, now: datetime | None = None
) -> dict[str, Any]:
    """Remove a user together with their community and everything they own.

    The community's payment account rows go first, then its events, then the
    user's own rows across the other tables. Hosts with upcoming booked events
    must cancel them before they can leave.
    """
    now = now or utcnow()
    community = session.scalars(
        select(Community).where(Community.owner_id == user.id)
    ).first()
    if community is not None:
        pending = _upcoming_booked_events(community, now)
        if pending:
            raise ConflictError(
                "Cancel your upcoming events with bookings before deleting your account",
                code="ActiveEvents",
                extra={"eventIds": pending},
            )
        if community.payment_account is not None:
            logger.info(
                "Removing payment account %s",
                community.payment_account.razorpay_account_id,
            )
            community.payment_account = None
            session.flush()
        session.execute(
            delete(KycDocument).where(KycDocument.community_id == community.id)
        )
        event_ids = [event.id for event in community.events]
        if event_ids:
            session.execute(
                update(ShowClip)
                .where(ShowClip.event_id.in_(event_ids))
                .values(event_id=None)
            )
        for event in list(community.events):
            session.delete(event)
        session.delete(community)
        session.flush()
        logger.info("Deleted community %s owned by %s", community.id, user.id)

    for model in (
        CommunityMember,
        CommunityMessage,
        EventParticipant,
        Notification,
        Refund,
        ShowClip,
    ):
        session.execute(delete(model).where(model.user_id == user.id))
    session.execute(
        delete(Report).where(
            or_(Report.reporter_id == user.id, Report.target_user_id == user.id)
        )
    )
    session.execute(delete(EmailOtp).where(EmailOtp.email == user.email))
    session.delete(user)
    session.flush()
    logger.info("Account %s deleted", user.id)
    return {"success": True, "message": "Account deleted successfully"}
