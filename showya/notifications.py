"""In-app notifications and transactional email."""

from __future__ import annotations

import logging
from typing import Sequence

import requests
import resend
from jinja2 import Environment, PackageLoader, select_autoescape
from resend.exceptions import ResendError
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .config import settings
from .errors import NotFoundError
from .models import Notification, User

logger = logging.getLogger("uvicorn.error")

_email_env = Environment(
    loader=PackageLoader("showya", "templates"),
    autoescape=select_autoescape(["html"]),
)


def absolute_url(path: str | None) -> str | None:
    if not path:
        return None
    if path.startswith(("http://", "https://")):
        return path
    return f"{settings.app_base_url.rstrip('/')}/{path.lstrip('/')}"


def render_email(
    *,
    title: str,
    message: str,
    action_url: str | None = None,
    recipient_name: str | None = None,
) -> str:
    template = _email_env.get_template("email/notification.html")
    return template.render(
        title=title,
        message=message,
        action_url=absolute_url(action_url),
        recipient_name=recipient_name,
        base_url=settings.app_base_url,
    )


def render_otp_email(*, code: str, purpose: str, ttl_minutes: int) -> str:
    template = _email_env.get_template("email/otp.html")
    action = "create your account" if purpose == "signup" else "sign in"
    return template.render(code=code, action=action, ttl_minutes=ttl_minutes)


class EmailSender:
    """Send mail through the Resend SDK."""

    def __init__(self, api_key: str, *, sender: str | None = None) -> None:
        self.api_key = api_key
        self.sender = sender or settings.email_from

    @classmethod
    def from_settings(cls) -> "EmailSender":
        return cls(settings.resend_api_key)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def send(self, *, to: str, subject: str, html: str) -> str | None:
        resend.api_key = self.api_key
        params = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        email = resend.Emails.send(params)
        return (email or {}).get("id")


def notify(
    session: Session,
    *,
    user_id: str,
    title: str,
    message: str,
    type: str = "info",
    category: str = "general",
    related_id: str | None = None,
    action_url: str | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        category=category,
        related_id=related_id,
        action_url=action_url,
    )
    session.add(notification)
    session.flush()
    return notification


def send_notification_email(
    session: Session,
    mailer: EmailSender | None,
    user: User | None,
    *,
    title: str,
    message: str,
    action_url: str | None = None,
) -> bool:
    """Email a user and flag matching in-app notifications as emailed.

    Delivery failures are logged and reported as ``False``; they never abort
    the caller's flow.
    """
    if user is None or not user.email:
        logger.warning("Skipping email %r: recipient has no address", title)
        return False
    if mailer is None or not mailer.enabled:
        logger.info("Email delivery disabled; not sending %r to %s", title, user.id)
        return False
    html = render_email(
        title=title,
        message=message,
        action_url=action_url,
        recipient_name=user.public_name,
    )
    try:
        email_id = mailer.send(to=user.email, subject=title, html=html)
    except (ResendError, requests.RequestException) as exc:
        logger.warning("Failed to send %r to %s: %s", title, user.id, exc)
        return False
    logger.info("Sent email %s (%r) to user %s", email_id, title, user.id)
    session.execute(
        update(Notification)
        .where(
            Notification.user_id == user.id,
            Notification.title == title,
            Notification.message == message,
        )
        .values(is_email_sent=True)
    )
    return True


def list_notifications(
    session: Session, user: User, *, unread_only: bool = False, limit: int = 50
) -> Sequence[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    return session.scalars(stmt).all()


def mark_read(session: Session, user: User, notification_id: str) -> Notification:
    notification = session.get(Notification, notification_id)
    if not notification or notification.user_id != user.id:
        raise NotFoundError("Notification not found")
    notification.is_read = True
    session.add(notification)
    session.flush()
    return notification


def mark_all_read(session: Session, user: User) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return result.rowcount or 0


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "category": notification.category,
        "related_id": notification.related_id,
        "action_url": notification.action_url,
        "is_read": notification.is_read,
        "is_email_sent": notification.is_email_sent,
        "created_at": notification.created_at.isoformat(),
    }
