"""User reports for the moderation queue and ShowClips spotlights."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence
from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import BadRequestError, ConflictError, NotFoundError, PermissionDeniedError
from .models import REPORT_STATUSES, Event, Report, ShowClip, User
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

USER_INCIDENT_LOCATIONS = (
    "Chat message",
    "During event/meeting",
    "Profile picture",
    "Profile information",
)
COMMUNITY_OWNER_INCIDENT_LOCATIONS = (
    "Chat message",
    "During event/meeting",
    "Profile picture",
    "Community description",
    "Community banner",
    "Event page/details",
)
INCIDENT_LOCATIONS = {
    "user": USER_INCIDENT_LOCATIONS,
    "community_owner": COMMUNITY_OWNER_INCIDENT_LOCATIONS,
}
REPORT_MESSAGE_MIN = 50
REPORT_MESSAGE_MAX = 500
REPORT_COOLDOWN = timedelta(hours=24)
# Reports only move forward through the queue.
REPORT_TRANSITIONS = {
    "pending": {"reviewed", "resolved"},
    "reviewed": {"resolved"},
    "resolved": set(),
}
CLIP_TEXT_MAX = 280


def create_report(
    session: Session,
    reporter: User,
    *,
    target_user_id: str,
    target_type: str,
    reason: str,
    incident_location: str,
    message: str,
    context_type: str | None = None,
    context_id: str | None = None,
    now: datetime | None = None,
) -> Report:
    if target_type not in INCIDENT_LOCATIONS:
        raise BadRequestError("target_type must be user or community_owner")
    if not (reason or "").strip():
        raise BadRequestError("Please select a reason")
    if incident_location not in INCIDENT_LOCATIONS[target_type]:
        raise BadRequestError("Please specify where this incident occurred")
    text = (message or "").strip()
    if len(text) < REPORT_MESSAGE_MIN:
        raise BadRequestError("Description must be at least 50 characters")
    if len(text) > REPORT_MESSAGE_MAX:
        raise BadRequestError("Description must be less than 500 characters")
    if target_user_id == reporter.id:
        raise BadRequestError("You cannot report yourself")
    if not session.get(User, target_user_id):
        raise NotFoundError("Reported user not found")

    since = (now or utcnow()) - REPORT_COOLDOWN
    recent = session.scalars(
        select(Report).where(
            Report.reporter_id == reporter.id,
            Report.target_user_id == target_user_id,
            Report.status == "pending",
            Report.created_at >= since,
        )
    ).first()
    if recent:
        raise ConflictError(
            "You have already reported this user in the last 24 hours",
            code="DuplicateReport",
        )

    report = Report(
        reporter_id=reporter.id,
        target_user_id=target_user_id,
        target_type=target_type,
        reason=reason.strip(),
        incident_location=incident_location,
        message=text,
        context_type=context_type,
        context_id=context_id,
    )
    if now is not None:
        report.created_at = now
    session.add(report)
    session.flush()
    logger.info("Report %s filed against %s", report.id, target_user_id)
    return report


def list_reports(session: Session, *, status: str | None = None) -> Sequence[Report]:
    stmt = select(Report).order_by(Report.created_at.desc())
    if status:
        if status not in REPORT_STATUSES:
            raise BadRequestError("Unknown report status")
        stmt = stmt.where(Report.status == status)
    return session.scalars(stmt).all()


def update_report_status(session: Session, report_id: str, status: str) -> Report:
    report = session.get(Report, report_id)
    if not report:
        raise NotFoundError("Report not found")
    if status not in REPORT_STATUSES:
        raise BadRequestError("Unknown report status")
    if status != report.status and status not in REPORT_TRANSITIONS[report.status]:
        raise BadRequestError(f"Cannot move a {report.status} report to {status}")
    report.status = status
    session.add(report)
    return report


def serialize_report(report: Report) -> dict[str, Any]:
    return {
        "id": report.id,
        "reporter_id": report.reporter_id,
        "target_user_id": report.target_user_id,
        "target_type": report.target_type,
        "reason": report.reason,
        "incident_location": report.incident_location,
        "message": report.message,
        "context_type": report.context_type,
        "context_id": report.context_id,
        "status": report.status,
        "created_at": report.created_at.isoformat(),
    }


def create_clip(
    session: Session,
    user: User,
    *,
    community_name: str,
    feature_text: str,
    video_url: str,
    event_id: str | None = None,
) -> ShowClip:
    text = (feature_text or "").strip()
    if not text or len(text) > CLIP_TEXT_MAX:
        raise BadRequestError("Feature text must be between 1 and 280 characters")
    url = (video_url or "").strip()
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise BadRequestError("Video URL must be an http(s) link")
    if not (community_name or "").strip():
        raise BadRequestError("Community name is required")
    if event_id and not session.get(Event, event_id):
        raise NotFoundError("Event not found")
    clip = ShowClip(
        user_id=user.id,
        event_id=event_id,
        community_name=community_name.strip(),
        feature_text=text,
        video_url=url,
    )
    session.add(clip)
    session.flush()
    return clip


def list_clips(session: Session, *, limit: int = 50) -> Sequence[ShowClip]:
    stmt = select(ShowClip).order_by(ShowClip.created_at.desc()).limit(limit)
    return session.scalars(stmt).all()


def delete_clip(session: Session, user: User, clip_id: str) -> None:
    clip = session.get(ShowClip, clip_id)
    if not clip:
        raise NotFoundError("Clip not found")
    if clip.user_id != user.id and not user.is_admin:
        raise PermissionDeniedError("You can only delete your own clips")
    session.delete(clip)


def serialize_clip(clip: ShowClip) -> dict[str, Any]:
    return {
        "id": clip.id,
        "user_id": clip.user_id,
        "author": clip.user.public_name if clip.user else None,
        "event_id": clip.event_id,
        "community_name": clip.community_name,
        "feature_text": clip.feature_text,
        "video_url": clip.video_url,
        "created_at": clip.created_at.isoformat(),
    }
