"""Video rooms on Jitsi as a Service and in-meeting mic permissions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from sqlalchemy.orm import Session

from .config import settings
from .errors import BadRequestError, NotFoundError, PermissionDeniedError, ShowyaError
from .events import find_booking, get_event
from .models import Event, EventParticipant, User
from .notifications import notify

logger = logging.getLogger("uvicorn.error")

JAAS_FEATURES = {
    "livestreaming": False,
    "recording": False,
    "transcription": False,
    "outbound-call": False,
    "sip-outbound-call": False,
}
MIC_ACTIONS = {"grant": "granted", "revoke": "revoked"}


def room_name_for(event: Event) -> str:
    return f"showya-event-{event.id.replace('-', '')[:16]}"


def _private_key(raw: str) -> str:
    # Keys pasted into env vars usually arrive with escaped newlines.
    return raw.replace("\\n", "\n").strip()


def generate_jaas_token(
    app_id: str,
    private_key: str,
    room: str,
    user: User,
    moderator: bool,
    *,
    now: datetime | None = None,
) -> str:
    """Sign an RS256 JaaS token for ``user`` in ``room``."""
    issued = (now or datetime.now(UTC)).replace(tzinfo=UTC)
    issued_at = int(issued.timestamp())
    expires = issued + timedelta(hours=settings.jaas_token_ttl_hours)
    claims = {
        "aud": "jitsi",
        "iss": "chat",
        "sub": app_id,
        "room": room,
        "iat": issued_at,
        "nbf": issued_at,
        "exp": int(expires.timestamp()),
        "context": {
            "user": {
                "id": user.id,
                "name": user.display_name or user.name or "Participant",
                "email": user.email or "",
                "moderator": moderator,
            },
            "features": dict(JAAS_FEATURES),
        },
    }
    return jwt.encode(
        claims,
        _private_key(private_key),
        algorithm="RS256",
        headers={"kid": f"{app_id}/default"},
    )


def meeting_token(
    session: Session, event_id: str, user: User, *, now: datetime | None = None
) -> dict[str, Any]:
    """Issue a meeting token to the host or a booked participant."""
    if not settings.jaas_app_id or not settings.jaas_private_key:
        raise ShowyaError("Video meetings are not configured", code="MeetingsDisabled")
    event = get_event(session, event_id)
    is_creator = event.created_by == user.id
    booking = find_booking(session, event.id, user.id)
    if not is_creator and booking is None:
        raise PermissionDeniedError(
            "You must be registered for this event to join the meeting"
        )
    if not event.jaas_room_name:
        event.jaas_room_name = room_name_for(event)
        session.add(event)
    moderator = is_creator or (booking is not None and booking.role == "performer")
    token = generate_jaas_token(
        settings.jaas_app_id,
        settings.jaas_private_key,
        event.jaas_room_name,
        user,
        moderator,
        now=now,
    )
    logger.info("Issued meeting token for %s in %s", user.id, event.jaas_room_name)
    return {
        "token": token,
        "roomName": f"{settings.jaas_app_id}/{event.jaas_room_name}",
        "appId": settings.jaas_app_id,
        "isModerator": moderator,
    }


def request_mic(session: Session, event_id: str, user: User) -> dict[str, Any]:
    booking = find_booking(session, event_id, user.id)
    if booking is None:
        raise NotFoundError("You are not registered for this event")
    if booking.role != "audience" or booking.payment_status != "captured":
        raise PermissionDeniedError("Only paid audience members can request mic access")
    event = booking.event
    if event.allow_paid_audience_mic is False:
        raise BadRequestError("Mic requests are not enabled for this event")
    if booking.mic_permission == "granted":
        raise BadRequestError("Mic already granted")
    if booking.mic_permission == "requested":
        raise BadRequestError("Mic request already pending")

    booking.mic_permission = "requested"
    session.add(booking)
    notify(
        session,
        user_id=event.created_by,
        title="Mic Request",
        message=(
            f'{user.public_name or "A participant"} is requesting mic access '
            f'in "{event.title}"'
        ),
        category="event",
        related_id=event.id,
        action_url=f"/events/{event.id}/join",
    )
    return {"success": True, "mic_permission": booking.mic_permission}


def resolve_mic(
    session: Session, event_id: str, host: User, target_user_id: str, action: str
) -> dict[str, Any]:
    if action not in MIC_ACTIONS:
        raise BadRequestError('Action must be "grant" or "revoke"')
    event = session.get(Event, event_id)
    if event is None or event.created_by != host.id:
        raise PermissionDeniedError("Only the event host can manage mic permissions")
    booking: EventParticipant | None = find_booking(session, event.id, target_user_id)
    if booking is None:
        raise NotFoundError("Participant not found")

    booking.mic_permission = MIC_ACTIONS[action]
    session.add(booking)
    if action == "grant":
        title = "Mic Access Granted"
        message = f'The host has approved your mic request in "{event.title}". You can now unmute.'
    else:
        title = "Mic Access Revoked"
        message = f'The host has revoked your mic access in "{event.title}".'
    notify(
        session,
        user_id=target_user_id,
        title=title,
        message=message,
        category="event",
        related_id=event.id,
    )
    return {"success": True, "mic_permission": booking.mic_permission}
