"""Event lifecycle: creation, guarded edits, cancellation and registration."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from .models import (
    KYC_ACTIVATED,
    PARTICIPANT_ROLES,
    Community,
    Event,
    EventAuditLog,
    EventParticipant,
    User,
)
from .notifications import EmailSender, notify, send_notification_email
from .razorpay import RazorpayClient
from .refunds import refund_event_bookings
from .utils import format_event_time, generate_ticket_code, hours_until, utcnow

logger = logging.getLogger("uvicorn.error")

TICKET_TYPES = {"free", "paid"}
LOCKED_PRICE_FIELDS = ["ticket_type", "performer_ticket_price", "audience_ticket_price"]
PRICING_FIELDS = {*LOCKED_PRICE_FIELDS, "performer_slots", "audience_enabled"}
EDITABLE_FIELDS = {
    "title",
    "description",
    "category",
    "event_date",
    "duration",
    "ticket_type",
    "performer_slots",
    "performer_ticket_price",
    "audience_enabled",
    "audience_slots",
    "audience_ticket_price",
    "meeting_url",
    "allow_paid_audience_mic",
    "allow_free_audience_mic",
    "editable_before_event_minutes",
}


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def serialize_event(event: Event) -> dict[str, Any]:
    return {
        "id": event.id,
        "community_id": event.community_id,
        "community_name": event.community.name if event.community else None,
        "created_by": event.created_by,
        "title": event.title,
        "description": event.description,
        "category": event.category,
        "event_date": event.event_date.isoformat(),
        "duration": event.duration,
        "ticket_type": event.ticket_type,
        "performer_slots": event.performer_slots,
        "performer_ticket_price": event.performer_ticket_price,
        "audience_enabled": event.audience_enabled,
        "audience_slots": event.audience_slots,
        "audience_ticket_price": event.audience_ticket_price,
        "meeting_url": event.meeting_url,
        "jaas_room_name": event.jaas_room_name,
        "allow_paid_audience_mic": event.allow_paid_audience_mic,
        "allow_free_audience_mic": event.allow_free_audience_mic,
        "editable_before_event_minutes": event.editable_before_event_minutes,
        "is_cancelled": event.is_cancelled,
    }


def serialize_booking(booking: EventParticipant) -> dict[str, Any]:
    return {
        "id": booking.id,
        "event_id": booking.event_id,
        "role": booking.role,
        "payment_status": booking.payment_status,
        "amount_paid": booking.amount_paid,
        "mic_permission": booking.mic_permission,
        "ticket_code": booking.ticket_code,
    }


def get_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


def require_creator(event: Event, user: User, message: str) -> None:
    if event.created_by != user.id:
        raise PermissionDeniedError(message)


def audience_capacity(event: Event) -> int:
    if event.audience_slots is None:
        return settings.default_audience_slots
    return event.audience_slots


def remaining_slots(event: Event) -> dict[str, int]:
    return {
        "performer": max(0, event.performer_slots - event.booked_count("performer")),
        "audience": max(0, audience_capacity(event) - event.booked_count("audience")),
    }


def ensure_seat_available(event: Event, role: str) -> None:
    if role not in PARTICIPANT_ROLES:
        raise BadRequestError("Role must be performer or audience")
    if role == "audience" and not event.audience_enabled:
        raise BadRequestError("This event does not admit an audience")
    if remaining_slots(event)[role] <= 0:
        raise ConflictError(f"No {role} slots left for this event", code="EventFull")


def find_booking(session: Session, event_id: str, user_id: str) -> EventParticipant | None:
    stmt = select(EventParticipant).where(
        EventParticipant.event_id == event_id, EventParticipant.user_id == user_id
    )
    return session.scalars(stmt).first()


def _validate_pricing(data: dict[str, Any]) -> None:
    ticket_type = data.get("ticket_type", "free")
    if ticket_type not in TICKET_TYPES:
        raise BadRequestError("ticket_type must be free or paid")
    if ticket_type != "paid":
        return
    if (data.get("performer_slots") or 0) > 0 and (
        data.get("performer_ticket_price") or 0
    ) <= 0:
        raise BadRequestError("Paid events need a performer ticket price above 0")
    if data.get("audience_enabled") and (data.get("audience_ticket_price") or 0) <= 0:
        raise BadRequestError("Paid events need an audience ticket price above 0")


def _require_payouts(community: Community) -> None:
    account = community.payment_account
    if not account or account.kyc_status != KYC_ACTIVATED:
        raise BadRequestError(
            "Complete KYC for your community before creating paid events",
            code="KycRequired",
        )


def create_event(
    session: Session,
    user: User,
    community_id: str,
    data: dict[str, Any],
) -> Event:
    community = session.get(Community, community_id)
    if not community:
        raise NotFoundError("Community not found")
    if community.owner_id != user.id:
        raise PermissionDeniedError("Only the community owner can create events")
    fields = {key: value for key, value in data.items() if key in EDITABLE_FIELDS}
    if not (fields.get("title") or "").strip():
        raise BadRequestError("Title is required")
    if not fields.get("event_date"):
        raise BadRequestError("event_date is required")
    fields.setdefault("ticket_type", "free")
    _validate_pricing(fields)
    if fields["ticket_type"] == "paid":
        _require_payouts(community)
    fields.setdefault(
        "editable_before_event_minutes", settings.default_edit_window_minutes
    )
    if fields.get("audience_enabled"):
        fields.setdefault("audience_slots", settings.default_audience_slots)
    fields.setdefault("allow_paid_audience_mic", True)
    fields.setdefault("allow_free_audience_mic", False)
    event = Event(community_id=community.id, created_by=user.id, **fields)
    session.add(event)
    session.flush()
    logger.info("Event %s created in community %s", event.id, community.id)
    return event


def _notify_bookings(
    session: Session,
    bookings: list[EventParticipant],
    event: Event,
    *,
    title: str,
    message: str,
) -> None:
    for booking in bookings:
        notify(
            session,
            user_id=booking.user_id,
            title=title,
            message=message,
            type="info",
            category="event",
            related_id=event.id,
            action_url=f"/events/{event.id}",
        )


def update_event(
    session: Session,
    user: User,
    event_id: str,
    updates: dict[str, Any],
    *,
    confirm_date_change: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Apply an organizer edit, enforcing the post-booking guard rails."""
    event = get_event(session, event_id)
    require_creator(event, user, "Only event creator can edit the event")
    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise BadRequestError(f"Unknown fields: {', '.join(sorted(unknown))}")

    now = now or utcnow()
    bookings = list(event.participants)
    has_bookings = bool(bookings)

    editable_minutes = (
        event.editable_before_event_minutes or settings.default_edit_window_minutes
    )
    minutes_left = hours_until(event.event_date, now=now) * 60
    if minutes_left <= editable_minutes and any(
        key != "meeting_url" for key in updates
    ):
        raise BadRequestError(
            f"Event can only have meeting link updated within {editable_minutes} "
            "minutes of start time",
            code="restricted_window",
            extra={"allowedFields": ["meeting_url"]},
        )

    if has_bookings and any(
        field in updates and updates[field] != getattr(event, field)
        for field in LOCKED_PRICE_FIELDS
    ):
        raise BadRequestError(
            "Cannot change pricing after bookings have been made",
            code="locked_field",
            extra={"lockedFields": LOCKED_PRICE_FIELDS},
        )

    date_changed = bool(updates.get("event_date")) and (
        updates["event_date"] != event.event_date
    )
    if date_changed and has_bookings and not confirm_date_change:
        raise BadRequestError(
            "Date/time change requires confirmation as attendees will be notified",
            code="date_change_confirmation_required",
            extra={"attendeeCount": len(bookings)},
        )

    if updates.get("performer_slots") is not None and has_bookings:
        performer_count = event.booked_count("performer")
        if updates["performer_slots"] < performer_count:
            raise BadRequestError(
                f"Cannot reduce performer slots to {updates['performer_slots']} as "
                f"{performer_count} performers are already booked",
                code="slot_reduction_conflict",
                extra={"currentBookings": performer_count},
            )

    if PRICING_FIELDS & set(updates):
        merged = {field: getattr(event, field) for field in PRICING_FIELDS}
        merged.update({k: v for k, v in updates.items() if k in PRICING_FIELDS})
        _validate_pricing(merged)
        if merged["ticket_type"] == "paid" and event.ticket_type != "paid":
            _require_payouts(event.community)

    previous = serialize_event(event)
    session.add(
        EventAuditLog(
            event_id=event.id,
            user_id=user.id,
            action="update",
            old_values=previous,
            new_values={key: _json_value(value) for key, value in updates.items()},
        )
    )

    meeting_changed = bool(updates.get("meeting_url")) and (
        updates["meeting_url"] != event.meeting_url
    )
    duration_changed = bool(updates.get("duration")) and (
        updates["duration"] != event.duration
    )
    lineup_changed = bool(updates.get("performer_slots")) and (
        updates["performer_slots"] != event.performer_slots
    )
    for key, value in updates.items():
        setattr(event, key, value)
    if meeting_changed:
        event.meeting_link_last_updated_at = now
    session.add(event)
    session.flush()

    if has_bookings:
        if meeting_changed:
            _notify_bookings(
                session,
                bookings,
                event,
                title="Meeting Link Updated",
                message=(
                    f'The meeting link for "{event.title}" has been updated. '
                    "Please check the event details."
                ),
            )
        if date_changed:
            _notify_bookings(
                session,
                bookings,
                event,
                title="Event Time Changed",
                message=(
                    f'The date/time for "{event.title}" has been changed. The new time '
                    f"is {format_event_time(event.event_date)}. You can cancel for a "
                    "refund if this doesn't work for you."
                ),
            )
        if duration_changed:
            _notify_bookings(
                session,
                bookings,
                event,
                title="Event Duration Changed",
                message=(
                    f'The duration for "{event.title}" has been changed to '
                    f"{event.duration} minutes."
                ),
            )
        if lineup_changed:
            _notify_bookings(
                session,
                bookings,
                event,
                title="Lineup Changed",
                message=f'The performer lineup for "{event.title}" has changed.',
            )

    logger.info("Event %s updated by user %s", event.id, user.id)
    return {
        "success": True,
        "event": serialize_event(event),
        "notificationsSent": len(bookings),
    }


def _cancel(
    session: Session,
    client: RazorpayClient,
    mailer: EmailSender | None,
    event: Event,
    *,
    reason: str | None,
) -> dict[str, Any]:
    bookings = list(event.participants)
    event.is_cancelled = True
    session.add(event)
    session.flush()

    paid = event.ticket_type == "paid"
    refund_note = (
        "You will receive an automatic refund within 5-7 business days. "
        if paid
        else ""
    )
    reason_note = f"Reason: {reason}" if reason else ""
    message = (
        f'The event "{event.title}" has been cancelled. {refund_note}{reason_note}'
    ).strip()
    for booking in bookings:
        notify(
            session,
            user_id=booking.user_id,
            title="Event Cancelled",
            message=message,
            type="warning",
            category="event",
            related_id=event.id,
            action_url=f"/events/{event.id}",
        )
        send_notification_email(
            session,
            mailer,
            booking.user,
            title="Event Cancelled - Refund Information" if paid else "Event Cancelled",
            message=message,
            action_url=f"/events/{event.id}",
        )
    logger.info("Sent cancellation notices to %s attendees of %s", len(bookings), event.id)

    result: dict[str, Any] = {"attendees_notified": len(bookings)}
    if paid:
        result.update(
            refund_event_bookings(
                session,
                client,
                event,
                reason=reason or "Event cancelled by organizer",
            )
        )
    return result


def cancel_event(
    session: Session,
    client: RazorpayClient,
    mailer: EmailSender | None,
    user: User,
    event_id: str,
    *,
    reason: str | None = None,
) -> dict[str, Any]:
    event = get_event(session, event_id)
    require_creator(event, user, "Event not found or you don't have permission")
    if event.is_cancelled:
        raise BadRequestError("Event is already cancelled", code="AlreadyCancelled")
    result = _cancel(session, client, mailer, event, reason=reason)
    return {"success": True, "message": "Event cancelled successfully", **result}


def delete_event(
    session: Session,
    client: RazorpayClient,
    mailer: EmailSender | None,
    user: User,
    event_id: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Hard-delete an event nobody booked; otherwise cancel it."""
    event = get_event(session, event_id)
    require_creator(event, user, "Only event creator can delete this event")
    now = now or utcnow()
    if event.event_date < now:
        raise BadRequestError("Cannot delete an event that has already ended")
    if event.event_date - now < timedelta(hours=settings.delete_cutoff_hours):
        raise BadRequestError(
            "Cannot delete an event that starts in less than 1 hour"
        )

    bookings = list(event.participants)
    if not bookings:
        session.delete(event)
        logger.info("Event %s deleted by user %s", event.id, user.id)
        return {"success": True, "deleted": True, "message": "Event deleted successfully"}

    if event.is_cancelled:
        raise BadRequestError("Event is already cancelled", code="AlreadyCancelled")
    result = _cancel(session, client, mailer, event, reason=None)
    session.add(
        EventAuditLog(
            event_id=event.id,
            user_id=user.id,
            action="cancelled",
            old_values={"is_cancelled": False},
            new_values={"is_cancelled": True},
        )
    )
    refunds_note = " Refunds will be processed." if event.ticket_type == "paid" else ""
    return {
        "success": True,
        "cancelled": True,
        "message": f"Event cancelled. {len(bookings)} participants notified.{refunds_note}",
        **result,
    }


def handle_event_registration(
    session: Session,
    mailer: EmailSender | None,
    event: Event,
    user: User,
    role: str,
) -> None:
    """Tell the new attendee and the community owner about a booking."""
    if role == "performer":
        notify(
            session,
            user_id=user.id,
            title="Event Registration Confirmed",
            message=(
                f'You\'re registered as a performer for "{event.title}". Event starts '
                f"at {format_event_time(event.event_date)}."
            ),
            type="success",
            category="event",
            related_id=event.id,
            action_url=f"/events/{event.id}",
        )
        send_notification_email(
            session,
            mailer,
            user,
            title="Performance Details - Action Required",
            message=(
                f'You\'re confirmed as a performer for "{event.title}". Meeting link: '
                f"{event.meeting_url or 'Will be shared soon'}. Please review "
                "prerequisites and prepare for your performance."
            ),
            action_url=f"/events/{event.id}",
        )

    owner = event.community.owner if event.community else None
    if owner is None:
        return
    notify(
        session,
        user_id=owner.id,
        title="New Event Registration",
        message=f'{user.public_name} registered as {role} for "{event.title}"',
        type="info",
        category="event",
        related_id=event.id,
        action_url=f"/events/{event.id}/dashboard",
    )
    send_notification_email(
        session,
        mailer,
        owner,
        title="New Event Registration",
        message=(
            f'{user.public_name} has registered for your event "{event.title}" '
            f"as a {role}."
        ),
        action_url=f"/events/{event.id}/dashboard",
    )


def register_free(
    session: Session,
    mailer: EmailSender | None,
    user: User,
    event_id: str,
    role: str,
) -> EventParticipant:
    event = get_event(session, event_id)
    if event.ticket_type != "free":
        raise BadRequestError("This event requires a paid ticket")
    if event.is_cancelled:
        raise BadRequestError("This event has been cancelled")
    if find_booking(session, event.id, user.id):
        raise ConflictError("You are already registered for this event")
    ensure_seat_available(event, role)
    booking = EventParticipant(
        user_id=user.id,
        role=role,
        ticket_code=generate_ticket_code(),
    )
    event.participants.append(booking)
    session.add(booking)
    session.flush()
    handle_event_registration(session, mailer, event, user, role)
    return booking


def join_context(session: Session, event_id: str, user: User) -> dict[str, Any]:
    event = get_event(session, event_id)
    booking = find_booking(session, event.id, user.id)
    slots = remaining_slots(event)
    return {
        "event": {
            "id": event.id,
            "title": event.title,
            "description": event.description,
            "event_date": event.event_date.isoformat(),
            "ticket_type": event.ticket_type,
            "performer_slots": event.performer_slots,
            "performer_ticket_price": event.performer_ticket_price,
            "audience_enabled": event.audience_enabled,
            "audience_slots": audience_capacity(event),
            "audience_ticket_price": event.audience_ticket_price or 0,
            "community_name": event.community.name if event.community else None,
            "community_id": event.community_id,
            "is_cancelled": event.is_cancelled,
            "allow_paid_audience_mic": (
                True
                if event.allow_paid_audience_mic is None
                else event.allow_paid_audience_mic
            ),
            "allow_free_audience_mic": bool(event.allow_free_audience_mic),
            "duration": event.duration,
        },
        "audienceRemaining": slots["audience"],
        "performerRemaining": slots["performer"],
        "booking": serialize_booking(booking) if booking else None,
        "isHost": event.created_by == user.id,
    }


def list_community_events(session: Session, community_id: str) -> list[Event]:
    stmt = (
        select(Event)
        .where(Event.community_id == community_id)
        .order_by(Event.event_date.asc())
    )
    return list(session.scalars(stmt).all())


def list_event_bookings(session: Session, user: User, event_id: str) -> list[EventParticipant]:
    event = get_event(session, event_id)
    require_creator(event, user, "Only the event creator can view bookings")
    return list(event.participants)


def list_event_audit_log(session: Session, user: User, event_id: str) -> list[EventAuditLog]:
    event = get_event(session, event_id)
    require_creator(event, user, "Only the event creator can view the audit log")
    stmt = (
        select(EventAuditLog)
        .where(EventAuditLog.event_id == event.id)
        .order_by(EventAuditLog.created_at.desc())
    )
    return list(session.scalars(stmt).all())
