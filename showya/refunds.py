"""Attendee cancellations and refunds."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .errors import BadRequestError, NotFoundError, RazorpayError
from .models import Event, EventParticipant, Refund, User
from .notifications import EmailSender, notify, send_notification_email
from .razorpay import RazorpayClient
from .utils import format_inr, hours_until, to_paise, utcnow

logger = logging.getLogger("uvicorn.error")


def refund_percentage(hours_until_event: float) -> int:
    """Share of the ticket price returned when an attendee cancels."""
    if hours_until_event >= settings.full_refund_hours:
        return 100
    if hours_until_event >= settings.partial_refund_hours:
        return settings.partial_refund_percent
    return 0


def serialize_refund(refund: Refund) -> dict[str, Any]:
    return {
        "id": refund.id,
        "booking_id": refund.booking_id,
        "event_id": refund.event_id,
        "amount": refund.amount,
        "percentage": refund.refund_percentage,
        "status": refund.status,
        "reason": refund.reason,
        "razorpay_refund_id": refund.razorpay_refund_id,
        "error_message": refund.error_message,
        "processed_at": refund.processed_at.isoformat() if refund.processed_at else None,
        "created_at": refund.created_at.isoformat() if refund.created_at else None,
    }


def _refund_message(amount: float, percentage: int, event: Event) -> str:
    return (
        f"Your refund of {format_inr(amount)} ({percentage}%) for \"{event.title}\" "
        "has been initiated. It will be processed within 5-7 business days."
    )


def _paid_amount(booking: EventParticipant, event: Event) -> float:
    if booking.amount_paid is not None:
        return float(booking.amount_paid)
    return event.price_for(booking.role)


def _issue_refund(
    session: Session,
    client: RazorpayClient,
    refund: Refund,
    *,
    reason: str,
) -> None:
    """Call the provider for a persisted refund row and record the outcome."""
    try:
        data = client.refund_payment(
            refund.payment_id,
            amount=to_paise(refund.amount),
            notes={
                "refund_id": refund.id,
                "event_id": refund.event_id,
                "user_id": refund.user_id,
                "reason": reason,
            },
        )
    except RazorpayError as exc:
        refund.status = "failed"
        refund.error_message = exc.description or "Refund failed"
        session.add(refund)
        session.commit()
        raise
    refund.razorpay_refund_id = data.get("id")
    refund.status = "processing"
    refund.processed_at = utcnow()
    session.add(refund)


def process_refund(
    session: Session,
    client: RazorpayClient,
    mailer: EmailSender | None,
    user: User,
    booking_id: str,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Cancel the caller's booking, refunding paid tickets on a sliding scale."""
    booking = session.get(EventParticipant, booking_id)
    if not booking or booking.user_id != user.id:
        raise NotFoundError("Booking not found or unauthorized")
    event = booking.event

    if not booking.payment_id:
        logger.info("Cancelling free booking %s for event %s", booking.id, event.id)
        session.delete(booking)
        notify(
            session,
            user_id=user.id,
            title="Booking Cancelled",
            message=f'Your booking for "{event.title}" has been cancelled successfully.',
            type="info",
            category="event",
            related_id=event.id,
            action_url=f"/events/{event.id}",
        )
        return {"success": True, "message": "Booking cancelled successfully."}

    existing = session.scalars(
        select(Refund).where(Refund.booking_id == booking.id)
    ).first()
    if existing:
        raise BadRequestError(
            "Refund already initiated",
            code="RefundAlreadyInitiated",
            extra={"refund": serialize_refund(existing)},
        )

    hours_left = hours_until(event.event_date, now=now)
    percentage = refund_percentage(hours_left)
    if percentage == 0:
        raise BadRequestError(
            "Refund not available. Event is less than 2 hours away.",
            code="RefundUnavailable",
        )

    amount = _paid_amount(booking, event) * percentage / 100
    refund = Refund(
        booking_id=booking.id,
        event_id=event.id,
        user_id=user.id,
        payment_id=booking.payment_id,
        amount=amount,
        refund_percentage=percentage,
        status="processing",
        reason=reason or f"Booking cancelled {hours_left:.1f} hours before event",
    )
    session.add(refund)
    session.commit()
    logger.info(
        "Refund %s: %s%% of booking %s = %s",
        refund.id,
        percentage,
        booking.id,
        amount,
    )

    _issue_refund(session, client, refund, reason=reason or "Booking cancelled")

    message = _refund_message(amount, percentage, event)
    notify(
        session,
        user_id=user.id,
        title="Refund Initiated",
        message=message,
        type="success",
        category="payment",
        related_id=refund.id,
        action_url=f"/events/{event.id}",
    )
    send_notification_email(
        session,
        mailer,
        user,
        title="Refund Initiated",
        message=message,
        action_url=f"/events/{event.id}",
    )
    session.delete(booking)

    return {
        "success": True,
        "refund": {
            "id": refund.id,
            "amount": amount,
            "percentage": percentage,
            "razorpay_refund_id": refund.razorpay_refund_id,
            "status": refund.status,
        },
        "message": (
            f"Refund of {format_inr(amount)} ({percentage}%) initiated successfully. "
            "It will be processed within 5-7 business days."
        ),
    }


def refund_event_bookings(
    session: Session,
    client: RazorpayClient,
    event: Event,
    *,
    reason: str,
) -> dict[str, int]:
    """Refund every captured booking in full after the organizer cancels.

    Each booking is attempted independently; provider failures are kept as
    ``failed`` refund rows so they can be retried by hand.
    """
    initiated = 0
    failed = 0
    already_refunded = set(
        session.scalars(
            select(Refund.booking_id).where(Refund.event_id == event.id)
        ).all()
    )
    for booking in list(event.participants):
        if not booking.payment_id or booking.payment_status != "captured":
            continue
        if booking.id in already_refunded:
            continue
        refund = Refund(
            booking_id=booking.id,
            event_id=event.id,
            user_id=booking.user_id,
            payment_id=booking.payment_id,
            amount=_paid_amount(booking, event),
            refund_percentage=100,
            status="processing",
            reason=reason,
        )
        session.add(refund)
        session.commit()
        try:
            _issue_refund(session, client, refund, reason=reason)
        except RazorpayError as exc:
            logger.error(
                "Full refund for booking %s on cancelled event %s failed: %s",
                booking.id,
                event.id,
                exc.description,
            )
            failed += 1
            continue
        initiated += 1
    return {"refunds_initiated": initiated, "refunds_failed": failed}


def apply_refund_webhook(session: Session, event_name: str, entity: dict[str, Any]) -> bool:
    """Update a refund row from a ``refund.processed``/``refund.failed`` event."""
    refund_id = entity.get("id")
    if not refund_id:
        return False
    refund = session.scalars(
        select(Refund).where(Refund.razorpay_refund_id == refund_id)
    ).first()
    if not refund:
        logger.warning("Webhook %s for unknown refund %s", event_name, refund_id)
        return False
    if event_name == "refund.processed":
        refund.status = "processed"
        refund.processed_at = utcnow()
    else:
        refund.status = "failed"
        refund.error_message = (
            entity.get("error_description") or "Refund failed at provider"
        )
    session.add(refund)
    return True


def list_user_refunds(session: Session, user: User) -> list[Refund]:
    stmt = (
        select(Refund)
        .where(Refund.user_id == user.id)
        .order_by(Refund.created_at.desc())
    )
    return list(session.scalars(stmt).all())
