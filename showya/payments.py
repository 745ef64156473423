"""Paid ticketing: Razorpay orders, checkout confirmation, webhooks and sync.

Every path that turns a captured payment into a booking goes through
:func:`record_paid_booking`, which is idempotent on the Razorpay order id and
on the (event, user) pair, so checkout, webhook and the periodic sync can
race without creating duplicate tickets.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .database import get_session
from .errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ShowyaError,
)
from .events import (
    ensure_seat_available,
    find_booking,
    get_event,
    handle_event_registration,
    require_creator,
)
from .kyc import apply_account_webhook
from .models import (
    KYC_ACTIVATED,
    PARTICIPANT_ROLES,
    Event,
    EventParticipant,
    PromoCode,
    RazorpayAccount,
    User,
)
from .notifications import EmailSender
from .razorpay import RazorpayClient, verify_payment_signature, verify_webhook_signature
from .refunds import apply_refund_webhook
from .utils import (
    from_paise,
    generate_ticket_code,
    percentage_of,
    to_naive_utc,
    to_paise,
    utcnow,
)

logger = logging.getLogger("uvicorn.error")

DISCOUNT_TYPES = ("percentage", "flat")
PROMO_TARGETS = ("all", "performer", "audience")


def serialize_promo(promo: PromoCode) -> dict[str, Any]:
    return {
        "id": promo.id,
        "event_id": promo.event_id,
        "code": promo.code,
        "discount_type": promo.discount_type,
        "discount_value": promo.discount_value,
        "applies_to": promo.applies_to,
        "usage_limit": promo.usage_limit,
        "usage_count": promo.usage_count,
        "valid_from": promo.valid_from.isoformat() if promo.valid_from else None,
        "valid_until": promo.valid_until.isoformat() if promo.valid_until else None,
    }


def create_promo_code(
    session: Session, user: User, event_id: str, data: dict[str, Any]
) -> PromoCode:
    event = get_event(session, event_id)
    require_creator(event, user, "Only the event creator can manage promo codes")
    code = (data.get("code") or "").strip().upper()
    if not code:
        raise BadRequestError("Promo code is required")
    discount_type = data.get("discount_type") or "percentage"
    if discount_type not in DISCOUNT_TYPES:
        raise BadRequestError("discount_type must be percentage or flat")
    value = float(data.get("discount_value") or 0)
    if value <= 0 or (discount_type == "percentage" and value > 100):
        raise BadRequestError("Discount value is out of range")
    applies_to = data.get("applies_to") or "all"
    if applies_to not in PROMO_TARGETS:
        raise BadRequestError("applies_to must be all, performer or audience")
    if _lookup_promo(session, event.id, code):
        raise ConflictError("A promo code with this name already exists for the event")
    valid_from = data.get("valid_from")
    valid_until = data.get("valid_until")
    promo = PromoCode(
        event_id=event.id,
        code=code,
        discount_type=discount_type,
        discount_value=value,
        applies_to=applies_to,
        usage_limit=data.get("usage_limit"),
        valid_from=to_naive_utc(valid_from) if valid_from else None,
        valid_until=to_naive_utc(valid_until) if valid_until else None,
    )
    session.add(promo)
    session.flush()
    return promo


def list_promo_codes(session: Session, user: User, event_id: str) -> list[PromoCode]:
    event = get_event(session, event_id)
    require_creator(event, user, "Only the event creator can manage promo codes")
    return list(event.promo_codes)


def _lookup_promo(session: Session, event_id: str, code: str) -> PromoCode | None:
    return session.scalars(
        select(PromoCode).where(
            PromoCode.event_id == event_id,
            func.upper(PromoCode.code) == code.strip().upper(),
        )
    ).first()


def validate_promo(
    session: Session,
    event: Event,
    code: str,
    role: str,
    *,
    now: datetime | None = None,
) -> PromoCode:
    """Return the promo code if it can be applied to this ticket right now."""
    promo = _lookup_promo(session, event.id, code)
    if not promo:
        raise BadRequestError("Invalid promo code", code="InvalidPromoCode")
    now = now or utcnow()
    if promo.valid_from and now < promo.valid_from:
        raise BadRequestError("Promo code is not active yet", code="InvalidPromoCode")
    if promo.valid_until and now > promo.valid_until:
        raise BadRequestError("Promo code has expired", code="InvalidPromoCode")
    if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
        raise BadRequestError("Promo code usage limit reached", code="InvalidPromoCode")
    if promo.applies_to not in ("all", role):
        raise BadRequestError(
            f"Promo code does not apply to {role} tickets", code="InvalidPromoCode"
        )
    return promo


def apply_discount(price: float, promo: PromoCode | None) -> float:
    if promo is None:
        return price
    if promo.discount_type == "flat":
        discounted = price - promo.discount_value
    else:
        discounted = price * (100 - promo.discount_value) / 100
    return max(0.0, round(discounted, 2))


def quote_ticket(
    session: Session,
    event_id: str,
    role: str,
    promo_code: str | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Price a ticket, optionally with a promo code, without creating an order."""
    event = get_event(session, event_id)
    if role not in PARTICIPANT_ROLES:
        raise BadRequestError("Role must be performer or audience")
    price = event.price_for(role)
    promo = validate_promo(session, event, promo_code, role, now=now) if promo_code else None
    return {
        "event_id": event.id,
        "role": role,
        "original_amount": price,
        "final_amount": apply_discount(price, promo),
        "promo": serialize_promo(promo) if promo else None,
    }


def _payment_account(session: Session, community_id: str) -> RazorpayAccount | None:
    return session.scalars(
        select(RazorpayAccount).where(RazorpayAccount.community_id == community_id)
    ).first()


def create_payment_order(
    session: Session,
    client: RazorpayClient,
    user: User,
    event_id: str,
    role: str,
    promo_code: str | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Open a Razorpay order that routes the organizer's share to their account."""
    event = get_event(session, event_id)
    if event.is_cancelled:
        raise BadRequestError("This event has been cancelled")
    if event.ticket_type != "paid":
        raise BadRequestError("This event has free tickets")
    ensure_seat_available(event, role)
    if find_booking(session, event.id, user.id):
        raise ConflictError("You are already registered for this event")

    account = _payment_account(session, event.community_id)
    if not account or account.kyc_status != KYC_ACTIVATED:
        raise BadRequestError(
            "Community KYC not approved for payments", code="KycRequired"
        )

    promo = validate_promo(session, event, promo_code, role, now=now) if promo_code else None
    amount = apply_discount(event.price_for(role), promo)
    if amount <= 0:
        raise BadRequestError("Order amount must be greater than zero")

    paise = to_paise(amount)
    organizer_share = percentage_of(paise, 100 - settings.platform_fee_percent)
    notes = {
        "event_id": event.id,
        "user_id": user.id,
        "role": role,
        "event_name": event.title,
    }
    if promo:
        notes["promo_code"] = promo.code
    order = client.create_order(
        amount=paise,
        currency=settings.currency,
        receipt=f"evt_{event.id.replace('-', '')[:12]}_{user.id.replace('-', '')[:8]}",
        notes=notes,
        transfers=[
            {
                "account": account.razorpay_account_id,
                "amount": organizer_share,
                "currency": settings.currency,
                "notes": {"event_id": event.id, "community_id": event.community_id},
            }
        ],
    )
    logger.info(
        "Order %s for %s on event %s: %s paise (%s to organizer)",
        order.get("id"),
        user.id,
        event.id,
        paise,
        organizer_share,
    )
    return {
        "order_id": order.get("id"),
        "amount": order.get("amount", paise),
        "currency": order.get("currency", settings.currency),
        "key_id": client.key_id,
    }


def _booking_for_order(session: Session, order_id: str) -> EventParticipant | None:
    return session.scalars(
        select(EventParticipant).where(EventParticipant.razorpay_order_id == order_id)
    ).first()


def _count_promo_use(session: Session, event_id: str, code: str | None) -> None:
    if not code:
        return
    promo = _lookup_promo(session, event_id, code)
    if promo:
        promo.usage_count = (promo.usage_count or 0) + 1


def record_paid_booking(
    session: Session,
    mailer: EmailSender | None,
    *,
    event_id: str,
    user_id: str,
    role: str,
    order_id: str | None,
    payment_id: str,
    amount_paise: int | None,
    ticket_code: str | None = None,
    promo_code: str | None = None,
) -> EventParticipant | None:
    """Create the booking for a captured payment.

    Returns ``None`` when a booking for the order, or for the same user and
    event, already exists.
    """
    if order_id and _booking_for_order(session, order_id):
        return None
    if find_booking(session, event_id, user_id):
        return None
    event = session.get(Event, event_id)
    user = session.get(User, user_id)
    if not event or not user:
        raise NotFoundError(f"Payment {payment_id} references an unknown event or user")
    if role not in PARTICIPANT_ROLES:
        role = "audience"
    booking = EventParticipant(
        user_id=user.id,
        role=role,
        ticket_code=ticket_code or generate_ticket_code(),
        razorpay_order_id=order_id,
        payment_id=payment_id,
        payment_status="captured",
        amount_paid=from_paise(amount_paise) if amount_paise is not None else None,
    )
    event.participants.append(booking)
    session.add(booking)
    _count_promo_use(session, event.id, promo_code)
    session.flush()
    logger.info("Booked %s as %s for event %s (payment %s)", user.id, role, event.id, payment_id)
    handle_event_registration(session, mailer, event, user, role)
    return booking


def confirm_checkout(
    session: Session,
    client: RazorpayClient,
    mailer: EmailSender | None,
    user: User,
    *,
    order_id: str,
    payment_id: str,
    signature: str | None,
) -> EventParticipant:
    """Verify the Checkout callback and book the ticket straight away."""
    if not verify_payment_signature(order_id, payment_id, signature, client.key_secret):
        raise BadRequestError("Invalid payment signature", code="InvalidSignature")
    existing = _booking_for_order(session, order_id)
    if existing:
        return existing
    order = client.fetch_order(order_id)
    notes = order.get("notes") or {}
    if notes.get("user_id") != user.id:
        raise PermissionDeniedError("This order belongs to another user")
    event_id = notes.get("event_id")
    if not event_id:
        raise BadRequestError("Order is not linked to an event")
    booking = record_paid_booking(
        session,
        mailer,
        event_id=event_id,
        user_id=user.id,
        role=notes.get("role") or "audience",
        order_id=order_id,
        payment_id=payment_id,
        amount_paise=order.get("amount_paid") or order.get("amount"),
        promo_code=notes.get("promo_code"),
    )
    if booking is None:
        booking = find_booking(session, event_id, user.id)
    return booking


def _entity(payload: dict[str, Any], kind: str) -> dict[str, Any]:
    return ((payload.get("payload") or {}).get(kind) or {}).get("entity") or {}


def handle_webhook(
    session: Session,
    mailer: EmailSender | None,
    body: bytes,
    signature: str | None,
) -> dict[str, Any]:
    """Verify and apply one Razorpay webhook delivery."""
    secret = settings.razorpay_webhook_secret
    if secret:
        if not verify_webhook_signature(body, signature, secret):
            logger.warning("Rejected webhook with a missing or invalid signature")
            raise AuthenticationError("Invalid signature", code="InvalidSignature")
    else:
        logger.warning("Webhook secret not configured; accepting unsigned delivery")

    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise BadRequestError("Webhook body is not valid JSON") from exc
    event_name = payload.get("event") or ""
    logger.info("Razorpay webhook: %s", event_name)

    handled = False
    if event_name.startswith("account."):
        handled = apply_account_webhook(session, event_name, _entity(payload, "account"))
    elif event_name == "payment.captured":
        payment = _entity(payload, "payment")
        notes = payment.get("notes") or {}
        if notes.get("event_id") and notes.get("user_id"):
            payment_id = payment.get("id") or ""
            booking = record_paid_booking(
                session,
                mailer,
                event_id=notes["event_id"],
                user_id=notes["user_id"],
                role=notes.get("role") or "audience",
                order_id=payment.get("order_id"),
                payment_id=payment_id,
                amount_paise=payment.get("amount"),
                ticket_code=payment_id[:10].upper(),
                promo_code=notes.get("promo_code"),
            )
            handled = booking is not None
    elif event_name in ("refund.processed", "refund.failed"):
        handled = apply_refund_webhook(session, event_name, _entity(payload, "refund"))
    return {"status": "ok", "event": event_name, "handled": handled}


def sync_razorpay_payments(
    session: Session,
    client: RazorpayClient,
    mailer: EmailSender | None,
    *,
    lookback_hours: float | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Backfill bookings for paid orders whose webhook never arrived."""
    now = now or utcnow()
    hours = lookback_hours if lookback_hours is not None else settings.payment_sync_lookback_hours
    end = int((now - datetime(1970, 1, 1)).total_seconds())
    start = int((now - timedelta(hours=hours) - datetime(1970, 1, 1)).total_seconds())
    orders = client.list_orders(start=start, end=end, count=100)

    synced = skipped = errors = 0
    for order in orders:
        order_id = order.get("id")
        notes = order.get("notes") or {}
        event_id = notes.get("event_id") if isinstance(notes, dict) else None
        user_id = notes.get("user_id") if isinstance(notes, dict) else None
        if order.get("status") != "paid" or not event_id or not user_id:
            skipped += 1
            continue
        if _booking_for_order(session, order_id) or find_booking(session, event_id, user_id):
            skipped += 1
            continue
        try:
            payments = client.list_order_payments(order_id)
            captured = next((p for p in payments if p.get("status") == "captured"), None)
            if captured is None:
                skipped += 1
                continue
            record_paid_booking(
                session,
                mailer,
                event_id=event_id,
                user_id=user_id,
                role=notes.get("role") or "performer",
                order_id=order_id,
                payment_id=captured.get("id"),
                amount_paise=captured.get("amount"),
                ticket_code=generate_ticket_code(now=now),
                promo_code=notes.get("promo_code"),
            )
            session.commit()
        except (ShowyaError, SQLAlchemyError) as exc:
            session.rollback()
            logger.error("Payment sync failed for order %s: %s", order_id, exc)
            errors += 1
            continue
        synced += 1

    summary = {
        "total_orders": len(orders),
        "synced": synced,
        "skipped": skipped,
        "errors": errors,
        "timestamp": now.isoformat(),
    }
    logger.info("Payment sync finished: %s", summary)
    return summary


def run_payment_sync(lookback_hours: float | None = None) -> dict[str, Any] | None:
    """Scheduler and CLI entry point for :func:`sync_razorpay_payments`."""
    client = RazorpayClient.from_settings()
    if not client.configured:
        logger.info("Razorpay keys not configured; skipping payment sync")
        client.close()
        return None
    mailer = EmailSender.from_settings()
    try:
        with get_session() as session:
            return sync_razorpay_payments(
                session, client, mailer, lookback_hours=lookback_hours
            )
    finally:
        client.close()
