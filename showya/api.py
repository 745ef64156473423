"""FastAPI application for Showya."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any, Literal
import tomllib

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import accounts, communities, crud, events, kyc, meetings, moderation
from . import notifications, payments, refunds
from .config import settings
from .database import SessionLocal
from .errors import AuthenticationError, PermissionDeniedError, ShowyaError
from .models import Meta, User
from .notifications import EmailSender
from .razorpay import RazorpayClient
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .utils import to_naive_utc

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("showya")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Showya", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_razorpay(request: Request):
    client = RazorpayClient.from_settings(origin=request.headers.get("origin"))
    try:
        yield client
    finally:
        client.close()


def get_mailer() -> EmailSender:
    return EmailSender.from_settings()


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _fetch_root_token_in_session(db: Session) -> str | None:
    meta = db.get(Meta, settings.root_token_key)
    return meta.value if meta else None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _get_bearer_token(request)
    if not token:
        raise AuthenticationError("Authorization required")
    user = crud.get_user_by_token(db, token)
    if not user:
        raise AuthenticationError("Unauthorized")
    return user


def require_platform_admin(request: Request, db: Session = Depends(get_db)) -> User | None:
    """Accept the root token or a user flagged as admin.

    Returns the admin user, or ``None`` when the root token was used.
    """
    token = _get_bearer_token(request)
    if not token:
        raise AuthenticationError("Authorization required")
    root_token = _fetch_root_token_in_session(db)
    if root_token and token == root_token:
        return None
    user = crud.get_user_by_token(db, token)
    if not user:
        raise AuthenticationError("Unauthorized")
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@app.exception_handler(ShowyaError)
async def showya_error_handler(request: Request, exc: ShowyaError):
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message
        )
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    lower = raw.lower()
    if "database is locked" in lower:
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


# Request payloads


class UserCreatePayload(BaseModel):
    email: str
    name: str
    display_name: str | None = None


class OtpRequestPayload(BaseModel):
    email: str
    purpose: Literal["signin", "signup"]
    metadata: dict[str, Any] = Field(default_factory=dict)


class OtpVerifyPayload(BaseModel):
    email: str
    otp: str
    purpose: Literal["signin", "signup"]


class ProfileUpdatePayload(BaseModel):
    name: str | None = None
    display_name: str | None = None
    phone: str | None = None
    street1: str | None = None
    street2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    pan: str | None = None
    dob: str | None = None


class CommunityCreatePayload(BaseModel):
    name: str
    description: str | None = None
    categories: list[str] = Field(default_factory=list)


class MessageCreatePayload(BaseModel):
    content: str


class EventCreatePayload(BaseModel):
    title: str
    description: str | None = None
    category: str | None = None
    event_date: datetime = Field(..., description="ISO datetime; naive values are UTC")
    duration: int = Field(60, ge=1)
    ticket_type: Literal["free", "paid"] = "free"
    performer_slots: int = Field(0, ge=0)
    performer_ticket_price: float = Field(0, ge=0)
    audience_enabled: bool = False
    audience_slots: int | None = Field(None, ge=0)
    audience_ticket_price: float | None = Field(None, ge=0)
    meeting_url: str | None = None
    allow_paid_audience_mic: bool | None = None
    allow_free_audience_mic: bool | None = None
    editable_before_event_minutes: int | None = Field(None, ge=0)


class EventUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    event_date: datetime | None = None
    duration: int | None = Field(None, ge=1)
    ticket_type: Literal["free", "paid"] | None = None
    performer_slots: int | None = Field(None, ge=0)
    performer_ticket_price: float | None = Field(None, ge=0)
    audience_enabled: bool | None = None
    audience_slots: int | None = Field(None, ge=0)
    audience_ticket_price: float | None = Field(None, ge=0)
    meeting_url: str | None = None
    allow_paid_audience_mic: bool | None = None
    allow_free_audience_mic: bool | None = None
    editable_before_event_minutes: int | None = Field(None, ge=0)
    confirm_date_change: bool = False


class CancelPayload(BaseModel):
    reason: str | None = None


class RegistrationPayload(BaseModel):
    role: Literal["performer", "audience"]


class PromoCodePayload(BaseModel):
    code: str
    discount_type: Literal["percentage", "flat"] = "percentage"
    discount_value: float = Field(..., gt=0)
    applies_to: Literal["all", "performer", "audience"] = "all"
    usage_limit: int | None = Field(None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class OrderCreatePayload(BaseModel):
    event_id: str
    role: Literal["performer", "audience"]
    promo_code: str | None = None


class CheckoutConfirmPayload(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class MicResolvePayload(BaseModel):
    target_user_id: str
    action: Literal["grant", "revoke"]


class DocumentPayload(BaseModel):
    name: str
    mime_type: str
    data: str = Field(..., description="Base64 file content")
    kind: Literal["aadhaar", "voter_id"] | None = None


class KycDocumentsPayload(BaseModel):
    panCard: DocumentPayload | None = None
    addressProof: DocumentPayload | None = None


class BankDetailsPayload(BaseModel):
    account_number: str
    ifsc: str
    beneficiary_name: str


class KycStartPayload(BaseModel):
    check_only: bool = False
    bank_details: BankDetailsPayload | None = None
    documents: KycDocumentsPayload | None = None


class KycUpdatePayload(BaseModel):
    update_type: str
    data: dict[str, Any] = Field(default_factory=dict)


class ReportCreatePayload(BaseModel):
    target_user_id: str
    target_type: Literal["user", "community_owner"]
    reason: str
    incident_location: str
    message: str
    context_type: str | None = None
    context_id: str | None = None


class ReportStatusPayload(BaseModel):
    status: Literal["pending", "reviewed", "resolved"]


class ClipCreatePayload(BaseModel):
    community_name: str
    feature_text: str
    video_url: str
    event_id: str | None = None


class GrantAdminPayload(BaseModel):
    email: str


def _event_fields(payload: BaseModel) -> dict[str, Any]:
    data = payload.model_dump(exclude_unset=True)
    data.pop("confirm_date_change", None)
    if data.get("event_date") is not None:
        data["event_date"] = to_naive_utc(data["event_date"])
    return data


# Health


@app.get("/api/v1/health")
def api_health():
    return {"status": "ok", "version": APP_VERSION}


# Users


@app.post("/api/v1/users", status_code=201)
def api_create_user(payload: UserCreatePayload, db: Session = Depends(get_db)):
    user = crud.create_user(
        db, email=payload.email, name=payload.name, display_name=payload.display_name
    )
    return {"user": crud.serialize_user(user, include_private=True), "api_token": user.api_token}


@app.post("/api/v1/auth/otp")
def api_send_otp(
    payload: OtpRequestPayload,
    db: Session = Depends(get_db),
    mailer: EmailSender = Depends(get_mailer),
):
    return accounts.send_otp(
        db, mailer, payload.email, payload.purpose, details=payload.metadata
    )


@app.post("/api/v1/auth/otp/verify")
def api_verify_otp(payload: OtpVerifyPayload, db: Session = Depends(get_db)):
    return accounts.verify_otp(db, payload.email, payload.otp, payload.purpose)


@app.get("/api/v1/me")
def api_me(user: User = Depends(get_current_user)):
    return {"user": crud.serialize_user(user, include_private=True)}


@app.patch("/api/v1/me")
def api_update_me(
    payload: ProfileUpdatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    crud.update_profile(db, user, payload.model_dump(exclude_unset=True))
    return {"user": crud.serialize_user(user, include_private=True)}


@app.delete("/api/v1/me")
def api_delete_me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return accounts.delete_account(db, user)


@app.post("/api/v1/me/token")
def api_rotate_token(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"api_token": crud.rotate_api_token(db, user)}


@app.get("/api/v1/me/refunds")
def api_my_refunds(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {
        "refunds": [refunds.serialize_refund(r) for r in refunds.list_user_refunds(db, user)]
    }


# Communities


@app.get("/api/v1/communities")
def api_list_communities(
    search: str | None = Query(None, max_length=100), db: Session = Depends(get_db)
):
    items = communities.list_communities(db, search=search)
    return {
        "communities": [
            communities.serialize_community(c, members=communities.member_count(db, c.id))
            for c in items
        ]
    }


@app.post("/api/v1/communities", status_code=201)
def api_create_community(
    payload: CommunityCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    community = communities.create_community(
        db,
        user,
        name=payload.name,
        categories=payload.categories,
        description=payload.description,
    )
    return {"success": True, "community": communities.serialize_community(community, members=1)}


@app.get("/api/v1/communities/{community_id}")
def api_get_community(community_id: str, db: Session = Depends(get_db)):
    community = communities.get_community(db, community_id)
    return {
        "community": communities.serialize_community(
            community, members=communities.member_count(db, community.id)
        )
    }


@app.post("/api/v1/communities/{community_id}/join")
def api_join_community(
    community_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    member = communities.join_community(db, user, community_id)
    return {"success": True, "role": member.role}


@app.post("/api/v1/communities/{community_id}/leave", status_code=204)
def api_leave_community(
    community_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    communities.leave_community(db, user, community_id)
    return Response(status_code=204)


@app.get("/api/v1/communities/{community_id}/members")
def api_list_members(community_id: str, db: Session = Depends(get_db)):
    members = communities.list_members(db, community_id)
    return {
        "members": [
            {
                "user_id": m.user_id,
                "name": m.user.public_name if m.user else None,
                "role": m.role,
                "joined_at": m.joined_at.isoformat(),
            }
            for m in members
        ]
    }


@app.get("/api/v1/communities/{community_id}/messages")
def api_list_messages(
    community_id: str,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = communities.list_messages(db, user, community_id, limit=limit)
    return {"messages": [communities.serialize_message(m) for m in items]}


@app.post("/api/v1/communities/{community_id}/messages", status_code=201)
def api_post_message(
    community_id: str,
    payload: MessageCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = communities.post_message(db, user, community_id, payload.content)
    return {"message": communities.serialize_message(message)}


@app.get("/api/v1/communities/{community_id}/events")
def api_list_community_events(community_id: str, db: Session = Depends(get_db)):
    communities.get_community(db, community_id)
    items = events.list_community_events(db, community_id)
    return {"events": [events.serialize_event(e) for e in items]}


@app.post("/api/v1/communities/{community_id}/events", status_code=201)
def api_create_event(
    community_id: str,
    payload: EventCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = events.create_event(db, user, community_id, _event_fields(payload))
    return {"event": events.serialize_event(event)}


# KYC


@app.get("/api/v1/communities/{community_id}/kyc")
def api_get_kyc_account(
    community_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    community = communities.get_owned_community(db, user, community_id)
    account = community.payment_account
    return {
        "kyc_status": community.kyc_status,
        "account": kyc.serialize_account(account) if account else None,
    }


@app.post("/api/v1/communities/{community_id}/kyc/start")
def api_start_kyc(
    community_id: str,
    payload: KycStartPayload,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
):
    documents = payload.documents.model_dump(exclude_none=True) if payload.documents else None
    return kyc.start_kyc(
        db,
        client,
        user,
        community_id,
        bank_details=payload.bank_details.model_dump() if payload.bank_details else None,
        documents=documents,
        check_only=payload.check_only,
        client_ip=kyc.get_valid_ip(request.headers),
    )


@app.post("/api/v1/communities/{community_id}/kyc/update")
def api_update_kyc(
    community_id: str,
    payload: KycUpdatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
):
    return kyc.update_kyc(db, client, user, community_id, payload.update_type, payload.data)


@app.post("/api/v1/communities/{community_id}/kyc/reset")
def api_reset_kyc(
    community_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return kyc.reset_kyc(db, user, community_id)


@app.get("/api/v1/kyc/status")
def api_check_kyc_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
):
    return kyc.check_kyc_status(db, client, user)


# Events


@app.get("/api/v1/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    event = events.get_event(db, event_id)
    return {"event": events.serialize_event(event), "remaining": events.remaining_slots(event)}


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return events.update_event(
        db,
        user,
        event_id,
        _event_fields(payload),
        confirm_date_change=payload.confirm_date_change,
    )


@app.post("/api/v1/events/{event_id}/cancel")
def api_cancel_event(
    event_id: str,
    payload: CancelPayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
    mailer: EmailSender = Depends(get_mailer),
):
    return events.cancel_event(db, client, mailer, user, event_id, reason=payload.reason)


@app.delete("/api/v1/events/{event_id}")
def api_delete_event(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
    mailer: EmailSender = Depends(get_mailer),
):
    return events.delete_event(db, client, mailer, user, event_id)


@app.post("/api/v1/events/{event_id}/register", status_code=201)
def api_register_free(
    event_id: str,
    payload: RegistrationPayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    mailer: EmailSender = Depends(get_mailer),
):
    booking = events.register_free(db, mailer, user, event_id, payload.role)
    return {"success": True, "booking": events.serialize_booking(booking)}


@app.get("/api/v1/events/{event_id}/join-context")
def api_join_context(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return events.join_context(db, event_id, user)


@app.get("/api/v1/events/{event_id}/bookings")
def api_list_bookings(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = events.list_event_bookings(db, user, event_id)
    return {"bookings": [events.serialize_booking(b) for b in items]}


@app.get("/api/v1/events/{event_id}/audit-log")
def api_event_audit_log(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entries = events.list_event_audit_log(db, user, event_id)
    return {
        "entries": [
            {
                "id": entry.id,
                "user_id": entry.user_id,
                "action": entry.action,
                "old_values": entry.old_values,
                "new_values": entry.new_values,
                "created_at": entry.created_at.isoformat(),
            }
            for entry in entries
        ]
    }


@app.get("/api/v1/events/{event_id}/promo-codes")
def api_list_promo_codes(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = payments.list_promo_codes(db, user, event_id)
    return {"promo_codes": [payments.serialize_promo(p) for p in items]}


@app.post("/api/v1/events/{event_id}/promo-codes", status_code=201)
def api_create_promo_code(
    event_id: str,
    payload: PromoCodePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    promo = payments.create_promo_code(db, user, event_id, payload.model_dump())
    return {"promo_code": payments.serialize_promo(promo)}


@app.get("/api/v1/events/{event_id}/quote")
def api_quote_ticket(
    event_id: str,
    role: Literal["performer", "audience"],
    promo_code: str | None = None,
    db: Session = Depends(get_db),
):
    return payments.quote_ticket(db, event_id, role, promo_code)


# Meetings


@app.post("/api/v1/events/{event_id}/meeting-token")
def api_meeting_token(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return meetings.meeting_token(db, event_id, user)


@app.post("/api/v1/events/{event_id}/mic/request")
def api_request_mic(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return meetings.request_mic(db, event_id, user)


@app.post("/api/v1/events/{event_id}/mic/resolve")
def api_resolve_mic(
    event_id: str,
    payload: MicResolvePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return meetings.resolve_mic(db, event_id, user, payload.target_user_id, payload.action)


# Payments and refunds


@app.post("/api/v1/payments/orders", status_code=201)
def api_create_order(
    payload: OrderCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
):
    return payments.create_payment_order(
        db, client, user, payload.event_id, payload.role, payload.promo_code
    )


@app.post("/api/v1/payments/confirm")
def api_confirm_checkout(
    payload: CheckoutConfirmPayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
    mailer: EmailSender = Depends(get_mailer),
):
    booking = payments.confirm_checkout(
        db,
        client,
        mailer,
        user,
        order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
    )
    return {"success": True, "booking": events.serialize_booking(booking)}


@app.post("/api/v1/webhooks/razorpay")
def api_razorpay_webhook(
    request: Request,
    body: bytes = Depends(_raw_body),
    db: Session = Depends(get_db),
    mailer: EmailSender = Depends(get_mailer),
):
    return payments.handle_webhook(
        db, mailer, body, request.headers.get("x-razorpay-signature")
    )


@app.post("/api/v1/bookings/{booking_id}/cancel")
def api_cancel_booking(
    booking_id: str,
    payload: CancelPayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
    mailer: EmailSender = Depends(get_mailer),
):
    return refunds.process_refund(db, client, mailer, user, booking_id, reason=payload.reason)


# Notifications


@app.get("/api/v1/notifications")
def api_list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = notifications.list_notifications(db, user, unread_only=unread_only, limit=limit)
    return {"notifications": [notifications.serialize_notification(n) for n in items]}


@app.post("/api/v1/notifications/read-all")
def api_mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"updated": notifications.mark_all_read(db, user)}


@app.post("/api/v1/notifications/{notification_id}/read")
def api_mark_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = notifications.mark_read(db, user, notification_id)
    return {"notification": notifications.serialize_notification(notification)}


# Reports and clips


@app.post("/api/v1/reports", status_code=201)
def api_create_report(
    payload: ReportCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    report = moderation.create_report(db, user, **payload.model_dump())
    return {"report": moderation.serialize_report(report)}


@app.get("/api/v1/clips")
def api_list_clips(limit: int = Query(50, ge=1, le=200), db: Session = Depends(get_db)):
    return {"clips": [moderation.serialize_clip(c) for c in moderation.list_clips(db, limit=limit)]}


@app.post("/api/v1/clips", status_code=201)
def api_create_clip(
    payload: ClipCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    clip = moderation.create_clip(db, user, **payload.model_dump())
    return {"clip": moderation.serialize_clip(clip)}


@app.delete("/api/v1/clips/{clip_id}", status_code=204)
def api_delete_clip(
    clip_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    moderation.delete_clip(db, user, clip_id)
    return Response(status_code=204)


# Platform admin


@app.get("/api/v1/admin/reports")
def api_admin_reports(
    status: str | None = None,
    _: User | None = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    items = moderation.list_reports(db, status=status)
    return {"reports": [moderation.serialize_report(r) for r in items]}


@app.patch("/api/v1/admin/reports/{report_id}")
def api_admin_update_report(
    report_id: str,
    payload: ReportStatusPayload,
    _: User | None = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    report = moderation.update_report_status(db, report_id, payload.status)
    return {"report": moderation.serialize_report(report)}


@app.post("/api/v1/admin/grant-admin")
def api_grant_admin(
    payload: GrantAdminPayload,
    _: User | None = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    return crud.grant_admin(db, payload.email)


@app.post("/api/v1/admin/payments/sync")
def api_sync_payments(
    lookback_hours: float | None = Query(None, gt=0, le=24 * 30),
    _: User | None = Depends(require_platform_admin),
    db: Session = Depends(get_db),
    client: RazorpayClient = Depends(get_razorpay),
    mailer: EmailSender = Depends(get_mailer),
):
    return payments.sync_razorpay_payments(db, client, mailer, lookback_hours=lookback_hours)
