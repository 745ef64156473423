"""SQLAlchemy models for Showya."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

KYC_NOT_STARTED = "NOT_STARTED"
KYC_IN_PROGRESS = "IN_PROGRESS"
KYC_PENDING = "PENDING"
KYC_VERIFIED = "VERIFIED"
KYC_ACTIVATED = "ACTIVATED"
KYC_NEEDS_INFO = "NEEDS_INFO"
KYC_REJECTED = "REJECTED"
KYC_STATUSES = (
    KYC_NOT_STARTED,
    KYC_IN_PROGRESS,
    KYC_PENDING,
    KYC_VERIFIED,
    KYC_ACTIVATED,
    KYC_NEEDS_INFO,
    KYC_REJECTED,
)

PARTICIPANT_ROLES = ("performer", "audience")
MIC_STATES = ("none", "requested", "granted", "revoked")
REFUND_STATUSES = ("pending", "processing", "processed", "failed")
REPORT_STATUSES = ("pending", "reviewed", "resolved")
OTP_PURPOSES = ("signin", "signup")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=True)
    api_token = Column(String(128), nullable=False, unique=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    phone = Column(String(32), nullable=True)
    street1 = Column(String(255), nullable=True)
    street2 = Column(String(255), nullable=True)
    city = Column(String(128), nullable=True)
    state = Column(String(128), nullable=True)
    postal_code = Column(String(16), nullable=True)
    pan = Column(String(16), nullable=True)
    dob = Column(String(16), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    @property
    def public_name(self) -> str:
        return self.display_name or self.name


class Community(Base):
    __tablename__ = "communities"

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    categories = Column(JSON, default=list, nullable=False)
    banner_url = Column(String(512), nullable=True)
    kyc_status = Column(String(32), default=KYC_NOT_STARTED, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    owner = relationship("User")
    members = relationship(
        "CommunityMember", back_populates="community", cascade="all, delete-orphan"
    )
    messages = relationship(
        "CommunityMessage",
        back_populates="community",
        cascade="all, delete-orphan",
        order_by="desc(CommunityMessage.created_at)",
    )
    events = relationship("Event", back_populates="community")
    payment_account = relationship(
        "RazorpayAccount",
        back_populates="community",
        uselist=False,
        cascade="all, delete-orphan",
    )


class CommunityMember(Base):
    __tablename__ = "community_members"
    __table_args__ = (UniqueConstraint("community_id", "user_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    community_id = Column(
        String(36), ForeignKey("communities.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    role = Column(String(32), default="member", nullable=False)
    joined_at = Column(DateTime, default=_now, nullable=False)

    community = relationship("Community", back_populates="members")
    user = relationship("User")


class CommunityMessage(Base):
    __tablename__ = "community_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    community_id = Column(
        String(36), ForeignKey("communities.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(32), default="text", nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    community = relationship("Community", back_populates="messages")
    user = relationship("User")


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(64), nullable=True)
    event_date = Column(DateTime, nullable=False)
    duration = Column(Integer, default=60, nullable=False)
    ticket_type = Column(String(16), default="free", nullable=False)
    performer_slots = Column(Integer, default=0, nullable=False)
    performer_ticket_price = Column(Float, default=0.0, nullable=False)
    audience_enabled = Column(Boolean, default=False, nullable=False)
    audience_slots = Column(Integer, nullable=True)
    audience_ticket_price = Column(Float, nullable=True)
    meeting_url = Column(String(512), nullable=True)
    meeting_link_last_updated_at = Column(DateTime, nullable=True)
    jaas_room_name = Column(String(128), nullable=True)
    allow_paid_audience_mic = Column(Boolean, nullable=True)
    allow_free_audience_mic = Column(Boolean, nullable=True)
    editable_before_event_minutes = Column(Integer, nullable=True)
    is_cancelled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    community = relationship("Community", back_populates="events")
    creator = relationship("User")
    participants = relationship(
        "EventParticipant", back_populates="event", cascade="all, delete-orphan"
    )
    promo_codes = relationship(
        "PromoCode", back_populates="event", cascade="all, delete-orphan"
    )
    audit_entries = relationship(
        "EventAuditLog", back_populates="event", cascade="all, delete-orphan"
    )

    def booked_count(self, role: str) -> int:
        return sum(1 for p in self.participants if p.role == role)

    def price_for(self, role: str) -> float:
        if role == "performer":
            return float(self.performer_ticket_price or 0)
        return float(self.audience_ticket_price or 0)


class EventParticipant(Base):
    """A booking: one row per user per event."""

    __tablename__ = "event_participants"
    __table_args__ = (UniqueConstraint("event_id", "user_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    role = Column(String(16), nullable=False)
    ticket_code = Column(String(64), nullable=True)
    razorpay_order_id = Column(String(64), nullable=True, unique=True)
    payment_id = Column(String(64), nullable=True)
    payment_status = Column(String(32), nullable=True)
    amount_paid = Column(Float, nullable=True)
    mic_permission = Column(String(16), default="none", nullable=False)
    joined_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="participants")
    user = relationship("User")


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(String(36), primary_key=True, default=_uuid)
    # Bookings are deleted once refunded, so this is not a foreign key.
    booking_id = Column(String(36), nullable=False, unique=True)
    event_id = Column(String(36), nullable=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    payment_id = Column(String(64), nullable=True)
    razorpay_refund_id = Column(String(64), nullable=True, unique=True)
    amount = Column(Float, nullable=False)
    refund_percentage = Column(Integer, nullable=False)
    status = Column(String(16), default="pending", nullable=False)
    reason = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class RazorpayAccount(Base):
    __tablename__ = "razorpay_accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    community_id = Column(
        String(36),
        ForeignKey("communities.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    razorpay_account_id = Column(String(64), nullable=False, unique=True)
    stakeholder_id = Column(String(64), nullable=True)
    product_id = Column(String(64), nullable=True)
    kyc_status = Column(String(32), default=KYC_NOT_STARTED, nullable=False)
    error_reason = Column(Text, nullable=True)
    onboarding_url = Column(String(512), nullable=True)
    legal_business_name = Column(String(255), nullable=True)
    business_type = Column(String(64), nullable=True)
    bank_account_number = Column(String(64), nullable=True)
    bank_ifsc = Column(String(16), nullable=True)
    bank_beneficiary_name = Column(String(255), nullable=True)
    bank_masked = Column(String(64), nullable=True)
    products_requested = Column(Boolean, default=False, nullable=False)
    products_activated = Column(Boolean, default=False, nullable=False)
    tnc_accepted = Column(Boolean, default=False, nullable=False)
    tnc_accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_updated = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    community = relationship("Community", back_populates="payment_account")


class KycDocument(Base):
    __tablename__ = "kyc_documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    community_id = Column(
        String(36), ForeignKey("communities.id", ondelete="CASCADE"), nullable=False
    )
    razorpay_account_id = Column(String(64), nullable=False)
    stakeholder_id = Column(String(64), nullable=True)
    document_type = Column(String(64), nullable=False)
    document_name = Column(String(255), nullable=False)
    upload_status = Column(String(16), default="pending", nullable=False)
    error_message = Column(Text, nullable=True)
    uploaded_at = Column(DateTime, nullable=True)


class PromoCode(Base):
    __tablename__ = "promocodes"
    __table_args__ = (UniqueConstraint("event_id", "code"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    code = Column(String(64), nullable=False)
    discount_type = Column(String(16), default="percentage", nullable=False)
    discount_value = Column(Float, nullable=False)
    applies_to = Column(String(16), default="all", nullable=False)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="promo_codes")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_unread", "user_id", "is_read"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(32), default="info", nullable=False)
    category = Column(String(32), default="general", nullable=False)
    related_id = Column(String(36), nullable=True)
    action_url = Column(String(512), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    is_email_sent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)


class EventAuditLog(Base):
    __tablename__ = "event_audit_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    action = Column(String(32), nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="audit_entries")


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=_uuid)
    reporter_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    target_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    target_type = Column(String(32), nullable=False)
    reason = Column(String(128), nullable=False)
    incident_location = Column(String(64), nullable=True)
    message = Column(Text, nullable=False)
    context_type = Column(String(32), nullable=True)
    context_id = Column(String(36), nullable=True)
    status = Column(String(16), default="pending", nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class ShowClip(Base):
    __tablename__ = "show_clips"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=True)
    community_name = Column(String(255), nullable=False)
    feature_text = Column(String(280), nullable=False)
    video_url = Column(String(512), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User")


class EmailOtp(Base):
    __tablename__ = "email_otps"
    __table_args__ = (Index("ix_email_otps_lookup", "email", "purpose", "verified"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False)
    otp_code = Column(String(6), nullable=False)
    purpose = Column(String(16), nullable=False)
    details = Column(JSON, default=dict, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
