"""Utility helpers for Showya."""

from __future__ import annotations

import ipaddress
import secrets
import string
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

_TICKET_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert aware datetimes to naive UTC; leave naive ones untouched."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def hours_until(value: datetime, *, now: datetime | None = None) -> float:
    now = now or utcnow()
    return (value - now).total_seconds() / 3600


def round_half_up(value: Decimal | float | int) -> int:
    """Round to a whole number with halves going up, as payment amounts do."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_paise(amount: float) -> int:
    return round_half_up(Decimal(str(amount)) * 100)


def percentage_of(paise: int, percent: float) -> int:
    return round_half_up(Decimal(paise) * Decimal(str(percent)) / 100)


def from_paise(amount: int) -> float:
    return amount / 100


def generate_ticket_code(*, now: datetime | None = None) -> str:
    """Return a ticket code like ``TKT-1718000000000-AB12CD34E``."""
    moment = (now or utcnow()).replace(tzinfo=UTC)
    millis = int(moment.timestamp() * 1000)
    suffix = "".join(secrets.choice(_TICKET_ALPHABET) for _ in range(9))
    return f"TKT-{millis}-{suffix}"


def mask_account_number(account_number: str | None) -> str | None:
    if not account_number:
        return None
    return f"****{account_number[-4:]}"


def mask_ifsc(ifsc: str | None) -> str | None:
    if not ifsc:
        return None
    return f"{ifsc[:4]}****"


def format_event_time(value: datetime) -> str:
    """Human readable UTC timestamp used in notification copy."""
    return value.strftime("%d %b %Y, %I:%M %p UTC")


def is_public_ipv4(raw: str | None) -> bool:
    if not raw:
        return False
    try:
        address = ipaddress.ip_address(raw.strip())
    except ValueError:
        return False
    if address.version != 4:
        return False
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    )


def format_inr(amount: float) -> str:
    """Return ``₹750`` for whole amounts and ``₹749.50`` otherwise."""
    if float(amount).is_integer():
        return f"₹{int(amount)}"
    return f"₹{amount:.2f}"
