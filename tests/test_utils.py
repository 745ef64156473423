from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta, timezone

from showya.utils import (
    format_inr,
    from_paise,
    generate_ticket_code,
    hours_until,
    is_public_ipv4,
    mask_account_number,
    mask_ifsc,
    percentage_of,
    round_half_up,
    to_naive_utc,
    to_paise,
)


def test_to_paise_rounds_fractional_rupees():
    assert to_paise(499.99) == 49999
    assert to_paise(0.1 + 0.2) == 30
    assert from_paise(75050) == 750.5


def test_half_paise_round_up():
    assert round_half_up(42664.5) == 42665
    assert round_half_up(42665.5) == 42666
    assert percentage_of(44910, 95) == 42665
    assert percentage_of(20000, 95.0) == 19000
    assert to_paise(0.125) == 13


def test_to_naive_utc_converts_aware_values():
    ist = timezone(timedelta(hours=5, minutes=30))
    aware = datetime(2025, 1, 10, 20, 0, tzinfo=ist)
    assert to_naive_utc(aware) == datetime(2025, 1, 10, 14, 30)
    naive = datetime(2025, 1, 10, 20, 0)
    assert to_naive_utc(naive) is naive


def test_hours_until_is_negative_for_past_events():
    now = datetime(2025, 1, 1, 12, 0)
    assert hours_until(now + timedelta(hours=3), now=now) == 3
    assert hours_until(now - timedelta(minutes=30), now=now) == -0.5


def test_ticket_code_embeds_timestamp():
    now = datetime(2025, 3, 1, 0, 0)
    code = generate_ticket_code(now=now)
    millis = int(now.replace(tzinfo=UTC).timestamp() * 1000)
    assert re.fullmatch(rf"TKT-{millis}-[A-Z0-9]{{9}}", code)


def test_masking_helpers():
    assert mask_account_number("123456789012") == "****9012"
    assert mask_account_number(None) is None
    assert mask_ifsc("HDFC0001234") == "HDFC****"


def test_is_public_ipv4_rejects_private_and_v6():
    assert is_public_ipv4("49.207.192.1")
    assert not is_public_ipv4("10.0.0.4")
    assert not is_public_ipv4("127.0.0.1")
    assert not is_public_ipv4("::1")
    assert not is_public_ipv4("not-an-ip")


def test_format_inr_drops_trailing_zero_paise():
    assert format_inr(750) == "₹750"
    assert format_inr(749.5) == "₹749.50"
