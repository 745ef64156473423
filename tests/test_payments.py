from __future__ import annotations

import hashlib
import hmac
import json
from datetime import timedelta

import pytest

from showya.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    PermissionDeniedError,
)
from showya.models import KYC_ACTIVATED, KYC_NEEDS_INFO, EventParticipant, Notification
from showya.payments import (
    apply_discount,
    confirm_checkout,
    create_payment_order,
    create_promo_code,
    handle_webhook,
    quote_ticket,
    record_paid_booking,
    sync_razorpay_payments,
    validate_promo,
)
from showya.utils import utcnow


def _sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _order(fake_razorpay, order_id="order_1", **overrides):
    def respond(request):
        body = json.loads(request.content)
        return {"id": order_id, "amount": body["amount"], "currency": body["currency"]}

    fake_razorpay.on("POST", "/v1/orders", overrides or respond)


def test_promo_code_discounts_quote(session, make_event):
    event = make_event(paid=True)
    promo = create_promo_code(
        session,
        event.creator,
        event.id,
        {"code": " early10 ", "discount_type": "percentage", "discount_value": 10},
    )
    session.commit()

    assert promo.code == "EARLY10"
    quote = quote_ticket(session, event.id, "audience", "early10")
    assert quote["original_amount"] == 200.0
    assert quote["final_amount"] == 180.0
    assert quote["promo"]["code"] == "EARLY10"


def test_promo_code_requires_event_creator(session, make_event, make_user):
    event = make_event(paid=True)
    with pytest.raises(PermissionDeniedError):
        create_promo_code(
            session, make_user("Intruder"), event.id, {"code": "X", "discount_value": 5}
        )


def test_duplicate_promo_code_conflicts(session, make_event):
    event = make_event(paid=True)
    create_promo_code(session, event.creator, event.id, {"code": "SAVE", "discount_value": 5})
    with pytest.raises(ConflictError):
        create_promo_code(
            session, event.creator, event.id, {"code": "save", "discount_value": 7}
        )


@pytest.mark.parametrize(
    "fields, role, message",
    [
        ({"valid_until": utcnow() - timedelta(days=1)}, "audience", "Promo code has expired"),
        ({"valid_from": utcnow() + timedelta(days=1)}, "audience", "Promo code is not active yet"),
        ({"usage_limit": 1, "usage_count": 1}, "audience", "Promo code usage limit reached"),
        ({"applies_to": "performer"}, "audience", "Promo code does not apply to audience tickets"),
    ],
)
def test_validate_promo_rejections(session, make_event, fields, role, message):
    event = make_event(paid=True)
    usage_count = fields.pop("usage_count", 0)
    promo = create_promo_code(
        session, event.creator, event.id, {"code": "TRY", "discount_value": 10, **fields}
    )
    promo.usage_count = usage_count
    session.commit()

    with pytest.raises(BadRequestError) as excinfo:
        validate_promo(session, event, "try", role)
    assert excinfo.value.message == message
    assert excinfo.value.code == "InvalidPromoCode"


def test_apply_discount_never_goes_negative(session, make_event):
    event = make_event(paid=True)
    promo = create_promo_code(
        session,
        event.creator,
        event.id,
        {"code": "BIG", "discount_type": "flat", "discount_value": 1000},
    )
    assert apply_discount(200.0, promo) == 0.0
    assert apply_discount(200.0, None) == 200.0


def test_create_order_routes_organizer_share(
    session, make_event, make_user, razorpay_client, fake_razorpay
):
    event = make_event(paid=True)
    buyer = make_user("Buyer")
    _order(fake_razorpay)

    result = create_payment_order(session, razorpay_client, buyer, event.id, "audience")

    assert result == {
        "order_id": "order_1",
        "amount": 20000,
        "currency": "INR",
        "key_id": "rzp_test_key",
    }
    sent = fake_razorpay.json_of("POST", "/v1/orders")
    assert sent["notes"] == {
        "event_id": event.id,
        "user_id": buyer.id,
        "role": "audience",
        "event_name": event.title,
    }
    assert sent["receipt"].startswith("evt_")
    transfer = sent["transfers"][0]
    assert transfer["account"] == event.community.payment_account.razorpay_account_id
    assert transfer["amount"] == 19000


def test_create_order_applies_promo_server_side(
    session, make_event, make_user, razorpay_client, fake_razorpay
):
    event = make_event(paid=True)
    create_promo_code(session, event.creator, event.id, {"code": "HALF", "discount_value": 50})
    session.commit()
    _order(fake_razorpay)

    result = create_payment_order(
        session, razorpay_client, make_user(), event.id, "performer", "half"
    )

    assert result["amount"] == 25000
    assert fake_razorpay.json_of("POST", "/v1/orders")["notes"]["promo_code"] == "HALF"


def test_organizer_share_rounds_half_paise_up(
    session, make_event, make_user, razorpay_client, fake_razorpay, override_settings
):
    override_settings(platform_fee_percent=5.0)
    event = make_event(paid=True, audience_ticket_price=499.0)
    create_promo_code(session, event.creator, event.id, {"code": "TENOFF", "discount_value": 10})
    session.commit()
    _order(fake_razorpay)

    result = create_payment_order(
        session, razorpay_client, make_user(), event.id, "audience", "TENOFF"
    )

    assert result["amount"] == 44910
    assert fake_razorpay.json_of("POST", "/v1/orders")["transfers"][0]["amount"] == 42665


def test_create_order_requires_activated_kyc(session, make_event, make_user, razorpay_client):
    event = make_event(paid=True)
    account = event.community.payment_account
    account.kyc_status = KYC_NEEDS_INFO
    session.commit()

    with pytest.raises(BadRequestError) as excinfo:
        create_payment_order(session, razorpay_client, make_user(), event.id, "audience")
    assert excinfo.value.code == "KycRequired"


def test_create_order_rejects_free_and_duplicate_bookings(
    session, make_event, make_user, razorpay_client
):
    free_event = make_event()
    with pytest.raises(BadRequestError, match="free tickets"):
        create_payment_order(session, razorpay_client, make_user(), free_event.id, "audience")

    paid_event = make_event(paid=True, community=None)
    buyer = make_user("Repeat")
    paid_event.participants.append(EventParticipant(user_id=buyer.id, role="audience"))
    session.commit()
    with pytest.raises(ConflictError):
        create_payment_order(session, razorpay_client, buyer, paid_event.id, "audience")


def test_record_paid_booking_is_idempotent(session, make_event, make_user):
    event = make_event(paid=True)
    buyer = make_user()
    kwargs = dict(
        event_id=event.id,
        user_id=buyer.id,
        role="performer",
        order_id="order_9",
        payment_id="pay_9",
        amount_paise=50000,
    )

    first = record_paid_booking(session, None, **kwargs)
    second = record_paid_booking(session, None, **kwargs)
    session.commit()

    assert first is not None and second is None
    assert first.amount_paid == 500.0
    assert first.payment_status == "captured"
    assert first.ticket_code.startswith("TKT-")
    owner_titles = [
        n.title for n in session.query(Notification).filter_by(user_id=event.created_by)
    ]
    assert owner_titles == ["New Event Registration"]


def test_confirm_checkout_books_ticket(
    session, make_event, make_user, razorpay_client, fake_razorpay
):
    event = make_event(paid=True)
    buyer = make_user()
    fake_razorpay.on(
        "GET",
        "/v1/orders/order_1",
        {
            "id": "order_1",
            "amount": 20000,
            "amount_paid": 20000,
            "notes": {"event_id": event.id, "user_id": buyer.id, "role": "audience"},
        },
    )
    signature = _sign("rzp_test_secret", b"order_1|pay_1")

    booking = confirm_checkout(
        session,
        razorpay_client,
        None,
        buyer,
        order_id="order_1",
        payment_id="pay_1",
        signature=signature,
    )
    again = confirm_checkout(
        session,
        razorpay_client,
        None,
        buyer,
        order_id="order_1",
        payment_id="pay_1",
        signature=signature,
    )

    assert booking.razorpay_order_id == "order_1"
    assert booking.amount_paid == 200.0
    assert again.id == booking.id
    assert len(fake_razorpay.calls("GET", "/v1/orders/order_1")) == 1


def test_confirm_checkout_rejects_bad_signature(session, make_user, razorpay_client):
    with pytest.raises(BadRequestError) as excinfo:
        confirm_checkout(
            session,
            razorpay_client,
            None,
            make_user(),
            order_id="order_1",
            payment_id="pay_1",
            signature="deadbeef",
        )
    assert excinfo.value.code == "InvalidSignature"


def test_confirm_checkout_rejects_foreign_order(
    session, make_event, make_user, razorpay_client, fake_razorpay
):
    event = make_event(paid=True)
    owner_of_order = make_user("Payer")
    fake_razorpay.on(
        "GET",
        "/v1/orders/order_1",
        {"id": "order_1", "notes": {"event_id": event.id, "user_id": owner_of_order.id}},
    )
    with pytest.raises(PermissionDeniedError):
        confirm_checkout(
            session,
            razorpay_client,
            None,
            make_user("Other"),
            order_id="order_1",
            payment_id="pay_1",
            signature=_sign("rzp_test_secret", b"order_1|pay_1"),
        )


def _captured_payload(event, user, *, payment_id="pay_ABCDEFGHIJK", promo=None):
    notes = {"event_id": event.id, "user_id": user.id}
    if promo:
        notes["promo_code"] = promo
    return json.dumps(
        {
            "event": "payment.captured",
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id,
                        "order_id": "order_w",
                        "amount": 20000,
                        "notes": notes,
                    }
                }
            },
        }
    ).encode()


def test_webhook_payment_captured_creates_booking_once(
    session, make_event, make_user, override_settings
):
    override_settings(razorpay_webhook_secret="whsec")
    event = make_event(paid=True)
    buyer = make_user()
    body = _captured_payload(event, buyer)
    signature = _sign("whsec", body)

    first = handle_webhook(session, None, body, signature)
    second = handle_webhook(session, None, body, signature)
    session.commit()

    assert first == {"status": "ok", "event": "payment.captured", "handled": True}
    assert second["handled"] is False
    booking = session.query(EventParticipant).filter_by(user_id=buyer.id).one()
    assert booking.role == "audience"
    assert booking.ticket_code == "PAY_ABCDEF"
    assert booking.razorpay_order_id == "order_w"


def test_webhook_counts_promo_usage(session, make_event, make_user, override_settings):
    override_settings(razorpay_webhook_secret="")
    event = make_event(paid=True)
    promo = create_promo_code(
        session, event.creator, event.id, {"code": "W10", "discount_value": 10}
    )
    session.commit()

    handle_webhook(session, None, _captured_payload(event, make_user(), promo="w10"), None)

    assert promo.usage_count == 1


def test_webhook_rejects_bad_signature(session, override_settings):
    override_settings(razorpay_webhook_secret="whsec")
    with pytest.raises(AuthenticationError) as excinfo:
        handle_webhook(session, None, b'{"event": "payment.captured"}', "bogus")
    assert excinfo.value.code == "InvalidSignature"
    with pytest.raises(AuthenticationError):
        handle_webhook(session, None, b"{}", None)


def test_webhook_account_activation_updates_community(session, make_community, override_settings):
    override_settings(razorpay_webhook_secret="")
    community = make_community(activated=True)
    account = community.payment_account
    account.kyc_status = "IN_PROGRESS"
    community.kyc_status = "IN_PROGRESS"
    session.commit()
    body = json.dumps(
        {
            "event": "account.activated",
            "payload": {
                "account": {
                    "entity": {
                        "id": account.razorpay_account_id,
                        "settlements": {"bank_account": {"ifsc_code": "HDFC0001234"}},
                    }
                }
            },
        }
    ).encode()

    result = handle_webhook(session, None, body, None)

    assert result["handled"] is True
    assert community.kyc_status == KYC_ACTIVATED
    assert account.products_activated is True
    assert account.bank_masked == "HDFC****"


def test_webhook_rejects_invalid_json(session, override_settings):
    override_settings(razorpay_webhook_secret="")
    with pytest.raises(BadRequestError):
        handle_webhook(session, None, b"not json", None)


def test_sync_backfills_missed_payments(
    session, make_event, make_user, razorpay_client, fake_razorpay
):
    event = make_event(paid=True)
    missed = make_user("Missed")
    booked = make_user("Booked")
    booked_row = EventParticipant(
        user_id=booked.id, role="audience", razorpay_order_id="order_b", payment_id="pay_b"
    )
    event.participants.append(booked_row)
    session.commit()
    fake_razorpay.on(
        "GET",
        "/v1/orders",
        {
            "items": [
                {
                    "id": "order_a",
                    "status": "paid",
                    "notes": {"event_id": event.id, "user_id": missed.id},
                },
                {
                    "id": "order_b",
                    "status": "paid",
                    "notes": {"event_id": event.id, "user_id": booked.id},
                },
                {"id": "order_c", "status": "created", "notes": {}},
                {
                    "id": "order_d",
                    "status": "paid",
                    "notes": {"event_id": "missing-event", "user_id": missed.id},
                },
            ]
        },
    )
    fake_razorpay.on(
        "GET",
        "/v1/orders/order_a/payments",
        {"items": [{"id": "pay_a", "status": "captured", "amount": 50000}]},
    )
    fake_razorpay.on(
        "GET",
        "/v1/orders/order_d/payments",
        {"items": [{"id": "pay_d", "status": "captured", "amount": 100}]},
    )

    now = utcnow()
    stats = sync_razorpay_payments(
        session, razorpay_client, None, lookback_hours=2, now=now
    )

    assert stats["total_orders"] == 4
    assert stats["synced"] == 1
    assert stats["skipped"] == 2
    assert stats["errors"] == 1
    booking = session.query(EventParticipant).filter_by(user_id=missed.id).one()
    assert booking.role == "performer"
    assert booking.payment_id == "pay_a"
    params = fake_razorpay.calls("GET", "/v1/orders")[0].params
    assert int(params["to"]) - int(params["from"]) == 7200
    assert params["count"] == "100"
