from __future__ import annotations

from datetime import timedelta

import pytest

from showya.errors import BadRequestError, ConflictError, PermissionDeniedError
from showya.events import (
    cancel_event,
    create_event,
    delete_event,
    join_context,
    list_community_events,
    list_event_audit_log,
    register_free,
    remaining_slots,
    update_event,
)
from showya.models import Event, EventAuditLog, EventParticipant, Notification, Refund
from showya.utils import utcnow


def _titles(session, user_id):
    return [n.title for n in session.query(Notification).filter_by(user_id=user_id)]


def test_create_event_applies_defaults(session, make_community):
    community = make_community()
    event = create_event(
        session,
        community.owner,
        community.id,
        {
            "title": "Poetry Slam",
            "event_date": utcnow() + timedelta(days=2),
            "audience_enabled": True,
        },
    )

    assert event.ticket_type == "free"
    assert event.audience_slots == 50
    assert event.editable_before_event_minutes == 60
    assert event.allow_paid_audience_mic is True
    assert event.allow_free_audience_mic is False
    assert [e.id for e in list_community_events(session, community.id)] == [event.id]


def test_create_event_only_by_owner(session, make_community, make_user):
    community = make_community()
    with pytest.raises(PermissionDeniedError):
        create_event(
            session,
            make_user("Member"),
            community.id,
            {"title": "Nope", "event_date": utcnow() + timedelta(days=1)},
        )


def test_paid_event_requires_activated_kyc(session, make_community):
    community = make_community()
    with pytest.raises(BadRequestError) as excinfo:
        create_event(
            session,
            community.owner,
            community.id,
            {
                "title": "Paid Night",
                "event_date": utcnow() + timedelta(days=2),
                "ticket_type": "paid",
                "performer_slots": 2,
                "performer_ticket_price": 300,
            },
        )
    assert excinfo.value.code == "KycRequired"


def test_paid_event_needs_positive_prices(session, make_community):
    community = make_community(activated=True)
    with pytest.raises(BadRequestError, match="performer ticket price"):
        create_event(
            session,
            community.owner,
            community.id,
            {
                "title": "Paid Night",
                "event_date": utcnow() + timedelta(days=2),
                "ticket_type": "paid",
                "performer_slots": 2,
                "performer_ticket_price": 0,
            },
        )


def test_register_free_enforces_capacity_and_duplicates(session, make_event, make_user):
    event = make_event(performer_slots=1)
    first = make_user("First")
    second = make_user("Second")

    booking = register_free(session, None, first, event.id, "performer")
    session.commit()

    assert booking.ticket_code.startswith("TKT-")
    assert remaining_slots(event) == {"performer": 0, "audience": 10}
    with pytest.raises(ConflictError) as excinfo:
        register_free(session, None, second, event.id, "performer")
    assert excinfo.value.code == "EventFull"
    with pytest.raises(ConflictError, match="already registered"):
        register_free(session, None, first, event.id, "audience")
    assert "Event Registration Confirmed" in _titles(session, first.id)
    assert "New Event Registration" in _titles(session, event.created_by)


def test_register_free_rejects_paid_and_closed_audience(session, make_event, make_user):
    paid = make_event(paid=True)
    with pytest.raises(BadRequestError, match="requires a paid ticket"):
        register_free(session, None, make_user(), paid.id, "audience")

    no_audience = make_event(audience_enabled=False)
    with pytest.raises(BadRequestError, match="does not admit an audience"):
        register_free(session, None, make_user(), no_audience.id, "audience")


def test_update_inside_edit_window_only_allows_meeting_link(session, make_event):
    event = make_event(starts_in=timedelta(minutes=30))
    owner = event.creator

    with pytest.raises(BadRequestError) as excinfo:
        update_event(session, owner, event.id, {"title": "Renamed"})
    assert excinfo.value.code == "restricted_window"
    assert excinfo.value.to_dict()["allowedFields"] == ["meeting_url"]

    result = update_event(session, owner, event.id, {"meeting_url": "https://meet.example/x"})
    assert result["success"] is True
    assert event.meeting_link_last_updated_at is not None


def test_pricing_locked_after_bookings(session, make_event, make_user):
    event = make_event(paid=True)
    event.participants.append(EventParticipant(user_id=make_user().id, role="audience"))
    session.commit()

    with pytest.raises(BadRequestError) as excinfo:
        update_event(session, event.creator, event.id, {"audience_ticket_price": 150.0})
    assert excinfo.value.code == "locked_field"

    result = update_event(session, event.creator, event.id, {"audience_ticket_price": 200.0})
    assert result["success"] is True


def test_switching_to_paid_rechecks_prices_and_kyc(session, make_community, make_event):
    unverified = make_event(make_community(name="No Payouts Yet"))

    with pytest.raises(BadRequestError, match="performer ticket price"):
        update_event(session, unverified.creator, unverified.id, {"ticket_type": "paid"})
    with pytest.raises(BadRequestError) as excinfo:
        update_event(
            session,
            unverified.creator,
            unverified.id,
            {"ticket_type": "paid", "performer_ticket_price": 300.0, "audience_ticket_price": 99.0},
        )
    assert excinfo.value.code == "KycRequired"
    assert unverified.ticket_type == "free"

    verified = make_event(make_community(name="Payouts Ready", activated=True))
    result = update_event(
        session,
        verified.creator,
        verified.id,
        {"ticket_type": "paid", "performer_ticket_price": 300.0, "audience_ticket_price": 99.0},
    )
    assert result["success"] is True
    assert verified.ticket_type == "paid"


def test_price_edits_on_paid_event_stay_positive(session, make_event):
    event = make_event(paid=True)

    with pytest.raises(BadRequestError, match="audience ticket price"):
        update_event(session, event.creator, event.id, {"audience_ticket_price": 0})
    with pytest.raises(BadRequestError, match="audience ticket price"):
        update_event(
            session,
            event.creator,
            event.id,
            {"audience_enabled": True, "audience_ticket_price": None},
        )

    closed = {"audience_enabled": False, "audience_ticket_price": 0}
    update_event(session, event.creator, event.id, closed)
    assert event.audience_ticket_price == 0


def test_date_change_with_bookings_needs_confirmation(session, make_event, make_user):
    event = make_event()
    attendee = make_user("Attendee")
    register_free(session, None, attendee, event.id, "audience")
    session.commit()
    new_date = event.event_date + timedelta(days=1)

    with pytest.raises(BadRequestError) as excinfo:
        update_event(session, event.creator, event.id, {"event_date": new_date})
    assert excinfo.value.code == "date_change_confirmation_required"
    assert excinfo.value.to_dict()["attendeeCount"] == 1

    result = update_event(
        session, event.creator, event.id, {"event_date": new_date}, confirm_date_change=True
    )
    session.commit()

    assert result["notificationsSent"] == 1
    assert event.event_date == new_date
    assert "Event Time Changed" in _titles(session, attendee.id)
    entry = list_event_audit_log(session, event.creator, event.id)[0]
    assert entry.action == "update"
    assert entry.new_values == {"event_date": new_date.isoformat()}


def test_performer_slots_cannot_drop_below_bookings(session, make_event, make_user):
    event = make_event(performer_slots=3)
    for name in ("A", "B"):
        register_free(session, None, make_user(name), event.id, "performer")
    session.commit()

    with pytest.raises(BadRequestError) as excinfo:
        update_event(session, event.creator, event.id, {"performer_slots": 1})
    assert excinfo.value.code == "slot_reduction_conflict"


def test_update_rejects_unknown_fields_and_strangers(session, make_event, make_user):
    event = make_event()
    with pytest.raises(BadRequestError, match="Unknown fields"):
        update_event(session, event.creator, event.id, {"is_cancelled": True})
    with pytest.raises(PermissionDeniedError):
        update_event(session, make_user("Stranger"), event.id, {"title": "x"})


def test_cancel_paid_event_refunds_everyone(
    session, make_event, make_user, razorpay_client, fake_razorpay, mailer, sent_emails
):
    event = make_event(paid=True)
    attendee = make_user("Paid Fan")
    event.participants.append(
        EventParticipant(
            user_id=attendee.id,
            role="audience",
            payment_id="pay_1",
            payment_status="captured",
            amount_paid=200.0,
        )
    )
    session.commit()
    fake_razorpay.on("POST", "/v1/payments/pay_1/refund", {"id": "rfnd_1"})

    result = cancel_event(
        session, razorpay_client, mailer, event.creator, event.id, reason="Artist unwell"
    )
    session.commit()

    assert result["success"] is True
    assert result["attendees_notified"] == 1
    assert result["refunds_initiated"] == 1
    assert event.is_cancelled is True
    refund = session.query(Refund).one()
    assert refund.amount == 200.0 and refund.refund_percentage == 100
    assert sent_emails[0]["subject"] == "Event Cancelled - Refund Information"
    assert "Reason: Artist unwell" in sent_emails[0]["html"]
    with pytest.raises(BadRequestError) as excinfo:
        cancel_event(session, razorpay_client, mailer, event.creator, event.id)
    assert excinfo.value.code == "AlreadyCancelled"


def test_delete_without_bookings_removes_event(session, make_event, razorpay_client):
    event = make_event()
    result = delete_event(session, razorpay_client, None, event.creator, event.id)
    session.commit()

    assert result["deleted"] is True
    assert session.get(Event, event.id) is None


def test_delete_with_bookings_cancels_instead(session, make_event, make_user, razorpay_client):
    event = make_event()
    register_free(session, None, make_user(), event.id, "audience")
    session.commit()

    result = delete_event(session, razorpay_client, None, event.creator, event.id)
    session.commit()

    assert result["cancelled"] is True
    assert result["message"] == "Event cancelled. 1 participants notified."
    assert session.get(Event, event.id).is_cancelled is True
    actions = [e.action for e in session.query(EventAuditLog).filter_by(event_id=event.id)]
    assert actions == ["cancelled"]


def test_delete_refused_close_to_start(session, make_event, razorpay_client):
    event = make_event(starts_in=timedelta(minutes=30))
    with pytest.raises(BadRequestError, match="less than 1 hour"):
        delete_event(session, razorpay_client, None, event.creator, event.id)

    past = make_event(starts_in=timedelta(hours=-2))
    with pytest.raises(BadRequestError, match="already ended"):
        delete_event(session, razorpay_client, None, past.creator, past.id)


def test_join_context_reports_booking_and_host(session, make_event, make_user):
    event = make_event()
    guest = make_user("Guest")
    register_free(session, None, guest, event.id, "audience")
    session.commit()

    guest_view = join_context(session, event.id, guest)
    host_view = join_context(session, event.id, event.creator)

    assert guest_view["booking"]["role"] == "audience"
    assert guest_view["isHost"] is False
    assert guest_view["audienceRemaining"] == 9
    assert host_view["booking"] is None
    assert host_view["isHost"] is True
    assert host_view["event"]["allow_paid_audience_mic"] is True
