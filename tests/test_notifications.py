from __future__ import annotations

import pytest
import requests
import resend

from showya.errors import NotFoundError
from showya.models import Notification
from showya.notifications import (
    EmailSender,
    list_notifications,
    mark_all_read,
    mark_read,
    notify,
    render_email,
    send_notification_email,
    serialize_notification,
)


def test_render_email_escapes_and_links(override_settings):
    override_settings(app_base_url="https://showya.test/")
    html = render_email(
        title="Event Reminder",
        message="Bring <guitars> & friends",
        action_url="/events/abc",
        recipient_name="Asha",
    )

    assert "Hi Asha," in html
    assert "Bring &lt;guitars&gt; &amp; friends" in html
    assert 'href="https://showya.test/events/abc"' in html


def test_notification_queue_read_flags(session, make_user):
    user = make_user()
    other = make_user("Other")
    first = notify(session, user_id=user.id, title="One", message="first")
    notify(session, user_id=user.id, title="Two", message="second", category="event")
    notify(session, user_id=other.id, title="Elsewhere", message="not yours")
    session.commit()

    assert len(list_notifications(session, user)) == 2
    assert mark_read(session, user, first.id).is_read is True
    with pytest.raises(NotFoundError):
        mark_read(session, other, first.id)
    assert [n.title for n in list_notifications(session, user, unread_only=True)] == ["Two"]

    assert mark_all_read(session, user) == 1
    session.commit()
    assert list_notifications(session, user, unread_only=True) == []
    assert list_notifications(session, other, unread_only=True)[0].title == "Elsewhere"
    assert serialize_notification(first)["is_read"] is True


def test_send_notification_email_marks_notification(session, make_user, mailer, sent_emails):
    user = make_user("Meera")
    notification = notify(session, user_id=user.id, title="Welcome", message="Hello there")

    assert send_notification_email(
        session, mailer, user, title="Welcome", message="Hello there"
    )
    session.commit()
    session.refresh(notification)

    assert sent_emails[0]["to"] == [user.email]
    assert sent_emails[0]["subject"] == "Welcome"
    assert notification.is_email_sent is True


def test_send_failures_do_not_raise(session, make_user, monkeypatch):
    user = make_user()

    def broken(params):
        raise requests.ConnectionError("resend is down")

    monkeypatch.setattr(resend.Emails, "send", broken)
    assert send_notification_email(
        session, EmailSender("re_key"), user, title="Hi", message="x"
    ) is False

    disabled = EmailSender("")
    assert send_notification_email(session, disabled, user, title="Hi", message="x") is False
    assert send_notification_email(session, None, None, title="Hi", message="x") is False
    assert session.query(Notification).count() == 0


def test_mark_read_is_visible_before_commit(session, make_user):
    user = make_user()
    first = notify(session, user_id=user.id, title="One", message="first")
    notify(session, user_id=user.id, title="Two", message="second")

    mark_read(session, user, first.id)

    assert [n.title for n in list_notifications(session, user, unread_only=True)] == ["Two"]
    assert mark_all_read(session, user) == 1


def test_sender_passes_api_key_and_from_address(mailer, sent_emails, override_settings):
    override_settings(email_from="Showya <hello@showya.test>")

    email_id = EmailSender("re_live").send(to="fan@example.com", subject="Hi", html="<p>x</p>")

    assert email_id == "email_1"
    assert resend.api_key == "re_live"
    assert sent_emails == [
        {
            "from": "Showya <hello@showya.test>",
            "to": ["fan@example.com"],
            "subject": "Hi",
            "html": "<p>x</p>",
        }
    ]
