from __future__ import annotations

from datetime import timedelta

import pytest

from showya.errors import BadRequestError, ConflictError, NotFoundError, PermissionDeniedError
from showya.moderation import (
    create_clip,
    create_report,
    delete_clip,
    list_clips,
    list_reports,
    serialize_clip,
    update_report_status,
)
from showya.utils import utcnow

DESCRIPTION = "Kept posting abusive messages in the chat during the whole show tonight."


def _report(session, reporter, target, **overrides):
    fields = {
        "target_user_id": target.id,
        "target_type": "user",
        "reason": "Harassment",
        "incident_location": "Chat message",
        "message": DESCRIPTION,
    }
    fields.update(overrides)
    return create_report(session, reporter, **fields)


def test_create_report_and_review_queue(session, make_user):
    reporter = make_user("Reporter")
    target = make_user("Target")

    report = _report(session, reporter, target, context_type="event", context_id="evt-1")
    session.commit()

    assert report.status == "pending"
    assert [r.id for r in list_reports(session, status="pending")] == [report.id]
    assert list_reports(session, status="resolved") == []


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"target_type": "robot"}, "target_type"),
        ({"reason": " "}, "reason"),
        ({"incident_location": "Community banner"}, "where this incident"),
        ({"message": "too short"}, "at least 50"),
        ({"message": "x" * 501}, "less than 500"),
    ],
)
def test_report_validation(session, make_user, overrides, message):
    with pytest.raises(BadRequestError, match=message):
        _report(session, make_user("Reporter"), make_user("Target"), **overrides)


def test_community_owner_reports_accept_owner_locations(session, make_user):
    report = _report(
        session,
        make_user("Reporter"),
        make_user("Owner"),
        target_type="community_owner",
        incident_location="Community banner",
    )
    assert report.target_type == "community_owner"


def test_report_self_and_missing_targets(session, make_user):
    reporter = make_user("Reporter")
    with pytest.raises(BadRequestError, match="yourself"):
        _report(session, reporter, reporter)
    with pytest.raises(NotFoundError):
        create_report(
            session,
            reporter,
            target_user_id="ghost",
            target_type="user",
            reason="Spam",
            incident_location="Profile information",
            message=DESCRIPTION,
        )


def test_duplicate_report_within_a_day(session, make_user):
    reporter = make_user("Reporter")
    target = make_user("Target")
    earlier = utcnow() - timedelta(hours=30)
    _report(session, reporter, target, now=earlier)
    session.commit()

    _report(session, reporter, target)
    session.commit()
    with pytest.raises(ConflictError) as excinfo:
        _report(session, reporter, target)
    assert excinfo.value.code == "DuplicateReport"


def test_report_status_moves_forward_only(session, make_user):
    report = _report(session, make_user("Reporter"), make_user("Target"))
    session.commit()

    assert update_report_status(session, report.id, "reviewed").status == "reviewed"
    with pytest.raises(BadRequestError, match="Cannot move"):
        update_report_status(session, report.id, "pending")
    assert update_report_status(session, report.id, "resolved").status == "resolved"
    with pytest.raises(BadRequestError):
        update_report_status(session, report.id, "archived")
    with pytest.raises(NotFoundError):
        update_report_status(session, "missing", "resolved")


def test_clips_lifecycle(session, make_user, make_event):
    author = make_user("Author", display_name="Spotlight")
    event = make_event()

    clip = create_clip(
        session,
        author,
        community_name=" Open Mic Collective ",
        feature_text="Best closing set of the season",
        video_url="https://videos.example/clip.mp4",
        event_id=event.id,
    )
    session.commit()

    assert serialize_clip(clip)["author"] == "Spotlight"
    assert clip.community_name == "Open Mic Collective"
    assert [c.id for c in list_clips(session)] == [clip.id]
    with pytest.raises(PermissionDeniedError):
        delete_clip(session, make_user("Someone Else"), clip.id)

    admin = make_user("Admin", is_admin=True)
    delete_clip(session, admin, clip.id)
    session.commit()
    assert list_clips(session) == []


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"feature_text": ""}, "Feature text"),
        ({"feature_text": "x" * 281}, "Feature text"),
        ({"video_url": "ftp://videos.example/a.mp4"}, "http"),
        ({"community_name": "  "}, "Community name"),
    ],
)
def test_clip_validation(session, make_user, fields, message):
    data = {
        "community_name": "Open Mic Collective",
        "feature_text": "Great set",
        "video_url": "https://videos.example/a.mp4",
    }
    data.update(fields)
    with pytest.raises(BadRequestError, match=message):
        create_clip(session, make_user(), **data)
