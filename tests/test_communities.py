from __future__ import annotations

import pytest

from showya.communities import (
    create_community,
    get_owned_community,
    join_community,
    leave_community,
    list_communities,
    list_members,
    list_messages,
    member_count,
    post_message,
    serialize_community,
    serialize_message,
)
from showya.errors import BadRequestError, ConflictError, NotFoundError, PermissionDeniedError
from showya.models import KYC_NOT_STARTED


def test_create_community_adds_owner_membership(session, make_user):
    owner = make_user("Owner")
    community = create_community(
        session, owner, name="  Comedy Cellar  ", categories=["comedy", " ", "music "]
    )
    session.commit()

    assert community.name == "Comedy Cellar"
    assert community.categories == ["comedy", "music"]
    assert community.kyc_status == KYC_NOT_STARTED
    assert [(m.user_id, m.role) for m in list_members(session, community.id)] == [
        (owner.id, "owner")
    ]
    payload = serialize_community(community, members=member_count(session, community.id))
    assert payload["member_count"] == 1
    assert payload["description"] is None


def test_one_community_per_owner(session, make_user):
    owner = make_user()
    create_community(session, owner, name="First")
    with pytest.raises(ConflictError):
        create_community(session, owner, name="Second")
    with pytest.raises(BadRequestError):
        create_community(session, make_user("Other"), name="   ")


def test_list_communities_search(session, make_community, make_user):
    make_community(name="Jazz Nights")
    make_community(make_user("Other Owner"), name="Poetry Circle")

    names = [c.name for c in list_communities(session, search="jazz")]

    assert names == ["Jazz Nights"]
    assert len(list_communities(session)) == 2


def test_join_is_idempotent_and_leave_rules(session, make_community, make_user):
    community = make_community()
    fan = make_user("Fan")

    first = join_community(session, fan, community.id)
    again = join_community(session, fan, community.id)
    session.commit()

    assert first.id == again.id
    assert member_count(session, community.id) == 2
    with pytest.raises(BadRequestError):
        leave_community(session, community.owner, community.id)

    leave_community(session, fan, community.id)
    session.commit()
    assert member_count(session, community.id) == 1
    with pytest.raises(NotFoundError):
        leave_community(session, fan, community.id)


def test_owned_community_check(session, make_community, make_user):
    community = make_community()
    assert get_owned_community(session, community.owner, community.id) is community
    with pytest.raises(PermissionDeniedError):
        get_owned_community(session, make_user("Intruder"), community.id)
    with pytest.raises(NotFoundError):
        get_owned_community(session, community.owner, "missing")


def test_chat_is_members_only(session, make_community, make_user):
    community = make_community()
    fan = make_user("Fan", display_name="MC Fan")
    outsider = make_user("Outsider")

    with pytest.raises(PermissionDeniedError):
        post_message(session, outsider, community.id, "hello")
    with pytest.raises(PermissionDeniedError):
        list_messages(session, outsider, community.id)

    join_community(session, fan, community.id)
    message = post_message(session, fan, community.id, "  See you Friday!  ")
    session.commit()

    assert message.content == "See you Friday!"
    assert serialize_message(message)["author"] == "MC Fan"
    assert [m.id for m in list_messages(session, community.owner, community.id)] == [message.id]
    with pytest.raises(BadRequestError):
        post_message(session, fan, community.id, "   ")
    with pytest.raises(BadRequestError):
        post_message(session, fan, community.id, "x" * 2001)
