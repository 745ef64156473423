"""Communities, membership and community chat."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import BadRequestError, ConflictError, NotFoundError, PermissionDeniedError
from .models import KYC_NOT_STARTED, Community, CommunityMember, CommunityMessage, User

logger = logging.getLogger("uvicorn.error")

MAX_MESSAGE_LENGTH = 2000


def get_community(session: Session, community_id: str) -> Community:
    community = session.get(Community, community_id)
    if not community:
        raise NotFoundError("Community not found")
    return community


def get_owned_community(session: Session, user: User, community_id: str) -> Community:
    community = get_community(session, community_id)
    if community.owner_id != user.id:
        raise PermissionDeniedError("Community not found or unauthorized")
    return community


def _membership(session: Session, community_id: str, user_id: str) -> CommunityMember | None:
    stmt = select(CommunityMember).where(
        CommunityMember.community_id == community_id,
        CommunityMember.user_id == user_id,
    )
    return session.scalars(stmt).first()


def member_count(session: Session, community_id: str) -> int:
    stmt = select(func.count()).select_from(CommunityMember).where(
        CommunityMember.community_id == community_id
    )
    return int(session.scalar(stmt) or 0)


def serialize_community(
    community: Community, *, members: int | None = None
) -> dict[str, Any]:
    payload = {
        "id": community.id,
        "owner_id": community.owner_id,
        "name": community.name,
        "description": community.description,
        "categories": list(community.categories or []),
        "banner_url": community.banner_url,
        "kyc_status": community.kyc_status,
        "created_at": community.created_at.isoformat(),
    }
    if members is not None:
        payload["member_count"] = members
    return payload


def create_community(
    session: Session,
    owner: User,
    *,
    name: str,
    categories: list[str] | None = None,
    description: str | None = None,
) -> Community:
    """Create the caller's community. Each user owns at most one."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise BadRequestError("Community name is required")
    existing = session.scalars(
        select(Community).where(Community.owner_id == owner.id)
    ).first()
    if existing:
        raise ConflictError(
            "You already have a community. Each user can only create one community."
        )
    community = Community(
        owner_id=owner.id,
        name=cleaned,
        categories=[c.strip() for c in (categories or []) if c and c.strip()],
        description=(description or "").strip() or None,
        kyc_status=KYC_NOT_STARTED,
    )
    community.members.append(CommunityMember(user_id=owner.id, role="owner"))
    session.add(community)
    session.flush()
    logger.info("Community %s created by %s", community.id, owner.id)
    return community


def list_communities(session: Session, *, search: str | None = None) -> Sequence[Community]:
    stmt = select(Community).order_by(Community.created_at.desc())
    if search:
        stmt = stmt.where(Community.name.ilike(f"%{search}%"))
    return session.scalars(stmt).all()


def join_community(session: Session, user: User, community_id: str) -> CommunityMember:
    community = get_community(session, community_id)
    existing = _membership(session, community.id, user.id)
    if existing:
        return existing
    member = CommunityMember(community_id=community.id, user_id=user.id, role="member")
    session.add(member)
    session.flush()
    return member


def leave_community(session: Session, user: User, community_id: str) -> None:
    community = get_community(session, community_id)
    if community.owner_id == user.id:
        raise BadRequestError("The owner cannot leave their own community")
    member = _membership(session, community.id, user.id)
    if not member:
        raise NotFoundError("You are not a member of this community")
    session.delete(member)


def list_members(session: Session, community_id: str) -> Sequence[CommunityMember]:
    community = get_community(session, community_id)
    stmt = (
        select(CommunityMember)
        .where(CommunityMember.community_id == community.id)
        .order_by(CommunityMember.joined_at.asc())
    )
    return session.scalars(stmt).all()


def post_message(
    session: Session, user: User, community_id: str, content: str
) -> CommunityMessage:
    community = get_community(session, community_id)
    if not _membership(session, community.id, user.id):
        raise PermissionDeniedError("Only members can post in this community")
    cleaned = (content or "").strip()
    if not cleaned:
        raise BadRequestError("Message cannot be empty")
    if len(cleaned) > MAX_MESSAGE_LENGTH:
        raise BadRequestError(
            f"Message must be {MAX_MESSAGE_LENGTH} characters or fewer"
        )
    message = CommunityMessage(
        community_id=community.id, user_id=user.id, content=cleaned
    )
    session.add(message)
    session.flush()
    return message


def list_messages(
    session: Session, user: User, community_id: str, *, limit: int = 50
) -> Sequence[CommunityMessage]:
    community = get_community(session, community_id)
    if not _membership(session, community.id, user.id):
        raise PermissionDeniedError("Only members can read this community's chat")
    stmt = (
        select(CommunityMessage)
        .where(CommunityMessage.community_id == community.id)
        .order_by(CommunityMessage.created_at.desc())
        .limit(limit)
    )
    return session.scalars(stmt).all()


def serialize_message(message: CommunityMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "user_id": message.user_id,
        "author": message.user.public_name if message.user else None,
        "content": message.content,
        "message_type": message.message_type,
        "created_at": message.created_at.isoformat(),
    }
