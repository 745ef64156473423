"""Development helpers for populating fake communities and events."""

from __future__ import annotations

import random
from datetime import timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .communities import create_community, join_community
from .crud import create_user, get_user_by_email
from .database import get_session
from .events import create_event, register_free
from .models import Community, User
from .storage import init_db
from .utils import utcnow

_community_suffixes = [
    "Open Mic",
    "Poetry Circle",
    "Comedy Club",
    "Music Collective",
    "Storytellers",
    "Jam Room",
]
_event_types = [
    "Open Mic Night",
    "Showcase",
    "Jam Session",
    "Slam",
    "Unplugged Evening",
    "Stand-up Hour",
]
_categories = ["music", "poetry", "comedy", "storytelling", "dance"]


def seed_fake_data(
    *,
    user_count: int = 12,
    community_count: int = 3,
    max_events_per_community: int = 3,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic users, communities and free events."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if community_count < 0:
        raise ValueError("community_count must be >= 0")
    if community_count > user_count:
        raise ValueError("community_count cannot exceed user_count")
    if max_events_per_community < 1:
        raise ValueError("max_events_per_community must be >= 1")

    init_db()
    fake = Faker("en_IN")
    stats = {"users": 0, "communities": 0, "events": 0, "bookings": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        stats["users"] = len(users)
        owners = random.sample(users, community_count)
        for owner in owners:
            community = _create_community(session, fake, owner)
            stats["communities"] += 1
            audience = [u for u in users if u.id != owner.id]
            for member in random.sample(audience, k=min(len(audience), 5)):
                join_community(session, member, community.id)
            for _ in range(random.randint(1, max_events_per_community)):
                stats["bookings"] += _create_event(session, fake, community, audience)
                stats["events"] += 1

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    for _ in range(20):
        email = fake.unique.email()
        if get_user_by_email(session, email):
            continue
        user = create_user(session, email=email, name=fake.name())
        user.phone = fake.numerify("9#########")
        user.city = fake.city()
        return user
    raise RuntimeError("Failed to create a unique user email")


def _create_community(session: Session, fake: Faker, owner: User) -> Community:
    return create_community(
        session,
        owner,
        name=f"{fake.city()} {random.choice(_community_suffixes)}",
        categories=random.sample(_categories, k=2),
        description=fake.paragraph(nb_sentences=3),
    )


def _create_event(
    session: Session,
    fake: Faker,
    community: Community,
    audience: list[User],
) -> int:
    start = utcnow() + timedelta(
        days=random.randint(1, 30), minutes=random.randint(0, 23 * 60)
    )
    event = create_event(
        session,
        community.owner,
        community.id,
        {
            "title": f"{fake.city()} {random.choice(_event_types)}",
            "description": "\n\n".join(fake.paragraphs(nb=2)),
            "category": random.choice(community.categories or _categories),
            "event_date": start,
            "duration": random.choice([60, 90, 120]),
            "ticket_type": "free",
            "performer_slots": random.randint(2, 8),
            "audience_enabled": True,
            "audience_slots": random.randint(10, 40),
        },
    )
    bookings = 0
    for user in random.sample(audience, k=min(len(audience), random.randint(0, 4))):
        role = "audience"
        if bookings < event.performer_slots and random.random() < 0.5:
            role = "performer"
        register_free(session, None, user, event.id, role)
        bookings += 1
    return bookings
