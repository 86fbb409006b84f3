"""Artist tags: a comment can name a verified artist who then confirms or denies it."""

from __future__ import annotations

import re
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from .. import models
from ..verification.states import TagStatus

MENTION_PATTERN = re.compile(r"@([A-Za-z0-9_]+)")


def detect_mentions(text: str) -> list[str]:
    """Usernames mentioned as @name, in order of appearance, without duplicates."""
    seen: list[str] = []
    for name in MENTION_PATTERN.findall(text or ""):
        if name.lower() not in (s.lower() for s in seen):
            seen.append(name)
    return seen


def _verified_artist(user: models.User | None) -> models.User | None:
    if user is not None and user.is_verified_artist:
        return user
    return None


def resolve_tagged_artist(
    db: Session, content: str, explicit_artist_id: UUID | None = None
) -> models.User | None:
    """
    Pick the artist a new comment tags.

    An explicit artist id wins and must belong to a verified artist
    (ValueError otherwise). Without one, the first @mention that names a
    verified artist is used. Returns None when nobody is tagged.
    """
    if explicit_artist_id is not None:
        artist = _verified_artist(db.get(models.User, explicit_artist_id))
        if artist is None:
            raise ValueError("Tagged user is not a verified artist")
        return artist

    for name in detect_mentions(content):
        user = (
            db.query(models.User)
            .filter(models.User.username_normalized == name.lower())
            .first()
        )
        artist = _verified_artist(user)
        if artist is not None:
            return artist
    return None


def list_tagged_comments(
    db: Session,
    artist_id: UUID,
    tag_status: str | None = TagStatus.PENDING.value,
    limit: int = 50,
    offset: int = 0,
) -> list[models.Comment]:
    """Comments tagging the artist, oldest first; pass tag_status=None for every decision."""
    query = (
        db.query(models.Comment)
        .options(joinedload(models.Comment.author), joinedload(models.Comment.post))
        .filter(models.Comment.tagged_artist_id == artist_id)
    )
    if tag_status is not None:
        query = query.filter(models.Comment.tag_status == tag_status)
    return (
        query.order_by(models.Comment.created_at.asc(), models.Comment.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
