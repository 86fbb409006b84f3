"""Moderation queue: posts waiting for a moderator to confirm the community's pick."""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from .. import models
from ..verification.states import VerificationStatus


def list_pending_verifications(
    db: Session, limit: int | None = None, offset: int = 0
) -> list[models.Post]:
    """
    Posts in status community, oldest selection first.

    Always read from the database so a confirm or reopen is reflected on the
    next call. Each post has its owner and comments (with authors) loaded;
    the selected comment is available as ``post.verified_comment``.
    """
    query = (
        db.query(models.Post)
        .options(
            joinedload(models.Post.owner),
            selectinload(models.Post.comments).joinedload(models.Comment.author),
        )
        .filter(models.Post.verification_status == VerificationStatus.COMMUNITY.value)
        .order_by(models.Post.updated_at.asc(), models.Post.id.asc())
    )
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def pending_count(db: Session) -> int:
    return (
        db.query(func.count(models.Post.id))
        .filter(models.Post.verification_status == VerificationStatus.COMMUNITY.value)
        .scalar()
        or 0
    )
