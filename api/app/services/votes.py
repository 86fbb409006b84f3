"""Comment votes: one up or down vote per user per comment."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models

logger = logging.getLogger(__name__)

VOTE_DIRECTIONS = ("up", "down")


def _existing_vote(db: Session, comment_id: UUID, user_id: UUID) -> models.CommentVote | None:
    return (
        db.query(models.CommentVote)
        .filter(
            models.CommentVote.comment_id == comment_id,
            models.CommentVote.user_id == user_id,
        )
        .first()
    )


def cast_vote(db: Session, comment_id: UUID, user_id: UUID, direction: str) -> models.CommentVote:
    """Create or change the user's vote on a comment and commit."""
    if direction not in VOTE_DIRECTIONS:
        raise ValueError(f"Unknown vote direction: {direction}")

    vote = _existing_vote(db, comment_id, user_id)
    if vote is not None:
        vote.direction = direction
        db.commit()
        return vote

    vote = models.CommentVote(comment_id=comment_id, user_id=user_id, direction=direction)
    db.add(vote)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # Concurrent first vote by the same user; anything else is a real error
        vote = _existing_vote(db, comment_id, user_id)
        if vote is None:
            raise
        logger.info(f"Vote race on comment {comment_id} by {user_id}, updating existing vote")
        vote.direction = direction
        db.commit()
    return vote


def remove_vote(db: Session, comment_id: UUID, user_id: UUID) -> bool:
    """Delete the user's vote; returns False if there was none."""
    deleted = (
        db.query(models.CommentVote)
        .filter(
            models.CommentVote.comment_id == comment_id,
            models.CommentVote.user_id == user_id,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted > 0


def vote_score(db: Session, comment_id: UUID) -> int:
    """Upvotes minus downvotes, counted in the database."""
    score = (
        db.query(
            func.coalesce(
                func.sum(case((models.CommentVote.direction == "up", 1), else_=-1)), 0
            )
        )
        .filter(models.CommentVote.comment_id == comment_id)
        .scalar()
    )
    return int(score)
