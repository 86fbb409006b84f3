"""Comment endpoints: ranked listing, creation, votes and artist tag decisions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, joinedload, selectinload

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_db, get_verification_engine
from ..services import votes
from ..services.artist_tags import resolve_tagged_artist
from ..services.comment_ranking import SortOrder, rank_comments
from ..verification.engine import VerificationEngine

router = APIRouter(prefix="/post", tags=["Comments"])
logger = logging.getLogger(__name__)


def _load_comment(db: Session, comment_id: UUID) -> models.Comment:
    comment = (
        db.query(models.Comment)
        .options(joinedload(models.Comment.author))
        .filter(models.Comment.id == comment_id)
        .first()
    )
    if not comment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")
    return comment


@router.get("/{id}/comments", response_model=list[schemas.CommentThread])
def list_comments(
    id: UUID,
    sort: SortOrder = Query("all"),
    db: Session = Depends(get_db),
) -> list[schemas.CommentThread]:
    """
    List a post's comments as threads.

    The identified comment is pinned first. Other top-level comments follow
    in the requested order, each with its replies oldest first.
    """
    post = (
        db.query(models.Post)
        .options(
            selectinload(models.Post.comments).options(
                joinedload(models.Comment.author),
                selectinload(models.Comment.votes),
            )
        )
        .filter(models.Post.id == id)
        .first()
    )
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    threads = []
    for ranked in rank_comments(post, sort):
        thread = schemas.CommentThread.model_validate(ranked.comment)
        threads.append(
            thread.model_copy(
                update={"replies": [schemas.Comment.model_validate(r) for r in ranked.replies]}
            )
        )
    return threads


@router.get("/{id}/artist-tags", response_model=list[schemas.Comment])
def list_post_artist_tags(id: UUID, db: Session = Depends(get_db)) -> list[schemas.Comment]:
    """Comments on the post that tag a verified artist, with each tag's status."""
    if not db.get(models.Post, id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    comments = (
        db.query(models.Comment)
        .options(joinedload(models.Comment.author))
        .filter(
            models.Comment.post_id == id,
            models.Comment.tagged_artist_id.isnot(None),
        )
        .order_by(models.Comment.created_at.asc(), models.Comment.id.asc())
        .all()
    )
    return [schemas.Comment.model_validate(c) for c in comments]


@router.post(
    "/{id}/comments",
    response_model=schemas.Comment,
    status_code=status.HTTP_201_CREATED,
)
def create_comment(
    id: UUID,
    payload: schemas.CommentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> schemas.Comment:
    """
    Comment on a post, optionally proposing an identification.

    Mentioning a verified artist as @username (or passing tagged_artist_id)
    tags them and notifies the artist; the tag stays pending until the artist
    confirms or denies it.
    Replies to replies are attached to the top-level comment.
    """
    post = db.get(models.Post, id)
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    parent_id = None
    if payload.parent_id:
        parent = db.get(models.Comment, payload.parent_id)
        if not parent or parent.post_id != id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid parent comment",
            )
        parent_id = parent.parent_id or parent.id

    content = payload.content.strip()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Comment content is required",
        )

    try:
        artist = resolve_tagged_artist(db, content, payload.tagged_artist_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    comment = models.Comment(
        id=uuid.uuid4(),
        post_id=id,
        user_id=current_user.id,
        parent_id=parent_id,
        content=content,
        tagged_artist_id=artist.id if artist else None,
        tag_status="pending" if artist else "none",
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    db.add(comment)

    staged = []
    if artist:
        staged = engine.dispatcher.stage(
            db,
            "artist_tagged",
            [artist.id],
            actor_id=current_user.id,
            post_id=id,
            transition_ref=f"tagged-{comment.id}",
            comment=comment,
            created_at=comment.created_at,
        )
    payloads = engine.dispatcher.outbox(staged)
    db.commit()
    engine.dispatcher.broadcast(payloads)

    if artist:
        logger.info(f"Comment {comment.id} tags artist {artist.id}")

    return schemas.Comment.model_validate(_load_comment(db, comment.id))


# ============================================================================
# VOTES
# ============================================================================


@router.put("/comments/{comment_id}/vote", response_model=schemas.VoteResult)
def vote_comment(
    comment_id: UUID,
    payload: schemas.VoteRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.VoteResult:
    """Upvote or downvote a comment; voting again changes the direction."""
    _load_comment(db, comment_id)
    votes.cast_vote(db, comment_id, current_user.id, payload.direction)
    return schemas.VoteResult(
        comment_id=comment_id,
        vote_score=votes.vote_score(db, comment_id),
        my_vote=payload.direction,
    )


@router.delete("/comments/{comment_id}/vote", response_model=schemas.VoteResult)
def unvote_comment(
    comment_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.VoteResult:
    _load_comment(db, comment_id)
    votes.remove_vote(db, comment_id, current_user.id)
    return schemas.VoteResult(
        comment_id=comment_id,
        vote_score=votes.vote_score(db, comment_id),
        my_vote=None,
    )


# ============================================================================
# ARTIST TAGS
# ============================================================================


@router.post("/comments/{comment_id}/artist-confirm", response_model=schemas.Comment)
def artist_confirm(
    comment_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> schemas.Comment:
    """Tagged verified artist confirms the identification in this comment."""
    engine.artist_confirm(db, comment_id, current_user.id)
    return schemas.Comment.model_validate(_load_comment(db, comment_id))


@router.post("/comments/{comment_id}/artist-deny", response_model=schemas.Comment)
def artist_deny(
    comment_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> schemas.Comment:
    """Tagged verified artist denies the identification in this comment."""
    engine.artist_deny(db, comment_id, current_user.id)
    return schemas.Comment.model_validate(_load_comment(db, comment_id))
