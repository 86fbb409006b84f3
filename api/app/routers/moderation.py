"""Moderator endpoints: the pending queue and confirm/reopen/reject transitions."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user, require_moderator
from ..deps import get_db, get_verification_engine
from ..services.moderation_queue import list_pending_verifications, pending_count
from ..verification.engine import VerificationEngine
from ..verification.errors import Conflict

router = APIRouter(prefix="/moderation", tags=["Moderation"])


def _replayed_post(e: Conflict) -> models.Post:
    if e.result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return e.result


@router.get("/pending", response_model=schemas.PendingQueue)
def list_pending(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    moderator: models.User = Depends(require_moderator),
) -> schemas.PendingQueue:
    """
    Posts whose owner selected an identifying comment, oldest first.

    Always reflects the latest transitions; nothing is cached.
    """
    posts = list_pending_verifications(db, limit=limit, offset=offset)
    items = []
    for post in posts:
        selected = post.verified_comment
        items.append(
            schemas.PendingVerification(
                post=schemas.Post.model_validate(post),
                selected_comment=schemas.Comment.model_validate(selected) if selected else None,
                owner_username=post.owner.username if post.owner else None,
            )
        )
    return schemas.PendingQueue(items=items, total=pending_count(db))


@router.post("/post/{id}/confirm", response_model=schemas.Post)
def confirm_post(
    id: UUID,
    payload: schemas.ModeratorConfirmRequest | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> schemas.Post:
    """
    Confirm the identification of a post.

    Without comment_id the community selection is confirmed; with one, that
    comment becomes the identification.
    """
    payload = payload or schemas.ModeratorConfirmRequest()
    try:
        post = engine.moderator_confirm(
            db,
            post_id=id,
            acting_user_id=current_user.id,
            comment_id=payload.comment_id,
            transition_id=payload.transition_id,
        )
    except Conflict as e:
        post = _replayed_post(e)
    return schemas.Post.model_validate(post)


@router.post("/post/{id}/reopen", response_model=schemas.Post)
def reopen_post(
    id: UUID,
    payload: schemas.TransitionRequest | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> schemas.Post:
    """Send a post back to unverified, reversing karma if it was identified."""
    payload = payload or schemas.TransitionRequest()
    try:
        post = engine.moderator_reopen(
            db, post_id=id, acting_user_id=current_user.id, transition_id=payload.transition_id
        )
    except Conflict as e:
        post = _replayed_post(e)
    return schemas.Post.model_validate(post)


@router.post("/post/{id}/reject", response_model=schemas.Post)
def reject_post(
    id: UUID,
    payload: schemas.TransitionRequest | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> schemas.Post:
    """Mark an unverified post as not identifiable."""
    payload = payload or schemas.TransitionRequest()
    try:
        post = engine.moderator_reject(
            db, post_id=id, acting_user_id=current_user.id, transition_id=payload.transition_id
        )
    except Conflict as e:
        post = _replayed_post(e)
    return schemas.Post.model_validate(post)
