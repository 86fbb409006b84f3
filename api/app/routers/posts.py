"""Post endpoints, including the owner's community verification."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_db, get_verification_engine
from ..verification.engine import VerificationEngine
from ..verification.errors import Conflict

router = APIRouter(prefix="/post", tags=["Posts"])
logger = logging.getLogger(__name__)


@router.post("", response_model=schemas.Post, status_code=status.HTTP_201_CREATED)
def create_post(
    payload: schemas.PostCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Post:
    """Create a post asking for its track to be identified."""
    post = models.Post(
        id=uuid.uuid4(),
        user_id=current_user.id,
        description=payload.description,
        genre=payload.genre,
        video_url=payload.video_url,
        verification_status="unverified",
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    db.add(post)
    db.commit()
    db.refresh(post)

    logger.info(f"Post {post.id} created by {current_user.id}")
    return schemas.Post.model_validate(post)


@router.get("/{id}", response_model=schemas.Post)
def get_post(id: UUID, db: Session = Depends(get_db)) -> schemas.Post:
    post = db.get(models.Post, id)
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return schemas.Post.model_validate(post)


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_post(
    id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> None:
    """
    Delete a post (owner or moderator).

    Karma earned from the post's identification is reversed.
    """
    try:
        engine.remove_post(db, id, current_user.id)
    except Conflict:
        return None


@router.post("/{id}/community-verify", response_model=schemas.Post)
def community_verify(
    id: UUID,
    payload: schemas.CommunityVerifyRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> schemas.Post:
    """
    Owner selects the comment that identifies the track.

    The post moves to the moderation queue (status community).
    """
    try:
        post = engine.community_verify(
            db,
            post_id=id,
            comment_id=payload.comment_id,
            acting_user_id=current_user.id,
            transition_id=payload.transition_id,
        )
    except Conflict as e:
        post = e.result
        if post is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return schemas.Post.model_validate(post)
