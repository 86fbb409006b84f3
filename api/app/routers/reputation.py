"""User profile, karma and artist tag endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..deps import get_db
from ..services import reputation
from ..services.artist_tags import list_tagged_comments

router = APIRouter(prefix="/user", tags=["Reputation"])


def _get_user(db: Session, user_id: UUID) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/{id}", response_model=schemas.User)
def get_user(id: UUID, db: Session = Depends(get_db)) -> schemas.User:
    return schemas.User.model_validate(_get_user(db, id))


@router.get("/{id}/karma", response_model=schemas.Karma)
def get_karma(id: UUID, db: Session = Depends(get_db)) -> schemas.Karma:
    """Number of the user's comments confirmed as track identifications."""
    return schemas.Karma(user_id=id, karma=reputation.get_karma(db, id))


@router.get("/{id}/reputation", response_model=schemas.Reputation)
def get_reputation(id: UUID, db: Session = Depends(get_db)) -> schemas.Reputation:
    """Get user karma with ledger history, newest first."""
    user = _get_user(db, id)
    history = reputation.get_history(db, id, limit=100)

    return schemas.Reputation(
        user_id=user.id,
        karma=max(0, user.karma),
        identified_comments=reputation.count_identified_comments(db, id),
        history=[schemas.KarmaEntry.model_validate(h) for h in history],
    )


@router.get("/{id}/artist-tags", response_model=list[schemas.Comment])
def list_artist_tags(
    id: UUID,
    tag_status: str = Query("pending", alias="status", pattern="^(pending|confirmed|denied|all)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> list[schemas.Comment]:
    """
    Comments tagging this artist, oldest first.

    Defaults to tags still awaiting the artist's confirm or deny.
    """
    _get_user(db, id)
    comments = list_tagged_comments(
        db,
        id,
        tag_status=None if tag_status == "all" else tag_status,
        limit=limit,
        offset=offset,
    )
    return [schemas.Comment.model_validate(c) for c in comments]
