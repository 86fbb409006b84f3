"""
Reputation Aggregator.

Karma counts a user's comments that became the confirmed identification of a
post. Every change goes through the karma ledger under a unique entry key
derived from the verification transition that caused it, so applying the same
confirm or reopen twice (retries, replays after a crash) is a no-op.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from .. import models
from ..verification.errors import NotFound
from ..verification.states import TransitionType, VerificationStatus

logger = logging.getLogger(__name__)


def confirm_key(transition_id: int) -> str:
    return f"confirm:{transition_id}"


def reverse_key(confirm_transition_id: int) -> str:
    return f"reverse:{confirm_transition_id}"


class ReputationAggregator:
    """Applies karma ledger entries inside the caller's transaction."""

    def credit(
        self,
        db: Session,
        user_id: UUID,
        transition_id: int,
        post_id: UUID | None = None,
        comment_id: UUID | None = None,
    ) -> models.KarmaLedgerEntry | None:
        """+1 for the author of a confirmed comment."""
        return self._apply(
            db,
            user_id=user_id,
            delta=1,
            entry_key=confirm_key(transition_id),
            reason="Track ID confirmed by moderator",
            post_id=post_id,
            comment_id=comment_id,
        )

    def debit(
        self,
        db: Session,
        user_id: UUID,
        confirm_transition_id: int,
        post_id: UUID | None = None,
        comment_id: UUID | None = None,
        reason: str = "Confirmed track ID reopened",
    ) -> models.KarmaLedgerEntry | None:
        """-1 reversing the credit made by confirm_transition_id."""
        return self._apply(
            db,
            user_id=user_id,
            delta=-1,
            entry_key=reverse_key(confirm_transition_id),
            reason=reason,
            post_id=post_id,
            comment_id=comment_id,
        )

    def _apply(
        self,
        db: Session,
        *,
        user_id: UUID,
        delta: int,
        entry_key: str,
        reason: str,
        post_id: UUID | None,
        comment_id: UUID | None,
    ) -> models.KarmaLedgerEntry | None:
        already = (
            db.query(models.KarmaLedgerEntry.id)
            .filter(models.KarmaLedgerEntry.entry_key == entry_key)
            .first()
        )
        if already:
            logger.debug(f"Karma entry {entry_key} already applied, skipping")
            return None

        current = db.query(models.User.karma).filter(models.User.id == user_id).scalar()
        if current is None:
            logger.warning(f"Karma entry {entry_key} skipped: user {user_id} no longer exists")
            return None
        if current + delta < 0:
            logger.warning(
                f"Karma for user {user_id} would drop below zero ({current} {delta:+d}) "
                f"applying {entry_key}; clamping to 0"
            )

        entry = models.KarmaLedgerEntry(
            user_id=user_id,
            delta=delta,
            reason=reason,
            post_id=post_id,
            comment_id=comment_id,
            entry_key=entry_key,
        )
        db.add(entry)

        # Single UPDATE so concurrent credits for the same user don't lose increments
        new_karma = models.User.karma + delta
        db.execute(
            update(models.User)
            .where(models.User.id == user_id)
            .values(karma=case((new_karma < 0, 0), else_=new_karma))
            .execution_options(synchronize_session="fetch")
        )
        return entry


def get_karma(db: Session, user_id: UUID) -> int:
    """Current karma for a user, always >= 0."""
    karma = db.query(models.User.karma).filter(models.User.id == user_id).scalar()
    if karma is None:
        raise NotFound("User not found")
    return max(0, karma)


def get_history(db: Session, user_id: UUID, limit: int = 100) -> list[models.KarmaLedgerEntry]:
    return (
        db.query(models.KarmaLedgerEntry)
        .filter(models.KarmaLedgerEntry.user_id == user_id)
        .order_by(models.KarmaLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def count_identified_comments(db: Session, user_id: UUID) -> int:
    """Live scan: the user's comments that are currently the identified comment of their post."""
    return (
        db.query(func.count(models.Comment.id))
        .join(models.Post, models.Post.id == models.Comment.post_id)
        .filter(
            models.Comment.user_id == user_id,
            models.Post.verification_status == VerificationStatus.IDENTIFIED.value,
            models.Post.verified_comment_id == models.Comment.id,
        )
        .scalar()
        or 0
    )


def recompute_karma(db: Session, user_id: UUID) -> int:
    """
    Rebuild the cached karma total from the ledger.

    Logs an inconsistency when the ledger disagrees with the live scan of
    identified comments. Does not commit.
    """
    total = (
        db.query(func.coalesce(func.sum(models.KarmaLedgerEntry.delta), 0))
        .filter(models.KarmaLedgerEntry.user_id == user_id)
        .scalar()
    )
    karma = max(0, int(total))

    live = count_identified_comments(db, user_id)
    if live != karma:
        logger.warning(
            f"Karma ledger for user {user_id} sums to {karma} but {live} comments are identified"
        )

    db.query(models.User).filter(models.User.id == user_id).update(
        {"karma": karma}, synchronize_session="fetch"
    )
    return karma


def replay_transitions(db: Session, aggregator: ReputationAggregator | None = None) -> int:
    """
    Reapply karma for every logged transition, in order.

    Entries that already exist are skipped by key, so this is safe to run at
    any time. Returns the number of ledger entries created. Does not commit.
    """
    aggregator = aggregator or ReputationAggregator()
    applied = 0

    transitions = (
        db.query(models.VerificationTransition)
        .filter(models.VerificationTransition.credited_user_id.isnot(None))
        .order_by(models.VerificationTransition.id.asc())
        .all()
    )
    for transition in transitions:
        entry = None
        if transition.transition_type == TransitionType.MODERATOR_CONFIRM.value:
            entry = aggregator.credit(
                db,
                transition.credited_user_id,
                transition.id,
                post_id=transition.post_id,
                comment_id=transition.comment_id,
            )
        elif transition.reverses_transition_id is not None:
            entry = aggregator.debit(
                db,
                transition.credited_user_id,
                transition.reverses_transition_id,
                post_id=transition.post_id,
                comment_id=transition.comment_id,
            )
        if entry is not None:
            applied += 1
            # Later transitions check for this key
            db.flush()

    if applied:
        logger.info(f"Karma replay created {applied} missing ledger entries")
    return applied
