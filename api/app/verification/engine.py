"""
Verification Engine.

Applies identification transitions to posts and artist-tag decisions to
comments. Each command runs in one database transaction together with its
transition log row, karma ledger entries and notification records. Writes to a
post are conditioned on the version read with it, so when two moderators (or
an owner and a moderator) race on the same post the first commit wins and the
other request fails with InvalidState.

Real-time delivery (Redis counters, MQTT) happens only after commit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import models
from ..services.notifications import NotificationDispatcher
from ..services.reputation import ReputationAggregator
from .commands import (
    ArtistConfirm,
    ArtistDeny,
    CommunityVerify,
    ModeratorConfirm,
    ModeratorReject,
    ModeratorReopen,
    PostCommand,
    RemovePost,
    VerificationCommand,
)
from .errors import Conflict, Forbidden, InvalidState, NotFound, VerificationError
from .states import TagStatus, TransitionType, VerificationStatus, target_status

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class VerificationEngine:
    """Single writer of post verification state and comment tag state."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher | None = None,
        reputation: ReputationAggregator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.reputation = reputation or ReputationAggregator()
        self.clock = clock

    def execute(self, db: Session, command: VerificationCommand):
        """
        Apply a command and return the resulting entity.

        Returns the Post for post transitions, the Comment for artist
        decisions and None for RemovePost. Raises a VerificationError subclass
        after rolling the session back.
        """
        handlers = {
            "community_verify": self._community_verify,
            "moderator_confirm": self._moderator_confirm,
            "moderator_reopen": self._moderator_reopen,
            "moderator_reject": self._moderator_reject,
            "artist_confirm": self._artist_confirm,
            "artist_deny": self._artist_deny,
            "remove_post": self._remove_post,
        }
        handler = handlers[command.kind]
        try:
            return handler(db, command)
        except VerificationError:
            db.rollback()
            raise

    # =========================================================================
    # Convenience entry points
    # =========================================================================

    def community_verify(
        self,
        db: Session,
        post_id: UUID,
        comment_id: UUID,
        acting_user_id: UUID,
        transition_id: str | None = None,
    ) -> models.Post:
        return self.execute(
            db,
            CommunityVerify(
                post_id=post_id,
                comment_id=comment_id,
                acting_user_id=acting_user_id,
                transition_id=transition_id,
            ),
        )

    def moderator_confirm(
        self,
        db: Session,
        post_id: UUID,
        acting_user_id: UUID,
        comment_id: UUID | None = None,
        transition_id: str | None = None,
    ) -> models.Post:
        return self.execute(
            db,
            ModeratorConfirm(
                post_id=post_id,
                comment_id=comment_id,
                acting_user_id=acting_user_id,
                transition_id=transition_id,
            ),
        )

    def moderator_reopen(
        self,
        db: Session,
        post_id: UUID,
        acting_user_id: UUID,
        transition_id: str | None = None,
    ) -> models.Post:
        return self.execute(
            db,
            ModeratorReopen(
                post_id=post_id, acting_user_id=acting_user_id, transition_id=transition_id
            ),
        )

    def moderator_reject(
        self,
        db: Session,
        post_id: UUID,
        acting_user_id: UUID,
        transition_id: str | None = None,
    ) -> models.Post:
        return self.execute(
            db,
            ModeratorReject(
                post_id=post_id, acting_user_id=acting_user_id, transition_id=transition_id
            ),
        )

    def artist_confirm(self, db: Session, comment_id: UUID, acting_user_id: UUID) -> models.Comment:
        return self.execute(
            db, ArtistConfirm(comment_id=comment_id, acting_user_id=acting_user_id)
        )

    def artist_deny(self, db: Session, comment_id: UUID, acting_user_id: UUID) -> models.Comment:
        return self.execute(db, ArtistDeny(comment_id=comment_id, acting_user_id=acting_user_id))

    def remove_post(
        self,
        db: Session,
        post_id: UUID,
        acting_user_id: UUID,
        transition_id: str | None = None,
    ) -> None:
        self.execute(
            db,
            RemovePost(post_id=post_id, acting_user_id=acting_user_id, transition_id=transition_id),
        )

    # =========================================================================
    # Post transitions
    # =========================================================================

    def _community_verify(self, db: Session, command: CommunityVerify) -> models.Post:
        post = self._load_post(db, command.post_id)
        if post.user_id != command.acting_user_id:
            raise Forbidden("Only the post owner can select the identifying comment")
        self._check_replay(db, command, TransitionType.COMMUNITY_VERIFY)

        # Re-submitting the current selection
        if (
            post.verification_status == VerificationStatus.COMMUNITY.value
            and post.verified_comment_id == command.comment_id
        ):
            return post

        from_status = post.verification_status
        to_status = target_status(TransitionType.COMMUNITY_VERIFY, from_status)
        comment = self._load_comment_on(db, post, command.comment_id)

        self._set_status(post, to_status, comment.id)
        transition = self._record(
            db,
            post,
            TransitionType.COMMUNITY_VERIFY,
            from_status,
            to_status,
            command,
            comment_id=comment.id,
        )
        self._persist(db, db.flush, command, TransitionType.COMMUNITY_VERIFY)

        moderator_ids = [
            user_id
            for (user_id,) in db.query(models.User.id).filter(
                models.User.account_type == "moderator"
            )
        ]
        staged = self.dispatcher.stage(
            db,
            "community_identified",
            moderator_ids,
            actor_id=command.acting_user_id,
            post_id=post.id,
            transition_ref=str(transition.id),
            comment=comment,
            created_at=transition.created_at,
        )
        self._commit_and_broadcast(db, staged, command, TransitionType.COMMUNITY_VERIFY)
        self._log_transition(post, transition)

        self.dispatcher.announce_queue_event(
            "new_review_submission", post.id, transition.id, transition.created_at
        )
        return post

    def _moderator_confirm(self, db: Session, command: ModeratorConfirm) -> models.Post:
        self._require_moderator(db, command.acting_user_id)
        post = self._load_post(db, command.post_id)
        self._check_replay(db, command, TransitionType.MODERATOR_CONFIRM)

        if post.verification_status == VerificationStatus.IDENTIFIED.value and (
            command.comment_id is None or command.comment_id == post.verified_comment_id
        ):
            return post

        from_status = post.verification_status
        to_status = target_status(TransitionType.MODERATOR_CONFIRM, from_status)

        comment_id = command.comment_id or post.verified_comment_id
        if comment_id is None:
            raise InvalidState("No comment is selected; supply comment_id to confirm this post")
        comment = self._load_comment_on(db, post, comment_id)

        self._set_status(post, to_status, comment.id)
        transition = self._record(
            db,
            post,
            TransitionType.MODERATOR_CONFIRM,
            from_status,
            to_status,
            command,
            comment_id=comment.id,
            credited_user_id=comment.user_id,
        )
        self._persist(db, db.flush, command, TransitionType.MODERATOR_CONFIRM)

        self.reputation.credit(
            db, comment.user_id, transition.id, post_id=post.id, comment_id=comment.id
        )
        staged = self.dispatcher.stage(
            db,
            "moderator_confirmed",
            [post.user_id, comment.user_id],
            actor_id=command.acting_user_id,
            post_id=post.id,
            transition_ref=str(transition.id),
            comment=comment,
            created_at=transition.created_at,
        )
        self._commit_and_broadcast(db, staged, command, TransitionType.MODERATOR_CONFIRM)
        self._log_transition(post, transition)

        if from_status == VerificationStatus.COMMUNITY.value:
            self.dispatcher.announce_queue_event(
                "review_resolved", post.id, transition.id, transition.created_at
            )
        return post

    def _moderator_reopen(self, db: Session, command: ModeratorReopen) -> models.Post:
        self._require_moderator(db, command.acting_user_id)
        post = self._load_post(db, command.post_id)
        self._check_replay(db, command, TransitionType.MODERATOR_REOPEN)

        from_status = post.verification_status
        to_status = target_status(TransitionType.MODERATOR_REOPEN, from_status)
        previous = post.verified_comment
        confirm = None
        if from_status == VerificationStatus.IDENTIFIED.value:
            confirm = self._confirming_transition(db, post)

        self._set_status(post, to_status, None)
        transition = self._record(
            db,
            post,
            TransitionType.MODERATOR_REOPEN,
            from_status,
            to_status,
            command,
            comment_id=previous.id if previous is not None else None,
            credited_user_id=confirm.credited_user_id if confirm is not None else None,
            reverses_transition_id=confirm.id if confirm is not None else None,
        )
        self._persist(db, db.flush, command, TransitionType.MODERATOR_REOPEN)

        self._reverse_credit(db, confirm)
        staged = self.dispatcher.stage(
            db,
            "moderator_reopened",
            [post.user_id, previous.user_id if previous is not None else None],
            actor_id=command.acting_user_id,
            post_id=post.id,
            transition_ref=str(transition.id),
            comment=previous,
            created_at=transition.created_at,
        )
        self._commit_and_broadcast(db, staged, command, TransitionType.MODERATOR_REOPEN)
        self._log_transition(post, transition)

        if from_status == VerificationStatus.COMMUNITY.value:
            self.dispatcher.announce_queue_event(
                "review_withdrawn", post.id, transition.id, transition.created_at
            )
        return post

    def _moderator_reject(self, db: Session, command: ModeratorReject) -> models.Post:
        self._require_moderator(db, command.acting_user_id)
        post = self._load_post(db, command.post_id)
        self._check_replay(db, command, TransitionType.MODERATOR_REJECT)

        from_status = post.verification_status
        to_status = target_status(TransitionType.MODERATOR_REJECT, from_status)

        self._set_status(post, to_status, None)
        transition = self._record(
            db, post, TransitionType.MODERATOR_REJECT, from_status, to_status, command
        )
        self._persist(db, db.flush, command, TransitionType.MODERATOR_REJECT)

        staged = self.dispatcher.stage(
            db,
            "moderator_rejected",
            [post.user_id],
            actor_id=command.acting_user_id,
            post_id=post.id,
            transition_ref=str(transition.id),
            created_at=transition.created_at,
        )
        self._commit_and_broadcast(db, staged, command, TransitionType.MODERATOR_REJECT)
        self._log_transition(post, transition)
        return post

    def _remove_post(self, db: Session, command: RemovePost) -> None:
        actor = db.get(models.User, command.acting_user_id)
        post = self._load_post(db, command.post_id)
        if actor is None or (post.user_id != actor.id and not actor.is_moderator):
            raise Forbidden("Only the post owner or a moderator can remove this post")
        self._check_replay(db, command, TransitionType.REMOVE_POST)

        # Claim the post version before any ledger write
        post.updated_at = self.clock()
        self._persist(db, db.flush, command, TransitionType.REMOVE_POST)

        from_status = post.verification_status
        confirm = None
        if from_status == VerificationStatus.IDENTIFIED.value:
            confirm = self._confirming_transition(db, post)

        transition = self._record(
            db,
            post,
            TransitionType.REMOVE_POST,
            from_status,
            None,
            command,
            comment_id=post.verified_comment_id,
            credited_user_id=confirm.credited_user_id if confirm is not None else None,
            reverses_transition_id=confirm.id if confirm is not None else None,
        )
        self._persist(db, db.flush, command, TransitionType.REMOVE_POST)

        self._reverse_credit(db, confirm, reason="Identified post removed")
        post_id = post.id
        db.delete(post)
        self._persist(db, db.commit, command, TransitionType.REMOVE_POST)
        logger.info(
            f"Post {post_id} removed by {command.acting_user_id} "
            f"(was {from_status}, transition {transition.id})"
        )

        if from_status == VerificationStatus.COMMUNITY.value:
            self.dispatcher.announce_queue_event("review_withdrawn", post_id, transition.id)
        return None

    # =========================================================================
    # Artist tag decisions
    # =========================================================================

    def _artist_confirm(self, db: Session, command: ArtistConfirm) -> models.Comment:
        return self._artist_decision(
            db, command.comment_id, command.acting_user_id, TagStatus.CONFIRMED
        )

    def _artist_deny(self, db: Session, command: ArtistDeny) -> models.Comment:
        return self._artist_decision(
            db, command.comment_id, command.acting_user_id, TagStatus.DENIED
        )

    def _artist_decision(
        self, db: Session, comment_id: UUID, acting_user_id: UUID, decision: TagStatus
    ) -> models.Comment:
        comment = db.get(models.Comment, comment_id)
        if comment is None:
            raise NotFound("Comment not found")
        if comment.tagged_artist_id is None or comment.tagged_artist_id != acting_user_id:
            raise Forbidden("Only the tagged artist can respond to this tag")
        artist = db.get(models.User, acting_user_id)
        if artist is None or not artist.is_verified_artist:
            raise Forbidden("A verified artist account is required")

        if comment.tag_status == decision.value:
            return comment
        if comment.tag_status != TagStatus.PENDING.value:
            raise InvalidState(f"Artist tag is already {comment.tag_status}")

        comment.tag_status = decision.value
        self._persist(db, db.flush)

        notification_type = (
            "artist_confirmed" if decision is TagStatus.CONFIRMED else "artist_denied"
        )
        staged = self.dispatcher.stage(
            db,
            notification_type,
            [comment.user_id],
            actor_id=acting_user_id,
            post_id=comment.post_id,
            transition_ref=f"tag-{comment.id}",
            comment=comment,
            created_at=self.clock(),
        )
        self._commit_and_broadcast(db, staged)
        logger.info(f"Artist {acting_user_id} {decision.value} tag on comment {comment.id}")
        return comment

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load_post(self, db: Session, post_id: UUID) -> models.Post:
        post = db.get(models.Post, post_id)
        if post is None:
            raise NotFound("Post not found")
        return post

    def _load_comment_on(self, db: Session, post: models.Post, comment_id: UUID) -> models.Comment:
        comment = db.get(models.Comment, comment_id)
        if comment is None or comment.post_id != post.id:
            raise NotFound("Comment not found on this post")
        return comment

    def _require_moderator(self, db: Session, user_id: UUID) -> models.User:
        user = db.get(models.User, user_id)
        if user is None or not user.is_moderator:
            raise Forbidden("Moderator role required")
        return user

    def _check_replay(
        self, db: Session, command: PostCommand, transition_type: TransitionType
    ) -> None:
        """Raise Conflict if this post already recorded the command's key for this transition."""
        if command.transition_id is None:
            return
        seen = (
            db.query(models.VerificationTransition)
            .filter(
                models.VerificationTransition.post_id == command.post_id,
                models.VerificationTransition.transition_type == transition_type.value,
                models.VerificationTransition.idempotency_key == command.transition_id,
            )
            .first()
        )
        if seen is not None:
            raise Conflict(
                f"Transition {command.transition_id} was already applied",
                result=db.get(models.Post, seen.post_id),
            )

    def _set_status(
        self, post: models.Post, status: VerificationStatus, comment_id: UUID | None
    ) -> None:
        # Status and selection always change together
        post.verification_status = status.value
        post.verified_comment_id = comment_id
        post.updated_at = self.clock()

    def _record(
        self,
        db: Session,
        post: models.Post,
        transition_type: TransitionType,
        from_status: str,
        to_status: VerificationStatus | None,
        command,
        comment_id: UUID | None = None,
        credited_user_id: UUID | None = None,
        reverses_transition_id: int | None = None,
    ) -> models.VerificationTransition:
        transition = models.VerificationTransition(
            post_id=post.id,
            transition_type=transition_type.value,
            from_status=from_status,
            to_status=to_status.value if to_status is not None else None,
            comment_id=comment_id,
            credited_user_id=credited_user_id,
            actor_id=command.acting_user_id,
            reverses_transition_id=reverses_transition_id,
            idempotency_key=command.transition_id,
            created_at=self.clock(),
        )
        db.add(transition)
        return transition

    def _confirming_transition(
        self, db: Session, post: models.Post
    ) -> models.VerificationTransition | None:
        """The moderator_confirm that produced the post's current identified state."""
        confirm = (
            db.query(models.VerificationTransition)
            .filter(
                models.VerificationTransition.post_id == post.id,
                models.VerificationTransition.transition_type
                == TransitionType.MODERATOR_CONFIRM.value,
            )
            .order_by(models.VerificationTransition.id.desc())
            .first()
        )
        if confirm is None:
            logger.warning(
                f"Identified post {post.id} has no confirm transition; no karma to reverse"
            )
        return confirm

    def _reverse_credit(
        self,
        db: Session,
        confirm: models.VerificationTransition | None,
        reason: str = "Confirmed track ID reopened",
    ) -> None:
        if confirm is None or confirm.credited_user_id is None:
            return
        self.reputation.debit(
            db,
            confirm.credited_user_id,
            confirm.id,
            post_id=confirm.post_id,
            comment_id=confirm.comment_id,
            reason=reason,
        )

    def _persist(
        self,
        db: Session,
        step: Callable[[], None],
        command: PostCommand | None = None,
        transition_type: TransitionType | None = None,
    ) -> None:
        """Run flush or commit, translating lost races and key collisions."""
        try:
            step()
        except StaleDataError:
            db.rollback()
            logger.warning("Lost race: record was modified concurrently, transition rejected")
            raise InvalidState("Modified concurrently; reload and retry") from None
        except IntegrityError:
            db.rollback()
            if command is not None:
                # Same idempotency key committed by a concurrent request
                self._check_replay(db, command, transition_type)
            raise

    def _commit_and_broadcast(
        self,
        db: Session,
        staged: list[models.Notification],
        command: PostCommand | None = None,
        transition_type: TransitionType | None = None,
    ) -> None:
        payloads = self.dispatcher.outbox(staged)
        self._persist(db, db.commit, command, transition_type)
        self.dispatcher.broadcast(payloads)

    def _log_transition(self, post: models.Post, transition: models.VerificationTransition) -> None:
        logger.info(
            f"Post {post.id}: {transition.from_status} -> {transition.to_status} "
            f"({transition.transition_type} #{transition.id} by {transition.actor_id})"
        )


@lru_cache(maxsize=1)
def default_engine() -> VerificationEngine:
    return VerificationEngine()
