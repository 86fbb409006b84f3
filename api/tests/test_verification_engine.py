"""Verification state machine: transitions, guards, idempotence and races."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy.orm import Session

from app import models
from app.db import SessionLocal
from app.services.reputation import get_karma
from app.verification import (
    Conflict,
    Forbidden,
    InvalidState,
    ModeratorConfirm,
    NotFound,
)


def assert_selection_consistent(db: Session, post_id) -> models.Post:
    """verified_comment_id is set exactly when the post is community or identified."""
    db.expire_all()
    post = db.get(models.Post, post_id)
    selected = post.verified_comment_id is not None
    assert selected == (post.verification_status in ("community", "identified"))
    identified = [c for c in post.comments if c.is_identified]
    if post.verification_status == "identified":
        assert [c.id for c in identified] == [post.verified_comment_id]
    else:
        assert identified == []
    return post


def transition_types(db: Session, post_id) -> list[str]:
    return [
        t.transition_type
        for t in db.query(models.VerificationTransition)
        .filter(models.VerificationTransition.post_id == post_id)
        .order_by(models.VerificationTransition.id)
    ]


# ============================================================================
# COMMUNITY VERIFY
# ============================================================================


def test_owner_selection_moves_post_to_community(db, engine, post, comment, owner):
    result = engine.community_verify(db, post.id, comment.id, owner.id)

    assert result.verification_status == "community"
    assert result.verified_comment_id == comment.id
    assert result.updated_at is not None
    assert transition_types(db, post.id) == ["community_verify"]
    assert_selection_consistent(db, post.id)


def test_non_owner_cannot_select(db, engine, post, comment, commenter):
    with pytest.raises(Forbidden):
        engine.community_verify(db, post.id, comment.id, commenter.id)

    stored = assert_selection_consistent(db, post.id)
    assert stored.verification_status == "unverified"
    assert transition_types(db, post.id) == []


def test_selection_of_comment_on_other_post_is_not_found(
    db, engine, post, make_post, make_comment, owner, commenter
):
    elsewhere = make_comment(make_post(owner), commenter)

    with pytest.raises(NotFound):
        engine.community_verify(db, post.id, elsewhere.id, owner.id)
    assert assert_selection_consistent(db, post.id).verification_status == "unverified"


def test_selection_on_missing_post_is_not_found(db, engine, comment, owner):
    with pytest.raises(NotFound):
        engine.community_verify(db, uuid.uuid4(), comment.id, owner.id)


def test_reselecting_same_comment_is_noop(db, engine, post, comment, owner):
    engine.community_verify(db, post.id, comment.id, owner.id)
    version = db.get(models.Post, post.id).version

    result = engine.community_verify(db, post.id, comment.id, owner.id)

    assert result.verification_status == "community"
    assert result.version == version
    assert transition_types(db, post.id) == ["community_verify"]


def test_selecting_different_comment_while_in_community_is_invalid(
    db, engine, post, comment, make_comment, owner, commenter
):
    other = make_comment(post, commenter, "No, it's a Burial edit")
    engine.community_verify(db, post.id, comment.id, owner.id)

    with pytest.raises(InvalidState):
        engine.community_verify(db, post.id, other.id, owner.id)

    assert assert_selection_consistent(db, post.id).verified_comment_id == comment.id


def test_transition_id_replay_raises_conflict_with_current_post(db, engine, post, comment, owner):
    engine.community_verify(db, post.id, comment.id, owner.id, transition_id="client-key-1")

    with pytest.raises(Conflict) as exc_info:
        engine.community_verify(db, post.id, comment.id, owner.id, transition_id="client-key-1")

    assert exc_info.value.result.id == post.id
    assert exc_info.value.result.verification_status == "community"
    assert transition_types(db, post.id) == ["community_verify"]


def test_transition_id_is_scoped_to_post_and_transition_type(
    db, engine, make_post, make_comment, owner, moderator, commenter
):
    first = make_post(owner)
    second = make_post(owner)
    guess = make_comment(first, commenter)

    engine.community_verify(db, first.id, guess.id, owner.id, transition_id="1")
    rejected = engine.moderator_reject(db, second.id, moderator.id, transition_id="1")
    confirmed = engine.moderator_confirm(db, first.id, moderator.id, transition_id="1")

    assert rejected.id == second.id
    assert rejected.verification_status == "rejected"
    assert confirmed.verification_status == "identified"
    assert transition_types(db, first.id) == ["community_verify", "moderator_confirm"]

    with pytest.raises(Conflict) as exc_info:
        engine.moderator_reject(db, second.id, moderator.id, transition_id="1")
    assert exc_info.value.result.id == second.id


# ============================================================================
# MODERATOR CONFIRM
# ============================================================================


def test_confirm_community_selection(db, engine, post, comment, owner, moderator, commenter):
    engine.community_verify(db, post.id, comment.id, owner.id)

    result = engine.moderator_confirm(db, post.id, moderator.id)

    assert result.verification_status == "identified"
    assert result.verified_comment_id == comment.id
    stored = assert_selection_consistent(db, post.id)
    assert stored.verified_comment.is_identified
    assert get_karma(db, commenter.id) == 1


def test_confirm_with_comment_overrides_selection(
    db, engine, post, comment, make_comment, make_user, owner, moderator, commenter
):
    other_author = make_user("crate_digger")
    other = make_comment(post, other_author, "It's the Chemical Brothers remix")
    engine.community_verify(db, post.id, comment.id, owner.id)

    result = engine.moderator_confirm(db, post.id, moderator.id, comment_id=other.id)

    assert result.verified_comment_id == other.id
    assert get_karma(db, other_author.id) == 1
    assert get_karma(db, commenter.id) == 0
    assert_selection_consistent(db, post.id)


def test_confirm_unverified_post_with_explicit_comment(db, engine, post, comment, moderator):
    result = engine.moderator_confirm(db, post.id, moderator.id, comment_id=comment.id)

    assert result.verification_status == "identified"
    assert transition_types(db, post.id) == ["moderator_confirm"]


def test_confirm_unverified_post_without_selection_is_invalid(db, engine, post, comment, moderator):
    with pytest.raises(InvalidState):
        engine.moderator_confirm(db, post.id, moderator.id)

    assert assert_selection_consistent(db, post.id).verification_status == "unverified"


def test_non_moderator_cannot_confirm(db, engine, post, comment, owner):
    engine.community_verify(db, post.id, comment.id, owner.id)

    with pytest.raises(Forbidden):
        engine.moderator_confirm(db, post.id, owner.id)

    assert assert_selection_consistent(db, post.id).verification_status == "community"


def test_confirming_twice_is_idempotent(db, engine, post, comment, owner, moderator, commenter):
    engine.community_verify(db, post.id, comment.id, owner.id)
    first = engine.moderator_confirm(db, post.id, moderator.id)
    first_state = (first.verification_status, first.verified_comment_id, first.version)

    second = engine.moderator_confirm(db, post.id, moderator.id)
    third = engine.moderator_confirm(db, post.id, moderator.id, comment_id=comment.id)

    for result in (second, third):
        assert (result.verification_status, result.verified_comment_id, result.version) == first_state
    assert get_karma(db, commenter.id) == 1
    assert transition_types(db, post.id) == ["community_verify", "moderator_confirm"]
    assert db.query(models.KarmaLedgerEntry).count() == 1


def test_confirming_identified_post_with_other_comment_is_invalid(
    db, engine, post, comment, make_comment, commenter, owner, moderator
):
    other = make_comment(post, commenter, "second guess")
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)

    with pytest.raises(InvalidState):
        engine.moderator_confirm(db, post.id, moderator.id, comment_id=other.id)

    assert assert_selection_consistent(db, post.id).verified_comment_id == comment.id


def test_execute_accepts_tagged_command(db, engine, post, comment, moderator):
    command = ModeratorConfirm(post_id=post.id, comment_id=comment.id, acting_user_id=moderator.id)

    result = engine.execute(db, command)

    assert result.verification_status == "identified"


# ============================================================================
# MODERATOR REOPEN / REJECT
# ============================================================================


def test_reopen_identified_post_reverses_karma(
    db, engine, post, comment, owner, moderator, commenter
):
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)

    result = engine.moderator_reopen(db, post.id, moderator.id)

    assert result.verification_status == "unverified"
    assert result.verified_comment_id is None
    assert get_karma(db, commenter.id) == 0
    assert_selection_consistent(db, post.id)

    keys = sorted(e.entry_key for e in db.query(models.KarmaLedgerEntry))
    confirm = (
        db.query(models.VerificationTransition)
        .filter_by(post_id=post.id, transition_type="moderator_confirm")
        .one()
    )
    assert keys == [f"confirm:{confirm.id}", f"reverse:{confirm.id}"]
    reopen = (
        db.query(models.VerificationTransition)
        .filter_by(post_id=post.id, transition_type="moderator_reopen")
        .one()
    )
    assert reopen.reverses_transition_id == confirm.id
    assert reopen.credited_user_id == commenter.id


def test_reopen_community_post_clears_selection_without_karma(
    db, engine, post, comment, owner, moderator, commenter
):
    engine.community_verify(db, post.id, comment.id, owner.id)

    engine.moderator_reopen(db, post.id, moderator.id)

    stored = assert_selection_consistent(db, post.id)
    assert stored.verification_status == "unverified"
    assert db.query(models.KarmaLedgerEntry).count() == 0


def test_reopen_unverified_post_is_invalid(db, engine, post, moderator):
    with pytest.raises(InvalidState):
        engine.moderator_reopen(db, post.id, moderator.id)


def test_confirm_reopen_cycles_keep_karma_paired(
    db, engine, post, comment, owner, moderator, commenter
):
    for _ in range(3):
        engine.community_verify(db, post.id, comment.id, owner.id)
        engine.moderator_confirm(db, post.id, moderator.id)
        assert get_karma(db, commenter.id) == 1
        engine.moderator_reopen(db, post.id, moderator.id)
        assert get_karma(db, commenter.id) == 0

    assert db.query(models.KarmaLedgerEntry).count() == 6


def test_reject_and_reopen(db, engine, post, moderator):
    rejected = engine.moderator_reject(db, post.id, moderator.id)
    assert rejected.verification_status == "rejected"
    assert_selection_consistent(db, post.id)

    reopened = engine.moderator_reopen(db, post.id, moderator.id)
    assert reopened.verification_status == "unverified"


def test_reject_community_post_is_invalid(db, engine, post, comment, owner, moderator):
    engine.community_verify(db, post.id, comment.id, owner.id)

    with pytest.raises(InvalidState):
        engine.moderator_reject(db, post.id, moderator.id)


def test_owner_cannot_select_on_rejected_post(db, engine, post, comment, owner, moderator):
    engine.moderator_reject(db, post.id, moderator.id)

    with pytest.raises(InvalidState):
        engine.community_verify(db, post.id, comment.id, owner.id)


# ============================================================================
# REMOVE POST
# ============================================================================


def test_removing_identified_post_reverses_karma_and_deletes_everything(
    db, engine, post, comment, make_comment, owner, moderator, commenter
):
    make_comment(post, owner, "thanks!", parent=comment)
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)

    engine.remove_post(db, post.id, moderator.id)

    db.expire_all()
    assert db.get(models.Post, post.id) is None
    assert db.query(models.Comment).filter_by(post_id=post.id).count() == 0
    assert db.query(models.Notification).filter_by(post_id=post.id).count() == 0
    assert get_karma(db, commenter.id) == 0
    assert transition_types(db, post.id)[-1] == "remove_post"


def test_owner_can_remove_own_post(db, engine, post, owner):
    engine.remove_post(db, post.id, owner.id)

    db.expire_all()
    assert db.get(models.Post, post.id) is None


def test_other_user_cannot_remove_post(db, engine, post, commenter):
    with pytest.raises(Forbidden):
        engine.remove_post(db, post.id, commenter.id)

    db.expire_all()
    assert db.get(models.Post, post.id) is not None


# ============================================================================
# RACES
# ============================================================================


def test_racing_selections_first_commit_wins(db, engine, post, make_comment, owner, commenter):
    first = make_comment(post, commenter, "first guess")
    second = make_comment(post, commenter, "second guess")

    session_a = SessionLocal()
    session_b = SessionLocal()
    try:
        # B reads the post before A commits
        stale = session_b.get(models.Post, post.id)
        assert stale.verification_status == "unverified"

        engine.community_verify(session_a, post.id, first.id, owner.id)
        with pytest.raises(InvalidState):
            engine.community_verify(session_b, post.id, second.id, owner.id)
    finally:
        session_a.close()
        session_b.close()

    stored = assert_selection_consistent(db, post.id)
    assert stored.verification_status == "community"
    assert stored.verified_comment_id == first.id
    assert transition_types(db, post.id) == ["community_verify"]


def test_racing_confirm_and_reopen_leave_consistent_state(
    db, engine, post, comment, owner, moderator, make_user, commenter
):
    other_moderator = make_user("mod_two", account_type="moderator")
    engine.community_verify(db, post.id, comment.id, owner.id)

    session_a = SessionLocal()
    session_b = SessionLocal()
    try:
        stale = session_b.get(models.Post, post.id)
        assert stale.verification_status == "community"

        engine.moderator_confirm(session_a, post.id, moderator.id)
        with pytest.raises(InvalidState):
            engine.moderator_reopen(session_b, post.id, other_moderator.id)
    finally:
        session_a.close()
        session_b.close()

    stored = assert_selection_consistent(db, post.id)
    assert stored.verification_status == "identified"
    assert get_karma(db, commenter.id) == 1


def test_remove_racing_reopen_fails_before_touching_karma(
    db, engine, post, comment, owner, moderator, commenter
):
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)

    session_a = SessionLocal()
    session_b = SessionLocal()
    try:
        stale = session_b.get(models.Post, post.id)
        assert stale.verification_status == "identified"

        engine.moderator_reopen(session_a, post.id, moderator.id)
        with pytest.raises(InvalidState):
            engine.remove_post(session_b, post.id, owner.id)
    finally:
        session_a.close()
        session_b.close()

    stored = assert_selection_consistent(db, post.id)
    assert stored.verification_status == "unverified"
    reversals = (
        db.query(models.KarmaLedgerEntry)
        .filter(models.KarmaLedgerEntry.entry_key.like("reverse:%"))
        .count()
    )
    assert reversals == 1
    assert get_karma(db, commenter.id) == 0
    assert transition_types(db, post.id)[-1] == "moderator_reopen"


# ============================================================================
# ARTIST TAGS
# ============================================================================


def test_artist_confirms_tag(db, engine, post, make_comment, commenter, artist):
    tagged = make_comment(post, commenter, "@DJ_Shadow - Organ Donor", tagged_artist=artist)

    result = engine.artist_confirm(db, tagged.id, artist.id)

    assert result.tag_status == "confirmed"
    db.expire_all()
    assert db.get(models.Post, post.id).verification_status == "unverified"


def test_artist_decision_repeat_is_noop_and_change_is_invalid(
    db, engine, post, make_comment, commenter, artist
):
    tagged = make_comment(post, commenter, "@DJ_Shadow", tagged_artist=artist)
    engine.artist_deny(db, tagged.id, artist.id)

    assert engine.artist_deny(db, tagged.id, artist.id).tag_status == "denied"
    with pytest.raises(InvalidState):
        engine.artist_confirm(db, tagged.id, artist.id)


def test_only_tagged_verified_artist_can_decide(
    db, engine, post, make_comment, make_user, commenter, artist
):
    impostor = make_user("other_artist", account_type="artist", verified_artist=True)
    tagged = make_comment(post, commenter, "@DJ_Shadow", tagged_artist=artist)

    with pytest.raises(Forbidden):
        engine.artist_confirm(db, tagged.id, impostor.id)

    unverified = make_user("pending_artist", account_type="artist", verified_artist=False)
    tagged_unverified = make_comment(post, commenter, "@pending_artist", tagged_artist=unverified)
    with pytest.raises(Forbidden):
        engine.artist_confirm(db, tagged_unverified.id, unverified.id)

    db.expire_all()
    assert db.get(models.Comment, tagged.id).tag_status == "pending"


def test_artist_decision_on_untagged_or_missing_comment(db, engine, comment, artist):
    with pytest.raises(Forbidden):
        engine.artist_confirm(db, comment.id, artist.id)
    with pytest.raises(NotFound):
        engine.artist_confirm(db, uuid.uuid4(), artist.id)


# ============================================================================
# END-TO-END SCENARIOS
# ============================================================================


def test_happy_path_scenario(db, engine, post, comment, owner, moderator, commenter):
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)

    stored = assert_selection_consistent(db, post.id)
    assert stored.verification_status == "identified"
    assert db.get(models.Comment, comment.id).is_identified
    assert get_karma(db, commenter.id) == 1


def test_reopen_scenario_returns_to_start(db, engine, post, comment, owner, moderator, commenter):
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)
    engine.moderator_reopen(db, post.id, moderator.id)

    stored = assert_selection_consistent(db, post.id)
    assert stored.verification_status == "unverified"
    assert stored.verified_comment_id is None
    assert not db.get(models.Comment, comment.id).is_identified
    assert get_karma(db, commenter.id) == 0
