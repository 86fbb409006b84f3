"""Karma ledger: exactly-once application, clamping and replay."""

from __future__ import annotations

import logging
import uuid

import pytest

from app import models
from app.services import reputation
from app.services.reputation import ReputationAggregator
from app.verification import NotFound


def test_credit_is_applied_once_per_key(db, commenter):
    aggregator = ReputationAggregator()

    first = aggregator.credit(db, commenter.id, transition_id=41)
    db.commit()
    second = aggregator.credit(db, commenter.id, transition_id=41)
    db.commit()

    assert first is not None
    assert second is None
    assert reputation.get_karma(db, commenter.id) == 1
    assert db.query(models.KarmaLedgerEntry).count() == 1


def test_debit_below_zero_clamps_and_warns(db, commenter, caplog):
    aggregator = ReputationAggregator()

    with caplog.at_level(logging.WARNING, logger="app.services.reputation"):
        aggregator.debit(db, commenter.id, confirm_transition_id=7)
        db.commit()

    assert reputation.get_karma(db, commenter.id) == 0
    assert "clamping to 0" in caplog.text


def test_get_karma_unknown_user(db):
    with pytest.raises(NotFound):
        reputation.get_karma(db, uuid.uuid4())


def test_replay_rebuilds_missing_ledger_entries(
    db, engine, post, comment, owner, moderator, commenter
):
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)

    # Simulate a lost ledger write
    db.query(models.KarmaLedgerEntry).delete()
    db.query(models.User).filter(models.User.id == commenter.id).update({"karma": 0})
    db.commit()

    created = reputation.replay_transitions(db)
    reputation.recompute_karma(db, commenter.id)
    db.commit()

    assert created == 1
    assert reputation.get_karma(db, commenter.id) == 1
    assert reputation.replay_transitions(db) == 0


def test_replay_pairs_confirm_and_reopen(db, engine, post, comment, owner, moderator, commenter):
    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)
    engine.moderator_reopen(db, post.id, moderator.id)
    db.query(models.KarmaLedgerEntry).delete()
    db.commit()

    assert reputation.replay_transitions(db) == 2
    db.commit()

    assert reputation.recompute_karma(db, commenter.id) == 0


def test_recompute_karma_logs_mismatch_with_identified_comments(
    db, engine, post, comment, moderator, commenter, caplog
):
    engine.moderator_confirm(db, post.id, moderator.id, comment_id=comment.id)
    db.query(models.KarmaLedgerEntry).delete()
    db.commit()

    with caplog.at_level(logging.WARNING, logger="app.services.reputation"):
        karma = reputation.recompute_karma(db, commenter.id)

    assert karma == 0
    assert reputation.count_identified_comments(db, commenter.id) == 1
    assert "comments are identified" in caplog.text


def test_karma_equals_identified_comments_across_posts(
    db, engine, make_post, make_comment, owner, moderator, commenter
):
    posts = [make_post(owner) for _ in range(3)]
    comments = [make_comment(p, commenter) for p in posts]
    for p, c in zip(posts, comments):
        engine.community_verify(db, p.id, c.id, owner.id)
        engine.moderator_confirm(db, p.id, moderator.id)
    engine.moderator_reopen(db, posts[1].id, moderator.id)

    assert reputation.get_karma(db, commenter.id) == 2
    assert reputation.count_identified_comments(db, commenter.id) == 2
    history = reputation.get_history(db, commenter.id)
    assert [h.delta for h in history] == [-1, 1, 1, 1]


def test_reconcile_task_restores_lost_ledger(db, engine, post, comment, owner, moderator, commenter):
    from app.tasks import reconcile_karma

    engine.community_verify(db, post.id, comment.id, owner.id)
    engine.moderator_confirm(db, post.id, moderator.id)
    db.query(models.KarmaLedgerEntry).delete()
    db.query(models.User).filter(models.User.id == commenter.id).update({"karma": 0})
    db.commit()

    result = reconcile_karma.apply().get()

    assert result == {"status": "success", "created": 1, "users": 1}
    db.expire_all()
    assert reputation.get_karma(db, commenter.id) == 1
