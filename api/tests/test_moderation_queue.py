from __future__ import annotations

from app.services.moderation_queue import list_pending_verifications, pending_count


def test_queue_lists_community_posts_oldest_selection_first(
    db, engine, make_post, make_comment, owner, commenter, moderator
):
    first, second, untouched = (make_post(owner) for _ in range(3))
    guesses = {p.id: make_comment(p, commenter) for p in (first, second, untouched)}

    engine.community_verify(db, second.id, guesses[second.id].id, owner.id)
    engine.community_verify(db, first.id, guesses[first.id].id, owner.id)

    queue = list_pending_verifications(db)

    assert [p.id for p in queue] == [second.id, first.id]
    assert queue[0].verified_comment.id == guesses[second.id].id
    assert queue[0].verified_comment.author.id == commenter.id
    assert pending_count(db) == 2


def test_confirm_and_reopen_are_visible_on_next_read(
    db, engine, make_post, make_comment, owner, commenter, moderator
):
    confirmed, reopened, waiting = (make_post(owner) for _ in range(3))
    for p in (confirmed, reopened, waiting):
        engine.community_verify(db, p.id, make_comment(p, commenter).id, owner.id)
    assert pending_count(db) == 3

    engine.moderator_confirm(db, confirmed.id, moderator.id)
    engine.moderator_reopen(db, reopened.id, moderator.id)

    assert [p.id for p in list_pending_verifications(db)] == [waiting.id]
    assert pending_count(db) == 1


def test_queue_paging(db, engine, make_post, make_comment, owner, commenter):
    posts = [make_post(owner) for _ in range(4)]
    for p in posts:
        engine.community_verify(db, p.id, make_comment(p, commenter).id, owner.id)

    page = list_pending_verifications(db, limit=2, offset=1)

    assert [p.id for p in page] == [posts[1].id, posts[2].id]
