"""
Comment ranking.

Orders a post's comments for display. The identified comment, when there is
one, is always first; the remaining top-level comments follow in the
requested order and each carries its replies in insertion order.
"""

from __future__ import annotations

from typing import Literal, NamedTuple

from .. import models

SortOrder = Literal["all", "newest", "top"]
SORT_ORDERS: tuple[SortOrder, ...] = ("all", "newest", "top")


class RankedComment(NamedTuple):
    comment: models.Comment
    replies: list[models.Comment]


def _insertion_key(comment: models.Comment):
    return (comment.created_at, str(comment.id))


def _order(comments: list[models.Comment], sort: SortOrder) -> list[models.Comment]:
    if sort not in SORT_ORDERS:
        raise ValueError(f"Unknown sort order: {sort}")
    by_insertion = sorted(comments, key=_insertion_key)
    if sort == "newest":
        return list(reversed(by_insertion))
    if sort == "top":
        # sorted() is stable, so equal scores keep insertion order
        return sorted(by_insertion, key=lambda c: c.vote_score, reverse=True)
    return by_insertion


def rank_comments(post: models.Post, sort: SortOrder = "all") -> list[RankedComment]:
    """
    Rank the post's comments for display.

    Args:
        post: Post whose comments (and their votes) are loaded or loadable
        sort: "all" (insertion order), "newest" or "top" (vote score)

    Returns:
        Top-level comments with their replies, identified comment first
    """
    comments = list(post.comments)

    pinned_id = None
    if post.verification_status == "identified":
        pinned_id = post.verified_comment_id

    # An identified reply is lifted out of its thread
    pinned = [c for c in comments if c.id == pinned_id]
    top_level = [c for c in comments if c.parent_id is None and c.id != pinned_id]

    replies: dict = {}
    for comment in sorted(comments, key=_insertion_key):
        if comment.parent_id is not None and comment.id != pinned_id:
            replies.setdefault(comment.parent_id, []).append(comment)

    ranked = pinned + _order(top_level, sort)
    return [RankedComment(c, replies.get(c.id, [])) for c in ranked]
