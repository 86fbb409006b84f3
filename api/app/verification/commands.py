"""Typed commands accepted by the verification engine.

One variant per transition, discriminated by ``kind``. Routers build these from
request payloads so the engine only ever sees validated input.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True)

    acting_user_id: UUID


class PostCommand(_Command):
    post_id: UUID
    # Optional client idempotency key, scoped to the post and transition type
    transition_id: str | None = Field(None, min_length=1, max_length=100)


class CommunityVerify(PostCommand):
    kind: Literal["community_verify"] = "community_verify"
    comment_id: UUID


class ModeratorConfirm(PostCommand):
    kind: Literal["moderator_confirm"] = "moderator_confirm"
    comment_id: UUID | None = None


class ModeratorReopen(PostCommand):
    kind: Literal["moderator_reopen"] = "moderator_reopen"


class ModeratorReject(PostCommand):
    kind: Literal["moderator_reject"] = "moderator_reject"


class ArtistConfirm(_Command):
    kind: Literal["artist_confirm"] = "artist_confirm"
    comment_id: UUID


class ArtistDeny(_Command):
    kind: Literal["artist_deny"] = "artist_deny"
    comment_id: UUID


class RemovePost(PostCommand):
    kind: Literal["remove_post"] = "remove_post"


VerificationCommand = Annotated[
    Union[
        CommunityVerify,
        ModeratorConfirm,
        ModeratorReopen,
        ModeratorReject,
        ArtistConfirm,
        ArtistDeny,
        RemovePost,
    ],
    Field(discriminator="kind"),
]
