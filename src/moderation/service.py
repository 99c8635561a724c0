"""Wiring for the moderation core."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from moderation.batch import BatchCoordinator
from moderation.claims import ClaimResolver
from moderation.repository import ModerationRepository
from moderation.reviews import ReviewModerator


@dataclass(slots=True)
class ModerationServices:
    repository: ModerationRepository
    claims: ClaimResolver
    reviews: ReviewModerator
    batch: BatchCoordinator


def get_moderation_services(
    repository: ModerationRepository | None = None,
    *,
    admin_ids: Iterable[int] | None = None,
) -> ModerationServices:
    """Build resolvers sharing one Entity Store."""
    repository = repository or ModerationRepository()
    admin_ids = None if admin_ids is None else set(admin_ids)
    claims = ClaimResolver(repository=repository, admin_ids=admin_ids)
    reviews = ReviewModerator(repository=repository, admin_ids=admin_ids)
    return ModerationServices(
        repository=repository,
        claims=claims,
        reviews=reviews,
        batch=BatchCoordinator(claims, reviews),
    )
