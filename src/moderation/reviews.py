"""Review moderation: pending reviews become approved or rejected, once.

Only approved reviews count toward a business's rating; every change to the
approved set recomputes `rating_aggregate`/`rating_count` from scratch.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from config import CFG
from database import REVIEW_STATUSES
from moderation.errors import InvalidStateError, NotFoundError, ValidationError
from moderation.guards import CallerIdentity, require_admin
from moderation.models import Review
from moderation.repository import ModerationRepository
from moderation.requests import ReviewSubmission, normalize_admin_message

logger = logging.getLogger(__name__)


class ReviewModerator:
    def __init__(
        self,
        repository: ModerationRepository | None = None,
        admin_ids: Iterable[int] | None = None,
    ) -> None:
        self.repository = repository or ModerationRepository()
        self.admin_ids = set(CFG.admin_ids if admin_ids is None else admin_ids)

    def _require_admin(self, caller: CallerIdentity) -> int:
        return require_admin(caller, self.admin_ids)

    async def _load(self, review_id: int) -> Review:
        review = await self.repository.get_review(review_id)
        if not review:
            raise NotFoundError(f"Review {review_id} not found.")
        return review

    async def _lost_race(self, review_id: int) -> InvalidStateError | NotFoundError:
        current = await self.repository.get_review(review_id)
        if not current:
            return NotFoundError(f"Review {review_id} not found.")
        return InvalidStateError(f"Review {review_id} is already {current.status}.")

    async def submit(
        self,
        caller: CallerIdentity,
        business_id: int,
        submission: ReviewSubmission,
    ) -> Review:
        """Create a pending review.

        Anonymous reviewers must leave a name and e-mail; signed-in reviewers
        get their user id stamped instead.
        """
        user_id = caller.user_id if caller.is_authenticated else None
        if user_id is None and not submission.has_public_identity:
            raise ValidationError("reviewerName and reviewerEmail are required for public reviews.")

        business = await self.repository.get_business(business_id)
        if not business:
            raise NotFoundError(f"Business {business_id} not found.")

        review = await self.repository.insert_review(
            business.id,
            rating=submission.rating,
            comment=submission.comment,
            title=submission.title,
            user_id=user_id,
            reviewer_name=submission.reviewer_name,
            reviewer_email=submission.reviewer_email,
        )
        logger.info("Review %s submitted: business=%s rating=%s", review.id, business.id, review.rating)
        return review

    async def approve(self, caller: CallerIdentity, review_id: int, notes: str | None = None) -> Review:
        admin_id = self._require_admin(caller)
        notes = normalize_admin_message(notes)
        review = await self._load(review_id)
        if review.status != "pending":
            raise InvalidStateError(f"Review {review_id} is already {review.status}.")

        updated = await self.repository.approve_review(review_id, moderated_by=admin_id, notes=notes)
        if not updated:
            raise await self._lost_race(review_id)

        logger.info("Review %s approved by %s: business=%s", review_id, admin_id, updated.business_id)
        return updated

    async def reject(self, caller: CallerIdentity, review_id: int, notes: str | None = None) -> Review:
        # approved -> rejected is not a modeled transition; un-approving would
        # need its own operation.
        admin_id = self._require_admin(caller)
        notes = normalize_admin_message(notes)
        review = await self._load(review_id)
        if review.status != "pending":
            raise InvalidStateError(f"Review {review_id} is already {review.status}.")

        updated = await self.repository.reject_review(review_id, moderated_by=admin_id, notes=notes)
        if not updated:
            raise await self._lost_race(review_id)

        logger.info("Review %s rejected by %s: business=%s", review_id, admin_id, updated.business_id)
        return updated

    async def delete(self, caller: CallerIdentity, review_id: int) -> Review:
        admin_id = self._require_admin(caller)
        deleted = await self.repository.delete_review(review_id)
        if not deleted:
            raise NotFoundError(f"Review {review_id} not found.")
        logger.info(
            "Review %s (%s) deleted by %s: business=%s",
            review_id,
            deleted.status,
            admin_id,
            deleted.business_id,
        )
        return deleted

    async def get_review(self, caller: CallerIdentity, review_id: int) -> Review:
        self._require_admin(caller)
        return await self._load(review_id)

    async def list_reviews(
        self,
        caller: CallerIdentity,
        *,
        status: str | None = None,
        business_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Review]:
        self._require_admin(caller)
        if status is not None and status not in REVIEW_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(REVIEW_STATUSES)}.")
        return await self.repository.list_reviews(
            status=status, business_id=business_id, limit=limit, offset=offset
        )

    async def list_approved_reviews(self, business_id: int, *, limit: int = 50, offset: int = 0) -> list[Review]:
        business = await self.repository.get_business(business_id)
        if not business:
            raise NotFoundError(f"Business {business_id} not found.")
        return await self.repository.list_reviews(
            status="approved", business_id=business_id, limit=limit, offset=offset
        )
