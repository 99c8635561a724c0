"""Ownership claim state machine.

    pending --approve--> approved --revoke--> revoked
    pending --reject---> rejected

Approval hands the business to the claimant; revocation releases it only if
the claimant is still the owner.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from config import CFG
from database import CLAIM_STATUSES
from moderation.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from moderation.guards import CallerIdentity, is_admin, require_admin, require_authenticated
from moderation.models import Business, OwnershipClaim
from moderation.repository import ModerationRepository, OwnershipTakenError
from moderation.requests import ClaimSubmission, normalize_admin_message

logger = logging.getLogger(__name__)


class ClaimResolver:
    """Submission, approval, rejection, revocation and cleanup of ownership claims."""

    def __init__(
        self,
        repository: ModerationRepository | None = None,
        admin_ids: Iterable[int] | None = None,
    ) -> None:
        self.repository = repository or ModerationRepository()
        self.admin_ids = set(CFG.admin_ids if admin_ids is None else admin_ids)

    def _require_admin(self, caller: CallerIdentity) -> int:
        return require_admin(caller, self.admin_ids)

    async def _load(self, claim_id: int) -> OwnershipClaim:
        claim = await self.repository.get_claim(claim_id)
        if not claim:
            raise NotFoundError(f"Ownership claim {claim_id} not found.")
        return claim

    async def _lost_race(self, claim_id: int, expected: str) -> InvalidStateError | NotFoundError:
        """Explain a conditional update that matched no rows."""
        current = await self.repository.get_claim(claim_id)
        if not current:
            return NotFoundError(f"Ownership claim {claim_id} not found.")
        return InvalidStateError(
            f"Ownership claim {claim_id} is {current.status}, expected {expected}."
        )

    async def submit(self, caller: CallerIdentity, submission: ClaimSubmission) -> OwnershipClaim:
        user_id = require_authenticated(caller)
        business = await self.repository.get_business(submission.business_id)
        if not business:
            raise NotFoundError(f"Business {submission.business_id} not found.")

        existing = await self.repository.find_open_claim(business.id, user_id)
        if existing:
            raise ConflictError(f"You already have a {existing.status} claim for this business.")

        try:
            claim = await self.repository.insert_claim(business.id, user_id, submission.message)
        except sqlite3.IntegrityError:
            # Concurrent duplicate submission hit the pending-pair unique index.
            raise ConflictError("You already have a pending claim for this business.")

        logger.info("Claim %s submitted: business=%s user=%s", claim.id, business.id, user_id)
        return claim

    async def approve(
        self,
        caller: CallerIdentity,
        claim_id: int,
        admin_message: str | None = None,
    ) -> OwnershipClaim:
        admin_id = self._require_admin(caller)
        admin_message = normalize_admin_message(admin_message)
        claim = await self._load(claim_id)
        if claim.status != "pending":
            raise InvalidStateError(f"Ownership claim {claim_id} is already {claim.status}.")

        current = await self.repository.get_approved_claim_for_business(claim.business_id)
        if current and current.id != claim.id:
            raise ConflictError(
                f"Business {claim.business_id} already has an approved claim ({current.id}); revoke it first."
            )

        try:
            updated = await self.repository.approve_claim(
                claim_id, reviewed_by=admin_id, admin_message=admin_message
            )
        except sqlite3.IntegrityError:
            raise ConflictError(f"Business {claim.business_id} already has an approved claim.")
        except OwnershipTakenError as error:
            raise ConflictError(
                f"Business {claim.business_id} is already owned by user {error.owner_id}; clear the owner first."
            )
        if not updated:
            raise await self._lost_race(claim_id, "pending")

        logger.info(
            "Claim %s approved by %s: business=%s owner=%s",
            claim_id,
            admin_id,
            updated.business_id,
            updated.user_id,
        )
        return updated

    async def reject(
        self,
        caller: CallerIdentity,
        claim_id: int,
        admin_message: str | None = None,
    ) -> OwnershipClaim:
        admin_id = self._require_admin(caller)
        admin_message = normalize_admin_message(admin_message)
        claim = await self._load(claim_id)
        if claim.status != "pending":
            raise InvalidStateError(f"Ownership claim {claim_id} is already {claim.status}.")

        updated = await self.repository.reject_claim(
            claim_id, reviewed_by=admin_id, admin_message=admin_message
        )
        if not updated:
            raise await self._lost_race(claim_id, "pending")

        logger.info("Claim %s rejected by %s: business=%s", claim_id, admin_id, updated.business_id)
        return updated

    async def revoke(
        self,
        caller: CallerIdentity,
        claim_id: int,
        admin_message: str | None = None,
    ) -> OwnershipClaim:
        admin_id = self._require_admin(caller)
        admin_message = normalize_admin_message(admin_message)
        claim = await self._load(claim_id)
        if claim.status != "approved":
            raise InvalidStateError(f"Only approved claims can be revoked; claim {claim_id} is {claim.status}.")

        result = await self.repository.revoke_claim(
            claim_id, reviewed_by=admin_id, admin_message=admin_message
        )
        if not result:
            raise await self._lost_race(claim_id, "approved")

        updated, owner_cleared = result
        if owner_cleared:
            logger.info("Claim %s revoked by %s: business=%s owner cleared", claim_id, admin_id, updated.business_id)
        else:
            logger.info(
                "Claim %s revoked by %s: business=%s owner changed since approval, left as is",
                claim_id,
                admin_id,
                updated.business_id,
            )
        return updated

    async def delete(self, caller: CallerIdentity, claim_id: int) -> OwnershipClaim:
        """Remove the claim record only; business ownership is untouched."""
        admin_id = self._require_admin(caller)
        deleted = await self.repository.delete_claim(claim_id)
        if not deleted:
            raise NotFoundError(f"Ownership claim {claim_id} not found.")
        logger.info("Claim %s (%s) deleted by %s", claim_id, deleted.status, admin_id)
        return deleted

    async def assign_owner(
        self,
        caller: CallerIdentity,
        business_id: int,
        user_id: int | None,
    ) -> Business:
        """Direct admin ownership change, outside of any claim."""
        admin_id = self._require_admin(caller)
        business = await self.repository.set_business_owner(business_id, user_id)
        if not business:
            raise NotFoundError(f"Business {business_id} not found.")
        logger.info("Business %s owner set to %s by %s", business_id, user_id, admin_id)
        return business

    async def get_claim(self, caller: CallerIdentity, claim_id: int) -> OwnershipClaim:
        user_id = require_authenticated(caller)
        claim = await self._load(claim_id)
        if claim.user_id != user_id and not is_admin(caller, self.admin_ids):
            raise AccessDeniedError("You can only view your own claims.")
        return claim

    async def list_claims(
        self,
        caller: CallerIdentity,
        *,
        status: str | None = None,
        business_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OwnershipClaim]:
        self._require_admin(caller)
        if status is not None and status not in CLAIM_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(CLAIM_STATUSES)}.")
        return await self.repository.list_claims(
            status=status, business_id=business_id, limit=limit, offset=offset
        )

    async def list_my_claims(self, caller: CallerIdentity) -> list[OwnershipClaim]:
        user_id = require_authenticated(caller)
        return await self.repository.list_claims(user_id=user_id, limit=200)

    async def claim_stats(self, caller: CallerIdentity) -> dict[str, int]:
        self._require_admin(caller)
        counts = await self.repository.count_claims_by_status()
        stats = {status: int(counts.get(status, 0)) for status in CLAIM_STATUSES}
        stats["total"] = sum(counts.values())
        return stats
