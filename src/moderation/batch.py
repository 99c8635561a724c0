"""Mass actions over claims or reviews."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from moderation.claims import ClaimResolver
from moderation.errors import ModerationError
from moderation.guards import CallerIdentity, require_admin
from moderation.models import BatchFailure, BatchResult
from moderation.requests import BatchRequest
from moderation.reviews import ReviewModerator

logger = logging.getLogger(__name__)

ItemHandler = Callable[[CallerIdentity, int], Awaitable[Any]]


class BatchCoordinator:
    """Apply one decision to many ids, one item at a time.

    Items run sequentially through the single-item operations, so two ids that
    touch the same business never race. There is no cross-item rollback: a
    failure is recorded and the next id is processed.
    """

    def __init__(self, claims: ClaimResolver, reviews: ReviewModerator) -> None:
        self.claims = claims
        self.reviews = reviews
        self.admin_ids = claims.admin_ids | reviews.admin_ids

    def authorize(self, caller: CallerIdentity) -> int:
        return require_admin(caller, self.admin_ids)

    def _handler(self, request: BatchRequest) -> ItemHandler:
        message = request.admin_message
        if request.kind == "claims":
            handlers: dict[str, ItemHandler] = {
                "approve": lambda caller, item_id: self.claims.approve(caller, item_id, message),
                "reject": lambda caller, item_id: self.claims.reject(caller, item_id, message),
                "revoke": lambda caller, item_id: self.claims.revoke(caller, item_id, message),
                "delete": self.claims.delete,
            }
        else:
            handlers = {
                "approve": lambda caller, item_id: self.reviews.approve(caller, item_id, message),
                "reject": lambda caller, item_id: self.reviews.reject(caller, item_id, message),
                "delete": self.reviews.delete,
            }
        return handlers[request.action]

    async def apply_to_many(
        self,
        caller: CallerIdentity,
        kind: str,
        item_ids: Any,
        action: Any,
        *,
        admin_message: str | None = None,
    ) -> BatchResult:
        """Run `action` for every id and report each outcome.

        Raises only for caller-level problems: a non-admin caller or a
        malformed request. Per-item moderation failures land in
        `BatchResult.failures`; anything else (storage outages) propagates.
        """
        self.authorize(caller)
        request = BatchRequest(kind=kind, action=action, item_ids=item_ids, admin_message=admin_message)
        return await self.apply(caller, request)

    async def apply(self, caller: CallerIdentity, request: BatchRequest) -> BatchResult:
        admin_id = self.authorize(caller)
        handler = self._handler(request)
        result = BatchResult(kind=request.kind, action=request.action, requested_count=len(request.item_ids))

        for item_id in request.item_ids:
            try:
                await handler(caller, item_id)
            except ModerationError as error:
                result.failures.append(BatchFailure(item_id=item_id, kind=error.kind, reason=str(error)))
                logger.debug("Batch %s %s: item %s failed (%s)", request.kind, request.action, item_id, error.kind)
            else:
                result.succeeded_ids.append(item_id)

        logger.info(
            "Batch %s %s by %s: requested=%s succeeded=%s failed=%s",
            request.kind,
            request.action,
            admin_id,
            result.requested_count,
            result.succeeded_count,
            len(result.failures),
        )
        return result
