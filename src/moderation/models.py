"""Moderation domain models used by the resolvers."""

from dataclasses import dataclass, field


@dataclass(slots=True)
class User:
    id: int
    role: str
    created_at: str
    email: str | None = None
    display_name: str | None = None


@dataclass(slots=True)
class Business:
    id: int
    name: str
    created_at: str
    owner_id: int | None = None
    rating_aggregate: float | None = None
    rating_count: int = 0


@dataclass(slots=True)
class OwnershipClaim:
    id: int
    business_id: int
    user_id: int
    message: str
    status: str
    created_at: str
    admin_message: str | None = None
    reviewed_by: int | None = None
    reviewed_at: str | None = None
    business_name: str | None = None
    user_email: str | None = None


@dataclass(slots=True)
class Review:
    id: int
    business_id: int
    rating: int
    comment: str
    status: str
    created_at: str
    user_id: int | None = None
    reviewer_name: str | None = None
    reviewer_email: str | None = None
    title: str | None = None
    moderation_notes: str | None = None
    moderated_by: int | None = None
    moderated_at: str | None = None
    business_name: str | None = None


@dataclass(slots=True)
class BatchFailure:
    item_id: int
    kind: str
    reason: str


@dataclass(slots=True)
class BatchResult:
    """Per-item outcome of a mass action; never persisted.

    Every requested id ends up either in `succeeded_ids` or in `failures`.
    """

    kind: str
    action: str
    requested_count: int
    succeeded_ids: list[int] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded_ids)

    def summary(self) -> str:
        noun = "claim(s)" if self.kind == "claims" else "review(s)"
        if self.succeeded_count == self.requested_count:
            return f"{self.action}: all {self.requested_count} {noun} succeeded"
        if self.succeeded_count == 0:
            return f"{self.action}: none of {self.requested_count} {noun} succeeded, {len(self.failures)} error(s)"
        return (
            f"{self.action}: partial, {self.succeeded_count} of {self.requested_count} {noun} succeeded, "
            f"{len(self.failures)} error(s)"
        )
