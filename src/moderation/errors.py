"""Typed moderation failures.

Every expected failure carries a machine-readable ``kind`` so transport
adapters can map it without inspecting messages.
"""

from __future__ import annotations


class ModerationError(RuntimeError):
    """Base moderation domain error."""

    kind = "error"

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": str(self)}


class NotFoundError(ModerationError):
    """Raised when a referenced entity doesn't exist."""

    kind = "not_found"


class ConflictError(ModerationError):
    """Raised when a uniqueness invariant would be violated."""

    kind = "conflict"


class InvalidStateError(ModerationError):
    """Raised when the entity's status doesn't permit the transition."""

    kind = "invalid_state"


class AccessDeniedError(ModerationError):
    """Raised when caller lacks the required role."""

    kind = "forbidden"


class ValidationError(ModerationError):
    """Raised when input is malformed."""

    kind = "validation"
