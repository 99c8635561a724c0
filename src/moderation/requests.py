"""Typed request payloads, validated at the boundary.

Each struct validates itself on construction, so an invalid instance never
reaches a resolver. `from_payload` accepts loosely-typed JSON bodies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from config import CFG
from moderation.errors import ValidationError

CLAIM_MESSAGE_MAX_LEN = 2000
ADMIN_MESSAGE_MAX_LEN = 1000
REVIEW_COMMENT_MAX_LEN = 2000
REVIEW_TITLE_MAX_LEN = 255
REVIEWER_NAME_MAX_LEN = 120
RATING_MIN = 1
RATING_MAX = 5

BATCH_KINDS = {"claims", "reviews"}
BATCH_ACTIONS: dict[str, frozenset[str]] = {
    "claims": frozenset({"approve", "reject", "revoke", "delete"}),
    "reviews": frozenset({"approve", "reject", "delete"}),
}

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _require_mapping(payload: Any) -> dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _optional_text(value: Any, *, field_name: str, max_len: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string.")
    cleaned = value.strip()
    if not cleaned:
        return None
    if len(cleaned) > max_len:
        raise ValidationError(f"{field_name} must be at most {max_len} characters.")
    return cleaned


def _positive_int(value: Any, *, field_name: str) -> int:
    # bool is an int subclass; `true` must not become id 1.
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer.")
    return value


def normalize_admin_message(value: Any) -> str | None:
    return _optional_text(value, field_name="adminMessage", max_len=ADMIN_MESSAGE_MAX_LEN)


@dataclass(frozen=True, slots=True)
class ClaimSubmission:
    business_id: int
    message: str

    def __post_init__(self) -> None:
        _positive_int(self.business_id, field_name="businessId")
        message = _optional_text(self.message, field_name="message", max_len=CLAIM_MESSAGE_MAX_LEN)
        if not message:
            raise ValidationError("message is required.")
        object.__setattr__(self, "message", message)

    @classmethod
    def from_payload(cls, business_id: Any, payload: Any) -> "ClaimSubmission":
        body = _require_mapping(payload)
        return cls(business_id=business_id, message=body.get("message"))


@dataclass(frozen=True, slots=True)
class ModerationDecision:
    admin_message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "admin_message", normalize_admin_message(self.admin_message))

    @classmethod
    def from_payload(cls, payload: Any) -> "ModerationDecision":
        body = _require_mapping(payload)
        raw = body.get("adminMessage", body.get("notes"))
        return cls(admin_message=raw)


@dataclass(frozen=True, slots=True)
class ReviewSubmission:
    rating: int
    comment: str
    title: str | None = None
    reviewer_name: str | None = None
    reviewer_email: str | None = None

    def __post_init__(self) -> None:
        rating = self.rating
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError("rating must be an integer.")
        if not RATING_MIN <= rating <= RATING_MAX:
            raise ValidationError(f"rating must be between {RATING_MIN} and {RATING_MAX}.")

        comment = _optional_text(self.comment, field_name="comment", max_len=REVIEW_COMMENT_MAX_LEN)
        if not comment:
            raise ValidationError("comment is required.")
        object.__setattr__(self, "comment", comment)
        object.__setattr__(
            self, "title", _optional_text(self.title, field_name="title", max_len=REVIEW_TITLE_MAX_LEN)
        )
        object.__setattr__(
            self,
            "reviewer_name",
            _optional_text(self.reviewer_name, field_name="reviewerName", max_len=REVIEWER_NAME_MAX_LEN),
        )

        email = _optional_text(self.reviewer_email, field_name="reviewerEmail", max_len=REVIEWER_NAME_MAX_LEN)
        if email is not None and not EMAIL_RE.match(email):
            raise ValidationError("reviewerEmail is not a valid e-mail address.")
        object.__setattr__(self, "reviewer_email", email)

    @property
    def has_public_identity(self) -> bool:
        return bool(self.reviewer_name and self.reviewer_email)

    @classmethod
    def from_payload(cls, payload: Any) -> "ReviewSubmission":
        body = _require_mapping(payload)
        return cls(
            rating=body.get("rating"),
            comment=body.get("comment"),
            title=body.get("title"),
            reviewer_name=body.get("reviewerName"),
            reviewer_email=body.get("reviewerEmail"),
        )


@dataclass(frozen=True, slots=True)
class BatchRequest:
    kind: str
    action: str
    item_ids: tuple[int, ...]
    admin_message: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, str) or self.kind not in BATCH_KINDS:
            raise ValidationError("kind must be one of: claims, reviews.")
        allowed = BATCH_ACTIONS[self.kind]
        if not isinstance(self.action, str) or self.action not in allowed:
            raise ValidationError(f"action must be one of: {', '.join(sorted(allowed))}.")

        ids = self.item_ids
        if isinstance(ids, (str, bytes)) or not isinstance(ids, (list, tuple)):
            raise ValidationError("ids must be an array.")
        if not ids:
            raise ValidationError("ids array cannot be empty.")
        if len(ids) > CFG.batch_max_items:
            raise ValidationError(f"Cannot process more than {CFG.batch_max_items} items at once.")
        # Repeated ids collapse to their first occurrence.
        distinct = dict.fromkeys(_positive_int(item_id, field_name="ids[]") for item_id in ids)
        object.__setattr__(self, "item_ids", tuple(distinct))
        object.__setattr__(self, "admin_message", normalize_admin_message(self.admin_message))

    @classmethod
    def from_payload(cls, kind: str, payload: Any) -> "BatchRequest":
        body = _require_mapping(payload)
        return cls(
            kind=kind,
            action=body.get("action"),
            item_ids=body.get("ids"),
            admin_message=body.get("adminMessage"),
        )


@dataclass(frozen=True, slots=True)
class OwnerAssignment:
    """Direct owner change; `user_id=None` clears the owner."""

    user_id: int | None

    def __post_init__(self) -> None:
        if self.user_id is not None:
            _positive_int(self.user_id, field_name="userId")

    @classmethod
    def from_payload(cls, payload: Any) -> "OwnerAssignment":
        body = _require_mapping(payload)
        if "userId" not in body:
            raise ValidationError("userId is required (use null to clear the owner).")
        return cls(user_id=body["userId"])
