#!/usr/bin/env python3
"""
Smoke test: typed request validation and the authorization gate.

Validates:
- claim/review/batch/owner payloads reject malformed input with ValidationError
- text fields are trimmed and length-limited
- admin detection by role or ADMIN_IDS; anonymous callers are never admins
- batch summary wording

Run:
  python3 scripts/smoke_request_validation.py
"""

from __future__ import annotations

import sys
from pathlib import Path


def _resolve_repo_root() -> Path:
    candidates: list[Path] = []
    try:
        candidates.append(Path(__file__).resolve().parents[1])
    except Exception:
        pass
    candidates.extend([Path.cwd(), Path("/app"), Path("/workspace")])
    for root in candidates:
        if (root / "pyproject.toml").exists() and (root / "src").exists():
            return root
    raise FileNotFoundError("Cannot locate repo root with pyproject.toml and src/")


REPO_ROOT = _resolve_repo_root()


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _expect_invalid(build, label: str) -> None:
    from moderation.errors import ValidationError  # noqa: WPS433

    try:
        build()
    except ValidationError:
        return
    raise AssertionError(f"{label} must fail with ValidationError")


def _run_checks() -> None:
    from moderation.errors import AccessDeniedError  # noqa: WPS433
    from moderation.guards import CallerIdentity, is_admin, require_admin, require_authenticated  # noqa: WPS433
    from moderation.models import BatchFailure, BatchResult  # noqa: WPS433
    from moderation.requests import (  # noqa: WPS433
        BatchRequest,
        ClaimSubmission,
        ModerationDecision,
        OwnerAssignment,
        ReviewSubmission,
    )

    # Claims.
    claim = ClaimSubmission.from_payload(7, {"message": "  I own it  "})
    _assert(claim.message == "I own it", f"message must be trimmed: {claim}")
    _expect_invalid(lambda: ClaimSubmission.from_payload(7, {}), "missing message")
    _expect_invalid(lambda: ClaimSubmission.from_payload(7, {"message": "   "}), "blank message")
    _expect_invalid(lambda: ClaimSubmission.from_payload(7, {"message": "x" * 2001}), "long message")
    _expect_invalid(lambda: ClaimSubmission.from_payload(0, {"message": "hi"}), "zero business id")
    _expect_invalid(lambda: ClaimSubmission.from_payload(7, ["message"]), "non-object body")

    # Decisions.
    _assert(ModerationDecision.from_payload(None).admin_message is None, "empty body must be allowed")
    _assert(
        ModerationDecision.from_payload({"notes": " ok "}).admin_message == "ok",
        "notes alias must be accepted",
    )
    _expect_invalid(lambda: ModerationDecision.from_payload({"adminMessage": 5}), "non-string message")
    _expect_invalid(lambda: ModerationDecision(admin_message="x" * 1001), "long admin message")

    # Reviews.
    review = ReviewSubmission.from_payload({"rating": 5, "comment": " nice ", "title": "  "})
    _assert(review.comment == "nice" and review.title is None, f"review text normalization failed: {review}")
    _assert(not review.has_public_identity, "review without name/email has no public identity")
    for label, payload in (
        ("rating zero", {"rating": 0, "comment": "x"}),
        ("rating six", {"rating": 6, "comment": "x"}),
        ("rating string", {"rating": "5", "comment": "x"}),
        ("rating bool", {"rating": True, "comment": "x"}),
        ("rating float", {"rating": 4.5, "comment": "x"}),
        ("missing comment", {"rating": 4}),
        ("long comment", {"rating": 4, "comment": "x" * 2001}),
        ("long title", {"rating": 4, "comment": "x", "title": "t" * 256}),
        ("bad email", {"rating": 4, "comment": "x", "reviewerEmail": "nobody"}),
    ):
        _expect_invalid(lambda payload=payload: ReviewSubmission.from_payload(payload), label)
    public = ReviewSubmission.from_payload(
        {"rating": 3, "comment": "x", "reviewerName": "Bo", "reviewerEmail": "bo@example.org"}
    )
    _assert(public.has_public_identity, f"public identity not detected: {public}")

    # Batch requests.
    batch = BatchRequest.from_payload("claims", {"action": "approve", "ids": [3, 1, 3]})
    _assert(batch.item_ids == (3, 1), f"ids must keep first-seen order without repeats: {batch}")
    _assert(len(BatchRequest("claims", "delete", list(range(1, 51))).item_ids) == 50, "50 ids must be accepted")
    _expect_invalid(lambda: BatchRequest("claims", "delete", list(range(1, 52))), "51 ids")
    _expect_invalid(lambda: BatchRequest("places", "delete", [1]), "unknown kind")
    _expect_invalid(lambda: BatchRequest("reviews", "revoke", [1]), "revoke review")
    _expect_invalid(lambda: BatchRequest("claims", ["approve"], [1]), "non-string action")
    _expect_invalid(lambda: BatchRequest.from_payload("claims", {"action": "approve"}), "missing ids")
    _expect_invalid(lambda: BatchRequest("claims", "approve", [1, -2]), "negative id")

    # Owner assignment.
    _assert(OwnerAssignment.from_payload({"userId": None}).user_id is None, "null owner must be allowed")
    _assert(OwnerAssignment.from_payload({"userId": 9}).user_id == 9, "owner id lost")
    _expect_invalid(lambda: OwnerAssignment.from_payload({}), "missing userId")
    _expect_invalid(lambda: OwnerAssignment.from_payload({"userId": "9"}), "string userId")

    # Authorization gate.
    anonymous = CallerIdentity.anonymous()
    _assert(not is_admin(anonymous, {1}), "anonymous caller must never be admin")
    _assert(not is_admin(CallerIdentity(user_id=None, role="admin")), "admin role without id is anonymous")
    _assert(is_admin(CallerIdentity(user_id=5, role="admin")), "admin role must be admin")
    _assert(is_admin(CallerIdentity(user_id=1), {1}), "ADMIN_IDS member must be admin")
    _assert(not is_admin(CallerIdentity(user_id=2), {1}), "plain user must not be admin")
    _assert(require_authenticated(CallerIdentity(user_id=2)) == 2, "authenticated id mismatch")
    for label, check in (
        ("anonymous require_authenticated", lambda: require_authenticated(anonymous)),
        ("user require_admin", lambda: require_admin(CallerIdentity(user_id=2), {1})),
    ):
        try:
            check()
        except AccessDeniedError:
            pass
        else:
            raise AssertionError(f"{label} must fail with AccessDeniedError")

    # Batch summaries.
    result = BatchResult(kind="reviews", action="approve", requested_count=2, succeeded_ids=[4, 5])
    _assert(result.summary() == "approve: all 2 review(s) succeeded", f"summary mismatch: {result.summary()}")
    result = BatchResult(
        kind="reviews",
        action="reject",
        requested_count=2,
        succeeded_ids=[4],
        failures=[BatchFailure(item_id=5, kind="invalid_state", reason="already approved")],
    )
    _assert(
        result.summary() == "reject: partial, 1 of 2 review(s) succeeded, 1 error(s)",
        f"summary mismatch: {result.summary()}",
    )


def main() -> None:
    sys.path.insert(0, str(REPO_ROOT / "src"))

    _run_checks()
    print("OK: request validation smoke test passed.")


if __name__ == "__main__":
    main()
