#!/usr/bin/env python3
"""
Smoke test: review moderation and aggregate rating.

Validates:
- out-of-range rating is rejected before anything is stored
- only approved reviews count toward rating_aggregate/rating_count
- approve and delete of an approved review recompute the aggregate
- rejecting an approved review is an invalid transition
- public (anonymous) reviews need reviewer name and e-mail

Run:
  python3 scripts/smoke_review_moderation.py
"""

from __future__ import annotations

import asyncio
import shutil
import sys
import tempfile
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

ADMIN_ID = 1
REVIEWER_ID = 30


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


async def _expect(exc_type: type[BaseException], coro, label: str) -> None:
    try:
        await coro
    except exc_type:
        return
    raise AssertionError(f"{label} must fail with {exc_type.__name__}")


async def _run_checks(db_path: Path) -> None:
    from database import init_db  # noqa: WPS433
    from moderation import (  # noqa: WPS433
        AccessDeniedError,
        CallerIdentity,
        InvalidStateError,
        NotFoundError,
        ValidationError,
        get_moderation_services,
    )
    from moderation.repository import ModerationRepository  # noqa: WPS433
    from moderation.requests import ReviewSubmission  # noqa: WPS433

    await init_db(str(db_path))
    services = get_moderation_services(ModerationRepository(str(db_path)), admin_ids={ADMIN_ID})
    repo = services.repository
    reviews = services.reviews

    admin = CallerIdentity(user_id=ADMIN_ID)
    reviewer = CallerIdentity(user_id=REVIEWER_ID)
    anonymous = CallerIdentity.anonymous()

    business = await repo.create_business("Riverside Books")

    try:
        ReviewSubmission(rating=6, comment="too good")
    except ValidationError:
        pass
    else:
        raise AssertionError("rating 6 must fail with ValidationError")
    stored = await reviews.list_reviews(admin, business_id=business.id)
    _assert(stored == [], f"invalid review must not be stored: {stored}")

    await _expect(
        NotFoundError,
        reviews.submit(reviewer, business.id + 1000, ReviewSubmission(rating=4, comment="ok")),
        "review for missing business",
    )

    created = []
    for rating in (5, 3, 4):
        review = await reviews.submit(reviewer, business.id, ReviewSubmission(rating=rating, comment=f"{rating} stars"))
        _assert(review.status == "pending", f"new review must be pending: {review}")
        _assert(review.user_id == REVIEWER_ID, f"reviewer not stamped: {review}")
        created.append(review)

    business = await repo.get_business(business.id)
    _assert(business.rating_aggregate is None, f"pending reviews must not count: {business}")
    _assert(business.rating_count == 0, f"pending reviews must not count: {business}")

    await _expect(AccessDeniedError, reviews.approve(reviewer, created[0].id), "non-admin approve")

    for review in created:
        approved = await reviews.approve(admin, review.id, "looks genuine")
        _assert(approved.status == "approved", f"approve failed: {approved}")
        _assert(approved.moderated_by == ADMIN_ID, f"moderator not stamped: {approved}")

    business = await repo.get_business(business.id)
    _assert(business.rating_aggregate == 4.0, f"aggregate mismatch: {business}")
    _assert(business.rating_count == 3, f"count mismatch: {business}")

    await _expect(InvalidStateError, reviews.reject(admin, created[0].id), "reject approved review")
    await _expect(InvalidStateError, reviews.approve(admin, created[0].id), "approve twice")
    await _expect(NotFoundError, reviews.approve(admin, 999999), "approve missing review")

    # Deleting the 5-star review leaves 3 and 4.
    deleted = await reviews.delete(admin, created[0].id)
    _assert(deleted.status == "approved", f"delete returned wrong review: {deleted}")
    business = await repo.get_business(business.id)
    _assert(business.rating_aggregate == 3.5, f"aggregate after delete mismatch: {business}")
    _assert(business.rating_count == 2, f"count after delete mismatch: {business}")
    await _expect(NotFoundError, reviews.delete(admin, created[0].id), "delete twice")

    # Pending and rejected reviews never move the aggregate.
    spam = await reviews.submit(reviewer, business.id, ReviewSubmission(rating=1, comment="spam"))
    rejected = await reviews.reject(admin, spam.id, "spam")
    _assert(rejected.status == "rejected", f"reject failed: {rejected}")
    _assert(rejected.moderation_notes == "spam", f"notes lost: {rejected}")
    pending = await reviews.submit(reviewer, business.id, ReviewSubmission(rating=1, comment="meh"))
    await reviews.delete(admin, pending.id)
    business = await repo.get_business(business.id)
    _assert(business.rating_aggregate == 3.5, f"aggregate moved without approval change: {business}")
    _assert(business.rating_count == 2, f"count moved without approval change: {business}")

    # Public reviews.
    await _expect(
        ValidationError,
        reviews.submit(anonymous, business.id, ReviewSubmission(rating=5, comment="great")),
        "anonymous review without identity",
    )
    try:
        ReviewSubmission(rating=5, comment="great", reviewer_name="Ann", reviewer_email="not-an-email")
    except ValidationError:
        pass
    else:
        raise AssertionError("bad reviewer e-mail must fail with ValidationError")
    public = await reviews.submit(
        anonymous,
        business.id,
        ReviewSubmission(
            rating=5,
            comment="great",
            title="Lovely shop",
            reviewer_name="Ann",
            reviewer_email="ann@example.com",
        ),
    )
    _assert(public.user_id is None, f"public review must not carry a user: {public}")
    _assert(public.reviewer_email == "ann@example.com", f"reviewer e-mail lost: {public}")

    visible = await reviews.list_approved_reviews(business.id)
    _assert(
        sorted(r.id for r in visible) == sorted([created[1].id, created[2].id]),
        f"public listing must show approved only: {visible}",
    )
    await _expect(NotFoundError, reviews.list_approved_reviews(999999), "list for missing business")
    await _expect(ValidationError, reviews.list_reviews(admin, status="archived"), "unknown status filter")

    for review in created[1:]:
        await reviews.delete(admin, review.id)
    business = await repo.get_business(business.id)
    _assert(business.rating_aggregate is None, f"no approved reviews must mean no aggregate: {business}")
    _assert(business.rating_count == 0, f"no approved reviews must mean zero count: {business}")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-reviews-"))
    try:
        sys.path.insert(0, str(REPO_ROOT / "src"))

        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: review moderation smoke test passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
