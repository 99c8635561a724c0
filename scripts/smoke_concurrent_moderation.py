#!/usr/bin/env python3
"""
Smoke test: concurrent moderation decisions on one SQLite file.

Validates:
- two admins approving the same claim at once: exactly one wins,
  the other gets InvalidStateError
- two claims for one business approved at once: exactly one wins,
  the other gets ConflictError and stays pending
- concurrent review approvals leave a consistent aggregate

Run:
  python3 scripts/smoke_concurrent_moderation.py
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

ADMIN_A = 1
ADMIN_B = 2


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


async def _run_checks(db_path: Path) -> None:
    from database import init_db  # noqa: WPS433
    from moderation import (  # noqa: WPS433
        CallerIdentity,
        ConflictError,
        InvalidStateError,
        get_moderation_services,
    )
    from moderation.models import OwnershipClaim  # noqa: WPS433
    from moderation.repository import ModerationRepository  # noqa: WPS433
    from moderation.requests import ClaimSubmission, ReviewSubmission  # noqa: WPS433

    await init_db(str(db_path))
    services = get_moderation_services(ModerationRepository(str(db_path)), admin_ids={ADMIN_A, ADMIN_B})
    repo = services.repository
    claims = services.claims

    admin_a = CallerIdentity(user_id=ADMIN_A)
    admin_b = CallerIdentity(user_id=ADMIN_B)

    # Same claim, two admins.
    business = await repo.create_business("Race Bistro")
    claim = await claims.submit(CallerIdentity(user_id=50), ClaimSubmission(business.id, "mine"))
    outcomes = await asyncio.gather(
        claims.approve(admin_a, claim.id, "admin A"),
        claims.approve(admin_b, claim.id, "admin B"),
        return_exceptions=True,
    )
    winners = [o for o in outcomes if isinstance(o, OwnershipClaim)]
    losers = [o for o in outcomes if isinstance(o, InvalidStateError)]
    _assert(len(winners) == 1 and len(losers) == 1, f"same-claim race outcome mismatch: {outcomes}")
    stored = await repo.get_claim(claim.id)
    _assert(stored.status == "approved", f"claim must end approved: {stored}")
    _assert(stored.admin_message == winners[0].admin_message, f"loser overwrote the decision: {stored}")

    # Two claims, one business.
    business = await repo.create_business("Race Bakery")
    first = await claims.submit(CallerIdentity(user_id=51), ClaimSubmission(business.id, "mine"))
    second = await claims.submit(CallerIdentity(user_id=52), ClaimSubmission(business.id, "no, mine"))
    outcomes = await asyncio.gather(
        claims.approve(admin_a, first.id),
        claims.approve(admin_b, second.id),
        return_exceptions=True,
    )
    winners = [o for o in outcomes if isinstance(o, OwnershipClaim)]
    losers = [o for o in outcomes if isinstance(o, ConflictError)]
    _assert(len(winners) == 1 and len(losers) == 1, f"same-business race outcome mismatch: {outcomes}")
    business = await repo.get_business(business.id)
    _assert(business.owner_id == winners[0].user_id, f"owner must match the winning claim: {business}")
    loser_id = second.id if winners[0].id == first.id else first.id
    loser = await repo.get_claim(loser_id)
    _assert(loser.status == "pending", f"losing claim must stay pending: {loser}")

    # Reviews approved concurrently.
    business = await repo.create_business("Race Books")
    review_ids = []
    for rating in (1, 2, 3, 4, 5):
        review = await services.reviews.submit(
            CallerIdentity(user_id=60), business.id, ReviewSubmission(rating=rating, comment="ok")
        )
        review_ids.append(review.id)
    await asyncio.gather(
        *(
            services.reviews.approve(admin_a if idx % 2 else admin_b, review_id)
            for idx, review_id in enumerate(review_ids)
        )
    )
    business = await repo.get_business(business.id)
    _assert(business.rating_count == 5, f"count after concurrent approvals mismatch: {business}")
    _assert(business.rating_aggregate == 3.0, f"aggregate after concurrent approvals mismatch: {business}")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-concurrency-"))
    try:
        sys.path.insert(0, str(REPO_ROOT / "src"))

        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: concurrent moderation smoke test passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
