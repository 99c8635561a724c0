#!/usr/bin/env python3
"""
Smoke test: mass actions over claims and reviews.

Validates:
- every requested id is accounted for exactly once (repeated ids count once)
- per-item failures carry the typed error kind and do not stop the batch
- non-admin callers and malformed requests fail before any item runs
- summary message reflects all / partial / none outcomes

Run:
  python3 scripts/smoke_batch_actions.py
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
MISSING_ID = 999999


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
        ValidationError,
        get_moderation_services,
    )
    from moderation.repository import ModerationRepository  # noqa: WPS433
    from moderation.requests import ClaimSubmission, ReviewSubmission  # noqa: WPS433

    await init_db(str(db_path))
    services = get_moderation_services(ModerationRepository(str(db_path)), admin_ids={ADMIN_ID})
    repo = services.repository
    batch = services.batch

    admin = CallerIdentity(user_id=ADMIN_ID)
    user = CallerIdentity(user_id=40)

    claim_ids = []
    for idx in range(3):
        business = await repo.create_business(f"Batch Shop {idx}")
        claim = await services.claims.submit(
            CallerIdentity(user_id=41 + idx), ClaimSubmission(business.id, "owner here")
        )
        claim_ids.append(claim.id)
    await services.claims.reject(admin, claim_ids[2])

    # Caller-level failures: nothing is processed.
    await _expect(
        AccessDeniedError,
        batch.apply_to_many(user, "claims", claim_ids, "approve"),
        "non-admin batch",
    )
    await _expect(
        AccessDeniedError,
        batch.apply_to_many(user, "claims", [], "approve"),
        "non-admin batch with bad payload",
    )
    untouched = await repo.get_claim(claim_ids[0])
    _assert(untouched.status == "pending", f"denied batch must not touch items: {untouched}")

    for label, ids, action in (
        ("empty ids", [], "approve"),
        ("too many ids", list(range(1, 52)), "approve"),
        ("non-positive id", [claim_ids[0], 0], "approve"),
        ("string id", [str(claim_ids[0])], "approve"),
        ("bool id", [True], "approve"),
        ("ids not a list", "1,2", "approve"),
        ("unknown action", [claim_ids[0]], "archive"),
    ):
        await _expect(ValidationError, batch.apply_to_many(admin, "claims", ids, action), label)
    await _expect(
        ValidationError,
        batch.apply_to_many(admin, "reviews", [1], "revoke"),
        "revoke is not a review action",
    )
    untouched = await repo.get_claim(claim_ids[0])
    _assert(untouched.status == "pending", f"invalid batch must not touch items: {untouched}")

    # Mixed batch: two good ids, a missing one (sent twice), a repeat and a rejected claim.
    requested = [claim_ids[0], claim_ids[1], MISSING_ID, claim_ids[0], MISSING_ID, claim_ids[2]]
    result = await batch.apply_to_many(admin, "claims", requested, "approve", admin_message="bulk check")
    _assert(result.requested_count == 4, f"requested_count mismatch: {result}")
    _assert(result.succeeded_ids == claim_ids[:2], f"succeeded ids mismatch: {result}")
    _assert(
        result.succeeded_count + len(result.failures) == result.requested_count,
        f"batch accounting mismatch: {result}",
    )
    failures = [(f.item_id, f.kind) for f in result.failures]
    _assert(
        failures == [(MISSING_ID, "not_found"), (claim_ids[2], "invalid_state")],
        f"failures mismatch: {failures}",
    )
    _assert(
        result.summary() == "approve: partial, 2 of 4 claim(s) succeeded, 2 error(s)",
        f"summary mismatch: {result.summary()}",
    )
    approved = await repo.get_claim(claim_ids[0])
    _assert(approved.admin_message == "bulk check", f"batch admin message lost: {approved}")

    none_ok = await batch.apply_to_many(admin, "claims", [MISSING_ID, MISSING_ID + 1, MISSING_ID], "delete")
    _assert(none_ok.succeeded_ids == [], f"missing ids cannot succeed: {none_ok}")
    _assert(
        [f.item_id for f in none_ok.failures] == [MISSING_ID, MISSING_ID + 1],
        f"each failing id must be reported once: {none_ok.failures}",
    )
    _assert(
        none_ok.summary() == "delete: none of 2 claim(s) succeeded, 2 error(s)",
        f"summary mismatch: {none_ok.summary()}",
    )

    revoked = await batch.apply_to_many(admin, "claims", claim_ids[:2], "revoke")
    _assert(revoked.summary() == "revoke: all 2 claim(s) succeeded", f"summary mismatch: {revoked.summary()}")
    for claim_id in claim_ids[:2]:
        claim = await repo.get_claim(claim_id)
        business = await repo.get_business(claim.business_id)
        _assert(business.owner_id is None, f"batch revoke must release owner: {business}")

    # Reviews go through the same single-item path, aggregate included.
    business = await repo.create_business("Batch Reviews")
    review_ids = []
    for rating in (2, 4):
        review = await services.reviews.submit(user, business.id, ReviewSubmission(rating=rating, comment="fine"))
        review_ids.append(review.id)
    reviewed = await batch.apply_to_many(admin, "reviews", review_ids, "approve")
    _assert(reviewed.succeeded_ids == review_ids, f"review batch mismatch: {reviewed}")
    business = await repo.get_business(business.id)
    _assert(business.rating_aggregate == 3.0, f"aggregate after batch mismatch: {business}")
    _assert(business.rating_count == 2, f"count after batch mismatch: {business}")

    deleted = await batch.apply_to_many(admin, "reviews", [review_ids[0]], "delete")
    _assert(deleted.succeeded_count == 1, f"review delete batch mismatch: {deleted}")
    business = await repo.get_business(business.id)
    _assert(business.rating_aggregate == 4.0, f"aggregate after batch delete mismatch: {business}")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-batch-"))
    try:
        sys.path.insert(0, str(REPO_ROOT / "src"))

        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: batch actions smoke test passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
