#!/usr/bin/env python3
"""
Smoke test: ownership claim uniqueness and ownership write-through.

Validates:
- at most one pending claim per (business, user); duplicates are conflicts
- re-submission is allowed after rejection, not while a claim is approved
- at most one approved claim per business; a second approval is blocked
- revoke leaves a newer owner (direct assignment) untouched
- approval never replaces a directly assigned owner other than the claimant
- deleting a claim never touches business ownership

Run:
  python3 scripts/smoke_claim_invariants.py
"""

from __future__ import annotations

import asyncio
import shutil
import sqlite3
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
USER_A = 20
USER_B = 21
USER_C = 22


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


async def _expect(exc_type: type[BaseException], coro, label: str) -> None:
    try:
        await coro
    except exc_type:
        return
    raise AssertionError(f"{label} must fail with {exc_type.__name__}")


def _count_claims(db_path: Path, business_id: int, status: str) -> int:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT COUNT(*) FROM ownership_claims WHERE business_id = ? AND status = ?",
            (business_id, status),
        ).fetchone()
        return int(row[0])
    finally:
        conn.close()


async def _run_checks(db_path: Path) -> None:
    from database import init_db  # noqa: WPS433
    from moderation import (  # noqa: WPS433
        AccessDeniedError,
        CallerIdentity,
        ConflictError,
        NotFoundError,
        get_moderation_services,
    )
    from moderation.repository import ModerationRepository  # noqa: WPS433
    from moderation.requests import ClaimSubmission  # noqa: WPS433

    await init_db(str(db_path))
    services = get_moderation_services(ModerationRepository(str(db_path)), admin_ids={ADMIN_ID})
    repo = services.repository
    claims = services.claims

    admin = CallerIdentity(user_id=ADMIN_ID)
    user_a = CallerIdentity(user_id=USER_A)
    user_b = CallerIdentity(user_id=USER_B)

    business = await repo.create_business("Harbor Cafe")

    # One pending claim per (business, user).
    first = await claims.submit(user_a, ClaimSubmission(business.id, "first attempt"))
    await _expect(
        ConflictError,
        claims.submit(user_a, ClaimSubmission(business.id, "second attempt")),
        "duplicate pending claim",
    )
    _assert(_count_claims(db_path, business.id, "pending") == 1, "duplicate pending claim was stored")

    # The partial unique index backs the service-level check.
    await _expect(
        sqlite3.IntegrityError,
        repo.insert_claim(business.id, USER_A, "bypassing the resolver"),
        "raw duplicate insert",
    )

    await claims.reject(admin, first.id, "need documents")
    retry = await claims.submit(user_a, ClaimSubmission(business.id, "documents attached"))
    _assert(retry.status == "pending", f"resubmission after reject failed: {retry}")

    # One approved claim per business: blocked, not superseded.
    claim_b = await claims.submit(user_b, ClaimSubmission(business.id, "I am the manager"))
    await claims.approve(admin, retry.id)
    await _expect(ConflictError, claims.approve(admin, claim_b.id), "second approval for business")

    still_pending = await repo.get_claim(claim_b.id)
    _assert(still_pending.status == "pending", f"blocked claim must stay pending: {still_pending}")
    business = await repo.get_business(business.id)
    _assert(business.owner_id == USER_A, f"blocked approval must not change owner: {business}")
    _assert(_count_claims(db_path, business.id, "approved") == 1, "more than one approved claim stored")

    await _expect(
        ConflictError,
        claims.submit(user_a, ClaimSubmission(business.id, "once more")),
        "submit while approved",
    )

    # Ownership reassigned directly; revoking the stale claim keeps the new owner.
    await _expect(AccessDeniedError, claims.assign_owner(user_a, business.id, USER_C), "non-admin assign")
    await _expect(NotFoundError, claims.assign_owner(admin, 999999, USER_C), "assign missing business")
    reassigned = await claims.assign_owner(admin, business.id, USER_C)
    _assert(reassigned.owner_id == USER_C, f"assign_owner failed: {reassigned}")

    revoked = await claims.revoke(admin, retry.id)
    _assert(revoked.status == "revoked", f"revoke failed: {revoked}")
    business = await repo.get_business(business.id)
    _assert(business.owner_id == USER_C, f"revoke must not clear a newer owner: {business}")

    # The approved slot is free, but a directly assigned owner still blocks approval.
    await _expect(ConflictError, claims.approve(admin, claim_b.id), "approve over assigned owner")
    blocked = await repo.get_claim(claim_b.id)
    _assert(blocked.status == "pending", f"blocked claim must stay pending: {blocked}")
    business = await repo.get_business(business.id)
    _assert(business.owner_id == USER_C, f"assigned owner must survive blocked approval: {business}")

    await claims.assign_owner(admin, business.id, None)
    approved_b = await claims.approve(admin, claim_b.id)
    _assert(approved_b.status == "approved", f"approve after clearing owner failed: {approved_b}")
    business = await repo.get_business(business.id)
    _assert(business.owner_id == USER_B, f"approve must hand over the business: {business}")

    # Assigning the claimant directly before approval is not a conflict.
    other_business = await repo.create_business("Harbor Annex")
    claim_c = await claims.submit(
        CallerIdentity(user_id=USER_C), ClaimSubmission(other_business.id, "annex is mine")
    )
    await claims.assign_owner(admin, other_business.id, USER_C)
    approved_c = await claims.approve(admin, claim_c.id)
    _assert(approved_c.status == "approved", f"approve for current owner failed: {approved_c}")

    # Delete removes the record only.
    deleted = await claims.delete(admin, approved_b.id)
    _assert(deleted.id == approved_b.id, f"delete returned wrong claim: {deleted}")
    _assert(await repo.get_claim(approved_b.id) is None, "claim still present after delete")
    business = await repo.get_business(business.id)
    _assert(business.owner_id == USER_B, f"delete must not touch owner: {business}")
    await _expect(NotFoundError, claims.delete(admin, approved_b.id), "delete twice")

    cleared = await claims.assign_owner(admin, business.id, None)
    _assert(cleared.owner_id is None, f"assign_owner(None) must clear owner: {cleared}")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-claim-inv-"))
    try:
        sys.path.insert(0, str(REPO_ROOT / "src"))

        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: claim invariants smoke test passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
