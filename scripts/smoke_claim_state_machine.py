#!/usr/bin/env python3
"""
Smoke test: ownership claim state machine.

Validates:
- non-admin and anonymous callers cannot moderate claims
- pending claim can be approved exactly once and hands the business over
- approved claim can be revoked, which releases ownership
- rejected/revoked claims are terminal
- claim visibility and per-status stats

Run:
  python3 scripts/smoke_claim_state_machine.py
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

ADMIN_ID = 900
OTHER_ID = 901


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
        get_moderation_services,
    )
    from moderation.repository import ModerationRepository  # noqa: WPS433
    from moderation.requests import ClaimSubmission  # noqa: WPS433

    await init_db(str(db_path))
    services = get_moderation_services(ModerationRepository(str(db_path)), admin_ids={ADMIN_ID})
    repo = services.repository
    claims = services.claims

    owner_user = await repo.create_user(email="owner@example.com", display_name="Corner Owner")
    _assert(await repo.get_user(owner_user.id) == owner_user, f"user round trip failed: {owner_user}")
    owner_id = owner_user.id

    admin = CallerIdentity(user_id=ADMIN_ID)
    owner = CallerIdentity(user_id=owner_id)
    other = CallerIdentity(user_id=OTHER_ID)
    anonymous = CallerIdentity.anonymous()

    business = await repo.create_business("Corner Bakery")
    _assert(business.owner_id is None, f"new business must be unowned: {business}")

    await _expect(
        AccessDeniedError,
        claims.submit(anonymous, ClaimSubmission(business.id, "I run this place")),
        "anonymous submit",
    )
    await _expect(
        NotFoundError,
        claims.submit(owner, ClaimSubmission(business.id + 1000, "I run this place")),
        "submit for missing business",
    )

    claim = await claims.submit(owner, ClaimSubmission(business.id, "I run this place"))
    _assert(claim.status == "pending", f"new claim must be pending: {claim}")
    _assert(claim.business_name == "Corner Bakery", f"claim must carry business name: {claim}")
    _assert(claim.user_email == "owner@example.com", f"claim must carry claimant e-mail: {claim}")

    await _expect(AccessDeniedError, claims.approve(owner, claim.id), "self-approve")
    await _expect(AccessDeniedError, claims.approve(anonymous, claim.id), "anonymous approve")
    await _expect(AccessDeniedError, claims.list_claims(other), "non-admin list")
    await _expect(NotFoundError, claims.approve(admin, 999999), "approve missing claim")

    approved = await claims.approve(admin, claim.id, "verified via phone")
    _assert(approved.status == "approved", f"approve failed: {approved}")
    _assert(approved.admin_message == "verified via phone", f"admin message lost: {approved}")
    _assert(approved.reviewed_by == ADMIN_ID, f"reviewer not stamped: {approved}")
    _assert(approved.reviewed_at, f"reviewed_at not stamped: {approved}")

    business = await repo.get_business(business.id)
    _assert(business.owner_id == owner_id, f"approve must set owner: {business}")

    for op_name, op in (
        ("approve_after_approved", claims.approve),
        ("reject_after_approved", claims.reject),
    ):
        await _expect(InvalidStateError, op(admin, claim.id), op_name)

    # Role header is enough; the id does not have to be in ADMIN_IDS.
    role_admin = CallerIdentity(user_id=500, role="admin")
    revoked = await claims.revoke(role_admin, claim.id, "ownership disputed")
    _assert(revoked.status == "revoked", f"revoke failed: {revoked}")
    business = await repo.get_business(business.id)
    _assert(business.owner_id is None, f"revoke must clear owner: {business}")

    for op_name, op in (
        ("approve_after_revoked", claims.approve),
        ("reject_after_revoked", claims.reject),
        ("revoke_after_revoked", claims.revoke),
    ):
        await _expect(InvalidStateError, op(admin, claim.id), op_name)

    second = await claims.submit(other, ClaimSubmission(business.id, "No, I run it"))
    await _expect(InvalidStateError, claims.revoke(admin, second.id), "revoke pending")
    rejected = await claims.reject(admin, second.id, "no proof")
    _assert(rejected.status == "rejected", f"reject failed: {rejected}")
    _assert(rejected.admin_message == "no proof", f"reject message lost: {rejected}")
    business = await repo.get_business(business.id)
    _assert(business.owner_id is None, f"reject must not touch owner: {business}")
    await _expect(InvalidStateError, claims.reject(admin, second.id), "reject_after_rejected")
    await _expect(InvalidStateError, claims.approve(admin, second.id), "approve_after_rejected")

    own_view = await claims.get_claim(owner, claim.id)
    _assert(own_view.id == claim.id, "claimant must see own claim")
    await _expect(AccessDeniedError, claims.get_claim(other, claim.id), "view foreign claim")
    admin_view = await claims.get_claim(admin, second.id)
    _assert(admin_view.status == "rejected", f"admin view mismatch: {admin_view}")

    mine = await claims.list_my_claims(owner)
    _assert([c.id for c in mine] == [claim.id], f"my claims mismatch: {mine}")

    rejected_only = await claims.list_claims(admin, status="rejected")
    _assert([c.id for c in rejected_only] == [second.id], f"status filter mismatch: {rejected_only}")

    stats = await claims.claim_stats(admin)
    expected = {"pending": 0, "approved": 0, "rejected": 1, "revoked": 1, "total": 2}
    _assert(stats == expected, f"stats mismatch: {stats}")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-claim-sm-"))
    try:
        sys.path.insert(0, str(REPO_ROOT / "src"))

        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: claim state-machine smoke test passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
