#!/usr/bin/env python3
"""
Smoke test: HTTP API routes and error mapping.

Validates:
- caller identity comes from X-User-Id / X-User-Role headers
- typed errors map to 400/403/404/409 with {"status": "error", "kind": ...}
- unexpected exceptions become 500 "internal"
- optional API key guards everything except health
- mass-action endpoint returns per-item accounting and a summary

Run:
  python3 scripts/smoke_api_error_mapping.py
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
ADMIN_HEADERS = {"X-User-Id": str(ADMIN_ID), "X-User-Role": "admin"}
USER_HEADERS = {"X-User-Id": "70"}
OTHER_HEADERS = {"X-User-Id": "71"}


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


async def _expect_error(resp, status: int, kind: str, label: str) -> dict:
    body = await resp.json()
    _assert(resp.status == status, f"{label}: expected HTTP {status}, got {resp.status} {body}")
    _assert(body.get("status") == "error", f"{label}: error envelope missing: {body}")
    _assert(body.get("kind") == kind, f"{label}: expected kind {kind}, got {body}")
    _assert(body.get("message"), f"{label}: error message missing: {body}")
    return body


async def _run_checks(db_path: Path) -> None:
    from aiohttp.test_utils import TestClient, TestServer  # noqa: WPS433

    from api_server import create_api_app  # noqa: WPS433
    from config import CFG  # noqa: WPS433
    from database import init_db  # noqa: WPS433
    from moderation import get_moderation_services  # noqa: WPS433
    from moderation.repository import ModerationRepository  # noqa: WPS433

    await init_db(str(db_path))
    services = get_moderation_services(ModerationRepository(str(db_path)), admin_ids={ADMIN_ID})
    business = await services.repository.create_business("API Diner")
    other_business = await services.repository.create_business("API Deli")

    async with TestClient(TestServer(create_api_app(services))) as client:
        resp = await client.get("/api/v1/health")
        _assert(resp.status == 200, f"health failed: {resp.status}")

        # Claims.
        claims_url = f"/api/v1/businesses/{business.id}/claims"
        resp = await client.post(claims_url, json={"message": "mine"})
        await _expect_error(resp, 403, "forbidden", "anonymous claim")

        resp = await client.post(claims_url, json={"message": "mine"}, headers={"X-User-Id": "abc"})
        await _expect_error(resp, 400, "validation", "non-numeric user id")

        resp = await client.post(claims_url, json={}, headers=USER_HEADERS)
        await _expect_error(resp, 400, "validation", "claim without message")

        resp = await client.post(
            claims_url,
            data="{not json",
            headers={**USER_HEADERS, "Content-Type": "application/json"},
        )
        await _expect_error(resp, 400, "validation", "invalid JSON")

        resp = await client.post(f"/api/v1/businesses/{business.id + 1000}/claims", json={"message": "x"}, headers=USER_HEADERS)
        await _expect_error(resp, 404, "not_found", "claim for missing business")

        resp = await client.post(claims_url, json={"message": "mine"}, headers=USER_HEADERS)
        body = await resp.json()
        _assert(resp.status == 201, f"submit claim failed: {resp.status} {body}")
        claim_id = body["claim"]["id"]
        _assert(body["claim"]["status"] == "pending", f"claim must be pending: {body}")

        resp = await client.post(claims_url, json={"message": "again"}, headers=USER_HEADERS)
        await _expect_error(resp, 409, "conflict", "duplicate claim")

        resp = await client.post(f"/api/v1/admin/claims/{claim_id}/approve", headers=USER_HEADERS)
        await _expect_error(resp, 403, "forbidden", "non-admin approve")

        resp = await client.get(f"/api/v1/admin/claims/{claim_id}", headers=OTHER_HEADERS)
        await _expect_error(resp, 403, "forbidden", "foreign claim view")

        resp = await client.post(
            f"/api/v1/admin/claims/{claim_id}/approve",
            json={"adminMessage": "verified via phone"},
            headers=ADMIN_HEADERS,
        )
        body = await resp.json()
        _assert(resp.status == 200, f"approve failed: {resp.status} {body}")
        _assert(body["claim"]["status"] == "approved", f"claim must be approved: {body}")
        _assert(body["claim"]["admin_message"] == "verified via phone", f"admin message lost: {body}")

        resp = await client.post(f"/api/v1/admin/claims/{claim_id}/approve", headers=ADMIN_HEADERS)
        await _expect_error(resp, 409, "invalid_state", "approve twice")

        resp = await client.get("/api/v1/admin/claims/999999", headers=ADMIN_HEADERS)
        await _expect_error(resp, 404, "not_found", "missing claim")

        resp = await client.get("/api/v1/admin/claims?status=bogus", headers=ADMIN_HEADERS)
        await _expect_error(resp, 400, "validation", "unknown status filter")

        resp = await client.get("/api/v1/admin/claims/stats", headers=ADMIN_HEADERS)
        body = await resp.json()
        _assert(body["stats"]["approved"] == 1 and body["stats"]["total"] == 1, f"stats mismatch: {body}")

        resp = await client.get("/api/v1/claims/mine", headers=USER_HEADERS)
        body = await resp.json()
        _assert([c["id"] for c in body["claims"]] == [claim_id], f"my claims mismatch: {body}")

        resp = await client.put(
            f"/api/v1/admin/businesses/{business.id}/owner",
            json={"userId": None},
            headers=ADMIN_HEADERS,
        )
        body = await resp.json()
        _assert(resp.status == 200 and body["business"]["owner_id"] is None, f"owner clear failed: {body}")

        # Reviews.
        reviews_url = f"/api/v1/businesses/{business.id}/reviews"
        resp = await client.post(reviews_url, json={"rating": 6, "comment": "wow"}, headers=USER_HEADERS)
        await _expect_error(resp, 400, "validation", "rating out of range")

        resp = await client.post(reviews_url, json={"rating": 5, "comment": "wow"})
        await _expect_error(resp, 400, "validation", "anonymous review without identity")

        review_ids = []
        for rating in (5, 3):
            resp = await client.post(reviews_url, json={"rating": rating, "comment": "good"}, headers=USER_HEADERS)
            body = await resp.json()
            _assert(resp.status == 201, f"submit review failed: {resp.status} {body}")
            review_ids.append(body["review"]["id"])

        resp = await client.post(f"/api/v1/admin/reviews/{review_ids[0]}/approve", headers=ADMIN_HEADERS)
        _assert(resp.status == 200, f"approve review failed: {resp.status}")
        resp = await client.post(f"/api/v1/admin/reviews/{review_ids[0]}/reject", headers=ADMIN_HEADERS)
        await _expect_error(resp, 409, "invalid_state", "reject approved review")

        resp = await client.get(reviews_url)
        body = await resp.json()
        _assert([r["id"] for r in body["reviews"]] == [review_ids[0]], f"public listing mismatch: {body}")

        resp = await client.delete(f"/api/v1/admin/reviews/{review_ids[1]}", headers=ADMIN_HEADERS)
        _assert(resp.status == 200, f"delete review failed: {resp.status}")
        resp = await client.get(f"/api/v1/admin/reviews/{review_ids[1]}", headers=ADMIN_HEADERS)
        await _expect_error(resp, 404, "not_found", "deleted review")

        # Mass actions.
        resp = await client.post(
            "/api/v1/admin/claims/mass-action",
            json={"action": "approve", "ids": [1]},
            headers=USER_HEADERS,
        )
        await _expect_error(resp, 403, "forbidden", "non-admin mass action")

        resp = await client.post(
            "/api/v1/admin/claims/mass-action",
            json={"action": "approve", "ids": []},
            headers=ADMIN_HEADERS,
        )
        await _expect_error(resp, 400, "validation", "empty mass action")

        resp = await client.post(
            f"/api/v1/businesses/{other_business.id}/claims", json={"message": "deli"}, headers=OTHER_HEADERS
        )
        pending_id = (await resp.json())["claim"]["id"]
        resp = await client.put(
            f"/api/v1/admin/businesses/{other_business.id}/owner",
            json={"userId": 99},
            headers=ADMIN_HEADERS,
        )
        _assert(resp.status == 200, f"owner assign failed: {resp.status}")
        resp = await client.post(f"/api/v1/admin/claims/{pending_id}/approve", headers=ADMIN_HEADERS)
        await _expect_error(resp, 409, "conflict", "approve over assigned owner")
        resp = await client.post(
            "/api/v1/admin/claims/mass-action",
            json={"action": "reject", "ids": [pending_id, claim_id, 999999], "adminMessage": "cleanup"},
            headers=ADMIN_HEADERS,
        )
        body = await resp.json()
        _assert(resp.status == 200, f"mass action failed: {resp.status} {body}")
        result = body["result"]
        _assert(result["succeeded_ids"] == [pending_id], f"mass action succeeded ids mismatch: {body}")
        _assert(
            [(f["item_id"], f["kind"]) for f in result["failures"]]
            == [(claim_id, "invalid_state"), (999999, "not_found")],
            f"mass action failures mismatch: {body}",
        )
        _assert(
            body["message"] == "reject: partial, 1 of 3 claim(s) succeeded, 2 error(s)",
            f"mass action summary mismatch: {body}",
        )

        # Unexpected errors.
        async def _boom(*_args, **_kwargs):
            raise RuntimeError("disk on fire")

        original_stats = services.claims.claim_stats
        services.claims.claim_stats = _boom
        try:
            resp = await client.get("/api/v1/admin/claims/stats", headers=ADMIN_HEADERS)
            body = await _expect_error(resp, 500, "internal", "unexpected error")
            _assert("disk on fire" not in body["message"], f"internal details leaked: {body}")
        finally:
            services.claims.claim_stats = original_stats

        # API key.
        original_key = CFG.api_key
        CFG.api_key = "smoke-key"
        try:
            resp = await client.get("/api/v1/admin/claims", headers=ADMIN_HEADERS)
            await _expect_error(resp, 401, "unauthorized", "missing API key")
            resp = await client.get(
                "/api/v1/admin/claims",
                headers={**ADMIN_HEADERS, "Authorization": "Bearer wrong"},
            )
            await _expect_error(resp, 401, "unauthorized", "wrong API key")
            resp = await client.get("/api/v1/admin/claims", headers={**ADMIN_HEADERS, "X-API-Key": "smoke-key"})
            _assert(resp.status == 200, f"valid API key rejected: {resp.status}")
            resp = await client.get("/api/v1/health")
            _assert(resp.status == 200, f"health must stay public: {resp.status}")
        finally:
            CFG.api_key = original_key


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="moderation-smoke-api-"))
    try:
        sys.path.insert(0, str(REPO_ROOT / "src"))

        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: API error mapping smoke test passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
