"""
HTTP API for moderation: ownership claims and reviews.

Caller identity is resolved upstream and forwarded in headers:
    X-User-Id:   numeric user id (absent for anonymous visitors)
    X-User-Role: "admin" | "user"

Error response: {"status": "error", "kind": "conflict", "message": "..."}
"""

import hmac
import logging
from dataclasses import asdict
from datetime import datetime

from aiohttp import web

from config import CFG, is_api_key_required
from moderation import (
    CallerIdentity,
    ModerationError,
    ModerationServices,
    ValidationError,
    get_moderation_services,
)
from moderation.guards import ROLE_ANONYMOUS, ROLE_USER
from moderation.requests import (
    BatchRequest,
    ClaimSubmission,
    ModerationDecision,
    OwnerAssignment,
    ReviewSubmission,
)


logger = logging.getLogger(__name__)

SERVICES_KEY = web.AppKey("moderation_services", ModerationServices)

ERROR_STATUS = {
    "not_found": 404,
    "conflict": 409,
    "invalid_state": 409,
    "forbidden": 403,
    "validation": 400,
}

PUBLIC_PATHS = {"/", "/api/v1/health"}


def _extract_api_key_from_request(request: web.Request) -> str:
    """Extract API key from X-API-Key header or Bearer auth."""
    header_key = str(request.headers.get("X-API-Key") or "").strip()
    if header_key:
        return header_key

    auth_header = str(request.headers.get("Authorization") or "").strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()

    return ""


def _error_response(kind: str, message: str, status: int) -> web.Response:
    return web.json_response(
        {"status": "error", "kind": kind, "message": message},
        status=status,
    )


@web.middleware
async def api_key_middleware(request: web.Request, handler):
    if is_api_key_required() and request.path not in PUBLIC_PATHS:
        api_key = _extract_api_key_from_request(request)
        if not api_key or not hmac.compare_digest(api_key, CFG.api_key):
            logger.warning("Rejected request without valid API key: %s %s", request.method, request.path)
            return _error_response("unauthorized", "Unauthorized", 401)
    return await handler(request)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ModerationError as error:
        return web.json_response(
            {"status": "error", **error.to_dict()},
            status=ERROR_STATUS.get(error.kind, 400),
        )
    except Exception:
        logger.exception("Unhandled error in %s %s", request.method, request.path)
        return _error_response("internal", "Internal server error", 500)


def _services(request: web.Request) -> ModerationServices:
    return request.app[SERVICES_KEY]


def _caller(request: web.Request) -> CallerIdentity:
    raw_id = str(request.headers.get("X-User-Id") or "").strip()
    if not raw_id:
        return CallerIdentity.anonymous()
    try:
        user_id = int(raw_id)
    except ValueError:
        raise ValidationError("X-User-Id must be an integer.")
    if user_id <= 0:
        raise ValidationError("X-User-Id must be a positive integer.")
    role = str(request.headers.get("X-User-Role") or ROLE_USER).strip().lower()
    if role == ROLE_ANONYMOUS:
        return CallerIdentity.anonymous()
    return CallerIdentity(user_id=user_id, role=role)


async def _read_json(request: web.Request):
    """Parsed JSON body, or None for an empty body."""
    if not request.body_exists:
        return None
    try:
        return await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON")


def _path_int(request: web.Request, name: str) -> int:
    # Routes constrain these segments to digits.
    return int(request.match_info[name])


def _query_int(request: web.Request, name: str, default: int | None = None) -> int | None:
    raw = str(request.query.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.")


def _page_args(request: web.Request) -> dict:
    return {
        "limit": _query_int(request, "limit", 50),
        "offset": _query_int(request, "offset", 0),
    }


def _ok(status: int = 200, **payload) -> web.Response:
    return web.json_response({"status": "ok", **payload}, status=status)


async def health_handler(request: web.Request) -> web.Response:
    """Health check endpoint."""
    return _ok(timestamp=datetime.now().isoformat(), service="moderation-api")


# --- claims -------------------------------------------------------------------


async def submit_claim_handler(request: web.Request) -> web.Response:
    submission = ClaimSubmission.from_payload(_path_int(request, "business_id"), await _read_json(request))
    claim = await _services(request).claims.submit(_caller(request), submission)
    return _ok(201, claim=asdict(claim))


async def my_claims_handler(request: web.Request) -> web.Response:
    claims = await _services(request).claims.list_my_claims(_caller(request))
    return _ok(claims=[asdict(claim) for claim in claims], total=len(claims))


async def admin_list_claims_handler(request: web.Request) -> web.Response:
    claims = await _services(request).claims.list_claims(
        _caller(request),
        status=request.query.get("status") or None,
        business_id=_query_int(request, "business_id"),
        **_page_args(request),
    )
    return _ok(claims=[asdict(claim) for claim in claims], total=len(claims))


async def admin_claim_stats_handler(request: web.Request) -> web.Response:
    stats = await _services(request).claims.claim_stats(_caller(request))
    return _ok(stats=stats)


async def admin_get_claim_handler(request: web.Request) -> web.Response:
    claim = await _services(request).claims.get_claim(_caller(request), _path_int(request, "claim_id"))
    return _ok(claim=asdict(claim))


async def admin_claim_action_handler(request: web.Request) -> web.Response:
    claims = _services(request).claims
    actions = {
        "approve": claims.approve,
        "reject": claims.reject,
        "revoke": claims.revoke,
    }
    action = actions[request.match_info["action"]]
    decision = ModerationDecision.from_payload(await _read_json(request))
    claim = await action(_caller(request), _path_int(request, "claim_id"), decision.admin_message)
    return _ok(claim=asdict(claim))


async def admin_delete_claim_handler(request: web.Request) -> web.Response:
    claim = await _services(request).claims.delete(_caller(request), _path_int(request, "claim_id"))
    return _ok(claim=asdict(claim))


async def admin_assign_owner_handler(request: web.Request) -> web.Response:
    assignment = OwnerAssignment.from_payload(await _read_json(request))
    business = await _services(request).claims.assign_owner(
        _caller(request), _path_int(request, "business_id"), assignment.user_id
    )
    return _ok(business=asdict(business))


# --- reviews ------------------------------------------------------------------


async def submit_review_handler(request: web.Request) -> web.Response:
    submission = ReviewSubmission.from_payload(await _read_json(request))
    review = await _services(request).reviews.submit(
        _caller(request), _path_int(request, "business_id"), submission
    )
    return _ok(201, review=asdict(review))


async def business_reviews_handler(request: web.Request) -> web.Response:
    reviews = await _services(request).reviews.list_approved_reviews(
        _path_int(request, "business_id"), **_page_args(request)
    )
    return _ok(reviews=[asdict(review) for review in reviews], total=len(reviews))


async def admin_list_reviews_handler(request: web.Request) -> web.Response:
    reviews = await _services(request).reviews.list_reviews(
        _caller(request),
        status=request.query.get("status") or None,
        business_id=_query_int(request, "business_id"),
        **_page_args(request),
    )
    return _ok(reviews=[asdict(review) for review in reviews], total=len(reviews))


async def admin_get_review_handler(request: web.Request) -> web.Response:
    review = await _services(request).reviews.get_review(_caller(request), _path_int(request, "review_id"))
    return _ok(review=asdict(review))


async def admin_review_action_handler(request: web.Request) -> web.Response:
    reviews = _services(request).reviews
    action = reviews.approve if request.match_info["action"] == "approve" else reviews.reject
    decision = ModerationDecision.from_payload(await _read_json(request))
    review = await action(_caller(request), _path_int(request, "review_id"), decision.admin_message)
    return _ok(review=asdict(review))


async def admin_delete_review_handler(request: web.Request) -> web.Response:
    review = await _services(request).reviews.delete(_caller(request), _path_int(request, "review_id"))
    return _ok(review=asdict(review))


# --- mass actions ---------------------------------------------------------------


def _mass_action_handler(kind: str):
    async def handler(request: web.Request) -> web.Response:
        services = _services(request)
        caller = _caller(request)
        # Non-admins get 403 before their payload is looked at.
        services.batch.authorize(caller)
        batch_request = BatchRequest.from_payload(kind, await _read_json(request))
        result = await services.batch.apply(caller, batch_request)
        return _ok(
            message=result.summary(),
            result={**asdict(result), "succeeded_count": result.succeeded_count},
        )

    return handler


def create_api_app(services: ModerationServices | None = None) -> web.Application:
    """Create the aiohttp application."""
    app = web.Application(middlewares=[api_key_middleware, error_middleware])
    app[SERVICES_KEY] = services or get_moderation_services()

    app.router.add_get("/api/v1/health", health_handler)
    app.router.add_get("/", health_handler)

    # Public / signed-in users
    app.router.add_post("/api/v1/businesses/{business_id:\\d+}/claims", submit_claim_handler)
    app.router.add_get("/api/v1/claims/mine", my_claims_handler)
    app.router.add_get("/api/v1/businesses/{business_id:\\d+}/reviews", business_reviews_handler)
    app.router.add_post("/api/v1/businesses/{business_id:\\d+}/reviews", submit_review_handler)

    # Admin: claims
    app.router.add_get("/api/v1/admin/claims", admin_list_claims_handler)
    app.router.add_get("/api/v1/admin/claims/stats", admin_claim_stats_handler)
    app.router.add_post("/api/v1/admin/claims/mass-action", _mass_action_handler("claims"))
    app.router.add_get("/api/v1/admin/claims/{claim_id:\\d+}", admin_get_claim_handler)
    app.router.add_post(
        "/api/v1/admin/claims/{claim_id:\\d+}/{action:approve|reject|revoke}",
        admin_claim_action_handler,
    )
    app.router.add_delete("/api/v1/admin/claims/{claim_id:\\d+}", admin_delete_claim_handler)
    app.router.add_put("/api/v1/admin/businesses/{business_id:\\d+}/owner", admin_assign_owner_handler)

    # Admin: reviews
    app.router.add_get("/api/v1/admin/reviews", admin_list_reviews_handler)
    app.router.add_post("/api/v1/admin/reviews/mass-action", _mass_action_handler("reviews"))
    app.router.add_get("/api/v1/admin/reviews/{review_id:\\d+}", admin_get_review_handler)
    app.router.add_post(
        "/api/v1/admin/reviews/{review_id:\\d+}/{action:approve|reject}",
        admin_review_action_handler,
    )
    app.router.add_delete("/api/v1/admin/reviews/{review_id:\\d+}", admin_delete_review_handler)

    return app


async def start_api_server(app: web.Application) -> web.AppRunner:
    """Start the API server."""
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, CFG.api_host, CFG.api_port)
    await site.start()

    logger.info("API server started on %s:%s", CFG.api_host, CFG.api_port)

    return runner


async def stop_api_server(runner: web.AppRunner):
    """Stop the API server."""
    await runner.cleanup()
    logger.info("API server stopped")
