from __future__ import annotations

import hashlib
import logging

from fastapi import HTTPException, Request, Response, status

from esawit.apps.api.deps import get_services
from esawit.core.errors import RateLimitUnavailableError
from esawit.services.rate_limit import RateLimitDecision


logger = logging.getLogger(__name__)


def client_identifier(request: Request) -> str:
    # API keys identify integrations; everything else is counted per client IP.
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"key:{hashlib.sha256(api_key.encode('utf-8')).hexdigest()[:32]}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def _throttle_exception(decision: RateLimitDecision) -> HTTPException:
    headers = {
        "Retry-After": str(decision.reset_after_s),
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": "0",
    }
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "RATE_LIMITED",
            "message": "Rate limit exceeded",
            "retry_after_s": decision.reset_after_s,
        },
        headers=headers,
    )


def _unavailable_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "RATE_LIMIT_UNAVAILABLE", "message": "Rate limiting unavailable"},
    )


async def enforce_rate_limit(request: Request, response: Response) -> None:
    # Count every versioned request before authentication; store outages follow rl_fail_mode.
    services = get_services(request)
    settings = services.settings
    if not settings.rate_limit_enabled:
        return
    identifier = client_identifier(request)
    try:
        decision = await services.rate_limiter.check(
            identifier,
            settings.rate_limit_max,
            settings.rate_limit_window_ms,
        )
    except RateLimitUnavailableError as exc:
        if settings.rl_fail_mode.lower() == "closed":
            raise _unavailable_exception() from exc
        response.headers["X-RateLimit-Status"] = "degraded"
        logger.warning("rate_limit_degraded path=%s", request.url.path)
        return

    if not decision.allowed:
        logger.info("rate_limited identifier=%s path=%s", identifier, request.url.path)
        raise _throttle_exception(decision)
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
