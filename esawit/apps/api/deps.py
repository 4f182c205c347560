from __future__ import annotations

import hmac

from fastapi import HTTPException, Request, status

from esawit.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "SERVICE_UNAVAILABLE", "message": "Services are not initialized"},
        )
    return services


def require_admin(request: Request) -> ServiceContainer:
    # Operator routes compare X-Admin-Token in constant time; unset token disables them.
    services = get_services(request)
    expected = services.settings.admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "ADMIN_DISABLED", "message": "Admin API token is not configured"},
        )
    provided = request.headers.get("X-Admin-Token", "")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Invalid admin token"},
        )
    return services
