from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from esawit.apps.api.errors import (
    compliance_exception_handler,
    http_exception_handler,
    payload_validation_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from esawit.apps.api.rate_limit import enforce_rate_limit
from esawit.apps.api.response import API_VERSION
from esawit.apps.api.routes.compliance import router as compliance_router
from esawit.apps.api.routes.health import router as health_router
from esawit.apps.api.routes.ops import router as ops_router
from esawit.core.config import get_settings
from esawit.core.errors import ComplianceError
from esawit.core.logging import configure_logging
from esawit.services.container import ServiceContainer


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Build the API app.

    When ``services`` is given the caller owns its connect/disconnect;
    otherwise the lifespan builds and manages a container from settings.
    """
    settings = services.settings if services is not None else get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if services is not None:
            app.state.services = services
            yield
            return
        container = ServiceContainer.build(settings)
        await container.connect()
        app.state.services = container
        try:
            yield
        finally:
            await container.disconnect()

    app = FastAPI(title="eSawit Operations API", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, payload_validation_exception_handler)
    app.add_exception_handler(ComplianceError, compliance_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Every versioned route is counted by the fixed-window limiter.
    versioned = {"prefix": f"/{API_VERSION}", "dependencies": [Depends(enforce_rate_limit)]}
    app.include_router(health_router, **versioned)
    app.include_router(compliance_router, **versioned)
    app.include_router(ops_router, **versioned)
    return app
