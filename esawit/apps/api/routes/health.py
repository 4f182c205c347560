from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from esawit.apps.api.deps import get_services
from esawit.apps.api.response import SuccessEnvelope, success_response
from esawit.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    database: bool
    cache: bool


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, services: ServiceContainer = Depends(get_services)) -> dict:
    # The cache is non-authoritative, so only the database decides ok vs degraded.
    try:
        database_ok = await services.database.ping()
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health_database_unavailable", exc_info=exc)
        database_ok = False
    cache_ok = await services.cache.health_check()
    payload = HealthResponse(
        status="ok" if database_ok and cache_ok else ("degraded" if database_ok else "unavailable"),
        database=database_ok,
        cache=cache_ok,
    )
    return success_response(request=request, data=payload.model_dump())
