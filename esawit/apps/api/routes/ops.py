from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Request

from esawit.apps.api.deps import require_admin
from esawit.apps.api.response import success_response
from esawit.services.backup import DISASTER_RECOVERY_PLAN
from esawit.services.container import ServiceContainer


router = APIRouter(prefix="/ops", tags=["ops"])


@router.get("/backups")
async def list_backups(
    request: Request,
    services: ServiceContainer = Depends(require_admin),
) -> dict[str, Any]:
    backups = await services.disaster_recovery.list_backups()
    payload = [
        {**asdict(item), "created_at": item.created_at.isoformat()}
        for item in backups
    ]
    return success_response(request=request, data=payload)


@router.get("/backups/{backup_id}/integrity")
async def backup_integrity(
    backup_id: str,
    request: Request,
    services: ServiceContainer = Depends(require_admin),
) -> dict[str, Any]:
    report = await services.disaster_recovery.test_backup_integrity(backup_id)
    return success_response(request=request, data=asdict(report))


@router.get("/dr-plan")
async def disaster_recovery_plan(
    request: Request,
    services: ServiceContainer = Depends(require_admin),
) -> dict[str, Any]:
    return success_response(request=request, data=DISASTER_RECOVERY_PLAN)


@router.get("/cache/stats")
async def cache_stats(
    request: Request,
    services: ServiceContainer = Depends(require_admin),
) -> dict[str, Any]:
    return success_response(request=request, data=await services.cache.get_cache_stats())
