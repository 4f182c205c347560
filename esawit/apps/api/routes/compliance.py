from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from esawit.apps.api.deps import require_admin
from esawit.apps.api.response import success_response
from esawit.domain.schemas import DataSubjectRequest
from esawit.services.audit import get_request_context
from esawit.services.container import ServiceContainer


router = APIRouter(prefix="/compliance", tags=["compliance"])


@router.post("/requests")
async def submit_data_subject_request(
    request: Request,
    body: DataSubjectRequest,
    services: ServiceContainer = Depends(require_admin),
) -> dict[str, Any]:
    context = get_request_context(request)
    result = await services.compliance.handle_data_subject_request(
        body.user_id,
        body.request_type,
        body.data,
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
    )
    return success_response(request=request, data=result)


@router.get("/report")
async def compliance_report(
    request: Request,
    services: ServiceContainer = Depends(require_admin),
) -> dict[str, Any]:
    report = await services.compliance.generate_compliance_report()
    return success_response(request=request, data=report)
