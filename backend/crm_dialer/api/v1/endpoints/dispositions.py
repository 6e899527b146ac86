"""
Dispositions API Endpoints
"""
from fastapi import APIRouter, Depends

from crm_dialer.api.v1.dependencies import get_dispositions
from crm_dialer.domain.models.disposition import (
    BulkDispositionRequest,
    BulkDispositionResponse,
    DispositionRequest,
    DispositionResponse,
)
from crm_dialer.domain.services.disposition_service import DispositionService

router = APIRouter(prefix="/dispositions", tags=["dispositions"])


@router.post("", response_model=DispositionResponse)
async def set_disposition(
    request: DispositionRequest,
    service: DispositionService = Depends(get_dispositions),
):
    """Set one lead's disposition; a callSid also ends that call"""
    return await service.set_disposition(
        request.lead_id,
        request.disposition,
        call_sid=request.call_sid,
        notes=request.notes,
    )


@router.post("/bulk", response_model=BulkDispositionResponse)
async def bulk_set_disposition(
    request: BulkDispositionRequest,
    service: DispositionService = Depends(get_dispositions),
):
    """Set the disposition of up to 50 leads at once"""
    return await service.bulk_set_disposition(request.lead_ids, request.disposition)
