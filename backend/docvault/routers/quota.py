from fastapi import APIRouter, Depends

from docvault.dependencies import Services, get_services, require_caller
from docvault.schemas.document import QuotaResponse
from docvault.services.member_service import Caller

router = APIRouter(prefix="/quota", tags=["quota"])


@router.get("", response_model=QuotaResponse)
def get_quota(
    caller: Caller = Depends(require_caller),
    services: Services = Depends(get_services),
):
    snapshot = services.orchestrator.quota_for(caller)
    return QuotaResponse(
        used_bytes=snapshot.used_bytes,
        document_count=snapshot.document_count,
        quota_bytes=snapshot.quota_bytes,
        remaining_bytes=snapshot.remaining_bytes,
        max_file_bytes=snapshot.max_file_bytes,
    )
