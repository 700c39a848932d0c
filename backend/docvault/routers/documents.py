from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from docvault.dependencies import Services, get_services, limit_uploads, require_caller
from docvault.models.document import Document
from docvault.schemas.document import (
    AccessUrlResponse,
    DocumentListResponse,
    DocumentResponse,
    DocumentSummary,
    DocumentUpdate,
    UploadMetadata,
    UploadResponse,
    parse_date_bound,
)
from docvault.services.member_service import Caller
from docvault.services.metadata_repository import DocumentFilters
from docvault.services.object_store import Disposition
from docvault.services.orchestrator import IncomingFile

router = APIRouter(prefix="/documents", tags=["documents"])


def _split_tags(values: list[str] | None) -> list[str]:
    """Tags arrive as repeated fields, comma-separated values, or both."""
    tags: list[str] = []
    for value in values or []:
        tags.extend(part.strip() for part in value.split(",") if part.strip())
    return tags


def _doc_to_response(doc: Document) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        stored_name=doc.stored_name,
        original_name=doc.original_name,
        file_size_bytes=doc.file_size_bytes,
        content_type=doc.content_type,
        file_hash=doc.file_hash,
        category_id=doc.category_id,
        category_name=doc.category.name if doc.category else None,
        uploaded_by=doc.uploaded_by,
        description=doc.description,
        tags=doc.tag_names,
        security_metadata=doc.security_metadata,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


def _doc_to_summary(doc: Document) -> DocumentSummary:
    return DocumentSummary(
        id=doc.id,
        original_name=doc.original_name,
        file_size_bytes=doc.file_size_bytes,
        content_type=doc.content_type,
        category_id=doc.category_id,
        category_name=doc.category.name if doc.category else None,
        uploaded_by=doc.uploaded_by,
        description=doc.description,
        tags=doc.tag_names,
        created_at=doc.created_at,
    )


def _validation_detail(exc: ValidationError) -> list[dict]:
    return [{"loc": e["loc"], "msg": e["msg"]} for e in exc.errors()]


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    category_id: str | None = Form(None),
    description: str | None = Form(None),
    tags: list[str] | None = Form(None),
    caller: Caller = Depends(limit_uploads),
    services: Services = Depends(get_services),
):
    filename = file.filename or ""
    try:
        metadata = UploadMetadata(category_id=category_id, description=description, tags=_split_tags(tags))
    except ValidationError as exc:
        services.audit.upload_rejected(caller.id, f"Invalid upload metadata: {exc.error_count()} error(s)",
                                       filename=filename, content_type=file.content_type)
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc

    # Stop reading once the per-file cap is crossed so an oversized body never
    # sits in memory in full.
    max_bytes = services.settings.max_upload_bytes
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            services.audit.upload_rejected(caller.id, f"File too large (max {max_bytes} bytes)",
                                           filename=filename, size_bytes=size, content_type=file.content_type)
            raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)

    incoming = IncomingFile(
        filename=filename,
        content_type=file.content_type or "",
        data=b"".join(chunks),
    )
    # S3 and the malware scanner are blocking clients.
    doc, verdict = await run_in_threadpool(services.orchestrator.upload, caller, incoming, metadata)
    return UploadResponse(
        id=doc.id,
        stored_name=doc.stored_name,
        file_size_bytes=doc.file_size_bytes,
        created_at=doc.created_at,
        warnings=verdict.warnings,
    )


@router.get("", response_model=DocumentListResponse)
def list_documents(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category_id: str | None = None,
    content_type: str | None = None,
    tags: list[str] | None = Query(None),
    tag_match: str = Query("any", pattern="^(any|all)$"),
    q: str | None = None,
    uploaded_by: str | None = None,
    date_from: str | None = Query(None, description="YYYY-MM-DD or ISO 8601 datetime, inclusive"),
    date_to: str | None = Query(None, description="YYYY-MM-DD (whole day) or ISO 8601 datetime, inclusive"),
    caller: Caller = Depends(require_caller),
    services: Services = Depends(get_services),
):
    try:
        lower = parse_date_bound(date_from) if date_from else None
        upper = parse_date_bound(date_to, end_of_day=True) if date_to else None
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc

    filters = DocumentFilters(
        category_id=category_id,
        uploaded_by=uploaded_by,
        content_type=content_type,
        tags=_split_tags(tags),
        tag_match=tag_match,
        query=q.strip() if q else None,
        date_from=lower,
        date_to=upper,
    )
    result = services.orchestrator.list_documents(filters, page=page, limit=limit)
    return DocumentListResponse(
        documents=[_doc_to_summary(d) for d in result.documents],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: str,
    caller: Caller = Depends(require_caller),
    services: Services = Depends(get_services),
):
    return _doc_to_response(services.orchestrator.get_document(caller, document_id))


@router.patch("/{document_id}", response_model=DocumentResponse)
def update_document(
    document_id: str,
    req: DocumentUpdate,
    caller: Caller = Depends(require_caller),
    services: Services = Depends(get_services),
):
    return _doc_to_response(services.orchestrator.update(caller, document_id, req))


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    caller: Caller = Depends(require_caller),
    services: Services = Depends(get_services),
):
    services.orchestrator.delete(caller, document_id)
    return {"status": "deleted"}


@router.get("/{document_id}/access", response_model=AccessUrlResponse)
def access_document(
    document_id: str,
    disposition: Disposition = Disposition.ATTACHMENT,
    caller: Caller = Depends(require_caller),
    services: Services = Depends(get_services),
):
    grant = services.orchestrator.access_url(caller, document_id, disposition)
    return AccessUrlResponse(
        document_id=grant.document_id,
        url=grant.url,
        disposition=grant.disposition.value,
        expires_in_seconds=grant.expires_in_seconds,
        expires_at=grant.expires_at,
    )
