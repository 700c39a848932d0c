"""
Upload orchestration across the object store and the metadata store.

An upload moves through Validating -> Storing -> Persisting -> Complete and
stops at the first failure with the stage recorded on the raised error. The
only window that can leave state behind is Persisting: the bytes are already
in the object store, so a failed insert triggers a compensating delete of the
same key. If that delete fails too, the orphaned key goes to the audit sink
for a later reconciliation sweep.

Deletion runs the other way round: object first, then metadata. A metadata
row whose object has vanished surfaces as ``DocumentGone`` on reads and is
simply cleaned up on delete.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from docvault.errors import (
    CategoryNotFound,
    DocumentGone,
    DocumentNotFound,
    Forbidden,
    PersistenceFailed,
    StorageUnavailable,
    UploadStage,
    ValidationRejected,
)
from docvault.models.document import Document
from docvault.schemas.document import DocumentUpdate, UploadMetadata
from docvault.services.audit import ORPHANED_OBJECT, AuditRecord, AuditSink
from docvault.services.content_validator import (
    ContentValidator,
    ValidationVerdict,
    check_filename,
    normalize_content_type,
)
from docvault.services.member_service import Caller
from docvault.services.metadata_repository import DocumentFilters, MetadataRepository
from docvault.services.object_store import Disposition, ObjectStore
from docvault.services.quota import QuotaSnapshot, QuotaTracker
from docvault.utils.filenames import stored_name_for
from docvault.utils.hashing import sha256_bytes

logger = logging.getLogger("docvault.orchestrator")


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    data: bytes


@dataclass
class AccessGrant:
    document_id: str
    url: str
    disposition: Disposition
    expires_in_seconds: int
    expires_at: str


@dataclass
class DocumentPage:
    documents: list[Document]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class UploadOrchestrator:
    def __init__(
        self,
        validator: ContentValidator,
        store: ObjectStore,
        repository: MetadataRepository,
        quota: QuotaTracker,
        audit: AuditSink,
    ):
        self.validator = validator
        self.store = store
        self.repository = repository
        self.quota = quota
        self.audit = audit

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(self, caller: Caller, incoming: IncomingFile, metadata: UploadMetadata) -> tuple[Document, ValidationVerdict]:
        content_type = normalize_content_type(incoming.content_type)
        base = dict(
            action="upload",
            user_id=caller.id,
            filename=incoming.filename,
            size_bytes=len(incoming.data),
            content_type=content_type,
        )

        # Validating: no side effects yet.
        try:
            verdict = self._validate(caller, incoming, content_type, metadata)
        except Exception as exc:
            self.audit.record(AuditRecord(**base, success=False, stage=UploadStage.VALIDATING.value, error=str(exc)))
            raise

        # Storing
        file_hash = sha256_bytes(incoming.data)
        try:
            key = self.store.put(
                incoming.data,
                incoming.filename,
                caller.id,
                content_type,
                metadata={"sha256": file_hash},
            )
        except StorageUnavailable as exc:
            detail = {}
            if exc.maybe_written and exc.key:
                detail["compensated"] = self._compensate(caller, exc.key, incoming, str(exc))
            self.audit.record(AuditRecord(
                **base, success=False, stage=UploadStage.STORING.value,
                storage_key=exc.key, error=exc.message, detail=detail,
            ))
            raise

        # Persisting: the object exists, so any failure here must clean it up.
        try:
            document = self.repository.create_document(
                stored_name=stored_name_for(incoming.filename, file_hash),
                original_name=incoming.filename,
                file_size_bytes=len(incoming.data),
                content_type=content_type,
                storage_key=key,
                file_hash=file_hash,
                uploaded_by=caller.id,
                security_metadata=verdict.security_metadata(),
                category_id=metadata.category_id,
                description=metadata.description,
                tags=metadata.tags,
            )
        except Exception as exc:
            logger.error("Persisting metadata for %s failed: %s", key, exc)
            compensated = self._compensate(caller, key, incoming, str(exc))
            self.audit.record(AuditRecord(
                **base, success=False, stage=UploadStage.PERSISTING.value,
                storage_key=key, error=str(exc), detail={"compensated": compensated},
            ))
            raise PersistenceFailed(
                f"Failed to persist metadata for {key}: {exc}",
                orphaned_key=None if compensated else key,
            ) from exc

        self.audit.record(AuditRecord(
            **base, success=True, stage=UploadStage.COMPLETE.value,
            document_id=document.id, storage_key=key,
            detail={"warnings": verdict.warnings} if verdict.warnings else {},
        ))
        logger.info("Uploaded %s as %s (%d bytes)", incoming.filename, document.id, document.file_size_bytes)
        return document, verdict

    def _validate(self, caller: Caller, incoming: IncomingFile, content_type: str, metadata: UploadMetadata) -> ValidationVerdict:
        verdict = self.validator.validate(incoming.data, content_type, incoming.filename)
        if not verdict.accepted:
            raise ValidationRejected(verdict.reasons, verdict=verdict)
        if metadata.category_id and self.repository.get_category(metadata.category_id) is None:
            raise CategoryNotFound("Category not found", stage=UploadStage.VALIDATING)
        self.quota.check(caller.id, len(incoming.data))
        return verdict

    def _compensate(self, caller: Caller, key: str, incoming: IncomingFile, reason: str) -> bool:
        """Best-effort removal of an object no metadata row will point at."""
        try:
            self.store.delete(key)
            logger.info("Compensating delete removed %s", key)
            return True
        except Exception as exc:
            logger.error("Orphaned object %s: compensating delete failed: %s (original error: %s)", key, exc, reason)
            self.audit.record(AuditRecord(
                action=ORPHANED_OBJECT,
                success=False,
                user_id=caller.id,
                storage_key=key,
                filename=incoming.filename,
                size_bytes=len(incoming.data),
                error=reason,
                detail={"compensation_error": str(exc)},
            ))
            return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_document(self, caller: Caller, document_id: str) -> Document:
        document = self.repository.get_document(document_id)
        if document is None:
            raise DocumentNotFound("Document not found")
        return document

    def list_documents(self, filters: DocumentFilters, page: int = 1, limit: int = 20) -> DocumentPage:
        documents, total = self.repository.list_documents(filters, offset=(page - 1) * limit, limit=limit)
        return DocumentPage(documents=documents, total=total, page=page, limit=limit)

    def quota_for(self, caller: Caller) -> QuotaSnapshot:
        return self.quota.snapshot(caller.id)

    def access_url(self, caller: Caller, document_id: str, disposition: Disposition) -> AccessGrant:
        disposition = Disposition(disposition)
        action = "download" if disposition == Disposition.ATTACHMENT else "view"
        document = self.repository.get_document(document_id)
        if document is None:
            self.audit.record(AuditRecord(action=action, success=False, user_id=caller.id,
                                          document_id=document_id, error="Document not found"))
            raise DocumentNotFound("Document not found")

        base = dict(
            action=action,
            user_id=caller.id,
            document_id=document.id,
            storage_key=document.storage_key,
            filename=document.original_name,
            size_bytes=document.file_size_bytes,
            content_type=document.content_type,
        )
        try:
            present = self.store.exists(document.storage_key)
            if present:
                ttl = self.store.presign_ttl_seconds
                url = self.store.presign(
                    document.storage_key,
                    disposition,
                    filename=document.original_name,
                    content_type=document.content_type,
                )
        except StorageUnavailable as exc:
            self.audit.record(AuditRecord(**base, success=False, error=exc.message))
            raise

        if not present:
            logger.error("Integrity: document %s has no object at %s", document.id, document.storage_key)
            self.audit.record(AuditRecord(**base, success=False, error="document_gone"))
            raise DocumentGone("Document content is no longer available")

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        self.audit.record(AuditRecord(**base, success=True, detail={"disposition": disposition.value}))
        return AccessGrant(
            document_id=document.id,
            url=url,
            disposition=disposition,
            expires_in_seconds=ttl,
            expires_at=expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _owned_document(self, caller: Caller, document_id: str, action: str) -> Document:
        document = self.repository.get_document(document_id)
        if document is None:
            self.audit.record(AuditRecord(action=action, success=False, user_id=caller.id,
                                          document_id=document_id, error="Document not found"))
            raise DocumentNotFound("Document not found")
        if document.uploaded_by != caller.id:
            self.audit.record(AuditRecord(action=action, success=False, user_id=caller.id,
                                          document_id=document_id, error="forbidden"))
            raise Forbidden(f"Only the uploader may {action} this document")
        return document

    def update(self, caller: Caller, document_id: str, changes: DocumentUpdate) -> Document:
        document = self._owned_document(caller, document_id, "update")

        fields = changes.model_dump(exclude_unset=True)
        tags = fields.pop("tags", None)
        if fields.get("original_name") is None:
            fields.pop("original_name", None)
        else:
            fields["original_name"] = fields["original_name"].strip()
            reasons, _ = check_filename(fields["original_name"], document.content_type)
            if reasons:
                raise ValidationRejected(reasons, stage=None)
        if "description" in fields and fields["description"] is not None:
            fields["description"] = fields["description"].strip() or None
        if "category_id" in fields and not fields["category_id"]:
            fields["category_id"] = None

        updated = self.repository.update_document(document_id, fields, tags=tags)
        if updated is None:
            raise DocumentNotFound("Document not found")
        self.audit.record(AuditRecord(
            action="update", success=True, user_id=caller.id, document_id=document_id,
            storage_key=document.storage_key, filename=updated.original_name,
            detail={"fields": sorted(fields) + (["tags"] if tags is not None else [])},
        ))
        return updated

    def delete(self, caller: Caller, document_id: str):
        document = self._owned_document(caller, document_id, "delete")
        base = dict(
            action="delete",
            user_id=caller.id,
            document_id=document.id,
            storage_key=document.storage_key,
            filename=document.original_name,
            size_bytes=document.file_size_bytes,
            content_type=document.content_type,
        )

        try:
            existed = self.store.delete(document.storage_key)
        except StorageUnavailable as exc:
            # Metadata is untouched, so the delete can be retried as a whole.
            self.audit.record(AuditRecord(**base, success=False, error=exc.message))
            raise
        if not existed:
            logger.warning("Object %s for document %s was already gone; removing metadata", document.storage_key, document.id)

        try:
            self.repository.delete_document(document.id)
        except Exception as exc:
            logger.error("Integrity: object %s deleted but metadata row %s remains: %s",
                         document.storage_key, document.id, exc)
            self.audit.record(AuditRecord(**base, success=False, error=str(exc), detail={"object_deleted": True}))
            raise PersistenceFailed(f"Failed to delete metadata for {document.id}: {exc}") from exc

        self.audit.record(AuditRecord(**base, success=True, detail={"object_existed": existed}))
        logger.info("Deleted document %s", document.id)
