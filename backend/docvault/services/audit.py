"""
Audit sink for upload, access and delete attempts.
Writes are best-effort: a failing sink never aborts the operation it records.
"""
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from docvault.database import utcnow
from docvault.errors import UploadStage
from docvault.models.audit import AuditEvent

logger = logging.getLogger("docvault.audit")

ORPHANED_OBJECT = "orphaned_object"


@dataclass
class AuditRecord:
    action: str
    success: bool
    user_id: str | None = None
    document_id: str | None = None
    storage_key: str | None = None
    filename: str | None = None
    size_bytes: int | None = None
    content_type: str | None = None
    stage: str | None = None
    error: str | None = None
    detail: dict = field(default_factory=dict)


class AuditSink:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record(self, entry: AuditRecord):
        outcome = "success" if entry.success else "failure"
        logger.info(
            "audit action=%s outcome=%s user=%s document=%s key=%s stage=%s error=%s",
            entry.action, outcome, entry.user_id, entry.document_id,
            entry.storage_key, entry.stage, entry.error,
        )
        try:
            with self._session_factory() as db:
                db.add(AuditEvent(
                    id=str(uuid.uuid4()),
                    action=entry.action,
                    outcome=outcome,
                    user_id=entry.user_id,
                    document_id=entry.document_id,
                    storage_key=entry.storage_key,
                    filename=entry.filename,
                    size_bytes=entry.size_bytes,
                    content_type=entry.content_type,
                    stage=entry.stage,
                    error=entry.error,
                    detail=entry.detail or None,
                    occurred_at=utcnow(),
                ))
                db.commit()
        except Exception:
            logger.exception("Failed to write audit event for %s", entry.action)

    def upload_rejected(
        self,
        user_id: str,
        error: str,
        filename: str | None = None,
        size_bytes: int | None = None,
        content_type: str | None = None,
    ):
        """Record an upload turned away at the HTTP boundary, before the pipeline ran."""
        self.record(AuditRecord(
            action="upload",
            success=False,
            user_id=user_id,
            filename=filename,
            size_bytes=size_bytes,
            content_type=content_type,
            stage=UploadStage.VALIDATING.value,
            error=error,
        ))

    def orphaned_objects(self) -> list[str]:
        """Storage keys whose compensating delete failed, for a reconciliation sweep."""
        with self._session_factory() as db:
            rows = db.scalars(
                select(AuditEvent.storage_key)
                .where(AuditEvent.action == ORPHANED_OBJECT)
                .order_by(AuditEvent.occurred_at)
            )
            return [key for key in rows if key]
