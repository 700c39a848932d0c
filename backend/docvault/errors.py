"""Error taxonomy for the upload, access and delete pipeline.

Every error carries an HTTP status, a stable machine code and whether the
caller may safely retry. Only ``StorageUnavailable`` is retry-safe.
"""
from enum import Enum


class UploadStage(str, Enum):
    VALIDATING = "validating"
    STORING = "storing"
    PERSISTING = "persisting"
    COMPLETE = "complete"


class DocVaultError(Exception):
    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str, stage: UploadStage | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_detail(self) -> dict:
        detail = {"code": self.code, "message": self.message, "retryable": self.retryable}
        if self.stage is not None:
            detail["stage"] = self.stage.value
        return detail


class ValidationRejected(DocVaultError):
    status_code = 422
    code = "validation_rejected"

    def __init__(self, reasons: list[str], verdict=None, stage: UploadStage | None = UploadStage.VALIDATING):
        super().__init__("; ".join(reasons), stage=stage)
        self.reasons = reasons
        self.verdict = verdict

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["reasons"] = self.reasons
        if self.verdict is not None:
            detail["warnings"] = self.verdict.warnings
            detail["detected_content_type"] = self.verdict.detected_content_type
        return detail


class QuotaExceeded(DocVaultError):
    status_code = 413
    code = "quota_exceeded"

    def __init__(self, message: str, remaining_bytes: int):
        super().__init__(message, stage=UploadStage.VALIDATING)
        self.remaining_bytes = remaining_bytes

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["remaining_bytes"] = self.remaining_bytes
        return detail


class StorageUnavailable(DocVaultError):
    status_code = 503
    code = "storage_unavailable"
    retryable = True

    def __init__(
        self,
        message: str,
        key: str | None = None,
        maybe_written: bool = False,
        stage: UploadStage | None = UploadStage.STORING,
    ):
        super().__init__(message, stage=stage)
        self.key = key
        self.maybe_written = maybe_written


class ObjectNotFound(DocVaultError):
    status_code = 404
    code = "object_not_found"

    def __init__(self, key: str):
        super().__init__(f"No object stored under {key}")
        self.key = key


class PersistenceFailed(DocVaultError):
    code = "persistence_failed"

    def __init__(self, message: str, orphaned_key: str | None = None):
        super().__init__(message, stage=UploadStage.PERSISTING)
        self.orphaned_key = orphaned_key

    def to_detail(self) -> dict:
        # Internal inconsistency; callers get a generic message only.
        detail = {"code": self.code, "message": "The document could not be saved", "retryable": False}
        if self.stage is not None:
            detail["stage"] = self.stage.value
        return detail


class DocumentNotFound(DocVaultError):
    status_code = 404
    code = "document_not_found"


class DocumentGone(DocVaultError):
    status_code = 404
    code = "document_gone"


class Forbidden(DocVaultError):
    status_code = 403
    code = "forbidden"


class CategoryNotFound(DocVaultError):
    status_code = 404
    code = "category_not_found"


class CategoryInUse(DocVaultError):
    status_code = 409
    code = "category_in_use"


class CategoryExists(DocVaultError):
    status_code = 409
    code = "category_exists"


class RateLimited(DocVaultError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after
