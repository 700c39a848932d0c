import re
from datetime import date, datetime, time, timezone

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from docvault.config import settings
from docvault.database import format_timestamp

DATE_ONLY = re.compile(r"\d{4}-\d{2}-\d{2}")
_date = TypeAdapter(date)
_datetime = TypeAdapter(datetime)


def parse_date_bound(value: str, end_of_day: bool = False) -> str:
    """Turn a date or datetime query value into a stored-timestamp bound.

    A bare date covers the whole UTC day, so as an upper bound it means the
    last instant of that day. Naive datetimes are taken as UTC. Malformed
    values raise ``pydantic.ValidationError``.
    """
    value = value.strip()
    if DATE_ONLY.fullmatch(value):
        moment = datetime.combine(_date.validate_python(value), time.max if end_of_day else time.min)
    else:
        moment = _datetime.validate_python(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_timestamp(moment)


def _clean_tags(tags: list[str] | None) -> list[str] | None:
    if tags is None:
        return None
    cleaned: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag or tag in cleaned:
            continue
        if len(tag) > settings.max_tag_chars:
            raise ValueError(f"Tag '{tag[:20]}...' exceeds {settings.max_tag_chars} characters")
        cleaned.append(tag)
    if len(cleaned) > settings.max_tags:
        raise ValueError(f"At most {settings.max_tags} tags are allowed")
    return cleaned


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class UploadMetadata(BaseModel):
    """Everything an upload carries besides the file itself."""

    model_config = ConfigDict(extra="forbid")

    category_id: str | None = None
    description: str | None = Field(None, max_length=settings.max_description_chars)
    tags: list[str] = Field(default_factory=list)

    @field_validator("description", "category_id")
    @classmethod
    def strip_text(cls, value: str | None) -> str | None:
        return _clean_text(value)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, tags: list[str]) -> list[str]:
        return _clean_tags(tags)


class DocumentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    original_name: str | None = Field(None, min_length=1, max_length=255)
    category_id: str | None = None
    description: str | None = Field(None, max_length=settings.max_description_chars)
    tags: list[str] | None = None

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, tags: list[str] | None) -> list[str] | None:
        return _clean_tags(tags)


class SecurityMetadataResponse(BaseModel):
    detected_content_type: str | None
    signature: str
    is_executable: bool
    has_embedded_content: bool
    warnings: list[str]
    malware_scan: dict | None = None
    scanned_at: str


class DocumentResponse(BaseModel):
    id: str
    stored_name: str
    original_name: str
    file_size_bytes: int
    content_type: str
    file_hash: str
    category_id: str | None
    category_name: str | None
    uploaded_by: str
    description: str | None
    tags: list[str]
    security_metadata: SecurityMetadataResponse
    created_at: str
    updated_at: str


class UploadResponse(BaseModel):
    id: str
    stored_name: str
    file_size_bytes: int
    created_at: str
    warnings: list[str] = []


class DocumentSummary(BaseModel):
    id: str
    original_name: str
    file_size_bytes: int
    content_type: str
    category_id: str | None
    category_name: str | None
    uploaded_by: str
    description: str | None
    tags: list[str]
    created_at: str


class DocumentListResponse(BaseModel):
    documents: list[DocumentSummary]
    total: int
    page: int
    limit: int
    pages: int


class AccessUrlResponse(BaseModel):
    document_id: str
    url: str
    disposition: str
    expires_in_seconds: int
    expires_at: str


class QuotaResponse(BaseModel):
    used_bytes: int
    document_count: int
    quota_bytes: int
    remaining_bytes: int
    max_file_bytes: int
