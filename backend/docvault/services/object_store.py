import logging
import uuid
from enum import Enum

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectionClosedError, ReadTimeoutError

from docvault.config import Settings
from docvault.database import utcnow
from docvault.errors import ObjectNotFound, StorageUnavailable
from docvault.utils.filenames import file_extension, sanitize_filename

logger = logging.getLogger("docvault.object_store")

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class Disposition(str, Enum):
    ATTACHMENT = "attachment"
    INLINE = "inline"


def build_s3_client(settings: Settings):
    return boto3.client(
        "s3",
        region_name=settings.s3_region,
        endpoint_url=settings.s3_endpoint_url,
        config=Config(
            signature_version="s3v4",
            connect_timeout=5,
            read_timeout=60,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )


def _is_not_found(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code")) in NOT_FOUND_CODES


class ObjectStore:
    """S3 gateway. Keys are ``<prefix>/<owner>/<uuid><ext>`` and never reused."""

    def __init__(self, client, bucket: str, key_prefix: str = "documents", presign_ttl_seconds: int = 900):
        self._s3 = client
        self.bucket = bucket
        self.key_prefix = key_prefix.strip("/")
        self.presign_ttl_seconds = presign_ttl_seconds

    def build_key(self, owner_id: str, key_hint: str) -> str:
        extension = sanitize_filename(file_extension(key_hint))[:16]
        suffix = f".{extension}" if extension else ""
        return f"{self.key_prefix}/{owner_id}/{uuid.uuid4()}{suffix}"

    def put(
        self,
        data: bytes,
        key_hint: str,
        owner_id: str,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        key = self.build_key(owner_id, key_hint)
        object_metadata = {
            "original-filename": sanitize_filename(key_hint),
            "uploaded-by": owner_id,
            "upload-timestamp": utcnow(),
            **(metadata or {}),
        }
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ContentLength=len(data),
                ServerSideEncryption="AES256",
                Metadata=object_metadata,
            )
        except (ReadTimeoutError, ConnectionClosedError) as exc:
            # The request reached the store; the object may exist.
            raise StorageUnavailable(f"Timed out writing {key}: {exc}", key=key, maybe_written=True) from exc
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailable(f"Failed to write {key}: {exc}", key=key) from exc
        logger.debug("Stored %s (%d bytes)", key, len(data))
        return key

    def get(self, key: str) -> bytes:
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if _is_not_found(exc):
                raise ObjectNotFound(key) from exc
            raise StorageUnavailable(f"Failed to read {key}: {exc}", key=key, stage=None) from exc
        except BotoCoreError as exc:
            raise StorageUnavailable(f"Failed to read {key}: {exc}", key=key, stage=None) from exc

    def exists(self, key: str) -> bool:
        try:
            self._s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            if _is_not_found(exc):
                return False
            raise StorageUnavailable(f"Failed to check {key}: {exc}", key=key, stage=None) from exc
        except BotoCoreError as exc:
            raise StorageUnavailable(f"Failed to check {key}: {exc}", key=key, stage=None) from exc

    def delete(self, key: str) -> bool:
        """Delete an object. Returns False when nothing was stored under ``key``."""
        if not self.exists(key):
            return False
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailable(f"Failed to delete {key}: {exc}", key=key, stage=None) from exc
        return True

    def presign(
        self,
        key: str,
        disposition: Disposition,
        filename: str | None = None,
        content_type: str | None = None,
        ttl: int | None = None,
    ) -> str:
        # The disposition is a signed query parameter, so editing it in the
        # URL invalidates the signature.
        disposition = Disposition(disposition)
        header = disposition.value
        if filename:
            header += f'; filename="{sanitize_filename(filename)}"'
        params = {"Bucket": self.bucket, "Key": key, "ResponseContentDisposition": header}
        if content_type:
            params["ResponseContentType"] = content_type
        try:
            return self._s3.generate_presigned_url(
                ClientMethod="get_object",
                Params=params,
                ExpiresIn=ttl or self.presign_ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageUnavailable(f"Failed to presign {key}: {exc}", key=key, stage=None) from exc
