from pathlib import Path
from pydantic_settings import BaseSettings

MIB = 1024 * 1024


class Settings(BaseSettings):
    data_dir: Path = Path.home() / "DocVault"
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # Object store
    s3_bucket: str = "docvault-documents"
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    s3_key_prefix: str = "documents"
    presign_ttl_seconds: int = 900  # 15 minutes

    # Upload limits
    max_upload_bytes: int = 50 * MIB
    per_user_quota_bytes: int = 500 * MIB
    max_description_chars: int = 500
    max_tags: int = 10
    max_tag_chars: int = 50
    upload_rate_limit: int = 50
    upload_rate_window_seconds: int = 3600

    # Malware scanning. Fail-open keeps uploads available when the scanner is
    # down; the scan error is recorded as a warning on the document.
    malware_scan_enabled: bool = False
    malware_scan_url: str | None = None
    malware_scan_timeout_seconds: float = 30.0
    malware_scan_fail_open: bool = True

    token_ttl_seconds: int = 3600

    # Created or promoted at startup; registration over HTTP only makes members.
    bootstrap_admin_email: str | None = None
    bootstrap_admin_password: str | None = None

    @property
    def db_path(self) -> Path:
        return self.data_dir / "db.sqlite"

    model_config = {"env_prefix": "DOCVAULT_"}


settings = Settings()
