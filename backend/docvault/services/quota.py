from dataclasses import dataclass

from docvault.errors import QuotaExceeded
from docvault.services.metadata_repository import MetadataRepository


@dataclass
class QuotaSnapshot:
    used_bytes: int
    document_count: int
    quota_bytes: int
    max_file_bytes: int

    @property
    def remaining_bytes(self) -> int:
        return max(0, self.quota_bytes - self.used_bytes)


class QuotaTracker:
    """Derives usage from stored document sizes on every call; nothing is cached."""

    def __init__(self, repository: MetadataRepository, per_user_cap: int, per_file_cap: int):
        self.repository = repository
        self.per_user_cap = per_user_cap
        self.per_file_cap = per_file_cap

    def snapshot(self, user_id: str) -> QuotaSnapshot:
        used, count = self.repository.user_totals(user_id)
        return QuotaSnapshot(
            used_bytes=used,
            document_count=count,
            quota_bytes=self.per_user_cap,
            max_file_bytes=self.per_file_cap,
        )

    def remaining_bytes(self, user_id: str) -> int:
        return self.snapshot(user_id).remaining_bytes

    def check(self, user_id: str, size: int):
        if size > self.per_file_cap:
            raise QuotaExceeded(
                f"File size exceeds maximum limit of {self.per_file_cap // (1024 * 1024)}MB",
                remaining_bytes=self.remaining_bytes(user_id),
            )
        remaining = self.remaining_bytes(user_id)
        if size > remaining:
            raise QuotaExceeded(
                f"Upload would exceed user storage limit of {self.per_user_cap // (1024 * 1024)}MB",
                remaining_bytes=remaining,
            )
