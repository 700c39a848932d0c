from docvault.models.member import Member
from docvault.models.category import Category
from docvault.models.document import Document
from docvault.models.tag import Tag, document_tags
from docvault.models.audit import AuditEvent

__all__ = ["Member", "Category", "Document", "Tag", "document_tags", "AuditEvent"]
