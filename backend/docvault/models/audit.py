from sqlalchemy import JSON, Column, Integer, Text
from docvault.database import Base


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Text, primary_key=True)
    action = Column(Text, nullable=False)
    outcome = Column(Text, nullable=False)
    user_id = Column(Text)
    document_id = Column(Text)
    storage_key = Column(Text)
    filename = Column(Text)
    size_bytes = Column(Integer)
    content_type = Column(Text)
    stage = Column(Text)
    error = Column(Text)
    detail = Column(JSON)
    occurred_at = Column(Text, nullable=False)
