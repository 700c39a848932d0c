from sqlalchemy import JSON, Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from docvault.database import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Text, primary_key=True)
    stored_name = Column(Text, nullable=False)
    original_name = Column(Text, nullable=False)
    file_size_bytes = Column(Integer, nullable=False)
    content_type = Column(Text, nullable=False)
    storage_key = Column(Text, nullable=False, unique=True)
    file_hash = Column(Text, nullable=False)
    category_id = Column(Text, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=True)
    uploaded_by = Column(Text, nullable=False)
    description = Column(Text)
    security_metadata = Column(JSON, nullable=False)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    category = relationship("Category", back_populates="documents")
    tags = relationship("Tag", secondary="document_tags", back_populates="documents", lazy="selectin")

    @property
    def tag_names(self) -> list[str]:
        return sorted(t.name for t in self.tags)
