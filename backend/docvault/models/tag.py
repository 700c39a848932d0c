from sqlalchemy import Column, ForeignKey, Table, Text
from sqlalchemy.orm import relationship
from docvault.database import Base

document_tags = Table(
    "document_tags",
    Base.metadata,
    Column("document_id", Text, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Text, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False, unique=True)

    documents = relationship("Document", secondary=document_tags, back_populates="tags")
