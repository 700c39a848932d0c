from sqlalchemy import Column, Text
from sqlalchemy.orm import relationship
from docvault.database import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    documents = relationship("Document", back_populates="category", passive_deletes="all")
