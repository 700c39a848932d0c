from sqlalchemy import Column, Text
from docvault.database import Base


class Member(Base):
    __tablename__ = "members"

    id = Column(Text, primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    role = Column(Text, nullable=False, default="member")
    created_at = Column(Text, nullable=False)
