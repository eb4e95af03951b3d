from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base_class import Base


class User(Base):
    """Team member directory entry, used for assignee suggestions and conversation ownership."""
    __tablename__ = "users"  # type: ignore[assignment]

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    github_username = Column(String, nullable=True, index=True)
    github_url = Column(String, nullable=True)
    role = Column(String, nullable=True)  # e.g. 'frontend engineer'
    skills = Column(JSON, nullable=True)  # list of strings
    tags = Column(JSON, nullable=True)  # list of strings, matched against task keywords
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    # Relationships
    conversations = relationship("Conversation", back_populates="user")
