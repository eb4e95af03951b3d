from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base_class import Base

DEFAULT_CONVERSATION_TITLE = "New Chat"


class Conversation(Base):
    __tablename__ = "conversations"  # type: ignore[assignment]

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    title = Column(String, nullable=False, default=DEFAULT_CONVERSATION_TITLE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: [Message.created_at, Message.id],
    )
    user = relationship("User", back_populates="conversations")


class Message(Base):
    """
    One persisted conversation turn. Rows are append-only; a conversation is
    replayed to the model ordered by (created_at, id).
    """
    __tablename__ = "messages"  # type: ignore[assignment]

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    role = Column(String, nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)
    function_calls = Column(JSON, nullable=True)  # [{name, args}]
    function_results = Column(JSON, nullable=True)  # [{name, success, result|error}]
    message_metadata = Column(JSON, nullable=True)  # usage, rounds, failure markers
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")


Index("idx_messages_conversation_created", Message.conversation_id, Message.created_at)
Index("idx_conversations_updated_at", Conversation.updated_at)
