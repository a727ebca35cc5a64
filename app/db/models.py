"""
SQLAlchemy ORM models for the chat database.
Defines all entities: User, Chat, ChatParticipant, Message.
"""
import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Text, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from db.database import Base


def new_id() -> str:
    """Opaque string identifier used for every record."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# ENUM Types
class ChatType(str, enum.Enum):
    """Type of chat."""
    DIRECT = "DIRECT"
    GROUP = "GROUP"


# Models
class User(Base):
    """User entity - represents registered users."""
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(100), nullable=False)  # bcrypt hash
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Chat(Base):
    """Chat entity - a DIRECT (two users) or GROUP (three or more) chat."""
    __tablename__ = "chats"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(100), nullable=True)  # For group chats
    type = Column(SQLEnum(ChatType), nullable=False, index=True)
    created_by = Column(String(32), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)  # last activity

    # Relationships
    creator = relationship("User", lazy="joined")
    participant_links = relationship(
        "ChatParticipant",
        back_populates="chat",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    messages = relationship("Message", back_populates="chat")

    @property
    def participant_ids(self) -> set[str]:
        return {link.user_id for link in self.participant_links}

    @property
    def participants(self) -> list["User"]:
        return [link.user for link in self.participant_links]


class ChatParticipant(Base):
    """Junction table holding a chat's participant set."""
    __tablename__ = "chat_participants"

    chat_id = Column(String(32), ForeignKey("chats.id"), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), primary_key=True, index=True)

    # Relationships
    chat = relationship("Chat", back_populates="participant_links")
    user = relationship("User", lazy="joined")


class Message(Base):
    """Message entity - text and/or image sent to a chat. Never mutated."""
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_chat_created", "chat_id", "created_at"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    chat_id = Column(String(32), ForeignKey("chats.id"), nullable=False)
    sender_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User", lazy="joined")
