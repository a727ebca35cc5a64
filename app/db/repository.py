"""
Repository layer for database operations.

Three stores share one SQLAlchemy session:
- UserRepository: user accounts
- ChatRepository: chats and their participant sets (membership store)
- MessageRepository: persisted messages, queryable by chat and time
"""

from typing import Iterable, List, Optional
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from db.models import User, Chat, ChatParticipant, ChatType, Message, utcnow


class UserRepository:
    """Repository for user accounts."""

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def create_user(self, username: str, email: str, password_hash: str) -> User:
        """Create a new user."""
        user = User(
            username=username,
            email=email,
            password=password_hash
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by (already normalized) email."""
        return self.db.query(User).filter(User.email == email).first()

    def find_user_by_email_or_username(self, email: str, username: str) -> Optional[User]:
        """Get any user holding either the email or the username."""
        return self.db.query(User).filter(
            or_(User.email == email, User.username == username)
        ).first()

    def search_users(self, search: Optional[str] = None) -> List[User]:
        """List users, optionally filtered by a case-insensitive substring of username or email."""
        query = self.db.query(User)
        if search:
            query = query.filter(or_(
                User.username.icontains(search, autoescape=True),
                User.email.icontains(search, autoescape=True)
            ))
        return query.order_by(User.username).all()


class ChatRepository:
    """Membership store: chats and their participants."""

    def __init__(self, db: Session):
        self.db = db

    def find_chat_by_id(self, chat_id: str) -> Optional[Chat]:
        """Get chat by ID with participants loaded."""
        return self.db.query(Chat).filter(Chat.id == chat_id).first()

    def find_users_by_ids(self, user_ids: Iterable[str]) -> List[User]:
        """Get every existing user among the given IDs."""
        ids = list(user_ids)
        if not ids:
            return []
        return self.db.query(User).filter(User.id.in_(ids)).all()

    def create_chat(
        self,
        chat_type: ChatType,
        participant_ids: Iterable[str],
        created_by: str,
        name: Optional[str] = None
    ) -> Chat:
        """Create a chat together with its participant set."""
        chat = Chat(type=chat_type, name=name, created_by=created_by)
        chat.participant_links = [
            ChatParticipant(user_id=user_id) for user_id in participant_ids
        ]
        self.db.add(chat)
        self.db.commit()
        self.db.refresh(chat)
        return chat

    def find_direct_chat(self, user_a: str, user_b: str) -> Optional[Chat]:
        """Get the DIRECT chat between two users, if one exists."""
        row = self.db.query(ChatParticipant.chat_id).join(
            Chat, Chat.id == ChatParticipant.chat_id
        ).filter(
            Chat.type == ChatType.DIRECT,
            ChatParticipant.user_id.in_([user_a, user_b])
        ).group_by(ChatParticipant.chat_id).having(
            func.count(ChatParticipant.user_id) == 2
        ).first()
        if row is None:
            return None
        return self.find_chat_by_id(row[0])

    def list_chats_for_user(self, user_id: str) -> List[Chat]:
        """Get all chats the user participates in, most recent activity first."""
        return self.db.query(Chat).join(
            ChatParticipant, ChatParticipant.chat_id == Chat.id
        ).filter(
            ChatParticipant.user_id == user_id
        ).order_by(Chat.updated_at.desc()).all()

    def touch_chat(self, chat: Chat) -> Chat:
        """Record activity on a chat by bumping its updated_at."""
        chat.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(chat)
        return chat


class MessageRepository:
    """Message store: persisted messages ordered by creation time."""

    def __init__(self, db: Session):
        self.db = db

    def insert(
        self,
        chat_id: str,
        sender_id: str,
        content: Optional[str] = None,
        image_url: Optional[str] = None
    ) -> Message:
        """Persist a new message stamped with the current time."""
        message = Message(
            chat_id=chat_id,
            sender_id=sender_id,
            content=content,
            image_url=image_url,
            created_at=utcnow()
        )
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def find_by_chat_ordered(self, chat_id: str, limit: int = 50, offset: int = 0) -> List[Message]:
        """
        Get a page of a chat's messages.

        The page is the newest ``limit`` messages after skipping the newest
        ``offset``, returned oldest first.
        """
        messages = self.db.query(Message).filter(
            Message.chat_id == chat_id
        ).order_by(Message.created_at.desc()).limit(limit).offset(offset).all()
        messages.reverse()
        return messages

    def find_latest(self, chat_id: str) -> Optional[Message]:
        """Get the most recent message of a chat."""
        return self.db.query(Message).filter(
            Message.chat_id == chat_id
        ).order_by(Message.created_at.desc()).first()
