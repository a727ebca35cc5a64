"""
Pydantic schemas for request/response validation.
Defines all data transfer objects (DTOs) for the API.

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Optional
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from db.models import Chat, ChatType, Message, User


def _as_utc(value: datetime) -> datetime:
    # Some backends (SQLite) hand back naive values; stored times are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class APIModel(BaseModel):
    """Base model: camelCase aliases, population by field name allowed."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# User Schemas
class UserResponse(APIModel):
    """Public projection of a user. Never includes the password hash."""
    id: str = Field(..., description="User identifier")
    username: str = Field(..., description="Unique username")
    email: str = Field(..., description="Unique email address")
    created_at: UTCDateTime = Field(..., description="Registration timestamp (UTC)")
    updated_at: UTCDateTime = Field(..., description="Last update timestamp (UTC)")

    @classmethod
    def from_model(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            created_at=user.created_at,
            updated_at=user.updated_at
        )


# Authentication Schemas
class RegisterRequest(APIModel):
    """
    Account registration request.

    Example:
        ```json
        {"username": "alice", "email": "alice@example.com", "password": "secret1"}
        ```
    """
    username: str = Field("", description="Desired username")
    email: str = Field("", description="Email address")
    password: str = Field("", description="Password (at least 6 characters)")


class LoginRequest(APIModel):
    """Email/password login request."""
    email: str = Field("", description="Email address")
    password: str = Field("", description="Password")


class AuthPayload(APIModel):
    """Token issued on register/login together with the user it belongs to."""
    token: str = Field(..., description="JWT bearer token")
    user: UserResponse


# Chat Schemas
class ChatSummary(APIModel):
    """Chat with its participants, as embedded in delivered messages."""
    id: str = Field(..., description="Chat identifier")
    name: Optional[str] = Field(None, description="Chat name (group chats)")
    type: ChatType = Field(..., description="DIRECT or GROUP")
    participants: List[UserResponse] = Field(..., description="Participant set")
    created_by: UserResponse = Field(..., description="Chat creator")
    created_at: UTCDateTime = Field(..., description="Creation timestamp (UTC)")
    updated_at: UTCDateTime = Field(..., description="Last activity timestamp (UTC)")

    @classmethod
    def from_model(cls, chat: Chat) -> "ChatSummary":
        return cls(
            id=chat.id,
            name=chat.name,
            type=chat.type,
            participants=[UserResponse.from_model(user) for user in chat.participants],
            created_by=UserResponse.from_model(chat.creator),
            created_at=chat.created_at,
            updated_at=chat.updated_at
        )


class MessageResponse(APIModel):
    """
    Message enriched with its sender and chat.

    This is both the HTTP response for a sent message and the payload of the
    real-time event delivered to subscribers.
    """
    id: str = Field(..., description="Message identifier")
    chat: ChatSummary
    sender: UserResponse
    content: Optional[str] = Field(None, description="Text content")
    image_url: Optional[str] = Field(None, description="Reference to an uploaded image")
    created_at: UTCDateTime = Field(..., description="Creation timestamp (UTC)")

    @classmethod
    def from_model(cls, message: Message, chat: Chat) -> "MessageResponse":
        return cls(
            id=message.id,
            chat=ChatSummary.from_model(chat),
            sender=UserResponse.from_model(message.sender),
            content=message.content,
            image_url=message.image_url,
            created_at=message.created_at
        )


class ChatResponse(ChatSummary):
    """Chat detail including its most recent message."""
    last_message: Optional[MessageResponse] = Field(None, description="Most recent message")

    @classmethod
    def from_model(cls, chat: Chat, last_message: Optional[Message] = None) -> "ChatResponse":
        summary = ChatSummary.from_model(chat)
        return cls(
            **summary.model_dump(),
            last_message=MessageResponse.from_model(last_message, chat) if last_message else None
        )


class CreateGroupChatRequest(APIModel):
    """
    Request to create a group chat. The creator is always added.

    Example:
        ```json
        {"name": "Project Team", "participantIds": ["<id>", "<id>"]}
        ```
    """
    name: str = Field(..., min_length=1, max_length=100, description="Group name")
    participant_ids: List[str] = Field(..., description="Other participants")


class CreateDirectChatRequest(APIModel):
    """Request to open (or reuse) a direct chat with one other user."""
    participant_id: str = Field(..., description="The other participant")


# Message Schemas
class SendMessageRequest(APIModel):
    """
    Request to send a message. At least one of content/imageUrl is required.

    Example:
        ```json
        {"chatId": "<id>", "content": "hi"}
        ```
    """
    chat_id: str = Field(..., description="Target chat")
    content: Optional[str] = Field(None, description="Text content (max 2000 chars)")
    image_url: Optional[str] = Field(None, description="URL returned by POST /api/image")


# Upload Schemas
class ImageUploadResponse(APIModel):
    """Location of a stored image, usable as a message imageUrl."""
    image_url: str = Field(..., description="Relative URL of the stored image")


# Error Schemas
class ErrorResponse(BaseModel):
    """HTTP error body."""
    detail: str
    code: str
