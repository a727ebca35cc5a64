"""
Chat management: creating DIRECT and GROUP chats, listing a user's chats,
and reading a chat's message history.
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from api.schemas import ChatResponse, MessageResponse
from core.exceptions import NotFoundError, ValidationError
from db.models import Chat, ChatType
from db.repository import ChatRepository, MessageRepository
from services.authorization import AuthorizationGuard

logger = logging.getLogger(__name__)

DIRECT_PARTICIPANTS = 2
GROUP_MIN_PARTICIPANTS = 3


def validate_participants(chat_type: ChatType, participant_ids: Iterable[str]) -> List[str]:
    """
    Enforce the participant-count invariant of a chat type.

    DIRECT chats have exactly two distinct participants, GROUP chats at
    least three.

    Returns:
        The distinct participant ids, in first-seen order

    Raises:
        ValidationError: count does not fit the chat type
    """
    distinct = list(dict.fromkeys(participant_ids))
    if chat_type == ChatType.DIRECT and len(distinct) != DIRECT_PARTICIPANTS:
        raise ValidationError("Direct chat must have exactly 2 participants")
    if chat_type == ChatType.GROUP and len(distinct) < GROUP_MIN_PARTICIPANTS:
        raise ValidationError("Group chat must have at least 3 participants")
    return distinct


class ChatService:
    """Chat operations on behalf of an authenticated identity."""

    def __init__(self, chats: ChatRepository, messages: MessageRepository, guard: AuthorizationGuard):
        self.chats = chats
        self.messages = messages
        self.guard = guard

    async def create_group_chat(self, identity: str, name: str, participant_ids: List[str]) -> ChatResponse:
        """
        Create a GROUP chat. The creator is always a participant.

        Raises:
            ValidationError: fewer than 3 distinct participants
            NotFoundError: a participant does not exist
        """
        participants = validate_participants(ChatType.GROUP, [identity, *participant_ids])
        chat = await asyncio.to_thread(
            self._create, ChatType.GROUP, participants, identity, name.strip()
        )
        logger.info(f"Group chat {chat.id} created by {identity} with {len(participants)} participants")
        return await asyncio.to_thread(ChatResponse.from_model, chat)

    async def create_direct_chat(self, identity: str, participant_id: str) -> ChatResponse:
        """
        Open a DIRECT chat with another user, reusing an existing one.

        Raises:
            ValidationError: self-chat
            NotFoundError: participant does not exist
        """
        if participant_id == identity:
            raise ValidationError("Cannot create direct chat with yourself")
        participants = validate_participants(ChatType.DIRECT, [identity, participant_id])

        existing = await asyncio.to_thread(self.chats.find_direct_chat, identity, participant_id)
        if existing is not None:
            logger.debug(f"Reusing direct chat {existing.id}")
            return await asyncio.to_thread(self._with_last_message, existing)

        chat = await asyncio.to_thread(self._create, ChatType.DIRECT, participants, identity, None)
        logger.info(f"Direct chat {chat.id} created between {identity} and {participant_id}")
        return await asyncio.to_thread(ChatResponse.from_model, chat)

    async def list_chats(self, identity: str) -> List[ChatResponse]:
        """All chats of the identity, most recent activity first, each with its last message."""
        def load() -> List[ChatResponse]:
            return [self._with_last_message(chat) for chat in self.chats.list_chats_for_user(identity)]

        return await asyncio.to_thread(load)

    async def get_chat(self, identity: str, chat_id: str) -> ChatResponse:
        """
        Chat detail for a participant.

        Raises:
            NotFoundError: chat does not exist
            ForbiddenError: identity is not a participant
        """
        chat = await self.guard.require_participant(identity, chat_id, action="read_chat")
        return await asyncio.to_thread(self._with_last_message, chat)

    async def get_messages(
        self,
        identity: str,
        chat_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[MessageResponse]:
        """
        A page of history, oldest first.

        Raises:
            NotFoundError: chat does not exist
            ForbiddenError: identity is not a participant
        """
        chat = await self.guard.require_participant(identity, chat_id, action="read_messages")

        def load() -> List[MessageResponse]:
            page = self.messages.find_by_chat_ordered(chat.id, limit=limit, offset=offset)
            return [MessageResponse.from_model(message, chat) for message in page]

        return await asyncio.to_thread(load)

    def _create(
        self,
        chat_type: ChatType,
        participants: List[str],
        created_by: str,
        name: Optional[str]
    ) -> Chat:
        users = self.chats.find_users_by_ids(participants)
        if len(users) != len(participants):
            if chat_type == ChatType.DIRECT:
                raise NotFoundError("Participant not found")
            raise NotFoundError("One or more participants not found")
        return self.chats.create_chat(chat_type, participants, created_by, name=name)

    def _with_last_message(self, chat: Chat) -> ChatResponse:
        return ChatResponse.from_model(chat, self.messages.find_latest(chat.id))
