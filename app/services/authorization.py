"""
Chat membership checks.

One guard answers both "who may write to a chat" (message sends) and "who
may read it" (history queries and real-time subscriptions), so the two can
never disagree.
"""
import asyncio
import logging

from core.audit_logger import audit_logger
from core.exceptions import ForbiddenError, NotFoundError
from db.models import Chat
from db.repository import ChatRepository

logger = logging.getLogger(__name__)


class AuthorizationGuard:
    """Decides whether an identity participates in a chat."""

    def __init__(self, chats: ChatRepository):
        self.chats = chats

    async def load_chat(self, chat_id: str) -> Chat:
        """
        Fetch a chat or fail.

        Raises:
            NotFoundError: chat does not exist
        """
        chat = await asyncio.to_thread(self.chats.find_chat_by_id, chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        return chat

    async def is_participant(self, identity: str, chat_id: str) -> bool:
        """
        Check membership.

        Raises:
            NotFoundError: chat does not exist
        """
        chat = await self.load_chat(chat_id)
        return identity in chat.participant_ids

    async def require_participant(self, identity: str, chat_id: str, action: str = "read") -> Chat:
        """
        Load a chat and insist the identity is one of its participants.

        Args:
            identity: Subject id of the caller
            chat_id: Chat to check
            action: Label recorded in the audit log on denial

        Returns:
            The loaded chat

        Raises:
            NotFoundError: chat does not exist
            ForbiddenError: identity is not a participant
        """
        chat = await self.load_chat(chat_id)
        if identity not in chat.participant_ids:
            audit_logger.log_authorization_denied(user_id=identity, chat_id=chat_id, action=action)
            raise ForbiddenError("You are not a participant of this chat")
        return chat
