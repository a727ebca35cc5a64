"""
Message send pipeline: validate, authorize, persist, enrich, publish.

Persistence is the durability boundary. Once the message row is committed
the send has succeeded; updating the chat's activity timestamp and
publishing the real-time event are best-effort and never undo it. A message
that was not broadcast is still returned by history queries.
"""
import asyncio
import logging
import time
from typing import Optional

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError

from api.metrics import (
    messages_created_total,
    message_processing_duration_seconds,
    message_publish_listeners
)
from api.schemas import MessageResponse
from core.exceptions import ValidationError
from db.models import Chat
from db.repository import ChatRepository, MessageRepository
from services.authorization import AuthorizationGuard
from services.event_bus import EventBus, chat_topic

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_CONTENT_LENGTH = 2000


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class MessagePipeline:
    """Orchestrates a single message send."""

    def __init__(
        self,
        messages: MessageRepository,
        chats: ChatRepository,
        guard: AuthorizationGuard,
        event_bus: EventBus
    ):
        self.messages = messages
        self.chats = chats
        self.guard = guard
        self.event_bus = event_bus

    async def send_message(
        self,
        identity: str,
        chat_id: str,
        content: Optional[str] = None,
        image_url: Optional[str] = None
    ) -> MessageResponse:
        """
        Send a message to a chat.

        Args:
            identity: Sender subject id
            chat_id: Target chat
            content: Optional text
            image_url: Optional image reference

        Returns:
            The stored message enriched with sender and chat

        Raises:
            ValidationError: neither content nor image, or content too long
            NotFoundError: chat does not exist
            ForbiddenError: sender is not a participant
        """
        started = time.perf_counter()
        with tracer.start_as_current_span("message.send") as span:
            span.set_attribute("chat.id", chat_id)
            span.set_attribute("sender.id", identity)
            try:
                result = await self._send(identity, chat_id, _clean(content), _clean(image_url))
            except Exception:
                message_processing_duration_seconds.labels(status="error").observe(
                    time.perf_counter() - started
                )
                raise

        message_processing_duration_seconds.labels(status="ok").observe(time.perf_counter() - started)
        return result

    async def _send(
        self,
        identity: str,
        chat_id: str,
        content: Optional[str],
        image_url: Optional[str]
    ) -> MessageResponse:
        if content is None and image_url is None:
            raise ValidationError("Message must have content or image")
        if content is not None and len(content) > MAX_CONTENT_LENGTH:
            raise ValidationError(f"Message content cannot exceed {MAX_CONTENT_LENGTH} characters")

        chat = await self.guard.require_participant(identity, chat_id, action="send_message")
        chat_type = chat.type.value

        try:
            message = await asyncio.to_thread(
                self.messages.insert, chat.id, identity, content, image_url
            )
        except SQLAlchemyError:
            await asyncio.to_thread(self.messages.db.rollback)
            raise

        messages_created_total.labels(chat_type=chat_type).inc()
        logger.info(f"Message {message.id} stored in chat {chat_id} by user {identity}")

        await self._touch(chat)

        event = await asyncio.to_thread(MessageResponse.from_model, message, chat)
        self._publish(chat_id, event)
        return event

    async def _touch(self, chat: Chat) -> None:
        try:
            await asyncio.to_thread(self.chats.touch_chat, chat)
        except SQLAlchemyError as e:
            logger.warning(f"Could not update activity timestamp of chat {chat.id}: {e}")
            await asyncio.to_thread(self.chats.db.rollback)

    def _publish(self, chat_id: str, event: MessageResponse) -> None:
        topic = chat_topic(chat_id)
        try:
            delivered = self.event_bus.publish(topic, event.model_dump(mode="json", by_alias=True))
        except Exception:
            logger.exception(f"Publishing message {event.id} to {topic} failed")
            return

        message_publish_listeners.observe(delivered)
        if delivered == 0:
            logger.debug(f"No listeners on {topic} for message {event.id}")
        else:
            logger.info(f"Message {event.id} published to {topic} ({delivered} listeners)")
