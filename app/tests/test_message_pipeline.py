"""
Tests for the message send pipeline.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from db.models import ChatType, Message
from services.event_bus import chat_topic
from services.message_pipeline import MAX_CONTENT_LENGTH, MessagePipeline


@pytest.fixture
def pipeline(message_repository, chat_repository, guard, event_bus) -> MessagePipeline:
    return MessagePipeline(message_repository, chat_repository, guard, event_bus)


@pytest.fixture
def direct_chat(chat_repository, seed_test_users):
    alice, bob = seed_test_users[0], seed_test_users[1]
    return chat_repository.create_chat(ChatType.DIRECT, [alice.id, bob.id], alice.id)


def message_count(test_db) -> int:
    return test_db.query(Message).count()


class TestSendMessage:
    """Successful sends."""

    @pytest.mark.asyncio
    async def test_message_is_persisted_and_enriched(self, pipeline, direct_chat, seed_test_users, test_db):
        alice = seed_test_users[0]

        event = await pipeline.send_message(alice.id, direct_chat.id, content="  hi bob  ")

        assert event.content == "hi bob"
        assert event.sender.id == alice.id
        assert event.chat.id == direct_chat.id
        assert {p.id for p in event.chat.participants} == {alice.id, seed_test_users[1].id}
        assert message_count(test_db) == 1

    @pytest.mark.asyncio
    async def test_image_only_message(self, pipeline, direct_chat, seed_test_users):
        event = await pipeline.send_message(
            seed_test_users[1].id, direct_chat.id, image_url="/uploads/image-1-2.png"
        )

        assert event.content is None
        assert event.image_url == "/uploads/image-1-2.png"

    @pytest.mark.asyncio
    async def test_persisted_even_without_subscribers(self, pipeline, direct_chat, seed_test_users, event_bus, test_db):
        assert event_bus.listener_count(chat_topic(direct_chat.id)) == 0

        await pipeline.send_message(seed_test_users[0].id, direct_chat.id, content="nobody listens")

        assert message_count(test_db) == 1

    @pytest.mark.asyncio
    async def test_subscriber_receives_exactly_one_event(self, pipeline, direct_chat, seed_test_users, event_bus):
        subscription = event_bus.subscribe(chat_topic(direct_chat.id))

        event = await pipeline.send_message(seed_test_users[0].id, direct_chat.id, content="hello")

        payload = await asyncio.wait_for(subscription.__anext__(), 1.0)
        assert payload["id"] == event.id
        assert payload["content"] == "hello"
        assert payload["sender"]["id"] == seed_test_users[0].id
        assert payload["chat"]["id"] == direct_chat.id
        assert "password" not in payload["sender"]
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(subscription.__anext__(), 0.05)

    @pytest.mark.asyncio
    async def test_send_bumps_chat_activity(self, pipeline, direct_chat, seed_test_users, test_db):
        direct_chat.updated_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
        test_db.commit()
        test_db.refresh(direct_chat)
        before = direct_chat.updated_at

        await pipeline.send_message(seed_test_users[0].id, direct_chat.id, content="bump")

        test_db.refresh(direct_chat)
        assert direct_chat.updated_at > before

    @pytest.mark.asyncio
    async def test_activity_update_failure_does_not_fail_send(
        self, pipeline, direct_chat, seed_test_users, chat_repository, event_bus, monkeypatch, test_db
    ):
        def broken_touch(chat):
            raise OperationalError("UPDATE chats", {}, Exception("database is locked"))

        monkeypatch.setattr(chat_repository, "touch_chat", broken_touch)
        subscription = event_bus.subscribe(chat_topic(direct_chat.id))

        event = await pipeline.send_message(seed_test_users[0].id, direct_chat.id, content="kept")

        assert event.content == "kept"
        assert test_db.query(Message).filter(Message.id == event.id).count() == 1
        payload = await asyncio.wait_for(subscription.__anext__(), 1.0)
        assert payload["id"] == event.id

    @pytest.mark.asyncio
    async def test_timestamps_carry_utc_offset(self, pipeline, direct_chat, seed_test_users, event_bus):
        subscription = event_bus.subscribe(chat_topic(direct_chat.id))

        event = await pipeline.send_message(seed_test_users[0].id, direct_chat.id, content="when")

        assert event.created_at.utcoffset() == timedelta(0)
        payload = await asyncio.wait_for(subscription.__anext__(), 1.0)
        for value in (payload["createdAt"], payload["chat"]["updatedAt"], payload["sender"]["createdAt"]):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            assert parsed.utcoffset() == timedelta(0)

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_send(self, pipeline, direct_chat, seed_test_users, event_bus, monkeypatch, test_db):
        def broken_publish(topic, payload):
            raise RuntimeError("bus down")

        monkeypatch.setattr(event_bus, "publish", broken_publish)

        event = await pipeline.send_message(seed_test_users[0].id, direct_chat.id, content="still stored")

        assert event.content == "still stored"
        assert message_count(test_db) == 1


class TestRejectedSends:
    """Sends that must leave no trace."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content,image_url", [(None, None), ("", None), ("   ", "  ")])
    async def test_requires_content_or_image(self, pipeline, direct_chat, seed_test_users, test_db, content, image_url):
        with pytest.raises(ValidationError):
            await pipeline.send_message(seed_test_users[0].id, direct_chat.id, content=content, image_url=image_url)

        assert message_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_content_length_limit(self, pipeline, direct_chat, seed_test_users, test_db):
        with pytest.raises(ValidationError):
            await pipeline.send_message(
                seed_test_users[0].id, direct_chat.id, content="x" * (MAX_CONTENT_LENGTH + 1)
            )

        assert message_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_non_participant_cannot_send_or_leak(self, pipeline, direct_chat, seed_test_users, event_bus, test_db):
        alice, bob, charlie = seed_test_users[:3]
        subscription = event_bus.subscribe(chat_topic(direct_chat.id))

        with pytest.raises(ForbiddenError):
            await pipeline.send_message(charlie.id, direct_chat.id, content="let me in")

        assert message_count(test_db) == 0
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(subscription.__anext__(), 0.05)

        event = await pipeline.send_message(alice.id, direct_chat.id, content="hi bob")
        payload = await asyncio.wait_for(subscription.__anext__(), 1.0)
        assert payload["id"] == event.id
        assert bob.id in {p["id"] for p in payload["chat"]["participants"]}

    @pytest.mark.asyncio
    async def test_unknown_chat(self, pipeline, seed_test_users, test_db):
        with pytest.raises(NotFoundError):
            await pipeline.send_message(seed_test_users[0].id, "missing", content="hello")

        assert message_count(test_db) == 0
