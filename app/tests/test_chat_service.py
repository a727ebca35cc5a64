"""
Tests for chat creation, listing and history.
"""
import pytest

from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from db.models import ChatType
from services.chat_service import ChatService, validate_participants


@pytest.fixture
def chat_service(chat_repository, message_repository, guard) -> ChatService:
    return ChatService(chat_repository, message_repository, guard)


class TestParticipantRules:
    """Participant-count rules per chat type."""

    def test_direct_needs_exactly_two(self):
        assert validate_participants(ChatType.DIRECT, ["a", "b"]) == ["a", "b"]
        with pytest.raises(ValidationError):
            validate_participants(ChatType.DIRECT, ["a"])
        with pytest.raises(ValidationError):
            validate_participants(ChatType.DIRECT, ["a", "b", "c"])

    def test_duplicates_do_not_count(self):
        with pytest.raises(ValidationError):
            validate_participants(ChatType.DIRECT, ["a", "a"])
        with pytest.raises(ValidationError):
            validate_participants(ChatType.GROUP, ["a", "b", "b"])

    def test_group_needs_at_least_three(self):
        assert validate_participants(ChatType.GROUP, ["a", "b", "c", "a"]) == ["a", "b", "c"]
        with pytest.raises(ValidationError):
            validate_participants(ChatType.GROUP, ["a", "b"])


class TestCreateChats:
    """Creating DIRECT and GROUP chats."""

    @pytest.mark.asyncio
    async def test_group_includes_creator(self, chat_service, seed_test_users):
        alice, bob, charlie = seed_test_users[:3]

        chat = await chat_service.create_group_chat(alice.id, " Team ", [bob.id, charlie.id])

        assert chat.type == ChatType.GROUP
        assert chat.name == "Team"
        assert chat.created_by.id == alice.id
        assert {p.id for p in chat.participants} == {alice.id, bob.id, charlie.id}

    @pytest.mark.asyncio
    async def test_group_with_two_participants_is_rejected(self, chat_service, seed_test_users):
        alice, bob = seed_test_users[:2]

        with pytest.raises(ValidationError):
            await chat_service.create_group_chat(alice.id, "Pair", [bob.id, alice.id])

    @pytest.mark.asyncio
    async def test_group_with_unknown_user_is_rejected(self, chat_service, seed_test_users):
        alice, bob = seed_test_users[:2]

        with pytest.raises(NotFoundError):
            await chat_service.create_group_chat(alice.id, "Ghosts", [bob.id, "ghost"])

    @pytest.mark.asyncio
    async def test_direct_chat_is_reused(self, chat_service, seed_test_users):
        alice, bob = seed_test_users[:2]

        first = await chat_service.create_direct_chat(alice.id, bob.id)
        second = await chat_service.create_direct_chat(bob.id, alice.id)

        assert first.type == ChatType.DIRECT
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_direct_chat_with_self_is_rejected(self, chat_service, seed_test_users):
        with pytest.raises(ValidationError):
            await chat_service.create_direct_chat(seed_test_users[0].id, seed_test_users[0].id)

    @pytest.mark.asyncio
    async def test_direct_chat_with_unknown_user(self, chat_service, seed_test_users):
        with pytest.raises(NotFoundError):
            await chat_service.create_direct_chat(seed_test_users[0].id, "ghost")


class TestReadChats:
    """Listing chats and reading history."""

    @pytest.mark.asyncio
    async def test_list_only_own_chats_with_last_message(self, chat_service, message_repository, seed_test_users):
        alice, bob, charlie = seed_test_users[:3]
        chat = await chat_service.create_direct_chat(alice.id, bob.id)
        await chat_service.create_direct_chat(bob.id, charlie.id)
        message_repository.insert(chat.id, alice.id, content="first")
        message_repository.insert(chat.id, bob.id, content="second")

        chats = await chat_service.list_chats(alice.id)

        assert [c.id for c in chats] == [chat.id]
        assert chats[0].last_message.content == "second"

    @pytest.mark.asyncio
    async def test_history_pages_are_chronological(self, chat_service, message_repository, seed_test_users):
        alice, bob = seed_test_users[:2]
        chat = await chat_service.create_direct_chat(alice.id, bob.id)
        for n in range(5):
            message_repository.insert(chat.id, alice.id, content=f"m{n}")

        newest = await chat_service.get_messages(alice.id, chat.id, limit=2, offset=0)
        older = await chat_service.get_messages(bob.id, chat.id, limit=2, offset=2)

        assert [m.content for m in newest] == ["m3", "m4"]
        assert [m.content for m in older] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, chat_service, seed_test_users):
        alice, bob, charlie = seed_test_users[:3]
        chat = await chat_service.create_direct_chat(alice.id, bob.id)

        with pytest.raises(ForbiddenError):
            await chat_service.get_chat(charlie.id, chat.id)
        with pytest.raises(ForbiddenError):
            await chat_service.get_messages(charlie.id, chat.id)
