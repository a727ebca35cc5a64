"""
Tests for the chat membership guard.
"""
import pytest

from core.exceptions import ForbiddenError, NotFoundError
from db.models import ChatType


@pytest.fixture
def direct_chat(chat_repository, seed_test_users):
    alice, bob = seed_test_users[0], seed_test_users[1]
    return chat_repository.create_chat(ChatType.DIRECT, [alice.id, bob.id], alice.id)


@pytest.mark.asyncio
async def test_participants_pass(guard, direct_chat, seed_test_users):
    assert await guard.is_participant(seed_test_users[0].id, direct_chat.id)
    assert await guard.is_participant(seed_test_users[1].id, direct_chat.id)

    chat = await guard.require_participant(seed_test_users[1].id, direct_chat.id)
    assert chat.id == direct_chat.id


@pytest.mark.asyncio
async def test_outsider_is_refused(guard, direct_chat, seed_test_users):
    outsider = seed_test_users[2]

    assert not await guard.is_participant(outsider.id, direct_chat.id)
    with pytest.raises(ForbiddenError):
        await guard.require_participant(outsider.id, direct_chat.id)


@pytest.mark.asyncio
async def test_unknown_chat_is_not_found(guard, seed_test_users):
    with pytest.raises(NotFoundError):
        await guard.is_participant(seed_test_users[0].id, "missing")
    with pytest.raises(NotFoundError):
        await guard.require_participant(seed_test_users[0].id, "missing")
