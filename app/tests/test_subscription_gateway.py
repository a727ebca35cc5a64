"""
Tests for the subscription gateway: connection identity, subscription
authorization and release.
"""
import asyncio
from datetime import timedelta

import pytest

from api.subscription_gateway import ConnectionState, SubscriptionGateway, extract_credential
from core.exceptions import AuthenticationError, ForbiddenError, NotFoundError, ValidationError
from core.security import CredentialService, credential_service
from db.models import ChatType
from services.event_bus import chat_topic


@pytest.fixture
def gateway(event_bus) -> SubscriptionGateway:
    return SubscriptionGateway(event_bus, credential_service)


@pytest.fixture
def direct_chat(chat_repository, seed_test_users):
    alice, bob = seed_test_users[0], seed_test_users[1]
    return chat_repository.create_chat(ChatType.DIRECT, [alice.id, bob.id], alice.id)


class TestExtractCredential:
    """Connection-parameter precedence."""

    def test_authorization_wins(self):
        params = {"authorization": "Bearer one", "Authorization": "Bearer two", "token": "three"}
        assert extract_credential(params) == "one"

    def test_capitalised_authorization_before_token(self):
        assert extract_credential({"Authorization": "bearer two", "token": "three"}) == "two"

    def test_bare_token(self):
        assert extract_credential({"token": "three"}) == "three"

    def test_prefix_is_case_insensitive(self):
        assert extract_credential({"authorization": "BEARER abc"}) == "abc"

    def test_non_string_value_gives_nothing(self):
        assert extract_credential({"authorization": 42, "token": "three"}) is None

    @pytest.mark.parametrize("params", [None, {}, {"authorization": ""}, "Bearer abc"])
    def test_absent(self, params):
        assert extract_credential(params) is None


class TestConnect:
    """Binding an identity at connect time."""

    @pytest.mark.asyncio
    async def test_valid_token_authenticates(self, gateway, seed_test_users, token_for):
        alice = seed_test_users[0]

        session = await gateway.connect({"authorization": f"Bearer {token_for(alice)}"})

        assert session.state == ConnectionState.AUTHENTICATED
        assert session.identity == alice.id
        assert session.email == alice.email
        assert gateway.get_connection_count() == 1

    @pytest.mark.asyncio
    async def test_invalid_token_degrades_to_anonymous(self, gateway):
        session = await gateway.connect({"authorization": "Bearer not-a-jwt"})

        assert session.state == ConnectionState.ANONYMOUS
        assert session.identity is None

    @pytest.mark.asyncio
    async def test_expired_token_degrades_to_anonymous(self, gateway, seed_test_users):
        expired = CredentialService(
            credential_service.secret_key,
            credential_service.algorithm,
            expires_in=timedelta(seconds=-10)
        ).sign({"userId": seed_test_users[0].id, "email": seed_test_users[0].email})

        session = await gateway.connect({"token": expired})

        assert session.state == ConnectionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_no_params_is_anonymous(self, gateway):
        session = await gateway.connect(None)

        assert session.state == ConnectionState.ANONYMOUS


class TestSubscribe:
    """Authorizing and registering subscriptions."""

    @pytest.mark.asyncio
    async def test_anonymous_cannot_subscribe(self, gateway, guard, direct_chat, event_bus):
        session = await gateway.connect({})

        with pytest.raises(AuthenticationError):
            await gateway.subscribe(session, "1", direct_chat.id, guard)

        assert event_bus.listener_count(chat_topic(direct_chat.id)) == 0
        assert session.subscriptions == {}

    @pytest.mark.asyncio
    async def test_outsider_is_forbidden(self, gateway, guard, direct_chat, event_bus, seed_test_users, token_for):
        session = await gateway.connect({"token": token_for(seed_test_users[2])})

        with pytest.raises(ForbiddenError):
            await gateway.subscribe(session, "1", direct_chat.id, guard)

        assert event_bus.listener_count(chat_topic(direct_chat.id)) == 0

    @pytest.mark.asyncio
    async def test_unknown_chat(self, gateway, guard, seed_test_users, token_for):
        session = await gateway.connect({"token": token_for(seed_test_users[0])})

        with pytest.raises(NotFoundError):
            await gateway.subscribe(session, "1", "missing", guard)

    @pytest.mark.asyncio
    async def test_participant_receives_published_events(self, gateway, guard, direct_chat, event_bus, seed_test_users, token_for):
        session = await gateway.connect({"token": token_for(seed_test_users[1])})

        subscription = await gateway.subscribe(session, "1", direct_chat.id, guard)
        event_bus.publish(chat_topic(direct_chat.id), {"id": "m1"})

        assert await asyncio.wait_for(subscription.__anext__(), 1.0) == {"id": "m1"}

    @pytest.mark.asyncio
    async def test_duplicate_operation_id(self, gateway, guard, direct_chat, event_bus, seed_test_users, token_for):
        session = await gateway.connect({"token": token_for(seed_test_users[0])})
        await gateway.subscribe(session, "1", direct_chat.id, guard)

        with pytest.raises(ValidationError):
            await gateway.subscribe(session, "1", direct_chat.id, guard)

        assert event_bus.listener_count(chat_topic(direct_chat.id)) == 1

    @pytest.mark.asyncio
    async def test_closed_session_cannot_subscribe(self, gateway, guard, direct_chat, seed_test_users, token_for):
        session = await gateway.connect({"token": token_for(seed_test_users[0])})
        gateway.close(session)

        with pytest.raises(ValidationError):
            await gateway.subscribe(session, "1", direct_chat.id, guard)

    @pytest.mark.asyncio
    async def test_subscribe_to_chat_without_identity(self, gateway, guard, direct_chat):
        with pytest.raises(AuthenticationError):
            await gateway.subscribe_to_chat(None, direct_chat.id, guard)


class TestRelease:
    """Unsubscribe and connection close."""

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, gateway, guard, direct_chat, event_bus, seed_test_users, token_for):
        session = await gateway.connect({"token": token_for(seed_test_users[0])})
        subscription = await gateway.subscribe(session, "1", direct_chat.id, guard)

        assert gateway.unsubscribe(session, "1") is True
        assert gateway.unsubscribe(session, "1") is False
        assert subscription.closed
        assert event_bus.publish(chat_topic(direct_chat.id), {"id": "late"}) == 0

    @pytest.mark.asyncio
    async def test_close_releases_all_subscriptions(self, gateway, guard, direct_chat, event_bus, seed_test_users, token_for):
        session = await gateway.connect({"token": token_for(seed_test_users[0])})
        first = await gateway.subscribe(session, "1", direct_chat.id, guard)
        second = await gateway.subscribe(session, "2", direct_chat.id, guard)

        gateway.close(session)
        gateway.close(session)

        assert session.state == ConnectionState.CLOSED
        assert first.closed and second.closed
        assert event_bus.topic_count() == 0
        assert gateway.get_connection_count() == 0
        with pytest.raises(StopAsyncIteration):
            await first.__anext__()
