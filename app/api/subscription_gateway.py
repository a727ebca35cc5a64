"""
Subscription Gateway for real-time chat events.

Binds a WebSocket connection to an identity when the connection opens and
turns per-chat subscription requests into live event-bus subscriptions,
after the same participant check that guards message sends.

A connection whose credential is missing or invalid is still accepted as
anonymous; it simply cannot subscribe. Each subscription is released when
the client completes it or when the connection closes.
"""
import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from api.metrics import (
    websocket_connections_active,
    websocket_connections_total,
    websocket_subscriptions_active,
    websocket_subscriptions_rejected_total
)
from core.audit_logger import audit_logger
from core.exceptions import AuthenticationError, ChatError, InvalidCredentialError, ValidationError
from core.security import CredentialService, strip_bearer
from services.authorization import AuthorizationGuard
from services.event_bus import EventBus, Subscription, chat_topic

logger = logging.getLogger(__name__)

# Connection parameters inspected for a credential, in order of precedence
CREDENTIAL_KEYS = ("authorization", "Authorization", "token")


class ConnectionState(str, enum.Enum):
    """Lifecycle state of a real-time connection."""
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    CLOSED = "closed"


@dataclass
class ConnectionSession:
    """Per-connection context established at connect time."""
    connection_id: str
    state: ConnectionState = ConnectionState.CONNECTING
    identity: Optional[str] = None
    email: Optional[str] = None
    subscriptions: Dict[str, Subscription] = field(default_factory=dict)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED


def extract_credential(params: Optional[Mapping[str, Any]]) -> Optional[str]:
    """
    Pick the bearer credential out of connection parameters.

    The first key of CREDENTIAL_KEYS holding a truthy value wins. The two
    authorization keys carry "Bearer <token>"; ``token`` carries the bare
    token. Returns None when the winning value is not a usable string.
    """
    if not isinstance(params, Mapping):
        return None
    for key in CREDENTIAL_KEYS:
        value = params.get(key)
        if not value:
            continue
        if not isinstance(value, str):
            return None
        if key == "token":
            return value.strip() or None
        return strip_bearer(value)
    return None


class SubscriptionGateway:
    """
    Connection and subscription bookkeeping for the WebSocket transport.

    Tracks every open session so shutdown can release their subscriptions.
    """

    def __init__(self, event_bus: EventBus, credentials: CredentialService):
        self.event_bus = event_bus
        self.credentials = credentials
        self.sessions: Dict[str, ConnectionSession] = {}
        logger.info("SubscriptionGateway initialized")

    async def connect(
        self,
        params: Optional[Mapping[str, Any]] = None,
        ip_address: Optional[str] = None
    ) -> ConnectionSession:
        """
        Open a session from the client's connection parameters.

        Never fails: a missing or invalid credential yields an anonymous
        session.

        Args:
            params: Parameters sent by the client when initialising
            ip_address: Peer address, for the audit log

        Returns:
            ConnectionSession in AUTHENTICATED or ANONYMOUS state
        """
        session = ConnectionSession(connection_id=uuid.uuid4().hex)
        token = extract_credential(params)

        if token is not None:
            try:
                claims = await asyncio.to_thread(self.credentials.verify, token)
            except InvalidCredentialError as e:
                audit_logger.log_token_invalid(transport="websocket", reason=str(e), ip_address=ip_address)
            else:
                session.identity = claims["userId"]
                session.email = claims.get("email")

        session.state = ConnectionState.AUTHENTICATED if session.identity else ConnectionState.ANONYMOUS
        self.sessions[session.connection_id] = session

        websocket_connections_total.labels(state=session.state.value).inc()
        websocket_connections_active.labels(state=session.state.value).inc()
        logger.info(
            f"Connection {session.connection_id} opened "
            f"({session.state.value}, user={session.identity})"
        )
        return session

    async def subscribe_to_chat(
        self,
        identity: Optional[str],
        chat_id: str,
        guard: AuthorizationGuard
    ) -> Subscription:
        """
        Transport-independent subscription to a chat's message events.

        Raises:
            AuthenticationError: no identity
            NotFoundError: chat does not exist
            ForbiddenError: identity is not a participant
        """
        if not identity:
            raise AuthenticationError("Authentication required")
        await guard.require_participant(identity, chat_id, action="subscribe")
        return self.event_bus.subscribe(chat_topic(chat_id))

    async def subscribe(
        self,
        session: ConnectionSession,
        operation_id: str,
        chat_id: str,
        guard: AuthorizationGuard
    ) -> Subscription:
        """
        Subscribe a session to a chat under a client-chosen operation id.

        Raises:
            AuthenticationError: session is anonymous
            ValidationError: session closed or operation id already in use
            NotFoundError: chat does not exist
            ForbiddenError: identity is not a participant
        """
        self._check_operation(session, operation_id)
        try:
            subscription = await self.subscribe_to_chat(session.identity, chat_id, guard)
        except ChatError as e:
            websocket_subscriptions_rejected_total.labels(reason=e.code).inc()
            logger.info(f"Subscription {operation_id} to chat {chat_id} refused: {e.message}")
            raise

        # The session may have closed, or reused the id, while the guard ran
        try:
            self._check_operation(session, operation_id)
        except ValidationError:
            subscription.close()
            raise

        session.subscriptions[operation_id] = subscription
        websocket_subscriptions_active.inc()
        logger.info(f"User {session.identity} subscribed to chat {chat_id} (operation {operation_id})")
        return subscription

    def unsubscribe(self, session: ConnectionSession, operation_id: str) -> bool:
        """
        Release one subscription of a session. Idempotent.

        Returns:
            True if a live subscription was released
        """
        subscription = session.subscriptions.pop(operation_id, None)
        if subscription is None:
            return False
        subscription.close()
        websocket_subscriptions_active.dec()
        logger.debug(f"Operation {operation_id} of connection {session.connection_id} completed")
        return True

    def close(self, session: ConnectionSession) -> None:
        """Release every subscription of a session and mark it closed. Idempotent."""
        if session.closed:
            return
        for operation_id in list(session.subscriptions):
            self.unsubscribe(session, operation_id)

        websocket_connections_active.labels(state=session.state.value).dec()
        session.state = ConnectionState.CLOSED
        self.sessions.pop(session.connection_id, None)
        logger.info(f"Connection {session.connection_id} closed (user={session.identity})")

    def close_all(self) -> None:
        """Close every open session. Called on application shutdown."""
        for session in list(self.sessions.values()):
            self.close(session)

    def get_connection_count(self) -> int:
        return len(self.sessions)

    def _check_operation(self, session: ConnectionSession, operation_id: str) -> None:
        if session.closed:
            raise ValidationError("Connection is closed")
        if operation_id in session.subscriptions:
            raise ValidationError(f"Subscriber for {operation_id} already exists")
