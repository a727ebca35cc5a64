"""
Dependency injection functions for FastAPI.
Provides database sessions, the shared real-time components, bearer-token
authentication and the service objects built on top of them.
"""
import logging
from typing import Generator, Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session, sessionmaker
from starlette.requests import HTTPConnection

from api.subscription_gateway import SubscriptionGateway
from core.audit_logger import audit_logger
from core.exceptions import AuthenticationError, InvalidCredentialError
from core.security import CredentialService, credential_service
from db.database import SessionLocal
from db.models import User
from db.repository import ChatRepository, MessageRepository, UserRepository
from services.authorization import AuthorizationGuard
from services.chat_service import ChatService
from services.event_bus import EventBus
from services.message_pipeline import MessagePipeline
from services.minio_client import MinIOClient, get_minio_client

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Automatically closes the session when request completes.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """
    Dependency that provides the session factory itself.

    Long-lived connections (WebSockets) open a short session per operation
    with it instead of holding a pooled connection for their whole lifetime.
    """
    return SessionLocal


def get_event_bus(connection: HTTPConnection) -> EventBus:
    """The application's event bus, created by the lifespan handler."""
    return connection.app.state.event_bus


def get_gateway(connection: HTTPConnection) -> SubscriptionGateway:
    """The application's subscription gateway, created by the lifespan handler."""
    return connection.app.state.gateway


def get_credential_service() -> CredentialService:
    return credential_service


def get_image_storage() -> MinIOClient:
    return get_minio_client()


def get_current_user(
    connection: HTTPConnection,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    credential_svc: CredentialService = Depends(get_credential_service),
    db: Session = Depends(get_db)
) -> User:
    """
    Bearer token authentication dependency.
    Validates the JWT signature and expiry, then loads the user it names.

    Returns:
        Authenticated User object

    Raises:
        AuthenticationError: token missing, invalid, expired, or user gone
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")

    try:
        claims = credential_svc.verify(credentials.credentials)
    except InvalidCredentialError as e:
        audit_logger.log_token_invalid(
            transport="http",
            reason=str(e),
            ip_address=connection.client.host if connection.client else None
        )
        raise AuthenticationError("Invalid or expired token")

    user = UserRepository(db).get_user_by_id(claims["userId"])
    if not user:
        raise AuthenticationError("User not found")

    return user


def get_authorization_guard(db: Session = Depends(get_db)) -> AuthorizationGuard:
    return AuthorizationGuard(ChatRepository(db))


def get_chat_service(
    db: Session = Depends(get_db),
    guard: AuthorizationGuard = Depends(get_authorization_guard)
) -> ChatService:
    return ChatService(ChatRepository(db), MessageRepository(db), guard)


def get_message_pipeline(
    db: Session = Depends(get_db),
    guard: AuthorizationGuard = Depends(get_authorization_guard),
    event_bus: EventBus = Depends(get_event_bus)
) -> MessagePipeline:
    return MessagePipeline(MessageRepository(db), ChatRepository(db), guard, event_bus)
