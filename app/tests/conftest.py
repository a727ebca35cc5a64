"""
Pytest configuration and fixtures for testing.
Provides test database, test client, users, tokens and an in-memory image
store.
"""
import os

# Must be set before the application modules read their settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from typing import Dict, Generator, Optional, Tuple
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient
from db.database import Base
from db.models import User
from db.repository import ChatRepository, MessageRepository, UserRepository
from core.security import credential_service, hash_password
from main import app
from api.dependencies import get_db, get_image_storage, get_session_factory
from services.authorization import AuthorizationGuard
from services.event_bus import EventBus


# One in-memory database shared by every thread of a test
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeImageStorage:
    """In-memory stand-in for MinIOClient."""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    def put_image(self, filename: str, data: bytes, content_type: str) -> str:
        self.objects[filename] = (data, content_type)
        return f"images/{filename}"

    def get_image(self, filename: str) -> Optional[Tuple[bytes, str]]:
        return self.objects.get(filename)

    def ping(self) -> bool:
        return True


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh database for each test.
    Automatically creates and destroys tables.
    """
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def image_storage() -> FakeImageStorage:
    return FakeImageStorage()


@pytest.fixture(scope="function")
def test_client(test_db: Session, image_storage: FakeImageStorage) -> Generator[TestClient, None, None]:
    """
    Create a test client with test database and image store overrides.
    Used as a context manager so the lifespan (event bus, gateway) runs and
    HTTP and WebSocket traffic share one event loop.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    app.dependency_overrides[get_image_storage] = lambda: image_storage

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def seed_test_users(test_db: Session) -> list[User]:
    """
    Seed test database with 5 test users.
    Returns list of created users.
    """
    repository = UserRepository(test_db)
    users = []

    for i in range(1, 6):
        user = repository.create_user(
            username=f"user{i}",
            email=f"user{i}@example.com",
            password_hash=hash_password("password123")
        )
        users.append(user)

    return users


def _token_for(user: User) -> str:
    return credential_service.sign({"userId": user.id, "email": user.email})


@pytest.fixture
def token_for():
    """Signs a valid bearer token for a user."""
    return _token_for


@pytest.fixture
def auth_headers():
    """Builds the Authorization header of a user."""
    def build(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {_token_for(user)}"}
    return build


@pytest.fixture
def chat_repository(test_db: Session) -> ChatRepository:
    return ChatRepository(test_db)


@pytest.fixture
def message_repository(test_db: Session) -> MessageRepository:
    return MessageRepository(test_db)


@pytest.fixture
def guard(chat_repository: ChatRepository) -> AuthorizationGuard:
    return AuthorizationGuard(chat_repository)


@pytest.fixture
def event_bus() -> Generator[EventBus, None, None]:
    bus = EventBus()
    yield bus
    bus.close()
