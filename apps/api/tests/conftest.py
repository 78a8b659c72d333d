"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for each test
- Users for each role and a ticket factory
- JWT session cookies for authenticated tests
- HTTPX AsyncClient with proper headers
"""
import os
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Generator

# Configure the app for tests before anything imports settings
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from app.main import app
from app.db.base import Base
from app.db.session import engine, SessionLocal
from app.core.deps import get_db, COOKIE_NAME
from app.core.security import create_session_token
from app.db.enums import Channel, Role
from app.db.models import ApiKey, Ticket, User
from app.schemas.auth import UserSession
from app.services import api_key_service, settings_service, ticket_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    The engine uses a StaticPool over one in-memory connection, so app code
    and the test share the same database and may commit freely.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _make_user(db: Session, role: Role, *, email: str | None = None, name: str | None = None) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"{role.value.lower()}-{uuid.uuid4().hex[:8]}@example.com",
        display_name=name or f"Test {role.value.title()}",
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def customer(db: Session) -> User:
    return _make_user(db, Role.USER, email="alice@example.com", name="Alice Customer")


@pytest.fixture(scope="function")
def agent(db: Session) -> User:
    return _make_user(db, Role.AGENT, name="Agent Smith")


@pytest.fixture(scope="function")
def admin(db: Session) -> User:
    return _make_user(db, Role.ADMIN, name="Admin Ada")


@pytest.fixture(scope="function")
def make_user(db: Session) -> Callable[..., User]:
    def factory(role: Role = Role.USER, **kwargs) -> User:
        return _make_user(db, role, **kwargs)

    return factory


@pytest.fixture(scope="function")
def make_ticket(db: Session, customer: User) -> Callable[..., Ticket]:
    """Create a committed ticket through the service (queues the created email)."""

    def factory(
        *,
        requester: User | None = None,
        subject: str = "Printer is on fire",
        description: str = "Smoke everywhere",
        channel: Channel = Channel.WEB,
        priority: str | None = None,
        **kwargs,
    ) -> Ticket:
        return ticket_service.create_ticket(
            db,
            requester=requester or customer,
            subject=subject,
            description=description,
            channel=channel,
            snapshot=settings_service.get_settings_snapshot(db),
            priority=priority,
            **kwargs,
        )

    return factory


@pytest.fixture(scope="function")
def api_key(db: Session) -> tuple[ApiKey, str]:
    return api_key_service.create_api_key(db, name="Acme integration")


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    token: str
    cookie_name: str = COOKIE_NAME


def auth_for(user: User) -> TestAuth:
    token = create_session_token(
        user_id=user.id,
        role=Role(user.role).value,
        token_version=user.token_version,
    )
    return TestAuth(user=user, token=token)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client_for(db: Session):
    """
    Factory for an authenticated AsyncClient (JWT cookie + CSRF header).

    Usage:
        async with client_for(agent) as c:
            await c.get("/tickets")
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    def factory(user: User, *, csrf: bool = True) -> AsyncClient:
        auth = auth_for(user)
        headers = {"X-Requested-With": "XMLHttpRequest"} if csrf else {}
        return AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            cookies={auth.cookie_name: auth.token},
            headers=headers,
        )

    yield factory
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(client_for, agent: User) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient signed in as an agent."""
    async with client_for(agent) as c:
        yield c


@pytest.fixture(scope="function")
def session_for() -> Callable[[User], UserSession]:
    """Build the request session context services expect for a user."""

    def factory(user: User) -> UserSession:
        return UserSession(
            user_id=user.id,
            role=Role(user.role),
            email=user.email,
            display_name=user.display_name,
            is_blocked=user.is_blocked,
        )

    return factory
