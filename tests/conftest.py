"""Test configuration and fixtures.

Each test gets its own database built from the ORM metadata:
1. SQLite in memory by default (one shared connection through StaticPool)
2. Any other backend when DATABASE_URL is set, e.g. a disposable PostgreSQL
3. Services commit freely; isolation comes from recreating the schema per test
"""

import re
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load test environment variables before the application reads its settings
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=False)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.config.settings import AuthPolicy, settings  # noqa: E402
from src.database.base import Base  # noqa: E402
from src.database.dependencies import get_db_session  # noqa: E402
from src.features.auth.dependencies import get_current_user  # noqa: E402
from src.features.auth.jwt_utils import TokenIssuer, get_token_issuer  # noqa: E402
from src.features.auth.service import AuthService  # noqa: E402
from src.features.notifications.service import Channel, NotificationResult, Notifier, get_notifier  # noqa: E402
from src.features.session.service import SessionRegistry  # noqa: E402
from src.features.tokens.service import TokenLedger  # noqa: E402
from src.features.user.models import User, UserRole  # noqa: E402
from src.features.user.service import CredentialStore  # noqa: E402
from src.main import app  # noqa: E402

DEFAULT_PASSWORD = "TestPass123"

LINK_TOKEN_PATTERN = re.compile(r"token=([0-9a-f]{64})")
OTP_PATTERN = re.compile(r"code is: (\d{6})")


# Fake notification capability


@dataclass(frozen=True)
class SentNotification:
    channel: Channel
    address: str
    subject: str | None
    body: str


class RecordingNotifier(Notifier):
    """Notifier that records messages instead of delivering them."""

    def __init__(self):
        super().__init__(settings)
        self.sent: list[SentNotification] = []

    async def notify(self, channel, address, body, subject=None) -> NotificationResult:
        self.sent.append(SentNotification(channel, address, subject, body))
        return NotificationResult(delivered=True, message_id=f"test-{len(self.sent)}")

    def last(self, channel: Channel = Channel.EMAIL) -> SentNotification:
        return [n for n in self.sent if n.channel == channel][-1]

    def last_link_token(self) -> str:
        """Token embedded in the most recent emailed link."""
        for notification in reversed(self.sent):
            match = LINK_TOKEN_PATTERN.search(notification.body)
            if match:
                return match.group(1)
        raise AssertionError("No emailed link was sent")

    def last_otp(self) -> str:
        match = OTP_PATTERN.search(self.last(Channel.SMS).body)
        assert match, "No OTP was texted"
        return match.group(1)


# Database Setup - Function Scope (Fresh Schema Per Test)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an engine and the schema for one test."""
    if settings.database_url.startswith("sqlite"):
        engine = create_async_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(settings.database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Database session shared by the test body and the app under test."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as async_session:
        yield async_session


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine, tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Independent sessions on separate connections, for racing requests against each other.

    The in-memory SQLite engine has a single shared connection, so on SQLite a
    file database is used instead. Its transactions open with BEGIN IMMEDIATE
    and queue on the busy timeout rather than failing on lock upgrade.
    """
    if not settings.database_url.startswith("sqlite"):
        yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
        return

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}", connect_args={"timeout": 30})

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# Components


@pytest.fixture
def policy() -> AuthPolicy:
    return settings.auth_policy()


@pytest.fixture
def issuer() -> TokenIssuer:
    return get_token_issuer()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store(session: AsyncSession, policy: AuthPolicy) -> CredentialStore:
    return CredentialStore(session, policy)


@pytest.fixture
def ledger(session: AsyncSession, policy: AuthPolicy) -> TokenLedger:
    return TokenLedger(session, policy)


@pytest.fixture
def registry(session: AsyncSession) -> SessionRegistry:
    return SessionRegistry(session)


@pytest.fixture
def auth_service(session, policy, issuer, notifier) -> AuthService:
    return AuthService(session, policy, issuer, notifier, client_url=settings.client_url)


# FastAPI Client & Dependency Overrides


@pytest_asyncio.fixture(autouse=True)
async def override_dependencies(session: AsyncSession, notifier: RecordingNotifier):
    """Route the app's database session and notifier to the test instances."""

    async def _get_test_session():
        # Only storage faults leave the session needing a rollback; domain errors
        # are raised with nothing pending, so objects held by the test stay loaded.
        try:
            yield session
        except SQLAlchemyError:
            await session.rollback()
            raise

    app.dependency_overrides[get_db_session] = _get_test_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP test client.

    This client is unauthenticated by default. Use auth_client for
    authenticated requests.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": "pytest-client"},
    ) as ac:
        yield ac


# Test User Factories


@pytest_asyncio.fixture
async def make_user(session: AsyncSession):
    """Factory fixture to create test users with custom fields.

    Usage:
        user = await make_user()                                   # defaults
        admin = await make_user(role=UserRole.ADMIN)               # admin
        verified = await make_user(is_email_verified=True)         # verified email

    Every user has the password ``DEFAULT_PASSWORD`` unless one is given.
    """
    counter = 0  # Counter for unique email generation

    async def _factory(
        email=None,
        password=DEFAULT_PASSWORD,
        first_name="Test",
        last_name="User",
        role=UserRole.USER,
        **kwargs,
    ) -> User:
        nonlocal counter
        counter += 1

        if email is None:
            email = f"testuser{counter}@example.com"

        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            hashed_password=User.hash_password(password),
            role=role.value,
            **kwargs,
        )

        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

    yield _factory


@pytest_asyncio.fixture
async def auth_client(client: AsyncClient, make_user):
    """Authenticated client with a regular user.

    Overrides the auth dependency directly - no JWT issued, no login endpoint hit.
    Fast and reliable for testing authenticated endpoints.

    Returns:
        tuple: (client, user) - both the HTTP client and the authenticated user

    """
    user = await make_user()

    async def override_get_current_user():
        return user

    app.dependency_overrides[get_current_user] = override_get_current_user

    yield client, user

    # Cleanup is handled by autouse override_dependencies fixture


@pytest.fixture
def bearer(issuer: TokenIssuer):
    """Build an Authorization header carrying a real access token for a user."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {issuer.issue_access_token(user.id)}"}

    return _headers
