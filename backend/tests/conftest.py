import socket
import uuid
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taskflow.core.config import settings
from taskflow.core.tokens import TokenConfig, TokenPurpose, TokenService
from taskflow.models import Base
from taskflow.notifications.email import EmailService, MockEmailTransport
from taskflow.notifications.memory_channel import InMemoryChannel
from taskflow.services.access_control import AccessGate
from taskflow.services.authentication import AuthenticationService
from taskflow.services.invitations import InvitationService, RedemptionPolicy
from taskflow.services.session_rotation import SessionRotationService
from taskflow.services.workspaces import WorkspaceService
from taskflow.stores.memory import (
    InMemoryIdentityStore,
    InMemoryInvalidationStore,
    InMemoryInvitationStore,
    InMemoryMembershipStore,
    InMemoryState,
    InMemoryWorkspaceStore,
)

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow
OTHER_SECRET = "another-secret-key-that-is-at-least-32-characters"  # nosec B105
TEST_ISSUER = "taskflow"

TEST_DATABASE_URL = (
    settings.database_url.rsplit("/", 1)[0] + f"/{settings.database_name}_test"
)

TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
TEST_EMAIL = "alice@example.com"

# Fixed wall clock so expiry tests are deterministic
FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)

MAGIC_LINK_PATH = "/api/v1/auth/verify?token="
INVITATION_PATH = "/api/v1/membership/add?token="


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def bearer(token: str) -> dict[str, str]:
    """Authorization header for an access token."""
    return {"Authorization": f"Bearer {token}"}


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Tokens
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(secret=TEST_AUTH_SECRET, issuer=TEST_ISSUER)


@pytest.fixture
def tokens(token_config: TokenConfig, clock: FakeClock) -> TokenService:
    return TokenService(token_config, clock=clock)


@pytest.fixture
def access_token(tokens: TokenService) -> str:
    """Access token for TEST_USER_ID, valid at FIXED_NOW."""
    return tokens.issue_user_token(TokenPurpose.ACCESS, TEST_USER_ID, TEST_EMAIL)


# =============================================================================
# In-memory collaborators
# =============================================================================


@pytest.fixture
def state() -> InMemoryState:
    return InMemoryState()


@pytest.fixture
def identity_store(state: InMemoryState) -> InMemoryIdentityStore:
    return InMemoryIdentityStore(state)


@pytest.fixture
def invalidation_store(state: InMemoryState) -> InMemoryInvalidationStore:
    return InMemoryInvalidationStore(state)


@pytest.fixture
def workspace_store(state: InMemoryState) -> InMemoryWorkspaceStore:
    return InMemoryWorkspaceStore(state)


@pytest.fixture
def membership_store(state: InMemoryState) -> InMemoryMembershipStore:
    return InMemoryMembershipStore(state)


@pytest.fixture
def invitation_store(state: InMemoryState) -> InMemoryInvitationStore:
    return InMemoryInvitationStore(state)


@pytest.fixture
def channel() -> InMemoryChannel:
    return InMemoryChannel()


@pytest.fixture
def email_transport() -> MockEmailTransport:
    return MockEmailTransport()


@pytest.fixture
def email_service(email_transport: MockEmailTransport) -> EmailService:
    return EmailService(email_transport, base_url="http://localhost:8000")


# =============================================================================
# Flow services
# =============================================================================


@pytest.fixture
def auth_service(
    identity_store: InMemoryIdentityStore,
    channel: InMemoryChannel,
    tokens: TokenService,
) -> AuthenticationService:
    return AuthenticationService(
        identity_store, channel, tokens, magic_link_path=MAGIC_LINK_PATH
    )


@pytest.fixture
def rotation_service(
    invalidation_store: InMemoryInvalidationStore, tokens: TokenService
) -> SessionRotationService:
    return SessionRotationService(invalidation_store, tokens)


@pytest.fixture
def workspace_service(
    workspace_store: InMemoryWorkspaceStore,
    membership_store: InMemoryMembershipStore,
) -> WorkspaceService:
    return WorkspaceService(workspace_store, membership_store)


@pytest.fixture
def redemption_policy() -> RedemptionPolicy:
    """Override in a test module to exercise another policy."""
    return RedemptionPolicy.STATELESS


@pytest.fixture
def invitation_service(
    workspace_store: InMemoryWorkspaceStore,
    membership_store: InMemoryMembershipStore,
    invitation_store: InMemoryInvitationStore,
    identity_store: InMemoryIdentityStore,
    channel: InMemoryChannel,
    tokens: TokenService,
    redemption_policy: RedemptionPolicy,
) -> InvitationService:
    return InvitationService(
        workspaces=workspace_store,
        memberships=membership_store,
        invitations=invitation_store,
        identities=identity_store,
        channel=channel,
        tokens=tokens,
        invitation_path=INVITATION_PATH,
        redemption_policy=redemption_policy,
    )


@pytest.fixture
def gate(tokens: TokenService, membership_store: InMemoryMembershipStore) -> AccessGate:
    return AccessGate(tokens, membership_store)


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest.fixture
def auth_settings() -> Iterator[None]:
    """Point the process settings at the test secret, then restore them."""
    original_secret = settings.auth_secret
    original_issuer = settings.auth_issuer
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    settings.auth_issuer = TEST_ISSUER
    yield
    settings.auth_secret = original_secret
    settings.auth_issuer = original_issuer


@pytest_asyncio.fixture
async def client(
    auth_settings: None,  # noqa: ARG001 - rate limit keying reads settings
    tokens: TokenService,
    channel: InMemoryChannel,
    identity_store: InMemoryIdentityStore,
    invalidation_store: InMemoryInvalidationStore,
    workspace_store: InMemoryWorkspaceStore,
    membership_store: InMemoryMembershipStore,
    invitation_store: InMemoryInvitationStore,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to in-memory stores and channel.

    Rate limiting is disabled; tests that exercise it re-enable the limiter
    themselves.

    Yields:
        AsyncClient for the app, without credentials.
    """
    from taskflow.api import deps
    from taskflow.core.rate_limiting import limiter
    from taskflow.main import app

    app.dependency_overrides[deps.get_token_service] = lambda: tokens
    app.dependency_overrides[deps.get_channel] = lambda: channel
    app.dependency_overrides[deps.get_identity_store] = lambda: identity_store
    app.dependency_overrides[deps.get_invalidation_store] = lambda: (
        invalidation_store
    )
    app.dependency_overrides[deps.get_workspace_store] = lambda: workspace_store
    app.dependency_overrides[deps.get_membership_store] = lambda: membership_store
    app.dependency_overrides[deps.get_invitation_store] = lambda: invitation_store

    original_enabled = limiter.enabled
    limiter.enabled = False

    # https so the Secure refresh cookie round-trips through the cookie jar
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://test") as ac:
        yield ac

    limiter.enabled = original_enabled
    app.dependency_overrides.clear()


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS pgcrypto"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()
