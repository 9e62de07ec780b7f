"""
Pytest configuration and fixtures for Budgeting App tests.

Every test gets its own SQLite database file, a recording email sender and a
fresh per-email rate limiter. HTTP tests run the real FastAPI app through
httpx with those collaborators swapped in via dependency_overrides.
"""
import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only-0123456789"
os.environ["BCRYPT_ROUNDS"] = "10"
os.environ["EXPOSE_DEBUG_CODES"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SENDGRID_API_KEY"] = ""

import budgetapp.models  # noqa: E402,F401  registers tables on Base.metadata
from budgetapp.core.database import Base, get_db  # noqa: E402
from budgetapp.core.exceptions import EmailDeliveryError  # noqa: E402
from budgetapp.core.rate_limit import InMemoryRateLimitBackend, RateLimiter  # noqa: E402
from budgetapp.core.security import get_password_hash  # noqa: E402
from budgetapp.core.token_blacklist import InMemoryRevocationStore, token_blacklist  # noqa: E402
from budgetapp.core.utils import utcnow  # noqa: E402
from budgetapp.models.user import User  # noqa: E402
from budgetapp.services.auth_email_service import EmailKind  # noqa: E402

DEFAULT_PASSWORD = "correct-horse-battery"


class RecordingEmailSender:
    """EmailSender that keeps what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, EmailKind, Dict[str, Any]]] = []

    async def send(self, to: str, kind: EmailKind, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise EmailDeliveryError("SendGrid rejected the message", details={"status_code": 503})
        self.sent.append((to, kind, payload))

    def last_code(self, to: str, kind: Optional[EmailKind] = None) -> str:
        for recipient, sent_kind, payload in reversed(self.sent):
            if recipient == to and (kind is None or sent_kind == kind) and "code" in payload:
                return payload["code"]
        raise AssertionError(f"No code was sent to {to}")


class FakeClock:
    """Controllable replacement for utcnow."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def fresh_token_blacklist():
    token_blacklist.use_store(InMemoryRevocationStore())
    yield token_blacklist
    token_blacklist.use_store(InMemoryRevocationStore())


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's writes."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(InMemoryRateLimitBackend(), enabled=True)


@pytest.fixture
def create_user(session_factory):
    """Insert a verified user directly, bypassing the OTP flow."""

    async def _create_user(
        email: str = "alice@example.com",
        password: str = DEFAULT_PASSWORD,
        name: str = "Alice",
    ) -> User:
        async with session_factory() as session:
            user = User(
                email=email,
                name=name,
                hashed_password=get_password_hash(password),
                email_verified=True,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _create_user


@pytest_asyncio.fixture
async def client(session_factory, email_sender, rate_limiter) -> AsyncClient:
    from budgetapp.api.deps import get_email_sender, get_rate_limiter
    from budgetapp.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
