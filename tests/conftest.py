"""Test fixtures — a fresh in-memory identity store per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Settings are read once, at import, from PEERHIRE_* env vars, so they
   are set here before anything from peerhire is imported.
2. Each test gets its own in-memory SQLite engine (aiosqlite). StaticPool
   keeps a single connection so every session sees the same database.
3. get_db is overridden to hand out sessions from that engine; routes
   commit for real and the whole database vanishes with the engine.

No Postgres or Redis needed. Rate limiting skips itself without Redis.
"""

import os

os.environ["PEERHIRE_JWT_SECRET"] = "test-secret-0123456789abcdef0123456789"
os.environ["PEERHIRE_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PEERHIRE_BCRYPT_ROUNDS"] = "4"
os.environ["PEERHIRE_DEMO_MODE"] = "false"
os.environ["PEERHIRE_ENVIRONMENT"] = "test"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from eth_account import Account  # noqa: E402
from eth_account.messages import encode_defunct  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from peerhire.auth.wallet import issue_challenge  # noqa: E402
from peerhire.config import settings  # noqa: E402
from peerhire.db.engine import get_db  # noqa: E402
from peerhire.db.models import Base  # noqa: E402
from peerhire.main import app  # noqa: E402


@pytest_asyncio.fixture()
async def session_factory():
    """Per-test engine with the schema created from the ORM models."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for calling services directly."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(session_factory):
    """HTTP client against the app, with get_db bound to the test database.

    Learn: Auth is NOT overridden. Tests sign up / log in and send the
    real bearer token, so the whole access gate runs on every call.
    """
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture()
def demo_mode(monkeypatch):
    """Turn demo mode on with one account per role."""
    monkeypatch.setattr(settings, "demo_mode", True)
    monkeypatch.setattr(settings, "demo_client_email", "demo-client@peerhire.test")
    monkeypatch.setattr(settings, "demo_client_password", "demo-client-pass")
    monkeypatch.setattr(settings, "demo_client_name", "Demo Client")
    monkeypatch.setattr(settings, "demo_freelancer_email", "demo-freelancer@peerhire.test")
    monkeypatch.setattr(settings, "demo_freelancer_password", "demo-freelancer-pass")
    monkeypatch.setattr(settings, "demo_freelancer_name", "Demo Freelancer")
    return settings


@pytest.fixture()
def wallet():
    """A fresh local key pair."""
    return Account.create()


def _sign(account, message: str) -> str:
    signed = account.sign_message(encode_defunct(text=message))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture()
def sign():
    """personal_sign a message with an account, as 0x-prefixed hex."""
    return _sign


@pytest.fixture()
def signed_challenge():
    """Build the {address, signature, message} body a wallet login sends.

    By default the message is a fresh server-issued challenge.
    """
    def build(account, message: str | None = None) -> dict:
        message = message or issue_challenge(settings.jwt_secret)
        return {"address": account.address, "signature": _sign(account, message), "message": message}
    return build
