import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# --- SETUP ---
os.environ.setdefault("ENVIRONMENT", "test")

# --- App Imports ---
from main import app
from assistmate.database.connection import Base, get_db
from assistmate.database.models import User
from assistmate.services.push import get_push_sender

# --- Test DB Setup ---
DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakePushSender:
    """Records pushes instead of calling FCM."""

    def __init__(self):
        self.sent = []

    async def send(self, token, title, body, data=None):
        self.sent.append({"token": token, "title": title, "body": body, "data": data or {}})
        return f"projects/test/messages/{len(self.sent)}"


def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer token-{user.firebase_uid}"}


async def make_user(session: AsyncSession, uid: str, **fields) -> User:
    user = User(firebase_uid=uid, email=f"{uid}@example.com", **fields)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


# --- CORE FIXTURES ---

@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def push_sender() -> FakePushSender:
    return FakePushSender()


@pytest.fixture
def mock_firebase_auth(mocker):
    """Patches the identity provider where the auth dependency uses it.
    Tokens look like ``token-<uid>``; anything else is rejected."""
    mock_auth = mocker.patch('assistmate.services.firebase_auth.auth')

    def verify(token):
        if not token.startswith("token-"):
            raise ValueError("Token is malformed")
        uid = token[len("token-"):]
        return {'uid': uid, 'email': f"{uid}@example.com", 'name': uid.title()}

    mock_auth.verify_id_token.side_effect = verify
    return mock_auth


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, push_sender, mock_firebase_auth) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_sender] = lambda: push_sender
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# --- USERS ---

@pytest_asyncio.fixture(scope="function")
async def alice(db_session) -> User:
    """Requester, in central Bengaluru."""
    return await make_user(
        db_session, "alice", username="alice", first_name="Alice", last_name="Smith",
        fmc_token="fmc-alice", latitude=12.9716, longitude=77.5946,
    )


@pytest_asyncio.fixture(scope="function")
async def bob(db_session) -> User:
    """Helper, a couple of kilometers from Alice."""
    return await make_user(
        db_session, "bob", username="bob", first_name="Bob", last_name="Jones",
        fmc_token="fmc-bob", latitude=12.9800, longitude=77.6100,
    )


@pytest_asyncio.fixture(scope="function")
async def carol(db_session) -> User:
    """Helper without a delivery token, in Delhi."""
    return await make_user(
        db_session, "carol", username="carol", first_name="Carol", last_name="White",
        latitude=28.6139, longitude=77.2090,
    )
