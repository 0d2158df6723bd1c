"""
Test fixtures - in-memory SQLite database + authenticated HTTP client
"""
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from dispatch_api.database import Base, get_db, enable_sqlite_foreign_keys
from dispatch_api.main import app
from dispatch_api.models.user import User
from dispatch_api.models.note import Note
from dispatch_api.models.task import Task
from dispatch_api.config import get_settings

TEST_API_KEY = "test-api-key"
OTHER_API_KEY = "other-api-key"


@pytest_asyncio.fixture()
async def db_session():
    """Create a fresh in-memory SQLite database for each test"""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    enable_sqlite_foreign_keys(engine.sync_engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture()
async def seed_data(db_session):
    """Insert baseline test data: the caller and a second user"""
    user = User(email="test@example.com", full_name="Test User", api_key=TEST_API_KEY)
    other = User(email="other@example.com", full_name="Other User", api_key=OTHER_API_KEY)

    db_session.add_all([user, other])
    await db_session.commit()
    await db_session.refresh(user)
    await db_session.refresh(other)

    return {"user": user, "other": other, "user_id": user.id, "other_id": other.id}


@pytest_asyncio.fixture()
async def client(db_session, seed_data):
    """Authenticated httpx AsyncClient bound to the FastAPI app"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        ac.headers["Authorization"] = f"Bearer {TEST_API_KEY}"
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauth_client(db_session):
    """Unauthenticated httpx AsyncClient"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def make_template(db_session, seed_data):
    """Store the user's template note"""

    async def _make(content: str, user_id: int = None) -> Note:
        note = Note(
            user_id=user_id or seed_data["user_id"],
            title=get_settings().TEMPLATE_NOTE_TITLE,
            content=content,
        )
        db_session.add(note)
        await db_session.commit()
        return note

    return _make


@pytest_asyncio.fixture()
async def make_task(db_session, seed_data):
    """Create a task owned by the test user"""

    async def _make(title: str, status: str = "open", user_id: int = None) -> Task:
        task = Task(user_id=user_id or seed_data["user_id"], title=title, status=status)
        db_session.add(task)
        await db_session.commit()
        await db_session.refresh(task)
        return task

    return _make
