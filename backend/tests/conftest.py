# tests/conftest.py — Shared test fixtures
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("STRUCTURED_LOG_STDOUT", "false")

from models import Base, User, UserRole, ReviewInfo, GroupCategory
from auth import AuthService
from database import get_db_session
from main import app

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db_session, email: str, password: str, role: UserRole, name: str) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        display_name=name,
        password_hash=AuthService.hash_password(password),
        studio="north",
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session):
    """Create an artist"""
    return await _make_user(db_session, "artist@studio.dev", "ArtistPassword123!", UserRole.ARTIST, "Test Artist")


@pytest_asyncio.fixture
async def coordinator(db_session):
    """Create a coordinator"""
    return await _make_user(
        db_session, "coordinator@studio.dev", "CoordPassword123!", UserRole.COORDINATOR, "Test Coordinator",
    )


@pytest_asyncio.fixture
async def viewer(db_session):
    """Create a read-only viewer"""
    return await _make_user(db_session, "viewer@studio.dev", "ViewerPassword123!", UserRole.VIEWER, "Test Viewer")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


async def add_review(db_session, group_1: str, phase: str, minutes: int = 0, **fields) -> ReviewInfo:
    """Insert a review record modified ``minutes`` after BASE_TIME."""
    stamp = BASE_TIME + timedelta(minutes=minutes)
    review = ReviewInfo(
        project=fields.pop("project", "demo"),
        root=fields.pop("root", "assets"),
        group_1=group_1,
        relation=fields.pop("relation", "main"),
        phase=phase,
        created_at_utc=stamp,
        modified_at_utc=stamp,
        **fields,
    )
    db_session.add(review)
    await db_session.commit()
    await db_session.refresh(review)
    return review


async def add_category(db_session, path: str, project: str = "demo", root: str = "assets") -> GroupCategory:
    category = GroupCategory(project=project, root=root, path=path)
    db_session.add(category)
    await db_session.commit()
    await db_session.refresh(category)
    return category
