import os
import tempfile
import uuid
from typing import Any, Dict

import pytest

# Environment must be in place before authcore.core.config is imported
_tmp_dir = tempfile.mkdtemp(prefix="authcore-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_DIR"] = os.path.join(_tmp_dir, "logs")
os.environ["SWEEP_ENABLED"] = "false"

from httpx import ASGITransport, AsyncClient  # noqa: E402

from authcore.core.database import AsyncSessionLocal, Base, engine  # noqa: E402
from authcore.core.security import get_password_hash  # noqa: E402
from authcore.models import RefreshToken, User  # noqa: E402,F401

BASE_URL = "http://testserver"
API = "/api"


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema for every test"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return AsyncSessionLocal


@pytest.fixture
async def client():
    """HTTP client driving the app in-process"""
    from authcore.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url=BASE_URL) as ac:
        yield ac


@pytest.fixture
def test_user_data() -> Dict[str, str]:
    """Test user data with unique username"""
    unique_id = uuid.uuid4().hex[:8]
    return {
        "username": f"testuser_{unique_id}",
        "email": f"testuser_{unique_id}@example.com",
        "password": "password123",
    }


async def create_user(
    username: str,
    email: str,
    password: str = "password123",
    role: str = "user",
    is_active: bool = True,
) -> User:
    async with AsyncSessionLocal() as session:
        user = User(
            username=username,
            email=email,
            hashed_password=get_password_hash(password),
            role=role,
            is_active=is_active,
        )
        session.add(user)
        await session.commit()
        return user


@pytest.fixture
async def registered_user(client, test_user_data) -> Dict[str, Any]:
    """Register, log in and return user data with its tokens"""
    response = await client.post(f"{API}/auth/register", json=test_user_data)
    assert response.status_code == 201, f"Registration failed: {response.text}"

    login_response = await client.post(
        f"{API}/auth/login",
        json={"email": test_user_data["email"], "password": test_user_data["password"]},
    )
    assert login_response.status_code == 200
    tokens = login_response.json()
    # Tests pick the transport explicitly
    client.cookies.clear()

    return {
        "user": response.json(),
        "tokens": tokens,
        "headers": {"Authorization": f"Bearer {tokens['access_token']}"},
        "user_data": test_user_data,
    }


@pytest.fixture
async def admin_headers(client) -> Dict[str, str]:
    await create_user("admin_user", "admin@example.com", password="adminpass", role="admin")
    response = await client.post(
        f"{API}/auth/login",
        json={"email": "admin@example.com", "password": "adminpass"},
    )
    assert response.status_code == 200
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
