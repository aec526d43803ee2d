"""
Pytest configuration and fixtures for the backend tests.

Environment is set before the app is imported: settings are read once at
import time and the token secrets are mandatory.
"""
import os
import tempfile
from datetime import timedelta
from typing import AsyncGenerator

_TEST_ROOT = tempfile.mkdtemp(prefix="blog-platform-tests-")
os.environ.update({
    "ACCESS_TOKEN_SECRET": "test-access-secret",
    "REFRESH_TOKEN_SECRET": "test-refresh-secret",
    "USE_MONGO": "false",
    "BCRYPT_ROUNDS": "4",
    "COOKIE_SECURE": "true",
    "LOG_LEVEL": "WARNING",
    "LOG_DIR": os.path.join(_TEST_ROOT, "logs"),
    "LOCAL_UPLOADS_DIR": os.path.join(_TEST_ROOT, "uploads"),
    "TEMP_UPLOAD_DIR": os.path.join(_TEST_ROOT, "temp"),
})

import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient

from main import app
from api.dependencies import get_assets, get_repository, get_token_issuer
from core.config import TokenConfig, settings
from core.security import TokenIssuer, token_issuer
from db.repository import MemoryUserRepository
from services.asset_service import AssetStore

# Initialize Faker for test data generation
fake = Faker()

API = f"{settings.API_V1_STR}/users"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def image_file(name: str = "avatar.png"):
    return (name, PNG_BYTES, "image/png")


async def register(client: AsyncClient, username="alice", email="alice@x.com",
                   password="secret1", full_name="Alice Liddell", cover=False):
    files = {"avatarImage": image_file()}
    if cover:
        files["coverImage"] = image_file("cover.png")
    return await client.post(
        f"{API}/register",
        data={"username": username, "fullName": full_name, "email": email, "password": password},
        files=files,
    )


async def login(client: AsyncClient, username="alice", password="secret1"):
    return await client.post(f"{API}/login", json={"username": username, "password": password})


@pytest.fixture
def repo() -> MemoryUserRepository:
    return MemoryUserRepository()


@pytest.fixture
def asset_store(tmp_path) -> AssetStore:
    return AssetStore(uploads_dir=str(tmp_path / "uploads"), public_base_url="http://assets.test", bucket="")


@pytest.fixture
def issuer() -> TokenIssuer:
    return token_issuer


@pytest.fixture
def expired_issuer() -> TokenIssuer:
    """Same secrets as the app, but every token it issues is already expired."""
    return TokenIssuer(TokenConfig(
        access_secret=settings.ACCESS_TOKEN_SECRET,
        refresh_secret=settings.REFRESH_TOKEN_SECRET,
        algorithm=settings.ALGORITHM,
        access_ttl=timedelta(seconds=-60),
        refresh_ttl=timedelta(seconds=-60),
    ))


@pytest.fixture
async def client(repo, asset_store) -> AsyncGenerator[AsyncClient, None]:
    """Async client over the ASGI app with a fresh user store per test."""
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_assets] = lambda: asset_store
    app.dependency_overrides[get_token_issuer] = lambda: token_issuer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def sample_user_data():
    """Sample registration data for testing."""
    return {
        "username": fake.user_name(),
        "email": fake.email(),
        "full_name": fake.name(),
        "password": fake.password(length=12),
    }


@pytest.fixture
def temp_image(tmp_path):
    """Write a small image into a temp file the way the upload intake does."""
    def _make(name: str = "avatar.png") -> str:
        path = tmp_path / "temp" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(PNG_BYTES)
        return str(path)
    return _make
