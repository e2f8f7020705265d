"""Shared fixtures: a throwaway SQLite database, an ASGI client and signed-in users."""

from __future__ import annotations

import os
import tempfile
import uuid
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpMockSequence

_DB_PATH = os.path.join(tempfile.gettempdir(), f"calert-test-{uuid.uuid4().hex}.db")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("CLIENT_URL", "http://localhost:5173")

import httpx  # noqa: E402

import database  # noqa: E402
from auth import create_access_token  # noqa: E402
from models import Identity  # noqa: E402


@pytest.fixture(autouse=True)
async def db():
    await database.drop_db_and_tables()
    await database.create_db_and_tables()
    yield
    await database.engine.dispose()


@pytest.fixture
async def session():
    async with database.AsyncSessionLocal() as s:
        yield s


@pytest.fixture
async def client():
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def make_user(session):
    """Create an identity and return ``(identity, bearer_headers)``."""

    async def _make(email: str = "ada@example.com", provider_token: str | None = "ya29.provider-token"):
        identity = Identity(
            google_id=uuid.uuid4().hex, email=email, full_name=None,
            provider_token=provider_token,
        )
        session.add(identity)
        await session.commit()
        await session.refresh(identity)
        token = create_access_token({"sub": identity.id})
        return identity, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def google():
    """Patch the Calendar client builder and hand back the mocked service."""
    service = MagicMock(name="calendar_service")
    with patch("services.calendar_service.build", return_value=service) as build:
        service.build = build
        yield service


def http_error(status: int, body: bytes = b'{"error": {"message": "boom"}}') -> HttpError:
    return HttpError(httplib2.Response({"status": status}), body)


@pytest.fixture
def google_transport():
    """Serve canned ``(headers, body)`` responses to a real Calendar client."""
    responses: list = []
    with patch("services.calendar_service.build_http", side_effect=lambda: HttpMockSequence(list(responses))):
        yield responses
