"""
Shared pytest fixtures for the RevoCity test suite.

Runs fully in-process: mongomock stands in for MongoDB and AI gateway calls
are monkeypatched per test. Provides a database, a fixed clock, signed
bearer headers and an httpx AsyncClient over the ASGI app.
"""

import os
import uuid
from datetime import datetime, timezone

# Identity settings must exist before revocity.config is imported
os.environ["JWT_SECRET"] = "test-secret-for-revocity-suite-0123456789"
os.environ["AI_API_KEY"] = "test-ai-key"
os.environ["SCHEDULER_KEY"] = "test-scheduler-key"

import httpx
import mongomock
import pytest
import pytest_asyncio
from jose import jwt

from revocity import config
from revocity.app import app, limiter
from revocity.database import get_db, init_db
from revocity.models import ComplaintCreate


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """Fresh in-memory database with the production indexes."""
    client = mongomock.MongoClient()
    name = f"revocity_test_{uuid.uuid4().hex}"
    database = client[name]
    init_db(database)
    yield database
    client.drop_database(name)


@pytest.fixture
def admin_id(db):
    db.user_roles.insert_one({"user_id": "admin-1", "role": "admin"})
    return "admin-1"


def make_token(user_id: str, email: str = None) -> str:
    claims = {"sub": user_id}
    if email:
        claims["email"] = email
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def bearer(user_id: str, email: str = None) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


def complaint_data(**overrides) -> ComplaintCreate:
    data = {"latitude": 28.5921, "longitude": 77.0460, "area_name": "Sector 5",
            "fill_level": 50, "recommendation": "Collect soon"}
    data.update(overrides)
    return ComplaintCreate(**data)


@pytest.fixture
def citizen_headers():
    return bearer("citizen-1", "citizen1@example.com")


@pytest.fixture
def admin_headers(admin_id):
    return bearer(admin_id, "admin@example.com")


@pytest_asyncio.fixture
async def client(db):
    """In-process httpx AsyncClient bound to the test database."""
    # Disable rate limiting so repeated AI endpoint calls aren't throttled
    limiter.enabled = False
    app.dependency_overrides[get_db] = lambda: db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
