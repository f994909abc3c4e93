"""
tests/conftest.py -- Shared test fixtures for storage server integration tests.

This module provides:
  - make_user_store(): isolated named shared-memory SQLite user store
  - basic_auth(): Authorization header value for POST /auth/login
  - api_client: TestClient over the real app with test stores in app.state

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

DEBUG must be set before any auth/core import so get_settings() auto-generates
SECRET_KEY instead of raising ValueError. LOGIN_RATE_LIMIT is raised so the
many logins in the suite do not trip the limiter.
"""

from __future__ import annotations

import base64
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("VERBOSE_LOGS", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from storage.service import StorageService

ADMIN_USERNAME = "alice_admin"
ADMIN_PASSWORD = "Secret123"

# Small enough that over-limit uploads are cheap to send.
TEST_UPLOAD_LIMIT = 4096


def make_user_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def basic_auth(username: str, password: str) -> dict[str, str]:
    encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


def b64(password: str) -> str:
    return base64.b64encode(password.encode()).decode()


def login(client: TestClient, username: str, password: str) -> str:
    resp = client.post("/auth/login", headers=basic_auth(username, password))
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


def _patch_lifespan(user_store: UserStore, storage: StorageService):
    """Return a lifespan that wires the test store and storage root into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.auth_service = AuthService(
            user_store,
            access_code_expiration_ms=settings.access_code_expiration_ms,
            token_expire_seconds=settings.token_expire_seconds,
        )
        app.state.storage = storage
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request, tmp_path_factory) -> Generator[tuple[TestClient, Path], None, None]:
    """Yield (client, storage_root) for API integration tests.

    Each test module gets its own user DB and storage root. The admin account
    exists before the client starts; tests log in for a fresh token, since a
    new login supersedes every earlier token of the same user.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store = make_user_store(suffix)
    user_store.create_user(User(username=ADMIN_USERNAME, hashed_password=hash_password(ADMIN_PASSWORD), admin=True))
    storage = StorageService(tmp_path_factory.mktemp(f"root_{suffix}"), upload_limit_bytes=TEST_UPLOAD_LIMIT)

    app.router.lifespan_context = _patch_lifespan(user_store, storage)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, storage.root

    user_store.close()
