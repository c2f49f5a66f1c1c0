"""
tests/conftest.py -- Shared fixtures for tokenguard tests.

This module provides:
  - make_token: signs HS256 test tokens with python-jose
  - store / manager / adapter / handler: a real stack over in-memory SQLite
  - mock_db: a MagicMock TokenDatabase with "nothing revoked" defaults
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool and
plain :memory: databases are per-connection.

Environment variables must be set before any core/auth/api import so that
get_settings() sees the test provider configuration.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import MagicMock

# CRITICAL: configure Settings before any project import.
TEST_SECRET = "tokenguard-test-secret-0123456789abcdef0123456789"
TEST_ISSUER = "https://issuer.test"
TEST_AUDIENCE = "tokenguard-api"

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("TOKEN_SECRET_KEY", TEST_SECRET)
os.environ.setdefault("TOKEN_ALGORITHMS", '["HS256"]')
os.environ.setdefault("TOKEN_ISSUER", TEST_ISSUER)
os.environ.setdefault("TOKEN_AUDIENCE", TEST_AUDIENCE)
os.environ.setdefault("BLACKLIST_REASONS", '["user_logout", "user_deleted", "password_changed", "LOGOUT"]')
os.environ.setdefault("BLACKLIST_DB_URL", "sqlite:///file:tokenguard_env?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from auth.blacklist import BlacklistManager
from auth.claims import APP_CLAIMS_CONFIG
from auth.handler import TokenHandler
from auth.jose_adapter import JoseTokenAdapter, StaticKeyResolver
from auth.models import BlacklistConfig
from auth.store import StoreResult, TokenStore

REASONS = frozenset({"user_logout", "user_deleted", "password_changed", "LOGOUT"})

# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------


def make_token(
    sub: str | None = "auth-user-123",
    iat: int | None = None,
    exp: int | None = None,
    secret: str = TEST_SECRET,
    **claims: Any,
) -> str:
    """Sign an HS256 token. iat defaults to now, exp to one hour after iat."""
    issued = int(time.time()) if iat is None else iat
    payload: dict[str, Any] = {
        "iss": TEST_ISSUER,
        "aud": TEST_AUDIENCE,
        "iat": issued,
        "exp": issued + 3600 if exp is None else exp,
    }
    if sub is not None:
        payload["sub"] = sub
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Real stack
# ---------------------------------------------------------------------------


@pytest.fixture
def blacklist_config() -> BlacklistConfig:
    return BlacklistConfig(
        reasons=REASONS,
        cleanup_retention_days=0,
        global_revocation_retention_days=90,
        storage_location="token_blacklist",
    )


@pytest.fixture
def store() -> Generator[TokenStore, None, None]:
    s = TokenStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def manager(store: TokenStore, blacklist_config: BlacklistConfig) -> BlacklistManager:
    return BlacklistManager(store, blacklist_config)


@pytest.fixture
def adapter() -> JoseTokenAdapter:
    return JoseTokenAdapter(
        StaticKeyResolver(TEST_SECRET),
        algorithms=["HS256"],
        issuer=TEST_ISSUER,
        audience=TEST_AUDIENCE,
    )


@pytest.fixture
def handler(adapter: JoseTokenAdapter, manager: BlacklistManager) -> TokenHandler:
    return TokenHandler(adapter, manager, APP_CLAIMS_CONFIG)


@pytest.fixture
def mock_db() -> MagicMock:
    """TokenDatabase double: nothing blacklisted, nothing revoked, writes succeed."""
    db = MagicMock()
    db.add_blacklist_entry.return_value = StoreResult.success()
    db.is_token_blacklisted.return_value = StoreResult.success(False)
    db.add_user_revocation.return_value = StoreResult.success()
    db.get_user_revocation_time.return_value = StoreResult.success(None)
    db.cleanup_expired_entries.return_value = StoreResult.success(0)
    return db


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: TokenStore, token_handler: TokenHandler):
    """Replace the real lifespan so routes see the test store and handler.

    The cleanup task is a long-sleeping coroutine so shutdown can cancel a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.token_store = store
        app.state.token_handler = token_handler
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(request) -> Generator[tuple[TestClient, TokenHandler], None, None]:
    """Yield (client, handler) over an isolated shared-memory store."""
    from api.main import app

    url = f"sqlite:///file:tokenguard_api_{request.node.name}?mode=memory&cache=shared&uri=true"
    api_store = TokenStore(url)
    config = BlacklistConfig(reasons=REASONS, cleanup_retention_days=0, global_revocation_retention_days=90)
    adapter = JoseTokenAdapter(
        StaticKeyResolver(TEST_SECRET), algorithms=["HS256"], issuer=TEST_ISSUER, audience=TEST_AUDIENCE
    )
    token_handler = TokenHandler(adapter, BlacklistManager(api_store, config), APP_CLAIMS_CONFIG)

    app.router.lifespan_context = _patch_lifespan(api_store, token_handler)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token_handler
    api_store.close()


@pytest.fixture
def make_jwt():
    """Token factory fixture; see make_token for arguments."""
    return make_token
