"""Security test fixtures.

Responsibilities:
- Creates the FastAPI `app` fixture from the real app factory
- Wraps it in a TestClient (attacker perspective: no special headers)
- Points signature verification at the test key pair via `bridge_settings`
- Replaces Redis with a MagicMock via `mock_redis`
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from bridge_webhooks.serve import create_app
from bridge_webhooks.webhooks.handlers import reset_counts


@pytest.fixture
def app():
    reset_counts()
    return create_app()


@pytest.fixture
def client(app):
    """Unauthenticated TestClient."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def bridge_settings(settings):
    """Verification reads the test public key instead of the environment."""
    with patch("bridge_webhooks.webhooks.verification.get_settings", return_value=settings):
        yield settings


@pytest.fixture
def mock_redis():
    """Redis stand-in; set() returns True (new key) unless a test overrides it."""
    mock_r = MagicMock()
    mock_r.set.return_value = True
    with patch("bridge_webhooks.webhooks.idempotency._get_redis", return_value=mock_r):
        yield mock_r


class DictRedis:
    """In-memory stand-in for the handful of Redis commands the receiver uses."""

    def __init__(self):
        self.data: dict[str, object] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    def hset(self, key, field, value):
        self.data.setdefault(key, {})[field] = value
        return 1

    def hdel(self, key, *fields):
        bucket = self.data.get(key, {})
        return sum(1 for field in fields if bucket.pop(field, None) is not None)

    def hgetall(self, key):
        return dict(self.data.get(key, {}))

    def expire(self, key, seconds):
        return key in self.data


@pytest.fixture
def redis_store():
    """Stateful Redis stand-in shared by dedup and failure tracking."""
    store = DictRedis()
    with patch("bridge_webhooks.webhooks.idempotency._get_redis", return_value=store):
        yield store
