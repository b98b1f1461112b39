import os
import sys

# Ensure the repository root is on sys.path so `import fandiag.*` works reliably
# across different pytest import modes/environments.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import pytest

from fandiag.config import DEFAULT_CATALOG_PATH

# Nothing listens on port 1, so the store always falls back to its in-memory cache.
UNREACHABLE_REDIS = "redis://127.0.0.1:1/0"


@pytest.fixture
def sqlite_path(tmp_path):
    return str(tmp_path / "fandiag.db")


@pytest.fixture
def catalog_path():
    return str(DEFAULT_CATALOG_PATH)


@pytest.fixture
def app_env(monkeypatch, sqlite_path):
    monkeypatch.setenv("SQLITE_PATH", sqlite_path)
    monkeypatch.setenv("REDIS_URL", UNREACHABLE_REDIS)
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("ADMIN_USERNAME", "admin")
    monkeypatch.setenv("ADMIN_PASSWORD", "admin-pass")
    monkeypatch.setenv("ADMIN_EMAIL", "admin@example.com")
    monkeypatch.delenv("MAX_SELECTED_SYMPTOMS", raising=False)
    monkeypatch.delenv("CATALOG_SEED_PATH", raising=False)


@pytest.fixture
def client(app_env):
    from fastapi.testclient import TestClient

    from fandiag.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client
