"""Shared test fixtures and configuration for backend tests."""
import itertools

import pytest
from fastapi.testclient import TestClient

from gamerz.auth.schemas import ApprovalStatus, UserRole
from gamerz.auth.tokens import issue_token
from gamerz.config import AppConfig, AuthSettings, DatabaseSettings, JWTSecrets, Secrets
from gamerz.main import create_app
from gamerz.store import Database

PASSWORD = "correct-horse-battery"


def make_config(**overrides) -> AppConfig:
    """In-memory database, cheap password hashing and a fixed signing key."""
    values = {
        "database": DatabaseSettings(path=":memory:"),
        "auth": AuthSettings(password_iterations=1_000),
        "secrets": Secrets(jwt=JWTSecrets(secret_key="gamerz-test-signing-key-0123456789abcdef")),
    }
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture(autouse=True)
def reset_database():
    """Every test starts with a fresh in-memory DuckDB singleton."""
    Database.reset_instance()
    yield
    Database.reset_instance()


@pytest.fixture
def config() -> AppConfig:
    return make_config()


@pytest.fixture
def api_client(config):
    """TestClient with the lifespan running, so ``app.state`` is populated.

    Named api_client (not client) so tests can still open extra clients.
    """
    app = create_app(config)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_user(api_client, config):
    """Create an account directly in the store and return ``(user, token)``."""
    counter = itertools.count(1)

    def _make(username=None, status=ApprovalStatus.APPROVED, role=UserRole.PLAYER):
        username = username or f"player{next(counter)}"
        user = api_client.app.state.users.register(
            username,
            f"{username}@example.com",
            PASSWORD,
            "I want to talk about games",
            role=role,
            status=status,
        )
        return user, issue_token(user, config)

    return _make


@pytest.fixture
def admin_token(make_user):
    _, token = make_user("admin", role=UserRole.ADMIN)
    return token
