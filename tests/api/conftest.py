"""API test fixtures - authenticated TestClients over in-memory services."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from auth.database import AuthDatabase
from auth.exceptions import SessionExpiredError
from auth.session import SessionManager
from auth.types import Session, User
from main import create_app
from utils.timezone import now_utc


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def tokens(admin, user, other_user):
    """Session token per test caller."""
    return {
        "admin-token": admin,
        "user-token": user,
        "other-token": other_user,
    }


@pytest.fixture
def session_manager(tokens):
    manager = Mock(spec=SessionManager)

    def validate(token):
        caller = tokens.get(token)
        if caller is None:
            raise SessionExpiredError("Session not found or expired")
        now = now_utc()
        return Session(
            token=token,
            user_id=caller.id,
            created_at=now,
            expires_at=now + timedelta(hours=1),
            last_activity_at=now,
        )

    manager.validate_session.side_effect = validate
    return manager


@pytest.fixture
def auth_db(tokens):
    db = Mock(spec=AuthDatabase)
    users = {
        caller.id: User(
            id=caller.id,
            email=f"{token.split('-')[0]}@example.com",
            full_name=token.split("-")[0].title(),
            role=caller.role,
            created_at=now_utc(),
        )
        for token, caller in tokens.items()
    }
    db.get_user_by_id.side_effect = users.get
    return db


# =============================================================================
# APP AND CLIENTS
# =============================================================================


@pytest.fixture
def app(invoice_service, provisioning_service, session_manager, auth_db):
    services = {"invoice": invoice_service, "provisioning": provisioning_service}
    return create_app(services, session_manager, auth_db)


def _client(app, token: str | None = None) -> TestClient:
    cookies = {"session_token": token} if token else None
    return TestClient(app, cookies=cookies, raise_server_exceptions=False)


@pytest.fixture
def anon_client(app):
    return _client(app)


@pytest.fixture
def admin_client(app):
    return _client(app, "admin-token")


@pytest.fixture
def user_client(app):
    return _client(app, "user-token")


@pytest.fixture
def other_client(app):
    return _client(app, "other-token")
