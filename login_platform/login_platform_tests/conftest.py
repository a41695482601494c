"""
Shared fixtures for the login service tests.

The database URL and log directory are pinned before the service modules are
imported, since the engine and log handlers are created at import time.
"""
import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="login_service_tests_")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_tmp_dir}/test.db")
os.environ.setdefault("LOG_DIR", _tmp_dir)
# Keep hashing fast in tests
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "1000")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from login_platform.login_platform.login_service.config import Settings, get_settings
from login_platform.login_platform.login_service.db import Base, engine
from login_platform.login_platform.login_service.dependencies import get_mailer, get_oauth_clients
from login_platform.login_platform.login_service.errors import MailDeliveryError
from login_platform.login_platform.login_service.main import app
from login_platform.login_platform.login_service.store import AccountStore


class FakeMailer:
    """Records verification mails instead of sending them."""

    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def send_verification_code(self, to_email, code, ttl_seconds):
        if self.error is not None:
            raise self.error
        self.sent.append((to_email, code))


@pytest.fixture(autouse=True)
def reset_database():
    # Drop all tables and recreate them before each test
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    session = Session(bind=engine)
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return AccountStore(db_session)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def use_settings():
    """Swap the deployment settings the app resolves through its dependencies."""
    def _use(**overrides):
        configured = Settings(**overrides)
        app.dependency_overrides[get_settings] = lambda: configured
        return configured
    return _use


@pytest.fixture
def mailer():
    fake = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: fake
    return fake


@pytest.fixture
def failing_mailer():
    fake = FakeMailer(error=MailDeliveryError("SMTP connection timed out"))
    app.dependency_overrides[get_mailer] = lambda: fake
    return fake


@pytest.fixture
def oauth_clients():
    clients = {}
    app.dependency_overrides[get_oauth_clients] = lambda: clients
    return clients


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
