"""Pytest configuration and fixtures."""

import mongomock
import pytest

from moviehub.api_contact.contact import create_app as create_contact_app
from moviehub.api_movies.movies import create_app as create_movies_app
from moviehub.api_users.users import create_app as create_users_app
from moviehub.common.auth import ADMIN_TOKEN_TTL, issue_token
from moviehub.common.cache import MemoryCache
from moviehub.common.config import Settings
from moviehub.common.mailer import mail


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class StubStatus:
    """Connection status whose answer the test controls."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.calls = 0

    def is_connected(self):
        self.calls += 1
        return self.connected


@pytest.fixture
def settings(tmp_path):
    """Test settings: fast bcrypt, secrets set, no Redis, no SMTP."""
    return Settings(
        user_jwt_secret="user-secret",
        admin_jwt_secret="admin-secret",
        admin_user="admin",
        admin_pass="s3cret-pass",
        bcrypt_rounds=4,
        rate_limit_per_min=1000,
        upload_dir=str(tmp_path / "uploads"),
        app_url="https://moviehub.test",
    )


@pytest.fixture
def database():
    """Isolated in-memory MongoDB database."""
    return mongomock.MongoClient()["moviehub-test"]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def db_status():
    return StubStatus()


@pytest.fixture
def movies_app(settings, database, cache, db_status):
    app = create_movies_app(settings, database, cache=cache, db_status=db_status)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def movies_client(movies_app):
    return movies_app.test_client()


@pytest.fixture
def users_client(settings, database):
    app = create_users_app(settings, database)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def contact_client(settings, database, db_status):
    app = create_contact_app(settings, database, db_status=db_status)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def admin_headers(settings):
    """Authorization header carrying a valid admin token."""
    token = issue_token({"role": "admin", "username": "admin"}, settings.admin_jwt_secret, ADMIN_TOKEN_TTL)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sent_mail(settings, monkeypatch):
    """Turn SMTP on in the test settings and collect the messages handed to Flask-Mail."""
    settings.smtp_host = "smtp.moviehub.test"
    settings.smtp_user = "robot@moviehub.test"
    settings.smtp_pass = "smtp-pass"
    outbox = []
    monkeypatch.setattr(mail, "send", outbox.append)
    return outbox
