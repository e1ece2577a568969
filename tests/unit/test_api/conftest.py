"""Fixtures for API tests: the app bound to the test session."""

import pytest
from fastapi.testclient import TestClient

from homes_calendar.api.dependencies import get_cipher, get_db_session
from homes_calendar.api.main import app
from homes_calendar.config import Settings, get_settings

API_SETTINGS = Settings(_env_file=None, timezone="UTC", cron_secret="s3cret")


@pytest.fixture
def client(db_session, cipher):
    """TestClient sharing the test session; lifespan is not run."""
    app.dependency_overrides[get_db_session] = lambda: db_session
    app.dependency_overrides[get_cipher] = lambda: cipher
    app.dependency_overrides[get_settings] = lambda: API_SETTINGS
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def as_user():
    def _headers(profile) -> dict:
        return {"X-User-ID": str(profile.id)}

    return _headers
