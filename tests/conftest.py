from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pulse.db.session as db_session
from pulse.core.rate_limit import auth_limiter
from pulse.main import app
from pulse.models import User

PASSWORD = "password123"


@pytest.fixture()
def client(tmp_path):
    auth_limiter.reset()
    db_session.configure_engine(f"sqlite:///{tmp_path / 'test.db'}")
    db_session.init_db()

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db(tmp_path):
    db_session.configure_engine(f"sqlite:///{tmp_path / 'service.db'}")
    db_session.init_db()
    with db_session.open_session() as session:
        yield session


@pytest.fixture()
def register(client):
    """Register a user through the API and return ``(user_id, auth_headers)``."""

    def _register(username: str, avatar: str | None = None) -> tuple[str, dict[str, str]]:
        payload: dict[str, object] = {"username": username, "displayName": username, "password": PASSWORD}
        if avatar is not None:
            payload["avatar"] = avatar
        response = client.post("/v1/auth/register", json=payload)
        assert response.status_code == 201
        data = response.json()["data"]
        return data["user"]["id"], {"Authorization": f"Bearer {data['token']['accessToken']}"}

    return _register


@pytest.fixture()
def make_user(db):
    """Insert a user row directly, bypassing password hashing."""

    def _make_user(username: str, avatar: str | None = None) -> User:
        user = User(username=username, display_name=username.title(), avatar=avatar, password_hash="not-a-real-hash")
        db.add(user)
        db.commit()
        return user

    return _make_user
