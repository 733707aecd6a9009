"""
Tests for the client-side auth session.
"""

import json

import httpx
import pytest

from ftth_tracker.client.api_client import ApiClient, ApiError
from ftth_tracker.client.session import AuthSession
from ftth_tracker.client.storage import LocalStore

USER = {
    "id": "u1",
    "username": "tecnico",
    "access_level": "TECH_MANAGER",
    "custom_permissions": False,
    "permissions": None,
}


def handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/auth/login":
        body = json.loads(request.content)
        if body["password"] != "certa":
            return httpx.Response(401, json={"detail": "Invalid credentials"})
        return httpx.Response(200, json={"success": True, "token": "tok-1", "refresh_token": "ref-1", "user": USER})
    if request.url.path == "/api/auth/refresh":
        return httpx.Response(200, json={"token": "tok-2", "refresh_token": "ref-2", "token_type": "bearer"})
    return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def store_path(tmp_path):
    return str(tmp_path / "store.json")


@pytest.fixture
def session(store_path):
    api = ApiClient(base_url="http://ftth.test", transport=httpx.MockTransport(handler))
    return AuthSession(api, LocalStore(store_path))


def test_login_stores_user_and_token(session):
    user = session.login("tecnico", "certa")
    assert user["username"] == "tecnico"
    assert session.is_authenticated()
    assert session.api.token == "tok-1"
    assert session.store.get("currentUser")["id"] == "u1"
    assert session.store.get("refreshToken") == "ref-1"


def test_failed_login_leaves_session_empty(session):
    with pytest.raises(ApiError) as exc:
        session.login("tecnico", "errada")
    assert exc.value.status_code == 401
    assert not session.is_authenticated()


def test_permissions_follow_access_level(session):
    session.login("tecnico", "certa")
    assert session.has_permission("add_technician")
    assert not session.has_permission("manage_users")


def test_no_permissions_when_logged_out(session):
    assert session.get_current_user() is None
    assert not session.has_permission("view_tasks")


def test_refresh(session):
    session.login("tecnico", "certa")
    assert session.refresh() == "tok-2"
    assert session.api.token == "tok-2"


def test_logout_clears_everything(session):
    session.login("tecnico", "certa")
    session.logout()
    assert not session.is_authenticated()
    assert session.api.token is None
    assert session.store.get("authToken") is None


def test_session_restored_from_store(session, store_path):
    session.login("tecnico", "certa")
    api = ApiClient(base_url="http://ftth.test", transport=httpx.MockTransport(handler))
    restored = AuthSession(api, LocalStore(store_path))
    assert restored.is_authenticated()
    assert api.token == "tok-1"
