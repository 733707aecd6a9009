"""
Tests for login, token refresh and the current-user endpoint.
"""

import bcrypt

from ftth_tracker.auth.security import create_refresh_token, verify_password


def test_login_with_username(client, make_user, user_password):
    user = make_user(username="tecnico", access_level="TECH_MANAGER")
    resp = client.post("/api/auth/login", json={"username": "tecnico", "password": user_password})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["token"]
    assert body["refresh_token"]
    assert body["user"]["id"] == str(user.id)
    assert "password_hash" not in body["user"]


def test_login_with_email(client, make_user, user_password):
    make_user(username="maria")
    resp = client.post("/api/auth/login", json={"username": "maria@example.com", "password": user_password})
    assert resp.status_code == 200


def test_login_wrong_password(client, make_user):
    make_user(username="maria")
    resp = client.post("/api/auth/login", json={"username": "maria", "password": "errada"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid credentials"


def test_login_inactive_user(client, make_user, user_password):
    make_user(username="inativo", is_active=False)
    resp = client.post("/api/auth/login", json={"username": "inativo", "password": user_password})
    assert resp.status_code == 401


def test_me_returns_effective_permissions(client, make_user, headers_for):
    user = make_user(access_level="VIEWER", operacao="Megalink")
    resp = client.get("/api/auth/me", headers=headers_for(user))
    assert resp.status_code == 200
    body = resp.json()
    assert body["access_level"] == "VIEWER"
    assert body["access_level_name"] == "Visualizador"
    assert body["operacao"] == "Megalink"
    assert "view_tasks" in body["permissions"]
    assert "create_tasks" not in body["permissions"]


def test_me_requires_token(client):
    assert client.get("/api/auth/me").status_code == 401


def test_me_rejects_garbage_token(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_refresh_issues_new_pair(client, make_user):
    user = make_user()
    resp = client.post("/api/auth/refresh", json={"refresh_token": create_refresh_token(str(user.id))})
    assert resp.status_code == 200
    assert resp.json()["token"]


def test_refresh_token_is_not_an_access_token(client, make_user):
    user = make_user()
    token = create_refresh_token(str(user.id))
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_legacy_bcrypt_hashes_verify():
    hashed = bcrypt.hashpw(b"ftth-legado", bcrypt.gensalt()).decode()
    assert verify_password("ftth-legado", hashed)
    assert not verify_password("outra", hashed)
