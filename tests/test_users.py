"""
Tests for the user administration endpoints.
"""

import uuid

NEW_USER = {
    "username": "novo",
    "email": "novo@example.com",
    "full_name": "Novo Usuário",
    "password": "segredo123",
    "access_level": "tech_manager",
    "operacao": "BJ Fibra",
}


def test_create_and_fetch_user(client, admin_headers):
    resp = client.post("/api/users", json=NEW_USER, headers=admin_headers)
    assert resp.status_code == 201
    created = resp.json()
    assert created["access_level"] == "TECH_MANAGER"
    assert "password" not in created
    assert "password_hash" not in created

    resp = client.get(f"/api/users/{created['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["username"] == "novo"


def test_new_user_can_log_in(client, admin_headers):
    client.post("/api/users", json=NEW_USER, headers=admin_headers)
    resp = client.post("/api/auth/login", json={"username": "novo", "password": "segredo123"})
    assert resp.status_code == 200


def test_duplicate_username_conflicts(client, admin_headers):
    assert client.post("/api/users", json=NEW_USER, headers=admin_headers).status_code == 201
    resp = client.post("/api/users", json={**NEW_USER, "email": "outro@example.com"}, headers=admin_headers)
    assert resp.status_code == 409


def test_unknown_access_level_rejected(client, admin_headers):
    resp = client.post("/api/users", json={**NEW_USER, "access_level": "ROOT"}, headers=admin_headers)
    assert resp.status_code == 422


def test_unknown_custom_permission_rejected(client, admin_headers):
    payload = {**NEW_USER, "custom_permissions": True, "permissions": ["voar"]}
    resp = client.post("/api/users", json=payload, headers=admin_headers)
    assert resp.status_code == 422


def test_list_and_search(client, admin, admin_headers, make_user):
    make_user(username="carlos")
    resp = client.get("/api/users", headers=admin_headers)
    assert resp.status_code == 200
    assert len(resp.json()) == 2

    resp = client.get("/api/users", params={"q": "carl"}, headers=admin_headers)
    assert [u["username"] for u in resp.json()] == ["carlos"]


def test_count(client, admin_headers, make_user):
    make_user()
    make_user()
    resp = client.get("/api/users/count", headers=admin_headers)
    assert resp.json() == {"count": 3}


def test_export_csv(client, admin_headers):
    resp = client.get("/api/users/export", params={"format": "csv"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.strip().splitlines()
    assert lines[0].startswith("id,full_name,username")
    assert "admin" in lines[1]


def test_export_json(client, admin_headers):
    resp = client.get("/api/users/export", params={"format": "json"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()[0]["username"] == "admin"


def test_export_unknown_format(client, admin_headers):
    resp = client.get("/api/users/export", params={"format": "xml"}, headers=admin_headers)
    assert resp.status_code == 400


def test_update_user_rehashes_password(client, admin_headers, make_user):
    user = make_user(username="joana")
    resp = client.put(
        f"/api/users/{user.id}",
        json={"full_name": "Joana Silva", "password": "novasenha"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["full_name"] == "Joana Silva"
    assert client.post("/api/auth/login", json={"username": "joana", "password": "novasenha"}).status_code == 200


def test_update_email_conflict(client, admin_headers, make_user):
    make_user(username="a")
    other = make_user(username="b")
    resp = client.put(f"/api/users/{other.id}", json={"email": "a@example.com"}, headers=admin_headers)
    assert resp.status_code == 409


def test_delete_user(client, admin_headers, make_user):
    user = make_user()
    resp = client.delete(f"/api/users/{user.id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert client.get(f"/api/users/{user.id}", headers=admin_headers).status_code == 404


def test_cannot_delete_self(client, admin, admin_headers):
    resp = client.delete(f"/api/users/{admin.id}", headers=admin_headers)
    assert resp.status_code == 400


def test_missing_and_malformed_ids(client, admin_headers):
    assert client.get(f"/api/users/{uuid.uuid4()}", headers=admin_headers).status_code == 404
    assert client.get("/api/users/nao-e-uuid", headers=admin_headers).status_code == 400


def test_non_admin_forbidden(client, make_user, headers_for):
    user = make_user(access_level="TECH_MANAGER")
    assert client.get("/api/users", headers=headers_for(user)).status_code == 403
    assert client.post("/api/users", json=NEW_USER, headers=headers_for(user)).status_code == 403


def test_last_administrator_cannot_demote_itself(client, admin, admin_headers):
    resp = client.put(f"/api/users/{admin.id}", json={"access_level": "USER"}, headers=admin_headers)
    assert resp.status_code == 400
    assert client.get("/api/auth/me", headers=admin_headers).json()["access_level"] == "ADMIN"


def test_admin_can_be_demoted_when_another_remains(client, admin_headers, make_user):
    other = make_user(access_level="ADMIN")
    resp = client.put(f"/api/users/{other.id}", json={"access_level": "VIEWER"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["access_level"] == "VIEWER"


def test_update_cannot_null_required_fields(client, admin_headers, make_user):
    user = make_user()
    for field in ("email", "full_name", "access_level", "is_active"):
        resp = client.put(f"/api/users/{user.id}", json={field: None}, headers=admin_headers)
        assert resp.status_code == 422
        assert resp.json()["detail"] == f"{field} cannot be null"


def test_update_with_null_password_keeps_it(client, admin_headers, make_user, user_password):
    user = make_user(username="senha_mantida")
    resp = client.put(f"/api/users/{user.id}", json={"password": None, "full_name": "Outro"}, headers=admin_headers)
    assert resp.status_code == 200
    login = client.post("/api/auth/login", json={"username": "senha_mantida", "password": user_password})
    assert login.status_code == 200
