"""
Tests for the technician/vehicle record endpoints and maintenance history.
"""

import uuid

from ftth_tracker.models.models import Registro

REGISTRO = {
    "cidade": "Teresina",
    "tecnico": "João Silva",
    "auxiliar": "Pedro",
    "placa": "abc 1234",
    "modelo": "Fiorino",
    "operacao": "BJ Fibra",
    "kmAtual": 15000,
}


def _create(client, headers, **overrides):
    resp = client.post("/api/registros", json={**REGISTRO, **overrides}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_normalises_plate(client, admin, admin_headers):
    reg = _create(client, admin_headers)
    assert reg["placa"] == "ABC1234"
    assert reg["km_atual"] == 15000
    assert reg["origem"] == "manual"
    assert reg["status"] == "ativo"
    assert reg["created_by"] == str(admin.id)
    assert reg["manutencoes"] == []


def test_list_filters(client, admin_headers):
    _create(client, admin_headers)
    _create(client, admin_headers, cidade="Parnaíba", tecnico="Maria", operacao="Megalink")

    resp = client.get("/api/registros", params={"cidade": "parna"}, headers=admin_headers)
    assert [r["tecnico"] for r in resp.json()] == ["Maria"]

    resp = client.get("/api/registros", params={"operacao": "BJ Fibra"}, headers=admin_headers)
    assert [r["tecnico"] for r in resp.json()] == ["João Silva"]


def test_scoped_user_only_sees_own_operation(client, db_session, make_user, headers_for):
    db_session.add_all([
        Registro(cidade="Teresina", tecnico="A", operacao="BJ Fibra"),
        Registro(cidade="Picos", tecnico="B", operacao="Megalink"),
    ])
    db_session.commit()
    other = db_session.query(Registro).filter_by(operacao="Megalink").one()

    user = make_user(
        operacao="BJ Fibra",
        custom_permissions=True,
        permissions=["view_technicians", "add_technician"],
    )
    headers = headers_for(user)
    resp = client.get("/api/registros", headers=headers)
    assert [r["tecnico"] for r in resp.json()] == ["A"]

    assert client.get(f"/api/registros/{other.id}", headers=headers).status_code == 404

    resp = client.post("/api/registros", json={**REGISTRO, "operacao": "Megalink"}, headers=headers)
    assert resp.status_code == 403

    payload = {k: v for k, v in REGISTRO.items() if k != "operacao"}
    resp = client.post("/api/registros", json=payload, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["operacao"] == "BJ Fibra"


def test_update_registro(client, admin_headers):
    reg = _create(client, admin_headers)
    resp = client.put(f"/api/registros/{reg['id']}", json={"status": "inativo", "kmAtual": 16000}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "inativo"
    assert resp.json()["km_atual"] == 16000
    assert resp.json()["cidade"] == "Teresina"


def test_delete_registro_cascades_maintenance(client, admin_headers):
    reg = _create(client, admin_headers)
    client.post(f"/api/registros/{reg['id']}/manutencoes", json={"tipo": "Troca de óleo"}, headers=admin_headers)
    assert client.delete(f"/api/registros/{reg['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/registros/{reg['id']}", headers=admin_headers).status_code == 404


def test_add_maintenance_bumps_odometer(client, admin_headers):
    reg = _create(client, admin_headers)
    resp = client.post(
        f"/api/registros/{reg['id']}/manutencoes",
        json={"tipo": "Revisão", "data": "2026-02-01", "kmAtual": 18000, "valor": 350.5},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    man = resp.json()
    assert man["km_atual"] == 18000
    assert man["valor"] == 350.5

    # Lower readings don't roll the odometer back
    client.post(
        f"/api/registros/{reg['id']}/manutencoes",
        json={"tipo": "Pneu", "kmAtual": 100},
        headers=admin_headers,
    )
    body = client.get(f"/api/registros/{reg['id']}", headers=admin_headers).json()
    assert body["km_atual"] == 18000
    assert len(body["manutencoes"]) == 2


def test_delete_maintenance(client, admin_headers):
    reg = _create(client, admin_headers)
    man = client.post(
        f"/api/registros/{reg['id']}/manutencoes", json={"tipo": "Revisão"}, headers=admin_headers
    ).json()
    resp = client.delete(f"/api/registros/{reg['id']}/manutencoes/{man['id']}", headers=admin_headers)
    assert resp.status_code == 200
    resp = client.delete(f"/api/registros/{reg['id']}/manutencoes/{man['id']}", headers=admin_headers)
    assert resp.status_code == 404


def test_maintenance_permissions(client, admin_headers, make_user, headers_for):
    reg = _create(client, admin_headers)
    tech_manager = headers_for(make_user(access_level="TECH_MANAGER"))
    resp = client.post(f"/api/registros/{reg['id']}/manutencoes", json={"tipo": "Revisão"}, headers=tech_manager)
    assert resp.status_code == 403


def test_viewer_cannot_create(client, make_user, headers_for):
    viewer = headers_for(make_user(access_level="VIEWER"))
    assert client.post("/api/registros", json=REGISTRO, headers=viewer).status_code == 403


def test_invalid_ids(client, admin_headers):
    assert client.get("/api/registros/xyz", headers=admin_headers).status_code == 400
    assert client.get(f"/api/registros/{uuid.uuid4()}", headers=admin_headers).status_code == 404


def test_update_cannot_null_required_fields(client, admin_headers):
    reg = _create(client, admin_headers)
    for field in ("cidade", "tecnico"):
        resp = client.put(f"/api/registros/{reg['id']}", json={field: None}, headers=admin_headers)
        assert resp.status_code == 422
        assert resp.json()["detail"] == f"{field} cannot be null"
    assert client.get(f"/api/registros/{reg['id']}", headers=admin_headers).json()["cidade"] == "Teresina"
