from __future__ import annotations

import pytest

from app.admin.users import deactivate_user
from app.core.errors import NotFoundError, UnauthorizedError, ValidationError
from app.core.models import Branch, Profile
from app.core.tenancy import current_scope
from app.operations.services import create_service, get_service, list_services


def _branch(nombre: str) -> Branch:
    return Branch.query.filter_by(nombre=nombre).first()


def test_anonymous_html_redirects_to_login(client):
    response = client.get("/servicios")
    assert response.status_code == 302
    assert "/auth/login" in response.headers["Location"]


def test_anonymous_api_gets_json_401(client):
    response = client.get("/api/dashboard")
    assert response.status_code == 401
    body = response.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "UNAUTHORIZED"


def test_admin_login_lands_on_dashboard(client, login_admin):
    response = login_admin()
    assert response.status_code == 200
    assert "Panel".encode() in response.data


def test_invalid_credentials_are_flashed(client):
    response = client.post(
        "/auth/login",
        data={"email": "admin@funerariasol.cl", "password": "incorrecta"},
        follow_redirects=True,
    )
    assert "Credenciales inválidas".encode() in response.data


def test_deactivated_user_cannot_login(client, as_profile):
    caja = Profile.query.filter_by(email="caja@funerariasol.cl").first()
    with as_profile():
        deactivate_user(caja.id)

    response = client.post(
        "/auth/login",
        data={"email": "caja@funerariasol.cl", "password": "caja123"},
        follow_redirects=True,
    )
    assert "Tu usuario está desactivado".encode() in response.data


def test_other_tenant_service_is_not_found(client, login_admin, second_tenant):
    service_id = second_tenant["service"].id
    login_admin()

    assert client.get(f"/servicios/{service_id}").status_code == 404
    api = client.get(f"/api/servicios/{service_id}/saldo")
    assert api.status_code == 404
    assert api.get_json()["error"]["code"] == "NOT_FOUND"


def test_other_tenant_catalog_is_not_found(client, login_admin, second_tenant):
    plan_id = second_tenant["plan"].id
    login_admin()
    assert client.get(f"/administracion/planes/{plan_id}").status_code == 404


def test_service_rejects_reference_from_other_tenant(as_profile, second_tenant, service_form):
    plan_id = second_tenant["plan"].id
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            create_service({**service_form, "plan_id": str(plan_id)})
    assert exc.value.field_errors["plan_id"] == "Referencia no válida"


def test_branch_restricted_user_only_sees_assigned_branches(as_profile, service_form):
    matriz, norte = _branch("Casa matriz"), _branch("Sucursal Norte")
    with as_profile():
        main_id = create_service({**service_form, "branch_id": str(matriz.id)}).id
        north_id = create_service({**service_form, "branch_id": str(norte.id)}).id

    with as_profile("operaciones@funerariasol.cl"):
        visible = {service.id for service in list_services()}
        assert main_id in visible
        assert north_id not in visible
        with pytest.raises(NotFoundError):
            get_service(north_id)


def test_branch_restricted_user_cannot_create_in_other_branch(as_profile, service_form):
    norte = _branch("Sucursal Norte")
    with as_profile("operaciones@funerariasol.cl"):
        with pytest.raises(ValidationError) as exc:
            create_service({**service_form, "branch_id": str(norte.id)})
    assert exc.value.field_errors["branch_id"] == "Sucursal no válida"


def test_selected_branch_becomes_default(as_profile, service_form):
    norte = _branch("Sucursal Norte")
    with as_profile(selected_branch_id=norte.id) as scope:
        assert scope.selected_branch_id == norte.id
        service = create_service(service_form)
        assert service.branch_id == norte.id


def test_selected_branch_outside_scope_is_ignored(as_profile):
    norte = _branch("Sucursal Norte")
    with as_profile("caja@funerariasol.cl", selected_branch_id=norte.id) as scope:
        assert scope.selected_branch_id is None
        assert scope.default_branch_id() == _branch("Casa matriz").id


def test_choose_branch_rejects_unassigned_branch(client, login_caja):
    login_caja()
    norte = _branch("Sucursal Norte")
    response = client.post(
        "/auth/sucursal",
        data={"branch_id": str(norte.id), "next": "/dashboard"},
        follow_redirects=True,
    )
    assert response.status_code == 200
    assert "No tienes acceso a esta sucursal".encode() in response.data


def test_role_capabilities_guard_pages(client, login_caja):
    login_caja()
    assert client.get("/transacciones").status_code == 200
    assert client.get("/administracion/usuarios").status_code == 403
    assert client.get("/agenda/salas/nuevo").status_code == 403
    assert client.get("/nomina/periodos").status_code == 403


def test_operaciones_cannot_read_finance(client, login_operaciones):
    login_operaciones()
    assert client.get("/transacciones").status_code == 403
    api = client.get("/api/ventas")
    assert api.status_code == 403
    assert api.get_json()["error"]["code"] == "UNAUTHORIZED"


def test_current_scope_without_login_raises(app):
    with app.test_request_context("/"):
        with pytest.raises(UnauthorizedError):
            current_scope()
