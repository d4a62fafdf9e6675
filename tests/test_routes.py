from __future__ import annotations

import pytest

from app.core.models import (
    Branch,
    CemeteryCrematorium,
    CoffinUrn,
    Collaborator,
    Plan,
    Room,
    Supplier,
    Vehicle,
)
from app.finance.expenses import create_expense
from app.finance.transactions import create_transaction
from app.operations import agenda
from app.operations.quotas import upsert_service_quota
from app.operations.services import create_service
from app.payroll import services as payroll

CATALOG_PAGES = [
    ("/administracion/planes", Plan),
    ("/administracion/ataudes-urnas", CoffinUrn),
    ("/administracion/cementerios", CemeteryCrematorium),
    ("/administracion/vehiculos", Vehicle),
    ("/administracion/proveedores", Supplier),
    ("/administracion/sucursales", Branch),
    ("/agenda/salas", Room),
    ("/nomina/colaboradores", Collaborator),
]


@pytest.fixture
def records(as_profile, service_form):
    """One record of every operational resource, keyed by its list URL."""
    matriz = Branch.query.filter_by(nombre="Casa matriz").one()
    with as_profile():
        service = create_service(service_form)
        quota = upsert_service_quota(service.id, {"aplica": "on", "entidad": "ips", "pagador": "familia"})
        transaction = create_transaction(
            {"service_id": str(service.id), "monto": "150000", "metodo_pago": "efectivo", "estado": "pagado"}
        )
        expense = create_expense({"concepto": "Combustible", "monto": "40000"})
        event = agenda.create_event(
            {
                "branch_id": str(matriz.id),
                "titulo": "Velatorio familia Soto",
                "tipo_evento": "velatorio",
                "fecha_inicio": "2026-11-03T10:00",
                "fecha_fin": "2026-11-03T14:00",
            }
        )
        period = payroll.create_period(
            {"nombre": "Octubre", "fecha_inicio": "2026-10-01", "fecha_fin": "2026-10-31"}
        )
        return {
            "/servicios": service.id,
            "/cuotas-mortuorias": quota.id,
            "/transacciones": transaction.id,
            "/egresos": expense.id,
            "/agenda/eventos": event.id,
            "/nomina/periodos": period.id,
        }


@pytest.mark.parametrize("url,model", CATALOG_PAGES)
def test_catalog_pages_render_for_admin(client, login_admin, url, model):
    login_admin()
    record = model.query.order_by(model.id).first()
    assert client.get(url).status_code == 200
    assert client.get(f"{url}/nuevo").status_code == 200
    assert client.get(f"{url}/{record.id}").status_code == 200
    assert client.get(f"{url}/{record.id}/editar").status_code == 200


def test_operational_pages_render_for_admin(client, login_admin, records):
    login_admin()
    for url, record_id in records.items():
        assert client.get(url).status_code == 200, url
        assert client.get(f"{url}/{record_id}").status_code == 200, url
        assert client.get(f"{url}/{record_id}/editar").status_code == 200, url
    for url in ("/servicios", "/transacciones", "/egresos", "/agenda/eventos", "/nomina/periodos"):
        assert client.get(f"{url}/nuevo").status_code == 200, url


def test_unknown_record_is_not_found(client, login_admin):
    login_admin()
    assert client.get("/servicios/9999").status_code == 404
    assert client.get("/administracion/planes/9999/editar").status_code == 404


def test_pages_require_login(client):
    response = client.get("/servicios")
    assert response.status_code == 302
    assert "/auth/login" in response.headers["Location"]


def test_role_capabilities_gate_pages(client, login_operaciones):
    login_operaciones()
    assert client.get("/servicios").status_code == 200
    assert client.get("/transacciones").status_code == 403
    assert client.get("/administracion/planes/nuevo").status_code == 200
    assert client.get("/administracion/usuarios").status_code == 403
    assert client.get("/nomina/periodos").status_code == 403


def test_list_filters_are_applied(client, login_admin, records):
    login_admin()
    response = client.get("/servicios", query_string={"estado": "borrador"})
    assert response.status_code == 200
    assert "José Soto Contreras".encode() in response.data

    response = client.get("/servicios", query_string={"estado": "cerrado"})
    assert "José Soto Contreras".encode() not in response.data
