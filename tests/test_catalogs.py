from __future__ import annotations

from decimal import Decimal

import pytest

from app.admin import catalogs
from app.core.errors import UnauthorizedError, ValidationError
from app.core.models import ActivityLog, Branch, Plan, Supplier, Vehicle
from app.operations.services import create_service, get_catalog_data


def test_admin_creates_plan_through_form(client, login_admin):
    login_admin()
    response = client.post(
        "/administracion/planes/nuevo",
        data={
            "nombre": "Plan Premium",
            "tipo_servicio": "inhumacion",
            "precio_base": "1500000",
            "estado_activo": "on",
        },
    )
    assert response.status_code == 302

    plan = Plan.query.filter_by(nombre="Plan Premium").one()
    assert plan.precio_base == Decimal("1500000")
    assert plan.estado_activo is True
    assert response.headers["Location"].endswith(f"/administracion/planes/{plan.id}")
    log = ActivityLog.query.filter_by(entity_type="plan", entity_id=plan.id).one()
    assert log.action == "CREATE"


def test_plan_form_errors_are_flashed(client, login_admin):
    login_admin()
    response = client.post(
        "/administracion/planes/nuevo",
        data={"nombre": "Plan X", "tipo_servicio": "inhumacion", "precio_base": "-10"},
    )
    assert response.status_code == 400
    assert "precio base debe ser mayor o igual a 0".encode() in response.data


def test_caja_cannot_manage_catalogs(as_profile):
    with as_profile("caja@funerariasol.cl"):
        with pytest.raises(UnauthorizedError):
            catalogs.create_plan({"nombre": "Plan Caja", "tipo_servicio": "cremacion", "precio_base": "1"})


def test_vehicle_plate_is_normalized_and_validated(as_profile):
    with as_profile():
        vehicle = catalogs.create_vehicle({"placa": "bcdf-12", "tipo_vehiculo": "Furgón"})
        assert vehicle.placa == "BCDF-12"

        with pytest.raises(ValidationError) as exc:
            catalogs.create_vehicle({"placa": "12-AB", "tipo_vehiculo": "Furgón"})
    assert "placa" in exc.value.field_errors


def test_duplicate_plate_is_rejected(as_profile):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            catalogs.create_vehicle({"placa": "HXJK-21", "tipo_vehiculo": "Carroza"})
    assert exc.value.message == catalogs.DUPLICATE_PLATE
    assert Vehicle.query.filter_by(placa="HXJK-21").count() == 1


def test_vehicle_branch_must_belong_to_tenant(as_profile, second_tenant):
    foreign_branch = second_tenant["branch"].id
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            catalogs.create_vehicle({"placa": "ZZ-11", "tipo_vehiculo": "Carroza", "branch_id": str(foreign_branch)})
    assert exc.value.field_errors == {"branch_id": "Sucursal no válida"}


def test_supplier_rut_is_validated(as_profile):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            catalogs.create_supplier({"nombre": "Flores Ltda", "rut": "12.345.678-9"})
        assert exc.value.field_errors["rut"] == "El RUT ingresado no es válido"

        supplier = catalogs.create_supplier({"nombre": "Flores Ltda", "rut": "123456785"})
        assert supplier.rut == "12.345.678-5"


def test_plan_in_use_cannot_be_deleted(as_profile, service_form):
    plan = Plan.query.filter_by(nombre="Plan Tradicional").one()
    with as_profile():
        create_service({**service_form, "plan_id": str(plan.id)})
        with pytest.raises(ValidationError) as exc:
            catalogs.delete_plan(plan.id)
    assert exc.value.message == "No se puede eliminar el plan porque está siendo usado en servicios"
    assert Plan.query.filter_by(nombre="Plan Tradicional").count() == 1


def test_unused_plan_is_deleted(as_profile):
    plan = Plan.query.filter_by(nombre="Plan Cremación").one()
    plan_id = plan.id
    with as_profile():
        catalogs.delete_plan(plan_id)
    assert Plan.query.get(plan_id) is None


def test_supplier_with_products_cannot_be_deleted(as_profile):
    supplier = Supplier.query.filter_by(nombre="Ataúdes del Sur").one()
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            catalogs.delete_supplier(supplier.id)
    assert exc.value.message == catalogs.SUPPLIER_IN_USE
    assert Supplier.query.filter_by(nombre="Ataúdes del Sur").count() == 1


def test_catalog_data_splits_coffins_and_urns(as_profile):
    with as_profile():
        data = catalogs.list_plans({"estado_activo": "true"})
        catalog = get_catalog_data()
    assert [p.nombre for p in data] == ["Plan Cremación", "Plan Tradicional"]
    assert [c.nombre_comercial for c in catalog["coffins"]] == ["Ataúd Roble Clásico"]
    assert [u.nombre_comercial for u in catalog["urns"]] == ["Urna Cerámica"]
    assert [v.placa for v in catalog["vehicles"]] == ["HXJK-21"]


def test_inactive_plan_is_hidden_from_catalog(as_profile):
    plan = Plan.query.filter_by(nombre="Plan Cremación").one()
    with as_profile():
        catalogs.update_plan(plan.id, {"estado_activo": "false"})
        catalog = get_catalog_data()
    assert [p.nombre for p in catalog["plans"]] == ["Plan Tradicional"]


def test_branch_options_list_active_branches(as_profile):
    with as_profile():
        options = catalogs.branch_options()
    names = [name for _, name in options]
    assert names == ["Casa matriz", "Sucursal Norte"]
    assert Branch.query.count() == 2


def test_suppliers_with_same_name_stay_in_their_tenant(as_profile, second_tenant):
    with as_profile():
        own = catalogs.create_supplier({"nombre": "Floristería A", "tipo_negocio": "Flores"})
    with as_profile("admin@funerarialuna.cl"):
        other = catalogs.create_supplier({"nombre": "Floristería A", "tipo_negocio": "Flores"})
        luna_rows = catalogs.list_suppliers({"search": "florister"})
    with as_profile():
        sol_rows = catalogs.list_suppliers({"search": "florister"})

    assert [s.id for s in sol_rows] == [own.id]
    assert [s.id for s in luna_rows] == [other.id]
    assert {s.funeral_home_id for s in luna_rows} == {second_tenant["home"].id}
