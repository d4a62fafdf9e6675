"""Reference catalogs: plans, coffins/urns, cemeteries, vehicles, suppliers."""
from __future__ import annotations

from typing import Any, Mapping

from app.core.activity import log_activity
from app.core.errors import ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_bool, filter_int, filter_value
from app.core.models import (
    ActivityAction,
    Branch,
    CemeteryCrematorium,
    CemeteryType,
    CoffinUrn,
    CoffinUrnType,
    Plan,
    ServiceType,
    Supplier,
    Vehicle,
    VehicleStatus,
)
from app.core.permissions import authorize
from app.core.queries import apply_equals, apply_search, get_scoped, tenant_query

IN_USE_BY_SERVICES = "No se puede eliminar porque está siendo usado en servicios"
SUPPLIER_IN_USE = "No se puede eliminar el proveedor porque tiene egresos o productos asociados"


def _active_filter(query, model, filters):
    active = filter_bool(filters, "estado_activo")
    if active is not None:
        query = query.filter(model.estado_activo.is_(active))
    return query


def _check_branch(branch_id: int | None, scope) -> None:
    if branch_id is None:
        return
    branch = Branch.query.filter_by(id=branch_id, funeral_home_id=scope.funeral_home_id).first()
    if branch is None or not scope.can_access_branch(branch_id):
        raise ValidationError(field_errors={"branch_id": "Sucursal no válida"})


def _create(obj, entity_type: str, label: str, unique: str | None = None):
    with integrity_guard(unique=unique):
        db.session.add(obj)
        db.session.flush()
        log_activity(entity_type, obj.id, ActivityAction.CREATE, label, getattr(obj, "branch_id", None))
        db.session.commit()
    return obj


def _update(obj, data: Mapping[str, Any], entity_type: str, label: str, unique: str | None = None):
    with integrity_guard(unique=unique):
        changed = apply_fields(obj, data)
        if changed:
            log_activity(entity_type, obj.id, ActivityAction.UPDATE, f"{label}: {', '.join(changed)}")
        db.session.commit()
    return obj


def _delete(obj, entity_type: str, label: str, in_use_message: str) -> None:
    entity_id = obj.id
    with integrity_guard(foreign_key=in_use_message):
        db.session.delete(obj)
        db.session.flush()
        log_activity(entity_type, entity_id, ActivityAction.DELETE, label)
        db.session.commit()


# Plans

def _plan_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.string("nombre", required=True, min_length=3, max_length=160, label="nombre")
    parser.string("descripcion", max_length=1000)
    parser.choice("tipo_servicio", ServiceType, required=True, label="tipo de servicio")
    parser.decimal("precio_base", required=True, min_value=0, label="precio base")
    parser.string("notas", max_length=1000)
    parser.boolean("estado_activo", default=True)
    return parser.validate()


def list_plans(filters: Mapping[str, Any] | None = None) -> list[Plan]:
    query = tenant_query(Plan)
    query = apply_equals(query, Plan.tipo_servicio, filter_value(filters, "tipo_servicio"))
    query = _active_filter(query, Plan, filters)
    query = apply_search(query, filter_value(filters, "search"), Plan.nombre, Plan.descripcion)
    return query.order_by(Plan.nombre.asc()).all()


def get_plan(plan_id: int) -> Plan:
    return get_scoped(Plan, plan_id, message="Plan no encontrado")


def create_plan(payload: Mapping[str, Any]) -> Plan:
    scope = authorize("catalogs.manage")
    data = _plan_payload(payload)
    plan = Plan(funeral_home_id=scope.funeral_home_id, **data)
    return _create(plan, "plan", f"Plan {plan.nombre}")


def update_plan(plan_id: int, payload: Mapping[str, Any]) -> Plan:
    authorize("catalogs.manage")
    plan = get_plan(plan_id)
    return _update(plan, _plan_payload(payload, partial=True), "plan", f"Plan {plan.nombre}")


def delete_plan(plan_id: int) -> None:
    authorize("catalogs.manage")
    plan = get_plan(plan_id)
    _delete(plan, "plan", f"Plan {plan.nombre}", "No se puede eliminar el plan porque está siendo usado en servicios")


# Coffins and urns

def _coffin_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.choice("tipo", CoffinUrnType, required=True, label="tipo")
    parser.string("nombre_comercial", required=True, min_length=2, max_length=160, label="nombre comercial")
    parser.string("sku", max_length=60)
    parser.string("material", max_length=80)
    parser.string("tamano", max_length=60)
    parser.string("categoria", max_length=80)
    parser.decimal("precio_venta", required=True, min_value=0, label="precio de venta")
    parser.decimal("costo", min_value=0, default=0)
    parser.integer("stock_disponible", min_value=0, default=0, label="stock")
    parser.foreign_id("supplier_id", label="proveedor")
    parser.boolean("estado_activo", default=True)
    return parser.validate()


def list_coffin_urns(filters: Mapping[str, Any] | None = None) -> list[CoffinUrn]:
    query = tenant_query(CoffinUrn)
    query = apply_equals(query, CoffinUrn.tipo, filter_value(filters, "tipo"))
    query = apply_equals(query, CoffinUrn.categoria, filter_value(filters, "categoria"))
    supplier_id = filter_int(filters, "supplier_id")
    if supplier_id:
        query = query.filter(CoffinUrn.supplier_id == supplier_id)
    query = _active_filter(query, CoffinUrn, filters)
    query = apply_search(
        query, filter_value(filters, "search"), CoffinUrn.nombre_comercial, CoffinUrn.sku, CoffinUrn.material
    )
    return query.order_by(CoffinUrn.tipo.asc(), CoffinUrn.nombre_comercial.asc()).all()


def get_coffin_urn(item_id: int) -> CoffinUrn:
    return get_scoped(CoffinUrn, item_id, message="Producto no encontrado")


def _check_supplier(supplier_id: int | None, funeral_home_id: int) -> None:
    if supplier_id and not Supplier.query.filter_by(id=supplier_id, funeral_home_id=funeral_home_id).first():
        raise ValidationError(field_errors={"supplier_id": "Proveedor no válido"})


def create_coffin_urn(payload: Mapping[str, Any]) -> CoffinUrn:
    scope = authorize("catalogs.manage")
    data = _coffin_payload(payload)
    _check_supplier(data.get("supplier_id"), scope.funeral_home_id)
    item = CoffinUrn(funeral_home_id=scope.funeral_home_id, **data)
    return _create(item, "coffin_urn", f"Producto {item.nombre_comercial}")


def update_coffin_urn(item_id: int, payload: Mapping[str, Any]) -> CoffinUrn:
    scope = authorize("catalogs.manage")
    item = get_coffin_urn(item_id)
    data = _coffin_payload(payload, partial=True)
    _check_supplier(data.get("supplier_id"), scope.funeral_home_id)
    return _update(item, data, "coffin_urn", f"Producto {item.nombre_comercial}")


def delete_coffin_urn(item_id: int) -> None:
    authorize("catalogs.manage")
    item = get_coffin_urn(item_id)
    _delete(item, "coffin_urn", f"Producto {item.nombre_comercial}", IN_USE_BY_SERVICES)


# Cemeteries and crematoriums

def _cemetery_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.string("nombre", required=True, min_length=3, max_length=160, label="nombre")
    parser.choice("tipo", CemeteryType, required=True, label="tipo")
    parser.string("direccion", max_length=255)
    parser.string("informacion_contacto", max_length=500)
    parser.string("notas", max_length=1000)
    parser.boolean("estado_activo", default=True)
    return parser.validate()


def list_cemeteries(filters: Mapping[str, Any] | None = None) -> list[CemeteryCrematorium]:
    query = tenant_query(CemeteryCrematorium)
    query = apply_equals(query, CemeteryCrematorium.tipo, filter_value(filters, "tipo"))
    query = _active_filter(query, CemeteryCrematorium, filters)
    query = apply_search(
        query, filter_value(filters, "search"), CemeteryCrematorium.nombre, CemeteryCrematorium.direccion
    )
    return query.order_by(CemeteryCrematorium.nombre.asc()).all()


def get_cemetery(cemetery_id: int) -> CemeteryCrematorium:
    return get_scoped(CemeteryCrematorium, cemetery_id, message="Cementerio o crematorio no encontrado")


def create_cemetery(payload: Mapping[str, Any]) -> CemeteryCrematorium:
    scope = authorize("catalogs.manage")
    cemetery = CemeteryCrematorium(funeral_home_id=scope.funeral_home_id, **_cemetery_payload(payload))
    return _create(cemetery, "cemetery", f"{cemetery.nombre}")


def update_cemetery(cemetery_id: int, payload: Mapping[str, Any]) -> CemeteryCrematorium:
    authorize("catalogs.manage")
    cemetery = get_cemetery(cemetery_id)
    return _update(cemetery, _cemetery_payload(payload, partial=True), "cemetery", cemetery.nombre)


def delete_cemetery(cemetery_id: int) -> None:
    authorize("catalogs.manage")
    cemetery = get_cemetery(cemetery_id)
    _delete(cemetery, "cemetery", cemetery.nombre, IN_USE_BY_SERVICES)


# Vehicles

DUPLICATE_PLATE = "Ya existe un vehículo con esta placa"


def _vehicle_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.plate("placa")
    parser.string("tipo_vehiculo", required=True, max_length=80, label="tipo de vehículo")
    parser.integer("capacidad", min_value=1, label="capacidad")
    parser.choice("estado", VehicleStatus, default=VehicleStatus.DISPONIBLE)
    parser.foreign_id("branch_id", label="sucursal")
    parser.string("notas", max_length=1000)
    return parser.validate()


def list_vehicles(filters: Mapping[str, Any] | None = None) -> list[Vehicle]:
    query = tenant_query(Vehicle)
    query = apply_equals(query, Vehicle.estado, filter_value(filters, "estado"))
    branch_id = filter_int(filters, "branch_id")
    if branch_id:
        query = query.filter(Vehicle.branch_id == branch_id)
    query = apply_search(query, filter_value(filters, "search"), Vehicle.placa, Vehicle.tipo_vehiculo)
    return query.order_by(Vehicle.placa.asc()).all()


def get_vehicle(vehicle_id: int) -> Vehicle:
    return get_scoped(Vehicle, vehicle_id, message="Vehículo no encontrado")


def create_vehicle(payload: Mapping[str, Any]) -> Vehicle:
    scope = authorize("catalogs.manage")
    data = _vehicle_payload(payload)
    _check_branch(data.get("branch_id"), scope)
    vehicle = Vehicle(funeral_home_id=scope.funeral_home_id, **data)
    return _create(vehicle, "vehicle", f"Vehículo {vehicle.placa}", unique=DUPLICATE_PLATE)


def update_vehicle(vehicle_id: int, payload: Mapping[str, Any]) -> Vehicle:
    scope = authorize("catalogs.manage")
    vehicle = get_vehicle(vehicle_id)
    data = _vehicle_payload(payload, partial=True)
    _check_branch(data.get("branch_id"), scope)
    return _update(vehicle, data, "vehicle", f"Vehículo {vehicle.placa}", unique=DUPLICATE_PLATE)


def delete_vehicle(vehicle_id: int) -> None:
    authorize("catalogs.manage")
    vehicle = get_vehicle(vehicle_id)
    _delete(
        vehicle,
        "vehicle",
        f"Vehículo {vehicle.placa}",
        "No se puede eliminar el vehículo porque está siendo usado en servicios",
    )


# Suppliers

def _supplier_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.string("nombre", required=True, min_length=2, max_length=160, label="nombre")
    parser.rut("rut")
    parser.string("tipo_negocio", max_length=120)
    parser.string("informacion_contacto", max_length=500)
    parser.boolean("estado_activo", default=True)
    return parser.validate()


def list_suppliers(filters: Mapping[str, Any] | None = None) -> list[Supplier]:
    query = tenant_query(Supplier)
    query = apply_equals(query, Supplier.tipo_negocio, filter_value(filters, "tipo_negocio"))
    query = _active_filter(query, Supplier, filters)
    query = apply_search(query, filter_value(filters, "search"), Supplier.nombre, Supplier.rut)
    return query.order_by(Supplier.nombre.asc()).all()


def get_supplier(supplier_id: int) -> Supplier:
    return get_scoped(Supplier, supplier_id, message="Proveedor no encontrado")


def create_supplier(payload: Mapping[str, Any]) -> Supplier:
    scope = authorize("catalogs.manage")
    supplier = Supplier(funeral_home_id=scope.funeral_home_id, **_supplier_payload(payload))
    return _create(supplier, "supplier", f"Proveedor {supplier.nombre}", unique="Ya existe un proveedor con este RUT")


def update_supplier(supplier_id: int, payload: Mapping[str, Any]) -> Supplier:
    authorize("catalogs.manage")
    supplier = get_supplier(supplier_id)
    return _update(
        supplier,
        _supplier_payload(payload, partial=True),
        "supplier",
        f"Proveedor {supplier.nombre}",
        unique="Ya existe un proveedor con este RUT",
    )


def delete_supplier(supplier_id: int) -> None:
    authorize("catalogs.manage")
    supplier = get_supplier(supplier_id)
    _delete(
        supplier,
        "supplier",
        f"Proveedor {supplier.nombre}",
        SUPPLIER_IN_USE,
    )


def branch_options() -> list[tuple[int, str]]:
    query = tenant_query(Branch).filter(Branch.estado_activo.is_(True))
    return [(b.id, b.nombre) for b in query.order_by(Branch.nombre.asc()).all()]


def supplier_options() -> list[tuple[int, str]]:
    return [(s.id, s.nombre) for s in list_suppliers({"estado_activo": "1"})]
