from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from app.core.activity import log_activity
from app.core.errors import NotFoundError, ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_date, filter_int, filter_value
from app.core.models import (
    ActivityAction,
    Branch,
    CemeteryCrematorium,
    CoffinUrn,
    CoffinUrnType,
    DeathPlaceType,
    Plan,
    ProcedureStatus,
    Service,
    ServiceItem,
    ServiceItemType,
    ServiceProcedure,
    ServiceStatus,
    ServiceType,
    Transaction,
    TransactionStatus,
    Vehicle,
    VehicleStatus,
)
from app.core.permissions import authorize
from app.core.queries import (
    apply_date_range,
    apply_equals,
    apply_search,
    branch_scoped_query,
    get_scoped,
    next_sequence_number,
    tenant_query,
)
from app.core.tenancy import TenantScope

SERVICE_NOT_FOUND = "Servicio no encontrado"


def _next_service_number(funeral_home_id: int, year: int) -> str:
    return next_sequence_number(Service.numero_servicio, funeral_home_id, f"SRV-{year}-")


def _service_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.foreign_id("branch_id", label="sucursal")
    parser.choice("tipo_servicio", ServiceType, required=True, label="tipo de servicio")
    parser.choice("estado", ServiceStatus, default=None if partial else ServiceStatus.BORRADOR)
    parser.string("notas_generales", max_length=2000)

    parser.string("nombre_fallecido", required=True, min_length=3, max_length=160, label="nombre del fallecido")
    parser.rut("rut_fallecido")
    parser.date("fecha_nacimiento_fallecido")
    parser.date("fecha_fallecimiento", required=True, label="fecha de fallecimiento")
    parser.choice("tipo_lugar_fallecimiento", DeathPlaceType)
    parser.string("lugar_fallecimiento", max_length=255)
    parser.string("causa_fallecimiento", max_length=255)

    parser.string("nombre_responsable", required=True, min_length=3, max_length=160, label="nombre del responsable")
    parser.rut("rut_responsable", required=True)
    parser.string("telefono_responsable", required=True, min_length=8, max_length=40, label="teléfono")
    parser.email("email_responsable")
    parser.string("direccion_responsable", max_length=255)
    parser.string("parentesco_responsable", max_length=80)

    parser.foreign_id("plan_id")
    parser.foreign_id("coffin_id")
    parser.foreign_id("urn_id")
    parser.foreign_id("cemetery_crematorium_id")
    parser.foreign_id("vehiculo_principal_id")

    parser.decimal("monto_descuento", min_value=0, default=Decimal("0"), label="monto de descuento")
    parser.decimal("porcentaje_descuento", min_value=0, max_value=100, default=Decimal("0"), label="porcentaje")
    parser.decimal("total_final", min_value=0, label="total final")

    parser.datetime("fecha_recogida")
    parser.datetime("fecha_inicio_velatorio")
    parser.string("sala_velatorio", max_length=120)
    parser.datetime("fecha_ceremonia_religiosa")
    parser.datetime("fecha_inhumacion_cremacion")
    parser.string("notas_logistica", max_length=2000)

    data = parser.validate()
    born, died = data.get("fecha_nacimiento_fallecido"), data.get("fecha_fallecimiento")
    if born and died and born > died:
        raise ValidationError(
            field_errors={"fecha_nacimiento_fallecido": "La fecha de nacimiento no puede ser posterior al fallecimiento"}
        )
    if "rut_fallecido" in data and data["rut_fallecido"] is None:
        data["rut_fallecido"] = ""
    if partial and data.get("estado") is None:
        data.pop("estado", None)
    return data


def _check_references(data: Mapping[str, Any], scope: TenantScope) -> None:
    errors: dict[str, str] = {}
    checks = (
        ("plan_id", Plan, None),
        ("coffin_id", CoffinUrn, CoffinUrnType.ATAUD),
        ("urn_id", CoffinUrn, CoffinUrnType.URNA),
        ("cemetery_crematorium_id", CemeteryCrematorium, None),
        ("vehiculo_principal_id", Vehicle, None),
    )
    for key, model, kind in checks:
        ref_id = data.get(key)
        if not ref_id:
            continue
        row = model.query.filter_by(id=ref_id, funeral_home_id=scope.funeral_home_id).first()
        if row is None or (kind is not None and row.tipo != kind):
            errors[key] = "Referencia no válida"
    branch_id = data.get("branch_id")
    if branch_id:
        branch = Branch.query.filter_by(id=branch_id, funeral_home_id=scope.funeral_home_id).first()
        if branch is None or not scope.can_access_branch(branch_id):
            errors["branch_id"] = "Sucursal no válida"
    if errors:
        raise ValidationError(field_errors=errors)


def list_services(filters: Mapping[str, Any] | None = None) -> list[Service]:
    query = branch_scoped_query(Service).options(
        joinedload(Service.plan), joinedload(Service.cemetery), joinedload(Service.branch)
    )
    query = apply_equals(query, Service.estado, filter_value(filters, "estado"))
    query = apply_equals(query, Service.tipo_servicio, filter_value(filters, "tipo_servicio"))
    cemetery_id = filter_int(filters, "cemetery_id")
    if cemetery_id:
        query = query.filter(Service.cemetery_crematorium_id == cemetery_id)
    branch_id = filter_int(filters, "branch_id")
    if branch_id:
        query = query.filter(Service.branch_id == branch_id)
    query = apply_date_range(
        query,
        Service.fecha_inhumacion_cremacion,
        filter_date(filters, "date_from"),
        filter_date(filters, "date_to"),
    )
    query = apply_search(
        query,
        filter_value(filters, "search"),
        Service.nombre_fallecido,
        Service.nombre_responsable,
        Service.numero_servicio,
    )
    return query.order_by(Service.created_at.desc(), Service.id.desc()).all()


def get_service(service_id: int) -> Service:
    return get_scoped(Service, service_id, message=SERVICE_NOT_FOUND)


def service_paid_amount(service: Service) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Transaction.monto), 0))
        .filter(Transaction.service_id == service.id, Transaction.estado == TransactionStatus.PAGADO)
        .scalar()
    )
    return Decimal(total or 0)


def service_balance(service: Service) -> Decimal:
    return Decimal(service.total_final or 0) - service_paid_amount(service)


def create_service(payload: Mapping[str, Any]) -> Service:
    scope = authorize("services.write")
    data = _service_payload(payload)
    if not data.get("branch_id"):
        data["branch_id"] = scope.default_branch_id()
    if not data.get("branch_id"):
        raise ValidationError(field_errors={"branch_id": "No se pudo determinar la sucursal"})
    _check_references(data, scope)

    explicit_total = data.pop("total_final", None)
    service = Service(
        funeral_home_id=scope.funeral_home_id,
        numero_servicio=_next_service_number(scope.funeral_home_id, date.today().year),
        created_by=scope.profile_id,
        **data,
    )
    service.total_items = Decimal("0")
    service.total_final = explicit_total if explicit_total is not None else Decimal("0")
    with integrity_guard(unique="Ya existe un servicio con este número"):
        db.session.add(service)
        db.session.flush()
        log_activity(
            "service",
            service.id,
            ActivityAction.CREATE,
            f"Servicio {service.numero_servicio} ({service.nombre_fallecido})",
            service.branch_id,
        )
        db.session.commit()
    return service


def update_service(service_id: int, payload: Mapping[str, Any]) -> Service:
    scope = authorize("services.write")
    service = get_service(service_id)
    data = _service_payload(payload, partial=True)
    _check_references(data, scope)
    explicit_total = data.pop("total_final", None)
    changed = apply_fields(service, data)
    if {"monto_descuento", "porcentaje_descuento"} & set(changed) and service.items:
        service.recalculate_totals()
    if explicit_total is not None:
        service.total_final = explicit_total
        changed.append("total_final")
    if changed:
        log_activity(
            "service", service.id, ActivityAction.UPDATE, f"Campos: {', '.join(changed)}", service.branch_id
        )
    db.session.commit()
    return service


def update_service_status(service_id: int, estado: str) -> Service:
    return update_service(service_id, {"estado": estado})


def delete_service(service_id: int) -> None:
    authorize("services.write")
    service = get_service(service_id)
    number, branch_id = service.numero_servicio, service.branch_id
    with integrity_guard(foreign_key="No se puede eliminar el servicio porque tiene egresos asociados"):
        db.session.delete(service)
        db.session.flush()
        log_activity("service", service_id, ActivityAction.DELETE, f"Servicio {number}", branch_id)
        db.session.commit()


def add_service_item(service_id: int, payload: Mapping[str, Any]) -> ServiceItem:
    authorize("services.write")
    service = get_service(service_id)
    parser = PayloadParser(payload)
    parser.choice("tipo_item", ServiceItemType, required=True, label="tipo de ítem")
    parser.string("categoria", max_length=80)
    parser.string("descripcion", required=True, min_length=2, max_length=255, label="descripción")
    parser.integer("cantidad", required=True, min_value=1, label="cantidad")
    parser.decimal("precio_unitario", required=True, min_value=0, label="precio unitario")
    parser.decimal("tasa_impuesto", min_value=0, max_value=100, default=Decimal("0"), label="impuesto")
    data = parser.validate()

    item = ServiceItem(**data)
    item.compute_total()
    service.items.append(item)
    service.recalculate_totals()
    log_activity(
        "service", service.id, ActivityAction.UPDATE, f"Ítem agregado: {item.descripcion}", service.branch_id
    )
    db.session.commit()
    return item


def delete_service_item(service_id: int, item_id: int) -> None:
    authorize("services.write")
    service = get_service(service_id)
    item = next((row for row in service.items if row.id == item_id), None)
    if item is None:
        raise NotFoundError("Ítem no encontrado")
    service.items.remove(item)
    service.recalculate_totals()
    log_activity("service", service.id, ActivityAction.UPDATE, f"Ítem eliminado: {item.descripcion}", service.branch_id)
    db.session.commit()


def add_service_procedure(service_id: int, payload: Mapping[str, Any]) -> ServiceProcedure:
    authorize("services.write")
    service = get_service(service_id)
    parser = PayloadParser(payload)
    parser.string("tipo_tramite", required=True, min_length=3, max_length=120, label="trámite")
    parser.choice("estado", ProcedureStatus, default=ProcedureStatus.PENDIENTE)
    parser.string("notas", max_length=1000)
    data = parser.validate()
    procedure = ServiceProcedure(**data)
    if procedure.estado == ProcedureStatus.COMPLETO:
        procedure.fecha_completado = date.today()
    service.procedures.append(procedure)
    db.session.commit()
    return procedure


def update_procedure_status(service_id: int, procedure_id: int, estado: str) -> ServiceProcedure:
    authorize("services.write")
    service = get_service(service_id)
    procedure = next((row for row in service.procedures if row.id == procedure_id), None)
    if procedure is None:
        raise NotFoundError("Trámite no encontrado")
    try:
        procedure.estado = ProcedureStatus((estado or "").strip().lower())
    except ValueError:
        raise ValidationError(field_errors={"estado": "Estado inválido"}) from None
    procedure.fecha_completado = date.today() if procedure.estado == ProcedureStatus.COMPLETO else None
    db.session.commit()
    return procedure


def get_catalog_data() -> dict[str, list[Any]]:
    """Active catalog rows offered when filling a service form."""
    plans = tenant_query(Plan).filter(Plan.estado_activo.is_(True)).order_by(Plan.nombre.asc()).all()
    products = (
        tenant_query(CoffinUrn)
        .filter(CoffinUrn.estado_activo.is_(True))
        .order_by(CoffinUrn.nombre_comercial.asc())
        .all()
    )
    cemeteries = (
        tenant_query(CemeteryCrematorium)
        .filter(CemeteryCrematorium.estado_activo.is_(True))
        .order_by(CemeteryCrematorium.nombre.asc())
        .all()
    )
    vehicles = (
        tenant_query(Vehicle)
        .filter(Vehicle.estado == VehicleStatus.DISPONIBLE)
        .order_by(Vehicle.placa.asc())
        .all()
    )
    return {
        "plans": plans,
        "coffins": [p for p in products if p.tipo == CoffinUrnType.ATAUD],
        "urns": [p for p in products if p.tipo == CoffinUrnType.URNA],
        "cemeteries": cemeteries,
        "vehicles": vehicles,
    }


def services_for_select() -> list[tuple[int, str]]:
    rows = branch_scoped_query(Service).order_by(Service.created_at.desc(), Service.id.desc()).limit(200).all()
    return [(row.id, f"{row.numero_servicio} · {row.nombre_fallecido}") for row in rows]


def service_summary(service: Service) -> dict[str, Any]:
    paid = service_paid_amount(service)
    return {
        "id": service.id,
        "numero_servicio": service.numero_servicio,
        "estado": service.estado.value,
        "total_final": str(Decimal(service.total_final or 0)),
        "pagado": str(paid),
        "saldo": str(Decimal(service.total_final or 0) - paid),
    }
