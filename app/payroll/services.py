from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.orm import joinedload

from app.core.activity import log_activity
from app.core.errors import NotFoundError, ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_bool, filter_date, filter_int, filter_value
from app.core.models import (
    ActivityAction,
    Branch,
    Collaborator,
    CollaboratorType,
    PaymentReceipt,
    PaymentReceiptStatus,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollRecord,
    ServiceAssignment,
)
from app.core.permissions import authorize
from app.core.queries import (
    apply_date_range,
    apply_equals,
    apply_search,
    get_scoped,
    next_sequence_number,
    tenant_query,
)
from app.core.utils import format_date, month_bounds

logger = logging.getLogger(__name__)

DUPLICATE_RUT = "Ya existe un colaborador con este RUT"
COLLABORATOR_IN_USE = "No se puede eliminar el colaborador porque tiene servicios o nóminas asociadas"
PERIOD_IN_USE = "No se puede eliminar el periodo porque tiene recibos generados"
RECEIPT_EXISTS = "Ya existe un recibo para este registro"
PERIOD_DATES = "La fecha de fin debe ser igual o posterior a la fecha de inicio"


# Collaborators

def _collaborator_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.foreign_id("branch_id", label="sucursal")
    parser.string("nombre_completo", required=True, min_length=3, max_length=160, label="nombre")
    parser.rut("rut", required=True)
    parser.choice("tipo", CollaboratorType, required=True, label="tipo")
    parser.string("cargo", max_length=120)
    parser.string("telefono", max_length=40)
    parser.email("email")
    parser.decimal("sueldo_base", min_value=0, default=Decimal("0"), label="sueldo base")
    parser.string("metodo_pago", max_length=40, default="transferencia")
    parser.boolean("estado_activo", default=True)
    parser.string("notas", max_length=1000)
    data = parser.validate()
    for key in ("email", "metodo_pago"):
        if key in data and data[key] is None:
            data[key] = ""
    return data


def _check_collaborator(data: Mapping[str, Any], scope, exclude_id: int | None = None) -> None:
    branch_id = data.get("branch_id")
    if branch_id:
        branch = Branch.query.filter_by(id=branch_id, funeral_home_id=scope.funeral_home_id).first()
        if branch is None or not scope.can_access_branch(branch_id):
            raise ValidationError(field_errors={"branch_id": "Sucursal no válida"})
    rut = data.get("rut")
    if rut:
        query = tenant_query(Collaborator, scope).filter(Collaborator.rut == rut)
        if exclude_id:
            query = query.filter(Collaborator.id != exclude_id)
        if query.first() is not None:
            raise ValidationError(DUPLICATE_RUT, field_errors={"rut": DUPLICATE_RUT})


def list_collaborators(filters: Mapping[str, Any] | None = None) -> list[Collaborator]:
    query = tenant_query(Collaborator).options(joinedload(Collaborator.branch))
    branch_id = filter_int(filters, "branch_id")
    if branch_id:
        query = query.filter(Collaborator.branch_id == branch_id)
    query = apply_equals(query, Collaborator.tipo, filter_value(filters, "tipo"))
    active = filter_bool(filters, "estado_activo")
    if active is not None:
        query = query.filter(Collaborator.estado_activo.is_(active))
    query = apply_search(query, filter_value(filters, "cargo"), Collaborator.cargo)
    query = apply_search(
        query, filter_value(filters, "search"), Collaborator.nombre_completo, Collaborator.rut, Collaborator.email
    )
    return query.order_by(Collaborator.nombre_completo.asc()).all()


def get_collaborator(collaborator_id: int) -> Collaborator:
    return get_scoped(Collaborator, collaborator_id, message="Colaborador no encontrado")


def create_collaborator(payload: Mapping[str, Any]) -> Collaborator:
    scope = authorize("payroll.manage")
    data = _collaborator_payload(payload)
    _check_collaborator(data, scope)
    collaborator = Collaborator(funeral_home_id=scope.funeral_home_id, **data)
    with integrity_guard(unique=DUPLICATE_RUT):
        db.session.add(collaborator)
        db.session.flush()
        log_activity(
            "collaborator", collaborator.id, ActivityAction.CREATE, collaborator.nombre_completo, collaborator.branch_id
        )
        db.session.commit()
    return collaborator


def update_collaborator(collaborator_id: int, payload: Mapping[str, Any]) -> Collaborator:
    scope = authorize("payroll.manage")
    collaborator = get_collaborator(collaborator_id)
    data = _collaborator_payload(payload, partial=True)
    _check_collaborator(data, scope, exclude_id=collaborator.id)
    with integrity_guard(unique=DUPLICATE_RUT):
        changed = apply_fields(collaborator, data)
        if changed:
            log_activity(
                "collaborator", collaborator.id, ActivityAction.UPDATE, ", ".join(changed), collaborator.branch_id
            )
        db.session.commit()
    return collaborator


def deactivate_collaborator(collaborator_id: int, motivo: str = "") -> Collaborator:
    authorize("payroll.manage")
    collaborator = get_collaborator(collaborator_id)
    stamp = f"Desactivado el {format_date(date.today())}"
    motivo = (motivo or "").strip()
    collaborator.estado_activo = False
    collaborator.notas = f"{motivo} - {stamp}" if motivo else stamp
    log_activity("collaborator", collaborator.id, ActivityAction.UPDATE, stamp, collaborator.branch_id)
    db.session.commit()
    return collaborator


def reactivate_collaborator(collaborator_id: int) -> Collaborator:
    authorize("payroll.manage")
    collaborator = get_collaborator(collaborator_id)
    collaborator.estado_activo = True
    log_activity("collaborator", collaborator.id, ActivityAction.UPDATE, "Reactivado", collaborator.branch_id)
    db.session.commit()
    return collaborator


def delete_collaborator(collaborator_id: int) -> None:
    authorize("payroll.manage")
    collaborator = get_collaborator(collaborator_id)
    name, branch_id = collaborator.nombre_completo, collaborator.branch_id
    with integrity_guard(foreign_key=COLLABORATOR_IN_USE):
        db.session.delete(collaborator)
        db.session.flush()
        log_activity("collaborator", collaborator_id, ActivityAction.DELETE, name, branch_id)
        db.session.commit()


def collaborator_payroll_history(collaborator_id: int) -> list[PayrollRecord]:
    collaborator = get_collaborator(collaborator_id)
    return (
        PayrollRecord.query.join(PayrollPeriod, PayrollRecord.period_id == PayrollPeriod.id)
        .options(joinedload(PayrollRecord.period))
        .filter(PayrollRecord.collaborator_id == collaborator.id)
        .filter(PayrollRecord.funeral_home_id == collaborator.funeral_home_id)
        .order_by(PayrollPeriod.fecha_inicio.desc())
        .all()
    )


# Periods

def _period_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.string("nombre", required=True, min_length=3, max_length=120, label="nombre")
    parser.date("fecha_inicio", required=True, label="fecha de inicio")
    parser.date("fecha_fin", required=True, label="fecha de fin")
    parser.choice("estado", PayrollPeriodStatus, default=None if partial else PayrollPeriodStatus.ABIERTO)
    parser.string("notas", max_length=1000)
    data = parser.validate()
    if partial and data.get("estado") is None:
        data.pop("estado", None)
    return data


def _check_period_dates(start: date, end: date) -> None:
    if end < start:
        raise ValidationError(field_errors={"fecha_fin": PERIOD_DATES})


def list_periods(filters: Mapping[str, Any] | None = None) -> list[PayrollPeriod]:
    query = tenant_query(PayrollPeriod)
    query = apply_equals(query, PayrollPeriod.estado, filter_value(filters, "estado"))
    start, end = filter_date(filters, "fecha_desde"), filter_date(filters, "fecha_hasta")
    if start:
        query = query.filter(PayrollPeriod.fecha_inicio >= start)
    if end:
        query = query.filter(PayrollPeriod.fecha_fin <= end)
    query = apply_search(query, filter_value(filters, "search"), PayrollPeriod.nombre)
    return query.order_by(PayrollPeriod.fecha_inicio.desc(), PayrollPeriod.id.desc()).all()


def get_period(period_id: int) -> PayrollPeriod:
    return get_scoped(PayrollPeriod, period_id, message="Período no encontrado")


def create_period(payload: Mapping[str, Any]) -> PayrollPeriod:
    scope = authorize("payroll.manage")
    data = _period_payload(payload)
    _check_period_dates(data["fecha_inicio"], data["fecha_fin"])
    period = PayrollPeriod(funeral_home_id=scope.funeral_home_id, **data)
    db.session.add(period)
    db.session.flush()
    log_activity("payroll_period", period.id, ActivityAction.CREATE, period.nombre)
    db.session.commit()
    return period


def update_period(period_id: int, payload: Mapping[str, Any]) -> PayrollPeriod:
    authorize("payroll.manage")
    period = get_period(period_id)
    data = _period_payload(payload, partial=True)
    _check_period_dates(data.get("fecha_inicio", period.fecha_inicio), data.get("fecha_fin", period.fecha_fin))
    changed = apply_fields(period, data)
    if changed:
        log_activity("payroll_period", period.id, ActivityAction.UPDATE, ", ".join(changed))
    db.session.commit()
    return period


def close_period(period_id: int, notas: str = "") -> PayrollPeriod:
    scope = authorize("payroll.manage")
    period = get_period(period_id)
    period.estado = PayrollPeriodStatus.CERRADO
    period.fecha_cierre = datetime.now(timezone.utc)
    period.cerrado_por = scope.profile_id
    if (notas or "").strip():
        period.notas = notas.strip()
    log_activity("payroll_period", period.id, ActivityAction.UPDATE, f"Periodo {period.nombre} cerrado")
    db.session.commit()
    return period


def delete_period(period_id: int) -> None:
    authorize("payroll.manage")
    period = get_period(period_id)
    if PaymentReceipt.query.filter_by(period_id=period.id).first() is not None:
        raise ValidationError(PERIOD_IN_USE)
    name = period.nombre
    with integrity_guard(foreign_key=PERIOD_IN_USE):
        db.session.delete(period)
        db.session.flush()
        log_activity("payroll_period", period_id, ActivityAction.DELETE, name)
        db.session.commit()


def recalculate_period(period: PayrollPeriod, include_inactive: bool = False) -> dict[str, int]:
    """Create or refresh one record per collaborator of the period's funeral home."""
    query = Collaborator.query.filter(Collaborator.funeral_home_id == period.funeral_home_id)
    if not include_inactive:
        query = query.filter(Collaborator.estado_activo.is_(True))
    collaborators = query.order_by(Collaborator.id.asc()).all()

    assignments = apply_date_range(
        ServiceAssignment.query.filter(ServiceAssignment.funeral_home_id == period.funeral_home_id),
        ServiceAssignment.created_at,
        period.fecha_inicio,
        period.fecha_fin,
    ).all()
    existing = {record.collaborator_id: record for record in period.records}

    created = updated = 0
    for collaborator in collaborators:
        own = [a for a in assignments if a.collaborator_id == collaborator.id]
        base = Decimal(collaborator.sueldo_base or 0) if collaborator.tipo == CollaboratorType.EMPLEADO else Decimal("0")
        record = existing.get(collaborator.id)
        if record is None:
            record = PayrollRecord(
                funeral_home_id=period.funeral_home_id,
                collaborator_id=collaborator.id,
                dias_trabajados=0,
                bonos=Decimal("0"),
                comisiones=Decimal("0"),
                descuentos=Decimal("0"),
                adelantos=Decimal("0"),
            )
            period.records.append(record)
            created += 1
        else:
            updated += 1
        record.sueldo_base = base
        record.cantidad_servicios = len(own)
        record.total_extras = sum((Decimal(a.monto_extra or 0) for a in own), Decimal("0"))
        record.recalculate()

    period.refresh_totals()
    db.session.commit()
    logger.info("Payroll period %s calculated: %s created, %s updated", period.id, created, updated)
    return {"created": created, "updated": updated}


def calculate_payroll(period_id: int, include_inactive: bool = False) -> dict[str, int]:
    authorize("payroll.manage")
    period = get_period(period_id)
    result = recalculate_period(period, include_inactive=include_inactive)
    log_activity(
        "payroll_period",
        period.id,
        ActivityAction.UPDATE,
        f"Nómina calculada: {result['created']} nuevos, {result['updated']} actualizados",
    )
    db.session.commit()
    return result


# Records

def get_record(record_id: int) -> PayrollRecord:
    record = tenant_query(PayrollRecord).filter(PayrollRecord.id == record_id).first()
    if record is None:
        raise NotFoundError("Registro de nómina no encontrado")
    return record


def update_record(record_id: int, payload: Mapping[str, Any]) -> PayrollRecord:
    authorize("payroll.manage")
    record = get_record(record_id)
    parser = PayloadParser(payload, partial=True)
    parser.integer("dias_trabajados", min_value=0, max_value=31, label="días trabajados")
    for key in ("bonos", "comisiones", "descuentos", "adelantos"):
        parser.decimal(key, min_value=0, default=Decimal("0"), label=key)
    parser.string("notas", max_length=1000)
    data = parser.validate()
    if "dias_trabajados" in data and data["dias_trabajados"] is None:
        data["dias_trabajados"] = 0
    apply_fields(record, data)
    record.recalculate()
    record.period.refresh_totals()
    db.session.commit()
    return record


def approve_record(record_id: int) -> PayrollRecord:
    scope = authorize("payroll.manage")
    record = get_record(record_id)
    record.aprobado = True
    record.fecha_aprobacion = datetime.now(timezone.utc)
    record.aprobado_por = scope.profile_id
    db.session.commit()
    return record


def approve_all_records(period_id: int) -> int:
    scope = authorize("payroll.manage")
    period = get_period(period_id)
    now = datetime.now(timezone.utc)
    count = 0
    for record in period.records:
        if record.aprobado:
            continue
        record.aprobado = True
        record.fecha_aprobacion = now
        record.aprobado_por = scope.profile_id
        count += 1
    log_activity("payroll_period", period.id, ActivityAction.UPDATE, f"{count} registros aprobados")
    db.session.commit()
    return count


# Receipts

def _next_receipt_number(funeral_home_id: int, year: int) -> str:
    return next_sequence_number(PaymentReceipt.numero_recibo, funeral_home_id, f"REC-{year}-")


def _build_receipt(record: PayrollRecord, number: str) -> PaymentReceipt:
    collaborator = record.collaborator
    return PaymentReceipt(
        funeral_home_id=record.funeral_home_id,
        payroll_record_id=record.id,
        period_id=record.period_id,
        collaborator_id=collaborator.id,
        numero_recibo=number,
        fecha_emision=date.today(),
        colaborador_nombre=collaborator.nombre_completo,
        colaborador_rut=collaborator.rut,
        periodo_nombre=record.period.nombre,
        sueldo_base=record.sueldo_base,
        total_extras=record.total_extras,
        bonos=record.bonos,
        comisiones=record.comisiones,
        descuentos=record.descuentos,
        adelantos=record.adelantos,
        total_bruto=record.total_bruto,
        total_deducciones=record.total_deducciones,
        total_neto=record.total_neto,
        estado=PaymentReceiptStatus.GENERADO,
        metodo_pago=collaborator.metodo_pago or "",
        codigo_verificacion=secrets.token_hex(6).upper(),
    )


def generate_receipt(record_id: int) -> PaymentReceipt:
    scope = authorize("payroll.manage")
    record = get_record(record_id)
    if record.receipt is not None:
        raise ValidationError(RECEIPT_EXISTS)
    receipt = _build_receipt(record, _next_receipt_number(scope.funeral_home_id, date.today().year))
    with integrity_guard(unique=RECEIPT_EXISTS):
        db.session.add(receipt)
        db.session.flush()
        log_activity("payment_receipt", receipt.id, ActivityAction.CREATE, receipt.numero_recibo)
        db.session.commit()
    return receipt


def generate_all_receipts(period_id: int) -> dict[str, int]:
    scope = authorize("payroll.manage")
    period = get_period(period_id)
    generated = skipped = 0
    year = date.today().year
    for record in period.records:
        if not record.aprobado:
            continue
        if record.receipt is not None:
            skipped += 1
            continue
        db.session.add(_build_receipt(record, _next_receipt_number(scope.funeral_home_id, year)))
        db.session.flush()
        generated += 1
    if generated:
        log_activity("payroll_period", period.id, ActivityAction.UPDATE, f"{generated} recibos generados")
    db.session.commit()
    return {"generated": generated, "skipped": skipped}


def list_receipts(period_id: int | None = None) -> list[PaymentReceipt]:
    query = tenant_query(PaymentReceipt)
    if period_id:
        query = query.filter(PaymentReceipt.period_id == period_id)
    return query.order_by(PaymentReceipt.fecha_emision.desc(), PaymentReceipt.id.desc()).all()


def get_receipt(receipt_id: int) -> PaymentReceipt:
    return get_scoped(PaymentReceipt, receipt_id, message="Recibo no encontrado")


def update_receipt_status(receipt_id: int, estado: str, fecha_pago: date | None = None) -> PaymentReceipt:
    authorize("payroll.manage")
    receipt = get_receipt(receipt_id)
    try:
        receipt.estado = PaymentReceiptStatus((estado or "").strip().lower())
    except ValueError:
        raise ValidationError(field_errors={"estado": "Estado inválido"}) from None
    if receipt.estado == PaymentReceiptStatus.PAGADO:
        receipt.fecha_pago = fecha_pago or receipt.fecha_pago or date.today()
    db.session.commit()
    return receipt


# Reports

def payroll_summary(month: date | None = None) -> list[dict[str, Any]]:
    """Per collaborator: services worked in ``month``, extras and amount to pay."""
    start, end = month_bounds(month or date.today())
    collaborators = list_collaborators({"estado_activo": "true"})
    assignments = apply_date_range(tenant_query(ServiceAssignment), ServiceAssignment.created_at, start, end).all()
    rows = []
    for collaborator in collaborators:
        own = [a for a in assignments if a.collaborator_id == collaborator.id]
        extras = sum((Decimal(a.monto_extra or 0) for a in own), Decimal("0"))
        base = Decimal(collaborator.sueldo_base or 0) if collaborator.tipo == CollaboratorType.EMPLEADO else Decimal("0")
        rows.append(
            {
                "collaborator": collaborator,
                "mes_nomina": start,
                "cantidad_servicios": len(own),
                "total_extras": extras,
                "total_a_pagar": base + extras,
            }
        )
    return rows


def payroll_overview() -> dict[str, Any]:
    collaborators = list_collaborators()
    periods = list_periods()
    employees = [c for c in collaborators if c.tipo == CollaboratorType.EMPLEADO]
    salaried = [c for c in employees if c.sueldo_base]
    base_total = sum((Decimal(c.sueldo_base) for c in salaried), Decimal("0"))

    by_cargo: dict[str, dict[str, Any]] = {}
    for collaborator in collaborators:
        group = by_cargo.setdefault(collaborator.cargo or "Sin cargo", {"count": 0, "total_salary": Decimal("0")})
        group["count"] += 1
        group["total_salary"] += Decimal(collaborator.sueldo_base or 0)

    return {
        "total_colaboradores": len(collaborators),
        "activos": sum(1 for c in collaborators if c.estado_activo),
        "empleados": len(employees),
        "honorarios": sum(1 for c in collaborators if c.tipo == CollaboratorType.HONORARIO),
        "sueldo_base_total": base_total,
        "sueldo_base_promedio": (base_total / len(employees)) if employees else Decimal("0"),
        "periodos_abiertos": sum(1 for p in periods if p.estado == PayrollPeriodStatus.ABIERTO),
        "total_pagado": sum(
            (Decimal(p.total_neto or 0) for p in periods if p.estado == PayrollPeriodStatus.PAGADO), Decimal("0")
        ),
        "total_pendiente": sum(
            (Decimal(p.total_neto or 0) for p in periods if p.estado != PayrollPeriodStatus.PAGADO), Decimal("0")
        ),
        "por_cargo": by_cargo,
    }
