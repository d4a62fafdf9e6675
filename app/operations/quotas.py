"""Mortuary quota claims (AFP / IPS / PGU benefits) attached to services.

Quotas carry no tenant column: every query joins through ``Service`` and
applies the caller's funeral home and branches there.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.orm import contains_eager

from app.core.activity import log_activity
from app.core.errors import NotFoundError, ValidationError
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_date, filter_value
from app.core.models import (
    ActivityAction,
    MortuaryQuota,
    MortuaryQuotaEntity,
    MortuaryQuotaPayer,
    MortuaryQuotaStatus,
    Service,
)
from app.core.permissions import authorize
from app.core.queries import apply_date_range, apply_equals, apply_search, restrict_branches
from app.core.tenancy import current_scope
from app.operations.services import get_service

ENTITY_AND_PAYER_REQUIRED = "Cuando aplica cuota mortuoria, debe especificar la entidad y el pagador"
RESOLVED_STATES = {MortuaryQuotaStatus.APROBADA, MortuaryQuotaStatus.RECHAZADA}


def _scoped_quotas():
    scope = current_scope()
    query = (
        MortuaryQuota.query.join(Service, MortuaryQuota.service_id == Service.id)
        .options(contains_eager(MortuaryQuota.service))
        .filter(Service.funeral_home_id == scope.funeral_home_id)
    )
    return restrict_branches(query, Service.branch_id, scope)


def _quota_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.boolean("aplica", default=False)
    parser.choice("entidad", MortuaryQuotaEntity, label="entidad")
    parser.string("nombre_entidad", max_length=160)
    parser.decimal("monto_facturado", min_value=0, default=Decimal("0"), label="monto facturado")
    parser.choice("pagador", MortuaryQuotaPayer, label="pagador")
    parser.choice("estado", MortuaryQuotaStatus, default=None if partial else MortuaryQuotaStatus.NO_INICIADA)
    parser.date("fecha_solicitud")
    parser.date("fecha_resolucion")
    parser.date("fecha_pago")
    parser.string("notas", max_length=1000)
    data = parser.validate()
    if partial and data.get("estado") is None:
        data.pop("estado", None)
    return data


def _check_entity_and_payer(quota: MortuaryQuota) -> None:
    if quota.aplica and (quota.entidad is None or quota.pagador is None):
        raise ValidationError(ENTITY_AND_PAYER_REQUIRED)


def list_quotas(filters: Mapping[str, Any] | None = None) -> list[MortuaryQuota]:
    query = _scoped_quotas()
    query = apply_equals(query, MortuaryQuota.estado, filter_value(filters, "estado"))
    query = apply_equals(query, MortuaryQuota.entidad, filter_value(filters, "entidad"))
    query = apply_date_range(
        query, MortuaryQuota.fecha_solicitud, filter_date(filters, "fecha_desde"), filter_date(filters, "fecha_hasta")
    )
    query = apply_search(
        query,
        filter_value(filters, "search"),
        Service.nombre_fallecido,
        Service.numero_servicio,
        MortuaryQuota.nombre_entidad,
    )
    return query.order_by(MortuaryQuota.created_at.desc(), MortuaryQuota.id.desc()).all()


def get_quota(quota_id: int) -> MortuaryQuota:
    quota = _scoped_quotas().filter(MortuaryQuota.id == quota_id).first()
    if quota is None:
        raise NotFoundError("Cuota mortuoria no encontrada")
    return quota


def upsert_service_quota(service_id: int, payload: Mapping[str, Any]) -> MortuaryQuota:
    authorize("services.write")
    service = get_service(service_id)
    quota = service.mortuary_quota
    created = quota is None
    data = _quota_payload(payload, partial=not created)
    if created:
        quota = MortuaryQuota(service_id=service.id, **data)
        _check_entity_and_payer(quota)
        db.session.add(quota)
        db.session.flush()
    else:
        apply_fields(quota, data)
        try:
            _check_entity_and_payer(quota)
        except ValidationError:
            db.session.rollback()
            raise
    log_activity(
        "mortuary_quota",
        quota.id,
        ActivityAction.CREATE if created else ActivityAction.UPDATE,
        f"Cuota mortuoria de {service.numero_servicio}",
        service.branch_id,
    )
    db.session.commit()
    return quota


def update_quota(quota_id: int, payload: Mapping[str, Any]) -> MortuaryQuota:
    authorize("services.write")
    quota = get_quota(quota_id)
    changed = apply_fields(quota, _quota_payload(payload, partial=True))
    try:
        _check_entity_and_payer(quota)
    except ValidationError:
        db.session.rollback()
        raise
    if changed:
        log_activity("mortuary_quota", quota.id, ActivityAction.UPDATE, ", ".join(changed), quota.service.branch_id)
    db.session.commit()
    return quota


def update_quota_status(
    quota_id: int,
    estado: str,
    fecha_resolucion: date | None = None,
    fecha_pago: date | None = None,
) -> MortuaryQuota:
    authorize("services.write")
    quota = get_quota(quota_id)
    try:
        new_status = MortuaryQuotaStatus((estado or "").strip().lower())
    except ValueError:
        raise ValidationError(field_errors={"estado": "Estado inválido"}) from None
    quota.estado = new_status
    if new_status in RESOLVED_STATES:
        quota.fecha_resolucion = fecha_resolucion or date.today()
    if new_status == MortuaryQuotaStatus.PAGADA and fecha_pago:
        quota.fecha_pago = fecha_pago
    log_activity(
        "mortuary_quota",
        quota.id,
        ActivityAction.UPDATE,
        f"Estado {new_status.value}",
        quota.service.branch_id,
    )
    db.session.commit()
    return quota


def quota_stats() -> dict[str, Any]:
    rows = _scoped_quotas().all()
    stats: dict[str, Any] = {"total": len(rows)}
    for status in MortuaryQuotaStatus:
        stats[status.value] = sum(1 for row in rows if row.estado == status)
    stats["monto_total_aprobado"] = sum(
        (
            Decimal(row.monto_facturado or 0)
            for row in rows
            if row.estado in {MortuaryQuotaStatus.APROBADA, MortuaryQuotaStatus.PAGADA}
        ),
        Decimal("0"),
    )
    stats["monto_total_pagado"] = sum(
        (Decimal(row.monto_facturado or 0) for row in rows if row.estado == MortuaryQuotaStatus.PAGADA),
        Decimal("0"),
    )
    return stats
