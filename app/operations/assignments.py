from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.orm import joinedload

from app.core.activity import log_activity
from app.core.errors import NotFoundError, ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields
from app.core.models import ActivityAction, Collaborator, ServiceAssignment
from app.core.permissions import authorize
from app.core.queries import apply_date_range, tenant_query
from app.operations.services import get_service

DUPLICATE_ASSIGNMENT = "Este colaborador ya está asignado a este servicio"


def _assignment_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.string("rol_en_servicio", required=True, min_length=2, max_length=120, label="rol en el servicio")
    parser.string("tipo_extra", max_length=80)
    parser.decimal("monto_extra", min_value=0, default=Decimal("0"), label="monto extra")
    parser.string("comentarios", max_length=1000)
    return parser.validate()


def list_service_assignments(service_id: int) -> list[ServiceAssignment]:
    service = get_service(service_id)
    return (
        tenant_query(ServiceAssignment)
        .options(joinedload(ServiceAssignment.collaborator))
        .filter(ServiceAssignment.service_id == service.id)
        .order_by(ServiceAssignment.created_at.asc(), ServiceAssignment.id.asc())
        .all()
    )


def list_collaborator_assignments(collaborator_id: int, fecha_desde=None, fecha_hasta=None) -> list[ServiceAssignment]:
    query = (
        tenant_query(ServiceAssignment)
        .options(joinedload(ServiceAssignment.service))
        .filter(ServiceAssignment.collaborator_id == collaborator_id)
    )
    query = apply_date_range(query, ServiceAssignment.created_at, fecha_desde, fecha_hasta)
    return query.order_by(ServiceAssignment.created_at.desc()).all()


def get_assignment(assignment_id: int) -> ServiceAssignment:
    assignment = tenant_query(ServiceAssignment).filter(ServiceAssignment.id == assignment_id).first()
    if assignment is None:
        raise NotFoundError("Asignación no encontrada")
    return assignment


def create_assignment(service_id: int, payload: Mapping[str, Any]) -> ServiceAssignment:
    scope = authorize("services.write")
    service = get_service(service_id)
    parser = PayloadParser(payload)
    collaborator_id = parser.foreign_id("collaborator_id", required=True, label="colaborador")
    parser.validate()
    collaborator = Collaborator.query.filter_by(id=collaborator_id, funeral_home_id=scope.funeral_home_id).first()
    if collaborator is None:
        raise ValidationError(field_errors={"collaborator_id": "Colaborador no válido"})
    if not collaborator.estado_activo:
        raise ValidationError(field_errors={"collaborator_id": "El colaborador está desactivado"})

    assignment = ServiceAssignment(
        funeral_home_id=scope.funeral_home_id,
        service_id=service.id,
        collaborator_id=collaborator.id,
        **_assignment_payload(payload),
    )
    with integrity_guard(unique=DUPLICATE_ASSIGNMENT):
        db.session.add(assignment)
        db.session.flush()
        log_activity(
            "service_assignment",
            assignment.id,
            ActivityAction.CREATE,
            f"{collaborator.nombre_completo} asignado a {service.numero_servicio}",
            service.branch_id,
        )
        db.session.commit()
    return assignment


def update_assignment(assignment_id: int, payload: Mapping[str, Any]) -> ServiceAssignment:
    authorize("services.write")
    assignment = get_assignment(assignment_id)
    changed = apply_fields(assignment, _assignment_payload(payload, partial=True))
    if changed:
        log_activity("service_assignment", assignment.id, ActivityAction.UPDATE, ", ".join(changed))
    db.session.commit()
    return assignment


def delete_assignment(assignment_id: int) -> int:
    authorize("services.write")
    assignment = get_assignment(assignment_id)
    service_id = assignment.service_id
    db.session.delete(assignment)
    log_activity("service_assignment", assignment_id, ActivityAction.DELETE, f"Servicio {service_id}")
    db.session.commit()
    return service_id
