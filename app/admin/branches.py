from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import func

from app.core.activity import log_activity
from app.core.errors import NotFoundError, ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_bool, filter_value
from app.core.models import ActivityAction, Branch, Profile, Service, UserBranch
from app.core.permissions import authorize
from app.core.queries import apply_search, get_scoped, tenant_query
from app.core.tenancy import current_scope

DUPLICATE_BRANCH = "Ya existe una sucursal con este nombre"


def _branch_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.string("nombre", required=True, min_length=3, max_length=120, label="nombre")
    parser.string("direccion", max_length=255)
    parser.string("telefono", max_length=40)
    parser.string("nombre_gerente", max_length=120)
    return parser.validate()


def list_branches(filters: Mapping[str, Any] | None = None) -> list[Branch]:
    query = tenant_query(Branch)
    active = filter_bool(filters, "estado_activo")
    if active is not None:
        query = query.filter(Branch.estado_activo.is_(active))
    query = apply_search(query, filter_value(filters, "search"), Branch.nombre, Branch.direccion)
    return query.order_by(Branch.nombre.asc()).all()


def get_branch(branch_id: int) -> Branch:
    return get_scoped(Branch, branch_id, message="Sucursal no encontrada")


def create_branch(payload: Mapping[str, Any]) -> Branch:
    scope = authorize("branches.manage", "Solo administradores pueden crear sucursales")
    branch = Branch(funeral_home_id=scope.funeral_home_id, **_branch_payload(payload))
    with integrity_guard(unique=DUPLICATE_BRANCH):
        db.session.add(branch)
        db.session.flush()
        log_activity("branch", branch.id, ActivityAction.CREATE, f"Sucursal {branch.nombre}", branch.id)
        db.session.commit()
    return branch


def update_branch(branch_id: int, payload: Mapping[str, Any]) -> Branch:
    authorize("branches.manage", "Solo administradores pueden actualizar sucursales")
    branch = get_branch(branch_id)
    with integrity_guard(unique=DUPLICATE_BRANCH):
        changed = apply_fields(branch, _branch_payload(payload, partial=True))
        if changed:
            log_activity("branch", branch.id, ActivityAction.UPDATE, ", ".join(changed), branch.id)
        db.session.commit()
    return branch


def deactivate_branch(branch_id: int) -> Branch:
    authorize("branches.manage", "Solo administradores pueden desactivar sucursales")
    branch = get_branch(branch_id)
    assigned = UserBranch.query.filter_by(branch_id=branch.id).count()
    if assigned:
        raise ValidationError(
            f"No se puede desactivar la sucursal porque tiene {assigned} usuario(s) asignado(s)"
        )
    branch.estado_activo = False
    log_activity("branch", branch.id, ActivityAction.UPDATE, "Sucursal desactivada", branch.id)
    db.session.commit()
    return branch


def reactivate_branch(branch_id: int) -> Branch:
    authorize("branches.manage", "Solo administradores pueden reactivar sucursales")
    branch = get_branch(branch_id)
    branch.estado_activo = True
    log_activity("branch", branch.id, ActivityAction.UPDATE, "Sucursal reactivada", branch.id)
    db.session.commit()
    return branch


def branch_stats(branch_id: int) -> dict[str, int]:
    branch = get_branch(branch_id)
    total_users = UserBranch.query.filter_by(branch_id=branch.id).count()
    total_services = (
        db.session.query(func.count(Service.id))
        .filter(Service.funeral_home_id == branch.funeral_home_id, Service.branch_id == branch.id)
        .scalar()
    )
    return {"total_users": total_users, "total_services": int(total_services or 0)}


def user_branches(profile_id: int | None = None) -> list[Branch]:
    """Branches assigned to a profile; all tenant branches when it has none."""
    scope = current_scope()
    profile_id = profile_id or scope.profile_id
    profile = Profile.query.filter_by(id=profile_id, funeral_home_id=scope.funeral_home_id).first()
    if profile is None:
        raise NotFoundError("Perfil no encontrado")
    branch_ids = [link.branch_id for link in profile.branch_links]
    query = tenant_query(Branch, scope).filter(Branch.estado_activo.is_(True))
    if branch_ids:
        query = query.filter(Branch.id.in_(branch_ids))
    return query.order_by(Branch.nombre.asc()).all()
