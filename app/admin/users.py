from __future__ import annotations

import logging
import secrets
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import joinedload
from werkzeug.security import generate_password_hash

from app.core.activity import log_activity
from app.core.errors import NotFoundError, ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, filter_bool, filter_value
from app.core.models import ActivityAction, Branch, Profile, User, UserBranch, UserRole
from app.core.permissions import authorize
from app.core.queries import apply_equals, apply_search, tenant_query

logger = logging.getLogger(__name__)

NOT_AUTHORIZED = "No autorizado"


def list_users(filters: Mapping[str, Any] | None = None) -> list[Profile]:
    authorize("users.manage", NOT_AUTHORIZED)
    query = tenant_query(Profile).options(joinedload(Profile.branch_links).joinedload(UserBranch.branch))
    query = apply_equals(query, Profile.role, filter_value(filters, "role"))
    active = filter_bool(filters, "estado_activo")
    if active is not None:
        query = query.filter(Profile.estado_activo.is_(active))
    query = apply_search(query, filter_value(filters, "search"), Profile.nombre_completo, Profile.email)
    return query.order_by(Profile.nombre_completo.asc()).all()


def get_user(profile_id: int) -> Profile:
    authorize("users.manage", NOT_AUTHORIZED)
    profile = tenant_query(Profile).filter(Profile.id == profile_id).first()
    if profile is None:
        raise NotFoundError("Usuario no encontrado")
    return profile


def _tenant_branch(branch_id: int, funeral_home_id: int) -> Branch:
    branch = Branch.query.filter_by(id=branch_id, funeral_home_id=funeral_home_id).first()
    if branch is None:
        raise ValidationError(field_errors={"branch_ids": "Sucursal no válida"})
    return branch


def _branch_ids(raw: Iterable[Any] | str | None) -> list[int]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, (str, int)):
        raw = [raw]
    ids: list[int] = []
    for value in raw:
        text = str(value).strip()
        if not text.isdigit():
            raise ValidationError(field_errors={"branch_ids": "Sucursal no válida"})
        ids.append(int(text))
    return sorted(set(ids))


def invite_user(payload: Mapping[str, Any], branch_ids: Iterable[Any] | None = None) -> tuple[Profile, str]:
    """Create identity, profile and branch links; returns the temporary password."""
    scope = authorize("users.manage", "Solo administradores pueden invitar usuarios")
    parser = PayloadParser(payload)
    parser.email("email", required=True)
    parser.string("nombre_completo", required=True, min_length=3, max_length=160, label="nombre completo")
    parser.choice("role", UserRole, required=True, label="rol")
    data = parser.validate()
    ids = _branch_ids(branch_ids if branch_ids is not None else payload.get("branch_ids"))

    if User.query.filter_by(email=data["email"]).first() is not None:
        raise ValidationError("Ya existe un usuario con este correo")
    branches = [_tenant_branch(branch_id, scope.funeral_home_id) for branch_id in ids]

    temporary_password = secrets.token_urlsafe(9)
    with integrity_guard(unique="Ya existe un usuario con este correo"):
        user = User(email=data["email"], password_hash=generate_password_hash(temporary_password))
        db.session.add(user)
        db.session.flush()
        profile = Profile(
            user_id=user.id,
            funeral_home_id=scope.funeral_home_id,
            nombre_completo=data["nombre_completo"],
            email=user.email,
            role=data["role"],
        )
        db.session.add(profile)
        db.session.flush()
        for branch in branches:
            db.session.add(UserBranch(profile_id=profile.id, branch_id=branch.id))
        log_activity("user", profile.id, ActivityAction.CREATE, f"Usuario {profile.email} ({profile.role.value})")
        db.session.commit()
    logger.info("Profile %s invited into funeral home %s", profile.id, scope.funeral_home_id)
    return profile, temporary_password


def update_user(profile_id: int, payload: Mapping[str, Any]) -> Profile:
    profile = get_user(profile_id)
    parser = PayloadParser(payload, partial=True)
    parser.string("nombre_completo", required=True, min_length=3, max_length=160, label="nombre completo")
    data = parser.validate()
    if "nombre_completo" in data:
        profile.nombre_completo = data["nombre_completo"]
        log_activity("user", profile.id, ActivityAction.UPDATE, "Nombre actualizado")
    db.session.commit()
    return profile


def update_user_role(profile_id: int, role: str) -> Profile:
    scope = authorize("users.manage", "Solo administradores pueden cambiar roles")
    profile = get_user(profile_id)
    if profile.id == scope.profile_id:
        raise ValidationError("No puedes cambiar tu propio rol")
    try:
        new_role = UserRole((role or "").strip().lower())
    except ValueError:
        raise ValidationError(field_errors={"role": "Rol inválido"}) from None
    profile.role = new_role
    log_activity("user", profile.id, ActivityAction.UPDATE, f"Rol cambiado a {new_role.value}")
    db.session.commit()
    return profile


def deactivate_user(profile_id: int) -> Profile:
    scope = authorize("users.manage", "Solo administradores pueden desactivar usuarios")
    profile = get_user(profile_id)
    if profile.id == scope.profile_id:
        raise ValidationError("No puedes desactivarte a ti mismo")
    profile.estado_activo = False
    profile.user.is_active = False
    log_activity("user", profile.id, ActivityAction.UPDATE, "Usuario desactivado")
    db.session.commit()
    return profile


def reactivate_user(profile_id: int) -> Profile:
    authorize("users.manage", "Solo administradores pueden reactivar usuarios")
    profile = get_user(profile_id)
    profile.estado_activo = True
    profile.user.is_active = True
    log_activity("user", profile.id, ActivityAction.UPDATE, "Usuario reactivado")
    db.session.commit()
    return profile


def assign_branch(profile_id: int, branch_id: int) -> UserBranch:
    scope = authorize("users.manage", "Solo administradores pueden asignar sucursales")
    profile = get_user(profile_id)
    branch = _tenant_branch(branch_id, scope.funeral_home_id)
    link = UserBranch(profile_id=profile.id, branch_id=branch.id)
    with integrity_guard(unique="El usuario ya está asignado a esta sucursal"):
        db.session.add(link)
        db.session.flush()
        log_activity("user", profile.id, ActivityAction.UPDATE, f"Asignado a sucursal {branch.nombre}", branch.id)
        db.session.commit()
    return link


def remove_branch(profile_id: int, branch_id: int) -> None:
    authorize("users.manage", "Solo administradores pueden quitar sucursales")
    profile = get_user(profile_id)
    link = UserBranch.query.filter_by(profile_id=profile.id, branch_id=branch_id).first()
    if link is None:
        raise NotFoundError("El usuario no está asignado a esta sucursal")
    db.session.delete(link)
    log_activity("user", profile.id, ActivityAction.UPDATE, f"Quitado de sucursal {branch_id}", branch_id)
    db.session.commit()
