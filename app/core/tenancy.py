from __future__ import annotations

from dataclasses import dataclass, field

from flask import g, session
from flask_login import current_user

from app.core.errors import NotFoundError, UnauthorizedError
from app.core.models import Branch, Profile, UserBranch, UserRole

SELECTED_BRANCH_KEY = "selected_branch_id"


@dataclass
class TenantScope:
    user_id: int
    profile_id: int
    funeral_home_id: int
    role: UserRole
    branch_ids: list[int] = field(default_factory=list)
    selected_branch_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def can_access_branch(self, branch_id: int | None) -> bool:
        if branch_id is None:
            return False
        if not self.branch_ids:
            return True
        return branch_id in self.branch_ids

    def default_branch_id(self) -> int | None:
        if self.selected_branch_id:
            return self.selected_branch_id
        if self.branch_ids:
            return self.branch_ids[0]
        branch = (
            Branch.query.filter_by(funeral_home_id=self.funeral_home_id, estado_activo=True)
            .order_by(Branch.id.asc())
            .first()
        )
        return branch.id if branch else None


def build_scope(profile: Profile, selected_branch_id: int | None = None) -> TenantScope:
    branch_ids = [
        row.branch_id
        for row in UserBranch.query.filter_by(profile_id=profile.id).order_by(UserBranch.branch_id.asc()).all()
    ]
    scope = TenantScope(
        user_id=profile.user_id,
        profile_id=profile.id,
        funeral_home_id=profile.funeral_home_id,
        role=UserRole(profile.role),
        branch_ids=branch_ids,
    )
    if selected_branch_id and scope.can_access_branch(selected_branch_id):
        branch = Branch.query.filter_by(id=selected_branch_id, funeral_home_id=scope.funeral_home_id).first()
        if branch is not None:
            scope.selected_branch_id = branch.id
    return scope


def load_tenant_context() -> None:
    g.tenant = None
    g.profile = None
    if not current_user.is_authenticated:
        return
    profile = Profile.query.filter_by(user_id=current_user.id).first()
    if profile is None or not profile.estado_activo:
        return
    g.profile = profile
    g.tenant = build_scope(profile, session.get(SELECTED_BRANCH_KEY))


def current_scope() -> TenantScope:
    scope = getattr(g, "tenant", None)
    if scope is not None:
        return scope
    if not current_user.is_authenticated:
        raise UnauthorizedError("No autenticado")
    raise NotFoundError("Perfil no encontrado")


def select_branch(branch_id: int | None) -> None:
    scope = current_scope()
    if branch_id is None:
        session.pop(SELECTED_BRANCH_KEY, None)
        scope.selected_branch_id = None
        return
    if not scope.can_access_branch(branch_id):
        raise UnauthorizedError("No tienes acceso a esta sucursal")
    branch = Branch.query.filter_by(id=branch_id, funeral_home_id=scope.funeral_home_id).first()
    if branch is None:
        raise NotFoundError("Sucursal no encontrada")
    session[SELECTED_BRANCH_KEY] = branch.id
    scope.selected_branch_id = branch.id
