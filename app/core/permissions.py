from __future__ import annotations

import logging
from functools import wraps

from flask import abort, g
from flask_login import current_user

from app.core.errors import UnauthorizedError
from app.core.models import UserRole

logger = logging.getLogger(__name__)

_ALL_ROLES = frozenset(UserRole)

ROLE_CAPABILITIES: dict[str, frozenset[UserRole]] = {
    "branches.manage": frozenset({UserRole.ADMIN}),
    "users.manage": frozenset({UserRole.ADMIN}),
    "catalogs.manage": frozenset({UserRole.ADMIN, UserRole.EJECUTIVO, UserRole.OPERACIONES}),
    "services.write": frozenset({UserRole.ADMIN, UserRole.EJECUTIVO, UserRole.OPERACIONES}),
    "agenda.write": frozenset({UserRole.ADMIN, UserRole.EJECUTIVO, UserRole.OPERACIONES}),
    "finance.read": frozenset({UserRole.ADMIN, UserRole.EJECUTIVO, UserRole.CAJA}),
    "finance.write": frozenset({UserRole.ADMIN, UserRole.EJECUTIVO, UserRole.CAJA}),
    "payroll.manage": frozenset({UserRole.ADMIN, UserRole.EJECUTIVO}),
    "reports.view": frozenset({UserRole.ADMIN, UserRole.EJECUTIVO, UserRole.CAJA}),
    "tenant.read": _ALL_ROLES,
}

CAPABILITY_MESSAGES: dict[str, str] = {
    "branches.manage": "Solo administradores pueden gestionar sucursales",
    "users.manage": "Solo administradores pueden gestionar usuarios",
}


def has_capability(role: UserRole | str | None, capability: str) -> bool:
    if role is None:
        return False
    allowed = ROLE_CAPABILITIES.get(capability)
    if allowed is None:
        raise KeyError(f"Unknown capability: {capability}")
    return UserRole(role) in allowed


def authorize(capability: str, message: str | None = None):
    """Raise ``UnauthorizedError`` unless the caller's role grants ``capability``."""
    from app.core.tenancy import current_scope

    scope = current_scope()
    if not has_capability(scope.role, capability):
        logger.info("Denied %s to profile %s (%s)", capability, scope.profile_id, scope.role.value)
        raise UnauthorizedError(message or CAPABILITY_MESSAGES.get(capability, "No autorizado"))
    return scope


def require_tenant(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if getattr(g, "tenant", None) is None:
            abort(403)
        return fn(*args, **kwargs)

    return wrapper


def require_capability(capability: str):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            scope = getattr(g, "tenant", None)
            if scope is None:
                abort(403)
            if not has_capability(scope.role, capability):
                abort(403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
