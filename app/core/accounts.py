"""Account lifecycle: signup, login checks, own profile and password."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.core.errors import ServerError, UnauthorizedError, ValidationError, integrity_kind
from app.core.extensions import db
from app.core.forms import PayloadParser
from app.core.models import Branch, FuneralHome, Profile, User, UserBranch, UserRole
from app.core.rut import format_rut

logger = logging.getLogger(__name__)

INVALID_SIGNUP_MESSAGE = "Datos inválidos. Revisa la información ingresada."
DUPLICATE_EMAIL_MESSAGE = "Ya existe un usuario con este correo"
DUPLICATE_TENANT_MESSAGE = "Ya existe una funeraria registrada con este RUT o correo"
TENANT_FAILURE_MESSAGE = "Error al crear la funeraria. Intenta nuevamente."
MIN_PASSWORD_LENGTH = 8


def parse_signup(payload: Mapping[str, Any]) -> dict[str, Any]:
    parser = PayloadParser(payload)
    parser.string("fullName", required=True, min_length=3, max_length=160, label="nombre completo")
    parser.email("email", required=True)
    parser.string("password", required=True, min_length=MIN_PASSWORD_LENGTH, label="contraseña")
    parser.string("funeralHomeLegalName", required=True, min_length=3, max_length=200, label="razón social")
    parser.string("funeralHomeTradeName", max_length=200)
    parser.string("funeralHomeRut", required=True, min_length=3, max_length=20, label="RUT")
    parser.string("branchName", max_length=120, default=current_app.config["DEFAULT_BRANCH_NAME"])
    parser.string("branchAddress", max_length=255)
    try:
        return parser.validate()
    except ValidationError as exc:
        raise ValidationError(INVALID_SIGNUP_MESSAGE, field_errors=exc.field_errors) from None


def _create_identity(email: str, password: str) -> User:
    user = User(email=email, password_hash=generate_password_hash(password))
    db.session.add(user)
    db.session.flush()
    return user


def _create_tenant(data: Mapping[str, Any]) -> FuneralHome:
    home = FuneralHome(
        razon_social=data["funeralHomeLegalName"],
        nombre_fantasia=data.get("funeralHomeTradeName") or "",
        rut=format_rut(data["funeralHomeRut"]) or data["funeralHomeRut"],
        email=data["email"],
        direccion=data.get("branchAddress") or "",
    )
    db.session.add(home)
    db.session.flush()
    return home


def _create_branch(home: FuneralHome, data: Mapping[str, Any]) -> Branch:
    branch = Branch(
        funeral_home_id=home.id,
        nombre=data.get("branchName") or current_app.config["DEFAULT_BRANCH_NAME"],
        direccion=data.get("branchAddress") or "",
    )
    db.session.add(branch)
    db.session.flush()
    return branch


def _create_profile(user: User, home: FuneralHome, data: Mapping[str, Any]) -> Profile:
    profile = Profile(
        user_id=user.id,
        funeral_home_id=home.id,
        nombre_completo=data["fullName"],
        email=user.email,
        role=UserRole.ADMIN,
    )
    db.session.add(profile)
    db.session.flush()
    return profile


def _assign_branch(profile: Profile, branch: Branch) -> UserBranch:
    link = UserBranch(profile_id=profile.id, branch_id=branch.id)
    db.session.add(link)
    db.session.flush()
    return link


def create_account(payload: Mapping[str, Any]) -> Profile:
    """Create identity, tenant, first branch, admin profile and branch link.

    All rows are written in a single transaction; any failure rolls back the
    whole unit so no partial tenant or loggable identity is left behind.
    """
    data = parse_signup(payload)
    email = data["email"]
    if User.query.filter_by(email=email).first() is not None:
        raise ValidationError(DUPLICATE_EMAIL_MESSAGE)

    try:
        user = _create_identity(email, data["password"])
        home = _create_tenant(data)
        branch = _create_branch(home, data)
        profile = _create_profile(user, home, data)
        _assign_branch(profile, branch)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Signup for %s rolled back: %s", email, getattr(exc, "orig", exc))
        if integrity_kind(exc) == "unique":
            raise ValidationError(DUPLICATE_TENANT_MESSAGE) from exc
        raise ServerError(TENANT_FAILURE_MESSAGE) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Signup for %s failed", email)
        raise ServerError(TENANT_FAILURE_MESSAGE) from exc

    logger.info("Funeral home %s created with admin %s", home.id, email)
    return profile


def authenticate(email: str, password: str) -> User:
    user = User.query.filter_by(email=(email or "").strip().lower()).first()
    if user is None or not check_password_hash(user.password_hash, password or ""):
        raise UnauthorizedError("Credenciales inválidas")
    profile = user.profile
    if not user.is_active or profile is None or not profile.estado_activo:
        raise UnauthorizedError("Tu usuario está desactivado. Contacta al administrador.")
    return user


def update_own_profile(profile: Profile, payload: Mapping[str, Any]) -> Profile:
    parser = PayloadParser(payload, partial=True)
    parser.string("nombre_completo", required=True, min_length=3, max_length=160, label="nombre completo")
    parser.string("url_avatar", max_length=500)
    data = parser.validate()
    for key, value in data.items():
        setattr(profile, key, value)
    db.session.commit()
    return profile


def change_password(user: User, current_password: str, new_password: str, confirm_password: str) -> None:
    if not check_password_hash(user.password_hash, current_password or ""):
        raise ValidationError("La contraseña actual es incorrecta")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"La nueva contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres")
    if new_password != confirm_password:
        raise ValidationError("Las contraseñas no coinciden")
    user.password_hash = generate_password_hash(new_password)
    db.session.commit()
    logger.info("Password changed for user %s", user.id)
