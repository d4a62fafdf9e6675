"""Error taxonomy shared by every service module.

Services raise subclasses of :class:`ActionError`. They are ``ValueError``
subclasses so HTML routes keep catching ``ValueError`` and flashing the
message. JSON endpoints go through :func:`run_action`, which turns the
exception into an :class:`ActionResult`.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.extensions import db

logger = logging.getLogger(__name__)

UNAUTHORIZED = "UNAUTHORIZED"
NOT_FOUND = "NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
SERVER_ERROR = "SERVER_ERROR"

DEFAULT_MESSAGES = {
    UNAUTHORIZED: "No autorizado",
    NOT_FOUND: "Registro no encontrado",
    VALIDATION_ERROR: "Datos inválidos. Revisa la información ingresada.",
    SERVER_ERROR: "Ocurrió un error inesperado. Intenta nuevamente.",
}


class ActionError(ValueError):
    code = SERVER_ERROR

    def __init__(self, message: str | None = None):
        self.message = message or DEFAULT_MESSAGES[self.code]
        super().__init__(self.message)


class UnauthorizedError(ActionError):
    code = UNAUTHORIZED


class NotFoundError(ActionError):
    code = NOT_FOUND


class ValidationError(ActionError):
    code = VALIDATION_ERROR

    def __init__(self, message: str | None = None, field_errors: dict[str, str] | None = None):
        self.field_errors = dict(field_errors or {})
        if message is None and self.field_errors:
            message = next(iter(self.field_errors.values()))
        super().__init__(message)


class ServerError(ActionError):
    code = SERVER_ERROR


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: ActionError | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        error = self.error or ServerError()
        body: dict[str, Any] = {"code": error.code, "message": error.message}
        field_errors = getattr(error, "field_errors", None)
        if field_errors:
            body["fieldErrors"] = field_errors
        return {"success": False, "error": body}

    @property
    def status_code(self) -> int:
        if self.success:
            return 200
        return {
            UNAUTHORIZED: 401,
            NOT_FOUND: 404,
            VALIDATION_ERROR: 400,
        }.get(self.error.code if self.error else SERVER_ERROR, 500)


def success(data: Any = None) -> ActionResult:
    return ActionResult(success=True, data=data)


def failure(error: ActionError) -> ActionResult:
    return ActionResult(success=False, error=error)


def run_action(fn: Callable[..., Any], *args, **kwargs) -> ActionResult:
    try:
        return success(fn(*args, **kwargs))
    except ActionError as exc:
        return failure(exc)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unhandled database error in %s", getattr(fn, "__name__", fn))
        return failure(ServerError())


def integrity_kind(exc: IntegrityError) -> str | None:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == "23505":
        return "unique"
    if code == "23503":
        return "foreign_key"
    text = str(orig if orig is not None else exc).lower()
    if "unique constraint" in text or "duplicate key" in text:
        return "unique"
    if "foreign key constraint" in text:
        return "foreign_key"
    return None


def translate_integrity_error(
    exc: IntegrityError,
    unique: str | None = None,
    foreign_key: str | None = None,
) -> ActionError:
    kind = integrity_kind(exc)
    logger.info("Integrity violation (%s): %s", kind or "unknown", getattr(exc, "orig", exc))
    if kind == "unique" and unique:
        return ValidationError(unique)
    if kind == "foreign_key" and foreign_key:
        return ValidationError(foreign_key)
    if kind is not None:
        return ValidationError()
    return ServerError()


@contextmanager
def integrity_guard(unique: str | None = None, foreign_key: str | None = None) -> Iterator[None]:
    """Roll back and raise a domain error when the block hits a constraint."""
    try:
        yield
    except IntegrityError as exc:
        db.session.rollback()
        raise translate_integrity_error(exc, unique=unique, foreign_key=foreign_key) from exc
