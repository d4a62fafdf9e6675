from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

from app.core.errors import ValidationError
from app.core.rut import format_rut, validate_rut_field

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PLATE_PATTERN = re.compile(r"^[A-Z]{2,4}-?\d{2}$")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
TRUE_VALUES = {"1", "true", "on", "si", "sí", "yes"}


class PayloadParser:
    """Parse a form or JSON payload into typed column values.

    Errors are collected per field and raised together by :meth:`validate`.
    With ``partial=True`` keys absent from the payload are skipped, which is
    how updates apply only the fields the caller sent.
    """

    def __init__(self, payload: Mapping[str, Any] | None, partial: bool = False):
        self.payload = payload or {}
        self.partial = partial
        self.errors: dict[str, str] = {}
        self.data: dict[str, Any] = {}

    def _skip(self, key: str) -> bool:
        return self.partial and key not in self.payload

    def _raw(self, key: str) -> Any:
        value = self.payload.get(key)
        if isinstance(value, str):
            value = value.strip()
        return value

    def _blank(self, value: Any) -> bool:
        return value is None or value == ""

    def error(self, key: str, message: str) -> None:
        self.errors.setdefault(key, message)

    def _missing(self, key: str, label: str | None) -> None:
        self.error(key, f"El campo {label or key} es obligatorio")

    def _store(self, key: str, value: Any) -> Any:
        if key not in self.errors:
            self.data[key] = value
        return value

    def string(
        self,
        key: str,
        *,
        required: bool = False,
        min_length: int = 0,
        max_length: int | None = None,
        label: str | None = None,
        default: str | None = "",
    ) -> str | None:
        if self._skip(key):
            return None
        raw = self._raw(key)
        if self._blank(raw):
            if required:
                self._missing(key, label)
                return None
            return self._store(key, default)
        value = str(raw)
        if len(value) < min_length:
            self.error(key, f"{label or key} debe tener al menos {min_length} caracteres")
        if max_length is not None and len(value) > max_length:
            self.error(key, f"{label or key} no puede superar {max_length} caracteres")
        return self._store(key, value)

    def decimal(
        self,
        key: str,
        *,
        required: bool = False,
        min_value: Decimal | int | None = None,
        max_value: Decimal | int | None = None,
        positive: bool = False,
        label: str | None = None,
        default: Decimal | None = None,
    ) -> Decimal | None:
        if self._skip(key):
            return None
        raw = self._raw(key)
        if self._blank(raw):
            if required:
                self._missing(key, label)
                return None
            return self._store(key, default)
        try:
            value = Decimal(str(raw).replace(",", ".")).quantize(Decimal("0.01"))
        except InvalidOperation:
            self.error(key, f"Importe inválido en {label or key}")
            return None
        if not value.is_finite():
            self.error(key, f"Importe inválido en {label or key}")
            return None
        if positive and value <= 0:
            self.error(key, f"{label or key} debe ser mayor a 0")
        if min_value is not None and value < Decimal(min_value):
            self.error(key, f"{label or key} debe ser mayor o igual a {min_value}")
        if max_value is not None and value > Decimal(max_value):
            self.error(key, f"{label or key} debe ser menor o igual a {max_value}")
        return self._store(key, value)

    def integer(
        self,
        key: str,
        *,
        required: bool = False,
        min_value: int | None = None,
        max_value: int | None = None,
        label: str | None = None,
        default: int | None = None,
    ) -> int | None:
        if self._skip(key):
            return None
        raw = self._raw(key)
        if self._blank(raw):
            if required:
                self._missing(key, label)
                return None
            return self._store(key, default)
        try:
            value = int(str(raw))
        except ValueError:
            self.error(key, f"{label or key} debe ser un número entero")
            return None
        if min_value is not None and value < min_value:
            self.error(key, f"{label or key} debe ser mayor o igual a {min_value}")
        if max_value is not None and value > max_value:
            self.error(key, f"{label or key} debe ser menor o igual a {max_value}")
        return self._store(key, value)

    def foreign_id(self, key: str, *, required: bool = False, label: str | None = None) -> int | None:
        return self.integer(key, required=required, min_value=1, label=label)

    def boolean(self, key: str, *, default: bool = False) -> bool | None:
        if self._skip(key):
            return None
        raw = self.payload.get(key)
        if raw is None:
            return self._store(key, default)
        if isinstance(raw, bool):
            return self._store(key, raw)
        return self._store(key, str(raw).strip().lower() in TRUE_VALUES)

    def date(self, key: str, *, required: bool = False, label: str | None = None) -> date | None:
        if self._skip(key):
            return None
        raw = self._raw(key)
        if self._blank(raw):
            if required:
                self._missing(key, label)
                return None
            return self._store(key, None)
        if isinstance(raw, datetime):
            return self._store(key, raw.date())
        if isinstance(raw, date):
            return self._store(key, raw)
        try:
            return self._store(key, date.fromisoformat(str(raw)[:10]))
        except ValueError:
            self.error(key, f"Formato de fecha inválido para {label or key}")
            return None

    def datetime(self, key: str, *, required: bool = False, label: str | None = None) -> datetime | None:
        if self._skip(key):
            return None
        raw = self._raw(key)
        if self._blank(raw):
            if required:
                self._missing(key, label)
                return None
            return self._store(key, None)
        if isinstance(raw, datetime):
            return self._store(key, raw)
        try:
            value = datetime.fromisoformat(str(raw))
        except ValueError:
            self.error(key, f"Formato de fecha y hora inválido para {label or key}")
            return None
        return self._store(key, value.replace(tzinfo=None))

    def choice(
        self,
        key: str,
        enum_cls: type[Enum],
        *,
        required: bool = False,
        label: str | None = None,
        default: Enum | None = None,
    ) -> Enum | None:
        if self._skip(key):
            return None
        raw = self._raw(key)
        if self._blank(raw):
            if required and default is None:
                self._missing(key, label)
                return None
            return self._store(key, default)
        try:
            return self._store(key, enum_cls(str(raw).lower()))
        except ValueError:
            self.error(key, f"Valor inválido para {label or key}")
            return None

    def email(self, key: str, *, required: bool = False, label: str | None = None) -> str | None:
        value = self.string(key, required=required, max_length=255, label=label)
        if value and not EMAIL_PATTERN.match(value):
            self.error(key, "Correo electrónico inválido")
        if value:
            self.data[key] = value.lower()
        return value.lower() if value else value

    def rut(self, key: str, *, required: bool = False, label: str | None = None) -> str | None:
        if self._skip(key):
            return None
        raw = self._raw(key)
        message = validate_rut_field(raw, required=required)
        if message:
            self.error(key, message)
            return None
        if self._blank(raw):
            return self._store(key, None if not required else "")
        return self._store(key, format_rut(str(raw)))

    def plate(self, key: str, *, required: bool = True) -> str | None:
        value = self.string(key, required=required, label="placa")
        if value:
            value = value.upper()
            if not PLATE_PATTERN.match(value):
                self.error(key, "Formato de placa inválido (ej: AB-12 o ABCD-12)")
            self.data[key] = value
        return value

    def color(self, key: str, *, default: str = "#3B82F6") -> str | None:
        value = self.string(key, default=default)
        if value and not COLOR_PATTERN.match(value):
            self.error(key, "Color inválido, usa formato #RRGGBB")
        return value

    def validate(self) -> dict[str, Any]:
        if self.errors:
            raise ValidationError(field_errors=self.errors)
        return self.data


def apply_fields(obj: Any, data: Mapping[str, Any]) -> list[str]:
    """Assign parsed values onto ``obj``; returns the names that changed."""
    changed: list[str] = []
    for key, value in data.items():
        if getattr(obj, key) != value:
            setattr(obj, key, value)
            changed.append(key)
    return changed


def filter_value(filters: Mapping[str, Any] | None, key: str) -> str:
    value = (filters or {}).get(key)
    if value is None:
        return ""
    return str(value).strip()


def filter_date(filters: Mapping[str, Any] | None, key: str) -> date | None:
    raw = filter_value(filters, key)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        raise ValidationError(field_errors={key: "Formato de fecha inválido"}) from None


def filter_int(filters: Mapping[str, Any] | None, key: str) -> int | None:
    raw = filter_value(filters, key)
    if not raw:
        return None
    if not raw.isdigit():
        raise ValidationError(field_errors={key: "Identificador inválido"})
    return int(raw)


def filter_bool(filters: Mapping[str, Any] | None, key: str) -> bool | None:
    raw = filter_value(filters, key).lower()
    if not raw:
        return None
    return raw in TRUE_VALUES
