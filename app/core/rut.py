"""Chilean RUT helpers (modulo 11 check digit)."""
from __future__ import annotations

import re

_CLEAN_PATTERN = re.compile(r"[^0-9kK]")


def clean_rut(value: str | None) -> str:
    return _CLEAN_PATTERN.sub("", value or "").upper()


def verification_digit(body: str) -> str:
    total = 0
    factor = 2
    for digit in reversed(body):
        total += int(digit) * factor
        factor = 2 if factor == 7 else factor + 1
    remainder = 11 - (total % 11)
    if remainder == 11:
        return "0"
    if remainder == 10:
        return "K"
    return str(remainder)


def is_valid_rut(value: str | None) -> bool:
    cleaned = clean_rut(value)
    if len(cleaned) < 2:
        return False
    body, dv = cleaned[:-1], cleaned[-1]
    if not body.isdigit():
        return False
    return verification_digit(body) == dv


def format_rut(value: str | None) -> str:
    cleaned = clean_rut(value)
    if len(cleaned) < 2:
        return cleaned
    body, dv = cleaned[:-1], cleaned[-1]
    groups: list[str] = []
    while body:
        groups.insert(0, body[-3:])
        body = body[:-3]
    return f"{'.'.join(groups)}-{dv}"


def mask_rut(value: str | None) -> str:
    formatted = format_rut(value)
    if len(formatted) <= 5:
        return formatted
    return "*" * (len(formatted) - 5) + formatted[-5:]


def validate_rut_field(value: str | None, required: bool = True) -> str | None:
    """Return an error message for the field, or ``None`` when it is acceptable."""
    raw = (value or "").strip()
    if not raw:
        return "El RUT es obligatorio" if required else None
    if len(clean_rut(raw)) < 8:
        return "El RUT es demasiado corto"
    if not is_valid_rut(raw):
        return "El RUT ingresado no es válido"
    return None
