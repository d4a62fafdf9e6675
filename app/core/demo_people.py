from __future__ import annotations

import re

DEMO_FIRST_NAMES_CL: tuple[str, ...] = (
    "Juan",
    "Pedro",
    "Cristián",
    "Felipe",
    "Matías",
    "Ignacio",
    "Sebastián",
    "Gonzalo",
    "Claudio",
    "Mauricio",
    "Camila",
    "Valentina",
    "Francisca",
    "Constanza",
    "Javiera",
    "Catalina",
    "Fernanda",
    "Daniela",
    "Macarena",
    "Bárbara",
)

DEMO_LAST_NAMES_CL: tuple[str, ...] = (
    "González",
    "Muñoz",
    "Rojas",
    "Díaz",
    "Pérez",
    "Soto",
    "Contreras",
    "Silva",
    "Martínez",
    "Sepúlveda",
    "Morales",
    "Rodríguez",
    "López",
    "Araya",
    "Fuentes",
    "Hernández",
    "Torres",
    "Espinoza",
    "Flores",
    "Castillo",
)

GENERIC_NAME_TOKENS_BLOCKLIST: tuple[str, ...] = (
    "DEMO",
    "TEST",
    "PRUEBA",
    "USUARIO",
    "FALLECIDO",
    "COLABORADOR",
)

_GENERIC_NUMERIC_PATTERN = re.compile(r"\d{2,}")


def is_generic_demo_name(first_name: str, last_name: str) -> bool:
    full_name = f"{(first_name or '').strip()} {(last_name or '').strip()}".strip()
    full_name_upper = full_name.upper()
    if any(token in full_name_upper for token in GENERIC_NAME_TOKENS_BLOCKLIST):
        return True
    return bool(_GENERIC_NUMERIC_PATTERN.search(full_name))


def generate_demo_names(total: int, offset: int = 0) -> list[tuple[str, str]]:
    """Chilean style names with paternal and maternal surnames."""
    if total < 0:
        raise ValueError("total must be >= 0")

    first_len = len(DEMO_FIRST_NAMES_CL)
    last_len = len(DEMO_LAST_NAMES_CL)
    generated: list[tuple[str, str]] = []
    for idx in range(offset, offset + total):
        first_name = DEMO_FIRST_NAMES_CL[(idx * 7) % first_len]
        paternal = DEMO_LAST_NAMES_CL[idx % last_len]
        maternal = DEMO_LAST_NAMES_CL[(idx + 5) % last_len]
        last_name = f"{paternal} {maternal}"
        if is_generic_demo_name(first_name, last_name):
            raise ValueError(f"Generated generic demo name is not allowed: {first_name} {last_name}")
        generated.append((first_name, last_name))
    return generated
