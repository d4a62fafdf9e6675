from __future__ import annotations

from enum import Enum

LABELS: dict[str, str] = {
    # roles
    "admin": "Administrador",
    "ejecutivo": "Ejecutivo",
    "operaciones": "Operaciones",
    "caja": "Caja",
    "colaborador": "Colaborador",
    # service status / type
    "borrador": "Borrador",
    "confirmado": "Confirmado",
    "en_ejecucion": "En ejecución",
    "finalizado": "Finalizado",
    "cerrado": "Cerrado",
    "inhumacion": "Inhumación",
    "cremacion": "Cremación",
    "traslado_nacional": "Traslado nacional",
    "traslado_internacional": "Traslado internacional",
    "solo_velatorio": "Solo velatorio",
    "domicilio": "Domicilio",
    "hospital": "Hospital",
    "via_publica": "Vía pública",
    "otro": "Otro",
    # transactions
    "pendiente": "Pendiente",
    "pagado": "Pagado",
    "rechazado": "Rechazado",
    "reembolsado": "Reembolsado",
    "efectivo": "Efectivo",
    "transferencia": "Transferencia",
    "tarjeta": "Tarjeta",
    "cheque": "Cheque",
    "seguro": "Seguro",
    "cuota_mortuoria": "Cuota mortuoria",
    # expenses
    "con_factura": "Con factura",
    "pendiente_factura": "Pendiente de factura",
    "sin_factura": "Sin factura",
    "insumos": "Insumos",
    "servicios_externos": "Servicios externos",
    "combustible": "Combustible",
    "mantenimiento": "Mantenimiento",
    "servicios_publicos": "Servicios públicos",
    "arriendos": "Arriendos",
    "honorarios": "Honorarios",
    "impuestos": "Impuestos",
    "seguros": "Seguros",
    "otros": "Otros",
    # catalogs
    "empleado": "Empleado",
    "honorario": "Honorario",
    "ataud": "Ataúd",
    "urna": "Urna",
    "plan": "Plan",
    "extra": "Extra",
    "cementerio": "Cementerio",
    "crematorio": "Crematorio",
    "disponible": "Disponible",
    "en_mantenimiento": "En mantenimiento",
    # mortuary quotas
    "no_iniciada": "No iniciada",
    "en_preparacion": "En preparación",
    "ingresada": "Ingresada",
    "aprobada": "Aprobada",
    "rechazada": "Rechazada",
    "pagada": "Pagada",
    "afp": "AFP",
    "ips": "IPS",
    "pgu": "PGU",
    "otra": "Otra",
    "familia": "Familia",
    "funeraria": "Funeraria",
    # procedures / payroll
    "en_proceso": "En proceso",
    "completo": "Completo",
    "abierto": "Abierto",
    "procesado": "Procesado",
    "generado": "Generado",
    "enviado": "Enviado",
    # agenda
    "velatorio": "Velatorio",
    "ceremonia": "Ceremonia",
    "recogida": "Recogida",
    "reunion": "Reunión",
    "programado": "Programado",
    "en_progreso": "En progreso",
    "completado": "Completado",
    "cancelado": "Cancelado",
    "sala": "Sala",
    "vehiculo": "Vehículo",
    "equipamiento": "Equipamiento",
}


def label(value: object) -> str:
    if value is None:
        return ""
    key = value.value if isinstance(value, Enum) else str(value)
    return LABELS.get(key, key.replace("_", " ").capitalize())


def choices(enum_cls: type[Enum]) -> list[tuple[str, str]]:
    return [(member.value, label(member)) for member in enum_cls]
