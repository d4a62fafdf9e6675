"""Dashboard and revenue aggregations.

Rows are fetched once per call under the caller's tenant and branch scope and
reduced in Python; nothing is cached between requests.
"""
from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import joinedload

from app.core.labels import label
from app.core.models import (
    ActivityLog,
    Expense,
    MortuaryQuotaStatus,
    Service,
    ServiceStatus,
    Transaction,
    TransactionStatus,
)
from app.core.queries import branch_scoped_query, tenant_query
from app.core.tenancy import current_scope
from app.core.utils import month_bounds, percent_change, shift_month
from app.operations.quotas import list_quotas

MONTH_ABBR = ("ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sep", "oct", "nov", "dic")
ACTIVE_STATES = (ServiceStatus.CONFIRMADO, ServiceStatus.EN_EJECUCION)
DONE_STATES = (ServiceStatus.FINALIZADO, ServiceStatus.CERRADO)
QUOTA_ALERT_STATES = {
    MortuaryQuotaStatus.NO_INICIADA,
    MortuaryQuotaStatus.EN_PREPARACION,
    MortuaryQuotaStatus.INGRESADA,
}
ENTITY_NAMES = {
    "service": "servicio",
    "transaction": "transacción",
    "expense": "egreso",
    "collaborator": "colaborador",
    "mortuary_quota": "cuota mortuoria",
    "agenda_event": "evento",
    "payroll_period": "periodo de nómina",
}
ACTION_VERBS = {"CREATE": "Se creó", "UPDATE": "Se actualizó", "DELETE": "Se eliminó"}
PRIORITY_ORDER = {"alta": 0, "media": 1, "baja": 2}
ZERO = Decimal("0")


def _day(value: date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


def _total(rows: Iterable[Any], attr: str = "monto") -> Decimal:
    return sum((Decimal(getattr(row, attr) or 0) for row in rows), ZERO)


def _between(value: date | None, start: date, end: date) -> bool:
    return value is not None and start <= value <= end


def _month_label(value: date, with_year: bool = False) -> str:
    text = MONTH_ABBR[value.month - 1]
    return f"{text} {value.year % 100:02d}" if with_year else text


def _paid(transactions: list[Transaction]) -> list[Transaction]:
    return [t for t in transactions if t.estado == TransactionStatus.PAGADO]


def _monthly_trend(
    transactions: list[Transaction], expenses: list[Expense], today: date, with_year: bool = False
) -> list[dict[str, Any]]:
    paid = _paid(transactions)
    trend = []
    for offset in range(5, -1, -1):
        start, end = month_bounds(shift_month(today, -offset))
        trend.append(
            {
                "mes": _month_label(start, with_year),
                "ingresos": _total(t for t in paid if _between(t.fecha_transaccion, start, end)),
                "egresos": _total(e for e in expenses if _between(e.fecha_egreso, start, end)),
            }
        )
    return trend


def _kpis(services: list[Service], transactions: list[Transaction], expenses: list[Expense], today: date) -> dict:
    month_start, month_end = month_bounds(today)
    prev_start, prev_end = month_bounds(shift_month(today, -1))
    paid = _paid(transactions)

    done = [s for s in services if s.estado in DONE_STATES]
    completed = sum(1 for s in done if _between(_day(s.updated_at), month_start, month_end))
    completed_prev = sum(1 for s in done if _between(_day(s.updated_at), prev_start, prev_end))
    revenue = _total(t for t in paid if _between(t.fecha_transaccion, month_start, month_end))
    revenue_prev = _total(t for t in paid if _between(t.fecha_transaccion, prev_start, prev_end))

    return {
        "serviciosActivos": sum(1 for s in services if s.estado in ACTIVE_STATES),
        "serviciosCompletados": completed,
        "ingresosMes": revenue,
        "egresosMes": _total(e for e in expenses if _between(e.fecha_egreso, month_start, month_end)),
        "cobrosPendientes": _total(t for t in transactions if t.estado == TransactionStatus.PENDIENTE),
        "ingresosVsMesAnterior": percent_change(revenue, revenue_prev),
        "serviciosVsMesAnterior": percent_change(completed, completed_prev),
    }


def _services_by_type(services: list[Service], today: date) -> list[dict[str, Any]]:
    since = shift_month(today, -3).replace(day=min(today.day, 28))
    counts = Counter(s.tipo_servicio.value for s in services if (_day(s.created_at) or today) >= since)
    return [{"tipo": tipo, "cantidad": count, "label": label(tipo)} for tipo, count in counts.items()]


def _recent_activity(limit: int = 10) -> list[dict[str, Any]]:
    scope = current_scope()
    query = tenant_query(ActivityLog).options(joinedload(ActivityLog.user))
    if scope.branch_ids:
        query = query.filter(or_(ActivityLog.branch_id.in_(scope.branch_ids), ActivityLog.branch_id.is_(None)))
    rows = query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
    items = []
    for row in rows:
        entity = ENTITY_NAMES.get(row.entity_type, row.entity_type)
        verb = ACTION_VERBS.get(row.action)
        items.append(
            {
                "id": row.id,
                "tipo": row.action,
                "descripcion": f"{verb} {entity}" if verb else f"{row.action} en {entity}",
                "detalles": row.detalles,
                "fecha": row.created_at,
                "usuario": row.user.nombre_completo if row.user else None,
                "entidad": row.entity_type,
                "entidadId": row.entity_id,
            }
        )
    return items


def _alerts(services: list[Service], transactions: list[Transaction], today: date) -> list[dict[str, Any]]:
    alerts: list[dict[str, Any]] = []
    overdue_limit = shift_month(today, -1).replace(day=min(today.day, 28))
    overdue = [
        t for t in transactions if t.estado == TransactionStatus.PENDIENTE and t.fecha_transaccion <= overdue_limit
    ]
    for trx in overdue[:5]:
        alerts.append(
            {
                "id": f"overdue-{trx.id}",
                "tipo": "pago_vencido",
                "titulo": "Pago vencido",
                "descripcion": f"Transacción {trx.numero_transaccion} - Servicio {trx.service.numero_servicio}",
                "fecha": trx.fecha_transaccion,
                "prioridad": "alta",
                "service_id": trx.service_id,
            }
        )

    pending_quotas = [q for q in list_quotas() if q.aplica and q.estado in QUOTA_ALERT_STATES]
    for quota in pending_quotas[:5]:
        alerts.append(
            {
                "id": f"quota-{quota.id}",
                "tipo": "cuota_pendiente",
                "titulo": "Cuota mortuoria pendiente",
                "descripcion": f"Servicio {quota.service.numero_servicio} - Estado: {label(quota.estado)}",
                "fecha": quota.fecha_solicitud or today,
                "prioridad": "media",
                "service_id": quota.service_id,
            }
        )

    stale_limit = today - timedelta(days=7)
    stale = [s for s in services if s.estado in ACTIVE_STATES and (_day(s.created_at) or today) <= stale_limit]
    for service in stale[:5]:
        alerts.append(
            {
                "id": f"unfinished-{service.id}",
                "tipo": "servicio_sin_finalizar",
                "titulo": "Servicio sin finalizar",
                "descripcion": f"{service.numero_servicio} - {service.nombre_fallecido}",
                "fecha": _day(service.created_at),
                "prioridad": "baja",
                "service_id": service.id,
            }
        )

    alerts.sort(key=lambda item: PRIORITY_ORDER[item["prioridad"]])
    return alerts[:10]


def dashboard_data(today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    services = branch_scoped_query(Service).all()
    transactions = branch_scoped_query(Transaction).options(joinedload(Transaction.service)).all()
    expenses = branch_scoped_query(Expense).all()
    return {
        "kpis": _kpis(services, transactions, expenses, today),
        "revenueTrend": _monthly_trend(transactions, expenses, today),
        "servicesByType": _services_by_type(services, today),
        "recentActivity": _recent_activity(),
        "alerts": _alerts(services, transactions, today),
    }


def revenue_stats(today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    services = branch_scoped_query(Service).all()
    transactions = branch_scoped_query(Transaction).all()
    expenses = branch_scoped_query(Expense).all()

    month_start = today.replace(day=1)
    last_month_start = shift_month(today, -1)
    year_start = today.replace(month=1, day=1)
    last_30 = today - timedelta(days=30)

    paid = _paid(transactions)
    total_revenue = _total(paid)
    revenue_month = _total(t for t in paid if t.fecha_transaccion >= month_start)
    revenue_year = _total(t for t in paid if t.fecha_transaccion >= year_start)
    expenses_month = _total(e for e in expenses if e.fecha_egreso >= month_start)
    expenses_year = _total(e for e in expenses if e.fecha_egreso >= year_start)

    paid_by_service: dict[int, Decimal] = {}
    for trx in paid:
        paid_by_service[trx.service_id] = paid_by_service.get(trx.service_id, ZERO) + Decimal(trx.monto)
    total_billed = _total(services, "total_final")
    outstanding = sum(
        (Decimal(s.total_final or 0) - paid_by_service.get(s.id, ZERO) for s in services),
        ZERO,
    )

    methods: dict[str, dict[str, Any]] = {}
    for trx in paid:
        entry = methods.setdefault(trx.metodo_pago.value, {"count": 0, "amount": ZERO})
        entry["count"] += 1
        entry["amount"] += Decimal(trx.monto)

    return {
        "revenue": {
            "total": total_revenue,
            "thisMonth": revenue_month,
            "lastMonth": _total(t for t in paid if last_month_start <= t.fecha_transaccion < month_start),
            "thisYear": revenue_year,
            "last30Days": _total(t for t in paid if t.fecha_transaccion >= last_30),
            "pending": _total(t for t in transactions if t.estado == TransactionStatus.PENDIENTE),
            "outstanding": outstanding,
        },
        "expenses": {"total": _total(expenses), "thisMonth": expenses_month, "thisYear": expenses_year},
        "profit": {"thisMonth": revenue_month - expenses_month, "thisYear": revenue_year - expenses_year},
        "paymentMethods": methods,
        "monthlyTrend": _monthly_trend(transactions, expenses, today, with_year=True),
        "services": {
            "total": len(services),
            "completed": sum(1 for s in services if s.estado in DONE_STATES),
            "pending": sum(1 for s in services if s.estado not in DONE_STATES),
            "averageValue": (total_billed / len(services)) if services else ZERO,
        },
        "metrics": {
            "averageTransactionValue": (total_revenue / len(paid)) if paid else ZERO,
            "collectionRate": (total_revenue / total_billed * 100) if total_billed > 0 else ZERO,
            "totalTransactions": len(paid),
        },
    }
