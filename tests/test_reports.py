from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app.core.models import Branch
from app.finance import reports
from app.finance.expenses import create_expense
from app.finance.transactions import create_transaction
from app.operations.quotas import upsert_service_quota
from app.operations.services import add_service_item, create_service, update_service_status

TODAY = date(2026, 10, 19)


@pytest.fixture
def books(as_profile, service_form):
    """One confirmed service in the main branch with payments in two months."""
    with as_profile():
        service = create_service(service_form)
        add_service_item(
            service.id, {"tipo_item": "ataud", "descripcion": "Ataúd", "cantidad": "1", "precio_unitario": "400000"}
        )
        add_service_item(
            service.id, {"tipo_item": "extra", "descripcion": "Flores", "cantidad": "2", "precio_unitario": "50000"}
        )
        update_service_status(service.id, "confirmado")
        for amount, method, status, day in (
            ("200000", "transferencia", "pagado", "2026-10-05"),
            ("100000", "efectivo", "pagado", "2026-09-10"),
            ("50000", "efectivo", "pendiente", "2026-10-06"),
        ):
            create_transaction(
                {
                    "service_id": str(service.id),
                    "monto": amount,
                    "metodo_pago": method,
                    "estado": status,
                    "fecha_transaccion": day,
                }
            )
        create_expense({"concepto": "Arreglos florales", "monto": "80000", "fecha_egreso": "2026-10-07"})
        return service.id


def test_revenue_stats_aggregate_paid_transactions(as_profile, books):
    with as_profile():
        stats = reports.revenue_stats(TODAY)

    revenue = stats["revenue"]
    assert revenue["total"] == Decimal("300000")
    assert revenue["thisMonth"] == Decimal("200000")
    assert revenue["lastMonth"] == Decimal("100000")
    assert revenue["thisYear"] == Decimal("300000")
    assert revenue["last30Days"] == Decimal("200000")
    assert revenue["pending"] == Decimal("50000")
    assert revenue["outstanding"] == Decimal("200000")

    assert stats["expenses"]["thisMonth"] == Decimal("80000")
    assert stats["profit"]["thisMonth"] == Decimal("120000")
    assert stats["paymentMethods"] == {
        "transferencia": {"count": 1, "amount": Decimal("200000")},
        "efectivo": {"count": 1, "amount": Decimal("100000")},
    }
    assert stats["services"] == {"total": 1, "completed": 0, "pending": 1, "averageValue": Decimal("500000")}
    assert stats["metrics"]["averageTransactionValue"] == Decimal("150000")
    assert stats["metrics"]["collectionRate"] == Decimal("60")
    assert stats["metrics"]["totalTransactions"] == 2

    trend = stats["monthlyTrend"]
    assert len(trend) == 6
    assert trend[-1] == {"mes": "oct 26", "ingresos": Decimal("200000"), "egresos": Decimal("80000")}
    assert trend[-2]["ingresos"] == Decimal("100000")


def test_collection_rate_is_zero_when_nothing_is_billed(as_profile, service_form):
    with as_profile():
        service = create_service(service_form)
        create_transaction(
            {
                "service_id": str(service.id),
                "monto": "90000",
                "metodo_pago": "efectivo",
                "estado": "pagado",
                "fecha_transaccion": "2026-10-02",
            }
        )
        stats = reports.revenue_stats(TODAY)

    assert stats["revenue"]["total"] == Decimal("90000")
    assert stats["services"]["averageValue"] == Decimal("0")
    assert stats["metrics"]["collectionRate"] == Decimal("0")


def test_revenue_is_limited_to_the_callers_branches(as_profile, books, service_form):
    norte = Branch.query.filter_by(nombre="Sucursal Norte").one()
    with as_profile():
        other = create_service({**service_form, "branch_id": str(norte.id)})
        create_transaction(
            {
                "service_id": str(other.id),
                "monto": "70000",
                "metodo_pago": "efectivo",
                "estado": "pagado",
                "fecha_transaccion": "2026-10-08",
            }
        )
        admin_total = reports.revenue_stats(TODAY)["revenue"]["total"]

    with as_profile("caja@funerariasol.cl"):
        caja_stats = reports.revenue_stats(TODAY)

    assert admin_total == Decimal("370000")
    assert caja_stats["revenue"]["total"] == Decimal("300000")
    assert caja_stats["services"]["total"] == 1


def test_dashboard_kpis_and_alerts(as_profile, books):
    with as_profile():
        upsert_service_quota(books, {"aplica": "on", "entidad": "afp", "pagador": "familia"})
        data = reports.dashboard_data(TODAY)

    kpis = data["kpis"]
    assert kpis["serviciosActivos"] == 1
    assert kpis["ingresosMes"] == Decimal("200000")
    assert kpis["egresosMes"] == Decimal("80000")
    assert kpis["cobrosPendientes"] == Decimal("50000")
    assert kpis["ingresosVsMesAnterior"] == 100

    assert len(data["revenueTrend"]) == 6
    assert data["revenueTrend"][-1]["mes"] == "oct"
    assert [alert["tipo"] for alert in data["alerts"]] == ["cuota_pendiente"]
    descriptions = [item["descripcion"] for item in data["recentActivity"]]
    assert descriptions[0] == "Se creó cuota mortuoria"
    assert "Se creó egreso" in descriptions
    assert len(descriptions) <= 10


def test_quota_without_claim_raises_no_alert(as_profile, books):
    with as_profile():
        upsert_service_quota(books, {"aplica": ""})
        alerts = reports.dashboard_data(TODAY)["alerts"]
    assert [alert for alert in alerts if alert["tipo"] == "cuota_pendiente"] == []


def test_old_pending_payment_is_flagged(as_profile, books):
    with as_profile():
        create_transaction(
            {
                "service_id": str(books),
                "monto": "10000",
                "metodo_pago": "efectivo",
                "fecha_transaccion": "2026-08-01",
            }
        )
        alerts = reports.dashboard_data(TODAY)["alerts"]
    assert [alert["tipo"] for alert in alerts] == ["pago_vencido"]
    assert alerts[0]["prioridad"] == "alta"


def test_dashboard_api_and_revenue_page(client, login_admin, books):
    login_admin()
    response = client.get("/api/dashboard")
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert set(body["data"]) == {"kpis", "revenueTrend", "servicesByType", "recentActivity", "alerts"}

    api = client.get("/api/ventas")
    assert api.status_code == 200
    assert Decimal(api.get_json()["data"]["revenue"]["total"]) == Decimal("300000")

    assert client.get("/ventas").status_code == 200
    assert client.get("/dashboard").status_code == 200
