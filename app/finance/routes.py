from __future__ import annotations

from flask import jsonify, render_template
from flask_login import login_required

from app.admin.catalogs import branch_options, supplier_options
from app.core.crud import Column, CrudResource, Field, register_crud
from app.core.errors import run_action
from app.core.labels import choices
from app.core.models import ExpenseCategory, ExpenseStatus, PaymentMethod, TransactionStatus
from app.core.permissions import require_capability, require_tenant
from app.finance import expenses, finance_bp, reports, transactions
from app.operations.services import services_for_select

register_crud(
    finance_bp,
    CrudResource(
        name="transactions",
        url="/transacciones",
        title="Caja",
        singular="Transacción",
        list_fn=transactions.list_transactions,
        get_fn=transactions.get_transaction,
        create_fn=transactions.create_transaction,
        update_fn=transactions.update_transaction,
        delete_fn=transactions.delete_transaction,
        read_capability="finance.read",
        write_capability="finance.write",
        columns=[
            Column("Número", "numero_transaccion", link=True),
            Column("Fecha", "fecha_transaccion", "date"),
            Column("Servicio", "service.numero_servicio"),
            Column("Método", "metodo_pago", "label"),
            Column("Monto", "monto", "money"),
            Column("Estado", "estado", "label"),
        ],
        fields=[
            Field("service_id", "Servicio", "select", required=True, options=services_for_select),
            Field("fecha_transaccion", "Fecha", "date"),
            Field("monto", "Monto", "number", required=True),
            Field("moneda", "Moneda", placeholder="CLP"),
            Field("metodo_pago", "Método de pago", "select", required=True, options=choices(PaymentMethod)),
            Field("cuenta_destino", "Cuenta de destino"),
            Field("estado", "Estado", "select", options=choices(TransactionStatus)),
            Field("observaciones", "Observaciones", "textarea"),
        ],
        filters=[
            Field("service_id", "Servicio", "select", options=services_for_select),
            Field("estado", "Estado", "select", options=choices(TransactionStatus)),
            Field("metodo_pago", "Método", "select", options=choices(PaymentMethod)),
            Field("date_from", "Desde", "date"),
            Field("date_to", "Hasta", "date"),
        ],
    ),
)

register_crud(
    finance_bp,
    CrudResource(
        name="expenses",
        url="/egresos",
        title="Egresos",
        singular="Egreso",
        list_fn=expenses.list_expenses,
        get_fn=expenses.get_expense,
        create_fn=expenses.create_expense,
        update_fn=expenses.update_expense,
        delete_fn=expenses.delete_expense,
        read_capability="finance.read",
        write_capability="finance.write",
        columns=[
            Column("Concepto", "concepto", link=True),
            Column("Fecha", "fecha_egreso", "date"),
            Column("Proveedor", "nombre_proveedor"),
            Column("Categoría", "categoria", "label"),
            Column("Monto", "monto", "money"),
            Column("Estado", "estado", "label"),
        ],
        fields=[
            Field("concepto", "Concepto", required=True),
            Field("monto", "Monto", "number", required=True),
            Field("fecha_egreso", "Fecha", "date"),
            Field("categoria", "Categoría", "select", options=choices(ExpenseCategory)),
            Field("estado", "Estado", "select", options=choices(ExpenseStatus)),
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("service_id", "Servicio", "select", options=services_for_select),
            Field("supplier_id", "Proveedor", "select", options=supplier_options),
            Field("nombre_proveedor", "Nombre del proveedor"),
            Field("numero_factura", "N° de factura"),
            Field("info_impuestos", "Impuestos"),
        ],
        filters=[
            Field("categoria", "Categoría", "select", options=choices(ExpenseCategory)),
            Field("estado", "Estado", "select", options=choices(ExpenseStatus)),
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("supplier_id", "Proveedor", "select", options=supplier_options),
            Field("fecha_desde", "Desde", "date"),
            Field("fecha_hasta", "Hasta", "date"),
            Field("monto_minimo", "Monto mínimo", "number"),
            Field("monto_maximo", "Monto máximo", "number"),
        ],
    ),
)


@finance_bp.get("/ventas")
@login_required
@require_tenant
@require_capability("reports.view")
def revenue_page():
    return render_template("finance/revenue.html", stats=reports.revenue_stats())


@finance_bp.get("/api/ventas")
@login_required
@require_tenant
@require_capability("reports.view")
def api_revenue():
    result = run_action(reports.revenue_stats)
    return jsonify(result.to_dict()), result.status_code


@finance_bp.get("/api/dashboard")
@login_required
@require_tenant
def api_dashboard():
    result = run_action(reports.dashboard_data)
    return jsonify(result.to_dict()), result.status_code
