from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.orm import joinedload

from app.core.activity import log_activity
from app.core.errors import ValidationError
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_date, filter_int, filter_value
from app.core.models import ActivityAction, Branch, Expense, ExpenseCategory, ExpenseStatus, Service, Supplier
from app.core.permissions import authorize
from app.core.queries import apply_date_range, apply_equals, branch_scoped_query, get_scoped
from app.core.tenancy import TenantScope

NO_BRANCH = "No se pudo determinar la sucursal"


def _expense_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.foreign_id("branch_id", label="sucursal")
    parser.foreign_id("service_id", label="servicio")
    parser.foreign_id("supplier_id", label="proveedor")
    parser.date("fecha_egreso")
    parser.string("nombre_proveedor", max_length=160)
    parser.string("concepto", required=True, min_length=3, max_length=255, label="concepto")
    parser.decimal("monto", required=True, positive=True, label="monto")
    parser.choice("categoria", ExpenseCategory, default=None if partial else ExpenseCategory.OTROS)
    parser.string("info_impuestos", max_length=255)
    parser.string("numero_factura", max_length=60)
    parser.choice("estado", ExpenseStatus, default=None if partial else ExpenseStatus.PENDIENTE_FACTURA)
    data = parser.validate()
    if partial:
        for key in ("estado", "categoria", "fecha_egreso"):
            if key in data and data[key] is None:
                data.pop(key)
    else:
        data["fecha_egreso"] = data.get("fecha_egreso") or date.today()
    return data


def _check_links(data: Mapping[str, Any], scope: TenantScope) -> None:
    errors: dict[str, str] = {}
    service_id = data.get("service_id")
    if service_id and Service.query.filter_by(id=service_id, funeral_home_id=scope.funeral_home_id).first() is None:
        errors["service_id"] = "Servicio no válido"
    supplier_id = data.get("supplier_id")
    if supplier_id and Supplier.query.filter_by(id=supplier_id, funeral_home_id=scope.funeral_home_id).first() is None:
        errors["supplier_id"] = "Proveedor no válido"
    branch_id = data.get("branch_id")
    if branch_id:
        branch = Branch.query.filter_by(id=branch_id, funeral_home_id=scope.funeral_home_id).first()
        if branch is None or not scope.can_access_branch(branch_id):
            errors["branch_id"] = "Sucursal no válida"
    if errors:
        raise ValidationError(field_errors=errors)


def list_expenses(filters: Mapping[str, Any] | None = None) -> list[Expense]:
    query = branch_scoped_query(Expense).options(joinedload(Expense.service), joinedload(Expense.supplier))
    for key, column in (
        ("branch_id", Expense.branch_id),
        ("service_id", Expense.service_id),
        ("supplier_id", Expense.supplier_id),
    ):
        value = filter_int(filters, key)
        if value:
            query = query.filter(column == value)
    query = apply_equals(query, Expense.estado, filter_value(filters, "estado"))
    query = apply_equals(query, Expense.categoria, filter_value(filters, "categoria"))
    query = apply_date_range(
        query, Expense.fecha_egreso, filter_date(filters, "fecha_desde"), filter_date(filters, "fecha_hasta")
    )
    parser = PayloadParser(
        {"monto_minimo": filter_value(filters, "monto_minimo"), "monto_maximo": filter_value(filters, "monto_maximo")}
    )
    parser.decimal("monto_minimo", min_value=0, label="monto mínimo")
    parser.decimal("monto_maximo", min_value=0, label="monto máximo")
    bounds = parser.validate()
    if bounds["monto_minimo"] is not None:
        query = query.filter(Expense.monto >= bounds["monto_minimo"])
    if bounds["monto_maximo"] is not None:
        query = query.filter(Expense.monto <= bounds["monto_maximo"])
    return query.order_by(Expense.fecha_egreso.desc(), Expense.id.desc()).all()


def get_expense(expense_id: int) -> Expense:
    return get_scoped(Expense, expense_id, message="Egreso no encontrado")


def create_expense(payload: Mapping[str, Any]) -> Expense:
    scope = authorize("finance.write")
    data = _expense_payload(payload)
    _check_links(data, scope)
    if not data.get("branch_id"):
        data["branch_id"] = scope.selected_branch_id or (scope.branch_ids[0] if scope.branch_ids else None)
    if not data.get("branch_id"):
        raise ValidationError(NO_BRANCH)
    if data.get("supplier_id") and not data.get("nombre_proveedor"):
        data["nombre_proveedor"] = db.session.get(Supplier, data["supplier_id"]).nombre

    expense = Expense(funeral_home_id=scope.funeral_home_id, created_by=scope.profile_id, **data)
    db.session.add(expense)
    db.session.flush()
    log_activity(
        "expense",
        expense.id,
        ActivityAction.CREATE,
        f"{expense.concepto} ({Decimal(expense.monto):.0f})",
        expense.branch_id,
    )
    db.session.commit()
    return expense


def update_expense(expense_id: int, payload: Mapping[str, Any]) -> Expense:
    scope = authorize("finance.write")
    expense = get_expense(expense_id)
    data = _expense_payload(payload, partial=True)
    _check_links(data, scope)
    if "branch_id" in data and data["branch_id"] is None:
        data.pop("branch_id")
    changed = apply_fields(expense, data)
    if changed:
        log_activity("expense", expense.id, ActivityAction.UPDATE, ", ".join(changed), expense.branch_id)
    db.session.commit()
    return expense


def delete_expense(expense_id: int) -> None:
    authorize("finance.write")
    expense = get_expense(expense_id)
    concept, branch_id = expense.concepto, expense.branch_id
    db.session.delete(expense)
    log_activity("expense", expense_id, ActivityAction.DELETE, concept, branch_id)
    db.session.commit()
