from __future__ import annotations

from datetime import date
from typing import Any, Mapping

from flask import current_app
from sqlalchemy.orm import joinedload

from app.core.activity import log_activity
from app.core.errors import ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_date, filter_int, filter_value
from app.core.models import ActivityAction, PaymentMethod, Transaction, TransactionStatus
from app.core.permissions import authorize
from app.core.queries import apply_date_range, apply_equals, branch_scoped_query, get_scoped, next_sequence_number
from app.operations.services import get_service


def _next_transaction_number(funeral_home_id: int, year: int) -> str:
    return next_sequence_number(Transaction.numero_transaccion, funeral_home_id, f"TRX-{year}-")


def _transaction_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.date("fecha_transaccion")
    parser.decimal("monto", required=True, positive=True, label="monto")
    parser.string("moneda", max_length=3)
    parser.choice("metodo_pago", PaymentMethod, required=True, label="método de pago")
    parser.string("cuenta_destino", max_length=120)
    parser.choice("estado", TransactionStatus, default=None if partial else TransactionStatus.PENDIENTE)
    parser.string("observaciones", max_length=1000)
    data = parser.validate()
    if not partial:
        data["fecha_transaccion"] = data.get("fecha_transaccion") or date.today()
        data["moneda"] = (data.get("moneda") or current_app.config["DEFAULT_CURRENCY"]).upper()
    else:
        if "fecha_transaccion" in data and data["fecha_transaccion"] is None:
            data.pop("fecha_transaccion")
        if data.get("estado") is None:
            data.pop("estado", None)
        if "moneda" in data:
            data["moneda"] = (data["moneda"] or current_app.config["DEFAULT_CURRENCY"]).upper()
    return data


def list_transactions(filters: Mapping[str, Any] | None = None) -> list[Transaction]:
    query = branch_scoped_query(Transaction).options(joinedload(Transaction.service))
    service_id = filter_int(filters, "service_id")
    if service_id:
        query = query.filter(Transaction.service_id == service_id)
    query = apply_equals(query, Transaction.estado, filter_value(filters, "estado"))
    query = apply_equals(query, Transaction.metodo_pago, filter_value(filters, "metodo_pago"))
    query = apply_date_range(
        query, Transaction.fecha_transaccion, filter_date(filters, "date_from"), filter_date(filters, "date_to")
    )
    return query.order_by(Transaction.fecha_transaccion.desc(), Transaction.id.desc()).all()


def get_transaction(transaction_id: int) -> Transaction:
    return get_scoped(Transaction, transaction_id, message="Transacción no encontrada")


def create_transaction(payload: Mapping[str, Any]) -> Transaction:
    scope = authorize("finance.write")
    parser = PayloadParser(payload)
    parser.foreign_id("service_id", required=True, label="servicio")
    service_id = parser.validate()["service_id"]
    service = get_service(service_id)
    data = _transaction_payload(payload)

    transaction = Transaction(
        funeral_home_id=service.funeral_home_id,
        branch_id=service.branch_id,
        service_id=service.id,
        numero_transaccion=_next_transaction_number(scope.funeral_home_id, data["fecha_transaccion"].year),
        created_by=scope.profile_id,
        **data,
    )
    with integrity_guard(unique="Ya existe una transacción con este número"):
        db.session.add(transaction)
        db.session.flush()
        log_activity(
            "transaction",
            transaction.id,
            ActivityAction.CREATE,
            f"{transaction.numero_transaccion} para {service.numero_servicio}",
            transaction.branch_id,
        )
        db.session.commit()
    return transaction


def update_transaction(transaction_id: int, payload: Mapping[str, Any]) -> Transaction:
    authorize("finance.write")
    transaction = get_transaction(transaction_id)
    requested = str(payload.get("service_id") or "").strip()
    if requested and requested != str(transaction.service_id):
        raise ValidationError(field_errors={"service_id": "No se puede cambiar el servicio de una transacción"})
    changed = apply_fields(transaction, _transaction_payload(payload, partial=True))
    if changed:
        log_activity(
            "transaction", transaction.id, ActivityAction.UPDATE, ", ".join(changed), transaction.branch_id
        )
    db.session.commit()
    return transaction


def delete_transaction(transaction_id: int) -> None:
    authorize("finance.write")
    transaction = get_transaction(transaction_id)
    number, branch_id = transaction.numero_transaccion, transaction.branch_id
    db.session.delete(transaction)
    log_activity("transaction", transaction_id, ActivityAction.DELETE, number, branch_id)
    db.session.commit()
