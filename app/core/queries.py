"""Tenant-scoped query building shared by every list/get action."""
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import DateTime, func, or_

from app.core.errors import NotFoundError
from app.core.extensions import db
from app.core.tenancy import TenantScope, current_scope
from app.core.utils import end_of_day, start_of_day


def tenant_query(model, scope: TenantScope | None = None):
    scope = scope or current_scope()
    return model.query.filter(model.funeral_home_id == scope.funeral_home_id)


def restrict_branches(query, column, scope: TenantScope | None = None):
    scope = scope or current_scope()
    if scope.branch_ids:
        query = query.filter(column.in_(scope.branch_ids))
    return query


def branch_scoped_query(model, scope: TenantScope | None = None):
    scope = scope or current_scope()
    return restrict_branches(tenant_query(model, scope), model.branch_id, scope)


def apply_equals(query, column, value):
    if value is None or value == "":
        return query
    return query.filter(column == value)


def apply_search(query, text: str | None, *columns):
    term = (text or "").strip()
    if not term:
        return query
    pattern = f"%{term}%"
    return query.filter(or_(*[column.ilike(pattern) for column in columns]))


def apply_date_range(query, column, start: date | None, end: date | None):
    is_datetime = isinstance(column.type, DateTime)
    if start:
        bound = start_of_day(start) if is_datetime and not isinstance(start, datetime) else start
        query = query.filter(column >= bound)
    if end:
        bound = end_of_day(end) if is_datetime and not isinstance(end, datetime) else end
        query = query.filter(column <= bound)
    return query


def get_scoped(model, record_id: int | None, scope: TenantScope | None = None, message: str | None = None):
    scope = scope or current_scope()
    row = None
    if record_id is not None:
        row = tenant_query(model, scope).filter(model.id == record_id).first()
    if row is None:
        raise NotFoundError(message)
    if hasattr(model, "branch_id") and scope.branch_ids and row.branch_id is not None:
        if row.branch_id not in scope.branch_ids:
            raise NotFoundError(message)
    return row


def next_sequence_number(column, funeral_home_id: int, prefix: str, width: int = 4) -> str:
    """Next ``PREFIX-NNNN`` value after the highest one the tenant already holds.

    Gaps left by deleted rows are never reused.
    """
    model = column.class_
    last = (
        db.session.query(column)
        .filter(model.funeral_home_id == funeral_home_id)
        .filter(column.like(f"{prefix}%"))
        .order_by(func.length(column).desc(), column.desc())
        .first()
    )
    suffix = last[0][len(prefix):] if last else ""
    current = int(suffix) if suffix.isdigit() else 0
    return f"{prefix}{current + 1:0{width}d}"
