"""Generic list/create/edit/delete screens built on top of service functions.

Each resource declares its columns, form fields and filters; the service
functions do the tenant scoping and validation. Views only translate
``ValueError`` into flashed messages, the same way hand-written routes do.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for
from flask_login import login_required

from app.core.errors import NotFoundError
from app.core.permissions import require_capability, require_tenant


@dataclass
class Column:
    label: str
    attr: str
    kind: str = "text"  # text|money|date|label|bool|rut
    link: bool = False


@dataclass
class Field:
    name: str
    label: str
    kind: str = "text"  # text|textarea|number|date|datetime|select|checkbox|email|color
    required: bool = False
    options: Callable[[], list[tuple[Any, str]]] | list[tuple[Any, str]] | None = None
    placeholder: str = ""

    def resolved_options(self) -> list[tuple[Any, str]]:
        if callable(self.options):
            return list(self.options())
        return list(self.options or [])


@dataclass
class CrudResource:
    name: str
    url: str
    title: str
    singular: str
    list_fn: Callable[[dict[str, str]], list[Any]]
    get_fn: Callable[[int], Any]
    columns: list[Column]
    fields: list[Field]
    create_fn: Callable[[dict[str, str]], Any] | None = None
    update_fn: Callable[[int, dict[str, str]], Any] | None = None
    delete_fn: Callable[[int], None] | None = None
    filters: list[Field] = field(default_factory=list)
    write_capability: str = "tenant.read"
    read_capability: str = "tenant.read"
    detail_template: str = "crud/detail.html"
    detail_context: Callable[[Any], dict[str, Any]] | None = None

    def endpoint(self, suffix: str) -> str:
        return f"{self.name}_{suffix}"


def form_values(obj: Any, fields: list[Field]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for f in fields:
        value = getattr(obj, f.name, None)
        if hasattr(value, "value"):
            value = value.value
        if f.kind == "datetime" and value is not None:
            value = value.strftime("%Y-%m-%dT%H:%M")
        elif f.kind == "date" and value is not None:
            value = value.isoformat()
        values[f.name] = "" if value is None else value
    return values


def form_payload(fields: list[Field]) -> dict[str, str]:
    payload = {k: v for k, v in request.form.items()}
    for f in fields:
        if f.kind == "checkbox" and f.name not in payload:
            payload[f.name] = ""
    return payload


def register_crud(bp: Blueprint, resource: CrudResource) -> None:
    read = require_capability(resource.read_capability)
    write = require_capability(resource.write_capability)

    def list_view():
        filters = {f.name: request.args.get(f.name, "").strip() for f in resource.filters}
        try:
            rows = resource.list_fn(filters)
        except ValueError as exc:
            flash(str(exc), "error")
            rows = []
        return render_template("crud/list.html", resource=resource, rows=rows, filters=filters)

    def detail_view(record_id: int):
        try:
            obj = resource.get_fn(record_id)
        except NotFoundError:
            abort(404)
        extra = resource.detail_context(obj) if resource.detail_context else {}
        return render_template(resource.detail_template, resource=resource, obj=obj, **extra)

    def new_view():
        return render_template("crud/form.html", resource=resource, values={}, obj=None)

    def create_view():
        payload = form_payload(resource.fields)
        try:
            obj = resource.create_fn(payload)
        except ValueError as exc:
            flash(str(exc), "error")
            return render_template("crud/form.html", resource=resource, values=payload, obj=None), 400
        flash(f"{resource.singular} creado correctamente", "success")
        return redirect(url_for(f"{bp.name}.{resource.endpoint('detail')}", record_id=obj.id))

    def edit_view(record_id: int):
        try:
            obj = resource.get_fn(record_id)
        except NotFoundError:
            abort(404)
        return render_template(
            "crud/form.html", resource=resource, values=form_values(obj, resource.fields), obj=obj
        )

    def update_view(record_id: int):
        payload = form_payload(resource.fields)
        try:
            resource.update_fn(record_id, payload)
        except NotFoundError:
            abort(404)
        except ValueError as exc:
            flash(str(exc), "error")
            return redirect(url_for(f"{bp.name}.{resource.endpoint('edit')}", record_id=record_id))
        flash(f"{resource.singular} actualizado", "success")
        return redirect(url_for(f"{bp.name}.{resource.endpoint('detail')}", record_id=record_id))

    def delete_view(record_id: int):
        try:
            resource.delete_fn(record_id)
        except NotFoundError:
            abort(404)
        except ValueError as exc:
            flash(str(exc), "error")
            return redirect(url_for(f"{bp.name}.{resource.endpoint('detail')}", record_id=record_id))
        flash(f"{resource.singular} eliminado", "success")
        return redirect(url_for(f"{bp.name}.{resource.endpoint('list')}"))

    def guard(fn, capability_guard):
        return login_required(require_tenant(capability_guard(fn)))

    bp.add_url_rule(resource.url, resource.endpoint("list"), guard(list_view, read), methods=["GET"])
    bp.add_url_rule(
        f"{resource.url}/<int:record_id>", resource.endpoint("detail"), guard(detail_view, read), methods=["GET"]
    )
    if resource.create_fn is not None:
        bp.add_url_rule(f"{resource.url}/nuevo", resource.endpoint("new"), guard(new_view, write), methods=["GET"])
        bp.add_url_rule(
            f"{resource.url}/nuevo", resource.endpoint("create"), guard(create_view, write), methods=["POST"]
        )
    if resource.update_fn is not None:
        bp.add_url_rule(
            f"{resource.url}/<int:record_id>/editar",
            resource.endpoint("edit"),
            guard(edit_view, write),
            methods=["GET"],
        )
        bp.add_url_rule(
            f"{resource.url}/<int:record_id>/editar",
            resource.endpoint("update"),
            guard(update_view, write),
            methods=["POST"],
        )
    if resource.delete_fn is not None:
        bp.add_url_rule(
            f"{resource.url}/<int:record_id>/eliminar",
            resource.endpoint("delete"),
            guard(delete_view, write),
            methods=["POST"],
        )
