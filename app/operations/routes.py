from __future__ import annotations

from flask import abort, flash, jsonify, redirect, request, url_for
from flask_login import login_required

from app.admin.catalogs import branch_options
from app.core.crud import Column, CrudResource, Field, register_crud
from app.core.errors import NotFoundError, run_action
from app.core.forms import PayloadParser, filter_date
from app.core.labels import choices, label
from app.core.models import (
    AgendaEventStatus,
    AgendaEventType,
    DeathPlaceType,
    MortuaryQuotaEntity,
    MortuaryQuotaPayer,
    MortuaryQuotaStatus,
    ProcedureStatus,
    ResourceType,
    ServiceItemType,
    ServiceStatus,
    ServiceType,
)
from app.core.permissions import require_capability, require_tenant
from app.finance.transactions import list_transactions
from app.operations import agenda, assignments, operations_bp, quotas, services
from app.payroll.services import list_collaborators


def _catalog_options(key: str, attr: str):
    def options():
        return [(row.id, getattr(row, attr)) for row in services.get_catalog_data()[key]]

    return options


def _collaborator_options():
    return [(c.id, c.nombre_completo) for c in list_collaborators({"estado_activo": "true"})]


def _service_context(service) -> dict:
    return {
        "summary": services.service_summary(service),
        "transactions": list_transactions({"service_id": str(service.id)}),
        "assignments": assignments.list_service_assignments(service.id),
        "events": agenda.list_events({"service_id": str(service.id)}),
        "item_types": choices(ServiceItemType),
        "procedure_states": choices(ProcedureStatus),
        "status_choices": choices(ServiceStatus),
        "quota_entities": choices(MortuaryQuotaEntity),
        "quota_payers": choices(MortuaryQuotaPayer),
        "quota_states": choices(MortuaryQuotaStatus),
        "collaborators": _collaborator_options(),
    }


register_crud(
    operations_bp,
    CrudResource(
        name="services",
        url="/servicios",
        title="Servicios",
        singular="Servicio",
        list_fn=services.list_services,
        get_fn=services.get_service,
        create_fn=services.create_service,
        update_fn=services.update_service,
        delete_fn=services.delete_service,
        write_capability="services.write",
        detail_template="operations/service_detail.html",
        detail_context=_service_context,
        columns=[
            Column("Número", "numero_servicio", link=True),
            Column("Fallecido", "nombre_fallecido"),
            Column("Tipo", "tipo_servicio", "label"),
            Column("Estado", "estado", "label"),
            Column("Total", "total_final", "money"),
            Column("Creado", "created_at", "date"),
        ],
        fields=[
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("tipo_servicio", "Tipo de servicio", "select", required=True, options=choices(ServiceType)),
            Field("nombre_fallecido", "Nombre del fallecido", required=True),
            Field("rut_fallecido", "RUT del fallecido"),
            Field("fecha_nacimiento_fallecido", "Fecha de nacimiento", "date"),
            Field("fecha_fallecimiento", "Fecha de fallecimiento", "date", required=True),
            Field("tipo_lugar_fallecimiento", "Lugar de fallecimiento", "select", options=choices(DeathPlaceType)),
            Field("lugar_fallecimiento", "Detalle del lugar"),
            Field("causa_fallecimiento", "Causa"),
            Field("nombre_responsable", "Responsable", required=True),
            Field("rut_responsable", "RUT del responsable", required=True),
            Field("telefono_responsable", "Teléfono", required=True),
            Field("email_responsable", "Correo", "email"),
            Field("direccion_responsable", "Dirección"),
            Field("parentesco_responsable", "Parentesco"),
            Field("plan_id", "Plan", "select", options=_catalog_options("plans", "nombre")),
            Field("coffin_id", "Ataúd", "select", options=_catalog_options("coffins", "nombre_comercial")),
            Field("urn_id", "Urna", "select", options=_catalog_options("urns", "nombre_comercial")),
            Field(
                "cemetery_crematorium_id",
                "Cementerio / crematorio",
                "select",
                options=_catalog_options("cemeteries", "nombre"),
            ),
            Field("vehiculo_principal_id", "Vehículo", "select", options=_catalog_options("vehicles", "placa")),
            Field("monto_descuento", "Descuento ($)", "number"),
            Field("porcentaje_descuento", "Descuento (%)", "number"),
            Field("total_final", "Total final", "number"),
            Field("fecha_recogida", "Recogida", "datetime"),
            Field("fecha_inicio_velatorio", "Inicio velatorio", "datetime"),
            Field("sala_velatorio", "Sala de velatorio"),
            Field("fecha_ceremonia_religiosa", "Ceremonia religiosa", "datetime"),
            Field("fecha_inhumacion_cremacion", "Inhumación / cremación", "datetime"),
            Field("notas_logistica", "Notas de logística", "textarea"),
            Field("notas_generales", "Notas generales", "textarea"),
        ],
        filters=[
            Field("search", "Buscar", placeholder="Fallecido, responsable o número"),
            Field("estado", "Estado", "select", options=choices(ServiceStatus)),
            Field("tipo_servicio", "Tipo", "select", options=choices(ServiceType)),
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("date_from", "Desde", "date"),
            Field("date_to", "Hasta", "date"),
        ],
    ),
)


def _back_to_service(service_id: int):
    return redirect(url_for("operations.services_detail", record_id=service_id))


def _service_action(service_id: int, action, message: str):
    try:
        action()
        flash(message, "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return _back_to_service(service_id)


@operations_bp.post("/servicios/<int:service_id>/estado")
@login_required
@require_tenant
@require_capability("services.write")
def service_status(service_id: int):
    estado = request.form.get("estado", "")
    return _service_action(
        service_id, lambda: services.update_service_status(service_id, estado), "Estado actualizado"
    )


@operations_bp.post("/servicios/<int:service_id>/items")
@login_required
@require_tenant
@require_capability("services.write")
def service_item_add(service_id: int):
    return _service_action(
        service_id, lambda: services.add_service_item(service_id, request.form), "Ítem agregado"
    )


@operations_bp.post("/servicios/<int:service_id>/items/<int:item_id>/eliminar")
@login_required
@require_tenant
@require_capability("services.write")
def service_item_delete(service_id: int, item_id: int):
    return _service_action(
        service_id, lambda: services.delete_service_item(service_id, item_id), "Ítem eliminado"
    )


@operations_bp.post("/servicios/<int:service_id>/tramites")
@login_required
@require_tenant
@require_capability("services.write")
def service_procedure_add(service_id: int):
    return _service_action(
        service_id, lambda: services.add_service_procedure(service_id, request.form), "Trámite agregado"
    )


@operations_bp.post("/servicios/<int:service_id>/tramites/<int:procedure_id>/estado")
@login_required
@require_tenant
@require_capability("services.write")
def service_procedure_status(service_id: int, procedure_id: int):
    estado = request.form.get("estado", "")
    return _service_action(
        service_id,
        lambda: services.update_procedure_status(service_id, procedure_id, estado),
        "Trámite actualizado",
    )


@operations_bp.post("/servicios/<int:service_id>/asignaciones")
@login_required
@require_tenant
@require_capability("services.write")
def service_assignment_add(service_id: int):
    return _service_action(
        service_id, lambda: assignments.create_assignment(service_id, request.form), "Colaborador asignado"
    )


@operations_bp.post("/asignaciones/<int:assignment_id>")
@login_required
@require_tenant
@require_capability("services.write")
def assignment_update(assignment_id: int):
    try:
        assignment = assignments.update_assignment(assignment_id, request.form)
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
        return redirect(request.referrer or url_for("operations.services_list"))
    flash("Asignación actualizada", "success")
    return _back_to_service(assignment.service_id)


@operations_bp.post("/asignaciones/<int:assignment_id>/eliminar")
@login_required
@require_tenant
@require_capability("services.write")
def assignment_delete(assignment_id: int):
    try:
        service_id = assignments.delete_assignment(assignment_id)
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
        return redirect(request.referrer or url_for("operations.services_list"))
    flash("Asignación eliminada", "success")
    return _back_to_service(service_id)


@operations_bp.post("/servicios/<int:service_id>/cuota-mortuoria")
@login_required
@require_tenant
@require_capability("services.write")
def service_quota(service_id: int):
    payload = {k: v for k, v in request.form.items()}
    payload.setdefault("aplica", "")
    return _service_action(
        service_id, lambda: quotas.upsert_service_quota(service_id, payload), "Cuota mortuoria guardada"
    )


@operations_bp.get("/api/servicios/<int:service_id>/saldo")
@login_required
@require_tenant
def api_service_balance(service_id: int):
    result = run_action(lambda: services.service_summary(services.get_service(service_id)))
    return jsonify(result.to_dict()), result.status_code


# Mortuary quotas

register_crud(
    operations_bp,
    CrudResource(
        name="quotas",
        url="/cuotas-mortuorias",
        title="Cuotas mortuorias",
        singular="Cuota mortuoria",
        list_fn=quotas.list_quotas,
        get_fn=quotas.get_quota,
        update_fn=quotas.update_quota,
        write_capability="services.write",
        detail_context=lambda quota: {
            "status_choices": choices(MortuaryQuotaStatus),
            "status_endpoint": "operations.quota_status",
            "stats": quotas.quota_stats(),
        },
        columns=[
            Column("Servicio", "service.numero_servicio", link=True),
            Column("Fallecido", "service.nombre_fallecido"),
            Column("Aplica", "aplica", "bool"),
            Column("Entidad", "entidad", "label"),
            Column("Monto", "monto_facturado", "money"),
            Column("Estado", "estado", "label"),
            Column("Solicitud", "fecha_solicitud", "date"),
        ],
        fields=[
            Field("aplica", "Aplica", "checkbox"),
            Field("entidad", "Entidad", "select", options=choices(MortuaryQuotaEntity)),
            Field("nombre_entidad", "Nombre de la entidad"),
            Field("monto_facturado", "Monto facturado", "number"),
            Field("pagador", "Pagador", "select", options=choices(MortuaryQuotaPayer)),
            Field("fecha_solicitud", "Fecha de solicitud", "date"),
            Field("fecha_resolucion", "Fecha de resolución", "date"),
            Field("fecha_pago", "Fecha de pago", "date"),
            Field("notas", "Notas", "textarea"),
        ],
        filters=[
            Field("search", "Buscar", placeholder="Fallecido, número o entidad"),
            Field("estado", "Estado", "select", options=choices(MortuaryQuotaStatus)),
            Field("entidad", "Entidad", "select", options=choices(MortuaryQuotaEntity)),
            Field("fecha_desde", "Desde", "date"),
            Field("fecha_hasta", "Hasta", "date"),
        ],
    ),
)


@operations_bp.post("/cuotas-mortuorias/<int:record_id>/estado")
@login_required
@require_tenant
@require_capability("services.write")
def quota_status(record_id: int):
    try:
        quotas.update_quota_status(
            record_id,
            request.form.get("estado", ""),
            fecha_resolucion=filter_date(request.form, "fecha_resolucion"),
            fecha_pago=filter_date(request.form, "fecha_pago"),
        )
        flash("Estado de la cuota actualizado", "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(url_for("operations.quotas_detail", record_id=record_id))


# Agenda

register_crud(
    operations_bp,
    CrudResource(
        name="rooms",
        url="/agenda/salas",
        title="Salas",
        singular="Sala",
        list_fn=agenda.list_rooms,
        get_fn=agenda.get_room,
        create_fn=agenda.create_room,
        update_fn=agenda.update_room,
        delete_fn=agenda.delete_room,
        write_capability="agenda.write",
        columns=[
            Column("Nombre", "nombre", link=True),
            Column("Sucursal", "branch.nombre"),
            Column("Capacidad", "capacidad"),
            Column("Ubicación", "ubicacion"),
            Column("Activa", "estado_activo", "bool"),
        ],
        fields=[
            Field("branch_id", "Sucursal", "select", required=True, options=branch_options),
            Field("nombre", "Nombre", required=True),
            Field("descripcion", "Descripción", "textarea"),
            Field("capacidad", "Capacidad", "number"),
            Field("ubicacion", "Ubicación"),
            Field("color", "Color", "color"),
            Field("notas", "Notas", "textarea"),
            Field("estado_activo", "Activa", "checkbox"),
        ],
        filters=[
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("capacidad_minima", "Capacidad mínima", "number"),
            Field("estado_activo", "Estado", "select", options=[("true", "Activas"), ("false", "Inactivas")]),
        ],
    ),
)


def _event_context(event) -> dict:
    return {
        "bookings": [(booking, agenda.resource_label(booking)) for booking in event.bookings],
        "status_choices": choices(AgendaEventStatus),
        "status_endpoint": "operations.event_status",
        "rooms": [(r.id, r.nombre) for r in agenda.list_rooms({"estado_activo": "true"})],
        "vehicles": [(v.id, v.placa) for v in agenda.available_vehicles(event.fecha_inicio, event.fecha_fin)],
        "collaborators": [
            (c.id, c.nombre_completo) for c in agenda.available_collaborators(event.fecha_inicio, event.fecha_fin)
        ],
    }


register_crud(
    operations_bp,
    CrudResource(
        name="events",
        url="/agenda/eventos",
        title="Agenda",
        singular="Evento",
        list_fn=agenda.list_events,
        get_fn=agenda.get_event,
        create_fn=agenda.create_event,
        update_fn=agenda.update_event,
        delete_fn=agenda.delete_event,
        write_capability="agenda.write",
        detail_template="operations/event_detail.html",
        detail_context=_event_context,
        columns=[
            Column("Título", "titulo", link=True),
            Column("Tipo", "tipo_evento", "label"),
            Column("Inicio", "fecha_inicio", "date"),
            Column("Fin", "fecha_fin", "date"),
            Column("Sucursal", "branch.nombre"),
            Column("Estado", "estado", "label"),
        ],
        fields=[
            Field("branch_id", "Sucursal", "select", required=True, options=branch_options),
            Field("service_id", "Servicio", "select", options=services.services_for_select),
            Field("titulo", "Título", required=True),
            Field("tipo_evento", "Tipo de evento", "select", required=True, options=choices(AgendaEventType)),
            Field("fecha_inicio", "Inicio", "datetime", required=True),
            Field("fecha_fin", "Fin", "datetime", required=True),
            Field("todo_el_dia", "Todo el día", "checkbox"),
            Field("descripcion", "Descripción", "textarea"),
            Field("notas", "Notas", "textarea"),
        ],
        filters=[
            Field("search", "Buscar", placeholder="Título"),
            Field("tipo_evento", "Tipo", "select", options=choices(AgendaEventType)),
            Field("estado", "Estado", "select", options=choices(AgendaEventStatus)),
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("fecha_desde", "Desde", "date"),
            Field("fecha_hasta", "Hasta", "date"),
        ],
    ),
)


def _back_to_event(event_id: int):
    return redirect(url_for("operations.events_detail", record_id=event_id))


@operations_bp.post("/agenda/eventos/<int:record_id>/estado")
@login_required
@require_tenant
@require_capability("agenda.write")
def event_status(record_id: int):
    try:
        agenda.update_event_status(record_id, request.form.get("estado", ""))
        flash("Estado del evento actualizado", "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return _back_to_event(record_id)


@operations_bp.post("/agenda/eventos/<int:event_id>/reservas")
@login_required
@require_tenant
@require_capability("agenda.write")
def event_booking_add(event_id: int):
    try:
        agenda.add_resource_booking(event_id, request.form)
        flash("Recurso reservado", "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return _back_to_event(event_id)


@operations_bp.post("/agenda/eventos/<int:event_id>/reservas/<int:booking_id>/eliminar")
@login_required
@require_tenant
@require_capability("agenda.write")
def event_booking_delete(event_id: int, booking_id: int):
    try:
        agenda.remove_resource_booking(event_id, booking_id)
        flash("Reserva eliminada", "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return _back_to_event(event_id)


def _window(args, start_key: str = "start", end_key: str = "end"):
    parser = PayloadParser(args)
    parser.datetime(start_key, required=True, label="inicio")
    parser.datetime(end_key, required=True, label="fin")
    parser.foreign_id("branch_id", label="sucursal")
    return parser.validate()


def _event_json(event) -> dict:
    return {
        "id": event.id,
        "title": event.titulo,
        "start": event.fecha_inicio.isoformat(),
        "end": event.fecha_fin.isoformat(),
        "allDay": event.todo_el_dia,
        "tipo": event.tipo_evento.value,
        "tipoLabel": label(event.tipo_evento),
        "estado": event.estado.value,
        "branch_id": event.branch_id,
        "service_id": event.service_id,
        "url": url_for("operations.events_detail", record_id=event.id),
    }


def _calendar(args) -> list[dict]:
    window = _window(args)
    rows = agenda.calendar_events(window["start"], window["end"], window.get("branch_id"))
    return [_event_json(row) for row in rows]


def _conflicts(args) -> list[dict]:
    parser = PayloadParser(args)
    tipo = parser.choice("tipo_recurso", ResourceType, required=True, label="tipo de recurso")
    recurso_id = parser.foreign_id("recurso_id", required=True, label="recurso")
    start = parser.datetime("fecha_inicio", required=True, label="fecha de inicio")
    end = parser.datetime("fecha_fin", required=True, label="fecha de fin")
    exclude = parser.foreign_id("exclude_event_id")
    parser.validate()
    return [
        {
            "event_id": row.event_id,
            "titulo": row.titulo,
            "fecha_inicio": row.fecha_inicio.isoformat(),
            "fecha_fin": row.fecha_fin.isoformat(),
        }
        for row in agenda.find_resource_conflicts(tipo, recurso_id, start, end, exclude_event_id=exclude)
    ]


def _availability(args) -> dict:
    window = _window(args)
    start, end = window["start"], window["end"]
    rooms = agenda.available_rooms(window["branch_id"], start, end) if window.get("branch_id") else []
    return {
        "rooms": [{"id": r.id, "nombre": r.nombre} for r in rooms],
        "vehicles": [{"id": v.id, "placa": v.placa} for v in agenda.available_vehicles(start, end)],
        "collaborators": [
            {"id": c.id, "nombre": c.nombre_completo} for c in agenda.available_collaborators(start, end)
        ],
    }


@operations_bp.get("/api/agenda/eventos")
@login_required
@require_tenant
def api_calendar():
    result = run_action(_calendar, request.args)
    return jsonify(result.to_dict()), result.status_code


@operations_bp.get("/api/agenda/conflictos")
@login_required
@require_tenant
def api_conflicts():
    result = run_action(_conflicts, request.args)
    return jsonify(result.to_dict()), result.status_code


@operations_bp.get("/api/agenda/disponibilidad")
@login_required
@require_tenant
def api_availability():
    result = run_action(_availability, request.args)
    return jsonify(result.to_dict()), result.status_code
