from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import joinedload

from app.core.activity import log_activity
from app.core.errors import NotFoundError, ValidationError, integrity_guard
from app.core.extensions import db
from app.core.forms import PayloadParser, apply_fields, filter_bool, filter_date, filter_int, filter_value
from app.core.models import (
    ActivityAction,
    AgendaEvent,
    AgendaEventStatus,
    AgendaEventType,
    Branch,
    Collaborator,
    ResourceBooking,
    ResourceType,
    Room,
    Service,
    Vehicle,
    VehicleStatus,
)
from app.core.permissions import authorize
from app.core.queries import apply_date_range, apply_equals, apply_search, branch_scoped_query, get_scoped, tenant_query
from app.core.tenancy import TenantScope, current_scope

END_BEFORE_START = "La fecha de fin debe ser posterior a la fecha de inicio"


@dataclass
class ResourceConflict:
    event_id: int
    titulo: str
    fecha_inicio: datetime
    fecha_fin: datetime


def _check_branch(branch_id: int | None, scope: TenantScope) -> None:
    branch = Branch.query.filter_by(id=branch_id, funeral_home_id=scope.funeral_home_id).first()
    if branch is None or not scope.can_access_branch(branch_id):
        raise ValidationError(field_errors={"branch_id": "Sucursal no válida"})


# Rooms

def _room_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.foreign_id("branch_id", required=True, label="sucursal")
    parser.string("nombre", required=True, min_length=2, max_length=100, label="nombre de la sala")
    parser.string("descripcion", max_length=500)
    parser.integer("capacidad", min_value=1, label="capacidad")
    parser.string("ubicacion", max_length=160)
    parser.color("color")
    parser.string("notas", max_length=1000)
    parser.boolean("estado_activo", default=True)
    return parser.validate()


def list_rooms(filters: Mapping[str, Any] | None = None) -> list[Room]:
    query = branch_scoped_query(Room).options(joinedload(Room.branch))
    branch_id = filter_int(filters, "branch_id")
    if branch_id:
        query = query.filter(Room.branch_id == branch_id)
    active = filter_bool(filters, "estado_activo")
    if active is not None:
        query = query.filter(Room.estado_activo.is_(active))
    min_capacity = filter_int(filters, "capacidad_minima")
    if min_capacity:
        query = query.filter(Room.capacidad >= min_capacity)
    return query.order_by(Room.nombre.asc()).all()


def get_room(room_id: int) -> Room:
    return get_scoped(Room, room_id, message="Sala no encontrada")


def create_room(payload: Mapping[str, Any]) -> Room:
    scope = authorize("agenda.write")
    data = _room_payload(payload)
    _check_branch(data["branch_id"], scope)
    room = Room(funeral_home_id=scope.funeral_home_id, **data)
    db.session.add(room)
    db.session.flush()
    log_activity("room", room.id, ActivityAction.CREATE, f"Sala {room.nombre}", room.branch_id)
    db.session.commit()
    return room


def update_room(room_id: int, payload: Mapping[str, Any]) -> Room:
    scope = authorize("agenda.write")
    room = get_room(room_id)
    data = _room_payload(payload, partial=True)
    if "branch_id" in data:
        _check_branch(data["branch_id"], scope)
    changed = apply_fields(room, data)
    if changed:
        log_activity("room", room.id, ActivityAction.UPDATE, ", ".join(changed), room.branch_id)
    db.session.commit()
    return room


def delete_room(room_id: int) -> None:
    authorize("agenda.write")
    room = get_room(room_id)
    booked = ResourceBooking.query.filter_by(tipo_recurso=ResourceType.SALA, recurso_id=room.id).count()
    if booked:
        raise ValidationError("No se puede eliminar la sala porque tiene reservas en la agenda")
    name, branch_id = room.nombre, room.branch_id
    db.session.delete(room)
    log_activity("room", room_id, ActivityAction.DELETE, f"Sala {name}", branch_id)
    db.session.commit()


# Conflicts

def find_resource_conflicts(
    tipo_recurso: ResourceType | str,
    recurso_id: int,
    fecha_inicio: datetime,
    fecha_fin: datetime,
    exclude_event_id: int | None = None,
) -> list[ResourceConflict]:
    """Non-cancelled events of the tenant already booking the resource in an overlapping window."""
    scope = current_scope()
    query = (
        ResourceBooking.query.join(AgendaEvent, ResourceBooking.event_id == AgendaEvent.id)
        .options(joinedload(ResourceBooking.event))
        .filter(AgendaEvent.funeral_home_id == scope.funeral_home_id)
        .filter(ResourceBooking.tipo_recurso == ResourceType(tipo_recurso))
        .filter(ResourceBooking.recurso_id == recurso_id)
        .filter(AgendaEvent.estado != AgendaEventStatus.CANCELADO)
    )
    if exclude_event_id:
        query = query.filter(ResourceBooking.event_id != exclude_event_id)

    conflicts: list[ResourceConflict] = []
    for booking in query.all():
        start = booking.hora_inicio_reserva or booking.event.fecha_inicio
        end = booking.hora_fin_reserva or booking.event.fecha_fin
        if fecha_inicio < end and fecha_fin > start:
            conflicts.append(ResourceConflict(booking.event_id, booking.event.titulo, start, end))
    return conflicts


def _ensure_no_conflict(
    tipo_recurso: ResourceType, recurso_id: int, start: datetime, end: datetime, exclude_event_id: int | None
) -> None:
    conflicts = find_resource_conflicts(tipo_recurso, recurso_id, start, end, exclude_event_id)
    if conflicts:
        raise ValidationError(
            f'Conflicto de recurso detectado: {tipo_recurso.value} ya está reservado para "{conflicts[0].titulo}"'
        )


def _check_resource(tipo_recurso: ResourceType, recurso_id: int, scope: TenantScope) -> None:
    model = {
        ResourceType.SALA: Room,
        ResourceType.VEHICULO: Vehicle,
        ResourceType.COLABORADOR: Collaborator,
    }.get(tipo_recurso)
    if model is None:
        return
    if model.query.filter_by(id=recurso_id, funeral_home_id=scope.funeral_home_id).first() is None:
        raise ValidationError(field_errors={"recurso_id": "Recurso no válido"})


# Events

def _event_payload(payload: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    parser = PayloadParser(payload, partial=partial)
    parser.foreign_id("branch_id", required=True, label="sucursal")
    parser.foreign_id("service_id", label="servicio")
    parser.string("titulo", required=True, min_length=2, max_length=200, label="título")
    parser.string("descripcion", max_length=1000)
    parser.choice("tipo_evento", AgendaEventType, required=True, label="tipo de evento")
    parser.datetime("fecha_inicio", required=True, label="fecha de inicio")
    parser.datetime("fecha_fin", required=True, label="fecha de fin")
    parser.boolean("todo_el_dia", default=False)
    parser.choice("estado", AgendaEventStatus, default=None if partial else AgendaEventStatus.PROGRAMADO)
    parser.string("notas", max_length=1000)
    data = parser.validate()
    if partial and data.get("estado") is None:
        data.pop("estado", None)
    return data


def _check_dates(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValidationError(field_errors={"fecha_fin": END_BEFORE_START})


def _check_service(service_id: int | None, scope: TenantScope) -> None:
    if service_id and Service.query.filter_by(id=service_id, funeral_home_id=scope.funeral_home_id).first() is None:
        raise ValidationError(field_errors={"service_id": "Servicio no válido"})


def list_events(filters: Mapping[str, Any] | None = None) -> list[AgendaEvent]:
    query = branch_scoped_query(AgendaEvent).options(joinedload(AgendaEvent.branch))
    branch_id = filter_int(filters, "branch_id")
    if branch_id:
        query = query.filter(AgendaEvent.branch_id == branch_id)
    service_id = filter_int(filters, "service_id")
    if service_id:
        query = query.filter(AgendaEvent.service_id == service_id)
    query = apply_equals(query, AgendaEvent.tipo_evento, filter_value(filters, "tipo_evento"))
    query = apply_equals(query, AgendaEvent.estado, filter_value(filters, "estado"))
    query = apply_date_range(
        query, AgendaEvent.fecha_inicio, filter_date(filters, "fecha_desde"), filter_date(filters, "fecha_hasta")
    )
    query = apply_search(query, filter_value(filters, "search"), AgendaEvent.titulo, AgendaEvent.descripcion)
    return query.order_by(AgendaEvent.fecha_inicio.asc(), AgendaEvent.id.asc()).all()


def get_event(event_id: int) -> AgendaEvent:
    return get_scoped(AgendaEvent, event_id, message="Evento no encontrado")


def create_event(
    payload: Mapping[str, Any], resources: Iterable[tuple[str, int]] | None = None
) -> AgendaEvent:
    scope = authorize("agenda.write")
    data = _event_payload(payload)
    _check_dates(data["fecha_inicio"], data["fecha_fin"])
    _check_branch(data["branch_id"], scope)
    _check_service(data.get("service_id"), scope)

    bookings: list[ResourceBooking] = []
    for tipo_raw, recurso_id in resources or []:
        try:
            tipo = ResourceType(tipo_raw)
        except ValueError:
            raise ValidationError(field_errors={"tipo_recurso": "Tipo de recurso inválido"}) from None
        _check_resource(tipo, recurso_id, scope)
        _ensure_no_conflict(tipo, recurso_id, data["fecha_inicio"], data["fecha_fin"], None)
        bookings.append(ResourceBooking(tipo_recurso=tipo, recurso_id=recurso_id))

    event = AgendaEvent(funeral_home_id=scope.funeral_home_id, created_by=scope.profile_id, **data)
    event.bookings.extend(bookings)
    with integrity_guard():
        db.session.add(event)
        db.session.flush()
        log_activity("agenda_event", event.id, ActivityAction.CREATE, f"Evento {event.titulo}", event.branch_id)
        db.session.commit()
    return event


def update_event(event_id: int, payload: Mapping[str, Any]) -> AgendaEvent:
    scope = authorize("agenda.write")
    event = get_event(event_id)
    data = _event_payload(payload, partial=True)
    start = data.get("fecha_inicio", event.fecha_inicio)
    end = data.get("fecha_fin", event.fecha_fin)
    _check_dates(start, end)
    if "branch_id" in data:
        _check_branch(data["branch_id"], scope)
    _check_service(data.get("service_id"), scope)
    if "fecha_inicio" in data or "fecha_fin" in data:
        for booking in event.bookings:
            if booking.hora_inicio_reserva is None and booking.hora_fin_reserva is None:
                _ensure_no_conflict(booking.tipo_recurso, booking.recurso_id, start, end, event.id)
    changed = apply_fields(event, data)
    if changed:
        log_activity("agenda_event", event.id, ActivityAction.UPDATE, ", ".join(changed), event.branch_id)
    db.session.commit()
    return event


def update_event_status(event_id: int, estado: str) -> AgendaEvent:
    authorize("agenda.write")
    event = get_event(event_id)
    try:
        event.estado = AgendaEventStatus((estado or "").strip().lower())
    except ValueError:
        raise ValidationError(field_errors={"estado": "Estado inválido"}) from None
    log_activity("agenda_event", event.id, ActivityAction.UPDATE, f"Estado {event.estado.value}", event.branch_id)
    db.session.commit()
    return event


def delete_event(event_id: int) -> None:
    authorize("agenda.write")
    event = get_event(event_id)
    title, branch_id = event.titulo, event.branch_id
    db.session.delete(event)
    log_activity("agenda_event", event_id, ActivityAction.DELETE, f"Evento {title}", branch_id)
    db.session.commit()


def add_resource_booking(event_id: int, payload: Mapping[str, Any]) -> ResourceBooking:
    scope = authorize("agenda.write")
    event = get_event(event_id)
    parser = PayloadParser(payload)
    tipo = parser.choice("tipo_recurso", ResourceType, required=True, label="tipo de recurso")
    recurso_id = parser.foreign_id("recurso_id", required=True, label="recurso")
    parser.datetime("hora_inicio_reserva")
    parser.datetime("hora_fin_reserva")
    parser.string("notas", max_length=500)
    data = parser.validate()

    start = data.get("hora_inicio_reserva") or event.fecha_inicio
    end = data.get("hora_fin_reserva") or event.fecha_fin
    if end <= start:
        raise ValidationError(
            field_errors={"hora_fin_reserva": "La fecha de fin de reserva debe ser posterior a la fecha de inicio"}
        )
    _check_resource(tipo, recurso_id, scope)
    conflicts = find_resource_conflicts(tipo, recurso_id, start, end, exclude_event_id=event.id)
    if conflicts:
        raise ValidationError(f'Conflicto: el recurso ya está reservado para "{conflicts[0].titulo}"')

    booking = ResourceBooking(event_id=event.id, **data)
    db.session.add(booking)
    log_activity("agenda_event", event.id, ActivityAction.UPDATE, f"Reserva {tipo.value} #{recurso_id}")
    db.session.commit()
    return booking


def remove_resource_booking(event_id: int, booking_id: int) -> None:
    authorize("agenda.write")
    event = get_event(event_id)
    booking = next((row for row in event.bookings if row.id == booking_id), None)
    if booking is None:
        raise NotFoundError("Reserva no encontrada")
    event.bookings.remove(booking)
    log_activity("agenda_event", event.id, ActivityAction.UPDATE, f"Reserva {booking_id} eliminada")
    db.session.commit()


def calendar_events(start: datetime, end: datetime, branch_id: int | None = None) -> list[AgendaEvent]:
    query = branch_scoped_query(AgendaEvent).filter(
        AgendaEvent.fecha_inicio < end, AgendaEvent.fecha_fin > start
    )
    if branch_id:
        query = query.filter(AgendaEvent.branch_id == branch_id)
    return query.order_by(AgendaEvent.fecha_inicio.asc()).all()


def available_rooms(branch_id: int, start: datetime, end: datetime) -> list[Room]:
    rooms = tenant_query(Room).filter(Room.branch_id == branch_id, Room.estado_activo.is_(True)).all()
    return [room for room in rooms if not find_resource_conflicts(ResourceType.SALA, room.id, start, end)]


def available_vehicles(start: datetime, end: datetime) -> list[Vehicle]:
    vehicles = tenant_query(Vehicle).filter(Vehicle.estado == VehicleStatus.DISPONIBLE).all()
    return [v for v in vehicles if not find_resource_conflicts(ResourceType.VEHICULO, v.id, start, end)]


def available_collaborators(start: datetime, end: datetime) -> list[Collaborator]:
    people = tenant_query(Collaborator).filter(Collaborator.estado_activo.is_(True)).all()
    return [c for c in people if not find_resource_conflicts(ResourceType.COLABORADOR, c.id, start, end)]


def resource_label(booking: ResourceBooking) -> str:
    model = {
        ResourceType.SALA: (Room, "nombre"),
        ResourceType.VEHICULO: (Vehicle, "placa"),
        ResourceType.COLABORADOR: (Collaborator, "nombre_completo"),
    }.get(booking.tipo_recurso)
    if model is None:
        return f"Equipamiento #{booking.recurso_id}"
    row = db.session.get(model[0], booking.recurso_id)
    return getattr(row, model[1]) if row is not None else f"#{booking.recurso_id}"
