from __future__ import annotations

from datetime import datetime

import pytest

from app.core.errors import ValidationError
from app.core.models import AgendaEvent, Branch, Collaborator, ResourceBooking, ResourceType, Room, Vehicle
from app.operations import agenda

START = datetime(2026, 11, 3, 10, 0)
END = datetime(2026, 11, 3, 14, 0)


def _event_payload(branch_id: int, titulo: str = "Velatorio familia Soto", **overrides) -> dict:
    payload = {
        "branch_id": str(branch_id),
        "titulo": titulo,
        "tipo_evento": "velatorio",
        "fecha_inicio": START.isoformat(),
        "fecha_fin": END.isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def matriz(app):
    return Branch.query.filter_by(nombre="Casa matriz").one()


@pytest.fixture
def room(app):
    return Room.query.filter_by(nombre="Sala Esperanza").one()


def test_event_with_room_blocks_overlapping_booking(as_profile, matriz, room):
    with as_profile():
        first = agenda.create_event(_event_payload(matriz.id), resources=[("sala", room.id)])
        assert [b.tipo_recurso for b in first.bookings] == [ResourceType.SALA]

        with pytest.raises(ValidationError) as exc:
            agenda.create_event(
                _event_payload(
                    matriz.id,
                    "Ceremonia familia Rojas",
                    fecha_inicio="2026-11-03T13:00",
                    fecha_fin="2026-11-03T16:00",
                ),
                resources=[("sala", room.id)],
            )
    assert exc.value.message == 'Conflicto de recurso detectado: sala ya está reservado para "Velatorio familia Soto"'
    assert AgendaEvent.query.count() == 1


def test_touching_windows_do_not_conflict(as_profile, matriz, room):
    with as_profile():
        agenda.create_event(_event_payload(matriz.id), resources=[("sala", room.id)])
        later = agenda.create_event(
            _event_payload(matriz.id, "Ceremonia", fecha_inicio="2026-11-03T14:00", fecha_fin="2026-11-03T15:00"),
            resources=[("sala", room.id)],
        )
        assert later.id is not None
        assert agenda.find_resource_conflicts(ResourceType.SALA, room.id, END, datetime(2026, 11, 3, 18, 0)) != []
        assert agenda.find_resource_conflicts("sala", room.id, datetime(2026, 11, 3, 8, 0), START) == []


def test_cancelled_events_release_resources(as_profile, matriz, room):
    with as_profile():
        event = agenda.create_event(_event_payload(matriz.id), resources=[("sala", room.id)])
        agenda.update_event_status(event.id, "cancelado")
        assert agenda.find_resource_conflicts(ResourceType.SALA, room.id, START, END) == []
        assert [r.id for r in agenda.available_rooms(matriz.id, START, END)] == [room.id]


def test_conflicts_can_exclude_the_event_itself(as_profile, matriz, room):
    with as_profile():
        event = agenda.create_event(_event_payload(matriz.id), resources=[("sala", room.id)])
        assert len(agenda.find_resource_conflicts(ResourceType.SALA, room.id, START, END)) == 1
        assert agenda.find_resource_conflicts(ResourceType.SALA, room.id, START, END, exclude_event_id=event.id) == []

        moved = agenda.update_event(event.id, {"fecha_fin": "2026-11-03T15:00"})
        assert moved.fecha_fin == datetime(2026, 11, 3, 15, 0)


def test_end_before_start_is_rejected(as_profile, matriz):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            agenda.create_event(_event_payload(matriz.id, fecha_fin="2026-11-03T09:00"))
    assert exc.value.field_errors == {"fecha_fin": agenda.END_BEFORE_START}


def test_unknown_resource_type_is_rejected(as_profile, matriz):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            agenda.create_event(_event_payload(matriz.id), resources=[("helicoptero", 1)])
    assert "tipo_recurso" in exc.value.field_errors


def test_added_booking_checks_conflicts(as_profile, matriz):
    vehicle = Vehicle.query.filter_by(placa="HXJK-21").one()
    with as_profile():
        first = agenda.create_event(_event_payload(matriz.id, "Traslado Soto", tipo_evento="recogida"))
        second = agenda.create_event(_event_payload(matriz.id, "Traslado Rojas", tipo_evento="recogida"))
        booking = agenda.add_resource_booking(first.id, {"tipo_recurso": "vehiculo", "recurso_id": str(vehicle.id)})
        assert booking.event_id == first.id

        with pytest.raises(ValidationError) as exc:
            agenda.add_resource_booking(second.id, {"tipo_recurso": "vehiculo", "recurso_id": str(vehicle.id)})
        assert exc.value.message == 'Conflicto: el recurso ya está reservado para "Traslado Soto"'

        assert agenda.available_vehicles(START, END) == []
        agenda.remove_resource_booking(first.id, booking.id)
        assert [v.id for v in agenda.available_vehicles(START, END)] == [vehicle.id]


def test_room_with_bookings_cannot_be_deleted(as_profile, matriz, room):
    with as_profile():
        agenda.create_event(_event_payload(matriz.id), resources=[("sala", room.id)])
        with pytest.raises(ValidationError) as exc:
            agenda.delete_room(room.id)
    assert exc.value.message == "No se puede eliminar la sala porque tiene reservas en la agenda"
    assert Room.query.count() == 1


def test_room_capacity_and_color_are_validated(as_profile, matriz):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            agenda.create_room({"branch_id": str(matriz.id), "nombre": "Sala Paz", "capacidad": "0", "color": "azul"})
        assert set(exc.value.field_errors) == {"capacidad", "color"}

        created = agenda.create_room({"branch_id": str(matriz.id), "nombre": "Sala Paz", "capacidad": "40"})
        assert created.color == "#3B82F6"
        agenda.delete_room(created.id)
    assert Room.query.filter_by(nombre="Sala Paz").count() == 0


def test_calendar_api_returns_events_in_window(client, login_admin, as_profile, matriz):
    with as_profile():
        agenda.create_event(_event_payload(matriz.id))
        agenda.create_event(
            _event_payload(matriz.id, "Otro día", fecha_inicio="2026-12-01T10:00", fecha_fin="2026-12-01T11:00")
        )

    login_admin()
    response = client.get("/api/agenda/eventos?start=2026-11-01T00:00&end=2026-11-30T23:59")
    assert response.status_code == 200
    events = response.get_json()["data"]
    assert [e["title"] for e in events] == ["Velatorio familia Soto"]
    assert events[0]["tipo"] == "velatorio"
    assert events[0]["start"] == START.isoformat()


def test_calendar_api_requires_window(client, login_admin):
    login_admin()
    response = client.get("/api/agenda/eventos")
    assert response.status_code == 400
    assert set(response.get_json()["error"]["fieldErrors"]) == {"start", "end"}


def test_conflict_and_availability_api(client, login_admin, as_profile, matriz, room):
    with as_profile():
        event = agenda.create_event(_event_payload(matriz.id), resources=[("sala", room.id)])
        event_id = event.id
    active_people = Collaborator.query.filter_by(estado_activo=True).count()

    login_admin()
    conflicts = client.get(
        "/api/agenda/conflictos",
        query_string={
            "tipo_recurso": "sala",
            "recurso_id": room.id,
            "fecha_inicio": "2026-11-03T12:00",
            "fecha_fin": "2026-11-03T13:00",
        },
    ).get_json()["data"]
    assert [c["event_id"] for c in conflicts] == [event_id]

    excluded = client.get(
        "/api/agenda/conflictos",
        query_string={
            "tipo_recurso": "sala",
            "recurso_id": room.id,
            "fecha_inicio": "2026-11-03T12:00",
            "fecha_fin": "2026-11-03T13:00",
            "exclude_event_id": event_id,
        },
    ).get_json()["data"]
    assert excluded == []

    availability = client.get(
        "/api/agenda/disponibilidad",
        query_string={"start": "2026-11-03T11:00", "end": "2026-11-03T12:00", "branch_id": matriz.id},
    ).get_json()["data"]
    assert availability["rooms"] == []
    assert [v["placa"] for v in availability["vehicles"]] == ["HXJK-21"]
    assert len(availability["collaborators"]) == active_people


def test_event_detail_lists_bookings(client, login_admin, as_profile, matriz, room):
    with as_profile():
        event_id = agenda.create_event(_event_payload(matriz.id), resources=[("sala", room.id)]).id

    login_admin()
    response = client.get(f"/agenda/eventos/{event_id}")
    assert response.status_code == 200
    assert "Sala Esperanza".encode() in response.data
    assert ResourceBooking.query.filter_by(event_id=event_id).count() == 1
