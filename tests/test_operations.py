from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app.core.errors import NotFoundError, ValidationError
from app.core.extensions import db
from app.core.models import (
    ActivityLog,
    Branch,
    Collaborator,
    MortuaryQuotaStatus,
    ProcedureStatus,
    Service,
    ServiceStatus,
    ServiceType,
    Transaction,
)
from app.finance.expenses import create_expense, list_expenses
from app.finance.transactions import create_transaction, delete_transaction, list_transactions, update_transaction
from app.operations import assignments, quotas
from app.operations.services import (
    add_service_item,
    add_service_procedure,
    create_service,
    delete_service,
    delete_service_item,
    get_service,
    list_services,
    service_summary,
    update_procedure_status,
    update_service,
    update_service_status,
)
from app.payroll.services import deactivate_collaborator


def _service_with_items(service_form) -> Service:
    service = create_service(service_form)
    add_service_item(
        service.id,
        {"tipo_item": "ataud", "descripcion": "Ataúd Roble Clásico", "cantidad": "1", "precio_unitario": "400000"},
    )
    add_service_item(
        service.id,
        {"tipo_item": "extra", "descripcion": "Arreglo floral", "cantidad": "2", "precio_unitario": "50000"},
    )
    return service


def test_create_service_through_form(client, login_admin, service_form):
    login_admin()
    response = client.post("/servicios/nuevo", data=service_form)
    assert response.status_code == 302

    service = Service.query.one()
    assert service.numero_servicio == f"SRV-{date.today().year}-0001"
    assert service.estado == ServiceStatus.BORRADOR
    assert service.branch_id == Branch.query.filter_by(nombre="Casa matriz").one().id
    assert service.rut_fallecido == "9.876.543-3"
    assert service.total_final == Decimal("0")

    detail = client.get(f"/servicios/{service.id}")
    assert detail.status_code == 200
    assert service.numero_servicio.encode() in detail.data


def test_service_numbers_are_sequential_per_tenant(as_profile, second_tenant, service_form):
    with as_profile():
        first = create_service(service_form)
        second = create_service(service_form)
    year = date.today().year
    assert first.numero_servicio == f"SRV-{year}-0001"
    assert second.numero_servicio == f"SRV-{year}-0002"


def test_numbers_are_not_reused_after_deletion(as_profile, service_form):
    year = date.today().year
    with as_profile():
        first = create_service(service_form)
        create_service(service_form)
        delete_service(first.id)
        third = create_service(service_form)
        assert third.numero_servicio == f"SRV-{year}-0003"

        payment = {"service_id": str(third.id), "monto": "1000", "metodo_pago": "efectivo"}
        first_trx = create_transaction(payment)
        create_transaction(payment)
        delete_transaction(first_trx.id)
        third_trx = create_transaction(payment)
        assert third_trx.numero_transaccion == f"TRX-{year}-0003"


def test_numbers_keep_growing_past_four_digits(as_profile, service_form):
    year = date.today().year
    matriz = Branch.query.filter_by(nombre="Casa matriz").one()
    db.session.add(
        Service(
            funeral_home_id=matriz.funeral_home_id,
            branch_id=matriz.id,
            numero_servicio=f"SRV-{year}-9999",
            tipo_servicio=ServiceType.INHUMACION,
            nombre_fallecido="Pedro Lagos",
            fecha_fallecimiento=date(2026, 9, 1),
            nombre_responsable="Rosa Lagos",
            rut_responsable="12.345.678-5",
            telefono_responsable="+56911112222",
        )
    )
    db.session.commit()
    with as_profile():
        assert create_service(service_form).numero_servicio == f"SRV-{year}-10000"
        assert create_service(service_form).numero_servicio == f"SRV-{year}-10001"


def test_date_range_filters_include_both_bounds(as_profile, service_form):
    days = ("2026-11-01", "2026-11-30", "2026-12-01")
    with as_profile():
        services = [
            create_service({**service_form, "fecha_inhumacion_cremacion": f"{day}T{hour}"})
            for day, hour in zip(days, ("00:00", "23:30", "00:00"))
        ]
        for day in days:
            create_transaction(
                {
                    "service_id": str(services[0].id),
                    "monto": "1000",
                    "metodo_pago": "efectivo",
                    "fecha_transaccion": day,
                }
            )
            create_expense({"concepto": f"Combustible {day}", "monto": "5000", "fecha_egreso": day})

        found_services = list_services({"date_from": "2026-11-01", "date_to": "2026-11-30"})
        found_transactions = list_transactions({"date_from": "2026-11-01", "date_to": "2026-11-30"})
        found_expenses = list_expenses({"fecha_desde": "2026-11-01", "fecha_hasta": "2026-11-30"})

    assert {s.id for s in found_services} == {services[0].id, services[1].id}
    assert sorted(t.fecha_transaccion for t in found_transactions) == [date(2026, 11, 1), date(2026, 11, 30)]
    assert sorted(e.fecha_egreso for e in found_expenses) == [date(2026, 11, 1), date(2026, 11, 30)]


def test_service_validation_reports_fields(as_profile, service_form):
    payload = {**service_form, "nombre_fallecido": "", "rut_responsable": "12.345.678-9"}
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            create_service(payload)
    assert exc.value.field_errors["nombre_fallecido"] == "El campo nombre del fallecido es obligatorio"
    assert exc.value.field_errors["rut_responsable"] == "El RUT ingresado no es válido"


def test_birth_after_death_is_rejected(as_profile, service_form):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            create_service({**service_form, "fecha_nacimiento_fallecido": "2026-10-02"})
    assert "fecha_nacimiento_fallecido" in exc.value.field_errors


def test_items_recalculate_totals(as_profile, service_form):
    with as_profile():
        service = _service_with_items(service_form)
        assert service.total_items == Decimal("500000")
        assert service.total_final == Decimal("500000")

        item = add_service_item(
            service.id,
            {
                "tipo_item": "extra",
                "descripcion": "Traslado",
                "cantidad": "1",
                "precio_unitario": "100000",
                "tasa_impuesto": "19",
            },
        )
        assert item.monto_total == Decimal("119000")
        assert service.total_final == Decimal("619000")

        delete_service_item(service.id, item.id)
        assert service.total_final == Decimal("500000")

        with pytest.raises(NotFoundError):
            delete_service_item(service.id, 99999)


def test_discounts_apply_percentage_then_amount(as_profile, service_form):
    with as_profile():
        service = _service_with_items(service_form)
        update_service(service.id, {"porcentaje_descuento": "10"})
        assert service.total_final == Decimal("450000")

        update_service(service.id, {"monto_descuento": "50000"})
        assert service.total_final == Decimal("400000")

        update_service(service.id, {"monto_descuento": "900000"})
        assert service.total_final == Decimal("0")

        with pytest.raises(ValidationError) as exc:
            update_service(service.id, {"porcentaje_descuento": "120"})
    assert "porcentaje_descuento" in exc.value.field_errors


def test_explicit_total_is_kept_without_items(as_profile, service_form):
    with as_profile():
        service = create_service({**service_form, "total_final": "750000"})
        assert service.total_final == Decimal("750000")
        update_service(service.id, {"porcentaje_descuento": "10"})
        assert service.total_final == Decimal("750000")


def test_balance_counts_only_paid_transactions(client, login_admin, as_profile, service_form):
    with as_profile():
        service = _service_with_items(service_form)
        paid = create_transaction(
            {"service_id": str(service.id), "monto": "200000", "metodo_pago": "transferencia", "estado": "pagado"}
        )
        create_transaction({"service_id": str(service.id), "monto": "50000", "metodo_pago": "efectivo"})
        summary = service_summary(service)
        service_id = service.id

    year = date.today().year
    assert paid.numero_transaccion == f"TRX-{year}-0001"
    assert Decimal(summary["total_final"]) == Decimal("500000")
    assert Decimal(summary["pagado"]) == Decimal("200000")
    assert Decimal(summary["saldo"]) == Decimal("300000")

    login_admin()
    response = client.get(f"/api/servicios/{service_id}/saldo")
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert Decimal(body["data"]["saldo"]) == Decimal("300000")


def test_transaction_rules(as_profile, service_form):
    with as_profile():
        service = create_service(service_form)
        other = create_service(service_form)
        with pytest.raises(ValidationError) as exc:
            create_transaction({"service_id": str(service.id), "monto": "0", "metodo_pago": "efectivo"})
        assert exc.value.field_errors["monto"] == "monto debe ser mayor a 0"

        trx = create_transaction({"service_id": str(service.id), "monto": "1000", "metodo_pago": "efectivo"})
        assert trx.moneda == "CLP"
        assert trx.branch_id == service.branch_id

        with pytest.raises(ValidationError) as exc:
            update_transaction(trx.id, {"service_id": str(other.id)})
        assert "service_id" in exc.value.field_errors

        update_transaction(trx.id, {"estado": "pagado"})
        assert Decimal(service_summary(service)["pagado"]) == Decimal("1000")


def test_status_change_is_logged(as_profile, service_form):
    with as_profile():
        service = create_service(service_form)
        update_service_status(service.id, "confirmado")
        assert service.estado == ServiceStatus.CONFIRMADO

        with pytest.raises(ValidationError) as exc:
            update_service_status(service.id, "volando")
    assert exc.value.field_errors["estado"] == "Valor inválido para estado"
    traced = ActivityLog.query.filter(ActivityLog.detalles.like("%estado confirmado%")).count()
    assert traced == 1


def test_procedures_track_completion_date(as_profile, service_form):
    with as_profile():
        service = create_service(service_form)
        procedure = add_service_procedure(service.id, {"tipo_tramite": "Certificado de defunción"})
        assert procedure.estado == ProcedureStatus.PENDIENTE
        assert procedure.fecha_completado is None

        update_procedure_status(service.id, procedure.id, "completo")
        assert procedure.fecha_completado == date.today()

        update_procedure_status(service.id, procedure.id, "en_proceso")
        assert procedure.fecha_completado is None

        with pytest.raises(ValidationError):
            update_procedure_status(service.id, procedure.id, "archivado")


def test_delete_service_removes_its_transactions(as_profile, service_form):
    with as_profile():
        service = create_service(service_form)
        create_transaction({"service_id": str(service.id), "monto": "1000", "metodo_pago": "efectivo"})
        service_id = service.id
        delete_service(service_id)
        with pytest.raises(NotFoundError):
            get_service(service_id)
    assert Transaction.query.count() == 0


def test_assignments_reject_duplicates_and_inactive(as_profile, service_form):
    driver, helper, _ = Collaborator.query.order_by(Collaborator.id.asc()).all()
    with as_profile():
        service = create_service(service_form)
        assignment = assignments.create_assignment(
            service.id,
            {"collaborator_id": str(driver.id), "rol_en_servicio": "Conductor", "monto_extra": "25000"},
        )
        assert assignment.monto_extra == Decimal("25000")

        with pytest.raises(ValidationError) as exc:
            assignments.create_assignment(
                service.id, {"collaborator_id": str(driver.id), "rol_en_servicio": "Conductor"}
            )
        assert exc.value.message == assignments.DUPLICATE_ASSIGNMENT

        deactivate_collaborator(helper.id, "Licencia")
        with pytest.raises(ValidationError) as exc:
            assignments.create_assignment(
                service.id, {"collaborator_id": str(helper.id), "rol_en_servicio": "Auxiliar"}
            )
        assert exc.value.field_errors["collaborator_id"] == "El colaborador está desactivado"

        rows = assignments.list_service_assignments(service.id)
        assert [row.collaborator_id for row in rows] == [driver.id]

        assert assignments.delete_assignment(assignment.id) == service.id
        assert assignments.list_service_assignments(service.id) == []


def test_quota_requires_entity_and_payer(as_profile, service_form):
    with as_profile():
        service = create_service(service_form)
        with pytest.raises(ValidationError) as exc:
            quotas.upsert_service_quota(service.id, {"aplica": "on"})
        assert exc.value.message == quotas.ENTITY_AND_PAYER_REQUIRED

        quota = quotas.upsert_service_quota(
            service.id,
            {"aplica": "on", "entidad": "afp", "pagador": "familia", "monto_facturado": "450000"},
        )
        assert quota.estado == MortuaryQuotaStatus.NO_INICIADA

        with pytest.raises(ValidationError):
            quotas.update_quota(quota.id, {"entidad": ""})
        assert quota.entidad is not None

        quotas.update_quota_status(quota.id, "aprobada")
        assert quota.fecha_resolucion == date.today()

        quotas.update_quota_status(quota.id, "pagada", fecha_pago=date(2026, 10, 15))
        assert quota.fecha_pago == date(2026, 10, 15)

        stats = quotas.quota_stats()
    assert stats["total"] == 1
    assert stats["pagada"] == 1


def test_quota_detail_page_is_tenant_scoped(client, login_admin, as_profile, service_form, second_tenant):
    with as_profile():
        service = create_service(service_form)
        quota = quotas.upsert_service_quota(
            service.id, {"aplica": "on", "entidad": "ips", "pagador": "funeraria"}
        )
        quota_id = quota.id

    login_admin()
    assert client.get(f"/cuotas-mortuorias/{quota_id}").status_code == 200
    assert client.get("/cuotas-mortuorias").status_code == 200

    other = second_tenant["profile"]
    with as_profile(other.email):
        with pytest.raises(NotFoundError):
            quotas.get_quota(quota_id)


def test_quota_search_matches_service_and_entity(as_profile, service_form):
    with as_profile():
        soto = create_service(service_form)
        rivas = create_service({**service_form, "nombre_fallecido": "Ana Rivas Mella"})
        quotas.upsert_service_quota(
            soto.id, {"aplica": "on", "entidad": "afp", "nombre_entidad": "AFP Capital", "pagador": "familia"}
        )
        quotas.upsert_service_quota(rivas.id, {"aplica": "on", "entidad": "ips", "pagador": "funeraria"})

        by_entity = quotas.list_quotas({"search": "capital"})
        by_name = quotas.list_quotas({"search": "rivas"})
        by_number = quotas.list_quotas({"search": rivas.numero_servicio})
        everything = quotas.list_quotas({"search": ""})

    assert [q.service_id for q in by_entity] == [soto.id]
    assert [q.service_id for q in by_name] == [rivas.id]
    assert [q.service_id for q in by_number] == [rivas.id]
    assert len(everything) == 2
