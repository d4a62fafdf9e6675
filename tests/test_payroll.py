from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.core.errors import ValidationError
from app.core.models import (
    Collaborator,
    PaymentReceipt,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollRecord,
)
from app.operations.assignments import create_assignment
from app.operations.services import create_service
from app.payroll import services as payroll


def _period_payload(nombre: str = "Nómina en curso") -> dict:
    today = date.today()
    return {
        "nombre": nombre,
        "fecha_inicio": (today - timedelta(days=5)).isoformat(),
        "fecha_fin": (today + timedelta(days=5)).isoformat(),
    }


def _collaborators() -> dict[str, Collaborator]:
    return {c.nombre_completo: c for c in Collaborator.query.all()}


def _records(period: PayrollPeriod) -> dict[str, PayrollRecord]:
    return {record.collaborator.nombre_completo: record for record in period.records}


def test_calculate_uses_base_salary_and_period_assignments(as_profile, service_form):
    people = _collaborators()
    juan = people["Juan González Soto"]
    javiera = people["Javiera Rojas Silva"]
    with as_profile():
        service = create_service(service_form)
        create_assignment(service.id, {"collaborator_id": str(juan.id), "rol_en_servicio": "Conductor", "monto_extra": "30000"})
        create_assignment(
            service.id, {"collaborator_id": str(javiera.id), "rol_en_servicio": "Auxiliar", "monto_extra": "45000"}
        )
        period = payroll.create_period(_period_payload())
        result = payroll.calculate_payroll(period.id)
        records = _records(period)

        assert result == {"created": 3, "updated": 0}
        assert records["Juan González Soto"].sueldo_base == Decimal("650000")
        assert records["Juan González Soto"].cantidad_servicios == 1
        assert records["Juan González Soto"].total_neto == Decimal("680000")
        assert records["Javiera Rojas Silva"].sueldo_base == Decimal("0")
        assert records["Javiera Rojas Silva"].total_extras == Decimal("45000")
        assert records["Gonzalo Muñoz Contreras"].cantidad_servicios == 0
        assert period.cantidad_colaboradores == 3
        assert period.total_neto == Decimal("1305000")


def test_recalculate_keeps_manual_adjustments(as_profile):
    with as_profile():
        period = payroll.create_period(_period_payload())
        payroll.calculate_payroll(period.id)
        record = _records(period)["Gonzalo Muñoz Contreras"]
        payroll.update_record(record.id, {"bonos": "20000", "adelantos": "50000", "dias_trabajados": "20"})
        assert record.total_bruto == Decimal("600000")
        assert record.total_deducciones == Decimal("50000")
        assert record.total_neto == Decimal("550000")

        result = payroll.calculate_payroll(period.id)
        assert result == {"created": 0, "updated": 3}
        assert record.bonos == Decimal("20000")
        assert record.total_neto == Decimal("550000")


def test_days_worked_are_bounded(as_profile):
    with as_profile():
        period = payroll.create_period(_period_payload())
        payroll.calculate_payroll(period.id)
        record = period.records[0]
        with pytest.raises(ValidationError) as exc:
            payroll.update_record(record.id, {"dias_trabajados": "32"})
    assert "dias_trabajados" in exc.value.field_errors


def test_inactive_collaborators_are_skipped_unless_requested(as_profile):
    helper = _collaborators()["Gonzalo Muñoz Contreras"]
    with as_profile():
        payroll.deactivate_collaborator(helper.id, "Licencia")
        period = payroll.create_period(_period_payload())
        assert payroll.calculate_payroll(period.id) == {"created": 2, "updated": 0}
        assert payroll.calculate_payroll(period.id, include_inactive=True) == {"created": 1, "updated": 2}
    assert helper.notas.startswith("Licencia - Desactivado el ")


def test_receipts_require_approval_and_are_generated_once(as_profile):
    year = date.today().year
    with as_profile():
        period = payroll.create_period(_period_payload())
        payroll.calculate_payroll(period.id)
        assert payroll.generate_all_receipts(period.id) == {"generated": 0, "skipped": 0}

        first = period.records[0]
        payroll.approve_record(first.id)
        receipt = payroll.generate_receipt(first.id)
        assert receipt.numero_recibo == f"REC-{year}-0001"
        assert receipt.colaborador_rut == first.collaborator.rut
        assert len(receipt.codigo_verificacion) == 12

        with pytest.raises(ValidationError) as exc:
            payroll.generate_receipt(first.id)
        assert exc.value.message == payroll.RECEIPT_EXISTS

        assert payroll.approve_all_records(period.id) == 2
        assert payroll.generate_all_receipts(period.id) == {"generated": 2, "skipped": 1}
        numbers = sorted(r.numero_recibo for r in payroll.list_receipts(period.id))
    assert numbers == [f"REC-{year}-0001", f"REC-{year}-0002", f"REC-{year}-0003"]


def test_receipt_status_paid_sets_payment_date(as_profile):
    with as_profile():
        period = payroll.create_period(_period_payload())
        payroll.calculate_payroll(period.id)
        payroll.approve_all_records(period.id)
        payroll.generate_all_receipts(period.id)
        receipt = payroll.list_receipts(period.id)[0]
        payroll.update_receipt_status(receipt.id, "pagado")
        assert receipt.fecha_pago == date.today()
        with pytest.raises(ValidationError):
            payroll.update_receipt_status(receipt.id, "perdido")


def test_period_with_receipts_cannot_be_deleted(as_profile):
    with as_profile():
        period = payroll.create_period(_period_payload())
        payroll.calculate_payroll(period.id)
        payroll.approve_all_records(period.id)
        payroll.generate_all_receipts(period.id)
        with pytest.raises(ValidationError) as exc:
            payroll.delete_period(period.id)
    assert exc.value.message == payroll.PERIOD_IN_USE
    assert PaymentReceipt.query.count() == 3


def test_empty_period_can_be_deleted_and_dates_are_checked(as_profile):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            payroll.create_period({"nombre": "Marzo", "fecha_inicio": "2026-03-31", "fecha_fin": "2026-03-01"})
        assert exc.value.field_errors == {"fecha_fin": payroll.PERIOD_DATES}

        period = payroll.create_period(_period_payload())
        payroll.calculate_payroll(period.id)
        payroll.delete_period(period.id)
    assert PayrollPeriod.query.count() == 0
    assert PayrollRecord.query.count() == 0


def test_close_period_records_who_closed_it(as_profile):
    with as_profile() as scope:
        period = payroll.create_period(_period_payload())
        payroll.close_period(period.id, "Cierre mensual")
        assert period.estado == PayrollPeriodStatus.CERRADO
        assert period.cerrado_por == scope.profile_id
        assert period.fecha_cierre is not None
        assert period.notas == "Cierre mensual"


def test_collaborator_rut_is_unique_and_valid(as_profile):
    with as_profile():
        with pytest.raises(ValidationError) as exc:
            payroll.create_collaborator(
                {"nombre_completo": "Pedro Lagos", "rut": "12.345.678-5", "tipo": "empleado"}
            )
        assert exc.value.message == payroll.DUPLICATE_RUT

        with pytest.raises(ValidationError) as exc:
            payroll.create_collaborator({"nombre_completo": "Pedro Lagos", "rut": "11.111.111-2", "tipo": "empleado"})
        assert exc.value.field_errors["rut"] == "El RUT ingresado no es válido"

        created = payroll.create_collaborator(
            {"nombre_completo": "Pedro Lagos", "rut": "111111111", "tipo": "honorario", "cargo": "Chofer"}
        )
    assert created.rut == "11.111.111-1"
    assert created.metodo_pago == "transferencia"


def test_collaborator_with_assignments_cannot_be_deleted(as_profile, service_form):
    juan = _collaborators()["Juan González Soto"]
    with as_profile():
        service = create_service(service_form)
        create_assignment(service.id, {"collaborator_id": str(juan.id), "rol_en_servicio": "Conductor"})
        with pytest.raises(ValidationError) as exc:
            payroll.delete_collaborator(juan.id)
    assert exc.value.message == payroll.COLLABORATOR_IN_USE
    assert Collaborator.query.count() == 3


def test_summary_and_overview(as_profile, service_form):
    juan = _collaborators()["Juan González Soto"]
    with as_profile():
        service = create_service(service_form)
        create_assignment(service.id, {"collaborator_id": str(juan.id), "rol_en_servicio": "Conductor", "monto_extra": "30000"})
        rows = {row["collaborator"].nombre_completo: row for row in payroll.payroll_summary()}
        overview = payroll.payroll_overview()

    assert rows["Juan González Soto"]["cantidad_servicios"] == 1
    assert rows["Juan González Soto"]["total_a_pagar"] == Decimal("680000")
    assert rows["Javiera Rojas Silva"]["total_a_pagar"] == Decimal("0")
    assert overview["total_colaboradores"] == 3
    assert overview["empleados"] == 2
    assert overview["honorarios"] == 1
    assert overview["sueldo_base_total"] == Decimal("1230000")
    assert overview["sueldo_base_promedio"] == Decimal("615000")
    assert overview["por_cargo"]["Auxiliar funerario"]["count"] == 2


def test_payroll_pages_render(client, login_admin, as_profile):
    with as_profile():
        period = payroll.create_period(_period_payload())
        payroll.calculate_payroll(period.id)
        period_id = period.id

    login_admin()
    assert client.get("/nomina/colaboradores").status_code == 200
    assert client.get(f"/nomina/periodos/{period_id}").status_code == 200
    assert client.get("/nomina/recibos").status_code == 200
    assert client.get("/nomina/resumen?mes=2026-10").status_code == 200

    response = client.post(f"/nomina/periodos/{period_id}/aprobar", follow_redirects=True)
    assert response.status_code == 200
    assert all(record.aprobado for record in PayrollPeriod.query.get(period_id).records)


def test_cli_commands_report_without_changes(app):
    runner = app.test_cli_runner()
    seeded = runner.invoke(args=["seed-demo"])
    assert "Seed skipped" in seeded.output

    missing = runner.invoke(args=["payroll-calculate", "--period-id", "999"])
    assert "Payroll period 999 not found." in missing.output
