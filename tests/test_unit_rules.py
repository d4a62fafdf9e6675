from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from app import cell
from app.core.crud import Column
from app.core.demo_people import generate_demo_names, is_generic_demo_name
from app.core.errors import (
    NotFoundError,
    ServerError,
    UnauthorizedError,
    ValidationError,
    integrity_kind,
    run_action,
    translate_integrity_error,
)
from app.core.forms import PayloadParser
from app.core.labels import choices, label
from app.core.models import (
    PayrollRecord,
    Service,
    ServiceItem,
    ServiceItemType,
    ServiceStatus,
    TransactionStatus,
)
from app.core.permissions import has_capability
from app.core.rut import clean_rut, format_rut, is_valid_rut, mask_rut, validate_rut_field, verification_digit
from app.core.utils import money, month_bounds, percent_change, shift_month


def test_rut_check_digit_and_formatting():
    assert verification_digit("12345678") == "5"
    assert verification_digit("6") == "K"
    assert verification_digit("14") == "0"
    assert clean_rut("12.345.678-k") == "12345678K"
    assert format_rut("123456785") == "12.345.678-5"
    assert format_rut("76123456-0") == "76.123.456-0"
    assert is_valid_rut("12.345.678-5")
    assert not is_valid_rut("12.345.678-9")
    assert not is_valid_rut("K")
    assert mask_rut("12.345.678-5") == "*******678-5"


def test_rut_field_messages():
    assert validate_rut_field("", required=True) == "El RUT es obligatorio"
    assert validate_rut_field("", required=False) is None
    assert validate_rut_field("1234-5") == "El RUT es demasiado corto"
    assert validate_rut_field("12.345.678-9") == "El RUT ingresado no es válido"
    assert validate_rut_field("12.345.678-5") is None


def test_money_and_dates():
    assert money(1234567) == "$1.234.567"
    assert money(Decimal("-1500.4")) == "-$1.500"
    assert money(None) == "$0"
    assert shift_month(date(2026, 1, 15), -1) == date(2025, 12, 1)
    assert shift_month(date(2026, 11, 30), 2) == date(2027, 1, 1)
    assert month_bounds(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))


def test_percent_change():
    assert percent_change(150, 100) == 50
    assert percent_change(0, 100) == -100
    assert percent_change(10, 0) == 0
    assert percent_change(Decimal("1"), Decimal("3")) == -67


def test_parser_collects_field_errors():
    parser = PayloadParser({"nombre": "", "monto": "-5", "tipo": "nave", "cantidad": "dos"})
    parser.string("nombre", required=True, label="nombre")
    parser.decimal("monto", positive=True, label="monto")
    parser.choice("tipo", ServiceItemType, label="tipo")
    parser.integer("cantidad", label="cantidad")
    with pytest.raises(ValidationError) as exc:
        parser.validate()
    assert exc.value.field_errors == {
        "nombre": "El campo nombre es obligatorio",
        "monto": "monto debe ser mayor a 0",
        "tipo": "Valor inválido para tipo",
        "cantidad": "cantidad debe ser un número entero",
    }
    assert exc.value.message == "El campo nombre es obligatorio"


def test_parser_normalizes_values():
    parser = PayloadParser(
        {
            "monto": "1234,5",
            "estado": "PAGADO",
            "activo": "on",
            "vacio": "",
            "placa": " bcdf12 ",
            "email": "Ana@Example.CL",
            "rut": "123456785",
            "fecha": "2026-10-01T08:30",
        }
    )
    parser.decimal("monto")
    parser.choice("estado", TransactionStatus)
    parser.boolean("activo")
    parser.boolean("vacio", default=True)
    parser.plate("placa")
    parser.email("email")
    parser.rut("rut")
    parser.date("fecha")
    data = parser.validate()
    assert data == {
        "monto": Decimal("1234.50"),
        "estado": TransactionStatus.PAGADO,
        "activo": True,
        "vacio": False,
        "placa": "BCDF12",
        "email": "ana@example.cl",
        "rut": "12.345.678-5",
        "fecha": date(2026, 10, 1),
    }


@pytest.mark.parametrize("raw", ["NaN", "nan", "Infinity", "-inf", "sNaN"])
def test_parser_rejects_non_finite_amounts(raw):
    parser = PayloadParser({"monto": raw})
    parser.decimal("monto", required=True, positive=True, max_value=100, label="monto")
    with pytest.raises(ValidationError) as exc:
        parser.validate()
    assert exc.value.field_errors == {"monto": "Importe inválido en monto"}


def test_partial_parser_skips_absent_keys():
    parser = PayloadParser({"monto_descuento": "100"}, partial=True)
    parser.string("nombre_fallecido", required=True)
    parser.decimal("monto_descuento", min_value=0)
    parser.decimal("porcentaje_descuento", min_value=0, max_value=100)
    assert parser.validate() == {"monto_descuento": Decimal("100.00")}


def test_role_capabilities():
    assert has_capability("caja", "finance.write")
    assert has_capability("ejecutivo", "payroll.manage")
    assert not has_capability("operaciones", "finance.read")
    assert not has_capability("colaborador", "services.write")
    assert has_capability("colaborador", "tenant.read")
    assert not has_capability(None, "tenant.read")
    with pytest.raises(KeyError):
        has_capability("admin", "cemetery.manage")


def test_labels():
    assert label(ServiceStatus.EN_EJECUCION) == "En ejecución"
    assert label("sin_definir") == "Sin definir"
    assert label(None) == ""
    assert ("pagado", "Pagado") in choices(TransactionStatus)


def test_item_and_service_totals():
    items = [
        ServiceItem(tipo_item=ServiceItemType.ATAUD, descripcion="Ataúd", cantidad=1, precio_unitario=Decimal("400000")),
        ServiceItem(
            tipo_item=ServiceItemType.EXTRA,
            descripcion="Traslado",
            cantidad=2,
            precio_unitario=Decimal("50000"),
            tasa_impuesto=Decimal("19"),
        ),
    ]
    for item in items:
        item.compute_total()
    assert items[1].monto_total == Decimal("119000.00")

    service = Service(items=items, porcentaje_descuento=Decimal("10"), monto_descuento=Decimal("19100"))
    service.recalculate_totals()
    assert service.total_items == Decimal("519000.00")
    assert service.total_final == Decimal("448000.00")

    service.monto_descuento = Decimal("999999")
    service.recalculate_totals()
    assert service.total_final == Decimal("0.00")


def test_payroll_record_totals_and_days():
    record = PayrollRecord(
        sueldo_base=Decimal("580000"),
        total_extras=Decimal("30000"),
        bonos=Decimal("20000"),
        comisiones=Decimal("0"),
        descuentos=Decimal("15000"),
        adelantos=Decimal("50000"),
        dias_trabajados=22,
    )
    record.recalculate()
    assert record.total_bruto == Decimal("630000")
    assert record.total_deducciones == Decimal("65000")
    assert record.total_neto == Decimal("565000")
    with pytest.raises(ValueError):
        record.dias_trabajados = 32


def test_run_action_maps_errors_to_status():
    ok = run_action(lambda: {"saldo": "0"})
    assert ok.status_code == 200
    assert ok.to_dict() == {"success": True, "data": {"saldo": "0"}}

    def invalid():
        raise ValidationError(field_errors={"monto": "monto debe ser mayor a 0"})

    result = run_action(invalid)
    assert result.status_code == 400
    assert result.to_dict() == {
        "success": False,
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "monto debe ser mayor a 0",
            "fieldErrors": {"monto": "monto debe ser mayor a 0"},
        },
    }

    def missing():
        raise NotFoundError()

    def denied():
        raise UnauthorizedError()

    assert run_action(missing).status_code == 404
    assert run_action(missing).to_dict()["error"]["message"] == "Registro no encontrado"
    assert run_action(denied).status_code == 401


def test_integrity_errors_are_classified():
    unique = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: vehicles.placa"))
    foreign = IntegrityError("DELETE", {}, Exception("FOREIGN KEY constraint failed"))
    other = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: plans.nombre"))

    assert integrity_kind(unique) == "unique"
    assert integrity_kind(foreign) == "foreign_key"
    assert integrity_kind(other) is None
    assert translate_integrity_error(unique, unique="Placa duplicada").message == "Placa duplicada"
    assert translate_integrity_error(foreign, foreign_key="En uso").message == "En uso"
    assert isinstance(translate_integrity_error(other), ServerError)


def test_cell_renders_column_kinds():
    row = SimpleNamespace(
        total=Decimal("1500000"),
        activo=True,
        estado=ServiceStatus.EN_EJECUCION,
        colaborador_rut="12.345.678-5",
        fecha=date(2026, 10, 19),
        branch=SimpleNamespace(nombre="Casa matriz"),
    )
    assert cell(row, Column("Total", "total", "money")) == "$1.500.000"
    assert cell(row, Column("Activo", "activo", "bool")) == "Sí"
    assert cell(row, Column("Estado", "estado", "label")) == "En ejecución"
    assert cell(row, Column("RUT", "colaborador_rut", "rut")) == "*******678-5"
    assert cell(row, Column("Fecha", "fecha", "date")) == "19-10-2026"
    assert cell(row, Column("Sucursal", "branch.nombre")) == "Casa matriz"
    assert cell(row, Column("Nada", "branch.gerente")) == ""


def test_demo_names_are_realistic():
    names = generate_demo_names(3)
    assert names == [
        ("Juan", "González Soto"),
        ("Gonzalo", "Muñoz Contreras"),
        ("Javiera", "Rojas Silva"),
    ]
    assert is_generic_demo_name("Usuario", "Demo 01")
    with pytest.raises(ValueError):
        generate_demo_names(-1)
