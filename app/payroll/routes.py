from __future__ import annotations

from flask import abort, flash, redirect, render_template, request, url_for
from flask_login import login_required

from app.admin.catalogs import branch_options
from app.core.crud import Column, CrudResource, Field, register_crud
from app.core.errors import NotFoundError
from app.core.forms import filter_date, filter_int
from app.core.labels import choices
from app.core.models import CollaboratorType, PaymentReceiptStatus, PayrollPeriodStatus
from app.core.permissions import require_capability, require_tenant
from app.operations.assignments import list_collaborator_assignments
from app.payroll import payroll_bp
from app.payroll import services as payroll


def _collaborator_context(collaborator) -> dict:
    return {
        "history": payroll.collaborator_payroll_history(collaborator.id),
        "assignments": list_collaborator_assignments(collaborator.id),
    }


register_crud(
    payroll_bp,
    CrudResource(
        name="collaborators",
        url="/colaboradores",
        title="Colaboradores",
        singular="Colaborador",
        list_fn=payroll.list_collaborators,
        get_fn=payroll.get_collaborator,
        create_fn=payroll.create_collaborator,
        update_fn=payroll.update_collaborator,
        delete_fn=payroll.delete_collaborator,
        write_capability="payroll.manage",
        detail_template="payroll/collaborator_detail.html",
        detail_context=_collaborator_context,
        columns=[
            Column("Nombre", "nombre_completo", link=True),
            Column("RUT", "rut"),
            Column("Tipo", "tipo", "label"),
            Column("Cargo", "cargo"),
            Column("Sueldo base", "sueldo_base", "money"),
            Column("Activo", "estado_activo", "bool"),
        ],
        fields=[
            Field("nombre_completo", "Nombre completo", required=True),
            Field("rut", "RUT", required=True, placeholder="12.345.678-5"),
            Field("tipo", "Tipo", "select", required=True, options=choices(CollaboratorType)),
            Field("cargo", "Cargo"),
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("telefono", "Teléfono"),
            Field("email", "Correo", "email"),
            Field("sueldo_base", "Sueldo base", "number"),
            Field("metodo_pago", "Método de pago", placeholder="transferencia"),
            Field("estado_activo", "Activo", "checkbox"),
            Field("notas", "Notas", "textarea"),
        ],
        filters=[
            Field("search", "Buscar", placeholder="Nombre, RUT o correo"),
            Field("tipo", "Tipo", "select", options=choices(CollaboratorType)),
            Field("cargo", "Cargo"),
            Field("branch_id", "Sucursal", "select", options=branch_options),
            Field("estado_activo", "Estado", "select", options=[("true", "Activos"), ("false", "Inactivos")]),
        ],
    ),
)


def _action(redirect_url: str, action, message: str):
    try:
        result = action()
        flash(message.format(result=result), "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(redirect_url)


@payroll_bp.post("/colaboradores/<int:collaborator_id>/desactivar")
@login_required
@require_tenant
@require_capability("payroll.manage")
def collaborator_deactivate(collaborator_id: int):
    motivo = request.form.get("motivo", "")
    return _action(
        url_for("payroll.collaborators_detail", record_id=collaborator_id),
        lambda: payroll.deactivate_collaborator(collaborator_id, motivo),
        "Colaborador desactivado",
    )


@payroll_bp.post("/colaboradores/<int:collaborator_id>/reactivar")
@login_required
@require_tenant
@require_capability("payroll.manage")
def collaborator_reactivate(collaborator_id: int):
    return _action(
        url_for("payroll.collaborators_detail", record_id=collaborator_id),
        lambda: payroll.reactivate_collaborator(collaborator_id),
        "Colaborador reactivado",
    )


# Periods

register_crud(
    payroll_bp,
    CrudResource(
        name="periods",
        url="/periodos",
        title="Periodos de nómina",
        singular="Periodo",
        list_fn=payroll.list_periods,
        get_fn=payroll.get_period,
        create_fn=payroll.create_period,
        update_fn=payroll.update_period,
        delete_fn=payroll.delete_period,
        read_capability="payroll.manage",
        write_capability="payroll.manage",
        detail_template="payroll/period_detail.html",
        detail_context=lambda period: {"receipts": payroll.list_receipts(period.id)},
        columns=[
            Column("Nombre", "nombre", link=True),
            Column("Inicio", "fecha_inicio", "date"),
            Column("Fin", "fecha_fin", "date"),
            Column("Estado", "estado", "label"),
            Column("Colaboradores", "cantidad_colaboradores"),
            Column("Total neto", "total_neto", "money"),
        ],
        fields=[
            Field("nombre", "Nombre", required=True, placeholder="Nómina octubre"),
            Field("fecha_inicio", "Inicio", "date", required=True),
            Field("fecha_fin", "Fin", "date", required=True),
            Field("estado", "Estado", "select", options=choices(PayrollPeriodStatus)),
            Field("notas", "Notas", "textarea"),
        ],
        filters=[
            Field("search", "Buscar"),
            Field("estado", "Estado", "select", options=choices(PayrollPeriodStatus)),
            Field("fecha_desde", "Desde", "date"),
            Field("fecha_hasta", "Hasta", "date"),
        ],
    ),
)


def _period_url(period_id: int) -> str:
    return url_for("payroll.periods_detail", record_id=period_id)


@payroll_bp.post("/periodos/<int:period_id>/calcular")
@login_required
@require_tenant
@require_capability("payroll.manage")
def period_calculate(period_id: int):
    include_inactive = request.form.get("include_inactive") in {"1", "on", "true"}
    return _action(
        _period_url(period_id),
        lambda: payroll.calculate_payroll(period_id, include_inactive=include_inactive),
        "Nómina calculada: {result[created]} nuevos, {result[updated]} actualizados",
    )


@payroll_bp.post("/periodos/<int:period_id>/aprobar")
@login_required
@require_tenant
@require_capability("payroll.manage")
def period_approve_all(period_id: int):
    return _action(
        _period_url(period_id),
        lambda: payroll.approve_all_records(period_id),
        "{result} registros aprobados",
    )


@payroll_bp.post("/periodos/<int:period_id>/recibos")
@login_required
@require_tenant
@require_capability("payroll.manage")
def period_receipts(period_id: int):
    return _action(
        _period_url(period_id),
        lambda: payroll.generate_all_receipts(period_id),
        "Recibos generados: {result[generated]}, omitidos: {result[skipped]}",
    )


@payroll_bp.post("/periodos/<int:period_id>/cerrar")
@login_required
@require_tenant
@require_capability("payroll.manage")
def period_close(period_id: int):
    notas = request.form.get("notas", "")
    return _action(_period_url(period_id), lambda: payroll.close_period(period_id, notas), "Periodo cerrado")


def _record_period(record_id: int) -> int:
    try:
        return payroll.get_record(record_id).period_id
    except NotFoundError:
        abort(404)


@payroll_bp.post("/registros/<int:record_id>")
@login_required
@require_tenant
@require_capability("payroll.manage")
def record_update(record_id: int):
    period_id = _record_period(record_id)
    return _action(
        _period_url(period_id), lambda: payroll.update_record(record_id, request.form), "Registro actualizado"
    )


@payroll_bp.post("/registros/<int:record_id>/aprobar")
@login_required
@require_tenant
@require_capability("payroll.manage")
def record_approve(record_id: int):
    period_id = _record_period(record_id)
    return _action(_period_url(period_id), lambda: payroll.approve_record(record_id), "Registro aprobado")


@payroll_bp.post("/registros/<int:record_id>/recibo")
@login_required
@require_tenant
@require_capability("payroll.manage")
def record_receipt(record_id: int):
    period_id = _record_period(record_id)
    return _action(
        _period_url(period_id),
        lambda: payroll.generate_receipt(record_id),
        "Recibo {result.numero_recibo} generado",
    )


# Receipts

def _receipts(filters):
    return payroll.list_receipts(filter_int(filters, "period_id"))


def _period_options():
    return [(p.id, p.nombre) for p in payroll.list_periods()]


register_crud(
    payroll_bp,
    CrudResource(
        name="receipts",
        url="/recibos",
        title="Recibos de pago",
        singular="Recibo",
        list_fn=_receipts,
        get_fn=payroll.get_receipt,
        read_capability="payroll.manage",
        write_capability="payroll.manage",
        detail_context=lambda receipt: {
            "status_choices": choices(PaymentReceiptStatus),
            "status_endpoint": "payroll.receipt_status",
            "with_payment_date": True,
        },
        columns=[
            Column("Número", "numero_recibo", link=True),
            Column("Colaborador", "colaborador_nombre"),
            Column("RUT", "colaborador_rut", "rut"),
            Column("Periodo", "periodo_nombre"),
            Column("Emisión", "fecha_emision", "date"),
            Column("Total neto", "total_neto", "money"),
            Column("Estado", "estado", "label"),
        ],
        fields=[
            Field("colaborador_rut", "RUT"),
            Field("sueldo_base", "Sueldo base", "number"),
            Field("total_extras", "Extras", "number"),
            Field("bonos", "Bonos", "number"),
            Field("comisiones", "Comisiones", "number"),
            Field("descuentos", "Descuentos", "number"),
            Field("adelantos", "Adelantos", "number"),
            Field("total_bruto", "Total bruto", "number"),
            Field("total_deducciones", "Deducciones", "number"),
            Field("metodo_pago", "Método de pago"),
            Field("fecha_pago", "Fecha de pago", "date"),
            Field("codigo_verificacion", "Código de verificación"),
        ],
        filters=[Field("period_id", "Periodo", "select", options=_period_options)],
    ),
)


@payroll_bp.post("/recibos/<int:record_id>/estado")
@login_required
@require_tenant
@require_capability("payroll.manage")
def receipt_status(record_id: int):
    estado = request.form.get("estado", "")
    try:
        fecha_pago = filter_date(request.form, "fecha_pago")
    except ValueError as exc:
        flash(str(exc), "error")
        return redirect(url_for("payroll.receipts_detail", record_id=record_id))
    return _action(
        url_for("payroll.receipts_detail", record_id=record_id),
        lambda: payroll.update_receipt_status(record_id, estado, fecha_pago),
        "Estado del recibo actualizado",
    )


@payroll_bp.get("/resumen")
@login_required
@require_tenant
@require_capability("payroll.manage")
def overview():
    try:
        month = filter_date(request.args, "mes")
    except ValueError as exc:
        flash(str(exc), "error")
        month = None
    return render_template(
        "payroll/overview.html",
        overview=payroll.payroll_overview(),
        summary=payroll.payroll_summary(month),
        month=month,
    )
