"""funeral erp initial schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(14, 2)


def _enum(*values, name: str):
    # Types are created once in upgrade(); tables only reference them.
    return postgresql.ENUM(*values, name=name, create_type=False)


user_role = _enum("admin", "ejecutivo", "operaciones", "caja", "colaborador", name="user_role")
service_type = _enum(
    "inhumacion", "cremacion", "traslado_nacional", "traslado_internacional", "solo_velatorio", name="service_type"
)
service_status = _enum("borrador", "confirmado", "en_ejecucion", "finalizado", "cerrado", name="service_status")
death_place_type = _enum("domicilio", "hospital", "via_publica", "otro", name="death_place_type")
service_item_type = _enum("plan", "ataud", "urna", "extra", name="service_item_type")
procedure_status = _enum("pendiente", "en_proceso", "completo", name="procedure_status")
transaction_status = _enum("pendiente", "pagado", "rechazado", "reembolsado", name="transaction_status")
payment_method = _enum(
    "efectivo", "transferencia", "tarjeta", "cheque", "seguro", "cuota_mortuoria", name="payment_method"
)
expense_status = _enum("con_factura", "pendiente_factura", "sin_factura", name="expense_status")
expense_category = _enum(
    "insumos",
    "servicios_externos",
    "combustible",
    "mantenimiento",
    "servicios_publicos",
    "arriendos",
    "honorarios",
    "impuestos",
    "seguros",
    "otros",
    name="expense_category",
)
collaborator_type = _enum("empleado", "honorario", name="collaborator_type")
coffin_urn_type = _enum("ataud", "urna", name="coffin_urn_type")
cemetery_type = _enum("cementerio", "crematorio", name="cemetery_type")
vehicle_status = _enum("disponible", "en_mantenimiento", name="vehicle_status")
mortuary_quota_status = _enum(
    "no_iniciada", "en_preparacion", "ingresada", "aprobada", "rechazada", "pagada", name="mortuary_quota_status"
)
mortuary_quota_entity = _enum("afp", "ips", "pgu", "otra", name="mortuary_quota_entity")
mortuary_quota_payer = _enum("familia", "funeraria", name="mortuary_quota_payer")
payroll_period_status = _enum("abierto", "cerrado", "procesado", "pagado", name="payroll_period_status")
payment_receipt_status = _enum("pendiente", "generado", "enviado", "pagado", name="payment_receipt_status")
agenda_event_type = _enum(
    "velatorio",
    "ceremonia",
    "inhumacion",
    "cremacion",
    "recogida",
    "reunion",
    "mantenimiento",
    "otro",
    name="agenda_event_type",
)
agenda_event_status = _enum("programado", "en_progreso", "completado", "cancelado", name="agenda_event_status")
resource_type = _enum("sala", "vehiculo", "colaborador", "equipamiento", name="resource_type")

ENUMS = [
    user_role,
    service_type,
    service_status,
    death_place_type,
    service_item_type,
    procedure_status,
    transaction_status,
    payment_method,
    expense_status,
    expense_category,
    collaborator_type,
    coffin_urn_type,
    cemetery_type,
    vehicle_status,
    mortuary_quota_status,
    mortuary_quota_entity,
    mortuary_quota_payer,
    payroll_period_status,
    payment_receipt_status,
    agenda_event_type,
    agenda_event_status,
    resource_type,
]

# Tables that carry an indexed funeral_home_id, in creation order.
TENANT_TABLES = [
    "branches",
    "profiles",
    "suppliers",
    "plans",
    "coffin_urns",
    "cemetery_crematoriums",
    "vehicles",
    "rooms",
    "collaborators",
    "services",
    "transactions",
    "expenses",
    "service_assignments",
    "payroll_periods",
    "payroll_records",
    "payment_receipts",
    "agenda_events",
]


def _created_at():
    return sa.Column("created_at", sa.DateTime(), nullable=False)


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(), nullable=False)


def _active():
    return sa.Column("estado_activo", sa.Boolean(), nullable=False, server_default=sa.true())


def _text(name: str, length: int):
    return sa.Column(name, sa.String(length=length), nullable=False, server_default="")


def _money(name: str):
    return sa.Column(name, MONEY, nullable=False, server_default="0")


def upgrade():
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in ENUMS:
            enum.create(bind, checkfirst=True)

    op.create_table(
        "funeral_homes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("razon_social", sa.String(length=200), nullable=False),
        _text("nombre_fantasia", 200),
        sa.Column("rut", sa.String(length=20), nullable=False),
        _text("email", 255),
        _text("direccion", 255),
        _text("telefono", 40),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("rut"),
    )
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=120), nullable=False),
        _text("direccion", 255),
        _text("telefono", 40),
        _text("nombre_gerente", 120),
        _active(),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("funeral_home_id", "nombre", name="uq_branch_home_nombre"),
    )
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("nombre_completo", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False, server_default="colaborador"),
        _text("url_avatar", 500),
        _active(),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_table(
        "user_branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("profile_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("profile_id", "branch_id", name="uq_user_branch"),
    )
    with op.batch_alter_table("user_branches", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_user_branches_profile_id"), ["profile_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_user_branches_branch_id"), ["branch_id"], unique=False)

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=160), nullable=False),
        sa.Column("rut", sa.String(length=20), nullable=True),
        _text("tipo_negocio", 120),
        _text("informacion_contacto", 500),
        _active(),
        _created_at(),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("funeral_home_id", "rut", name="uq_supplier_home_rut"),
    )
    op.create_table(
        "plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=160), nullable=False),
        _text("descripcion", 1000),
        sa.Column("tipo_servicio", service_type, nullable=False),
        _money("precio_base"),
        _text("notas", 1000),
        _active(),
        _created_at(),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "coffin_urns",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("tipo", coffin_urn_type, nullable=False),
        sa.Column("nombre_comercial", sa.String(length=160), nullable=False),
        _text("sku", 60),
        _text("material", 80),
        _text("tamano", 60),
        _text("categoria", 80),
        _money("precio_venta"),
        _money("costo"),
        sa.Column("stock_disponible", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        _active(),
        _created_at(),
        sa.CheckConstraint("stock_disponible >= 0", name="ck_coffin_stock"),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "cemetery_crematoriums",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=160), nullable=False),
        sa.Column("tipo", cemetery_type, nullable=False),
        _text("direccion", 255),
        _text("informacion_contacto", 500),
        _text("notas", 1000),
        _active(),
        _created_at(),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("placa", sa.String(length=12), nullable=False),
        _text("tipo_vehiculo", 80),
        sa.Column("capacidad", sa.Integer(), nullable=True),
        sa.Column("estado", vehicle_status, nullable=False, server_default="disponible"),
        _text("notas", 1000),
        _created_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("funeral_home_id", "placa", name="uq_vehicle_home_placa"),
    )
    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=120), nullable=False),
        _text("descripcion", 500),
        sa.Column("capacidad", sa.Integer(), nullable=True),
        _text("ubicacion", 160),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#3B82F6"),
        _text("notas", 1000),
        _active(),
        _created_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "collaborators",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("nombre_completo", sa.String(length=160), nullable=False),
        sa.Column("rut", sa.String(length=20), nullable=False),
        sa.Column("tipo", collaborator_type, nullable=False),
        _text("cargo", 120),
        _text("telefono", 40),
        _text("email", 255),
        _money("sueldo_base"),
        sa.Column("metodo_pago", sa.String(length=40), nullable=False, server_default="transferencia"),
        _active(),
        _text("notas", 1000),
        _created_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("funeral_home_id", "rut", name="uq_collaborator_home_rut"),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("numero_servicio", sa.String(length=30), nullable=False),
        sa.Column("estado", service_status, nullable=False, server_default="borrador"),
        sa.Column("tipo_servicio", service_type, nullable=False),
        _text("notas_generales", 2000),
        sa.Column("nombre_fallecido", sa.String(length=160), nullable=False),
        _text("rut_fallecido", 20),
        sa.Column("fecha_nacimiento_fallecido", sa.Date(), nullable=True),
        sa.Column("fecha_fallecimiento", sa.Date(), nullable=False),
        sa.Column("tipo_lugar_fallecimiento", death_place_type, nullable=True),
        _text("lugar_fallecimiento", 255),
        _text("causa_fallecimiento", 255),
        sa.Column("nombre_responsable", sa.String(length=160), nullable=False),
        sa.Column("rut_responsable", sa.String(length=20), nullable=False),
        sa.Column("telefono_responsable", sa.String(length=40), nullable=False),
        _text("email_responsable", 255),
        _text("direccion_responsable", 255),
        _text("parentesco_responsable", 80),
        sa.Column("plan_id", sa.Integer(), nullable=True),
        sa.Column("coffin_id", sa.Integer(), nullable=True),
        sa.Column("urn_id", sa.Integer(), nullable=True),
        sa.Column("cemetery_crematorium_id", sa.Integer(), nullable=True),
        sa.Column("vehiculo_principal_id", sa.Integer(), nullable=True),
        _money("total_items"),
        _money("monto_descuento"),
        sa.Column("porcentaje_descuento", sa.Numeric(5, 2), nullable=False, server_default="0"),
        _money("total_final"),
        sa.Column("fecha_recogida", sa.DateTime(), nullable=True),
        sa.Column("fecha_inicio_velatorio", sa.DateTime(), nullable=True),
        _text("sala_velatorio", 120),
        sa.Column("fecha_ceremonia_religiosa", sa.DateTime(), nullable=True),
        sa.Column("fecha_inhumacion_cremacion", sa.DateTime(), nullable=True),
        _text("notas_logistica", 2000),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("monto_descuento >= 0", name="ck_service_discount_amount"),
        sa.CheckConstraint(
            "porcentaje_descuento >= 0 AND porcentaje_descuento <= 100", name="ck_service_discount_pct"
        ),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["cemetery_crematorium_id"], ["cemetery_crematoriums.id"]),
        sa.ForeignKeyConstraint(["coffin_id"], ["coffin_urns.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"]),
        sa.ForeignKeyConstraint(["urn_id"], ["coffin_urns.id"]),
        sa.ForeignKeyConstraint(["vehiculo_principal_id"], ["vehicles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("funeral_home_id", "numero_servicio", name="uq_service_home_numero"),
    )
    with op.batch_alter_table("services", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_services_branch_id"), ["branch_id"], unique=False)
    op.create_index(
        "ix_service_home_estado_created", "services", ["funeral_home_id", "estado", "created_at"], unique=False
    )

    op.create_table(
        "service_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("tipo_item", service_item_type, nullable=False),
        _text("categoria", 80),
        sa.Column("descripcion", sa.String(length=255), nullable=False),
        sa.Column("cantidad", sa.Integer(), nullable=False, server_default="1"),
        _money("precio_unitario"),
        sa.Column("tasa_impuesto", sa.Numeric(5, 2), nullable=False, server_default="0"),
        _money("monto_total"),
        sa.CheckConstraint("cantidad > 0", name="ck_service_item_cantidad"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "service_procedures",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("tipo_tramite", sa.String(length=120), nullable=False),
        sa.Column("estado", procedure_status, nullable=False, server_default="pendiente"),
        sa.Column("fecha_completado", sa.Date(), nullable=True),
        _text("notas", 1000),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("numero_transaccion", sa.String(length=30), nullable=False),
        sa.Column("fecha_transaccion", sa.Date(), nullable=False),
        sa.Column("monto", MONEY, nullable=False),
        sa.Column("moneda", sa.String(length=3), nullable=False, server_default="CLP"),
        sa.Column("metodo_pago", payment_method, nullable=False),
        _text("cuenta_destino", 120),
        sa.Column("estado", transaction_status, nullable=False, server_default="pendiente"),
        _text("observaciones", 1000),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("monto > 0", name="ck_transaction_monto"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("funeral_home_id", "numero_transaccion", name="uq_transaction_home_numero"),
    )
    op.create_index(
        "ix_transaction_home_estado_fecha",
        "transactions",
        ["funeral_home_id", "estado", "fecha_transaccion"],
        unique=False,
    )
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=True),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("fecha_egreso", sa.Date(), nullable=False),
        _text("nombre_proveedor", 160),
        sa.Column("concepto", sa.String(length=255), nullable=False),
        sa.Column("monto", MONEY, nullable=False),
        sa.Column("categoria", expense_category, nullable=False),
        _text("info_impuestos", 255),
        _text("numero_factura", 60),
        sa.Column("estado", expense_status, nullable=False, server_default="pendiente_factura"),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint("monto > 0", name="ck_expense_monto"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_expense_home_fecha", "expenses", ["funeral_home_id", "fecha_egreso"], unique=False)
    op.create_table(
        "service_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("collaborator_id", sa.Integer(), nullable=False),
        sa.Column("rol_en_servicio", sa.String(length=120), nullable=False),
        _text("tipo_extra", 80),
        _money("monto_extra"),
        _text("comentarios", 1000),
        _created_at(),
        sa.ForeignKeyConstraint(["collaborator_id"], ["collaborators.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("service_id", "collaborator_id", name="uq_assignment_service_collaborator"),
    )
    op.create_table(
        "mortuary_quotas",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("aplica", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("entidad", mortuary_quota_entity, nullable=True),
        _text("nombre_entidad", 160),
        _money("monto_facturado"),
        sa.Column("pagador", mortuary_quota_payer, nullable=True),
        sa.Column("estado", mortuary_quota_status, nullable=False, server_default="no_iniciada"),
        sa.Column("fecha_solicitud", sa.Date(), nullable=True),
        sa.Column("fecha_resolucion", sa.Date(), nullable=True),
        sa.Column("fecha_pago", sa.Date(), nullable=True),
        _text("notas", 1000),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("service_id"),
    )
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("entity_type", sa.String(length=60), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=20), nullable=False),
        _text("detalles", 1000),
        _created_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_home_created", "activity_logs", ["funeral_home_id", "created_at"], unique=False)

    op.create_table(
        "payroll_periods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=120), nullable=False),
        sa.Column("fecha_inicio", sa.Date(), nullable=False),
        sa.Column("fecha_fin", sa.Date(), nullable=False),
        sa.Column("estado", payroll_period_status, nullable=False, server_default="abierto"),
        _text("notas", 1000),
        _money("total_bruto"),
        _money("total_deducciones"),
        _money("total_neto"),
        sa.Column("cantidad_colaboradores", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fecha_cierre", sa.DateTime(), nullable=True),
        sa.Column("cerrado_por", sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint("fecha_fin >= fecha_inicio", name="ck_payroll_period_dates"),
        sa.ForeignKeyConstraint(["cerrado_por"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "payroll_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("collaborator_id", sa.Integer(), nullable=False),
        _money("sueldo_base"),
        sa.Column("dias_trabajados", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cantidad_servicios", sa.Integer(), nullable=False, server_default="0"),
        _money("total_extras"),
        _money("bonos"),
        _money("comisiones"),
        _money("descuentos"),
        _money("adelantos"),
        _money("total_bruto"),
        _money("total_deducciones"),
        _money("total_neto"),
        sa.Column("aprobado", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fecha_aprobacion", sa.DateTime(), nullable=True),
        sa.Column("aprobado_por", sa.Integer(), nullable=True),
        _text("notas", 1000),
        sa.ForeignKeyConstraint(["aprobado_por"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["collaborator_id"], ["collaborators.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["payroll_periods.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("period_id", "collaborator_id", name="uq_payroll_record_period_collaborator"),
    )
    op.create_table(
        "payment_receipts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("payroll_record_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("collaborator_id", sa.Integer(), nullable=False),
        sa.Column("numero_recibo", sa.String(length=30), nullable=False),
        sa.Column("fecha_emision", sa.Date(), nullable=False),
        sa.Column("colaborador_nombre", sa.String(length=160), nullable=False),
        sa.Column("colaborador_rut", sa.String(length=20), nullable=False),
        sa.Column("periodo_nombre", sa.String(length=120), nullable=False),
        _money("sueldo_base"),
        _money("total_extras"),
        _money("bonos"),
        _money("comisiones"),
        _money("descuentos"),
        _money("adelantos"),
        _money("total_bruto"),
        _money("total_deducciones"),
        _money("total_neto"),
        sa.Column("estado", payment_receipt_status, nullable=False, server_default="generado"),
        _text("metodo_pago", 40),
        sa.Column("fecha_pago", sa.Date(), nullable=True),
        sa.Column("codigo_verificacion", sa.String(length=20), nullable=False),
        _text("notas", 1000),
        _created_at(),
        sa.ForeignKeyConstraint(["collaborator_id"], ["collaborators.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["payroll_record_id"], ["payroll_records.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["payroll_periods.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payroll_record_id"),
        sa.UniqueConstraint("funeral_home_id", "numero_recibo", name="uq_receipt_home_numero"),
    )

    op.create_table(
        "agenda_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("funeral_home_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=True),
        sa.Column("titulo", sa.String(length=200), nullable=False),
        _text("descripcion", 1000),
        sa.Column("tipo_evento", agenda_event_type, nullable=False),
        sa.Column("fecha_inicio", sa.DateTime(), nullable=False),
        sa.Column("fecha_fin", sa.DateTime(), nullable=False),
        sa.Column("todo_el_dia", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estado", agenda_event_status, nullable=False, server_default="programado"),
        _text("notas", 1000),
        sa.Column("created_by", sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint("fecha_fin > fecha_inicio", name="ck_agenda_event_dates"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["funeral_home_id"], ["funeral_homes.id"]),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_agenda_event_home_inicio", "agenda_events", ["funeral_home_id", "fecha_inicio"], unique=False
    )
    op.create_table(
        "agenda_resource_bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("tipo_recurso", resource_type, nullable=False),
        sa.Column("recurso_id", sa.Integer(), nullable=False),
        sa.Column("hora_inicio_reserva", sa.DateTime(), nullable=True),
        sa.Column("hora_fin_reserva", sa.DateTime(), nullable=True),
        _text("notas", 500),
        sa.ForeignKeyConstraint(["event_id"], ["agenda_events.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_booking_resource", "agenda_resource_bookings", ["tipo_recurso", "recurso_id"], unique=False
    )

    for table in TENANT_TABLES:
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.create_index(batch_op.f(f"ix_{table}_funeral_home_id"), ["funeral_home_id"], unique=False)
    for table in ("service_items", "service_procedures", "transactions", "service_assignments"):
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.create_index(batch_op.f(f"ix_{table}_service_id"), ["service_id"], unique=False)
    with op.batch_alter_table("service_assignments", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_service_assignments_collaborator_id"), ["collaborator_id"], unique=False)


def downgrade():
    op.drop_index("ix_booking_resource", table_name="agenda_resource_bookings")
    op.drop_table("agenda_resource_bookings")
    op.drop_index("ix_agenda_event_home_inicio", table_name="agenda_events")
    op.drop_table("agenda_events")

    op.drop_table("payment_receipts")
    op.drop_table("payroll_records")
    op.drop_table("payroll_periods")

    op.drop_index("ix_activity_home_created", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_table("mortuary_quotas")
    op.drop_table("service_assignments")
    op.drop_index("ix_expense_home_fecha", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_transaction_home_estado_fecha", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("service_procedures")
    op.drop_table("service_items")
    op.drop_index("ix_service_home_estado_created", table_name="services")
    op.drop_table("services")

    for table in (
        "collaborators",
        "rooms",
        "vehicles",
        "cemetery_crematoriums",
        "coffin_urns",
        "plans",
        "suppliers",
        "user_branches",
        "profiles",
        "user_account",
        "branches",
        "funeral_homes",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in ENUMS:
            enum.drop(bind, checkfirst=True)
