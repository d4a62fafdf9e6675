from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, UniqueConstraint, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from app.core.extensions import db

MONEY = db.Numeric(14, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    ADMIN = "admin"
    EJECUTIVO = "ejecutivo"
    OPERACIONES = "operaciones"
    CAJA = "caja"
    COLABORADOR = "colaborador"


class ServiceStatus(str, Enum):
    BORRADOR = "borrador"
    CONFIRMADO = "confirmado"
    EN_EJECUCION = "en_ejecucion"
    FINALIZADO = "finalizado"
    CERRADO = "cerrado"


class ServiceType(str, Enum):
    INHUMACION = "inhumacion"
    CREMACION = "cremacion"
    TRASLADO_NACIONAL = "traslado_nacional"
    TRASLADO_INTERNACIONAL = "traslado_internacional"
    SOLO_VELATORIO = "solo_velatorio"


class DeathPlaceType(str, Enum):
    DOMICILIO = "domicilio"
    HOSPITAL = "hospital"
    VIA_PUBLICA = "via_publica"
    OTRO = "otro"


class ServiceItemType(str, Enum):
    PLAN = "plan"
    ATAUD = "ataud"
    URNA = "urna"
    EXTRA = "extra"


class ProcedureStatus(str, Enum):
    PENDIENTE = "pendiente"
    EN_PROCESO = "en_proceso"
    COMPLETO = "completo"


class TransactionStatus(str, Enum):
    PENDIENTE = "pendiente"
    PAGADO = "pagado"
    RECHAZADO = "rechazado"
    REEMBOLSADO = "reembolsado"


class PaymentMethod(str, Enum):
    EFECTIVO = "efectivo"
    TRANSFERENCIA = "transferencia"
    TARJETA = "tarjeta"
    CHEQUE = "cheque"
    SEGURO = "seguro"
    CUOTA_MORTUORIA = "cuota_mortuoria"


class ExpenseStatus(str, Enum):
    CON_FACTURA = "con_factura"
    PENDIENTE_FACTURA = "pendiente_factura"
    SIN_FACTURA = "sin_factura"


class ExpenseCategory(str, Enum):
    INSUMOS = "insumos"
    SERVICIOS_EXTERNOS = "servicios_externos"
    COMBUSTIBLE = "combustible"
    MANTENIMIENTO = "mantenimiento"
    SERVICIOS_PUBLICOS = "servicios_publicos"
    ARRIENDOS = "arriendos"
    HONORARIOS = "honorarios"
    IMPUESTOS = "impuestos"
    SEGUROS = "seguros"
    OTROS = "otros"


class CollaboratorType(str, Enum):
    EMPLEADO = "empleado"
    HONORARIO = "honorario"


class CoffinUrnType(str, Enum):
    ATAUD = "ataud"
    URNA = "urna"


class CemeteryType(str, Enum):
    CEMENTERIO = "cementerio"
    CREMATORIO = "crematorio"


class VehicleStatus(str, Enum):
    DISPONIBLE = "disponible"
    EN_MANTENIMIENTO = "en_mantenimiento"


class MortuaryQuotaStatus(str, Enum):
    NO_INICIADA = "no_iniciada"
    EN_PREPARACION = "en_preparacion"
    INGRESADA = "ingresada"
    APROBADA = "aprobada"
    RECHAZADA = "rechazada"
    PAGADA = "pagada"


class MortuaryQuotaEntity(str, Enum):
    AFP = "afp"
    IPS = "ips"
    PGU = "pgu"
    OTRA = "otra"


class MortuaryQuotaPayer(str, Enum):
    FAMILIA = "familia"
    FUNERARIA = "funeraria"


class PayrollPeriodStatus(str, Enum):
    ABIERTO = "abierto"
    CERRADO = "cerrado"
    PROCESADO = "procesado"
    PAGADO = "pagado"


class PaymentReceiptStatus(str, Enum):
    PENDIENTE = "pendiente"
    GENERADO = "generado"
    ENVIADO = "enviado"
    PAGADO = "pagado"


class AgendaEventType(str, Enum):
    VELATORIO = "velatorio"
    CEREMONIA = "ceremonia"
    INHUMACION = "inhumacion"
    CREMACION = "cremacion"
    RECOGIDA = "recogida"
    REUNION = "reunion"
    MANTENIMIENTO = "mantenimiento"
    OTRO = "otro"


class AgendaEventStatus(str, Enum):
    PROGRAMADO = "programado"
    EN_PROGRESO = "en_progreso"
    COMPLETADO = "completado"
    CANCELADO = "cancelado"


class ResourceType(str, Enum):
    SALA = "sala"
    VEHICULO = "vehiculo"
    COLABORADOR = "colaborador"
    EQUIPAMIENTO = "equipamiento"


class ActivityAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


DEMO_COLLABORATOR_RUTS = ("12.345.678-5", "9.876.543-3", "15.111.222-6")


def _enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class FuneralHome(db.Model):
    # Tenant root: every other row hangs from a funeral home.
    __tablename__ = "funeral_homes"

    id: Mapped[int] = mapped_column(primary_key=True)
    razon_social: Mapped[str] = mapped_column(db.String(200), nullable=False)
    nombre_fantasia: Mapped[str] = mapped_column(db.String(200), nullable=False, default="")
    rut: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    direccion: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    telefono: Mapped[str] = mapped_column(db.String(40), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    branches = relationship("Branch", back_populates="funeral_home", order_by="Branch.id")

    @property
    def display_name(self) -> str:
        return self.nombre_fantasia or self.razon_social


class Branch(db.Model):
    __tablename__ = "branches"
    __table_args__ = (UniqueConstraint("funeral_home_id", "nombre", name="uq_branch_home_nombre"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    direccion: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    telefono: Mapped[str] = mapped_column(db.String(40), nullable=False, default="")
    nombre_gerente: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    funeral_home = relationship("FuneralHome", back_populates="branches")


class User(UserMixin, db.Model):
    # Authentication identity; business attributes live on Profile.
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    profile = relationship("Profile", back_populates="user", uselist=False)

    @validates("email")
    def normalize_email(self, _key, value: str) -> str:
        return (value or "").strip().lower()


class Profile(db.Model):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), unique=True, nullable=False)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    nombre_completo: Mapped[str] = mapped_column(db.String(160), nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, "user_role"), nullable=False, default=UserRole.COLABORADOR)
    url_avatar: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="profile")
    funeral_home = relationship("FuneralHome")
    branch_links = relationship("UserBranch", back_populates="profile", cascade="all, delete-orphan")

    @property
    def branches(self) -> list[Branch]:
        return [link.branch for link in self.branch_links]


class UserBranch(db.Model):
    __tablename__ = "user_branches"
    __table_args__ = (UniqueConstraint("profile_id", "branch_id", name="uq_user_branch"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    profile = relationship("Profile", back_populates="branch_links")
    branch = relationship("Branch")


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = (UniqueConstraint("funeral_home_id", "rut", name="uq_supplier_home_rut"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(db.String(160), nullable=False)
    rut: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    tipo_negocio: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    informacion_contacto: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Plan(db.Model):
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(db.String(160), nullable=False)
    descripcion: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    tipo_servicio: Mapped[ServiceType] = mapped_column(_enum(ServiceType, "service_type"), nullable=False)
    precio_base: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class CoffinUrn(db.Model):
    __tablename__ = "coffin_urns"
    __table_args__ = (CheckConstraint("stock_disponible >= 0", name="ck_coffin_stock"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    tipo: Mapped[CoffinUrnType] = mapped_column(_enum(CoffinUrnType, "coffin_urn_type"), nullable=False)
    nombre_comercial: Mapped[str] = mapped_column(db.String(160), nullable=False)
    sku: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    material: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")
    tamano: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    categoria: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")
    precio_venta: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    costo: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    stock_disponible: Mapped[int] = mapped_column(nullable=False, default=0)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id"), nullable=True)
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    supplier = relationship("Supplier")


class CemeteryCrematorium(db.Model):
    __tablename__ = "cemetery_crematoriums"

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(db.String(160), nullable=False)
    tipo: Mapped[CemeteryType] = mapped_column(_enum(CemeteryType, "cemetery_type"), nullable=False)
    direccion: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    informacion_contacto: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Vehicle(db.Model):
    __tablename__ = "vehicles"
    __table_args__ = (UniqueConstraint("funeral_home_id", "placa", name="uq_vehicle_home_placa"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey("branches.id"), nullable=True)
    placa: Mapped[str] = mapped_column(db.String(12), nullable=False)
    tipo_vehiculo: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")
    capacidad: Mapped[int | None] = mapped_column(nullable=True)
    estado: Mapped[VehicleStatus] = mapped_column(
        _enum(VehicleStatus, "vehicle_status"), nullable=False, default=VehicleStatus.DISPONIBLE
    )
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    branch = relationship("Branch")

    @validates("placa")
    def normalize_placa(self, _key, value: str) -> str:
        return (value or "").strip().upper()


class Room(db.Model):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False)
    nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    descripcion: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    capacidad: Mapped[int | None] = mapped_column(nullable=True)
    ubicacion: Mapped[str] = mapped_column(db.String(160), nullable=False, default="")
    color: Mapped[str] = mapped_column(db.String(7), nullable=False, default="#3B82F6")
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    branch = relationship("Branch")


class Collaborator(db.Model):
    __tablename__ = "collaborators"
    __table_args__ = (UniqueConstraint("funeral_home_id", "rut", name="uq_collaborator_home_rut"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey("branches.id"), nullable=True)
    nombre_completo: Mapped[str] = mapped_column(db.String(160), nullable=False)
    rut: Mapped[str] = mapped_column(db.String(20), nullable=False)
    tipo: Mapped[CollaboratorType] = mapped_column(_enum(CollaboratorType, "collaborator_type"), nullable=False)
    cargo: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    telefono: Mapped[str] = mapped_column(db.String(40), nullable=False, default="")
    email: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    sueldo_base: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    metodo_pago: Mapped[str] = mapped_column(db.String(40), nullable=False, default="transferencia")
    estado_activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    branch = relationship("Branch")


class Service(db.Model):
    # Funeral case: deceased, responsible party, catalog picks, logistics and totals.
    __tablename__ = "services"
    __table_args__ = (
        UniqueConstraint("funeral_home_id", "numero_servicio", name="uq_service_home_numero"),
        CheckConstraint("monto_descuento >= 0", name="ck_service_discount_amount"),
        CheckConstraint(
            "porcentaje_descuento >= 0 AND porcentaje_descuento <= 100",
            name="ck_service_discount_pct",
        ),
        Index("ix_service_home_estado_created", "funeral_home_id", "estado", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False, index=True)
    numero_servicio: Mapped[str] = mapped_column(db.String(30), nullable=False)
    estado: Mapped[ServiceStatus] = mapped_column(
        _enum(ServiceStatus, "service_status"), nullable=False, default=ServiceStatus.BORRADOR
    )
    tipo_servicio: Mapped[ServiceType] = mapped_column(_enum(ServiceType, "service_type"), nullable=False)
    notas_generales: Mapped[str] = mapped_column(db.String(2000), nullable=False, default="")

    nombre_fallecido: Mapped[str] = mapped_column(db.String(160), nullable=False)
    rut_fallecido: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    fecha_nacimiento_fallecido: Mapped[date | None] = mapped_column(nullable=True)
    fecha_fallecimiento: Mapped[date] = mapped_column(nullable=False)
    tipo_lugar_fallecimiento: Mapped[DeathPlaceType | None] = mapped_column(
        _enum(DeathPlaceType, "death_place_type"), nullable=True
    )
    lugar_fallecimiento: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    causa_fallecimiento: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")

    nombre_responsable: Mapped[str] = mapped_column(db.String(160), nullable=False)
    rut_responsable: Mapped[str] = mapped_column(db.String(20), nullable=False)
    telefono_responsable: Mapped[str] = mapped_column(db.String(40), nullable=False)
    email_responsable: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    direccion_responsable: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    parentesco_responsable: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")

    plan_id: Mapped[int | None] = mapped_column(ForeignKey("plans.id"), nullable=True)
    coffin_id: Mapped[int | None] = mapped_column(ForeignKey("coffin_urns.id"), nullable=True)
    urn_id: Mapped[int | None] = mapped_column(ForeignKey("coffin_urns.id"), nullable=True)
    cemetery_crematorium_id: Mapped[int | None] = mapped_column(ForeignKey("cemetery_crematoriums.id"), nullable=True)
    vehiculo_principal_id: Mapped[int | None] = mapped_column(ForeignKey("vehicles.id"), nullable=True)

    total_items: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    monto_descuento: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    porcentaje_descuento: Mapped[Decimal] = mapped_column(db.Numeric(5, 2), nullable=False, default=0)
    total_final: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    fecha_recogida: Mapped[datetime | None] = mapped_column(nullable=True)
    fecha_inicio_velatorio: Mapped[datetime | None] = mapped_column(nullable=True)
    sala_velatorio: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    fecha_ceremonia_religiosa: Mapped[datetime | None] = mapped_column(nullable=True)
    fecha_inhumacion_cremacion: Mapped[datetime | None] = mapped_column(nullable=True)
    notas_logistica: Mapped[str] = mapped_column(db.String(2000), nullable=False, default="")

    created_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    branch = relationship("Branch")
    plan = relationship("Plan")
    coffin = relationship("CoffinUrn", foreign_keys=[coffin_id])
    urn = relationship("CoffinUrn", foreign_keys=[urn_id])
    cemetery = relationship("CemeteryCrematorium")
    vehiculo_principal = relationship("Vehicle")
    items = relationship(
        "ServiceItem", back_populates="service", cascade="all, delete-orphan", order_by="ServiceItem.id"
    )
    procedures = relationship(
        "ServiceProcedure", back_populates="service", cascade="all, delete-orphan", order_by="ServiceProcedure.id"
    )
    transactions = relationship(
        "Transaction",
        back_populates="service",
        cascade="all, delete-orphan",
        order_by="desc(Transaction.fecha_transaccion)",
    )
    assignments = relationship("ServiceAssignment", back_populates="service", cascade="all, delete-orphan")
    mortuary_quota = relationship(
        "MortuaryQuota", back_populates="service", cascade="all, delete-orphan", uselist=False
    )

    def recalculate_totals(self) -> None:
        self.total_items = sum((Decimal(item.monto_total or 0) for item in self.items), Decimal("0"))
        pct = Decimal(self.porcentaje_descuento or 0)
        discounted = self.total_items * (Decimal("100") - pct) / Decimal("100")
        total = discounted - Decimal(self.monto_descuento or 0)
        self.total_final = max(total, Decimal("0")).quantize(Decimal("0.01"))


class ServiceItem(db.Model):
    __tablename__ = "service_items"
    __table_args__ = (CheckConstraint("cantidad > 0", name="ck_service_item_cantidad"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    tipo_item: Mapped[ServiceItemType] = mapped_column(_enum(ServiceItemType, "service_item_type"), nullable=False)
    categoria: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")
    descripcion: Mapped[str] = mapped_column(db.String(255), nullable=False)
    cantidad: Mapped[int] = mapped_column(nullable=False, default=1)
    precio_unitario: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    tasa_impuesto: Mapped[Decimal] = mapped_column(db.Numeric(5, 2), nullable=False, default=0)
    monto_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    service = relationship("Service", back_populates="items")

    def compute_total(self) -> Decimal:
        base = Decimal(self.cantidad or 0) * Decimal(self.precio_unitario or 0)
        tax = base * Decimal(self.tasa_impuesto or 0) / Decimal("100")
        self.monto_total = (base + tax).quantize(Decimal("0.01"))
        return self.monto_total


class ServiceProcedure(db.Model):
    __tablename__ = "service_procedures"

    id: Mapped[int] = mapped_column(primary_key=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    tipo_tramite: Mapped[str] = mapped_column(db.String(120), nullable=False)
    estado: Mapped[ProcedureStatus] = mapped_column(
        _enum(ProcedureStatus, "procedure_status"), nullable=False, default=ProcedureStatus.PENDIENTE
    )
    fecha_completado: Mapped[date | None] = mapped_column(nullable=True)
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")

    service = relationship("Service", back_populates="procedures")


class Transaction(db.Model):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("funeral_home_id", "numero_transaccion", name="uq_transaction_home_numero"),
        CheckConstraint("monto > 0", name="ck_transaction_monto"),
        Index("ix_transaction_home_estado_fecha", "funeral_home_id", "estado", "fecha_transaccion"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    numero_transaccion: Mapped[str] = mapped_column(db.String(30), nullable=False)
    fecha_transaccion: Mapped[date] = mapped_column(nullable=False)
    monto: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    moneda: Mapped[str] = mapped_column(db.String(3), nullable=False, default="CLP")
    metodo_pago: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod, "payment_method"), nullable=False)
    cuenta_destino: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    estado: Mapped[TransactionStatus] = mapped_column(
        _enum(TransactionStatus, "transaction_status"), nullable=False, default=TransactionStatus.PENDIENTE
    )
    observaciones: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    service = relationship("Service", back_populates="transactions")


class Expense(db.Model):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("monto > 0", name="ck_expense_monto"),
        Index("ix_expense_home_fecha", "funeral_home_id", "fecha_egreso"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False)
    service_id: Mapped[int | None] = mapped_column(ForeignKey("services.id"), nullable=True)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id"), nullable=True)
    fecha_egreso: Mapped[date] = mapped_column(nullable=False)
    nombre_proveedor: Mapped[str] = mapped_column(db.String(160), nullable=False, default="")
    concepto: Mapped[str] = mapped_column(db.String(255), nullable=False)
    monto: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    categoria: Mapped[ExpenseCategory] = mapped_column(_enum(ExpenseCategory, "expense_category"), nullable=False)
    info_impuestos: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    numero_factura: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    estado: Mapped[ExpenseStatus] = mapped_column(
        _enum(ExpenseStatus, "expense_status"), nullable=False, default=ExpenseStatus.PENDIENTE_FACTURA
    )
    created_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    branch = relationship("Branch")
    service = relationship("Service")
    supplier = relationship("Supplier")


class ServiceAssignment(db.Model):
    __tablename__ = "service_assignments"
    __table_args__ = (UniqueConstraint("service_id", "collaborator_id", name="uq_assignment_service_collaborator"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    collaborator_id: Mapped[int] = mapped_column(ForeignKey("collaborators.id"), nullable=False, index=True)
    rol_en_servicio: Mapped[str] = mapped_column(db.String(120), nullable=False)
    tipo_extra: Mapped[str] = mapped_column(db.String(80), nullable=False, default="")
    monto_extra: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    comentarios: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    service = relationship("Service", back_populates="assignments")
    collaborator = relationship("Collaborator")


class MortuaryQuota(db.Model):
    # Scoped through its service; no tenant column of its own.
    __tablename__ = "mortuary_quotas"

    id: Mapped[int] = mapped_column(primary_key=True)
    service_id: Mapped[int] = mapped_column(
        ForeignKey("services.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    aplica: Mapped[bool] = mapped_column(nullable=False, default=False)
    entidad: Mapped[MortuaryQuotaEntity | None] = mapped_column(
        _enum(MortuaryQuotaEntity, "mortuary_quota_entity"), nullable=True
    )
    nombre_entidad: Mapped[str] = mapped_column(db.String(160), nullable=False, default="")
    monto_facturado: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    pagador: Mapped[MortuaryQuotaPayer | None] = mapped_column(
        _enum(MortuaryQuotaPayer, "mortuary_quota_payer"), nullable=True
    )
    estado: Mapped[MortuaryQuotaStatus] = mapped_column(
        _enum(MortuaryQuotaStatus, "mortuary_quota_status"), nullable=False, default=MortuaryQuotaStatus.NO_INICIADA
    )
    fecha_solicitud: Mapped[date | None] = mapped_column(nullable=True)
    fecha_resolucion: Mapped[date | None] = mapped_column(nullable=True)
    fecha_pago: Mapped[date | None] = mapped_column(nullable=True)
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    service = relationship("Service", back_populates="mortuary_quota")


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"
    __table_args__ = (Index("ix_activity_home_created", "funeral_home_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey("branches.id"), nullable=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    entity_type: Mapped[str] = mapped_column(db.String(60), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(db.String(20), nullable=False)
    detalles: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user = relationship("Profile")


class PayrollPeriod(db.Model):
    __tablename__ = "payroll_periods"
    __table_args__ = (CheckConstraint("fecha_fin >= fecha_inicio", name="ck_payroll_period_dates"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    fecha_inicio: Mapped[date] = mapped_column(nullable=False)
    fecha_fin: Mapped[date] = mapped_column(nullable=False)
    estado: Mapped[PayrollPeriodStatus] = mapped_column(
        _enum(PayrollPeriodStatus, "payroll_period_status"), nullable=False, default=PayrollPeriodStatus.ABIERTO
    )
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    total_bruto: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deducciones: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_neto: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    cantidad_colaboradores: Mapped[int] = mapped_column(nullable=False, default=0)
    fecha_cierre: Mapped[datetime | None] = mapped_column(nullable=True)
    cerrado_por: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    records = relationship(
        "PayrollRecord", back_populates="period", cascade="all, delete-orphan", order_by="PayrollRecord.id"
    )

    def refresh_totals(self) -> None:
        self.total_bruto = sum((Decimal(r.total_bruto or 0) for r in self.records), Decimal("0"))
        self.total_deducciones = sum((Decimal(r.total_deducciones or 0) for r in self.records), Decimal("0"))
        self.total_neto = sum((Decimal(r.total_neto or 0) for r in self.records), Decimal("0"))
        self.cantidad_colaboradores = len(self.records)


class PayrollRecord(db.Model):
    __tablename__ = "payroll_records"
    __table_args__ = (UniqueConstraint("period_id", "collaborator_id", name="uq_payroll_record_period_collaborator"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("payroll_periods.id", ondelete="CASCADE"), nullable=False)
    collaborator_id: Mapped[int] = mapped_column(ForeignKey("collaborators.id"), nullable=False)
    sueldo_base: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    dias_trabajados: Mapped[int] = mapped_column(nullable=False, default=0)
    cantidad_servicios: Mapped[int] = mapped_column(nullable=False, default=0)
    total_extras: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    bonos: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    comisiones: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    descuentos: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    adelantos: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_bruto: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deducciones: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_neto: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    aprobado: Mapped[bool] = mapped_column(nullable=False, default=False)
    fecha_aprobacion: Mapped[datetime | None] = mapped_column(nullable=True)
    aprobado_por: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")

    period = relationship("PayrollPeriod", back_populates="records")
    collaborator = relationship("Collaborator")
    receipt = relationship("PaymentReceipt", back_populates="record", uselist=False)

    @validates("dias_trabajados")
    def validate_dias(self, _key, value):
        if value is not None and not 0 <= int(value) <= 31:
            raise ValueError("Los días trabajados deben estar entre 0 y 31")
        return value

    def recalculate(self) -> None:
        def d(value) -> Decimal:
            return Decimal(value or 0)

        self.total_bruto = d(self.sueldo_base) + d(self.total_extras) + d(self.bonos) + d(self.comisiones)
        self.total_deducciones = d(self.descuentos) + d(self.adelantos)
        self.total_neto = self.total_bruto - self.total_deducciones


class PaymentReceipt(db.Model):
    __tablename__ = "payment_receipts"
    __table_args__ = (UniqueConstraint("funeral_home_id", "numero_recibo", name="uq_receipt_home_numero"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    payroll_record_id: Mapped[int] = mapped_column(ForeignKey("payroll_records.id"), unique=True, nullable=False)
    period_id: Mapped[int] = mapped_column(ForeignKey("payroll_periods.id"), nullable=False)
    collaborator_id: Mapped[int] = mapped_column(ForeignKey("collaborators.id"), nullable=False)
    numero_recibo: Mapped[str] = mapped_column(db.String(30), nullable=False)
    fecha_emision: Mapped[date] = mapped_column(nullable=False)
    colaborador_nombre: Mapped[str] = mapped_column(db.String(160), nullable=False)
    colaborador_rut: Mapped[str] = mapped_column(db.String(20), nullable=False)
    periodo_nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    sueldo_base: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_extras: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    bonos: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    comisiones: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    descuentos: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    adelantos: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_bruto: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deducciones: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_neto: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    estado: Mapped[PaymentReceiptStatus] = mapped_column(
        _enum(PaymentReceiptStatus, "payment_receipt_status"), nullable=False, default=PaymentReceiptStatus.GENERADO
    )
    metodo_pago: Mapped[str] = mapped_column(db.String(40), nullable=False, default="")
    fecha_pago: Mapped[date | None] = mapped_column(nullable=True)
    codigo_verificacion: Mapped[str] = mapped_column(db.String(20), nullable=False)
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    record = relationship("PayrollRecord", back_populates="receipt")
    period = relationship("PayrollPeriod")


class AgendaEvent(db.Model):
    __tablename__ = "agenda_events"
    __table_args__ = (
        CheckConstraint("fecha_fin > fecha_inicio", name="ck_agenda_event_dates"),
        Index("ix_agenda_event_home_inicio", "funeral_home_id", "fecha_inicio"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    funeral_home_id: Mapped[int] = mapped_column(ForeignKey("funeral_homes.id"), nullable=False, index=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False)
    service_id: Mapped[int | None] = mapped_column(ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    titulo: Mapped[str] = mapped_column(db.String(200), nullable=False)
    descripcion: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    tipo_evento: Mapped[AgendaEventType] = mapped_column(_enum(AgendaEventType, "agenda_event_type"), nullable=False)
    fecha_inicio: Mapped[datetime] = mapped_column(nullable=False)
    fecha_fin: Mapped[datetime] = mapped_column(nullable=False)
    todo_el_dia: Mapped[bool] = mapped_column(nullable=False, default=False)
    estado: Mapped[AgendaEventStatus] = mapped_column(
        _enum(AgendaEventStatus, "agenda_event_status"), nullable=False, default=AgendaEventStatus.PROGRAMADO
    )
    notas: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    created_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    branch = relationship("Branch")
    service = relationship("Service")
    bookings = relationship("ResourceBooking", back_populates="event", cascade="all, delete-orphan")


class ResourceBooking(db.Model):
    __tablename__ = "agenda_resource_bookings"
    __table_args__ = (Index("ix_booking_resource", "tipo_recurso", "recurso_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("agenda_events.id", ondelete="CASCADE"), nullable=False)
    tipo_recurso: Mapped[ResourceType] = mapped_column(_enum(ResourceType, "resource_type"), nullable=False)
    recurso_id: Mapped[int] = mapped_column(nullable=False)
    hora_inicio_reserva: Mapped[datetime | None] = mapped_column(nullable=True)
    hora_fin_reserva: Mapped[datetime | None] = mapped_column(nullable=True)
    notas: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")

    event = relationship("AgendaEvent", back_populates="bookings")


@event.listens_for(Service, "after_update")
def service_after_update(_mapper, connection, target: Service) -> None:
    # Status changes are traced even when the caller logs nothing else.
    state = inspect(target)
    if state.attrs.estado.history.has_changes():
        connection.execute(
            ActivityLog.__table__.insert().values(
                funeral_home_id=target.funeral_home_id,
                branch_id=target.branch_id,
                user_id=None,
                entity_type="service",
                entity_id=target.id,
                action=ActivityAction.UPDATE.value,
                detalles=f"Servicio {target.numero_servicio}: estado {ServiceStatus(target.estado).value}",
                created_at=utcnow(),
            )
        )


def seed_demo_data(session) -> FuneralHome:
    from app.core.demo_people import generate_demo_names

    home = FuneralHome(
        razon_social="Funeraria Sol SpA",
        nombre_fantasia="Funeraria Sol",
        rut="76.123.456-0",
        email="contacto@funerariasol.cl",
        direccion="Av. Libertador 1234, Santiago",
        telefono="+56 2 2345 6789",
    )
    session.add(home)
    session.flush()

    matriz = Branch(funeral_home_id=home.id, nombre="Casa matriz", direccion="Av. Libertador 1234", nombre_gerente="")
    norte = Branch(funeral_home_id=home.id, nombre="Sucursal Norte", direccion="Av. Independencia 500")
    session.add_all([matriz, norte])
    session.flush()

    people = [
        ("admin@funerariasol.cl", "admin123", "Carolina Fuentes", UserRole.ADMIN, [matriz, norte]),
        ("caja@funerariasol.cl", "caja123", "Rodrigo Araya", UserRole.CAJA, [matriz]),
        ("operaciones@funerariasol.cl", "operaciones123", "Paula Muñoz", UserRole.OPERACIONES, [matriz]),
    ]
    for email, password, full_name, role, branches in people:
        user = User(email=email, password_hash=generate_password_hash(password))
        session.add(user)
        session.flush()
        profile = Profile(
            user_id=user.id,
            funeral_home_id=home.id,
            nombre_completo=full_name,
            email=email,
            role=role,
        )
        session.add(profile)
        session.flush()
        for branch in branches:
            session.add(UserBranch(profile_id=profile.id, branch_id=branch.id))

    supplier = Supplier(
        funeral_home_id=home.id,
        nombre="Ataúdes del Sur",
        rut="77.654.321-7",
        tipo_negocio="Fabricante",
        informacion_contacto="ventas@ataudesdelsur.cl",
    )
    session.add(supplier)
    session.flush()

    session.add_all(
        [
            Plan(
                funeral_home_id=home.id,
                nombre="Plan Tradicional",
                descripcion="Velatorio, traslado y sepultación",
                tipo_servicio=ServiceType.INHUMACION,
                precio_base=Decimal("1200000"),
            ),
            Plan(
                funeral_home_id=home.id,
                nombre="Plan Cremación",
                descripcion="Velatorio y cremación",
                tipo_servicio=ServiceType.CREMACION,
                precio_base=Decimal("950000"),
            ),
            CoffinUrn(
                funeral_home_id=home.id,
                tipo=CoffinUrnType.ATAUD,
                nombre_comercial="Ataúd Roble Clásico",
                sku="AT-001",
                material="Roble",
                precio_venta=Decimal("650000"),
                costo=Decimal("380000"),
                stock_disponible=4,
                supplier_id=supplier.id,
            ),
            CoffinUrn(
                funeral_home_id=home.id,
                tipo=CoffinUrnType.URNA,
                nombre_comercial="Urna Cerámica",
                sku="UR-001",
                material="Cerámica",
                precio_venta=Decimal("120000"),
                costo=Decimal("60000"),
                stock_disponible=10,
            ),
            CemeteryCrematorium(
                funeral_home_id=home.id,
                nombre="Cementerio General",
                tipo=CemeteryType.CEMENTERIO,
                direccion="Av. Profesor Zañartu 951, Recoleta",
            ),
            CemeteryCrematorium(
                funeral_home_id=home.id,
                nombre="Crematorio Parque del Recuerdo",
                tipo=CemeteryType.CREMATORIO,
                direccion="Av. Américo Vespucio 555, Huechuraba",
            ),
            Vehicle(
                funeral_home_id=home.id,
                branch_id=matriz.id,
                placa="HXJK-21",
                tipo_vehiculo="Carroza",
                capacidad=1,
            ),
            Room(funeral_home_id=home.id, branch_id=matriz.id, nombre="Sala Esperanza", capacidad=60),
        ]
    )

    base_salaries = [Decimal("650000"), Decimal("580000")]
    for idx, (first_name, last_name) in enumerate(generate_demo_names(3)):
        is_employee = idx < len(base_salaries)
        session.add(
            Collaborator(
                funeral_home_id=home.id,
                branch_id=matriz.id,
                nombre_completo=f"{first_name} {last_name}",
                rut=DEMO_COLLABORATOR_RUTS[idx],
                tipo=CollaboratorType.EMPLEADO if is_employee else CollaboratorType.HONORARIO,
                cargo="Conductor" if idx == 0 else "Auxiliar funerario",
                sueldo_base=base_salaries[idx] if is_employee else Decimal("0"),
            )
        )
    session.commit()
    return home

