from __future__ import annotations

from flask import abort, flash, redirect, render_template, request, url_for
from flask_login import login_required

from app.admin import admin_bp
from app.admin import branches, catalogs, users
from app.core.crud import Column, CrudResource, Field, register_crud
from app.core.errors import NotFoundError
from app.core.labels import choices
from app.core.models import CemeteryType, CoffinUrnType, ServiceType, UserRole, VehicleStatus
from app.core.permissions import require_capability, require_tenant

ACTIVE_FILTER = Field("estado_activo", "Estado", "select", options=[("true", "Activos"), ("false", "Inactivos")])
SEARCH_FILTER = Field("search", "Buscar", placeholder="Nombre...")

register_crud(
    admin_bp,
    CrudResource(
        name="plans",
        url="/planes",
        title="Planes",
        singular="Plan",
        list_fn=catalogs.list_plans,
        get_fn=catalogs.get_plan,
        create_fn=catalogs.create_plan,
        update_fn=catalogs.update_plan,
        delete_fn=catalogs.delete_plan,
        write_capability="catalogs.manage",
        columns=[
            Column("Nombre", "nombre", link=True),
            Column("Tipo", "tipo_servicio", "label"),
            Column("Precio base", "precio_base", "money"),
            Column("Activo", "estado_activo", "bool"),
        ],
        fields=[
            Field("nombre", "Nombre", required=True),
            Field("tipo_servicio", "Tipo de servicio", "select", required=True, options=choices(ServiceType)),
            Field("precio_base", "Precio base", "number", required=True),
            Field("descripcion", "Descripción", "textarea"),
            Field("notas", "Notas", "textarea"),
            Field("estado_activo", "Activo", "checkbox"),
        ],
        filters=[
            SEARCH_FILTER,
            Field("tipo_servicio", "Tipo", "select", options=choices(ServiceType)),
            ACTIVE_FILTER,
        ],
    ),
)

register_crud(
    admin_bp,
    CrudResource(
        name="coffin_urns",
        url="/ataudes-urnas",
        title="Ataúdes y urnas",
        singular="Producto",
        list_fn=catalogs.list_coffin_urns,
        get_fn=catalogs.get_coffin_urn,
        create_fn=catalogs.create_coffin_urn,
        update_fn=catalogs.update_coffin_urn,
        delete_fn=catalogs.delete_coffin_urn,
        write_capability="catalogs.manage",
        columns=[
            Column("Nombre", "nombre_comercial", link=True),
            Column("Tipo", "tipo", "label"),
            Column("SKU", "sku"),
            Column("Precio", "precio_venta", "money"),
            Column("Stock", "stock_disponible"),
            Column("Activo", "estado_activo", "bool"),
        ],
        fields=[
            Field("tipo", "Tipo", "select", required=True, options=choices(CoffinUrnType)),
            Field("nombre_comercial", "Nombre comercial", required=True),
            Field("sku", "SKU"),
            Field("material", "Material"),
            Field("tamano", "Tamaño"),
            Field("categoria", "Categoría"),
            Field("precio_venta", "Precio de venta", "number", required=True),
            Field("costo", "Costo", "number"),
            Field("stock_disponible", "Stock disponible", "number"),
            Field("supplier_id", "Proveedor", "select", options=catalogs.supplier_options),
            Field("estado_activo", "Activo", "checkbox"),
        ],
        filters=[
            Field("search", "Buscar", placeholder="Nombre, SKU o material"),
            Field("tipo", "Tipo", "select", options=choices(CoffinUrnType)),
            ACTIVE_FILTER,
        ],
    ),
)

register_crud(
    admin_bp,
    CrudResource(
        name="cemeteries",
        url="/cementerios",
        title="Cementerios y crematorios",
        singular="Cementerio/crematorio",
        list_fn=catalogs.list_cemeteries,
        get_fn=catalogs.get_cemetery,
        create_fn=catalogs.create_cemetery,
        update_fn=catalogs.update_cemetery,
        delete_fn=catalogs.delete_cemetery,
        write_capability="catalogs.manage",
        columns=[
            Column("Nombre", "nombre", link=True),
            Column("Tipo", "tipo", "label"),
            Column("Dirección", "direccion"),
            Column("Activo", "estado_activo", "bool"),
        ],
        fields=[
            Field("nombre", "Nombre", required=True),
            Field("tipo", "Tipo", "select", required=True, options=choices(CemeteryType)),
            Field("direccion", "Dirección"),
            Field("informacion_contacto", "Contacto", "textarea"),
            Field("notas", "Notas", "textarea"),
            Field("estado_activo", "Activo", "checkbox"),
        ],
        filters=[SEARCH_FILTER, Field("tipo", "Tipo", "select", options=choices(CemeteryType)), ACTIVE_FILTER],
    ),
)

register_crud(
    admin_bp,
    CrudResource(
        name="vehicles",
        url="/vehiculos",
        title="Vehículos",
        singular="Vehículo",
        list_fn=catalogs.list_vehicles,
        get_fn=catalogs.get_vehicle,
        create_fn=catalogs.create_vehicle,
        update_fn=catalogs.update_vehicle,
        delete_fn=catalogs.delete_vehicle,
        write_capability="catalogs.manage",
        columns=[
            Column("Placa", "placa", link=True),
            Column("Tipo", "tipo_vehiculo"),
            Column("Capacidad", "capacidad"),
            Column("Estado", "estado", "label"),
        ],
        fields=[
            Field("placa", "Placa", required=True, placeholder="ABCD-12"),
            Field("tipo_vehiculo", "Tipo de vehículo", required=True, placeholder="Carroza"),
            Field("capacidad", "Capacidad", "number"),
            Field("estado", "Estado", "select", options=choices(VehicleStatus)),
            Field("branch_id", "Sucursal", "select", options=catalogs.branch_options),
            Field("notas", "Notas", "textarea"),
        ],
        filters=[
            Field("search", "Buscar", placeholder="Placa o tipo"),
            Field("estado", "Estado", "select", options=choices(VehicleStatus)),
            Field("branch_id", "Sucursal", "select", options=catalogs.branch_options),
        ],
    ),
)

register_crud(
    admin_bp,
    CrudResource(
        name="suppliers",
        url="/proveedores",
        title="Proveedores",
        singular="Proveedor",
        list_fn=catalogs.list_suppliers,
        get_fn=catalogs.get_supplier,
        create_fn=catalogs.create_supplier,
        update_fn=catalogs.update_supplier,
        delete_fn=catalogs.delete_supplier,
        write_capability="catalogs.manage",
        columns=[
            Column("Nombre", "nombre", link=True),
            Column("RUT", "rut"),
            Column("Rubro", "tipo_negocio"),
            Column("Activo", "estado_activo", "bool"),
        ],
        fields=[
            Field("nombre", "Nombre", required=True),
            Field("rut", "RUT", placeholder="76.123.456-0"),
            Field("tipo_negocio", "Rubro"),
            Field("informacion_contacto", "Contacto", "textarea"),
            Field("estado_activo", "Activo", "checkbox"),
        ],
        filters=[Field("search", "Buscar", placeholder="Nombre o RUT"), ACTIVE_FILTER],
    ),
)

register_crud(
    admin_bp,
    CrudResource(
        name="branches",
        url="/sucursales",
        title="Sucursales",
        singular="Sucursal",
        list_fn=branches.list_branches,
        get_fn=branches.get_branch,
        create_fn=branches.create_branch,
        update_fn=branches.update_branch,
        write_capability="branches.manage",
        read_capability="branches.manage",
        detail_template="admin/branch_detail.html",
        detail_context=lambda branch: {"stats": branches.branch_stats(branch.id)},
        columns=[
            Column("Nombre", "nombre", link=True),
            Column("Dirección", "direccion"),
            Column("Gerente", "nombre_gerente"),
            Column("Activa", "estado_activo", "bool"),
        ],
        fields=[
            Field("nombre", "Nombre", required=True),
            Field("direccion", "Dirección"),
            Field("telefono", "Teléfono"),
            Field("nombre_gerente", "Gerente"),
        ],
        filters=[SEARCH_FILTER, ACTIVE_FILTER],
    ),
)


@admin_bp.post("/sucursales/<int:branch_id>/desactivar")
@login_required
@require_tenant
@require_capability("branches.manage")
def branch_deactivate(branch_id: int):
    try:
        branch = branches.deactivate_branch(branch_id)
        flash(f"Sucursal {branch.nombre} desactivada", "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(url_for("admin.branches_detail", record_id=branch_id))


@admin_bp.post("/sucursales/<int:branch_id>/reactivar")
@login_required
@require_tenant
@require_capability("branches.manage")
def branch_reactivate(branch_id: int):
    try:
        branch = branches.reactivate_branch(branch_id)
        flash(f"Sucursal {branch.nombre} reactivada", "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(url_for("admin.branches_detail", record_id=branch_id))


# Users

@admin_bp.get("/usuarios")
@login_required
@require_tenant
@require_capability("users.manage")
def users_list():
    filters = {
        "role": request.args.get("role", "").strip(),
        "estado_activo": request.args.get("estado_activo", "").strip(),
        "search": request.args.get("search", "").strip(),
    }
    return render_template(
        "admin/users.html",
        rows=users.list_users(filters),
        filters=filters,
        roles=choices(UserRole),
        branch_choices=catalogs.branch_options(),
    )


@admin_bp.post("/usuarios/invitar")
@login_required
@require_tenant
@require_capability("users.manage")
def users_invite():
    try:
        profile, temporary_password = users.invite_user(request.form, request.form.getlist("branch_ids"))
    except ValueError as exc:
        flash(str(exc), "error")
        return redirect(url_for("admin.users_list"))
    flash(f"Usuario {profile.email} creado. Contraseña temporal: {temporary_password}", "success")
    return redirect(url_for("admin.user_detail", profile_id=profile.id))


@admin_bp.get("/usuarios/<int:profile_id>")
@login_required
@require_tenant
@require_capability("users.manage")
def user_detail(profile_id: int):
    try:
        profile = users.get_user(profile_id)
    except NotFoundError:
        abort(404)
    assigned = {link.branch_id for link in profile.branch_links}
    return render_template(
        "admin/user_detail.html",
        profile=profile,
        roles=choices(UserRole),
        assigned=[link.branch for link in profile.branch_links],
        available=[(bid, name) for bid, name in catalogs.branch_options() if bid not in assigned],
    )


def _user_action(profile_id: int, action, message: str):
    try:
        action()
        flash(message, "success")
    except NotFoundError:
        abort(404)
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(url_for("admin.user_detail", profile_id=profile_id))


@admin_bp.post("/usuarios/<int:profile_id>")
@login_required
@require_tenant
@require_capability("users.manage")
def user_update(profile_id: int):
    return _user_action(profile_id, lambda: users.update_user(profile_id, request.form), "Usuario actualizado")


@admin_bp.post("/usuarios/<int:profile_id>/rol")
@login_required
@require_tenant
@require_capability("users.manage")
def user_role(profile_id: int):
    role = request.form.get("role", "")
    return _user_action(profile_id, lambda: users.update_user_role(profile_id, role), "Rol actualizado")


@admin_bp.post("/usuarios/<int:profile_id>/desactivar")
@login_required
@require_tenant
@require_capability("users.manage")
def user_deactivate(profile_id: int):
    return _user_action(profile_id, lambda: users.deactivate_user(profile_id), "Usuario desactivado")


@admin_bp.post("/usuarios/<int:profile_id>/reactivar")
@login_required
@require_tenant
@require_capability("users.manage")
def user_reactivate(profile_id: int):
    return _user_action(profile_id, lambda: users.reactivate_user(profile_id), "Usuario reactivado")


@admin_bp.post("/usuarios/<int:profile_id>/sucursales")
@login_required
@require_tenant
@require_capability("users.manage")
def user_assign_branch(profile_id: int):
    raw = (request.form.get("branch_id") or "").strip()
    if not raw.isdigit():
        flash("Selecciona una sucursal", "error")
        return redirect(url_for("admin.user_detail", profile_id=profile_id))
    return _user_action(profile_id, lambda: users.assign_branch(profile_id, int(raw)), "Sucursal asignada")


@admin_bp.post("/usuarios/<int:profile_id>/sucursales/<int:branch_id>/quitar")
@login_required
@require_tenant
@require_capability("users.manage")
def user_remove_branch(profile_id: int, branch_id: int):
    return _user_action(profile_id, lambda: users.remove_branch(profile_id, branch_id), "Sucursal quitada")
