from __future__ import annotations

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, url_for
from flask_login import current_user, login_required, login_user, logout_user

from app.core.accounts import authenticate, change_password, create_account, update_own_profile
from app.core.errors import ActionError, ServerError, ValidationError
from app.core.extensions import limiter
from app.core.permissions import require_tenant
from app.core.tenancy import select_branch

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")
api_auth_bp = Blueprint("api_auth", __name__, url_prefix="/api/auth")


def _login_limit() -> str:
    return current_app.config["LOGIN_RATE_LIMIT"]


def _signup_limit() -> str:
    return current_app.config["SIGNUP_RATE_LIMIT"]


@auth_bp.get("/login")
def login():
    if current_user.is_authenticated:
        return redirect(url_for("dashboard_page"))
    return render_template("auth/login.html")


@auth_bp.post("/login")
@limiter.limit(_login_limit)
def login_post():
    email = request.form.get("email", "").strip().lower()
    password = request.form.get("password", "")
    try:
        user = authenticate(email, password)
    except ActionError as exc:
        flash(str(exc), "error")
        return redirect(url_for("auth.login"))
    login_user(user)
    return redirect(url_for("dashboard_page"))


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return redirect(url_for("auth.login"))


@auth_bp.get("/registro")
def signup():
    return render_template("auth/signup.html", form={})


@auth_bp.post("/registro")
@limiter.limit(_signup_limit)
def signup_post():
    form = {k: v for k, v in request.form.items()}
    try:
        create_account(form)
    except ValidationError as exc:
        flash(str(exc), "error")
        return render_template("auth/signup.html", form=form, field_errors=exc.field_errors), 400
    except ServerError as exc:
        flash(str(exc), "error")
        return render_template("auth/signup.html", form=form, field_errors={}), 500
    flash("Cuenta creada. Ya puedes iniciar sesión.", "success")
    return redirect(url_for("auth.login"))


@api_auth_bp.post("/signup")
@limiter.limit(_signup_limit)
def api_signup():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Datos inválidos. Revisa la información ingresada."}), 400
    try:
        create_account(payload)
    except ValidationError as exc:
        body = {"error": exc.message}
        if exc.field_errors:
            body["fieldErrors"] = exc.field_errors
        return jsonify(body), 400
    except ServerError as exc:
        body = {"error": exc.message}
        if current_app.debug and exc.__cause__ is not None:
            body["details"] = str(exc.__cause__)
        return jsonify(body), 500
    return jsonify({"success": True}), 200


@auth_bp.post("/sucursal")
@login_required
@require_tenant
def choose_branch():
    raw = (request.form.get("branch_id") or "").strip()
    try:
        select_branch(int(raw) if raw.isdigit() else None)
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(request.form.get("next") or request.referrer or url_for("dashboard_page"))


@auth_bp.get("/mi-perfil")
@login_required
@require_tenant
def my_profile():
    return render_template("auth/profile.html", profile=g.profile)


@auth_bp.post("/mi-perfil")
@login_required
@require_tenant
def my_profile_post():
    try:
        update_own_profile(g.profile, request.form)
        flash("Perfil actualizado", "success")
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(url_for("auth.my_profile"))


@auth_bp.post("/mi-perfil/password")
@login_required
@require_tenant
def my_password_post():
    try:
        change_password(
            current_user,
            request.form.get("current_password", ""),
            request.form.get("new_password", ""),
            request.form.get("confirm_password", ""),
        )
        flash("Contraseña actualizada", "success")
    except ValueError as exc:
        flash(str(exc), "error")
    return redirect(url_for("auth.my_profile"))
