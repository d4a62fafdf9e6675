from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from functools import reduce

import click
from flask import Flask, abort, g, jsonify, redirect, render_template, request, url_for
from flask_login import login_required

from app.admin import admin_bp
from app.admin.branches import user_branches
from app.core.auth import api_auth_bp, auth_bp
from app.core.config import Config
from app.core.extensions import db, limiter, login_manager, migrate
from app.core.labels import label
from app.core.log_config import configure_logging
from app.core.models import FuneralHome, PayrollPeriod, User, seed_demo_data
from app.core.permissions import has_capability, require_tenant
from app.core.rut import mask_rut
from app.core.tenancy import load_tenant_context
from app.core.utils import format_date, money
from app.finance import finance_bp
from app.finance.reports import dashboard_data
from app.operations import operations_bp
from app.payroll import payroll_bp

logger = logging.getLogger(__name__)


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    app.before_request(load_tenant_context)
    app.context_processor(_template_context)
    app.add_template_filter(cell, "cell")

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(operations_bp)
    app.register_blueprint(finance_bp)
    app.register_blueprint(payroll_bp)

    register_cli(app)
    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    @app.get("/")
    def home():
        return redirect(url_for("dashboard_page"))

    @app.get("/dashboard")
    @login_required
    @require_tenant
    def dashboard_page():
        return render_template("dashboard.html", data=dashboard_data())

    def _wants_json() -> bool:
        return request.path.startswith("/api/")

    @app.errorhandler(401)
    def unauthorized(_error):
        if _wants_json():
            return jsonify({"success": False, "error": {"code": "UNAUTHORIZED", "message": "No autenticado"}}), 401
        return redirect(url_for("auth.login"))

    @app.errorhandler(403)
    def forbidden(_error):
        if _wants_json():
            return jsonify({"success": False, "error": {"code": "UNAUTHORIZED", "message": "No autorizado"}}), 403
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found(_error):
        if _wants_json():
            return jsonify({"success": False, "error": {"code": "NOT_FOUND", "message": "No encontrado"}}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(429)
    def too_many_requests(_error):
        message = "Demasiados intentos. Intenta nuevamente más tarde."
        if _wants_json():
            return jsonify({"error": message}), 429
        return render_template("errors/429.html", message=message), 429

    @app.errorhandler(500)
    def server_error(_error):
        db.session.rollback()
        logger.error("Unhandled error on %s %s", request.method, request.path)
        if _wants_json():
            return jsonify({"success": False, "error": {"code": "SERVER_ERROR", "message": "Error interno"}}), 500
        return render_template("errors/500.html"), 500


def register_cli(app: Flask) -> None:
    @app.cli.command("create-tables")
    def create_tables() -> None:
        """Create every table directly, without migrations."""
        db.create_all()
        click.echo("Tables created.")

    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed a demo funeral home with branches, users and catalogs."""
        if reset:
            db.drop_all()
            db.create_all()
        if not FuneralHome.query.first():
            home = seed_demo_data(db.session)
            click.echo(f"Demo data seeded for {home.nombre_fantasia}.")
        else:
            click.echo("Seed skipped: existing funeral homes found.")

    @app.cli.command("payroll-calculate")
    @click.option("--period-id", type=int, required=True, help="Payroll period to calculate.")
    @click.option("--include-inactive", is_flag=True, help="Also calculate inactive collaborators.")
    def payroll_calculate(period_id: int, include_inactive: bool) -> None:
        """Create or refresh payroll records for one period."""
        from app.payroll.services import recalculate_period

        period = db.session.get(PayrollPeriod, period_id)
        if period is None:
            click.echo(f"Payroll period {period_id} not found.")
            return
        result = recalculate_period(period, include_inactive=include_inactive)
        click.echo(f"[{period.nombre}] created={result['created']} updated={result['updated']}")


def cell(obj: object, column) -> str:
    """Render one list column or form field of ``obj`` as display text."""
    attr = getattr(column, "attr", None) or column.name
    try:
        value = reduce(getattr, attr.split("."), obj)
    except AttributeError:
        value = None
    if column.kind == "select" and hasattr(column, "resolved_options"):
        raw = value.value if isinstance(value, Enum) else value
        for key, text in column.resolved_options():
            if str(key) == str(raw):
                return text
        return "" if raw is None else label(raw)
    if column.kind == "money":
        return money(value)
    if column.kind == "rut":
        return mask_rut(value)
    if column.kind in ("date", "datetime"):
        return format_date(value)
    if column.kind in ("bool", "checkbox"):
        return "Sí" if value else "No"
    if column.kind == "label" or isinstance(value, Enum):
        return label(value)
    return "" if value is None else str(value)


def _template_context() -> dict[str, object]:
    scope = getattr(g, "tenant", None)
    branches = []
    if scope is not None:
        branches = user_branches()
    return {
        "label": label,
        "money": money,
        "format_date": format_date,
        "scope": scope,
        "profile": getattr(g, "profile", None),
        "user_branches": branches,
        "can": lambda capability: scope is not None and has_capability(scope.role, capability),
        "today": date.today(),
    }


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return User.query.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized_request():
    abort(401)
