from __future__ import annotations

import sys
from contextlib import contextmanager
from datetime import date
from pathlib import Path

import pytest
from flask import g
from werkzeug.security import generate_password_hash

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import (
    Branch,
    FuneralHome,
    Plan,
    Profile,
    Service,
    ServiceType,
    User,
    UserBranch,
    UserRole,
    seed_demo_data,
)
from app.core.tenancy import build_scope


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    RATELIMIT_ENABLED = False


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, email: str, password: str):
    return client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=True)


@pytest.fixture
def login_admin(client):
    def _login_admin():
        return _login(client, "admin@funerariasol.cl", "admin123")

    return _login_admin


@pytest.fixture
def login_caja(client):
    def _login_caja():
        return _login(client, "caja@funerariasol.cl", "caja123")

    return _login_caja


@pytest.fixture
def login_operaciones(client):
    def _login_operaciones():
        return _login(client, "operaciones@funerariasol.cl", "operaciones123")

    return _login_operaciones


@pytest.fixture
def home(app):
    return FuneralHome.query.filter_by(rut="76.123.456-0").first()


@pytest.fixture
def as_profile(app):
    """Run service calls as the profile owning ``email``."""

    @contextmanager
    def _as_profile(email: str = "admin@funerariasol.cl", selected_branch_id: int | None = None):
        profile = Profile.query.filter_by(email=email).first()
        with app.test_request_context("/"):
            g.profile = profile
            g.tenant = build_scope(profile, selected_branch_id)
            yield g.tenant

    return _as_profile


@pytest.fixture
def second_tenant(app):
    """A second funeral home with its own admin, branch, plan and service."""
    other = FuneralHome(razon_social="Funeraria Luna Ltda", nombre_fantasia="Funeraria Luna", rut="11.111.111-1")
    db.session.add(other)
    db.session.flush()
    branch = Branch(funeral_home_id=other.id, nombre="Luna centro")
    user = User(email="admin@funerarialuna.cl", password_hash=generate_password_hash("luna1234"))
    db.session.add_all([branch, user])
    db.session.flush()
    profile = Profile(
        user_id=user.id,
        funeral_home_id=other.id,
        nombre_completo="Tomás Rojas",
        email=user.email,
        role=UserRole.ADMIN,
    )
    db.session.add(profile)
    db.session.flush()
    db.session.add(UserBranch(profile_id=profile.id, branch_id=branch.id))
    plan = Plan(
        funeral_home_id=other.id,
        nombre="Plan Luna",
        tipo_servicio=ServiceType.CREMACION,
        precio_base=800000,
    )
    db.session.add(plan)
    db.session.flush()
    service = Service(
        funeral_home_id=other.id,
        branch_id=branch.id,
        numero_servicio="SRV-2026-0001",
        tipo_servicio=ServiceType.CREMACION,
        nombre_fallecido="Ana Pérez Soto",
        fecha_fallecimiento=date(2026, 1, 5),
        nombre_responsable="Luis Pérez",
        rut_responsable="12.345.678-5",
        telefono_responsable="+56911112222",
    )
    db.session.add(service)
    db.session.commit()
    return {"home": other, "branch": branch, "profile": profile, "plan": plan, "service": service}


SERVICE_FORM = {
    "tipo_servicio": "inhumacion",
    "nombre_fallecido": "José Soto Contreras",
    "rut_fallecido": "9.876.543-3",
    "fecha_fallecimiento": "2026-10-01",
    "tipo_lugar_fallecimiento": "hospital",
    "nombre_responsable": "María Soto",
    "rut_responsable": "15.111.222-6",
    "telefono_responsable": "+56 9 8765 4321",
    "email_responsable": "maria@example.com",
}


@pytest.fixture
def service_form():
    return dict(SERVICE_FORM)
