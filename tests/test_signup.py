from __future__ import annotations

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from app.core import accounts
from app.core.models import Branch, FuneralHome, Profile, User, UserBranch, UserRole

from conftest import TestConfig

SIGNUP = {
    "fullName": "Elena Castillo",
    "email": "elena@funerariaalba.cl",
    "password": "secreta123",
    "funeralHomeLegalName": "Funeraria Alba SpA",
    "funeralHomeTradeName": "Funeraria Alba",
    "funeralHomeRut": "76543210-3",
    "branchName": "Alba centro",
}


def test_form_signup_creates_tenant_branch_and_admin(client):
    response = client.post("/auth/registro", data=SIGNUP)
    assert response.status_code == 302
    assert "/auth/login" in response.headers["Location"]

    home = FuneralHome.query.filter_by(rut="76.543.210-3").first()
    assert home is not None
    assert home.razon_social == "Funeraria Alba SpA"
    branch = Branch.query.filter_by(funeral_home_id=home.id).one()
    assert branch.nombre == "Alba centro"
    profile = Profile.query.filter_by(email="elena@funerariaalba.cl").one()
    assert profile.role == UserRole.ADMIN
    assert profile.funeral_home_id == home.id
    assert UserBranch.query.filter_by(profile_id=profile.id, branch_id=branch.id).count() == 1

    login = client.post(
        "/auth/login",
        data={"email": "elena@funerariaalba.cl", "password": "secreta123"},
        follow_redirects=True,
    )
    assert login.status_code == 200
    assert "Panel".encode() in login.data


def test_api_signup_success(client):
    response = client.post("/api/auth/signup", json=SIGNUP)
    assert response.status_code == 200
    assert response.get_json() == {"success": True}
    assert User.query.filter_by(email="elena@funerariaalba.cl").count() == 1


def test_signup_without_branch_name_uses_configured_default(app, client):
    app.config["DEFAULT_BRANCH_NAME"] = "Sede principal"
    payload = {key: value for key, value in SIGNUP.items() if key != "branchName"}
    response = client.post("/api/auth/signup", json=payload)
    assert response.status_code == 200

    home = FuneralHome.query.filter_by(rut="76.543.210-3").one()
    assert Branch.query.filter_by(funeral_home_id=home.id).one().nombre == "Sede principal"


def test_api_signup_reports_field_errors(client):
    response = client.post("/api/auth/signup", json={"email": "no-es-correo", "password": "123"})
    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == accounts.INVALID_SIGNUP_MESSAGE
    assert {"fullName", "email", "password", "funeralHomeLegalName", "funeralHomeRut"} <= set(body["fieldErrors"])


def test_api_signup_rejects_non_object_body(client):
    response = client.post("/api/auth/signup", json=["no", "objeto"])
    assert response.status_code == 400
    assert response.get_json()["error"] == accounts.INVALID_SIGNUP_MESSAGE


def test_signup_with_existing_email_is_rejected(client):
    response = client.post("/api/auth/signup", json={**SIGNUP, "email": "admin@funerariasol.cl"})
    assert response.status_code == 400
    assert response.get_json() == {"error": accounts.DUPLICATE_EMAIL_MESSAGE}
    assert FuneralHome.query.filter_by(rut="76.543.210-3").first() is None


def test_signup_with_existing_rut_rolls_back_identity(client):
    response = client.post("/api/auth/signup", json={**SIGNUP, "funeralHomeRut": "76.123.456-0"})
    assert response.status_code == 400
    assert response.get_json() == {"error": accounts.DUPLICATE_TENANT_MESSAGE}
    assert User.query.filter_by(email="elena@funerariaalba.cl").first() is None
    assert FuneralHome.query.count() == 1


def test_signup_failure_leaves_no_partial_rows(client, monkeypatch):
    def broken_link(profile, branch):
        raise SQLAlchemyError("branch link failed")

    monkeypatch.setattr(accounts, "_assign_branch", broken_link)
    response = client.post("/api/auth/signup", json=SIGNUP)

    assert response.status_code == 500
    assert response.get_json()["error"] == accounts.TENANT_FAILURE_MESSAGE
    assert User.query.filter_by(email="elena@funerariaalba.cl").first() is None
    assert FuneralHome.query.filter_by(rut="76.543.210-3").first() is None
    assert Branch.query.filter_by(nombre="Alba centro").first() is None


def test_form_signup_shows_validation_error(client):
    response = client.post("/auth/registro", data={**SIGNUP, "password": "corta"})
    assert response.status_code == 400
    assert accounts.INVALID_SIGNUP_MESSAGE.encode() in response.data


class LimitedConfig(TestConfig):
    RATELIMIT_ENABLED = True
    SIGNUP_RATE_LIMIT = "2 per hour"


@pytest.fixture
def limited_client():
    app = create_app(LimitedConfig)
    return app.test_client()


def test_signup_is_rate_limited(limited_client):
    statuses = [limited_client.post("/api/auth/signup", json={}).status_code for _ in range(3)]
    assert statuses == [400, 400, 429]
    response = limited_client.post("/api/auth/signup", json={})
    assert response.get_json() == {"error": "Demasiados intentos. Intenta nuevamente más tarde."}
