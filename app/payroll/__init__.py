from flask import Blueprint

payroll_bp = Blueprint("payroll", __name__, url_prefix="/nomina")

from app.payroll import routes  # noqa: E402,F401
