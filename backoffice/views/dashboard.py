# backoffice/views/dashboard.py
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required

from backoffice.core.context import get_context
from backoffice.core.errors import InvalidInput
from backoffice.core.models import utcnow
from backoffice.core import reports

bp = Blueprint("dashboard", __name__)
reports_bp = Blueprint("reports", __name__)


def _int_arg(name: str, default: int, minimum: int = 0) -> int:
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidInput(f"'{name}' deve ser inteiro")
    if value < minimum:
        raise InvalidInput(f"'{name}' deve ser >= {minimum}")
    return value


@bp.get("/")
@login_required
def index():
    return jsonify(reports.dashboard(get_context()))


# ----------------------------
# Relatórios
# ----------------------------
@reports_bp.get("/stock")
@login_required
def stock():
    return jsonify(reports.stock_summary(get_context()))


@reports_bp.get("/monthly")
@login_required
def monthly():
    raw = (request.args.get("month") or "").strip()
    try:
        month = datetime.strptime(raw, "%Y-%m").date() if raw else utcnow().date()
    except ValueError:
        raise InvalidInput("Mês inválido, use AAAA-MM")
    return jsonify(reports.monthly_totals(get_context(), month))


@reports_bp.get("/upcoming")
@login_required
def upcoming():
    days = _int_arg("days", current_app.config.get("DASHBOARD_HORIZON_DAYS", 7))
    return jsonify(reports.upcoming_obligations(get_context(), days))


@reports_bp.get("/top-products")
@login_required
def top_products():
    limit = _int_arg("limit", current_app.config.get("REPORT_LIMIT", 10), minimum=1)
    return jsonify(items=reports.top_products(get_context(), limit))


@reports_bp.get("/top-customers")
@login_required
def top_customers():
    limit = _int_arg("limit", current_app.config.get("REPORT_LIMIT", 10), minimum=1)
    return jsonify(items=reports.top_customers(get_context(), limit))


@reports_bp.get("/stock-drift")
@login_required
def stock_drift():
    return jsonify(items=reports.stock_drift(get_context()))
