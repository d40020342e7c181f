# backoffice/views/financial.py
from __future__ import annotations

from datetime import date

from flask import Blueprint, jsonify, request, abort
from flask_login import login_required

from backoffice.core.context import get_context
from backoffice.core.errors import InvalidInput
from backoffice.core.models import utcnow
from backoffice.core.reports import list_obligations, open_totals
from backoffice.core.services import settle, get_obligation, list_open_due_by
from backoffice.views.serializers import obligation_to_dict

bp = Blueprint("financial", __name__)

_KINDS = {"payables": "payable", "receivables": "receivable"}
_STATUSES = {"payable": ("open", "paid"), "receivable": ("open", "received")}


def _kind_or_404(plural: str) -> str:
    kind = _KINDS.get(plural)
    if kind is None:
        abort(404)
    return kind


# ----------------------------
# Listagens
# ----------------------------
@bp.get("/<string:plural>")
@login_required
def list_(plural: str):
    kind = _kind_or_404(plural)
    status = (request.args.get("status") or "").strip() or None
    if status and status not in _STATUSES[kind]:
        raise InvalidInput(f"Status inválido: {status}")
    return jsonify(items=list_obligations(get_context(), kind, status=status))


@bp.get("/summary")
@login_required
def summary():
    return jsonify(open_totals(get_context()))


@bp.get("/due")
@login_required
def due():
    """Contas em aberto vencendo até `cutoff` (AAAA-MM-DD, padrão hoje). `kind` filtra o tipo."""
    raw = (request.args.get("cutoff") or "").strip()
    try:
        cutoff = date.fromisoformat(raw) if raw else utcnow().date()
    except ValueError:
        raise InvalidInput("Data inválida, use AAAA-MM-DD")
    kind = (request.args.get("kind") or "").strip() or None
    kinds = [kind] if kind else ["payable", "receivable"]
    ctx = get_context()
    out = {"cutoff": cutoff}
    for k in kinds:
        out[f"{k}s"] = [obligation_to_dict(o, k) for o in list_open_due_by(ctx, cutoff, k)]
    return jsonify(out)


# ----------------------------
# Baixa
# ----------------------------
@bp.get("/<string:plural>/<int:obligation_id>")
@login_required
def detail(plural: str, obligation_id: int):
    kind = _kind_or_404(plural)
    return jsonify(obligation_to_dict(get_obligation(get_context(), obligation_id, kind), kind))


@bp.post("/<string:plural>/<int:obligation_id>/settle")
@login_required
def settle_(plural: str, obligation_id: int):
    kind = _kind_or_404(plural)
    ctx = get_context()
    settle(ctx, obligation_id, kind)
    return jsonify(obligation_to_dict(get_obligation(ctx, obligation_id, kind), kind))
