# backoffice/views/parties.py
from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from backoffice.core.context import get_context
from backoffice.core.forms import PartyForm, validated
from backoffice.core.services import create_party, get_party, list_parties, update_party
from backoffice.views.serializers import party_to_dict


def make_blueprint(kind: str, name: str) -> Blueprint:
    """Clientes e fornecedores têm o mesmo cadastro; muda só o tipo."""
    bp = Blueprint(name, __name__)

    @bp.get("/")
    @login_required
    def list_():
        q = (request.args.get("q") or "").strip() or None
        return jsonify(items=[party_to_dict(x) for x in list_parties(get_context(), kind, q=q)])

    @bp.post("/")
    @login_required
    def create():
        form = validated(PartyForm())
        party = create_party(get_context(), kind, form.data)
        return jsonify(party_to_dict(party)), 201

    @bp.get("/<int:party_id>")
    @login_required
    def detail(party_id: int):
        return jsonify(party_to_dict(get_party(get_context(), kind, party_id)))

    @bp.put("/<int:party_id>")
    @login_required
    def edit(party_id: int):
        form = validated(PartyForm())
        party = update_party(get_context(), kind, party_id, form.data)
        return jsonify(party_to_dict(party))

    return bp


customers_bp = make_blueprint("customer", "customers")
suppliers_bp = make_blueprint("supplier", "suppliers")
