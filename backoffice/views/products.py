# backoffice/views/products.py
from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from backoffice.core.context import get_context
from backoffice.core.forms import ProductForm, validated
from backoffice.core.services import create_product, get_product, list_products, update_product
from backoffice.views.serializers import product_to_dict

bp = Blueprint("products", __name__)


# ----------------------------
# Listagem
# ----------------------------
@bp.get("/")
@login_required
def list_():
    q = (request.args.get("q") or "").strip()
    include_inactive = request.args.get("all", "1") != "0"
    items = list_products(get_context(), q=q or None, include_inactive=include_inactive)
    return jsonify(items=[product_to_dict(p) for p in items])


# ----------------------------
# Criar
# ----------------------------
@bp.post("/")
@login_required
def create():
    form = validated(ProductForm())
    p = create_product(get_context(), form.product_data(), opening_stock=form.opening_stock.data)
    return jsonify(product_to_dict(p)), 201


# ----------------------------
# Detalhe / editar
# ----------------------------
@bp.get("/<int:pid>")
@login_required
def detail(pid: int):
    return jsonify(product_to_dict(get_product(get_context(), pid)))


@bp.put("/<int:pid>")
@login_required
def edit(pid: int):
    form = validated(ProductForm())
    p = update_product(get_context(), pid, form.product_data())
    return jsonify(product_to_dict(p))
