# backoffice/views/ledger.py
from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from backoffice.core.context import get_context
from backoffice.core.forms import SaleForm, PurchaseForm, parse_items, validated
from backoffice.core.reports import list_sales, list_purchases
from backoffice.core.services import record_sale, record_purchase, get_sale, get_purchase
from backoffice.views.serializers import sale_to_dict, purchase_to_dict

sales_bp = Blueprint("sales", __name__)
purchases_bp = Blueprint("purchases", __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# ----------------------------
# Vendas
# ----------------------------
@sales_bp.get("/")
@login_required
def sales_list():
    return jsonify(items=list_sales(get_context(), q=request.args.get("q")))


@sales_bp.post("/")
@login_required
def sales_create():
    form = validated(SaleForm())
    items = parse_items(_body().get("items"))
    ctx = get_context()
    sale_id = record_sale(
        ctx, form.customer_id.data, items,
        discount=form.discount.data,
        idempotency_key=form.idempotency_key.data or request.headers.get("Idempotency-Key"),
    )
    return jsonify(sale_to_dict(get_sale(ctx, sale_id))), 201


@sales_bp.get("/<int:sale_id>")
@login_required
def sales_detail(sale_id: int):
    return jsonify(sale_to_dict(get_sale(get_context(), sale_id)))


# ----------------------------
# Compras
# ----------------------------
@purchases_bp.get("/")
@login_required
def purchases_list():
    return jsonify(items=list_purchases(get_context(), q=request.args.get("q")))


@purchases_bp.post("/")
@login_required
def purchases_create():
    form = validated(PurchaseForm())
    items = parse_items(_body().get("items"))
    ctx = get_context()
    purchase_id = record_purchase(
        ctx, form.supplier_id.data, items,
        notes=form.notes.data or None,
        idempotency_key=form.idempotency_key.data or request.headers.get("Idempotency-Key"),
    )
    return jsonify(purchase_to_dict(get_purchase(ctx, purchase_id))), 201


@purchases_bp.get("/<int:purchase_id>")
@login_required
def purchases_detail(purchase_id: int):
    return jsonify(purchase_to_dict(get_purchase(get_context(), purchase_id)))
