# backoffice/views/serializers.py
from __future__ import annotations

from typing import Any, Dict

from backoffice.core.models import as_money, as_qty


def product_to_dict(p) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "category": p.category,
        "unit": p.unit,
        "cost_price": as_money(p.cost_price),
        "sale_price": as_money(p.sale_price),
        "min_stock": as_qty(p.min_stock),
        "stock_qty": as_qty(p.stock_qty),
        "barcode": p.barcode,
        "is_active": bool(p.is_active),
        "low_stock": bool(p.is_active) and as_qty(p.stock_qty) <= as_qty(p.min_stock),
    }


def party_to_dict(party) -> Dict[str, Any]:
    return {
        "id": party.id,
        "name": party.name,
        "document": party.document,
        "email": party.email,
        "phone": party.phone,
        "address": party.address,
    }


def obligation_to_dict(ob, kind: str) -> Dict[str, Any]:
    return {
        "id": ob.id,
        "kind": kind,
        "counterparty_id": ob.counterparty_id,
        "source_transaction_id": ob.source_transaction_id,
        "amount": as_money(ob.amount),
        "due_date": ob.due_date,
        "status": ob.status,
        "settled_at": ob.settled_at,
    }


def _items(items):
    return [
        {
            "product_id": it.product_id,
            "product_name": it.product.name if it.product else "unknown",
            "qty": as_qty(it.qty),
            "unit_price": as_money(it.unit_price),
            "line_total": as_money(it.line_total),
        }
        for it in items
    ]


def sale_to_dict(sale) -> Dict[str, Any]:
    return {
        "id": sale.id,
        "customer_id": sale.customer_id,
        "customer_name": sale.customer.name if sale.customer else "unknown",
        "subtotal": as_money(sale.subtotal),
        "discount": as_money(sale.discount),
        "total_amount": as_money(sale.total_amount),
        "business_date": sale.business_date,
        "created_at": sale.created_at,
        "items": _items(sale.items),
        "receivable": obligation_to_dict(sale.receivable, "receivable") if sale.receivable else None,
    }


def purchase_to_dict(purchase) -> Dict[str, Any]:
    return {
        "id": purchase.id,
        "supplier_id": purchase.supplier_id,
        "supplier_name": purchase.supplier.name if purchase.supplier else "unknown",
        "total_amount": as_money(purchase.total_amount),
        "notes": purchase.notes,
        "business_date": purchase.business_date,
        "created_at": purchase.created_at,
        "items": _items(purchase.items),
        "payable": obligation_to_dict(purchase.payable, "payable") if purchase.payable else None,
    }
