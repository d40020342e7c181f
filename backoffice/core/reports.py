# backoffice/core/reports.py
"""
Indicadores do painel e relatórios. Somente leitura: nada aqui grava no banco.
Nomes ausentes (cadastro removido) viram UNKNOWN em vez de derrubar o relatório.
"""
from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import case

from backoffice.extensions import db
from backoffice.core.context import RequestContext
from backoffice.core.models import (
    as_money, as_qty, utcnow, INBOUND_MOVES,
    Product, StockMove, Customer, Supplier,
    Sale, SaleItem, Purchase, Payable, Receivable,
)
from backoffice.core.services import read_only, obligation_model

UNKNOWN = "unknown"


def _month_bounds(month: date):
    last_day = calendar.monthrange(month.year, month.month)[1]
    return date(month.year, month.month, 1), date(month.year, month.month, last_day)


# =============================================================================
# Painel
# =============================================================================

@read_only
def stock_summary(ctx: RequestContext) -> Dict[str, Any]:
    org_id = ctx.require_org()
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Product.stock_qty), 0))
        .filter(Product.org_id == org_id, Product.is_active.is_(True))
        .scalar()
    )
    low = (
        Product.query
        .filter(
            Product.org_id == org_id,
            Product.is_active.is_(True),
            Product.stock_qty <= Product.min_stock,
        )
        .order_by(Product.name, Product.id)
        .all()
    )
    return {
        "total_stock_qty": as_qty(total),
        "low_stock_products": [
            {
                "id": p.id,
                "name": p.name,
                "category": p.category,
                "stock_qty": as_qty(p.stock_qty),
                "min_stock": as_qty(p.min_stock),
            }
            for p in low
        ],
    }

@read_only
def monthly_totals(ctx: RequestContext, month: date) -> Dict[str, Any]:
    """Soma de vendas e compras cuja data de negócio cai no mês (primeiro ao último dia)."""
    org_id = ctx.require_org()
    first, last = _month_bounds(month)

    def _sum(model):
        return (
            db.session.query(db.func.coalesce(db.func.sum(model.total_amount), 0))
            .filter(model.org_id == org_id, model.business_date >= first, model.business_date <= last)
            .scalar()
        )

    return {
        "month": first.strftime("%Y-%m"),
        "sales_total": as_money(_sum(Sale)),
        "purchases_total": as_money(_sum(Purchase)),
    }

@read_only
def upcoming_obligations(ctx: RequestContext, horizon_days: int = 7, now: Optional[datetime] = None) -> Dict[str, Any]:
    org_id = ctx.require_org()
    cutoff = (now or utcnow()) + timedelta(days=horizon_days)

    def _sum(model):
        return (
            db.session.query(db.func.coalesce(db.func.sum(model.amount), 0))
            .filter(model.org_id == org_id, model.status == "open", model.due_date <= cutoff)
            .scalar()
        )

    return {
        "horizon_days": horizon_days,
        "payables_due": as_money(_sum(Payable)),
        "receivables_due": as_money(_sum(Receivable)),
    }

def dashboard(ctx: RequestContext, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    stock = stock_summary(ctx)
    month = monthly_totals(ctx, now.date())
    due = upcoming_obligations(ctx, current_app.config.get("DASHBOARD_HORIZON_DAYS", 7), now=now)
    return {
        "total_stock_qty": stock["total_stock_qty"],
        "low_stock_count": len(stock["low_stock_products"]),
        "low_stock_products": stock["low_stock_products"],
        "month": month["month"],
        "month_sales": month["sales_total"],
        "month_purchases": month["purchases_total"],
        "payables_due": due["payables_due"],
        "receivables_due": due["receivables_due"],
    }


# =============================================================================
# Rankings
# =============================================================================

@read_only
def top_products(ctx: RequestContext, limit: int = 10) -> List[Dict[str, Any]]:
    """
    Produtos mais vendidos por quantidade (desempate pelo id).
    Margem = faturamento - custo atual do produto x quantidade.
    """
    org_id = ctx.require_org()
    qty = db.func.sum(SaleItem.qty).label("total_qty")
    revenue = db.func.sum(SaleItem.line_total).label("total_revenue")
    rows = (
        db.session.query(SaleItem.product_id, qty, revenue, Product.name, Product.cost_price)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .outerjoin(Product, Product.id == SaleItem.product_id)
        .filter(Sale.org_id == org_id)
        .group_by(SaleItem.product_id, Product.name, Product.cost_price)
        .order_by(qty.desc(), SaleItem.product_id.asc())
        .limit(max(int(limit), 0))
        .all()
    )
    out = []
    for row in rows:
        total_qty = as_qty(row.total_qty)
        total_revenue = as_money(row.total_revenue)
        out.append({
            "product_id": row.product_id,
            "name": row.name or UNKNOWN,
            "total_qty_sold": total_qty,
            "total_revenue": total_revenue,
            "margin": as_money(total_revenue - as_money(row.cost_price) * total_qty),
        })
    return out

@read_only
def top_customers(ctx: RequestContext, limit: int = 10) -> List[Dict[str, Any]]:
    org_id = ctx.require_org()
    spent = db.func.sum(Sale.total_amount).label("total_spent")
    count = db.func.count(Sale.id).label("sales_count")
    rows = (
        db.session.query(Sale.customer_id, spent, count, Customer.name)
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .filter(Sale.org_id == org_id)
        .group_by(Sale.customer_id, Customer.name)
        .order_by(spent.desc(), Sale.customer_id.asc())
        .limit(max(int(limit), 0))
        .all()
    )
    out = []
    for row in rows:
        total_spent = as_money(row.total_spent)
        sales_count = int(row.sales_count or 0)
        out.append({
            "customer_id": row.customer_id,
            "name": row.name or UNKNOWN,
            "total_spent": total_spent,
            "sales_count": sales_count,
            "average_ticket": as_money(total_spent / sales_count) if sales_count else Decimal("0.00"),
        })
    return out


# =============================================================================
# Listagens com nomes já resolvidos
# =============================================================================

@read_only
def list_sales(ctx: RequestContext, q: Optional[str] = None) -> List[Dict[str, Any]]:
    org_id = ctx.require_org()
    query = (
        db.session.query(Sale, Customer.name)
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .filter(Sale.org_id == org_id)
    )
    term = (q or "").strip().lower()
    if term:
        query = query.filter(db.func.lower(Customer.name).like(f"%{term}%"))
    out = []
    for sale, customer_name in query.order_by(Sale.created_at.desc(), Sale.id.desc()):
        out.append({
            "id": sale.id,
            "customer_id": sale.customer_id,
            "customer_name": customer_name or UNKNOWN,
            "subtotal": as_money(sale.subtotal),
            "discount": as_money(sale.discount),
            "total_amount": as_money(sale.total_amount),
            "business_date": sale.business_date,
            "created_at": sale.created_at,
        })
    return out

@read_only
def list_purchases(ctx: RequestContext, q: Optional[str] = None) -> List[Dict[str, Any]]:
    org_id = ctx.require_org()
    query = (
        db.session.query(Purchase, Supplier.name)
        .outerjoin(Supplier, Supplier.id == Purchase.supplier_id)
        .filter(Purchase.org_id == org_id)
    )
    term = (q or "").strip().lower()
    if term:
        query = query.filter(db.func.lower(Supplier.name).like(f"%{term}%"))
    out = []
    for purchase, supplier_name in query.order_by(Purchase.created_at.desc(), Purchase.id.desc()):
        out.append({
            "id": purchase.id,
            "supplier_id": purchase.supplier_id,
            "supplier_name": supplier_name or UNKNOWN,
            "total_amount": as_money(purchase.total_amount),
            "notes": purchase.notes,
            "business_date": purchase.business_date,
            "created_at": purchase.created_at,
        })
    return out

@read_only
def list_obligations(ctx: RequestContext, kind: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    org_id = ctx.require_org()
    model, _ = obligation_model(kind)
    party = Supplier if kind == "payable" else Customer
    fk = model.supplier_id if kind == "payable" else model.customer_id
    query = (
        db.session.query(model, party.name)
        .outerjoin(party, party.id == fk)
        .filter(model.org_id == org_id)
    )
    if status:
        query = query.filter(model.status == status)
    out = []
    for ob, party_name in query.order_by(model.due_date.asc(), model.id.asc()):
        out.append({
            "id": ob.id,
            "kind": kind,
            "counterparty_id": ob.counterparty_id,
            "counterparty_name": party_name or UNKNOWN,
            "source_transaction_id": ob.source_transaction_id,
            "amount": as_money(ob.amount),
            "due_date": ob.due_date,
            "status": ob.status,
            "settled_at": ob.settled_at,
        })
    return out

@read_only
def open_totals(ctx: RequestContext) -> Dict[str, Any]:
    org_id = ctx.require_org()
    out: Dict[str, Any] = {}
    for kind, model in (("payables", Payable), ("receivables", Receivable)):
        total, count = (
            db.session.query(db.func.coalesce(db.func.sum(model.amount), 0), db.func.count(model.id))
            .filter(model.org_id == org_id, model.status == "open")
            .one()
        )
        out[f"{kind}_open"] = as_money(total)
        out[f"{kind}_open_count"] = int(count or 0)
    return out


# =============================================================================
# Consistência do estoque
# =============================================================================

@read_only
def stock_drift(ctx: RequestContext) -> List[Dict[str, Any]]:
    """Produtos cujo saldo não bate com a soma dos movimentos registrados."""
    org_id = ctx.require_org()
    signed = case((StockMove.kind.in_(INBOUND_MOVES), StockMove.qty), else_=-StockMove.qty)
    moved = dict(
        db.session.query(StockMove.product_id, db.func.sum(signed))
        .filter(StockMove.org_id == org_id)
        .group_by(StockMove.product_id)
        .all()
    )
    out = []
    for p in Product.query.filter(Product.org_id == org_id).order_by(Product.id):
        expected = as_qty(moved.get(p.id, 0))
        actual = as_qty(p.stock_qty)
        if expected != actual:
            out.append({
                "product_id": p.id,
                "name": p.name,
                "stock_qty": actual,
                "movements_sum": expected,
                "difference": actual - expected,
            })
    if out:
        current_app.logger.warning("stock drift org=%s products=%s", org_id, [d["product_id"] for d in out])
    return out
