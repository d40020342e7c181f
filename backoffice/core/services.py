# backoffice/core/services.py
from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError

from backoffice.extensions import db
from backoffice.core.context import RequestContext
from backoffice.core.errors import (
    ServiceError, InvalidInput, InsufficientStock, IdempotencyConflict, NotFound, AlreadySettled,
    TransientStoreError, WriteFailed, HeaderWriteFailed, StockAdjustFailed,
    ObligationWriteFailed,
)
from backoffice.core.models import (
    as_money, as_qty, utcnow,
    Product, StockMove, Customer, Supplier,
    Sale, SaleItem, Purchase, PurchaseItem,
    Payable, Receivable, AuditLog,
)

# =============================================================================
# Exceções e utilidades
# =============================================================================

def _ensure(cond: Any, msg: str, exc: Type[ServiceError] = InvalidInput):
    if not cond:
        raise exc(msg)

def _row_to_dict(obj, keys: Iterable[str]) -> Dict[str, Any]:
    out = {}
    for k in keys:
        v = getattr(obj, k, None)
        out[k] = str(v) if isinstance(v, (Decimal, date)) else v
    return out

def _decimal(value, places: int, field: str) -> Decimal:
    try:
        return as_qty(value) if places == 4 else as_money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInput(f"Valor numérico inválido em '{field}'")

@contextmanager
def transaction():
    try:
        yield
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        raise InvalidInput(f"Violação de integridade: {ie.orig}") from ie
    except (OperationalError, PoolTimeoutError) as oe:
        db.session.rollback()
        raise TransientStoreError(f"Banco indisponível: {oe}") from oe
    except ValueError as ve:
        # validadores dos modelos
        db.session.rollback()
        raise InvalidInput(str(ve)) from ve
    except BaseException:
        db.session.rollback()
        raise

def read_only(fn: Callable) -> Callable:
    """Leituras: timeouts e quedas de conexão viram TransientStoreError (pode repetir)."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (OperationalError, PoolTimeoutError) as oe:
            db.session.rollback()
            raise TransientStoreError(f"Banco indisponível: {oe}") from oe
    return wrapper

def audit_log(ctx: RequestContext, entity: str, entity_id: Optional[int], action: str, payload: dict):
    log = AuditLog(
        org_id=ctx.org_id,
        entity=entity,
        entity_id=entity_id,
        action=action,
        payload_json=payload or {},
        user_id=ctx.user_id,
    )
    db.session.add(log)

# =============================================================================
# Catálogo
# =============================================================================

PRODUCT_FIELDS = ("name", "category", "unit", "cost_price", "sale_price", "min_stock", "barcode", "is_active")

_PRODUCT_DEFAULTS: Dict[str, Any] = {
    "category": None,
    "unit": "un",
    "cost_price": Decimal("0"),
    "sale_price": Decimal("0"),
    "min_stock": Decimal("0"),
    "barcode": None,
    "is_active": True,
}

def _clean_product_data(data: Dict[str, Any]) -> Dict[str, Any]:
    name = (data.get("name") or "").strip()
    _ensure(name, "Nome do produto obrigatório")
    out: Dict[str, Any] = {"name": name}
    for k, default in _PRODUCT_DEFAULTS.items():
        v = data.get(k, default)
        if v is None:
            v = default
        if k in ("cost_price", "sale_price"):
            v = _decimal(v, 2, k)
            _ensure(v >= 0, f"'{k}' não pode ser negativo")
        elif k == "min_stock":
            v = _decimal(v, 4, k)
            _ensure(v >= 0, "'min_stock' não pode ser negativo")
        elif k == "is_active":
            v = bool(v)
        elif isinstance(v, str):
            v = v.strip() or default
        out[k] = v
    return out

def create_product(ctx: RequestContext, data: Dict[str, Any], opening_stock: Any = 0) -> Product:
    org_id = ctx.require_org()
    fields = _clean_product_data(data)
    opening = _decimal(opening_stock, 4, "opening_stock")
    _ensure(opening >= 0, "Estoque inicial não pode ser negativo")

    with transaction():
        p = Product(org_id=org_id, stock_qty=opening, created_by_id=ctx.user_id, **fields)
        db.session.add(p)
        db.session.flush()
        # Estoque inicial também é movimento, para o saldo bater com o histórico
        if opening > 0:
            db.session.add(StockMove(
                org_id=org_id, product_id=p.id, kind="opening", qty=opening,
                source="opening", source_id=p.id, created_by_id=ctx.user_id,
            ))
        audit_log(ctx, "Product", p.id, "created", _row_to_dict(p, PRODUCT_FIELDS + ("stock_qty",)))

    current_app.logger.info("product created org=%s product=%s", org_id, p.id)
    return p

@read_only
def get_product(ctx: RequestContext, product_id: int) -> Product:
    org_id = ctx.require_org()
    p = db.session.get(Product, product_id)
    _ensure(p is not None and p.org_id == org_id, "Produto não encontrado", NotFound)
    return p

@read_only
def list_products(ctx: RequestContext, q: Optional[str] = None, include_inactive: bool = True) -> List[Product]:
    org_id = ctx.require_org()
    query = Product.query.filter(Product.org_id == org_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    term = (q or "").strip().lower()
    if term:
        like = f"%{term}%"
        query = query.filter(
            or_(
                db.func.lower(Product.name).like(like),
                db.func.lower(Product.category).like(like),
                Product.barcode.like(f"%{q.strip()}%"),
            )
        )
    return query.order_by(Product.name, Product.id).all()

def update_product(ctx: RequestContext, product_id: int, data: Dict[str, Any]) -> Product:
    """
    Edição de cadastro (substitui a linha inteira). O saldo de estoque não é
    editável aqui: só vendas e compras movimentam estoque.
    """
    p = get_product(ctx, product_id)
    if "stock_qty" in data and data["stock_qty"] is not None:
        requested = _decimal(data["stock_qty"], 4, "stock_qty")
        _ensure(
            requested == as_qty(p.stock_qty),
            "stock_qty só é alterado por vendas e compras",
        )
    fields = _clean_product_data(data)

    with transaction():
        before = _row_to_dict(p, PRODUCT_FIELDS)
        for k, v in fields.items():
            setattr(p, k, v)
        p.updated_by_id = ctx.user_id
        audit_log(ctx, "Product", p.id, "updated", {"before": before, "after": _row_to_dict(p, PRODUCT_FIELDS)})

    current_app.logger.info("product updated org=%s product=%s", p.org_id, p.id)
    return p

# =============================================================================
# Clientes e fornecedores
# =============================================================================

PARTY_MODELS: Dict[str, Type[db.Model]] = {"customer": Customer, "supplier": Supplier}
PARTY_FIELDS = ("name", "document", "email", "phone", "address")

def _party_model(kind: str):
    model = PARTY_MODELS.get(kind)
    _ensure(model is not None, f"Tipo de cadastro inválido: {kind}")
    return model

def _clean_party_data(data: Dict[str, Any]) -> Dict[str, Any]:
    name = (data.get("name") or "").strip()
    _ensure(name, "Nome obrigatório")
    out: Dict[str, Any] = {"name": name}
    for k in PARTY_FIELDS[1:]:
        v = data.get(k)
        out[k] = (str(v).strip() or None) if v is not None else None
    if out["email"]:
        _ensure("@" in out["email"], "Email inválido")
        out["email"] = out["email"].lower()
    return out

def create_party(ctx: RequestContext, kind: str, data: Dict[str, Any]):
    org_id = ctx.require_org()
    model = _party_model(kind)
    fields = _clean_party_data(data)
    with transaction():
        party = model(org_id=org_id, created_by_id=ctx.user_id, **fields)
        db.session.add(party)
        db.session.flush()
        audit_log(ctx, model.__name__, party.id, "created", fields)
    current_app.logger.info("%s created org=%s id=%s", kind, org_id, party.id)
    return party

@read_only
def get_party(ctx: RequestContext, kind: str, party_id: int):
    org_id = ctx.require_org()
    model = _party_model(kind)
    party = db.session.get(model, party_id)
    _ensure(party is not None and party.org_id == org_id, "Cadastro não encontrado", NotFound)
    return party

@read_only
def list_parties(ctx: RequestContext, kind: str, q: Optional[str] = None) -> list:
    org_id = ctx.require_org()
    model = _party_model(kind)
    query = model.query.filter(model.org_id == org_id)
    term = (q or "").strip().lower()
    if term:
        like = f"%{term}%"
        query = query.filter(or_(db.func.lower(model.name).like(like), model.document.like(f"%{q.strip()}%")))
    return query.order_by(model.name, model.id).all()

def update_party(ctx: RequestContext, kind: str, party_id: int, data: Dict[str, Any]):
    party = get_party(ctx, kind, party_id)
    fields = _clean_party_data(data)
    with transaction():
        before = _row_to_dict(party, PARTY_FIELDS)
        for k, v in fields.items():
            setattr(party, k, v)
        party.updated_by_id = ctx.user_id
        audit_log(ctx, type(party).__name__, party.id, "updated", {"before": before, "after": fields})
    return party

# =============================================================================
# Vendas e compras
# =============================================================================

@dataclass
class LineItemDTO:
    product_id: int
    qty: Decimal
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return as_money(self.qty * self.unit_price)

ItemInput = Union[LineItemDTO, Dict[str, Any]]

def _normalize_items(items: Optional[Sequence[ItemInput]]) -> List[LineItemDTO]:
    _ensure(items, "Lista de itens vazia")
    out = []
    for n, raw in enumerate(items, start=1):
        if isinstance(raw, LineItemDTO):
            product_id, qty, price = raw.product_id, raw.qty, raw.unit_price
        elif isinstance(raw, dict):
            product_id, qty, price = raw.get("product_id"), raw.get("qty"), raw.get("unit_price")
        else:
            raise InvalidInput(f"Item {n} inválido")
        # ausente não vira zero: preço e quantidade são obrigatórios
        _ensure(qty is not None and qty != "", f"Item {n}: quantidade obrigatória")
        _ensure(price is not None and price != "", f"Item {n}: preço unitário obrigatório")
        try:
            product_id = int(product_id)
        except (TypeError, ValueError):
            raise InvalidInput(f"Item {n}: produto inválido")
        qty = _decimal(qty, 4, f"items[{n}].qty")
        price = _decimal(price, 2, f"items[{n}].unit_price")
        _ensure(qty > 0, f"Item {n}: quantidade deve ser positiva")
        _ensure(price >= 0, f"Item {n}: preço unitário negativo")
        out.append(LineItemDTO(product_id=product_id, qty=qty, unit_price=price))
    return out

def _ensure_products(org_id: int, lines: List[LineItemDTO]) -> Dict[int, Product]:
    ids = {l.product_id for l in lines}
    found = {p.id: p for p in Product.query.filter(Product.org_id == org_id, Product.id.in_(ids)).all()}
    missing = sorted(ids - set(found))
    _ensure(not missing, f"Produto(s) não encontrado(s): {missing}", NotFound)
    return found

def _stage(error_cls: Type[WriteFailed], fn: Callable, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except SQLAlchemyError as e:
        raise error_cls(f"Falha na etapa '{error_cls.stage}': {e.__class__.__name__}") from e

def _write_header(ctx: RequestContext, kind: str, counterparty_id: int, lines: List[LineItemDTO],
                  discount: Decimal, notes: Optional[str], idempotency_key: Optional[str], now: datetime):
    subtotal = as_money(sum((l.line_total for l in lines), Decimal("0")))
    if kind == "sale":
        header = Sale(
            org_id=ctx.org_id, customer_id=counterparty_id,
            subtotal=subtotal, discount=discount, total_amount=as_money(subtotal - discount),
            business_date=now.date(), idempotency_key=idempotency_key,
            created_at=now, created_by_id=ctx.user_id,
        )
        header.items = [SaleItem(product_id=l.product_id, qty=l.qty, unit_price=l.unit_price, line_total=l.line_total) for l in lines]
    else:
        header = Purchase(
            org_id=ctx.org_id, supplier_id=counterparty_id, total_amount=subtotal,
            business_date=now.date(), notes=notes, idempotency_key=idempotency_key,
            created_at=now, created_by_id=ctx.user_id,
        )
        header.items = [PurchaseItem(product_id=l.product_id, qty=l.qty, unit_price=l.unit_price, line_total=l.line_total) for l in lines]
    db.session.add(header)
    db.session.flush()
    return header

def _adjust_stock(ctx: RequestContext, kind: str, header, lines: List[LineItemDTO]):
    """
    Incremento atômico no banco (UPDATE ... SET stock_qty = stock_qty ± qty).
    Linhas do mesmo produto são somadas; produtos em ordem de id para evitar deadlock.
    """
    deltas: Dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
    for l in lines:
        deltas[l.product_id] += l.qty

    outbound = kind == "sale"
    guard = outbound and not current_app.config.get("ALLOW_NEGATIVE_STOCK", True)
    move_kind = "sale_out" if outbound else "purchase_in"

    for product_id in sorted(deltas):
        qty = as_qty(deltas[product_id])
        stmt = update(Product).where(Product.id == product_id, Product.org_id == ctx.org_id)
        if guard:
            stmt = stmt.where(Product.stock_qty >= qty)
        new_value = Product.stock_qty - qty if outbound else Product.stock_qty + qty
        result = db.session.execute(stmt.values(stock_qty=new_value), execution_options={"synchronize_session": False})
        if result.rowcount != 1:
            if guard:
                raise InsufficientStock(f"Estoque insuficiente para o produto {product_id}", details={"product_id": product_id})
            raise NotFound(f"Produto {product_id} não encontrado")
        db.session.add(StockMove(
            org_id=ctx.org_id, product_id=product_id, kind=move_kind, qty=qty,
            source=kind, source_id=header.id, created_by_id=ctx.user_id,
        ))
    db.session.flush()

def _write_obligation(ctx: RequestContext, kind: str, header, now: datetime):
    cfg = current_app.config
    if kind == "sale":
        obligation = Receivable(
            org_id=ctx.org_id, customer_id=header.customer_id, sale_id=header.id,
            amount=header.total_amount, status="open",
            due_date=now + timedelta(days=cfg.get("RECEIVABLE_DUE_DAYS", 5)),
            created_at=now,
        )
    else:
        obligation = Payable(
            org_id=ctx.org_id, supplier_id=header.supplier_id, purchase_id=header.id,
            amount=header.total_amount, status="open",
            due_date=now + timedelta(days=cfg.get("PAYABLE_DUE_DAYS", 7)),
            created_at=now,
        )
    db.session.add(obligation)
    db.session.flush()
    return obligation

def _line_key(lines) -> List[Tuple[int, Decimal, Decimal]]:
    return sorted((int(l.product_id), as_qty(l.qty), as_money(l.unit_price)) for l in lines)

def _same_transaction(kind: str, header, counterparty_id: int, lines: List[LineItemDTO], discount: Decimal) -> bool:
    """Reenvio só vale se cliente/fornecedor, itens e desconto forem os mesmos da gravação original."""
    stored_party = header.customer_id if kind == "sale" else header.supplier_id
    if stored_party != int(counterparty_id):
        return False
    if kind == "sale" and as_money(header.discount) != discount:
        return False
    return _line_key(header.items) == _line_key(lines)

def _record(ctx: RequestContext, kind: str, counterparty_id: int, items: Sequence[ItemInput],
            discount: Any = 0, notes: Optional[str] = None, idempotency_key: Optional[str] = None,
            now: Optional[datetime] = None) -> int:
    org_id = ctx.require_org()
    header_model = Sale if kind == "sale" else Purchase
    party_kind = "customer" if kind == "sale" else "supplier"

    lines = _normalize_items(items)
    discount = _decimal(discount, 2, "discount")
    _ensure(discount >= 0, "Desconto não pode ser negativo")
    subtotal = as_money(sum((l.line_total for l in lines), Decimal("0")))
    _ensure(subtotal - discount >= 0, "Desconto maior que o total da venda")
    key = (idempotency_key or "").strip() or None

    get_party(ctx, party_kind, counterparty_id)
    _ensure_products(org_id, lines)

    if key:
        existing = header_model.query.filter_by(org_id=org_id, idempotency_key=key).first()
        if existing:
            if not _same_transaction(kind, existing, counterparty_id, lines, discount):
                current_app.logger.warning("%s key reused org=%s id=%s key=%s", kind, org_id, existing.id, key)
                raise IdempotencyConflict(
                    f"Chave '{key}' já usada pela transação {existing.id} com outro conteúdo",
                    details={"existing_id": existing.id},
                )
            current_app.logger.info("%s replay org=%s id=%s key=%s", kind, org_id, existing.id, key)
            return existing.id

    now = now or utcnow()
    try:
        with transaction():
            header = _stage(HeaderWriteFailed, _write_header, ctx, kind, counterparty_id, lines, discount, notes, key, now)
            _stage(StockAdjustFailed, _adjust_stock, ctx, kind, header, lines)
            obligation = _stage(ObligationWriteFailed, _write_obligation, ctx, kind, header, now)
            header_id, total = header.id, header.total_amount
            audit_log(ctx, header_model.__name__, header.id, "recorded", {
                "counterparty_id": counterparty_id,
                "items": len(lines),
                "total_amount": str(total),
                "obligation_id": obligation.id,
            })
    except WriteFailed as wf:
        current_app.logger.error("%s failed org=%s stage=%s: %s", kind, org_id, wf.stage, wf.message)
        raise
    except InsufficientStock as ins:
        current_app.logger.warning("%s rejected org=%s: %s", kind, org_id, ins.message)
        raise

    current_app.logger.info(
        "%s recorded org=%s id=%s total=%s items=%d", kind, org_id, header_id, total, len(lines)
    )
    return header_id

def record_sale(ctx: RequestContext, customer_id: int, items: Sequence[ItemInput], discount: Any = 0,
                idempotency_key: Optional[str] = None, now: Optional[datetime] = None) -> int:
    """
    Grava venda, itens, baixa de estoque e conta a receber numa única transação.
    Retorna o id da venda. Qualquer falha desfaz tudo.
    """
    return _record(ctx, "sale", customer_id, items, discount=discount, idempotency_key=idempotency_key, now=now)

def record_purchase(ctx: RequestContext, supplier_id: int, items: Sequence[ItemInput], notes: Optional[str] = None,
                    idempotency_key: Optional[str] = None, now: Optional[datetime] = None) -> int:
    """Mesmo fluxo de record_sale: compra, itens, entrada de estoque e conta a pagar."""
    return _record(ctx, "purchase", supplier_id, items, notes=notes, idempotency_key=idempotency_key, now=now)

@read_only
def get_sale(ctx: RequestContext, sale_id: int) -> Sale:
    org_id = ctx.require_org()
    sale = db.session.get(Sale, sale_id)
    _ensure(sale is not None and sale.org_id == org_id, "Venda não encontrada", NotFound)
    return sale

@read_only
def get_purchase(ctx: RequestContext, purchase_id: int) -> Purchase:
    org_id = ctx.require_org()
    purchase = db.session.get(Purchase, purchase_id)
    _ensure(purchase is not None and purchase.org_id == org_id, "Compra não encontrada", NotFound)
    return purchase

# =============================================================================
# Contas a pagar e a receber
# =============================================================================

OBLIGATION_KINDS: Dict[str, Tuple[Type[db.Model], str]] = {
    "payable": (Payable, "paid"),
    "receivable": (Receivable, "received"),
}

def obligation_model(kind: str) -> Tuple[Type[db.Model], str]:
    entry = OBLIGATION_KINDS.get(kind)
    _ensure(entry is not None, f"Tipo de conta inválido: {kind}")
    return entry

def settle(ctx: RequestContext, obligation_id: int, kind: str, now: Optional[datetime] = None) -> None:
    """
    Baixa (paga/recebida) numa única UPDATE condicional: entre chamadas
    concorrentes só uma muda o status; as demais recebem AlreadySettled.
    """
    org_id = ctx.require_org()
    model, settled_status = obligation_model(kind)
    now = now or utcnow()

    with transaction():
        result = db.session.execute(
            update(model)
            .where(model.id == obligation_id, model.org_id == org_id, model.status == "open")
            .values(status=settled_status, settled_at=now),
            execution_options={"synchronize_session": False},
        )
        if result.rowcount != 1:
            exists = db.session.query(model.id).filter(model.id == obligation_id, model.org_id == org_id).first()
            _ensure(exists, "Conta não encontrada", NotFound)
            current_app.logger.warning("%s already settled org=%s id=%s", kind, org_id, obligation_id)
            raise AlreadySettled(f"Conta {obligation_id} já baixada")
        audit_log(ctx, model.__name__, obligation_id, "settled", {"status": settled_status, "settled_at": now.isoformat()})

    current_app.logger.info("%s settled org=%s id=%s", kind, org_id, obligation_id)

@read_only
def get_obligation(ctx: RequestContext, obligation_id: int, kind: str):
    org_id = ctx.require_org()
    model, _ = obligation_model(kind)
    ob = db.session.get(model, obligation_id)
    _ensure(ob is not None and ob.org_id == org_id, "Conta não encontrada", NotFound)
    return ob

def _as_cutoff(cutoff: Union[date, datetime]) -> datetime:
    if isinstance(cutoff, datetime):
        return cutoff
    # data pura: vale o dia inteiro
    return datetime.combine(cutoff, time.max)

@read_only
def list_open_due_by(ctx: RequestContext, cutoff: Union[date, datetime], kind: str) -> list:
    org_id = ctx.require_org()
    model, _ = obligation_model(kind)
    return (
        model.query
        .filter(model.org_id == org_id, model.status == "open", model.due_date <= _as_cutoff(cutoff))
        .order_by(model.due_date.asc(), model.id.asc())
        .all()
    )
