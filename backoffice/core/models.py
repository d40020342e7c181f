# backoffice/core/models.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import (
    CheckConstraint, Column, Integer, BigInteger, String, DateTime, Date,
    Boolean, ForeignKey, UniqueConstraint, Numeric, Enum, JSON, Index, Text,
    func
)
from sqlalchemy.orm import relationship, backref, validates
from flask_login import UserMixin
from werkzeug.security import generate_password_hash as _wzh, check_password_hash as _wzc

from backoffice.extensions import db


# =============================================================================
# Utilidades e Mixins
# =============================================================================

MONEY = Numeric(12, 2)   # 9.999.999.999,99 máx
QTY = Numeric(14, 4)     # quantidades com 4 casas

def utcnow() -> datetime:
    # Colunas DateTime são "naive" em UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)

def as_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def as_qty(value) -> Decimal:
    if value is None:
        return Decimal("0.0000")
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

def normalize_barcode(barcode: Optional[str]) -> Optional[str]:
    if barcode is None:
        return None
    value = "".join(str(barcode).split())
    return value or None

class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

class OrgScopedMixin:
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="RESTRICT"), nullable=False, index=True)

class AuditMixin:
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    updated_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)


# =============================================================================
# Enums
# =============================================================================

RoleEnum = Enum("admin", "manager", "operator", name="role_enum")
StockMoveEnum = Enum("opening", "purchase_in", "sale_out", name="stock_move_enum")
PayableStatusEnum = Enum("open", "paid", name="payable_status_enum")
ReceivableStatusEnum = Enum("open", "received", name="receivable_status_enum")

# Movimentos que somam ao estoque; os demais subtraem
INBOUND_MOVES = ("opening", "purchase_in")


# =============================================================================
# Tenant e usuários
# =============================================================================

class Org(db.Model, TimestampMixin):
    __tablename__ = "orgs"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)

    __table_args__ = (
        UniqueConstraint("name", name="uq_orgs_name"),
    )

    def __repr__(self):
        return f"<Org {self.id} {self.name}>"


class User(db.Model, UserMixin, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    email = Column(String(180), nullable=False, unique=True, index=True)
    _password_hash = Column("password_hash", String(255), nullable=False)
    role = Column(RoleEnum, nullable=False, default="operator", index=True)
    active = Column(Boolean, default=True, nullable=False)
    # Sem organização padrão o usuário não tem tenant e não pode operar
    default_org_id = Column(Integer, ForeignKey("orgs.id", ondelete="SET NULL"), nullable=True, index=True)
    last_login = Column(DateTime, nullable=True)

    default_org = relationship("Org", backref=backref("users", lazy="dynamic"))

    def set_password(self, raw: str):
        if not raw or len(raw) < 6:
            raise ValueError("Senha muito curta")
        self._password_hash = _wzh(raw, method="pbkdf2:sha256", salt_length=16)

    def check_password(self, raw: str) -> bool:
        if not raw or not self._password_hash:
            return False
        return _wzc(self._password_hash, raw)

    @property
    def is_active(self) -> bool:
        # Flask-Login recusa login de usuário desativado
        return bool(self.active)

    @validates("email")
    def _val_email(self, key, value):
        if not value or "@" not in value:
            raise ValueError("Email inválido")
        return value.strip().lower()

    def __repr__(self):
        return f"<User {self.id} {self.email} {self.role}>"


# =============================================================================
# Catálogo
# =============================================================================

class Product(db.Model, TimestampMixin, OrgScopedMixin, AuditMixin):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    category = Column(String(120), nullable=True)
    unit = Column(String(10), nullable=False, default="un")
    cost_price = Column(MONEY, default=Decimal("0.00"), nullable=False)
    sale_price = Column(MONEY, default=Decimal("0.00"), nullable=False)
    min_stock = Column(QTY, default=Decimal("0.0000"), nullable=False)
    # Alterado apenas pelo registro de vendas/compras (ver services.record_*)
    stock_qty = Column(QTY, default=Decimal("0.0000"), nullable=False)
    barcode = Column(String(64), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("org_id", "barcode", name="uq_products_org_barcode"),
        CheckConstraint("cost_price >= 0", name="ck_products_cost_price"),
        CheckConstraint("sale_price >= 0", name="ck_products_sale_price"),
        CheckConstraint("min_stock >= 0", name="ck_products_min_stock"),
    )

    @validates("barcode")
    def _val_barcode(self, key, value):
        return normalize_barcode(value)

    @validates("cost_price", "sale_price")
    def _val_money(self, key, value):
        v = as_money(value)
        if v < 0:
            raise ValueError("Preço negativo")
        return v

    @validates("min_stock")
    def _val_qty(self, key, value):
        v = as_qty(value)
        if v < 0:
            raise ValueError("Quantidade negativa")
        return v

    def __repr__(self):
        return f"<Product {self.id} {self.name} stock={self.stock_qty}>"


class StockMove(db.Model, TimestampMixin, OrgScopedMixin, AuditMixin):
    __tablename__ = "stock_moves"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    kind = Column(StockMoveEnum, nullable=False, index=True)
    qty = Column(QTY, nullable=False)
    source = Column(String(30), nullable=True)  # "sale", "purchase", "opening"
    source_id = Column(Integer, nullable=True)

    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("qty > 0", name="ck_stock_moves_qty_positive"),
        Index("ix_stock_moves_org_product_created", "org_id", "product_id", "created_at"),
    )

    @property
    def signed_qty(self) -> Decimal:
        q = as_qty(self.qty)
        return q if self.kind in INBOUND_MOVES else -q


# =============================================================================
# Clientes e fornecedores
# =============================================================================

class PartyMixin:
    id = Column(Integer, primary_key=True)
    name = Column(String(180), nullable=False)
    document = Column(String(32), nullable=True)
    email = Column(String(180), nullable=True)
    phone = Column(String(40), nullable=True)
    address = Column(String(255), nullable=True)

    @validates("name")
    def _val_name(self, key, value):
        value = (value or "").strip()
        if not value:
            raise ValueError("Nome obrigatório")
        return value


class Customer(db.Model, PartyMixin, TimestampMixin, OrgScopedMixin, AuditMixin):
    __tablename__ = "customers"

    def __repr__(self):
        return f"<Customer {self.id} {self.name}>"


class Supplier(db.Model, PartyMixin, TimestampMixin, OrgScopedMixin, AuditMixin):
    __tablename__ = "suppliers"

    def __repr__(self):
        return f"<Supplier {self.id} {self.name}>"


# =============================================================================
# Vendas e compras (imutáveis depois de gravadas)
# =============================================================================

class Sale(db.Model, TimestampMixin, OrgScopedMixin, AuditMixin):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)
    subtotal = Column(MONEY, default=Decimal("0.00"), nullable=False)
    discount = Column(MONEY, default=Decimal("0.00"), nullable=False)
    total_amount = Column(MONEY, default=Decimal("0.00"), nullable=False)
    business_date = Column(Date, nullable=False, index=True)
    idempotency_key = Column(String(80), nullable=True)

    customer = relationship("Customer")
    items = relationship("SaleItem", cascade="all, delete-orphan", backref="sale", order_by="SaleItem.id")

    __table_args__ = (
        UniqueConstraint("org_id", "idempotency_key", name="uq_sales_org_idempotency_key"),
        CheckConstraint("discount >= 0", name="ck_sales_discount"),
        CheckConstraint("total_amount >= 0", name="ck_sales_total"),
        Index("ix_sales_org_business_date", "org_id", "business_date"),
    )


class SaleItem(db.Model, TimestampMixin):
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    qty = Column(QTY, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    line_total = Column(MONEY, nullable=False)

    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("qty > 0", name="ck_sale_items_qty"),
        CheckConstraint("unit_price >= 0", name="ck_sale_items_unit_price"),
    )

    @validates("qty")
    def _val_qty(self, key, value):
        return as_qty(value)

    @validates("unit_price", "line_total")
    def _val_money(self, key, value):
        return as_money(value)


class Purchase(db.Model, TimestampMixin, OrgScopedMixin, AuditMixin):
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False, index=True)
    total_amount = Column(MONEY, default=Decimal("0.00"), nullable=False)
    business_date = Column(Date, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    idempotency_key = Column(String(80), nullable=True)

    supplier = relationship("Supplier")
    items = relationship("PurchaseItem", cascade="all, delete-orphan", backref="purchase", order_by="PurchaseItem.id")

    __table_args__ = (
        UniqueConstraint("org_id", "idempotency_key", name="uq_purchases_org_idempotency_key"),
        CheckConstraint("total_amount >= 0", name="ck_purchases_total"),
        Index("ix_purchases_org_business_date", "org_id", "business_date"),
    )


class PurchaseItem(db.Model, TimestampMixin):
    __tablename__ = "purchase_items"

    id = Column(Integer, primary_key=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    qty = Column(QTY, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    line_total = Column(MONEY, nullable=False)

    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("qty > 0", name="ck_purchase_items_qty"),
        CheckConstraint("unit_price >= 0", name="ck_purchase_items_unit_price"),
        Index("ix_purchase_items_purchase_product", "purchase_id", "product_id"),
    )

    @validates("qty")
    def _val_qty(self, key, value):
        return as_qty(value)

    @validates("unit_price", "line_total")
    def _val_money(self, key, value):
        return as_money(value)


# =============================================================================
# Contas a pagar e a receber
# =============================================================================

class Payable(db.Model, TimestampMixin, OrgScopedMixin):
    __tablename__ = "payables"

    id = Column(Integer, primary_key=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False, index=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(MONEY, nullable=False)
    due_date = Column(DateTime, nullable=False, index=True)
    status = Column(PayableStatusEnum, default="open", nullable=False, index=True)
    settled_at = Column(DateTime, nullable=True)

    supplier = relationship("Supplier")
    purchase = relationship("Purchase", backref=backref("payable", uselist=False))

    __table_args__ = (
        UniqueConstraint("purchase_id", name="uq_payables_purchase"),
        CheckConstraint("amount >= 0", name="ck_payables_amount"),
        CheckConstraint(
            "(status = 'open' AND settled_at IS NULL) OR (status = 'paid' AND settled_at IS NOT NULL)",
            name="ck_payables_settled_at",
        ),
    )

    @property
    def counterparty_id(self) -> int:
        return self.supplier_id

    @property
    def source_transaction_id(self) -> int:
        return self.purchase_id


class Receivable(db.Model, TimestampMixin, OrgScopedMixin):
    __tablename__ = "receivables"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(MONEY, nullable=False)
    due_date = Column(DateTime, nullable=False, index=True)
    status = Column(ReceivableStatusEnum, default="open", nullable=False, index=True)
    settled_at = Column(DateTime, nullable=True)

    customer = relationship("Customer")
    sale = relationship("Sale", backref=backref("receivable", uselist=False))

    __table_args__ = (
        UniqueConstraint("sale_id", name="uq_receivables_sale"),
        CheckConstraint("amount >= 0", name="ck_receivables_amount"),
        CheckConstraint(
            "(status = 'open' AND settled_at IS NULL) OR (status = 'received' AND settled_at IS NOT NULL)",
            name="ck_receivables_settled_at",
        ),
    )

    @property
    def counterparty_id(self) -> int:
        return self.customer_id

    @property
    def source_transaction_id(self) -> int:
        return self.sale_id


# =============================================================================
# Auditoria
# =============================================================================

class AuditLog(db.Model, TimestampMixin, OrgScopedMixin):
    __tablename__ = "audit_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    entity = Column(String(60), nullable=False)
    entity_id = Column(Integer, nullable=True)
    action = Column(String(60), nullable=False)  # created, updated, recorded, settled
    payload_json = Column(JSON, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    user = relationship("User")


# =============================================================================
# Índices
# =============================================================================

Index("ix_products_name_lower", func.lower(Product.name))
Index("ix_suppliers_name_lower", func.lower(Supplier.name))
Index("ix_customers_name_lower", func.lower(Customer.name))


# =============================================================================
# Seeds
# =============================================================================

def ensure_admin(email: str, password: str) -> User:
    """Cria organização padrão e admin (valores vindos de ADMIN_EMAIL/ADMIN_PASS da config)."""
    admin_email = email.strip().lower()
    admin_pass = password

    org = Org.query.filter_by(name="Organização Padrão").first()
    if not org:
        org = Org(name="Organização Padrão")
        db.session.add(org)
        db.session.flush()

    user = User.query.filter_by(email=admin_email).first()
    if not user:
        user = User(
            name="Administrador",
            email=admin_email,
            role="admin",
            active=True,
            default_org_id=org.id,
        )
        user.set_password(admin_pass)
        db.session.add(user)

    db.session.commit()
    return user
