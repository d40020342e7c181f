"""
Vendas e compras simultâneas sobre o mesmo produto.

Usa SQLite em arquivo (cada thread com sua conexão) para que as gravações
concorram de verdade; o saldo final tem de bater com a soma dos movimentos.
"""
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.core.context import RequestContext
from backoffice.core.errors import AlreadySettled
from backoffice.core.models import Product, Sale, Purchase, Receivable, Payable, as_qty
from backoffice.core.reports import stock_drift
from backoffice.core.services import create_product, create_party, record_sale, record_purchase, settle
from config import TestConfig

from conftest import make_org_user

SELLERS = 4
BUYERS = 2
ROUNDS = 5


@pytest.fixture
def file_app(tmp_path):
    cfg = type("FileConfig", (TestConfig,), {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
    })
    app = create_app(cfg)
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    with file_app.app_context():
        org, user = make_org_user()
        ctx = RequestContext(org_id=org.id, user_id=user.id)
        product = create_product(ctx, {"name": "Café 500g", "min_stock": "5"}, opening_stock="10")
        customer = create_party(ctx, "customer", {"name": "Cliente C"})
        supplier = create_party(ctx, "supplier", {"name": "Fornecedor F"})
        return ctx, product.id, customer.id, supplier.id


def _run_all(tasks):
    barrier = Barrier(len(tasks))

    def wrapped(fn):
        barrier.wait()
        return fn()

    with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
        futures = [pool.submit(wrapped, t) for t in tasks]
        return [f.result() for f in futures]


class TestConcurrentLedger:

    def test_stock_is_conserved(self, file_app, seeded):
        ctx, product_id, customer_id, supplier_id = seeded

        def seller():
            with file_app.app_context():
                for _ in range(ROUNDS):
                    record_sale(ctx, customer_id, [{"product_id": product_id, "qty": 1, "unit_price": "5.00"}])

        def buyer():
            with file_app.app_context():
                for _ in range(ROUNDS):
                    record_purchase(ctx, supplier_id, [{"product_id": product_id, "qty": 2, "unit_price": "2.00"}])

        _run_all([seller] * SELLERS + [buyer] * BUYERS)

        with file_app.app_context():
            expected = Decimal("10") - SELLERS * ROUNDS * 1 + BUYERS * ROUNDS * 2
            assert as_qty(db.session.get(Product, product_id).stock_qty) == expected
            assert Sale.query.count() == SELLERS * ROUNDS
            assert Purchase.query.count() == BUYERS * ROUNDS
            assert Receivable.query.count() == SELLERS * ROUNDS
            assert Payable.query.count() == BUYERS * ROUNDS
            assert stock_drift(ctx) == []

    def test_concurrent_settle_has_one_winner(self, file_app, seeded):
        ctx, product_id, customer_id, _ = seeded
        with file_app.app_context():
            sale_id = record_sale(ctx, customer_id, [{"product_id": product_id, "qty": 1, "unit_price": "5.00"}])
            receivable_id = Receivable.query.filter_by(sale_id=sale_id).one().id

        def attempt():
            with file_app.app_context():
                try:
                    settle(ctx, receivable_id, "receivable")
                    return "settled"
                except AlreadySettled:
                    return "already"

        results = _run_all([attempt] * 4)
        assert sorted(results) == ["already", "already", "already", "settled"]
