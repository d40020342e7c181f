"""Cadastro de produtos, clientes e fornecedores."""
from decimal import Decimal

import pytest

from backoffice.extensions import db
from backoffice.core.errors import InvalidInput, NotFound
from backoffice.core.models import StockMove, AuditLog, as_qty
from backoffice.core.services import (
    create_product, get_product, list_products, update_product,
    create_party, get_party, list_parties, update_party,
)


class TestProducts:

    def test_opening_stock_is_a_movement(self, ctx, product):
        moves = StockMove.query.filter_by(product_id=product.id).all()
        assert [(m.kind, as_qty(m.qty)) for m in moves] == [("opening", Decimal("10"))]

    def test_without_opening_stock_no_movement(self, ctx):
        p = create_product(ctx, {"name": "Sal"})
        assert as_qty(p.stock_qty) == Decimal("0")
        assert p.unit == "un"
        assert StockMove.query.filter_by(product_id=p.id).count() == 0

    def test_list_ordered_by_name_and_searchable(self, ctx, product):
        create_product(ctx, {"name": "Biscoito", "barcode": "789 1000"})
        create_product(ctx, {"name": "Água", "category": "Bebidas", "is_active": False})
        assert [p.name for p in list_products(ctx)] == sorted(["Café 500g", "Biscoito", "Água"])
        assert [p.name for p in list_products(ctx, include_inactive=False)] == ["Biscoito", "Café 500g"]
        assert [p.name for p in list_products(ctx, q="bebidas")] == ["Água"]
        assert [p.name for p in list_products(ctx, q="7891000")] == ["Biscoito"]

    def test_update_replaces_metadata(self, ctx, product):
        p = update_product(ctx, product.id, {"name": "Café 1kg", "sale_price": "9.90", "cost_price": "4.00"})
        assert p.name == "Café 1kg"
        assert p.sale_price == Decimal("9.90")
        # campos omitidos voltam ao padrão
        assert p.category is None
        assert p.min_stock == Decimal("0")
        assert as_qty(p.stock_qty) == Decimal("10")
        log = AuditLog.query.filter_by(entity="Product", entity_id=p.id, action="updated").one()
        assert log.payload_json["before"]["name"] == "Café 500g"

    def test_update_rejects_stock_change(self, ctx, product):
        with pytest.raises(InvalidInput):
            update_product(ctx, product.id, {"name": "Café 500g", "stock_qty": "99"})
        assert as_qty(get_product(ctx, product.id).stock_qty) == Decimal("10")

    def test_update_accepts_unchanged_stock(self, ctx, product):
        p = update_product(ctx, product.id, {"name": "Café", "stock_qty": "10.0000"})
        assert p.name == "Café"

    @pytest.mark.parametrize("data", [
        {"name": ""},
        {"name": "X", "sale_price": "-1"},
        {"name": "X", "min_stock": "-0.5"},
        {"name": "X", "cost_price": "abc"},
    ])
    def test_invalid_product(self, ctx, data):
        with pytest.raises(InvalidInput):
            create_product(ctx, data)

    def test_negative_opening_stock(self, ctx):
        with pytest.raises(InvalidInput):
            create_product(ctx, {"name": "X"}, opening_stock="-1")

    def test_barcode_unique_per_org(self, ctx, other_ctx):
        create_product(ctx, {"name": "A", "barcode": "123"})
        create_product(other_ctx, {"name": "A", "barcode": "123"})
        with pytest.raises(InvalidInput):
            create_product(ctx, {"name": "B", "barcode": "1 2 3"})


class TestParties:

    @pytest.mark.parametrize("kind", ["customer", "supplier"])
    def test_crud(self, ctx, kind):
        party = create_party(ctx, kind, {"name": "  Zeca  ", "email": "ZECA@Mail.com"})
        assert party.name == "Zeca"
        assert party.email == "zeca@mail.com"
        create_party(ctx, kind, {"name": "Alice"})
        assert [p.name for p in list_parties(ctx, kind)] == ["Alice", "Zeca"]

        updated = update_party(ctx, kind, party.id, {"name": "José", "phone": "11 9999-0000"})
        assert updated.name == "José"
        assert updated.email is None
        assert get_party(ctx, kind, party.id).phone == "11 9999-0000"

    def test_name_required(self, ctx):
        with pytest.raises(InvalidInput):
            create_party(ctx, "customer", {"name": "   "})

    def test_unknown_kind(self, ctx):
        with pytest.raises(InvalidInput):
            list_parties(ctx, "employee")

    def test_customer_is_not_a_supplier(self, ctx, customer):
        with pytest.raises(NotFound):
            get_party(ctx, "supplier", customer.id + 1000)
        assert list_parties(ctx, "supplier") == []
