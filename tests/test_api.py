"""API JSON de ponta a ponta (login, cadastros, vendas, financeiro e relatórios)."""
import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.core.models import User
from config import TestConfig

from conftest import PASSWORD


@pytest.fixture
def seeded(api):
    product = api.post("/products/", json={
        "name": "Café 500g", "cost_price": 2, "sale_price": "5,00", "min_stock": 5, "opening_stock": 10,
    }).get_json()
    customer = api.post("/customers/", json={"name": "Cliente C"}).get_json()
    supplier = api.post("/suppliers/", json={"name": "Fornecedor F"}).get_json()
    return {"product": product, "customer": customer, "supplier": supplier}


def _sale_body(seeded, qty=3, price="5.00", **extra):
    body = {
        "customer_id": seeded["customer"]["id"],
        "items": [{"product_id": seeded["product"]["id"], "qty": qty, "unit_price": price}],
    }
    body.update(extra)
    return body


class TestAuth:

    def test_health_is_public(self, app):
        assert app.test_client().get("/health").get_json() == {"ok": True}

    def test_login_required(self, app):
        resp = app.test_client().get("/products/")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthorized"

    def test_bad_credentials(self, api):
        resp = api.post("/auth/login", json={"email": "ana@loja.com.br", "password": "errada123"})
        assert resp.status_code == 401

    def test_invalid_login_payload(self, app):
        resp = app.test_client().post("/auth/login", json={"email": "nao-e-email", "password": "x"})
        assert resp.status_code == 400
        assert set(resp.get_json()["details"]) == {"email", "password"}

    def test_me_and_logout(self, api):
        me = api.get("/auth/me").get_json()
        assert me["email"] == "ana@loja.com.br"
        assert me["org_id"] is not None
        assert api.post("/auth/logout").status_code == 200
        assert api.get("/auth/me").status_code == 401

    def test_user_without_org_is_forbidden(self, app):
        with app.app_context():
            user = User(name="Sem Loja", email="solto@loja.com.br", active=True)
            user.set_password(PASSWORD)
            db.session.add(user)
            db.session.commit()
        client = app.test_client()
        assert client.post("/auth/login", json={"email": "solto@loja.com.br", "password": PASSWORD}).status_code == 200
        resp = client.get("/products/")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "no_tenant_bound"

    def test_every_request_gets_a_context(self, api):
        # o hook de antes da requisição não pode responder no lugar da view
        resp = api.get("/health")
        assert resp.status_code == 200
        assert api.get("/products/").status_code == 200

    def test_seed_admin_uses_config(self):
        cfg = type("SeedConfig", (TestConfig,), {
            "SEED_ADMIN": True, "ADMIN_EMAIL": "Dono@Loja.com.br", "ADMIN_PASS": "troque123",
        })
        app = create_app(cfg)
        client = app.test_client()
        resp = client.post("/auth/login", json={"email": "dono@loja.com.br", "password": "troque123"})
        assert resp.status_code == 200
        assert resp.get_json()["org_id"] is not None
        with app.app_context():
            db.drop_all()


class TestCatalogApi:

    def test_product_created_with_decimal_strings(self, seeded):
        product = seeded["product"]
        assert product["sale_price"] == "5.00"
        assert product["stock_qty"] == "10.0000"
        assert product["low_stock"] is False

    def test_stock_cannot_be_edited(self, api, seeded):
        pid = seeded["product"]["id"]
        resp = api.put(f"/products/{pid}", json={"name": "Café", "stock_qty": 99})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "invalid_input"

        resp = api.put(f"/products/{pid}", json={"name": "Café", "sale_price": "6.50"})
        assert resp.status_code == 200
        assert resp.get_json()["sale_price"] == "6.50"

    def test_missing_name(self, api):
        resp = api.post("/products/", json={"sale_price": 1})
        assert resp.status_code == 400
        assert "name" in resp.get_json()["details"]

    def test_parties(self, api, seeded):
        assert [c["name"] for c in api.get("/customers/").get_json()["items"]] == ["Cliente C"]
        assert api.get(f"/suppliers/{seeded['customer']['id'] + 50}").status_code == 404


class TestLedgerApi:

    def test_sale_flow(self, api, seeded):
        resp = api.post("/sales/", json=_sale_body(seeded))
        assert resp.status_code == 201
        sale = resp.get_json()
        assert sale["total_amount"] == "15.00"
        assert sale["items"][0]["line_total"] == "15.00"
        assert sale["receivable"]["status"] == "open"
        assert sale["receivable"]["amount"] == "15.00"

        product = api.get(f"/products/{seeded['product']['id']}").get_json()
        assert product["stock_qty"] == "7.0000"

        listed = api.get("/sales/").get_json()["items"]
        assert [s["id"] for s in listed] == [sale["id"]]
        assert listed[0]["customer_name"] == "Cliente C"

    def test_idempotency_header(self, api, seeded):
        first = api.post("/sales/", json=_sale_body(seeded), headers={"Idempotency-Key": "abc"}).get_json()
        second = api.post("/sales/", json=_sale_body(seeded), headers={"Idempotency-Key": "abc"}).get_json()
        assert first["id"] == second["id"]
        assert len(api.get("/sales/").get_json()["items"]) == 1

    def test_invalid_items(self, api, seeded):
        resp = api.post("/sales/", json={"customer_id": seeded["customer"]["id"], "items": []})
        assert resp.status_code == 400
        resp = api.post("/sales/", json=_sale_body(seeded, qty="abc"))
        assert resp.status_code == 400

    def test_missing_unit_price(self, api, seeded):
        body = _sale_body(seeded)
        del body["items"][0]["unit_price"]
        resp = api.post("/sales/", json=body)
        assert resp.status_code == 400
        assert "unit_price" in resp.get_json()["details"]
        assert api.get("/sales/").get_json()["items"] == []

    def test_zero_unit_price_is_accepted(self, api, seeded):
        resp = api.post("/sales/", json=_sale_body(seeded, qty=1, price=0))
        assert resp.status_code == 201
        assert resp.get_json()["total_amount"] == "0.00"

    def test_reused_key_with_other_items(self, api, seeded):
        first = api.post("/sales/", json=_sale_body(seeded, idempotency_key="k1"))
        assert first.status_code == 201
        resp = api.post("/sales/", json=_sale_body(seeded, qty=9, price="50.00", idempotency_key="k1"))
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "idempotency_conflict"
        assert resp.get_json()["details"] == {"existing_id": first.get_json()["id"]}

    def test_purchase_with_zero_qty(self, api, seeded):
        resp = api.post("/purchases/", json={
            "supplier_id": seeded["supplier"]["id"],
            "items": [{"product_id": seeded["product"]["id"], "qty": 0, "unit_price": "1.00"}],
        })
        assert resp.status_code == 400
        assert api.get("/purchases/").get_json()["items"] == []

    def test_purchase_creates_payable(self, api, seeded):
        resp = api.post("/purchases/", json={
            "supplier_id": seeded["supplier"]["id"], "notes": "Compra rápida",
            "items": [{"product_id": seeded["product"]["id"], "qty": 5, "unit_price": "2.00"}],
        })
        assert resp.status_code == 201
        purchase = resp.get_json()
        assert purchase["payable"]["amount"] == "10.00"
        assert api.get(f"/purchases/{purchase['id']}").get_json()["notes"] == "Compra rápida"

    def test_oversell_with_guard(self, app, api, seeded):
        app.config["ALLOW_NEGATIVE_STOCK"] = False
        resp = api.post("/sales/", json=_sale_body(seeded, qty=11))
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "insufficient_stock"


class TestFinancialApi:

    def test_settle_once(self, api, seeded):
        sale = api.post("/sales/", json=_sale_body(seeded)).get_json()
        rid = sale["receivable"]["id"]

        resp = api.post(f"/financial/receivables/{rid}/settle")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "received"
        assert resp.get_json()["settled_at"] is not None

        resp = api.post(f"/financial/receivables/{rid}/settle")
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "already_settled"

        assert api.post(f"/financial/payables/{rid}/settle").status_code == 404
        assert api.post(f"/financial/invoices/{rid}/settle").status_code == 404

    def test_lists_summary_and_due(self, api, seeded):
        api.post("/sales/", json=_sale_body(seeded))
        receivables = api.get("/financial/receivables?status=open").get_json()["items"]
        assert len(receivables) == 1
        assert receivables[0]["counterparty_name"] == "Cliente C"
        assert api.get("/financial/receivables?status=paid").status_code == 400

        summary = api.get("/financial/summary").get_json()
        assert summary["receivables_open"] == "15.00"
        assert summary["payables_open_count"] == 0

        due = api.get("/financial/due?cutoff=2999-01-01&kind=receivable").get_json()
        assert [r["id"] for r in due["receivables"]] == [receivables[0]["id"]]
        assert "payables" not in due
        assert api.get("/financial/due?cutoff=amanha").status_code == 400


class TestReportsApi:

    def test_dashboard_and_reports(self, api, seeded):
        api.post("/sales/", json=_sale_body(seeded, qty=6))

        board = api.get("/dashboard/").get_json()
        assert board["low_stock_count"] == 1
        assert board["receivables_due"] == "30.00"

        stock = api.get("/reports/stock").get_json()
        assert stock["low_stock_products"][0]["name"] == "Café 500g"

        top = api.get("/reports/top-products?limit=1").get_json()["items"]
        assert top[0]["total_qty_sold"] == "6.0000"
        assert top[0]["margin"] == "18.00"

        customers = api.get("/reports/top-customers").get_json()["items"]
        assert customers[0]["average_ticket"] == "30.00"

        assert api.get("/reports/upcoming?days=30").get_json()["receivables_due"] == "30.00"
        assert api.get("/reports/stock-drift").get_json()["items"] == []

    def test_bad_parameters(self, api):
        assert api.get("/reports/top-products?limit=abc").status_code == 400
        assert api.get("/reports/top-products?limit=0").status_code == 400
        assert api.get("/reports/monthly?month=2024-13").status_code == 400
        assert api.get("/reports/monthly?month=2024-03").get_json() == {
            "month": "2024-03", "sales_total": "0.00", "purchases_total": "0.00",
        }
