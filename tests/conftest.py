"""
Fixtures compartilhadas.

- `app`: aplicação com TestConfig (SQLite em memória, CSRF desligado)
- `app_ctx`: contexto de aplicação ativo para chamar os serviços direto
- `ctx`: RequestContext de um usuário vinculado a uma organização
- `api`: cliente HTTP já autenticado (sem contexto de aplicação aberto)
"""
from datetime import datetime
from decimal import Decimal

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.core.context import RequestContext
from backoffice.core.models import Org, User
from backoffice.core.services import create_product, create_party

PASSWORD = "segredo123"

# Instante fixo para as contas de vencimento
NOW = datetime(2024, 3, 10, 12, 0, 0)


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


def make_org_user(name="Loja Centro", email="ana@loja.com.br"):
    org = Org(name=name)
    db.session.add(org)
    db.session.flush()
    user = User(name="Ana", email=email, role="admin", active=True, default_org_id=org.id)
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return org, user


@pytest.fixture
def org_user(app_ctx):
    return make_org_user()


@pytest.fixture
def ctx(org_user):
    org, user = org_user
    return RequestContext(org_id=org.id, user_id=user.id)


@pytest.fixture
def other_ctx(app_ctx):
    org, user = make_org_user(name="Loja Norte", email="bruno@loja.com.br")
    return RequestContext(org_id=org.id, user_id=user.id)


@pytest.fixture
def product(ctx):
    # Produto P do cenário de referência
    return create_product(
        ctx,
        {"name": "Café 500g", "category": "Mercearia", "cost_price": "2.00", "sale_price": "5.00", "min_stock": "5"},
        opening_stock=Decimal("10"),
    )


@pytest.fixture
def customer(ctx):
    return create_party(ctx, "customer", {"name": "Cliente C"})


@pytest.fixture
def supplier(ctx):
    return create_party(ctx, "supplier", {"name": "Fornecedor F", "document": "12.345.678/0001-90"})


@pytest.fixture
def api(app):
    with app.app_context():
        make_org_user()
    client = app.test_client()
    resp = client.post("/auth/login", json={"email": "ana@loja.com.br", "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client
