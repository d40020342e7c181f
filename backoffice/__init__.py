# backoffice/__init__.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from werkzeug.exceptions import HTTPException

from .extensions import init_extensions, db
from .core.errors import ServiceError
from .core.models import ensure_admin


class JSONProvider(DefaultJSONProvider):
    """Decimal vira texto (sem perder casas) e datas saem em ISO 8601."""

    @staticmethod
    def default(o):
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


def create_app(config_object="config.Config"):
    app = Flask(__name__)

    # Config básica
    app.config.from_object(config_object)
    app.config.setdefault("WTF_CSRF_TIME_LIMIT", None)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    app.json = JSONProvider(app)

    init_extensions(app)

    # Blueprints
    from .auth.routes import bp as auth_bp
    from .views.dashboard import bp as dashboard_bp, reports_bp
    from .views.products import bp as products_bp
    from .views.parties import customers_bp, suppliers_bp
    from .views.ledger import sales_bp, purchases_bp
    from .views.financial import bp as financial_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(reports_bp, url_prefix="/reports")
    app.register_blueprint(products_bp, url_prefix="/products")
    app.register_blueprint(customers_bp, url_prefix="/customers")
    app.register_blueprint(suppliers_bp, url_prefix="/suppliers")
    app.register_blueprint(sales_bp, url_prefix="/sales")
    app.register_blueprint(purchases_bp, url_prefix="/purchases")
    app.register_blueprint(financial_bp, url_prefix="/financial")

    # Tenant resolvido uma vez por requisição
    from .core.context import bind_request_context
    app.before_request(bind_request_context)

    # Healthcheck simples
    @app.get("/health")
    def health():
        return jsonify(ok=True)

    # Erros: sempre JSON
    @app.errorhandler(ServiceError)
    def service_error(e: ServiceError):
        if e.status >= 500:
            app.logger.error("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        name = (e.name or "error").lower().replace(" ", "_")
        return jsonify(error=name, message=e.description), e.code

    @app.errorhandler(500)
    def server_error(e):
        app.logger.exception("erro inesperado")
        return jsonify(error="internal_error", message="Erro interno"), 500

    # Primeira execução: cria tabelas, organização padrão e admin
    with app.app_context():
        db.create_all()
        if app.config.get("SEED_ADMIN"):
            ensure_admin(app.config["ADMIN_EMAIL"], app.config["ADMIN_PASS"])

    return app
