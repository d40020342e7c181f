# backoffice/extensions.py
from __future__ import annotations

from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager, AnonymousUserMixin
from flask_wtf import CSRFProtect
from flask_cors import CORS
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()


class AnonymousUser(AnonymousUserMixin):
    # Visitante não tem organização
    default_org_id = None
    active = False


def _sqlite_on_connect(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    CORS(
        app,
        supports_credentials=True,
        resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}},
        expose_headers=["Idempotency-Key"],
    )

    login_manager.anonymous_user = AnonymousUser

    @login_manager.unauthorized_handler
    def _unauthorized():
        # API JSON: nada de redirect para tela de login
        return jsonify(error="unauthorized", message="Login necessário"), 401

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            event.listen(db.engine, "connect", _sqlite_on_connect)

    from backoffice.core.models import User  # noqa: import tardio (ciclo com models)

    @login_manager.user_loader
    def load_user(user_id: str):
        if not user_id.isdigit():
            return None
        user = db.session.get(User, int(user_id))
        return user if user is not None and user.active else None
