# backoffice/auth/routes.py
from __future__ import annotations

from flask import Blueprint, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf

from backoffice.extensions import db
from backoffice.core.context import resolve_tenant
from backoffice.core.forms import LoginForm, validated
from backoffice.core.models import User, utcnow

bp = Blueprint("auth", __name__)


def _user_payload(user) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        # None: sem organização vinculada, as operações serão recusadas
        "org_id": resolve_tenant(user),
    }


@bp.post("/login")
def login():
    form = validated(LoginForm())
    user = User.query.filter(User.email == form.email.data.strip().lower()).first()
    if not user or not user.active or not user.check_password(form.password.data):
        current_app.logger.warning("login failed email=%s", form.email.data)
        return jsonify(error="invalid_credentials", message="Usuário ou senha incorretos"), 401

    login_user(user, remember=bool(form.remember.data))
    user.last_login = utcnow()
    db.session.commit()
    current_app.logger.info("login user=%s org=%s", user.id, user.default_org_id)
    return jsonify(_user_payload(user))


@bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify(ok=True)


@bp.get("/me")
@login_required
def me():
    return jsonify(_user_payload(current_user))


@bp.get("/csrf")
def csrf_token():
    # Clientes JSON mandam o token no cabeçalho X-CSRFToken
    return jsonify(csrf_token=generate_csrf())
