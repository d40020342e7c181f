# backoffice/core/context.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import g
from flask_login import current_user

from backoffice.core.errors import NoTenantBound


@dataclass(frozen=True)
class RequestContext:
    """Tenant e usuário já resolvidos para a requisição corrente."""
    org_id: Optional[int]
    user_id: Optional[int] = None

    def require_org(self) -> int:
        if not self.org_id:
            raise NoTenantBound()
        return self.org_id


def resolve_tenant(user) -> Optional[int]:
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    if not getattr(user, "active", True):
        return None
    return getattr(user, "default_org_id", None)


def bind_request_context() -> None:
    # Resolvido uma única vez por requisição (before_request); não pode
    # retornar nada, senão o Flask trata o valor como resposta
    user_id = getattr(current_user, "id", None) if getattr(current_user, "is_authenticated", False) else None
    g.ctx = RequestContext(org_id=resolve_tenant(current_user), user_id=user_id)


def get_context() -> RequestContext:
    if g.get("ctx") is None:
        bind_request_context()
    return g.ctx
