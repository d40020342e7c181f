# backoffice/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base de todos os erros de regra de negócio. `code` vai para a resposta JSON."""

    code = "service_error"
    status = 400
    retryable = False

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        out = {"error": self.code, "message": self.message, "retryable": self.retryable}
        if self.details:
            out["details"] = self.details
        return out


class InvalidInput(ServiceError):
    code = "invalid_input"
    status = 400


class InsufficientStock(InvalidInput):
    code = "insufficient_stock"
    status = 409


class IdempotencyConflict(InvalidInput):
    """Chave de idempotência já usada por outra transação com conteúdo diferente."""

    code = "idempotency_conflict"
    status = 409


class NotFound(ServiceError):
    code = "not_found"
    status = 404


class NoTenantBound(ServiceError):
    code = "no_tenant_bound"
    status = 403

    def __init__(self, message: str = "Usuário não está vinculado a uma organização", **kw):
        super().__init__(message, **kw)


class AlreadySettled(ServiceError):
    code = "already_settled"
    status = 409


class TransientStoreError(ServiceError):
    code = "transient_store_error"
    status = 503
    retryable = True


class WriteFailed(ServiceError):
    """Falha de armazenamento durante a gravação atômica; nada foi persistido."""

    code = "write_failed"
    status = 503
    retryable = True
    stage = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["stage"] = self.stage
        return out


class HeaderWriteFailed(WriteFailed):
    code = "header_write_failed"
    stage = "header"


class StockAdjustFailed(WriteFailed):
    code = "stock_adjust_failed"
    stage = "stock"


class ObligationWriteFailed(WriteFailed):
    code = "obligation_write_failed"
    stage = "obligation"
