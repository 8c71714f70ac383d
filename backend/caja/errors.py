# Overview: Error taxonomy shared by every service and rendered by the API layer.

"""
Caja error taxonomy.

Every failure of a core operation is one of the classes below. Each class
carries:
- kind: stable machine code the UI switches on
- message: one stable, user-facing message (Spanish, shown as-is by the POS)
- status_code: HTTP status used by the API layer

Errors are terminal for the operation that raised them. Only Conflict is
retryable, and callers are expected to retry it a small bounded number of times.
"""

from __future__ import annotations

from typing import Any


class CajaError(Exception):
    """Base class for all core errors."""

    kind = "CAJA_ERROR"
    message = "No se pudo completar la operación"
    status_code = 400
    retryable = False

    def __init__(self, detail: str | None = None, **context: Any):
        super().__init__(detail or self.message)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict:
        payload = {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(CajaError):
    """Malformed input: bad enum, short justification/description, bad amount."""

    kind = "VALIDATION_ERROR"
    message = "Los datos enviados no son válidos"
    status_code = 400


class InvalidAmount(ValidationError):
    kind = "INVALID_AMOUNT"
    message = "El monto debe ser mayor a 0"


class NotFound(CajaError):
    kind = "NOT_FOUND"
    message = "El recurso solicitado no existe"
    status_code = 404


class Unauthorized(CajaError):
    """Caller lacks the capability for this operation (or is the wrong user)."""

    kind = "UNAUTHORIZED"
    message = "No tienes autorización para realizar esta operación"
    status_code = 403


class SessionClosed(CajaError):
    kind = "SESSION_CLOSED"
    message = "La sesión de caja ya está cerrada"
    status_code = 409


class SessionAlreadyOpen(CajaError):
    kind = "SESSION_ALREADY_OPEN"
    message = "La caja ya tiene una sesión abierta"
    status_code = 409


class RequiresSessionOpen(CajaError):
    """No OPEN session for the register; the caller should prompt an opening flow."""

    kind = "REQUIRES_SESSION_OPEN"
    message = "Debes abrir una sesión de caja antes de continuar"
    status_code = 409

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["requires_action"] = "OPEN_SESSION"
        return payload


class Conflict(CajaError):
    """Lost a concurrency race. Safe to retry."""

    kind = "CONFLICT"
    message = "Otra operación modificó los datos al mismo tiempo, intenta nuevamente"
    status_code = 409
    retryable = True


class SaleNotAccepted(CajaError):
    kind = "SALE_NOT_ACCEPTED"
    message = "Solo se pueden emitir notas de crédito sobre ventas aceptadas por SUNAT"
    status_code = 422


class SaleAlreadyAnnulledOrReturned(CajaError):
    kind = "SALE_ALREADY_ANNULLED_OR_RETURNED"
    message = "La venta ya fue anulada o devuelta en su totalidad"
    status_code = 422


class RefundExceedsBalance(CajaError):
    kind = "REFUND_EXCEEDS_BALANCE"
    message = "El monto excede el saldo disponible para notas de crédito"
    status_code = 422


class CreditLimitExceeded(CajaError):
    kind = "CREDIT_LIMIT_EXCEEDED"
    message = "El saldo a crédito excede el crédito disponible del cliente"
    status_code = 422


class NoCreditLine(CreditLimitExceeded):
    kind = "NO_CREDIT_LINE"
    message = "El cliente no tiene una línea de crédito habilitada"

