"""
Credit Sale Guard

WHY: A credit sale (venta al crédito) lends the customer merchandise against
their credit line. The outstanding balance after the initial payment must fit
in what is left of the line, and two concurrent approvals for the same client
must not both consume the same available credit.

    credit_available = limite_credito - sum(saldo_pendiente of open receivables)
    open receivable  = status VIGENTE and saldo_pendiente > 0

The advisory check (validate_credit_sale) takes no locks. The binding check
(ensure_credit_sale_allowed) runs inside sales_service.create_sale under the
client's keyed lock and row lock, in the same transaction that inserts the
sale and its receivable.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func

from ..context import Actor
from ..errors import CreditLimitExceeded, NoCreditLine, NotFound, ValidationError
from ..extensions import db
from ..models import AccountReceivable, Client
from ..validation import parse_int, require_positive_amount
from .credit_note_service import GuardDecision


CLIENT_LOCK = "client"

RECEIVABLE_VIGENTE = "VIGENTE"


def get_client(client_id: int, tenant_id: int) -> Client:
    client = db.session.query(Client).filter_by(id=client_id, tenant_id=tenant_id).first()
    if not client:
        raise NotFound(f"Client {client_id} not found", client_id=client_id)
    return client


def outstanding_balance(client_id: int) -> int:
    total = db.session.query(
        func.coalesce(func.sum(AccountReceivable.saldo_pendiente_cents), 0)
    ).filter(
        AccountReceivable.client_id == client_id,
        AccountReceivable.status == RECEIVABLE_VIGENTE,
        AccountReceivable.saldo_pendiente_cents > 0,
    ).scalar()
    return int(total or 0)


def credit_available(client_id: int, tenant_id: int) -> int:
    client = get_client(client_id, tenant_id)
    return client.limite_credito_cents - outstanding_balance(client.id)


def parse_credit_amounts(sale_total_cents: Any, initial_payment_cents: Any) -> tuple[int, int]:
    total = require_positive_amount(sale_total_cents, "total_cents")
    initial = parse_int(initial_payment_cents, "initial_payment_cents", allow_none=True) or 0
    if initial < 0:
        raise ValidationError("initial_payment_cents cannot be negative", field="initial_payment_cents")
    if initial >= total:
        raise ValidationError(
            "initial_payment_cents must be lower than the sale total; use a CONTADO sale instead",
            field="initial_payment_cents",
        )
    return total, initial


def ensure_credit_sale_allowed(client: Client, sale_total_cents: int, initial_payment_cents: int) -> int:
    """
    Raise unless the credit sale fits the client's line. Returns the financed
    balance (total - initial payment).

    The caller holds the client lock for the duration of its transaction.
    """
    if (client.limite_credito_cents or 0) <= 0:
        raise NoCreditLine(f"Client {client.id} has no credit line", client_id=client.id)

    financed = sale_total_cents - initial_payment_cents
    available = client.limite_credito_cents - outstanding_balance(client.id)
    if financed > available:
        raise CreditLimitExceeded(
            f"Financed balance {financed} exceeds available credit {available}",
            client_id=client.id,
            available_cents=available,
            requested_cents=financed,
        )
    return financed


def validate_credit_sale(
    actor: Actor,
    client_id: int,
    sale_total_cents: Any,
    initial_payment_cents: Any = 0,
) -> GuardDecision:
    """
    Advisory credit check shown before confirming a credit sale.

    Malformed amounts raise ValidationError; limit failures come back as a
    blocked decision.
    """
    total, initial = parse_credit_amounts(sale_total_cents, initial_payment_cents)
    client = get_client(client_id, actor.tenant_id)
    try:
        ensure_credit_sale_allowed(client, total, initial)
    except CreditLimitExceeded as exc:
        return GuardDecision.block(exc)
    return GuardDecision.allow()


def credit_summary(actor: Actor, client_id: int) -> dict:
    client = get_client(client_id, actor.tenant_id)
    outstanding = outstanding_balance(client.id)
    return {
        "client_id": client.id,
        "limite_credito_cents": client.limite_credito_cents,
        "saldo_pendiente_cents": outstanding,
        "credito_disponible_cents": client.limite_credito_cents - outstanding,
        "dias_credito": client.dias_credito,
    }
