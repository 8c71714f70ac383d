"""
Receivables (cobranza)

Collection of credit-sale balances. Each payment (abono) is cash received
at a register, so it posts an INGRESO with source=PAYMENT into that
register's open session, in the same transaction that lowers the balance.

Display status is derived at read time:
    PAGADA / CANCELADA   stored terminal states
    VENCIDA              VIGENTE and due_date < today
    POR_VENCER           VIGENTE and due within CAJA_RECEIVABLE_DUE_SOON_DAYS
    VIGENTE              otherwise
"""

from __future__ import annotations

from datetime import date
from typing import Any

from flask import current_app

from ..context import Actor
from ..errors import NotFound, RequiresSessionOpen, ValidationError
from ..extensions import db
from ..models import AccountReceivable, ReceivablePayment
from ..time_utils import today, utcnow
from ..validation import require_choice, require_positive_amount
from .concurrency import entity_locks, lock_for_update, run_with_retry, transaction
from .credit_note_service import RECEIVABLE_LOCK
from .journal_service import (
    METHOD_EFECTIVO,
    MOVEMENT_INGRESO,
    PAYMENT_METHODS,
    SESSION_LOCK,
    SOURCE_PAYMENT,
    append_movement,
    find_open_session,
    lock_session,
)


STATUS_VIGENTE = "VIGENTE"
STATUS_POR_VENCER = "POR_VENCER"
STATUS_VENCIDA = "VENCIDA"
STATUS_PAGADA = "PAGADA"
STATUS_CANCELADA = "CANCELADA"
DISPLAY_STATUSES = [STATUS_VIGENTE, STATUS_POR_VENCER, STATUS_VENCIDA, STATUS_PAGADA, STATUS_CANCELADA]


def display_status(receivable: AccountReceivable, as_of: date | None = None, due_soon_days: int | None = None) -> str:
    if receivable.status != STATUS_VIGENTE:
        return receivable.status
    if due_soon_days is None:
        due_soon_days = int(current_app.config.get("CAJA_RECEIVABLE_DUE_SOON_DAYS", 7))
    as_of = as_of or today()
    days_left = (receivable.due_date - as_of).days
    if days_left < 0:
        return STATUS_VENCIDA
    if days_left <= due_soon_days:
        return STATUS_POR_VENCER
    return STATUS_VIGENTE


def get_receivable(actor: Actor, receivable_id: int) -> AccountReceivable:
    receivable = db.session.query(AccountReceivable).filter_by(id=receivable_id, tenant_id=actor.tenant_id).first()
    if not receivable:
        raise NotFound(f"Receivable {receivable_id} not found", receivable_id=receivable_id)
    return receivable


def list_receivables(actor: Actor, *, client_id: int | None = None, status: str | None = None) -> list[dict]:
    """Receivables with their display status, oldest due first."""
    if status is not None:
        status = require_choice(status, "status", DISPLAY_STATUSES)

    query = db.session.query(AccountReceivable).filter_by(tenant_id=actor.tenant_id)
    if client_id is not None:
        query = query.filter_by(client_id=client_id)

    rows = []
    as_of = today()
    for receivable in query.order_by(AccountReceivable.due_date, AccountReceivable.id).all():
        shown = display_status(receivable, as_of)
        if status is None or shown == status:
            rows.append(receivable.to_dict(display_status=shown))
    return rows


def register_receivable_payment(
    actor: Actor,
    receivable_id: int,
    amount_cents: Any,
    payment_method: Any = METHOD_EFECTIVO,
    *,
    register_id: int,
) -> ReceivablePayment:
    """
    Collect a payment against a receivable at a register.

    Raises:
        InvalidAmount: amount <= 0
        ValidationError: amount above the pending balance, or receivable not VIGENTE
        RequiresSessionOpen: the register has no OPEN session
        NotFound: unknown receivable
    """
    amount = require_positive_amount(amount_cents)
    method = require_choice(payment_method or METHOD_EFECTIVO, "payment_method", PAYMENT_METHODS)
    get_receivable(actor, receivable_id)

    open_session = find_open_session(register_id, actor.tenant_id)
    if open_session is None:
        raise RequiresSessionOpen(f"Register {register_id} has no open session", cash_register_id=register_id)
    session_id = open_session.id

    def _op() -> ReceivablePayment:
        with entity_locks((RECEIVABLE_LOCK, receivable_id), (SESSION_LOCK, session_id)):
            with transaction():
                receivable = lock_for_update(
                    db.session.query(AccountReceivable).filter_by(id=receivable_id, tenant_id=actor.tenant_id)
                ).first()
                if receivable.status != STATUS_VIGENTE or receivable.saldo_pendiente_cents <= 0:
                    raise ValidationError(
                        f"Receivable {receivable_id} is {receivable.status}",
                        field="receivable_id",
                    )
                if amount > receivable.saldo_pendiente_cents:
                    raise ValidationError(
                        f"Payment {amount} exceeds pending balance {receivable.saldo_pendiente_cents}",
                        field="amount_cents",
                    )

                session = lock_session(session_id, actor.tenant_id)
                if not session.is_open:
                    raise RequiresSessionOpen(
                        f"Register {register_id} has no open session",
                        cash_register_id=register_id,
                    )

                payment = ReceivablePayment(
                    tenant_id=actor.tenant_id,
                    receivable_id=receivable.id,
                    session_id=session.id,
                    amount_cents=amount,
                    payment_method=method,
                    created_by_user_id=actor.user_id,
                    created_at=utcnow(),
                )
                db.session.add(payment)
                db.session.flush()

                append_movement(
                    session,
                    type=MOVEMENT_INGRESO,
                    amount_cents=amount,
                    payment_method=method,
                    description=f"Cobranza cuenta {receivable.id} - venta {receivable.sale_id}",
                    source=SOURCE_PAYMENT,
                    created_by_user_id=actor.user_id,
                    payment_id=payment.id,
                )

                receivable.saldo_pendiente_cents -= amount
                if receivable.saldo_pendiente_cents == 0:
                    receivable.status = STATUS_PAGADA
                db.session.flush()
                return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Payment %s of %d on receivable %s collected by user %s",
        payment.id, amount, receivable_id, actor.user_id,
    )
    return payment
