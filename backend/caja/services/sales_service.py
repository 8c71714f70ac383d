"""
Sales Intake

WHY: Every sale moves money or credit, so it is posted together with its
cash movement (CONTADO) or its receivable (CREDITO) in one transaction. A
sale without an open session would be cash nobody is accountable for, so
sales require an OPEN session on their register.

DESIGN PRINCIPLES:
- CONTADO: one INGRESO of the full total, source=SALE
- CREDITO: credit line checked under the client lock, receivable created with
  due date = today + dias_credito, INGRESO only for the initial payment
- The sale row is immutable afterwards except for sunat_state, which the
  SUNAT collaborator reports through set_sale_sunat_state()
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from flask import current_app

from ..context import Actor
from ..errors import NotFound, RequiresSessionOpen, ValidationError
from ..extensions import db
from ..models import AccountReceivable, Client, Sale
from ..time_utils import today, utcnow
from ..validation import require_choice, require_positive_amount
from .concurrency import entity_locks, lock_for_update, run_with_retry, transaction
from .credit_note_service import (
    CONDICION_CONTADO,
    CONDICION_CREDITO,
    SALE_LOCK,
    SUNAT_ACEPTADO,
    SUNAT_PENDIENTE,
    SUNAT_RECHAZADO,
    SUNAT_STATES,
)
from .credit_sale_service import CLIENT_LOCK, ensure_credit_sale_allowed, get_client, parse_credit_amounts
from .journal_service import (
    METHOD_EFECTIVO,
    MOVEMENT_INGRESO,
    PAYMENT_METHODS,
    SESSION_LOCK,
    SOURCE_SALE,
    append_movement,
    find_open_session,
    lock_session,
)


CONDICIONES_PAGO = [CONDICION_CONTADO, CONDICION_CREDITO]

# SUNAT transitions reported by the collaborator; PENDIENTE resolves exactly once
ALLOWED_SUNAT_TRANSITIONS = {
    SUNAT_PENDIENTE: {SUNAT_ACEPTADO, SUNAT_RECHAZADO},
    SUNAT_ACEPTADO: set(),
    SUNAT_RECHAZADO: set(),
}


def _require_open_session(register_id: int, tenant_id: int):
    session = find_open_session(register_id, tenant_id)
    if session is None:
        raise RequiresSessionOpen(f"Register {register_id} has no open session", cash_register_id=register_id)
    return session


def create_sale(
    actor: Actor,
    register_id: int,
    total_cents: Any,
    condicion_pago: Any = CONDICION_CONTADO,
    payment_method: Any = METHOD_EFECTIVO,
    *,
    client_id: int | None = None,
    initial_payment_cents: Any = 0,
) -> Sale:
    """
    Post a sale on a register's open session.

    Raises:
        ValidationError / InvalidAmount: malformed amounts or enums, missing client
        RequiresSessionOpen: the register has no OPEN session
        NotFound: unknown client
        NoCreditLine / CreditLimitExceeded: CREDITO sale over the client's line
        Conflict: concurrent writers exhausted the retry budget
    """
    condicion = require_choice(condicion_pago, "condicion_pago", CONDICIONES_PAGO)
    method = require_choice(payment_method or METHOD_EFECTIVO, "payment_method", PAYMENT_METHODS)

    if condicion == CONDICION_CREDITO:
        if client_id is None:
            raise ValidationError("Credit sales require a client", field="client_id")
        total, initial = parse_credit_amounts(total_cents, initial_payment_cents)
        get_client(client_id, actor.tenant_id)
    else:
        total = require_positive_amount(total_cents, "total_cents")
        initial = 0

    session_id = _require_open_session(register_id, actor.tenant_id).id

    lock_keys = []
    if condicion == CONDICION_CREDITO:
        lock_keys.append((CLIENT_LOCK, client_id))
    lock_keys.append((SESSION_LOCK, session_id))

    def _op() -> Sale:
        with entity_locks(*lock_keys):
            with transaction():
                client = None
                if condicion == CONDICION_CREDITO:
                    client = lock_for_update(
                        db.session.query(Client).filter_by(id=client_id, tenant_id=actor.tenant_id)
                    ).first()

                session = lock_session(session_id, actor.tenant_id)
                if not session.is_open:
                    raise RequiresSessionOpen(
                        f"Register {register_id} has no open session",
                        cash_register_id=register_id,
                    )

                if client is not None:
                    ensure_credit_sale_allowed(client, total, initial)
                    # Forces a version bump so a concurrent approval for this client goes stale
                    client.credit_sales_count = (client.credit_sales_count or 0) + 1

                sale = Sale(
                    tenant_id=actor.tenant_id,
                    cash_register_id=register_id,
                    session_id=session.id,
                    client_id=client_id,
                    user_id=actor.user_id,
                    total_cents=total,
                    condicion_pago=condicion,
                    payment_method=method,
                    initial_payment_cents=initial,
                    sunat_state=SUNAT_PENDIENTE,
                    created_at=utcnow(),
                )
                db.session.add(sale)
                db.session.flush()

                if condicion == CONDICION_CONTADO:
                    append_movement(
                        session,
                        type=MOVEMENT_INGRESO,
                        amount_cents=total,
                        payment_method=method,
                        description=f"Venta {sale.id}",
                        source=SOURCE_SALE,
                        created_by_user_id=actor.user_id,
                        sale_id=sale.id,
                    )
                else:
                    financed = total - initial
                    receivable = AccountReceivable(
                        tenant_id=actor.tenant_id,
                        client_id=client.id,
                        sale_id=sale.id,
                        amount_cents=financed,
                        saldo_pendiente_cents=financed,
                        due_date=today() + timedelta(days=client.dias_credito or 0),
                        status="VIGENTE",
                        created_at=sale.created_at,
                    )
                    db.session.add(receivable)
                    if initial > 0:
                        append_movement(
                            session,
                            type=MOVEMENT_INGRESO,
                            amount_cents=initial,
                            payment_method=method,
                            description=f"Pago inicial venta {sale.id}",
                            source=SOURCE_SALE,
                            created_by_user_id=actor.user_id,
                            sale_id=sale.id,
                        )
                    db.session.flush()

                return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s (%s, %d) posted on register %s by user %s",
        sale.id, condicion, total, register_id, actor.user_id,
    )
    return sale


def get_sale(actor: Actor, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, tenant_id=actor.tenant_id).first()
    if not sale:
        raise NotFound(f"Sale {sale_id} not found", sale_id=sale_id)
    return sale


def set_sale_sunat_state(actor: Actor, sale_id: int, state: Any) -> Sale:
    """Record the SUNAT outcome reported for a sale. Re-reporting the same state is a no-op."""
    new_state = require_choice(state, "sunat_state", SUNAT_STATES)
    get_sale(actor, sale_id)

    def _op() -> Sale:
        with entity_locks((SALE_LOCK, sale_id)):
            with transaction():
                sale = lock_for_update(
                    db.session.query(Sale).filter_by(id=sale_id, tenant_id=actor.tenant_id)
                ).first()
                if sale.sunat_state == new_state:
                    return sale
                if new_state not in ALLOWED_SUNAT_TRANSITIONS[sale.sunat_state]:
                    raise ValidationError(
                        f"Cannot move sale {sale_id} from {sale.sunat_state} to {new_state}",
                        field="sunat_state",
                    )
                sale.sunat_state = new_state
                return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s SUNAT state is now %s", sale_id, new_state)
    return sale
