# Overview: Append-only movement journal of a cash session; the only way balances change.

"""
Movement Journal

DESIGN PRINCIPLES:
- A movement is written only against an OPEN session, under the session lock
- Movements are immutable once created (ORM listeners reject UPDATE/DELETE)
- Balances are derived on demand from the journal, never cached
- Manual movements need a human-readable reason of at least 10 characters
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func

from ..context import Actor
from ..errors import NotFound, RequiresSessionOpen, SessionClosed, Unauthorized, ValidationError
from ..extensions import db
from ..models import CashSession, Movement
from ..time_utils import utcnow
from ..validation import MIN_REASON_LENGTH, require_choice, require_positive_amount, require_text
from .concurrency import entity_lock, lock_for_update, transaction


# =============================================================================
# CONSTANTS
# =============================================================================

MOVEMENT_INGRESO = "INGRESO"
MOVEMENT_EGRESO = "EGRESO"
MOVEMENT_TYPES = [MOVEMENT_INGRESO, MOVEMENT_EGRESO]

METHOD_EFECTIVO = "EFECTIVO"
PAYMENT_METHODS = [
    METHOD_EFECTIVO,
    "TARJETA",
    "YAPE",
    "PLIN",
    "TRANSFERENCIA",
    "DEPOSITO",
    "CHEQUE",
]

SOURCE_SALE = "SALE"
SOURCE_CREDIT_NOTE = "CREDIT_NOTE"
SOURCE_PAYMENT = "PAYMENT"
SOURCE_MANUAL = "MANUAL"
MOVEMENT_SOURCES = [SOURCE_SALE, SOURCE_CREDIT_NOTE, SOURCE_PAYMENT, SOURCE_MANUAL]

# Which reference column each source requires (MANUAL takes none)
SOURCE_REFERENCE = {
    SOURCE_SALE: "sale_id",
    SOURCE_CREDIT_NOTE: "credit_note_id",
    SOURCE_PAYMENT: "payment_id",
    SOURCE_MANUAL: None,
}

SESSION_LOCK = "cash_session"


# =============================================================================
# SESSION LOOKUP
# =============================================================================

def get_session(session_id: int, tenant_id: int) -> CashSession:
    session = db.session.query(CashSession).filter_by(id=session_id, tenant_id=tenant_id).first()
    if not session:
        raise NotFound(f"Cash session {session_id} not found", session_id=session_id)
    return session


def lock_session(session_id: int, tenant_id: int) -> CashSession:
    """Row-lock and re-read the session. Caller holds the keyed session lock."""
    session = lock_for_update(
        db.session.query(CashSession).filter_by(id=session_id, tenant_id=tenant_id)
    ).first()
    if not session:
        raise NotFound(f"Cash session {session_id} not found", session_id=session_id)
    return session


def find_open_session(register_id: int, tenant_id: int) -> CashSession | None:
    """The OPEN session of a register, if any."""
    return db.session.query(CashSession).filter_by(
        cash_register_id=register_id,
        tenant_id=tenant_id,
        state="OPEN",
    ).first()


# =============================================================================
# WRITES
# =============================================================================

def append_movement(
    session: CashSession,
    *,
    type: str,
    amount_cents: int,
    payment_method: str,
    description: str,
    source: str,
    created_by_user_id: int | None,
    sale_id: int | None = None,
    credit_note_id: int | None = None,
    payment_id: int | None = None,
) -> Movement:
    """
    Append one movement without committing.

    The caller must hold the keyed session lock and must have loaded the
    session through lock_session() in the current transaction, so that a
    concurrent close cannot compute its balance between this write and the
    commit.
    """
    if not session.is_open:
        raise SessionClosed(f"Session {session.id} is {session.state}", session_id=session.id)

    amount_cents = require_positive_amount(amount_cents)
    movement_type = require_choice(type, "type", MOVEMENT_TYPES)
    method = require_choice(payment_method or METHOD_EFECTIVO, "payment_method", PAYMENT_METHODS)
    source = require_choice(source or SOURCE_MANUAL, "source", MOVEMENT_SOURCES)

    min_length = MIN_REASON_LENGTH if source == SOURCE_MANUAL else 1
    description = require_text(description, "description", min_length=min_length)

    references = {"sale_id": sale_id, "credit_note_id": credit_note_id, "payment_id": payment_id}
    provided = [name for name, value in references.items() if value is not None]
    expected = SOURCE_REFERENCE[source]
    if expected is None and provided:
        raise ValidationError("Manual movements cannot reference a document", field="source")
    if expected is not None and provided != [expected]:
        raise ValidationError(f"{source} movements must reference exactly {expected}", field=expected)

    movement = Movement(
        tenant_id=session.tenant_id,
        session_id=session.id,
        type=movement_type,
        amount_cents=amount_cents,
        payment_method=method,
        description=description,
        source=source,
        sale_id=sale_id,
        credit_note_id=credit_note_id,
        payment_id=payment_id,
        created_by_user_id=created_by_user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def add_movement(
    actor: Actor,
    session_id: int,
    type: str,
    amount_cents: int,
    payment_method: str,
    description: str,
    source: str = SOURCE_MANUAL,
    *,
    sale_id: int | None = None,
    credit_note_id: int | None = None,
    payment_id: int | None = None,
) -> Movement:
    """
    Append a movement to a session's journal.

    Raises:
        SessionClosed: session is not OPEN (including a close that won the race)
        InvalidAmount: amount <= 0
        ValidationError: empty/short description, unknown type/method/source
        Unauthorized: manual movement by someone other than the owner or a supervisor
    """
    with entity_lock(SESSION_LOCK, session_id):
        with transaction():
            session = lock_session(session_id, actor.tenant_id)
            if not session.is_open:
                raise SessionClosed(f"Session {session.id} is {session.state}", session_id=session.id)
            if source == SOURCE_MANUAL and session.user_id != actor.user_id and not actor.is_supervisor:
                raise Unauthorized("Only the session owner or a supervisor can register manual movements")
            movement = append_movement(
                session,
                type=type,
                amount_cents=amount_cents,
                payment_method=payment_method,
                description=description,
                source=source,
                created_by_user_id=actor.user_id,
                sale_id=sale_id,
                credit_note_id=credit_note_id,
                payment_id=payment_id,
            )

    current_app.logger.info(
        "Movement %s %s %d appended to session %s by user %s",
        movement.id, movement.type, movement.amount_cents, session_id, actor.user_id,
    )
    return movement


def record_register_movement(
    actor: Actor,
    register_id: int,
    type: str,
    amount_cents: int,
    payment_method: str,
    description: str,
) -> Movement:
    """
    Manual movement addressed by register instead of session.

    Raises RequiresSessionOpen when the register has no OPEN session, so the
    caller can start the opening flow.
    """
    session = find_open_session(register_id, actor.tenant_id)
    if session is None:
        raise RequiresSessionOpen(f"Register {register_id} has no open session", cash_register_id=register_id)
    try:
        return add_movement(actor, session.id, type, amount_cents, payment_method, description)
    except SessionClosed as exc:
        raise RequiresSessionOpen(f"Register {register_id} has no open session", cash_register_id=register_id) from exc


# =============================================================================
# READS
# =============================================================================

def _net_movements_cents(session_id: int, as_of: datetime | None = None) -> tuple[int, int]:
    incoming = case(
        (Movement.type == MOVEMENT_INGRESO, Movement.amount_cents),
        else_=0,
    )
    outgoing = case(
        (Movement.type == MOVEMENT_EGRESO, Movement.amount_cents),
        else_=0,
    )
    query = db.session.query(
        func.coalesce(func.sum(incoming), 0),
        func.coalesce(func.sum(outgoing), 0),
    ).filter(Movement.session_id == session_id)
    if as_of is not None:
        query = query.filter(Movement.created_at <= as_of)
    ingresos, egresos = query.one()
    return int(ingresos), int(egresos)


def theoretical_balance(session_id: int, as_of: datetime | None = None, *, tenant_id: int | None = None) -> int:
    """
    opening_amount + sum(INGRESO) - sum(EGRESO) over movements created at or
    before as_of (all movements when as_of is None). Pure read.
    """
    query = db.session.query(CashSession).filter_by(id=session_id)
    if tenant_id is not None:
        query = query.filter_by(tenant_id=tenant_id)
    session = query.first()
    if not session:
        raise NotFound(f"Cash session {session_id} not found", session_id=session_id)

    ingresos, egresos = _net_movements_cents(session_id, as_of)
    return session.opening_amount_cents + ingresos - egresos


def movement_totals(session_id: int, as_of: datetime | None = None) -> dict:
    ingresos, egresos = _net_movements_cents(session_id, as_of)
    return {"ingresos_cents": ingresos, "egresos_cents": egresos, "net_cents": ingresos - egresos}


def list_movements(session_id: int, tenant_id: int, *, as_of: datetime | None = None) -> list[Movement]:
    query = db.session.query(Movement).filter_by(session_id=session_id, tenant_id=tenant_id)
    if as_of is not None:
        query = query.filter(Movement.created_at <= as_of)
    return query.order_by(Movement.created_at, Movement.id).all()


def totals_by_payment_method(session_id: int) -> dict[str, dict[str, int]]:
    """Ingresos/egresos per payment method (desglose por método de pago)."""
    rows = db.session.query(
        Movement.payment_method,
        Movement.type,
        func.sum(Movement.amount_cents),
        func.count(Movement.id),
    ).filter(
        Movement.session_id == session_id
    ).group_by(Movement.payment_method, Movement.type).all()

    breakdown: dict[str, dict[str, int]] = {}
    for method, movement_type, total, count in rows:
        entry = breakdown.setdefault(method, {"ingresos_cents": 0, "egresos_cents": 0, "count": 0})
        if movement_type == MOVEMENT_INGRESO:
            entry["ingresos_cents"] += int(total or 0)
        else:
            entry["egresos_cents"] += int(total or 0)
        entry["count"] += int(count)

    for entry in breakdown.values():
        entry["net_cents"] = entry["ingresos_cents"] - entry["egresos_cents"]
    return breakdown
