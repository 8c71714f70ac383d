"""
Cash Session Service

WHY: A cash session is one cashier's period of accountability on one
register. Everything that moves cash is attached to exactly one OPEN session,
and the session's close is where the money is reconciled.

DESIGN PRINCIPLES:
- At most one OPEN session per register (service check + partial unique index)
- CLOSED is terminal; there is no reopen
- The owner closes normally; anyone else needs the administrative path
- Blind count: the expected balance of an OPEN session is never shown to the
  cashier, only to supervisors, and is revealed in the close response
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..context import Actor
from ..errors import NotFound, SessionAlreadyOpen, SessionClosed, Unauthorized, ValidationError
from ..extensions import db
from ..models import CashRegister, CashSession, Movement
from ..time_utils import utcnow
from ..validation import require_non_negative_amount
from . import audit_service
from .concurrency import entity_lock, lock_for_update, transaction
from .journal_service import (
    SESSION_LOCK,
    find_open_session,
    get_session,
    list_movements,
    lock_session,
    movement_totals,
    theoretical_balance,
    totals_by_payment_method,
)
from .reconciliation_service import (
    CLOSURE_NORMAL,
    ClosureResult,
    finalize_close,
    resolve_counted_amount,
)


REGISTER_LOCK = "cash_register"

STATE_OPEN = "OPEN"
STATE_CLOSED = "CLOSED"


# =============================================================================
# OPEN
# =============================================================================

def open_session(actor: Actor, register_id: int, opening_amount_cents: Any) -> CashSession:
    """
    Open a session on a register for the calling cashier.

    Raises:
        ValidationError: negative opening amount, or inactive register
        NotFound: unknown register (or one of another tenant)
        SessionAlreadyOpen: the register already has an OPEN session
    """
    opening = require_non_negative_amount(opening_amount_cents, "opening_amount_cents")

    with entity_lock(REGISTER_LOCK, register_id):
        try:
            with transaction():
                register = lock_for_update(
                    db.session.query(CashRegister).filter_by(id=register_id, tenant_id=actor.tenant_id)
                ).first()
                if not register:
                    raise NotFound(f"Cash register {register_id} not found", cash_register_id=register_id)
                if not register.is_active:
                    raise ValidationError("Cannot open a session on an inactive register", field="cash_register_id")

                existing = find_open_session(register_id, actor.tenant_id)
                if existing:
                    raise SessionAlreadyOpen(
                        f"Register {register.code} already has open session {existing.id}",
                        session_id=existing.id,
                    )

                session = CashSession(
                    tenant_id=actor.tenant_id,
                    cash_register_id=register_id,
                    user_id=actor.user_id,
                    state=STATE_OPEN,
                    opening_amount_cents=opening,
                    opened_at=utcnow(),
                )
                db.session.add(session)
                db.session.flush()

                audit_service.append_audit_event(
                    tenant_id=actor.tenant_id,
                    event_type=audit_service.EVENT_SESSION_OPENED,
                    event_category="cash_session",
                    entity_type="cash_session",
                    entity_id=session.id,
                    actor_user_id=actor.user_id,
                    subject_user_id=actor.user_id,
                    cash_register_id=register_id,
                    session_id=session.id,
                    amount_cents=opening,
                    note="Session opened",
                    occurred_at=session.opened_at,
                )
        except IntegrityError as exc:
            # Another process won the race past the service check
            raise SessionAlreadyOpen(f"Register {register_id} already has an open session") from exc

    current_app.logger.info(
        "Session %s opened on register %s by user %s with %d",
        session.id, register_id, actor.user_id, opening,
    )
    return session


# =============================================================================
# NORMAL CLOSE
# =============================================================================

def close_session_normal(
    actor: Actor,
    session_id: int,
    counted_amount_cents: Any = None,
    *,
    denominations: Mapping | None = None,
    notes: str | None = None,
) -> ClosureResult:
    """
    Close the caller's own session with a blind count.

    The counted amount (or its denomination breakdown) is validated before
    any lock is taken; the theoretical balance is computed under the session
    lock, so it covers exactly the movements committed before the close.

    Raises:
        ValidationError: bad counted amount / denominations
        SessionClosed: the session is already CLOSED
        Unauthorized: caller does not own the session
    """
    counted = resolve_counted_amount(counted_amount_cents, denominations)

    with entity_lock(SESSION_LOCK, session_id):
        with transaction():
            session = lock_session(session_id, actor.tenant_id)
            if not session.is_open:
                raise SessionClosed(f"Session {session.id} is {session.state}", session_id=session.id)
            if session.user_id != actor.user_id:
                raise Unauthorized(
                    "Only the session owner can close it; use the administrative close",
                    session_id=session.id,
                )
            result = finalize_close(
                session,
                counted_cents=counted,
                closed_by_user_id=actor.user_id,
                closure_type=CLOSURE_NORMAL,
                notes=notes,
            )

    current_app.logger.info(
        "Session %s closed by owner %s: %s (%d)",
        session_id, actor.user_id, result.classification, result.discrepancy_cents,
    )
    return result


# =============================================================================
# READS
# =============================================================================

def can_view_theoretical(actor: Actor, session: CashSession) -> bool:
    """Blind count: expected cash of an OPEN session is for supervisors only."""
    return not session.is_open or actor.is_supervisor


def serialize_session(actor: Actor, session: CashSession) -> dict:
    return session.to_dict(reveal_theoretical=can_view_theoretical(actor, session))


def get_session_for(actor: Actor, session_id: int) -> CashSession:
    """Session visible to the actor: owners see their own, supervisors see all."""
    session = get_session(session_id, actor.tenant_id)
    if session.user_id != actor.user_id and not actor.is_supervisor:
        raise Unauthorized("You can only view your own sessions", session_id=session_id)
    return session


def get_open_session(actor: Actor, register_id: int) -> CashSession | None:
    return find_open_session(register_id, actor.tenant_id)


def get_active_session_for_user(actor: Actor) -> CashSession | None:
    """The caller's own OPEN session ("mi sesión activa"), if any."""
    return db.session.query(CashSession).filter_by(
        tenant_id=actor.tenant_id,
        user_id=actor.user_id,
        state=STATE_OPEN,
    ).order_by(CashSession.opened_at.desc()).first()


def list_open_sessions(actor: Actor) -> list[CashSession]:
    """Supervisor monitor of every OPEN session of the tenant."""
    if not actor.is_supervisor:
        raise Unauthorized("Only supervisors can monitor open sessions")
    return db.session.query(CashSession).filter_by(
        tenant_id=actor.tenant_id,
        state=STATE_OPEN,
    ).order_by(CashSession.opened_at).all()


def list_closed_sessions(
    actor: Actor,
    *,
    only_discrepancies: bool = False,
    user_id: int | None = None,
    limit: int = 100,
) -> list[CashSession]:
    """
    Closure history, newest first.

    Cashiers only see their own sessions; supervisors may filter by user.
    only_discrepancies keeps FALTANTE / SOBRANTE closes ("solo descuadres").
    """
    if not actor.is_supervisor:
        if user_id is not None and user_id != actor.user_id:
            raise Unauthorized("You can only view your own closures")
        user_id = actor.user_id

    query = db.session.query(CashSession).filter_by(tenant_id=actor.tenant_id, state=STATE_CLOSED)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if only_discrepancies:
        query = query.filter(CashSession.discrepancy_cents != 0)
    return query.order_by(CashSession.closed_at.desc(), CashSession.id.desc()).limit(limit).all()


def theoretical_balance_for(actor: Actor, session_id: int, as_of: datetime | None = None) -> int:
    """
    Theoretical balance, subject to the blind contract.

    Raises Unauthorized for a non-supervisor while the session is OPEN.
    """
    session = get_session_for(actor, session_id)
    if not can_view_theoretical(actor, session):
        raise Unauthorized("The expected balance is hidden until the blind count is submitted", session_id=session_id)
    return theoretical_balance(session.id, as_of, tenant_id=actor.tenant_id)


def list_session_movements(actor: Actor, session_id: int, as_of: datetime | None = None) -> list[Movement]:
    """
    Journal of a session, subject to the blind contract.

    Summing the movements of an OPEN session onto its opening amount gives the
    expected cash, so non-supervisors may only list them after the close.
    """
    session = get_session_for(actor, session_id)
    if not can_view_theoretical(actor, session):
        raise Unauthorized("Movements are hidden until the blind count is submitted", session_id=session_id)
    return list_movements(session.id, actor.tenant_id, as_of=as_of)


def session_summary(actor: Actor, session_id: int) -> dict:
    """
    Session with movement totals and the per-payment-method breakdown.

    Totals per method are what the cashier declared; they never reveal the
    expected cash of an OPEN session to a non-supervisor.
    """
    session = get_session_for(actor, session_id)
    reveal = can_view_theoretical(actor, session)
    movement_count = db.session.query(Movement).filter_by(session_id=session.id).count()

    summary = {
        "session": session.to_dict(reveal_theoretical=reveal),
        "movement_count": movement_count,
        "theoretical_cents": None,
    }
    if reveal:
        summary["totals"] = movement_totals(session.id)
        summary["by_payment_method"] = totals_by_payment_method(session.id)
        summary["theoretical_cents"] = (
            session.theoretical_amount_cents
            if not session.is_open
            else theoretical_balance(session.id)
        )
    return summary
