"""
Administrative Close

WHY: A cashier may leave without closing (shift change, absence, emergency).
A supervisor can then close the session on their behalf, but never silently:
the justification is mandatory and the close is recorded in the audit log
with both identities.
"""

from __future__ import annotations

from typing import Any

from flask import current_app

from ..context import Actor
from ..errors import SessionClosed, Unauthorized
from ..validation import MIN_REASON_LENGTH, require_non_negative_amount, require_text
from . import audit_service
from .concurrency import entity_lock, transaction
from .journal_service import SESSION_LOCK, lock_session
from .reconciliation_service import CLOSURE_ADMINISTRATIVE, ClosureResult, finalize_close


def close_session_administrative(
    actor: Actor,
    session_id: int,
    counted_amount_cents: Any,
    justification: Any,
    *,
    notes: str | None = None,
) -> ClosureResult:
    """
    Close another user's session as a supervisor.

    Input is validated before the session is locked, so a rejected request
    leaves the session OPEN and untouched.

    Raises:
        Unauthorized: actor is not a supervisor, or owns the session
        ValidationError: justification shorter than 10 characters (after trim)
        SessionClosed: the session is already CLOSED
    """
    if not actor.is_supervisor:
        raise Unauthorized("Administrative close requires supervisor permission", session_id=session_id)

    reason = require_text(justification, "justification", min_length=MIN_REASON_LENGTH)
    counted = require_non_negative_amount(counted_amount_cents, "counted_amount_cents")

    with entity_lock(SESSION_LOCK, session_id):
        with transaction():
            session = lock_session(session_id, actor.tenant_id)
            if not session.is_open:
                raise SessionClosed(f"Session {session.id} is {session.state}", session_id=session.id)
            if session.user_id == actor.user_id:
                raise Unauthorized(
                    "Supervisors close their own sessions through the normal close",
                    session_id=session.id,
                )

            owner_user_id = session.user_id
            result = finalize_close(
                session,
                counted_cents=counted,
                closed_by_user_id=actor.user_id,
                closure_type=CLOSURE_ADMINISTRATIVE,
                closure_reason=reason,
                notes=notes,
            )

            audit_service.append_audit_event(
                tenant_id=session.tenant_id,
                event_type=audit_service.EVENT_ADMINISTRATIVE_CLOSE,
                event_category="cash_session",
                entity_type="cash_session",
                entity_id=session.id,
                actor_user_id=actor.user_id,
                subject_user_id=session.user_id,
                cash_register_id=session.cash_register_id,
                session_id=session.id,
                amount_cents=result.counted_cents,
                discrepancy_cents=result.discrepancy_cents,
                note=reason,
                payload={
                    "closer_user_id": actor.user_id,
                    "owner_user_id": session.user_id,
                    "justification": reason,
                    "theoretical_cents": result.theoretical_cents,
                    "counted_cents": result.counted_cents,
                    "discrepancy_cents": result.discrepancy_cents,
                    "classification": result.classification,
                },
                occurred_at=result.closed_at,
            )

    current_app.logger.warning(
        "Session %s of user %s closed administratively by %s: %s",
        session_id, owner_user_id, actor.user_id, reason,
    )
    return result
