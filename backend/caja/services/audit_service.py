# Overview: Append-only audit and notification sink for the cash core.

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from flask import current_app

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow

"""
Audit sink invariants

- Append-only: events are never updated or deleted.
- Events are written inside the same DB transaction as the change they record
  (callers flush, the owning service commits).
- One-way: nothing in the core reads audit events back to make a decision.
"""

EVENT_DISCREPANCY_FLAGGED = "cash_session.discrepancy_flagged"
EVENT_ADMINISTRATIVE_CLOSE = "cash_session.administrative_close"
EVENT_SESSION_OPENED = "cash_session.opened"
EVENT_SESSION_CLOSED = "cash_session.closed"
EVENT_CREDIT_NOTE_ISSUED = "credit_note.issued"
EVENT_CASH_REFUND_PENDING = "credit_note.cash_refund_pending"
EVENT_CASH_REFUND_REVERSED = "credit_note.cash_refund_reversed"
EVENT_CASH_REVERSAL_PENDING = "credit_note.cash_reversal_pending"


def append_audit_event(
    *,
    tenant_id: int,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    subject_user_id: int | None = None,
    cash_register_id: int | None = None,
    session_id: int | None = None,
    sale_id: int | None = None,
    credit_note_id: int | None = None,
    amount_cents: int | None = None,
    discrepancy_cents: int | None = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> AuditEvent:
    """Append one audit event without committing."""
    ev = AuditEvent(
        tenant_id=tenant_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        subject_user_id=subject_user_id,
        cash_register_id=cash_register_id,
        session_id=session_id,
        sale_id=sale_id,
        credit_note_id=credit_note_id,
        amount_cents=amount_cents,
        discrepancy_cents=discrepancy_cents,
        note=note,
        payload=payload,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def notify_administrators(
    *,
    tenant_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    message: str,
    **fields: Any,
) -> AuditEvent:
    """
    Raise a notification for administrators.

    Delivery (email, push, dashboard badge) belongs to the notification
    collaborator, which consumes 'notification' events from the audit log.
    """
    current_app.logger.warning("[tenant %s] %s", tenant_id, message)
    return append_audit_event(
        tenant_id=tenant_id,
        event_type=event_type,
        event_category="notification",
        entity_type=entity_type,
        entity_id=entity_id,
        note=message,
        **fields,
    )


def list_events(
    tenant_id: int,
    *,
    event_type: str | None = None,
    session_id: int | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    query = db.session.query(AuditEvent).filter_by(tenant_id=tenant_id)
    if event_type:
        query = query.filter_by(event_type=event_type)
    if session_id is not None:
        query = query.filter_by(session_id=session_id)
    return query.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit).all()
