from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit / notification log.

    Receives one-way events from the core: administrative closes,
    discrepancy flags, session open/close, credit-note issuance. Rows are
    written in the same transaction as the change they record and are never
    updated or deleted.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_tenant_occurred", "tenant_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., cash_session.administrative_close
    event_category = db.Column(db.String(32), nullable=False, index=True)  # cash_session, movement, credit_note, sale, notification

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    # Who did it, and on whose behalf / against whose session
    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    subject_user_id = db.Column(db.Integer, nullable=True, index=True)

    cash_register_id = db.Column(db.Integer, nullable=True)
    session_id = db.Column(db.Integer, nullable=True, index=True)
    sale_id = db.Column(db.Integer, nullable=True)
    credit_note_id = db.Column(db.Integer, nullable=True)

    amount_cents = db.Column(db.Integer, nullable=True)
    discrepancy_cents = db.Column(db.Integer, nullable=True)

    note = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "subject_user_id": self.subject_user_id,
            "cash_register_id": self.cash_register_id,
            "session_id": self.session_id,
            "sale_id": self.sale_id,
            "credit_note_id": self.credit_note_id,
            "amount_cents": self.amount_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
