# Overview: Blind-count reconciliation; computes and classifies the discrepancy of a closing session.

"""
Reconciliation Engine (arqueo ciego)

The counted amount is captured before the expected amount is revealed. The
engine never exposes the theoretical balance of an OPEN session; it is
computed here, under the session lock, only once counted_amount is known.

CLASSIFICATION:
- discrepancy == 0 -> CUADRADO
- discrepancy <  0 -> FALTANTE (shortage)
- discrepancy >  0 -> SOBRANTE (surplus)

A non-zero discrepancy notifies administrators but never blocks the close:
a shift must always be able to end.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from flask import current_app

from ..errors import SessionClosed, ValidationError
from ..extensions import db
from ..models import CashSession
from ..time_utils import to_utc_z, utcnow
from ..validation import MAX_AMOUNT_CENTS, optional_text, parse_int, require_non_negative_amount
from . import audit_service
from .journal_service import theoretical_balance


CLASSIFICATION_CUADRADO = "CUADRADO"
CLASSIFICATION_FALTANTE = "FALTANTE"
CLASSIFICATION_SOBRANTE = "SOBRANTE"

CLOSURE_NORMAL = "NORMAL"
CLOSURE_ADMINISTRATIVE = "ADMINISTRATIVE"

# PEN notes and coins accepted by the denomination counter, in céntimos
DENOMINATIONS_CENTS = (20000, 10000, 5000, 2000, 1000, 500, 200, 100, 50, 20, 10)


@dataclass(frozen=True)
class ClosureResult:
    session_id: int
    theoretical_cents: int
    counted_cents: int
    discrepancy_cents: int
    classification: str
    closure_type: str | None = None
    closed_at: datetime | None = None

    @property
    def requires_follow_up(self) -> bool:
        return self.discrepancy_cents != 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["closed_at"] = to_utc_z(self.closed_at)
        data["requires_follow_up"] = self.requires_follow_up
        return data


def classify(discrepancy_cents: int) -> str:
    if discrepancy_cents == 0:
        return CLASSIFICATION_CUADRADO
    if discrepancy_cents < 0:
        return CLASSIFICATION_FALTANTE
    return CLASSIFICATION_SOBRANTE


def reconcile(session: CashSession, counted_cents: int, as_of: datetime | None = None) -> ClosureResult:
    """Theoretical vs counted for a session. Pure read."""
    theoretical = theoretical_balance(session.id, as_of)
    discrepancy = counted_cents - theoretical
    return ClosureResult(
        session_id=session.id,
        theoretical_cents=theoretical,
        counted_cents=counted_cents,
        discrepancy_cents=discrepancy,
        classification=classify(discrepancy),
    )


def _denomination_cents(key: Any) -> int:
    try:
        value = Decimal(str(key).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Unknown denomination: {key}", field="denominations")
    cents = value * 100
    if cents != cents.to_integral_value() or int(cents) not in DENOMINATIONS_CENTS:
        raise ValidationError(f"Unknown denomination: {key}", field="denominations")
    return int(cents)


def count_denominations(counts: Mapping[Any, Any]) -> int:
    """
    Total in céntimos of a {denomination_in_soles: quantity} breakdown.

    e.g. {"100": 2, "0.50": 3} -> 20150
    """
    if not isinstance(counts, Mapping):
        raise ValidationError("denominations must be an object", field="denominations")

    total = 0
    for key, quantity in counts.items():
        cents = _denomination_cents(key)
        qty = parse_int(quantity, f"denominations[{key}]")
        if qty < 0:
            raise ValidationError(f"Quantity for {key} cannot be negative", field="denominations")
        total += cents * qty

    if total > MAX_AMOUNT_CENTS:
        raise ValidationError("Counted amount exceeds the maximum allowed amount", field="denominations")
    return total


def resolve_counted_amount(counted_amount_cents: Any = None, denominations: Mapping | None = None) -> int:
    """Exactly one of counted_amount_cents / denominations must be supplied."""
    if denominations is not None and counted_amount_cents is not None:
        raise ValidationError("Send either counted_amount_cents or denominations, not both", field="counted_amount_cents")
    if denominations is not None:
        return count_denominations(denominations)
    return require_non_negative_amount(counted_amount_cents, "counted_amount_cents")


def finalize_close(
    session: CashSession,
    *,
    counted_cents: int,
    closed_by_user_id: int,
    closure_type: str,
    closure_reason: str | None = None,
    notes: str | None = None,
) -> ClosureResult:
    """
    Compute the closure and transition the session to CLOSED, without committing.

    The caller holds the keyed session lock, has row-locked the session via
    journal_service.lock_session() and has already checked authorization.
    With the lock held no movement can be appended, so the movement set the
    balance is computed over is final.
    """
    if not session.is_open:
        raise SessionClosed(f"Session {session.id} is {session.state}", session_id=session.id)

    notes = optional_text(notes, "notes")
    result = reconcile(session, counted_cents)
    closed_at = utcnow()

    session.state = "CLOSED"
    session.closed_at = closed_at
    session.theoretical_amount_cents = result.theoretical_cents
    session.counted_amount_cents = result.counted_cents
    session.discrepancy_cents = result.discrepancy_cents
    session.classification = result.classification
    session.closure_type = closure_type
    session.closure_reason = closure_reason
    session.closed_by_user_id = closed_by_user_id
    session.notes = notes
    db.session.flush()

    audit_service.append_audit_event(
        tenant_id=session.tenant_id,
        event_type=audit_service.EVENT_SESSION_CLOSED,
        event_category="cash_session",
        entity_type="cash_session",
        entity_id=session.id,
        actor_user_id=closed_by_user_id,
        subject_user_id=session.user_id,
        cash_register_id=session.cash_register_id,
        session_id=session.id,
        amount_cents=result.counted_cents,
        discrepancy_cents=result.discrepancy_cents,
        note=f"{closure_type} close: {result.classification}",
        occurred_at=closed_at,
    )

    if result.requires_follow_up:
        audit_service.notify_administrators(
            tenant_id=session.tenant_id,
            event_type=audit_service.EVENT_DISCREPANCY_FLAGGED,
            entity_type="cash_session",
            entity_id=session.id,
            message=(
                f"Session {session.id} closed with {result.classification}: "
                f"discrepancy {result.discrepancy_cents / 100:.2f}"
            ),
            actor_user_id=closed_by_user_id,
            subject_user_id=session.user_id,
            cash_register_id=session.cash_register_id,
            session_id=session.id,
            amount_cents=result.counted_cents,
            discrepancy_cents=result.discrepancy_cents,
            payload={
                "classification": result.classification,
                "theoretical_cents": result.theoretical_cents,
                "counted_cents": result.counted_cents,
            },
            occurred_at=closed_at,
        )
    else:
        current_app.logger.info("Session %s closed balanced (%s)", session.id, closure_type)

    return ClosureResult(
        session_id=result.session_id,
        theoretical_cents=result.theoretical_cents,
        counted_cents=result.counted_cents,
        discrepancy_cents=result.discrepancy_cents,
        classification=result.classification,
        closure_type=closure_type,
        closed_at=closed_at,
    )
