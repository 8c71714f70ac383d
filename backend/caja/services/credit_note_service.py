"""
Credit Note Balance Guard

WHY: A sale can be refunded through several credit notes (notas de crédito),
but never for more than its total, and never again once it has been annulled
or fully returned. The guard and the insert run as one atomic unit per sale,
so two cashiers refunding the same ticket cannot both pass the check.

DESIGN PRINCIPLES:
- Notes in ACEPTADO or PENDIENTE count. A RECHAZADO note frees the balance
  only once the cash it paid out is back in a drawer: rejecting a note with
  a refund movement appends the reversing INGRESO, or flags the reversal as
  pending when the register has no open session
- SUNAT states resolve once: PENDIENTE -> ACEPTADO or RECHAZADO
- The refunded total is derived from the note table on every check, never cached
- A cash refund on a CONTADO sale writes an EGRESO into the open session of
  the issuing register in the same transaction; with no open session the note
  is still issued and the refund is flagged as pending
- On a CREDITO sale the note reduces the receivable instead of paying out cash

RULE ORDER (first failure wins):
1. sale.sunat_state == ACEPTADO                      else SaleNotAccepted
2. no counting ANULACION_DE_LA_OPERACION/DEVOLUCION_TOTAL  else SaleAlreadyAnnulledOrReturned
3. requested <= available balance                    else RefundExceedsBalance
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import and_, func, or_

from ..context import Actor
from ..errors import (
    CajaError,
    NotFound,
    RefundExceedsBalance,
    RequiresSessionOpen,
    SaleAlreadyAnnulledOrReturned,
    SaleNotAccepted,
    SessionClosed,
    ValidationError,
)
from ..extensions import db
from ..models import AccountReceivable, CreditNote, CreditNoteLine, Movement, Sale
from ..time_utils import utcnow
from ..validation import (
    MIN_REASON_LENGTH,
    parse_bool,
    parse_int,
    parse_quantity,
    require_choice,
    require_positive_amount,
    require_text,
)
from . import audit_service
from .concurrency import entity_locks, lock_for_update, run_with_retry, transaction
from .journal_service import (
    METHOD_EFECTIVO,
    MOVEMENT_EGRESO,
    MOVEMENT_INGRESO,
    SESSION_LOCK,
    SOURCE_CREDIT_NOTE,
    append_movement,
    find_open_session,
    lock_session,
)


# =============================================================================
# CONSTANTS
# =============================================================================

SALE_LOCK = "sale"
RECEIVABLE_LOCK = "receivable"

SUNAT_PENDIENTE = "PENDIENTE"
SUNAT_ACEPTADO = "ACEPTADO"
SUNAT_RECHAZADO = "RECHAZADO"
SUNAT_STATES = [SUNAT_PENDIENTE, SUNAT_ACEPTADO, SUNAT_RECHAZADO]

# States whose notes count against the sale's refundable balance
COUNTING_STATES = (SUNAT_ACEPTADO, SUNAT_PENDIENTE)

ALLOWED_SUNAT_TRANSITIONS = {
    SUNAT_PENDIENTE: {SUNAT_ACEPTADO, SUNAT_RECHAZADO},
    SUNAT_ACEPTADO: set(),
    SUNAT_RECHAZADO: set(),
}

TIPO_ANULACION_DE_LA_OPERACION = "ANULACION_DE_LA_OPERACION"
TIPO_DEVOLUCION_TOTAL = "DEVOLUCION_TOTAL"
TIPO_DEVOLUCION_PARCIAL = "DEVOLUCION_PARCIAL"

TIPOS_NOTA = [
    TIPO_ANULACION_DE_LA_OPERACION,
    "ANULACION_POR_ERROR_EN_EL_RUC",
    "CORRECCION_POR_ERROR_EN_LA_DESCRIPCION",
    "DESCUENTO_GLOBAL",
    "DESCUENTO",
    "BONIFICACION",
    TIPO_DEVOLUCION_TOTAL,
    TIPO_DEVOLUCION_PARCIAL,
    "OTROS",
]

# A counting note of these types locks the sale for further notes and guías
ANNULMENT_TYPES = (TIPO_ANULACION_DE_LA_OPERACION, TIPO_DEVOLUCION_TOTAL)

# Types that give money back: cash on CONTADO sales, debt reduction on CREDITO sales
DEBT_REDUCING_TYPES = (TIPO_DEVOLUCION_TOTAL, TIPO_DEVOLUCION_PARCIAL, TIPO_ANULACION_DE_LA_OPERACION)

CONDICION_CONTADO = "CONTADO"
CONDICION_CREDITO = "CREDITO"


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of a guard check; error_kind is a CajaError kind when blocked."""
    allowed: bool
    reason: str | None = None
    error_kind: str | None = None

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(True)

    @classmethod
    def block(cls, error: CajaError) -> "GuardDecision":
        return cls(False, error.detail or error.message, error.kind)

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason, "error_kind": self.error_kind}


@dataclass
class IssuedCreditNote:
    note: CreditNote
    refund_movement: Movement | None = None
    cash_refund_pending: bool = False
    receivable: AccountReceivable | None = None

    def to_dict(self) -> dict:
        return {
            "credit_note": self.note.to_dict(),
            "refund_movement": self.refund_movement.to_dict() if self.refund_movement else None,
            "cash_refund_pending": self.cash_refund_pending,
            "receivable": self.receivable.to_dict() if self.receivable else None,
        }


# =============================================================================
# BALANCE READS
# =============================================================================

def _get_sale(sale_id: int, tenant_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, tenant_id=tenant_id).first()
    if not sale:
        raise NotFound(f"Sale {sale_id} not found", sale_id=sale_id)
    return sale


def total_refunded(sale_id: int) -> int:
    """
    Sum of monto_total over the sale's notes in ACEPTADO or PENDIENTE, plus
    rejected notes whose cash refund has not been reversed yet.
    """
    total = db.session.query(
        func.coalesce(func.sum(CreditNote.monto_total_cents), 0)
    ).filter(
        CreditNote.sale_id == sale_id,
        or_(
            CreditNote.sunat_state.in_(COUNTING_STATES),
            and_(
                CreditNote.refund_movement_id.isnot(None),
                CreditNote.refund_reversal_movement_id.is_(None),
            ),
        ),
    ).scalar()
    return int(total or 0)


def available_balance(sale_id: int, tenant_id: int) -> int:
    sale = _get_sale(sale_id, tenant_id)
    return sale.total_cents - total_refunded(sale.id)


def is_annulled_or_returned(sale_id: int) -> bool:
    return db.session.query(CreditNote.id).filter(
        CreditNote.sale_id == sale_id,
        CreditNote.tipo_nota.in_(ANNULMENT_TYPES),
        CreditNote.sunat_state.in_(COUNTING_STATES),
    ).first() is not None


def _check_guard(sale: Sale, requested_cents: int) -> None:
    """Apply the rule order; raise the first failing rule."""
    if sale.sunat_state != SUNAT_ACEPTADO:
        raise SaleNotAccepted(f"Sale {sale.id} is {sale.sunat_state}", sale_id=sale.id)
    if is_annulled_or_returned(sale.id):
        raise SaleAlreadyAnnulledOrReturned(f"Sale {sale.id} was annulled or fully returned", sale_id=sale.id)
    available = sale.total_cents - total_refunded(sale.id)
    if requested_cents > available:
        raise RefundExceedsBalance(
            f"Requested {requested_cents} exceeds available {available}",
            sale_id=sale.id,
            available_cents=available,
            requested_cents=requested_cents,
        )


def can_issue(actor: Actor, sale_id: int, requested_amount_cents: Any) -> GuardDecision:
    """
    Advisory check, without locks. issue_credit_note() re-runs the same rules
    under the sale lock, so a True here is not a reservation.
    """
    requested = require_positive_amount(requested_amount_cents, "monto_total_cents")
    sale = _get_sale(sale_id, actor.tenant_id)
    try:
        _check_guard(sale, requested)
    except (SaleNotAccepted, SaleAlreadyAnnulledOrReturned, RefundExceedsBalance) as exc:
        return GuardDecision.block(exc)
    return GuardDecision.allow()


def credit_note_balance(actor: Actor, sale_id: int) -> dict:
    """Saldo NC of a sale, as shown before issuing a note."""
    sale = _get_sale(sale_id, actor.tenant_id)
    refunded = total_refunded(sale.id)

    reason = None
    if sale.sunat_state != SUNAT_ACEPTADO:
        reason = SaleNotAccepted.message
    elif is_annulled_or_returned(sale.id):
        reason = SaleAlreadyAnnulledOrReturned.message
    elif sale.total_cents - refunded <= 0:
        reason = RefundExceedsBalance.message

    return {
        "sale_id": sale.id,
        "total_venta_cents": sale.total_cents,
        "total_devuelto_cents": refunded,
        "saldo_disponible_cents": sale.total_cents - refunded,
        "puede_emitir_nc": reason is None,
        "razon_bloqueo": reason,
    }


def list_credit_notes(actor: Actor, sale_id: int) -> list[CreditNote]:
    sale = _get_sale(sale_id, actor.tenant_id)
    return db.session.query(CreditNote).filter_by(sale_id=sale.id).order_by(CreditNote.id).all()


# =============================================================================
# ISSUANCE
# =============================================================================

def _parse_lines(lines: Iterable[dict]) -> list[dict]:
    parsed = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object", field="lines")
        qty = parse_quantity(raw.get("cantidad"), f"lines[{index}].cantidad")
        price = parse_int(raw.get("precio_unitario_cents"), f"lines[{index}].precio_unitario_cents")
        if price < 0:
            raise ValidationError(f"lines[{index}].precio_unitario_cents cannot be negative", field="lines")
        subtotal = int((qty * price).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        parsed.append({
            "producto_id": parse_int(raw.get("producto_id"), f"lines[{index}].producto_id"),
            "cantidad": qty,
            "precio_unitario_cents": price,
            "subtotal_cents": subtotal,
        })
    if not parsed:
        raise ValidationError("lines cannot be empty", field="lines")
    return parsed


def _resolve_amount(monto_total_cents: Any, lines: list[dict] | None) -> int:
    if lines is None:
        return require_positive_amount(monto_total_cents, "monto_total_cents")

    lines_total = sum(line["subtotal_cents"] for line in lines)
    if monto_total_cents is not None:
        amount = require_positive_amount(monto_total_cents, "monto_total_cents")
        if amount != lines_total:
            raise ValidationError(
                f"monto_total_cents ({amount}) does not match the lines total ({lines_total})",
                field="monto_total_cents",
            )
        return amount
    return require_positive_amount(lines_total, "monto_total_cents")


def _reduce_receivable(sale: Sale, amount_cents: int) -> AccountReceivable | None:
    receivable = lock_for_update(
        db.session.query(AccountReceivable).filter_by(sale_id=sale.id)
    ).first()
    if receivable is None or receivable.status != "VIGENTE":
        return None

    receivable.saldo_pendiente_cents = max(0, receivable.saldo_pendiente_cents - amount_cents)
    if receivable.saldo_pendiente_cents == 0:
        receivable.status = "CANCELADA"
    db.session.flush()
    return receivable


def issue_credit_note(
    actor: Actor,
    sale_id: int,
    tipo_nota: Any,
    motivo_sustento: Any,
    monto_total_cents: Any = None,
    *,
    lines: Iterable[dict] | None = None,
    devolver_stock: Any = False,
    devolver_efectivo: Any = False,
    cash_register_id: int | None = None,
) -> IssuedCreditNote:
    """
    Issue a credit note against an accepted sale.

    Either monto_total_cents or product lines (or both, if they agree) give
    the note amount. New notes start PENDIENTE until the SUNAT collaborator
    reports back.

    Raises:
        ValidationError / InvalidAmount: malformed input
        NotFound: unknown sale
        SaleNotAccepted, SaleAlreadyAnnulledOrReturned, RefundExceedsBalance
        Conflict: lost the race for the sale more times than the retry budget
    """
    tipo = require_choice(tipo_nota, "tipo_nota", TIPOS_NOTA)
    motivo = require_text(motivo_sustento, "motivo_sustento", min_length=MIN_REASON_LENGTH)
    parsed_lines = _parse_lines(lines) if lines is not None else None
    amount = _resolve_amount(monto_total_cents, parsed_lines)
    return_stock = parse_bool(devolver_stock, "devolver_stock")
    return_cash = parse_bool(devolver_efectivo, "devolver_efectivo")

    sale = _get_sale(sale_id, actor.tenant_id)
    register_id = cash_register_id or sale.cash_register_id
    wants_cash_refund = (
        return_cash
        and sale.condicion_pago == CONDICION_CONTADO
        and tipo in DEBT_REDUCING_TYPES
    )
    reduces_receivable = sale.condicion_pago == CONDICION_CREDITO and tipo in DEBT_REDUCING_TYPES

    refund_session = None
    if wants_cash_refund and register_id is not None:
        refund_session = find_open_session(register_id, actor.tenant_id)

    lock_keys = [(SALE_LOCK, sale_id)]
    if reduces_receivable and sale.receivable is not None:
        lock_keys.append((RECEIVABLE_LOCK, sale.receivable.id))
    if refund_session is not None:
        lock_keys.append((SESSION_LOCK, refund_session.id))
    refund_session_id = refund_session.id if refund_session is not None else None

    def _op() -> IssuedCreditNote:
        with entity_locks(*lock_keys):
            with transaction():
                locked_sale = lock_for_update(
                    db.session.query(Sale).filter_by(id=sale_id, tenant_id=actor.tenant_id)
                ).first()
                if not locked_sale:
                    raise NotFound(f"Sale {sale_id} not found", sale_id=sale_id)

                _check_guard(locked_sale, amount)

                note = CreditNote(
                    tenant_id=actor.tenant_id,
                    sale_id=locked_sale.id,
                    tipo_nota=tipo,
                    motivo_sustento=motivo,
                    monto_total_cents=amount,
                    sunat_state=SUNAT_PENDIENTE,
                    devolver_stock=return_stock,
                    devolver_efectivo=return_cash,
                    cash_register_id=register_id,
                    created_by_user_id=actor.user_id,
                    created_at=utcnow(),
                )
                db.session.add(note)
                for line in parsed_lines or []:
                    note.lines.append(CreditNoteLine(**line))

                # Forces a version bump so a concurrent issuer for this sale goes stale
                locked_sale.credit_notes_issued = (locked_sale.credit_notes_issued or 0) + 1
                db.session.flush()

                movement = None
                pending = False
                receivable = None

                if wants_cash_refund:
                    session = lock_session(refund_session_id, actor.tenant_id) if refund_session_id else None
                    if session is not None and session.is_open:
                        movement = append_movement(
                            session,
                            type=MOVEMENT_EGRESO,
                            amount_cents=amount,
                            payment_method=METHOD_EFECTIVO,
                            description=f"Devolución NC {note.id} - venta {locked_sale.id}",
                            source=SOURCE_CREDIT_NOTE,
                            created_by_user_id=actor.user_id,
                            credit_note_id=note.id,
                        )
                        note.refund_movement_id = movement.id
                    else:
                        pending = True
                        note.cash_refund_pending = True
                    db.session.flush()
                elif reduces_receivable:
                    receivable = _reduce_receivable(locked_sale, amount)

                audit_service.append_audit_event(
                    tenant_id=actor.tenant_id,
                    event_type=audit_service.EVENT_CREDIT_NOTE_ISSUED,
                    event_category="credit_note",
                    entity_type="credit_note",
                    entity_id=note.id,
                    actor_user_id=actor.user_id,
                    cash_register_id=register_id,
                    session_id=movement.session_id if movement else None,
                    sale_id=locked_sale.id,
                    credit_note_id=note.id,
                    amount_cents=amount,
                    note=motivo,
                    payload={"tipo_nota": tipo, "devolver_stock": return_stock, "devolver_efectivo": return_cash},
                )
                if pending:
                    audit_service.notify_administrators(
                        tenant_id=actor.tenant_id,
                        event_type=audit_service.EVENT_CASH_REFUND_PENDING,
                        entity_type="credit_note",
                        entity_id=note.id,
                        message=(
                            f"Credit note {note.id} needs a cash refund of {amount / 100:.2f} "
                            f"but register {register_id} has no open session"
                        ),
                        actor_user_id=actor.user_id,
                        cash_register_id=register_id,
                        sale_id=locked_sale.id,
                        credit_note_id=note.id,
                        amount_cents=amount,
                    )

                return IssuedCreditNote(
                    note=note,
                    refund_movement=movement,
                    cash_refund_pending=pending,
                    receivable=receivable,
                )

    issued = run_with_retry(_op)
    current_app.logger.info(
        "Credit note %s (%s, %d) issued on sale %s by user %s",
        issued.note.id, tipo, amount, sale_id, actor.user_id,
    )
    return issued


# =============================================================================
# DISPATCH GUIDE GATE / SUNAT STATE INGESTION
# =============================================================================

def can_issue_dispatch_guide(actor: Actor, sale_id: int) -> GuardDecision:
    """A guía de remisión cannot be issued for an annulled or fully returned sale."""
    sale = _get_sale(sale_id, actor.tenant_id)
    if is_annulled_or_returned(sale.id):
        return GuardDecision.block(
            SaleAlreadyAnnulledOrReturned(f"Sale {sale.id} was annulled or fully returned", sale_id=sale.id)
        )
    return GuardDecision.allow()


def ensure_dispatch_guide_allowed(actor: Actor, sale_id: int) -> None:
    sale = _get_sale(sale_id, actor.tenant_id)
    if is_annulled_or_returned(sale.id):
        raise SaleAlreadyAnnulledOrReturned(f"Sale {sale.id} was annulled or fully returned", sale_id=sale.id)


def _get_note(note_id: int, tenant_id: int) -> CreditNote:
    note = db.session.query(CreditNote).filter_by(id=note_id, tenant_id=tenant_id).first()
    if not note:
        raise NotFound(f"Credit note {note_id} not found", credit_note_id=note_id)
    return note


def _needs_cash_reversal(note: CreditNote) -> bool:
    return note.refund_movement_id is not None and note.refund_reversal_movement_id is None


def _reverse_cash_refund(actor: Actor, note: CreditNote, session_id: int | None) -> Movement | None:
    """
    Put the cash of a rejected note back into the drawer.

    Appends an INGRESO to the register's open session. Without one, the
    reversal is flagged pending and the note keeps counting against the sale.
    Caller holds the sale lock and, when session_id is given, the session lock.
    """
    session = lock_session(session_id, actor.tenant_id) if session_id else None
    if session is not None and session.is_open:
        movement = append_movement(
            session,
            type=MOVEMENT_INGRESO,
            amount_cents=note.monto_total_cents,
            payment_method=METHOD_EFECTIVO,
            description=f"Reversión NC {note.id} rechazada - venta {note.sale_id}",
            source=SOURCE_CREDIT_NOTE,
            created_by_user_id=actor.user_id,
            credit_note_id=note.id,
        )
        note.refund_reversal_movement_id = movement.id
        note.cash_reversal_pending = False
        db.session.flush()
        audit_service.append_audit_event(
            tenant_id=actor.tenant_id,
            event_type=audit_service.EVENT_CASH_REFUND_REVERSED,
            event_category="credit_note",
            entity_type="credit_note",
            entity_id=note.id,
            actor_user_id=actor.user_id,
            cash_register_id=note.cash_register_id,
            session_id=session.id,
            sale_id=note.sale_id,
            credit_note_id=note.id,
            amount_cents=note.monto_total_cents,
            payload={"refund_movement_id": note.refund_movement_id, "reversal_movement_id": movement.id},
        )
        return movement

    note.cash_reversal_pending = True
    db.session.flush()
    audit_service.notify_administrators(
        tenant_id=actor.tenant_id,
        event_type=audit_service.EVENT_CASH_REVERSAL_PENDING,
        entity_type="credit_note",
        entity_id=note.id,
        message=(
            f"Credit note {note.id} was rejected after refunding {note.monto_total_cents / 100:.2f} "
            f"in cash but register {note.cash_register_id} has no open session to take it back"
        ),
        actor_user_id=actor.user_id,
        cash_register_id=note.cash_register_id,
        sale_id=note.sale_id,
        credit_note_id=note.id,
        amount_cents=note.monto_total_cents,
    )
    return None


def set_credit_note_sunat_state(actor: Actor, note_id: int, state: Any) -> CreditNote:
    """
    Record the SUNAT outcome of a note. Re-reporting the same state is a no-op.

    RECHAZADO frees the note's amount, except for cash that already left the
    drawer: that refund is reversed into the register's open session first,
    or stays counted as a pending reversal.

    Takes the sale lock so the transition cannot interleave with an issuance
    that is reading the refunded total.
    """
    new_state = require_choice(state, "sunat_state", SUNAT_STATES)
    note = _get_note(note_id, actor.tenant_id)
    sale_id = note.sale_id

    reversal_session = None
    if new_state == SUNAT_RECHAZADO and _needs_cash_reversal(note) and note.cash_register_id is not None:
        reversal_session = find_open_session(note.cash_register_id, actor.tenant_id)
    lock_keys = [(SALE_LOCK, sale_id)]
    if reversal_session is not None:
        lock_keys.append((SESSION_LOCK, reversal_session.id))
    reversal_session_id = reversal_session.id if reversal_session is not None else None

    def _op() -> CreditNote:
        with entity_locks(*lock_keys):
            with transaction():
                sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
                locked = lock_for_update(db.session.query(CreditNote).filter_by(id=note_id)).first()
                if locked.sunat_state == new_state:
                    return locked
                if new_state not in ALLOWED_SUNAT_TRANSITIONS[locked.sunat_state]:
                    raise ValidationError(
                        f"Cannot move credit note {note_id} from {locked.sunat_state} to {new_state}",
                        field="sunat_state",
                    )
                locked.sunat_state = new_state
                sale.credit_notes_issued = (sale.credit_notes_issued or 0) + 1

                if new_state == SUNAT_RECHAZADO:
                    # A refund that never left the drawer is no longer owed
                    locked.cash_refund_pending = False
                    if _needs_cash_reversal(locked):
                        _reverse_cash_refund(actor, locked, reversal_session_id)
                db.session.flush()
                return locked

    updated = run_with_retry(_op)
    current_app.logger.info("Credit note %s is now %s", note_id, new_state)
    return updated


def reverse_pending_cash_refund(actor: Actor, note_id: int) -> CreditNote:
    """
    Take back the cash of a rejected note once its register has an open session.

    Raises:
        NotFound: unknown note
        ValidationError: the note has no pending reversal
        RequiresSessionOpen: the register still has no OPEN session
    """
    note = _get_note(note_id, actor.tenant_id)
    if not note.cash_reversal_pending:
        raise ValidationError(f"Credit note {note_id} has no pending cash reversal", field="credit_note_id")
    session = find_open_session(note.cash_register_id, actor.tenant_id)
    if session is None:
        raise RequiresSessionOpen(
            f"Register {note.cash_register_id} has no open session",
            cash_register_id=note.cash_register_id,
        )
    sale_id = note.sale_id
    session_id = session.id

    def _op() -> CreditNote:
        with entity_locks((SALE_LOCK, sale_id), (SESSION_LOCK, session_id)):
            with transaction():
                sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
                locked = lock_for_update(db.session.query(CreditNote).filter_by(id=note_id)).first()
                if not locked.cash_reversal_pending:
                    return locked
                session = lock_session(session_id, actor.tenant_id)
                if not session.is_open:
                    raise SessionClosed(f"Session {session_id} is {session.state}", session_id=session_id)
                _reverse_cash_refund(actor, locked, session_id)
                sale.credit_notes_issued = (sale.credit_notes_issued or 0) + 1
                return locked

    updated = run_with_retry(_op)
    current_app.logger.info("Cash refund of credit note %s reversed by user %s", note_id, actor.user_id)
    return updated
