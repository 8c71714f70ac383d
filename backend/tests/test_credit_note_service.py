"""
Credit note balance guard tests.

A sale is never refunded beyond its total, annulled sales accept no further
notes or dispatch guides, and RECHAZADO notes give their amount back once
no refunded cash is left outside the drawer.
"""

import pytest

from caja.errors import (
    RefundExceedsBalance,
    RequiresSessionOpen,
    SaleAlreadyAnnulledOrReturned,
    SaleNotAccepted,
    ValidationError,
)
from caja.models import AccountReceivable, AuditEvent, CreditNote, Movement
from caja.services import audit_service, cash_session_service, credit_note_service, journal_service, sales_service


MOTIVO = "Cliente devuelve producto fallado"


class TestBalanceGuard:
    """Refunded total never exceeds the sale total."""

    def test_partial_note_within_balance(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)

        issued = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 6000)

        assert issued.note.sunat_state == "PENDIENTE"
        assert issued.note.monto_total_cents == 6000
        assert credit_note_service.total_refunded(sale.id) == 6000
        assert credit_note_service.available_balance(sale.id, cashier.tenant_id) == 4000

    def test_refund_exceeding_balance_is_rejected(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        first = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 6000)
        credit_note_service.set_credit_note_sunat_state(cashier, first.note.id, "ACEPTADO")

        with pytest.raises(RefundExceedsBalance) as exc_info:
            credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 5000)

        assert exc_info.value.context["available_cents"] == 4000
        assert db_session.query(CreditNote).filter_by(sale_id=sale.id).count() == 1

    def test_pending_notes_count_against_balance(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        credit_note_service.issue_credit_note(cashier, sale.id, "DESCUENTO", "Descuento por pronto pago", 7000)

        decision = credit_note_service.can_issue(cashier, sale.id, 3001)

        assert decision.allowed is False
        assert decision.error_kind == "REFUND_EXCEEDS_BALANCE"

    def test_notes_can_exhaust_the_exact_total(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 6000)
        credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 4000)

        assert credit_note_service.available_balance(sale.id, cashier.tenant_id) == 0
        with pytest.raises(RefundExceedsBalance):
            credit_note_service.issue_credit_note(cashier, sale.id, "BONIFICACION", "Bonificación adicional", 1)

    def test_rejected_note_frees_its_amount(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        issued = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 8000)
        credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "RECHAZADO")

        assert credit_note_service.available_balance(sale.id, cashier.tenant_id) == 10000
        again = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 9000)
        assert again.note.id != issued.note.id

    def test_rejected_note_cannot_be_revived(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        issued = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 8000)
        credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "RECHAZADO")

        with pytest.raises(ValidationError):
            credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "ACEPTADO")

    def test_sale_not_accepted(self, db_session, cashier, register, open_session):
        sale = sales_service.create_sale(cashier, register.id, 10000)

        with pytest.raises(SaleNotAccepted):
            credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 1000)

        sales_service.set_sale_sunat_state(cashier, sale.id, "RECHAZADO")
        with pytest.raises(SaleNotAccepted):
            credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 1000)

    def test_short_motivo_is_rejected(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)

        with pytest.raises(ValidationError):
            credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", "fallado", 1000)

    def test_unknown_tipo_nota(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)

        with pytest.raises(ValidationError):
            credit_note_service.issue_credit_note(cashier, sale.id, "REEMBOLSO", MOTIVO, 1000)


class TestAnnulmentLock:
    """Annulled or fully returned sales accept no further notes or guías."""

    @pytest.mark.parametrize("tipo", ["ANULACION_DE_LA_OPERACION", "DEVOLUCION_TOTAL"])
    def test_annulment_blocks_further_notes(self, db_session, cashier, open_session, make_accepted_sale, tipo):
        sale = make_accepted_sale(10000)
        credit_note_service.issue_credit_note(cashier, sale.id, tipo, "Anulación por error de emisión", 3000)

        with pytest.raises(SaleAlreadyAnnulledOrReturned):
            credit_note_service.issue_credit_note(cashier, sale.id, "DESCUENTO", "Descuento posterior", 100)

    def test_annulment_blocks_dispatch_guides(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        assert credit_note_service.can_issue_dispatch_guide(cashier, sale.id).allowed is True

        credit_note_service.issue_credit_note(
            cashier, sale.id, "ANULACION_DE_LA_OPERACION", "Anulación por error de emisión", 10000
        )

        decision = credit_note_service.can_issue_dispatch_guide(cashier, sale.id)
        assert decision.allowed is False
        assert decision.error_kind == "SALE_ALREADY_ANNULLED_OR_RETURNED"
        with pytest.raises(SaleAlreadyAnnulledOrReturned):
            credit_note_service.ensure_dispatch_guide_allowed(cashier, sale.id)

    def test_rejected_annulment_unlocks_the_sale(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        issued = credit_note_service.issue_credit_note(
            cashier, sale.id, "DEVOLUCION_TOTAL", "Devolución total del pedido", 10000
        )
        credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "RECHAZADO")

        assert credit_note_service.is_annulled_or_returned(sale.id) is False
        assert credit_note_service.can_issue(cashier, sale.id, 500).allowed is True

    def test_annulment_check_wins_over_balance_check(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        credit_note_service.issue_credit_note(
            cashier, sale.id, "DEVOLUCION_TOTAL", "Devolución total del pedido", 10000
        )

        decision = credit_note_service.can_issue(cashier, sale.id, 20000)
        assert decision.error_kind == "SALE_ALREADY_ANNULLED_OR_RETURNED"

    def test_balance_read_model(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 2500)

        balance = credit_note_service.credit_note_balance(cashier, sale.id)

        assert balance["total_venta_cents"] == 10000
        assert balance["total_devuelto_cents"] == 2500
        assert balance["saldo_disponible_cents"] == 7500
        assert balance["puede_emitir_nc"] is True
        assert balance["razon_bloqueo"] is None


class TestCashRefund:
    """Cash refunds post an EGRESO on the issuing register's open session."""

    def test_cash_refund_posts_egreso(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        before = journal_service.theoretical_balance(open_session.id)

        issued = credit_note_service.issue_credit_note(
            cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 3000, devolver_efectivo=True
        )

        assert issued.cash_refund_pending is False
        assert issued.refund_movement is not None
        assert issued.refund_movement.type == "EGRESO"
        assert issued.refund_movement.source == "CREDIT_NOTE"
        assert issued.refund_movement.credit_note_id == issued.note.id
        assert issued.note.refund_movement_id == issued.refund_movement.id
        assert journal_service.theoretical_balance(open_session.id) == before - 3000

    def test_cash_refund_without_open_session_is_pending(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        cash_session_service.close_session_normal(cashier, open_session.id, 20000)

        issued = credit_note_service.issue_credit_note(
            cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 3000, devolver_efectivo=True
        )

        assert issued.cash_refund_pending is True
        assert issued.refund_movement is None
        assert issued.note.cash_refund_pending is True
        assert db_session.query(Movement).filter_by(source="CREDIT_NOTE").count() == 0
        assert db_session.query(AuditEvent).filter_by(
            event_type=audit_service.EVENT_CASH_REFUND_PENDING,
            credit_note_id=issued.note.id,
        ).count() == 1

    def test_discount_note_moves_no_cash(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)

        issued = credit_note_service.issue_credit_note(
            cashier, sale.id, "DESCUENTO", "Descuento por pronto pago", 1000, devolver_efectivo=True
        )

        assert issued.refund_movement is None
        assert issued.cash_refund_pending is False

    def test_issue_writes_audit_event(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        issued = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 1000)

        event = db_session.query(AuditEvent).filter_by(event_type=audit_service.EVENT_CREDIT_NOTE_ISSUED).one()
        assert event.credit_note_id == issued.note.id
        assert event.sale_id == sale.id
        assert event.amount_cents == 1000


class TestLinesAndCreditSales:

    def test_amount_from_lines(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)

        issued = credit_note_service.issue_credit_note(
            cashier,
            sale.id,
            "DEVOLUCION_PARCIAL",
            MOTIVO,
            lines=[
                {"producto_id": 3, "cantidad": "1.5", "precio_unitario_cents": 1000},
                {"producto_id": 4, "cantidad": 2, "precio_unitario_cents": 750},
            ],
            devolver_stock=True,
        )

        assert issued.note.monto_total_cents == 3000
        assert issued.note.devolver_stock is True
        assert [line.subtotal_cents for line in issued.note.lines] == [1500, 1500]

    def test_amount_must_match_lines(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)

        with pytest.raises(ValidationError):
            credit_note_service.issue_credit_note(
                cashier,
                sale.id,
                "DEVOLUCION_PARCIAL",
                MOTIVO,
                2000,
                lines=[{"producto_id": 3, "cantidad": 1, "precio_unitario_cents": 1000}],
            )

    def test_return_on_credit_sale_reduces_receivable(
        self, db_session, cashier, open_session, credit_client, make_accepted_sale
    ):
        sale = make_accepted_sale(10000, "CREDITO", client_id=credit_client.id, initial_payment_cents=2000)

        issued = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 3000)

        assert issued.refund_movement is None
        receivable = db_session.query(AccountReceivable).filter_by(sale_id=sale.id).one()
        assert receivable.saldo_pendiente_cents == 5000
        assert receivable.status == "VIGENTE"

    def test_full_return_on_credit_sale_cancels_receivable(
        self, db_session, cashier, open_session, credit_client, make_accepted_sale
    ):
        sale = make_accepted_sale(10000, "CREDITO", client_id=credit_client.id)

        credit_note_service.issue_credit_note(
            cashier, sale.id, "DEVOLUCION_TOTAL", "Devolución total del pedido", 10000
        )

        receivable = db_session.query(AccountReceivable).filter_by(sale_id=sale.id).one()
        assert receivable.saldo_pendiente_cents == 0
        assert receivable.status == "CANCELADA"


class TestSunatTransitions:
    """A note's SUNAT state resolves exactly once."""

    @pytest.mark.parametrize("outcome,later", [
        ("ACEPTADO", "PENDIENTE"),
        ("ACEPTADO", "RECHAZADO"),
        ("RECHAZADO", "PENDIENTE"),
    ])
    def test_resolved_state_is_final(self, db_session, cashier, open_session, make_accepted_sale, outcome, later):
        sale = make_accepted_sale(10000)
        issued = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 4000)
        credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, outcome)

        with pytest.raises(ValidationError):
            credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, later)

        assert db_session.get(CreditNote, issued.note.id).sunat_state == outcome

    def test_repeated_report_is_a_no_op(self, db_session, cashier, open_session, make_accepted_sale):
        sale = make_accepted_sale(10000)
        issued = credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 4000)
        credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "ACEPTADO")

        note = credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "ACEPTADO")

        assert note.sunat_state == "ACEPTADO"
        assert credit_note_service.available_balance(sale.id, cashier.tenant_id) == 6000


class TestRejectedCashRefund:
    """Cash paid out by a rejected note must come back before its amount is freed."""

    def _cash_refund(self, actor, sale_id, amount):
        return credit_note_service.issue_credit_note(
            actor, sale_id, "DEVOLUCION_PARCIAL", MOTIVO, amount, devolver_efectivo=True
        )

    def test_rejection_reverses_refund_into_open_session(
        self, db_session, cashier, open_session, make_accepted_sale
    ):
        sale = make_accepted_sale(10000)
        before = journal_service.theoretical_balance(open_session.id)
        issued = self._cash_refund(cashier, sale.id, 6000)

        note = credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "RECHAZADO")

        reversal = db_session.get(Movement, note.refund_reversal_movement_id)
        assert reversal.type == "INGRESO"
        assert reversal.source == "CREDIT_NOTE"
        assert reversal.credit_note_id == note.id
        assert reversal.amount_cents == 6000
        assert reversal.session_id == open_session.id
        assert note.cash_reversal_pending is False
        assert journal_service.theoretical_balance(open_session.id) == before
        assert credit_note_service.available_balance(sale.id, cashier.tenant_id) == 10000
        assert db_session.query(AuditEvent).filter_by(
            event_type=audit_service.EVENT_CASH_REFUND_REVERSED,
            credit_note_id=note.id,
        ).count() == 1

    def test_second_refund_after_rejection_pays_out_once(
        self, db_session, cashier, open_session, make_accepted_sale
    ):
        sale = make_accepted_sale(10000)
        first = self._cash_refund(cashier, sale.id, 6000)
        credit_note_service.set_credit_note_sunat_state(cashier, first.note.id, "RECHAZADO")

        self._cash_refund(cashier, sale.id, 6000)

        movements = db_session.query(Movement).filter_by(source="CREDIT_NOTE").all()
        paid_out = sum(m.amount_cents for m in movements if m.type == "EGRESO")
        taken_back = sum(m.amount_cents for m in movements if m.type == "INGRESO")
        assert paid_out - taken_back == 6000

    def test_rejection_without_open_session_keeps_amount_counted(
        self, db_session, cashier, register, open_session, make_accepted_sale
    ):
        sale = make_accepted_sale(10000)
        issued = self._cash_refund(cashier, sale.id, 6000)
        cash_session_service.close_session_normal(cashier, open_session.id, 14000)

        note = credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "RECHAZADO")

        assert note.sunat_state == "RECHAZADO"
        assert note.cash_reversal_pending is True
        assert note.refund_reversal_movement_id is None
        assert credit_note_service.total_refunded(sale.id) == 6000
        assert db_session.query(AuditEvent).filter_by(
            event_type=audit_service.EVENT_CASH_REVERSAL_PENDING,
            credit_note_id=note.id,
        ).count() == 1
        with pytest.raises(RefundExceedsBalance):
            credit_note_service.issue_credit_note(cashier, sale.id, "DEVOLUCION_PARCIAL", MOTIVO, 6000)

    def test_pending_reversal_is_taken_into_next_session(
        self, db_session, cashier, register, open_session, make_accepted_sale
    ):
        sale = make_accepted_sale(10000)
        issued = self._cash_refund(cashier, sale.id, 6000)
        cash_session_service.close_session_normal(cashier, open_session.id, 14000)
        credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "RECHAZADO")

        with pytest.raises(RequiresSessionOpen):
            credit_note_service.reverse_pending_cash_refund(cashier, issued.note.id)

        next_session = cash_session_service.open_session(cashier, register.id, 5000)
        note = credit_note_service.reverse_pending_cash_refund(cashier, issued.note.id)

        assert note.cash_reversal_pending is False
        assert db_session.get(Movement, note.refund_reversal_movement_id).session_id == next_session.id
        assert journal_service.theoretical_balance(next_session.id) == 11000
        assert credit_note_service.available_balance(sale.id, cashier.tenant_id) == 10000

        with pytest.raises(ValidationError):
            credit_note_service.reverse_pending_cash_refund(cashier, issued.note.id)

    def test_rejected_pending_refund_needs_no_reversal(
        self, db_session, cashier, open_session, make_accepted_sale
    ):
        sale = make_accepted_sale(10000)
        cash_session_service.close_session_normal(cashier, open_session.id, 20000)
        issued = self._cash_refund(cashier, sale.id, 3000)

        note = credit_note_service.set_credit_note_sunat_state(cashier, issued.note.id, "RECHAZADO")

        assert note.cash_refund_pending is False
        assert note.cash_reversal_pending is False
        assert credit_note_service.available_balance(sale.id, cashier.tenant_id) == 10000
        assert db_session.query(Movement).filter_by(source="CREDIT_NOTE").count() == 0
