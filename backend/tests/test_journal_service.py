"""
Movement journal tests.

The journal is the only way a session's balance changes: movements are
appended to OPEN sessions only, are never edited, and every balance is
derived from them.
"""

import pytest

from caja.errors import InvalidAmount, RequiresSessionOpen, SessionClosed, Unauthorized, ValidationError
from caja.models import ImmutabilityViolationError, Movement
from caja.services import cash_session_service, journal_service
from caja.time_utils import utcnow


class TestAddMovement:
    """Appending movements to an open session."""

    def test_ingreso_and_egreso_move_theoretical_balance(self, db_session, cashier, open_session):
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 5000, "EFECTIVO", "Sencillo para vuelto")
        journal_service.add_movement(cashier, open_session.id, "EGRESO", 2000, "EFECTIVO", "Pago de movilidad")

        assert journal_service.theoretical_balance(open_session.id) == 13000

    def test_movement_is_stamped_with_actor_and_source(self, db_session, cashier, open_session):
        movement = journal_service.add_movement(
            cashier, open_session.id, "ingreso", 1500, "yape", "Depósito de propina"
        )

        assert movement.type == "INGRESO"
        assert movement.payment_method == "YAPE"
        assert movement.source == "MANUAL"
        assert movement.created_by_user_id == cashier.user_id
        assert movement.session_id == open_session.id
        assert movement.created_at is not None

    @pytest.mark.parametrize("amount", [0, -500])
    def test_rejects_non_positive_amount(self, db_session, cashier, open_session, amount):
        with pytest.raises(InvalidAmount):
            journal_service.add_movement(cashier, open_session.id, "INGRESO", amount, "EFECTIVO", "Monto inválido aquí")

        assert db_session.query(Movement).count() == 0

    def test_rejects_decimal_amount(self, db_session, cashier, open_session):
        with pytest.raises(ValidationError):
            journal_service.add_movement(cashier, open_session.id, "INGRESO", 10.5, "EFECTIVO", "Monto con decimales")

    @pytest.mark.parametrize("description", [None, "", "   ", "corto"])
    def test_manual_movement_needs_a_reason(self, db_session, cashier, open_session, description):
        with pytest.raises(ValidationError):
            journal_service.add_movement(cashier, open_session.id, "EGRESO", 1000, "EFECTIVO", description)

        assert db_session.query(Movement).count() == 0

    def test_rejects_unknown_type_and_method(self, db_session, cashier, open_session):
        with pytest.raises(ValidationError):
            journal_service.add_movement(cashier, open_session.id, "AJUSTE", 1000, "EFECTIVO", "Ajuste de caja chica")
        with pytest.raises(ValidationError):
            journal_service.add_movement(cashier, open_session.id, "INGRESO", 1000, "BITCOIN", "Pago en cripto raro")

    def test_sale_source_requires_sale_reference(self, db_session, cashier, open_session):
        with pytest.raises(ValidationError):
            journal_service.add_movement(
                cashier, open_session.id, "INGRESO", 1000, "EFECTIVO", "Venta sin referencia", "SALE"
            )

    def test_manual_movement_cannot_reference_a_document(self, db_session, cashier, open_session):
        with pytest.raises(ValidationError):
            journal_service.add_movement(
                cashier, open_session.id, "INGRESO", 1000, "EFECTIVO", "Movimiento manual", sale_id=1
            )

    def test_closed_session_rejects_movements(self, db_session, cashier, open_session):
        cash_session_service.close_session_normal(cashier, open_session.id, 10000)

        with pytest.raises(SessionClosed):
            journal_service.add_movement(cashier, open_session.id, "INGRESO", 1000, "EFECTIVO", "Después del cierre")

        assert db_session.query(Movement).count() == 0

    def test_other_cashier_cannot_add_manual_movement(self, db_session, other_cashier, open_session):
        with pytest.raises(Unauthorized):
            journal_service.add_movement(other_cashier, open_session.id, "EGRESO", 1000, "EFECTIVO", "Retiro no autorizado")

    def test_supervisor_can_add_manual_movement(self, db_session, supervisor, open_session):
        movement = journal_service.add_movement(
            supervisor, open_session.id, "EGRESO", 3000, "EFECTIVO", "Retiro parcial a bóveda"
        )
        assert movement.created_by_user_id == supervisor.user_id
        assert journal_service.theoretical_balance(open_session.id) == 7000


class TestRegisterMovement:
    """Register-addressed movements resolve the open session."""

    def test_posts_to_open_session(self, db_session, cashier, register, open_session):
        movement = journal_service.record_register_movement(
            cashier, register.id, "INGRESO", 2500, "EFECTIVO", "Fondo adicional de caja"
        )
        assert movement.session_id == open_session.id

    def test_without_session_requires_opening(self, db_session, cashier, register):
        with pytest.raises(RequiresSessionOpen) as exc_info:
            journal_service.record_register_movement(
                cashier, register.id, "INGRESO", 2500, "EFECTIVO", "Fondo adicional de caja"
            )

        payload = exc_info.value.to_dict()
        assert payload["error"] == "REQUIRES_SESSION_OPEN"
        assert payload["requires_action"] == "OPEN_SESSION"


class TestImmutability:
    """Movements are append-only."""

    def test_update_is_rejected(self, db_session, cashier, open_session):
        movement = journal_service.add_movement(
            cashier, open_session.id, "INGRESO", 5000, "EFECTIVO", "Sencillo para vuelto"
        )

        movement.amount_cents = 1
        with pytest.raises(ImmutabilityViolationError):
            db_session.flush()
        db_session.rollback()

        assert db_session.get(Movement, movement.id).amount_cents == 5000

    def test_delete_is_rejected(self, db_session, cashier, open_session):
        movement = journal_service.add_movement(
            cashier, open_session.id, "EGRESO", 5000, "EFECTIVO", "Pago a proveedor local"
        )

        db_session.delete(movement)
        with pytest.raises(ImmutabilityViolationError):
            db_session.flush()
        db_session.rollback()

        assert db_session.query(Movement).count() == 1


class TestBalanceReads:
    """Derived balances and per-method totals."""

    def test_balance_of_session_without_movements_is_opening(self, db_session, open_session):
        assert journal_service.theoretical_balance(open_session.id) == 10000

    def test_as_of_excludes_later_movements(self, db_session, cashier, open_session):
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 5000, "EFECTIVO", "Primer ingreso del día")
        cutoff = utcnow()
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 7000, "EFECTIVO", "Segundo ingreso del día")

        assert journal_service.theoretical_balance(open_session.id, cutoff) == 15000
        assert journal_service.theoretical_balance(open_session.id) == 22000
        assert len(journal_service.list_movements(open_session.id, open_session.tenant_id, as_of=cutoff)) == 1

    def test_reads_do_not_write(self, db_session, cashier, open_session):
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 5000, "EFECTIVO", "Sencillo para vuelto")

        first = journal_service.theoretical_balance(open_session.id)
        second = journal_service.theoretical_balance(open_session.id)

        assert first == second == 15000
        assert db_session.query(Movement).count() == 1

    def test_totals_by_payment_method(self, db_session, cashier, open_session):
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 5000, "EFECTIVO", "Ingreso en efectivo")
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 3000, "YAPE", "Ingreso por Yape hoy")
        journal_service.add_movement(cashier, open_session.id, "EGRESO", 1000, "EFECTIVO", "Pago de movilidad")

        breakdown = journal_service.totals_by_payment_method(open_session.id)

        assert breakdown["EFECTIVO"] == {"ingresos_cents": 5000, "egresos_cents": 1000, "count": 2, "net_cents": 4000}
        assert breakdown["YAPE"]["net_cents"] == 3000
        assert journal_service.movement_totals(open_session.id) == {
            "ingresos_cents": 8000,
            "egresos_cents": 1000,
            "net_cents": 7000,
        }
