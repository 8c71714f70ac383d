"""Sales intake: movements per payment condition and SUNAT state ingestion."""

import pytest

from caja.errors import InvalidAmount, RequiresSessionOpen, ValidationError
from caja.models import Movement, Sale
from caja.services import cash_session_service, journal_service, sales_service


class TestCreateSale:

    def test_cash_sale_posts_ingreso(self, db_session, cashier, register, open_session):
        sale = sales_service.create_sale(cashier, register.id, 15000, "CONTADO", "TARJETA")

        movement = db_session.query(Movement).filter_by(sale_id=sale.id).one()
        assert movement.type == "INGRESO"
        assert movement.source == "SALE"
        assert movement.amount_cents == 15000
        assert movement.payment_method == "TARJETA"
        assert sale.session_id == open_session.id
        assert sale.sunat_state == "PENDIENTE"

    def test_credit_sale_posts_only_initial_payment(
        self, db_session, cashier, register, open_session, credit_client
    ):
        sale = sales_service.create_sale(
            cashier, register.id, 20000, "CREDITO", client_id=credit_client.id, initial_payment_cents=4000
        )

        movements = db_session.query(Movement).filter_by(sale_id=sale.id).all()
        assert [m.amount_cents for m in movements] == [4000]
        assert journal_service.theoretical_balance(open_session.id) == 14000

    def test_credit_sale_without_initial_payment_moves_no_cash(
        self, db_session, cashier, register, open_session, credit_client
    ):
        sales_service.create_sale(cashier, register.id, 20000, "CREDITO", client_id=credit_client.id)

        assert db_session.query(Movement).count() == 0

    def test_credit_sale_requires_client(self, db_session, cashier, register, open_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale(cashier, register.id, 20000, "CREDITO")

    def test_sale_requires_open_session(self, db_session, cashier, register):
        with pytest.raises(RequiresSessionOpen):
            sales_service.create_sale(cashier, register.id, 1000)

    def test_sale_after_close_requires_open_session(self, db_session, cashier, register, open_session):
        cash_session_service.close_session_normal(cashier, open_session.id, 10000)

        with pytest.raises(RequiresSessionOpen):
            sales_service.create_sale(cashier, register.id, 1000)
        assert db_session.query(Sale).count() == 0

    def test_invalid_total(self, db_session, cashier, register, open_session):
        with pytest.raises(InvalidAmount):
            sales_service.create_sale(cashier, register.id, 0)

    def test_unknown_condicion(self, db_session, cashier, register, open_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale(cashier, register.id, 1000, "TRUEQUE")


class TestSunatState:

    def test_pending_resolves_once(self, db_session, cashier, register, open_session):
        sale = sales_service.create_sale(cashier, register.id, 1000)

        accepted = sales_service.set_sale_sunat_state(cashier, sale.id, "ACEPTADO")
        assert accepted.sunat_state == "ACEPTADO"

        # Re-reporting the same state is a no-op
        assert sales_service.set_sale_sunat_state(cashier, sale.id, "aceptado").sunat_state == "ACEPTADO"

        with pytest.raises(ValidationError):
            sales_service.set_sale_sunat_state(cashier, sale.id, "RECHAZADO")

    def test_unknown_state(self, db_session, cashier, register, open_session):
        sale = sales_service.create_sale(cashier, register.id, 1000)

        with pytest.raises(ValidationError):
            sales_service.set_sale_sunat_state(cashier, sale.id, "ANULADO")
