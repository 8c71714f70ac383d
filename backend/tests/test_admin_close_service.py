"""
Administrative close tests.

A supervisor can close another user's session, never silently: the
justification is mandatory and the close is audited with both identities.
"""

import pytest

from caja.errors import SessionClosed, Unauthorized, ValidationError
from caja.models import AuditEvent, CashSession
from caja.services import admin_close_service, audit_service, cash_session_service, journal_service


JUSTIFICATION = "Cajero se retiró por emergencia familiar"


class TestAdministrativeClose:

    def test_supervisor_closes_absent_cashier_session(self, db_session, cashier, supervisor, open_session):
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 20000, "EFECTIVO", "Ventas de la mañana")
        journal_service.add_movement(cashier, open_session.id, "EGRESO", 5000, "EFECTIVO", "Pago de movilidad")

        result = admin_close_service.close_session_administrative(supervisor, open_session.id, 25000, JUSTIFICATION)

        assert result.closure_type == "ADMINISTRATIVE"
        assert result.classification == "CUADRADO"

        session = db_session.get(CashSession, open_session.id)
        assert session.state == "CLOSED"
        assert session.closure_type == "ADMINISTRATIVE"
        assert session.closure_reason == JUSTIFICATION
        assert session.closed_by_user_id == supervisor.user_id
        assert session.user_id == cashier.user_id

    def test_audit_event_records_both_identities(self, db_session, cashier, supervisor, open_session):
        admin_close_service.close_session_administrative(supervisor, open_session.id, 9500, JUSTIFICATION)

        event = db_session.query(AuditEvent).filter_by(
            event_type=audit_service.EVENT_ADMINISTRATIVE_CLOSE
        ).one()
        assert event.actor_user_id == supervisor.user_id
        assert event.subject_user_id == cashier.user_id
        assert event.session_id == open_session.id
        assert event.note == JUSTIFICATION
        assert event.payload["closer_user_id"] == supervisor.user_id
        assert event.payload["owner_user_id"] == cashier.user_id
        assert event.payload["justification"] == JUSTIFICATION
        assert event.payload["discrepancy_cents"] == -500
        assert event.payload["classification"] == "FALTANTE"

    def test_discrepancy_is_flagged_like_a_normal_close(self, db_session, supervisor, open_session):
        admin_close_service.close_session_administrative(supervisor, open_session.id, 11000, JUSTIFICATION)

        assert db_session.query(AuditEvent).filter_by(
            event_type=audit_service.EVENT_DISCREPANCY_FLAGGED
        ).count() == 1

    def test_justification_is_trimmed(self, db_session, supervisor, open_session):
        admin_close_service.close_session_administrative(
            supervisor, open_session.id, 10000, "   Cambio de turno urgente   "
        )

        session = db_session.get(CashSession, open_session.id)
        assert session.closure_reason == "Cambio de turno urgente"

    @pytest.mark.parametrize("justification", [None, "", "corto", "   123456789   "])
    def test_short_justification_leaves_session_open(self, db_session, supervisor, open_session, justification):
        with pytest.raises(ValidationError):
            admin_close_service.close_session_administrative(supervisor, open_session.id, 10000, justification)

        session = db_session.get(CashSession, open_session.id)
        assert session.state == "OPEN"
        assert session.closed_at is None
        assert db_session.query(AuditEvent).filter_by(
            event_type=audit_service.EVENT_ADMINISTRATIVE_CLOSE
        ).count() == 0

    def test_non_supervisor_is_rejected(self, db_session, other_cashier, open_session):
        with pytest.raises(Unauthorized):
            admin_close_service.close_session_administrative(other_cashier, open_session.id, 10000, JUSTIFICATION)

        assert db_session.get(CashSession, open_session.id).state == "OPEN"

    def test_supervisor_cannot_close_own_session_administratively(self, db_session, supervisor, second_register):
        own = cash_session_service.open_session(supervisor, second_register.id, 5000)

        with pytest.raises(Unauthorized):
            admin_close_service.close_session_administrative(supervisor, own.id, 5000, JUSTIFICATION)

        assert db_session.get(CashSession, own.id).state == "OPEN"

    def test_already_closed_session(self, db_session, cashier, supervisor, open_session):
        cash_session_service.close_session_normal(cashier, open_session.id, 10000)

        with pytest.raises(SessionClosed):
            admin_close_service.close_session_administrative(supervisor, open_session.id, 10000, JUSTIFICATION)

        assert db_session.get(CashSession, open_session.id).closure_type == "NORMAL"

    def test_twelve_character_justification_with_zero_count(self, db_session, cashier, supervisor, open_session):
        result = admin_close_service.close_session_administrative(supervisor, open_session.id, 0, "Cambio turno")

        assert result.closure_type == "ADMINISTRATIVE"
        assert result.discrepancy_cents == -10000
        assert result.classification == "FALTANTE"
