"""Reconciliation engine: classification, denomination counting and reconcile reads."""

import pytest

from caja.errors import ValidationError
from caja.models import CashSession
from caja.services import journal_service, reconciliation_service
from caja.services.reconciliation_service import ClosureResult, classify, count_denominations, resolve_counted_amount


class TestClassify:

    @pytest.mark.parametrize("discrepancy,expected", [
        (0, "CUADRADO"),
        (-1, "FALTANTE"),
        (-500, "FALTANTE"),
        (1, "SOBRANTE"),
        (12000, "SOBRANTE"),
    ])
    def test_classification_follows_sign(self, discrepancy, expected):
        assert classify(discrepancy) == expected


class TestCountDenominations:

    def test_notes_and_coins(self):
        assert count_denominations({"200": 1, "100": 2, "0.50": 3, "0.10": 2}) == 40170

    def test_numeric_keys(self):
        assert count_denominations({100: 1, 0.2: 5}) == 10100

    def test_zero_quantities(self):
        assert count_denominations({"100": 0, "10": 0}) == 0

    @pytest.mark.parametrize("counts", [
        {"3": 1},
        {"0.05": 4},
        {"abc": 1},
        {"100": -1},
        {"100": 1.5},
    ])
    def test_rejects_bad_breakdowns(self, counts):
        with pytest.raises(ValidationError):
            count_denominations(counts)

    def test_rejects_non_mapping(self):
        with pytest.raises(ValidationError):
            count_denominations([("100", 1)])


class TestResolveCountedAmount:

    def test_plain_amount(self):
        assert resolve_counted_amount(12500) == 12500

    def test_denominations(self):
        assert resolve_counted_amount(None, {"10": 3}) == 3000

    def test_missing_amount(self):
        with pytest.raises(ValidationError):
            resolve_counted_amount(None, None)

    def test_both_given(self):
        with pytest.raises(ValidationError):
            resolve_counted_amount(1000, {"10": 1})


class TestReconcile:

    def test_reconcile_is_a_pure_read(self, db_session, cashier, open_session):
        journal_service.add_movement(cashier, open_session.id, "INGRESO", 5000, "EFECTIVO", "Ingreso de prueba")

        result = reconciliation_service.reconcile(open_session, 14000)

        assert result.theoretical_cents == 15000
        assert result.discrepancy_cents == -1000
        assert result.classification == "FALTANTE"
        assert db_session.get(CashSession, open_session.id).state == "OPEN"

    def test_closure_result_to_dict(self):
        result = ClosureResult(
            session_id=1,
            theoretical_cents=13000,
            counted_cents=12500,
            discrepancy_cents=-500,
            classification="FALTANTE",
            closure_type="NORMAL",
        )

        data = result.to_dict()
        assert data["requires_follow_up"] is True
        assert data["closed_at"] is None
        assert data["discrepancy_cents"] == -500
