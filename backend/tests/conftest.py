"""
Pytest fixtures for the caja backend tests.

Provides the test database, tenant-scoped actors, registers, open sessions,
clients with credit lines and accepted sales.
"""

import pytest

from caja import create_app
from caja.config import TestConfig
from caja.context import Actor
from caja.extensions import db
from caja.models import CashRegister, Client
from caja.services import cash_session_service, sales_service


TENANT_A = 1
TENANT_B = 2


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema. Core deletes bypass the
        # append-only ORM listeners on movements and audit events.
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# ACTORS
# =============================================================================

@pytest.fixture
def cashier():
    return Actor(user_id=10, tenant_id=TENANT_A)


@pytest.fixture
def other_cashier():
    return Actor(user_id=11, tenant_id=TENANT_A)


@pytest.fixture
def supervisor():
    return Actor(user_id=99, tenant_id=TENANT_A, is_supervisor=True)


@pytest.fixture
def foreign_supervisor():
    """Supervisor of another tenant."""
    return Actor(user_id=200, tenant_id=TENANT_B, is_supervisor=True)


def headers_for(actor):
    headers = {
        "X-User-Id": str(actor.user_id),
        "X-Tenant-Id": str(actor.tenant_id),
    }
    if actor.is_supervisor:
        headers["X-Supervisor"] = "true"
    return headers


@pytest.fixture
def cashier_headers(cashier):
    return headers_for(cashier)


@pytest.fixture
def other_cashier_headers(other_cashier):
    return headers_for(other_cashier)


@pytest.fixture
def supervisor_headers(supervisor):
    return headers_for(supervisor)


# =============================================================================
# REGISTERS / SESSIONS
# =============================================================================

@pytest.fixture
def register(db_session):
    """Active register CAJA-01 of tenant A."""
    reg = CashRegister(tenant_id=TENANT_A, code="CAJA-01", name="Caja principal", is_active=True)
    db_session.add(reg)
    db_session.commit()
    return reg


@pytest.fixture
def second_register(db_session):
    reg = CashRegister(tenant_id=TENANT_A, code="CAJA-02", name="Caja secundaria", is_active=True)
    db_session.add(reg)
    db_session.commit()
    return reg


@pytest.fixture
def open_session(db_session, register, cashier):
    """Session of `cashier` on `register` opened with S/ 100.00."""
    return cash_session_service.open_session(cashier, register.id, 10000)


# =============================================================================
# CLIENTS / SALES
# =============================================================================

@pytest.fixture
def credit_client(db_session):
    """Client with a S/ 500.00 credit line at 30 days."""
    customer = Client(
        tenant_id=TENANT_A,
        name="Ferretería El Tornillo",
        document_number="20123456789",
        limite_credito_cents=50000,
        dias_credito=30,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def cash_client(db_session):
    """Client without a credit line."""
    customer = Client(
        tenant_id=TENANT_A,
        name="Juan Pérez",
        document_number="45678912",
        limite_credito_cents=0,
        dias_credito=0,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def make_accepted_sale(cashier, register):
    """Factory: post a sale on `register` and mark it ACEPTADO by SUNAT."""
    def _make(total_cents, condicion_pago="CONTADO", *, client_id=None, initial_payment_cents=0, actor=None):
        actor = actor or cashier
        sale = sales_service.create_sale(
            actor,
            register.id,
            total_cents,
            condicion_pago,
            "EFECTIVO",
            client_id=client_id,
            initial_payment_cents=initial_payment_cents,
        )
        return sales_service.set_sale_sunat_state(actor, sale.id, "ACEPTADO")
    return _make
