from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CashRegister(db.Model):
    """
    Physical till.

    Identity only: sessions and document series point at it. Registers are
    deactivated, never deleted, so historical sessions keep their reference.
    """
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_cash_registers_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    # Human-readable identifier (e.g., "CAJA-01")
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class CashSession(db.Model):
    """
    One cashier's shift on one register (sesión de caja).

    LIFECYCLE:
    - OPEN: movements may be appended
    - CLOSED: terminal; theoretical, counted and discrepancy are frozen

    At most one OPEN session per register. The partial unique index backs the
    service-level check for writers that race past it.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_one_open_per_register",
            "cash_register_id",
            unique=True,
            sqlite_where=db.text("state = 'OPEN'"),
            postgresql_where=db.text("state = 'OPEN'"),
        ),
        db.Index("ix_cash_sessions_tenant_state", "tenant_id", "state"),
        db.CheckConstraint("opening_amount_cents >= 0", name="ck_cash_sessions_opening_non_negative"),
        db.CheckConstraint(
            "closure_type IS NULL OR closure_type <> 'ADMINISTRATIVE' OR closure_reason IS NOT NULL",
            name="ck_cash_sessions_admin_reason",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    state = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    # All amounts in céntimos
    opening_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    theoretical_amount_cents = db.Column(db.Integer, nullable=True)  # set at close
    counted_amount_cents = db.Column(db.Integer, nullable=True)  # blind count
    discrepancy_cents = db.Column(db.Integer, nullable=True)  # counted - theoretical
    classification = db.Column(db.String(16), nullable=True)  # CUADRADO, FALTANTE, SOBRANTE

    closure_type = db.Column(db.String(16), nullable=True)  # NORMAL, ADMINISTRATIVE
    closure_reason = db.Column(db.Text, nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    cash_register = db.relationship("CashRegister", backref=db.backref("sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.state == "OPEN"

    def to_dict(self, *, reveal_theoretical: bool = True) -> dict:
        """reveal_theoretical=False hides expected cash and discrepancy (blind count)."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "cash_register_id": self.cash_register_id,
            "user_id": self.user_id,
            "state": self.state,
            "opening_amount_cents": self.opening_amount_cents,
            "theoretical_amount_cents": self.theoretical_amount_cents if reveal_theoretical else None,
            "counted_amount_cents": self.counted_amount_cents,
            "discrepancy_cents": self.discrepancy_cents if reveal_theoretical else None,
            "classification": self.classification,
            "closure_type": self.closure_type,
            "closure_reason": self.closure_reason,
            "closed_by_user_id": self.closed_by_user_id,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class Movement(db.Model):
    """
    One cash ledger entry (movimiento de caja).

    APPEND-ONLY: rows are never updated or deleted (see caja.models.immutability).
    Balances are always derived from these rows, never cached.
    """
    __tablename__ = "movements"
    __table_args__ = (
        db.Index("ix_movements_session_created", "session_id", "created_at"),
        db.CheckConstraint("amount_cents > 0", name="ck_movements_amount_positive"),
        db.CheckConstraint(
            "(CASE WHEN sale_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN credit_note_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN payment_id IS NULL THEN 0 ELSE 1 END) <= 1",
            name="ck_movements_single_reference",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # INGRESO, EGRESO
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, default="EFECTIVO")
    description = db.Column(db.String(500), nullable=False)

    # Origin of the movement; at most one reference is set and it matches the source
    source = db.Column(db.String(16), nullable=False, default="MANUAL", index=True)  # SALE, CREDIT_NOTE, PAYMENT, MANUAL
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("receivable_payments.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    session = db.relationship("CashSession", backref=db.backref("movements", lazy=True, order_by="Movement.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "session_id": self.session_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "description": self.description,
            "source": self.source,
            "sale_id": self.sale_id,
            "credit_note_id": self.credit_note_id,
            "payment_id": self.payment_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
