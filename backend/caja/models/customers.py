from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Client(db.Model):
    """
    Customer with an optional credit line.

    limite_credito_cents == 0 means no credit line. credit_sales_count is the
    counter bumped by every approved credit sale so that concurrent approvals
    for the same client collide on version_id.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_number", name="uq_clients_tenant_document"),
        db.CheckConstraint("limite_credito_cents >= 0", name="ck_clients_credit_limit_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    document_number = db.Column(db.String(32), nullable=True)  # DNI / RUC

    limite_credito_cents = db.Column(db.Integer, nullable=False, default=0)
    dias_credito = db.Column(db.Integer, nullable=False, default=0)

    credit_sales_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "document_number": self.document_number,
            "limite_credito_cents": self.limite_credito_cents,
            "dias_credito": self.dias_credito,
            "credit_sales_count": self.credit_sales_count,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class AccountReceivable(db.Model):
    """
    Cuenta por cobrar created by a credit sale.

    Stored status is VIGENTE, PAGADA or CANCELADA; POR_VENCER and VENCIDA
    are derived from due_date at read time.
    """
    __tablename__ = "accounts_receivable"
    __table_args__ = (
        db.Index("ix_receivables_client_status", "client_id", "status"),
        db.CheckConstraint("saldo_pendiente_cents >= 0", name="ck_receivables_balance_non_negative"),
        db.CheckConstraint("saldo_pendiente_cents <= amount_cents", name="ck_receivables_balance_within_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    saldo_pendiente_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="VIGENTE", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("receivables", lazy=True))
    sale = db.relationship("Sale", backref=db.backref("receivable", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, display_status: str | None = None) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "saldo_pendiente_cents": self.saldo_pendiente_cents,
            "due_date": to_iso_date(self.due_date),
            "status": display_status or self.status,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class ReceivablePayment(db.Model):
    """Abono against a receivable; each one posts an INGRESO to the open session."""
    __tablename__ = "receivable_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_receivable_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    receivable_id = db.Column(db.Integer, db.ForeignKey("accounts_receivable.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)

    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    receivable = db.relationship("AccountReceivable", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receivable_id": self.receivable_id,
            "session_id": self.session_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
