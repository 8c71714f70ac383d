from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Commercial transaction (venta).

    Immutable once created except for sunat_state, which the SUNAT
    collaborator sets, and credit_notes_issued, the counter bumped by every
    credit-note issuance so concurrent issuers collide on version_id.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_tenant_created", "tenant_id", "created_at"),
        db.CheckConstraint("total_cents > 0", name="ck_sales_total_positive"),
        db.CheckConstraint("initial_payment_cents >= 0", name="ck_sales_initial_payment_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=False)

    total_cents = db.Column(db.Integer, nullable=False)
    condicion_pago = db.Column(db.String(16), nullable=False, default="CONTADO")  # CONTADO, CREDITO
    payment_method = db.Column(db.String(16), nullable=False, default="EFECTIVO")
    initial_payment_cents = db.Column(db.Integer, nullable=False, default=0)  # CREDITO only

    sunat_state = db.Column(db.String(16), nullable=False, default="PENDIENTE", index=True)  # PENDIENTE, ACEPTADO, RECHAZADO

    credit_notes_issued = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "cash_register_id": self.cash_register_id,
            "session_id": self.session_id,
            "client_id": self.client_id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "condicion_pago": self.condicion_pago,
            "payment_method": self.payment_method,
            "initial_payment_cents": self.initial_payment_cents,
            "sunat_state": self.sunat_state,
            "credit_notes_issued": self.credit_notes_issued,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CreditNote(db.Model):
    """
    Nota de crédito against exactly one accepted sale.

    Notes in ACEPTADO or PENDIENTE count against the sale's refundable
    balance. A RECHAZADO note stops counting once no cash it paid out is
    still outside the drawer, that is when it never wrote a refund movement
    or its refund has been reversed by an INGRESO.
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.Index("ix_credit_notes_sale_state", "sale_id", "sunat_state"),
        db.CheckConstraint("monto_total_cents > 0", name="ck_credit_notes_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)  # venta_referencia_id

    tipo_nota = db.Column(db.String(48), nullable=False, index=True)
    motivo_sustento = db.Column(db.String(500), nullable=False)
    monto_total_cents = db.Column(db.Integer, nullable=False)

    sunat_state = db.Column(db.String(16), nullable=False, default="PENDIENTE", index=True)

    devolver_stock = db.Column(db.Boolean, nullable=False, default=False)
    devolver_efectivo = db.Column(db.Boolean, nullable=False, default=False)

    # Cash refund bookkeeping: either a movement was written or the refund is pending manual entry
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True)
    refund_movement_id = db.Column(db.Integer, nullable=True)
    cash_refund_pending = db.Column(db.Boolean, nullable=False, default=False)
    # Set when a rejected note gives back the cash it already paid out
    refund_reversal_movement_id = db.Column(db.Integer, nullable=True)
    cash_reversal_pending = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    sale = db.relationship("Sale", backref=db.backref("credit_notes", lazy=True, order_by="CreditNote.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_id": self.sale_id,
            "tipo_nota": self.tipo_nota,
            "motivo_sustento": self.motivo_sustento,
            "monto_total_cents": self.monto_total_cents,
            "sunat_state": self.sunat_state,
            "devolver_stock": self.devolver_stock,
            "devolver_efectivo": self.devolver_efectivo,
            "cash_register_id": self.cash_register_id,
            "refund_movement_id": self.refund_movement_id,
            "cash_refund_pending": self.cash_refund_pending,
            "refund_reversal_movement_id": self.refund_reversal_movement_id,
            "cash_reversal_pending": self.cash_reversal_pending,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class CreditNoteLine(db.Model):
    """Returned/discounted product line; stock restoration is signaled, not performed."""
    __tablename__ = "credit_note_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id"), nullable=False, index=True)
    producto_id = db.Column(db.Integer, nullable=False)
    cantidad = db.Column(db.Numeric(12, 3), nullable=False)
    precio_unitario_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    credit_note = db.relationship("CreditNote", backref=db.backref("lines", lazy=True, order_by="CreditNoteLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "producto_id": self.producto_id,
            "cantidad": str(self.cantidad),
            "precio_unitario_cents": self.precio_unitario_cents,
            "subtotal_cents": self.subtotal_cents,
        }
