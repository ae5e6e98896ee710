from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from posledger.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Receivable document for an order, or a credit note for a return.

    INVARIANTS:
    - balance_cents == total_amount_cents - amount_paid_cents
    - standard invoices: 0 <= amount_paid_cents <= total_amount_cents
    - at most one Standard invoice per order (partial unique index)
    - credit notes carry negative totals/balances, status "Issued", and
      link back to the original invoice and the return that caused them
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index(
            "uq_invoices_standard_per_order",
            "order_id",
            unique=True,
            sqlite_where=text("invoice_type = 'Standard'"),
            postgresql_where=text("invoice_type = 'Standard'"),
        ),
        db.Index("ix_invoices_branch_status_due", "branch_id", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    invoice_number = db.Column(db.String(32), nullable=False, unique=True)
    invoice_type = db.Column(db.String(16), nullable=False, default="Standard")

    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="Pending", index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False)

    # Credit-note links
    original_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("invoices", lazy=True))
    original_invoice = db.relationship("Invoice", remote_side=[id])
    payments = db.relationship(
        "InvoicePayment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoicePayment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number} status={self.status}>"

    @property
    def is_credit_note(self) -> bool:
        return self.invoice_type == "CreditNote"

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "order_id": self.order_id,
            "invoice_number": self.invoice_number,
            "invoice_type": self.invoice_type,
            "invoice_date": to_utc_z(self.invoice_date),
            "due_date": to_utc_z(self.due_date),
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_cents": self.balance_cents,
            "original_invoice_id": self.original_invoice_id,
            "return_id": self.return_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoicePayment(db.Model):
    """A single payment applied to an invoice. Immutable once written."""
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_invoice_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    received_by = db.Column(db.String(128), nullable=True)
    transaction_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "payment_date": to_utc_z(self.payment_date),
            "received_by": self.received_by,
            "transaction_reference": self.transaction_reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Per-prefix counter for human-readable document numbers.

    prefix is e.g. "INV-202610" or "CN-202610"; next_number is the number
    the next allocation will hand out.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
