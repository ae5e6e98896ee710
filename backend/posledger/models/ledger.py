from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from posledger.time_utils import to_utc_z


class CustomerLedgerEntry(db.Model):
    """
    Append-only running-balance ledger per customer.

    WHY: The customer's receivable position must be reconstructible by
    replaying entries, not just read from a mutable counter.

    INVARIANTS:
    - entries are never updated or deleted
    - exactly one of debit_cents / credit_cents is non-zero
    - balance_cents == previous entry's balance + debit - credit, where
      entries are ordered by (transaction_date, id)
    - one Sale entry per (order, invoice) and one Refund entry per return
      (partial unique indexes back the service-level checks)
    """
    __tablename__ = "customer_ledger_entries"
    __table_args__ = (
        db.Index("ix_customer_ledger_customer_date", "customer_id", "transaction_date", "id"),
        db.Index(
            "uq_customer_ledger_sale_order_invoice",
            "order_id",
            "invoice_id",
            unique=True,
            sqlite_where=text("transaction_type = 'Sale'"),
            postgresql_where=text("transaction_type = 'Sale'"),
        ),
        db.Index(
            "uq_customer_ledger_refund_return",
            "return_id",
            unique=True,
            sqlite_where=text("transaction_type = 'Refund'"),
            postgresql_where=text("transaction_type = 'Refund'"),
        ),
        db.CheckConstraint("debit_cents >= 0 AND credit_cents >= 0", name="ck_customer_ledger_amounts_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)

    debit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=True)
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<CustomerLedgerEntry id={self.id} customer={self.customer_id} "
            f"type={self.transaction_type} balance={self.balance_cents}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "transaction_date": to_utc_z(self.transaction_date),
            "transaction_type": self.transaction_type,
            "description": self.description,
            "invoice_id": self.invoice_id,
            "order_id": self.order_id,
            "return_id": self.return_id,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "balance_cents": self.balance_cents,
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
