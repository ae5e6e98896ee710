from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


class AccountingEntry(db.Model):
    """
    Branch-scoped journal entry (income, expense, sale, refund, payment...).

    Order-derived entries carry a stable token in their description
    ("Order #12", "Refund for Order #12 - ...") which the journal uses to
    avoid posting the same event twice.
    """
    __tablename__ = "accounting_entries"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_accounting_entries_amount_positive"),
        db.Index("ix_accounting_entries_branch_type_date", "branch_id", "entry_type", "entry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    entry_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500), nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    entry_date = db.Column(db.DateTime(timezone=True), nullable=False)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<AccountingEntry id={self.id} type={self.entry_type} amount={self.amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "payment_method": self.payment_method,
            "category": self.category,
            "entry_date": to_utc_z(self.entry_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
