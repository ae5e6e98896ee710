from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from posledger.time_utils import to_utc_z


class Return(db.Model):
    """
    Return document against an invoice.

    DESIGN:
    - return_type "whole" takes back every order line; "partial" lists items
    - inventory is restored and refund journal entries are written when the
      return is created, not when it is completed
    - at most one whole return per invoice (partial unique index)
    - credit_note_invoice_id is set once a credit note has been issued
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index(
            "uq_returns_whole_per_invoice",
            "invoice_id",
            unique=True,
            sqlite_where=text("return_type = 'whole'"),
            postgresql_where=text("return_type = 'whole'"),
        ),
        db.Index("ix_returns_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    return_type = db.Column(db.String(16), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    return_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="Pending", index=True)
    reason = db.Column(db.String(500), nullable=False)
    refund_method = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.String(1000), nullable=True)
    total_return_amount_cents = db.Column(db.Integer, nullable=False)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    processed_by_user_id = db.Column(db.Integer, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    credit_note_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    invoice = db.relationship("Invoice", foreign_keys=[invoice_id])
    credit_note_invoice = db.relationship("Invoice", foreign_keys=[credit_note_invoice_id])
    order = db.relationship("Order")
    items = db.relationship(
        "ReturnItem",
        back_populates="return_doc",
        cascade="all, delete-orphan",
        order_by="ReturnItem.id",
    )

    def __repr__(self) -> str:
        return f"<Return id={self.id} type={self.return_type} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "return_type": self.return_type,
            "invoice_id": self.invoice_id,
            "order_id": self.order_id,
            "return_date": to_utc_z(self.return_date),
            "status": self.status,
            "reason": self.reason,
            "refund_method": self.refund_method,
            "notes": self.notes,
            "total_return_amount_cents": self.total_return_amount_cents,
            "created_by_user_id": self.created_by_user_id,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at),
            "credit_note_invoice_id": self.credit_note_invoice_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    """Line of a partial return."""
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("return_quantity > 0", name="ck_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    return_quantity = db.Column(db.Integer, nullable=False)
    return_amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    return_doc = db.relationship("Return", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "return_quantity": self.return_quantity,
            "return_amount_cents": self.return_amount_cents,
        }
