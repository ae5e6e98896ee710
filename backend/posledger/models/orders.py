from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order placed at a branch.

    status and order_status are twin fields kept for API compatibility;
    every write sets both to the same value (Pending, Paid or Cancelled).
    total_amount_cents is the sum of line quantity * unit price and never
    changes after creation. Customer contact fields are a snapshot taken
    when the order was placed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_branch_status_date", "branch_id", "status", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="Pending", index=True)
    order_status = db.Column(db.String(16), nullable=False, default="Pending")
    payment_method = db.Column(db.String(32), nullable=True)

    customer_full_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    history = db.relationship(
        "OrderHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderHistory.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total={self.total_amount_cents}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "created_by_user_id": self.created_by_user_id,
            "date": to_utc_z(self.date),
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "order_status": self.order_status,
            "payment_method": self.payment_method,
            "customer_full_name": self.customer_full_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "customer_address": self.customer_address,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """One product line on an order. Price is captured at order time."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderHistory(db.Model):
    """
    Append-only audit row for every order status write.

    Rows are never updated; they only disappear with their order.
    """
    __tablename__ = "order_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    previous_order_status = db.Column(db.String(16), nullable=True)
    new_order_status = db.Column(db.String(16), nullable=False)

    action = db.Column(db.String(64), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("Order", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "previous_order_status": self.previous_order_status,
            "new_order_status": self.new_order_status,
            "action": self.action,
            "notes": self.notes,
            "changed_at": to_utc_z(self.changed_at),
        }
