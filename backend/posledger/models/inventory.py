from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable product with its on-hand stock.

    unit_stock is only ever changed through conditional UPDATE statements
    (see inventory_service) so it can never go negative. status mirrors
    availability: "NO" at zero stock, "YES" once stock is restored.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "sku", name="uq_products_branch_sku"),
        db.CheckConstraint("unit_stock >= 0", name="ck_products_unit_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    unit_stock = db.Column(db.Integer, nullable=False, default=0)
    stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    status = db.Column(db.String(8), nullable=False, default="YES")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.unit_stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.unit_stock <= self.stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "unit_stock": self.unit_stock,
            "stock_threshold": self.stock_threshold,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
