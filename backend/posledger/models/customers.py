from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data; owner of a ledger.

    MULTI-TENANT: Customers are scoped to companies via company_id and are
    shared by every branch of the company. Orders resolve an existing
    customer by phone first, then email, before creating a new one.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_company_phone", "company_id", "phone"),
        db.Index("ix_customers_company_email", "company_id", "email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)

    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.full_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
