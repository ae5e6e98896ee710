# Overview: Customer directory lookups and creation, scoped to the caller's company.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer
from ..validation import InvalidOperationError, NotFoundError, ValidationError
from .tenant_service import TenantContext, scope_to_company


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def find_customer_by_phone(tenant: TenantContext, phone: str | None) -> Customer | None:
    phone = _clean(phone)
    if not phone:
        return None
    query = scope_to_company(db.session.query(Customer), Customer, tenant)
    return query.filter(Customer.phone == phone).order_by(Customer.id.asc()).first()


def find_customer_by_email(tenant: TenantContext, email: str | None) -> Customer | None:
    email = _clean(email)
    if not email:
        return None
    query = scope_to_company(db.session.query(Customer), Customer, tenant)
    return (
        query.filter(db.func.lower(Customer.email) == email.lower())
        .order_by(Customer.id.asc())
        .first()
    )


def create_customer(
    tenant: TenantContext,
    *,
    full_name: str,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
) -> Customer:
    """Add a customer to the caller's company. Flushes; the caller commits."""
    full_name = _clean(full_name)
    if not full_name:
        raise ValidationError("Customer full name is required")

    customer = Customer(
        company_id=tenant.company_id,
        full_name=full_name,
        phone=_clean(phone),
        email=_clean(email),
        address=_clean(address),
    )
    db.session.add(customer)
    db.session.flush()
    return customer


def resolve_customer(
    tenant: TenantContext,
    *,
    full_name: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
) -> Customer:
    """
    Find the customer an order belongs to, creating it when unknown.

    Match order: phone, then email. A new customer needs a full name.
    """
    customer = find_customer_by_phone(tenant, phone) or find_customer_by_email(tenant, email)
    if customer is not None:
        return customer

    if not _clean(full_name):
        raise InvalidOperationError("Customer full name is required for new customers")

    return create_customer(tenant, full_name=full_name, phone=phone, email=email, address=address)


def get_customer(tenant: TenantContext, customer_id: int) -> Customer:
    customer = (
        scope_to_company(db.session.query(Customer), Customer, tenant)
        .filter(Customer.id == customer_id)
        .first()
    )
    if customer is None:
        raise NotFoundError(f"Customer with ID {customer_id} not found")
    return customer


def search_customers(tenant: TenantContext, term: str | None, limit: int = 20) -> list[Customer]:
    """Case-insensitive match on name, phone or email."""
    term = _clean(term)
    if not term:
        return []
    pattern = f"%{term.lower()}%"
    return (
        scope_to_company(db.session.query(Customer), Customer, tenant)
        .filter(
            or_(
                db.func.lower(Customer.full_name).like(pattern),
                db.func.lower(Customer.phone).like(pattern),
                db.func.lower(Customer.email).like(pattern),
            )
        )
        .order_by(Customer.full_name.asc())
        .limit(limit)
        .all()
    )
