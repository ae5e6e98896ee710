# Overview: Stock deduction and restoration against Product.unit_stock.

# backend/posledger/services/inventory_service.py
"""
Inventory invariants (authoritative)

- unit_stock never goes negative. Deduction is a single conditional
  UPDATE ... WHERE unit_stock >= quantity, so two concurrent orders can
  never both take the last units: one of them sees rowcount == 0.
- status is "NO" exactly when a deduction leaves zero units and flips back
  to "YES" when a restoration brings stock above zero.
- A deduction that leaves stock at or below stock_threshold emits a
  low-stock alert. Alert failures never undo the deduction.
- Both operations run inside the caller's transaction; the caller commits.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, update

from ..extensions import db
from ..models import Product
from ..validation import InsufficientStockError, NotFoundError, ValidationError
from . import notification_service
from .tenant_service import TenantContext, scope_to_branch


def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return quantity


def deduct_inventory(product_id: int, quantity: int) -> Product:
    """
    Remove `quantity` units from a product's stock.

    Returns:
        The refreshed Product

    Raises:
        NotFoundError if the product does not exist
        InsufficientStockError if stock < quantity (stock unchanged)
    """
    quantity = _require_positive_quantity(quantity)

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.unit_stock >= quantity)
        .values(
            unit_stock=Product.unit_stock - quantity,
            status=case((Product.unit_stock - quantity == 0, "NO"), else_=Product.status),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not result.rowcount:
        raise InsufficientStockError(
            product_id=product.id,
            requested=quantity,
            available=product.unit_stock,
            product_name=product.name,
        )

    if product.unit_stock <= product.stock_threshold:
        _notify_low_stock(product)

    return product


def restore_inventory(product_id: int, quantity: int) -> bool:
    """
    Put `quantity` units back on a product (returns, cancellations).

    Returns:
        False if the product no longer exists, True otherwise
    """
    quantity = _require_positive_quantity(quantity)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            unit_stock=Product.unit_stock + quantity,
            status=case((Product.unit_stock + quantity > 0, "YES"), else_=Product.status),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        current_app.logger.warning(
            "Cannot restore %s units: product %s not found", quantity, product_id
        )
        return False

    db.session.get(Product, product_id, populate_existing=True)
    current_app.logger.info("Restored %s units to product %s", quantity, product_id)
    return True


def _notify_low_stock(product: Product) -> None:
    try:
        notification_service.send_low_stock_alert(
            product.name, product.unit_stock, product.stock_threshold
        )
    except Exception:
        current_app.logger.exception("Low stock alert failed for product %s", product.id)


# =============================================================================
# Queries
# =============================================================================

def get_product(tenant: TenantContext, product_id: int) -> Product:
    """Product in the caller's branch, or NotFoundError."""
    product = (
        scope_to_branch(db.session.query(Product), Product, tenant)
        .filter(Product.id == product_id)
        .first()
    )
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_low_stock_products(tenant: TenantContext) -> list[Product]:
    return (
        scope_to_branch(db.session.query(Product), Product, tenant)
        .filter(Product.unit_stock <= Product.stock_threshold)
        .order_by(Product.unit_stock.asc(), Product.id.asc())
        .all()
    )
