# Overview: Order placement and status transitions with their inventory, invoice and journal side effects.

"""
Order Orchestrator

State machine: Pending -> {Paid, Cancelled}. Re-applying the current
status only writes a history row; inventory and journal side effects fire
on an actual change. Cancelled orders cannot be reopened.

Returns restock and refund when they are created, so cancelling an order
only puts back the quantities its returns have not already taken back, and
the cancellation refund of a paid order covers only the unrefunded rest.

TRANSACTION BOUNDARIES:
- create_order: customer resolution, order + lines, every stock deduction
  and the "Created" history row commit together. Insufficient stock on
  any line rolls all of it back.
- After that commit, invoice creation and the ledger sale posting run as
  separate best-effort steps: failures are logged and the order stands.
- update_order_status: status write, history row, stock restoration and
  journal entries commit together; the invoice status mirror runs after
  commit (best-effort).
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import CustomerLedgerEntry, Invoice, Order, OrderHistory, OrderLine, Product, Return
from ..time_utils import utcnow
from ..validation import InvalidOperationError, NotFoundError, ValidationError, coerce_cents, coerce_int
from . import accounting_service, customer_service, inventory_service
from .concurrency import acquire_write_lock, lock_for_update, run_with_retry
from .tenant_service import TenantContext, require_branch, scope_to_branch


ORDER_STATUS_PENDING = "Pending"
ORDER_STATUS_PAID = "Paid"
ORDER_STATUS_CANCELLED = "Cancelled"

ORDER_STATUSES = (ORDER_STATUS_PAID, ORDER_STATUS_PENDING, ORDER_STATUS_CANCELLED)

ACTION_CREATED = "Created"
ACTION_CANCELLED = "Cancelled"
ACTION_PAID = "Paid"
ACTION_STATUS_UPDATED = "Status Updated"
ACTION_BULK_STATUS_UPDATED = "Bulk Status Updated"


class OrderError(InvalidOperationError):
    """Raised when an order operation violates a business rule."""
    pass


@dataclass(frozen=True)
class OrderItem:
    product_id: int
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


def _domain_errors():
    return (InvalidOperationError, NotFoundError, ValidationError)


def _scoped_orders(tenant: TenantContext):
    return scope_to_branch(db.session.query(Order), Order, tenant)


# =============================================================================
# Validation
# =============================================================================

def validate_status_pair(status, order_status=None) -> tuple[str, str]:
    """
    Both twin fields must be valid statuses and must agree.

    order_status defaults to status when omitted.
    """
    if order_status is None:
        order_status = status
    for value in (status, order_status):
        if value not in ORDER_STATUSES:
            raise ValidationError("Status must be either 'Paid', 'Pending', or 'Cancelled'")
    if status != order_status:
        raise ValidationError(
            f"status ({status}) and order_status ({order_status}) must match"
        )
    return status, order_status


def normalize_items(items) -> list[OrderItem]:
    if not items:
        raise OrderError("Order must contain at least one item")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    normalized = []
    seen = set()
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        item = OrderItem(
            product_id=coerce_int(raw.get("product_id"), f"items[{index}].product_id"),
            quantity=coerce_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1),
            unit_price_cents=coerce_cents(raw.get("unit_price_cents"), f"items[{index}].unit_price_cents",
                                          allow_zero=True),
        )
        if item.product_id in seen:
            raise ValidationError(f"Product {item.product_id} appears more than once; combine the quantities")
        seen.add(item.product_id)
        normalized.append(item)
    return normalized


def _history_action(new_status: str, new_order_status: str, *, bulk: bool = False) -> str:
    if ORDER_STATUS_CANCELLED in (new_status, new_order_status):
        return ACTION_CANCELLED
    if new_status == ORDER_STATUS_PAID:
        return ACTION_PAID
    return ACTION_BULK_STATUS_UPDATED if bulk else ACTION_STATUS_UPDATED


# =============================================================================
# Creation
# =============================================================================

def create_order(
    tenant: TenantContext,
    *,
    customer: dict,
    payment_method: str | None,
    items,
    due_date=None,
    notes: str | None = None,
) -> tuple[Order, Invoice | None]:
    """
    Place an order: resolve the customer, deduct stock for every line,
    then invoice it and debit the customer's ledger.

    Returns:
        (order, invoice) where invoice is None if invoicing failed

    Raises:
        TenantAccessError without branch context
        OrderError when there are no items or no customer name for a new
        customer
        NotFoundError for a product outside the caller's branch
        InsufficientStockError when a line exceeds stock (nothing persisted)
    """
    branch_id = require_branch(tenant, "create order")
    order_items = normalize_items(items)
    customer = customer or {}

    def _op() -> Order:
        acquire_write_lock()
        customer_row = customer_service.resolve_customer(
            tenant,
            full_name=customer.get("full_name"),
            phone=customer.get("phone"),
            email=customer.get("email"),
            address=customer.get("address"),
        )

        for item in order_items:
            product = db.session.get(Product, item.product_id)
            if product is None or product.branch_id != branch_id:
                raise NotFoundError(f"Product {item.product_id} not found")

        now = utcnow()
        order = Order(
            company_id=tenant.company_id,
            branch_id=branch_id,
            customer_id=customer_row.id,
            created_by_user_id=tenant.user_id,
            date=now,
            total_amount_cents=sum(item.line_total_cents for item in order_items),
            status=ORDER_STATUS_PENDING,
            order_status=ORDER_STATUS_PENDING,
            payment_method=payment_method,
            customer_full_name=customer_row.full_name,
            customer_phone=customer.get("phone") or customer_row.phone,
            customer_email=customer.get("email") or customer_row.email,
            customer_address=customer.get("address") or customer_row.address,
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        for item in order_items:
            order.lines.append(OrderLine(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=item.line_total_cents,
            ))
            inventory_service.deduct_inventory(item.product_id, item.quantity)

        order.history.append(OrderHistory(
            user_id=tenant.user_id,
            previous_status=None,
            new_status=ORDER_STATUS_PENDING,
            previous_order_status=None,
            new_order_status=ORDER_STATUS_PENDING,
            action=ACTION_CREATED,
            notes="Order created",
            changed_at=now,
        ))
        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except _domain_errors():
        db.session.rollback()
        raise

    current_app.logger.info("Order %s created (%s cents)", order.id, order.total_amount_cents)
    invoice = _invoice_new_order(tenant, order, due_date)
    return order, invoice


def _invoice_new_order(tenant: TenantContext, order: Order, due_date) -> Invoice | None:
    from .invoice_service import create_invoice
    from .ledger_service import create_sale_ledger_entry

    try:
        invoice = create_invoice(tenant, order.id, due_date=due_date)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create invoice for order %s", order.id)
        return None

    try:
        create_sale_ledger_entry(order.id, invoice.id, created_by=tenant.actor)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to post ledger sale entry for order %s", order.id)
    return invoice


# =============================================================================
# Status transitions
# =============================================================================

def _returned_so_far(order: Order) -> tuple[dict[int, int], int]:
    """Quantity per product and cents already taken back by the order's returns (any status)."""
    quantities: dict[int, int] = {}
    refunded = 0
    for return_doc in db.session.query(Return).filter(Return.order_id == order.id).all():
        refunded += return_doc.total_return_amount_cents
        if return_doc.return_type == "whole":
            taken = [(line.product_id, line.quantity) for line in order.lines]
        else:
            taken = [(item.product_id, item.return_quantity) for item in return_doc.items]
        for product_id, quantity in taken:
            quantities[product_id] = quantities.get(product_id, 0) + quantity
    return quantities, refunded


def apply_status_transition(
    order: Order,
    new_status: str,
    new_order_status: str,
    tenant: TenantContext,
    *,
    notes: str | None = None,
    bulk: bool = False,
) -> str | None:
    """
    Apply a validated status change inside the caller's transaction.

    Returns the invoice status to mirror after commit, or None when there
    is nothing to mirror.
    """
    previous_status = order.status
    previous_order_status = order.order_status

    if previous_status == ORDER_STATUS_CANCELLED and new_status != ORDER_STATUS_CANCELLED:
        raise OrderError(f"Order #{order.id} is cancelled and cannot be reopened")

    changed = previous_status != new_status
    cancelling = changed and new_status == ORDER_STATUS_CANCELLED
    returned_quantities, refunded_cents = _returned_so_far(order) if cancelling else ({}, 0)

    if cancelling:
        for line in order.lines:
            quantity = line.quantity - returned_quantities.get(line.product_id, 0)
            if quantity <= 0:
                continue
            if not inventory_service.restore_inventory(line.product_id, quantity):
                current_app.logger.warning(
                    "Order %s cancelled: could not restore product %s", order.id, line.product_id
                )

    order.status = new_status
    order.order_status = new_order_status

    if changed:
        note = f"Order status changed from {previous_status} to {new_status}"
    else:
        note = f"Order status unchanged ({new_status})"
    if notes:
        note = f"{note}. {notes}"

    order.history.append(OrderHistory(
        user_id=tenant.user_id,
        previous_status=previous_status,
        new_status=new_status,
        previous_order_status=previous_order_status,
        new_order_status=new_order_status,
        action=_history_action(new_status, new_order_status, bulk=bulk),
        notes=note,
        changed_at=utcnow(),
    ))

    if not changed:
        return None

    if new_status == ORDER_STATUS_PAID:
        accounting_service.create_sale_entry_from_order(order, created_by=tenant.actor)
        return "Paid"

    if new_status == ORDER_STATUS_CANCELLED:
        remaining = order.total_amount_cents - refunded_cents
        if previous_status == ORDER_STATUS_PAID and remaining > 0:
            accounting_service.create_refund_entry_from_order(
                order, created_by=tenant.actor, amount_cents=remaining
            )
        return "Cancelled"

    # Paid -> Pending leaves the invoice and its payments as they are
    return None


def _mirror_invoice_status(tenant: TenantContext, order_id: int, invoice_status: str) -> None:
    from .invoice_service import update_invoice_status_by_order_id

    try:
        update_invoice_status_by_order_id(tenant, order_id, invoice_status)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to update invoice status to %s for order %s", invoice_status, order_id
        )


def update_order_status(
    tenant: TenantContext,
    order_id: int,
    status: str,
    order_status: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Change an order's status.

    Raises:
        ValidationError on an invalid or inconsistent status pair
        NotFoundError if the order is not in the caller's branch
        OrderError when reopening a cancelled order
    """
    require_branch(tenant, "update order status")
    new_status, new_order_status = validate_status_pair(status, order_status)

    def _op() -> tuple[Order, str | None]:
        acquire_write_lock()
        order = lock_for_update(_scoped_orders(tenant).filter(Order.id == order_id)).first()
        if order is None:
            raise NotFoundError(f"Order with ID {order_id} not found")
        invoice_status = apply_status_transition(order, new_status, new_order_status, tenant, notes=notes)
        db.session.commit()
        return order, invoice_status

    try:
        order, invoice_status = run_with_retry(_op)
    except _domain_errors():
        db.session.rollback()
        raise

    if invoice_status:
        _mirror_invoice_status(tenant, order.id, invoice_status)
    return order


def bulk_update_order_status(
    tenant: TenantContext,
    order_ids,
    status: str,
    order_status: str | None = None,
) -> int:
    """
    Apply one status to many orders.

    Orders outside the caller's branch, and cancelled orders asked to
    reopen, are skipped. Returns the number of orders updated.
    """
    require_branch(tenant, "update order status")
    new_status, new_order_status = validate_status_pair(status, order_status)
    if not order_ids or not isinstance(order_ids, list):
        raise ValidationError("order_ids must be a non-empty list")
    ids = [coerce_int(value, "order_ids") for value in order_ids]

    def _op() -> list[tuple[int, str | None]]:
        acquire_write_lock()
        orders = (
            lock_for_update(_scoped_orders(tenant).filter(Order.id.in_(ids)))
            .order_by(Order.id.asc())
            .all()
        )
        applied = []
        for order in orders:
            if order.status == ORDER_STATUS_CANCELLED and new_status != ORDER_STATUS_CANCELLED:
                current_app.logger.warning("Bulk update skipped cancelled order %s", order.id)
                continue
            applied.append((
                order.id,
                apply_status_transition(order, new_status, new_order_status, tenant, bulk=True),
            ))
        db.session.commit()
        return applied

    try:
        applied = run_with_retry(_op)
    except _domain_errors():
        db.session.rollback()
        raise

    for order_id, invoice_status in applied:
        if invoice_status:
            _mirror_invoice_status(tenant, order_id, invoice_status)
    return len(applied)


# =============================================================================
# Queries and deletion
# =============================================================================

def get_order(tenant: TenantContext, order_id: int) -> Order:
    order = _scoped_orders(tenant).filter(Order.id == order_id).first()
    if order is None:
        raise NotFoundError(f"Order with ID {order_id} not found")
    return order


def list_orders(
    tenant: TenantContext,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    start_date=None,
    end_date=None,
) -> list[Order]:
    """Orders of the caller's branch, newest first. Empty without branch."""
    query = _scoped_orders(tenant)
    if status:
        query = query.filter(Order.status == status)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    if start_date:
        query = query.filter(Order.date >= start_date)
    if end_date:
        query = query.filter(Order.date <= end_date)
    return query.order_by(Order.date.desc(), Order.id.desc()).all()


def get_order_history(tenant: TenantContext, order_id: int) -> list[OrderHistory]:
    return list(get_order(tenant, order_id).history)


def delete_order(tenant: TenantContext, order_id: int) -> None:
    """
    Hard-delete an order with its lines and history.

    Stock is put back unless the order was already cancelled. Orders that
    are referenced by invoices, returns or ledger entries cannot be
    deleted; cancel them instead.
    """
    require_branch(tenant, "delete order")

    def _op() -> None:
        acquire_write_lock()
        order = lock_for_update(_scoped_orders(tenant).filter(Order.id == order_id)).first()
        if order is None:
            raise NotFoundError(f"Order with ID {order_id} not found")

        referenced = (
            db.session.query(Invoice.id).filter(Invoice.order_id == order.id).first()
            or db.session.query(Return.id).filter(Return.order_id == order.id).first()
            or db.session.query(CustomerLedgerEntry.id).filter(CustomerLedgerEntry.order_id == order.id).first()
        )
        if referenced:
            raise OrderError(
                f"Order #{order.id} has invoices, returns or ledger entries and cannot be deleted; cancel it instead"
            )

        if order.status != ORDER_STATUS_CANCELLED:
            for line in order.lines:
                inventory_service.restore_inventory(line.product_id, line.quantity)

        db.session.delete(order)
        db.session.commit()

    try:
        run_with_retry(_op)
    except _domain_errors():
        db.session.rollback()
        raise
    current_app.logger.info("Order %s deleted", order_id)
