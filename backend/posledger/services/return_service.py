# Overview: Whole and partial returns against invoices; validation, stock restoration and refund postings.

# backend/posledger/services/return_service.py
"""
Return Orchestrator

DESIGN:
- A return always references an invoice and its order
- Whole returns take back every order line for the full invoice total
- Partial returns list products; each line is priced at the original
  unit price and quantities are capped by what was ordered minus what
  earlier returns already took back
- Stock is restored and refund journal entries are written in the same
  transaction that inserts the return, so the cumulative-quantity check
  and the insert cannot interleave with a concurrent return
- The customer-ledger refund credit and the credit note follow the commit
  as best-effort steps; failures are logged and the return stands

Preconditions are checked in this order for both kinds:
1. invoice exists
2. invoice is within the return window (RETURN_WINDOW_DAYS, default 14)
3. refund method is Cash, Card or Store Credit
4. invoice belongs to the caller's branch
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, Return, ReturnItem
from ..time_utils import utcnow
from ..validation import (
    InvalidOperationError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    coerce_int,
    coerce_text,
)
from . import accounting_service, inventory_service
from .concurrency import acquire_write_lock, lock_for_update, run_with_retry
from .tenant_service import TenantContext, require_branch, scope_to_branch


RETURN_TYPE_WHOLE = "whole"
RETURN_TYPE_PARTIAL = "partial"

RETURN_STATUS_PENDING = "Pending"
RETURN_STATUS_APPROVED = "Approved"
RETURN_STATUS_COMPLETED = "Completed"
RETURN_STATUS_REJECTED = "Rejected"

RETURN_STATUSES = (
    RETURN_STATUS_PENDING,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_COMPLETED,
    RETURN_STATUS_REJECTED,
)

REFUND_METHODS = ("Cash", "Card", "Store Credit")

REASON_MIN_LENGTH = 5
REASON_MAX_LENGTH = 500
NOTES_MAX_LENGTH = 1000


class ReturnError(InvalidOperationError):
    """Raised when return operations fail business rules."""
    pass


@dataclass(frozen=True)
class ReturnItemRequest:
    product_id: int
    return_quantity: int
    return_amount_cents: int


def _domain_errors():
    return (InvalidOperationError, NotFoundError, ValidationError)


def _format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def _tolerance() -> int:
    return int(current_app.config.get("AMOUNT_TOLERANCE_CENTS", 1))


# =============================================================================
# Shared validation
# =============================================================================

def _clean_request_text(reason, notes) -> tuple[str, str | None]:
    reason = coerce_text(reason, "reason", min_length=REASON_MIN_LENGTH,
                         max_length=REASON_MAX_LENGTH, required=True)
    notes = coerce_text(notes, "notes", max_length=NOTES_MAX_LENGTH)
    return reason, notes


def _check_preconditions(tenant: TenantContext, invoice_id: int, order_id: int, refund_method: str) -> Invoice:
    """Lock the invoice and run the checks shared by whole and partial returns."""
    invoice = lock_for_update(
        db.session.query(Invoice).filter(Invoice.id == invoice_id, Invoice.invoice_type == "Standard")
    ).first()
    if invoice is None:
        raise ReturnError(f"Invoice with ID {invoice_id} not found")

    window = int(current_app.config.get("RETURN_WINDOW_DAYS", 14))
    if utcnow() - invoice.invoice_date > timedelta(days=window):
        raise ReturnError(f"Invoice is older than {window} days and cannot be returned")

    if refund_method not in REFUND_METHODS:
        raise ReturnError("Invalid refund method. Must be 'Cash', 'Card', or 'Store Credit'")

    order = invoice.order
    if order is None or order.branch_id != tenant.branch_id:
        raise ReturnError("Invoice does not belong to your branch")

    if order.id != order_id:
        raise ReturnError(f"Order {order_id} does not match invoice #{invoice.invoice_number}")
    if order.status == "Cancelled":
        raise ReturnError("Cannot return items from a cancelled order")

    return invoice


def _has_whole_return(invoice_id: int) -> bool:
    return db.session.query(Return.id).filter_by(
        invoice_id=invoice_id, return_type=RETURN_TYPE_WHOLE
    ).first() is not None


def _previously_returned(invoice_id: int) -> dict[int, int]:
    """Quantity already returned per product across earlier partial returns of an invoice."""
    rows = (
        db.session.query(ReturnItem.product_id, func.coalesce(func.sum(ReturnItem.return_quantity), 0))
        .join(Return, Return.id == ReturnItem.return_id)
        .filter(Return.invoice_id == invoice_id)
        .group_by(ReturnItem.product_id)
        .all()
    )
    return {product_id: int(qty) for product_id, qty in rows}


def _run(op) -> Return:
    try:
        return run_with_retry(op)
    except _domain_errors():
        db.session.rollback()
        raise


def _after_return_created(tenant: TenantContext, return_doc: Return) -> None:
    from .invoice_service import create_credit_note_invoice
    from .ledger_service import create_refund_ledger_entry

    current_app.logger.info(
        "Return %s created (%s, %s cents) for invoice %s",
        return_doc.id, return_doc.return_type, return_doc.total_return_amount_cents, return_doc.invoice_id,
    )

    try:
        create_refund_ledger_entry(return_doc.id, created_by=tenant.actor)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to post ledger refund entry for return %s", return_doc.id)

    try:
        create_credit_note_invoice(tenant, return_doc.id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create credit note for return %s", return_doc.id)


# =============================================================================
# Whole returns
# =============================================================================

def create_whole_return(
    tenant: TenantContext,
    *,
    invoice_id: int,
    order_id: int,
    reason: str,
    refund_method: str,
    total_return_amount_cents: int,
    notes: str | None = None,
) -> Return:
    """
    Return an entire invoice.

    Raises:
        TenantAccessError without branch context
        ValidationError on malformed input (short reason, bad amount)
        ReturnError on any business-rule violation
    """
    branch_id = require_branch(tenant, "create return")
    reason, notes = _clean_request_text(reason, notes)
    amount = coerce_cents(total_return_amount_cents, "total_return_amount_cents")

    def _op() -> Return:
        acquire_write_lock()
        invoice = _check_preconditions(tenant, invoice_id, order_id, refund_method)

        if abs(amount - invoice.total_amount_cents) > _tolerance():
            raise ReturnError("Return amount must equal invoice total for whole returns")
        if _has_whole_return(invoice.id):
            raise ReturnError("Invoice has already been fully returned")
        if _previously_returned(invoice.id):
            raise ReturnError("Invoice already has partial returns; return the remaining items with a partial return")

        now = utcnow()
        return_doc = Return(
            company_id=invoice.company_id,
            branch_id=branch_id,
            return_type=RETURN_TYPE_WHOLE,
            invoice_id=invoice.id,
            order_id=invoice.order_id,
            return_date=now,
            status=RETURN_STATUS_PENDING,
            reason=reason,
            refund_method=refund_method,
            notes=notes,
            total_return_amount_cents=amount,
            created_by_user_id=tenant.user_id,
        )
        db.session.add(return_doc)
        db.session.flush()

        for line in invoice.order.lines:
            inventory_service.restore_inventory(line.product_id, line.quantity)

        accounting_service.create_return_refund_entry(
            company_id=invoice.company_id,
            branch_id=branch_id,
            amount_cents=amount,
            description=f"Whole bill return - Invoice #{invoice.invoice_number} | Return #{return_doc.id}",
            refund_method=refund_method,
            category=accounting_service.CATEGORY_RETURN_WHOLE,
            created_by=tenant.actor,
        )
        db.session.commit()
        return return_doc

    return_doc = _run(_op)
    _after_return_created(tenant, return_doc)
    return return_doc


# =============================================================================
# Partial returns
# =============================================================================

def normalize_return_items(items) -> list[ReturnItemRequest]:
    if not items:
        raise ReturnError("At least one product must be selected for return")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    normalized = []
    seen = set()
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        item = ReturnItemRequest(
            product_id=coerce_int(raw.get("product_id"), f"items[{index}].product_id"),
            return_quantity=coerce_int(raw.get("return_quantity"), f"items[{index}].return_quantity", minimum=1),
            return_amount_cents=coerce_cents(raw.get("return_amount_cents"), f"items[{index}].return_amount_cents"),
        )
        if item.product_id in seen:
            raise ValidationError(f"Product {item.product_id} appears more than once; combine the quantities")
        seen.add(item.product_id)
        normalized.append(item)
    return normalized


def create_partial_return(
    tenant: TenantContext,
    *,
    invoice_id: int,
    order_id: int,
    reason: str,
    refund_method: str,
    items,
    total_return_amount_cents: int,
    notes: str | None = None,
) -> Return:
    """
    Return some products of an invoice.

    Per item: the product must be on the order, ordered quantity minus
    quantity already returned must cover the request, and the amount must
    equal unit price * quantity (within tolerance). The item amounts must
    add up to the declared total (within tolerance).
    """
    branch_id = require_branch(tenant, "create return")
    reason, notes = _clean_request_text(reason, notes)
    requested = normalize_return_items(items)
    declared_total = coerce_cents(total_return_amount_cents, "total_return_amount_cents")

    def _op() -> Return:
        acquire_write_lock()
        invoice = _check_preconditions(tenant, invoice_id, order_id, refund_method)
        if _has_whole_return(invoice.id):
            raise ReturnError("Invoice has already been fully returned")

        tolerance = _tolerance()
        lines = {line.product_id: line for line in invoice.order.lines}
        already_returned = _previously_returned(invoice.id)

        for item in requested:
            line = lines.get(item.product_id)
            if line is None:
                raise ReturnError(f"Product {item.product_id} does not belong to this order")

            name = line.product.name if line.product else f"Product {item.product_id}"
            previous = already_returned.get(item.product_id, 0)
            if item.return_quantity + previous > line.quantity:
                raise ReturnError(
                    f"Cannot return {item.return_quantity} units of {name}. "
                    f"Ordered: {line.quantity}, Previously returned: {previous}, "
                    f"Trying to return: {item.return_quantity}",
                    details={
                        "product_id": item.product_id,
                        "ordered": line.quantity,
                        "previously_returned": previous,
                        "requested": item.return_quantity,
                    },
                )

            expected = line.unit_price_cents * item.return_quantity
            difference = abs(expected - item.return_amount_cents)
            if difference > tolerance:
                raise ReturnError(
                    f"Return amount mismatch for {name}. Expected: {_format_cents(expected)}, "
                    f"Received: {_format_cents(item.return_amount_cents)}, "
                    f"Difference: {_format_cents(difference)}"
                )

        items_total = sum(item.return_amount_cents for item in requested)
        if abs(items_total - declared_total) > tolerance:
            raise ReturnError(
                f"Total return amount ({_format_cents(declared_total)}) does not match "
                f"sum of item amounts ({_format_cents(items_total)})"
            )

        return_doc = Return(
            company_id=invoice.company_id,
            branch_id=branch_id,
            return_type=RETURN_TYPE_PARTIAL,
            invoice_id=invoice.id,
            order_id=invoice.order_id,
            return_date=utcnow(),
            status=RETURN_STATUS_PENDING,
            reason=reason,
            refund_method=refund_method,
            notes=notes,
            total_return_amount_cents=declared_total,
            created_by_user_id=tenant.user_id,
        )
        db.session.add(return_doc)
        db.session.flush()

        for item in requested:
            return_doc.items.append(ReturnItem(
                product_id=item.product_id,
                return_quantity=item.return_quantity,
                return_amount_cents=item.return_amount_cents,
            ))
            inventory_service.restore_inventory(item.product_id, item.return_quantity)

            line = lines[item.product_id]
            name = line.product.name if line.product else f"Product {item.product_id}"
            accounting_service.create_return_refund_entry(
                company_id=invoice.company_id,
                branch_id=branch_id,
                amount_cents=item.return_amount_cents,
                description=f"Partial return - {name} ({item.return_quantity} units) | Return #{return_doc.id}",
                refund_method=refund_method,
                category=accounting_service.CATEGORY_RETURN_PARTIAL,
                created_by=tenant.actor,
            )

        db.session.commit()
        return return_doc

    return_doc = _run(_op)
    _after_return_created(tenant, return_doc)
    return return_doc


# =============================================================================
# Status
# =============================================================================

def update_return_status(tenant: TenantContext, return_id: int, status: str) -> Return:
    """
    Move a return through Pending / Approved / Completed / Rejected.

    Entering Completed issues the credit note when the return has none
    yet (best-effort; the status change stands either way).
    """
    require_branch(tenant, "update return status")
    if status not in RETURN_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(RETURN_STATUSES)}")

    return_doc = get_return(tenant, return_id)
    previous = return_doc.status

    return_doc.status = status
    return_doc.processed_by_user_id = tenant.user_id
    return_doc.processed_at = utcnow()
    db.session.commit()

    if (
        status == RETURN_STATUS_COMPLETED
        and previous != RETURN_STATUS_COMPLETED
        and return_doc.credit_note_invoice_id is None
    ):
        from .invoice_service import create_credit_note_invoice

        try:
            create_credit_note_invoice(tenant, return_doc.id)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to create credit note for completed return %s", return_doc.id)

    return return_doc


# =============================================================================
# Queries
# =============================================================================

def _scoped_returns(tenant: TenantContext):
    return scope_to_branch(db.session.query(Return), Return, tenant)


def get_return(tenant: TenantContext, return_id: int) -> Return:
    return_doc = _scoped_returns(tenant).filter(Return.id == return_id).first()
    if return_doc is None:
        raise NotFoundError(f"Return with ID {return_id} not found")
    return return_doc


def list_returns(
    tenant: TenantContext,
    *,
    status: str | None = None,
    return_type: str | None = None,
    invoice_id: int | None = None,
) -> list[Return]:
    """Returns of the caller's branch, newest first. Empty without branch."""
    query = _scoped_returns(tenant)
    if status:
        query = query.filter(Return.status == status)
    if return_type:
        query = query.filter(Return.return_type == return_type)
    if invoice_id is not None:
        query = query.filter(Return.invoice_id == invoice_id)
    return query.order_by(Return.return_date.desc(), Return.id.desc()).all()


def get_return_summary(tenant: TenantContext) -> dict:
    counts = {s: 0 for s in RETURN_STATUSES}
    by_type = {RETURN_TYPE_WHOLE: 0, RETURN_TYPE_PARTIAL: 0}
    completed_amount = 0

    for return_doc in _scoped_returns(tenant).all():
        counts[return_doc.status] = counts.get(return_doc.status, 0) + 1
        by_type[return_doc.return_type] = by_type.get(return_doc.return_type, 0) + 1
        if return_doc.status == RETURN_STATUS_COMPLETED:
            completed_amount += return_doc.total_return_amount_cents

    return {
        "total_returns": sum(counts.values()),
        "pending_returns": counts[RETURN_STATUS_PENDING],
        "approved_returns": counts[RETURN_STATUS_APPROVED],
        "completed_returns": counts[RETURN_STATUS_COMPLETED],
        "rejected_returns": counts[RETURN_STATUS_REJECTED],
        "whole_returns": by_type[RETURN_TYPE_WHOLE],
        "partial_returns": by_type[RETURN_TYPE_PARTIAL],
        "total_completed_amount_cents": completed_amount,
    }
