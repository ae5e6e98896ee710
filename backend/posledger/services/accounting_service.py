# Overview: Branch-scoped accounting journal; order/return/payment postings and financial summaries.

"""
Accounting Journal

DESIGN:
- Entries are append-only and scoped to (company, branch)
- Order-derived postings are idempotent: each carries a stable token in
  its description ("Order #12", "Refund for Order #12", "Payment #7") and
  is skipped when an entry of the same type with that token already exists
  in the branch
- Posting helpers add to the caller's transaction; create_accounting_entry
  (the manual entry point) commits
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, or_

from ..extensions import db
from ..models import AccountingEntry, Invoice, InvoicePayment, Order
from ..time_utils import utcnow
from ..validation import ValidationError
from .tenant_service import TenantContext, require_branch, scope_to_branch


ENTRY_TYPE_INCOME = "Income"
ENTRY_TYPE_EXPENSE = "Expense"
ENTRY_TYPE_SALE = "Sale"
ENTRY_TYPE_PURCHASE = "Purchase"
ENTRY_TYPE_PAYMENT = "Payment"
ENTRY_TYPE_REFUND = "Refund"

ENTRY_TYPES = (
    ENTRY_TYPE_INCOME,
    ENTRY_TYPE_EXPENSE,
    ENTRY_TYPE_SALE,
    ENTRY_TYPE_PURCHASE,
    ENTRY_TYPE_PAYMENT,
    ENTRY_TYPE_REFUND,
)

CATEGORY_SALES = "Sales"
CATEGORY_SALES_REFUND = "Sales Refund"
CATEGORY_INVOICE_PAYMENT = "Invoice Payment"
CATEGORY_RETURN_WHOLE = "Sales Return - Whole Bill"
CATEGORY_RETURN_PARTIAL = "Sales Return - Partial"

MAX_PAGE_SIZE = 200


# =============================================================================
# Posting
# =============================================================================

def _add_entry(
    *,
    company_id: int | None,
    branch_id: int | None,
    entry_type: str,
    amount_cents: int,
    description: str,
    created_by: str | None,
    payment_method: str | None = None,
    category: str | None = None,
    entry_date: datetime | None = None,
) -> AccountingEntry:
    entry = AccountingEntry(
        company_id=company_id,
        branch_id=branch_id,
        entry_type=entry_type,
        amount_cents=amount_cents,
        description=description,
        payment_method=payment_method,
        category=category,
        entry_date=entry_date or utcnow(),
        created_by=created_by,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def create_accounting_entry(
    tenant: TenantContext,
    *,
    entry_type: str,
    amount_cents: int,
    description: str,
    created_by: str | None = None,
    payment_method: str | None = None,
    category: str | None = None,
    entry_date: datetime | None = None,
) -> AccountingEntry:
    """
    Record a manual journal entry in the caller's branch.

    Raises:
        TenantAccessError without branch context
        ValidationError on unknown type, non-positive amount, short
        description or a future entry date
    """
    branch_id = require_branch(tenant, "create accounting entry")

    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Invalid entry type. Must be one of: {', '.join(ENTRY_TYPES)}")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Amount must be greater than zero")
    description = (description or "").strip()
    if len(description) < 3:
        raise ValidationError("Description must be at least 3 characters")
    if entry_date is not None and entry_date > utcnow():
        raise ValidationError("Entry date cannot be in the future")

    entry = _add_entry(
        company_id=tenant.company_id,
        branch_id=branch_id,
        entry_type=entry_type,
        amount_cents=amount_cents,
        description=description,
        created_by=created_by or tenant.actor,
        payment_method=payment_method,
        category=category,
        entry_date=entry_date,
    )
    db.session.commit()
    return entry


def _find_by_token(branch_id: int | None, entry_type: str, token: str) -> AccountingEntry | None:
    """Existing entry whose description is `token` or starts with `token `."""
    return (
        db.session.query(AccountingEntry)
        .filter(
            AccountingEntry.branch_id == branch_id,
            AccountingEntry.entry_type == entry_type,
            or_(
                AccountingEntry.description == token,
                AccountingEntry.description.like(f"{token} %"),
            ),
        )
        .first()
    )


def _product_names(order: Order) -> str:
    names = [line.product.name for line in order.lines if line.product is not None]
    return ", ".join(names) or "no items"


def create_sale_entry_from_order(order: Order, created_by: str | None = None) -> AccountingEntry | None:
    """
    Post the order total as a Sale. Returns None when already posted.
    """
    token = f"Order #{order.id}"
    if _find_by_token(order.branch_id, ENTRY_TYPE_SALE, token):
        return None

    return _add_entry(
        company_id=order.company_id,
        branch_id=order.branch_id,
        entry_type=ENTRY_TYPE_SALE,
        amount_cents=order.total_amount_cents,
        description=f"{token} - {order.customer_full_name or 'Customer'} - {_product_names(order)}",
        created_by=created_by,
        payment_method=order.payment_method,
        category=CATEGORY_SALES,
    )


def create_refund_entry_from_order(order: Order, created_by: str | None = None,
                                   amount_cents: int | None = None) -> AccountingEntry | None:
    """
    Post a Refund for a cancelled paid order. Returns None when already
    posted.

    amount_cents defaults to the order total; callers pass less when
    returns have already refunded part of the order.
    """
    token = f"Refund for Order #{order.id}"
    if _find_by_token(order.branch_id, ENTRY_TYPE_REFUND, token):
        return None

    return _add_entry(
        company_id=order.company_id,
        branch_id=order.branch_id,
        entry_type=ENTRY_TYPE_REFUND,
        amount_cents=order.total_amount_cents if amount_cents is None else amount_cents,
        description=f"{token} - {_product_names(order)}",
        created_by=created_by,
        payment_method=order.payment_method,
        category=CATEGORY_SALES_REFUND,
    )


def create_payment_entry(invoice: Invoice, payment: InvoicePayment,
                         created_by: str | None = None) -> AccountingEntry | None:
    """Post an invoice payment. Returns None when already posted."""
    token = f"Payment #{payment.id}"
    if _find_by_token(invoice.branch_id, ENTRY_TYPE_PAYMENT, token):
        return None

    return _add_entry(
        company_id=invoice.company_id,
        branch_id=invoice.branch_id,
        entry_type=ENTRY_TYPE_PAYMENT,
        amount_cents=payment.amount_cents,
        description=f"{token} - Invoice #{invoice.invoice_number}",
        created_by=created_by,
        payment_method=payment.payment_method,
        category=CATEGORY_INVOICE_PAYMENT,
        entry_date=payment.payment_date,
    )


def create_return_refund_entry(
    *,
    company_id: int | None,
    branch_id: int | None,
    amount_cents: int,
    description: str,
    refund_method: str,
    category: str,
    created_by: str | None = None,
) -> AccountingEntry:
    """Refund posting for a return; the return row itself guards against repeats."""
    return _add_entry(
        company_id=company_id,
        branch_id=branch_id,
        entry_type=ENTRY_TYPE_REFUND,
        amount_cents=amount_cents,
        description=description,
        created_by=created_by,
        payment_method=refund_method,
        category=category,
    )


# =============================================================================
# Queries
# =============================================================================

def list_accounting_entries(
    tenant: TenantContext,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    entry_type: str | None = None,
    payment_method: str | None = None,
    category: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[AccountingEntry], dict]:
    """
    Paginated journal entries of the caller's branch, newest first.

    Returns (entries, pagination) where pagination has page, limit,
    total and pages.
    """
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    query = scope_to_branch(db.session.query(AccountingEntry), AccountingEntry, tenant)
    if start_date:
        query = query.filter(AccountingEntry.entry_date >= start_date)
    if end_date:
        query = query.filter(AccountingEntry.entry_date <= end_date)
    if entry_type:
        query = query.filter(AccountingEntry.entry_type == entry_type)
    if payment_method:
        query = query.filter(AccountingEntry.payment_method == payment_method)
    if category:
        query = query.filter(AccountingEntry.category == category)

    total = query.count()
    entries = (
        query.order_by(AccountingEntry.entry_date.desc(), AccountingEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    pages = (total + limit - 1) // limit if total else 0
    return entries, {"page": page, "limit": limit, "total": total, "pages": pages}


def _period_label(start_date: datetime | None, end_date: datetime | None) -> str:
    if start_date and end_date:
        return f"{start_date:%Y-%m-%d} to {end_date:%Y-%m-%d}"
    if start_date:
        return f"From {start_date:%Y-%m-%d}"
    if end_date:
        return f"Until {end_date:%Y-%m-%d}"
    return "All time"


def get_financial_summary(
    tenant: TenantContext,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict:
    """
    Totals per entry type for the caller's branch.

    total_income counts Income and Sale entries; net_profit is
    income - expenses - refunds. Purchases and payments are reported but
    do not enter net_profit.
    """
    if end_date is None and start_date is not None:
        end_date = utcnow()
    if start_date is None and end_date is not None:
        start_date = end_date - timedelta(days=30)

    query = scope_to_branch(
        db.session.query(AccountingEntry.entry_type, func.coalesce(func.sum(AccountingEntry.amount_cents), 0)),
        AccountingEntry,
        tenant,
    )
    if start_date:
        query = query.filter(AccountingEntry.entry_date >= start_date)
    if end_date:
        query = query.filter(AccountingEntry.entry_date <= end_date)

    totals = {entry_type: 0 for entry_type in ENTRY_TYPES}
    for entry_type, amount in query.group_by(AccountingEntry.entry_type).all():
        totals[entry_type] = int(amount or 0)

    total_income = totals[ENTRY_TYPE_INCOME] + totals[ENTRY_TYPE_SALE]
    total_expenses = totals[ENTRY_TYPE_EXPENSE]
    total_refunds = totals[ENTRY_TYPE_REFUND]

    return {
        "total_income_cents": total_income,
        "total_sales_cents": totals[ENTRY_TYPE_SALE],
        "total_expenses_cents": total_expenses,
        "total_purchases_cents": totals[ENTRY_TYPE_PURCHASE],
        "total_payments_cents": totals[ENTRY_TYPE_PAYMENT],
        "total_refunds_cents": total_refunds,
        "net_profit_cents": total_income - total_expenses - total_refunds,
        "period": _period_label(start_date, end_date),
    }
