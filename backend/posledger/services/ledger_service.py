# Overview: Customer ledger with running balances, statements, aging and replay audit.

"""
Customer Ledger

WHY: A customer's receivable position has to be explainable entry by
entry. Each posting stores the running balance it produced, and the whole
history can be replayed to prove the stored balances are right.

INVARIANTS:
- entries are append-only (no updates, no deletes)
- balance = previous balance + debit - credit, previous being the last
  entry in (transaction_date, id) order
- the read-last-balance / insert pair is serialized per customer: the
  customer row is locked FOR UPDATE (SQLite: BEGIN IMMEDIATE) before the
  previous balance is read
- a posting dated before the customer's latest entry is recorded at the
  latest entry's date, so posting order and replay order never diverge
- sale postings are unique per (order, invoice); refund postings are
  unique per return. Payment postings are not deduplicated.

Posting functions own their transaction and commit.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, CustomerLedgerEntry, Invoice, Order, Return
from ..time_utils import to_utc_z, utcnow
from ..validation import NotFoundError, ValidationError
from .concurrency import acquire_write_lock, lock_for_update, run_with_retry
from .tenant_service import TenantContext, require_branch, scope_to_branch, scope_to_company


TRANSACTION_SALE = "Sale"
TRANSACTION_PAYMENT = "Payment"
TRANSACTION_REFUND = "Refund"
TRANSACTION_CREDIT = "Credit"
TRANSACTION_DEBIT = "Debit"
TRANSACTION_ADJUSTMENT = "Adjustment"

TRANSACTION_TYPES = (
    TRANSACTION_SALE,
    TRANSACTION_PAYMENT,
    TRANSACTION_REFUND,
    TRANSACTION_CREDIT,
    TRANSACTION_DEBIT,
    TRANSACTION_ADJUSTMENT,
)

AGING_BUCKETS = (
    ("days_0_30_cents", 0, 30),
    ("days_31_60_cents", 31, 60),
    ("days_61_90_cents", 61, 90),
    ("days_over_90_cents", 91, None),
)


# =============================================================================
# Posting
# =============================================================================

def _last_entry(customer_id: int, before: datetime | None = None) -> CustomerLedgerEntry | None:
    query = db.session.query(CustomerLedgerEntry).filter(CustomerLedgerEntry.customer_id == customer_id)
    if before is not None:
        query = query.filter(CustomerLedgerEntry.transaction_date < before)
    return query.order_by(
        CustomerLedgerEntry.transaction_date.desc(),
        CustomerLedgerEntry.id.desc(),
    ).first()


def _lock_customer(customer_id: int) -> Customer:
    acquire_write_lock()
    customer = lock_for_update(
        db.session.query(Customer).filter(Customer.id == customer_id)
    ).first()
    if customer is None:
        raise NotFoundError(f"Customer with ID {customer_id} not found")
    return customer


def _append_entry(
    customer: Customer,
    *,
    transaction_type: str,
    description: str,
    debit_cents: int = 0,
    credit_cents: int = 0,
    transaction_date: datetime | None = None,
    invoice_id: int | None = None,
    order_id: int | None = None,
    return_id: int | None = None,
    payment_method: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
    company_id: int | None = None,
    branch_id: int | None = None,
) -> CustomerLedgerEntry:
    """Insert one entry for an already-locked customer. Flushes only."""
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Invalid transaction type. Must be one of: {', '.join(TRANSACTION_TYPES)}")
    for label, value in (("debit", debit_cents), ("credit", credit_cents)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{label} amount must be a non-negative integer")
    if (debit_cents > 0) == (credit_cents > 0):
        raise ValidationError("Exactly one of debit or credit must be non-zero")

    last = _last_entry(customer.id)
    previous_balance = last.balance_cents if last else 0

    when = transaction_date or utcnow()
    if last is not None and when < last.transaction_date:
        when = last.transaction_date

    entry = CustomerLedgerEntry(
        customer_id=customer.id,
        company_id=company_id if company_id is not None else customer.company_id,
        branch_id=branch_id,
        transaction_date=when,
        transaction_type=transaction_type,
        description=description,
        invoice_id=invoice_id,
        order_id=order_id,
        return_id=return_id,
        debit_cents=debit_cents,
        credit_cents=credit_cents,
        balance_cents=previous_balance + debit_cents - credit_cents,
        payment_method=payment_method,
        reference_number=reference_number,
        notes=notes,
        created_by=created_by,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def create_ledger_entry(
    customer_id: int,
    *,
    transaction_type: str,
    description: str,
    debit_cents: int = 0,
    credit_cents: int = 0,
    transaction_date: datetime | None = None,
    invoice_id: int | None = None,
    order_id: int | None = None,
    return_id: int | None = None,
    payment_method: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
    company_id: int | None = None,
    branch_id: int | None = None,
) -> CustomerLedgerEntry:
    """
    Post one entry and commit.

    Raises:
        NotFoundError if the customer does not exist
        ValidationError on unknown type or invalid amounts
    """
    def _op() -> CustomerLedgerEntry:
        customer = _lock_customer(customer_id)
        entry = _append_entry(
            customer,
            transaction_type=transaction_type,
            description=description,
            debit_cents=debit_cents,
            credit_cents=credit_cents,
            transaction_date=transaction_date,
            invoice_id=invoice_id,
            order_id=order_id,
            return_id=return_id,
            payment_method=payment_method,
            reference_number=reference_number,
            notes=notes,
            created_by=created_by,
            company_id=company_id,
            branch_id=branch_id,
        )
        db.session.commit()
        return entry

    try:
        return run_with_retry(_op)
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise


def post_manual_entry(tenant: TenantContext, customer_id: int, **fields) -> CustomerLedgerEntry:
    """Manual posting from the API: branch required, customer in the caller's company."""
    branch_id = require_branch(tenant, "create ledger entry")
    _visible_customer(tenant, customer_id)
    fields.setdefault("created_by", tenant.actor)
    return create_ledger_entry(customer_id, company_id=tenant.company_id, branch_id=branch_id, **fields)


def create_sale_ledger_entry(order_id: int, invoice_id: int, created_by: str | None = None) -> CustomerLedgerEntry | None:
    """
    Debit the order total to the customer.

    Returns None when a sale entry for (order, invoice) already exists.
    """
    def _op() -> CustomerLedgerEntry | None:
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order with ID {order_id} not found")
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice with ID {invoice_id} not found")

        customer = _lock_customer(order.customer_id)
        existing = (
            db.session.query(CustomerLedgerEntry.id)
            .filter_by(transaction_type=TRANSACTION_SALE, order_id=order_id, invoice_id=invoice_id)
            .first()
        )
        if existing:
            db.session.rollback()
            return None

        products = ", ".join(line.product.name for line in order.lines if line.product is not None)
        entry = _append_entry(
            customer,
            transaction_type=TRANSACTION_SALE,
            description=f"Invoice #{invoice.invoice_number} - Order #{order.id} - {products or 'no items'}",
            debit_cents=order.total_amount_cents,
            transaction_date=order.date,
            invoice_id=invoice.id,
            order_id=order.id,
            payment_method=order.payment_method,
            reference_number=invoice.invoice_number,
            created_by=created_by,
            company_id=order.company_id,
            branch_id=order.branch_id,
        )
        db.session.commit()
        return entry

    return _idempotent(_op, "sale", order_id=order_id, invoice_id=invoice_id)


def create_payment_ledger_entry(
    customer_id: int,
    amount_cents: int,
    payment_method: str,
    *,
    reference_number: str | None = None,
    invoice_id: int | None = None,
    created_by: str | None = None,
    branch_id: int | None = None,
) -> CustomerLedgerEntry:
    """Credit a payment to the customer. Not deduplicated."""
    description = "Payment received"
    if invoice_id is not None:
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is not None:
            description = f"Payment for Invoice #{invoice.invoice_number}"
            branch_id = branch_id if branch_id is not None else invoice.branch_id

    return create_ledger_entry(
        customer_id,
        transaction_type=TRANSACTION_PAYMENT,
        description=description,
        credit_cents=amount_cents,
        invoice_id=invoice_id,
        payment_method=payment_method,
        reference_number=reference_number,
        created_by=created_by,
        branch_id=branch_id,
    )


def create_refund_ledger_entry(return_id: int, created_by: str | None = None) -> CustomerLedgerEntry | None:
    """
    Credit a return's total to the customer.

    Returns None when a refund entry for the return already exists.
    """
    def _op() -> CustomerLedgerEntry | None:
        return_doc = db.session.get(Return, return_id)
        if return_doc is None:
            raise NotFoundError(f"Return with ID {return_id} not found")
        order = return_doc.order

        customer = _lock_customer(order.customer_id)
        existing = (
            db.session.query(CustomerLedgerEntry.id)
            .filter_by(transaction_type=TRANSACTION_REFUND, return_id=return_id)
            .first()
        )
        if existing:
            db.session.rollback()
            return None

        entry = _append_entry(
            customer,
            transaction_type=TRANSACTION_REFUND,
            description=f"Refund for Return #{return_doc.id} - {return_doc.return_type} return - {return_doc.reason}",
            credit_cents=return_doc.total_return_amount_cents,
            invoice_id=return_doc.invoice_id,
            order_id=return_doc.order_id,
            return_id=return_doc.id,
            payment_method=return_doc.refund_method,
            reference_number=f"RET-{return_doc.id}",
            created_by=created_by,
            company_id=return_doc.company_id,
            branch_id=return_doc.branch_id,
        )
        db.session.commit()
        return entry

    return _idempotent(_op, "refund", return_id=return_id)


def _idempotent(op, kind: str, **keys):
    """Run a deduplicated posting; a unique-index race means it was already posted."""
    try:
        return run_with_retry(op)
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info("Ledger %s entry already posted for %s", kind, keys)
        return None
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise


# =============================================================================
# Balances and statements
# =============================================================================

def _visible_customer(tenant: TenantContext | None, customer_id: int) -> Customer:
    query = db.session.query(Customer).filter(Customer.id == customer_id)
    if tenant is not None:
        query = scope_to_company(query, Customer, tenant)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"Customer with ID {customer_id} not found")
    return customer


def get_customer_balance(customer_id: int) -> int:
    last = _last_entry(customer_id)
    return last.balance_cents if last else 0


def get_customer_ledger(
    tenant: TenantContext,
    customer_id: int,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[CustomerLedgerEntry]:
    """Entries in replay order. Empty without branch context."""
    if not tenant.has_branch:
        return []
    _visible_customer(tenant, customer_id)

    query = db.session.query(CustomerLedgerEntry).filter(CustomerLedgerEntry.customer_id == customer_id)
    if start_date:
        query = query.filter(CustomerLedgerEntry.transaction_date >= start_date)
    if end_date:
        query = query.filter(CustomerLedgerEntry.transaction_date <= end_date)
    return query.order_by(CustomerLedgerEntry.transaction_date.asc(), CustomerLedgerEntry.id.asc()).all()


def get_customer_statement(
    tenant: TenantContext,
    customer_id: int,
    start_date: datetime,
    end_date: datetime,
) -> dict:
    """
    Statement for [start_date, end_date].

    opening balance: last entry strictly before start_date (or 0)
    closing balance: last entry in range (or the opening balance)
    """
    if start_date > end_date:
        raise ValidationError("start_date must be before end_date")
    customer = _visible_customer(tenant, customer_id)

    opening = _last_entry(customer_id, before=start_date)
    opening_balance = opening.balance_cents if opening else 0

    entries = get_customer_ledger(tenant, customer_id, start_date, end_date)
    closing_balance = entries[-1].balance_cents if entries else opening_balance

    return {
        "customer_id": customer.id,
        "customer_name": customer.full_name,
        "customer_phone": customer.phone,
        "customer_email": customer.email,
        "start_date": to_utc_z(start_date),
        "end_date": to_utc_z(end_date),
        "opening_balance_cents": opening_balance,
        "closing_balance_cents": closing_balance,
        "total_debits_cents": sum(e.debit_cents for e in entries),
        "total_credits_cents": sum(e.credit_cents for e in entries),
        "entries": [e.to_dict() for e in entries],
    }


def get_ledger_summary(tenant: TenantContext, customer_id: int) -> dict:
    customer = _visible_customer(tenant, customer_id)

    rows = (
        db.session.query(
            CustomerLedgerEntry.transaction_type,
            func.coalesce(func.sum(CustomerLedgerEntry.debit_cents), 0),
            func.coalesce(func.sum(CustomerLedgerEntry.credit_cents), 0),
            func.count(CustomerLedgerEntry.id),
            func.min(CustomerLedgerEntry.transaction_date),
            func.max(CustomerLedgerEntry.transaction_date),
        )
        .filter(CustomerLedgerEntry.customer_id == customer_id)
        .group_by(CustomerLedgerEntry.transaction_type)
        .all()
    )

    debits: dict[str, int] = {}
    credits: dict[str, int] = {}
    count = 0
    first_date = last_date = None
    for transaction_type, debit, credit, n, first, last in rows:
        debits[transaction_type] = int(debit or 0)
        credits[transaction_type] = int(credit or 0)
        count += n
        if first is not None and (first_date is None or first < first_date):
            first_date = first
        if last is not None and (last_date is None or last > last_date):
            last_date = last

    return {
        "customer_id": customer.id,
        "customer_name": customer.full_name,
        "current_balance_cents": get_customer_balance(customer.id),
        "total_sales_cents": debits.get(TRANSACTION_SALE, 0),
        "total_payments_cents": credits.get(TRANSACTION_PAYMENT, 0),
        "total_refunds_cents": credits.get(TRANSACTION_REFUND, 0),
        "total_transactions": count,
        "first_transaction_date": to_utc_z(first_date),
        "last_transaction_date": to_utc_z(last_date),
    }


def get_customers_with_outstanding_balance(tenant: TenantContext) -> list[dict]:
    """Customers of the caller's company whose current balance is positive."""
    if not tenant.has_branch:
        return []

    customers = (
        scope_to_company(db.session.query(Customer), Customer, tenant)
        .filter(Customer.ledger_entries.any())
        .order_by(Customer.full_name.asc())
        .all()
    )
    results = []
    for customer in customers:
        balance = get_customer_balance(customer.id)
        if balance > 0:
            results.append({
                "customer_id": customer.id,
                "customer_name": customer.full_name,
                "customer_phone": customer.phone,
                "balance_cents": balance,
            })
    results.sort(key=lambda r: r["balance_cents"], reverse=True)
    return results


# =============================================================================
# Aging
# =============================================================================

def _empty_aging(customer: Customer, as_of: datetime) -> dict:
    data = {
        "customer_id": customer.id,
        "customer_name": customer.full_name,
        "as_of": to_utc_z(as_of),
        "total_outstanding_cents": 0,
    }
    for key, _low, _high in AGING_BUCKETS:
        data[key] = 0
    return data


def _bucket_for(days_overdue: int) -> str:
    for key, low, high in AGING_BUCKETS:
        if days_overdue >= low and (high is None or days_overdue <= high):
            return key
    return AGING_BUCKETS[0][0]


def _overdue_invoices_query(as_of: datetime):
    return (
        db.session.query(Invoice, Order)
        .join(Order, Order.id == Invoice.order_id)
        .filter(
            Invoice.invoice_type == "Standard",
            Invoice.status != "Cancelled",
            Invoice.balance_cents > 0,
            Invoice.due_date <= as_of,
        )
    )


def get_customer_aging(tenant: TenantContext, customer_id: int, as_of: datetime | None = None) -> dict:
    """
    Bucket the customer's overdue invoice balances by days past due.

    Only standard, non-cancelled invoices with balance > 0 and
    due_date <= as_of are counted.
    """
    as_of = as_of or utcnow()
    customer = _visible_customer(tenant, customer_id)
    aging = _empty_aging(customer, as_of)

    rows = _overdue_invoices_query(as_of).filter(Order.customer_id == customer_id).all()
    for invoice, _order in rows:
        aging[_bucket_for((as_of - invoice.due_date).days)] += invoice.balance_cents
        aging["total_outstanding_cents"] += invoice.balance_cents
    return aging


def get_aging_report(tenant: TenantContext, as_of: datetime | None = None) -> list[dict]:
    """Aging per customer over the caller's branch invoices. Empty without branch."""
    as_of = as_of or utcnow()
    query = scope_to_branch(_overdue_invoices_query(as_of), Invoice, tenant)

    report: "OrderedDict[int, dict]" = OrderedDict()
    for invoice, order in query.order_by(Order.customer_id.asc(), Invoice.id.asc()).all():
        aging = report.get(order.customer_id)
        if aging is None:
            aging = _empty_aging(order.customer, as_of)
            report[order.customer_id] = aging
        aging[_bucket_for((as_of - invoice.due_date).days)] += invoice.balance_cents
        aging["total_outstanding_cents"] += invoice.balance_cents

    return sorted(report.values(), key=lambda a: a["total_outstanding_cents"], reverse=True)


# =============================================================================
# Audit
# =============================================================================

def verify_customer_ledger(customer_id: int) -> list[dict]:
    """
    Replay a customer's entries and report stored balances that differ
    from previous + debit - credit. An empty list means the ledger is
    consistent.
    """
    entries = (
        db.session.query(CustomerLedgerEntry)
        .filter(CustomerLedgerEntry.customer_id == customer_id)
        .order_by(CustomerLedgerEntry.transaction_date.asc(), CustomerLedgerEntry.id.asc())
        .all()
    )
    mismatches = []
    running = 0
    for entry in entries:
        running = running + entry.debit_cents - entry.credit_cents
        if entry.balance_cents != running:
            mismatches.append({
                "entry_id": entry.id,
                "stored_balance_cents": entry.balance_cents,
                "expected_balance_cents": running,
            })
    return mismatches
