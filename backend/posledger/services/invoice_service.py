# Overview: Invoice lifecycle: creation per order, payments, credit notes and status sync.

"""
Invoice Manager

INVARIANTS:
- one Standard invoice per order; create_invoice returns the existing one
- balance_cents == total_amount_cents - sum(payments), recomputed on every
  payment and never edited on its own
- status is Paid exactly when balance reaches zero through payments;
  otherwise a paid-into invoice is PartiallyPaid
- overpayment, non-positive amounts, and payments against cancelled,
  fully paid or credit-note invoices are rejected
- credit notes (CN-YYYYMM-NNNN) carry negative totals, status Issued, and
  at most one exists per return

Numbers come from document_service (atomic per-prefix counter backed by a
unique invoice_number constraint).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, InvoicePayment, Order, Return
from ..time_utils import utcnow
from ..validation import InvalidOperationError, NotFoundError, ValidationError
from . import accounting_service
from .concurrency import acquire_write_lock, lock_for_update, run_with_retry
from .document_service import CREDIT_NOTE_PREFIX, INVOICE_PREFIX, next_document_number, period_prefix
from .tenant_service import TenantContext, require_branch, scope_to_branch


INVOICE_TYPE_STANDARD = "Standard"
INVOICE_TYPE_CREDIT_NOTE = "CreditNote"

INVOICE_STATUS_PENDING = "Pending"
INVOICE_STATUS_PARTIALLY_PAID = "PartiallyPaid"
INVOICE_STATUS_PAID = "Paid"
INVOICE_STATUS_CANCELLED = "Cancelled"
INVOICE_STATUS_OVERDUE = "Overdue"
INVOICE_STATUS_ISSUED = "Issued"  # credit notes

INVOICE_STATUSES = (
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_PARTIALLY_PAID,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_OVERDUE,
)


class InvoiceError(InvalidOperationError):
    """Raised when an invoice operation violates a business rule."""
    pass


def _domain_errors():
    return (InvalidOperationError, NotFoundError, ValidationError)


def _scoped_invoices(tenant: TenantContext):
    return scope_to_branch(db.session.query(Invoice), Invoice, tenant)


def _standard_invoice_for_order(order_id: int) -> Invoice | None:
    return (
        db.session.query(Invoice)
        .filter_by(order_id=order_id, invoice_type=INVOICE_TYPE_STANDARD)
        .first()
    )


# =============================================================================
# Creation
# =============================================================================

def create_invoice(tenant: TenantContext, order_id: int, due_date: datetime | None = None,
                   notes: str | None = None) -> Invoice:
    """
    Invoice an order (status Pending, balance = total).

    Idempotent: an order that already has an invoice gets it back unchanged.

    Raises:
        TenantAccessError without branch context
        NotFoundError if the order is not in the caller's branch
    """
    branch_id = require_branch(tenant, "create invoice")

    def _op() -> Invoice:
        order = (
            db.session.query(Order)
            .filter(Order.id == order_id, Order.branch_id == branch_id)
            .first()
        )
        if order is None:
            raise NotFoundError(f"Order with ID {order_id} not found")

        existing = _standard_invoice_for_order(order.id)
        if existing is not None:
            return existing

        now = utcnow()
        invoice = Invoice(
            company_id=order.company_id,
            branch_id=order.branch_id,
            order_id=order.id,
            invoice_number=next_document_number(prefix=period_prefix(INVOICE_PREFIX, now)),
            invoice_type=INVOICE_TYPE_STANDARD,
            invoice_date=now,
            due_date=due_date or now + timedelta(days=current_app.config.get("INVOICE_DUE_DAYS", 30)),
            status=INVOICE_STATUS_PENDING,
            total_amount_cents=order.total_amount_cents,
            amount_paid_cents=0,
            balance_cents=order.total_amount_cents,
            notes=notes,
        )
        db.session.add(invoice)
        db.session.commit()
        current_app.logger.info("Invoice %s created for order %s", invoice.invoice_number, order.id)
        return invoice

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # Another request invoiced the order first
        db.session.rollback()
        existing = _standard_invoice_for_order(order_id)
        if existing is None:
            raise
        return existing
    except _domain_errors():
        db.session.rollback()
        raise


def create_credit_note_invoice(tenant: TenantContext, return_id: int) -> Invoice:
    """
    Issue the credit note for a return.

    Raises:
        NotFoundError if the return (in the caller's branch) or its
        original invoice is missing
        InvoiceError if the return already has a credit note
    """
    branch_id = require_branch(tenant, "create credit note")

    def _op() -> Invoice:
        acquire_write_lock()
        return_doc = lock_for_update(
            db.session.query(Return).filter(Return.id == return_id, Return.branch_id == branch_id)
        ).first()
        if return_doc is None:
            raise NotFoundError(f"Return with ID {return_id} not found")
        original = db.session.get(Invoice, return_doc.invoice_id)
        if original is None:
            raise NotFoundError(f"Original invoice with ID {return_doc.invoice_id} not found")
        if return_doc.credit_note_invoice_id is not None:
            raise InvoiceError("Credit note already exists for this return")

        now = utcnow()
        amount = return_doc.total_return_amount_cents
        credit_note = Invoice(
            company_id=return_doc.company_id,
            branch_id=return_doc.branch_id,
            order_id=return_doc.order_id,
            invoice_number=next_document_number(prefix=period_prefix(CREDIT_NOTE_PREFIX, now)),
            invoice_type=INVOICE_TYPE_CREDIT_NOTE,
            invoice_date=now,
            due_date=now,
            status=INVOICE_STATUS_ISSUED,
            total_amount_cents=-amount,
            amount_paid_cents=0,
            balance_cents=-amount,
            original_invoice_id=original.id,
            return_id=return_doc.id,
            notes=f"Credit note for Return #{return_doc.id} against Invoice #{original.invoice_number}",
        )
        db.session.add(credit_note)
        db.session.flush()
        return_doc.credit_note_invoice_id = credit_note.id
        db.session.commit()
        current_app.logger.info(
            "Credit note %s issued for return %s", credit_note.invoice_number, return_doc.id
        )
        return credit_note

    try:
        return run_with_retry(_op)
    except _domain_errors():
        db.session.rollback()
        raise


# =============================================================================
# Payments
# =============================================================================

def add_payment(
    tenant: TenantContext,
    invoice_id: int,
    amount_cents: int,
    payment_method: str,
    *,
    received_by: str | None = None,
    transaction_reference: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> tuple[Invoice, InvoicePayment]:
    """
    Apply a payment to an invoice.

    In one transaction: appends the InvoicePayment, recomputes
    amount_paid/balance/status, posts a Payment journal entry and, when
    the invoice becomes Paid, moves the order to Paid. The customer-ledger
    credit is posted after commit (best-effort).

    Raises:
        TenantAccessError without branch context
        NotFoundError if the invoice is not in the caller's branch
        InvoiceError on non-positive amount, overpayment, or an invoice
        that cannot take payments
    """
    require_branch(tenant, "add payment")
    if not payment_method or not str(payment_method).strip():
        raise ValidationError("Payment method is required")

    def _op() -> tuple[Invoice, InvoicePayment]:
        acquire_write_lock()
        invoice = lock_for_update(_scoped_invoices(tenant).filter(Invoice.id == invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice with ID {invoice_id} not found")

        payment = _apply_payment(
            invoice,
            amount_cents,
            payment_method.strip(),
            received_by=received_by or tenant.actor,
            transaction_reference=transaction_reference,
            notes=notes,
            payment_date=payment_date,
        )
        if invoice.status == INVOICE_STATUS_PAID:
            _mark_order_paid(tenant, invoice)
        db.session.commit()
        return invoice, payment

    try:
        invoice, payment = run_with_retry(_op)
    except _domain_errors():
        db.session.rollback()
        raise

    _post_payment_to_ledger(invoice, payment)
    return invoice, payment


def _apply_payment(
    invoice: Invoice,
    amount_cents: int,
    payment_method: str,
    *,
    received_by: str | None,
    transaction_reference: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> InvoicePayment:
    """Validate and record a payment on a locked invoice. Flushes only."""
    if invoice.invoice_type == INVOICE_TYPE_CREDIT_NOTE:
        raise InvoiceError("Cannot add payment to a credit note")
    if invoice.status == INVOICE_STATUS_CANCELLED:
        raise InvoiceError("Cannot add payment to cancelled invoice")
    if invoice.status == INVOICE_STATUS_PAID or invoice.balance_cents <= 0:
        raise InvoiceError("Invoice is already fully paid")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvoiceError("Payment amount must be greater than zero")
    if amount_cents > invoice.balance_cents:
        raise InvoiceError(
            f"Payment amount ({amount_cents}) exceeds invoice balance ({invoice.balance_cents})",
            details={"amount_cents": amount_cents, "balance_cents": invoice.balance_cents},
        )

    payment = InvoicePayment(
        invoice_id=invoice.id,
        amount_cents=amount_cents,
        payment_method=payment_method,
        payment_date=payment_date or utcnow(),
        received_by=received_by,
        transaction_reference=transaction_reference,
        notes=notes,
    )
    invoice.payments.append(payment)

    invoice.amount_paid_cents += amount_cents
    invoice.balance_cents = invoice.total_amount_cents - invoice.amount_paid_cents
    invoice.status = INVOICE_STATUS_PAID if invoice.balance_cents == 0 else INVOICE_STATUS_PARTIALLY_PAID
    db.session.flush()

    accounting_service.create_payment_entry(invoice, payment, created_by=received_by)
    return payment


def _mark_order_paid(tenant: TenantContext, invoice: Invoice) -> None:
    from .order_service import ORDER_STATUS_PAID, apply_status_transition

    order = invoice.order
    if order is not None and order.status != ORDER_STATUS_PAID:
        apply_status_transition(
            order,
            ORDER_STATUS_PAID,
            ORDER_STATUS_PAID,
            tenant,
            notes=f"Invoice #{invoice.invoice_number} fully paid",
        )


def _post_payment_to_ledger(invoice: Invoice, payment: InvoicePayment) -> None:
    from .ledger_service import create_payment_ledger_entry

    try:
        create_payment_ledger_entry(
            invoice.order.customer_id,
            payment.amount_cents,
            payment.payment_method,
            reference_number=payment.transaction_reference or invoice.invoice_number,
            invoice_id=invoice.id,
            created_by=payment.received_by,
            branch_id=invoice.branch_id,
        )
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to post ledger payment entry for invoice %s (payment %s)", invoice.id, payment.id
        )


# =============================================================================
# Status
# =============================================================================

def update_invoice_status_by_order_id(tenant: TenantContext, order_id: int, status: str) -> bool:
    """
    Mirror an order status change onto its invoice.

    Returns False (no-op) without branch context or when the order has no
    invoice yet. Marking an invoice Paid settles its outstanding balance
    with a payment in the order's payment method, so balance and payments
    stay consistent.
    """
    if status not in INVOICE_STATUSES:
        raise ValidationError(f"Invalid invoice status. Must be one of: {', '.join(INVOICE_STATUSES)}")
    if not tenant.has_branch:
        return False

    def _op() -> tuple[bool, InvoicePayment | None]:
        acquire_write_lock()
        invoice = lock_for_update(
            _scoped_invoices(tenant).filter(
                Invoice.order_id == order_id,
                Invoice.invoice_type == INVOICE_TYPE_STANDARD,
            )
        ).first()
        if invoice is None:
            return False, None

        settlement = None
        if status == INVOICE_STATUS_PAID and invoice.balance_cents > 0 and invoice.status != INVOICE_STATUS_CANCELLED:
            settlement = _apply_payment(
                invoice,
                invoice.balance_cents,
                invoice.order.payment_method or "Cash",
                received_by=tenant.actor,
                notes="Settled when order was marked Paid",
            )
        invoice.status = status
        db.session.commit()
        return True, settlement

    try:
        updated, settlement = run_with_retry(_op)
    except _domain_errors():
        db.session.rollback()
        raise

    if settlement is not None:
        _post_payment_to_ledger(settlement.invoice, settlement)
    return updated


def update_due_date(tenant: TenantContext, invoice_id: int, due_date: datetime) -> Invoice:
    """
    Move an invoice's due date. An Overdue invoice whose new due date is
    in the future goes back to Pending/PartiallyPaid.
    """
    require_branch(tenant, "update invoice due date")
    invoice = get_invoice(tenant, invoice_id)

    if invoice.invoice_type == INVOICE_TYPE_CREDIT_NOTE:
        raise InvoiceError("Cannot change the due date of a credit note")
    if due_date < invoice.invoice_date:
        raise ValidationError("Due date cannot be before the invoice date")

    invoice.due_date = due_date
    if invoice.status == INVOICE_STATUS_OVERDUE and due_date >= utcnow():
        invoice.status = INVOICE_STATUS_PARTIALLY_PAID if invoice.amount_paid_cents else INVOICE_STATUS_PENDING
    db.session.commit()
    return invoice


def mark_overdue_invoices(branch_id: int | None = None, as_of: datetime | None = None) -> int:
    """
    Flag unpaid standard invoices past their due date as Overdue.

    Returns the number of invoices flagged.
    """
    as_of = as_of or utcnow()
    query = db.session.query(Invoice).filter(
        Invoice.invoice_type == INVOICE_TYPE_STANDARD,
        Invoice.status.in_([INVOICE_STATUS_PENDING, INVOICE_STATUS_PARTIALLY_PAID]),
        Invoice.balance_cents > 0,
        Invoice.due_date < as_of,
    )
    if branch_id is not None:
        query = query.filter(Invoice.branch_id == branch_id)

    count = 0
    for invoice in query.all():
        invoice.status = INVOICE_STATUS_OVERDUE
        count += 1
    db.session.commit()
    return count


# =============================================================================
# Queries
# =============================================================================

def get_invoice(tenant: TenantContext, invoice_id: int) -> Invoice:
    invoice = _scoped_invoices(tenant).filter(Invoice.id == invoice_id).first()
    if invoice is None:
        raise NotFoundError(f"Invoice with ID {invoice_id} not found")
    return invoice


def get_invoice_by_order_id(tenant: TenantContext, order_id: int) -> Invoice:
    invoice = (
        _scoped_invoices(tenant)
        .filter(Invoice.order_id == order_id, Invoice.invoice_type == INVOICE_TYPE_STANDARD)
        .first()
    )
    if invoice is None:
        raise NotFoundError(f"Invoice for order {order_id} not found")
    return invoice


def get_credit_note_by_return_id(tenant: TenantContext, return_id: int) -> Invoice:
    invoice = (
        _scoped_invoices(tenant)
        .filter(Invoice.return_id == return_id, Invoice.invoice_type == INVOICE_TYPE_CREDIT_NOTE)
        .first()
    )
    if invoice is None:
        raise NotFoundError(f"Credit note for return {return_id} not found")
    return invoice


def list_invoices(
    tenant: TenantContext,
    *,
    status: str | None = None,
    invoice_type: str | None = None,
    customer_id: int | None = None,
    min_amount_cents: int | None = None,
    max_amount_cents: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[Invoice]:
    """Invoices of the caller's branch, newest first. Empty without branch."""
    query = _scoped_invoices(tenant)
    if status:
        query = query.filter(Invoice.status == status)
    if invoice_type:
        query = query.filter(Invoice.invoice_type == invoice_type)
    if customer_id is not None:
        query = query.join(Order, Order.id == Invoice.order_id).filter(Order.customer_id == customer_id)
    if min_amount_cents is not None:
        query = query.filter(Invoice.total_amount_cents >= min_amount_cents)
    if max_amount_cents is not None:
        query = query.filter(Invoice.total_amount_cents <= max_amount_cents)
    if start_date:
        query = query.filter(Invoice.invoice_date >= start_date)
    if end_date:
        query = query.filter(Invoice.invoice_date <= end_date)
    return query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()


def get_invoice_payments(tenant: TenantContext, invoice_id: int) -> dict:
    invoice = get_invoice(tenant, invoice_id)
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "total_amount_cents": invoice.total_amount_cents,
        "amount_paid_cents": invoice.amount_paid_cents,
        "balance_cents": invoice.balance_cents,
        "status": invoice.status,
        "payments": [p.to_dict() for p in invoice.payments],
    }
