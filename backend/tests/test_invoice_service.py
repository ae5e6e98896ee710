# Overview: Pytest coverage for invoices, payments, credit notes and document numbering.

from datetime import timedelta

import pytest

from posledger.models import AccountingEntry, CustomerLedgerEntry, DocumentSequence, Invoice, Order
from posledger.services import document_service, invoice_service, order_service
from posledger.services.invoice_service import InvoiceError
from posledger.services.tenant_service import TenantAccessError
from posledger.time_utils import utcnow
from posledger.validation import NotFoundError, ValidationError

from conftest import CUSTOMER_PAYLOAD, order_items


@pytest.fixture
def order_and_invoice(db_session, tenant_a, widget):
    """Pending order of 5 widgets (50.00) with its invoice."""
    return order_service.create_order(
        tenant_a, customer=CUSTOMER_PAYLOAD, payment_method="Card", items=order_items((widget, 5))
    )


class TestDocumentNumbers:

    def test_numbers_are_sequential_per_prefix(self, db_session):
        first = document_service.next_document_number(prefix="INV-202610")
        second = document_service.next_document_number(prefix="INV-202610")
        other = document_service.next_document_number(prefix="CN-202610")
        db_session.commit()

        assert first == "INV-202610-0001"
        assert second == "INV-202610-0002"
        assert other == "CN-202610-0001"
        assert db_session.query(DocumentSequence).filter_by(prefix="INV-202610").one().next_number == 3

    def test_period_prefix(self):
        when = utcnow().replace(year=2026, month=3, day=9)
        assert document_service.period_prefix("INV", when) == "INV-202603"

    def test_empty_prefix_rejected(self, db_session):
        with pytest.raises(document_service.DocumentSequenceError):
            document_service.next_document_number(prefix="")


class TestCreateInvoice:

    def test_invoice_matches_order(self, db_session, tenant_a, order_and_invoice):
        order, invoice = order_and_invoice

        assert invoice.order_id == order.id
        assert invoice.invoice_type == "Standard"
        assert invoice.total_amount_cents == 5000
        assert invoice.amount_paid_cents == 0
        assert invoice.balance_cents == 5000
        assert invoice.branch_id == order.branch_id
        assert (invoice.due_date - invoice.invoice_date).days == 30

    def test_create_invoice_is_idempotent(self, db_session, tenant_a, order_and_invoice):
        order, invoice = order_and_invoice

        again = invoice_service.create_invoice(tenant_a, order.id)

        assert again.id == invoice.id
        assert db_session.query(Invoice).filter_by(order_id=order.id).count() == 1

    def test_invoice_numbers_are_unique(self, db_session, tenant_a, widget):
        numbers = set()
        for _ in range(3):
            _, invoice = order_service.create_order(
                tenant_a, customer=CUSTOMER_PAYLOAD, payment_method="Cash", items=order_items((widget, 1))
            )
            numbers.add(invoice.invoice_number)
        assert len(numbers) == 3

    def test_order_in_other_branch_not_found(self, db_session, tenant_a2, order_and_invoice):
        order, _ = order_and_invoice
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(tenant_a2, order.id)

    def test_requires_branch(self, db_session, tenant_no_branch, order_and_invoice):
        order, _ = order_and_invoice
        with pytest.raises(TenantAccessError):
            invoice_service.create_invoice(tenant_no_branch, order.id)


class TestPayments:

    def test_partial_then_full_payment(self, db_session, tenant_a, order_and_invoice):
        order, invoice = order_and_invoice

        invoice, payment = invoice_service.add_payment(tenant_a, invoice.id, 2000, "Cash")
        assert invoice.status == "PartiallyPaid"
        assert invoice.amount_paid_cents == 2000
        assert invoice.balance_cents == 3000
        assert payment.received_by == "user:11"
        assert db_session.get(Order, order.id).status == "Pending"

        invoice, _ = invoice_service.add_payment(tenant_a, invoice.id, 3000, "Card")
        assert invoice.status == "Paid"
        assert invoice.balance_cents == 0
        assert len(invoice.payments) == 2

        # Full payment moves the order to Paid and books the sale
        assert db_session.get(Order, order.id).status == "Paid"
        assert db_session.query(AccountingEntry).filter_by(entry_type="Sale").count() == 1
        assert db_session.query(AccountingEntry).filter_by(entry_type="Payment").count() == 2

    def test_payments_credit_customer_ledger(self, db_session, tenant_a, order_and_invoice):
        order, invoice = order_and_invoice

        invoice_service.add_payment(tenant_a, invoice.id, 1500, "Cash", transaction_reference="RCPT-1")

        entries = (
            db_session.query(CustomerLedgerEntry)
            .filter_by(customer_id=order.customer_id)
            .order_by(CustomerLedgerEntry.id)
            .all()
        )
        assert [(e.transaction_type, e.debit_cents, e.credit_cents, e.balance_cents) for e in entries] == [
            ("Sale", 5000, 0, 5000),
            ("Payment", 0, 1500, 3500),
        ]
        assert entries[-1].reference_number == "RCPT-1"
        assert entries[-1].description == f"Payment for Invoice #{invoice.invoice_number}"

    def test_overpayment_rejected(self, db_session, tenant_a, order_and_invoice):
        _, invoice = order_and_invoice
        with pytest.raises(InvoiceError, match="exceeds invoice balance"):
            invoice_service.add_payment(tenant_a, invoice.id, 5001, "Cash")
        assert db_session.get(Invoice, invoice.id).amount_paid_cents == 0

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount_rejected(self, db_session, tenant_a, order_and_invoice, amount):
        _, invoice = order_and_invoice
        with pytest.raises(InvoiceError, match="greater than zero"):
            invoice_service.add_payment(tenant_a, invoice.id, amount, "Cash")

    def test_fully_paid_invoice_rejects_payment(self, db_session, tenant_a, order_and_invoice):
        _, invoice = order_and_invoice
        invoice_service.add_payment(tenant_a, invoice.id, 5000, "Cash")

        with pytest.raises(InvoiceError, match="already fully paid"):
            invoice_service.add_payment(tenant_a, invoice.id, 1, "Cash")

    def test_cancelled_invoice_rejects_payment(self, db_session, tenant_a, order_and_invoice):
        order, invoice = order_and_invoice
        order_service.update_order_status(tenant_a, order.id, "Cancelled")

        with pytest.raises(InvoiceError, match="cancelled invoice"):
            invoice_service.add_payment(tenant_a, invoice.id, 100, "Cash")

    def test_payment_method_required(self, db_session, tenant_a, order_and_invoice):
        _, invoice = order_and_invoice
        with pytest.raises(ValidationError):
            invoice_service.add_payment(tenant_a, invoice.id, 100, "  ")

    def test_other_branch_cannot_pay(self, db_session, tenant_a2, order_and_invoice):
        _, invoice = order_and_invoice
        with pytest.raises(NotFoundError):
            invoice_service.add_payment(tenant_a2, invoice.id, 100, "Cash")

    def test_get_invoice_payments(self, db_session, tenant_a, order_and_invoice):
        _, invoice = order_and_invoice
        invoice_service.add_payment(tenant_a, invoice.id, 1000, "Cash")

        data = invoice_service.get_invoice_payments(tenant_a, invoice.id)
        assert data["amount_paid_cents"] == 1000
        assert data["balance_cents"] == 4000
        assert [p["amount_cents"] for p in data["payments"]] == [1000]


class TestInvoiceStatus:

    def test_mirror_without_branch_is_noop(self, db_session, tenant_no_branch, order_and_invoice):
        order, _ = order_and_invoice
        assert invoice_service.update_invoice_status_by_order_id(tenant_no_branch, order.id, "Paid") is False

    def test_mirror_without_invoice_returns_false(self, db_session, tenant_a):
        assert invoice_service.update_invoice_status_by_order_id(tenant_a, 99999, "Cancelled") is False

    def test_mirror_rejects_unknown_status(self, db_session, tenant_a, order_and_invoice):
        order, _ = order_and_invoice
        with pytest.raises(ValidationError):
            invoice_service.update_invoice_status_by_order_id(tenant_a, order.id, "Issued")

    def test_mark_overdue(self, db_session, tenant_a, order_and_invoice):
        _, invoice = order_and_invoice
        invoice.due_date = utcnow() - timedelta(days=1)
        db_session.commit()

        assert invoice_service.mark_overdue_invoices() == 1
        assert db_session.get(Invoice, invoice.id).status == "Overdue"
        assert invoice_service.mark_overdue_invoices() == 0

    def test_moving_due_date_forward_clears_overdue(self, db_session, tenant_a, order_and_invoice):
        _, invoice = order_and_invoice
        invoice.due_date = utcnow() - timedelta(days=1)
        db_session.commit()
        invoice_service.mark_overdue_invoices()

        updated = invoice_service.update_due_date(tenant_a, invoice.id, utcnow() + timedelta(days=7))
        assert updated.status == "Pending"

    def test_due_date_before_invoice_date_rejected(self, db_session, tenant_a, order_and_invoice):
        _, invoice = order_and_invoice
        with pytest.raises(ValidationError):
            invoice_service.update_due_date(tenant_a, invoice.id, invoice.invoice_date - timedelta(days=1))


class TestInvoiceQueries:

    def test_list_filters(self, db_session, tenant_a, tenant_a2, widget, gadget):
        _, small = order_service.create_order(
            tenant_a, customer=CUSTOMER_PAYLOAD, payment_method="Cash", items=order_items((widget, 1))
        )
        _, large = order_service.create_order(
            tenant_a, customer=CUSTOMER_PAYLOAD, payment_method="Cash", items=order_items((gadget, 2))
        )
        invoice_service.add_payment(tenant_a, small.id, 1000, "Cash")

        assert {i.id for i in invoice_service.list_invoices(tenant_a)} == {small.id, large.id}
        assert [i.id for i in invoice_service.list_invoices(tenant_a, status="Paid")] == [small.id]
        assert [i.id for i in invoice_service.list_invoices(tenant_a, min_amount_cents=2000)] == [large.id]
        assert invoice_service.list_invoices(tenant_a2) == []

    def test_get_invoice_by_order_id(self, db_session, tenant_a, order_and_invoice):
        order, invoice = order_and_invoice
        assert invoice_service.get_invoice_by_order_id(tenant_a, order.id).id == invoice.id

    def test_get_invoice_by_order_id_missing(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice_by_order_id(tenant_a, 99999)
