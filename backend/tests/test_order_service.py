# Overview: Pytest coverage for order placement and status transitions.

"""
Order lifecycle tests

Covers:
- creation: stock deduction, customer resolution, invoice + ledger sale
- atomicity: insufficient stock on any line persists nothing
- status machine: Pending -> Paid / Cancelled, history rows, journal
  entries, invoice mirroring and stock restoration
"""

import pytest

from posledger.models import (
    AccountingEntry,
    Customer,
    CustomerLedgerEntry,
    Invoice,
    Order,
    OrderHistory,
    Product,
)
from posledger.services import order_service
from posledger.services.order_service import OrderError
from posledger.services.tenant_service import TenantAccessError
from posledger.validation import (
    InsufficientStockError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)

from conftest import CUSTOMER_PAYLOAD, make_product, order_items


def place(tenant, *pairs, customer=None, payment_method="Cash"):
    return order_service.create_order(
        tenant,
        customer=customer or CUSTOMER_PAYLOAD,
        payment_method=payment_method,
        items=order_items(*pairs),
    )


class TestCreateOrder:

    def test_creates_order_invoice_and_ledger_sale(self, db_session, tenant_a, widget, gadget):
        order, invoice = place(tenant_a, (widget, 2), (gadget, 1))

        assert order.total_amount_cents == 2 * 1000 + 2500
        assert order.status == "Pending"
        assert order.order_status == "Pending"
        assert [line.quantity for line in order.lines] == [2, 1]

        assert db_session.get(Product, widget.id).unit_stock == 18
        assert db_session.get(Product, gadget.id).unit_stock == 4

        assert invoice is not None
        assert invoice.invoice_number.startswith("INV-")
        assert invoice.status == "Pending"
        assert invoice.balance_cents == order.total_amount_cents

        sale = db_session.query(CustomerLedgerEntry).filter_by(order_id=order.id).one()
        assert sale.transaction_type == "Sale"
        assert sale.debit_cents == 4500
        assert sale.balance_cents == 4500
        assert sale.reference_number == invoice.invoice_number

    def test_history_row_written_on_create(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 1))

        history = order_service.get_order_history(tenant_a, order.id)
        assert len(history) == 1
        assert history[0].action == "Created"
        assert history[0].new_status == "Pending"

    def test_insufficient_stock_rolls_back_everything(self, db_session, tenant_a, widget, gadget):
        with pytest.raises(InsufficientStockError):
            place(tenant_a, (widget, 2), (gadget, 6))

        assert db_session.get(Product, widget.id).unit_stock == 20
        assert db_session.get(Product, gadget.id).unit_stock == 5
        assert db_session.query(Order).count() == 0
        assert db_session.query(Customer).count() == 0
        assert db_session.query(Invoice).count() == 0

    def test_selling_last_units(self, db_session, tenant_a, branch_a):
        product = make_product(db_session, branch_a, name="Lamp", sku="L-5", price_cents=200, unit_stock=5)

        order, _ = place(tenant_a, (product, 5))
        assert order.total_amount_cents == 1000
        assert db_session.get(Product, product.id).status == "NO"

        with pytest.raises(InsufficientStockError):
            place(tenant_a, (product, 1))
        assert db_session.get(Product, product.id).unit_stock == 0

    def test_empty_items_rejected(self, db_session, tenant_a):
        with pytest.raises(OrderError, match="at least one item"):
            order_service.create_order(tenant_a, customer=CUSTOMER_PAYLOAD, payment_method="Cash", items=[])

    def test_duplicate_product_lines_rejected(self, db_session, tenant_a, widget):
        with pytest.raises(ValidationError):
            place(tenant_a, (widget, 1), (widget, 2))

    def test_new_customer_requires_name(self, db_session, tenant_a, widget):
        with pytest.raises(InvalidOperationError, match="full name is required"):
            place(tenant_a, (widget, 1), customer={"phone": "555-0199"})
        assert db_session.get(Product, widget.id).unit_stock == 20

    def test_existing_customer_matched_by_phone(self, db_session, tenant_a, widget, customer_a):
        order, _ = place(tenant_a, (widget, 1), customer={"phone": "555-0100"})

        assert order.customer_id == customer_a.id
        assert db_session.query(Customer).count() == 1

    def test_existing_customer_matched_by_email_case_insensitive(self, db_session, tenant_a, widget, customer_a):
        order, _ = place(tenant_a, (widget, 1), customer={"email": "JANE@example.com"})
        assert order.customer_id == customer_a.id

    def test_product_from_other_branch_not_found(self, db_session, tenant_a, product_b):
        with pytest.raises(NotFoundError):
            place(tenant_a, (product_b, 1))

    def test_requires_branch_context(self, db_session, tenant_no_branch, widget):
        with pytest.raises(TenantAccessError, match="without branch context"):
            place(tenant_no_branch, (widget, 1))

    def test_invoice_failure_keeps_order(self, db_session, tenant_a, widget, monkeypatch):
        from posledger.services import invoice_service

        def _fail(*args, **kwargs):
            raise RuntimeError("numbering down")

        monkeypatch.setattr(invoice_service, "create_invoice", _fail)

        order, invoice = place(tenant_a, (widget, 1))
        assert invoice is None
        assert db_session.get(Order, order.id) is not None
        assert db_session.get(Product, widget.id).unit_stock == 19


class TestStatusTransitions:

    def test_mark_paid_settles_invoice_and_posts_sale(self, db_session, tenant_a, widget):
        order, invoice = place(tenant_a, (widget, 3))

        order = order_service.update_order_status(tenant_a, order.id, "Paid")
        assert order.status == "Paid"
        assert order.order_status == "Paid"

        invoice = db_session.get(Invoice, invoice.id)
        assert invoice.status == "Paid"
        assert invoice.balance_cents == 0
        assert invoice.amount_paid_cents == 3000
        assert len(invoice.payments) == 1

        sales = db_session.query(AccountingEntry).filter_by(entry_type="Sale").all()
        assert len(sales) == 1
        assert sales[0].amount_cents == 3000
        assert sales[0].description.startswith(f"Order #{order.id} - Jane Doe")

        ledger = (
            db_session.query(CustomerLedgerEntry)
            .filter_by(customer_id=order.customer_id)
            .order_by(CustomerLedgerEntry.id)
            .all()
        )
        assert [e.transaction_type for e in ledger] == ["Sale", "Payment"]
        assert ledger[-1].balance_cents == 0

    def test_reapplying_paid_is_idempotent(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 1))
        order_service.update_order_status(tenant_a, order.id, "Paid")
        order_service.update_order_status(tenant_a, order.id, "Paid")

        assert db_session.query(AccountingEntry).filter_by(entry_type="Sale").count() == 1
        history = order_service.get_order_history(tenant_a, order.id)
        assert [h.action for h in history] == ["Created", "Paid", "Paid"]
        assert history[-1].notes == "Order status unchanged (Paid)"

    def test_reapplying_cancelled_is_idempotent(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 2))
        order_service.update_order_status(tenant_a, order.id, "Paid")
        order_service.update_order_status(tenant_a, order.id, "Cancelled")
        order_service.update_order_status(tenant_a, order.id, "Cancelled")

        assert db_session.get(Product, widget.id).unit_stock == 20
        assert db_session.query(AccountingEntry).filter_by(entry_type="Refund").count() == 1
        history = order_service.get_order_history(tenant_a, order.id)
        assert [h.action for h in history] == ["Created", "Paid", "Cancelled", "Cancelled"]
        assert history[-1].notes == "Order status unchanged (Cancelled)"

    def test_cancel_pending_restores_stock_without_refund(self, db_session, tenant_a, widget, gadget):
        order, invoice = place(tenant_a, (widget, 4), (gadget, 2))

        order_service.update_order_status(tenant_a, order.id, "Cancelled")

        assert db_session.get(Product, widget.id).unit_stock == 20
        assert db_session.get(Product, gadget.id).unit_stock == 5
        assert db_session.get(Invoice, invoice.id).status == "Cancelled"
        assert db_session.query(AccountingEntry).filter_by(entry_type="Refund").count() == 0

        history = order_service.get_order_history(tenant_a, order.id)
        assert history[-1].action == "Cancelled"
        assert history[-1].notes == "Order status changed from Pending to Cancelled"

    def test_cancel_paid_posts_refund(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 2))
        order_service.update_order_status(tenant_a, order.id, "Paid")
        order_service.update_order_status(tenant_a, order.id, "Cancelled")

        refunds = db_session.query(AccountingEntry).filter_by(entry_type="Refund").all()
        assert len(refunds) == 1
        assert refunds[0].amount_cents == 2000
        assert refunds[0].description.startswith(f"Refund for Order #{order.id}")
        assert db_session.get(Product, widget.id).unit_stock == 20

    def test_cancelled_order_cannot_be_reopened(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 1))
        order_service.update_order_status(tenant_a, order.id, "Cancelled")

        with pytest.raises(OrderError, match="cannot be reopened"):
            order_service.update_order_status(tenant_a, order.id, "Pending")
        assert db_session.get(Order, order.id).status == "Cancelled"

    def test_invalid_status_rejected(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 1))
        with pytest.raises(ValidationError, match="Status must be either"):
            order_service.update_order_status(tenant_a, order.id, "Shipped")

    def test_mismatched_twin_status_rejected(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 1))
        with pytest.raises(ValidationError, match="must match"):
            order_service.update_order_status(tenant_a, order.id, "Paid", "Pending")

    def test_other_branch_cannot_update(self, db_session, tenant_a, tenant_a2, widget):
        order, _ = place(tenant_a, (widget, 1))
        with pytest.raises(NotFoundError):
            order_service.update_order_status(tenant_a2, order.id, "Paid")

    def test_bulk_update_skips_cancelled_and_foreign_orders(self, db_session, tenant_a, tenant_a2, widget, branch_a2):
        first, _ = place(tenant_a, (widget, 1))
        second, _ = place(tenant_a, (widget, 1))
        cancelled, _ = place(tenant_a, (widget, 1))
        order_service.update_order_status(tenant_a, cancelled.id, "Cancelled")

        other_product = make_product(db_session, branch_a2, name="Elsewhere", sku="E-1", price_cents=100, unit_stock=3)
        foreign, _ = place(tenant_a2, (other_product, 1))

        updated = order_service.bulk_update_order_status(
            tenant_a, [first.id, second.id, cancelled.id, foreign.id], "Paid"
        )

        assert updated == 2
        assert db_session.get(Order, first.id).status == "Paid"
        assert db_session.get(Order, second.id).status == "Paid"
        assert db_session.get(Order, cancelled.id).status == "Cancelled"
        assert db_session.get(Order, foreign.id).status == "Pending"
        actions = [h.action for h in db_session.get(Order, first.id).history]
        assert actions[-1] == "Paid"


class TestOrderQueriesAndDeletion:

    def test_list_orders_scoped_and_filtered(self, db_session, tenant_a, tenant_a2, widget):
        paid, _ = place(tenant_a, (widget, 1))
        pending, _ = place(tenant_a, (widget, 1))
        order_service.update_order_status(tenant_a, paid.id, "Paid")

        assert {o.id for o in order_service.list_orders(tenant_a)} == {paid.id, pending.id}
        assert [o.id for o in order_service.list_orders(tenant_a, status="Pending")] == [pending.id]
        assert order_service.list_orders(tenant_a2) == []

    def test_list_orders_without_branch_is_empty(self, db_session, tenant_a, tenant_no_branch, widget):
        place(tenant_a, (widget, 1))
        assert order_service.list_orders(tenant_no_branch) == []

    def test_invoiced_order_cannot_be_deleted(self, db_session, tenant_a, widget):
        order, _ = place(tenant_a, (widget, 1))
        with pytest.raises(OrderError, match="cannot be deleted"):
            order_service.delete_order(tenant_a, order.id)

    def test_delete_uninvoiced_order_restores_stock(self, db_session, tenant_a, widget, monkeypatch):
        from posledger.services import invoice_service

        def _fail(*args, **kwargs):
            raise RuntimeError("numbering down")

        monkeypatch.setattr(invoice_service, "create_invoice", _fail)
        order, invoice = place(tenant_a, (widget, 5))
        assert invoice is None

        order_service.delete_order(tenant_a, order.id)

        assert db_session.get(Order, order.id) is None
        assert db_session.query(OrderHistory).count() == 0
        assert db_session.get(Product, widget.id).unit_stock == 20
